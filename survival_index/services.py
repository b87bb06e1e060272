"""Shared business logic for the Survival Index API and MCP server."""
from __future__ import annotations

import json
import logging
import math
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, selectinload

from survival_index.errors import ConflictError, NotFoundError, ValidationError
from survival_index.judge import EvaluationResult, Judge
from survival_index.models import (
    AIRating, Category, Project, ProjectSubmission, ProjectType, SubmissionStatus, UserRating,
)
from survival_index.scoring import LEVER_COLUMNS, LEVERS, validate_scores
from survival_index.utils import isoformat, json_parse

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Shared field tuples
# ---------------------------------------------------------------------------

# (api key, column)
PROJECT_FIELDS: tuple[tuple[str, str], ...] = (
    ("name", "name"), ("type", "type"), ("category", "category"),
    ("description", "description"), ("url", "url"), ("githubUrl", "github_url"),
    ("logo", "logo"), ("tags", "tags"), ("yearCreated", "year_created"),
    ("selfHostable", "self_hostable"), ("license", "license"),
    ("techStack", "tech_stack"), ("alternativeTo", "alternative_to"),
)

UPDATABLE_FIELDS = tuple(col for _, col in PROJECT_FIELDS)

DEFAULT_LOGO = "📦"


# ---------------------------------------------------------------------------
# Enum validation
# ---------------------------------------------------------------------------


def parse_project_type(value: Any) -> ProjectType:
    try:
        return ProjectType(getattr(value, "value", value))
    except ValueError as exc:
        allowed = ", ".join(t.value for t in ProjectType)
        raise ValidationError(f"Invalid project type {value!r} (expected one of: {allowed})") from exc


def parse_category(value: Any) -> Category:
    try:
        return Category(getattr(value, "value", value))
    except ValueError as exc:
        raise ValidationError(f"Invalid category {value!r}") from exc


# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------


def lever_scores(obj: AIRating | UserRating) -> dict[str, float]:
    return {lever: getattr(obj, LEVER_COLUMNS[lever]) for lever in LEVERS}


def rating_dict(rating: AIRating) -> dict[str, Any]:
    return {
        "id": rating.id,
        "projectId": rating.project_id,
        **lever_scores(rating),
        "survivalScore": rating.survival_score,
        "tier": rating.tier,
        "confidence": rating.confidence,
        "reasoning": json_parse(rating.reasoning_json),
        "suggestions": json_parse(rating.suggestions_json, None),
        "model": rating.model,
        "githubStars": rating.github_stars,
        "githubForks": rating.github_forks,
        "githubIssues": rating.github_issues,
        "lastAnalyzedAt": isoformat(rating.last_analyzed_at),
        "createdAt": isoformat(rating.created_at),
    }


def user_rating_dict(rating: UserRating) -> dict[str, Any]:
    return {
        "id": rating.id,
        "projectId": rating.project_id,
        **lever_scores(rating),
        "userId": rating.user_id,
        "createdAt": isoformat(rating.created_at),
    }


def project_dict(proj: Project, include_user_ratings: bool = False) -> dict[str, Any]:
    out: dict[str, Any] = {"id": proj.id}
    out.update({key: getattr(proj, col) for key, col in PROJECT_FIELDS})
    out["createdAt"] = isoformat(proj.created_at)
    out["updatedAt"] = isoformat(proj.updated_at)
    out["aiRating"] = rating_dict(proj.ai_rating) if proj.ai_rating else None
    if include_user_ratings:
        out["userRatings"] = [user_rating_dict(r) for r in proj.user_ratings]
    return out


def submission_dict(sub: ProjectSubmission) -> dict[str, Any]:
    out: dict[str, Any] = {"id": sub.id}
    out.update({key: getattr(sub, col) for key, col in PROJECT_FIELDS})
    out.update({
        "submittedBy": sub.submitted_by,
        "submitterEmail": sub.submitter_email,
        "status": sub.status,
        "reviewedBy": sub.reviewed_by,
        "reviewedAt": isoformat(sub.reviewed_at),
        "reviewNotes": sub.review_notes,
        "rejectionReason": sub.rejection_reason,
        "projectId": sub.project_id,
        "createdAt": isoformat(sub.created_at),
    })
    return out


def _pagination(page: int, limit: int, total: int) -> dict[str, Any]:
    total_pages = math.ceil(total / limit) if limit else 0
    return {
        "page": page, "limit": limit, "total": total, "totalPages": total_pages,
        "hasNextPage": page < total_pages, "hasPrevPage": page > 1,
    }


# ---------------------------------------------------------------------------
# Mutation helpers
# ---------------------------------------------------------------------------


def apply_updates(obj, updates: dict[str, Any], fields: tuple[str, ...]) -> None:
    """Apply non-None values from updates dict to an ORM object."""
    for field in fields:
        val = updates.get(field)
        if val is not None:
            setattr(obj, field, val)


def _normalized_project_fields(data: dict[str, Any], partial: bool = False) -> dict[str, Any]:
    """Validate enum fields and required text; ``data`` uses column names."""
    out = dict(data)
    if out.get("type") is not None:
        out["type"] = parse_project_type(out["type"]).value
    if out.get("category") is not None:
        out["category"] = parse_category(out["category"]).value
    required = ("name", "type", "category", "description")
    for key in required:
        val = out.get(key)
        if isinstance(val, str):
            out[key] = val = val.strip()
        if not partial and not val:
            raise ValidationError(f"Missing required fields: {', '.join(required)}")
        if partial and key in out and val == "":
            raise ValidationError(f"{key} must not be empty")
    return out


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class ProjectStore:
    """Persistence operations the evaluation service relies on."""

    def __init__(self, session: Session):
        self.session = session

    def find_by_id(self, project_id: int) -> Project | None:
        return self.session.execute(
            select(Project).where(Project.id == project_id)
        ).scalars().first()

    def upsert_rating(self, project_id: int, evaluation: EvaluationResult) -> AIRating:
        """Create or overwrite the project's single rating in one transaction."""
        rating = self.session.execute(
            select(AIRating).where(AIRating.project_id == project_id)
        ).scalars().first()
        if rating is None:
            rating = AIRating(project_id=project_id)
            project = self.session.get(Project, project_id)
            if project is not None:
                project.ai_rating = rating
            else:
                self.session.add(rating)

        for lever, value in evaluation.scores.items():
            setattr(rating, LEVER_COLUMNS[lever], value)
        metrics = evaluation.metrics
        rating.survival_score = evaluation.survival_score
        rating.tier = evaluation.tier.value
        rating.confidence = evaluation.confidence
        rating.reasoning_json = json.dumps(evaluation.reasoning)
        rating.suggestions_json = json.dumps(evaluation.suggestions) if evaluation.suggestions else None
        rating.model = evaluation.model
        rating.github_stars = metrics.stars if metrics else None
        rating.github_forks = metrics.forks if metrics else None
        rating.github_issues = metrics.open_issues if metrics else None
        rating.last_analyzed_at = evaluation.analyzed_at
        self.session.commit()
        return rating

    def find_projects_needing_reevaluation(self, cutoff: datetime) -> list[Project]:
        """Projects with no rating, or whose rating predates ``cutoff``."""
        stmt = (
            select(Project)
            .outerjoin(AIRating, AIRating.project_id == Project.id)
            .where(or_(AIRating.id.is_(None), AIRating.last_analyzed_at < cutoff))
            .order_by(Project.id)
        )
        return list(self.session.execute(stmt).scalars().all())


# ---------------------------------------------------------------------------
# Evaluation service
# ---------------------------------------------------------------------------


class EvaluationService:
    """Runs the judge around persistence: single, batch and stale re-evaluation."""

    def __init__(self, store: ProjectStore, judge: Judge):
        self.store = store
        self.judge = judge

    async def evaluate_and_store(self, project_id: int) -> dict[str, Any]:
        project = self.store.find_by_id(project_id)
        if project is None:
            raise NotFoundError(f"Project with ID {project_id} not found")

        log.info("Starting AI evaluation for %s", project.name)
        evaluation = await self.judge.evaluate(project)
        rating = self.store.upsert_rating(project.id, evaluation)
        log.info(
            "AI evaluation complete: %s scored %.2f (Tier %s)",
            project.name, evaluation.survival_score, evaluation.tier.value,
        )
        return {"project": project, "rating": rating, "evaluation": evaluation}

    async def batch_evaluate(self, project_ids: list[int]) -> dict[str, Any]:
        successful: list[dict[str, Any]] = []
        failed: list[dict[str, Any]] = []
        for project_id in project_ids:
            try:
                successful.append(await self.evaluate_and_store(project_id))
            except Exception as exc:
                log.warning("Failed to evaluate project %s: %s", project_id, exc)
                self.store.session.rollback()
                failed.append({"projectId": project_id, "error": str(exc)})
        return {
            "successful": successful,
            "failed": failed,
            "stats": {
                "total": len(project_ids),
                "successful": len(successful),
                "failed": len(failed),
            },
        }

    async def reevaluate_stale(self, days_old: int = 30, now: datetime | None = None) -> dict[str, Any]:
        cutoff = (now or datetime.now(UTC)) - timedelta(days=days_old)
        projects = self.store.find_projects_needing_reevaluation(cutoff)
        log.info("Found %d projects to re-evaluate", len(projects))
        return await self.batch_evaluate([p.id for p in projects])


def evaluation_summary(outcome: dict[str, Any]) -> dict[str, Any]:
    """JSON-safe view of one ``evaluate_and_store`` outcome."""
    return {
        "project": project_dict(outcome["project"]),
        "aiRating": rating_dict(outcome["rating"]),
    }


def batch_summary(result: dict[str, Any]) -> dict[str, Any]:
    return {
        "successful": [evaluation_summary(o) for o in result["successful"]],
        "failed": result["failed"],
        "stats": result["stats"],
    }


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------


def get_entity(session: Session, model, entity_id: int):
    return session.execute(select(model).where(model.id == entity_id)).scalars().first()


def get_project_or_raise(session: Session, project_id: int) -> Project:
    proj = get_entity(session, Project, project_id)
    if proj is None:
        raise NotFoundError("Project not found")
    return proj


def query_projects(
    session: Session, *, project_type: str | None = None, category: str | None = None,
    min_score: float | None = None, max_score: float | None = None,
    page: int = 1, limit: int = 20,
) -> dict[str, Any]:
    stmt = select(Project)
    count_stmt = select(func.count(Project.id))
    conditions = []
    if project_type:
        conditions.append(Project.type == parse_project_type(project_type).value)
    if category:
        conditions.append(Project.category == parse_category(category).value)
    if min_score is not None or max_score is not None:
        stmt = stmt.join(AIRating, AIRating.project_id == Project.id)
        count_stmt = count_stmt.join(AIRating, AIRating.project_id == Project.id)
        if min_score is not None:
            conditions.append(AIRating.survival_score >= min_score)
        if max_score is not None:
            conditions.append(AIRating.survival_score <= max_score)
    if conditions:
        stmt = stmt.where(*conditions)
        count_stmt = count_stmt.where(*conditions)

    total = session.execute(count_stmt).scalar_one()
    rows = session.execute(
        stmt.options(selectinload(Project.ai_rating), selectinload(Project.user_ratings))
        .order_by(Project.created_at.desc(), Project.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    ).scalars().all()
    return {
        "data": [project_dict(p, include_user_ratings=True) for p in rows],
        "pagination": _pagination(page, limit, total),
    }


def create_project(session: Session, **fields: Any) -> Project:
    """Create a project from column-named fields (caller must commit)."""
    data = _normalized_project_fields(fields)
    if get_project_by_name(session, data["name"]) is not None:
        raise ConflictError("A project with this name already exists")
    proj = Project(**{col: data.get(col) for col in UPDATABLE_FIELDS if data.get(col) is not None})
    session.add(proj)
    session.flush()
    return proj


def update_project(session: Session, project_id: int, updates: dict[str, Any]) -> Project:
    proj = get_project_or_raise(session, project_id)
    data = _normalized_project_fields(
        {k: v for k, v in updates.items() if v is not None}, partial=True,
    )
    new_name = data.get("name")
    if new_name and new_name != proj.name and get_project_by_name(session, new_name) is not None:
        raise ConflictError("A project with this name already exists")
    apply_updates(proj, data, UPDATABLE_FIELDS)
    session.flush()
    return proj


def get_project_by_name(session: Session, name: str) -> Project | None:
    return session.execute(select(Project).where(Project.name == name)).scalars().first()


def leaderboard(session: Session, limit: int = 100) -> list[dict[str, Any]]:
    rows = session.execute(
        select(Project)
        .join(AIRating, AIRating.project_id == Project.id)
        .options(selectinload(Project.ai_rating))
        .order_by(AIRating.survival_score.desc(), Project.id)
        .limit(limit)
    ).scalars().all()
    return [project_dict(p) for p in rows]


# ---------------------------------------------------------------------------
# Community ratings
# ---------------------------------------------------------------------------


def submit_user_rating(
    session: Session, project_id: int, scores: dict[str, Any],
    user_id: str | None = None, ip_address: str | None = None,
) -> UserRating:
    """Validate lever scores before touching the store, then record the rating."""
    valid = validate_scores(scores)
    get_project_or_raise(session, project_id)
    rating = UserRating(
        project_id=project_id, user_id=user_id, ip_address=ip_address,
        **{LEVER_COLUMNS[lever]: value for lever, value in valid.items()},
    )
    session.add(rating)
    session.flush()
    return rating


def list_user_ratings(session: Session, project_id: int) -> list[UserRating]:
    return list(session.execute(
        select(UserRating)
        .where(UserRating.project_id == project_id)
        .order_by(UserRating.created_at.desc(), UserRating.id.desc())
    ).scalars().all())


def average_user_ratings(session: Session, project_id: int) -> dict[str, Any]:
    ratings = list_user_ratings(session, project_id)
    if not ratings:
        return {"count": 0, "averages": None}
    averages = {
        lever: sum(getattr(r, LEVER_COLUMNS[lever]) for r in ratings) / len(ratings)
        for lever in LEVERS
    }
    return {"count": len(ratings), "averages": averages}


# ---------------------------------------------------------------------------
# Submissions
# ---------------------------------------------------------------------------


def create_submission(session: Session, **fields: Any) -> ProjectSubmission:
    data = _normalized_project_fields(fields)
    if get_project_by_name(session, data["name"]) is not None:
        raise ConflictError("A project with this name already exists")
    pending = session.execute(
        select(ProjectSubmission).where(
            ProjectSubmission.name == data["name"],
            ProjectSubmission.status == SubmissionStatus.PENDING.value,
        )
    ).scalars().first()
    if pending is not None:
        raise ConflictError("A submission with this name is already pending review")

    sub = ProjectSubmission(
        **{col: data.get(col) for col in UPDATABLE_FIELDS if data.get(col) is not None},
        submitted_by=fields.get("submitted_by"),
        submitter_email=fields.get("submitter_email"),
        status=SubmissionStatus.PENDING.value,
    )
    if not sub.logo:
        sub.logo = DEFAULT_LOGO
    session.add(sub)
    session.flush()
    return sub


def query_submissions(
    session: Session, status: str | None = None, page: int = 1, limit: int = 20,
) -> dict[str, Any]:
    stmt = select(ProjectSubmission)
    count_stmt = select(func.count(ProjectSubmission.id))
    if status:
        try:
            status_value = SubmissionStatus(status).value
        except ValueError as exc:
            raise ValidationError(f"Invalid submission status {status!r}") from exc
        stmt = stmt.where(ProjectSubmission.status == status_value)
        count_stmt = count_stmt.where(ProjectSubmission.status == status_value)
    total = session.execute(count_stmt).scalar_one()
    rows = session.execute(
        stmt.order_by(ProjectSubmission.created_at.desc(), ProjectSubmission.id.desc())
        .offset((page - 1) * limit).limit(limit)
    ).scalars().all()
    return {
        "data": [submission_dict(s) for s in rows],
        "pagination": _pagination(page, limit, total),
    }


def pending_submission_count(session: Session) -> int:
    return session.execute(
        select(func.count(ProjectSubmission.id))
        .where(ProjectSubmission.status == SubmissionStatus.PENDING.value)
    ).scalar_one()


def get_submission_or_raise(session: Session, submission_id: int) -> ProjectSubmission:
    sub = get_entity(session, ProjectSubmission, submission_id)
    if sub is None:
        raise NotFoundError("Submission not found")
    return sub


def _ensure_pending(sub: ProjectSubmission) -> None:
    if sub.status != SubmissionStatus.PENDING.value:
        raise ConflictError("Submission has already been reviewed")


def approve_submission(
    session: Session, submission_id: int,
    review_notes: str | None = None, reviewed_by: str | None = None,
) -> tuple[ProjectSubmission, Project]:
    """Create the project and mark the submission approved (caller must commit)."""
    sub = get_submission_or_raise(session, submission_id)
    _ensure_pending(sub)
    proj = create_project(session, **{col: getattr(sub, col) for col in UPDATABLE_FIELDS})
    sub.status = SubmissionStatus.APPROVED.value
    sub.reviewed_by = reviewed_by
    sub.reviewed_at = datetime.now(UTC)
    sub.review_notes = review_notes
    sub.project_id = proj.id
    session.flush()
    return sub, proj


def reject_submission(
    session: Session, submission_id: int, rejection_reason: str | None,
    review_notes: str | None = None, reviewed_by: str | None = None,
) -> ProjectSubmission:
    sub = get_submission_or_raise(session, submission_id)
    _ensure_pending(sub)
    if not (rejection_reason or "").strip():
        raise ValidationError("Rejection reason is required")
    sub.status = SubmissionStatus.REJECTED.value
    sub.reviewed_by = reviewed_by
    sub.reviewed_at = datetime.now(UTC)
    sub.rejection_reason = rejection_reason.strip()
    sub.review_notes = review_notes
    session.flush()
    return sub


def delete_submission(session: Session, submission_id: int) -> None:
    session.delete(get_submission_or_raise(session, submission_id))
    session.flush()


# ---------------------------------------------------------------------------
# Stats
# ---------------------------------------------------------------------------


def compute_stats(session: Session) -> dict[str, Any]:
    def count(model, *where) -> int:
        stmt = select(func.count(model.id))
        if where:
            stmt = stmt.where(*where)
        return session.execute(stmt).scalar_one()

    by_tier = dict(session.execute(
        select(AIRating.tier, func.count(AIRating.id)).group_by(AIRating.tier)
    ).all())
    return {
        "projects": count(Project),
        "aiRatings": count(AIRating),
        "communityRatings": count(UserRating),
        "pendingSubmissions": count(
            ProjectSubmission, ProjectSubmission.status == SubmissionStatus.PENDING.value,
        ),
        "byTier": by_tier,
    }
