"""JSONL export of the catalog: one JSON object per line, newline-terminated."""
from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from survival_index import services
from survival_index.models import AIRating, Project, ProjectSubmission, SubmissionStatus, UserRating
from survival_index.utils import isoformat, json_parse

log = logging.getLogger(__name__)

PROJECTS_FILE = "projects.jsonl"
AI_RATINGS_FILE = "ai-ratings.jsonl"
COMMUNITY_RATINGS_FILE = "community-ratings.jsonl"
SUBMISSIONS_FILE = "submissions.jsonl"


def to_jsonl(records: Iterable[dict[str, Any]]) -> str:
    """Serialize records as newline-delimited JSON (empty string for no records)."""
    return "".join(json.dumps(r, ensure_ascii=False) + "\n" for r in records)


def _write(export_dir: Path, filename: str, records: list[dict[str, Any]]) -> dict[str, Any]:
    export_dir.mkdir(parents=True, exist_ok=True)
    (export_dir / filename).write_text(to_jsonl(records), encoding="utf-8")
    log.info("Exported %d records to %s", len(records), export_dir / filename)
    return {"count": len(records), "file": filename}


def project_record(proj: Project) -> dict[str, Any]:
    record: dict[str, Any] = {"id": proj.id}
    record.update({key: getattr(proj, col) for key, col in services.PROJECT_FIELDS})
    record["createdAt"] = isoformat(proj.created_at)
    record["updatedAt"] = isoformat(proj.updated_at)
    return record


def ai_rating_record(rating: AIRating) -> dict[str, Any]:
    return {
        "id": rating.id,
        "projectId": rating.project_id,
        "projectName": rating.project.name,
        **services.lever_scores(rating),
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


def community_rating_record(rating: UserRating) -> dict[str, Any]:
    return {
        "id": rating.id,
        "projectId": rating.project_id,
        "projectName": rating.project.name,
        **services.lever_scores(rating),
        "userId": rating.user_id,
        "createdAt": isoformat(rating.created_at),
    }


def submission_record(sub: ProjectSubmission) -> dict[str, Any]:
    record: dict[str, Any] = {"id": sub.id}
    record.update({key: getattr(sub, col) for key, col in services.PROJECT_FIELDS})
    record["submittedBy"] = sub.submitted_by
    record["submitterEmail"] = sub.submitter_email
    record["createdAt"] = isoformat(sub.created_at)
    return record


def export_projects(session: Session, export_dir: Path) -> dict[str, Any]:
    rows = session.execute(select(Project).order_by(Project.id)).scalars().all()
    return _write(export_dir, PROJECTS_FILE, [project_record(p) for p in rows])


def export_ai_ratings(session: Session, export_dir: Path) -> dict[str, Any]:
    rows = session.execute(
        select(AIRating).options(selectinload(AIRating.project)).order_by(AIRating.id)
    ).scalars().all()
    return _write(export_dir, AI_RATINGS_FILE, [ai_rating_record(r) for r in rows])


def export_community_ratings(session: Session, export_dir: Path) -> dict[str, Any]:
    rows = session.execute(
        select(UserRating).options(selectinload(UserRating.project)).order_by(UserRating.id)
    ).scalars().all()
    return _write(export_dir, COMMUNITY_RATINGS_FILE, [community_rating_record(r) for r in rows])


def export_submissions(session: Session, export_dir: Path) -> dict[str, Any]:
    rows = session.execute(
        select(ProjectSubmission)
        .where(ProjectSubmission.status == SubmissionStatus.PENDING.value)
        .order_by(ProjectSubmission.created_at.desc(), ProjectSubmission.id.desc())
    ).scalars().all()
    return _write(export_dir, SUBMISSIONS_FILE, [submission_record(s) for s in rows])


def export_all(session: Session, export_dir: Path) -> dict[str, Any]:
    exports = [
        export_projects(session, export_dir),
        export_ai_ratings(session, export_dir),
        export_community_ratings(session, export_dir),
        export_submissions(session, export_dir),
    ]
    return {"success": True, "timestamp": datetime.now(UTC).isoformat(), "exports": exports}
