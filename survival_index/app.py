from __future__ import annotations

import logging
import secrets
import tempfile
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from functools import lru_cache
from pathlib import Path
from typing import Generator

from fastapi import Depends, FastAPI, File, HTTPException, Query, Request, Response, UploadFile
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from survival_index import export, services
from survival_index.config import get_settings
from survival_index.db import init_db, session_generator
from survival_index.errors import (
    ConflictError, EvaluationError, NotFoundError, SurvivalIndexError, ValidationError,
)
from survival_index.importer import import_projects_jsonl
from survival_index.judge import DEMO_MODEL_NAME, Judge
from survival_index.schemas import (
    ApproveBody,
    BatchEvaluateRequest,
    ProjectCreate,
    ProjectUpdate,
    RejectBody,
    SubmissionCreate,
    UserRatingCreate,
)

log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(
    title="Survival Index",
    version="1.0.0",
    description=(
        "Catalog of software projects rated by an AI judge across six weighted "
        "survival levers, plus community ratings, submissions and JSONL export. "
        "Admin endpoints require a Bearer ADMIN_TOKEN."
    ),
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Projects", "description": "Browse and manage the project catalog."},
        {"name": "Ratings", "description": "Community lever ratings."},
        {"name": "AI Judge", "description": "LLM-powered survival evaluation. Admin only."},
        {"name": "Submissions", "description": "Public project proposals and admin review."},
        {"name": "Export", "description": "JSONL export and import. Admin only."},
        {"name": "Status", "description": "Service mode and health."},
    ],
)


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------

_STATUS_CODES: dict[type[SurvivalIndexError], int] = {
    NotFoundError: 404,
    ValidationError: 400,
    ConflictError: 409,
    EvaluationError: 500,
}


@app.exception_handler(SurvivalIndexError)
async def survival_index_error_handler(request: Request, exc: SurvivalIndexError):
    status = next((code for cls, code in _STATUS_CODES.items() if isinstance(exc, cls)), 500)
    if status >= 500:
        log.warning("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status, content={"detail": str(exc)})


# ---------------------------------------------------------------------------
# Dependencies & Helpers
# ---------------------------------------------------------------------------


def db_session() -> Generator[Session, None, None]:
    yield from session_generator()


@lru_cache(maxsize=1)
def _default_judge() -> Judge:
    return Judge.from_settings()


def get_judge() -> Judge:
    return _default_judge()


_bearer = HTTPBearer(auto_error=False)


def require_admin(credentials: HTTPAuthorizationCredentials | None = Depends(_bearer)) -> str:
    """Accept only ``Authorization: Bearer <ADMIN_TOKEN>``; unset token locks admin routes."""
    expected = get_settings().admin_token
    if (
        not expected
        or credentials is None
        or not secrets.compare_digest(credentials.credentials.encode(), expected.encode())
    ):
        raise HTTPException(401, "Invalid or missing admin credentials",
                            headers={"WWW-Authenticate": "Bearer"})
    return "admin"


def _evaluation_service(session: Session, judge: Judge) -> services.EvaluationService:
    return services.EvaluationService(services.ProjectStore(session), judge)


# ---------------------------------------------------------------------------
# Routes: Status
# ---------------------------------------------------------------------------


@app.get("/", tags=["Status"], summary="Describe the API and its scoring mode")
async def root():
    settings = get_settings()
    return {
        "name": "Survival Index API",
        "version": app.version,
        "mode": "DEMO MODE" if settings.demo_mode else "PRODUCTION",
        "model": DEMO_MODEL_NAME if settings.demo_mode else settings.llm_model,
        "githubMetrics": settings.metrics_enabled,
        "endpoints": {
            "projects": "/api/projects",
            "leaderboard": "/api/projects/leaderboard",
            "ratings": "/api/ratings",
            "aiJudge": "/api/ai-judge",
            "submissions": "/api/submissions",
            "export": "/api/export",
            "health": "/api/health",
        },
    }


@app.get("/api/health", tags=["Status"], summary="Liveness check")
async def health():
    return {"status": "ok", "timestamp": datetime.now(UTC).isoformat()}


# ---------------------------------------------------------------------------
# Routes: Projects (leaderboard before parameterized to avoid route shadowing)
# ---------------------------------------------------------------------------


@app.get("/api/projects", tags=["Projects"], summary="List projects with filtering and pagination")
async def list_projects(
    project_type: str | None = Query(None, alias="type", description="open-source, saas or hybrid"),
    category: str | None = Query(None),
    min_score: float | None = Query(None, alias="minScore", ge=0, le=10),
    max_score: float | None = Query(None, alias="maxScore", ge=0, le=10),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    session: Session = Depends(db_session),
):
    return services.query_projects(
        session, project_type=project_type, category=category,
        min_score=min_score, max_score=max_score, page=page, limit=limit,
    )


@app.get("/api/projects/leaderboard", tags=["Projects"], summary="Rated projects by survival score")
async def get_leaderboard(
    limit: int = Query(100, ge=1, le=500),
    session: Session = Depends(db_session),
):
    return services.leaderboard(session, limit=limit)


@app.get("/api/projects/{project_id}", tags=["Projects"],
         summary="Get a project with its AI rating and community ratings")
async def get_project(project_id: int, session: Session = Depends(db_session)):
    return services.project_dict(
        services.get_project_or_raise(session, project_id), include_user_ratings=True,
    )


@app.post("/api/projects", status_code=201, tags=["Projects"], summary="Create a project")
async def create_project(
    body: ProjectCreate,
    session: Session = Depends(db_session),
    _admin: str = Depends(require_admin),
):
    proj = services.create_project(session, **body.to_columns())
    session.commit()
    return services.project_dict(proj)


@app.put("/api/projects/{project_id}", tags=["Projects"],
         summary="Update project fields (partial update, null fields ignored)")
async def update_project(
    project_id: int,
    body: ProjectUpdate,
    session: Session = Depends(db_session),
    _admin: str = Depends(require_admin),
):
    proj = services.update_project(session, project_id, body.to_columns())
    session.commit()
    return services.project_dict(proj)


@app.delete("/api/projects/{project_id}", status_code=204, tags=["Projects"],
            summary="Delete a project and its ratings")
async def delete_project(
    project_id: int,
    session: Session = Depends(db_session),
    _admin: str = Depends(require_admin),
):
    session.delete(services.get_project_or_raise(session, project_id))
    session.commit()
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Routes: Community ratings
# ---------------------------------------------------------------------------


@app.post("/api/ratings", status_code=201, tags=["Ratings"], summary="Submit a community rating")
async def submit_rating(body: UserRatingCreate, request: Request, session: Session = Depends(db_session)):
    rating = services.submit_user_rating(
        session, body.project_id, body.scores(),
        user_id=body.user_id,
        ip_address=request.client.host if request.client else None,
    )
    session.commit()
    return services.user_rating_dict(rating)


@app.get("/api/ratings/{project_id}", tags=["Ratings"], summary="List community ratings, newest first")
async def list_ratings(project_id: int, session: Session = Depends(db_session)):
    services.get_project_or_raise(session, project_id)
    return [services.user_rating_dict(r) for r in services.list_user_ratings(session, project_id)]


@app.get("/api/ratings/{project_id}/average", tags=["Ratings"], summary="Average community lever scores")
async def average_ratings(project_id: int, session: Session = Depends(db_session)):
    services.get_project_or_raise(session, project_id)
    return services.average_user_ratings(session, project_id)


# ---------------------------------------------------------------------------
# Routes: AI Judge
# ---------------------------------------------------------------------------


@app.post("/api/ai-judge/evaluate/{project_id}", tags=["AI Judge"],
          summary="Evaluate one project and store its AI rating")
async def evaluate_project(
    project_id: int,
    session: Session = Depends(db_session),
    judge: Judge = Depends(get_judge),
    _admin: str = Depends(require_admin),
):
    outcome = await _evaluation_service(session, judge).evaluate_and_store(project_id)
    return {
        **services.evaluation_summary(outcome),
        "evaluation": outcome["evaluation"].to_dict(),
    }


@app.post("/api/ai-judge/batch-evaluate", tags=["AI Judge"],
          summary="Evaluate several projects; failures are reported per project")
async def batch_evaluate(
    body: BatchEvaluateRequest,
    session: Session = Depends(db_session),
    judge: Judge = Depends(get_judge),
    _admin: str = Depends(require_admin),
):
    if not body.project_ids:
        raise HTTPException(400, "projectIds must be a non-empty list")
    result = await _evaluation_service(session, judge).batch_evaluate(body.project_ids)
    return services.batch_summary(result)


@app.post("/api/ai-judge/reevaluate-stale", tags=["AI Judge"],
          summary="Re-evaluate unrated projects and ratings older than daysOld")
async def reevaluate_stale(
    days_old: int | None = Query(None, alias="daysOld", ge=0),
    session: Session = Depends(db_session),
    judge: Judge = Depends(get_judge),
    _admin: str = Depends(require_admin),
):
    if days_old is None:
        days_old = get_settings().stale_days_default
    result = await _evaluation_service(session, judge).reevaluate_stale(days_old)
    return services.batch_summary(result)


# ---------------------------------------------------------------------------
# Routes: Submissions (pending/count before parameterized to avoid route shadowing)
# ---------------------------------------------------------------------------


@app.post("/api/submissions", status_code=201, tags=["Submissions"], summary="Propose a project")
async def create_submission(body: SubmissionCreate, session: Session = Depends(db_session)):
    sub = services.create_submission(session, **body.to_columns())
    session.commit()
    return services.submission_dict(sub)


@app.get("/api/submissions", tags=["Submissions"], summary="List submissions by status")
async def list_submissions(
    status: str | None = Query(None, description="pending, approved or rejected"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    session: Session = Depends(db_session),
    _admin: str = Depends(require_admin),
):
    return services.query_submissions(session, status=status, page=page, limit=limit)


@app.get("/api/submissions/pending/count", tags=["Submissions"], summary="Number of pending submissions")
async def pending_count(session: Session = Depends(db_session), _admin: str = Depends(require_admin)):
    return {"count": services.pending_submission_count(session)}


@app.get("/api/submissions/{submission_id}", tags=["Submissions"], summary="Get one submission")
async def get_submission(
    submission_id: int,
    session: Session = Depends(db_session),
    _admin: str = Depends(require_admin),
):
    return services.submission_dict(services.get_submission_or_raise(session, submission_id))


@app.post("/api/submissions/{submission_id}/approve", tags=["Submissions"],
          summary="Approve a submission, creating the project (optionally evaluating it)")
async def approve_submission(
    submission_id: int,
    body: ApproveBody | None = None,
    session: Session = Depends(db_session),
    judge: Judge = Depends(get_judge),
    _admin: str = Depends(require_admin),
):
    body = body or ApproveBody()
    sub, proj = services.approve_submission(
        session, submission_id, review_notes=body.review_notes, reviewed_by=body.reviewed_by,
    )
    session.commit()
    result = {"submission": services.submission_dict(sub), "project": services.project_dict(proj)}

    if body.trigger_ai_evaluation:
        try:
            outcome = await _evaluation_service(session, judge).evaluate_and_store(proj.id)
        except SurvivalIndexError as exc:
            log.warning("Evaluation after approving %s failed: %s", proj.name, exc)
            session.rollback()
            result["aiEvaluation"] = {"success": False, "error": str(exc)}
        else:
            result["aiEvaluation"] = {"success": True, "aiRating": services.rating_dict(outcome["rating"])}
    return result


@app.post("/api/submissions/{submission_id}/reject", tags=["Submissions"], summary="Reject a submission")
async def reject_submission(
    submission_id: int,
    body: RejectBody,
    session: Session = Depends(db_session),
    _admin: str = Depends(require_admin),
):
    sub = services.reject_submission(
        session, submission_id, body.rejection_reason,
        review_notes=body.review_notes, reviewed_by=body.reviewed_by,
    )
    session.commit()
    return services.submission_dict(sub)


@app.delete("/api/submissions/{submission_id}", status_code=204, tags=["Submissions"],
            summary="Delete a submission")
async def delete_submission(
    submission_id: int,
    session: Session = Depends(db_session),
    _admin: str = Depends(require_admin),
):
    services.delete_submission(session, submission_id)
    session.commit()
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Routes: Export & Import
# ---------------------------------------------------------------------------


@app.post("/api/export/projects", tags=["Export"], summary="Write projects.jsonl")
async def export_projects(session: Session = Depends(db_session), _admin: str = Depends(require_admin)):
    return export.export_projects(session, get_settings().export_dir)


@app.post("/api/export/ai-ratings", tags=["Export"], summary="Write ai-ratings.jsonl")
async def export_ai_ratings(session: Session = Depends(db_session), _admin: str = Depends(require_admin)):
    return export.export_ai_ratings(session, get_settings().export_dir)


@app.post("/api/export/community-ratings", tags=["Export"], summary="Write community-ratings.jsonl")
async def export_community_ratings(session: Session = Depends(db_session), _admin: str = Depends(require_admin)):
    return export.export_community_ratings(session, get_settings().export_dir)


@app.post("/api/export/submissions", tags=["Export"], summary="Write pending submissions.jsonl")
async def export_submissions(session: Session = Depends(db_session), _admin: str = Depends(require_admin)):
    return export.export_submissions(session, get_settings().export_dir)


@app.post("/api/export/generate", tags=["Export"], summary="Write every JSONL export")
async def export_everything(session: Session = Depends(db_session), _admin: str = Depends(require_admin)):
    return export.export_all(session, get_settings().export_dir)


@app.get("/api/export/stats", tags=["Export"], summary="Record counts and tier breakdown")
async def export_stats(session: Session = Depends(db_session), _admin: str = Depends(require_admin)):
    return services.compute_stats(session)


@app.post("/api/import", tags=["Export"], summary="Import projects from a projects.jsonl file")
async def import_file(
    file: UploadFile = File(...),
    session: Session = Depends(db_session),
    _admin: str = Depends(require_admin),
):
    if not file.filename or not file.filename.endswith(".jsonl"):
        raise HTTPException(400, "Only .jsonl files are supported")
    content = await file.read()
    tmp_path = None
    try:
        with tempfile.NamedTemporaryFile(suffix=".jsonl", delete=False) as f:
            tmp_path = Path(f.name)
            f.write(content)
        return import_projects_jsonl(tmp_path, session)
    finally:
        if tmp_path:
            tmp_path.unlink(missing_ok=True)


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


def main():
    import uvicorn
    logging.basicConfig(
        level=get_settings().log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run("survival_index.app:app", host="127.0.0.1", port=8001)


if __name__ == "__main__":
    main()
