"""Tests for the service layer: evaluation workflows, catalog, ratings, submissions."""
from __future__ import annotations

import random
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import func, select

from survival_index import services
from survival_index.errors import ConflictError, EvaluationError, NotFoundError, ValidationError
from survival_index.judge import Judge
from survival_index.models import AIRating, Project, ProjectSubmission, UserRating
from survival_index.scoring import LEVERS

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=UTC)

LEVER_SCORES = {
    "insightCompression": 8.0, "substrateEfficiency": 7.0, "broadUtility": 6.0,
    "awareness": 5.0, "agentFriction": 4.0, "humanCoefficient": 3.0,
}


@pytest.fixture()
def demo_service(session):
    judge = Judge(demo_mode=True, rng=random.Random(1234))
    return services.EvaluationService(services.ProjectStore(session), judge)


def _rate(session, project: Project, analyzed_at: datetime) -> AIRating:
    rating = AIRating(
        project_id=project.id, survival_score=7.0, tier="B", model="seed",
        last_analyzed_at=analyzed_at,
        **{services.LEVER_COLUMNS[lever]: 7.0 for lever in LEVERS},
    )
    session.add(rating)
    session.commit()
    return rating


def _rating_count(session, project_id: int) -> int:
    return session.execute(
        select(func.count(AIRating.id)).where(AIRating.project_id == project_id)
    ).scalar_one()


# ---------------------------------------------------------------------------
# Evaluation service
# ---------------------------------------------------------------------------


class TestEvaluateAndStore:
    @pytest.mark.asyncio
    async def test_creates_rating(self, session, make_project, demo_service):
        proj = make_project()
        outcome = await demo_service.evaluate_and_store(proj.id)

        rating = outcome["rating"]
        assert rating.project_id == proj.id
        assert rating.survival_score == outcome["evaluation"].survival_score
        assert rating.tier == outcome["evaluation"].tier.value
        assert rating.model == "demo-simulator"
        assert rating.last_analyzed_at is not None
        assert proj.ai_rating is rating

    @pytest.mark.asyncio
    async def test_not_found(self, demo_service):
        with pytest.raises(NotFoundError, match="Project with ID 999 not found"):
            await demo_service.evaluate_and_store(999)

    @pytest.mark.asyncio
    async def test_upsert_is_idempotent(self, session, make_project, demo_service):
        proj = make_project()
        first = await demo_service.evaluate_and_store(proj.id)
        first_id = first["rating"].id
        second = await demo_service.evaluate_and_store(proj.id)

        assert _rating_count(session, proj.id) == 1
        stored = session.execute(select(AIRating).where(AIRating.project_id == proj.id)).scalar_one()
        assert stored.id == first_id
        assert stored.survival_score == second["evaluation"].survival_score
        assert stored.insight_compression == second["evaluation"].scores["insightCompression"]

    @pytest.mark.asyncio
    async def test_failure_leaves_existing_rating(self, session, make_project):
        proj = make_project()
        _rate(session, proj, NOW)
        judge = AsyncMock(spec=Judge)
        judge.evaluate.side_effect = EvaluationError("AI Judge evaluation failed: bad JSON")
        service = services.EvaluationService(services.ProjectStore(session), judge)

        with pytest.raises(EvaluationError):
            await service.evaluate_and_store(proj.id)
        stored = session.execute(select(AIRating).where(AIRating.project_id == proj.id)).scalar_one()
        assert stored.model == "seed"

    @pytest.mark.asyncio
    async def test_metrics_snapshot(self, session, make_project, demo_service):
        from survival_index.metrics import ExternalMetrics

        proj = make_project(github_url="https://github.com/acme/testdb")
        collector = AsyncMock()
        collector.fetch_metrics.return_value = ExternalMetrics(stars=20, forks=3, open_issues=1)
        demo_service.judge._metrics = collector

        outcome = await demo_service.evaluate_and_store(proj.id)
        assert (outcome["rating"].github_stars, outcome["rating"].github_forks,
                outcome["rating"].github_issues) == (20, 3, 1)


class TestBatchEvaluate:
    @pytest.mark.asyncio
    async def test_partial_failure(self, make_project, demo_service):
        a = make_project("Alpha")
        b = make_project("Beta")
        result = await demo_service.batch_evaluate([a.id, 999, b.id])

        assert len(result["successful"]) == 2
        assert result["failed"] == [{"projectId": 999, "error": "Project with ID 999 not found"}]
        assert result["stats"] == {"total": 3, "successful": 2, "failed": 1}

    @pytest.mark.asyncio
    async def test_evaluation_error_isolated(self, session, make_project):
        a = make_project("Alpha")
        b = make_project("Beta")
        demo = Judge(demo_mode=True, rng=random.Random(1))

        async def flaky(project):
            if project.name == "Alpha":
                raise EvaluationError("AI Judge evaluation failed: timeout")
            return await demo.evaluate(project)

        judge = AsyncMock(spec=Judge)
        judge.evaluate.side_effect = flaky
        service = services.EvaluationService(services.ProjectStore(session), judge)
        result = await service.batch_evaluate([a.id, b.id])

        assert result["failed"] == [{"projectId": a.id, "error": "AI Judge evaluation failed: timeout"}]
        assert [o["project"].name for o in result["successful"]] == ["Beta"]

    @pytest.mark.asyncio
    async def test_summary_is_json_ready(self, make_project, demo_service):
        proj = make_project()
        summary = services.batch_summary(await demo_service.batch_evaluate([proj.id]))
        item = summary["successful"][0]
        assert item["project"]["name"] == "TestDB"
        assert item["aiRating"]["tier"] in {"S", "A", "B", "C", "D", "F"}
        assert set(LEVERS) <= set(item["aiRating"])

    @pytest.mark.asyncio
    async def test_empty(self, demo_service):
        result = await demo_service.batch_evaluate([])
        assert result["stats"] == {"total": 0, "successful": 0, "failed": 0}


class TestReevaluateStale:
    def test_candidate_selection(self, session, make_project):
        fresh = make_project("Fresh")
        old = make_project("Old")
        unrated = make_project("Unrated")
        _rate(session, fresh, NOW - timedelta(days=29))
        _rate(session, old, NOW - timedelta(days=31))

        store = services.ProjectStore(session)
        found = store.find_projects_needing_reevaluation(NOW - timedelta(days=30))
        assert [p.id for p in found] == [old.id, unrated.id]

    @pytest.mark.asyncio
    async def test_reevaluates_only_stale(self, session, make_project, demo_service):
        fresh = make_project("Fresh")
        old = make_project("Old")
        _rate(session, fresh, NOW - timedelta(days=29))
        _rate(session, old, NOW - timedelta(days=31))

        result = await demo_service.reevaluate_stale(30, now=NOW)

        assert result["stats"] == {"total": 1, "successful": 1, "failed": 0}
        assert result["successful"][0]["project"].id == old.id
        fresh_rating = session.execute(
            select(AIRating).where(AIRating.project_id == fresh.id)
        ).scalar_one()
        assert fresh_rating.model == "seed"


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


class TestCatalog:
    def test_create_and_duplicate(self, session):
        proj = services.create_project(
            session, name="  Ollama ", type="open-source", category="AI & Machine Learning",
            description="Local LLM runner",
        )
        session.commit()
        assert proj.name == "Ollama"
        with pytest.raises(ConflictError):
            services.create_project(
                session, name="Ollama", type="saas", category="AI & Machine Learning",
                description="dup",
            )

    def test_create_missing_fields(self, session):
        with pytest.raises(ValidationError, match="Missing required fields"):
            services.create_project(session, name="X", type="saas", category="Developer Tools")

    def test_invalid_enums(self, session):
        with pytest.raises(ValidationError, match="Invalid project type"):
            services.create_project(
                session, name="X", type="freeware", category="Developer Tools", description="d",
            )
        with pytest.raises(ValidationError, match="Invalid category"):
            services.create_project(
                session, name="X", type="saas", category="Toasters", description="d",
            )

    def test_update_ignores_none(self, session, make_project):
        proj = make_project(license="MIT")
        services.update_project(session, proj.id, {"description": "New", "license": None})
        assert proj.description == "New"
        assert proj.license == "MIT"

    def test_update_rename_conflict(self, session, make_project):
        make_project("A")
        b = make_project("B")
        with pytest.raises(ConflictError):
            services.update_project(session, b.id, {"name": "A"})

    def test_query_filters_and_pagination(self, session, make_project):
        for i in range(5):
            make_project(f"P{i}", type="saas" if i % 2 else "open-source")
        rated = make_project("Rated")
        _rate(session, rated, NOW)

        page = services.query_projects(session, project_type="open-source", limit=2)
        assert page["pagination"] == {
            "page": 1, "limit": 2, "total": 4, "totalPages": 2,
            "hasNextPage": True, "hasPrevPage": False,
        }
        assert all(p["type"] == "open-source" for p in page["data"])

        scored = services.query_projects(session, min_score=6.5, max_score=7.5)
        assert [p["name"] for p in scored["data"]] == ["Rated"]
        assert scored["data"][0]["aiRating"]["survivalScore"] == 7.0

    def test_leaderboard_order(self, session, make_project):
        for name, score in (("Low", 4.0), ("High", 9.1), ("Mid", 6.5)):
            proj = make_project(name)
            rating = _rate(session, proj, NOW)
            rating.survival_score = score
        make_project("Unrated")
        session.commit()
        assert [p["name"] for p in services.leaderboard(session)] == ["High", "Mid", "Low"]

    def test_delete_cascades(self, session, make_project):
        proj = make_project()
        _rate(session, proj, NOW)
        services.submit_user_rating(session, proj.id, LEVER_SCORES)
        session.commit()
        session.delete(proj)
        session.commit()
        assert session.execute(select(func.count(AIRating.id))).scalar_one() == 0
        assert session.execute(select(func.count(UserRating.id))).scalar_one() == 0


# ---------------------------------------------------------------------------
# Community ratings
# ---------------------------------------------------------------------------


class TestUserRatings:
    def test_submit_and_average(self, session, make_project):
        proj = make_project()
        services.submit_user_rating(session, proj.id, LEVER_SCORES, user_id="u1")
        services.submit_user_rating(session, proj.id, {k: 10 for k in LEVER_SCORES})
        session.commit()

        avg = services.average_user_ratings(session, proj.id)
        assert avg["count"] == 2
        assert avg["averages"]["insightCompression"] == pytest.approx(9.0)
        assert avg["averages"]["humanCoefficient"] == pytest.approx(6.5)

    def test_average_without_ratings(self, session, make_project):
        proj = make_project()
        assert services.average_user_ratings(session, proj.id) == {"count": 0, "averages": None}

    def test_out_of_range_rejected_before_store(self, session):
        # Project 999 does not exist: range validation must fail first.
        with pytest.raises(ValidationError, match="between 0 and 10"):
            services.submit_user_rating(session, 999, {**LEVER_SCORES, "awareness": 11})

    def test_unknown_project(self, session):
        with pytest.raises(NotFoundError):
            services.submit_user_rating(session, 999, LEVER_SCORES)


# ---------------------------------------------------------------------------
# Submissions
# ---------------------------------------------------------------------------


def _submit(session, name="NewTool", **overrides):
    fields = dict(type="saas", category="Developer Tools", description="A new tool",
                  submitted_by="Ada", submitter_email="ada@example.com")
    fields.update(overrides)
    sub = services.create_submission(session, name=name, **fields)
    session.commit()
    return sub


class TestSubmissions:
    def test_create_defaults(self, session):
        sub = _submit(session)
        assert sub.status == "pending"
        assert sub.logo == "📦"
        assert sub.submitted_by == "Ada"
        assert services.pending_submission_count(session) == 1

    def test_duplicate_pending(self, session):
        _submit(session)
        with pytest.raises(ConflictError, match="pending"):
            _submit(session)

    def test_name_taken_by_project(self, session, make_project):
        make_project("NewTool")
        with pytest.raises(ConflictError):
            _submit(session)

    def test_approve_creates_project(self, session):
        sub = _submit(session, logo="🚀")
        sub, proj = services.approve_submission(session, sub.id, review_notes="ok", reviewed_by="admin")
        session.commit()

        assert sub.status == "approved"
        assert sub.project_id == proj.id
        assert sub.reviewed_at is not None
        assert proj.name == "NewTool"
        assert proj.logo == "🚀"
        assert services.pending_submission_count(session) == 0

    def test_reject_requires_reason(self, session):
        sub = _submit(session)
        with pytest.raises(ValidationError, match="Rejection reason is required"):
            services.reject_submission(session, sub.id, "  ")
        sub = services.reject_submission(session, sub.id, "Out of scope")
        assert sub.status == "rejected"
        assert sub.rejection_reason == "Out of scope"

    def test_reviewed_is_terminal(self, session):
        sub = _submit(session)
        services.reject_submission(session, sub.id, "Spam")
        session.commit()
        with pytest.raises(ConflictError, match="already been reviewed"):
            services.approve_submission(session, sub.id)

    def test_query_by_status(self, session):
        _submit(session, "One")
        two = _submit(session, "Two")
        services.reject_submission(session, two.id, "No")
        session.commit()

        pending = services.query_submissions(session, status="pending")
        assert [s["name"] for s in pending["data"]] == ["One"]
        assert services.query_submissions(session)["pagination"]["total"] == 2
        with pytest.raises(ValidationError):
            services.query_submissions(session, status="maybe")

    def test_delete(self, session):
        sub = _submit(session)
        services.delete_submission(session, sub.id)
        session.commit()
        assert session.execute(select(func.count(ProjectSubmission.id))).scalar_one() == 0
        with pytest.raises(NotFoundError):
            services.get_submission_or_raise(session, sub.id)


def test_compute_stats(session, make_project):
    proj = make_project()
    _rate(session, proj, NOW)
    services.submit_user_rating(session, proj.id, LEVER_SCORES)
    _submit(session)
    session.commit()
    assert services.compute_stats(session) == {
        "projects": 1, "aiRatings": 1, "communityRatings": 1,
        "pendingSubmissions": 1, "byTier": {"B": 1},
    }
