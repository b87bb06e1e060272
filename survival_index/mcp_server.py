from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from mcp.server.fastmcp import FastMCP

from survival_index import export, services
from survival_index.config import get_settings
from survival_index.db import init_db, session_scope
from survival_index.errors import SurvivalIndexError
from survival_index.judge import Judge
from survival_index.scoring import LEVER_WEIGHTS, TIER_THRESHOLDS

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def survival_index_lifespan(server: FastMCP) -> AsyncIterator[None]:
    init_db()
    yield


mcp = FastMCP(
    "Survival Index",
    instructions=(
        "Survival Index rates software projects on how likely they are to stay relevant "
        "in the AI era. Start with get_stats() for an overview, then list_projects() or "
        "get_leaderboard() to browse, then get_project(id) for full details."
    ),
    lifespan=survival_index_lifespan,
    json_response=True,
)


def _evaluation_service(session) -> services.EvaluationService:
    return services.EvaluationService(services.ProjectStore(session), Judge.from_settings())


# ---------------------------------------------------------------------------
# Resource
# ---------------------------------------------------------------------------


@mcp.resource("survival-index://overview")
def survival_index_overview() -> str:
    """Levers, weights and tier thresholds used by the AI judge."""
    return json.dumps({
        "system": "Survival Index",
        "levers": dict(LEVER_WEIGHTS),
        "tiers": {tier.value: lower for lower, tier in TIER_THRESHOLDS},
        "mode": "demo" if get_settings().demo_mode else "production",
        "workflow": [
            "1. get_stats() - counts and tier breakdown.",
            "2. list_projects() / get_leaderboard() - browse the catalog.",
            "3. get_project(id) - full detail with AI and community ratings.",
            "4. evaluate_project(id) - run the AI judge and store the rating.",
            "5. reevaluate_stale(days_old) - refresh unrated and outdated ratings.",
        ],
    }, indent=2)


# ---------------------------------------------------------------------------
# Tools: Projects
# ---------------------------------------------------------------------------


@mcp.tool()
def list_projects(
    project_type: str | None = None, category: str | None = None,
    min_score: float | None = None, max_score: float | None = None,
    page: int = 1, limit: int = 20,
) -> dict:
    """List projects, newest first.

    Args:
        project_type: open-source, saas or hybrid.
        category: Exact category name, e.g. "Databases & Data Storage".
        min_score: Minimum AI survival score (0-10).
        max_score: Maximum AI survival score (0-10).
        page: 1-based page number.
        limit: Page size (max 100).
    """
    with session_scope() as session:
        try:
            return services.query_projects(
                session, project_type=project_type, category=category,
                min_score=min_score, max_score=max_score,
                page=max(1, page), limit=max(1, min(limit, 100)),
            )
        except SurvivalIndexError as exc:
            return {"error": str(exc)}


@mcp.tool()
def get_project(project_id: int) -> dict:
    """Get a project with its AI rating and community ratings."""
    with session_scope() as session:
        try:
            proj = services.get_project_or_raise(session, project_id)
        except SurvivalIndexError as exc:
            return {"error": str(exc)}
        return services.project_dict(proj, include_user_ratings=True)


@mcp.tool()
def get_leaderboard(limit: int = 100) -> list[dict]:
    """Rated projects ordered by survival score, best first."""
    with session_scope() as session:
        return services.leaderboard(session, limit=max(1, min(limit, 500)))


# ---------------------------------------------------------------------------
# Tools: AI Judge
# ---------------------------------------------------------------------------


@mcp.tool()
async def evaluate_project(project_id: int) -> dict:
    """Run the AI judge on one project and store the rating."""
    with session_scope() as session:
        try:
            outcome = await _evaluation_service(session).evaluate_and_store(project_id)
        except SurvivalIndexError as exc:
            return {"error": str(exc)}
        return {
            **services.evaluation_summary(outcome),
            "evaluation": outcome["evaluation"].to_dict(),
        }


@mcp.tool()
async def batch_evaluate(project_ids: list[int]) -> dict:
    """Evaluate several projects; failures are listed per project and never abort the batch."""
    if not project_ids:
        return {"error": "project_ids must be a non-empty list"}
    with session_scope() as session:
        result = await _evaluation_service(session).batch_evaluate(project_ids)
        return services.batch_summary(result)


@mcp.tool()
async def reevaluate_stale(days_old: int | None = None) -> dict:
    """Re-evaluate projects with no rating or a rating older than ``days_old`` days."""
    if days_old is None:
        days_old = get_settings().stale_days_default
    with session_scope() as session:
        result = await _evaluation_service(session).reevaluate_stale(max(0, days_old))
        return services.batch_summary(result)


# ---------------------------------------------------------------------------
# Tools: Export & Stats
# ---------------------------------------------------------------------------


@mcp.tool()
def export_all() -> dict:
    """Write every JSONL export to the configured export directory."""
    with session_scope() as session:
        return export.export_all(session, get_settings().export_dir)


@mcp.tool()
def get_stats() -> dict:
    """Record counts and AI rating tier breakdown."""
    with session_scope() as session:
        return services.compute_stats(session)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main():
    """Run the Survival Index MCP server over stdio."""
    logging.basicConfig(level=get_settings().log_level)
    mcp.run()


if __name__ == "__main__":
    main()
