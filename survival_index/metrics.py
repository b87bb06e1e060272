"""External metrics collector for GitHub-hosted projects.

Metrics are advisory: every failure (no token, unparseable URL, HTTP
error, malformed payload) yields ``None`` and a warning, never an
exception.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx

log = logging.getLogger(__name__)

GITHUB_API = "https://api.github.com"
ACTIVITY_WINDOW_DAYS = 90
COMMITS_PAGE_SIZE = 100
ACTIVE_COMMIT_THRESHOLD = 10

_REPO_URL_RE = re.compile(r"github\.com[/:]([^/\s]+)/([^/\s?#]+)", re.IGNORECASE)


@dataclass
class ExternalMetrics:
    stars: int = 0
    forks: int = 0
    open_issues: int = 0
    watchers: int = 0
    language: str | None = None
    size: int = 0
    license: str | None = None
    topics: list[str] = field(default_factory=list)
    description: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    pushed_at: str | None = None
    recent_commits_count: int = 0
    is_active: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "stars": self.stars, "forks": self.forks, "openIssues": self.open_issues,
            "watchers": self.watchers, "language": self.language, "size": self.size,
            "license": self.license, "topics": list(self.topics),
            "description": self.description, "createdAt": self.created_at,
            "updatedAt": self.updated_at, "pushedAt": self.pushed_at,
            "recentCommitsCount": self.recent_commits_count, "isActive": self.is_active,
        }


def parse_repo_url(url: str | None) -> tuple[str, str] | None:
    """Extract ``(owner, repo)`` from a GitHub URL, or None if it doesn't look like one."""
    if not url:
        return None
    m = _REPO_URL_RE.search(url.strip())
    if not m:
        return None
    owner, repo = m.group(1), m.group(2).removesuffix(".git")
    if not owner or not repo:
        return None
    return owner, repo


def metrics_from_payload(repo: dict[str, Any], commits: list[Any]) -> ExternalMetrics:
    license_info = repo.get("license") or {}
    recent = len(commits)
    return ExternalMetrics(
        stars=int(repo.get("stargazers_count") or 0),
        forks=int(repo.get("forks_count") or 0),
        open_issues=int(repo.get("open_issues_count") or 0),
        watchers=int(repo.get("watchers_count") or 0),
        language=repo.get("language"),
        size=int(repo.get("size") or 0),
        license=license_info.get("name") if isinstance(license_info, dict) else None,
        topics=list(repo.get("topics") or []),
        description=repo.get("description"),
        created_at=repo.get("created_at"),
        updated_at=repo.get("updated_at"),
        pushed_at=repo.get("pushed_at"),
        recent_commits_count=recent,
        is_active=recent > ACTIVE_COMMIT_THRESHOLD,
    )


class MetricsCollector:
    """Fetches repository summary and recent commit activity from the GitHub REST API."""

    def __init__(
        self,
        token: str | None,
        timeout: float = 15.0,
        user_agent: str = "SurvivalIndexBot/1.0",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._token = (token or "").strip()
        self._timeout = timeout
        self._user_agent = user_agent
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self._token)

    def _client(self) -> httpx.AsyncClient:
        headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": self._user_agent,
            "Authorization": f"Bearer {self._token}",
        }
        return httpx.AsyncClient(
            base_url=GITHUB_API, headers=headers,
            timeout=httpx.Timeout(self._timeout), transport=self._transport,
        )

    async def get_repo(self, client: httpx.AsyncClient, owner: str, repo: str) -> dict[str, Any]:
        resp = await client.get(f"/repos/{owner}/{repo}")
        resp.raise_for_status()
        data = resp.json()
        if not isinstance(data, dict):
            raise ValueError(f"Unexpected repo payload for {owner}/{repo}")
        return data

    async def list_recent_commits(
        self, client: httpx.AsyncClient, owner: str, repo: str, since: datetime,
    ) -> list[Any]:
        resp = await client.get(
            f"/repos/{owner}/{repo}/commits",
            params={"since": since.isoformat(), "per_page": COMMITS_PAGE_SIZE},
        )
        resp.raise_for_status()
        data = resp.json()
        if not isinstance(data, list):
            raise ValueError(f"Unexpected commits payload for {owner}/{repo}")
        return data

    async def fetch_metrics(self, repo_url: str | None) -> ExternalMetrics | None:
        if not self.enabled:
            log.warning("No GitHub token configured, skipping metrics for %s", repo_url)
            return None
        parsed = parse_repo_url(repo_url)
        if parsed is None:
            log.warning("Invalid GitHub URL format: %r", repo_url)
            return None
        owner, repo = parsed
        since = datetime.now(UTC) - timedelta(days=ACTIVITY_WINDOW_DAYS)
        try:
            async with self._client() as client:
                summary = await self.get_repo(client, owner, repo)
                commits = await self.list_recent_commits(client, owner, repo, since)
            return metrics_from_payload(summary, commits)
        except Exception as exc:
            log.warning("GitHub metrics fetch failed for %s/%s: %s", owner, repo, exc)
            return None
