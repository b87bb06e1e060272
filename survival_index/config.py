from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field

DEMO_MODE_KEY = "demo_mode"
DEFAULT_MODEL = "claude-sonnet-4-5-20250929"


def _env(name: str, default: str = "") -> str:
    return os.environ.get(name, default).strip()


def _resolve_project_root() -> Path:
    override = _env("SURVIVAL_INDEX_HOME")
    if override:
        return Path(override).expanduser().resolve()
    return Path.cwd().resolve()


def _default_database_url() -> str:
    url = _env("DATABASE_URL")
    if url:
        return url
    return f"sqlite:///{_resolve_project_root() / 'data' / 'survival_index.db'}"


def _default_export_dir() -> Path:
    override = _env("EXPORT_DIR")
    if override:
        return Path(override).expanduser().resolve()
    return _resolve_project_root() / "data"


class Settings(BaseModel):
    project_root: Path = Field(default_factory=_resolve_project_root)
    database_url: str = Field(default_factory=_default_database_url)
    export_dir: Path = Field(default_factory=_default_export_dir)

    llm_provider: str = Field(default_factory=lambda: _env("LLM_PROVIDER", "anthropic"))
    llm_model: str = Field(default_factory=lambda: _env("LLM_MODEL", DEFAULT_MODEL))
    anthropic_api_key: str = Field(default_factory=lambda: _env("ANTHROPIC_API_KEY"))
    openai_api_key: str = Field(default_factory=lambda: _env("OPENAI_API_KEY"))
    openai_base_url: str = Field(default_factory=lambda: _env("OPENAI_BASE_URL"))
    github_token: str = Field(default_factory=lambda: _env("GITHUB_TOKEN"))
    admin_token: str = Field(default_factory=lambda: _env("ADMIN_TOKEN"))

    request_timeout_seconds: float = Field(default_factory=lambda: float(_env("REQUEST_TIMEOUT", "15")))
    stale_days_default: int = Field(default_factory=lambda: int(_env("STALE_DAYS_DEFAULT", "30")))
    log_level: str = Field(default_factory=lambda: _env("LOG_LEVEL", "INFO").upper())

    user_agent: str = "SurvivalIndexBot/1.0 (+https://survivalindex.org)"

    @property
    def demo_mode(self) -> bool:
        """True when the model credential is the offline sentinel."""
        return self.anthropic_api_key == DEMO_MODE_KEY

    @property
    def metrics_enabled(self) -> bool:
        return bool(self.github_token)

    def ensure_directories(self) -> None:
        self.export_dir.mkdir(parents=True, exist_ok=True)
        if self.database_url.startswith("sqlite:///"):
            db_path = Path(self.database_url.removeprefix("sqlite:///"))
            db_path.parent.mkdir(parents=True, exist_ok=True)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
