from __future__ import annotations

import pytest
from sqlalchemy import func, select

from survival_index.config import DEFAULT_MODEL, Settings, get_settings
from survival_index.db import init_db, session_scope
from survival_index.models import Project


@pytest.fixture()
def clean_env(monkeypatch, tmp_path):
    for name in ("DATABASE_URL", "EXPORT_DIR", "ANTHROPIC_API_KEY", "GITHUB_TOKEN",
                 "LLM_MODEL", "STALE_DAYS_DEFAULT", "LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("SURVIVAL_INDEX_HOME", str(tmp_path))
    get_settings.cache_clear()
    yield monkeypatch
    get_settings.cache_clear()


class TestSettings:
    def test_defaults(self, clean_env, tmp_path):
        settings = Settings()
        assert settings.database_url == f"sqlite:///{tmp_path.resolve() / 'data' / 'survival_index.db'}"
        assert settings.export_dir == tmp_path.resolve() / "data"
        assert settings.llm_model == DEFAULT_MODEL
        assert settings.stale_days_default == 30
        assert settings.demo_mode is False
        assert settings.metrics_enabled is False

    def test_flags_from_env(self, clean_env):
        clean_env.setenv("ANTHROPIC_API_KEY", "demo_mode")
        clean_env.setenv("GITHUB_TOKEN", "ghp_x")
        clean_env.setenv("LOG_LEVEL", "debug")
        settings = Settings()
        assert settings.demo_mode is True
        assert settings.metrics_enabled is True
        assert settings.log_level == "DEBUG"

    def test_cached_until_cleared(self, clean_env):
        first = get_settings()
        assert get_settings() is first
        clean_env.setenv("STALE_DAYS_DEFAULT", "7")
        get_settings.cache_clear()
        assert get_settings().stale_days_default == 7


class TestDatabase:
    def test_init_creates_file_and_tables(self, clean_env, tmp_path):
        init_db()
        assert (tmp_path / "data" / "survival_index.db").exists()
        with session_scope() as session:
            assert session.execute(select(func.count(Project.id))).scalar_one() == 0

    def test_session_scope_rolls_back(self, clean_env, tmp_path):
        init_db(f"sqlite:///{tmp_path / 'scope.db'}")
        with pytest.raises(RuntimeError):
            with session_scope() as session:
                session.add(Project(name="X", type="saas", category="Developer Tools", description="d"))
                session.flush()
                raise RuntimeError("abort")
        with session_scope() as session:
            assert session.execute(select(func.count(Project.id))).scalar_one() == 0
