from __future__ import annotations

import json

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from survival_index.models import Base, Project

# ---------------------------------------------------------------------------
# Fixtures: in-memory SQLite database
# ---------------------------------------------------------------------------


@pytest.fixture()
def engine():
    eng = create_engine("sqlite:///:memory:", connect_args={"check_same_thread": False})
    Base.metadata.create_all(eng)
    return eng


@pytest.fixture()
def session(engine):
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    sess = SessionLocal()
    try:
        yield sess
    finally:
        sess.close()


@pytest.fixture()
def make_project(session: Session):
    """Factory that persists a project with sensible defaults."""
    def _make(name: str = "TestDB", **overrides) -> Project:
        fields = {
            "type": "open-source",
            "category": "Databases & Data Storage",
            "description": "An embedded test database",
            "url": "https://testdb.dev",
            "github_url": None,
            "year_created": 2015,
        }
        fields.update(overrides)
        proj = Project(name=name, **fields)
        session.add(proj)
        session.commit()
        return proj
    return _make


def _judge_reply(**overrides) -> str:
    """A well-formed model reply following the output contract."""
    payload = {
        "scores": {
            "insightCompression": 8.5,
            "substrateEfficiency": 7.2,
            "broadUtility": 9.0,
            "awareness": 8.8,
            "agentFriction": 7.5,
            "humanCoefficient": 8.0,
        },
        "confidence": 0.85,
        "reasoning": {
            "insightCompression": "Deep storage engine expertise.",
            "substrateEfficiency": "Runs anywhere.",
            "broadUtility": "Used in every industry.",
            "awareness": "Household name.",
            "agentFriction": "Plain SQL interface.",
            "humanCoefficient": "Developers trust it.",
            "overall": "Will outlive most of its competitors.",
        },
        "suggestions": {
            "topPriorities": ["Improve substrate efficiency."],
            "quickWins": ["More examples."],
            "longTerm": ["Invest in agent tooling."],
        },
    }
    payload.update(overrides)
    return json.dumps(payload)


@pytest.fixture()
def judge_reply():
    return _judge_reply
