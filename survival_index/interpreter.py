"""Turn model replies (or demo-mode simulation) into a structured JudgeResult."""
from __future__ import annotations

import json
import logging
import random
import re
from typing import Any

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from survival_index.errors import ParseError
from survival_index.metrics import ExternalMetrics
from survival_index.scoring import LEVERS
from survival_index.utils import humanize_lever

log = logging.getLogger(__name__)

_FENCED_RE = re.compile(r"```[A-Za-z0-9_+-]*[ \t]*\r?\n?(.*?)```", re.DOTALL)


class Suggestions(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    top_priorities: list[str] = Field(default_factory=list)
    quick_wins: list[str] = Field(default_factory=list)
    long_term: list[str] = Field(default_factory=list)

    @field_validator("top_priorities", "quick_wins", "long_term", mode="before")
    @classmethod
    def _string_list(cls, v: Any) -> list[str]:
        if not isinstance(v, list):
            return []
        return [str(item) for item in v]


class JudgeResult(BaseModel):
    """Validated judge output. Lever ranges are checked by the caller."""

    scores: dict[str, Any]
    confidence: float
    reasoning: dict[str, str]
    suggestions: Suggestions | None = None

    @field_validator("reasoning", mode="before")
    @classmethod
    def _reasoning_strings(cls, v: Any) -> Any:
        if isinstance(v, dict):
            return {str(k): str(val) for k, val in v.items()}
        return v

    @field_validator("confidence")
    @classmethod
    def _confidence_in_unit_range(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("confidence must be within [0, 1]")
        return v

    @field_validator("suggestions", mode="before")
    @classmethod
    def _optional_suggestions(cls, v: Any) -> Any:
        return v if isinstance(v, dict) else None

    def suggestions_dict(self) -> dict[str, list[str]] | None:
        return self.suggestions.model_dump(by_alias=True) if self.suggestions else None


# ---------------------------------------------------------------------------
# Model path
# ---------------------------------------------------------------------------


def extract_json_text(text: str) -> str:
    """Strip a fenced code block (any language tag) and surrounding prose."""
    m = _FENCED_RE.search(text)
    candidate = m.group(1) if m else text
    candidate = candidate.strip()
    start, end = candidate.find("{"), candidate.rfind("}")
    if start != -1 and end > start:
        return candidate[start:end + 1]
    return candidate


def parse_response(text: str) -> JudgeResult:
    """Parse a model reply into a JudgeResult or raise ParseError."""
    raw_text = extract_json_text(text or "")
    try:
        data = json.loads(raw_text)
    except json.JSONDecodeError as exc:
        log.warning("Judge returned invalid JSON: %s", (text or "")[:200])
        raise ParseError("Failed to parse AI response: invalid JSON") from exc
    if not isinstance(data, dict):
        raise ParseError("Failed to parse AI response: expected a JSON object")
    missing = [k for k in ("scores", "confidence", "reasoning") if k not in data]
    if missing:
        raise ParseError(f"Invalid response structure: missing {', '.join(missing)}")
    try:
        return JudgeResult.model_validate(data)
    except pydantic.ValidationError as exc:
        raise ParseError(f"Invalid response structure: {exc.error_count()} field error(s)") from exc


# ---------------------------------------------------------------------------
# Demo path
# ---------------------------------------------------------------------------

# lever -> (base, random span); base score is drawn from [base, base + span)
DEMO_BASE_RANGES: dict[str, tuple[float, float]] = {
    "insightCompression": (7.0, 2.0),
    "substrateEfficiency": (7.5, 2.0),
    "broadUtility": (7.0, 2.5),
    "awareness": (6.5, 2.5),
    "agentFriction": (7.0, 2.0),
    "humanCoefficient": (6.5, 2.5),
}

FAMOUS_PROJECTS = frozenset({"PostgreSQL", "Git", "Redis", "Docker", "Kubernetes", "SQLite"})
ESTABLISHED_BEFORE = 2010
STAR_BONUS_THRESHOLD = 10_000


def _enum_value(value: Any) -> Any:
    return getattr(value, "value", value)


def demo_bonuses(project: Any, metrics: ExternalMetrics | None = None) -> dict[str, float]:
    """Fixed per-lever bonuses applied on top of the random base."""
    bonus = {lever: 0.0 for lever in LEVERS}
    if project.name in FAMOUS_PROJECTS:
        bonus["insightCompression"] += 1.5
        bonus["awareness"] += 2.0
        bonus["broadUtility"] += 1.5
    year = getattr(project, "year_created", None)
    if year and year < ESTABLISHED_BEFORE:
        bonus["insightCompression"] += 1.0
        bonus["humanCoefficient"] += 1.0
    if _enum_value(project.type) == "open-source":
        bonus["awareness"] += 0.5
        bonus["agentFriction"] += 0.5
    if metrics is not None and metrics.stars > STAR_BONUS_THRESHOLD:
        bonus["awareness"] += 1.0
    return bonus


def lowest_levers(scores: dict[str, float], n: int = 2) -> list[str]:
    """Levers ordered by ascending score; ties keep declaration order."""
    return sorted(LEVERS, key=lambda lever: scores[lever])[:n]


def synthesize(
    project: Any,
    metrics: ExternalMetrics | None = None,
    rng: random.Random | None = None,
) -> JudgeResult:
    """Simulate a judge reply without calling a model.

    Pass a seeded ``rng`` for reproducible output.
    """
    rng = rng or random.Random()
    bonus = demo_bonuses(project, metrics)
    scores: dict[str, float] = {}
    for lever in LEVERS:
        base, span = DEMO_BASE_RANGES[lever]
        raw = base + rng.random() * span + bonus[lever]
        scores[lever] = min(10.0, round(raw, 1))

    name = project.name
    category = _enum_value(project.category)
    is_open_source = _enum_value(project.type) == "open-source"
    year = getattr(project, "year_created", None)
    stars = f" with {metrics.stars} GitHub stars" if metrics is not None else ""
    established = f" Established in {year}." if year else ""

    reasoning = {
        "insightCompression": f"{name} demonstrates strong crystallized knowledge in {category}. "
                              f"Score: {scores['insightCompression']}/10",
        "substrateEfficiency": "Runs efficiently on standard hardware with good performance "
                               f"characteristics. Score: {scores['substrateEfficiency']}/10",
        "broadUtility": f"Cross-domain applicability in {category} use cases. "
                        f"Score: {scores['broadUtility']}/10",
        "awareness": f"Well-known in the {category} space{stars}. Score: {scores['awareness']}/10",
        "agentFriction": f"{'Open source with good' if is_open_source else 'Commercial with decent'} "
                         f"API/programmatic access. Score: {scores['agentFriction']}/10",
        "humanCoefficient": f"Developers {'have long trusted' if year and year < ESTABLISHED_BEFORE else 'appreciate'} "
                            f"this tool. Score: {scores['humanCoefficient']}/10",
        "overall": f"{name} shows strong survival characteristics as a {category} solution.{established} "
                   "Predicted to remain relevant in the AI era.",
    }

    weakest, second = lowest_levers(scores)
    suggestions = {
        "topPriorities": [
            f"Improve {humanize_lever(weakest)} - this is currently the weakest lever at {scores[weakest]}/10.",
            f"Focus on {humanize_lever(second)} to boost overall survival score.",
            "Maintain strengths in top-performing areas while addressing vulnerabilities.",
        ],
        "quickWins": [
            "Increase community engagement through documentation and tutorials.",
            "Create more examples and use cases to demonstrate value.",
        ],
        "longTerm": [
            "Build strategic partnerships to increase awareness and adoption.",
            "Invest in API design and developer experience for better agent integration.",
        ],
    }

    return JudgeResult.model_validate({
        "scores": scores,
        "confidence": round(0.85 + rng.random() * 0.10, 2),
        "reasoning": reasoning,
        "suggestions": suggestions,
    })
