"""Scoring policy: lever weights, weighted survival score and tier mapping.

The six levers and their weights are fixed.  The survival score is the
dot product of the lever scores with the weight table; the tier is a
letter grade taken from the survival score with lower-bound-inclusive
thresholds.
"""
from __future__ import annotations

import math
from enum import Enum
from typing import Any, Mapping

from survival_index.errors import ValidationError

# Declaration order matters: it breaks ties when ranking levers.
LEVER_WEIGHTS: dict[str, float] = {
    "insightCompression": 0.20,
    "substrateEfficiency": 0.18,
    "broadUtility": 0.22,
    "awareness": 0.15,
    "agentFriction": 0.15,
    "humanCoefficient": 0.10,
}
LEVERS: tuple[str, ...] = tuple(LEVER_WEIGHTS)

# Lever name -> ORM column name
LEVER_COLUMNS: dict[str, str] = {
    "insightCompression": "insight_compression",
    "substrateEfficiency": "substrate_efficiency",
    "broadUtility": "broad_utility",
    "awareness": "awareness",
    "agentFriction": "agent_friction",
    "humanCoefficient": "human_coefficient",
}

MIN_SCORE = 0.0
MAX_SCORE = 10.0


class Tier(str, Enum):
    S = "S"
    A = "A"
    B = "B"
    C = "C"
    D = "D"
    F = "F"


# (lower bound, tier), checked top-down
TIER_THRESHOLDS: tuple[tuple[float, Tier], ...] = (
    (9.0, Tier.S),
    (8.0, Tier.A),
    (7.0, Tier.B),
    (6.0, Tier.C),
    (5.0, Tier.D),
)

TIER_ORDER = {t: i for i, t in enumerate((Tier.F, Tier.D, Tier.C, Tier.B, Tier.A, Tier.S))}


def _as_number(lever: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"Lever score for {lever} must be a number, got {value!r}")
    value = float(value)
    if math.isnan(value):
        raise ValidationError(f"Lever score for {lever} is NaN")
    return value


def validate_scores(scores: Mapping[str, Any]) -> dict[str, float]:
    """Return the six lever scores as floats; reject missing, non-numeric or out-of-range values."""
    if not isinstance(scores, Mapping):
        raise ValidationError("scores must be an object with six lever fields")
    result: dict[str, float] = {}
    for lever in LEVERS:
        if lever not in scores or scores[lever] is None:
            raise ValidationError(f"Missing lever score: {lever}")
        value = _as_number(lever, scores[lever])
        if not MIN_SCORE <= value <= MAX_SCORE:
            raise ValidationError(
                f"All scores must be between {MIN_SCORE:g} and {MAX_SCORE:g} ({lever}={value})"
            )
        result[lever] = value
    return result


def weighted_score(scores: Mapping[str, Any]) -> float:
    """Weighted sum of the six lever scores.

    Raises ValidationError for a missing or non-numeric lever instead of
    letting NaN reach persistence.
    """
    if not isinstance(scores, Mapping):
        raise ValidationError("scores must be an object with six lever fields")
    total = 0.0
    for lever, weight in LEVER_WEIGHTS.items():
        if lever not in scores or scores[lever] is None:
            raise ValidationError(f"Missing lever score: {lever}")
        total += _as_number(lever, scores[lever]) * weight
    return total


def compute_tier(score: float) -> Tier:
    """Map a survival score to its tier. Total over all numbers."""
    value = _as_number("survivalScore", score)
    for lower, tier in TIER_THRESHOLDS:
        if value >= lower:
            return tier
    return Tier.F
