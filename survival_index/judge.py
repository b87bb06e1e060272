"""AI judge: metrics enrichment -> prompt -> model (or demo) -> weighted score and tier.

Architecture
------------
``Judge.evaluate(project)`` runs one evaluation end to end:

1. If the project has a GitHub URL, the metrics collector is asked for
   repository metrics.  Failure only drops the metrics block.
2. In demo mode the interpreter synthesizes a result locally; otherwise
   the prompt is sent through ``LLMClient.complete`` and the reply parsed.
3. Lever scores are range-checked, then combined into the survival
   score and tier by the scoring policy.

Any failure while judging or scoring surfaces as ``EvaluationError``
with the original exception chained.
"""
from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from survival_index.config import Settings, get_settings
from survival_index.errors import EvaluationError, InvocationError
from survival_index.interpreter import JudgeResult, parse_response, synthesize
from survival_index.metrics import ExternalMetrics, MetricsCollector
from survival_index.prompts import build_prompt
from survival_index.scoring import Tier, compute_tier, validate_scores, weighted_score

log = logging.getLogger(__name__)

DEMO_MODEL_NAME = "demo-simulator"


# ---------------------------------------------------------------------------
# LLM Client
# ---------------------------------------------------------------------------


class LLMClient:
    """Async text-completion client supporting Anthropic and OpenAI."""

    def __init__(
        self,
        provider: str | None = None,
        model: str | None = None,
        api_key: str | None = None,
        base_url: str | None = None,
        max_tokens: int = 4096,
    ):
        settings = get_settings()
        self.provider = provider or settings.llm_provider
        self.model = model or settings.llm_model
        self.max_tokens = max_tokens
        self._api_key = api_key
        self._base_url = base_url or settings.openai_base_url
        self._settings = settings
        self._client: Any = None
        self._init_client()

    def _init_client(self) -> None:
        if self.provider == "anthropic":
            import anthropic
            self._client = anthropic.AsyncAnthropic(
                api_key=self._api_key or self._settings.anthropic_api_key or None
            )
        elif self.provider in ("openai", "openai_compatible"):
            import openai
            kwargs: dict[str, Any] = {}
            key = self._api_key or self._settings.openai_api_key
            if key:
                kwargs["api_key"] = key
            if self._base_url:
                kwargs["base_url"] = self._base_url
            self._client = openai.AsyncOpenAI(**kwargs)
        else:
            raise ValueError(f"Unknown LLM provider: {self.provider!r}")

    async def complete(self, prompt: str) -> str:
        """Send a single user message, return the raw reply text."""
        try:
            if self.provider == "anthropic":
                response = await self._client.messages.create(
                    model=self.model,
                    max_tokens=self.max_tokens,
                    messages=[{"role": "user", "content": prompt}],
                )
                return response.content[0].text
            response = await self._client.chat.completions.create(
                model=self.model,
                max_tokens=self.max_tokens,
                response_format={"type": "json_object"},
                messages=[{"role": "user", "content": prompt}],
            )
            return response.choices[0].message.content or ""
        except Exception as exc:
            raise InvocationError(f"LLM API call failed: {exc}", retryable=True) from exc


# ---------------------------------------------------------------------------
# Evaluation result
# ---------------------------------------------------------------------------


@dataclass
class EvaluationResult:
    scores: dict[str, float]
    survival_score: float
    tier: Tier
    confidence: float
    reasoning: dict[str, str]
    model: str
    suggestions: dict[str, list[str]] | None = None
    metrics: ExternalMetrics | None = None
    analyzed_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "scores": dict(self.scores),
            "survivalScore": self.survival_score,
            "tier": self.tier.value,
            "confidence": self.confidence,
            "reasoning": dict(self.reasoning),
            "model": self.model,
            "analyzedAt": self.analyzed_at.isoformat(),
        }
        if self.suggestions is not None:
            out["suggestions"] = self.suggestions
        if self.metrics is not None:
            out["metrics"] = self.metrics.to_dict()
        return out


# ---------------------------------------------------------------------------
# Judge
# ---------------------------------------------------------------------------


class Judge:
    """Stateless evaluator; collaborators are injected once at startup."""

    def __init__(
        self,
        client: LLMClient | None = None,
        metrics: MetricsCollector | None = None,
        demo_mode: bool = False,
        rng: random.Random | None = None,
    ):
        self._client = client
        self._metrics = metrics
        self.demo_mode = demo_mode
        self._rng = rng or random.Random()

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> Judge:
        settings = settings or get_settings()
        collector = MetricsCollector(
            settings.github_token,
            timeout=settings.request_timeout_seconds,
            user_agent=settings.user_agent,
        )
        client = None if settings.demo_mode else LLMClient()
        return cls(client=client, metrics=collector, demo_mode=settings.demo_mode)

    @property
    def model_name(self) -> str:
        if self.demo_mode or self._client is None:
            return DEMO_MODEL_NAME
        return self._client.model

    async def _collect_metrics(self, project: Any) -> ExternalMetrics | None:
        github_url = getattr(project, "github_url", None)
        if not github_url or self._metrics is None:
            return None
        try:
            metrics = await self._metrics.fetch_metrics(github_url)
        except Exception as exc:
            log.warning("Metrics collection raised for %s: %s", project.name, exc)
            return None
        if metrics is None:
            log.warning("No GitHub metrics for %s, evaluating without them", project.name)
        return metrics

    async def _judge(self, project: Any, metrics: ExternalMetrics | None) -> JudgeResult:
        if self.demo_mode:
            log.info("Demo mode: simulating judge scores for %s", project.name)
            return synthesize(project, metrics, self._rng)
        if self._client is None:
            raise InvocationError("No LLM client configured")
        text = await self._client.complete(build_prompt(project, metrics))
        return parse_response(text)

    async def evaluate(self, project: Any) -> EvaluationResult:
        log.info("AI Judge: evaluating project %r", project.name)
        metrics = await self._collect_metrics(project)
        try:
            result = await self._judge(project, metrics)
            scores = validate_scores(result.scores)
            survival = round(weighted_score(scores), 2)
            tier = compute_tier(survival)
        except Exception as exc:
            log.warning("AI Judge evaluation failed for %s: %s", project.name, exc)
            raise EvaluationError(f"AI Judge evaluation failed: {exc}") from exc

        return EvaluationResult(
            scores=scores,
            survival_score=survival,
            tier=tier,
            confidence=float(result.confidence),
            reasoning=dict(result.reasoning),
            model=self.model_name,
            suggestions=result.suggestions_dict(),
            metrics=metrics,
            analyzed_at=datetime.now(UTC),
        )
