from __future__ import annotations

import json
import random
from types import SimpleNamespace

import pytest

from survival_index.errors import ParseError
from survival_index.interpreter import (
    DEMO_BASE_RANGES,
    demo_bonuses,
    extract_json_text,
    lowest_levers,
    parse_response,
    synthesize,
)
from survival_index.metrics import ExternalMetrics
from survival_index.scoring import LEVERS


def _project(name="Acme", type="saas", year_created=2018, category="Developer Tools"):
    return SimpleNamespace(name=name, type=type, year_created=year_created, category=category)


# ---------------------------------------------------------------------------
# Model path
# ---------------------------------------------------------------------------


class TestExtractJson:
    def test_fenced_with_language_tag(self):
        assert extract_json_text('Here:\n```json\n{"a": 1}\n```\nthanks') == '{"a": 1}'

    def test_fenced_without_tag(self):
        assert extract_json_text('```\n{"a": 1}\n```') == '{"a": 1}'

    def test_bare_object_with_prose(self):
        assert extract_json_text('Sure! {"a": {"b": 2}} Hope that helps.') == '{"a": {"b": 2}}'

    def test_no_object(self):
        assert extract_json_text("no json here") == "no json here"


class TestParseResponse:
    def test_round_trip(self, judge_reply):
        text = judge_reply()
        expected = json.loads(text)
        result = parse_response(text)
        assert result.scores == expected["scores"]
        assert result.confidence == expected["confidence"]
        assert result.reasoning == expected["reasoning"]
        assert result.suggestions_dict() == expected["suggestions"]

    def test_fenced_reply(self, judge_reply):
        result = parse_response(f"```json\n{judge_reply()}\n```")
        assert result.scores["broadUtility"] == 9.0

    def test_suggestions_optional(self, judge_reply):
        payload = json.loads(judge_reply())
        del payload["suggestions"]
        result = parse_response(json.dumps(payload))
        assert result.suggestions is None
        assert result.suggestions_dict() is None

    @pytest.mark.parametrize("missing", ["scores", "confidence", "reasoning"])
    def test_missing_required_key(self, judge_reply, missing):
        payload = json.loads(judge_reply())
        del payload[missing]
        with pytest.raises(ParseError, match=f"missing {missing}"):
            parse_response(json.dumps(payload))

    def test_invalid_json(self):
        with pytest.raises(ParseError, match="invalid JSON"):
            parse_response("```json\n{scores: nope,}\n```")

    def test_empty_reply(self):
        with pytest.raises(ParseError):
            parse_response("")

    def test_non_object(self):
        with pytest.raises(ParseError):
            parse_response("[1, 2, 3]")

    def test_wrong_field_types(self, judge_reply):
        with pytest.raises(ParseError, match="Invalid response structure"):
            parse_response(judge_reply(confidence="very"))

    def test_lever_ranges_not_checked_here(self, judge_reply):
        payload = json.loads(judge_reply())
        payload["scores"]["awareness"] = 14
        assert parse_response(json.dumps(payload)).scores["awareness"] == 14


# ---------------------------------------------------------------------------
# Demo path
# ---------------------------------------------------------------------------


class TestDemoBonuses:
    def test_no_bonus(self):
        assert all(v == 0.0 for v in demo_bonuses(_project()).values())

    def test_famous_old_open_source_popular(self):
        proj = _project(name="PostgreSQL", type="open-source", year_created=1996)
        bonus = demo_bonuses(proj, ExternalMetrics(stars=15_000))
        assert bonus["insightCompression"] == pytest.approx(2.5)
        assert bonus["awareness"] == pytest.approx(3.5)
        assert bonus["broadUtility"] == pytest.approx(1.5)
        assert bonus["humanCoefficient"] == pytest.approx(1.0)
        assert bonus["agentFriction"] == pytest.approx(0.5)
        assert bonus["substrateEfficiency"] == 0.0

    def test_star_threshold_is_exclusive(self):
        assert demo_bonuses(_project(), ExternalMetrics(stars=10_000))["awareness"] == 0.0


class TestLowestLevers:
    def test_ascending(self):
        scores = {lever: 9.0 for lever in LEVERS}
        scores["awareness"] = 3.0
        scores["broadUtility"] = 4.0
        assert lowest_levers(scores) == ["awareness", "broadUtility"]

    def test_ties_keep_declaration_order(self):
        scores = {lever: 7.0 for lever in LEVERS}
        assert lowest_levers(scores) == ["insightCompression", "substrateEfficiency"]
        scores["humanCoefficient"] = 5.0
        scores["agentFriction"] = 5.0
        assert lowest_levers(scores) == ["agentFriction", "humanCoefficient"]


class TestSynthesize:
    @pytest.mark.parametrize("seed", range(20))
    def test_scores_within_documented_range(self, seed):
        proj = _project(name="Redis", type="open-source", year_created=2009)
        metrics = ExternalMetrics(stars=60_000)
        bonus = demo_bonuses(proj, metrics)
        result = synthesize(proj, metrics, random.Random(seed))
        for lever in LEVERS:
            base, span = DEMO_BASE_RANGES[lever]
            value = result.scores[lever]
            assert value <= 10.0
            assert value == round(value, 1)
            assert min(10.0, round(base + bonus[lever], 1)) <= value
            assert value <= min(10.0, round(base + span + bonus[lever], 1))
        assert 0.85 <= result.confidence <= 0.95

    def test_seed_determinism(self):
        proj = _project()
        a = synthesize(proj, None, random.Random(7))
        b = synthesize(proj, None, random.Random(7))
        assert a.model_dump() == b.model_dump()

    def test_clamped_to_ten(self):
        proj = _project(name="Git", type="open-source", year_created=2005)

        class _MaxRandom(random.Random):
            def random(self):
                return 0.999999

        result = synthesize(proj, ExternalMetrics(stars=50_000), _MaxRandom())
        assert result.scores["awareness"] == 10.0
        assert result.scores["insightCompression"] == 10.0

    def test_reasoning_and_suggestions(self):
        proj = _project(name="Acme")
        result = synthesize(proj, None, random.Random(3))
        assert set(result.reasoning) == set(LEVERS) | {"overall"}
        for lever in LEVERS:
            assert f"Score: {result.scores[lever]}/10" in result.reasoning[lever]
        assert "Acme" in result.reasoning["overall"]

        weakest = lowest_levers(result.scores)[0]
        suggestions = result.suggestions_dict()
        assert str(result.scores[weakest]) in suggestions["topPriorities"][0]
        assert len(suggestions["quickWins"]) == 2
        assert len(suggestions["longTerm"]) == 2

    def test_mentions_stars_when_metrics_present(self):
        result = synthesize(_project(), ExternalMetrics(stars=1234), random.Random(1))
        assert "1234 GitHub stars" in result.reasoning["awareness"]
