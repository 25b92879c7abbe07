import json

import pytest

from neon_pr.llm_schemas import (
    EnrichmentResponse,
    ExpectedMove,
    ImpactScorecard,
    LegitimacyGates,
)


def test_expected_move_is_clamped_and_ordered():
    mv = ExpectedMove.model_validate({"p50": 5000, "p90": -3, "bucket": "huge"})
    assert mv.p50 == 1000.0
    assert mv.p90 == 1000.0
    assert mv.bucket == "<5%"

    mv = ExpectedMove.model_validate({"p50": "40", "p90": "25", "bucket": "20-40%"})
    assert (mv.p50, mv.p90, mv.bucket) == (40.0, 40.0, "20-40%")


def test_non_numeric_values_fall_back():
    mv = ExpectedMove.model_validate({"p50": "lots", "p90": float("nan")})
    assert mv.p50 == 0.0
    assert mv.p90 == 0.0


def test_gates_accept_camel_case_and_strings():
    g = LegitimacyGates.model_validate(
        {
            "isWire": "true",
            "hasNamedCounterparty": 1,
            "hasQuantDetails": "yes",
            "hasIndependentCorroboration": True,
            "tickerVerified": "no",
            "redFlagsDetected": False,
        }
    )
    assert g.is_wire and g.has_named_counterparty and g.has_quant_details
    assert not g.ticker_verified
    assert not g.all_pass
    assert g.failed() == ["ticker_verified"]


def test_impact_total_inverts_execution_risk():
    perfect = ImpactScorecard(
        materiality=1, binding_level=1, counterparty_quality=1,
        specificity=1, corroboration=1, execution_risk=0,
    )
    assert perfect.total == pytest.approx(1.0)
    risky = ImpactScorecard.model_validate({"executionRisk": 7, "materiality": -2})
    assert risky.execution_risk == 1.0
    assert risky.materiality == 0.0
    assert risky.total == pytest.approx(0.0)


def test_response_sanitises_everything():
    raw = {
        "label": "acquisition_buyout",
        "catalyst_strength": 3,
        "expected_move": "not a dict",
        "confidence": "VERY HIGH",
        "rationale_short": "x" * 500,
        "blurb": "y" * 900,
        "gates": ["bad"],
        "decision": {"invest": "yes"},
        "pros": "single string",
        "cons": [1, None, "", "ok"],
        "red_flags": None,
        "sources": [{"title": "A", "url": "https://a.example/1"}, "junk"] + [{}] * 10,
    }
    r = EnrichmentResponse.parse_untrusted(raw)
    assert r.label == "ACQUISITION_BUYOUT"
    assert r.catalyst_strength == 1.0
    assert r.expected_move == ExpectedMove()
    assert r.confidence == "low"
    assert len(r.rationale_short) == 240
    assert len(r.blurb) == 600
    assert r.gates is None
    assert r.decision == "YES"
    assert r.pros == ["single string"]
    assert r.cons == ["1", "ok"]
    assert r.red_flags == []
    assert len(r.sources) == 6
    assert r.sources[0].url == "https://a.example/1"


def test_non_dict_is_rejected():
    assert EnrichmentResponse.parse_untrusted(["a"]) is None
    assert EnrichmentResponse.parse_untrusted("text") is None
    assert EnrichmentResponse.parse_untrusted(None) is None


def test_from_text_accepts_trailing_json_block():
    body = {"label": "OTHER", "expected_move": {"p50": 10, "p90": 30, "bucket": "10-20%"}}
    text = "Here is my analysis:\n" + json.dumps(body)
    r = EnrichmentResponse.from_text(text)
    assert r.expected_move.p90 == 30.0
    assert EnrichmentResponse.from_text("no json at all") is None
    assert EnrichmentResponse.from_text("") is None


def test_from_text_survives_deep_nesting():
    assert EnrichmentResponse.from_text("[" * 200_000 + "]" * 200_000) is None
    assert EnrichmentResponse.from_text("x " + '{"a": ' * 50_000 + "1" + "}" * 50_000) is None
