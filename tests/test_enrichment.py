import json

import pytest

from neon_pr.classify import classify_item
from neon_pr.config import Settings
from neon_pr.enrichment import (
    DEFAULT_BLURB,
    EnrichmentGateway,
    build_payload,
    calibrate_move,
    decide,
    local_gates,
    strength_bucket,
    ticker_verified,
)
from neon_pr.llm_schemas import ExpectedMove, LegitimacyGates
from neon_pr.models import Decision
from neon_pr.score import score_classified

WIRE = "https://www.globenewswire.com/news-release/2024/05/01/1"

GOOD_TITLE = "Acme Corp (OTCQB: ACME) signs $6 million supply agreement with Northwind Trading Corp."


class FakeClient:
    def __init__(self, reply=None, exc=None):
        self.reply = reply
        self.exc = exc
        self.prompts = []

    async def query(self, prompt, *, system=None):
        self.prompts.append((prompt, system))
        if self.exc is not None:
            raise self.exc
        return self.reply


def _reply(**overrides):
    body = {
        "label": "TIER1_PARTNERSHIP",
        "catalyst_strength": 0.8,
        "expected_move": {"p50": 20, "p90": 60, "bucket": "20-40%"},
        "confidence": "high",
        "rationale_short": "Binding supply deal sized at ~30% of cap.",
        "blurb": "Acme lands a material supply deal.",
        "impact": {
            "materiality": 0.9,
            "binding_level": 0.9,
            "counterparty_quality": 0.7,
            "specificity": 0.8,
            "corroboration": 0.6,
            "execution_risk": 0.2,
        },
        "gates": {"isWire": False},
        "decision": {"invest": "PASS"},
        "sources": [{"title": "Reuters", "url": "https://www.reuters.com/acme"}],
    }
    body.update(overrides)
    return json.dumps(body)


@pytest.fixture
def settings(tmp_path):
    return Settings(calibration_cap_usd=50_000_000.0, db_path=tmp_path / "e.db")


def _ci(make_item, title=GOOD_TITLE, cap=20_000_000.0):
    return score_classified(classify_item(make_item(title=title, url=WIRE), cap))


@pytest.mark.asyncio
async def test_disabled_gateway_degrades_to_pass(make_item, settings):
    res = await EnrichmentGateway(None, settings).enrich(_ci(make_item))
    assert res.decision is Decision.PASS
    assert res.estimate is None
    assert res.error == "disabled"
    assert res.blurb == DEFAULT_BLURB


@pytest.mark.asyncio
async def test_client_exception_never_escapes(make_item, settings):
    gw = EnrichmentGateway(FakeClient(exc=RuntimeError("socket closed")), settings)
    res = await gw.enrich(_ci(make_item))
    assert res.decision is Decision.PASS
    assert res.estimate is None
    assert res.error.startswith("client_error")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "reply,error",
    [
        (None, "no_response"),
        ("not json", "invalid_response"),
        # nesting deep enough to exhaust the decoder
        ("[" * 200_000 + "]" * 200_000, "invalid_response"),
        ("note: " + '{"a": ' * 50_000 + "1" + "}" * 50_000, "invalid_response"),
    ],
)
async def test_empty_or_garbage_reply(make_item, settings, reply, error):
    res = await EnrichmentGateway(FakeClient(reply), settings).enrich(_ci(make_item))
    assert res.decision is Decision.PASS
    assert res.error == error


@pytest.mark.asyncio
async def test_local_gates_override_remote_verdict(make_item, settings):
    client = FakeClient(_reply())
    res = await EnrichmentGateway(client, settings).enrich(_ci(make_item), price=0.42)

    assert res.remote_decision == "PASS"
    assert res.remote_gates.is_wire is False
    assert res.gates.is_wire is True
    assert res.gates.all_pass
    assert res.decision is Decision.YES
    assert res.basics == {"market_cap_usd": 20_000_000.0, "price": 0.42}

    prompt, system = client.prompts[0]
    assert '"ticker": "ACME"' in prompt
    assert system


@pytest.mark.asyncio
async def test_remote_red_flags_force_pass(make_item, settings):
    client = FakeClient(_reply(red_flags=["promoter-paid coverage"]))
    res = await EnrichmentGateway(client, settings).enrich(_ci(make_item))
    assert res.gates.red_flags_detected
    assert res.decision is Decision.PASS
    assert "red_flags_detected" in res.reasons


@pytest.mark.asyncio
async def test_low_confidence_is_speculative(make_item, settings):
    res = await EnrichmentGateway(FakeClient(_reply(confidence="low")), settings).enrich(
        _ci(make_item)
    )
    assert res.decision is Decision.SPECULATIVE


def test_yes_requires_every_gate():
    all_ok = LegitimacyGates(
        is_wire=True,
        has_named_counterparty=True,
        has_quant_details=True,
        has_independent_corroboration=True,
        ticker_verified=True,
        red_flags_detected=False,
    )
    assert decide(all_ok, 0.9, "high") is Decision.YES
    assert decide(all_ok, 0.5, "high") is Decision.SPECULATIVE
    for name in (
        "is_wire",
        "has_named_counterparty",
        "has_quant_details",
        "has_independent_corroboration",
        "ticker_verified",
    ):
        broken = all_ok.model_copy(update={name: False})
        assert decide(broken, 1.0, "high") is Decision.PASS
    flagged = all_ok.model_copy(update={"red_flags_detected": True})
    assert decide(flagged, 1.0, "high") is Decision.PASS


def test_ticker_verification():
    assert ticker_verified("ACME", "Acme Corp (OTCQB: ACME) announces")
    assert ticker_verified("ACME", "shares of $ACME rose")
    assert not ticker_verified("ACME", "Acme Corp announces")
    assert not ticker_verified(None, "ACME")


def test_local_gates_corroboration_needs_independent_host(make_item):
    ci = _ci(make_item)
    assert not local_gates(ci, [{"url": "https://www.prnewswire.com/x"}]).has_independent_corroboration
    assert local_gates(ci, [{"url": "https://www.reuters.com/x"}]).has_independent_corroboration


@pytest.mark.parametrize(
    "p50,p90", [(0, 0), (5, 9), (80, 120), (400, 1000)]
)
def test_calibration_never_lowers(p50, p90):
    text = "Acme signs definitive merger agreement; $8 million contract; record FDA approval"
    before = ExpectedMove(p50=p50, p90=p90)
    after = calibrate_move(before, text, 10_000_000, 50_000_000)
    assert after.p50 >= before.p50
    assert after.p90 >= before.p90
    assert after.p90 >= after.p50


def test_calibration_floor_values():
    text = "Acme signs definitive merger agreement"
    mv = calibrate_move(ExpectedMove(p50=1, p90=2), text, 10_000_000, 50_000_000)
    # definitive + merger + (no ratio tier)
    assert mv.p50 == 20.0
    assert mv.p90 == 40.0


def test_calibration_skips_large_or_unknown_caps():
    text = "Acme signs definitive merger agreement"
    mv = ExpectedMove(p50=1, p90=2)
    assert calibrate_move(mv, text, 80_000_000, 50_000_000) == mv
    assert calibrate_move(mv, text, None, 50_000_000) == mv
    assert calibrate_move(mv, "quiet update", 10_000_000, 50_000_000) == mv


def test_payload_truncates_body(make_item):
    item = make_item(summary="z" * 10_000)
    payload = build_payload(classify_item(item), price=1.5)
    assert len(payload["press_release"]["body"]) == 6000
    assert payload["features"]["price"] == 1.5
    assert payload["press_release"]["on_wire"] is True


def test_strength_buckets():
    assert strength_bucket(0.9)[0] == "EXTREME"
    assert strength_bucket(0.7)[0] == "VERY STRONG"
    assert strength_bucket(0.5)[0] == "STRONG"
    assert strength_bucket(0.3)[0] == "MODERATE"
    assert strength_bucket(None)[0] == "WEAK"


def test_calibration_counts_build_and_permit_language():
    text = "Acme receives mining permit and closes project financing for construction"
    mv = calibrate_move(ExpectedMove(p50=0, p90=0), text, 10_000_000, 50_000_000)
    # permit + project financing + construction
    assert mv.p50 == 30.0
    assert mv.p90 == 60.0
