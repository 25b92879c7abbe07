import pytest

from neon_pr import alerts
from neon_pr.alerts import (
    COLOR_PASS,
    COLOR_PASS_LOW,
    COLOR_YES,
    AlertPayload,
    LogSink,
    _deping,
    _mask_webhook,
    build_message,
    color_by_decision,
    link_buttons,
    post_discord_json,
    sanitize_embed,
    thread_name,
)
from neon_pr.config import Settings
from neon_pr.llm_schemas import EnrichmentResponse
from neon_pr.models import Decision


class _Resp:
    def __init__(self, status, headers=None, text=""):
        self.status_code = status
        self.headers = headers or {}
        self.text = text


def _payload(**kw):
    base = dict(
        title="Acme signs $6 million supply agreement",
        symbol="ACME",
        category="TIER1_PARTNERSHIP",
        score=0.81,
        url="https://www.globenewswire.com/news-release/1",
        published_at="2024-05-01T12:00:00+00:00",
    )
    base.update(kw)
    return AlertPayload(**base)


def test_deping_breaks_mentions_but_not_emails():
    out = _deping("@everyone hi @here <@123> @bob ir@acme.com")
    assert "@everyone" not in out
    assert "@here" not in out
    assert "<@123>" not in out
    assert "@bob" not in out
    assert "ir@acme.com" in out


def test_mask_webhook():
    assert _mask_webhook(None) == "<unset>"
    assert _mask_webhook("https://discord.com/api/webhooks/1/abcdefghijkl") == "...efghijkl"


def test_sanitize_embed_limits():
    e = sanitize_embed(
        {
            "title": "t" * 300,
            "description": "d" * 5000,
            "fields": [{"name": "n", "value": "v" * 2000}] * 30,
        }
    )
    assert len(e["title"]) == 256
    assert len(e["description"]) == 4096
    assert len(e["fields"]) == 25
    assert len(e["fields"][0]["value"]) == 1024
    assert e["fields"][0]["value"].endswith("…")


def test_thread_name_is_bounded():
    est = EnrichmentResponse.model_validate({"expected_move": {"p50": 10, "p90": 55}})
    name = thread_name(_payload(estimate=est, decision=Decision.SPECULATIVE))
    assert name == "ACME — Acme signs $6 million supply agreement · p90~55% · SPECULATIVE"
    long = thread_name(_payload(title="x" * 300))
    assert len(long) == 95
    assert long.endswith("…")


def test_color_by_decision():
    assert color_by_decision(Decision.YES, True) == COLOR_YES
    assert color_by_decision(Decision.PASS, True) == COLOR_PASS_LOW
    assert color_by_decision(Decision.PASS, False) == COLOR_PASS


def test_message_for_degraded_alert():
    msg = build_message(_payload(blurb="Quick take unavailable."))
    main = msg["embeds"][0]
    names = [f["name"] for f in main["fields"]]
    assert "🧭 Decision" in names
    assert "ℹ️ Alert Context" in names
    assert "🎯 Expected Move" not in names
    assert main["title"].startswith("ACME — ")
    assert main["footer"]["text"].startswith("class=TIER1_PARTNERSHIP • score=0.81")
    assert len(msg["embeds"]) == 1
    assert msg["allowed_mentions"] == {"parse": []}


def test_link_buttons_from_sources():
    p = _payload(
        sources=[
            {"url": "https://www.sec.gov/x", "title": "8-K"},
            {"url": "https://news.partner.com/x", "title": "Partner"},
        ]
    )
    rows = link_buttons(p)
    labels = [b["label"] for row in rows for b in row["components"]]
    assert labels[:3] == ["Open PR", "SEC/Gov Source", "Counterparty Newsroom"]
    assert "Yahoo" in labels and "TradingView" in labels
    assert all(len(row["components"]) <= 5 for row in rows)
    assert all(b["style"] == 5 for row in rows for b in row["components"])


def test_post_retries_once_on_429(monkeypatch):
    calls = []
    replies = [_Resp(429, {"Retry-After": "0.1"}), _Resp(204)]

    def fake_post(url, json=None, timeout=None):
        calls.append(json)
        return replies.pop(0)

    slept = []
    monkeypatch.setattr(alerts.requests, "post", fake_post)
    monkeypatch.setattr(alerts.time, "sleep", lambda s: slept.append(s))

    assert post_discord_json({"content": "x"}, "https://discord.com/api/webhooks/1/t")
    assert len(calls) == 2
    assert slept == [0.5]


def test_post_reports_client_error(monkeypatch):
    monkeypatch.setattr(
        alerts.requests, "post", lambda url, json=None, timeout=None: _Resp(400, text="bad embed")
    )
    ok, status, err = alerts._post_discord_with_backoff("https://h/1/t", {})
    assert (ok, status, err) == (False, 400, "bad embed")
    assert post_discord_json({}, "https://h/1/t") is False


def test_post_without_webhook_is_skipped(monkeypatch):
    monkeypatch.setattr(alerts, "get_settings", lambda: Settings(discord_webhook_url=""))
    assert post_discord_json({}, "") is False


@pytest.mark.asyncio
async def test_log_sink_records_payloads():
    sink = LogSink()
    assert await sink.send(_payload())
    assert [p.symbol for p in sink.sent] == ["ACME"]


@pytest.mark.asyncio
async def test_log_sink_keeps_only_recent_payloads():
    sink = LogSink(keep=3)
    for i in range(5):
        await sink.send(_payload(symbol=f"S{i}"))
    assert [p.symbol for p in sink.sent] == ["S2", "S3", "S4"]
