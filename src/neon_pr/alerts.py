"""Alert payloads, Discord rendering and the sinks that deliver them.

The per-item pipeline hands a fully built :class:`AlertPayload` to an
:class:`AlertSink`.  ``DiscordWebhookSink`` renders it into two embeds
plus a row of link buttons and posts through ``requests`` (on a worker
thread, so the event loop never blocks).  ``LogSink`` only records the
alert, which is handy for dry runs and tests.
"""

from __future__ import annotations

import asyncio
import re
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional, Protocol, Tuple
from urllib.parse import quote

import requests
from dateutil import parser as date_parser

from .config import Settings, get_settings
from .enrichment import (
    EnrichmentResult,
    confidence_emoji,
    human_cap,
    human_pct,
    meter01,
    strength_label,
)
from .llm_schemas import EnrichmentResponse, ImpactScorecard, LegitimacyGates
from .logging_utils import get_logger
from .models import ClassifiedItem, Decision
from .source_credibility import split_sources

log = get_logger("alerts")

# Discord hard limits
LIMITS = {
    "CONTENT": 2000,
    "TITLE": 256,
    "DESC": 4096,
    "FIELDS": 25,
    "FIELD_NAME": 256,
    "FIELD_VALUE": 1024,
    "EMBEDS": 10,
    "ROWS": 5,
    "BUTTONS": 5,
    "BUTTON_LABEL": 80,
}
THREAD_NAME_MAX = 95

COLOR_YES = 0x23D18B
COLOR_SPEC = 0xFFA657
COLOR_PASS_LOW = 0x666A70
COLOR_PASS = 0x738ADB

AUTHOR_NAME = "NEON·PR — Live Catalyst"


@dataclass
class AlertPayload:
    """Everything a sink needs to render one alert."""

    title: str
    symbol: str
    category: str
    score: float
    decision: Decision = Decision.PASS
    blurb: str = ""
    reasons: List[str] = field(default_factory=list)
    gates: LegitimacyGates = field(default_factory=LegitimacyGates)
    impact: Optional[ImpactScorecard] = None
    estimate: Optional[EnrichmentResponse] = None
    basics: Dict[str, Optional[float]] = field(default_factory=dict)
    pros: List[str] = field(default_factory=list)
    cons: List[str] = field(default_factory=list)
    red_flags: List[str] = field(default_factory=list)
    sources: List[Dict[str, Any]] = field(default_factory=list)
    url: Optional[str] = None
    published_at: Optional[str] = None

    @classmethod
    def from_result(cls, ci: ClassifiedItem, result: EnrichmentResult) -> "AlertPayload":
        est = result.estimate
        return cls(
            title=ci.item.title,
            symbol=ci.symbol or "",
            category=ci.klass.value,
            score=float(ci.score),
            decision=result.decision,
            blurb=result.blurb,
            reasons=list(result.reasons),
            gates=result.gates,
            impact=result.impact,
            estimate=est,
            basics=dict(result.basics),
            pros=list(est.pros) if est else [],
            cons=list(est.cons) if est else [],
            red_flags=list(est.red_flags) if est else [],
            sources=[s.model_dump() for s in est.sources] if est else [],
            url=ci.item.url,
            published_at=ci.item.published_at,
        )

    @property
    def p90(self) -> Optional[float]:
        return self.estimate.expected_move.p90 if self.estimate else None


class AlertSink(Protocol):
    async def send(self, payload: AlertPayload) -> bool:
        ...


# --- text helpers ------------------------------------------------------------


def _deping(text: Any) -> str:
    """Neutralize @everyone/@here and user/role mentions to avoid pings."""
    if text is None:
        return ""
    s = str(text)
    s = s.replace("@everyone", "@\u200beveryone").replace("@here", "@\u200bhere")
    s = s.replace("<@", "<@\u200b")
    # bare @User, but leave emails like foo@bar.com alone
    return re.sub(r"(?<!\w)@(?=[A-Za-z])", "@\u200b", s)


def _clip(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 1] + "…"


def _mask_webhook(url: Optional[str]) -> str:
    """Return a scrubbed identifier for a Discord webhook (avoid leaking secrets)."""
    if not url:
        return "<unset>"
    tail = str(url).rstrip("/").rsplit("/", 1)[-1]
    return f"...{tail[-8:]}"


def bullets(items: List[str], limit: int = 6) -> str:
    if not items:
        return "• _none_"
    return "\n".join(f"• {_deping(x)}" for x in items[:limit])


def short_date(iso: Optional[str]) -> str:
    if not iso:
        return ""
    try:
        return date_parser.parse(iso).strftime("%b %d, %Y")
    except (ValueError, OverflowError):
        return ""


def source_lines(sources: List[Dict[str, Any]], limit: int = 5) -> str:
    lines = []
    for s in sources[:limit]:
        url = s.get("url")
        if not url:
            continue
        label = _deping(s.get("title") or s.get("publisher") or url)[:90]
        meta = " · ".join(
            x for x in (s.get("publisher"), short_date(s.get("published_iso"))) if x
        )
        line = f"• [{label}]({url})"
        if meta:
            line += f" — _{_deping(meta)}_"
        lines.append(line)
    return "\n".join(lines) if lines else "• _none_"


def confidence_meter(conf: Optional[str]) -> str:
    return meter01({"high": 0.9, "medium": 0.6, "low": 0.3}.get(conf or "", 0.3), 10)


def color_by_decision(decision: Decision, below_threshold: bool) -> int:
    if decision is Decision.YES:
        return COLOR_YES
    if decision is Decision.SPECULATIVE:
        return COLOR_SPEC
    return COLOR_PASS_LOW if below_threshold else COLOR_PASS


def _gate_line(ok: bool, label: str) -> str:
    return f"{'✅' if ok else '❌'} {label}"


def thread_name(p: AlertPayload) -> str:
    parts = [f"{p.symbol} — {p.title}"]
    if p.p90 is not None:
        parts.append(f"p90~{round(p.p90)}%")
    parts.append(p.decision.value)
    name = " · ".join(parts)
    if len(name) <= THREAD_NAME_MAX:
        return name
    return name[: THREAD_NAME_MAX - 1] + "…"


# --- embed rendering ---------------------------------------------------------


def sanitize_embed(embed: Dict[str, Any]) -> Dict[str, Any]:
    """Clip an embed to Discord's size limits."""
    out = dict(embed)
    if out.get("title"):
        out["title"] = _clip(out["title"], LIMITS["TITLE"])
    if out.get("description"):
        out["description"] = _clip(out["description"], LIMITS["DESC"])
    if out.get("fields"):
        out["fields"] = [
            {
                "name": _clip(f.get("name") or "\u200b", LIMITS["FIELD_NAME"]),
                "value": _clip(f.get("value") or "\u200b", LIMITS["FIELD_VALUE"]),
                "inline": bool(f.get("inline", False)),
            }
            for f in out["fields"][: LIMITS["FIELDS"]]
        ]
    return out


def _pct01(v: float) -> str:
    return f"{round(v * 100)}%"


def _impact_value(impact: Optional[ImpactScorecard]) -> str:
    if impact is None:
        return "• _n/a_"
    pct = _pct01
    return "\n".join(
        [
            f"Total {meter01(impact.total, 12)}",
            f"Materiality {pct(impact.materiality)}  •  Binding {pct(impact.binding_level)}",
            f"Counterparty {pct(impact.counterparty_quality)}  •  "
            f"Specificity {pct(impact.specificity)}",
            f"Corroboration {pct(impact.corroboration)}  •  "
            f"ExecRisk {pct(impact.execution_risk)}",
        ]
    )


def build_main_embed(p: AlertPayload, move_threshold_pct: float = 40.0) -> Dict[str, Any]:
    est = p.estimate
    p90 = p.p90
    below = p90 is None or p90 < move_threshold_pct
    icon = {"YES": "✅", "SPECULATIVE": "⚠️"}.get(p.decision.value, "⛔")

    fields: List[Dict[str, Any]] = [
        {
            "name": "🧭 Decision",
            "value": f"**{icon} {p.decision.value}**\n{bullets(p.reasons, 4)}",
        }
    ]
    if est is not None:
        mv = est.expected_move
        fields.append(
            {
                "name": "🎯 Expected Move",
                "value": f"`{mv.bucket}`\n**p50 {human_pct(mv.p50)}**  •  "
                f"**p90 {human_pct(mv.p90)}**",
                "inline": True,
            }
        )
        fields.append(
            {
                "name": "🔥 Catalyst Strength",
                "value": f"`{meter01(est.catalyst_strength)}`",
                "inline": True,
            }
        )
        fields.append(
            {
                "name": "Confidence",
                "value": f"{confidence_emoji(est.confidence)} {est.confidence}\n"
                f"`{confidence_meter(est.confidence)}`",
                "inline": True,
            }
        )
    if p.decision is Decision.PASS or below:
        ctx = []
        if p.decision is Decision.PASS:
            ctx.append("Model decision: **PASS** (posted for awareness)")
        if below:
            ctx.append(
                f"Below alert threshold ({human_pct(p90)} < {human_pct(move_threshold_pct)})."
            )
        fields.append({"name": "ℹ️ Alert Context", "value": "\n".join(ctx)})

    g = p.gates
    fields.append(
        {
            "name": "✅ Verification Gates",
            "value": "\n".join(
                [
                    _gate_line(g.is_wire, "on wire/IR"),
                    _gate_line(g.has_named_counterparty, "named counterparty"),
                    _gate_line(g.has_quant_details, "quantitative details"),
                    _gate_line(g.has_independent_corroboration, "independent corroboration"),
                    _gate_line(g.ticker_verified, "ticker verified"),
                    "✅ no red flags" if not g.red_flags_detected else "❌ red flags",
                ]
            ),
        }
    )
    fields.append({"name": "📊 Impact Scorecard", "value": _impact_value(p.impact)})
    fields.append(
        {
            "name": "Basics",
            "value": f"cap **{human_cap(p.basics.get('market_cap_usd'))}**  •  "
            f"px **{_price(p.basics.get('price'))}**",
        }
    )
    if p.pros:
        fields.append({"name": "Drivers", "value": bullets(p.pros)})
    if p.cons:
        fields.append({"name": "Caveats", "value": bullets(p.cons)})

    strength = strength_label(est.catalyst_strength) if est else "n/a"
    embed: Dict[str, Any] = {
        "title": _deping(f"{p.symbol} — {p.title}"),
        "description": f"> {_deping(p.blurb)}",
        "color": color_by_decision(p.decision, below),
        "timestamp": _timestamp(p.published_at),
        "author": {"name": AUTHOR_NAME},
        "footer": {"text": f"class={p.category} • score={p.score:.2f} • {strength}"},
        "fields": fields,
    }
    if p.url:
        embed["url"] = p.url
    return sanitize_embed(embed)


def build_extras_embed(p: AlertPayload) -> Optional[Dict[str, Any]]:
    if not p.red_flags and not p.sources:
        return None
    return sanitize_embed(
        {
            "title": f"Risk & Sources — {p.symbol}",
            "color": color_by_decision(p.decision, False),
            "fields": [
                {"name": "⚠️ Red Flags", "value": bullets(p.red_flags)},
                {"name": "Sources", "value": source_lines(p.sources)},
            ],
        }
    )


def _price(px: Optional[float]) -> str:
    if px is None or px <= 0:
        return "n/a"
    return f"${px:.4f}" if px < 1 else f"${px:.2f}"


def _timestamp(iso: Optional[str]) -> str:
    if iso:
        try:
            dt = date_parser.parse(iso)
            if dt.tzinfo is None:
                dt = dt.replace(tzinfo=timezone.utc)
            return dt.astimezone(timezone.utc).isoformat()
        except (ValueError, OverflowError):
            pass
    return datetime.now(timezone.utc).isoformat()


def _button(label: str, url: str, emoji: str) -> Dict[str, Any]:
    return {
        "type": 2,
        "style": 5,
        "label": label[: LIMITS["BUTTON_LABEL"]],
        "url": url,
        "emoji": {"name": emoji},
    }


def link_buttons(p: AlertPayload) -> List[Dict[str, Any]]:
    """Link-button rows: primary sources first, then quote pages."""
    buckets = split_sources(p.url, p.sources)
    buttons: List[Dict[str, Any]] = []
    if buckets.wire_or_ir:
        src = buckets.wire_or_ir[0]
        pub = src.get("publisher")
        label = f"PR/IR: {str(pub)[:20]}" if pub else "Open PR / IR"
        buttons.append(_button(label, src["url"], "📰"))
    elif p.url:
        buttons.append(_button("Open PR", p.url, "📰"))
    if buckets.gov_or_filing:
        buttons.append(_button("SEC/Gov Source", buckets.gov_or_filing[0]["url"], "📄"))
    if buckets.counterparty:
        buttons.append(_button("Counterparty Newsroom", buckets.counterparty[0]["url"], "🤝"))

    sym = quote(p.symbol)
    buttons.append(_button("Yahoo", f"https://finance.yahoo.com/quote/{sym}", "🟣"))
    buttons.append(
        _button("OTC Markets", f"https://www.otcmarkets.com/stock/{sym}/overview", "🏷️")
    )
    buttons.append(
        _button("TradingView", f"https://www.tradingview.com/symbols/OTC-{sym}/", "📈")
    )

    rows = []
    for i in range(0, len(buttons), LIMITS["BUTTONS"]):
        rows.append({"type": 1, "components": buttons[i : i + LIMITS["BUTTONS"]]})
    return rows[: LIMITS["ROWS"]]


def build_message(
    p: AlertPayload, *, add_buttons: bool = True, move_threshold_pct: float = 40.0
) -> Dict[str, Any]:
    """Full webhook body for one alert."""
    embeds = [build_main_embed(p, move_threshold_pct)]
    extras = build_extras_embed(p)
    if extras is not None:
        embeds.append(extras)
    msg: Dict[str, Any] = {
        "embeds": embeds[: LIMITS["EMBEDS"]],
        "allowed_mentions": {"parse": []},
    }
    if add_buttons:
        msg["components"] = link_buttons(p)
    return msg


# --- delivery ----------------------------------------------------------------


def _post_discord_with_backoff(
    url: str, payload: dict, session=None
) -> Tuple[bool, Optional[int], Optional[str]]:
    """
    Synchronous post with header-aware backoff and one retry on 429.
    Return (ok, status_code, error_details).

    The error_details will contain Discord's response text for 4xx errors,
    making it possible to diagnose validation failures.
    """

    def _do_post():
        return (session or requests).post(url, json=payload, timeout=10)

    resp = _do_post()
    if 200 <= resp.status_code < 300:
        return True, resp.status_code, None
    if resp.status_code == 429:
        try:
            wait = float(
                resp.headers.get("X-RateLimit-Reset-After")
                or resp.headers.get("Retry-After")
                or 1.0
            )
        except (TypeError, ValueError):
            wait = 1.0
        # If a proxy gave milliseconds, scale to seconds
        if wait > 1000:
            wait = wait / 1000.0
        log.info("discord_rate_limited wait=%.2f url=%s", wait, _mask_webhook(url))
        time.sleep(min(max(wait, 0.5), 5.0))
        resp2 = _do_post()
        ok = 200 <= resp2.status_code < 300
        error_text = None if ok else resp2.text[:500]
        return ok, resp2.status_code, error_text
    error_text = resp.text[:500] if 400 <= resp.status_code < 500 else None
    return False, resp.status_code, error_text


def post_discord_json(payload: dict, webhook_url: Optional[str] = None, session=None) -> bool:
    """Post a prepared message body; returns True on 2xx, never raises."""
    url = webhook_url or get_settings().discord_webhook_url
    if not url:
        log.warning("discord_post_skipped reason=no_webhook")
        return False
    try:
        ok, status, err = _post_discord_with_backoff(url, payload, session=session)
    except requests.exceptions.RequestException as e:
        log.warning(
            "discord_post_error url=%s err=%s", _mask_webhook(url), str(e)[:200]
        )
        return False
    if not ok:
        log.warning(
            "discord_post_failed url=%s status=%s err=%s",
            _mask_webhook(url),
            status,
            err,
        )
    return ok


class DiscordWebhookSink:
    """Renders alerts as embeds and posts them to one webhook."""

    def __init__(self, webhook_url: Optional[str] = None, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.webhook_url = webhook_url or self.settings.discord_webhook_url
        self.session = requests.Session()

    async def send(self, payload: AlertPayload) -> bool:
        msg = build_message(
            payload,
            add_buttons=self.settings.discord_add_buttons,
            move_threshold_pct=self.settings.move_alert_threshold_pct,
        )
        ok = await asyncio.to_thread(
            post_discord_json, msg, self.webhook_url, self.session
        )
        log.info(
            "alert_sent sink=discord symbol=%s decision=%s ok=%s thread=%s",
            payload.symbol,
            payload.decision.value,
            ok,
            thread_name(payload),
        )
        return ok

    def close(self) -> None:
        self.session.close()


class LogSink:
    """Records alerts in the log without posting anywhere.

    The most recent ``keep`` payloads stay in ``sent`` for inspection.
    """

    def __init__(self, keep: int = 100) -> None:
        self.sent: Deque[AlertPayload] = deque(maxlen=max(1, keep))

    async def send(self, payload: AlertPayload) -> bool:
        self.sent.append(payload)
        log.info(
            "alert_logged symbol=%s category=%s score=%.3f decision=%s title=%s",
            payload.symbol,
            payload.category,
            payload.score,
            payload.decision.value,
            payload.title[:120],
        )
        return True

    def close(self) -> None:
        pass


def make_sink(settings: Optional[Settings] = None):
    s = settings or get_settings()
    if s.alert_sink == "log":
        return LogSink()
    return DiscordWebhookSink(settings=s)
