"""Enrichment gateway: the trust boundary around the reasoning service.

The gateway builds the outbound payload for one classified item, asks
the remote service for a move estimate and reads the reply through
:class:`~neon_pr.llm_schemas.EnrichmentResponse`.  Nothing the service
says about legitimacy is trusted: the six gates and the final
:class:`~neon_pr.models.Decision` are recomputed here from the item
itself.  Micro-cap move estimates are raised to a deterministic floor
(:func:`calibrate_move`) because the service tends to under-call them.

``EnrichmentGateway.enrich`` never raises.  Any failure (disabled
feature, transport error, timeout, unparsable reply) yields a result
with ``estimate=None`` and ``decision=PASS``.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Protocol, Tuple

from .classify import PAT, has_named_counterparty, is_misinformation
from .config import Settings, get_settings
from .llm_schemas import EnrichmentResponse, ExpectedMove, ImpactScorecard, LegitimacyGates
from .logging_utils import get_logger
from .models import ClassifiedItem, Decision
from .numeric_extractor import has_quant_details, materiality, normalize_text
from .source_credibility import is_independent_source, is_on_wire

log = get_logger("enrichment")

BODY_LIMIT = 6000
YES_IMPACT_TOTAL = 0.6
DEFAULT_BLURB = "Quick take unavailable."

SYSTEM_PROMPT = """
You are an event-driven equities analyst embedded inside an automated alerting server.
The server ingests real-time press releases and a rules-based pipeline already classified
each item (event label + score). Your role is NOT to re-detect catalysts, but to estimate
the likely price impact and provide a concise explanation.

Constraints:
- Output STRICT JSON only. No prose outside JSON.
- Use ONLY provided features (do not invent market cap/price).
""".strip()

USER_TEMPLATE = """
Analyze the payload and return STRICT JSON with this shape:

{{
  "label": <event label>,
  "catalyst_strength": <0..1>,
  "expected_move": {{
    "p50": <percent 0..1000>,
    "p90": <percent 0..1000, >= p50>,
    "bucket": "<5%"|"5-10%"|"10-20%"|"20-40%"|"40-80%"|"80-150%"|"150-300%"|"300-500%"|"500%+"
  }},
  "confidence": "low"|"medium"|"high",
  "rationale_short": <string <= 240 chars>,
  "blurb": <2-3 sentences (<= 300 chars), no hype>,
  "impact": {{"materiality": <0..1>, "binding_level": <0..1>, "counterparty_quality": <0..1>,
              "specificity": <0..1>, "corroboration": <0..1>, "execution_risk": <0..1>}},
  "pros": [<string>], "cons": [<string>], "red_flags": [<string>],
  "sources": [{{"title": <string>, "url": <string>, "publisher": <string>, "published_iso": <string>}}]
}}

Guidance:
- If features are missing, set "confidence":"low" and keep moves modest.
- Small-cap contexts with definitive language (per-share cash, binding agreements) can justify
  extreme tails. Reserve 300-500% and 500%+ for rare, transformational micro-caps.
- For large caps, strong catalysts usually fall in <5% to 20-40%.

Payload:
{payload}
""".strip()


class LLMClient(Protocol):
    async def query(self, prompt: str, *, system: Optional[str] = None) -> Optional[str]:
        ...


# --- display helpers ---------------------------------------------------------

_STRENGTH_BUCKETS = (
    (0.85, "EXTREME", "🧨"),
    (0.70, "VERY STRONG", "🔥"),
    (0.50, "STRONG", "💥"),
    (0.25, "MODERATE", "📈"),
)


def strength_bucket(x: Optional[float]) -> Tuple[str, str]:
    """Return ``(name, emoji)`` for a catalyst strength in [0, 1]."""
    v = max(0.0, min(1.0, float(x or 0.0)))
    for cut, name, emoji in _STRENGTH_BUCKETS:
        if v >= cut:
            return name, emoji
    return "WEAK", "🌤️"


def strength_label(x: Optional[float]) -> str:
    name, emoji = strength_bucket(x)
    return f"{emoji} {name} ({round(max(0.0, min(1.0, x or 0.0)) * 100)}%)"


def confidence_emoji(conf: Optional[str]) -> str:
    if conf == "high":
        return "🟢"
    if conf == "medium":
        return "🟠"
    return "🟡"


def human_cap(x: Optional[float]) -> str:
    if not x or x <= 0:
        return "n/a"
    if x >= 1_000_000_000:
        return f"${x / 1_000_000_000:.2f}B"
    return f"${x / 1_000_000:.1f}M"


def human_pct(x: Optional[float]) -> str:
    if x is None:
        return "n/a"
    try:
        return f"{round(float(x))}%"
    except (TypeError, ValueError, OverflowError):
        return "n/a"


def meter01(x: Optional[float], width: int = 14) -> str:
    v = max(0.0, min(1.0, float(x or 0.0)))
    filled = round(v * width)
    return "█" * filled + "░" * (width - filled) + f" {round(v * 100)}%"


# --- local gates -------------------------------------------------------------

_RED_FLAGS = (
    re.compile(r"\bsubstantial doubt\b.*\bgoing[- ]concern\b", re.IGNORECASE),
    re.compile(r"\b(delisting|deficiency) (notice|notification|letter)\b", re.IGNORECASE),
    re.compile(r"\b(SEC|trading) suspension\b|\bsuspend(?:s|ed)? trading\b", re.IGNORECASE),
    re.compile(r"\b(equity line|ELOC|toxic|death spiral)\b", re.IGNORECASE),
    re.compile(r"\bpaid (promotion|advertisement|advertorial)\b|\bcompensated\b.*\bpromot", re.IGNORECASE),
)

_EXCHANGE_TAG = r"(?:NASDAQ|Nasdaq|NYSE(?: American)?|OTC(?:QB|QX| Pink|MKTS)?|Pink|TSXV?|CSE|CBOE)"


def has_local_red_flags(text: str) -> bool:
    if is_misinformation(text) or PAT["law_firm_pr"].search(text):
        return True
    return any(rx.search(text) for rx in _RED_FLAGS)


def ticker_verified(symbol: Optional[str], text: str) -> bool:
    """Symbol appears exchange-tagged, as a cashtag, or as a standalone word."""
    if not symbol:
        return False
    sym = re.escape(symbol)
    patterns = (
        rf"\b{_EXCHANGE_TAG}\s*:\s*{sym}\b",
        rf"\${sym}\b",
        rf"(?<![A-Za-z0-9.$]){sym}(?![A-Za-z0-9])",
    )
    return any(re.search(p, text) for p in patterns)


def local_gates(
    ci: ClassifiedItem,
    sources: Iterable[Dict[str, Any]] = (),
    remote_red_flags: Iterable[str] = (),
) -> LegitimacyGates:
    text = normalize_text(ci.item.text)
    url = ci.item.url
    independent = any(is_independent_source(s.get("url"), url) for s in sources)
    return LegitimacyGates(
        is_wire=is_on_wire(url, text),
        has_named_counterparty=has_named_counterparty(text),
        has_quant_details=has_quant_details(text),
        has_independent_corroboration=independent,
        ticker_verified=ticker_verified(ci.symbol, text),
        red_flags_detected=has_local_red_flags(text) or any(remote_red_flags),
    )


def decide(
    gates: LegitimacyGates, impact_total: float, confidence: Optional[str]
) -> Decision:
    if not gates.all_pass:
        return Decision.PASS
    if impact_total >= YES_IMPACT_TOTAL and confidence in ("medium", "high"):
        return Decision.YES
    return Decision.SPECULATIVE


# --- calibration -------------------------------------------------------------

CALIBRATION_KEYWORDS = (
    # financing / build / production / permit milestones
    "project finance",
    "project financing",
    "credit facility",
    "construction",
    "commercial production",
    "production",
    "permit",
    "offtake",
    # deal language
    "definitive",
    "binding",
    "per share",
    "merger",
    "acquisition",
    "fda",
    "approval",
    "contract",
    "purchase order",
    "exclusive",
    "record",
)
_CALIBRATION_RX = tuple(
    re.compile(r"\b" + re.escape(k) + r"\b", re.IGNORECASE) for k in CALIBRATION_KEYWORDS
)
RATIO_FLOOR_BONUS = (0, 8, 15, 25, 40)
FLOOR_P50_MAX = 150.0
FLOOR_P90_MAX = 1000.0


def keyword_hits(text: str) -> int:
    return sum(1 for rx in _CALIBRATION_RX if rx.search(text))


def calibrate_move(
    move: ExpectedMove,
    text: Optional[str],
    market_cap: Optional[float],
    cap_threshold: float,
) -> ExpectedMove:
    """Raise p50/p90 to a keyword/ratio floor for small caps; never lowers either."""
    if market_cap is None or market_cap <= 0 or market_cap >= cap_threshold:
        return move
    blob = normalize_text(text)
    hits = keyword_hits(blob)
    tier = materiality(blob, market_cap).ratio_tier
    if hits == 0 and tier == 0:
        return move
    floor_p50 = min(FLOOR_P50_MAX, 10.0 * hits + RATIO_FLOOR_BONUS[tier])
    floor_p90 = min(FLOOR_P90_MAX, 2.0 * floor_p50)
    p50 = max(move.p50, floor_p50)
    p90 = max(move.p90, floor_p90, p50)
    if (p50, p90) != (move.p50, move.p90):
        log.debug(
            "move_calibrated cap=%s hits=%d tier=%d p50=%.1f->%.1f p90=%.1f->%.1f",
            market_cap,
            hits,
            tier,
            move.p50,
            p50,
            move.p90,
            p90,
        )
    return ExpectedMove(p50=p50, p90=p90, bucket=move.bucket)


# --- gateway -----------------------------------------------------------------


@dataclass
class EnrichmentResult:
    decision: Decision = Decision.PASS
    gates: LegitimacyGates = field(default_factory=LegitimacyGates)
    estimate: Optional[EnrichmentResponse] = None
    impact: Optional[ImpactScorecard] = None
    reasons: List[str] = field(default_factory=list)
    basics: Dict[str, Optional[float]] = field(default_factory=dict)
    error: Optional[str] = None
    # Remote verdicts, kept for audit only.
    remote_decision: Optional[str] = None
    remote_gates: Optional[LegitimacyGates] = None

    @property
    def blurb(self) -> str:
        if self.estimate and self.estimate.blurb:
            return self.estimate.blurb
        return DEFAULT_BLURB


def build_payload(ci: ClassifiedItem, price: Optional[float] = None) -> Dict[str, Any]:
    item = ci.item
    return {
        "ticker": ci.symbol or "NA",
        "press_release": {
            "title": item.title,
            "body": (item.summary or "")[:BODY_LIMIT],
            "wire": item.source or None,
            "url": item.url,
            "time_utc": item.published_at,
            "on_wire": is_on_wire(item.url, item.text),
        },
        "features": {
            "market_cap_usd": ci.market_cap,
            "price": price,
            "rule_label": ci.klass.value,
            "rule_score": round(float(ci.score), 4),
        },
    }


def build_prompt(payload: Dict[str, Any]) -> str:
    return USER_TEMPLATE.format(payload=json.dumps(payload, ensure_ascii=False))


class EnrichmentGateway:
    def __init__(self, client: Optional[LLMClient] = None, settings: Optional[Settings] = None):
        self.client = client
        self.settings = settings or get_settings()

    def _degraded(
        self, ci: ClassifiedItem, basics: Dict[str, Optional[float]], error: str
    ) -> EnrichmentResult:
        gates = local_gates(ci)
        return EnrichmentResult(
            decision=Decision.PASS,
            gates=gates,
            reasons=[f"enrichment_unavailable: {error}"] + gates.failed(),
            basics=basics,
            error=error,
        )

    async def enrich(self, ci: ClassifiedItem, price: Optional[float] = None) -> EnrichmentResult:
        basics = {"market_cap_usd": ci.market_cap, "price": price}
        if self.client is None:
            return self._degraded(ci, basics, "disabled")

        payload = build_payload(ci, price)
        try:
            text = await self.client.query(build_prompt(payload), system=SYSTEM_PROMPT)
        except Exception as e:
            # Injected clients are external collaborators; nothing escapes the gateway.
            log.warning("enrichment_client_error symbol=%s err=%s", ci.symbol, str(e))
            return self._degraded(ci, basics, f"client_error: {e}")
        if not text:
            return self._degraded(ci, basics, "no_response")

        est = EnrichmentResponse.from_text(text)
        if est is None:
            log.warning("llm_response_invalid symbol=%s len=%d", ci.symbol, len(text))
            return self._degraded(ci, basics, "invalid_response")

        move = calibrate_move(
            est.expected_move,
            ci.item.text,
            ci.market_cap,
            self.settings.calibration_cap_usd,
        )
        est = est.model_copy(update={"expected_move": move})

        sources = [s.model_dump() for s in est.sources]
        gates = local_gates(ci, sources, est.red_flags)
        impact = est.impact
        total = impact.total if impact else 0.0
        decision = decide(gates, total, est.confidence)

        reasons = list(est.reasons) or ([est.rationale_short] if est.rationale_short else [])
        reasons.extend(gates.failed())
        if est.decision and est.decision != decision.value:
            log.info(
                "remote_decision_overridden symbol=%s remote=%s local=%s",
                ci.symbol,
                est.decision,
                decision.value,
            )

        return EnrichmentResult(
            decision=decision,
            gates=gates,
            estimate=est,
            impact=impact,
            reasons=reasons,
            basics=basics,
            remote_decision=est.decision,
            remote_gates=est.gates,
        )
