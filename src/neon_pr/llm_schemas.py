"""
Enrichment Response Schemas
===========================

Pydantic models for the JSON the reasoning service returns.  The remote
side is untrusted: every field is coerced and clamped by "before"
validators instead of being rejected, so a sloppy but well-meant reply
still yields usable defaults.  Only a body that is not a JSON object at
all is refused (``EnrichmentResponse.parse_untrusted`` returns None).

The remote ``gates`` and ``decision`` are kept for audit only; the
gateway recomputes both locally.
"""

from __future__ import annotations

import json
import math
import re
from typing import Any, Dict, List, Literal, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from .logging_utils import get_logger

log = get_logger("llm_schemas")

MOVE_BUCKETS = (
    "<5%",
    "5-10%",
    "10-20%",
    "20-40%",
    "40-80%",
    "80-150%",
    "150-300%",
    "300-500%",
    "500%+",
)
MAX_PCT = 1000.0
MAX_LIST = 8
MAX_SOURCES = 6

Confidence = Literal["low", "medium", "high"]


def _num(value: Any, default: float = 0.0) -> float:
    if isinstance(value, bool):
        return default
    try:
        x = float(value)
    except (TypeError, ValueError):
        return default
    return x if math.isfinite(x) else default


def _clamp01(value: Any) -> float:
    return max(0.0, min(1.0, _num(value)))


def _text(value: Any, limit: int) -> str:
    if value is None:
        return ""
    return str(value).strip()[:limit]


def _str_list(value: Any, limit: int = 240, cap: int = MAX_LIST) -> List[str]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        return []
    out = []
    for v in value:
        s = _text(v, limit)
        if s:
            out.append(s)
        if len(out) >= cap:
            break
    return out


class _Lenient(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class ExpectedMove(_Lenient):
    """Move distribution in percent; p90 >= p50 always holds."""

    p50: float = Field(default=0.0, ge=0.0, le=MAX_PCT)
    p90: float = Field(default=0.0, ge=0.0, le=MAX_PCT)
    bucket: str = "<5%"

    @field_validator("p50", "p90", mode="before")
    @classmethod
    def _clamp_pct(cls, v: Any) -> float:
        return max(0.0, min(MAX_PCT, _num(v)))

    @field_validator("bucket", mode="before")
    @classmethod
    def _known_bucket(cls, v: Any) -> str:
        return v if v in MOVE_BUCKETS else "<5%"

    @model_validator(mode="after")
    def _ordered(self) -> "ExpectedMove":
        if self.p90 < self.p50:
            self.p90 = self.p50
        return self


class LegitimacyGates(_Lenient):
    is_wire: bool = Field(False, validation_alias=AliasChoices("is_wire", "isWire"))
    has_named_counterparty: bool = Field(
        False, validation_alias=AliasChoices("has_named_counterparty", "hasNamedCounterparty")
    )
    has_quant_details: bool = Field(
        False, validation_alias=AliasChoices("has_quant_details", "hasQuantDetails")
    )
    has_independent_corroboration: bool = Field(
        False,
        validation_alias=AliasChoices(
            "has_independent_corroboration", "hasIndependentCorroboration"
        ),
    )
    ticker_verified: bool = Field(
        False, validation_alias=AliasChoices("ticker_verified", "tickerVerified")
    )
    red_flags_detected: bool = Field(
        False, validation_alias=AliasChoices("red_flags_detected", "redFlagsDetected")
    )

    @field_validator("*", mode="before")
    @classmethod
    def _boolish(cls, v: Any) -> bool:
        if isinstance(v, str):
            return v.strip().lower() in {"1", "true", "yes", "y"}
        return bool(v)

    @property
    def all_pass(self) -> bool:
        """All five positive gates hold and no red flag was raised."""
        return (
            self.is_wire
            and self.has_named_counterparty
            and self.has_quant_details
            and self.has_independent_corroboration
            and self.ticker_verified
            and not self.red_flags_detected
        )

    def failed(self) -> List[str]:
        out = [
            name
            for name in (
                "is_wire",
                "has_named_counterparty",
                "has_quant_details",
                "has_independent_corroboration",
                "ticker_verified",
            )
            if not getattr(self, name)
        ]
        if self.red_flags_detected:
            out.append("red_flags_detected")
        return out


# Component weights; execution risk counts inverted.
IMPACT_WEIGHTS: Dict[str, float] = {
    "materiality": 0.30,
    "binding_level": 0.20,
    "counterparty_quality": 0.15,
    "specificity": 0.15,
    "corroboration": 0.10,
    "execution_risk": 0.10,
}


class ImpactScorecard(_Lenient):
    materiality: float = 0.0
    binding_level: float = Field(
        0.0, validation_alias=AliasChoices("binding_level", "bindingLevel")
    )
    counterparty_quality: float = Field(
        0.0, validation_alias=AliasChoices("counterparty_quality", "counterpartyQuality")
    )
    specificity: float = 0.0
    corroboration: float = 0.0
    execution_risk: float = Field(
        0.0, validation_alias=AliasChoices("execution_risk", "executionRisk")
    )

    @field_validator("*", mode="before")
    @classmethod
    def _unit(cls, v: Any) -> float:
        return _clamp01(v)

    @property
    def total(self) -> float:
        """Weighted total in [0, 1], always recomputed from the components."""
        t = 0.0
        for name, w in IMPACT_WEIGHTS.items():
            v = getattr(self, name)
            t += w * ((1.0 - v) if name == "execution_risk" else v)
        return max(0.0, min(1.0, t))


class SourceRef(_Lenient):
    title: str = ""
    url: str = ""
    publisher: Optional[str] = None
    published_iso: Optional[str] = Field(
        None, validation_alias=AliasChoices("published_iso", "publishedISO", "date")
    )

    @field_validator("title", "url", mode="before")
    @classmethod
    def _short(cls, v: Any) -> str:
        return _text(v, 500)

    @field_validator("publisher", "published_iso", mode="before")
    @classmethod
    def _opt(cls, v: Any) -> Optional[str]:
        s = _text(v, 120)
        return s or None


class EnrichmentResponse(_Lenient):
    """Sanitised view of one reasoning-service reply."""

    label: str = "OTHER"
    catalyst_strength: float = 0.0
    expected_move: ExpectedMove = Field(default_factory=ExpectedMove)
    confidence: Confidence = "low"
    rationale_short: str = ""
    blurb: str = ""
    gates: Optional[LegitimacyGates] = None
    impact: Optional[ImpactScorecard] = None
    decision: Optional[str] = None
    reasons: List[str] = Field(default_factory=list)
    pros: List[str] = Field(default_factory=list)
    cons: List[str] = Field(default_factory=list)
    red_flags: List[str] = Field(default_factory=list)
    sources: List[SourceRef] = Field(default_factory=list)

    @field_validator("label", mode="before")
    @classmethod
    def _label(cls, v: Any) -> str:
        return _text(v, 64).upper() or "OTHER"

    @field_validator("catalyst_strength", mode="before")
    @classmethod
    def _strength(cls, v: Any) -> float:
        return _clamp01(v)

    @field_validator("expected_move", mode="before")
    @classmethod
    def _move(cls, v: Any) -> Any:
        return v if isinstance(v, dict) else {}

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence(cls, v: Any) -> str:
        v = str(v or "").strip().lower()
        return v if v in ("low", "medium", "high") else "low"

    @field_validator("rationale_short", mode="before")
    @classmethod
    def _rationale(cls, v: Any) -> str:
        return _text(v, 240)

    @field_validator("blurb", mode="before")
    @classmethod
    def _blurb(cls, v: Any) -> str:
        return _text(v, 600)

    @field_validator("gates", "impact", mode="before")
    @classmethod
    def _obj(cls, v: Any) -> Any:
        return v if isinstance(v, dict) else None

    @field_validator("decision", mode="before")
    @classmethod
    def _decision(cls, v: Any) -> Optional[str]:
        if isinstance(v, dict):
            v = v.get("invest")
        return _text(v, 16).upper() or None

    @field_validator("reasons", "pros", "cons", "red_flags", mode="before")
    @classmethod
    def _lists(cls, v: Any) -> List[str]:
        return _str_list(v)

    @field_validator("sources", mode="before")
    @classmethod
    def _sources(cls, v: Any) -> List[Any]:
        if not isinstance(v, (list, tuple)):
            return []
        return [s for s in v if isinstance(s, dict)][:MAX_SOURCES]

    @classmethod
    def parse_untrusted(cls, raw: Any) -> Optional["EnrichmentResponse"]:
        """Validate a decoded reply; anything but a JSON object yields None."""
        if not isinstance(raw, dict):
            return None
        try:
            return cls.model_validate(raw)
        except ValidationError as e:
            log.warning("llm_response_invalid errors=%d", e.error_count())
            return None

    @classmethod
    def from_text(cls, text: Optional[str]) -> Optional["EnrichmentResponse"]:
        """Decode model text; falls back to the trailing ``{...}`` block."""
        if not text:
            return None
        try:
            return cls.parse_untrusted(json.loads(text))
        except (ValueError, RecursionError):
            # deeply nested arrays exhaust the decoder stack
            pass
        m = re.search(r"\{[\s\S]*\}\s*$", text)
        if not m:
            return None
        try:
            return cls.parse_untrusted(json.loads(m.group(0)))
        except (ValueError, RecursionError):
            return None
