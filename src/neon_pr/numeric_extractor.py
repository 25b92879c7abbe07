"""Dollar-magnitude extraction and materiality tiers for press text.

Press releases state deal sizes in many shapes ("$12.5 million",
"US$1.2bn", "$4,500,000").  This module reduces them to a single
magnitude in millions of USD and, when the subject's market cap is
known, to a materiality ratio with fixed tiers.  The result is a
validated :class:`Materiality` model shared by the classifier, the
scorer and the enrichment calibration so all three agree on "how big
is this relative to the company".
"""

from __future__ import annotations

import re
from typing import Optional

from pydantic import BaseModel, Field

# Absolute tiers, in millions of USD.  Micro-caps move on small cheques.
MATERIAL_MILLIONS = 1.0
MAJOR_MILLIONS = 7.5

# Ratio tiers (amount / market cap), lowest first.
RATIO_TIERS = (0.05, 0.10, 0.25, 0.50)

# Bare single-letter units need a "$" ("Phase 2b" is not two billion).
_SUFFIXED = re.compile(
    r"(\$\s?)?(?<![\d.])(\d{1,3}(?:\.\d+)?)\s*(million|billion|bn|mm|m|b)\b",
    re.IGNORECASE,
)
_RAW_DOLLARS = re.compile(r"\$\s?(\d{1,3}(?:,\d{3}){1,3}|\d{6,12})(?![.,]?\d)")

_QUANT = re.compile(
    r"\$\s?\d|\b\d+(?:\.\d+)?\s?%|\bper\s+share\b|"
    r"\b\d[\d,]*(?:\.\d+)?\s*(?:units|tons|tonnes|ounces|oz|barrels|bbl|MW|GW|"
    r"customers|stores|locations|doses|vehicles|systems)\b",
    re.IGNORECASE,
)

_WS = re.compile(r"\s+")


def normalize_text(s: Optional[str]) -> str:
    """Collapse whitespace and fold typographic quotes/dashes to ASCII."""
    if not s:
        return ""
    s = _WS.sub(" ", s)
    s = s.replace("“", '"').replace("”", '"')
    s = s.replace("‘", "'").replace("’", "'")
    s = s.replace("‑", "-").replace("–", "-").replace("—", "-")
    return s.strip()


def extract_dollars_millions(text: Optional[str]) -> Optional[float]:
    """Return the first dollar magnitude in ``text`` in millions, or None.

    Suffixed figures win over raw ones.  Billions are scaled by 1000.
    """
    if not text:
        return None
    for m in _SUFFIXED.finditer(text):
        unit = m.group(3).lower()
        if unit in ("m", "b") and not m.group(1):
            continue
        val = float(m.group(2))
        if unit in ("b", "billion", "bn"):
            return val * 1000.0
        return val
    raw = _RAW_DOLLARS.search(text)
    if raw:
        digits = raw.group(1).replace(",", "")
        if len(digits) >= 6:
            return int(digits) / 1_000_000
    return None


def has_quant_details(text: Optional[str]) -> bool:
    """True when the text carries concrete figures (dollars, percents, units)."""
    return bool(text) and _QUANT.search(text) is not None


def ratio_tier(ratio: Optional[float]) -> int:
    """0 below 5%, then 1..4 for the >=5/10/25/50% tiers."""
    if ratio is None:
        return 0
    tier = 0
    for i, cut in enumerate(RATIO_TIERS, start=1):
        if ratio >= cut:
            tier = i
    return tier


class Materiality(BaseModel):
    """Validated materiality read-out for one piece of text."""

    amount_m: Optional[float] = Field(None, ge=0, description="USD millions")
    material: bool = False
    major: bool = False
    ratio: Optional[float] = Field(None, ge=0, description="amount / market cap")
    ratio_tier: int = Field(0, ge=0, le=len(RATIO_TIERS))

    @property
    def dollar_tier(self) -> int:
        return 2 if self.major else 1 if self.material else 0


def materiality(text: Optional[str], market_cap_usd: Optional[float] = None) -> Materiality:
    amount = extract_dollars_millions(text)
    if amount is None:
        return Materiality()
    ratio = None
    if market_cap_usd is not None and market_cap_usd > 0:
        ratio = (amount * 1_000_000) / market_cap_usd
    return Materiality(
        amount_m=amount,
        material=amount >= MATERIAL_MILLIONS,
        major=amount >= MAJOR_MILLIONS,
        ratio=ratio,
        ratio_tier=ratio_tier(ratio),
    )
