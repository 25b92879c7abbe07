from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Iterable, Optional, Tuple


class EventClass(str, Enum):
    """Closed set of catalyst categories a press item can be assigned."""

    PIVOTAL_TRIAL_SUCCESS = "PIVOTAL_TRIAL_SUCCESS"
    FDA_MARKETING_AUTH = "FDA_MARKETING_AUTH"
    FDA_ADCOM_POSITIVE = "FDA_ADCOM_POSITIVE"
    REGULATORY_DESIGNATION = "REGULATORY_DESIGNATION"
    TIER1_PARTNERSHIP = "TIER1_PARTNERSHIP"
    MAJOR_GOV_CONTRACT = "MAJOR_GOV_CONTRACT"
    GOVERNMENT_EQUITY_OR_GRANT = "GOVERNMENT_EQUITY_OR_GRANT"
    ACQUISITION_BUYOUT = "ACQUISITION_BUYOUT"
    IPO_DEBUT_POP = "IPO_DEBUT_POP"
    COURT_WIN_INJUNCTION = "COURT_WIN_INJUNCTION"
    MEME_OR_INFLUENCER = "MEME_OR_INFLUENCER"
    RESTRUCTURING_OR_FINANCING = "RESTRUCTURING_OR_FINANCING"
    POLICY_OR_POLITICS_TAILWIND = "POLICY_OR_POLITICS_TAILWIND"
    EARNINGS_BEAT_OR_GUIDE_UP = "EARNINGS_BEAT_OR_GUIDE_UP"
    INDEX_INCLUSION = "INDEX_INCLUSION"
    UPLISTING_TO_NASDAQ = "UPLISTING_TO_NASDAQ"
    # micro-cap / OTC specific
    REVERSE_SPLIT_UPLIST_PATH = "REVERSE_SPLIT_UPLIST_PATH"
    CE_REMOVAL_OR_RESUME_TRADING = "CE_REMOVAL_OR_RESUME_TRADING"
    GOING_CONCERN_REMOVED = "GOING_CONCERN_REMOVED"
    INSIDER_BUY_CLUSTER = "INSIDER_BUY_CLUSTER"
    TOXIC_FINANCING_TERMINATED = "TOXIC_FINANCING_TERMINATED"
    AUTHORIZED_SHARES_REDUCED = "AUTHORIZED_SHARES_REDUCED"
    DILUTION_FREE_INVESTMENT = "DILUTION_FREE_INVESTMENT"
    LARGE_ORDER_RELATIVE = "LARGE_ORDER_RELATIVE"
    DISTRIBUTION_AGREEMENT_MATERIAL = "DISTRIBUTION_AGREEMENT_MATERIAL"
    CRYPTO_OR_AI_TREASURY_PIVOT = "CRYPTO_OR_AI_TREASURY_PIVOT"
    CUSTODIANSHIP_OR_RM_DEAL = "CUSTODIANSHIP_OR_RM_DEAL"
    AUDIT_COMPLETED_FILINGS_CURED = "AUDIT_COMPLETED_FILINGS_CURED"
    OTHER = "OTHER"

    @classmethod
    def parse(cls, value: object) -> "EventClass":
        """Map an arbitrary label onto the closed set, defaulting to OTHER."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            return cls.OTHER


class Decision(str, Enum):
    YES = "YES"
    SPECULATIVE = "SPECULATIVE"
    PASS = "PASS"


def _clean_symbols(symbols: Optional[Iterable[str]]) -> Tuple[str, ...]:
    seen = []
    for s in symbols or ():
        if not isinstance(s, str):
            continue
        s = s.strip().upper()
        if s and s not in seen:
            seen.append(s)
    return tuple(seen)


@dataclass(frozen=True)
class RawItem:
    """
    One normalised news item.  Symbols are uppercased and deduplicated in
    order of first appearance; ``symbol`` exposes the first one, which is
    the only symbol downstream stages act on.
    """

    id: str
    title: str
    summary: str = ""
    source: str = ""
    url: Optional[str] = None
    published_at: Optional[str] = None
    symbols: Tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        object.__setattr__(self, "title", self.title or "")
        object.__setattr__(self, "summary", self.summary or "")
        object.__setattr__(self, "source", self.source or "")
        object.__setattr__(self, "symbols", _clean_symbols(self.symbols))

    @property
    def symbol(self) -> Optional[str]:
        return self.symbols[0] if self.symbols else None

    @property
    def text(self) -> str:
        return f"{self.title}\n{self.summary}"


@dataclass(frozen=True)
class ClassifiedItem:
    item: RawItem
    klass: EventClass
    raw_weight: float = 0.0
    score: float = 0.0
    market_cap: Optional[float] = None
    hits: Tuple[str, ...] = ()

    def with_score(self, score: float) -> "ClassifiedItem":
        return replace(self, score=score)

    @property
    def symbol(self) -> Optional[str]:
        return self.item.symbol


@dataclass(frozen=True)
class LedgerRecord:
    hash: str
    provider_id: Optional[str]
    source: str
    title: str
    url: Optional[str]
    symbols: Tuple[str, ...]
    category: Optional[str]
    score: Optional[float]
    published_at: Optional[str]
    created_at: int


def sanitize_market_cap(value: object) -> Optional[float]:
    """Return a usable market cap in USD, or None for missing/implausible values."""
    if value is None or isinstance(value, bool):
        return None
    try:
        cap = float(value)
    except (TypeError, ValueError):
        return None
    if cap != cap or cap in (float("inf"), float("-inf")) or cap <= 0:
        return None
    return cap
