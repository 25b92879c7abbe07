"""Materiality scoring for classified items.

``score_item`` turns an event class plus the item text into a value in
[0, 1].  It starts from a per-class baseline, caps known noise patterns,
adjusts for deal specifics and provenance, then adds size bonuses that
favour small caps.  Noise ceilings are sticky: bonuses added later in
the pipeline cannot lift a capped item back over its ceiling.
"""

from __future__ import annotations

import re
from typing import Iterable, List, Mapping, Optional

from .classify import PAT, has_tier1_counterparty, is_misinformation
from .models import ClassifiedItem, EventClass, sanitize_market_cap
from .numeric_extractor import materiality, normalize_text
from .source_credibility import is_on_wire

E = EventClass

BASELINE: Mapping[EventClass, float] = {
    E.PIVOTAL_TRIAL_SUCCESS: 0.72,
    E.FDA_MARKETING_AUTH: 0.70,
    E.FDA_ADCOM_POSITIVE: 0.66,
    E.REGULATORY_DESIGNATION: 0.54,
    E.TIER1_PARTNERSHIP: 0.60,
    E.MAJOR_GOV_CONTRACT: 0.60,
    E.GOVERNMENT_EQUITY_OR_GRANT: 0.58,
    E.ACQUISITION_BUYOUT: 0.64,
    E.IPO_DEBUT_POP: 0.55,
    E.COURT_WIN_INJUNCTION: 0.56,
    E.MEME_OR_INFLUENCER: 0.50,
    E.RESTRUCTURING_OR_FINANCING: 0.50,
    E.POLICY_OR_POLITICS_TAILWIND: 0.44,
    E.EARNINGS_BEAT_OR_GUIDE_UP: 0.52,
    E.INDEX_INCLUSION: 0.50,
    E.UPLISTING_TO_NASDAQ: 0.46,
    # micro/OTC
    E.REVERSE_SPLIT_UPLIST_PATH: 0.58,
    E.CE_REMOVAL_OR_RESUME_TRADING: 0.67,
    E.GOING_CONCERN_REMOVED: 0.56,
    E.INSIDER_BUY_CLUSTER: 0.60,
    E.TOXIC_FINANCING_TERMINATED: 0.62,
    E.AUTHORIZED_SHARES_REDUCED: 0.54,
    E.DILUTION_FREE_INVESTMENT: 0.58,
    E.LARGE_ORDER_RELATIVE: 0.57,
    E.DISTRIBUTION_AGREEMENT_MATERIAL: 0.60,
    E.CRYPTO_OR_AI_TREASURY_PIVOT: 0.55,
    E.CUSTODIANSHIP_OR_RM_DEAL: 0.60,
    E.AUDIT_COMPLETED_FILINGS_CURED: 0.56,
    E.OTHER: 0.20,
}

# Categories whose credibility depends on wire distribution.
WIRE_SENSITIVE = frozenset(
    {
        E.PIVOTAL_TRIAL_SUCCESS,
        E.FDA_MARKETING_AUTH,
        E.FDA_ADCOM_POSITIVE,
        E.TIER1_PARTNERSHIP,
        E.MAJOR_GOV_CONTRACT,
        E.GOVERNMENT_EQUITY_OR_GRANT,
        E.ACQUISITION_BUYOUT,
        E.EARNINGS_BEAT_OR_GUIDE_UP,
        E.INDEX_INCLUSION,
        E.UPLISTING_TO_NASDAQ,
        E.IPO_DEBUT_POP,
    }
)
_TIER1_OFF_WIRE_OK = frozenset(
    {E.TIER1_PARTNERSHIP, E.MAJOR_GOV_CONTRACT, E.GOVERNMENT_EQUITY_OR_GRANT}
)
OFF_WIRE_CAP = 0.48
MICRO_CAP_USD = 50_000_000

# (ceiling, pattern) pairs; every match lowers the sticky ceiling.
_AWARDS = re.compile(
    r"\b(award|awards|winner|wins|finalist|recipient|honoree|recognized|recognition|"
    r"named (?:as|to) (?:the )?(?:list|index|ranking)|anniversary|celebrat(es|ing|ion))\b",
    re.IGNORECASE,
)
_ANALYST = re.compile(
    r"\b(initiates?|reiterates?|maintains?|upgrades?|downgrades?)\b.*"
    r"\b(coverage|rating|price target|pt|target)\b",
    re.IGNORECASE,
)
_SHELF_ATM = re.compile(
    r"\b(Form\s*S-3|shelf registration|at[- ]the[- ]market|ATM (program|facility))\b",
    re.IGNORECASE,
)
_GENERIC_RETURN = re.compile(
    r"\b(share repurchase|buyback|issuer tender offer|dutch auction|"
    r"dividend (declaration|increase|initiation))\b",
    re.IGNORECASE,
)
_STRATEGIC_ALTS = re.compile(
    r"\b(strategic alternatives?|exploring (alternatives|options)|"
    r"review of strategic alternatives|considering strategic alternatives)\b",
    re.IGNORECASE,
)
_DILUTIVE = re.compile(
    r"\b(securities purchase agreement|SPA|registered direct|PIPE|private placement|"
    r"warrants?|convertible (notes?|debentures?|securities?)|ATM|at[- ]the[- ]market|"
    r"equity (offering|raise)|unit (offering|financing)|pricing of (an )?offering)\b",
    re.IGNORECASE,
)
_DILUTIVE_EXEMPT = (
    re.compile(r"\b(premium|above[- ]market|priced at)\b.*\$\d", re.IGNORECASE),
    re.compile(
        r"\b(strategic (investment|investor|partner|partnership|financing))\b",
        re.IGNORECASE,
    ),
    re.compile(
        r"\b(going[- ]concern (removed|resolved)|debt (extinguished|retired|repaid|"
        r"eliminated|paid (down|off))|default (cured|resolved))\b",
        re.IGNORECASE,
    ),
)

_TOPLINE_STRONG = re.compile(
    r"\b(primary endpoint (met|achieved)|met (?:the )?primary endpoint|"
    r"statistically significant)\b|\bp<\s*0?\.\d+",
    re.IGNORECASE,
)
_MNA_ADMIN = re.compile(
    r"\b(extend(s|ed|ing)?|extension)\b.*\b(expiration|expiry)\b.*\b(tender offer|offer)\b",
    re.IGNORECASE,
)
_ASSET_SALE = re.compile(
    r"\b(divestiture|divests?|carve[- ]?out|spin[- ]?off|dispos(?:e|al|es|ed))\b.*"
    r"\b(stake|interest|asset|assets|business|subsidiary|equity position)\b",
    re.IGNORECASE,
)
_ASSET_SALE_TITLELIKE = re.compile(
    r"\b((completes?|closes?)\s+(the\s+)?(sale|disposition)\s+of|"
    r"sale\s+of\s+(subsidiary|business|unit|division|assets?))\b",
    re.IGNORECASE,
)
_PROPERTY_ACQ = re.compile(
    r"\b(acquires?|acquisition of)\b.*\b(property|properties|facility|facilities|"
    r"building|real estate|inpatient rehabilitation)\b",
    re.IGNORECASE,
)
_SUPERLATIVE = re.compile(
    r"\b(record|unprecedented|all-time|exclusive|breakthrough|pivotal)\b", re.IGNORECASE
)
_BIG_MOVE = re.compile(r"\b(double|doubled|triple|tripled)\b", re.IGNORECASE)

RATIO_BOOST = (0.0, 0.03, 0.05, 0.08, 0.10)

# (upper bound exclusive, bonus); unknown caps get the mid tier.
CAP_TIERS = (
    (10_000_000, 0.18),
    (25_000_000, 0.14),
    (100_000_000, 0.10),
    (1_000_000_000, 0.06),
)
UNKNOWN_CAP_BONUS = 0.10


def cap_tier_bonus(market_cap: Optional[float]) -> float:
    if market_cap is None:
        return UNKNOWN_CAP_BONUS
    for bound, bonus in CAP_TIERS:
        if market_cap < bound:
            return bonus
    return 0.0


def _is_plain_dilutive(blob: str) -> bool:
    if not _DILUTIVE.search(blob):
        return False
    return not any(rx.search(blob) for rx in _DILUTIVE_EXEMPT)


def noise_ceiling(blob: str) -> float:
    """Lowest ceiling among the noise patterns present in ``blob`` (1.0 if none)."""
    ceiling = 1.0
    # Meeting and vote language is routine in binding merger releases.
    proxy_or_vote = PAT["proxy_advisor"].search(blob) or PAT["vote_admin_only"].search(blob)
    if proxy_or_vote and not PAT["mna_binding"].search(blob):
        ceiling = min(ceiling, 0.20)
    if PAT["law_firm_pr"].search(blob):
        ceiling = min(ceiling, 0.12)
    if _AWARDS.search(blob) and not PAT["award_substance"].search(blob):
        ceiling = min(ceiling, 0.18)
    if PAT["security_incident_update"].search(blob):
        ceiling = min(ceiling, 0.16)
    if PAT["investor_confs"].search(blob):
        ceiling = min(ceiling, 0.16)
    if PAT["name_ticker_change"].search(blob):
        ceiling = min(ceiling, 0.16)
    if _ANALYST.search(blob):
        ceiling = min(ceiling, 0.16)
    if _SHELF_ATM.search(blob):
        ceiling = min(ceiling, 0.18)
    if _GENERIC_RETURN.search(blob) and not PAT["special_dividend"].search(blob):
        ceiling = min(ceiling, 0.20)
    if _STRATEGIC_ALTS.search(blob):
        ceiling = min(ceiling, 0.30)
    if _is_plain_dilutive(blob):
        ceiling = min(ceiling, 0.18)
    return ceiling


def score_item(
    klass: EventClass,
    text: Optional[str],
    url: Optional[str] = None,
    market_cap: Optional[float] = None,
    symbol_count: int = 1,
) -> float:
    """Return the materiality score of one item, always within [0, 1]."""
    blob = normalize_text(text)
    if is_misinformation(blob):
        return 0.0

    klass = EventClass.parse(klass)
    cap = sanitize_market_cap(market_cap)
    on_wire = is_on_wire(url, blob)

    s = BASELINE.get(klass, BASELINE[E.OTHER])
    ceiling = noise_ceiling(blob)
    s = min(s, ceiling)

    if klass is E.PIVOTAL_TRIAL_SUCCESS:
        s += 0.06 if _TOPLINE_STRONG.search(blob) else -0.06

    if klass is E.ACQUISITION_BUYOUT:
        definitive = PAT["mna_binding"].search(blob) or (
            PAT["mna_will_acquire"].search(blob) and PAT["mna_per_share_or_value"].search(blob)
        )
        if definitive:
            s += 0.06
        if PAT["mna_per_share_or_value"].search(blob):
            s += 0.02
        if PAT["mna_announce"].search(blob):
            s += 0.04
        if PAT["mna_non_binding"].search(blob):
            s -= 0.06
        if (
            _MNA_ADMIN.search(blob)
            or _ASSET_SALE.search(blob)
            or _ASSET_SALE_TITLELIKE.search(blob)
            or _PROPERTY_ACQ.search(blob)
        ):
            ceiling = min(ceiling, 0.40)
            s = min(s, ceiling)

    if klass in WIRE_SENSITIVE:
        if on_wire:
            s += 0.04
        else:
            micro_mna = (
                klass is E.ACQUISITION_BUYOUT
                and cap is not None
                and cap < MICRO_CAP_USD
                and PAT["mna_announce"].search(blob) is not None
            )
            tier1_ok = klass in _TIER1_OFF_WIRE_OK and has_tier1_counterparty(blob)
            if not (micro_mna or tier1_ok):
                s = min(s, OFF_WIRE_CAP)

    mat = materiality(blob, cap)
    s += RATIO_BOOST[mat.ratio_tier]
    s += cap_tier_bonus(cap)

    if _SUPERLATIVE.search(blob):
        s += 0.04
    if PAT["large_dollars"].search(blob):
        s += 0.06
    if _BIG_MOVE.search(blob):
        s += 0.06
    if symbol_count == 1:
        s += 0.03

    s = min(s, ceiling)
    return max(0.0, min(1.0, s))


def score_classified(ci: ClassifiedItem) -> ClassifiedItem:
    value = score_item(
        ci.klass,
        ci.item.text,
        ci.item.url,
        ci.market_cap,
        len(ci.item.symbols),
    )
    return ci.with_score(value)


def score(items: Iterable[ClassifiedItem]) -> List[ClassifiedItem]:
    return [score_classified(ci) for ci in items]
