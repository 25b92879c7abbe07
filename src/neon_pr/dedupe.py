"""In-cycle near-duplicate collapse.

The same press release is often syndicated through several wires and
aggregators within one polling window.  Items for the same first symbol
whose normalised titles are near-identical (``rapidfuzz`` token-set
ratio) are collapsed to a single survivor: highest score first, then
the more original source, then first seen.
"""

from __future__ import annotations

import re
from typing import Dict, List, Optional, Sequence, Tuple

from rapidfuzz import fuzz

from .logging_utils import get_logger
from .models import ClassifiedItem
from .source_credibility import extract_host

log = get_logger("dedupe")

# Prefer original wires over aggregates when scores tie.
DEFAULT_SOURCE_WEIGHTS: Dict[str, float] = {
    "www.businesswire.com": 1.0,
    "www.globenewswire.com": 0.98,
    "www.prnewswire.com": 0.95,
    "www.accesswire.com": 0.92,
    "www.newsfilecorp.com": 0.92,
    "www.sec.gov": 0.9,
    "finance.yahoo.com": 0.6,
    "seekingalpha.com": 0.6,
    "www.marketwatch.com": 0.6,
    "www.benzinga.com": 0.6,
}


def normalize_title(title: Optional[str]) -> str:
    """Lowercase, strip punctuation and collapse whitespace."""
    clean = re.sub(r"[^A-Za-z0-9]+", " ", title or "").lower()
    return " ".join(clean.split())


def similarity(a: str, b: str) -> float:
    """Return a similarity score between 0 and 1 for two strings."""
    if not a or not b:
        return 0.0
    return fuzz.token_set_ratio(a, b) / 100.0


def source_weight(url: Optional[str]) -> float:
    return DEFAULT_SOURCE_WEIGHTS.get(extract_host(url), 0.7)


def _better(a: ClassifiedItem, b: ClassifiedItem) -> bool:
    """True when ``a`` should replace the current survivor ``b``."""
    if a.score != b.score:
        return a.score > b.score
    return source_weight(a.item.url) > source_weight(b.item.url)


def collapse_near_duplicates(
    items: Sequence[ClassifiedItem], threshold: float = 0.9
) -> List[ClassifiedItem]:
    """Collapse near-duplicate headlines per first symbol, keeping input order."""
    survivors: List[ClassifiedItem] = []
    # symbol -> [(normalised title, index into survivors)]
    groups: Dict[str, List[Tuple[str, int]]] = {}
    collapsed = 0

    for ci in items:
        sym = ci.symbol
        norm = normalize_title(ci.item.title)
        if not sym or not norm:
            survivors.append(ci)
            continue
        bucket = groups.setdefault(sym, [])
        match = None
        for prev_norm, idx in bucket:
            if similarity(norm, prev_norm) >= threshold:
                match = idx
                break
        if match is None:
            bucket.append((norm, len(survivors)))
            survivors.append(ci)
            continue
        collapsed += 1
        if _better(ci, survivors[match]):
            survivors[match] = ci
        log.debug(
            "near_dup_collapsed symbol=%s title=%s",
            sym,
            (ci.item.title or "")[:80],
        )

    if collapsed:
        log.info("near_dup_collapse kept=%d collapsed=%d", len(survivors), collapsed)
    return survivors
