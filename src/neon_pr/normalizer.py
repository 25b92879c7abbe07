"""Provider row -> :class:`RawItem`.

Provider payloads disagree on field names (``url``/``link``,
``summary``/``text``/``content``/``description``, ``publishedAt``/``date``
/``publishedDate``, ``symbols``/``symbol``/``tickers``).  This module folds
them into one canonical record, strips HTML from titles and bodies and
converts timestamps to UTC ISO-8601.
"""

from __future__ import annotations

import html
import re
from datetime import timezone
from typing import Any, Iterable, Iterator, List, Mapping, Optional

from bs4 import BeautifulSoup
from dateutil import parser as dtparse

from .logging_utils import get_logger
from .models import RawItem

log = get_logger("normalizer")

_URL_KEYS = ("url", "link")
_BODY_KEYS = ("summary", "text", "content", "description")
_DATE_KEYS = ("publishedAt", "published_at", "date", "publishedDate")


def clean_html_content(text: Optional[str]) -> str:
    """Decode entities, drop tags and collapse whitespace.

    >>> clean_html_content("<p>Acme &amp; Co <b>signs</b> deal</p>")
    'Acme & Co signs deal'
    """
    if not text:
        return ""
    text = str(text)
    if "<" in text:
        # get_text() also decodes entities
        decoded = BeautifulSoup(text, "html.parser").get_text(separator=" ")
    else:
        decoded = html.unescape(text)
    return re.sub(r"\s+", " ", decoded).strip()


def to_utc_iso(value: Any) -> Optional[str]:
    """Timestamp -> UTC ISO string, or None when missing or unparsable."""
    if value is None or value == "":
        return None
    try:
        d = dtparse.parse(str(value))
    except (ValueError, OverflowError):
        log.debug("timestamp_parse_failed value=%s", value)
        return None
    if d.tzinfo is None:
        d = d.replace(tzinfo=timezone.utc)
    return d.astimezone(timezone.utc).isoformat()


def _first(row: Mapping[str, Any], keys: Iterable[str]) -> Any:
    for k in keys:
        v = row.get(k)
        if v not in (None, ""):
            return v
    return None


def _symbols(row: Mapping[str, Any]) -> List[str]:
    out: List[str] = []
    for key in ("symbols", "symbol", "tickers", "ticker"):
        v = row.get(key)
        if isinstance(v, str):
            out.extend(p for p in re.split(r"[,\s]+", v) if p)
        elif isinstance(v, (list, tuple)):
            out.extend(x for x in v if isinstance(x, str))
    return out


def normalize_row(row: Mapping[str, Any], source: str = "") -> Optional[RawItem]:
    """Return a :class:`RawItem`, or None for rows with neither title nor body."""
    if not isinstance(row, Mapping):
        return None
    title = clean_html_content(row.get("title"))
    body = clean_html_content(_first(row, _BODY_KEYS))
    if not title and not body:
        return None

    url = _first(row, _URL_KEYS)
    url = str(url).strip() if url else None
    published = to_utc_iso(_first(row, _DATE_KEYS))
    symbols = _symbols(row)
    src = str(row.get("source") or source or "")

    item_id = row.get("id")
    if item_id in (None, ""):
        first = symbols[0].strip().upper() if symbols else "NA"
        item_id = f"{first}|{published or ''}|{url or ''}"

    return RawItem(
        id=str(item_id),
        title=title,
        summary=body,
        source=src,
        url=url,
        published_at=published,
        symbols=tuple(symbols),
    )


def normalize_rows(rows: Iterable[Mapping[str, Any]], source: str = "") -> Iterator[RawItem]:
    dropped = 0
    for row in rows:
        item = normalize_row(row, source)
        if item is None:
            dropped += 1
            continue
        yield item
    if dropped:
        log.debug("normalizer_dropped_empty count=%d", dropped)
