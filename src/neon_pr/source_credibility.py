"""Source provenance checks.

A press item is treated as *on-wire* when it was distributed through a
recognised press-wire service or the issuer's own investor-relations
site.  Wire provenance is the single strongest credibility signal the
pipeline has: several classification rules only fire on-wire, the
scorer modulates provenance-sensitive categories on it, and the
enrichment gateway re-derives its ``is_wire`` gate from it.

Host categories:
    - pr_wire: allow-listed wire hosts (PR Newswire, GlobeNewswire, ...)
    - investor_relations: ``ir.``/``investor.``/``investors.``/``newsroom.`` hosts
    - regulatory: SEC, SEDAR and government hosts
    - unknown: anything else

Usage:
    >>> is_on_wire("https://www.globenewswire.com/news-release/1", "")
    True
    >>> source_category("https://www.sec.gov/Archives/edgar/data/1")
    'regulatory'
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import urlparse

WIRE_HOSTS = frozenset(
    {
        "www.prnewswire.com",
        "www.globenewswire.com",
        "www.businesswire.com",
        "www.accesswire.com",
        "www.newsfilecorp.com",
        # micro-cap wires commonly used by OTC issuers
        "prismmediawire.com",
        "www.prismmediawire.com",
        "mcapmediawire.com",
        "www.mcapmediawire.com",
    }
)

# Attribution banners/footers found in syndicated bodies.
WIRE_TOKENS = (
    "PR Newswire",
    "GlobeNewswire",
    "Business Wire",
    "ACCESSWIRE",
    "Newsfile",
    "MCAP MediaWire",
    "PRISM MediaWire",
    "MCAP",
    "PRISM",
)
_WIRE_TOKEN_RX = re.compile(
    r"\b(?:" + "|".join(re.escape(t) for t in WIRE_TOKENS) + r")\b"
)

_IR_PREFIX = re.compile(r"^(?:ir|investors?)\.", re.IGNORECASE)
_IR_SPLIT_PREFIX = re.compile(r"^(?:ir|investors?|newsroom)\.", re.IGNORECASE)
_GOV_OR_FILING = (
    re.compile(r"(?:\.|^)sec\.gov$"),
    re.compile(r"sedar"),
    re.compile(r"(?:\.|^)gov$"),
    re.compile(r"(?:\.|^)canada\.ca$"),
    re.compile(r"(?:\.|^)europa\.eu$"),
)


def extract_host(url: Optional[str]) -> str:
    """Return the lowercase hostname of ``url`` or "" when it has none."""
    if not url or not isinstance(url, str):
        return ""
    url = url.strip()
    if not url:
        return ""
    if "://" not in url:
        url = f"https://{url}"
    try:
        return (urlparse(url).hostname or "").lower()
    except ValueError:
        return ""


def is_wire_host(host: str) -> bool:
    return host in WIRE_HOSTS


def is_ir_host(host: str) -> bool:
    return bool(host) and _IR_PREFIX.match(host) is not None


def is_gov_or_filing_host(host: str) -> bool:
    return bool(host) and any(rx.search(host) for rx in _GOV_OR_FILING)


def has_wire_token(text: Optional[str]) -> bool:
    return bool(text) and _WIRE_TOKEN_RX.search(text) is not None


def is_on_wire(url: Optional[str], text: Optional[str] = None) -> bool:
    """True when the URL host is a wire/IR host or the text carries a wire banner."""
    host = extract_host(url)
    if is_wire_host(host) or is_ir_host(host):
        return True
    return has_wire_token(text)


def source_category(url: Optional[str]) -> str:
    host = extract_host(url)
    if not host:
        return "unknown"
    if is_wire_host(host):
        return "pr_wire"
    if _IR_SPLIT_PREFIX.match(host):
        return "investor_relations"
    if is_gov_or_filing_host(host):
        return "regulatory"
    return "unknown"


def is_independent_source(source_url: Optional[str], pr_url: Optional[str]) -> bool:
    """A corroborating source must live off the PR's host and off any wire/IR host."""
    host = extract_host(source_url)
    if not host:
        return False
    if host == extract_host(pr_url):
        return False
    return source_category(source_url) not in ("pr_wire", "investor_relations")


@dataclass
class SourceBuckets:
    wire_or_ir: List[Dict[str, Any]] = field(default_factory=list)
    gov_or_filing: List[Dict[str, Any]] = field(default_factory=list)
    counterparty: List[Dict[str, Any]] = field(default_factory=list)


def split_sources(
    pr_url: Optional[str], sources: Optional[Iterable[Dict[str, Any]]]
) -> SourceBuckets:
    """Bucket enrichment sources for link buttons.

    Sources on the PR's own host count as wire/IR.
    """
    out = SourceBuckets()
    company_host = extract_host(pr_url)
    for src in sources or ():
        host = extract_host(src.get("url"))
        if not host:
            continue
        category = source_category(src.get("url"))
        if category in ("pr_wire", "investor_relations") or (
            company_host and host == company_host
        ):
            out.wire_or_ir.append(src)
        elif category == "regulatory":
            out.gov_or_filing.append(src)
        else:
            out.counterparty.append(src)
    return out
