"""Per-symbol eligibility: market-cap band and listing venue.

Profiles (exchange, market cap, price, trading status) come from an
external :class:`ExchangeLookup`.  The bundled :class:`StaticProfileLookup`
reads them from a JSON file keyed by symbol, which is what the CLI uses.
Filters fail closed: a symbol whose exchange cannot be determined is
rejected.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Protocol, Union

from .config import Settings, get_settings
from .logging_utils import get_logger
from .models import sanitize_market_cap

log = get_logger("eligibility")

ANY_EXCHANGE = "*"


def canonical_exchange(raw: Optional[str]) -> str:
    """Map vendor exchange names onto short canonical venue codes.

    Unknown names are returned unchanged (stripped) for visibility in logs.
    """
    raw = (raw or "").strip()
    u = raw.upper()
    if not u:
        return ""

    otc_like = (
        u in ("OTC", "OTCM")
        or "OTC " in u
        or " OTC" in u
        or "OTCBB" in u
        or "OTC MARKETS" in u
        or "PINK" in u
        or "GREY" in u
        or "EXPERT" in u
    )
    if otc_like:
        return "OTC"

    if u == "NASDAQ":
        return "NASDAQ"
    if "GLOBAL SELECT" in u:
        return "NASDAQGS"
    if "GLOBAL MARKET" in u:
        return "NASDAQGM"
    if "CAPITAL MARKET" in u:
        return "NASDAQCM"

    if u == "NYSE" or "NEW YORK STOCK EXCHANGE" in u:
        return "NYSE"
    if "ARCA" in u:
        return "NYSE ARCA"
    if "AMERICAN" in u:
        return "NYSE AMERICAN"
    if u == "AMEX":
        return "AMEX"

    if u == "BATS":
        return "BATS"
    for venue in ("CBOE BZX", "CBOE BYX", "CBOE EDGA", "CBOE EDGX"):
        if venue in u:
            return venue
    return raw


@dataclass(frozen=True)
class SymbolProfile:
    symbol: str
    exchange: Optional[str] = None
    exchange_long: Optional[str] = None
    market_cap: Optional[float] = None
    price: Optional[float] = None
    is_actively_trading: Optional[bool] = None

    @property
    def canonical_exchange(self) -> str:
        return canonical_exchange(self.exchange) or canonical_exchange(self.exchange_long)

    @property
    def active(self) -> bool:
        # A missing flag counts as active; only an explicit False fails.
        return self.is_actively_trading is not False

    @classmethod
    def from_row(cls, symbol: str, row: Mapping[str, Any]) -> "SymbolProfile":
        def _num(*keys: str) -> Optional[float]:
            for k in keys:
                if row.get(k) is not None:
                    try:
                        return float(row[k])
                    except (TypeError, ValueError):
                        return None
            return None

        active = row.get("isActivelyTrading", row.get("is_actively_trading"))
        return cls(
            symbol=symbol.upper(),
            exchange=row.get("exchangeShortName") or row.get("exchange_short"),
            exchange_long=row.get("exchange"),
            market_cap=sanitize_market_cap(_num("marketCap", "market_cap", "mktCap")),
            price=_num("price"),
            is_actively_trading=None if active is None else bool(active),
        )


class ExchangeLookup(Protocol):
    def profile(self, symbol: str) -> Optional[SymbolProfile]:
        ...


class StaticProfileLookup:
    """Profiles from an in-memory mapping ``{symbol: {exchange, marketCap, ...}}``."""

    def __init__(self, rows: Optional[Mapping[str, Mapping[str, Any]]] = None):
        self._profiles = {
            str(sym).upper(): SymbolProfile.from_row(str(sym), row)
            for sym, row in (rows or {}).items()
            if isinstance(row, Mapping)
        }

    @classmethod
    def from_json(cls, path: Union[str, Path]) -> "StaticProfileLookup":
        with open(path, "r", encoding="utf-8") as fh:
            data = json.load(fh)
        if not isinstance(data, dict):
            raise ValueError(f"profiles file must hold an object: {path}")
        return cls(data)

    def profile(self, symbol: str) -> Optional[SymbolProfile]:
        return self._profiles.get((symbol or "").upper())

    def __len__(self) -> int:
        return len(self._profiles)


def cap_in_band(
    market_cap: Optional[float],
    min_cap: Optional[float] = None,
    max_cap: Optional[float] = None,
    include_unknown: bool = False,
) -> bool:
    cap = sanitize_market_cap(market_cap)
    if cap is None:
        return include_unknown
    if min_cap is not None and cap < min_cap:
        return False
    if max_cap is not None and cap > max_cap:
        return False
    return True


class ExchangeFilter:
    """Pass symbols listed on one of ``allowed`` canonical venues and actively trading."""

    def __init__(self, allowed: Iterable[str], lookup: Optional[ExchangeLookup] = None):
        self.allowed = frozenset(canonical_exchange(a) or a for a in allowed)
        self.lookup = lookup

    @property
    def passes_all(self) -> bool:
        return not self.allowed or ANY_EXCHANGE in self.allowed

    def check(self, symbol: str, profile: Optional[SymbolProfile] = None) -> bool:
        if self.passes_all:
            return True
        if profile is None and self.lookup is not None:
            try:
                profile = self.lookup.profile(symbol)
            except Exception as e:
                log.warning("exchange_lookup_error symbol=%s err=%s", symbol, str(e))
                return False
        if profile is None:
            log.info("exchange_unknown symbol=%s", symbol)
            return False
        venue = profile.canonical_exchange
        ok = venue in self.allowed and profile.active
        log.debug(
            "exchange_check symbol=%s canonical=%s active=%s pass=%s",
            symbol,
            venue,
            profile.is_actively_trading,
            ok,
        )
        return ok


class Eligibility:
    """Cap band + exchange gate applied to the first symbol of an item."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        lookup: Optional[ExchangeLookup] = None,
    ):
        s = settings or get_settings()
        self.min_cap = s.min_market_cap
        self.max_cap = s.max_market_cap
        self.include_unknown = s.include_unknown_mkt_cap
        self.lookup = lookup
        self.exchanges = ExchangeFilter(s.allowed_exchanges, lookup)

    def profile(self, symbol: Optional[str]) -> Optional[SymbolProfile]:
        if not symbol or self.lookup is None:
            return None
        try:
            return self.lookup.profile(symbol)
        except Exception as e:
            log.warning("profile_lookup_error symbol=%s err=%s", symbol, str(e))
            return None

    def market_cap(self, symbol: Optional[str]) -> Optional[float]:
        prof = self.profile(symbol)
        return prof.market_cap if prof else None

    def price(self, symbol: Optional[str]) -> Optional[float]:
        prof = self.profile(symbol)
        return prof.price if prof else None

    def reject_reason(
        self, symbol: Optional[str], market_cap: Optional[float]
    ) -> Optional[str]:
        """None when eligible, otherwise the name of the failing check."""
        if not symbol:
            return "no_symbol"
        if not cap_in_band(market_cap, self.min_cap, self.max_cap, self.include_unknown):
            return "market_cap"
        if not self.exchanges.check(symbol):
            return "exchange"
        return None
