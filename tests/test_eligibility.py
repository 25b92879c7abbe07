import pytest

from neon_pr.eligibility import (
    Eligibility,
    ExchangeFilter,
    StaticProfileLookup,
    SymbolProfile,
    cap_in_band,
    canonical_exchange,
)


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("OTC", "OTC"),
        ("OTC Markets", "OTC"),
        ("Pink Open Market", "OTC"),
        ("otcbb", "OTC"),
        ("Nasdaq Capital Market", "NASDAQCM"),
        ("NASDAQ Global Select", "NASDAQGS"),
        ("New York Stock Exchange", "NYSE"),
        ("NYSE American", "NYSE AMERICAN"),
        ("NYSE Arca", "NYSE ARCA"),
        ("", ""),
        (None, ""),
        (" Tokyo ", "Tokyo"),
    ],
)
def test_canonical_exchange(raw, expected):
    assert canonical_exchange(raw) == expected


def test_cap_in_band():
    assert cap_in_band(50e6, None, 100e6)
    assert not cap_in_band(150e6, None, 100e6)
    assert not cap_in_band(1e6, 5e6, None)
    assert not cap_in_band(None)
    assert cap_in_band(None, include_unknown=True)
    # implausible values count as unknown
    assert not cap_in_band(-3.0, None, 100e6)
    assert cap_in_band(float("nan"), include_unknown=True)


def test_profile_from_row_reads_vendor_keys():
    p = SymbolProfile.from_row(
        "acme",
        {"exchangeShortName": "OTC", "marketCap": "25000000", "price": 0.4, "isActivelyTrading": True},
    )
    assert p.symbol == "ACME"
    assert p.canonical_exchange == "OTC"
    assert p.market_cap == 25e6
    assert p.active


class _Boom:
    def profile(self, symbol):
        raise RuntimeError("vendor down")


def test_exchange_filter():
    lookup = StaticProfileLookup(
        {
            "ACME": {"exchangeShortName": "OTC"},
            "BIG": {"exchange": "Nasdaq Global Select"},
            "DEAD": {"exchangeShortName": "OTC", "isActivelyTrading": False},
        }
    )
    f = ExchangeFilter(["OTC"], lookup)
    assert f.check("ACME")
    assert f.check("acme")
    assert not f.check("BIG")
    assert not f.check("DEAD")
    # unknown symbols fail closed
    assert not f.check("NOPE")
    assert not ExchangeFilter(["OTC"], _Boom()).check("ACME")
    assert not ExchangeFilter(["OTC"]).check("ACME")


def test_wildcard_passes_everything():
    assert ExchangeFilter(["*"], _Boom()).check("ANY")
    assert ExchangeFilter([]).check("ANY")


def test_static_lookup_from_json(tmp_path):
    path = tmp_path / "profiles.json"
    path.write_text('{"ACME": {"exchangeShortName": "OTC", "marketCap": 1e7}, "BAD": 3}')
    lookup = StaticProfileLookup.from_json(path)
    assert len(lookup) == 1
    assert lookup.profile("ACME").market_cap == 1e7

    path.write_text("[1, 2]")
    with pytest.raises(ValueError):
        StaticProfileLookup.from_json(path)


def test_reject_reason(settings):
    settings.allowed_exchanges = ["OTC"]
    settings.max_market_cap = 100e6
    settings.include_unknown_mkt_cap = False
    lookup = StaticProfileLookup(
        {
            "ACME": {"exchangeShortName": "OTC", "marketCap": 2e7, "price": 0.5},
            "BIG": {"exchange": "NYSE", "marketCap": 2e7},
        }
    )
    e = Eligibility(settings, lookup)
    assert e.reject_reason(None, 2e7) == "no_symbol"
    assert e.reject_reason("ACME", None) == "market_cap"
    assert e.reject_reason("ACME", 5e8) == "market_cap"
    assert e.reject_reason("BIG", 2e7) == "exchange"
    assert e.reject_reason("ACME", 2e7) is None
    assert e.price("ACME") == 0.5
    assert e.market_cap("NOPE") is None
    assert Eligibility(settings, _Boom()).market_cap("ACME") is None
