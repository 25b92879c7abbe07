from neon_pr.source_credibility import (
    extract_host,
    is_independent_source,
    is_on_wire,
    source_category,
    split_sources,
)


def test_extract_host():
    assert extract_host("https://WWW.PRNewswire.com/news/x") == "www.prnewswire.com"
    assert extract_host("ir.acme.com/press") == "ir.acme.com"
    assert extract_host(None) == ""
    assert extract_host("") == ""


def test_on_wire_by_host_ir_or_banner():
    assert is_on_wire("https://www.accesswire.com/123")
    assert is_on_wire("https://investors.acme.com/news/1")
    assert is_on_wire(None, "VANCOUVER, BC / ACCESSWIRE / May 1, 2024 / Acme ...")
    assert not is_on_wire("https://finance.yahoo.com/news/x", "Acme signs deal")


def test_wire_tokens_are_case_sensitive():
    assert not is_on_wire(None, "a prism of possibilities")


def test_source_category():
    assert source_category("https://www.globenewswire.com/x") == "pr_wire"
    assert source_category("https://newsroom.acme.com/x") == "investor_relations"
    assert source_category("https://www.sec.gov/Archives/edgar/data/1") == "regulatory"
    assert source_category("https://www.reuters.com/x") == "unknown"


def test_independent_source():
    pr = "https://www.globenewswire.com/news-release/1"
    assert is_independent_source("https://www.reuters.com/markets/acme", pr)
    assert not is_independent_source("https://www.globenewswire.com/other", pr)
    assert not is_independent_source("https://ir.acme.com/release", pr)
    assert not is_independent_source("", pr)


def test_split_sources_buckets():
    pr = "https://acme.com/press/1"
    out = split_sources(
        pr,
        [
            {"url": "https://acme.com/press/2"},
            {"url": "https://www.businesswire.com/x"},
            {"url": "https://www.sec.gov/x"},
            {"url": "https://news.partnerco.com/x"},
            {"url": ""},
        ],
    )
    assert [s["url"] for s in out.wire_or_ir] == [
        "https://acme.com/press/2",
        "https://www.businesswire.com/x",
    ]
    assert [s["url"] for s in out.gov_or_filing] == ["https://www.sec.gov/x"]
    assert [s["url"] for s in out.counterparty] == ["https://news.partnerco.com/x"]
