from neon_pr.normalizer import clean_html_content, normalize_row, normalize_rows, to_utc_iso


def test_clean_html_content():
    assert clean_html_content("<p>Acme &amp; Co <b>signs</b>\n deal</p>") == "Acme & Co signs deal"
    assert clean_html_content("plain   text") == "plain text"
    assert clean_html_content(None) == ""


def test_to_utc_iso():
    assert to_utc_iso("2024-05-01T08:00:00-04:00") == "2024-05-01T12:00:00+00:00"
    assert to_utc_iso("2024-05-01 12:00:00") == "2024-05-01T12:00:00+00:00"
    assert to_utc_iso("not a date") is None
    assert to_utc_iso("") is None
    assert to_utc_iso(None) is None


def test_field_aliases_are_folded():
    item = normalize_row(
        {
            "title": "<b>Acme</b> signs deal",
            "link": "https://www.globenewswire.com/x ",
            "description": "Body &lt;text&gt;",
            "publishedDate": "2024-05-01T12:00:00Z",
            "tickers": "acme, beta",
            "id": 42,
        },
        source="feed",
    )
    assert item.title == "Acme signs deal"
    assert item.url == "https://www.globenewswire.com/x"
    assert item.summary == "Body <text>"
    assert item.published_at == "2024-05-01T12:00:00+00:00"
    assert item.symbols == ("ACME", "BETA")
    assert item.source == "feed"
    assert item.id == "42"


def test_default_id_from_symbol_date_url():
    item = normalize_row(
        {"title": "t", "url": "https://h/x", "date": "2024-05-01T12:00:00Z", "symbol": "acme"}
    )
    assert item.id == "ACME|2024-05-01T12:00:00+00:00|https://h/x"
    assert normalize_row({"title": "t"}).id == "NA||"


def test_empty_rows_are_dropped():
    rows = [{"title": ""}, {"summary": "<br/>"}, "junk", {"text": "body only"}]
    items = list(normalize_rows(rows, "src"))
    assert len(items) == 1
    assert items[0].summary == "body only"
    assert items[0].title == ""
