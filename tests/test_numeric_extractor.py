import pytest

from neon_pr.numeric_extractor import (
    extract_dollars_millions,
    has_quant_details,
    materiality,
    normalize_text,
    ratio_tier,
)


@pytest.mark.parametrize(
    "text,expected",
    [
        ("awarded a $12.5 million contract", 12.5),
        ("a US$1.2 billion facility", 1200.0),
        ("$3bn program", 3000.0),
        ("raised $4,500,000 in the round", 4.5),
        ("order valued at $2M", 2.0),
        ("no figures here", None),
        ("", None),
    ],
)
def test_extract_dollars_millions(text, expected):
    got = extract_dollars_millions(text)
    if expected is None:
        assert got is None
    else:
        assert got == pytest.approx(expected)


def test_bare_single_letter_unit_needs_dollar_sign():
    assert extract_dollars_millions("Phase 2b trial") is None
    assert extract_dollars_millions("about 15m users") is None


def test_ratio_tiers():
    assert ratio_tier(None) == 0
    assert ratio_tier(0.049) == 0
    assert ratio_tier(0.05) == 1
    assert ratio_tier(0.10) == 2
    assert ratio_tier(0.25) == 3
    assert ratio_tier(3.0) == 4


def test_materiality_against_cap():
    m = materiality("secures $10 million purchase order", 20_000_000)
    assert m.amount_m == 10.0
    assert m.material and m.major
    assert m.ratio == pytest.approx(0.5)
    assert m.ratio_tier == 4
    assert m.dollar_tier == 2


def test_materiality_unknown_cap_has_no_ratio():
    m = materiality("secures $2 million order", None)
    assert m.ratio is None
    assert m.ratio_tier == 0
    assert m.material and not m.major


def test_has_quant_details():
    assert has_quant_details("revenue up 45%")
    assert has_quant_details("$3.10 per share")
    assert has_quant_details("ships 1,200 units")
    assert not has_quant_details("a strategic update")


def test_normalize_text_folds_typography():
    assert normalize_text("Acme’s  “new”\n deal – signed") == "Acme's \"new\" deal - signed"
