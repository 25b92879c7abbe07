import math

import pytest

from neon_pr.classify import classify_item
from neon_pr.models import EventClass
from neon_pr.score import (
    BASELINE,
    RATIO_BOOST,
    cap_tier_bonus,
    noise_ceiling,
    score_classified,
    score_item,
)

WIRE = "https://www.businesswire.com/news/home/1"


def test_misinformation_scores_zero():
    text = "Acme Corp retracts press release issued in error"
    for klass in (EventClass.ACQUISITION_BUYOUT, EventClass.FDA_MARKETING_AUTH, EventClass.OTHER):
        assert score_item(klass, text, WIRE, 5_000_000) == 0.0


@pytest.mark.parametrize("klass", list(EventClass))
@pytest.mark.parametrize(
    "cap",
    [None, 0, -5, float("nan"), float("inf"), 1.0, 9_000_000, 2e12],
)
def test_score_always_in_unit_interval(klass, cap):
    text = (
        "Record quarter: revenue tripled to $900 million under a definitive agreement "
        "with Nvidia; statistically significant topline; $12.00 per share"
    )
    for t in (text, "", None):
        s = score_item(klass, t, WIRE, cap, symbol_count=1)
        assert 0.0 <= s <= 1.0
        assert not math.isnan(s)


def test_law_firm_ceiling_is_sticky():
    text = "Rosen Law Firm announces class action against Acme; $500 million record losses tripled"
    s = score_item(EventClass.TIER1_PARTNERSHIP, text, WIRE, 5_000_000)
    assert s <= 0.12


def test_awards_ceiling_only_without_substance():
    pure = "Acme named finalist for innovation award"
    assert noise_ceiling(pure) == 0.18
    assert noise_ceiling("Acme awarded $4 million contract by county") == 1.0


def test_special_dividend_exempt_from_buyback_ceiling():
    assert noise_ceiling("Board authorizes share repurchase program") == 0.20
    assert noise_ceiling("Acme declares special cash dividend of $1.50 per share") == 1.0


def test_off_wire_modulation():
    text = "Acme enters into a definitive merger agreement at $4.00 per share"
    on = score_item(EventClass.ACQUISITION_BUYOUT, text, WIRE, 500_000_000)
    off = score_item(EventClass.ACQUISITION_BUYOUT, text, "https://example.com/x", 500_000_000)
    assert on > off


def test_micro_cap_announcement_escapes_off_wire_cap():
    text = "Acme announces acquisition of Beta Labs"
    micro = score_item(EventClass.ACQUISITION_BUYOUT, text, None, 20_000_000)
    mid = score_item(EventClass.ACQUISITION_BUYOUT, text, None, 200_000_000)
    assert micro > mid


def test_pivotal_adjustment_depends_on_endpoint_language():
    strong = "Phase 3 pivotal trial met the primary endpoint"
    weak = "Phase 3 pivotal trial completed enrollment"
    assert score_item(EventClass.PIVOTAL_TRIAL_SUCCESS, strong, WIRE, 2e9) > score_item(
        EventClass.PIVOTAL_TRIAL_SUCCESS, weak, WIRE, 2e9
    )


def test_asset_sale_ceiling():
    text = "Acme completes the sale of subsidiary to Beta Corp in a definitive agreement"
    assert score_item(EventClass.ACQUISITION_BUYOUT, text, WIRE, 5_000_000) <= 0.40


def test_cap_tier_bonus_is_monotonic():
    caps = [1e6, 9.9e6, 1e7, 2.4e7, 2.5e7, 9.9e7, 1e8, 9.9e8, 1e9, 1e12]
    bonuses = [cap_tier_bonus(c) for c in caps]
    assert bonuses == sorted(bonuses, reverse=True)
    assert cap_tier_bonus(None) == 0.10
    assert cap_tier_bonus(1e12) == 0.0


def test_single_symbol_nudge():
    text = "Acme signs agreement"
    one = score_item(EventClass.OTHER, text, None, 2e9, symbol_count=1)
    two = score_item(EventClass.OTHER, text, None, 2e9, symbol_count=2)
    assert one == pytest.approx(two + 0.03)


def test_baseline_covers_every_class():
    assert set(BASELINE) == set(EventClass)


def test_scoring_is_deterministic():
    text = "Acme wins $20 million Army contract"
    runs = {score_item(EventClass.MAJOR_GOV_CONTRACT, text, WIRE, 30_000_000) for _ in range(10)}
    assert len(runs) == 1


def test_meeting_language_does_not_cap_binding_merger(make_item):
    item = make_item(
        title=(
            "Acme Corp enters into a definitive merger agreement to be acquired by "
            "Buyer Holdings for $5.00 per share in cash"
        ),
        summary="The transaction is subject to approval by Acme shareholders at a special meeting.",
        url="https://www.globenewswire.com/news-release/2024/05/01/1",
    )
    ci = score_classified(classify_item(item, 20_000_000))
    assert ci.klass is EventClass.ACQUISITION_BUYOUT
    assert ci.score > BASELINE[EventClass.ACQUISITION_BUYOUT]


def test_meeting_notice_alone_is_capped():
    assert noise_ceiling("Acme to hold special meeting of shareholders on June 3") == 0.20
    assert noise_ceiling("Acme enters into a definitive merger agreement; special meeting to follow") == 1.0


def test_ratio_tier_boost_at_half_of_cap():
    text = "Acme signs $45 million supply agreement with Northwind Trading Corp."
    # 90M and unknown caps share the same cap-tier bonus
    assert cap_tier_bonus(90_000_000) == cap_tier_bonus(None)
    with_ratio = score_item(EventClass.TIER1_PARTNERSHIP, text, WIRE, 90_000_000)
    without = score_item(EventClass.TIER1_PARTNERSHIP, text, WIRE, None)
    assert with_ratio - without == pytest.approx(RATIO_BOOST[4])
    assert RATIO_BOOST[4] == 0.10
