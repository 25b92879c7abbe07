"""Rule-based catalyst classification.

Each press item is mapped onto one :class:`EventClass` plus a raw rule
weight.  The rule set is plain data: hard suppression guards, then an
ordered tuple of :class:`Rule` entries evaluated by one generic engine
(:func:`classify_text`).  Every call builds its own context and weight
accumulator, so the engine holds no shared mutable state and is safe to
call from concurrent workers.

Evaluation order:
    1. hard suppression guards (retractions, law-firm boilerplate, ...)
    2. provenance (on-wire) check
    3. positive rules, all satisfied rules contribute
    4. dollar/ratio tiers adjust scale-sensitive rules
    5. synergy boosts between related categories
    6. aggregation: highest total wins, ties go to the category whose
       first contributing rule was registered first
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import (
    Callable,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Pattern,
    Tuple,
    Union,
)

from .logging_utils import get_logger
from .models import ClassifiedItem, EventClass, RawItem, sanitize_market_cap
from .numeric_extractor import Materiality, materiality, normalize_text
from .source_credibility import is_on_wire

log = get_logger("classify")

E = EventClass

TIER1_COUNTERPARTIES: Tuple[str, ...] = (
    "Nvidia", "Microsoft", "OpenAI", "Apple", "Amazon", "AWS", "Google",
    "Alphabet", "Meta", "Facebook", "Tesla", "Oracle", "Salesforce", "Adobe",
    "IBM", "Intel", "AMD", "Broadcom", "Qualcomm", "TSMC", "Samsung", "Cisco",
    "Dell", "HPE", "Supermicro", "Snowflake", "Palantir", "Siemens", "Sony",
    "Workday", "ServiceNow", "Shopify", "Twilio", "Atlassian", "Zoom",
    "Datadog", "CrowdStrike", "Okta", "MongoDB", "Cloudflare", "Stripe",
    "Block", "Square", "Walmart", "Target", "Costco", "Home Depot", "Lowe's",
    "Best Buy", "Alibaba", "Tencent", "JD.com", "ByteDance", "TikTok",
    "Lockheed Martin", "Raytheon", "RTX", "Boeing", "Northrop Grumman",
    "General Dynamics", "L3Harris", "BAE Systems", "Thales", "Airbus",
    "SpaceX", "NASA", "Space Force", "USSF", "DARPA",
    "Department of Defense", "DoD", "Army", "Navy", "Air Force", "Pfizer",
    "Merck", "Johnson & Johnson", "J&J", "Bristol-Myers", "BMS", "Eli Lilly",
    "Lilly", "Sanofi", "GSK", "AstraZeneca", "Novo Nordisk", "Roche",
    "Novartis", "Bayer", "Amgen", "AbbVie", "Takeda", "Gilead", "Biogen",
    "Regeneron", "Medtronic", "Boston Scientific", "Abbott", "GE Healthcare",
    "Philips", "Siemens Healthineers", "Intuitive Surgical", "BARDA", "HHS",
    "NIH", "CMS", "Medicare", "VA", "FDA", "EMA", "EC", "MHRA", "PMDA",
    "ExxonMobil", "Chevron", "BP", "Shell", "TotalEnergies", "Schlumberger",
    "Halliburton", "Caterpillar", "Deere", "GE", "Honeywell", "Disney",
    "Netflix", "Comcast", "NBCUniversal", "Warner Bros. Discovery",
    "Paramount", "Visa", "Mastercard", "PayPal", "American Express",
    "Verizon", "AT&T", "T-Mobile", "Uber", "Lyft", "DoorDash", "Instacart",
    "SAP", "Databricks", "Anthropic", "Cohere", "Epic Games", "Unity",
    "Nintendo", "Red Hat", "GitHub",
)

# Case-sensitive: "Target", "Block" and "Shell" are also plain English words.
TIER1_RX = re.compile(
    r"\b(?:" + "|".join(re.escape(n) for n in TIER1_COUNTERPARTIES) + r")(?:'s)?\b"
)

# Named counterparty by corporate suffix ("... with Acme Mining Corp.").
_COMPANY_SUFFIX_RX = re.compile(
    r"\b(?:with|and|from|by|to)\s+(?:[A-Z][\w&.'-]*\s+){0,4}?"
    r"(?:Inc|Corp|Corporation|Ltd|Limited|LLC|L\.L\.C|PLC|plc|AG|SA|S\.A|GmbH|N\.V|Co|Company|Holdings)\b\.?"
)

TIER1_SMALL_VERBS = re.compile(
    r"\b(powered by|built (?:on|with)|integrat(?:es|ed)? with|adopt(?:s|ed)|selects?|"
    r"standardiz(?:es|ed) on|deploys?|rolls out|invests? in|"
    r"makes? (?:a )?strategic investment in|expands?|extends?|renews?)\b",
    re.IGNORECASE,
)

_RAW_PATTERNS: Mapping[str, str] = {
    # --- bio / clinical ---
    "pivotal": r"\b(phase\s*(iii|3)|pivotal|registrational|late[- ]stage)\b.*\b(success|met (?:the )?primary endpoint|statistically significant|p<\s*0?\.\d+)\b",
    "topline": r"\b(top-?line)\b.*\b(positive|met (?:the )?primary endpoint|statistically significant|p<\s*0?\.\d+)\b",
    "mid_stage_win": r"\b(phase\s*(ii|2)|mid[- ]stage)\b.*\b(win|successful|success|met|achieved|statistically significant|primary endpoint)\b",
    "adcom": r"\b(advisory (committee|panel)|adcom)\b.*\b(vote|voted|recommends?)\b",
    "approval": r"\b(FDA|EMA|EC|MHRA|PMDA|NMPA|CFDA|ANVISA|Health Canada|HC|TGA|MFDS|CDSCO|SAHPRA)\b.*\b(approved?|approval|authorized|authori[sz]ation|clearance|clears|EUA|510\(k\)|De\s?Novo|IDE (?:approval|approved))",
    "ukca": r"\bukca\b.*\b(mark|certification|certificate)\b.*\b(approval|approved|granted|obtained)\b",
    "designation": r"\b(breakthrough (?:therapy|device)|BTD|fast[- ]track|orphan (drug )?designation|PRIME|RMAT)\b",
    "nda_accept_or_priority": r"\b(FDA|EMA|MHRA|PMDA|NMPA|ANVISA|Health Canada|HC|TGA)\b.*\b(accepts?|accepted|acceptance(?: of| for review)?)\b.*\b((re)?submission|resubmission|NDA|BLA|MAA)\b|\b(priority review)\b",
    "clinical_hold_lift": r"\b(FDA)\b.*\b(lifts?|lifted|removes?|removed)\b.*\b(clinical hold)\b",
    # --- M&A ---
    "mna_announce": r"\b(announce[sd]?|completes?|completed|closes?|closed)\b[^.]{0,40}\b(acquisition|acquire[sd]?|merger)\b",
    "mna_binding": r"\b(definitive (agreement|merger)|merger agreement (executed|signed)|enter(?:s|ed)? into (a )?definitive (agreement|merger)|business combination( agreement)?|amalgamation agreement|plan of merger)\b",
    "mna_will_acquire": r"\b(will|to)\s+acquire\b|\bto be acquired\b",
    "mna_per_share_or_value": r"\$\s?\d+(?:\.\d+)?\s*(?:per|/)\s*share\b|(?:deal|transaction|enterprise|equity)\s+value(?:d)?\s+at\s+\$?\d+(?:\.\d+)?\s*(?:million|billion|bn|mm|m)\b",
    "mna_non_binding": r"\b(non[- ]binding|indicative|letter of intent|LOI)\b",
    "mna_admin_only": r"\b(extend(s|ed|ing)?|extension)\b.*\b(tender offer|offer)\b",
    "mna_asset_or_property": r"\b(divestiture|divests?|carve[- ]?out|spin[- ]?off|dispos(?:e|es|ed|al)|asset(?:s)?\s+(?:sale|disposition|purchase)|(?:completes?|closes?)\s+(?:the\s+)?(?:sale|disposition)\s+of|sale\s+of\s+(?:subsidiary|business|unit|division|assets?))\b",
    "mna_unsolicited_priced": r"\b(unsolicited|non[- ]binding|indicative)\b.*\b(proposal|offer)\b.*(?:\$\s?\d+(?:\.\d+)?\s*(?:per|/)\s*share|valu(?:e|ed)\s+at\s+\$?\d+(?:\.\d+)?\s*(?:million|billion|bn|mm|m))\b",
    "mna_premium_mention": r"\brepresent(?:s|ed)?\s+(?:an?\s+)?(\d{2,3})\s?%\s+premium\b",
    "strategic_alts_concluded": r"\b(strategic alternatives|sale process|exploring options|review of alternatives)\b.*\b(concluded|completed|resulted|outcome|agreement|deal)\b",
    "spin_off_distribution": r"\b(spin[- ]?off|separation|separate[sd]?|split[- ]?off)\b.*\b(record date|distribution date|when[- ]issued|Form\s*10)\b",
    # --- partnerships / contracts / government ---
    "partnership_any": r"\b(partner(?:ship)?|strategic (?:alliance|partnership)|joint venture|JV|collaborat(?:e|ion)|co[- ]develop|co[- ]produce|distribution|licen[cs]e|supply|integration|deployment|offtake|off[- ]?take)\b",
    "deal_signed": r"\b(signed|signs|inks?|enter(?:s|ed)? into)\b.*\b(agreement|deal|contract|MOU|memorandum of understanding|term sheet)\b",
    "contract_any": r"\b(contract|award|task order|IDIQ|grant|funding|purchase order|PO|framework agreement|letter of award|LOA)\b",
    "preferred_vendor": r"\b(preferred (vendor|supplier|partner)|approved vendor)\b",
    "pilot_any": r"\b(pilot|pilot program|trial deployment|proof[- ]of[- ]concept|POC)\b",
    "gov_words": r"\b(NASA|USSF|Space Force|DoD|Department of Defense|Army|Navy|Air Force|DARPA|BARDA|HHS|NIH|CMS|Medicare|VA|DOE|Department of Energy|Loan Programs Office|LPO|MoD|NHS|European Commission|NIST|NSF)\b",
    "gov_routine": r"\b(continued production|follow[- ]on|option (exercise|exercised)|extension|renewal)\b",
    "gov_equity": r"\b(?:government|DoD|Department of Defense|HHS|BARDA|DOE|Department of Energy)\b.*\b(preferred (stock|equity)|equity|investment|warrants?)\b",
    "gov_loan": r"\b(Department of Energy|DOE|Loan Programs Office|LPO)\b.*\b(loan|conditional commitment)\b.*\$\s?\d+(?:\.\d+)?\s*(?:million|billion|bn|mm|m)\b",
    "name_drop_context": r"\b(mention(?:ed)?|blog|keynote|showcase|featured|ecosystem|catalog|marketplace|listing)\b",
    # --- corporate / earnings ---
    "earnings_beat_guide_up": r"\b(raises?|increas(?:es|ed)|hikes?)\b.*\b(guidance|outlook|forecast)\b|\b(beat[s]?)\b.*\b(consensus|estimates|Street|expectations)\b",
    "big_percent_growth": r"\b(revenue|sales|eps|earnings|arr|bookings|net income)\b[^.%]{0,90}?\b(up|increase[sd]?|grow(?:n|th|s)?|jump(?:ed)?|soar(?:ed)?|surged)\b[^%]{0,25}?(\d{2,3})\s?%",
    "record_sales": r"\brecord\b[^.]{0,40}\b(revenue|sales)\b",
    "swing_to_profit": r"\b(returns?|returned|swing|swung|back)\s+to\s+(profit|profitability|positive (?:net )?income)\b",
    "reimbursement_win": r"\b(CMS|Medicare)\b.*\b(NTAP|new (technology|tech) add[- ]on payment|transitional pass[- ]through|TPT|HCPCS(?:\s*code)?\s*[A-Z0-9]+|reimbursement (?:increase|raised|higher|set at))\b",
    "index_inclusion": r"\b(added|to be added|to join|inclusion|included)\b.*\b(Russell\s?(2000|3000|Microcap)|MSCI|S&P\s?(500|400|600)|S&P/TSX(?:\sComposite)?|S&P Dow Jones Indices|FTSE)\b",
    "uplist": r"\b(uplisting|uplist|approved to list|approved for listing|to list on)\b.*\b(Nasdaq|NYSE|NYSE American)\b",
    "listing_compliance": r"\b(regain(?:ed|s)?|returns? to|back in)\b.*\b(compliance)\b.*\b(Nasdaq|NYSE|listing)\b",
    "special_dividend": r"\b(special (cash )?dividend)\b.*\$\s?\d+(?:\.\d+)?\s*(?:per|/)\s*share|\b(special (cash )?dividend of)\s*\$\s?\d+(?:\.\d+)?\b",
    "buyback": r"\b(share repurchase|buyback|issuer tender offer|dutch auction)\b.*\b(authorized|authorization|increase|announc(?:es|ed)|commence(?:s|d)|launch(?:es|ed))\b",
    "debt_reduce": r"\b(redeem(?:s|ed|ing)?|retire(?:s|d|ment)|repay(?:s|ment|ed)?|extinguish(?:es|ment))\b.*\b(debt|notes?|debentures|convertible (?:notes|debentures)|term loan|credit facility)\b",
    "ch11_exit": r"\b(emerges?|emergence)\b.*\b(chapter\s*11|bankruptcy)\b|\b(plan of reorganization)\b.*\b(confirm(?:ed|ation))\b",
    # --- legal / meme ---
    "court_win": r"\b(court|judge|ITC|PTAB)\b.*\b(grants?|wins?|injunction|vacates?|stays?|exclusion order)\b",
    "court_dismiss": r"\b(dismiss(?:es|ed|al)|with prejudice|case (?:is|was)?\s*dismissed)\b",
    "legal_settlement_royalties": r"\b(settlement|settles)\b.*\b(royalt(?:y|ies)|minimum payments?|licensing revenue|lump[- ]sum)\b",
    "meme_or_influencer": r"\b(Roaring Kitty|Keith Gill|meme stock|wallstreetbets|WSB|Jensen Huang|Nvidia (blog|mention))\b",
    # --- suppression guards ---
    "misinfo": r"\b(misinformation|unauthorized (press )?release|retracts? (?:a )?press release|clarif(?:y|ies) misinformation)\b",
    "security_incident_update": r"\b(cyber(?:security)?|security|ransomware|data (?:breach|exposure)|cyber[- ]?attack)\b.*\b(update|updated|provid(?:e|es)d? an? update)\b",
    "awards_pr": r"\b(award(?:ed)?|honor(?:ed)?|recognition|prize|winner|winning)\b",
    "award_substance": r"\b(contract|task order|IDIQ|grant|funding|purchase order|order|agreement|loan|financing|\$\s?\d)",
    "name_ticker_change": r"\b(renam(?:e|ed|es)|name change|changes? (its )?name|ticker (?:symbol )?chang(?:e|es|ed)|to trade under)\b",
    "proxy_advisor": r"\b(ISS|Institutional Shareholder Services|Glass Lewis)\b.*\b(recommend(s|ed)?|support(s|ed)?)\b.*\b(vote|proposal|deal|merger)\b",
    "vote_admin_only": r"\b(definitive proxy|proxy (statement|materials)|special meeting|annual meeting|extraordinary general meeting|EGM|shareholder vote|record date)\b",
    "investor_confs": r"\b(participat(e|es|ing)|to participate|will participate)\b.*\b(investor (?:conference|conferences)|conference|fireside chat|non-deal roadshow)\b",
    "law_firm_pr": r"\b(class action|securities class action|investor (?:lawsuit|alert|reminder)|deadline alert|shareholder rights law firm|securities litigation|investigat(?:ion|ing)|Hagens Berman|Pomerantz|Rosen Law Firm|Glancy Prongay|Bronstein[, ]+Gewirtz|Kahn Swick|Saxena White|Kessler Topaz|Levi & Korsinsky)\b",
    "analyst_media": r"\b(analyst|media coverage|initiates? coverage|upgrades?|downgrades?|price target|research report|buy rating|sell rating|neutral rating)\b",
    "typo_erratum": r"\b(typo|erratum|correction|corrects|amended release)\b",
    # --- financing / dilution ---
    "plain_dilution": r"\b(securities purchase agreement|registered direct|PIPE|private placement|unit financing|equity offering|warrants?)\b",
    "premium_above_market": r"premium|above[- ]market",
    "anti_dilution_positive": r"\b(terminates?|terminated|withdraws?|withdrawn|cancels?|cancelled|reduces?|downsized?)\b.*\b(offering|registered direct|ATM|at[- ]the[- ]market|public offering|securities purchase agreement)\b",
    "no_warrants_no_rs": r"\b(no (?:warrants?|pre[- ]funded warrants?|rights)|no reverse split|without (?:warrants|a reverse split))\b",
    # --- crypto / AI treasury ---
    "crypto_treasury_buy": r"\b(buy|bought|purchase[sd]?|acquire[sd]?)\b.*\b(Bitcoin|BTC|Ethereum|ETH|Solana|SOL|LINK|Chainlink|crypto(?:currency)?|tokens?)\b",
    "crypto_treasury_discuss": r"\b(treasury|reserve|policy|program|strategy)\b.*\b(discuss(?:ions?)?|approached|proposal|term sheet|non[- ]binding|indicative)\b.*\b(\$?\d+(?:\.\d+)?\s*(?:million|billion|bn|mm|m))\b",
    "crypto_treasury_initiate": r"\b(launch(?:es|ed)?|initiat(?:es|ed|ing)|adopt(?:s|ed|ing)|establish(?:es|ed|ing)|implement(?:s|ed|ing)|convert(?:s|ed|ing)\s+(?:a |portion of )?cash\s+(?:to|into))\b[^.]{0,120}\b(Bitcoin|BTC)\b[^.]{0,120}\b(treasury|reserve)\b[^.]{0,120}\b(strategy|program|policy|framework|asset)\b",
    "ai_pivot": r"\b(AI|artificial intelligence|LLM|GPT)\b.*\b(pivot|strategy|initiative|platform|integration|launch(?:es|ed)?)\b",
    "ai_action": r"(launch|deploy|integrat|contract|order|revenue|customer|PO|purchase|binding)",
    "patent_grant": r"\b(U\.?S\.?|US)\s+patent\b.*\b(grant(?:ed)?|issued?|notice of allowance)\b",
    # --- IPO ---
    "ipo_price": r"\b(prices?|priced)\b.*\b(initial public offering|IPO)\b",
    "ipo_begin_trade": r"\b(begins?|commences?)\s+trading\b.*\b(Nasdaq|NYSE|NYSE American)\b",
    # --- micro-cap / OTC ---
    "rs_with_uplist": r"\breverse(?: |-)?split\b[^.]{0,120}\b(uplist|Nasdaq|NYSE|compliance plan|deficiency plan|hearing panel)\b",
    "rs_plan_accepted": r"deficiency plan accepted|panel grants",
    "otc_ce_removed": r"\b(Caveat Emptor|CE)\b.*\b(removed|removal)\b|\b(resume(?:s|d)?\s+trading)\b.*\b(OTC|Pink|QB|QX)\b",
    "going_concern_removed": r"\b(going[- ]concern)\b.*\b(removed|no longer|eliminated|lifted)\b",
    "audit_cured": r"\b(10-K|10-Q|annual report|quarterly report)\b.*\b(filed|re-filed|become[s]? current|brings? filings current|cures? delinquency)\b",
    "insider_buy": r"\b(Form\s*4|purchases?|buys?)\b.*\b(director|officer|CEO|CFO|insider|management)\b",
    "insider_cluster": r"\b(multiple|several|numerous)\b.*\b(Form\s*4|insider purchases?)\b",
    "toxic_terminated": r"\b(terminat(?:es|ed)|cancels?|withdraws?|ends?)\b.*\b(Equity Line|ELOC|SEPA|S-3|ATM|convertible (notes?|debentures)|toxic|dilut(?:ive|ion))\b",
    "as_reduced": r"\b(authori[sz]ed)\s+shares?\b.*\b(reduc(?:ed|es|tion)|cut|decrease)\b",
    "distribution_deal": r"\b(distribution|distributor|reseller|channel partner|wholesale)\b.*\b(agreement|deal|contract)\b",
    "purchase_order": r"\b(purchase order|PO)\b.*\b(received|secured|award(?:ed)?)\b",
    "retail_chains": r"\b(Walmart|Target|Costco|Best Buy|Amazon|Home Depot|Lowe'?s|Walgreens|CVS|Kroger|Tesco|Carrefour)\b",
    "custodianship_rm": r"\b(custodianship|receiver|reverse merger|RTO|business combination)\b.*\b(granted|approved|definitive|agreement)\b",
    # --- mining / project build-out ---
    "project_finance": r"\b(secures?|obtains?|arranges?|closes?|executes?|signs?)\b[^.]{0,60}\b(gold loan|loan|credit facility|project financing|project finance|debt financing|term loan|royalty(?:\s+financing)?|stream(?:ing)? (?:deal|agreement)|non[- ]dilutive (?:financing|funding))\b[^.]{0,120}\b(fully\s*fund|fund(?:ing)?|capex|capital (?:cost|expenditure)|construction|starter (?:operation|project)|heap[- ]?leach|mine (?:build|construction))\b",
    "construction_decision": r"\b(board of directors )?approv(?:es|ed)\b[^.]{0,80}\b(construction|final investment decision|FID|go[- ]ahead|build)\b",
    "production_start": r"\b(commenc(?:es|ed|ing)|begin(?:s|ning)|starts?|started)\b[^.]{0,80}\b(production|processing|mining|operations?|heap[- ]?leach)\b",
    "permit_grant": r"\b(permit|licen[cs]e|environmental|IBAMA|IBAMA/SEMAS|EIA|EIS|concession)\b[^.]{0,60}\b(approved|granted|received|obtained|issued)\b",
    "royalty_stream": r"\b(royalty|stream(?:ing)?)\b[^.]{0,60}\b(agreement|financing|facility|transaction|deal)\b",
    "feas_study": r"\b(pre[- ]?feasibility|feasibility (?:study)?|PFS|DFS)\b[^.]{0,60}\b(released|updated|results?|positive|economics?)\b",
    "econ_buzz": r"\b(NPV|IRR|payback|all[- ]in sustaining cost|AISC)\b",
    # --- scale / safeguard helpers ---
    "large_dollars": r"\$?\s?(?:\d{2,4})\s*(?:million|billion|bn|mm)\b",
    "scale_words": r"\b(multi[- ]year|nationwide|global|enterprise[- ]wide|rollout)\b",
    "fully_fund": r"fully\s*fund",
    "strong_action": r"\b(definitive|binding|execut(?:e|ed|ion)|close[sd]?|commenc(?:e|ed|ing)|approved|granted|awarded|contract|agreement|loan|facility|financing|offtake|royalty|stream)\b",
}

PAT: Dict[str, Pattern[str]] = {
    name: re.compile(src, re.IGNORECASE) for name, src in _RAW_PATTERNS.items()
}


def is_misinformation(text: str) -> bool:
    return PAT["misinfo"].search(text or "") is not None


def is_pure_award(text: str) -> bool:
    """Award/recognition language with no contract, order or funding attached."""
    text = text or ""
    return (
        PAT["awards_pr"].search(text) is not None
        and PAT["award_substance"].search(text) is None
    )


def has_tier1_counterparty(text: str) -> bool:
    return TIER1_RX.search(text or "") is not None


def has_named_counterparty(text: str) -> bool:
    text = text or ""
    return has_tier1_counterparty(text) or _COMPANY_SUFFIX_RX.search(text) is not None


class Context:
    """Per-call evaluation context; pattern results are memoised per call."""

    __slots__ = ("text", "on_wire", "market_cap", "mat", "_memo")

    def __init__(self, text: str, on_wire: bool, market_cap: Optional[float]):
        self.text = text
        self.on_wire = on_wire
        self.market_cap = market_cap
        self.mat: Materiality = materiality(text, market_cap)
        self._memo: Dict[str, bool] = {}

    def m(self, name: str) -> bool:
        hit = self._memo.get(name)
        if hit is None:
            hit = PAT[name].search(self.text) is not None
            self._memo[name] = hit
        return hit

    def any(self, *names: str) -> bool:
        return any(self.m(n) for n in names)

    @property
    def tier1(self) -> bool:
        hit = self._memo.get("__tier1")
        if hit is None:
            hit = has_tier1_counterparty(self.text)
            self._memo["__tier1"] = hit
        return hit

    # --- composite predicates shared by several rules ---

    def mna_binding(self) -> bool:
        return self.m("mna_binding") or (
            self.m("mna_will_acquire") and self.m("mna_per_share_or_value")
        )

    def mna_low_impact(self) -> bool:
        return self.any("mna_non_binding", "mna_admin_only", "mna_asset_or_property")

    def gov_contract(self) -> bool:
        return self.m("gov_words") and self.m("contract_any")

    def partnership_words(self) -> bool:
        return self.any(
            "partnership_any", "contract_any", "deal_signed", "preferred_vendor"
        )

    def is_partnership(self) -> bool:
        return self.partnership_words() or (
            self.tier1
            and (TIER1_SMALL_VERBS.search(self.text) is not None or self.m("pilot_any"))
        )

    def name_drop_only(self) -> bool:
        return (
            self.tier1
            and not (self.partnership_words() or self.m("pilot_any"))
            and self.m("name_drop_context")
        )

    def order_or_distribution(self) -> bool:
        return self.any("distribution_deal", "purchase_order")

    def big_kpi(self) -> bool:
        if self.m("swing_to_profit") or self.m("record_sales"):
            return True
        found = PAT["big_percent_growth"].search(self.text)
        return bool(found) and int(found.group(3)) >= 50


Weight = Union[float, Callable[[Context], float]]


@dataclass(frozen=True)
class Rule:
    """One positive matcher.

    ``provenance``: "required" fires only on-wire, "bonus" adds +1 on-wire,
    "reduced" halves the weight off-wire, None ignores provenance.
    ``scale`` marks rules whose weight follows the materiality ratio.
    """

    name: str
    category: EventClass
    weight: Weight
    when: Callable[[Context], bool]
    provenance: Optional[str] = None
    scale: bool = False
    max_weight: Optional[float] = None


@dataclass(frozen=True)
class Guard:
    name: str
    when: Callable[[Context], bool]
    weight: float = 0.0


@dataclass(frozen=True)
class Classification:
    category: EventClass
    weight: float
    hits: Tuple[str, ...] = ()
    on_wire: bool = False


def _dollar_bonus(major: float, material: float = 0.0) -> Callable[[Context], float]:
    def bonus(c: Context) -> float:
        return major if c.mat.major else material if c.mat.material else 0.0

    return bonus


def _plus(base: float, *parts: Callable[[Context], float]) -> Callable[[Context], float]:
    return lambda c: base + sum(p(c) for p in parts)


def _dilution_unqualified(c: Context) -> bool:
    return c.m("plain_dilution") and not c.any(
        "premium_above_market",
        "no_warrants_no_rs",
        "anti_dilution_positive",
        "rs_with_uplist",
    )


GUARDS: Tuple[Guard, ...] = (
    Guard("misinformation", lambda c: c.m("misinfo")),
    Guard("security_incident_update", lambda c: c.m("security_incident_update")),
    Guard("pure_award", lambda c: c.m("awards_pr") and not c.m("award_substance")),
    Guard("name_ticker_change", lambda c: c.m("name_ticker_change")),
    Guard(
        "proxy_or_vote_admin",
        lambda c: c.any("proxy_advisor", "vote_admin_only") and not c.m("mna_binding"),
    ),
    Guard("investor_conference", lambda c: c.m("investor_confs")),
    Guard("law_firm_pr", lambda c: c.m("law_firm_pr")),
    Guard("analyst_media", lambda c: c.m("analyst_media")),
    Guard("typo_erratum", lambda c: c.m("typo_erratum")),
    # Plain dilution keeps a small residual weight: mildly informational.
    Guard("plain_dilution", _dilution_unqualified, weight=0.1),
)


def _project_build(c: Context) -> bool:
    return c.any("project_finance", "construction_decision", "production_start", "permit_grant")


def _project_weight(c: Context) -> float:
    w = 7.0 + _dollar_bonus(2, 1)(c)
    if c.m("project_finance") and c.m("construction_decision"):
        w += 1
    if c.m("production_start"):
        w += 1
    return w


def _order_weight(c: Context) -> float:
    return 5.0 + (1 if c.mat.material else 0) + (1 if c.mat.major else 0) + (
        1 if c.m("retail_chains") else 0
    )


RULES: Tuple[Rule, ...] = (
    # bio / regulatory
    Rule("approval", E.FDA_MARKETING_AUTH, 10, lambda c: c.any("approval", "ukca"), "required"),
    Rule("adcom_positive", E.FDA_ADCOM_POSITIVE, 8, lambda c: c.m("adcom"), "required"),
    Rule(
        "pivotal_or_topline",
        E.PIVOTAL_TRIAL_SUCCESS,
        9,
        lambda c: c.any("pivotal", "topline", "mid_stage_win"),
        "required",
    ),
    Rule("designation", E.REGULATORY_DESIGNATION, 6, lambda c: c.m("designation"), "required"),
    Rule("nda_priority", E.PIVOTAL_TRIAL_SUCCESS, 6, lambda c: c.m("nda_accept_or_priority")),
    Rule("hold_lift", E.PIVOTAL_TRIAL_SUCCESS, 6, lambda c: c.m("clinical_hold_lift")),
    # M&A
    Rule(
        "mna_binding",
        E.ACQUISITION_BUYOUT,
        9,
        lambda c: c.mna_binding() and not c.mna_low_impact(),
    ),
    Rule(
        "mna_announce",
        E.ACQUISITION_BUYOUT,
        7,
        lambda c: c.m("mna_announce") and not c.m("mna_asset_or_property"),
    ),
    Rule(
        "mna_unsolicited_priced",
        E.ACQUISITION_BUYOUT,
        6,
        lambda c: c.m("mna_unsolicited_priced")
        and not c.any("mna_admin_only", "mna_asset_or_property"),
    ),
    Rule("mna_low_impact", E.OTHER, 2, lambda c: c.mna_low_impact()),
    Rule("alts_concluded_sale", E.ACQUISITION_BUYOUT, 7, lambda c: c.m("strategic_alts_concluded")),
    Rule("premium_mention", E.ACQUISITION_BUYOUT, 2, lambda c: c.m("mna_premium_mention")),
    Rule("spin_off_distribution", E.RESTRUCTURING_OR_FINANCING, 6, lambda c: c.m("spin_off_distribution")),
    # government / partnerships
    Rule(
        "gov_contract",
        E.MAJOR_GOV_CONTRACT,
        8,
        lambda c: c.gov_contract() and not c.m("gov_routine"),
        "required",
    ),
    Rule(
        "gov_routine",
        E.OTHER,
        2,
        lambda c: c.gov_contract() and c.m("gov_routine"),
        "required",
    ),
    Rule("gov_equity", E.GOVERNMENT_EQUITY_OR_GRANT, 9, lambda c: c.m("gov_equity")),
    Rule("gov_loan", E.MAJOR_GOV_CONTRACT, 8, lambda c: c.m("gov_loan")),
    Rule(
        "partner_or_contract",
        E.TIER1_PARTNERSHIP,
        lambda c: (7 if c.tier1 else 5) + (1 if c.mat.major else 0),
        lambda c: c.is_partnership() and not c.name_drop_only(),
        scale=True,
    ),
    Rule(
        "tier1_name_drop_only",
        E.MEME_OR_INFLUENCER,
        4,
        lambda c: c.name_drop_only() and not c.is_partnership(),
    ),
    # corporate
    Rule(
        "earnings",
        E.EARNINGS_BEAT_OR_GUIDE_UP,
        lambda c: 6 if c.m("earnings_beat_guide_up") else 5,
        lambda c: c.m("earnings_beat_guide_up") or c.big_kpi(),
        "reduced",
    ),
    Rule("index_inclusion", E.INDEX_INCLUSION, 3, lambda c: c.m("index_inclusion"), "reduced"),
    Rule("uplist", E.UPLISTING_TO_NASDAQ, 6, lambda c: c.m("uplist")),
    Rule("compliance_regained", E.UPLISTING_TO_NASDAQ, 6, lambda c: c.m("listing_compliance")),
    Rule("reimbursement_win", E.POLICY_OR_POLITICS_TAILWIND, 6, lambda c: c.m("reimbursement_win")),
    Rule("special_dividend", E.RESTRUCTURING_OR_FINANCING, 7, lambda c: c.m("special_dividend")),
    Rule(
        "buyback_or_tender",
        E.RESTRUCTURING_OR_FINANCING,
        lambda c: 6 + (1 if (c.mat.amount_m or 0) >= 10 else 0),
        lambda c: c.m("buyback"),
    ),
    Rule("debt_reduction", E.RESTRUCTURING_OR_FINANCING, 5, lambda c: c.m("debt_reduce")),
    Rule("chapter11_exit", E.RESTRUCTURING_OR_FINANCING, 6, lambda c: c.m("ch11_exit")),
    # legal / meme
    Rule("court", E.COURT_WIN_INJUNCTION, 6, lambda c: c.m("court_win")),
    Rule("court_dismissal", E.COURT_WIN_INJUNCTION, 5, lambda c: c.m("court_dismiss")),
    Rule("settlement_royalties", E.COURT_WIN_INJUNCTION, 5, lambda c: c.m("legal_settlement_royalties")),
    Rule("influencer", E.MEME_OR_INFLUENCER, 6, lambda c: c.m("meme_or_influencer")),
    # crypto / treasury
    Rule("crypto_treasury_buy", E.CRYPTO_OR_AI_TREASURY_PIVOT, 7, lambda c: c.m("crypto_treasury_buy"), scale=True),
    Rule("crypto_treasury_discuss", E.CRYPTO_OR_AI_TREASURY_PIVOT, 6, lambda c: c.m("crypto_treasury_discuss")),
    Rule(
        "crypto_treasury_initiate",
        E.CRYPTO_OR_AI_TREASURY_PIVOT,
        _plus(7, _dollar_bonus(1)),
        lambda c: c.m("crypto_treasury_initiate"),
        scale=True,
    ),
    Rule("ipo", E.IPO_DEBUT_POP, 6, lambda c: c.any("ipo_price", "ipo_begin_trade"), "required"),
    # financing exceptions
    Rule("anti_dilution_positive", E.TOXIC_FINANCING_TERMINATED, 7, lambda c: c.m("anti_dilution_positive")),
    Rule("no_warrants_no_rs", E.DILUTION_FREE_INVESTMENT, 7, lambda c: c.m("no_warrants_no_rs")),
    Rule("patent_grant_info", E.OTHER, 1, lambda c: c.m("patent_grant")),
    # micro-cap / OTC
    Rule("rs_with_uplist_plan", E.REVERSE_SPLIT_UPLIST_PATH, 7, lambda c: c.m("rs_with_uplist")),
    Rule("ce_removed_or_resume", E.CE_REMOVAL_OR_RESUME_TRADING, 8, lambda c: c.m("otc_ce_removed")),
    Rule("going_concern_removed", E.GOING_CONCERN_REMOVED, 6, lambda c: c.m("going_concern_removed")),
    Rule("filings_cured_current", E.AUDIT_COMPLETED_FILINGS_CURED, 6, lambda c: c.m("audit_cured")),
    Rule("custodianship_or_reverse_merger", E.CUSTODIANSHIP_OR_RM_DEAL, 7, lambda c: c.m("custodianship_rm")),
    Rule("insider_buy_cluster", E.INSIDER_BUY_CLUSTER, 7, lambda c: c.m("insider_cluster")),
    Rule(
        "insider_buy_single",
        E.INSIDER_BUY_CLUSTER,
        5,
        lambda c: c.m("insider_buy") and not c.m("insider_cluster"),
    ),
    Rule("toxic_financing_terminated", E.TOXIC_FINANCING_TERMINATED, 7, lambda c: c.m("toxic_terminated")),
    Rule("authorized_shares_reduced", E.AUTHORIZED_SHARES_REDUCED, 6, lambda c: c.m("as_reduced")),
    # orders / distribution
    Rule(
        "distribution_named_chain",
        E.DISTRIBUTION_AGREEMENT_MATERIAL,
        _order_weight,
        lambda c: c.order_or_distribution() and c.m("retail_chains"),
        scale=True,
    ),
    Rule(
        "distribution_or_po",
        E.LARGE_ORDER_RELATIVE,
        _order_weight,
        lambda c: c.order_or_distribution() and not c.m("retail_chains"),
        scale=True,
    ),
    Rule(
        "ai_pivot_action",
        E.CRYPTO_OR_AI_TREASURY_PIVOT,
        6,
        lambda c: c.m("ai_pivot") and c.m("ai_action"),
    ),
    # mining / build-out
    Rule(
        "feas_economics",
        E.RESTRUCTURING_OR_FINANCING,
        _plus(5, _dollar_bonus(1, 1)),
        lambda c: c.m("feas_study") and c.m("econ_buzz"),
    ),
    Rule(
        "royalty_stream_funding",
        E.RESTRUCTURING_OR_FINANCING,
        _plus(6, _dollar_bonus(2, 1)),
        lambda c: c.m("royalty_stream"),
    ),
    Rule(
        "project_finance_build_ops_permit",
        E.RESTRUCTURING_OR_FINANCING,
        _project_weight,
        _project_build,
        "bonus",
        scale=True,
        max_weight=9,
    ),
)

# Added to scale-sensitive rules by ratio tier (>=5%, >=10%, >=25%, >=50%).
RATIO_TIER_BONUS = (0.0, 0.5, 1.0, 2.0, 3.0)
_ORDER_RULES = frozenset({"distribution_named_chain", "distribution_or_po"})

# Minimum aggregate weight at which a category counts as a strong catalyst.
STRONG_CATALYST_FLOORS: Mapping[EventClass, float] = {
    E.ACQUISITION_BUYOUT: 8,
    E.FDA_MARKETING_AUTH: 8,
    E.PIVOTAL_TRIAL_SUCCESS: 8,
    E.MAJOR_GOV_CONTRACT: 8,
    E.RESTRUCTURING_OR_FINANCING: 7,
    E.UPLISTING_TO_NASDAQ: 6,
    E.REVERSE_SPLIT_UPLIST_PATH: 7,
    E.CE_REMOVAL_OR_RESUME_TRADING: 7,
    E.INSIDER_BUY_CLUSTER: 7,
    E.TOXIC_FINANCING_TERMINATED: 7,
    E.LARGE_ORDER_RELATIVE: 6,
    E.DISTRIBUTION_AGREEMENT_MATERIAL: 6,
}


def _rule_weight(rule: Rule, c: Context) -> float:
    w = float(rule.weight(c) if callable(rule.weight) else rule.weight)
    if rule.provenance == "bonus" and c.on_wire:
        w += 1
    elif rule.provenance == "reduced" and not c.on_wire:
        w *= 0.5
    if rule.scale and c.mat.ratio is not None:
        w += RATIO_TIER_BONUS[c.mat.ratio_tier]
        if rule.name in _ORDER_RULES and c.mat.ratio_tier == 0:
            w -= 1
    if rule.max_weight is not None:
        w = min(w, rule.max_weight)
    return w


def _apply_synergies(c: Context, by: Dict[EventClass, float], hits: List[str]) -> None:
    def bump(cat: EventClass, amount: float, why: str) -> None:
        by[cat] = by.get(cat, 0.0) + amount
        hits.append(why)

    if E.PIVOTAL_TRIAL_SUCCESS in by and E.FDA_MARKETING_AUTH in by:
        bump(E.FDA_MARKETING_AUTH, 3, "synergy_trial_plus_approval")

    scale_money = c.m("large_dollars") or c.m("scale_words") or c.mat.material
    if scale_money and any(
        k in by
        for k in (E.TIER1_PARTNERSHIP, E.MAJOR_GOV_CONTRACT, E.GOVERNMENT_EQUITY_OR_GRANT)
    ):
        bump(E.OTHER, 2, "synergy_scale_money")

    if E.REVERSE_SPLIT_UPLIST_PATH in by and (
        E.AUDIT_COMPLETED_FILINGS_CURED in by or c.m("rs_plan_accepted")
    ):
        bump(E.REVERSE_SPLIT_UPLIST_PATH, 2, "synergy_rs_filings_cured")

    if c.m("retail_chains"):
        if E.DISTRIBUTION_AGREEMENT_MATERIAL in by:
            bump(E.DISTRIBUTION_AGREEMENT_MATERIAL, 1, "synergy_named_chain")
        elif E.LARGE_ORDER_RELATIVE in by:
            bump(E.LARGE_ORDER_RELATIVE, 1, "synergy_named_chain")


def classify_text(
    text: Optional[str],
    url: Optional[str] = None,
    market_cap: Optional[float] = None,
) -> Classification:
    """Classify a normalised ``title\\nsummary`` blob.

    Total and pure: any input, including empty or None, yields a result.
    """
    blob = normalize_text(text)
    if not blob:
        return Classification(E.OTHER, 0.0)

    c = Context(blob, is_on_wire(url, blob), sanitize_market_cap(market_cap))

    for guard in GUARDS:
        if guard.when(c):
            return Classification(E.OTHER, guard.weight, (guard.name,), c.on_wire)

    by: Dict[EventClass, float] = {}
    hits: List[str] = []
    for rule in RULES:
        if rule.provenance == "required" and not c.on_wire:
            continue
        if not rule.when(c):
            continue
        by[rule.category] = by.get(rule.category, 0.0) + _rule_weight(rule, c)
        hits.append(rule.name)

    if not by and c.on_wire:
        if (c.mat.material or c.m("fully_fund")) and c.m("strong_action"):
            by[E.RESTRUCTURING_OR_FINANCING] = min(8.0, 6.0 + c.mat.dollar_tier)
            hits.append("safeguard_wire_material")

    if not by:
        return Classification(E.OTHER, 0.0, (), c.on_wire)

    _apply_synergies(c, by, hits)

    # max() keeps the first maximal entry; dict order is first-contribution order.
    top_cat, top_w = max(by.items(), key=lambda kv: kv[1])
    strong = any(by.get(cat, 0.0) >= floor for cat, floor in STRONG_CATALYST_FLOORS.items())
    if top_w <= 0 and not strong:
        return Classification(E.OTHER, 0.0, tuple(hits), c.on_wire)
    return Classification(top_cat, top_w, tuple(hits), c.on_wire)


def classify_item(item: RawItem, market_cap: Optional[float] = None) -> ClassifiedItem:
    cap = sanitize_market_cap(market_cap)
    if len(item.symbols) > 1:
        log.debug(
            "multi_symbol_first_only id=%s using=%s dropped=%s",
            item.id,
            item.symbol,
            ",".join(item.symbols[1:]),
        )
    result = classify_text(item.text, item.url, cap)
    return ClassifiedItem(
        item=item,
        klass=result.category,
        raw_weight=result.weight,
        market_cap=cap,
        hits=result.hits,
    )


def classify(
    items: Iterable[RawItem], caps: Optional[Mapping[str, float]] = None
) -> List[ClassifiedItem]:
    """Classify a batch; ``caps`` maps first symbol -> market cap in USD."""
    caps = caps or {}
    out = []
    for item in items:
        cap = caps.get(item.symbol) if item.symbol else None
        out.append(classify_item(item, cap))
    return out
