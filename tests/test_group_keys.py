"""Нормализация групп MT5 и сопоставление с правилами."""

from decimal import Decimal

from loguru import logger

from portal.services.commission.group_keys import (
    WILDCARD_KEY,
    CommissionRule,
    RuleMap,
    candidate_keys,
    derive_keys,
    is_demo,
    normalize_group,
)


def rule(group_id, usd="10", pct="0", group_name=None):
    return CommissionRule(
        group_id=group_id,
        usd_per_lot=Decimal(usd),
        spread_share_percentage=Decimal(pct),
        group_name=group_name,
    )


class TestCandidateKeys:
    def test_full_path_variants_then_bbook_then_tail(self):
        assert candidate_keys("Bbook\\Standard\\USD") == (
            "bbook\\standard\\usd",
            "bbook/standard/usd",
            "standard",
            "usd",
        )

    def test_forward_slash_path_produces_backslash_variant(self):
        keys = derive_keys("real/Bbook/Pro/USD")
        assert "real\\bbook\\pro\\usd" in keys
        assert "pro" in keys
        assert "usd" in keys

    def test_empty_input_has_no_keys(self):
        assert candidate_keys(None) == ()
        assert candidate_keys("   ") == ()

    def test_normalize_trims_and_lowercases(self):
        assert normalize_group("  BBOOK\\Std ") == "bbook\\std"
        assert normalize_group(None) == ""


class TestRuleMatching:
    def test_bbook_group_matches_short_rule(self):
        rules = RuleMap([rule("standard", usd="15")])
        matched = rules.match("BBOOK\\STANDARD\\USD")
        assert matched is not None
        assert matched.usd_per_lot == Decimal("15")

    def test_separator_and_case_do_not_matter(self):
        assert RuleMap([rule("bbook/standard/usd")]).match("BBOOK\\Standard\\USD") is not None
        assert RuleMap([rule("Bbook\\Standard\\USD")]).match("bbook/standard/usd") is not None

    def test_group_name_is_also_a_lookup_label(self):
        rules = RuleMap([rule("grp-42", group_name="Bbook\\Gold\\USD")])
        assert rules.match("bbook/gold/usd").group_id == "grp-42"

    def test_exact_key_beats_derived_key(self):
        long_rule = rule("real\\bbook\\pro\\usd", usd="5")
        short_rule = rule("usd", usd="2")
        rules = RuleMap([long_rule, short_rule])
        assert rules.match("REAL\\BBOOK\\PRO\\USD") is long_rule
        assert rules.match("other\\usd") is short_rule

    def test_conflicting_derived_key_is_dropped(self):
        rules = RuleMap([
            rule("a\\bbook\\std\\usd", usd="5"),
            rule("b\\bbook\\std\\eur", usd="7"),
        ])
        assert rules.match("std") is None
        assert "std" not in rules.keys()

    def test_ambiguous_rejection_is_logged(self):
        rules = RuleMap([
            rule("a\\bbook\\std\\usd", usd="5"),
            rule("b\\bbook\\std\\eur", usd="7"),
        ])
        messages = []
        sink_id = logger.add(messages.append, level="DEBUG", format="{message}")
        try:
            assert rules.match("std") is None
        finally:
            logger.remove(sink_id)

        assert "std" in rules.ambiguous_keys
        assert any("неоднозначны" in message for message in messages)

    def test_derived_key_with_same_terms_stays_usable(self):
        first = rule("a\\bbook\\std\\usd", usd="5")
        rules = RuleMap([first, rule("b\\bbook\\std\\eur", usd="5")])
        assert rules.match("std") is first

    def test_wildcard_is_last_resort(self):
        specific = rule("standard", usd="10")
        fallback = rule(WILDCARD_KEY, usd="3")
        rules = RuleMap([specific, fallback])
        assert rules.match("bbook\\standard\\usd") is specific
        assert rules.match("gold") is fallback
        assert rules.match(None) is fallback
        assert rules.has_wildcard

    def test_unknown_group_without_wildcard_is_unmatched(self):
        assert RuleMap([rule("standard")]).match("gold") is None

    def test_empty_map_is_falsy(self):
        rules = RuleMap()
        assert not rules
        assert len(rules) == 0
        assert rules.match("standard") is None

    def test_wildcard_factory(self):
        rules = RuleMap.wildcard(Decimal("4"), Decimal("25"))
        matched = rules.match("anything")
        assert matched.is_wildcard
        assert matched.spread_share_percentage == Decimal("25")


class TestDemoPredicate:
    def test_any_label_containing_demo(self):
        assert is_demo("real", "DEMO-USD")
        assert is_demo("demo\\standard")

    def test_live_and_empty_labels(self):
        assert not is_demo("real\\standard", "live")
        assert not is_demo(None, "")
