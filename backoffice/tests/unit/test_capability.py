"""
Unit tests for capability parsing and the plan/feature matcher.

Tests cover:
- Grant parsing (wildcard, category, literal)
- plan_has_feature matching rules and denials on bad input
- plan_has_category
- Property: the matcher agrees with the three-way membership rule
"""

import pytest
from hypothesis import given, settings, strategies as st

from backoffice.entitlements.capability import (
    Capability,
    CapabilitySet,
    Category,
    Wildcard,
    parse_capability,
    parse_grant,
    plan_has_category,
    plan_has_feature,
)
from backoffice.models.plan import Plan


def _plan(features):
    return Plan(slug="test", name="Test", features=features, limits={})


# =============================================================================
# Parsing
# =============================================================================


class TestParseGrant:

    def test_star_is_wildcard(self):
        assert parse_grant("*") is Wildcard.ALL

    def test_category_grant(self):
        assert parse_grant("analytics.*") == Category("analytics")

    def test_literal_key(self):
        assert parse_grant("analytics.advanced") == Capability("analytics.advanced")

    def test_dotted_prefix_is_not_a_category(self):
        """Only a single-segment prefix makes a category grant."""
        assert parse_grant("analytics.reports.*") == Capability("analytics.reports.*")

    @pytest.mark.parametrize("raw", ["", None, 42, ["menu.view"]])
    def test_rejects_non_string_or_empty(self, raw):
        with pytest.raises(ValueError):
            parse_grant(raw)

    def test_capability_category_is_first_segment(self):
        assert Capability("analytics.reports.export").category == Category("analytics")
        assert Capability("pos").category == Category("pos")

    def test_parse_capability_rejects_empty(self):
        with pytest.raises(ValueError):
            parse_capability("")

    def test_str_round_trips(self):
        assert str(Wildcard.ALL) == "*"
        assert str(Category("menu")) == "menu.*"
        assert str(Capability("menu.view")) == "menu.view"


class TestCapabilitySet:

    def test_skips_malformed_entries(self):
        caps = CapabilitySet.from_keys(["menu.view", "", None, 7])
        assert len(caps) == 1
        assert caps.grants(Capability("menu.view"))

    def test_malformed_entries_never_widen_access(self):
        caps = CapabilitySet.from_keys([None, ""])
        assert not caps.grants(Capability("menu.view"))
        assert not caps.is_unrestricted

    def test_covers_category_via_literal(self):
        caps = CapabilitySet.from_keys(["orders.view"])
        assert caps.covers_category(Category("orders"))
        assert not caps.covers_category(Category("pos"))


# =============================================================================
# plan_has_feature
# =============================================================================


class TestPlanHasFeature:

    def test_exact_match(self):
        assert plan_has_feature(_plan(["analytics.basic"]), "analytics.basic") is True

    def test_other_key_in_same_category_not_granted_by_literal(self):
        assert plan_has_feature(_plan(["analytics.basic"]), "analytics.advanced") is False

    def test_category_grant(self):
        plan = _plan(["analytics.*"])
        assert plan_has_feature(plan, "analytics.advanced") is True
        assert plan_has_feature(plan, "analytics.reports.export") is True
        assert plan_has_feature(plan, "orders.view") is False

    def test_wildcard_grants_everything(self):
        plan = _plan(["*"])
        assert plan_has_feature(plan, "pos.checkout") is True
        assert plan_has_feature(plan, "anything") is True

    def test_missing_plan_is_denied(self):
        assert plan_has_feature(None, "menu.view") is False

    def test_empty_features_is_denied(self):
        assert plan_has_feature(_plan([]), "menu.view") is False

    def test_null_features_is_denied(self):
        assert plan_has_feature(_plan(None), "menu.view") is False

    @pytest.mark.parametrize("key", ["", None, 3])
    def test_malformed_key_is_denied(self, key):
        assert plan_has_feature(_plan(["*"]), key) is False

    def test_category_grant_does_not_match_sibling_prefix(self):
        """'menu.*' must not grant 'menus.view'."""
        assert plan_has_feature(_plan(["menu.*"]), "menus.view") is False


class TestPlanHasCategory:

    def test_category_grant(self):
        assert plan_has_category(_plan(["pos.*"]), "pos") is True

    def test_literal_in_category(self):
        assert plan_has_category(_plan(["staff.manage"]), "staff") is True

    def test_absent_category(self):
        assert plan_has_category(_plan(["menu.view"]), "pos") is False

    def test_wildcard(self):
        assert plan_has_category(_plan(["*"]), "pos") is True

    def test_missing_plan_or_category(self):
        assert plan_has_category(None, "pos") is False
        assert plan_has_category(_plan(["*"]), "") is False


# =============================================================================
# Property: matcher == membership rule
# =============================================================================

_segment = st.text(alphabet="abcdefghijklmnopqrstuvwxyz_", min_size=1, max_size=8)
_key = st.lists(_segment, min_size=1, max_size=3).map(".".join)
_grant = st.one_of(
    _key,
    _segment.map(lambda s: s + ".*"),
    st.just("*"),
)


class TestMatcherProperty:

    @given(features=st.lists(_grant, max_size=8), key=_key)
    @settings(max_examples=200)
    def test_matches_membership_rule(self, features, key):
        category = key.split(".", 1)[0]
        expected = (
            key in features
            or "*" in features
            or f"{category}.*" in features
        )
        assert plan_has_feature(_plan(features), key) is expected

    @given(features=st.lists(_grant, max_size=8), key=_key)
    def test_adding_wildcard_always_grants(self, features, key):
        assert plan_has_feature(_plan(features + ["*"]), key) is True
