"""Tests for plan tiers, the hierarchy, and the price ID table."""

import pytest

from plansync.billing.plans import (
    PLAN_HIERARCHY,
    PlanTier,
    build_price_table,
    max_tier,
    rank,
    tier_for_price_id,
)
from plansync.exceptions import UnmappablePriceError


class TestHierarchy:
    def test_ranks_strictly_increase(self):
        assert rank(PlanTier.FREE) < rank(PlanTier.PRO) < rank(PlanTier.ENTERPRISE)

    def test_every_tier_has_a_rank(self):
        assert set(PLAN_HIERARCHY) == set(PlanTier)

    def test_rank_property_matches_function(self):
        for tier in PlanTier:
            assert tier.rank == rank(tier)

    def test_max_tier_picks_higher(self):
        assert max_tier(PlanTier.PRO, PlanTier.ENTERPRISE) is PlanTier.ENTERPRISE
        assert max_tier(PlanTier.ENTERPRISE, PlanTier.FREE) is PlanTier.ENTERPRISE

    def test_max_tier_tie_returns_first(self):
        assert max_tier(PlanTier.PRO, PlanTier.PRO) is PlanTier.PRO


class TestParse:
    @pytest.mark.parametrize("raw", ["pro", "PRO", " Pro "])
    def test_case_insensitive(self, raw):
        assert PlanTier.parse(raw) is PlanTier.PRO

    def test_passes_through_tier(self):
        assert PlanTier.parse(PlanTier.ENTERPRISE) is PlanTier.ENTERPRISE

    def test_unknown_raises(self):
        with pytest.raises(ValueError, match="Unknown plan tier"):
            PlanTier.parse("platinum")


class TestPriceTable:
    def test_build_includes_legacy_prices(self):
        table = build_price_table(
            pro_price_id="price_pro",
            enterprise_price_id="price_ent",
            legacy_pro_price_ids="price_pro_2023, price_pro_2024",
            legacy_enterprise_price_ids="price_ent_2023",
        )
        assert table == {
            "price_pro": PlanTier.PRO,
            "price_pro_2023": PlanTier.PRO,
            "price_pro_2024": PlanTier.PRO,
            "price_ent": PlanTier.ENTERPRISE,
            "price_ent_2023": PlanTier.ENTERPRISE,
        }

    def test_build_skips_unset_prices(self):
        assert build_price_table() == {}

    def test_lookup_known_price(self):
        table = {"price_pro": PlanTier.PRO}
        assert tier_for_price_id("price_pro", table) is PlanTier.PRO

    def test_unknown_price_raises(self):
        with pytest.raises(UnmappablePriceError) as exc_info:
            tier_for_price_id("price_mystery", {"price_pro": PlanTier.PRO})
        assert exc_info.value.price_id == "price_mystery"

    def test_missing_price_raises(self):
        with pytest.raises(UnmappablePriceError):
            tier_for_price_id(None, {"price_pro": PlanTier.PRO})
