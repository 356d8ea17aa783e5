"""Tests for fetching provider state and resolving it to one canonical tier."""

from datetime import datetime

from conftest import ENTERPRISE_PRICE, PRICE_TABLE, PRO_PRICE, FakeBillingProvider, make_snapshot

from plansync.billing.fetcher import fetch_subscription_state, map_snapshot_tiers
from plansync.billing.plans import PlanTier
from plansync.billing.resolver import resolve_tier
from plansync.billing.states import SubscriptionStatus


def _resolve(*snapshots):
    return resolve_tier(map_snapshot_tiers("cus_1", list(snapshots), PRICE_TABLE))


class TestFetch:
    async def test_preserves_provider_order(self):
        provider = FakeBillingProvider()
        provider.set_subscriptions(
            "cus_1",
            make_snapshot("sub_b", PRO_PRICE),
            make_snapshot("sub_a", ENTERPRISE_PRICE, status="canceled"),
        )
        state = await fetch_subscription_state(provider, "cus_1", price_table=PRICE_TABLE)
        assert [s.external_id for s in state.snapshots] == ["sub_b", "sub_a"]
        assert state.tiers == {"sub_b": PlanTier.PRO, "sub_a": PlanTier.ENTERPRISE}

    async def test_classifies_snapshots(self):
        provider = FakeBillingProvider()
        provider.set_subscriptions(
            "cus_1",
            make_snapshot("sub_trial", status="trialing"),
            make_snapshot("sub_late", status="past_due"),
            make_snapshot("sub_old", status="canceled"),
            make_snapshot("sub_odd", status="incomplete"),
        )
        state = await fetch_subscription_state(provider, "cus_1", price_table=PRICE_TABLE)
        assert [s.external_id for s in state.active_like] == ["sub_trial"]
        assert [s.external_id for s in state.past_due] == ["sub_late"]
        assert [s.external_id for s in state.inactive] == ["sub_old", "sub_odd"]

    async def test_unmappable_price_degrades_to_free(self):
        provider = FakeBillingProvider()
        provider.set_subscriptions(
            "cus_1",
            make_snapshot("sub_mystery", "price_unknown"),
            make_snapshot("sub_pro", PRO_PRICE),
        )
        state = await fetch_subscription_state(provider, "cus_1", price_table=PRICE_TABLE)
        assert state.tiers["sub_mystery"] is PlanTier.FREE
        assert state.tiers["sub_pro"] is PlanTier.PRO
        assert state.unmapped_price_ids == ["price_unknown"]

    async def test_passes_list_limit(self):
        provider = FakeBillingProvider()
        provider.set_subscriptions("cus_1", *(make_snapshot(f"sub_{i}") for i in range(5)))
        state = await fetch_subscription_state(provider, "cus_1", limit=3, price_table=PRICE_TABLE)
        assert len(state.snapshots) == 3


class TestResolveTier:
    def test_no_subscriptions_is_free_canceled(self):
        resolved = _resolve()
        assert resolved.tier is PlanTier.FREE
        assert resolved.status is SubscriptionStatus.CANCELED
        assert resolved.canonical_external_id is None
        assert resolved.duplicate_ids == []

    def test_highest_tier_wins_regardless_of_order(self):
        resolved = _resolve(
            make_snapshot("sub_pro", PRO_PRICE),
            make_snapshot("sub_ent", ENTERPRISE_PRICE),
        )
        assert resolved.tier is PlanTier.ENTERPRISE
        assert resolved.canonical_external_id == "sub_ent"
        assert resolved.price_id == ENTERPRISE_PRICE
        assert resolved.duplicate_ids == ["sub_pro"]

    def test_tie_keeps_first_in_provider_order(self):
        resolved = _resolve(
            make_snapshot("sub_first", PRO_PRICE),
            make_snapshot("sub_second", PRO_PRICE),
        )
        assert resolved.canonical_external_id == "sub_first"
        assert resolved.duplicate_ids == ["sub_second"]

    def test_trialing_counts_as_active(self):
        resolved = _resolve(make_snapshot("sub_trial", ENTERPRISE_PRICE, status="trialing"))
        assert resolved.tier is PlanTier.ENTERPRISE
        assert resolved.status is SubscriptionStatus.ACTIVE

    def test_cancel_at_period_end_resolves_canceling(self):
        period_end = datetime(2030, 1, 31)
        resolved = _resolve(
            make_snapshot("sub_pro", PRO_PRICE, period_end=period_end, cancel_at_period_end=True)
        )
        assert resolved.tier is PlanTier.PRO
        assert resolved.status is SubscriptionStatus.CANCELING
        assert resolved.period_end == period_end

    def test_active_beats_past_due(self):
        resolved = _resolve(
            make_snapshot("sub_late", ENTERPRISE_PRICE, status="past_due"),
            make_snapshot("sub_pro", PRO_PRICE),
        )
        assert resolved.tier is PlanTier.PRO
        assert resolved.canonical_external_id == "sub_pro"
        # past_due subscriptions are not duplicates
        assert resolved.duplicate_ids == []

    def test_past_due_only(self):
        resolved = _resolve(
            make_snapshot("sub_old", ENTERPRISE_PRICE, status="canceled"),
            make_snapshot("sub_late", PRO_PRICE, status="past_due"),
        )
        assert resolved.tier is PlanTier.PRO
        assert resolved.status is SubscriptionStatus.PAST_DUE
        assert resolved.canonical_external_id == "sub_late"

    def test_only_canceled_is_free(self):
        resolved = _resolve(make_snapshot("sub_old", ENTERPRISE_PRICE, status="canceled"))
        assert resolved.tier is PlanTier.FREE
        assert resolved.status is SubscriptionStatus.CANCELED

    def test_unmappable_active_subscription_is_free_tier(self):
        resolved = _resolve(make_snapshot("sub_mystery", "price_unknown"))
        assert resolved.tier is PlanTier.FREE
        assert resolved.canonical_external_id == "sub_mystery"
