"""Plan definitions: tier hierarchy and the price ID lookup table."""

import enum

from plansync.config import settings
from plansync.exceptions import UnmappablePriceError


class PlanTier(str, enum.Enum):
    """Feature tier granted by a subscription. Totally ordered by rank."""

    FREE = "FREE"
    PRO = "PRO"
    ENTERPRISE = "ENTERPRISE"

    @property
    def rank(self) -> int:
        return PLAN_HIERARCHY[self]

    @classmethod
    def parse(cls, value: "str | PlanTier") -> "PlanTier":
        """Parse a tier name case-insensitively. Raises ValueError if unknown."""
        if isinstance(value, PlanTier):
            return value
        try:
            return cls(value.strip().upper())
        except ValueError:
            raise ValueError(f"Unknown plan tier: {value!r}") from None


PLAN_HIERARCHY: dict[PlanTier, int] = {
    PlanTier.FREE: 0,
    PlanTier.PRO: 1,
    PlanTier.ENTERPRISE: 2,
}


def rank(tier: PlanTier) -> int:
    """Return the hierarchy rank of a tier (strictly increasing with tier)."""
    return PLAN_HIERARCHY[tier]


def max_tier(a: PlanTier, b: PlanTier) -> PlanTier:
    """Return the higher-ranked of two tiers (``a`` on a tie)."""
    return b if rank(b) > rank(a) else a


def _split_ids(raw: str) -> list[str]:
    return [part.strip() for part in raw.split(",") if part.strip()]


def build_price_table(
    pro_price_id: str = "",
    enterprise_price_id: str = "",
    legacy_pro_price_ids: str = "",
    legacy_enterprise_price_ids: str = "",
) -> dict[str, PlanTier]:
    """Build the fixed price ID -> tier table from configured Stripe prices."""
    table: dict[str, PlanTier] = {}
    for price_id in [pro_price_id, *_split_ids(legacy_pro_price_ids)]:
        if price_id:
            table[price_id] = PlanTier.PRO
    for price_id in [enterprise_price_id, *_split_ids(legacy_enterprise_price_ids)]:
        if price_id:
            table[price_id] = PlanTier.ENTERPRISE
    return table


PRICE_TIERS: dict[str, PlanTier] = build_price_table(
    pro_price_id=settings.stripe_pro_price_id,
    enterprise_price_id=settings.stripe_enterprise_price_id,
    legacy_pro_price_ids=settings.stripe_legacy_pro_price_ids,
    legacy_enterprise_price_ids=settings.stripe_legacy_enterprise_price_ids,
)


def tier_for_price_id(
    price_id: str | None, table: dict[str, PlanTier] | None = None
) -> PlanTier:
    """Map a Stripe price ID to its tier. Raises UnmappablePriceError if unknown."""
    lookup = PRICE_TIERS if table is None else table
    if not price_id or price_id not in lookup:
        raise UnmappablePriceError(price_id)
    return lookup[price_id]
