"""
Subscription tiers.

Tier resolver: tier name -> backfill depth, continuous sync flag, contract limit.
"""

from dataclasses import dataclass

from chain_indexer.config.constants import UNLIMITED_HISTORY


@dataclass(frozen=True)
class SubscriptionTier:
    """Indexing limits granted by a subscription level."""

    name: str
    historical_days: int  # UNLIMITED_HISTORY means since deployment
    continuous_sync: bool
    max_contracts: int  # -1 means unlimited

    @property
    def unlimited_history(self) -> bool:
        return self.historical_days == UNLIMITED_HISTORY


SUBSCRIPTION_TIERS: dict[str, SubscriptionTier] = {
    "free": SubscriptionTier("free", 7, False, 1),
    "starter": SubscriptionTier("starter", 30, True, 3),
    "pro": SubscriptionTier("pro", 90, True, 10),
    "enterprise": SubscriptionTier("enterprise", UNLIMITED_HISTORY, True, -1),
}


def resolve_tier(tier: str | SubscriptionTier) -> SubscriptionTier:
    """
    Resolve a tier name (case-insensitive) into its limits.

    Args:
        tier: Tier name or an already resolved tier

    Returns:
        Subscription tier

    Raises:
        ValueError: If the tier name is unknown
    """
    if isinstance(tier, SubscriptionTier):
        return tier
    resolved = SUBSCRIPTION_TIERS.get(tier.strip().lower())
    if resolved is None:
        raise ValueError(
            f"Unknown subscription tier '{tier}'. "
            f"Available: {', '.join(SUBSCRIPTION_TIERS)}"
        )
    return resolved
