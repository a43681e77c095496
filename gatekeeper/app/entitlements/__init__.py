"""Entitlements domain models and services."""

from .catalog import TIER_CATALOG, TierDefinition, get_tier_definition
from .models import AppliedPromotion, DiscountType, EntitlementRecord, Tier
from .policy import effective_tier, meets_requirement, parse_tier, tier_rank
from .state import EntitlementDirectory, EntitlementState

__all__ = [
    "TIER_CATALOG",
    "TierDefinition",
    "get_tier_definition",
    "AppliedPromotion",
    "DiscountType",
    "EntitlementRecord",
    "Tier",
    "effective_tier",
    "meets_requirement",
    "parse_tier",
    "tier_rank",
    "EntitlementDirectory",
    "EntitlementState",
]
