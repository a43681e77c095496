"""Pure ordering rules over subscription tiers."""
from __future__ import annotations

from datetime import datetime
from typing import Dict, Optional

from .models import EntitlementRecord, Tier

_TIER_RANKS: Dict[Tier, int] = {tier: rank for rank, tier in enumerate(Tier)}


def tier_rank(tier: Tier) -> int:
    return _TIER_RANKS[tier]


def meets_requirement(current: Tier, required: Tier) -> bool:
    """Return whether ``current`` is at least as high as ``required``."""

    return tier_rank(current) >= tier_rank(required)


def effective_tier(record: EntitlementRecord, now: datetime) -> Tier:
    """Return the tier in force at ``now``; lapsed tiers read as free."""

    if record.is_expired(now):
        return Tier.FREE
    return record.tier


def parse_tier(value: Optional[str]) -> Tier:
    """Parse a stored or user supplied tier name, defaulting to free."""

    if not value:
        return Tier.FREE
    try:
        return Tier(value.strip().lower())
    except ValueError:
        return Tier.FREE
