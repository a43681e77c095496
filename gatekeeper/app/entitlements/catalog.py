"""Static catalog describing each subscription tier."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Tuple

from .models import Tier


@dataclass(frozen=True)
class TierDefinition:
    """Display metadata and benefits for a subscription tier."""

    tier: Tier
    display_name: str
    price_label: str
    features: Tuple[str, ...]
    limitations: Tuple[str, ...] = ()


TIER_CATALOG: Dict[Tier, TierDefinition] = {
    Tier.FREE: TierDefinition(
        tier=Tier.FREE,
        display_name="Free",
        price_label="$0",
        features=(
            "NBA basic stats",
            "Limited betting insights",
            "Basic analytics",
            "3 daily AI predictions",
            "Community picks",
        ),
        limitations=(
            "No NFL/NHL access",
            "No advanced analytics",
            "Limited historical data",
            "Basic AI models only",
            "Ads supported",
        ),
    ),
    Tier.PREMIUM: TierDefinition(
        tier=Tier.PREMIUM,
        display_name="Premium",
        price_label="$19.99/month",
        features=(
            "All NBA features",
            "Full NFL analytics",
            "Full NHL analytics",
            "Advanced AI predictions",
            "Live betting odds",
            "Player prop builder",
            "No ads",
        ),
        limitations=(
            "No exclusive models",
            "Limited API calls",
            "No custom alerts",
        ),
    ),
    Tier.EXCLUSIVE: TierDefinition(
        tier=Tier.EXCLUSIVE,
        display_name="Exclusive",
        price_label="$49.99/month",
        features=(
            "Everything in Premium",
            "Exclusive AI models",
            "Custom alerts & notifications",
            "API access",
            "Priority support",
            "Custom dashboard",
            "Early feature access",
            "Unlimited historical data",
        ),
    ),
}


def get_tier_definition(tier: Tier) -> TierDefinition:
    """Return a tier definition, raising if unsupported."""

    try:
        return TIER_CATALOG[tier]
    except KeyError as exc:  # pragma: no cover - guarded by static catalog
        raise KeyError(f"Unknown tier: {tier}") from exc
