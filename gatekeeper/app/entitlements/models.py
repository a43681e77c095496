"""Domain models for subscription tiers and entitlement records."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Tier(str, Enum):
    """Subscription levels, declared in ascending order."""

    FREE = "free"
    PREMIUM = "premium"
    EXCLUSIVE = "exclusive"


class DiscountType(str, Enum):
    """How a promotional code changes a user's entitlement or price."""

    PERCENTAGE = "percentage"
    FLAT_AMOUNT = "flat_amount"
    TRIAL_DAYS = "trial_days"


def _ensure_aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class AppliedPromotion(BaseModel):
    """A promotion applied to a user's entitlement."""

    code: str
    discount_type: DiscountType
    discount_value: float
    applied_at: datetime

    model_config = ConfigDict(frozen=True)

    @property
    def is_discount(self) -> bool:
        return self.discount_type in {DiscountType.PERCENTAGE, DiscountType.FLAT_AMOUNT}


class EntitlementRecord(BaseModel):
    """Persisted entitlement for a single user."""

    user_id: str
    tier: Tier = Tier.FREE
    tier_expires_at: Optional[datetime] = None
    applied_promotions: Tuple[AppliedPromotion, ...] = Field(default_factory=tuple)

    model_config = ConfigDict(frozen=True)

    @field_validator("tier_expires_at")
    @classmethod
    def _normalize_expiry(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _ensure_aware(value)

    @classmethod
    def default(cls, user_id: str) -> "EntitlementRecord":
        return cls(user_id=user_id)

    def is_expired(self, now: datetime) -> bool:
        return self.tier_expires_at is not None and now > self.tier_expires_at

    def with_tier(self, tier: Tier, expires_at: Optional[datetime]) -> "EntitlementRecord":
        return self.model_copy(update={"tier": tier, "tier_expires_at": _ensure_aware(expires_at)})

    def with_promotion(self, promotion: AppliedPromotion) -> "EntitlementRecord":
        return self.model_copy(
            update={"applied_promotions": self.applied_promotions + (promotion,)}
        )
