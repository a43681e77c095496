"""Domain models for promotional codes and their redemptions."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..entitlements.models import DiscountType, Tier


def canonicalize_code(code: Optional[str]) -> str:
    """Codes are case-insensitive; the canonical form is stripped upper-case."""

    return (code or "").strip().upper()


class PromoCode(BaseModel):
    """A catalog entry as published by the remote promo source."""

    code: str
    discount_type: DiscountType
    discount_value: float = Field(ge=0)
    max_uses: Optional[int] = Field(default=None, ge=0)
    uses_count: int = Field(default=0, ge=0)
    expires_at: Optional[datetime] = None
    description: str = ""

    model_config = ConfigDict(frozen=True)

    @field_validator("code")
    @classmethod
    def _canonical_code(cls, value: str) -> str:
        canonical = canonicalize_code(value)
        if not canonical:
            raise ValueError("code must not be blank")
        return canonical

    @field_validator("expires_at")
    @classmethod
    def _aware_expiry(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @model_validator(mode="after")
    def _check_trial_value(self) -> "PromoCode":
        if self.discount_type == DiscountType.TRIAL_DAYS and int(self.discount_value) != self.discount_value:
            raise ValueError("trial_days codes require a whole number of days")
        return self

    @property
    def trial_days(self) -> Optional[int]:
        if self.discount_type != DiscountType.TRIAL_DAYS:
            return None
        return int(self.discount_value)

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now > self.expires_at

    def is_exhausted(self, uses_count: Optional[int] = None) -> bool:
        if self.max_uses is None:
            return False
        count = self.uses_count if uses_count is None else uses_count
        return count >= self.max_uses


class CatalogSnapshot(BaseModel):
    """Locally cached copy of the promo catalog."""

    codes: Tuple[PromoCode, ...] = Field(default_factory=tuple)
    refreshed_at: Optional[datetime] = None

    model_config = ConfigDict(frozen=True)


class InvalidReason(str, Enum):
    """Why a code cannot be redeemed."""

    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    EXHAUSTED_GLOBALLY = "exhausted_globally"
    ALREADY_REDEEMED_BY_USER = "already_redeemed_by_user"
    STORAGE_UNAVAILABLE = "storage_unavailable"

    @property
    def retryable(self) -> bool:
        return self is InvalidReason.STORAGE_UNAVAILABLE

    @property
    def message(self) -> str:
        return _REASON_MESSAGES[self]


_REASON_MESSAGES = {
    InvalidReason.NOT_FOUND: "This promo code is not valid.",
    InvalidReason.EXPIRED: "This promo code has expired.",
    InvalidReason.EXHAUSTED_GLOBALLY: "This promo code has reached its usage limit.",
    InvalidReason.ALREADY_REDEEMED_BY_USER: "You have already used this promo code.",
    InvalidReason.STORAGE_UNAVAILABLE: "We could not apply the code right now. Please try again.",
}


class EffectKind(str, Enum):
    """What a successful redemption changed."""

    TRIAL_GRANT = "trial_grant"
    DISCOUNT = "discount"


class RedemptionEffect(BaseModel):
    """Description of the change a redemption applied."""

    kind: EffectKind
    discount_type: DiscountType
    discount_value: float
    tier: Optional[Tier] = None
    tier_expires_at: Optional[datetime] = None

    model_config = ConfigDict(frozen=True)

    @property
    def summary(self) -> str:
        if self.kind == EffectKind.TRIAL_GRANT:
            expiry = self.tier_expires_at.date().isoformat() if self.tier_expires_at else "no expiry"
            tier = self.tier.value if self.tier else Tier.PREMIUM.value
            return f"{int(self.discount_value)}-day trial applied ({tier} until {expiry})"
        if self.discount_type == DiscountType.PERCENTAGE:
            return f"{self.discount_value:g}% discount saved for your next purchase"
        return f"{self.discount_value:.2f} off saved for your next purchase"


class RedemptionRecord(BaseModel):
    """Marks that ``user_id`` has redeemed ``code``."""

    code: str
    user_id: str
    applied_at: datetime
    effect: RedemptionEffect

    model_config = ConfigDict(frozen=True)


class ValidationResult(BaseModel):
    """Outcome of :meth:`PromoCodeRegistry.validate`."""

    code: str
    promo: Optional[PromoCode] = None
    reason: Optional[InvalidReason] = None

    model_config = ConfigDict(frozen=True)

    @property
    def valid(self) -> bool:
        return self.reason is None and self.promo is not None

    @classmethod
    def ok(cls, promo: PromoCode) -> "ValidationResult":
        return cls(code=promo.code, promo=promo)

    @classmethod
    def invalid(cls, code: str, reason: InvalidReason) -> "ValidationResult":
        return cls(code=code, reason=reason)


class RedemptionResult(BaseModel):
    """Outcome of :meth:`PromoCodeRegistry.redeem`."""

    code: str
    user_id: str
    effect: Optional[RedemptionEffect] = None
    reason: Optional[InvalidReason] = None

    model_config = ConfigDict(frozen=True)

    @property
    def applied(self) -> bool:
        return self.reason is None and self.effect is not None

    @property
    def retryable(self) -> bool:
        return self.reason is not None and self.reason.retryable

    @property
    def message(self) -> str:
        if self.effect is not None:
            return self.effect.summary
        return self.reason.message if self.reason else ""

    @classmethod
    def applied_with(cls, code: str, user_id: str, effect: RedemptionEffect) -> "RedemptionResult":
        return cls(code=code, user_id=user_id, effect=effect)

    @classmethod
    def rejected(cls, code: str, user_id: str, reason: InvalidReason) -> "RedemptionResult":
        return cls(code=code, user_id=user_id, reason=reason)


class PromoUsage(BaseModel):
    """Local count of redemptions for a code, kept apart from the cached catalog."""

    code: str
    uses_count: int = Field(default=0, ge=0)

    model_config = ConfigDict(frozen=True)
