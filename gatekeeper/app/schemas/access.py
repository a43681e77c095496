"""API schemas for access gating endpoints."""
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..entitlements import AppliedPromotion, DiscountType, EntitlementRecord, Tier, TierDefinition
from ..feature_gates import DenialReason, GateDecision, GateStatus
from ..promotions import EffectKind, InvalidReason, PromoCode, RedemptionResult, ValidationResult


class TierResponse(BaseModel):
    tier: Tier
    display_name: str = Field(alias="displayName")
    price_label: str = Field(alias="priceLabel")
    features: List[str]
    limitations: List[str] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_definition(cls, definition: TierDefinition) -> "TierResponse":
        return cls(
            tier=definition.tier,
            display_name=definition.display_name,
            price_label=definition.price_label,
            features=list(definition.features),
            limitations=list(definition.limitations),
        )


class TierListResponse(BaseModel):
    tiers: List[TierResponse]


class EntitlementResponse(BaseModel):
    user_id: str = Field(alias="userId")
    tier: Tier
    effective_tier: Tier = Field(alias="effectiveTier")
    tier_label: str = Field(alias="tierLabel")
    tier_expires_at: Optional[datetime] = Field(alias="tierExpiresAt", default=None)
    pending_discounts: List[AppliedPromotion] = Field(alias="pendingDiscounts", default_factory=list)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_record(
        cls,
        record: EntitlementRecord,
        *,
        effective_tier: Tier,
        tier_label: str,
        pending_discounts: List[AppliedPromotion],
    ) -> "EntitlementResponse":
        return cls(
            user_id=record.user_id,
            tier=record.tier,
            effective_tier=effective_tier,
            tier_label=tier_label,
            tier_expires_at=record.tier_expires_at,
            pending_discounts=pending_discounts,
        )


class GateDecisionResponse(BaseModel):
    feature_id: str = Field(alias="featureId")
    required_tier: Tier = Field(alias="requiredTier")
    status: GateStatus
    remaining: Optional[int] = None
    reason: Optional[DenialReason] = None

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_decision(
        cls,
        decision: GateDecision,
        *,
        feature_id: str,
        required_tier: Tier,
    ) -> "GateDecisionResponse":
        return cls(
            feature_id=feature_id,
            required_tier=required_tier,
            status=decision.status,
            remaining=decision.remaining,
            reason=decision.reason,
        )


class ConsumeRequest(BaseModel):
    required_tier: Tier = Field(alias="requiredTier", default=Tier.PREMIUM)
    quota_limit: Optional[int] = Field(alias="quotaLimit", default=None, ge=0)

    model_config = ConfigDict(populate_by_name=True)


class PromoCodeRequest(BaseModel):
    code: str = Field(min_length=1, max_length=64)


class PromoCodeResponse(BaseModel):
    code: str
    discount_type: DiscountType = Field(alias="discountType")
    discount_value: float = Field(alias="discountValue")
    description: str = ""
    max_uses: Optional[int] = Field(alias="maxUses", default=None)
    expires_at: Optional[datetime] = Field(alias="expiresAt", default=None)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_promo(cls, promo: PromoCode) -> "PromoCodeResponse":
        return cls(
            code=promo.code,
            discount_type=promo.discount_type,
            discount_value=promo.discount_value,
            description=promo.description,
            max_uses=promo.max_uses,
            expires_at=promo.expires_at,
        )


class PromoCodeListResponse(BaseModel):
    codes: List[PromoCodeResponse]


class PromoValidationResponse(BaseModel):
    code: str
    valid: bool
    reason: Optional[InvalidReason] = None
    message: str = ""
    promo: Optional[PromoCodeResponse] = None

    @classmethod
    def from_result(cls, result: ValidationResult) -> "PromoValidationResponse":
        return cls(
            code=result.code,
            valid=result.valid,
            reason=result.reason,
            message=result.reason.message if result.reason else "",
            promo=PromoCodeResponse.from_promo(result.promo) if result.promo else None,
        )


class PromoRedemptionResponse(BaseModel):
    code: str
    kind: EffectKind
    message: str
    discount_type: DiscountType = Field(alias="discountType")
    discount_value: float = Field(alias="discountValue")
    tier: Optional[Tier] = None
    tier_expires_at: Optional[datetime] = Field(alias="tierExpiresAt", default=None)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_result(cls, result: RedemptionResult) -> "PromoRedemptionResponse":
        if result.effect is None:
            raise ValueError("Only applied redemptions can be rendered")
        effect = result.effect
        return cls(
            code=result.code,
            kind=effect.kind,
            message=result.message,
            discount_type=effect.discount_type,
            discount_value=effect.discount_value,
            tier=effect.tier,
            tier_expires_at=effect.tier_expires_at,
        )


__all__ = [
    "ConsumeRequest",
    "EntitlementResponse",
    "GateDecisionResponse",
    "PromoCodeListResponse",
    "PromoCodeRequest",
    "PromoCodeResponse",
    "PromoRedemptionResponse",
    "PromoValidationResponse",
    "TierListResponse",
    "TierResponse",
]
