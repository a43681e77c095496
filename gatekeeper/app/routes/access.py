"""API routes exposing tiers, feature gates and promo codes."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, HTTPException, Query, status

from ..entitlements import TIER_CATALOG, Tier
from ..feature_gates import FeatureGateError, require_access
from ..promotions import InvalidReason
from ..schemas.access import (
    ConsumeRequest,
    EntitlementResponse,
    GateDecisionResponse,
    PromoCodeListResponse,
    PromoCodeRequest,
    PromoCodeResponse,
    PromoRedemptionResponse,
    PromoValidationResponse,
    TierListResponse,
    TierResponse,
)
from ..services.access import get_access_context

router = APIRouter(prefix="/api/access", tags=["access"])

_REJECTION_STATUS = {
    InvalidReason.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    InvalidReason.EXPIRED: status.HTTP_400_BAD_REQUEST,
    InvalidReason.EXHAUSTED_GLOBALLY: status.HTTP_409_CONFLICT,
    InvalidReason.ALREADY_REDEEMED_BY_USER: status.HTTP_409_CONFLICT,
    InvalidReason.STORAGE_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
}


@router.get("/tiers", response_model=TierListResponse)
def list_tiers() -> TierListResponse:
    return TierListResponse(tiers=[TierResponse.from_definition(definition) for definition in TIER_CATALOG.values()])


@router.get("/entitlement", response_model=EntitlementResponse)
async def get_entitlement() -> EntitlementResponse:
    context = get_access_context()
    state = context.entitlements
    record = await state.initialize() if not state.loaded else state.get()
    return EntitlementResponse.from_record(
        record,
        effective_tier=state.effective_tier(),
        tier_label=state.current_tier_label(),
        pending_discounts=list(state.pending_discounts()),
    )


@router.get("/gate/{feature_id}", response_model=GateDecisionResponse)
async def get_gate_decision(
    feature_id: str,
    required_tier: Tier = Query(Tier.PREMIUM, alias="requiredTier"),
    quota_limit: Optional[int] = Query(None, alias="quotaLimit", ge=0),
) -> GateDecisionResponse:
    context = get_access_context()
    decision = await context.gate.prepare(feature_id, required_tier, quota_limit)
    return GateDecisionResponse.from_decision(decision, feature_id=feature_id, required_tier=required_tier)


@router.post("/gate/{feature_id}/consume", response_model=GateDecisionResponse)
async def consume_feature(feature_id: str, payload: ConsumeRequest) -> GateDecisionResponse:
    context = get_access_context()
    decision = await context.gate.consume(feature_id, payload.required_tier, payload.quota_limit)
    try:
        require_access(decision, feature_id=feature_id)
    except FeatureGateError as exc:
        raise exc.to_http_exception() from exc
    return GateDecisionResponse.from_decision(decision, feature_id=feature_id, required_tier=payload.required_tier)


@router.post("/promo/validate", response_model=PromoValidationResponse)
async def validate_promo_code(payload: PromoCodeRequest) -> PromoValidationResponse:
    context = get_access_context()
    result = await context.promotions.validate(payload.code)
    return PromoValidationResponse.from_result(result)


@router.post("/promo/redeem", response_model=PromoRedemptionResponse)
async def redeem_promo_code(payload: PromoCodeRequest) -> PromoRedemptionResponse:
    context = get_access_context()
    result = await context.promotions.redeem(payload.code, context.user_id)
    if not result.applied:
        reason = result.reason or InvalidReason.NOT_FOUND
        raise HTTPException(
            status_code=_REJECTION_STATUS[reason],
            detail={"error": reason.value, "message": result.message, "retryable": result.retryable},
        )
    return PromoRedemptionResponse.from_result(result)


@router.get("/promo/codes", response_model=PromoCodeListResponse)
async def list_promo_codes() -> PromoCodeListResponse:
    context = get_access_context()
    promotions = context.promotions
    if not promotions.loaded:
        await promotions.load()
    return PromoCodeListResponse(codes=[PromoCodeResponse.from_promo(promo) for promo in promotions.list_codes()])


__all__ = ["router"]
