from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from fastapi import HTTPException

from gatekeeper.app.clock import FixedClock
from gatekeeper.app.entitlements import DiscountType, Tier
from gatekeeper.app.feature_gates import GateStatus
from gatekeeper.app.promotions import EffectKind, PromoCode, StaticPromoSource
from gatekeeper.app.routes import access as access_routes
from gatekeeper.app.schemas.access import ConsumeRequest, PromoCodeRequest
from gatekeeper.app.services import access as access_service
from gatekeeper.app.storage import InMemoryStore
from gatekeeper.config import load_gate_config

NOW = datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)

CATALOG = [
    PromoCode(
        code="TRIAL7",
        discount_type=DiscountType.TRIAL_DAYS,
        discount_value=7,
        max_uses=100,
        description="7-day Premium trial",
    ),
    PromoCode(code="SAVE20", discount_type=DiscountType.PERCENTAGE, discount_value=20),
    PromoCode(
        code="SPRING",
        discount_type=DiscountType.PERCENTAGE,
        discount_value=15,
        expires_at=NOW - timedelta(days=1),
    ),
]


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW)


@pytest.fixture
def context(clock: FixedClock):
    config = load_gate_config({"PROMO_REFRESH_ON_START": "false", "GATE_USER_ID": "user-1"})
    context = asyncio.run(
        access_service.build_access_context(
            config=config,
            store=InMemoryStore(),
            clock=clock,
            remote=StaticPromoSource(CATALOG),
        )
    )
    asyncio.run(context.promotions.refresh(force=True))
    access_service.configure_access_context(context)
    yield context
    access_service.reset_access_context()


def test_routes_require_a_configured_context() -> None:
    access_service.reset_access_context()

    with pytest.raises(RuntimeError):
        asyncio.run(access_routes.get_entitlement())


def test_list_tiers_returns_catalog() -> None:
    response = access_routes.list_tiers()

    assert [tier.tier for tier in response.tiers] == [Tier.FREE, Tier.PREMIUM, Tier.EXCLUSIVE]
    dumped = response.model_dump(by_alias=True)
    assert dumped["tiers"][1]["priceLabel"] == "$19.99/month"


def test_entitlement_route_reports_the_signed_in_user(context) -> None:
    response = asyncio.run(access_routes.get_entitlement())

    assert response.user_id == "user-1"
    assert response.tier == Tier.FREE
    assert response.tier_label == "Free"
    assert response.pending_discounts == []


def test_gate_route_prepares_a_decision(context) -> None:
    response = asyncio.run(access_routes.get_gate_decision("daily_picks", required_tier=Tier.PREMIUM, quota_limit=None))

    assert response.status == GateStatus.ALLOWED_WITH_QUOTA
    assert response.remaining == 3
    assert response.model_dump(by_alias=True)["featureId"] == "daily_picks"


def test_consume_route_spends_quota_then_rejects(context) -> None:
    payload = ConsumeRequest(required_tier=Tier.PREMIUM)

    async def scenario():
        return [await access_routes.consume_feature("daily_picks", payload) for _ in range(3)]

    responses = asyncio.run(scenario())

    assert [response.remaining for response in responses] == [2, 1, 0]

    with pytest.raises(HTTPException) as exc:
        asyncio.run(access_routes.consume_feature("daily_picks", payload))

    assert exc.value.status_code == 429
    assert exc.value.detail["error"] == "quota_exhausted"
    assert exc.value.detail["feature"] == "daily_picks"


def test_consume_route_rejects_tier_only_features(context) -> None:
    with pytest.raises(HTTPException) as exc:
        asyncio.run(access_routes.consume_feature("custom_alerts", ConsumeRequest(requiredTier=Tier.EXCLUSIVE)))

    assert exc.value.status_code == 403
    assert exc.value.detail["error"] == "tier_insufficient"


def test_validate_route_reports_reasons(context) -> None:
    valid = asyncio.run(access_routes.validate_promo_code(PromoCodeRequest(code="save20")))
    expired = asyncio.run(access_routes.validate_promo_code(PromoCodeRequest(code="SPRING")))

    assert valid.valid is True
    assert valid.promo.code == "SAVE20"
    assert expired.valid is False
    assert expired.message == "This promo code has expired."


def test_redeem_route_applies_trial_and_rejects_repeats(context) -> None:
    applied = asyncio.run(access_routes.redeem_promo_code(PromoCodeRequest(code="TRIAL7")))

    assert applied.kind == EffectKind.TRIAL_GRANT
    assert applied.tier == Tier.PREMIUM
    assert applied.tier_expires_at == NOW + timedelta(days=7)
    assert context.entitlements.effective_tier() == Tier.PREMIUM

    with pytest.raises(HTTPException) as exc:
        asyncio.run(access_routes.redeem_promo_code(PromoCodeRequest(code="trial7")))

    assert exc.value.status_code == 409
    assert exc.value.detail == {
        "error": "already_redeemed_by_user",
        "message": "You have already used this promo code.",
        "retryable": False,
    }


def test_redeem_route_maps_unknown_codes_to_not_found(context) -> None:
    with pytest.raises(HTTPException) as exc:
        asyncio.run(access_routes.redeem_promo_code(PromoCodeRequest(code="NOPE")))

    assert exc.value.status_code == 404


def test_promo_codes_route_lists_active_codes(context) -> None:
    response = asyncio.run(access_routes.list_promo_codes())

    assert [promo.code for promo in response.codes] == ["SAVE20", "TRIAL7"]
    assert response.model_dump(by_alias=True)["codes"][1]["description"] == "7-day Premium trial"
