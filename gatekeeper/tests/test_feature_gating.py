from __future__ import annotations

import pytest

from gatekeeper.app.feature_gates import DenialReason, FeatureGateError, GateDecision, require_access


def test_require_access_passes_allowed_decisions_through() -> None:
    decision = GateDecision.allowed_with_quota(2)

    assert require_access(decision, feature_id="daily_picks") is decision
    assert require_access(GateDecision.allowed(), feature_id="nfl_analytics").is_allowed


def test_require_access_raises_for_tier_denials() -> None:
    with pytest.raises(FeatureGateError) as exc:
        require_access(GateDecision.denied(DenialReason.TIER_INSUFFICIENT), feature_id="custom_alerts")

    assert exc.value.code == "tier_insufficient"
    assert exc.value.status_code == 403
    assert exc.value.payload["feature"] == "custom_alerts"
    assert "remaining" not in exc.value.payload
    assert exc.value.retryable is False
    assert "upgrade" in exc.value.message.lower()


def test_require_access_raises_for_exhausted_quota() -> None:
    with pytest.raises(FeatureGateError) as exc:
        require_access(GateDecision.denied(DenialReason.QUOTA_EXHAUSTED), feature_id="daily_picks")

    assert exc.value.code == "quota_exhausted"
    assert exc.value.status_code == 429
    assert exc.value.payload["remaining"] == 0


def test_require_access_reports_loading_as_unavailable() -> None:
    with pytest.raises(FeatureGateError) as exc:
        require_access(GateDecision.loading(), feature_id="daily_picks", message="Hold on")

    assert exc.value.code == "entitlements_loading"
    assert exc.value.status_code == 503
    assert exc.value.message == "Hold on"


def test_feature_gate_error_converts_to_http_exception() -> None:
    error = FeatureGateError(code="tier_insufficient", message="upgrade required", feature_id="props")
    http_exc = error.to_http_exception()

    assert http_exc.status_code == 403
    assert http_exc.detail == {"error": "tier_insufficient", "message": "upgrade required", "feature": "props"}
    assert http_exc.headers is None


def test_loading_errors_ask_clients_to_retry() -> None:
    with pytest.raises(FeatureGateError) as exc:
        require_access(GateDecision.loading(), feature_id="daily_picks")

    http_exc = exc.value.to_http_exception()

    assert exc.value.retryable is True
    assert http_exc.detail["retryable"] is True
    assert http_exc.headers == {"Retry-After": "1"}
