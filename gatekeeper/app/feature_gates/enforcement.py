"""Helpers for enforcing gate decisions on API and service layers."""
from __future__ import annotations

from fastapi import status

from .exceptions import FeatureGateError
from .gate import DenialReason, GateDecision, GateStatus

_DENIAL_STATUS = {
    DenialReason.TIER_INSUFFICIENT: status.HTTP_403_FORBIDDEN,
    DenialReason.QUOTA_EXHAUSTED: status.HTTP_429_TOO_MANY_REQUESTS,
}


def require_access(
    decision: GateDecision,
    *,
    feature_id: str,
    message: str | None = None,
) -> GateDecision:
    """Return ``decision`` when it grants access, raise otherwise.

    Parameters
    ----------
    decision:
        The gate decision produced by :class:`AccessGate`.
    feature_id:
        The feature being accessed, echoed back in the error payload.
    message:
        Optional human-friendly message explaining the failure. If omitted, a
        default message mentioning the feature is used.
    """

    if decision.is_allowed:
        return decision

    if decision.status == GateStatus.LOADING:
        raise FeatureGateError(
            code="entitlements_loading",
            message=message or "Entitlements are still loading.",
            feature_id=feature_id,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            retry_after=1,
        )

    reason = decision.reason or DenialReason.TIER_INSUFFICIENT
    if reason == DenialReason.QUOTA_EXHAUSTED:
        default_message = f"Daily free uses of '{feature_id}' are used up."
    else:
        default_message = f"An upgrade is required to use '{feature_id}'."
    raise FeatureGateError(
        code=reason.value,
        message=message or default_message,
        feature_id=feature_id,
        status_code=_DENIAL_STATUS[reason],
        remaining=decision.remaining,
    )
