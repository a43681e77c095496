"""Feature gating utilities coordinating entitlement and quota enforcement."""
from .context import AccessContext
from .enforcement import require_access
from .events import GateEvent, GateEventLogger, GateEventType
from .exceptions import FeatureGateError
from .gate import (
    AccessGate,
    DenialReason,
    GateDecision,
    GateRequirement,
    GateStatus,
    QuotaLimited,
    TierOnly,
)
from .quota import ConsumeResult, DailyQuotaTracker, QuotaRecord, QuotaSnapshot

__all__ = [
    "AccessContext",
    "AccessGate",
    "ConsumeResult",
    "DailyQuotaTracker",
    "DenialReason",
    "FeatureGateError",
    "GateDecision",
    "GateEvent",
    "GateEventLogger",
    "GateEventType",
    "GateRequirement",
    "GateStatus",
    "QuotaLimited",
    "QuotaRecord",
    "QuotaSnapshot",
    "TierOnly",
    "require_access",
]
