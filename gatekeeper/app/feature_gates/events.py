"""Telemetry events emitted when a gate is evaluated."""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional, Protocol

from pydantic import BaseModel, ConfigDict

from ..entitlements import Tier


class GateEventType(str, Enum):
    """Kinds of gate telemetry."""

    ACCESS_GRANTED = "access_granted"
    GATE_SHOWN = "gate_shown"
    QUOTA_CONSUMED = "quota_consumed"


class GateEvent(BaseModel):
    """A single gate outcome as reported to telemetry."""

    event_type: GateEventType
    feature_id: str
    user_id: str
    required_tier: Tier
    current_tier: Tier
    remaining: Optional[int] = None
    reason: Optional[str] = None
    test_override: bool = False
    occurred_at: datetime

    model_config = ConfigDict(frozen=True)


class GateEventLogger(Protocol):
    """Captures gate telemetry events."""

    def log(self, event: GateEvent) -> None:
        ...
