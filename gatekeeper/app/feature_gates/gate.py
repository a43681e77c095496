"""Access decisions for gated features."""
from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Set, Union

from ..clock import ClockSource
from ..entitlements import EntitlementState, Tier, meets_requirement
from .events import GateEvent, GateEventLogger, GateEventType
from .quota import ConsumeResult, DailyQuotaTracker

logger = logging.getLogger("gatekeeper.gate")


class GateStatus(str, Enum):
    LOADING = "loading"
    ALLOWED = "allowed"
    ALLOWED_WITH_QUOTA = "allowed_with_quota"
    DENIED = "denied"


class DenialReason(str, Enum):
    TIER_INSUFFICIENT = "tier_insufficient"
    QUOTA_EXHAUSTED = "quota_exhausted"


@dataclass(frozen=True)
class TierOnly:
    """Feature available only at ``tier`` or above."""

    tier: Tier
    feature_id: str


@dataclass(frozen=True)
class QuotaLimited:
    """Feature open to lower tiers for ``limit`` uses per day."""

    tier: Tier
    feature_id: str
    limit: int


GateRequirement = Union[TierOnly, QuotaLimited]


@dataclass(frozen=True)
class GateDecision:
    """Outcome of a gate query."""

    status: GateStatus
    remaining: Optional[int] = None
    reason: Optional[DenialReason] = None

    @classmethod
    def loading(cls) -> "GateDecision":
        return cls(GateStatus.LOADING)

    @classmethod
    def allowed(cls, remaining: Optional[int] = None) -> "GateDecision":
        return cls(GateStatus.ALLOWED, remaining=remaining)

    @classmethod
    def allowed_with_quota(cls, remaining: int) -> "GateDecision":
        return cls(GateStatus.ALLOWED_WITH_QUOTA, remaining=remaining)

    @classmethod
    def denied(cls, reason: DenialReason) -> "GateDecision":
        remaining = 0 if reason == DenialReason.QUOTA_EXHAUSTED else None
        return cls(GateStatus.DENIED, remaining=remaining, reason=reason)

    @property
    def is_allowed(self) -> bool:
        return self.status in {GateStatus.ALLOWED, GateStatus.ALLOWED_WITH_QUOTA}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "remaining": self.remaining,
            "reason": self.reason.value if self.reason else None,
        }


class AccessGate:
    """Derives access decisions from entitlement and quota state.

    Nothing is cached here: every query re-reads the entitlement cache and the
    quota counters, so a decision can never go stale after a redemption or a
    day rollover.
    """

    def __init__(
        self,
        entitlements: EntitlementState,
        quota: DailyQuotaTracker,
        *,
        clock: ClockSource,
        allow_test_access: bool = False,
        event_logger: Optional[GateEventLogger] = None,
    ) -> None:
        self._entitlements = entitlements
        self._quota = quota
        self._clock = clock
        self._allow_test_access = allow_test_access
        self._event_logger = event_logger
        self._test_access_all = False
        self._test_access_features: Set[str] = set()
        self._pending: Set[asyncio.Task] = set()

    def requirement_for(
        self,
        feature_id: str,
        required_tier: Tier,
        quota_limit: Optional[int] = None,
    ) -> GateRequirement:
        if quota_limit is not None or self._quota.has_configured_limit(feature_id):
            return QuotaLimited(
                tier=required_tier,
                feature_id=feature_id,
                limit=self._quota.daily_limit(feature_id, quota_limit),
            )
        return TierOnly(tier=required_tier, feature_id=feature_id)

    def query(
        self,
        feature_id: str,
        required_tier: Tier,
        quota_limit: Optional[int] = None,
    ) -> GateDecision:
        requirement = self.requirement_for(feature_id, required_tier, quota_limit)
        decision = self.evaluate(requirement)
        if decision.status == GateStatus.LOADING:
            self._schedule_load(requirement)
        return decision

    def evaluate(self, requirement: GateRequirement) -> GateDecision:
        if self._has_test_access(requirement.feature_id):
            return GateDecision.allowed()
        if not self._entitlements.loaded:
            return GateDecision.loading()
        if meets_requirement(self._entitlements.effective_tier(self._clock.now()), requirement.tier):
            return GateDecision.allowed()
        if isinstance(requirement, TierOnly):
            return GateDecision.denied(DenialReason.TIER_INSUFFICIENT)
        if not self._quota.is_loaded(requirement.feature_id):
            return GateDecision.loading()
        remaining = self._quota.remaining(requirement.feature_id, requirement.limit)
        if remaining > 0:
            return GateDecision.allowed_with_quota(remaining)
        return GateDecision.denied(DenialReason.QUOTA_EXHAUSTED)

    async def prepare(
        self,
        feature_id: str,
        required_tier: Tier,
        quota_limit: Optional[int] = None,
    ) -> GateDecision:
        """Finish loading state for a feature and return its decision."""

        requirement = self.requirement_for(feature_id, required_tier, quota_limit)
        await self._load(requirement)
        decision = self.evaluate(requirement)
        self._emit(requirement, decision)
        return decision

    async def consume(
        self,
        feature_id: str,
        required_tier: Tier,
        quota_limit: Optional[int] = None,
    ) -> GateDecision:
        """Record one use of a feature.

        Users whose tier satisfies the requirement are never charged a daily
        use. Everyone else spends one free use; the returned decision carries
        the uses left afterwards.
        """

        requirement = self.requirement_for(feature_id, required_tier, quota_limit)
        if not self._entitlements.loaded:
            await self._entitlements.initialize()
        current = self._entitlements.effective_tier(self._clock.now())
        if self._has_test_access(feature_id) or meets_requirement(current, requirement.tier):
            decision = GateDecision.allowed()
            self._emit(requirement, decision)
            return decision
        if isinstance(requirement, TierOnly):
            decision = GateDecision.denied(DenialReason.TIER_INSUFFICIENT)
            self._emit(requirement, decision)
            return decision

        result = await self._quota.try_consume(requirement.feature_id, requirement.limit)
        if result == ConsumeResult.CONSUMED:
            decision = GateDecision.allowed(remaining=self._quota.remaining(requirement.feature_id, requirement.limit))
            self._emit(requirement, decision, event_type=GateEventType.QUOTA_CONSUMED)
        else:
            decision = GateDecision.denied(DenialReason.QUOTA_EXHAUSTED)
            self._emit(requirement, decision)
        return decision

    def grant_test_access(self, feature_id: Optional[str] = None) -> None:
        """Force ``ALLOWED`` for one feature, or all of them, in memory only."""

        if not self._allow_test_access:
            raise RuntimeError("Test access overrides are disabled in production builds")
        if feature_id is None:
            self._test_access_all = True
        else:
            self._test_access_features.add(feature_id)
        logger.warning("Test access override enabled for %s", feature_id or "all features")

    def revoke_test_access(self) -> None:
        self._test_access_all = False
        self._test_access_features.clear()

    async def close(self) -> None:
        pending = list(self._pending)
        self._pending.clear()
        for task in pending:
            task.cancel()
        for task in pending:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    def _has_test_access(self, feature_id: str) -> bool:
        return self._test_access_all or feature_id in self._test_access_features

    async def _load(self, requirement: GateRequirement) -> None:
        if not self._entitlements.loaded:
            await self._entitlements.initialize()
        if isinstance(requirement, QuotaLimited) and not self._quota.is_loaded(requirement.feature_id):
            await self._quota.load(requirement.feature_id)

    def _schedule_load(self, requirement: GateRequirement) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        task = loop.create_task(self._load(requirement))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def _emit(
        self,
        requirement: GateRequirement,
        decision: GateDecision,
        *,
        event_type: Optional[GateEventType] = None,
    ) -> None:
        if self._event_logger is None or decision.status == GateStatus.LOADING:
            return
        if event_type is None:
            event_type = GateEventType.ACCESS_GRANTED if decision.is_allowed else GateEventType.GATE_SHOWN
        event = GateEvent(
            event_type=event_type,
            feature_id=requirement.feature_id,
            user_id=self._entitlements.user_id,
            required_tier=requirement.tier,
            current_tier=self._entitlements.effective_tier(self._clock.now()),
            remaining=decision.remaining,
            reason=decision.reason.value if decision.reason else None,
            test_override=self._has_test_access(requirement.feature_id),
            occurred_at=self._clock.now(),
        )
        try:
            self._event_logger.log(event)
        except Exception:
            logger.exception("Gate telemetry failed for feature %s", requirement.feature_id)
