"""Cached, persisted entitlement state for signed-in users."""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Dict, Optional, Tuple

from ..clock import ClockSource
from ..storage import (
    PersistenceStore,
    StorageUnavailable,
    dump_model,
    entitlement_key,
    load_model,
)
from .catalog import get_tier_definition
from .models import AppliedPromotion, DiscountType, EntitlementRecord, Tier
from .policy import effective_tier, tier_rank

logger = logging.getLogger("gatekeeper.entitlements")


class EntitlementState:
    """Owns the entitlement record of one user.

    The record is read from storage once by :meth:`initialize`; afterwards all
    reads are served from memory. Mutations are serialized, written to storage
    first and only then swapped into the cache, so a failed write leaves the
    cached record untouched.
    """

    def __init__(
        self,
        store: PersistenceStore,
        user_id: str,
        *,
        clock: ClockSource,
    ) -> None:
        if not user_id:
            raise ValueError("user_id must be provided")
        self._store = store
        self._user_id = user_id
        self._clock = clock
        self._record = EntitlementRecord.default(user_id)
        self._loaded = False
        self._needs_reload = False
        self._lock = asyncio.Lock()

    @property
    def user_id(self) -> str:
        return self._user_id

    @property
    def loaded(self) -> bool:
        return self._loaded

    async def initialize(self) -> EntitlementRecord:
        async with self._lock:
            if self._loaded:
                return self._record
            try:
                self._record = await self._read()
            except StorageUnavailable as exc:
                logger.warning("Entitlement load failed for user %s; using defaults: %s", self._user_id, exc)
                self._record = EntitlementRecord.default(self._user_id)
                self._needs_reload = True
            self._loaded = True
            return self._record

    def get(self) -> EntitlementRecord:
        return self._record

    def effective_tier(self, now: Optional[datetime] = None) -> Tier:
        return effective_tier(self._record, now or self._clock.now())

    def current_tier_label(self, now: Optional[datetime] = None) -> str:
        return get_tier_definition(self.effective_tier(now)).display_name

    def pending_discounts(self) -> Tuple[AppliedPromotion, ...]:
        """Discount promotions awaiting a purchase flow."""

        return tuple(promo for promo in self._record.applied_promotions if promo.is_discount)

    async def apply_tier_change(self, new_tier: Tier, new_expiry: Optional[datetime]) -> EntitlementRecord:
        async with self._lock:
            await self._reload_if_needed()
            updated = self._record.with_tier(new_tier, new_expiry)
            await self._persist(updated)
            self._record = updated
            logger.info(
                "Tier changed user=%s tier=%s expires_at=%s",
                self._user_id,
                new_tier.value,
                new_expiry.isoformat() if new_expiry else None,
            )
            return updated

    async def apply_promotion(self, promotion: AppliedPromotion, *, trial_days: Optional[int] = None) -> EntitlementRecord:
        """Record a promotion and, for trials, extend premium access.

        A trial never shortens or downgrades an existing entitlement: the new
        expiry is the later of the current expiry and ``applied_at + trial_days``.
        """

        async with self._lock:
            await self._reload_if_needed()
            updated = self._record.with_promotion(promotion)
            if promotion.discount_type == DiscountType.TRIAL_DAYS:
                days = trial_days if trial_days is not None else int(promotion.discount_value)
                tier, expires_at = self.trial_outcome(days, promotion.applied_at)
                updated = updated.with_tier(tier, expires_at)
            await self._persist(updated)
            self._record = updated
            return updated

    async def reset(self) -> EntitlementRecord:
        async with self._lock:
            record = EntitlementRecord.default(self._user_id)
            await self._persist(record)
            self._record = record
            self._needs_reload = False
            logger.info("Entitlement reset for user %s", self._user_id)
            return record

    def trial_outcome(self, days: int, now: datetime) -> Tuple[Tier, Optional[datetime]]:
        record = self._record
        current = effective_tier(record, now)
        candidate = now + timedelta(days=days)
        if tier_rank(current) > tier_rank(Tier.PREMIUM):
            return record.tier, record.tier_expires_at
        if current == Tier.PREMIUM:
            if record.tier_expires_at is None:
                return record.tier, None
            return Tier.PREMIUM, max(record.tier_expires_at, candidate)
        return Tier.PREMIUM, candidate

    async def _read(self) -> EntitlementRecord:
        key = entitlement_key(self._user_id)
        raw = await self._store.get(key)
        record = load_model(EntitlementRecord, raw, key=key)
        if record is None or record.user_id != self._user_id:
            record = EntitlementRecord.default(self._user_id)
            if raw is None:
                await self._persist_best_effort(record)
        return record

    async def _reload_if_needed(self) -> None:
        # A record that failed to load must be re-read before it is overwritten.
        if not self._needs_reload:
            return
        self._record = await self._read()
        self._needs_reload = False

    async def _persist(self, record: EntitlementRecord) -> None:
        await self._store.set(entitlement_key(self._user_id), dump_model(record))

    async def _persist_best_effort(self, record: EntitlementRecord) -> None:
        try:
            await self._persist(record)
        except StorageUnavailable as exc:
            logger.warning("Could not write default entitlement for user %s: %s", self._user_id, exc)


class EntitlementDirectory:
    """Hands out one initialized :class:`EntitlementState` per user."""

    def __init__(self, store: PersistenceStore, *, clock: ClockSource) -> None:
        self._store = store
        self._clock = clock
        self._states: Dict[str, EntitlementState] = {}

    def get_or_create(self, user_id: str) -> EntitlementState:
        state = self._states.get(user_id)
        if state is None:
            state = EntitlementState(self._store, user_id, clock=self._clock)
            self._states[user_id] = state
        return state

    async def state_for(self, user_id: str) -> EntitlementState:
        state = self.get_or_create(user_id)
        if not state.loaded:
            await state.initialize()
        return state

    def peek(self, user_id: str) -> Optional[EntitlementState]:
        return self._states.get(user_id)

    def forget(self, user_id: str) -> None:
        self._states.pop(user_id, None)
