"""Validation and redemption of promotional codes."""
from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from ..clock import ClockSource
from ..entitlements import AppliedPromotion, DiscountType, EntitlementDirectory, Tier
from ..locks import KeyedLocks
from ..storage import (
    PersistenceStore,
    StorageUnavailable,
    dump_model,
    load_model,
    promo_catalog_key,
    promo_uses_key,
    redemption_key,
)
from .models import (
    CatalogSnapshot,
    EffectKind,
    InvalidReason,
    PromoCode,
    PromoUsage,
    RedemptionEffect,
    RedemptionRecord,
    RedemptionResult,
    ValidationResult,
    canonicalize_code,
)
from .remote import RemoteCatalogError, RemotePromoSource

logger = logging.getLogger("gatekeeper.promotions")


class PromoCodeRegistry:
    """Checks codes against the cached catalog and applies redemptions.

    The catalog is a read-only local copy of the remote source. Local
    redemptions are counted separately per code, and the effective use count
    of a code is the larger of the catalog's figure and the local one, so a
    refresh never forgets uses made on this device.

    Redemptions of the same code are serialized. A redemption increments the
    use count, writes the per-user redemption record and applies the effect to
    the user's entitlement; if a later step fails the earlier writes are
    reverted and the caller gets a retryable rejection.

    Codes missing from the cache trigger at most one remote refresh per
    ``miss_refresh_interval`` and are rejected without taking a lock.
    """

    def __init__(
        self,
        store: PersistenceStore,
        entitlements: EntitlementDirectory,
        *,
        clock: ClockSource,
        remote: Optional[RemotePromoSource] = None,
        remote_timeout: float = 3.0,
        refresh_interval: float = 300.0,
        miss_refresh_interval: float = 30.0,
    ) -> None:
        self._store = store
        self._entitlements = entitlements
        self._clock = clock
        self._remote = remote
        self._remote_timeout = remote_timeout
        self._refresh_interval = refresh_interval
        self._miss_refresh_interval = miss_refresh_interval
        self._catalog: Dict[str, PromoCode] = {}
        self._refreshed_at: Optional[datetime] = None
        self._last_attempt_at: Optional[datetime] = None
        self._loaded = False
        self._code_locks = KeyedLocks()
        self._refresh_lock = asyncio.Lock()
        self._refresh_task: Optional[asyncio.Task] = None

    @property
    def loaded(self) -> bool:
        return self._loaded

    @property
    def refreshed_at(self) -> Optional[datetime]:
        return self._refreshed_at

    async def load(self) -> None:
        """Restore the cached catalog snapshot from storage."""

        key = promo_catalog_key()
        try:
            raw = await self._store.get(key)
        except StorageUnavailable as exc:
            logger.warning("Promo catalog cache unavailable; starting empty: %s", exc)
            raw = None
        snapshot = load_model(CatalogSnapshot, raw, key=key)
        if snapshot is not None and not self._catalog:
            self._catalog = {promo.code: promo for promo in snapshot.codes}
            self._refreshed_at = snapshot.refreshed_at
        self._loaded = True

    def list_codes(self, now: Optional[datetime] = None, *, include_expired: bool = False) -> List[PromoCode]:
        current = now or self._clock.now()
        codes = sorted(self._catalog.values(), key=lambda promo: promo.code)
        if include_expired:
            return codes
        return [promo for promo in codes if not promo.is_expired(current)]

    async def validate(self, code: str, now: Optional[datetime] = None) -> ValidationResult:
        """Check a code against the cached catalog without changing anything."""

        if not self._loaded:
            await self.load()
        self.schedule_refresh()
        canonical = canonicalize_code(code)
        return await self._check(canonical, now or self._clock.now(), strict=False)

    async def redeem(self, code: str, user_id: str, now: Optional[datetime] = None) -> RedemptionResult:
        if not user_id:
            raise ValueError("user_id must be provided")
        if not self._loaded:
            await self.load()
        canonical = canonicalize_code(code)
        current = now or self._clock.now()
        if canonical not in self._catalog:
            if canonical:
                await self.refresh(min_interval=self._miss_refresh_interval)
            if canonical not in self._catalog:
                logger.info("Promo %s rejected for user %s: %s", canonical, user_id, InvalidReason.NOT_FOUND.value)
                return RedemptionResult.rejected(canonical, user_id, InvalidReason.NOT_FOUND)

        async with self._code_locks.hold(canonical):
            try:
                validation = await self._check(canonical, current, strict=True)
            except StorageUnavailable as exc:
                logger.warning("Promo usage read failed for %s: %s", canonical, exc)
                return RedemptionResult.rejected(canonical, user_id, InvalidReason.STORAGE_UNAVAILABLE)
            if not validation.valid:
                logger.info("Promo %s rejected for user %s: %s", canonical, user_id, validation.reason.value)
                return RedemptionResult.rejected(canonical, user_id, validation.reason)

            try:
                already_redeemed = await self._store.get(redemption_key(canonical, user_id)) is not None
            except StorageUnavailable as exc:
                logger.warning("Redemption lookup failed for %s/%s: %s", canonical, user_id, exc)
                return RedemptionResult.rejected(canonical, user_id, InvalidReason.STORAGE_UNAVAILABLE)
            if already_redeemed:
                logger.info("Promo %s already redeemed by user %s", canonical, user_id)
                return RedemptionResult.rejected(canonical, user_id, InvalidReason.ALREADY_REDEEMED_BY_USER)

            return await self._apply(validation.promo, user_id, current)

    async def refresh(self, *, force: bool = False, min_interval: Optional[float] = None) -> bool:
        """Fetch the remote catalog; failures keep the cached copy.

        Without ``force`` the fetch only happens when the last attempt is older
        than ``min_interval`` (the refresh interval by default).
        """

        if self._remote is None:
            return False
        async with self._refresh_lock:
            if not force and not self._refresh_due(min_interval):
                return False
            self._last_attempt_at = self._clock.now()
            try:
                codes = await asyncio.wait_for(self._remote.fetch_catalog(), timeout=self._remote_timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    "Promo catalog refresh timed out after %.1fs; using cached catalog",
                    self._remote_timeout,
                )
                return False
            except (RemoteCatalogError, OSError) as exc:
                logger.warning("Promo catalog refresh failed; using cached catalog: %s", exc)
                return False

            snapshot = CatalogSnapshot(codes=tuple(codes), refreshed_at=self._clock.now())
            self._catalog = {promo.code: promo for promo in snapshot.codes}
            self._refreshed_at = snapshot.refreshed_at
            self._loaded = True
            try:
                await self._store.set(promo_catalog_key(), dump_model(snapshot))
            except StorageUnavailable as exc:
                logger.warning("Could not cache refreshed promo catalog: %s", exc)
            logger.debug("Promo catalog refreshed with %d codes", len(snapshot.codes))
            return True

    def schedule_refresh(self) -> None:
        """Start a background refresh when one is due."""

        if self._remote is None or not self._refresh_due():
            return
        if self._refresh_task is not None and not self._refresh_task.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._refresh_task = loop.create_task(self._background_refresh())

    async def close(self) -> None:
        task, self._refresh_task = self._refresh_task, None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _background_refresh(self) -> None:
        try:
            await self.refresh()
        except Exception:
            logger.exception("Unexpected error during background promo catalog refresh")

    def _refresh_due(self, interval: Optional[float] = None) -> bool:
        if self._last_attempt_at is None:
            return True
        elapsed = (self._clock.now() - self._last_attempt_at).total_seconds()
        return elapsed >= (self._refresh_interval if interval is None else interval)

    async def _check(self, canonical: str, now: datetime, *, strict: bool) -> ValidationResult:
        promo = self._catalog.get(canonical) if canonical else None
        if promo is None:
            return ValidationResult.invalid(canonical, InvalidReason.NOT_FOUND)
        if promo.is_expired(now):
            return ValidationResult.invalid(canonical, InvalidReason.EXPIRED)
        uses = await self._effective_uses(promo, strict=strict)
        if promo.is_exhausted(uses):
            return ValidationResult.invalid(canonical, InvalidReason.EXHAUSTED_GLOBALLY)
        return ValidationResult.ok(promo.model_copy(update={"uses_count": uses}))

    async def _effective_uses(self, promo: PromoCode, *, strict: bool) -> int:
        try:
            local = await self._read_usage(promo.code)
        except StorageUnavailable as exc:
            if strict:
                raise
            logger.warning("Promo usage read failed for %s; using catalog count: %s", promo.code, exc)
            return promo.uses_count
        local_count = local.uses_count if local is not None else 0
        return max(promo.uses_count, local_count)

    async def _read_usage(self, code: str) -> Optional[PromoUsage]:
        key = promo_uses_key(code)
        return load_model(PromoUsage, await self._store.get(key), key=key)

    async def _apply(self, promo: PromoCode, user_id: str, now: datetime) -> RedemptionResult:
        code = promo.code
        try:
            previous_usage = await self._read_usage(code)
            state = await self._entitlements.state_for(user_id)
        except StorageUnavailable as exc:
            logger.warning("Redemption setup failed for %s/%s: %s", code, user_id, exc)
            return RedemptionResult.rejected(code, user_id, InvalidReason.STORAGE_UNAVAILABLE)

        trial = state.trial_outcome(promo.trial_days, now) if promo.trial_days is not None else None
        effect = self._effect_for(promo, trial)
        usage = PromoUsage(code=code, uses_count=promo.uses_count + 1)
        record = RedemptionRecord(code=code, user_id=user_id, applied_at=now, effect=effect)
        promotion = AppliedPromotion(
            code=code,
            discount_type=promo.discount_type,
            discount_value=promo.discount_value,
            applied_at=now,
        )

        try:
            await self._store.set(promo_uses_key(code), dump_model(usage))
        except StorageUnavailable as exc:
            logger.warning("Promo usage write failed for %s: %s", code, exc)
            return RedemptionResult.rejected(code, user_id, InvalidReason.STORAGE_UNAVAILABLE)

        try:
            await self._store.set(redemption_key(code, user_id), dump_model(record))
        except StorageUnavailable as exc:
            logger.warning("Redemption write failed for %s/%s; rolling back: %s", code, user_id, exc)
            await self._rollback(code, user_id, previous_usage, remove_redemption=False)
            return RedemptionResult.rejected(code, user_id, InvalidReason.STORAGE_UNAVAILABLE)

        try:
            updated = await state.apply_promotion(promotion, trial_days=promo.trial_days)
        except StorageUnavailable as exc:
            logger.warning("Entitlement update failed for %s/%s; rolling back: %s", code, user_id, exc)
            await self._rollback(code, user_id, previous_usage, remove_redemption=True)
            return RedemptionResult.rejected(code, user_id, InvalidReason.STORAGE_UNAVAILABLE)

        if effect.kind == EffectKind.TRIAL_GRANT:
            effect = effect.model_copy(update={"tier": updated.tier, "tier_expires_at": updated.tier_expires_at})
        logger.info(
            "Promo %s redeemed by user %s uses=%s effect=%s",
            code,
            user_id,
            usage.uses_count,
            effect.kind.value,
        )
        return RedemptionResult.applied_with(code, user_id, effect)

    async def _rollback(
        self,
        code: str,
        user_id: str,
        previous_usage: Optional[PromoUsage],
        *,
        remove_redemption: bool,
    ) -> None:
        if remove_redemption:
            try:
                await self._store.remove(redemption_key(code, user_id))
            except StorageUnavailable as exc:
                logger.error("Could not remove redemption record %s/%s during rollback: %s", code, user_id, exc)
        try:
            if previous_usage is None:
                await self._store.remove(promo_uses_key(code))
            else:
                await self._store.set(promo_uses_key(code), dump_model(previous_usage))
        except StorageUnavailable as exc:
            logger.error("Could not restore usage count for %s during rollback: %s", code, exc)

    @staticmethod
    def _effect_for(
        promo: PromoCode,
        trial: Optional[Tuple[Tier, Optional[datetime]]],
    ) -> RedemptionEffect:
        if promo.discount_type == DiscountType.TRIAL_DAYS:
            tier, expires_at = trial if trial is not None else (Tier.PREMIUM, None)
            return RedemptionEffect(
                kind=EffectKind.TRIAL_GRANT,
                discount_type=promo.discount_type,
                discount_value=promo.discount_value,
                tier=tier,
                tier_expires_at=expires_at,
            )
        return RedemptionEffect(
            kind=EffectKind.DISCOUNT,
            discount_type=promo.discount_type,
            discount_value=promo.discount_value,
        )
