"""Composition root wiring the gating components for a signed-in user."""
from __future__ import annotations

import logging
from typing import Iterable, Optional

from ...config import GateConfig, load_gate_config
from ..clock import ClockSource
from ..entitlements import EntitlementDirectory, EntitlementState, Tier
from ..promotions import PromoCodeRegistry, RemotePromoSource
from ..storage import PersistenceStore, StorageUnavailable
from .enforcement import require_access
from .events import GateEventLogger
from .gate import AccessGate, GateDecision
from .quota import DailyQuotaTracker

logger = logging.getLogger("gatekeeper.context")


class AccessContext:
    """Owns the entitlement, quota, promo and gate components of one session.

    Built explicitly at startup and torn down on logout, so every test or
    session gets isolated state.
    """

    def __init__(
        self,
        store: PersistenceStore,
        user_id: str,
        *,
        clock: ClockSource,
        config: Optional[GateConfig] = None,
        remote: Optional[RemotePromoSource] = None,
        event_logger: Optional[GateEventLogger] = None,
    ) -> None:
        self._config = config or load_gate_config({})
        self._store = store
        self._clock = clock
        self._directory = EntitlementDirectory(store, clock=clock)
        self.entitlements: EntitlementState = self._directory.get_or_create(user_id)
        self.quota = DailyQuotaTracker(
            store,
            clock=clock,
            limits=self._config.feature_limits,
            default_limit=self._config.default_daily_limit,
        )
        self.promotions = PromoCodeRegistry(
            store,
            self._directory,
            clock=clock,
            remote=remote,
            remote_timeout=self._config.promo_remote_timeout,
            refresh_interval=self._config.promo_refresh_interval,
            miss_refresh_interval=self._config.promo_miss_refresh_interval,
        )
        self.gate = AccessGate(
            self.entitlements,
            self.quota,
            clock=clock,
            allow_test_access=not self._config.is_production,
            event_logger=event_logger,
        )
        self._started = False

    @property
    def user_id(self) -> str:
        return self.entitlements.user_id

    @property
    def config(self) -> GateConfig:
        return self._config

    @property
    def store(self) -> PersistenceStore:
        return self._store

    @property
    def started(self) -> bool:
        return self._started

    async def start(self, feature_ids: Optional[Iterable[str]] = None) -> None:
        """Load cached state; until this finishes gates report ``LOADING``."""

        await self.entitlements.initialize()
        await self.promotions.load()
        features = self._config.feature_limits.keys() if feature_ids is None else feature_ids
        for feature_id in features:
            await self.quota.load(feature_id)
        if self._config.promo_refresh_on_start:
            self.promotions.schedule_refresh()
        self._started = True
        logger.debug("Access context started for user %s", self.user_id)

    async def logout(self) -> None:
        """Reset the user's entitlement to defaults and tear the context down."""

        self.gate.revoke_test_access()
        try:
            await self.entitlements.reset()
        except StorageUnavailable as exc:
            logger.warning("Entitlement reset failed during logout for user %s: %s", self.user_id, exc)
            raise
        finally:
            self._directory.forget(self.user_id)
            await self.close()

    async def close(self) -> None:
        await self.promotions.close()
        await self.gate.close()
        self._started = False

    def has_access(self, feature_id: str, required_tier: Tier, quota_limit: Optional[int] = None) -> bool:
        """Return whether the feature would render right now."""

        return self.gate.query(feature_id, required_tier, quota_limit).is_allowed

    def require(self, feature_id: str, required_tier: Tier, quota_limit: Optional[int] = None) -> GateDecision:
        """Raise :class:`FeatureGateError` unless the feature is accessible."""

        return require_access(self.gate.query(feature_id, required_tier, quota_limit), feature_id=feature_id)

    async def __aenter__(self) -> "AccessContext":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
