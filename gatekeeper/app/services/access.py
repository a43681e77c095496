"""Application wiring for the access gating engine."""
from __future__ import annotations

import logging
from typing import Optional

from ...config import GateConfig, load_gate_config
from ..clock import ClockSource, SystemClock
from ..feature_gates import AccessContext, GateEvent, GateEventLogger
from ..promotions import HttpPromoCatalogSource, RemotePromoSource, StaticPromoSource
from ..storage import InMemoryStore, PersistenceStore
from ..storage.postgres import PostgresKeyValueStore, create_store_pool


logger = logging.getLogger("gatekeeper.gate.events")

_context: Optional[AccessContext] = None


class LoggingGateEventLogger(GateEventLogger):
    """Event logger forwarding gate telemetry to logging."""

    def log(self, event: GateEvent) -> None:
        logger.info(
            "Gate event %s feature=%s user=%s tier=%s required=%s remaining=%s reason=%s override=%s",
            event.event_type.value,
            event.feature_id,
            event.user_id,
            event.current_tier.value,
            event.required_tier.value,
            event.remaining,
            event.reason,
            event.test_override,
        )


def build_promo_source(config: GateConfig) -> RemotePromoSource:
    if config.promo_catalog_url:
        return HttpPromoCatalogSource(config.promo_catalog_url, timeout=config.promo_remote_timeout)
    return StaticPromoSource()


async def build_store(config: GateConfig) -> PersistenceStore:
    if config.storage_backend == "postgres":
        pool = await create_store_pool(config.db_config, connect_timeout=config.db_connect_timeout)
        store = PostgresKeyValueStore(pool)
        await store.ensure_schema()
        return store
    return InMemoryStore()


async def build_access_context(
    *,
    config: Optional[GateConfig] = None,
    store: Optional[PersistenceStore] = None,
    clock: Optional[ClockSource] = None,
    remote: Optional[RemotePromoSource] = None,
    user_id: Optional[str] = None,
) -> AccessContext:
    """Assemble an :class:`AccessContext` from configuration.

    Explicit collaborators win over the configured ones, which keeps tests free
    to inject in-memory stores, fixed clocks and static promo sources.
    """

    config = config or load_gate_config()
    if store is None:
        store = await build_store(config)
    return AccessContext(
        store,
        user_id or config.user_id,
        clock=clock or SystemClock.for_zone(config.timezone_name),
        config=config,
        remote=remote or build_promo_source(config),
        event_logger=LoggingGateEventLogger(),
    )


def configure_access_context(context: AccessContext) -> None:
    """Register the context served by the access routes."""

    global _context
    _context = context


def get_access_context() -> AccessContext:
    if _context is None:
        raise RuntimeError("Access context has not been configured yet")
    return _context


def reset_access_context() -> Optional[AccessContext]:
    global _context
    previous, _context = _context, None
    return previous


__all__ = [
    "LoggingGateEventLogger",
    "build_access_context",
    "build_promo_source",
    "build_store",
    "configure_access_context",
    "get_access_context",
    "reset_access_context",
]
