"""Persistence layer used by the entitlement, quota and promo components."""

from .base import (
    InMemoryStore,
    PersistenceStore,
    StorageUnavailable,
    dump_model,
    entitlement_key,
    load_model,
    promo_catalog_key,
    promo_uses_key,
    quota_key,
    redemption_key,
)

__all__ = [
    "InMemoryStore",
    "PersistenceStore",
    "StorageUnavailable",
    "dump_model",
    "entitlement_key",
    "load_model",
    "promo_catalog_key",
    "promo_uses_key",
    "quota_key",
    "redemption_key",
]
