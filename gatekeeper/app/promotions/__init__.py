"""Promotional code catalog, validation and redemption."""

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
from .registry import PromoCodeRegistry
from .remote import (
    HttpPromoCatalogSource,
    RemoteCatalogError,
    RemotePromoSource,
    StaticPromoSource,
    parse_catalog_payload,
)

__all__ = [
    "CatalogSnapshot",
    "EffectKind",
    "InvalidReason",
    "PromoCode",
    "PromoUsage",
    "RedemptionEffect",
    "RedemptionRecord",
    "RedemptionResult",
    "ValidationResult",
    "canonicalize_code",
    "PromoCodeRegistry",
    "HttpPromoCatalogSource",
    "RemoteCatalogError",
    "RemotePromoSource",
    "StaticPromoSource",
    "parse_catalog_payload",
]
