"""Sources for the authoritative promo code catalog."""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Iterable, List, Mapping, Optional, Protocol, Sequence
from urllib import error as urllib_error, request as urllib_request

from pydantic import ValidationError

from .models import PromoCode

logger = logging.getLogger("gatekeeper.promotions.remote")

_DISCOUNT_TYPE_ALIASES = {
    "trial": "trial_days",
    "trialdays": "trial_days",
    "flat": "flat_amount",
    "fixed": "flat_amount",
    "amount": "flat_amount",
    "percent": "percentage",
}


class RemoteCatalogError(Exception):
    """Raised when the remote promo catalog cannot be fetched or parsed."""


class RemotePromoSource(Protocol):
    """Remote source of truth for promo codes."""

    async def fetch_catalog(self) -> List[PromoCode]:
        ...


class StaticPromoSource:
    """Serves a fixed catalog; used for local development and tests."""

    def __init__(self, codes: Iterable[PromoCode] = ()) -> None:
        self._codes = list(codes)

    async def fetch_catalog(self) -> List[PromoCode]:
        return list(self._codes)

    def replace(self, codes: Iterable[PromoCode]) -> None:
        self._codes = list(codes)


def _normalize_entry(entry: Mapping[str, Any]) -> dict[str, Any]:
    data = dict(entry)
    raw_type = str(data.get("discount_type", "")).strip().lower()
    data["discount_type"] = _DISCOUNT_TYPE_ALIASES.get(raw_type.replace("-", "").replace(" ", ""), raw_type)
    if "expiration" in data and "expires_at" not in data:
        data["expires_at"] = data.pop("expiration")
    return data


def parse_catalog_payload(payload: Any) -> List[PromoCode]:
    """Parse a catalog response; entries that fail validation are skipped."""

    if isinstance(payload, Mapping):
        entries = payload.get("promos") or payload.get("codes") or []
    elif isinstance(payload, Sequence) and not isinstance(payload, (str, bytes)):
        entries = payload
    else:
        raise RemoteCatalogError(f"Unexpected catalog payload type: {type(payload).__name__}")

    codes: List[PromoCode] = []
    for entry in entries:
        if not isinstance(entry, Mapping):
            logger.warning("Skipping malformed promo entry: %r", entry)
            continue
        try:
            codes.append(PromoCode.model_validate(_normalize_entry(entry)))
        except ValidationError as exc:
            logger.warning("Skipping invalid promo entry %s: %s", entry.get("code"), exc)
    return codes


class HttpPromoCatalogSource:
    """Fetches the catalog as JSON over HTTP."""

    def __init__(self, url: str, *, timeout: float = 3.0, headers: Optional[Mapping[str, str]] = None) -> None:
        if not url:
            raise ValueError("url must be provided")
        self._url = url
        self._timeout = timeout
        self._headers = dict(headers or {})

    async def fetch_catalog(self) -> List[PromoCode]:
        payload = await asyncio.to_thread(self._fetch_json)
        return parse_catalog_payload(payload)

    def _fetch_json(self) -> Any:
        req = urllib_request.Request(self._url, headers={"Accept": "application/json", **self._headers})
        try:
            with urllib_request.urlopen(req, timeout=self._timeout) as response:
                body = response.read()
            return json.loads(body.decode("utf-8"))
        except (
            urllib_error.URLError,
            urllib_error.HTTPError,
            TimeoutError,
            json.JSONDecodeError,
            UnicodeDecodeError,
        ) as exc:
            raise RemoteCatalogError(f"Promo catalog fetch failed: {exc}") from exc
