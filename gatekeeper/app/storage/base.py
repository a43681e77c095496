"""Key/value persistence abstractions shared by the gating components."""
from __future__ import annotations

import asyncio
import logging
from datetime import date
from typing import Dict, Optional, Protocol, Type, TypeVar

from pydantic import BaseModel, ValidationError

logger = logging.getLogger("gatekeeper.storage")

ModelT = TypeVar("ModelT", bound=BaseModel)


class StorageUnavailable(Exception):
    """Raised when the persistence layer cannot complete a read or write."""

    def __init__(self, operation: str, key: str, reason: Optional[str] = None) -> None:
        self.operation = operation
        self.key = key
        self.reason = reason
        message = f"Storage {operation} failed for key {key!r}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class PersistenceStore(Protocol):
    """Durable async key/value storage consumed by the engine."""

    async def get(self, key: str) -> Optional[bytes]:
        ...

    async def set(self, key: str, value: bytes) -> None:
        ...

    async def remove(self, key: str) -> None:
        ...


class InMemoryStore:
    """Dictionary backed store suitable for tests and local development.

    Every operation yields to the event loop once so that interleavings seen
    with real storage also show up here.
    """

    def __init__(self, initial: Optional[Dict[str, bytes]] = None) -> None:
        self._data: Dict[str, bytes] = dict(initial or {})

    async def get(self, key: str) -> Optional[bytes]:
        await asyncio.sleep(0)
        return self._data.get(key)

    async def set(self, key: str, value: bytes) -> None:
        await asyncio.sleep(0)
        self._data[key] = bytes(value)

    async def remove(self, key: str) -> None:
        await asyncio.sleep(0)
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return sorted(self._data)

    def clear(self) -> None:
        self._data.clear()


def entitlement_key(user_id: str) -> str:
    return f"entitlement:{user_id}"


def quota_key(feature_id: str, day: date) -> str:
    return f"quota:{feature_id}:{day.isoformat()}"


def promo_catalog_key() -> str:
    return "promo:catalog"


def promo_uses_key(code: str) -> str:
    return f"promo:uses:{code}"


def redemption_key(code: str, user_id: str) -> str:
    return f"promo:redemption:{code}:{user_id}"


def dump_model(model: BaseModel) -> bytes:
    return model.model_dump_json().encode("utf-8")


def load_model(model_type: Type[ModelT], raw: Optional[bytes], *, key: str) -> Optional[ModelT]:
    """Parse a stored record, treating corrupt payloads as absent."""

    if raw is None:
        return None
    try:
        return model_type.model_validate_json(raw)
    except (ValidationError, ValueError) as exc:
        logger.warning("Discarding corrupt record %s: %s", key, exc)
        return None
