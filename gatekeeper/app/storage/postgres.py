"""asyncpg backed implementation of the persistence store."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import asyncpg

from .base import StorageUnavailable

logger = logging.getLogger("gatekeeper.storage.postgres")


CREATE_TABLE_SQL = """
    CREATE TABLE IF NOT EXISTS kv_store (
        key TEXT PRIMARY KEY,
        value BYTEA NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
"""

SELECT_SQL = "SELECT value FROM kv_store WHERE key = $1"

UPSERT_SQL = """
    INSERT INTO kv_store (key, value, updated_at)
    VALUES ($1, $2, now())
    ON CONFLICT (key) DO UPDATE SET value = EXCLUDED.value, updated_at = now()
"""

DELETE_SQL = "DELETE FROM kv_store WHERE key = $1"

_STORAGE_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, TimeoutError)


async def create_store_pool(
    db_config: Dict[str, Any],
    *,
    connect_timeout: float = 5.0,
) -> asyncpg.Pool:
    return await asyncpg.create_pool(
        min_size=1,
        max_size=5,
        command_timeout=10,
        timeout=connect_timeout,
        **db_config,
    )


class PostgresKeyValueStore:
    """Stores engine records as rows in a single ``kv_store`` table."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def ensure_schema(self) -> None:
        try:
            async with self._pool.acquire() as connection:
                await connection.execute(CREATE_TABLE_SQL)
        except _STORAGE_ERRORS as exc:
            raise StorageUnavailable("migrate", "kv_store", str(exc)) from exc

    async def get(self, key: str) -> Optional[bytes]:
        try:
            async with self._pool.acquire() as connection:
                value = await connection.fetchval(SELECT_SQL, key)
        except _STORAGE_ERRORS as exc:
            logger.warning("kv_store read failed key=%s error=%s", key, exc)
            raise StorageUnavailable("get", key, str(exc)) from exc
        return bytes(value) if value is not None else None

    async def set(self, key: str, value: bytes) -> None:
        try:
            async with self._pool.acquire() as connection:
                await connection.execute(UPSERT_SQL, key, value)
        except _STORAGE_ERRORS as exc:
            logger.warning("kv_store write failed key=%s error=%s", key, exc)
            raise StorageUnavailable("set", key, str(exc)) from exc

    async def remove(self, key: str) -> None:
        try:
            async with self._pool.acquire() as connection:
                await connection.execute(DELETE_SQL, key)
        except _STORAGE_ERRORS as exc:
            logger.warning("kv_store delete failed key=%s error=%s", key, exc)
            raise StorageUnavailable("remove", key, str(exc)) from exc

    async def close(self) -> None:
        await self._pool.close()
