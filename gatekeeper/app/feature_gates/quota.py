"""Per-feature daily usage counters for freemium gating."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Dict, Mapping, Optional, Set, Tuple

from pydantic import BaseModel, ConfigDict, Field

from ..clock import ClockSource
from ..locks import KeyedLocks
from ..storage import PersistenceStore, StorageUnavailable, dump_model, load_model, quota_key

logger = logging.getLogger("gatekeeper.quota")

DEFAULT_DAILY_LIMIT = 5


class ConsumeResult(str, Enum):
    """Outcome of an attempt to use one daily free use."""

    CONSUMED = "consumed"
    QUOTA_EXCEEDED = "quota_exceeded"


class QuotaRecord(BaseModel):
    """Persisted usage counter for one feature on one local calendar day."""

    feature_id: str
    day: date
    used_count: int = Field(default=0, ge=0)

    model_config = ConfigDict(frozen=True)


@dataclass(frozen=True)
class QuotaSnapshot:
    """Point-in-time view of a feature's daily quota."""

    feature_id: str
    day: date
    daily_limit: int
    used_count: int

    @property
    def remaining(self) -> int:
        return max(0, self.daily_limit - self.used_count)

    def to_dict(self) -> dict[str, str | int]:
        """Serialize the snapshot for logging or telemetry."""

        return {
            "feature_id": self.feature_id,
            "day": self.day.isoformat(),
            "daily_limit": self.daily_limit,
            "used_count": self.used_count,
            "remaining": self.remaining,
        }


_CacheKey = Tuple[str, date]


class DailyQuotaTracker:
    """Counts daily uses per feature and hands them out atomically.

    Reads are served from an in-memory view of today's counters. Consumption
    re-reads storage under a per-feature lock, so a burst of calls for the same
    feature is processed one at a time and never grants more than the limit.
    Read failures fail open for display; a use is only granted against a
    count that was read from storage at least once today. Write failures fail
    closed.
    """

    def __init__(
        self,
        store: PersistenceStore,
        *,
        clock: ClockSource,
        limits: Optional[Mapping[str, int]] = None,
        default_limit: int = DEFAULT_DAILY_LIMIT,
    ) -> None:
        if default_limit < 0:
            raise ValueError("default_limit must be >= 0")
        self._store = store
        self._clock = clock
        self._limits: Dict[str, int] = dict(limits or {})
        self._default_limit = default_limit
        self._counts: Dict[_CacheKey, int] = {}
        self._loaded: Set[_CacheKey] = set()
        self._confirmed: Set[_CacheKey] = set()
        self._locks = KeyedLocks()

    def daily_limit(self, feature_id: str, override: Optional[int] = None) -> int:
        if override is not None:
            return max(0, override)
        return self._limits.get(feature_id, self._default_limit)

    def has_configured_limit(self, feature_id: str) -> bool:
        return feature_id in self._limits

    def used_count(self, feature_id: str) -> int:
        return self._counts.get((feature_id, self._clock.today()), 0)

    def remaining(self, feature_id: str, limit: Optional[int] = None) -> int:
        return max(0, self.daily_limit(feature_id, limit) - self.used_count(feature_id))

    def snapshot(self, feature_id: str, limit: Optional[int] = None) -> QuotaSnapshot:
        return QuotaSnapshot(
            feature_id=feature_id,
            day=self._clock.today(),
            daily_limit=self.daily_limit(feature_id, limit),
            used_count=self.used_count(feature_id),
        )

    def is_loaded(self, feature_id: str) -> bool:
        return (feature_id, self._clock.today()) in self._loaded

    async def load(self, feature_id: str) -> int:
        """Read today's counter for ``feature_id`` into memory."""

        async with self._locks.hold(feature_id):
            day = self._clock.today()
            cache_key = (feature_id, day)
            key = quota_key(feature_id, day)
            try:
                raw = await self._store.get(key)
            except StorageUnavailable as exc:
                logger.warning("Quota read failed for %s; assuming full quota: %s", feature_id, exc)
                self._counts.setdefault(cache_key, 0)
            else:
                record = load_model(QuotaRecord, raw, key=key)
                self._counts[cache_key] = self._count_from(record, day)
                self._confirmed.add(cache_key)
            self._loaded.add(cache_key)
            self._evict_stale(day)
            return self._counts[cache_key]

    async def try_consume(self, feature_id: str, limit: Optional[int] = None) -> ConsumeResult:
        async with self._locks.hold(feature_id):
            day = self._clock.today()
            cache_key = (feature_id, day)
            key = quota_key(feature_id, day)
            daily_limit = self.daily_limit(feature_id, limit)

            try:
                raw = await self._store.get(key)
            except StorageUnavailable as exc:
                if cache_key not in self._confirmed:
                    logger.warning(
                        "Quota read failed for %s with no confirmed count; refusing use: %s", feature_id, exc
                    )
                    return ConsumeResult.QUOTA_EXCEEDED
                logger.warning("Quota read failed for %s; using cached count: %s", feature_id, exc)
                used = self._counts.get(cache_key, 0)
            else:
                record = load_model(QuotaRecord, raw, key=key)
                if record is None and raw is not None:
                    used = self._counts.get(cache_key, 0)
                else:
                    used = self._count_from(record, day)
                self._confirmed.add(cache_key)

            self._loaded.add(cache_key)
            self._evict_stale(day)

            if used >= daily_limit:
                self._counts[cache_key] = used
                logger.debug("Quota exhausted feature=%s used=%s limit=%s", feature_id, used, daily_limit)
                return ConsumeResult.QUOTA_EXCEEDED

            updated = QuotaRecord(feature_id=feature_id, day=day, used_count=used + 1)
            try:
                await self._store.set(key, dump_model(updated))
            except StorageUnavailable as exc:
                logger.warning("Quota write failed for %s; refusing use: %s", feature_id, exc)
                self._counts[cache_key] = used
                return ConsumeResult.QUOTA_EXCEEDED

            self._counts[cache_key] = updated.used_count
            logger.debug(
                "Quota consumed feature=%s used=%s limit=%s",
                feature_id,
                updated.used_count,
                daily_limit,
            )
            return ConsumeResult.CONSUMED

    @staticmethod
    def _count_from(record: Optional[QuotaRecord], day: date) -> int:
        if record is None or record.day != day:
            return 0
        return record.used_count

    def _evict_stale(self, today: date) -> None:
        stale = [key for key in self._counts if key[1] != today]
        for key in stale:
            self._counts.pop(key, None)
        self._loaded = {key for key in self._loaded if key[1] == today}
        self._confirmed = {key for key in self._confirmed if key[1] == today}
