from __future__ import annotations

import asyncio
from datetime import date, datetime, timedelta, timezone

import pytest

from gatekeeper.app.clock import FixedClock
from gatekeeper.app.feature_gates import ConsumeResult, DailyQuotaTracker, QuotaRecord
from gatekeeper.app.storage import InMemoryStore, StorageUnavailable, dump_model, quota_key

NOW = datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)


class FlakyStore(InMemoryStore):
    def __init__(self, initial=None) -> None:
        super().__init__(initial)
        self.fail_reads = False
        self.fail_writes = False

    async def get(self, key):
        if self.fail_reads:
            raise StorageUnavailable("get", key, "offline")
        return await super().get(key)

    async def set(self, key, value):
        if self.fail_writes:
            raise StorageUnavailable("set", key, "offline")
        await super().set(key, value)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW)


@pytest.mark.parametrize("attempts", [3, 10])
def test_concurrent_consumes_grant_exactly_the_limit(clock: FixedClock, attempts: int) -> None:
    store = InMemoryStore()
    tracker = DailyQuotaTracker(store, clock=clock, limits={"daily_picks": 3})

    async def scenario():
        return await asyncio.gather(*(tracker.try_consume("daily_picks") for _ in range(attempts)))

    results = asyncio.run(scenario())

    assert results.count(ConsumeResult.CONSUMED) == 3
    assert results.count(ConsumeResult.QUOTA_EXCEEDED) == attempts - 3
    assert tracker.remaining("daily_picks") == 0
    stored = QuotaRecord.model_validate_json(asyncio.run(store.get(quota_key("daily_picks", NOW.date()))))
    assert stored.used_count == 3


def test_remaining_is_a_pure_read(clock: FixedClock) -> None:
    tracker = DailyQuotaTracker(InMemoryStore(), clock=clock, limits={"daily_picks": 3})

    asyncio.run(tracker.try_consume("daily_picks"))

    assert tracker.remaining("daily_picks") == 2
    assert tracker.remaining("daily_picks") == 2
    assert tracker.used_count("daily_picks") == 1


def test_unconfigured_features_use_the_default_limit(clock: FixedClock) -> None:
    tracker = DailyQuotaTracker(InMemoryStore(), clock=clock, limits={"daily_picks": 3})

    assert tracker.daily_limit("daily_picks") == 3
    assert tracker.daily_limit("line_movement") == 5
    assert tracker.daily_limit("daily_picks", override=1) == 1
    assert tracker.has_configured_limit("daily_picks") is True
    assert tracker.has_configured_limit("line_movement") is False


def test_zero_limit_never_grants(clock: FixedClock) -> None:
    tracker = DailyQuotaTracker(InMemoryStore(), clock=clock, limits={"props": 0})

    assert asyncio.run(tracker.try_consume("props")) == ConsumeResult.QUOTA_EXCEEDED
    assert tracker.remaining("props") == 0


def test_negative_default_limit_is_rejected(clock: FixedClock) -> None:
    with pytest.raises(ValueError):
        DailyQuotaTracker(InMemoryStore(), clock=clock, default_limit=-1)


def test_quota_resets_on_the_next_local_day(clock: FixedClock) -> None:
    store = InMemoryStore()
    tracker = DailyQuotaTracker(store, clock=clock, limits={"daily_picks": 3})

    async def use_all() -> None:
        for _ in range(3):
            await tracker.try_consume("daily_picks")

    asyncio.run(use_all())
    assert asyncio.run(tracker.try_consume("daily_picks")) == ConsumeResult.QUOTA_EXCEEDED

    clock.advance(days=1)

    assert tracker.remaining("daily_picks") == 3
    assert tracker.is_loaded("daily_picks") is False
    assert asyncio.run(tracker.try_consume("daily_picks")) == ConsumeResult.CONSUMED
    assert tracker.remaining("daily_picks") == 2
    assert quota_key("daily_picks", date(2024, 3, 10)) in store.keys()
    assert quota_key("daily_picks", date(2024, 3, 11)) in store.keys()


def test_day_boundary_follows_the_clock_timezone() -> None:
    local = timezone(timedelta(hours=-5))
    clock = FixedClock(datetime(2024, 3, 11, 4, 30, tzinfo=timezone.utc), tz=local)
    tracker = DailyQuotaTracker(InMemoryStore(), clock=clock, limits={"daily_picks": 1})

    assert clock.today() == date(2024, 3, 10)
    assert asyncio.run(tracker.try_consume("daily_picks")) == ConsumeResult.CONSUMED
    assert asyncio.run(tracker.try_consume("daily_picks")) == ConsumeResult.QUOTA_EXCEEDED

    clock.advance(hours=1)

    assert clock.today() == date(2024, 3, 11)
    assert asyncio.run(tracker.try_consume("daily_picks")) == ConsumeResult.CONSUMED


def test_load_reads_todays_counter(clock: FixedClock) -> None:
    record = QuotaRecord(feature_id="daily_picks", day=NOW.date(), used_count=2)
    tracker = DailyQuotaTracker(
        InMemoryStore({quota_key("daily_picks", NOW.date()): dump_model(record)}),
        clock=clock,
        limits={"daily_picks": 3},
    )

    assert tracker.is_loaded("daily_picks") is False
    assert asyncio.run(tracker.load("daily_picks")) == 2
    assert tracker.is_loaded("daily_picks") is True
    assert tracker.snapshot("daily_picks").remaining == 1


def test_read_failure_fails_open(clock: FixedClock) -> None:
    store = FlakyStore()
    store.fail_reads = True
    tracker = DailyQuotaTracker(store, clock=clock, limits={"daily_picks": 3})

    assert asyncio.run(tracker.load("daily_picks")) == 0
    assert tracker.is_loaded("daily_picks") is True
    assert tracker.remaining("daily_picks") == 3


def test_read_failure_during_consume_uses_cached_count(clock: FixedClock) -> None:
    store = FlakyStore()
    tracker = DailyQuotaTracker(store, clock=clock, limits={"daily_picks": 3})

    async def scenario():
        await tracker.try_consume("daily_picks")
        await tracker.try_consume("daily_picks")
        store.fail_reads = True
        third = await tracker.try_consume("daily_picks")
        fourth = await tracker.try_consume("daily_picks")
        return third, fourth

    third, fourth = asyncio.run(scenario())

    assert third == ConsumeResult.CONSUMED
    assert fourth == ConsumeResult.QUOTA_EXCEEDED


def test_read_failure_without_a_cached_count_refuses_use(clock: FixedClock) -> None:
    key = quota_key("daily_picks", NOW.date())
    store = FlakyStore({key: dump_model(QuotaRecord(feature_id="daily_picks", day=NOW.date(), used_count=3))})
    tracker = DailyQuotaTracker(store, clock=clock, limits={"daily_picks": 3})
    store.fail_reads = True

    async def scenario():
        after_failed_load = await tracker.load("daily_picks")
        return after_failed_load, await tracker.try_consume("daily_picks")

    after_failed_load, result = asyncio.run(scenario())
    store.fail_reads = False

    assert after_failed_load == 0
    assert result == ConsumeResult.QUOTA_EXCEEDED
    assert QuotaRecord.model_validate_json(asyncio.run(store.get(key))).used_count == 3
    assert asyncio.run(tracker.try_consume("daily_picks")) == ConsumeResult.QUOTA_EXCEEDED


def test_write_failure_fails_closed(clock: FixedClock) -> None:
    store = FlakyStore()
    store.fail_writes = True
    tracker = DailyQuotaTracker(store, clock=clock, limits={"daily_picks": 3})

    assert asyncio.run(tracker.try_consume("daily_picks")) == ConsumeResult.QUOTA_EXCEEDED
    assert tracker.remaining("daily_picks") == 3
    assert store.keys() == []


def test_corrupt_counter_reads_as_unused(clock: FixedClock) -> None:
    store = InMemoryStore({quota_key("daily_picks", NOW.date()): b"garbage"})
    tracker = DailyQuotaTracker(store, clock=clock, limits={"daily_picks": 3})

    assert asyncio.run(tracker.load("daily_picks")) == 0
    assert tracker.remaining("daily_picks") == 3


def test_snapshot_serializes_for_telemetry(clock: FixedClock) -> None:
    tracker = DailyQuotaTracker(InMemoryStore(), clock=clock, limits={"daily_picks": 3})
    asyncio.run(tracker.try_consume("daily_picks"))

    assert tracker.snapshot("daily_picks").to_dict() == {
        "feature_id": "daily_picks",
        "day": "2024-03-10",
        "daily_limit": 3,
        "used_count": 1,
        "remaining": 2,
    }


def test_feature_locks_are_released_after_use(clock: FixedClock) -> None:
    tracker = DailyQuotaTracker(InMemoryStore(), clock=clock, default_limit=1)

    async def scenario():
        await asyncio.gather(*(tracker.try_consume(f"feature-{index}") for index in range(50)))
        await tracker.load("daily_picks")

    asyncio.run(scenario())

    assert len(tracker._locks) == 0
    assert tracker.remaining("feature-7") == 0
