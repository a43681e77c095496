from __future__ import annotations

import asyncio

import pytest

from gatekeeper.app.locks import KeyedLocks


def test_holders_of_one_key_run_one_at_a_time() -> None:
    locks = KeyedLocks()
    events = []

    async def worker(name: str) -> None:
        async with locks.hold("daily_picks"):
            events.append(f"{name}-in")
            await asyncio.sleep(0)
            events.append(f"{name}-out")

    async def scenario():
        await asyncio.gather(worker("a"), worker("b"), worker("c"))

    asyncio.run(scenario())

    assert events == ["a-in", "a-out", "b-in", "b-out", "c-in", "c-out"]
    assert len(locks) == 0


def test_entries_live_only_while_held() -> None:
    locks = KeyedLocks()

    async def scenario():
        async with locks.hold("TRIAL7"):
            inside = "TRIAL7" in locks
        return inside

    assert asyncio.run(scenario()) is True
    assert "TRIAL7" not in locks


def test_entries_are_released_when_the_body_raises() -> None:
    locks = KeyedLocks()

    async def scenario():
        async with locks.hold("SAVE20"):
            raise LookupError("boom")

    with pytest.raises(LookupError):
        asyncio.run(scenario())

    assert len(locks) == 0
