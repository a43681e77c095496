from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from gatekeeper.app.entitlements import (
    TIER_CATALOG,
    EntitlementRecord,
    Tier,
    effective_tier,
    get_tier_definition,
    meets_requirement,
    parse_tier,
    tier_rank,
)

NOW = datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "current, required, expected",
    [
        (Tier.FREE, Tier.FREE, True),
        (Tier.FREE, Tier.PREMIUM, False),
        (Tier.FREE, Tier.EXCLUSIVE, False),
        (Tier.PREMIUM, Tier.FREE, True),
        (Tier.PREMIUM, Tier.PREMIUM, True),
        (Tier.PREMIUM, Tier.EXCLUSIVE, False),
        (Tier.EXCLUSIVE, Tier.PREMIUM, True),
        (Tier.EXCLUSIVE, Tier.EXCLUSIVE, True),
    ],
)
def test_meets_requirement_follows_tier_order(current: Tier, required: Tier, expected: bool) -> None:
    assert meets_requirement(current, required) is expected


def test_tier_rank_is_strictly_increasing() -> None:
    assert tier_rank(Tier.FREE) < tier_rank(Tier.PREMIUM) < tier_rank(Tier.EXCLUSIVE)


def test_unknown_tier_names_parse_as_free() -> None:
    assert parse_tier("gold") == Tier.FREE
    assert parse_tier(None) == Tier.FREE
    assert parse_tier("") == Tier.FREE
    assert parse_tier(" Premium ") == Tier.PREMIUM
    assert parse_tier("exclusive") == Tier.EXCLUSIVE


def test_expired_tier_reads_as_free() -> None:
    record = EntitlementRecord(user_id="user-1", tier=Tier.PREMIUM, tier_expires_at=NOW - timedelta(seconds=1))

    assert effective_tier(record, NOW) == Tier.FREE
    assert record.tier == Tier.PREMIUM


def test_tier_is_still_active_at_the_exact_expiry_instant() -> None:
    record = EntitlementRecord(user_id="user-1", tier=Tier.PREMIUM, tier_expires_at=NOW)

    assert effective_tier(record, NOW) == Tier.PREMIUM
    assert effective_tier(record, NOW + timedelta(microseconds=1)) == Tier.FREE


def test_permanent_tier_never_lapses() -> None:
    record = EntitlementRecord(user_id="user-1", tier=Tier.EXCLUSIVE)

    assert effective_tier(record, NOW + timedelta(days=3650)) == Tier.EXCLUSIVE


def test_naive_expiry_is_treated_as_utc() -> None:
    record = EntitlementRecord(user_id="user-1", tier=Tier.PREMIUM, tier_expires_at=datetime(2024, 3, 11))

    assert record.tier_expires_at == datetime(2024, 3, 11, tzinfo=timezone.utc)


def test_tier_catalog_describes_every_tier() -> None:
    assert set(TIER_CATALOG) == set(Tier)
    assert get_tier_definition(Tier.FREE).price_label == "$0"
    assert get_tier_definition(Tier.PREMIUM).price_label == "$19.99/month"
    assert get_tier_definition(Tier.EXCLUSIVE).display_name == "Exclusive"
    assert "3 daily AI predictions" in get_tier_definition(Tier.FREE).features
    assert get_tier_definition(Tier.EXCLUSIVE).limitations == ()
