from datetime import date, timedelta

import pytest

from vinted_notifier.core.errors import StoreUnavailable
from vinted_notifier.stats.tracker import ACTIVITY_TTL, StatsTracker, activity_key, daily_key


async def test_events_are_counted_per_day(store) -> None:
    stats = StatsTracker(store, timezone="UTC")

    await stats.track_event("search")
    await stats.track_event("search")
    await stats.track_event("new_items")

    assert await stats.get_statistics("day") == {"search": 2, "new_items": 1}


async def test_period_sums_previous_days(store) -> None:
    stats = StatsTracker(store, timezone="UTC")
    today = stats._today()
    await store.hash_increment(daily_key(today - timedelta(days=3)), "search")
    await store.hash_increment(daily_key(today - timedelta(days=20)), "search")
    await stats.track_event("search")

    assert await stats.get_statistics("day") == {"search": 1}
    assert await stats.get_statistics("week") == {"search": 2}
    assert await stats.get_statistics("month") == {"search": 3}


async def test_unknown_period(store) -> None:
    with pytest.raises(ValueError):
        await StatsTracker(store, timezone="UTC").get_statistics("year")


async def test_track_event_does_not_raise_when_store_fails(store) -> None:
    class BrokenStore:
        async def hash_increment(self, key, field, amount=1):
            raise StoreUnavailable("down")

    await StatsTracker(BrokenStore(), timezone="UTC").track_event("search")


def test_daily_key() -> None:
    assert daily_key(date(2026, 3, 1)) == "stats:daily:2026-03-01"


async def test_user_activity_is_tracked_per_subject(store) -> None:
    stats = StatsTracker(store, timezone="UTC")

    await stats.track_activity("42", "search")
    await stats.track_activity("42", "search")
    await stats.track_activity("42", "setconfig")
    await stats.track_activity("7", "search")

    assert await stats.get_user_activity("42") == {"search": 2, "setconfig": 1}
    assert await stats.get_user_activity("7", "week") == {"search": 1}
    assert await stats.get_user_activity("99") == {}


async def test_user_activity_expires(store) -> None:
    stats = StatsTracker(store, timezone="UTC")

    await stats.track_activity("42", "search")

    ttl = await store.ttl(activity_key("42", stats._today()))
    assert ACTIVITY_TTL - 2 <= ttl <= ACTIVITY_TTL


async def test_user_activity_period_includes_previous_days(store) -> None:
    stats = StatsTracker(store, timezone="UTC")
    await store.hash_increment(activity_key("42", stats._today() - timedelta(days=5)), "search")
    await stats.track_activity("42", "search")

    assert await stats.get_user_activity("42", "day") == {"search": 1}
    assert await stats.get_user_activity("42", "week") == {"search": 2}


async def test_notification_stats(store) -> None:
    stats = StatsTracker(store, timezone="UTC")

    assert (await stats.get_notification_stats()).success_rate == 0.0

    await stats.track_event("notification_attempt")
    await stats.track_event("notification_success")
    await stats.track_event("notification_attempt")
    await stats.track_event("notification_failure")

    result = await stats.get_notification_stats()
    assert (result.sent, result.failed) == (1, 1)
    assert result.success_rate == 50.0


async def test_track_activity_does_not_raise_when_store_is_down(down_store) -> None:
    await StatsTracker(down_store, timezone="UTC").track_activity("42", "search")
