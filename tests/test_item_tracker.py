import asyncio

import pytest

from vinted_notifier.core.errors import ValidationError
from vinted_notifier.tracking.item_tracker import ItemTracker, item_key

from tests.helpers import make_item


class FakeClock:
    def __init__(self, now_ms: int = 1_700_000_000_000):
        self.now_ms = now_ms

    def __call__(self) -> int:
        return self.now_ms


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def tracker(store, clock):
    return ItemTracker(store, ttl=604800, clock=clock)


async def test_is_new_before_and_after_track(tracker) -> None:
    item = make_item(555)

    assert await tracker.is_new(555) is True
    await tracker.track(item)
    assert await tracker.is_new(555) is False


async def test_track_writes_record_with_ttl(tracker, store, clock) -> None:
    record = await tracker.track(make_item(1, title="Jacket", price=35.5))

    assert record.timestamp == clock.now_ms
    assert record.title == "Jacket"
    assert 0 < await store.ttl(item_key(1)) <= 604800


async def test_filter_new_twice_returns_full_then_empty(tracker) -> None:
    batch = [make_item(1), make_item(2), make_item(3)]

    assert [i.id for i in await tracker.filter_new(batch)] == [1, 2, 3]
    assert await tracker.filter_new(batch) == []


async def test_filter_new_drops_within_batch_duplicates(tracker) -> None:
    batch = [make_item(101), make_item(102), make_item(101, title="again"), make_item(103)]

    result = await tracker.filter_new(batch)

    assert [i.id for i in result] == [101, 102, 103]
    assert result[0].title == "item 101"
    assert await tracker.is_new(101) is False
    assert await tracker.is_new(104) is True


async def test_overlapping_filter_new_accepts_each_id_once(tracker) -> None:
    batch = [make_item(i) for i in range(20)]

    first, second = await asyncio.gather(tracker.filter_new(batch), tracker.filter_new(batch))

    accepted = [i.id for i in first] + [i.id for i in second]
    assert sorted(accepted) == list(range(20))


async def test_list_recent_orders_newest_first(tracker, clock) -> None:
    for item_id in (1, 2, 3):
        clock.now_ms += 1000
        await tracker.track(make_item(item_id))

    recent = await tracker.list_recent(limit=2)

    assert [r.id for r in recent] == [3, 2]


async def test_cleanup_removes_only_expired_records(tracker, clock) -> None:
    now = clock.now_ms
    clock.now_ms = now - 2000
    await tracker.track(make_item(1))
    clock.now_ms = now - 100
    await tracker.track(make_item(2))
    clock.now_ms = now

    removed = await tracker.cleanup(max_age=1)

    assert removed == 1
    assert await tracker.is_new(1) is True
    assert await tracker.is_new(2) is False


async def test_cleanup_drops_corrupt_records(tracker, store) -> None:
    await store.set(item_key(9), "not json")

    assert await tracker.cleanup(max_age=60) == 1
    assert await store.get(item_key(9)) is None


async def test_count(tracker) -> None:
    await tracker.filter_new([make_item(1), make_item(2)])
    assert await tracker.count() == 2

async def test_list_recent_skips_corrupt_records(tracker, store) -> None:
    await tracker.track(make_item(1))
    await store.set(item_key(9), "not json")

    assert [r.id for r in await tracker.list_recent()] == [1]


async def test_list_recent_rejects_negative_limit(tracker) -> None:
    await tracker.track(make_item(1))

    with pytest.raises(ValidationError):
        await tracker.list_recent(limit=-1)
    assert await tracker.list_recent(limit=0) == []
