import pytest

from vinted_notifier.core.errors import ProviderError, RateLimitExceeded, StoreUnavailable
from vinted_notifier.core.models import RateLimitRule, SearchParams
from vinted_notifier.engine.execution_engine import LAST_PARAMS_KEY, ExecutionEngine
from vinted_notifier.limits.rate_limiter import RateLimiter
from vinted_notifier.stats.tracker import StatsTracker
from vinted_notifier.tracking.item_tracker import ItemTracker

from tests.helpers import FakeSearchClient, make_item


class Collector:
    def __init__(self):
        self.batches = []

    async def __call__(self, items):
        self.batches.append([item.id for item in items])


def build_engine(store, client, on_new_items=None, search_max=30):
    limiter = RateLimiter(
        store,
        rules={"search": RateLimitRule(max_requests=search_max, window=60)},
    )
    return ExecutionEngine(
        store,
        client,
        ItemTracker(store),
        limiter,
        stats=StatsTracker(store, timezone="UTC"),
        on_new_items=on_new_items,
        default_params=SearchParams(search_text="jacket"),
        timezone="UTC",
    )


async def test_initialize_and_stop_are_idempotent(store) -> None:
    engine = build_engine(store, FakeSearchClient())

    await engine.initialize()
    await engine.initialize()
    assert engine.is_running

    await engine.stop()
    await engine.stop()
    assert not engine.is_running
    assert not store.is_open


async def test_check_passes_only_unseen_items_to_dispatch(store) -> None:
    batch = [make_item(101), make_item(102), make_item(101), make_item(103)]
    client = FakeSearchClient(batches=[batch, batch])
    collector = Collector()
    engine = build_engine(store, client, on_new_items=collector)

    first = await engine.check_new_items()
    second = await engine.check_new_items()

    assert [i.id for i in first] == [101, 102, 103]
    assert second == []
    assert collector.batches == [[101, 102, 103]]


async def test_check_uses_default_then_last_params(store) -> None:
    client = FakeSearchClient()
    engine = build_engine(store, client)

    await engine.check_new_items()
    await engine.check_new_items(SearchParams(search_text="boots"))
    await engine.check_new_items()

    assert [p.search_text for p in client.calls] == ["jacket", "boots", "boots"]
    assert await store.get(LAST_PARAMS_KEY) is not None


async def test_check_is_gated_by_system_search_limit(store) -> None:
    client = FakeSearchClient()
    engine = build_engine(store, client, search_max=1)

    await engine.check_new_items()
    with pytest.raises(RateLimitExceeded):
        await engine.check_new_items()

    assert len(client.calls) == 1


async def test_tick_skips_when_rate_limited(store) -> None:
    client = FakeSearchClient()
    engine = build_engine(store, client, search_max=1)

    await engine._item_check_tick()
    await engine._item_check_tick()

    assert len(client.calls) == 1


async def test_tick_abandons_cycle_on_provider_error(store) -> None:
    client = FakeSearchClient(error=ProviderError("HTTP 503", status=503))
    engine = build_engine(store, client)

    await engine._item_check_tick()

    stats = await engine.stats.get_statistics("day")
    assert stats["search_error"] == 1


async def test_cleanup_tick_removes_old_items(store) -> None:
    engine = build_engine(store, FakeSearchClient())
    await store.set("item:1", '{"id": 1, "timestamp": 0}')
    engine.cleanup_max_age = 60

    await engine._cleanup_tick()

    assert await store.get("item:1") is None


async def test_initialize_fails_when_store_is_down(down_store) -> None:
    engine = build_engine(down_store, FakeSearchClient())

    with pytest.raises(StoreUnavailable):
        await engine.initialize()

    assert not engine.is_running
    assert not down_store.is_open
