import json

import pytest

from vinted_notifier.core.errors import ProviderError
from vinted_notifier.core.models import RateLimitRule
from vinted_notifier.core.user_config import UserConfigStore
from vinted_notifier.limits.rate_limiter import RateLimiter
from vinted_notifier.notify.commands import CommandHandler
from vinted_notifier.notify.scheduler import NotificationScheduler
from vinted_notifier.stats.tracker import StatsTracker

from tests.helpers import FakeSearchClient, RecordingDispatch, make_item

SCHEDULE = json.dumps({"cron_expression": "0 9 * * *", "message": "Check new items"})


@pytest.fixture
async def scheduler(store):
    scheduler = NotificationScheduler(store, RecordingDispatch(), timezone="UTC")
    yield scheduler
    await scheduler.shutdown()


def build_handler(store, scheduler, client=None, rules=None) -> CommandHandler:
    stats = StatsTracker(store, timezone="UTC")
    return CommandHandler(
        scheduler,
        UserConfigStore(store),
        RateLimiter(store, rules=rules, stats=stats),
        client=client,
        stats=stats,
    )


async def test_schedule_commands(store, scheduler) -> None:
    handler = build_handler(store, scheduler)

    assert await handler.handle("42", "/getschedule") == "No active notification schedule"
    assert await handler.handle("42", f"/setschedule {SCHEDULE}") == "Notification schedule set successfully"

    duplicate = await handler.handle("42", f"/setschedule {SCHEDULE}")
    assert duplicate == "Error: a notification schedule already exists, use /updateschedule to change it"

    reply = await handler.handle("42", "/getschedule")
    assert "Cron: 0 9 * * *" in reply
    assert "Message: Check new items" in reply

    updated = json.dumps({"cron_expression": "30 8 * * 1-5", "message": "Weekday digest"})
    assert await handler.handle("42", f"/updateschedule {updated}") == "Notification schedule updated successfully"
    assert (await scheduler.get_schedule("42")).cron_expression == "30 8 * * 1-5"

    assert await handler.handle("42", "/cancelschedule") == "Notification schedule cancelled"
    assert not scheduler.has_job("42")


async def test_invalid_schedule_is_reported(store, scheduler) -> None:
    handler = build_handler(store, scheduler)

    reply = await handler.handle("42", '/setschedule {"cron_expression": "not a cron", "message": "x"}')

    assert reply.startswith("Error: invalid cron expression")
    assert not scheduler.has_job("42")


async def test_unknown_command(store, scheduler) -> None:
    handler = build_handler(store, scheduler)

    assert await handler.handle("42", "/dance") == "Command not recognized. Use /help for available commands"


async def test_bot_suffix_is_ignored(store, scheduler) -> None:
    handler = build_handler(store, scheduler)

    assert (await handler.handle("42", "/help@vinted_bot")).startswith("Available commands:")


async def test_config_commands(store, scheduler) -> None:
    handler = build_handler(store, scheduler)
    config = json.dumps({"search_preferences": {"brands": ["nike"]}})

    assert await handler.handle("42", f"/setconfig {config}") == "Configuration updated successfully"
    assert '"nike"' in await handler.handle("42", "/getconfig")

    invalid = await handler.handle("42", '/setconfig {"search_preferences": {"brands": "nike"}}')
    assert invalid.startswith("Error: invalid input: ")
    assert "search_preferences.brands" in invalid

    assert await handler.handle("42", "/resetconfig") == "Configuration reset to defaults"
    assert await handler.handle("42", "/getconfig") == "No configuration set. Use /setconfig to create one"


async def test_search_requires_config(store, scheduler) -> None:
    client = FakeSearchClient()
    handler = build_handler(store, scheduler, client=client)

    reply = await handler.handle("42", "/search")

    assert reply == "No configuration set. Use /setconfig to create one"
    assert client.calls == []


async def test_search_filters_by_preferences(store, scheduler) -> None:
    client = FakeSearchClient(batches=[[make_item(1, brand_title="Nike"), make_item(2, brand_title="Puma")]])
    handler = build_handler(store, scheduler, client=client)
    await handler.user_configs.set_config("42", {"search_preferences": {"brands": ["nike"]}})

    reply = await handler.handle("42", "/search")

    assert reply.startswith("New items: 1")
    assert "item 1" in reply
    assert "item 2" not in reply


async def test_banned_subject_gets_error(store, scheduler) -> None:
    rules = {"api": RateLimitRule(max_requests=1, window=60)}
    handler = build_handler(store, scheduler, rules=rules)

    assert (await handler.handle("42", "/help")).startswith("Available commands:")
    assert (await handler.handle("42", "/help")).startswith("Error: rate limit exceeded, try again in ")
    assert (await handler.handle("42", "/help")).startswith("Error: rate limit exceeded, try again in ")
    assert await handler.rate_limiter.is_banned("42")
    assert await handler.rate_limiter.violation_count("42") == 1


async def test_provider_errors_reply_in_plain_english(store, scheduler) -> None:
    client = FakeSearchClient(error=ProviderError("HTTP 503: 停止中", status=503))
    handler = build_handler(store, scheduler, client=client)
    await handler.user_configs.set_config("42", {})

    reply = await handler.handle("42", "/search")

    assert reply == "Error: search is temporarily unavailable, please try again later"


async def test_store_outage_reply(down_store, scheduler) -> None:
    handler = build_handler(down_store, scheduler)

    reply = await handler.handle("42", "/help")

    assert reply == "Error: service temporarily unavailable, please try again later"


async def test_stats_includes_own_activity(store, scheduler) -> None:
    handler = build_handler(store, scheduler)

    await handler.handle("42", "/help")
    await handler.handle("42", "/getschedule")
    await handler.handle("7", "/help")
    reply = await handler.handle("42", "/stats")

    activity = reply.split("Your Activity Today:\n")[1].splitlines()
    assert activity == ["getschedule: 1", "help: 1", "stats: 1"]


async def test_ratelimits_reports_violations(store, scheduler) -> None:
    rules = {"api": RateLimitRule(max_requests=2, window=60)}
    handler = build_handler(store, scheduler, rules=rules)

    for _ in range(3):
        await handler.handle("42", "/help")
    reply = await handler.handle("7", "/ratelimits")

    assert "Total violations: 1" in reply
    assert "By user:\n42: 1" in reply
    assert "By category (today):\napi: 1" in reply


async def test_notifications_reports_delivery_stats(store, scheduler) -> None:
    handler = build_handler(store, scheduler)
    for _ in range(3):
        await handler.stats.track_event("notification_success")
    await handler.stats.track_event("notification_failure")

    reply = await handler.handle("42", "/notifications")

    assert reply.splitlines() == [
        "Notification Statistics:",
        "Notifications sent: 3",
        "Notifications failed: 1",
        "Success rate: 75.00%",
    ]
