import asyncio
from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

from vinted_notifier.core.cron import CronJob, validate_cron
from vinted_notifier.core.errors import InvalidCronExpression


@pytest.mark.parametrize(
    "expression",
    ["*/5 * * * *", "0 3 * * *", "30 8 * * 1-5", "0 9,18 1 * *"],
)
def test_valid_expressions(expression) -> None:
    assert validate_cron(expression) == expression


def test_whitespace_is_normalized() -> None:
    assert validate_cron("  0   3 * * * ") == "0 3 * * *"


@pytest.mark.parametrize(
    "expression",
    ["", "* * * *", "0 0 3 * * *", "@daily", "61 * * * *", "0 25 * * *", "every minute"],
)
def test_invalid_expressions(expression) -> None:
    with pytest.raises(InvalidCronExpression):
        validate_cron(expression)


def test_next_fire_time() -> None:
    job = CronJob("daily", "0 3 * * *", _noop, timezone="UTC")
    now = datetime(2026, 1, 1, 12, 0, tzinfo=ZoneInfo("UTC"))

    assert job.next_fire_time(now) == datetime(2026, 1, 2, 3, 0, tzinfo=ZoneInfo("UTC"))


async def test_trigger_swallows_callback_errors() -> None:
    calls = []

    async def failing() -> None:
        calls.append(1)
        raise RuntimeError("boom")

    job = CronJob("failing", "* * * * *", failing)
    await job.trigger()
    await job.trigger()

    assert calls == [1, 1]


async def test_stop_ends_timer_loop() -> None:
    job = CronJob("idle", "0 0 1 1 *", _noop)
    job.start()
    assert job.running

    job.stop()
    await asyncio.wait_for(job.join(), timeout=1)

    assert not job.running


async def _noop() -> None:
    pass
