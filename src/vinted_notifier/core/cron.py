"""
cronジョブモジュール

5フィールドのcron式で定期的にコルーチンを起動するタイマーを提供する。
"""

import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable
from zoneinfo import ZoneInfo

from croniter import croniter

from vinted_notifier.core.config import settings
from vinted_notifier.core.errors import InvalidCronExpression

logger = logging.getLogger(__name__)

CRON_FIELDS = 5


def validate_cron(expression: str) -> str:
    """
    cron式を検証して正規化した文字列を返す

    Raises:
        InvalidCronExpression: 5フィールド形式として解釈できない場合
    """
    if not isinstance(expression, str):
        raise InvalidCronExpression("cron式は文字列である必要があります")
    fields = expression.split()
    if len(fields) != CRON_FIELDS:
        raise InvalidCronExpression(
            f"cron式は{CRON_FIELDS}フィールドである必要があります: '{expression}'"
        )
    normalized = " ".join(fields)
    if not croniter.is_valid(normalized):
        raise InvalidCronExpression(f"cron式が不正です: '{expression}'")
    return normalized


class CronJob:
    """
    cron式に従ってコールバックを起動するタイマー

    各回の実行は別タスクとして起動するため、長引いた実行が次回の起動を妨げない。
    stop() は次回以降の起動を止めるだけで、実行中の回は最後まで走らせる。
    コールバックの例外はログに記録し、タイマーは継続する。
    """

    def __init__(
        self,
        name: str,
        expression: str,
        callback: Callable[[], Awaitable[None]],
        timezone: str = settings.timezone,
    ):
        self.name = name
        self.expression = validate_cron(expression)
        self.callback = callback
        self.tz = ZoneInfo(timezone)
        self._stopped = asyncio.Event()
        self._loop_task: asyncio.Task[None] | None = None
        self._in_flight: set[asyncio.Task[None]] = set()

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._stopped.is_set()

    def next_fire_time(self, now: datetime | None = None) -> datetime:
        base = now or datetime.now(self.tz)
        return croniter(self.expression, base).get_next(datetime)

    def start(self) -> None:
        if self._loop_task is not None:
            return
        self._loop_task = asyncio.create_task(self._run(), name=f"cron:{self.name}")
        logger.debug(f"cronジョブ開始: {self.name} ({self.expression})")

    def stop(self) -> None:
        if self._stopped.is_set():
            return
        self._stopped.set()
        logger.debug(f"cronジョブ停止: {self.name}")

    async def join(self) -> None:
        """タイマーと実行中の回の終了を待つ"""
        if self._loop_task is not None:
            await self._loop_task
        if self._in_flight:
            await asyncio.gather(*self._in_flight, return_exceptions=True)

    async def trigger(self) -> None:
        """スケジュールを待たずに1回実行（完了まで待つ）"""
        await self._invoke()

    async def _run(self) -> None:
        schedule = croniter(self.expression, datetime.now(self.tz))
        while not self._stopped.is_set():
            fire_at = schedule.get_next(datetime)
            delay = (fire_at - datetime.now(self.tz)).total_seconds()
            if delay > 0:
                try:
                    await asyncio.wait_for(self._stopped.wait(), timeout=delay)
                except asyncio.TimeoutError:
                    pass
            if self._stopped.is_set():
                break
            task = asyncio.create_task(self._invoke(), name=f"cron:{self.name}:tick")
            self._in_flight.add(task)
            task.add_done_callback(self._in_flight.discard)

    async def _invoke(self) -> None:
        try:
            await self.callback()
        except Exception:
            logger.exception(f"cronジョブ実行エラー: {self.name}")
