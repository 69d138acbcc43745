"""
統計モジュール

イベント種別ごとの日次カウンタと、ユーザーごとの日次アクティビティを記録・集計する。
統計の書き込み失敗は本処理を止めない。
"""

import logging
from collections import Counter
from datetime import date, datetime, timedelta
from typing import Literal
from zoneinfo import ZoneInfo

from vinted_notifier.core.config import settings
from vinted_notifier.core.errors import StoreUnavailable
from vinted_notifier.core.models import NotificationStats
from vinted_notifier.core.store import RedisStore

logger = logging.getLogger(__name__)

PERIOD_DAYS = {"day": 1, "week": 7, "month": 30}

# 月次集計に必要な期間だけ残す
ACTIVITY_TTL = 31 * 86400

Period = Literal["day", "week", "month"]


def daily_key(day: date) -> str:
    return f"stats:daily:{day.isoformat()}"


def activity_key(subject: str, day: date) -> str:
    return f"user:{subject}:activity:{day.isoformat()}"


class StatsTracker:
    """日次イベントカウンタ"""

    def __init__(self, store: RedisStore, timezone: str = settings.timezone):
        self.store = store
        self.tz = ZoneInfo(timezone)

    def _today(self) -> date:
        return datetime.now(self.tz).date()

    def _days(self, period: str) -> list[date]:
        days = PERIOD_DAYS.get(period)
        if days is None:
            raise ValueError(f"未対応の期間: {period}")
        today = self._today()
        return [today - timedelta(days=offset) for offset in range(days)]

    async def _sum_hashes(self, keys: list[str]) -> dict[str, int]:
        totals: Counter[str] = Counter()
        for key in keys:
            for event_type, count in (await self.store.hash_get_all(key)).items():
                totals[event_type] += int(count)
        return dict(totals)

    # =========================================================================
    # システム全体
    # =========================================================================

    async def track_event(self, event_type: str) -> None:
        try:
            await self.store.hash_increment(daily_key(self._today()), event_type)
        except StoreUnavailable as e:
            logger.warning(f"統計の記録に失敗: {event_type}, {e}")

    async def get_statistics(self, period: Period = "day") -> dict[str, int]:
        """期間内のイベント数を合計"""
        return await self._sum_hashes([daily_key(day) for day in self._days(period)])

    async def get_notification_stats(self, period: Period = "day") -> NotificationStats:
        stats = await self.get_statistics(period)
        return NotificationStats(
            sent=stats.get("notification_success", 0),
            failed=stats.get("notification_failure", 0),
        )

    # =========================================================================
    # ユーザー別
    # =========================================================================

    async def track_activity(self, subject: str, event_type: str) -> None:
        """ユーザーの操作を1件記録"""
        key = activity_key(subject, self._today())
        try:
            count = await self.store.hash_increment(key, event_type)
            if count == 1:
                await self.store.expire(key, ACTIVITY_TTL)
        except StoreUnavailable as e:
            logger.warning(f"アクティビティの記録に失敗: {subject} {event_type}, {e}")

    async def get_user_activity(self, subject: str, period: Period = "day") -> dict[str, int]:
        """期間内のユーザー操作数を種別ごとに合計"""
        return await self._sum_hashes([activity_key(subject, day) for day in self._days(period)])
