"""
新着通知の配信

新着アイテムを設定済みユーザーの条件で絞り込み、各ユーザーへ送信する。
"""

import logging
from datetime import datetime
from zoneinfo import ZoneInfo

from vinted_notifier.core.config import settings
from vinted_notifier.core.errors import NotifierError
from vinted_notifier.core.models import VintedItem
from vinted_notifier.core.user_config import UserConfigStore
from vinted_notifier.notify.telegram import TelegramNotifier, format_items_message
from vinted_notifier.search.matcher import filter_items, is_active_hour

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """新着アイテムの配信"""

    def __init__(
        self,
        notifier: TelegramNotifier,
        user_configs: UserConfigStore,
        max_items: int = settings.notify_max_items,
        timezone: str = settings.timezone,
    ):
        self.notifier = notifier
        self.user_configs = user_configs
        self.max_items = max_items
        self.tz = ZoneInfo(timezone)

    async def broadcast(self, items: list[VintedItem], now: datetime | None = None) -> dict:
        """
        即時通知を希望するユーザー全員へ配信

        ユーザーごとの失敗はログに残して次のユーザーへ進む。

        Returns:
            {"sent": 件数, "skipped": 件数, "failed": 件数}
        """
        now = now or datetime.now(self.tz)
        result = {"sent": 0, "skipped": 0, "failed": 0}

        for subject in await self.user_configs.list_subjects():
            config = await self.user_configs.get_config(subject)
            if config is None:
                continue

            prefs = config.notification_preferences
            if prefs.frequency != "immediate" or not is_active_hour(prefs.active_hours, now):
                result["skipped"] += 1
                continue

            matched = filter_items(items, config.search_preferences)
            if not matched:
                result["skipped"] += 1
                continue

            try:
                await self.notifier.send(subject, format_items_message(matched, self.max_items))
                result["sent"] += 1
            except NotifierError as e:
                logger.error(f"通知エラー: {subject}, {e}")
                result["failed"] += 1

        logger.info(
            f"新着配信: 送信 {result['sent']}件, スキップ {result['skipped']}件, "
            f"失敗 {result['failed']}件"
        )
        return result
