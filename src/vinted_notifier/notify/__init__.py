"""
通知（Notify）モジュール

Telegram通知、定期通知スケジューラ、新着配信、チャットコマンドを提供する。
"""

from vinted_notifier.notify.bot import BotPoller
from vinted_notifier.notify.commands import CommandHandler
from vinted_notifier.notify.dispatcher import NotificationDispatcher
from vinted_notifier.notify.scheduler import NotificationScheduler
from vinted_notifier.notify.telegram import (
    NotificationError,
    TelegramNotifier,
    format_item_text,
    format_items_message,
)

__all__ = [
    "NotificationError",
    "TelegramNotifier",
    "format_item_text",
    "format_items_message",
    "NotificationScheduler",
    "NotificationDispatcher",
    "CommandHandler",
    "BotPoller",
]
