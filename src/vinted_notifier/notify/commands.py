"""
チャットコマンド処理

チャットから届いたコマンド文字列を解釈し、返信テキストを生成する。
"""

import json
import logging
from typing import Awaitable, Callable

import pydantic

from vinted_notifier.core.config import settings
from vinted_notifier.core.errors import (
    DuplicateSchedule,
    InvalidCronExpression,
    NetworkError,
    NotifierError,
    ProviderError,
    RateLimitExceeded,
    StoreUnavailable,
    ValidationError,
)
from vinted_notifier.core.models import NotificationSchedule, SearchParams
from vinted_notifier.core.user_config import UserConfigStore, parse_config_text
from vinted_notifier.limits.rate_limiter import RateLimiter
from vinted_notifier.notify.scheduler import NotificationScheduler
from vinted_notifier.notify.telegram import NotificationError, format_items_message
from vinted_notifier.search.matcher import filter_items
from vinted_notifier.search.vinted_client import VintedClient
from vinted_notifier.stats.tracker import StatsTracker

logger = logging.getLogger(__name__)

HELP_TEXT = """Available commands:
/setconfig <json> - Configure your search preferences
/getconfig - View your current configuration
/resetconfig - Reset your configuration to defaults
/search - Execute a search with your current preferences
/setschedule <json> - Set a notification schedule (cron format)
/updateschedule <json> - Update your notification schedule
/cancelschedule - Cancel your notification schedule
/getschedule - View your current notification schedule
/limits - View your rate limit usage
/stats - View bot usage statistics and your activity
/ratelimits - View rate limit violations
/notifications - View notification delivery statistics"""

Handler = Callable[[str, str], Awaitable[str]]


def parse_schedule_text(text: str) -> NotificationSchedule:
    """'{"cron_expression": "...", "message": "..."}' を解釈"""
    if not text:
        raise ValidationError('使い方: {"cron_expression": "0 9 * * *", "message": "..."}')
    try:
        return NotificationSchedule.model_validate_json(text)
    except pydantic.ValidationError as e:
        message = e.errors()[0]["msg"]
        raise ValidationError(f"スケジュールの形式が不正です: {message}", details=[message]) from e


def error_reply(error: NotifierError) -> str:
    """例外を利用者向けの返信文に変換"""
    if isinstance(error, StoreUnavailable):
        return "service temporarily unavailable, please try again later"
    if isinstance(error, RateLimitExceeded):
        return f"rate limit exceeded, try again in {error.reset_seconds}s"
    if isinstance(error, DuplicateSchedule):
        return "a notification schedule already exists, use /updateschedule to change it"
    if isinstance(error, InvalidCronExpression):
        return 'invalid cron expression, expected five fields such as "0 9 * * *"'
    if isinstance(error, ValidationError):
        if error.details:
            return "invalid input: " + "; ".join(error.details)
        return "invalid input, use /help for usage"
    if isinstance(error, (ProviderError, NetworkError)):
        return "search is temporarily unavailable, please try again later"
    if isinstance(error, NotificationError):
        return "message delivery failed"
    return "request failed"


class CommandHandler:
    """チャットコマンドのルーティング"""

    def __init__(
        self,
        scheduler: NotificationScheduler,
        user_configs: UserConfigStore,
        rate_limiter: RateLimiter,
        client: VintedClient | None = None,
        stats: StatsTracker | None = None,
        max_items: int = settings.notify_max_items,
    ):
        self.scheduler = scheduler
        self.user_configs = user_configs
        self.rate_limiter = rate_limiter
        self.client = client
        self.stats = stats
        self.max_items = max_items
        self._handlers: dict[str, Handler] = {
            "/start": self._start,
            "/help": self._help,
            "/setschedule": self._set_schedule,
            "/updateschedule": self._update_schedule,
            "/cancelschedule": self._cancel_schedule,
            "/getschedule": self._get_schedule,
            "/setconfig": self._set_config,
            "/getconfig": self._get_config,
            "/resetconfig": self._reset_config,
            "/search": self._search,
            "/limits": self._limits,
            "/stats": self._stats,
            "/ratelimits": self._rate_limits,
            "/notifications": self._notifications,
        }

    async def handle(self, subject: str, text: str) -> str:
        """
        コマンドを実行して返信テキストを返す

        利用者向けのエラーは英語の返信文に変換する。
        """
        command, _, argument = text.strip().partition(" ")
        command = command.split("@")[0].lower()

        handler = self._handlers.get(command)
        if handler is None:
            return "Command not recognized. Use /help for available commands"

        try:
            await self.rate_limiter.enforce(subject, "api")
            if self.stats is not None:
                await self.stats.track_activity(subject, command.lstrip("/"))
            return await handler(subject, argument.strip())
        except StoreUnavailable as e:
            logger.error(f"コマンド実行エラー: {command} ({subject}), {e}")
            return f"Error: {error_reply(e)}"
        except NotifierError as e:
            logger.info(f"コマンド拒否: {command} ({subject}), {e}")
            return f"Error: {error_reply(e)}"

    # =========================================================================
    # 基本
    # =========================================================================

    async def _start(self, subject: str, argument: str) -> str:
        return "Welcome to Vinted Bot! Use /help to see available commands"

    async def _help(self, subject: str, argument: str) -> str:
        return HELP_TEXT

    # =========================================================================
    # スケジュール
    # =========================================================================

    async def _set_schedule(self, subject: str, argument: str) -> str:
        request = parse_schedule_text(argument)
        await self.scheduler.schedule(subject, request.cron_expression, request.message)
        return "Notification schedule set successfully"

    async def _update_schedule(self, subject: str, argument: str) -> str:
        request = parse_schedule_text(argument)
        await self.scheduler.update(subject, request.cron_expression, request.message)
        return "Notification schedule updated successfully"

    async def _cancel_schedule(self, subject: str, argument: str) -> str:
        await self.scheduler.cancel(subject)
        return "Notification schedule cancelled"

    async def _get_schedule(self, subject: str, argument: str) -> str:
        schedule = await self.scheduler.get_schedule(subject)
        if schedule is None:
            return "No active notification schedule"
        return f"Current schedule:\nCron: {schedule.cron_expression}\nMessage: {schedule.message}"

    # =========================================================================
    # ユーザー設定
    # =========================================================================

    async def _set_config(self, subject: str, argument: str) -> str:
        await self.user_configs.set_config(subject, parse_config_text(argument))
        return "Configuration updated successfully"

    async def _get_config(self, subject: str, argument: str) -> str:
        config = await self.user_configs.get_config(subject)
        if config is None:
            return "No configuration set. Use /setconfig to create one"
        return f"Current configuration:\n{json.dumps(config.model_dump(), indent=2)}"

    async def _reset_config(self, subject: str, argument: str) -> str:
        await self.user_configs.delete_config(subject)
        return "Configuration reset to defaults"

    # =========================================================================
    # 検索・状況
    # =========================================================================

    async def _search(self, subject: str, argument: str) -> str:
        if self.client is None:
            return "Search is not available"

        config = await self.user_configs.get_config(subject)
        if config is None:
            return "No configuration set. Use /setconfig to create one"

        await self.rate_limiter.enforce(subject, "search")

        prefs = config.search_preferences
        params = SearchParams(
            search_text=argument or prefs.search_text,
            price_from=prefs.price_range.min or None,
            price_to=prefs.price_range.max,
        )
        response = await self.client.search(params)
        results = filter_items(response.items, prefs)

        if self.stats is not None:
            await self.stats.track_event("search")

        if not results:
            return "No results found for your search criteria"
        return format_items_message(results, self.max_items)

    async def _limits(self, subject: str, argument: str) -> str:
        status = await self.rate_limiter.get_status(subject)
        lines = [
            f"{category}: {s.used}/{s.max} used, resets in {s.reset_seconds}s"
            for category, s in status.items()
        ]
        ban = await self.rate_limiter.ban_remaining(subject)
        if ban:
            lines.append(f"Banned for {ban}s")
        return "Rate limits:\n" + "\n".join(lines)

    async def _stats(self, subject: str, argument: str) -> str:
        if self.stats is None:
            return "Statistics are not available"
        stats = await self.stats.get_statistics("day")
        activity = await self.stats.get_user_activity(subject, "day")
        return "\n\n".join([
            "Daily Statistics:\n" + _format_counts(stats),
            "Your Activity Today:\n" + _format_counts(activity),
        ])

    async def _rate_limits(self, subject: str, argument: str) -> str:
        report = await self.rate_limiter.violation_report("day")
        return (
            f"Rate Limit Violations:\nTotal violations: {report.total}\n\n"
            f"By user:\n{_format_counts(report.by_subject)}\n\n"
            f"By category (today):\n{_format_counts(report.by_category)}"
        )

    async def _notifications(self, subject: str, argument: str) -> str:
        if self.stats is None:
            return "Statistics are not available"
        stats = await self.stats.get_notification_stats("day")
        return (
            "Notification Statistics:\n"
            f"Notifications sent: {stats.sent}\n"
            f"Notifications failed: {stats.failed}\n"
            f"Success rate: {stats.success_rate:.2f}%"
        )


def _format_counts(counts: dict[str, int]) -> str:
    if not counts:
        return "(none)"
    return "\n".join(f"{key}: {value}" for key, value in sorted(counts.items()))
