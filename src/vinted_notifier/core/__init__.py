"""
コアモジュール

設定、ストア、モデル定義、例外、cronジョブを提供する。
"""

from vinted_notifier.core.config import settings
from vinted_notifier.core.cron import CronJob, validate_cron
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
from vinted_notifier.core.models import (
    NotificationSchedule,
    SearchParams,
    SearchResponse,
    TrackedItem,
    UserConfig,
    VintedItem,
)
from vinted_notifier.core.store import RedisStore
from vinted_notifier.core.user_config import UserConfigStore

__all__ = [
    "settings",
    "RedisStore",
    "CronJob",
    "validate_cron",
    "UserConfigStore",
    "NotifierError",
    "ValidationError",
    "StoreUnavailable",
    "ProviderError",
    "NetworkError",
    "RateLimitExceeded",
    "DuplicateSchedule",
    "InvalidCronExpression",
    "TrackedItem",
    "VintedItem",
    "SearchParams",
    "SearchResponse",
    "NotificationSchedule",
    "UserConfig",
]
