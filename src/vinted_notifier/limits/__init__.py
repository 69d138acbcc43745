"""
レート制限（Limits）モジュール
"""

from vinted_notifier.limits.rate_limiter import SYSTEM_SUBJECT, RateLimiter, ban_duration

__all__ = ["RateLimiter", "SYSTEM_SUBJECT", "ban_duration"]
