"""
レート制限モジュール

サブジェクト×カテゴリごとの固定ウィンドウ計数と、違反の繰り返しに応じて
段階的に延びるBANを提供する。

ウィンドウのリセットはキーの自然失効のみで行い、ロックは使わない。
違反回数キーとBANキーは別々に更新されるため、両者の間に一時的な不整合が
生じ得るが、複数回の違反にわたる制限の性質は保たれる。
"""

import logging

from vinted_notifier.core.config import settings
from vinted_notifier.core.errors import RateLimitExceeded, ValidationError
from vinted_notifier.core.models import (
    BanPolicy,
    CategoryStatus,
    RateLimitResult,
    RateLimitRule,
    ViolationReport,
)
from vinted_notifier.core.store import RedisStore
from vinted_notifier.stats.tracker import StatsTracker

logger = logging.getLogger(__name__)

KEY_PREFIX = "rate_limit"
SYSTEM_SUBJECT = "system"
VIOLATION_EVENT_PREFIX = "rate_limit_violation:"


def default_rules() -> dict[str, RateLimitRule]:
    """設定から既定カテゴリの制限を構築"""
    return {
        "search": RateLimitRule(
            max_requests=settings.rate_limit_search_max,
            window=settings.rate_limit_search_window,
        ),
        "notifications": RateLimitRule(
            max_requests=settings.rate_limit_notifications_max,
            window=settings.rate_limit_notifications_window,
        ),
        "api": RateLimitRule(
            max_requests=settings.rate_limit_api_max,
            window=settings.rate_limit_api_window,
        ),
    }


def default_ban_policy() -> BanPolicy:
    return BanPolicy(
        initial_ban=settings.ban_initial,
        multiplier=settings.ban_multiplier,
        max_ban=settings.ban_max,
    )


def window_key(subject: str, category: str) -> str:
    return f"{KEY_PREFIX}:{subject}:{category}"


def violations_key(subject: str) -> str:
    return f"{KEY_PREFIX}:{subject}:violations"


def ban_key(subject: str) -> str:
    return f"{KEY_PREFIX}:{subject}:ban"


def ban_duration(violations: int, policy: BanPolicy) -> int:
    """
    N回目の違反に対するBAN秒数

    min(initial × multiplier^(N−1), max)
    """
    if violations < 1:
        return 0
    return min(policy.initial_ban * policy.multiplier ** (violations - 1), policy.max_ban)


class RateLimiter:
    """固定ウィンドウ方式のレート制限"""

    def __init__(
        self,
        store: RedisStore,
        rules: dict[str, RateLimitRule] | None = None,
        policy: BanPolicy | None = None,
        stats: StatsTracker | None = None,
    ):
        self.store = store
        self.rules = dict(rules) if rules is not None else default_rules()
        self.policy = policy or default_ban_policy()
        self.stats = stats

    def register_category(self, category: str, max_requests: int, window: int) -> None:
        """呼び出し側定義のカテゴリを追加"""
        if category == "violations" or category == "ban":
            raise ValidationError(f"予約済みのカテゴリ名です: {category}")
        self.rules[category] = RateLimitRule(max_requests=max_requests, window=window)

    def _rule(self, category: str) -> RateLimitRule:
        rule = self.rules.get(category)
        if rule is None:
            raise ValidationError(f"未定義のレート制限カテゴリ: {category}")
        return rule

    async def check_limit(self, subject: str, category: str) -> RateLimitResult:
        """
        リクエストを1回計上して許可判定

        ウィンドウ内の最初の計上でキーの有効期限を設定する。
        上限を超えた場合は違反を記録して拒否する。
        """
        rule = self._rule(category)
        key = window_key(subject, category)

        count = await self.store.increment(key)
        if count == 1:
            await self.store.expire(key, rule.window)
            reset = rule.window
        else:
            reset = await self.store.ttl(key)
            if reset is None:
                # 有効期限の設定に失敗したキーを再設定
                await self.store.expire(key, rule.window)
                reset = rule.window

        if count > rule.max_requests:
            await self.record_violation(subject, category)
            return RateLimitResult(allowed=False, remaining=0, reset_seconds=reset)

        return RateLimitResult(
            allowed=True,
            remaining=rule.max_requests - count,
            reset_seconds=reset,
        )

    async def record_violation(self, subject: str, category: str) -> int:
        """
        違反を記録し、BANが有効でなければ新しいBANを設定

        BAN中の違反は回数だけ加算し、BAN期間は延長しない。

        Returns:
            今回の違反回数から算出したBAN秒数
        """
        violations = await self.store.increment(violations_key(subject))
        duration = ban_duration(violations, self.policy)

        applied = await self.store.set_if_absent(ban_key(subject), "banned", duration)
        if self.stats is not None:
            await self.stats.track_event(f"{VIOLATION_EVENT_PREFIX}{category}")

        logger.warning(
            f"レート制限違反: subject={subject}, category={category}, "
            f"violations={violations}, ban={duration}s"
            + ("" if applied else " (BAN継続中のため未更新)")
        )
        return duration

    async def is_banned(self, subject: str) -> bool:
        return await self.store.exists(ban_key(subject))

    async def ban_remaining(self, subject: str) -> int:
        """BANの残り秒数（BANなしなら0）"""
        return await self.store.ttl(ban_key(subject)) or 0

    async def violation_count(self, subject: str) -> int:
        raw = await self.store.get(violations_key(subject))
        return int(raw) if raw else 0

    async def get_status(self, subject: str) -> dict[str, CategoryStatus]:
        """全カテゴリの利用状況"""
        status = {}
        for category, rule in self.rules.items():
            key = window_key(subject, category)
            raw = await self.store.get(key)
            used = int(raw) if raw else 0
            reset = await self.store.ttl(key) or 0
            status[category] = CategoryStatus(
                used=used,
                remaining=max(rule.max_requests - used, 0),
                reset_seconds=reset,
                max=rule.max_requests,
                window=rule.window,
            )
        return status

    async def violation_report(self, period: str = "day") -> ViolationReport:
        """
        違反の集計

        サブジェクト別は累計の違反回数、カテゴリ別は期間内の違反イベント数。
        """
        suffix = ":violations"
        by_subject = {}
        for key in await self.store.keys_with_prefix(f"{KEY_PREFIX}:"):
            if not key.endswith(suffix):
                continue
            raw = await self.store.get(key)
            if raw:
                by_subject[key[len(KEY_PREFIX) + 1:-len(suffix)]] = int(raw)

        by_category = {}
        if self.stats is not None:
            for event_type, count in (await self.stats.get_statistics(period)).items():
                if event_type.startswith(VIOLATION_EVENT_PREFIX):
                    by_category[event_type[len(VIOLATION_EVENT_PREFIX):]] = count

        return ViolationReport(
            total=sum(by_subject.values()),
            by_subject=dict(sorted(by_subject.items())),
            by_category=dict(sorted(by_category.items())),
        )

    async def enforce(self, subject: str, category: str) -> RateLimitResult:
        """
        BAN確認と制限判定を行い、拒否なら例外を送出

        Raises:
            RateLimitExceeded: BAN中または上限超過
        """
        if await self.is_banned(subject):
            remaining = await self.ban_remaining(subject)
            raise RateLimitExceeded(
                f"一時的に利用が制限されています（残り{remaining}秒）",
                reset_seconds=remaining,
            )

        result = await self.check_limit(subject, category)
        if not result.allowed:
            raise RateLimitExceeded(
                f"レート制限を超えました: {category}（{result.reset_seconds}秒後にリセット）",
                reset_seconds=result.reset_seconds,
            )
        return result
