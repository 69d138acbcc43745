"""
実行エンジン

新着チェックとクリーンアップの2つのシステムジョブを管理する。
新着チェックは 検索 → レート制限 → 重複排除 → 配信 の順に処理する。
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable

from vinted_notifier.core.config import settings
from vinted_notifier.core.cron import CronJob
from vinted_notifier.core.errors import NetworkError, ProviderError, RateLimitExceeded
from vinted_notifier.core.models import SearchParams, VintedItem
from vinted_notifier.core.store import RedisStore
from vinted_notifier.limits.rate_limiter import SYSTEM_SUBJECT, RateLimiter
from vinted_notifier.search.vinted_client import VintedClient
from vinted_notifier.stats.tracker import StatsTracker
from vinted_notifier.tracking.item_tracker import ItemTracker

logger = logging.getLogger(__name__)

LAST_PARAMS_KEY = "search:last_params"

OnNewItems = Callable[[list[VintedItem]], Awaitable[Any]]


class ExecutionEngine:
    """システムジョブの実行エンジン"""

    def __init__(
        self,
        store: RedisStore,
        client: VintedClient,
        tracker: ItemTracker,
        rate_limiter: RateLimiter,
        stats: StatsTracker | None = None,
        on_new_items: OnNewItems | None = None,
        default_params: SearchParams | None = None,
        item_check_cron: str = settings.item_check_cron,
        cleanup_cron: str = settings.cleanup_cron,
        cleanup_max_age: int = settings.cleanup_max_age,
        timezone: str = settings.timezone,
    ):
        self.store = store
        self.client = client
        self.tracker = tracker
        self.rate_limiter = rate_limiter
        self.stats = stats
        self.on_new_items = on_new_items
        self.default_params = default_params or SearchParams()
        self.item_check_cron = item_check_cron
        self.cleanup_cron = cleanup_cron
        self.cleanup_max_age = cleanup_max_age
        self.timezone = timezone
        self._jobs: list[CronJob] = []
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def initialize(self) -> None:
        """
        ストアに接続してシステムジョブを開始（実行中なら何もしない）

        Raises:
            StoreUnavailable: ストアに接続できない場合
        """
        if self._running:
            return

        await self.store.connect()

        self._jobs = [
            CronJob("item_check", self.item_check_cron, self._item_check_tick, self.timezone),
            CronJob("cleanup", self.cleanup_cron, self._cleanup_tick, self.timezone),
        ]
        for job in self._jobs:
            job.start()

        self._running = True
        logger.info(
            f"実行エンジン開始: 新着チェック '{self.item_check_cron}', "
            f"クリーンアップ '{self.cleanup_cron}'"
        )

    async def stop(self) -> None:
        """ジョブを停止してストア接続を閉じる（停止済みなら何もしない）"""
        if not self._running:
            return

        for job in self._jobs:
            job.stop()
        await asyncio.gather(*(job.join() for job in self._jobs))
        self._jobs = []

        await self.store.close()
        self._running = False
        logger.info("実行エンジン停止")

    # =========================================================================
    # 新着チェック
    # =========================================================================

    async def resolve_params(self, params: SearchParams | None = None) -> SearchParams:
        """指定 → 前回使用 → 既定 の順で検索パラメータを決定"""
        if params is not None:
            return params
        raw = await self.store.get(LAST_PARAMS_KEY)
        if raw:
            return SearchParams.model_validate_json(raw)
        return self.default_params

    async def check_new_items(self, params: SearchParams | None = None) -> list[VintedItem]:
        """
        検索して未通知のアイテムを抽出し、配信コールバックに渡す

        Raises:
            RateLimitExceeded: システム全体の検索上限を超えた場合
            ProviderError, NetworkError: 検索に失敗した場合
        """
        search_params = await self.resolve_params(params)

        await self.rate_limiter.enforce(SYSTEM_SUBJECT, "search")
        response = await self.client.search(search_params)

        if params is not None:
            await self.store.set(LAST_PARAMS_KEY, params.model_dump_json())

        new_items = await self.tracker.filter_new(response.items)
        logger.info(f"検索結果: {len(response.items)}件 (新規: {len(new_items)}件)")

        if new_items:
            if self.stats is not None:
                await self.stats.track_event("new_items")
            if self.on_new_items is not None:
                await self.on_new_items(new_items)

        return new_items

    async def _item_check_tick(self) -> None:
        try:
            await self.check_new_items()
        except RateLimitExceeded as e:
            logger.warning(f"新着チェックをスキップ: {e}")
        except (ProviderError, NetworkError) as e:
            logger.error(f"新着チェック失敗（次回に再試行）: {e}")
            if self.stats is not None:
                await self.stats.track_event("search_error")

    # =========================================================================
    # クリーンアップ
    # =========================================================================

    async def _cleanup_tick(self) -> None:
        removed = await self.tracker.cleanup(self.cleanup_max_age)
        remaining = await self.tracker.count()
        logger.info(f"日次クリーンアップ完了: 削除 {removed}件, 残り {remaining}件")
