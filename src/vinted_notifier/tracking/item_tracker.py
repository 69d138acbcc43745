"""
アイテム追跡モジュール

通知済みアイテムIDを有効期限付きで記録し、取得したアイテムから未通知のものを抽出する。
"""

import logging
import time
from typing import Callable, Iterable, TypeVar

from vinted_notifier.core.config import settings
from vinted_notifier.core.errors import ValidationError
from vinted_notifier.core.models import TrackedItem, VintedItem
from vinted_notifier.core.store import RedisStore

logger = logging.getLogger(__name__)

ITEM_KEY_PREFIX = "item:"

T = TypeVar("T", bound=VintedItem)


def item_key(item_id: int) -> str:
    return f"{ITEM_KEY_PREFIX}{item_id}"


def _now_ms() -> int:
    return int(time.time() * 1000)


class ItemTracker:
    """
    通知済みアイテムの追跡

    記録はアイテムIDごとに1キー。初回検出時に作成し、以後は更新しない。
    有効期限（既定7日）または cleanup で削除される。
    """

    def __init__(
        self,
        store: RedisStore,
        ttl: int = settings.item_ttl,
        clock: Callable[[], int] = _now_ms,
    ):
        self.store = store
        self.ttl = ttl
        self._clock = clock

    def _record_for(self, item: VintedItem) -> TrackedItem:
        return TrackedItem(
            id=item.id,
            title=item.title or "Unknown",
            price=item.price,
            url=item.url,
            timestamp=self._clock(),
        )

    async def is_new(self, item_id: int) -> bool:
        return not await self.store.exists(item_key(item_id))

    async def track(self, item: VintedItem) -> TrackedItem:
        """初回検出時刻を現在時刻として記録を上書き"""
        record = self._record_for(item)
        await self.store.set(item_key(item.id), record.model_dump_json(), ttl=self.ttl)
        return record

    async def mark_if_new(self, item: VintedItem) -> bool:
        """
        未記録なら記録してTrue、既に記録があればFalse

        存在確認と書き込みを SET NX EX の1操作で行うため、
        並行する呼び出しのうち1つだけがTrueを得る。
        """
        record = self._record_for(item)
        return await self.store.set_if_absent(
            item_key(item.id), record.model_dump_json(), ttl=self.ttl
        )

    async def filter_new(self, items: Iterable[T]) -> list[T]:
        """
        未通知のアイテムだけを入力順で返し、同時に記録する

        同じバッチ内の重複は最初の1件のみ残る。
        """
        new_items = []
        for item in items:
            if await self.mark_if_new(item):
                new_items.append(item)
        return new_items

    async def list_recent(self, limit: int = 100) -> list[TrackedItem]:
        """
        初回検出時刻の新しい順に返す

        Raises:
            ValidationError: limit が負の場合
        """
        if limit < 0:
            raise ValidationError(f"limit は0以上である必要があります: {limit}")
        records = []
        for key in await self.store.keys_with_prefix(ITEM_KEY_PREFIX):
            raw = await self.store.get(key)
            if not raw:
                continue
            try:
                records.append(TrackedItem.model_validate_json(raw))
            except ValueError:
                logger.warning(f"不正な追跡レコードをスキップ: {key}")
        records.sort(key=lambda r: r.timestamp, reverse=True)
        return records[:limit]

    async def count(self) -> int:
        return len(await self.store.keys_with_prefix(ITEM_KEY_PREFIX))

    async def cleanup(self, max_age: int = settings.cleanup_max_age) -> int:
        """
        初回検出から max_age 秒を超えた記録を削除

        Returns:
            削除件数
        """
        now = self._clock()
        removed = 0
        for key in await self.store.keys_with_prefix(ITEM_KEY_PREFIX):
            raw = await self.store.get(key)
            if raw is None:
                continue
            try:
                record = TrackedItem.model_validate_json(raw)
            except ValueError:
                logger.warning(f"不正な追跡レコードを削除: {key}")
                await self.store.delete(key)
                removed += 1
                continue
            if now - record.timestamp > max_age * 1000:
                await self.store.delete(key)
                removed += 1

        logger.info(f"追跡アイテムのクリーンアップ完了: {removed}件削除")
        return removed
