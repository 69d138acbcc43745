"""
ストア管理モジュール

Redisを使ったキー・バリューストアの接続とプリミティブ操作を提供する。
全コンポーネントが共有する唯一の可変リソース。
"""

import logging
from contextlib import contextmanager
from typing import Generator

from redis.asyncio import Redis
from redis.exceptions import RedisError

from vinted_notifier.core.config import settings
from vinted_notifier.core.errors import StoreUnavailable

logger = logging.getLogger(__name__)


@contextmanager
def _translate_errors(operation: str, key: str = "") -> Generator[None, None, None]:
    """Redisの例外をStoreUnavailableに変換"""
    try:
        yield
    except (RedisError, OSError) as e:
        raise StoreUnavailable(f"ストア操作エラー: {operation} {key}: {e}") from e


class RedisStore:
    """
    Redisストア

    個々のキー操作（INCR, SET EX, SET NX EX）はアトミックとして扱う。
    複数キーにまたがるトランザクションは提供しない。
    """

    def __init__(self, url: str = settings.redis_url, client: Redis | None = None):
        self.url = url
        self._client = client
        self._open = False

    @property
    def is_open(self) -> bool:
        """connect() で疎通確認済みか"""
        return self._open

    @property
    def client(self) -> Redis:
        if self._client is None:
            raise StoreUnavailable("ストアに接続されていません")
        return self._client

    async def connect(self) -> None:
        """
        接続を確立してPINGで疎通を確認（確認済みなら何もしない）

        Raises:
            StoreUnavailable: Redisに到達できない場合
        """
        if self._open:
            return
        if self._client is None:
            self._client = Redis.from_url(self.url, decode_responses=True)
        with _translate_errors("connect"):
            await self._client.ping()
        self._open = True
        logger.info(f"Redisに接続しました: {self.url}")

    async def close(self) -> None:
        """接続を閉じる（未接続なら何もしない）"""
        if self._client is None:
            return
        try:
            await self._client.aclose()
        except (RedisError, OSError) as e:
            logger.warning(f"Redis切断時エラー: {e}")
        self._open = False
        self._client = None
        logger.info("Redis接続を閉じました")

    # =========================================================================
    # 文字列キー
    # =========================================================================

    async def get(self, key: str) -> str | None:
        with _translate_errors("get", key):
            return await self.client.get(key)

    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        with _translate_errors("set", key):
            await self.client.set(key, value, ex=ttl)

    async def set_if_absent(self, key: str, value: str, ttl: int | None = None) -> bool:
        """キーが存在しない場合のみ書き込む。書き込めたらTrue"""
        with _translate_errors("set_nx", key):
            return bool(await self.client.set(key, value, ex=ttl, nx=True))

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        with _translate_errors("delete", keys[0]):
            return await self.client.delete(*keys)

    async def exists(self, key: str) -> bool:
        with _translate_errors("exists", key):
            return await self.client.exists(key) == 1

    async def increment(self, key: str) -> int:
        with _translate_errors("incr", key):
            return await self.client.incr(key)

    async def expire(self, key: str, ttl: int) -> bool:
        with _translate_errors("expire", key):
            return bool(await self.client.expire(key, ttl))

    async def ttl(self, key: str) -> int | None:
        """
        残り有効期間（秒）

        キーが存在しない、または有効期限が設定されていない場合はNone。
        """
        with _translate_errors("ttl", key):
            remaining = await self.client.ttl(key)
        if remaining is None or remaining < 0:
            return None
        return remaining

    async def keys_with_prefix(self, prefix: str) -> list[str]:
        """プレフィックスに一致するキー一覧（SCANで取得）"""
        with _translate_errors("scan", prefix):
            return [key async for key in self.client.scan_iter(match=f"{prefix}*")]

    # =========================================================================
    # ハッシュ
    # =========================================================================

    async def hash_increment(self, key: str, field: str, amount: int = 1) -> int:
        with _translate_errors("hincrby", key):
            return await self.client.hincrby(key, field, amount)

    async def hash_get_all(self, key: str) -> dict[str, str]:
        with _translate_errors("hgetall", key):
            return await self.client.hgetall(key)
