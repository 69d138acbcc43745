"""
Telegram通知モジュール

Telegram Bot API によるメッセージ送信と更新取得を提供する。
"""

import logging
import math
import time

import httpx

from vinted_notifier.core.config import settings
from vinted_notifier.core.errors import NotifierError
from vinted_notifier.core.models import VintedItem
from vinted_notifier.limits.rate_limiter import RateLimiter
from vinted_notifier.stats.tracker import StatsTracker

logger = logging.getLogger(__name__)


class NotificationError(NotifierError):
    """通知エラー"""

    def __init__(self, message: str, retry_after: int | None = None):
        super().__init__(message)
        self.retry_after = retry_after


# =============================================================================
# メッセージフォーマット
# =============================================================================


def format_item_text(item: VintedItem) -> str:
    """アイテムをテキスト形式でフォーマット"""
    price = f"{item.price:.2f}"
    if item.currency:
        price = f"{price} {item.currency}"

    lines = [item.title or "Unknown", f"Price: {price}"]
    if item.brand_title:
        lines.append(f"Brand: {item.brand_title}")
    if item.size_title:
        lines.append(f"Size: {item.size_title}")
    if item.url:
        lines.append(f"Link: {item.url}")
    return "\n".join(lines)


def format_items_message(
    items: list[VintedItem],
    max_items: int = settings.notify_max_items,
) -> str:
    """複数アイテムを1通のメッセージにまとめる"""
    blocks = [f"New items: {len(items)}"]
    for item in items[:max_items]:
        blocks.append(format_item_text(item))
    if len(items) > max_items:
        blocks.append(f"... and {len(items) - max_items} more")
    return "\n\n".join(blocks)


# =============================================================================
# Telegram Bot API
# =============================================================================


class TelegramNotifier:
    """
    Telegram Bot API クライアント

    send() が通知のディスパッチ口。429応答の retry_after を宛先ごとに記憶し、
    期限前の次回送信は即座に拒否する（その場での再送はしない）。
    """

    def __init__(
        self,
        token: str,
        api_url: str = settings.telegram_api_url,
        timeout: float = settings.request_timeout,
        rate_limiter: RateLimiter | None = None,
        stats: StatsTracker | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.timeout = timeout
        self.rate_limiter = rate_limiter
        self.stats = stats
        self._retry_at: dict[str, float] = {}
        self._client = httpx.AsyncClient(
            base_url=f"{api_url.rstrip('/')}/bot{token}",
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    async def _call(self, method: str, payload: dict, timeout: float | None = None):
        try:
            response = await self._client.post(
                f"/{method}",
                json=payload,
                timeout=timeout or self.timeout,
            )
        except httpx.RequestError as e:
            raise NotificationError(f"Telegram通信エラー: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.status_code != 200 or not body.get("ok"):
            description = body.get("description") or response.text[:200]
            retry_after = (body.get("parameters") or {}).get("retry_after")
            raise NotificationError(
                f"Telegram API error: {response.status_code} - {description}",
                retry_after=retry_after,
            )
        return body.get("result")

    async def send_message(self, chat_id: str, text: str) -> dict:
        return await self._call("sendMessage", {"chat_id": chat_id, "text": text})

    async def get_updates(self, offset: int | None = None, timeout: int = 0) -> list[dict]:
        """ロングポーリングで更新を取得"""
        payload: dict = {"timeout": timeout, "allowed_updates": ["message"]}
        if offset is not None:
            payload["offset"] = offset
        return await self._call("getUpdates", payload, timeout=timeout + self.timeout) or []

    # =========================================================================
    # ディスパッチ
    # =========================================================================

    def retry_after(self, subject: str) -> int:
        """次回送信可能までの秒数（0なら送信可）"""
        retry_at = self._retry_at.get(subject)
        if retry_at is None:
            return 0
        remaining = retry_at - time.monotonic()
        if remaining <= 0:
            del self._retry_at[subject]
            return 0
        return math.ceil(remaining)

    async def _track(self, event_type: str) -> None:
        if self.stats is not None:
            await self.stats.track_event(event_type)

    async def send(self, subject: str, payload: str) -> None:
        """
        サブジェクトへ通知を送信

        Raises:
            NotificationError: 送信失敗、または retry_after 待機中
            RateLimitExceeded: notifications カテゴリの上限超過
        """
        wait = self.retry_after(subject)
        if wait:
            raise NotificationError(f"送信待機中: {subject}（残り{wait}秒）", retry_after=wait)

        if self.rate_limiter is not None:
            await self.rate_limiter.enforce(subject, "notifications")

        await self._track("notification_attempt")
        try:
            await self.send_message(subject, payload)
        except NotificationError as e:
            if e.retry_after:
                self._retry_at[subject] = time.monotonic() + e.retry_after
            await self._track("notification_failure")
            raise

        await self._track("notification_success")
        logger.info(f"通知送信成功: {subject}")
