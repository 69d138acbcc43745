"""
Botポーリング

getUpdates のロングポーリングで受信したメッセージをコマンド処理に渡し、返信する。
"""

import asyncio
import logging

from vinted_notifier.core.config import settings
from vinted_notifier.notify.commands import CommandHandler
from vinted_notifier.notify.telegram import NotificationError, TelegramNotifier

logger = logging.getLogger(__name__)

_ERROR_BACKOFF = 5


class BotPoller:
    """Telegramの更新をポーリングするバックグラウンドタスク"""

    def __init__(
        self,
        notifier: TelegramNotifier,
        handler: CommandHandler,
        poll_timeout: int = settings.telegram_poll_timeout,
    ):
        self.notifier = notifier
        self.handler = handler
        self.poll_timeout = poll_timeout
        self._offset: int | None = None
        self._task: asyncio.Task[None] | None = None

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name="bot-poller")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def poll_once(self) -> int:
        """1回分の更新を処理し、処理したメッセージ数を返す"""
        updates = await self.notifier.get_updates(self._offset, timeout=self.poll_timeout)
        handled = 0
        for update in updates:
            self._offset = update["update_id"] + 1
            message = update.get("message") or {}
            text = message.get("text")
            chat = message.get("chat") or {}
            if not text or "id" not in chat:
                continue

            chat_id = str(chat["id"])
            reply = await self.handler.handle(chat_id, text)
            try:
                await self.notifier.send_message(chat_id, reply)
            except NotificationError as e:
                logger.error(f"返信の送信に失敗: {chat_id}, {e}")
            handled += 1
        return handled

    async def _run(self) -> None:
        logger.info("Botポーリング開始")
        try:
            while True:
                try:
                    await self.poll_once()
                except NotificationError as e:
                    logger.warning(f"更新取得エラー: {e}")
                    await asyncio.sleep(e.retry_after or _ERROR_BACKOFF)
                except Exception:
                    logger.exception("Botポーリング中の予期しないエラー")
                    await asyncio.sleep(_ERROR_BACKOFF)
        except asyncio.CancelledError:
            logger.info("Botポーリング停止")
            raise
