"""
通知スケジューラ

サブジェクトごとに1つの定期通知ジョブを管理し、ストアに永続化する。
プロセス再起動後は rehydrate() で永続化された一覧からジョブを復元する。
"""

import asyncio
import logging
from functools import partial
from typing import Awaitable, Callable

import pydantic

from vinted_notifier.core.config import settings
from vinted_notifier.core.cron import CronJob, validate_cron
from vinted_notifier.core.errors import DuplicateSchedule, InvalidCronExpression
from vinted_notifier.core.models import NotificationSchedule
from vinted_notifier.core.store import RedisStore

logger = logging.getLogger(__name__)

NOTIFICATION_KEY_PREFIX = "notification:"

Dispatch = Callable[[str, str], Awaitable[None]]


def schedule_key(subject: str) -> str:
    return f"{NOTIFICATION_KEY_PREFIX}{subject}"


class NotificationScheduler:
    """
    定期通知スケジューラ

    サブジェクト→タイマーの対応表はこのクラスだけが保持する。
    スケジュール操作（作成・更新・取消・復元）は内部ロックで直列化するが、
    発火したジョブ同士は直列化しない。
    """

    def __init__(
        self,
        store: RedisStore,
        dispatch: Dispatch,
        timezone: str = settings.timezone,
    ):
        self.store = store
        self.dispatch = dispatch
        self.timezone = timezone
        self._jobs: dict[str, CronJob] = {}
        self._lock = asyncio.Lock()

    # =========================================================================
    # 公開操作
    # =========================================================================

    async def schedule(self, subject: str, cron_expression: str, message: str) -> NotificationSchedule:
        """
        定期通知を登録

        Raises:
            InvalidCronExpression: cron式が不正
            DuplicateSchedule: 既にジョブが存在する
        """
        async with self._lock:
            return await self._schedule(subject, cron_expression, message)

    async def update(self, subject: str, cron_expression: str, message: str) -> NotificationSchedule:
        """既存ジョブを取り消して登録し直す（ジョブがなくてもよい）"""
        cron_expression = validate_cron(cron_expression)
        async with self._lock:
            await self._cancel(subject)
            return await self._schedule(subject, cron_expression, message)

    async def cancel(self, subject: str) -> bool:
        """
        定期通知を取り消す（存在しなくてもエラーにしない）

        Returns:
            実行中のジョブを停止した場合True
        """
        async with self._lock:
            return await self._cancel(subject)

    async def get_schedule(self, subject: str) -> NotificationSchedule | None:
        raw = await self.store.get(schedule_key(subject))
        if raw is None:
            return None
        return NotificationSchedule.model_validate_json(raw)

    def has_job(self, subject: str) -> bool:
        return subject in self._jobs

    @property
    def job_count(self) -> int:
        return len(self._jobs)

    async def run_now(self, subject: str) -> bool:
        """登録済みジョブを即時に1回実行"""
        job = self._jobs.get(subject)
        if job is None:
            return False
        await job.trigger()
        return True

    async def rehydrate(self) -> int:
        """
        永続化されたスケジュールからジョブを復元

        完了後、メモリ上のジョブ一覧は永続化された一覧と一致する。
        不正なレコードは警告を出して読み飛ばす。

        Returns:
            復元後のジョブ数
        """
        async with self._lock:
            persisted: dict[str, NotificationSchedule] = {}
            for key in await self.store.keys_with_prefix(NOTIFICATION_KEY_PREFIX):
                subject = key[len(NOTIFICATION_KEY_PREFIX):]
                raw = await self.store.get(key)
                if raw is None:
                    continue
                try:
                    record = NotificationSchedule.model_validate_json(raw)
                    record.cron_expression = validate_cron(record.cron_expression)
                except (pydantic.ValidationError, InvalidCronExpression) as e:
                    logger.warning(f"不正なスケジュールを読み飛ばします: {key}, {e}")
                    continue
                persisted[subject] = record

            for subject in list(self._jobs):
                if subject not in persisted:
                    self._jobs.pop(subject).stop()

            for subject, record in persisted.items():
                job = self._jobs.get(subject)
                if job is not None:
                    job.stop()
                self._start_job(subject, record)

            logger.info(f"定期通知を復元しました: {len(self._jobs)}件")
            return len(self._jobs)

    async def shutdown(self) -> None:
        """全タイマーを停止（永続化レコードは残す）"""
        async with self._lock:
            jobs = list(self._jobs.values())
            self._jobs.clear()
        for job in jobs:
            job.stop()
        await asyncio.gather(*(job.join() for job in jobs))
        logger.info(f"定期通知タイマーを停止しました: {len(jobs)}件")

    # =========================================================================
    # 内部処理（ロック取得済みで呼ぶ）
    # =========================================================================

    async def _schedule(self, subject: str, cron_expression: str, message: str) -> NotificationSchedule:
        cron_expression = validate_cron(cron_expression)
        if subject in self._jobs:
            raise DuplicateSchedule(f"このユーザーの通知スケジュールは既に存在します: {subject}")

        record = NotificationSchedule(cron_expression=cron_expression, message=message)
        await self.store.set(schedule_key(subject), record.model_dump_json())
        self._start_job(subject, record)

        logger.info(f"定期通知を登録: {subject} ({cron_expression})")
        return record

    async def _cancel(self, subject: str) -> bool:
        job = self._jobs.pop(subject, None)
        if job is not None:
            job.stop()
        await self.store.delete(schedule_key(subject))
        logger.info(f"定期通知を取り消し: {subject}")
        return job is not None

    def _start_job(self, subject: str, record: NotificationSchedule) -> None:
        job = CronJob(
            name=f"notification:{subject}",
            expression=record.cron_expression,
            callback=partial(self._fire, subject, record.message),
            timezone=self.timezone,
        )
        self._jobs[subject] = job
        job.start()

    async def _fire(self, subject: str, message: str) -> None:
        try:
            await self.dispatch(subject, message)
        except Exception as e:
            # 次回の発火で再送する
            logger.error(f"定期通知の送信に失敗: {subject}, {type(e).__name__}: {e}")
