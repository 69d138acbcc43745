"""
CLI メインモジュール

vinted-bot コマンドのエントリーポイント。
"""

import asyncio
import json
import logging
import signal
import sys
from pathlib import Path

import click
import yaml
from pydantic import ValidationError as PydanticValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from vinted_notifier.core import RedisStore, UserConfigStore, settings
from vinted_notifier.core.errors import StoreUnavailable, ValidationError
from vinted_notifier.core.models import SearchConfigFile, SearchParams
from vinted_notifier.core.user_config import parse_config_text
from vinted_notifier.engine import ExecutionEngine
from vinted_notifier.limits import RateLimiter
from vinted_notifier.notify import (
    BotPoller,
    CommandHandler,
    NotificationDispatcher,
    NotificationScheduler,
    TelegramNotifier,
)
from vinted_notifier.search import VintedClient
from vinted_notifier.stats import StatsTracker
from vinted_notifier.tracking import ItemTracker

console = Console()
logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO") -> None:
    """ログ設定"""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def load_search_config(path: Path | str) -> SearchParams:
    """
    search.ymlを読み込む
    """
    path = Path(path)
    if not path.exists():
        raise ValidationError(f"設定ファイルが見つかりません: {path}")

    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    try:
        return SearchConfigFile.model_validate(data).params
    except PydanticValidationError as e:
        raise ValidationError(f"検索設定が不正です: {path}: {e}") from e


async def _log_dispatch(subject: str, message: str) -> None:
    logger.info(f"[通知先なし] {subject}: {message}")


async def _idle_dispatch(subject: str, message: str) -> None:
    pass


# =============================================================================
# run コマンド
# =============================================================================


async def _serve(search_params: SearchParams | None, with_bot: bool) -> None:
    store = RedisStore(settings.redis_url)
    stats = StatsTracker(store)
    rate_limiter = RateLimiter(store, stats=stats)
    tracker = ItemTracker(store)
    user_configs = UserConfigStore(store)
    client = VintedClient()

    notifier = None
    if settings.telegram_bot_token:
        notifier = TelegramNotifier(
            settings.telegram_bot_token,
            rate_limiter=rate_limiter,
            stats=stats,
        )
    elif with_bot:
        await client.close()
        raise ValidationError("TELEGRAM_BOT_TOKEN が設定されていません（--no-bot で起動できます）")

    scheduler = NotificationScheduler(store, notifier.send if notifier else _log_dispatch)
    dispatcher = NotificationDispatcher(notifier, user_configs) if notifier else None
    engine = ExecutionEngine(
        store,
        client,
        tracker,
        rate_limiter,
        stats=stats,
        on_new_items=dispatcher.broadcast if dispatcher else None,
        default_params=search_params,
    )
    poller = None
    if notifier and with_bot:
        handler = CommandHandler(scheduler, user_configs, rate_limiter, client=client, stats=stats)
        poller = BotPoller(notifier, handler)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    try:
        await engine.initialize()
        await scheduler.rehydrate()
        if poller:
            poller.start()
        logger.info("起動完了")
        await stop_event.wait()
        logger.info("シャットダウン中...")
    finally:
        if poller:
            await poller.stop()
        await scheduler.shutdown()
        await engine.stop()
        await store.close()
        await client.close()
        if notifier:
            await notifier.close()


@click.group()
@click.option("--debug", is_flag=True, help="デバッグモードを有効化")
@click.pass_context
def cli(ctx: click.Context, debug: bool) -> None:
    """Vinted 新着通知ボット CLI"""
    ctx.ensure_object(dict)
    log_level = "DEBUG" if debug else settings.log_level
    setup_logging(log_level)


@cli.command()
@click.option(
    "--search-config",
    type=click.Path(path_type=Path),
    default=None,
    help="既定の検索条件ファイル（search.yml）",
)
@click.option("--no-bot", is_flag=True, help="チャットコマンドの受信を行わない")
def run(search_config: Path | None, no_bot: bool) -> None:
    """ボットを起動（SIGINT/SIGTERMで停止）"""
    try:
        params = load_search_config(search_config) if search_config else None
        asyncio.run(_serve(params, with_bot=not no_bot))
    except StoreUnavailable as e:
        console.print(f"[red]ストアに接続できません:[/red] {e}")
        sys.exit(1)
    except Exception as e:
        console.print(f"[red]エラー:[/red] {e}")
        sys.exit(1)
    sys.exit(0)


# =============================================================================
# check コマンド
# =============================================================================


async def _check(params: SearchParams | None) -> list:
    store = RedisStore(settings.redis_url)
    await store.connect()
    try:
        stats = StatsTracker(store)
        async with VintedClient() as client:
            engine = ExecutionEngine(
                store,
                client,
                ItemTracker(store),
                RateLimiter(store, stats=stats),
                stats=stats,
            )
            return await engine.check_new_items(params)
    finally:
        await store.close()


@cli.command()
@click.option("--search-config", type=click.Path(path_type=Path), default=None)
def check(search_config: Path | None) -> None:
    """新着チェックを1回実行"""
    try:
        params = load_search_config(search_config) if search_config else None
        items = asyncio.run(_check(params))

        console.print(f"[green]✓[/green] 新着: {len(items)}件")
        for item in items:
            console.print(f"  [bold cyan]{item.title}[/bold cyan] {item.price:.2f}")
            if item.url:
                console.print(f"    URL: {item.url}")

    except Exception as e:
        console.print(f"[red]エラー:[/red] {e}")
        sys.exit(1)


# =============================================================================
# items コマンドグループ
# =============================================================================


async def _recent_items(limit: int):
    store = RedisStore(settings.redis_url)
    await store.connect()
    try:
        return await ItemTracker(store).list_recent(limit)
    finally:
        await store.close()


async def _cleanup_items(max_age: int) -> int:
    store = RedisStore(settings.redis_url)
    await store.connect()
    try:
        return await ItemTracker(store).cleanup(max_age)
    finally:
        await store.close()


@cli.group()
def items() -> None:
    """通知済みアイテムの管理"""
    pass


@items.command("recent")
@click.option("--limit", "-n", default=20, type=click.IntRange(min=1), help="表示件数")
def items_recent(limit: int) -> None:
    """最近通知したアイテムを表示"""
    try:
        records = asyncio.run(_recent_items(limit))

        if not records:
            console.print("[dim]追跡中のアイテムがありません[/dim]")
            return

        table = Table(title="最近の通知済みアイテム")
        table.add_column("ID", justify="right")
        table.add_column("タイトル", style="cyan")
        table.add_column("価格", justify="right")
        table.add_column("URL")

        for record in records:
            table.add_row(str(record.id), record.title, f"{record.price:.2f}", record.url or "-")

        console.print(table)

    except Exception as e:
        console.print(f"[red]エラー:[/red] {e}")
        sys.exit(1)


@items.command("cleanup")
@click.option("--max-age", default=settings.cleanup_max_age, help="最大経過秒数")
def items_cleanup(max_age: int) -> None:
    """古い追跡レコードを削除"""
    try:
        removed = asyncio.run(_cleanup_items(max_age))
        console.print(f"[green]✓[/green] {removed}件削除しました")
    except Exception as e:
        console.print(f"[red]エラー:[/red] {e}")
        sys.exit(1)


# =============================================================================
# schedule コマンドグループ
# =============================================================================


async def _manage_schedule(action: str, subject: str, cron: str | None, message: str | None):
    store = RedisStore(settings.redis_url)
    await store.connect()
    scheduler = NotificationScheduler(store, _idle_dispatch)
    try:
        await scheduler.rehydrate()
        if action == "set":
            return await scheduler.schedule(subject, cron, message)
        if action == "update":
            return await scheduler.update(subject, cron, message)
        if action == "cancel":
            return await scheduler.cancel(subject)
        return await scheduler.get_schedule(subject)
    finally:
        await scheduler.shutdown()
        await store.close()


@cli.group()
def schedule() -> None:
    """定期通知の管理（実行中のボットには再起動後に反映）"""
    pass


@schedule.command("set")
@click.option("--subject", "-s", required=True, help="チャットID")
@click.option("--cron", "-c", required=True, help="cron式（5フィールド）")
@click.option("--message", "-m", required=True, help="通知メッセージ")
def schedule_set(subject: str, cron: str, message: str) -> None:
    """定期通知を登録"""
    try:
        asyncio.run(_manage_schedule("set", subject, cron, message))
        console.print(f"[green]✓[/green] 定期通知を登録しました: {subject} ({cron})")
    except Exception as e:
        console.print(f"[red]エラー:[/red] {e}")
        sys.exit(1)


@schedule.command("update")
@click.option("--subject", "-s", required=True, help="チャットID")
@click.option("--cron", "-c", required=True, help="cron式（5フィールド）")
@click.option("--message", "-m", required=True, help="通知メッセージ")
def schedule_update(subject: str, cron: str, message: str) -> None:
    """定期通知を更新"""
    try:
        asyncio.run(_manage_schedule("update", subject, cron, message))
        console.print(f"[green]✓[/green] 定期通知を更新しました: {subject} ({cron})")
    except Exception as e:
        console.print(f"[red]エラー:[/red] {e}")
        sys.exit(1)


@schedule.command("get")
@click.option("--subject", "-s", required=True, help="チャットID")
def schedule_get(subject: str) -> None:
    """定期通知を表示"""
    try:
        record = asyncio.run(_manage_schedule("get", subject, None, None))
        if record is None:
            console.print(f"[yellow]定期通知がありません:[/yellow] {subject}")
            return
        console.print(f"  cron: {record.cron_expression}")
        console.print(f"  メッセージ: {record.message}")
    except Exception as e:
        console.print(f"[red]エラー:[/red] {e}")
        sys.exit(1)


@schedule.command("cancel")
@click.option("--subject", "-s", required=True, help="チャットID")
def schedule_cancel(subject: str) -> None:
    """定期通知を取り消し"""
    try:
        asyncio.run(_manage_schedule("cancel", subject, None, None))
        console.print(f"[green]✓[/green] 定期通知を取り消しました: {subject}")
    except Exception as e:
        console.print(f"[red]エラー:[/red] {e}")
        sys.exit(1)


# =============================================================================
# config コマンドグループ
# =============================================================================


async def _manage_config(action: str, subject: str, data: dict | None = None):
    store = RedisStore(settings.redis_url)
    await store.connect()
    try:
        user_configs = UserConfigStore(store)
        if action == "set":
            return await user_configs.set_config(subject, data or {})
        if action == "reset":
            return await user_configs.delete_config(subject)
        return await user_configs.get_config(subject)
    finally:
        await store.close()


@cli.group()
def config() -> None:
    """ユーザー設定の管理"""
    pass


@config.command("set")
@click.option("--subject", "-s", required=True, help="チャットID")
@click.option(
    "--file",
    "-f",
    "config_file",
    type=click.Path(exists=True, path_type=Path),
    required=True,
    help="設定ファイル（JSON）",
)
def config_set(subject: str, config_file: Path) -> None:
    """ユーザー設定を保存"""
    try:
        data = parse_config_text(config_file.read_text(encoding="utf-8"))
        asyncio.run(_manage_config("set", subject, data))
        console.print(f"[green]✓[/green] ユーザー設定を保存しました: {subject}")
    except Exception as e:
        console.print(f"[red]エラー:[/red] {e}")
        sys.exit(1)


@config.command("get")
@click.option("--subject", "-s", required=True, help="チャットID")
def config_get(subject: str) -> None:
    """ユーザー設定を表示"""
    try:
        user_config = asyncio.run(_manage_config("get", subject))
        if user_config is None:
            console.print(f"[yellow]ユーザー設定がありません:[/yellow] {subject}")
            return
        console.print_json(json.dumps(user_config.model_dump(), ensure_ascii=False))
    except Exception as e:
        console.print(f"[red]エラー:[/red] {e}")
        sys.exit(1)


@config.command("reset")
@click.option("--subject", "-s", required=True, help="チャットID")
@click.confirmation_option(prompt="本当に削除しますか?")
def config_reset(subject: str) -> None:
    """ユーザー設定を削除"""
    try:
        if asyncio.run(_manage_config("reset", subject)):
            console.print(f"[green]✓[/green] ユーザー設定を削除しました: {subject}")
        else:
            console.print(f"[yellow]ユーザー設定がありません:[/yellow] {subject}")
    except Exception as e:
        console.print(f"[red]エラー:[/red] {e}")
        sys.exit(1)


# =============================================================================
# limits / stats コマンド
# =============================================================================


async def _limit_status(subject: str):
    store = RedisStore(settings.redis_url)
    await store.connect()
    try:
        limiter = RateLimiter(store)
        status = await limiter.get_status(subject)
        ban = await limiter.ban_remaining(subject)
        violations = await limiter.violation_count(subject)
        return status, ban, violations
    finally:
        await store.close()


@cli.group()
def limits() -> None:
    """レート制限の確認"""
    pass


@limits.command("status")
@click.option("--subject", "-s", required=True, help="チャットIDまたは system")
def limits_status(subject: str) -> None:
    """レート制限の利用状況を表示"""
    try:
        status, ban, violations = asyncio.run(_limit_status(subject))

        table = Table(title=f"レート制限: {subject}")
        table.add_column("カテゴリ", style="cyan")
        table.add_column("使用", justify="right")
        table.add_column("残り", justify="right", style="green")
        table.add_column("上限", justify="right")
        table.add_column("ウィンドウ", justify="right")
        table.add_column("リセット", justify="right", style="yellow")

        for category, s in status.items():
            table.add_row(
                category,
                str(s.used),
                str(s.remaining),
                str(s.max),
                f"{s.window}s",
                f"{s.reset_seconds}s",
            )

        console.print(table)
        console.print(f"  違反回数: {violations}")
        if ban:
            console.print(f"  [red]BAN中[/red]: 残り{ban}秒")

    except Exception as e:
        console.print(f"[red]エラー:[/red] {e}")
        sys.exit(1)


async def _violation_report(period: str):
    store = RedisStore(settings.redis_url)
    await store.connect()
    try:
        return await RateLimiter(store, stats=StatsTracker(store)).violation_report(period)
    finally:
        await store.close()


@limits.command("violations")
@click.option(
    "--period",
    type=click.Choice(["day", "week", "month"]),
    default="day",
    help="カテゴリ別集計の期間",
)
def limits_violations(period: str) -> None:
    """レート制限違反の集計を表示"""
    try:
        report = asyncio.run(_violation_report(period))

        console.print(f"違反回数合計: {report.total}")

        table = Table(title="ユーザー別（累計）")
        table.add_column("サブジェクト", style="cyan")
        table.add_column("違反", justify="right", style="red")
        for subject, count in report.by_subject.items():
            table.add_row(subject, str(count))
        console.print(table)

        table = Table(title=f"カテゴリ別 ({period})")
        table.add_column("カテゴリ", style="cyan")
        table.add_column("違反", justify="right", style="red")
        for category, count in report.by_category.items():
            table.add_row(category, str(count))
        console.print(table)

    except Exception as e:
        console.print(f"[red]エラー:[/red] {e}")
        sys.exit(1)


async def _statistics(period: str, subject: str | None) -> dict:
    store = RedisStore(settings.redis_url)
    await store.connect()
    try:
        tracker = StatsTracker(store)
        if subject:
            return await tracker.get_user_activity(subject, period)
        return await tracker.get_statistics(period)
    finally:
        await store.close()


@cli.command()
@click.option(
    "--period",
    type=click.Choice(["day", "week", "month"]),
    default="day",
    help="集計期間",
)
@click.option("--subject", "-s", default=None, help="指定したチャットIDの操作履歴を集計")
def stats(period: str, subject: str | None) -> None:
    """イベント統計を表示"""
    try:
        totals = asyncio.run(_statistics(period, subject))

        title = f"統計 ({period})" if subject is None else f"アクティビティ: {subject} ({period})"
        table = Table(title=title)
        table.add_column("イベント", style="cyan")
        table.add_column("件数", justify="right", style="green")

        for event_type, count in sorted(totals.items()):
            table.add_row(event_type, str(count))

        console.print(table)

    except Exception as e:
        console.print(f"[red]エラー:[/red] {e}")
        sys.exit(1)


# =============================================================================
# エントリーポイント
# =============================================================================


def main() -> None:
    """CLIエントリーポイント"""
    cli()


if __name__ == "__main__":
    main()
