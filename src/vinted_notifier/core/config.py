"""
設定管理モジュール

環境変数と設定ファイルからの設定読み込みを管理する。
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """アプリケーション設定"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ストア
    redis_url: str = Field(
        default="redis://127.0.0.1:6379/0",
        description="Redis接続URL",
    )

    # ログ
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="ログレベル",
    )

    # Telegram設定
    telegram_bot_token: str | None = Field(
        default=None,
        description="Telegram Botトークン",
    )
    telegram_api_url: str = Field(
        default="https://api.telegram.org",
        description="Telegram Bot APIエンドポイント",
    )
    telegram_poll_timeout: int = Field(
        default=30,
        description="getUpdatesのロングポーリング秒数",
    )

    # Vinted API設定
    vinted_api_url: str = Field(
        default="https://www.vinted.com/api/v2",
        description="Vinted APIエンドポイント",
    )
    vinted_per_page: int = Field(
        default=100,
        description="1ページあたりの取得件数",
    )
    vinted_request_interval: float = Field(
        default=3.0,
        description="リクエスト間隔（秒）",
    )
    proxy_url: str | None = Field(
        default=None,
        description="送信用プロキシURL",
    )
    request_timeout: float = Field(
        default=10.0,
        description="HTTPリクエスト・通知送信のタイムアウト（秒）",
    )

    # アイテム追跡
    item_ttl: int = Field(
        default=604800,
        description="追跡アイテムの保持期間（秒）",
    )
    item_check_cron: str = Field(
        default="*/5 * * * *",
        description="新着チェックのスケジュール",
    )
    cleanup_cron: str = Field(
        default="0 3 * * *",
        description="クリーンアップのスケジュール",
    )
    cleanup_max_age: int = Field(
        default=604800,
        description="クリーンアップで削除する最大経過時間（秒）",
    )

    # レート制限
    rate_limit_search_max: int = Field(default=30)
    rate_limit_search_window: int = Field(default=60)
    rate_limit_notifications_max: int = Field(default=100)
    rate_limit_notifications_window: int = Field(default=3600)
    rate_limit_api_max: int = Field(default=1000)
    rate_limit_api_window: int = Field(default=86400)

    # BAN設定
    ban_initial: int = Field(default=60, description="初回BAN秒数")
    ban_multiplier: int = Field(default=2, description="BAN倍率")
    ban_max: int = Field(default=86400, description="BAN上限秒数")

    # 通知設定
    notify_max_items: int = Field(
        default=10,
        description="1回の通知件数上限",
    )

    # タイムゾーン
    timezone: str = Field(
        default="Europe/Paris",
        description="スケジュール評価・日次統計用タイムゾーン",
    )

    @property
    def config_dir(self) -> Path:
        """設定ディレクトリのパス"""
        return Path("config")


# グローバル設定インスタンス
settings = Settings()
