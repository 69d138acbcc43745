"""
データモデル定義

追跡アイテム、検索API、レート制限、スケジュール、ユーザー設定のモデルを定義する。
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# =============================================================================
# 追跡アイテムモデル
# =============================================================================


class TrackedItem(BaseModel):
    """通知済みアイテムの記録"""

    id: int
    title: str = "Unknown"
    price: float = 0
    url: str = ""
    timestamp: int = Field(description="初回検出時刻（エポックミリ秒）")


# =============================================================================
# Vinted APIモデル
# =============================================================================


class VintedUser(BaseModel):
    """出品者"""

    model_config = ConfigDict(extra="ignore")

    id: int
    login: str = ""


class VintedPhoto(BaseModel):
    """商品画像"""

    model_config = ConfigDict(extra="ignore")

    url: str | None = None


class VintedItem(BaseModel):
    """検索結果のアイテム1件"""

    model_config = ConfigDict(extra="ignore")

    id: int
    title: str = ""
    price: float = 0
    currency: str | None = None
    url: str = ""
    photo: VintedPhoto | None = None
    brand_title: str | None = None
    size_title: str | None = None
    status: str | None = None
    catalog_id: int | None = None
    user: VintedUser | None = None

    @field_validator("price", mode="before")
    @classmethod
    def _parse_price(cls, value: Any) -> Any:
        # {"amount": "12.0", "currency_code": "EUR"} 形式にも対応
        if isinstance(value, dict):
            return value.get("amount", 0)
        return value


class Pagination(BaseModel):
    """ページ情報"""

    model_config = ConfigDict(extra="ignore")

    current_page: int = 1
    total_pages: int = 1
    total_entries: int = 0
    per_page: int = 0

    @property
    def has_more(self) -> bool:
        return self.current_page < self.total_pages


class SearchResponse(BaseModel):
    """検索レスポンス"""

    model_config = ConfigDict(extra="ignore")

    items: list[VintedItem] = Field(default_factory=list)
    pagination: Pagination = Field(default_factory=Pagination)


class SearchParams(BaseModel):
    """Vinted検索パラメータ"""

    model_config = ConfigDict(extra="forbid")

    search_text: str | None = None
    catalog_ids: str | None = None
    color_ids: str | None = None
    brand_ids: str | None = None
    size_ids: str | None = None
    material_ids: str | None = None
    status_ids: str | None = None
    price_from: float | None = Field(default=None, ge=0)
    price_to: float | None = Field(default=None, ge=0)
    currency: str | None = None
    order: Literal["newest_first", "price_high_to_low", "price_low_to_high"] = "newest_first"

    @model_validator(mode="after")
    def _check_price_range(self) -> "SearchParams":
        if self.price_from is not None and self.price_to is not None:
            if self.price_from > self.price_to:
                raise ValueError("price_from は price_to 以下である必要があります")
        return self

    def to_query(self) -> dict[str, str | float]:
        """APIクエリパラメータに変換（未指定は除外）"""
        return self.model_dump(exclude_none=True)


class SearchConfigFile(BaseModel):
    """search.yml全体の設定"""

    version: int = 1
    params: SearchParams = Field(default_factory=SearchParams)


# =============================================================================
# レート制限モデル
# =============================================================================


class RateLimitRule(BaseModel):
    """カテゴリごとの制限"""

    max_requests: int = Field(gt=0)
    window: int = Field(gt=0, description="ウィンドウ長（秒）")


class RateLimitResult(BaseModel):
    """check_limit の結果"""

    allowed: bool
    remaining: int
    reset_seconds: int


class CategoryStatus(BaseModel):
    """カテゴリごとの利用状況"""

    used: int
    remaining: int
    reset_seconds: int
    max: int
    window: int


class ViolationReport(BaseModel):
    """レート制限違反の集計"""

    total: int = 0
    by_subject: dict[str, int] = Field(default_factory=dict)
    by_category: dict[str, int] = Field(default_factory=dict)


class BanPolicy(BaseModel):
    """違反時のBAN方針"""

    initial_ban: int = 60
    multiplier: int = 2
    max_ban: int = 86400


# =============================================================================
# 通知スケジュールモデル
# =============================================================================


class NotificationSchedule(BaseModel):
    """永続化されるスケジュール"""

    cron_expression: str
    message: str


# =============================================================================
# ユーザー設定モデル
# =============================================================================


class PriceRange(BaseModel):
    """価格帯"""

    model_config = ConfigDict(extra="forbid")

    min: float = Field(default=0, ge=0)
    max: float = Field(default=1000, ge=0)

    @model_validator(mode="after")
    def _check_order(self) -> "PriceRange":
        if self.min > self.max:
            raise ValueError("min は max 以下である必要があります")
        return self


class SearchPreferences(BaseModel):
    """検索条件"""

    model_config = ConfigDict(extra="forbid")

    search_text: str | None = None
    categories: list[str] = Field(default_factory=list)
    price_range: PriceRange = Field(default_factory=PriceRange)
    sizes: list[str] = Field(default_factory=list)
    brands: list[str] = Field(default_factory=list)
    conditions: list[Literal["new", "very_good", "good", "satisfactory"]] = Field(
        default_factory=list
    )


class ActiveHours(BaseModel):
    """通知を受け取る時間帯"""

    model_config = ConfigDict(extra="forbid")

    start: int = Field(default=8, ge=0, le=23)
    end: int = Field(default=22, ge=0, le=23)


class NotificationPreferences(BaseModel):
    """通知設定"""

    model_config = ConfigDict(extra="forbid")

    frequency: Literal["immediate", "hourly", "daily"] = "immediate"
    active_hours: ActiveHours = Field(default_factory=ActiveHours)
    methods: list[Literal["telegram"]] = Field(default_factory=lambda: ["telegram"])


class UserConfig(BaseModel):
    """ユーザーごとの設定"""

    model_config = ConfigDict(extra="forbid")

    search_preferences: SearchPreferences = Field(default_factory=SearchPreferences)
    notification_preferences: NotificationPreferences = Field(
        default_factory=NotificationPreferences
    )


# =============================================================================
# 統計モデル
# =============================================================================


class NotificationStats(BaseModel):
    """通知送信の集計"""

    sent: int = 0
    failed: int = 0

    @property
    def success_rate(self) -> float:
        """送信試行に対する成功率（%）"""
        attempts = self.sent + self.failed
        if attempts == 0:
            return 0.0
        return self.sent / attempts * 100
