"""
アイテム照合

ユーザーの検索条件に合うアイテムを絞り込む。
"""

from datetime import datetime
from typing import Iterable

from vinted_notifier.core.models import ActiveHours, SearchPreferences, VintedItem


def matches(item: VintedItem, preferences: SearchPreferences) -> bool:
    """アイテムが条件をすべて満たすか"""
    price_range = preferences.price_range
    if item.price < price_range.min or item.price > price_range.max:
        return False

    if preferences.search_text:
        if preferences.search_text.lower() not in item.title.lower():
            return False

    if preferences.categories:
        if item.catalog_id is None or str(item.catalog_id) not in preferences.categories:
            return False

    if preferences.sizes:
        if item.size_title not in preferences.sizes:
            return False

    if preferences.brands:
        brands = {brand.lower() for brand in preferences.brands}
        if (item.brand_title or "").lower() not in brands:
            return False

    if preferences.conditions:
        if _normalize_condition(item.status) not in preferences.conditions:
            return False

    return True


def filter_items(
    items: Iterable[VintedItem],
    preferences: SearchPreferences,
) -> list[VintedItem]:
    return [item for item in items if matches(item, preferences)]


def is_active_hour(active_hours: ActiveHours, now: datetime) -> bool:
    """
    現在時刻が通知時間帯に入っているか

    start > end の場合は日付をまたぐ時間帯として扱う（例: 22〜6時）。
    start == end は終日。
    """
    hour = now.hour
    if active_hours.start == active_hours.end:
        return True
    if active_hours.start < active_hours.end:
        return active_hours.start <= hour < active_hours.end
    return hour >= active_hours.start or hour < active_hours.end


def _normalize_condition(status: str | None) -> str:
    # "Very good" -> "very_good"
    return (status or "").strip().lower().replace(" ", "_")
