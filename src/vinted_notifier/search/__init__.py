"""
検索（Search）モジュール

Vinted APIクライアントとユーザー条件による絞り込みを提供する。
"""

from vinted_notifier.search.matcher import filter_items, is_active_hour, matches
from vinted_notifier.search.vinted_client import VintedClient

__all__ = [
    "VintedClient",
    "matches",
    "filter_items",
    "is_active_hour",
]
