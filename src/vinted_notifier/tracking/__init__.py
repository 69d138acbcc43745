"""
追跡（Tracking）モジュール

通知済みアイテムの記録と新着の抽出を提供する。
"""

from vinted_notifier.tracking.item_tracker import ItemTracker

__all__ = ["ItemTracker"]
