"""
統計（Stats）モジュール
"""

from vinted_notifier.stats.tracker import StatsTracker

__all__ = ["StatsTracker"]
