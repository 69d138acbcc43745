"""
実行エンジン（Engine）モジュール
"""

from vinted_notifier.engine.execution_engine import ExecutionEngine

__all__ = ["ExecutionEngine"]
