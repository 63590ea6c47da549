"""パターンモジュール層 - SemanticModel→GenerationPlan

各パターンは能力記述子・検証・生成の 3 つを持ち、Registry に登録される。
組み込みパターンはモジュール読み込み時に自動登録する。
"""

from __future__ import annotations

from .base import PatternDescriptor, PatternModule, PatternRegistry
from .conversion import ConversionPattern
from .display import DisplayPattern
from .error import ErrorPattern
from .getters import GettersPattern
from .wrapper import WrapperMutPattern, WrapperPattern

# グローバルRegistry
_global_registry = PatternRegistry()


def register_pattern(module: PatternModule) -> None:
    """パターンモジュールを登録（グローバル）

    Args:
        module: 登録するモジュール

    Raises:
        ValueError: 同じIDが登録済み
    """
    _global_registry.register(module)


def default_registry() -> PatternRegistry:
    """組み込みパターンを含むグローバルRegistry"""
    return _global_registry


# Built-inパターンを自動登録
register_pattern(DisplayPattern())
register_pattern(ErrorPattern())
register_pattern(ConversionPattern())
register_pattern(WrapperPattern())
register_pattern(WrapperMutPattern())
register_pattern(GettersPattern())

__all__ = [
    "ConversionPattern",
    "DisplayPattern",
    "ErrorPattern",
    "GettersPattern",
    "PatternDescriptor",
    "PatternModule",
    "PatternRegistry",
    "WrapperMutPattern",
    "WrapperPattern",
    "default_registry",
    "register_pattern",
]
