"""生成コードが実行時に使うヘルパー

生成された実装ブロックは次の形で対象の型に取り付けられる:

    @implement(HttpError, "Display")
    class _HttpError_Display:
        def __str__(self) -> str:
            return f"error {self.code!s}: {self.message!s}"

ブロックのメソッド・クラスメソッド・プロパティが対象の型にコピーされ、
実装した振る舞い名が `HttpError.__derives__` に記録される。
"""

from __future__ import annotations

import inspect
from collections.abc import Callable
from typing import Any, TypeVar

B = TypeVar("B", bound=type)

DERIVES_ATTR = "__derives__"
MEMBERS_ATTR = "__derived_members__"


def _is_member(value: Any) -> bool:  # noqa: ANN401
    return inspect.isfunction(value) or isinstance(value, (classmethod, staticmethod, property))


def implement(target: type, *traits: str) -> Callable[[B], B]:
    """実装ブロックを対象の型に取り付けるデコレータ

    Args:
        target: 振る舞いを実装する型
        *traits: ブロックが実装する振る舞い名

    Returns:
        ブロッククラスをそのまま返すデコレータ

    Raises:
        TypeError: 別のブロックが同名のメンバーを取り付け済み
    """

    def decorator(block: B) -> B:
        owners: dict[str, str] = dict(target.__dict__.get(MEMBERS_ATTR, {}))
        label = " + ".join(traits) or block.__name__

        for name, value in vars(block).items():
            if not _is_member(value):
                continue
            if name in owners:
                raise TypeError(f"{target.__name__}.{name} is already implemented by {owners[name]}")
            setattr(target, name, value)
            owners[name] = label

        setattr(target, MEMBERS_ATTR, owners)
        setattr(target, DERIVES_ATTR, (*target.__dict__.get(DERIVES_ATTR, ()), *traits))
        return block

    return decorator


def derives(obj: Any) -> tuple[str, ...]:  # noqa: ANN401
    """型（またはインスタンス）が実装した振る舞い名"""
    cls = obj if isinstance(obj, type) else type(obj)
    return tuple(getattr(cls, DERIVES_ATTR, ()))
