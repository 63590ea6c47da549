"""パース済みアノテーションのデータ構造

アノテーションは名前とペイロード（フラグ・スカラー・マッピング）で構成される。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterator

from derivetool.core.base.ir import ElementRef, SourceLocation


class PayloadShape(str, Enum):
    """アノテーションのペイロード形状"""

    FLAG = "flag"
    SCALAR = "scalar"
    MAPPING = "mapping"

    def example(self, name: str) -> str:
        """形状ごとの記述例"""
        if self is PayloadShape.FLAG:
            return name
        if self is PayloadShape.SCALAR:
            return f'{name} = "..."'
        return f"{name}(key = value, ...)"


@dataclass(frozen=True)
class Path:
    """`a::b` / `a.b` 形式のパス値（識別子を含む）"""

    segments: tuple[str, ...]
    separator: str = "::"

    def __str__(self) -> str:
        return self.separator.join(self.segments)

    @property
    def ident(self) -> str | None:
        """単一セグメントの場合その識別子"""
        if len(self.segments) == 1:
            return self.segments[0]
        return None


@dataclass(frozen=True)
class Span:
    """アノテーション文字列内の範囲 [start, end)"""

    start: int
    end: int


@dataclass
class Mapping:
    """挿入順を保持するキー→値マッピング

    値が None のキーは裸の識別子（`name(flag)`）を表す。
    """

    entries: dict[str, Any] = field(default_factory=dict)
    spans: dict[str, Span] = field(default_factory=dict)

    def __contains__(self, key: object) -> bool:
        return key in self.entries

    def __iter__(self) -> Iterator[str]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def __getitem__(self, key: str) -> Any:  # noqa: ANN401
        return self.entries[key]

    def get(self, key: str, default: Any = None) -> Any:  # noqa: ANN401
        return self.entries.get(key, default)

    def keys(self) -> list[str]:
        return list(self.entries)

    def items(self) -> list[tuple[str, Any]]:
        return list(self.entries.items())

    def flags(self) -> list[str]:
        """値を持たないキー（裸の識別子）を順序通りに返す"""
        return [key for key, value in self.entries.items() if value is None]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Mapping):
            return NotImplemented
        return list(self.entries.items()) == list(other.entries.items())


@dataclass
class Annotation:
    """パース済みアノテーション

    Attributes:
        name: アノテーション名
        shape: ペイロード形状
        value: SCALAR の場合の値
        mapping: MAPPING の場合のマッピング
        text: 元のアノテーション文字列
        target: 付与先の要素
        location: 定義位置
    """

    name: str
    shape: PayloadShape
    value: Any = None
    mapping: Mapping | None = None
    text: str = ""
    target: ElementRef | None = None
    location: SourceLocation = field(default_factory=SourceLocation)

    def has_key(self, key: str) -> bool:
        return self.mapping is not None and key in self.mapping

    def key_span(self, key: str) -> Span | None:
        if self.mapping is None:
            return None
        return self.mapping.spans.get(key)

    def __eq__(self, other: object) -> bool:
        # 位置情報・元テキストは比較対象外
        if not isinstance(other, Annotation):
            return NotImplemented
        return (
            self.name == other.name
            and self.shape == other.shape
            and self.value == other.value
            and self.mapping == other.mapping
        )
