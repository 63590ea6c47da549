"""中間表現（IR）データ構造定義

外部パーサが供給する型定義（TypeDefinition）の構造表現。
フィールド・バリアント・ジェネリクスと、各要素に付与された生のアノテーション文字列を保持する。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ElementKind(str, Enum):
    """アノテーションの付与対象となる要素の種類"""

    TYPE = "type"
    VARIANT = "variant"
    FIELD = "field"


@dataclass(frozen=True)
class SourceLocation:
    """定義元の位置（診断メッセージ用）"""

    file: str = "<input>"
    line: int = 0

    def __str__(self) -> str:
        if self.line:
            return f"{self.file}:{self.line}"
        return self.file


@dataclass(frozen=True)
class ElementRef:
    """型定義内の要素を一意に識別する参照

    Attributes:
        kind: 要素の種類
        type_name: 所属する型名
        variant: バリアント名（enum の場合のみ）
        field: フィールド名または位置インデックス
    """

    kind: ElementKind
    type_name: str
    variant: str | None = None
    field: str | int | None = None

    def __str__(self) -> str:
        text = self.type_name
        if self.variant is not None:
            text += f"::{self.variant}"
        if self.field is not None:
            text += f".{self.field}"
        return text

    def describe(self) -> str:
        """人間向けの要素説明（"field `Point.x`" 形式）"""
        return f"{self.kind.value} `{self}`"


@dataclass
class RawAnnotation:
    """パース前のアノテーション文字列"""

    text: str
    location: SourceLocation = field(default_factory=SourceLocation)


@dataclass
class GenericParam:
    """ジェネリクスパラメータ定義"""

    name: str
    bounds: list[str] = field(default_factory=list)


@dataclass
class FieldDef:
    """フィールド定義

    Attributes:
        name: フィールド名（位置フィールドの場合 None）
        type_ref: 宣言された型参照（そのまま出力に使われる）
        annotations: 付与されたアノテーション
        has_default: デフォルト値を持つか
        default: デフォルト値
        location: 定義位置
    """

    name: str | None
    type_ref: str
    annotations: list[RawAnnotation] = field(default_factory=list)
    has_default: bool = False
    default: Any = None
    location: SourceLocation = field(default_factory=SourceLocation)


@dataclass
class VariantDef:
    """enum バリアント定義"""

    name: str
    fields: list[FieldDef] = field(default_factory=list)
    annotations: list[RawAnnotation] = field(default_factory=list)
    location: SourceLocation = field(default_factory=SourceLocation)


@dataclass
class TypeDefinition:
    """型定義（struct 形式または enum 形式）

    fields と variants はどちらか一方のみが設定される。

    Attributes:
        name: 型名
        generics: ジェネリクスパラメータ（宣言順）
        fields: struct 形式のフィールド
        variants: enum 形式のバリアント
        annotations: 型レベルのアノテーション
        derives: 要求されたパターン名（要求順）
        description: 説明
        location: 定義位置
    """

    name: str
    generics: list[GenericParam] = field(default_factory=list)
    fields: list[FieldDef] | None = None
    variants: list[VariantDef] | None = None
    annotations: list[RawAnnotation] = field(default_factory=list)
    derives: list[str] = field(default_factory=list)
    description: str = ""
    location: SourceLocation = field(default_factory=SourceLocation)

    @property
    def is_enum(self) -> bool:
        return self.variants is not None


@dataclass
class DefinitionMeta:
    """定義ファイルのメタデータ"""

    name: str
    description: str = ""
    version: str = "1.0"


@dataclass
class DefinitionSet:
    """定義ファイル全体

    Attributes:
        meta: メタデータ
        definitions: 型定義リスト（ファイル内の順序）
        source: 読み込み元ファイル
    """

    meta: DefinitionMeta
    definitions: list[TypeDefinition] = field(default_factory=list)
    source: str = ""
