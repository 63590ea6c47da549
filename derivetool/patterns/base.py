"""パターンモジュールの共通定義

各パターンは静的な能力記述子（PatternDescriptor）を宣言し、
Semantic Model Builder はそれを一律に参照してアノテーションを検証する。
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol

from derivetool.core.base.annotations import PayloadShape
from derivetool.core.base.ir import ElementKind
from derivetool.core.base.plan import GenerationPlan

if TYPE_CHECKING:
    from derivetool.core.engine.diagnostics import ValidationError
    from derivetool.core.engine.model import SemanticModel


@dataclass(frozen=True)
class AnnotationRule:
    """パターンが受け付けるアノテーションの規則

    Attributes:
        name: アノテーション名
        targets: 付与可能な要素の種類
        shapes: 受け付けるペイロード形状
        required_for: 型レベルで必須となる本体種別（"struct" / "enum"）
        flag_keys: 値を取らないマッピングキー（None の場合キーは自由）
        value_keys: 値を必要とするマッピングキー
    """

    name: str
    targets: frozenset[ElementKind]
    shapes: frozenset[PayloadShape]
    required_for: frozenset[str] = frozenset()
    flag_keys: frozenset[str] | None = None
    value_keys: frozenset[str] | None = None

    @property
    def free_keys(self) -> bool:
        return self.flag_keys is None and self.value_keys is None

    def expected_shape(self) -> str:
        order = [PayloadShape.FLAG, PayloadShape.SCALAR, PayloadShape.MAPPING]
        names = [f"`{shape.example(self.name)}`" for shape in order if shape in self.shapes]
        return " or ".join(names)


def rule(
    name: str,
    targets: set[ElementKind],
    shapes: set[PayloadShape],
    required_for: set[str] | None = None,
    flag_keys: set[str] | None = None,
    value_keys: set[str] | None = None,
) -> AnnotationRule:
    """AnnotationRule の簡易コンストラクタ"""
    return AnnotationRule(
        name=name,
        targets=frozenset(targets),
        shapes=frozenset(shapes),
        required_for=frozenset(required_for or ()),
        flag_keys=None if flag_keys is None and value_keys is None else frozenset(flag_keys or ()),
        value_keys=None if flag_keys is None and value_keys is None else frozenset(value_keys or ()),
    )


@dataclass(frozen=True)
class PatternDescriptor:
    """パターンの静的能力記述子

    Attributes:
        id: パターンID（derive リストで使う名前）
        rules: 受け付けるアノテーション規則
        supports_enums: enum 形式の型に適用可能か
        supports_unit: フィールドを持たない struct に適用可能か
        requires: 同時に要求されている必要がある他パターン
        inner_markers: フィールドに付与されたとき内側フィールドを指定するアノテーション名
    """

    id: str
    rules: tuple[AnnotationRule, ...] = ()
    supports_enums: bool = True
    supports_unit: bool = True
    requires: tuple[str, ...] = ()
    inner_markers: frozenset[str] = frozenset()


class PatternModule(Protocol):
    """パターンモジュールのプロトコル"""

    descriptor: PatternDescriptor

    def validate(self, model: SemanticModel) -> list[ValidationError]:
        """パターン固有のペイロード検証

        Args:
            model: 構築済みの SemanticModel

        Returns:
            エラーリスト（空の場合はエラーなし）
        """
        ...

    def generate(self, model: SemanticModel) -> GenerationPlan:
        """生成計画を作る（同じモデルからは常に同じ計画）"""
        ...


@dataclass
class PatternRegistry:
    """パターンモジュールのRegistry（登録順を保持）"""

    modules: dict[str, PatternModule] = field(default_factory=dict)

    def register(self, module: PatternModule) -> None:
        """モジュールを登録"""
        pattern_id = module.descriptor.id
        if pattern_id in self.modules:
            raise ValueError(f"Pattern '{pattern_id}' is already registered")
        self.modules[pattern_id] = module

    def get(self, pattern_id: str) -> PatternModule | None:
        return self.modules.get(pattern_id)

    def __contains__(self, pattern_id: object) -> bool:
        return pattern_id in self.modules

    def ids(self) -> list[str]:
        return list(self.modules)

    def restricted(self, enabled: list[str]) -> PatternRegistry:
        """指定IDのみを含むRegistryを作る（設定による制限用）"""
        unknown = [pattern_id for pattern_id in enabled if pattern_id not in self.modules]
        if unknown:
            raise ValueError(f"Unknown pattern id(s): {', '.join(unknown)}")
        return PatternRegistry({pattern_id: self.modules[pattern_id] for pattern_id in enabled})


# ===== パターン共通ヘルパー =====

_CAMEL_BOUNDARY_RE = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")
_NON_IDENT_RE = re.compile(r"[^0-9a-zA-Z_]+")


def snake_case(name: str) -> str:
    """識別子・型名を snake_case に正規化

    `fooBar` / `FooBar` / `foo_bar` はいずれも `foo_bar` になる。
    `io::Error` のようなパスは区切りを `_` に置き換える。
    """
    text = _NON_IDENT_RE.sub("_", name)
    text = _CAMEL_BOUNDARY_RE.sub("_", text)
    text = re.sub(r"_+", "_", text).strip("_")
    return text.lower()
