"""生成計画（GenerationPlan）のデータ構造

パターンモジュールが「何を生成するか」を記述する出力形式非依存の構造。
レンダリング（どう出力するか）はバックエンドが担当する。
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

# ===== 式 =====


@dataclass(frozen=True)
class SelfRef:
    """レシーバ自身"""


@dataclass(frozen=True)
class FieldRef:
    """レシーバ（または指定した式）のフィールド参照"""

    name: str
    owner: Expr | None = None


@dataclass(frozen=True)
class Arg:
    """メソッド引数の参照"""

    name: str


@dataclass(frozen=True)
class Literal:
    value: Any


@dataclass(frozen=True)
class TypeName:
    """型参照（型名をそのまま出力する）"""

    name: str


@dataclass(frozen=True)
class Call:
    """関数呼び出し `func(args..., key=value...)`"""

    func: Expr
    args: tuple[Expr, ...] = ()
    kwargs: tuple[tuple[str, Expr], ...] = ()


@dataclass(frozen=True)
class Attr:
    """属性アクセス `target.name`"""

    target: Expr
    name: str


@dataclass(frozen=True)
class BinOp:
    op: str
    left: Expr
    right: Expr


@dataclass(frozen=True)
class UnaryOp:
    op: str
    operand: Expr


@dataclass(frozen=True)
class Concat:
    """文字列片の連結（Display 系で使用）"""

    parts: tuple[Expr, ...]


@dataclass(frozen=True)
class Construct:
    """型（またはバリアント）の構築

    Attributes:
        kwargs: フィールド名→式
        variant: バリアント名（enum の場合）
    """

    kwargs: tuple[tuple[str, Expr], ...]
    variant: str | None = None


@dataclass(frozen=True)
class Replace:
    """レシーバのコピーを一部フィールドだけ差し替えて作る"""

    changes: tuple[tuple[str, Expr], ...]


@dataclass(frozen=True)
class IsInstance:
    target: Expr
    type_name: str


@dataclass(frozen=True)
class Index:
    """添字アクセス `target[key]`"""

    target: Expr
    key: Expr


@dataclass(frozen=True)
class IsVariant:
    """レシーバが指定バリアントか"""

    variant: str


Expr = Union[
    SelfRef,
    FieldRef,
    Arg,
    Literal,
    TypeName,
    Call,
    Attr,
    BinOp,
    UnaryOp,
    Concat,
    Construct,
    Replace,
    IsInstance,
    IsVariant,
    Index,
]

# ===== 文 =====


@dataclass(frozen=True)
class Return:
    value: Expr


@dataclass(frozen=True)
class AssignField:
    """レシーバのフィールドへの代入"""

    name: str
    value: Expr


@dataclass(frozen=True)
class Assign:
    """ローカル変数への代入"""

    name: str
    value: Expr


@dataclass(frozen=True)
class AssignIndex:
    """添字代入 `target[key] = value`"""

    target: Expr
    key: Expr
    value: Expr


@dataclass(frozen=True)
class If:
    condition: Expr
    body: tuple[Stmt, ...]
    orelse: tuple[Stmt, ...] = ()


@dataclass(frozen=True)
class Raise:
    exc_type: str
    message: Expr


Stmt = Union[Return, AssignField, Assign, AssignIndex, If, Raise]

# ===== メンバー・ブロック =====


class MemberKind(str, Enum):
    """生成メンバーの種類"""

    METHOD = "method"
    CLASSMETHOD = "classmethod"
    PROPERTY = "property"


@dataclass(frozen=True)
class Param:
    name: str
    annotation: str = ""


@dataclass(frozen=True)
class MethodSpec:
    """生成メソッド定義

    Attributes:
        name: メソッド名
        kind: メンバー種別
        params: レシーバ以外のパラメータ
        returns: 戻り値型（空文字は省略）
        body: 本体の文リスト
        doc: 1 行説明
    """

    name: str
    kind: MemberKind = MemberKind.METHOD
    params: tuple[Param, ...] = ()
    returns: str = ""
    body: tuple[Stmt, ...] = ()
    doc: str = ""


@dataclass(frozen=True)
class GenericSignature:
    """元の型のジェネリクスシグネチャ

    Attributes:
        type_name: 型名
        params: (パラメータ名, 境界リスト) のタプル
    """

    type_name: str
    params: tuple[tuple[str, tuple[str, ...]], ...] = ()

    @property
    def param_names(self) -> list[str]:
        return [name for name, _ in self.params]

    def applied(self) -> str:
        """型引数を適用した型表記（`Name[T, U]`）"""
        if not self.params:
            return self.type_name
        return f"{self.type_name}[{', '.join(self.param_names)}]"

    def declaration(self) -> str:
        """境界付きのパラメータ宣言（`T: Display + Clone, U`）"""
        parts = []
        for name, bounds in self.params:
            if bounds:
                parts.append(f"{name}: {' + '.join(bounds)}")
            else:
                parts.append(name)
        return ", ".join(parts)


@dataclass(frozen=True)
class GeneratedBlock:
    """1 つの振る舞い（トレイト）実装ブロック

    Attributes:
        trait: 実装する振る舞いの名前
        pattern: 生成元パターンID
        signature: 再利用するジェネリクスシグネチャ
        members: 生成メンバー
        aliases: 同じブロックでまとめて実装する他の振る舞い名
    """

    trait: str
    pattern: str
    signature: GenericSignature
    members: tuple[MethodSpec, ...] = ()
    aliases: tuple[str, ...] = ()

    @property
    def traits(self) -> tuple[str, ...]:
        return (self.trait, *self.aliases)


@dataclass(frozen=True)
class GenerationPlan:
    """パターン 1 回分の生成計画（生成後は不変）"""

    pattern: str
    type_name: str
    blocks: tuple[GeneratedBlock, ...] = ()

    def member_names(self) -> list[str]:
        return [member.name for block in self.blocks for member in block.members]
