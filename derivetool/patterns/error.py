"""Error パターン: 原因フィールドの公開

`source` を付与したフィールドを `source()` で返す。付与がなければ None を返す。
例外基底クラスの付与は定義バックエンドが行う。
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from derivetool.core.base.annotations import PayloadShape
from derivetool.core.base.ir import ElementKind, ElementRef
from derivetool.core.base.plan import (
    FieldRef,
    GeneratedBlock,
    GenerationPlan,
    If,
    IsVariant,
    Literal,
    MethodSpec,
    Return,
    Stmt,
)
from derivetool.core.engine.diagnostics import ValidationError
from derivetool.patterns.base import PatternDescriptor, rule

if TYPE_CHECKING:
    from derivetool.core.engine.model import FieldInfo, SemanticModel

NAME = "Error"
ATTR = "source"


def _union_members(types: list[str]) -> list[str]:
    """`A | None` のような型表記を平坦化し、重複を除く（初出順）"""
    members: list[str] = []
    for type_ref in types:
        depth = 0
        current: list[str] = []
        for ch in type_ref + "|":
            if ch in "[(":
                depth += 1
            elif ch in "])":
                depth -= 1
            if ch == "|" and depth == 0:
                member = "".join(current).strip()
                if member and member not in members:
                    members.append(member)
                current = []
            else:
                current.append(ch)
    return members


class ErrorPattern:
    """Error パターンモジュール"""

    descriptor = PatternDescriptor(
        id=NAME,
        rules=(rule(ATTR, {ElementKind.FIELD}, {PayloadShape.FLAG}),),
    )

    def validate(self, model: SemanticModel) -> list[ValidationError]:
        errors: list[ValidationError] = []
        if model.is_struct:
            errors.extend(self._check_single(model, model.annotated_fields(ATTR), model.ref))
        else:
            for variant in model.variants or ():
                errors.extend(self._check_single(model, model.annotated_fields(ATTR, variant), variant.ref))
        return errors

    def _check_single(
        self, model: SemanticModel, marked: list[FieldInfo], owner: ElementRef
    ) -> list[ValidationError]:
        if len(marked) <= 1:
            return []
        labels = ", ".join(f"`{f.label}`" for f in marked)
        return [
            ValidationError(
                f"only a single field may be marked as `{ATTR}`; found {len(marked)} ({labels})",
                element=owner,
                pattern=NAME,
                annotation=model.annotation(marked[1].ref, ATTR),
            )
        ]

    def generate(self, model: SemanticModel) -> GenerationPlan:
        if model.is_struct:
            marked = model.annotated_fields(ATTR)
            if marked:
                body: list[Stmt] = [Return(FieldRef(marked[0].attr))]
                types = _union_members([marked[0].type_ref])
            else:
                body = [Return(Literal(None))]
                types = []
        else:
            body = []
            types = []
            for variant in model.variants or ():
                marked = model.annotated_fields(ATTR, variant)
                if not marked:
                    continue
                body.append(If(IsVariant(variant.name), (Return(FieldRef(marked[0].attr)),)))
                types = _union_members([*types, marked[0].type_ref])
            body.append(Return(Literal(None)))

        returns = " | ".join(_union_members([*types, "None"]))
        method = MethodSpec(
            name="source",
            returns=returns,
            body=tuple(body),
            doc="Return the underlying cause of this error, if any.",
        )
        block = GeneratedBlock(trait=NAME, pattern=NAME, signature=model.signature, members=(method,))
        return GenerationPlan(pattern=NAME, type_name=model.name, blocks=(block,))
