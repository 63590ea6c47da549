"""Display パターン: テンプレートによる文字列表現の生成

`display = "error {code}: {message}"` のテンプレートから `__str__` を生成する。
フィールド値はそれぞれの `str()` で左から順に埋め込む（幅・ロケール指定なし）。

その他の形式:
    display(inner)  内側フィールドの表現に委譲
    display(Debug)  repr() に委譲
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from derivetool.core.base.annotations import Annotation, Mapping, PayloadShape
from derivetool.core.base.ir import ElementKind
from derivetool.core.base.plan import (
    Call,
    Concat,
    FieldRef,
    GeneratedBlock,
    GenerationPlan,
    If,
    IsVariant,
    Literal,
    MethodSpec,
    Raise,
    Return,
    SelfRef,
    Stmt,
    TypeName,
)
from derivetool.core.engine.diagnostics import ValidationError
from derivetool.patterns.base import PatternDescriptor, rule

if TYPE_CHECKING:
    from derivetool.core.engine.model import FieldInfo, SemanticModel, VariantInfo

NAME = "Display"
ATTR = "display"


@dataclass(frozen=True)
class TemplatePart:
    """テンプレートの 1 片（リテラルまたはフィールド参照）"""

    literal: str | None = None
    field: str | int | None = None


class TemplateError(ValueError):
    """テンプレート構文エラー（位置付き）"""

    def __init__(self, reason: str, position: int):
        super().__init__(reason)
        self.reason = reason
        self.position = position


def parse_template(template: str) -> list[TemplatePart]:
    """Display テンプレートを分解

    `{name}` と `{0}` を参照、`{{` `}}` をエスケープとして扱う。

    Raises:
        TemplateError: 波括弧の不整合、書式指定の使用、空の参照
    """
    parts: list[TemplatePart] = []
    buffer: list[str] = []
    i = 0
    n = len(template)

    while i < n:
        ch = template[i]
        if ch == "{":
            if template.startswith("{{", i):
                buffer.append("{")
                i += 2
                continue
            close = template.find("}", i + 1)
            if close == -1:
                raise TemplateError("unterminated `{` in template", i)
            ref = template[i + 1 : close]
            if "{" in ref:
                raise TemplateError("nested `{` in template", i)
            if ":" in ref or "!" in ref:
                raise TemplateError(f"format specifications are not supported (`{{{ref}}}`)", i)
            ref = ref.strip()
            if not ref:
                raise TemplateError("empty `{}` placeholder; name the field (`{name}` or `{0}`)", i)
            if buffer:
                parts.append(TemplatePart(literal="".join(buffer)))
                buffer = []
            if ref.isdigit():
                parts.append(TemplatePart(field=int(ref)))
            elif ref.isidentifier():
                parts.append(TemplatePart(field=ref))
            else:
                raise TemplateError(f"invalid field reference `{{{ref}}}`", i)
            i = close + 1
            continue
        if ch == "}":
            if template.startswith("}}", i):
                buffer.append("}")
                i += 2
                continue
            raise TemplateError("unmatched `}` in template; use `}}` for a literal brace", i)
        buffer.append(ch)
        i += 1

    if buffer:
        parts.append(TemplatePart(literal="".join(buffer)))
    return parts


def _lookup(fields: tuple[FieldInfo, ...], ref: str | int) -> FieldInfo | None:
    for f in fields:
        if isinstance(ref, int) and f.name is None and f.index == ref:
            return f
        if isinstance(ref, str) and f.name == ref:
            return f
    return None


class DisplayPattern:
    """Display パターンモジュール"""

    descriptor = PatternDescriptor(
        id=NAME,
        rules=(
            rule(
                ATTR,
                {ElementKind.TYPE, ElementKind.VARIANT},
                {PayloadShape.SCALAR, PayloadShape.MAPPING},
                required_for={"struct"},
                flag_keys={"inner", "Debug"},
            ),
        ),
    )

    # ===== 検証 =====

    def validate(self, model: SemanticModel) -> list[ValidationError]:
        errors: list[ValidationError] = []
        type_level = model.type_annotation(ATTR)

        if model.is_struct:
            if type_level is not None:
                errors.extend(self._check_annotation(model, type_level, model.fields or (), model.inner_field))
            return errors

        for variant in model.variants or ():
            own = model.annotation(variant.ref, ATTR)
            if own is not None:
                errors.extend(self._check_annotation(model, own, variant.fields, variant.inner_field))
            elif type_level is not None:
                errors.extend(self._check_annotation(model, type_level, variant.fields, variant.inner_field, variant))
            else:
                errors.append(
                    ValidationError(
                        f"variant has no `{ATTR}` annotation and the type has no default template",
                        element=variant.ref,
                        pattern=NAME,
                        expected_shape=f'`{ATTR} = "..."`',
                        found_shape="absent",
                        location=variant.location,
                    )
                )
        return errors

    def _check_annotation(
        self,
        model: SemanticModel,
        annotation: Annotation,
        fields: tuple[FieldInfo, ...],
        inner: FieldInfo | None,
        applied_to: VariantInfo | None = None,
    ) -> list[ValidationError]:
        element = applied_to.ref if applied_to is not None else annotation.target

        if annotation.shape is PayloadShape.MAPPING:
            mapping = annotation.mapping if annotation.mapping is not None else Mapping()
            if len(mapping) != 1:
                return [
                    ValidationError(
                        f"`{ATTR}(...)` takes exactly one of `inner` or `Debug`",
                        element=element,
                        pattern=NAME,
                        annotation=annotation,
                    )
                ]
            if "inner" in mapping and inner is None:
                return [
                    ValidationError(
                        f"`{ATTR}(inner)` requires a single field or a designated inner field; "
                        f"found {len(fields)} fields",
                        element=element,
                        pattern=NAME,
                        annotation=annotation,
                    )
                ]
            return []

        if not isinstance(annotation.value, str):
            return [
                ValidationError(
                    "display template must be a string literal",
                    element=element,
                    pattern=NAME,
                    annotation=annotation,
                )
            ]

        try:
            parts = parse_template(annotation.value)
        except TemplateError as exc:
            return [ValidationError(exc.reason, element=element, pattern=NAME, annotation=annotation)]

        errors = []
        for part in parts:
            if part.field is None:
                continue
            if _lookup(fields, part.field) is None:
                errors.append(
                    ValidationError(
                        f"template references unknown field `{part.field}`",
                        element=element,
                        pattern=NAME,
                        annotation=annotation,
                    )
                )
        return errors

    # ===== 生成 =====

    def generate(self, model: SemanticModel) -> GenerationPlan:
        type_level = model.type_annotation(ATTR)

        if model.is_struct:
            if type_level is None:
                raise ValueError(f"derive({NAME}) requires a template on {model.name}")
            body = self._render_body(type_level, model.fields or (), model.inner_field)
        else:
            statements: list[Stmt] = []
            for variant in model.variants or ():
                annotation = model.annotation(variant.ref, ATTR) or type_level
                if annotation is None:
                    raise ValueError(f"derive({NAME}) requires a template on {model.name}::{variant.name}")
                statements.append(
                    If(IsVariant(variant.name), tuple(self._render_body(annotation, variant.fields, variant.inner_field)))
                )
            statements.append(Raise("TypeError", Literal(f"unknown {model.name} variant")))
            body = statements

        method = MethodSpec(name="__str__", returns="str", body=tuple(body), doc="Render using the display template.")
        block = GeneratedBlock(trait=NAME, pattern=NAME, signature=model.signature, members=(method,))
        return GenerationPlan(pattern=NAME, type_name=model.name, blocks=(block,))

    def _render_body(
        self, annotation: Annotation, fields: tuple[FieldInfo, ...], inner: FieldInfo | None
    ) -> list[Stmt]:
        if annotation.shape is PayloadShape.MAPPING:
            if annotation.has_key("inner"):
                if inner is None:
                    raise ValueError(f"`{ATTR}(inner)` requires an inner field")
                return [Return(Call(TypeName("str"), (FieldRef(inner.attr),)))]
            return [Return(Call(TypeName("repr"), (SelfRef(),)))]

        pieces = []
        for part in parse_template(annotation.value):
            if part.literal is not None:
                pieces.append(Literal(part.literal))
            else:
                target = _lookup(fields, part.field)  # type: ignore[arg-type]
                if target is None:
                    raise ValueError(f"unknown field `{part.field}` in template")
                pieces.append(Call(TypeName("str"), (FieldRef(target.attr),)))
        return [Return(Concat(tuple(pieces)))]
