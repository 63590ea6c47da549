"""Getters パターン: フィールドごとの読み取りアクセサ"""

from __future__ import annotations

import keyword
from typing import TYPE_CHECKING

from derivetool.core.base.annotations import Annotation, PayloadShape
from derivetool.core.base.ir import ElementKind
from derivetool.core.base.plan import (
    Call,
    FieldRef,
    GeneratedBlock,
    GenerationPlan,
    MethodSpec,
    Return,
    TypeName,
)
from derivetool.core.engine.diagnostics import ValidationError
from derivetool.patterns.base import PatternDescriptor, rule, snake_case

if TYPE_CHECKING:
    from derivetool.core.engine.model import FieldInfo, SemanticModel

NAME = "Getters"
ATTR = "getter"
DEFAULT_PREFIX = "get_"


class GettersPattern:
    """Getters パターンモジュール

    アクセサ名は `prefix + snake_case(フィールド名)`（既定の prefix は `get_`）。
    フィールド名そのままではインスタンス属性に隠されるため既定で接頭辞を付ける。
    """

    descriptor = PatternDescriptor(
        id=NAME,
        rules=(
            rule(ATTR, {ElementKind.TYPE}, {PayloadShape.MAPPING}, flag_keys={"clone"}, value_keys={"prefix"}),
            rule(ATTR, {ElementKind.FIELD}, {PayloadShape.MAPPING}, flag_keys={"skip", "clone"}, value_keys={"name"}),
        ),
        supports_enums=False,
        supports_unit=False,
    )

    # ===== 検証 =====

    def validate(self, model: SemanticModel) -> list[ValidationError]:
        errors: list[ValidationError] = []
        type_level = model.type_annotation(ATTR)

        prefix = DEFAULT_PREFIX
        if type_level is not None and type_level.has_key("prefix"):
            prefix = type_level.mapping["prefix"]  # type: ignore[index]
            if not isinstance(prefix, str) or not (prefix + "x").isidentifier():
                errors.append(
                    ValidationError(
                        "`prefix` must be a string that starts an identifier",
                        element=model.ref,
                        pattern=NAME,
                        annotation=type_level,
                        span=type_level.key_span("prefix"),
                    )
                )
                return errors

        for f in model.fields or ():
            errors.extend(self._check_field(model, f))
        if errors:
            return errors

        claimed: dict[str, FieldInfo] = {}
        for f in model.fields or ():
            accessor = self._accessor_name(model, f)
            if accessor is None:
                continue
            annotation = model.annotation(f.ref, ATTR) or type_level
            if accessor in claimed:
                errors.append(
                    ValidationError(
                        f"fields `{claimed[accessor].label}` and `{f.label}` both produce the accessor `{accessor}`",
                        element=f.ref,
                        pattern=NAME,
                        annotation=annotation,
                        location=f.location if annotation is None else None,
                    )
                )
                continue
            claimed[accessor] = f
        return errors

    def _check_field(self, model: SemanticModel, f: FieldInfo) -> list[ValidationError]:
        annotation = model.annotation(f.ref, ATTR)
        skip = annotation is not None and annotation.has_key("skip")

        if skip:
            extra = [k for k in ("name", "clone") if annotation.has_key(k)]  # type: ignore[union-attr]
            if extra:
                return [
                    ValidationError(
                        f"`skip` cannot be combined with `{extra[0]}`",
                        element=f.ref,
                        pattern=NAME,
                        annotation=annotation,
                        span=annotation.key_span(extra[0]),  # type: ignore[union-attr]
                    )
                ]
            return []

        if annotation is not None and annotation.has_key("name"):
            name = annotation.mapping["name"]  # type: ignore[index]
            if not isinstance(name, str) or not name.isidentifier() or keyword.iskeyword(name):
                return [
                    ValidationError(
                        "`name` must be a string holding a valid identifier",
                        element=f.ref,
                        pattern=NAME,
                        annotation=annotation,
                        span=annotation.key_span("name"),
                    )
                ]
            return []

        if f.name is None:
            return [
                ValidationError(
                    f"positional field needs an accessor name: `{ATTR}(name = \"...\")` or `{ATTR}(skip)`",
                    element=f.ref,
                    pattern=NAME,
                    expected_shape=f'`{ATTR}(name = "...")`',
                    found_shape="absent" if annotation is None else annotation.shape.value,
                    annotation=annotation,
                    location=f.location if annotation is None else None,
                )
            ]

        accessor = self._accessor_name(model, f)
        if accessor is not None and keyword.iskeyword(accessor):
            return [
                ValidationError(
                    f"accessor name `{accessor}` is a reserved word",
                    element=f.ref,
                    pattern=NAME,
                    location=f.location,
                )
            ]
        return []

    # ===== 生成 =====

    def _prefix(self, model: SemanticModel) -> str:
        type_level = model.type_annotation(ATTR)
        if type_level is not None and type_level.has_key("prefix"):
            return type_level.mapping["prefix"]  # type: ignore[index]
        return DEFAULT_PREFIX

    def _accessor_name(self, model: SemanticModel, f: FieldInfo) -> str | None:
        """アクセサ名（skip 指定時は None）"""
        annotation = model.annotation(f.ref, ATTR)
        if annotation is not None:
            if annotation.has_key("skip"):
                return None
            if annotation.has_key("name"):
                return annotation.mapping["name"]  # type: ignore[index]
        if f.name is None:
            return None
        return self._prefix(model) + snake_case(f.name)

    def _clones(self, model: SemanticModel, f: FieldInfo) -> bool:
        candidates: list[Annotation | None] = [model.annotation(f.ref, ATTR), model.type_annotation(ATTR)]
        return any(a is not None and a.has_key("clone") for a in candidates)

    def generate(self, model: SemanticModel) -> GenerationPlan:
        members = []
        for f in model.fields or ():
            accessor = self._accessor_name(model, f)
            if accessor is None:
                continue
            value = FieldRef(f.attr)
            if self._clones(model, f):
                body = Return(Call(TypeName("copy.deepcopy"), (value,)))
                doc = f"Return a deep copy of `{f.label}`."
            else:
                body = Return(value)
                doc = f"Return `{f.label}`."
            members.append(MethodSpec(name=accessor, returns=f.type_ref, body=(body,), doc=doc))

        block = GeneratedBlock(trait=NAME, pattern=NAME, signature=model.signature, members=tuple(members))
        return GenerationPlan(pattern=NAME, type_name=model.name, blocks=(block,))
