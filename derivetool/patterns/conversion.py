"""From パターン: 内側フィールドの型からの変換

struct:
    `from_inner(value)` で内側フィールドの型から構築する。
    `from(into)` で逆方向の `into_inner()` も生成する。
    `from(A, B)` の追加型は内側の型を経由して変換する（`from_a` / `from_b`）。

enum:
    `from` を付与したバリアントごとに `from_<variant>(value)` を生成する。
    フィールドを持たないバリアントは値を無視して構築する。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from derivetool.core.base.annotations import Annotation, PayloadShape
from derivetool.core.base.ir import ElementKind, ElementRef
from derivetool.core.base.plan import (
    Arg,
    Call,
    Construct,
    Expr,
    FieldRef,
    GeneratedBlock,
    GenerationPlan,
    MemberKind,
    MethodSpec,
    Param,
    Return,
    TypeName,
)
from derivetool.core.engine.diagnostics import ValidationError
from derivetool.patterns.base import PatternDescriptor, rule, snake_case

if TYPE_CHECKING:
    from derivetool.core.engine.model import FieldInfo, SemanticModel, VariantInfo

NAME = "From"
ATTR = "from"
INTO_KEY = "into"
WRAPPER = "Wrapper"


@dataclass(frozen=True)
class _Conversion:
    """生成する変換 1 件

    Attributes:
        method: 生成するクラスメソッド名
        source: 変換元の型
        variant: 構築するバリアント（struct は None）
        inner: 値を格納するフィールド（単位バリアントは None）
        through: 内側の型を経由して変換するか
    """

    method: str
    source: str
    variant: str | None
    inner: FieldInfo | None
    through: bool = False


def _source_types(annotation: Annotation | None) -> list[tuple[str, Annotation]]:
    if annotation is None or annotation.mapping is None:
        return []
    return [(key, annotation) for key in annotation.mapping.keys() if key != INTO_KEY]


def _require_inner(inner: FieldInfo | None, owner: str) -> FieldInfo:
    if inner is None:
        raise ValueError(f"derive({NAME}) requires an inner field on {owner}")
    return inner


class ConversionPattern:
    """From パターンモジュール"""

    descriptor = PatternDescriptor(
        id=NAME,
        rules=(
            rule(
                ATTR,
                {ElementKind.TYPE, ElementKind.VARIANT, ElementKind.FIELD},
                {PayloadShape.FLAG, PayloadShape.MAPPING},
            ),
        ),
        inner_markers=frozenset({ATTR}),
    )

    # ===== 検証 =====

    def validate(self, model: SemanticModel) -> list[ValidationError]:
        errors: list[ValidationError] = []
        errors.extend(self._check_values(model))
        if errors:
            return errors
        if model.is_struct:
            errors.extend(self._check_struct(model))
        else:
            errors.extend(self._check_enum(model))
        if not errors:
            errors.extend(self._check_names(model))
        return errors

    def _annotations(self, model: SemanticModel) -> list[Annotation]:
        return [a for (_, name), a in model.annotations.items() if name == ATTR]

    def _check_values(self, model: SemanticModel) -> list[ValidationError]:
        """`from(...)` のキーは全て値なしの型名"""
        errors = []
        for annotation in self._annotations(model):
            mapping = annotation.mapping
            if mapping is None:
                continue
            for key, value in mapping.items():
                if value is not None:
                    errors.append(
                        ValidationError(
                            f"`{ATTR}(...)` takes type names only; `{key}` must not have a value",
                            element=annotation.target,
                            pattern=NAME,
                            annotation=annotation,
                            span=mapping.spans.get(key),
                        )
                    )
        return errors

    def _check_struct(self, model: SemanticModel) -> list[ValidationError]:
        errors: list[ValidationError] = []
        inner = model.inner_field
        if inner is None:
            return [
                ValidationError(
                    f"conversion requires a single field or a field marked `{ATTR}`; "
                    f"found {model.field_count} fields",
                    element=model.ref,
                    pattern=NAME,
                    location=model.location,
                )
            ]
        errors.extend(self._check_defaults(model.fields or (), inner, model.ref))
        errors.extend(self._check_sources(model, model.ref, inner, self._struct_sources(model, inner)))
        return errors

    def _struct_sources(self, model: SemanticModel, inner: FieldInfo) -> list[tuple[str, Annotation]]:
        return _source_types(model.type_annotation(ATTR)) + _source_types(model.annotation(inner.ref, ATTR))

    def _check_enum(self, model: SemanticModel) -> list[ValidationError]:
        type_level = model.type_annotation(ATTR)
        if type_level is not None:
            return [
                ValidationError(
                    f"`{ATTR}` is not allowed on the enum itself; annotate the variants or their fields",
                    element=model.ref,
                    pattern=NAME,
                    annotation=type_level,
                )
            ]

        errors: list[ValidationError] = []
        requested = [v for v in model.variants or () if self._variant_requested(model, v)]
        if not requested:
            return [
                ValidationError(
                    f"no variant is marked with `{ATTR}`",
                    element=model.ref,
                    pattern=NAME,
                    expected_shape=f"`{ATTR}` on at least one variant",
                    found_shape="absent",
                    location=model.location,
                )
            ]

        seen: dict[str, str] = {}
        for variant in requested:
            for annotation in self._variant_annotations(model, variant):
                if annotation.has_key(INTO_KEY):
                    errors.append(
                        ValidationError(
                            f"`{ATTR}({INTO_KEY})` is only supported on structs",
                            element=annotation.target,
                            pattern=NAME,
                            annotation=annotation,
                            span=annotation.key_span(INTO_KEY),
                        )
                    )

            own = model.annotation(variant.ref, ATTR)
            if variant.is_unit:
                if own is None:
                    continue
                sources = _source_types(own)
                if len(sources) > 1:
                    errors.append(
                        ValidationError(
                            "a variant without fields converts from at most one type",
                            element=variant.ref,
                            pattern=NAME,
                            annotation=own,
                        )
                    )
                for source, annotation in sources:
                    errors.extend(self._claim(seen, source, variant, annotation, model.generic_names))
                continue

            inner = variant.inner_field
            if inner is None:
                errors.append(
                    ValidationError(
                        f"conversion requires a single field or a field marked `{ATTR}`; "
                        f"found {len(variant.fields)} fields",
                        element=variant.ref,
                        pattern=NAME,
                        annotation=own,
                        location=variant.location if own is None else None,
                    )
                )
                continue
            errors.extend(self._check_defaults(variant.fields, inner, variant.ref))
            errors.extend(self._claim(seen, inner.type_ref, variant, own, frozenset()))
            sources = self._variant_sources(model, variant, inner)
            source_errors = self._check_sources(model, variant.ref, inner, sources)
            errors.extend(source_errors)
            if source_errors:
                continue
            for source, annotation in sources:
                errors.extend(self._claim(seen, source, variant, annotation, frozenset()))
        return errors

    def _variant_requested(self, model: SemanticModel, variant: VariantInfo) -> bool:
        return bool(self._variant_annotations(model, variant))

    def _variant_annotations(self, model: SemanticModel, variant: VariantInfo) -> list[Annotation]:
        found = [model.annotation(variant.ref, ATTR)]
        found.extend(model.annotation(f.ref, ATTR) for f in variant.fields)
        return [a for a in found if a is not None]

    def _variant_sources(
        self, model: SemanticModel, variant: VariantInfo, inner: FieldInfo
    ) -> list[tuple[str, Annotation]]:
        return _source_types(model.annotation(variant.ref, ATTR)) + _source_types(model.annotation(inner.ref, ATTR))

    def _claim(
        self,
        seen: dict[str, str],
        source: str,
        variant: VariantInfo,
        annotation: Annotation | None,
        generics: frozenset[str],
    ) -> list[ValidationError]:
        """enum 全体で同じ変換元の型が 2 回使われていないか"""
        if source in generics:
            return [
                ValidationError(
                    f"cannot convert from generic parameter `{source}`",
                    element=variant.ref,
                    pattern=NAME,
                    annotation=annotation,
                )
            ]
        if source in seen:
            return [
                ValidationError(
                    f"repeated use of type `{source}` (variants `{seen[source]}` and `{variant.name}`)",
                    element=variant.ref,
                    pattern=NAME,
                    annotation=annotation,
                )
            ]
        seen[source] = variant.name
        return []

    def _check_defaults(
        self, fields: tuple[FieldInfo, ...], inner: FieldInfo, owner: ElementRef
    ) -> list[ValidationError]:
        missing = [f for f in fields if f.index != inner.index and not f.has_default]
        if not missing:
            return []
        labels = ", ".join(f"`{f.label}`" for f in missing)
        return [
            ValidationError(
                f"fields other than `{inner.label}` need a default value to convert from `{inner.type_ref}` "
                f"(missing: {labels})",
                element=owner,
                pattern=NAME,
                location=missing[0].location,
            )
        ]

    def _check_sources(
        self,
        model: SemanticModel,
        owner: ElementRef,
        inner: FieldInfo,
        sources: list[tuple[str, Annotation]],
    ) -> list[ValidationError]:
        """追加の変換元型をチェック（内側の型を経由するため内側は具体型であること）"""
        errors: list[ValidationError] = []
        seen = {inner.type_ref.strip()}
        for source, annotation in sources:
            if model.is_generic_param(inner.type_ref):
                errors.append(
                    ValidationError(
                        f"cannot convert from `{source}` through generic inner type `{inner.type_ref}`",
                        element=owner,
                        pattern=NAME,
                        annotation=annotation,
                        span=annotation.key_span(source),
                    )
                )
                continue
            if source in model.generic_names:
                errors.append(
                    ValidationError(
                        f"cannot convert from generic parameter `{source}`",
                        element=owner,
                        pattern=NAME,
                        annotation=annotation,
                        span=annotation.key_span(source),
                    )
                )
                continue
            if source in seen:
                errors.append(
                    ValidationError(
                        f"repeated use of type `{source}`",
                        element=owner,
                        pattern=NAME,
                        annotation=annotation,
                        span=annotation.key_span(source),
                    )
                )
                continue
            seen.add(source)
        return errors

    def _check_names(self, model: SemanticModel) -> list[ValidationError]:
        """生成メソッド名の衝突（snake_case 化後に同名になる型など）"""
        errors = []
        owners: dict[str, str] = {}
        for conversion in self._conversions(model):
            if conversion.method in owners:
                errors.append(
                    ValidationError(
                        f"conversions from `{owners[conversion.method]}` and `{conversion.source}` "
                        f"would both be named `{conversion.method}`",
                        element=model.ref,
                        pattern=NAME,
                        location=model.location,
                    )
                )
                continue
            owners[conversion.method] = conversion.source
        return errors

    # ===== 生成 =====

    def _conversions(self, model: SemanticModel) -> list[_Conversion]:
        conversions: list[_Conversion] = []
        if model.is_struct:
            inner = _require_inner(model.inner_field, model.name)
            conversions.append(_Conversion("from_inner", inner.type_ref, None, inner))
            for source, _ in self._struct_sources(model, inner):
                conversions.append(_Conversion(f"from_{snake_case(source)}", source, None, inner, through=True))
            return conversions

        for variant in model.variants or ():
            if not self._variant_requested(model, variant):
                continue
            if variant.is_unit:
                sources = _source_types(model.annotation(variant.ref, ATTR))
                if sources:
                    source = sources[0][0]
                    conversions.append(_Conversion(f"from_{snake_case(source)}", source, variant.name, None))
                else:
                    conversions.append(_Conversion(f"from_{snake_case(variant.name)}", "None", variant.name, None))
                continue
            inner = _require_inner(variant.inner_field, f"{model.name}::{variant.name}")
            conversions.append(_Conversion(f"from_{snake_case(variant.name)}", inner.type_ref, variant.name, inner))
            for source, _ in self._variant_sources(model, variant, inner):
                conversions.append(
                    _Conversion(f"from_{snake_case(source)}", source, variant.name, inner, through=True)
                )
        return conversions

    def generate(self, model: SemanticModel) -> GenerationPlan:
        applied = model.signature.applied()
        blocks = []
        for conversion in self._conversions(model):
            members = [self._constructor(conversion, applied)]
            # Wrapper と併用する場合は Wrapper の into_inner を共有する
            if conversion.method == "from_inner" and self._wants_into(model) and WRAPPER not in model.patterns:
                inner = _require_inner(conversion.inner, model.name)
                members.append(
                    MethodSpec(
                        name="into_inner",
                        returns=inner.type_ref,
                        body=(Return(FieldRef(inner.attr)),),
                        doc=f"Convert back into `{inner.type_ref}`.",
                    )
                )
            blocks.append(
                GeneratedBlock(
                    trait=f"{NAME}[{conversion.source}]",
                    pattern=NAME,
                    signature=model.signature,
                    members=tuple(members),
                )
            )
        return GenerationPlan(pattern=NAME, type_name=model.name, blocks=tuple(blocks))

    def _wants_into(self, model: SemanticModel) -> bool:
        inner = model.inner_field
        candidates = [model.type_annotation(ATTR)]
        if inner is not None:
            candidates.append(model.annotation(inner.ref, ATTR))
        return any(a is not None and a.has_key(INTO_KEY) for a in candidates)

    def _constructor(self, conversion: _Conversion, applied: str) -> MethodSpec:
        value: Expr = Arg("value")
        if conversion.through:
            value = Call(TypeName(_require_inner(conversion.inner, conversion.method).type_ref), (value,))
        kwargs = () if conversion.inner is None else ((conversion.inner.attr, value),)
        if conversion.variant is None:
            doc = f"Construct from a `{conversion.source}` value."
        else:
            doc = f"Construct the `{conversion.variant}` variant from a `{conversion.source}` value."
        return MethodSpec(
            name=conversion.method,
            kind=MemberKind.CLASSMETHOD,
            params=(Param("value", conversion.source),),
            returns=applied,
            body=(Return(Construct(kwargs, conversion.variant)),),
            doc=doc,
        )
