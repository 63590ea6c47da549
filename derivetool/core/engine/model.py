"""Semantic Model Builder: TypeDefinition + アノテーション → SemanticModel

主な処理:
1. 全アノテーションを付与先要素ごとにパース・分類
2. 要求パターンの能力記述子と照合（名前・付与先・形状・キー・必須）
3. 複数パターンが使う派生事実（単一フィールドか、内側フィールドはどれか等）を 1 度だけ計算
4. パターン間で矛盾する派生事実を拒否

構築後の SemanticModel は不変で、曖昧なアノテーションを含まない。
"""

from __future__ import annotations

import keyword
import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from derivetool.core.base.annotations import Annotation, Mapping, PayloadShape
from derivetool.core.base.ir import (
    ElementKind,
    ElementRef,
    FieldDef,
    RawAnnotation,
    SourceLocation,
    TypeDefinition,
)
from derivetool.core.base.plan import GenericSignature
from derivetool.core.engine.diagnostics import DeriveError, ValidationError
from derivetool.core.engine.grammar import parse_annotations
from derivetool.patterns.base import AnnotationRule, PatternModule, PatternRegistry

logger = logging.getLogger(__name__)

INNER_EXPLICIT = "explicit"
INNER_IMPLICIT = "implicit"
INNER_NONE = "none"


@dataclass(frozen=True)
class FieldInfo:
    """正規化済みフィールド

    Attributes:
        index: 宣言順インデックス
        name: 宣言名（位置フィールドは None）
        attr: 出力コード上の属性名（位置フィールドは `_0` 形式）
        type_ref: 宣言された型参照
        has_default: デフォルト値を持つか
        default: デフォルト値
        ref: 要素参照
        location: 定義位置
    """

    index: int
    name: str | None
    attr: str
    type_ref: str
    has_default: bool
    default: Any
    ref: ElementRef
    location: SourceLocation

    @property
    def label(self) -> str:
        """診断用の表示名"""
        return self.name if self.name is not None else str(self.index)


@dataclass(frozen=True)
class VariantInfo:
    """正規化済みバリアント（内側フィールドの派生事実を含む）"""

    index: int
    name: str
    fields: tuple[FieldInfo, ...]
    ref: ElementRef
    location: SourceLocation
    inner_field: FieldInfo | None = None
    inner_designation: str = INNER_NONE

    @property
    def is_unit(self) -> bool:
        return not self.fields


@dataclass(frozen=True)
class SemanticModel:
    """検証済みのパターン非依存モデル

    Attributes:
        name: 型名
        signature: ジェネリクスシグネチャ
        patterns: 要求パターンID（要求順）
        fields: struct のフィールド
        variants: enum のバリアント
        annotations: (要素, アノテーション名) → Annotation の索引
        inner_field: 内側フィールド（struct）
        inner_designation: 内側フィールドの決定方法
        description: 説明
        location: 定義位置
    """

    name: str
    signature: GenericSignature
    patterns: tuple[str, ...]
    fields: tuple[FieldInfo, ...] | None
    variants: tuple[VariantInfo, ...] | None
    annotations: MappingProxyType[tuple[ElementRef, str], Annotation]
    inner_field: FieldInfo | None = None
    inner_designation: str = INNER_NONE
    description: str = ""
    location: SourceLocation = field(default_factory=SourceLocation)

    @property
    def ref(self) -> ElementRef:
        return ElementRef(ElementKind.TYPE, self.name)

    @property
    def is_enum(self) -> bool:
        return self.variants is not None

    @property
    def is_struct(self) -> bool:
        return self.fields is not None

    @property
    def is_unit(self) -> bool:
        return self.fields is not None and not self.fields

    @property
    def field_count(self) -> int:
        return len(self.fields or ())

    @property
    def is_single_field(self) -> bool:
        return self.field_count == 1

    @property
    def generic_names(self) -> frozenset[str]:
        return frozenset(self.signature.param_names)

    @property
    def defaulted_others(self) -> bool:
        """内側フィールド以外の全フィールドがデフォルト値を持つか"""
        if self.inner_field is None:
            return False
        return all(f.has_default for f in self.fields or () if f.index != self.inner_field.index)

    def annotation(self, target: ElementRef, name: str) -> Annotation | None:
        return self.annotations.get((target, name))

    def type_annotation(self, name: str) -> Annotation | None:
        return self.annotation(self.ref, name)

    def is_generic_param(self, type_ref: str) -> bool:
        return type_ref.strip() in self.generic_names

    def all_fields(self) -> list[FieldInfo]:
        """struct のフィールド、または全バリアントのフィールド"""
        if self.fields is not None:
            return list(self.fields)
        return [f for variant in self.variants or () for f in variant.fields]

    def annotated_fields(self, name: str, variant: VariantInfo | None = None) -> list[FieldInfo]:
        """指定アノテーションを持つフィールド（宣言順）"""
        fields = variant.fields if variant is not None else self.fields or ()
        return [f for f in fields if self.annotation(f.ref, name) is not None]


def _field_info(type_name: str, variant: str | None, index: int, fdef: FieldDef) -> FieldInfo:
    key: str | int = fdef.name if fdef.name is not None else index
    return FieldInfo(
        index=index,
        name=fdef.name,
        attr=fdef.name if fdef.name is not None else f"_{index}",
        type_ref=fdef.type_ref,
        has_default=fdef.has_default,
        default=fdef.default,
        ref=ElementRef(ElementKind.FIELD, type_name, variant, key),
        location=fdef.location,
    )


def _valid_identifier(name: str) -> bool:
    return name.isidentifier() and not keyword.iskeyword(name)


class ModelBuilder:
    """SemanticModel の構築器

    検出した全エラーを errors に蓄積し、build() は最初のエラーを送出する。

    Attributes:
        definition: 入力の型定義
        registry: パターンRegistry
        errors: 検出したエラー（ParseError / ValidationError）
    """

    def __init__(self, definition: TypeDefinition, registry: PatternRegistry | None = None):
        """初期化

        Args:
            definition: 型定義
            registry: パターンRegistry（省略時は組み込みRegistry）
        """
        if registry is None:
            from derivetool.patterns import default_registry

            registry = default_registry()
        self.definition = definition
        self.registry = registry
        self.errors: list[DeriveError] = []
        self.type_ref = ElementRef(ElementKind.TYPE, definition.name)

    # ===== エントリポイント =====

    def build(self) -> SemanticModel:
        """SemanticModel を構築

        Returns:
            SemanticModel

        Raises:
            ParseError: アノテーション構文エラー
            ValidationError: 検証エラー・派生事実の矛盾
        """
        logger.debug(f"Building semantic model for '{self.definition.name}'")
        self.errors = []

        if not self._check_structure():
            raise self.errors[0]

        modules = self._resolve_patterns()
        fields, variants = self._normalize_body()
        annotations = self._collect_annotations(fields, variants)
        self._check_annotations(annotations, modules, fields, variants)

        index = {(a.target, a.name): a for a in annotations if a.target is not None}
        inner, designation = self._derive_struct_inner(fields, index, modules)
        variants = self._derive_variant_inners(variants, index, modules)

        if self.errors:
            logger.debug(f"'{self.definition.name}': {len(self.errors)} error(s) while building model")
            raise self.errors[0]

        return SemanticModel(
            name=self.definition.name,
            signature=GenericSignature(
                type_name=self.definition.name,
                params=tuple((g.name, tuple(g.bounds)) for g in self.definition.generics),
            ),
            patterns=tuple(self.definition.derives),
            fields=fields,
            variants=variants,
            annotations=MappingProxyType(index),
            inner_field=inner,
            inner_designation=designation,
            description=self.definition.description,
            location=self.definition.location,
        )

    def _error(self, reason: str, **kwargs: Any) -> None:  # noqa: ANN401
        kwargs.setdefault("location", self.definition.location)
        self.errors.append(ValidationError(reason, **kwargs))

    # ===== 1. 構造チェック =====

    def _check_structure(self) -> bool:
        """本体種別・名前の妥当性をチェック（失敗時は以降の処理をしない）"""
        definition = self.definition
        before = len(self.errors)

        if not _valid_identifier(definition.name):
            self._error(f"type name `{definition.name}` is not a valid identifier", element=self.type_ref)

        if definition.fields is not None and definition.variants is not None:
            self._error("a type definition must have either fields or variants, not both", element=self.type_ref)
        elif definition.fields is None and definition.variants is None:
            self._error("a type definition must have either fields or variants", element=self.type_ref)

        seen_generics: set[str] = set()
        for generic in definition.generics:
            if not _valid_identifier(generic.name):
                self._error(f"generic parameter `{generic.name}` is not a valid identifier", element=self.type_ref)
            if generic.name in seen_generics:
                self._error(f"duplicate generic parameter `{generic.name}`", element=self.type_ref)
            seen_generics.add(generic.name)

        self._check_fields(definition.fields or [], None)
        seen_variants: set[str] = set()
        for variant in definition.variants or []:
            ref = ElementRef(ElementKind.VARIANT, definition.name, variant.name)
            if not _valid_identifier(variant.name):
                self._error(f"variant name `{variant.name}` is not a valid identifier", element=ref)
            if variant.name in seen_variants:
                self._error(f"duplicate variant `{variant.name}`", element=ref, location=variant.location)
            seen_variants.add(variant.name)
            self._check_fields(variant.fields, variant.name)

        return len(self.errors) == before

    def _check_fields(self, fields: list[FieldDef], variant: str | None) -> None:
        named = [f for f in fields if f.name is not None]
        if named and len(named) != len(fields):
            ref = ElementRef(ElementKind.VARIANT if variant else ElementKind.TYPE, self.definition.name, variant)
            self._error("named and positional fields cannot be mixed", element=ref)
        seen: set[str] = set()
        for index, fdef in enumerate(fields):
            info = _field_info(self.definition.name, variant, index, fdef)
            if fdef.name is not None and not _valid_identifier(fdef.name):
                self._error(
                    f"field name `{fdef.name}` is not a valid identifier", element=info.ref, location=fdef.location
                )
            if fdef.name in seen:
                self._error(f"duplicate field `{fdef.name}`", element=info.ref, location=fdef.location)
            if fdef.name is not None:
                seen.add(fdef.name)
            if not fdef.type_ref.strip():
                self._error("field type is empty", element=info.ref, location=fdef.location)

    # ===== 2. パターン解決 =====

    def _resolve_patterns(self) -> list[PatternModule]:
        """derive リストを PatternModule に解決"""
        modules: list[PatternModule] = []
        seen: set[str] = set()
        definition = self.definition

        for pattern_id in definition.derives:
            if pattern_id in seen:
                self._error(f"pattern `{pattern_id}` is requested more than once", element=self.type_ref)
                continue
            seen.add(pattern_id)
            module = self.registry.get(pattern_id)
            if module is None:
                known = ", ".join(self.registry.ids())
                self._error(f"unknown pattern `{pattern_id}`; known patterns: {known}", element=self.type_ref)
                continue
            modules.append(module)

        for module in modules:
            descriptor = module.descriptor
            for required in descriptor.requires:
                if required not in seen:
                    self._error(
                        f"requires derive({required}) to be requested as well",
                        element=self.type_ref,
                        pattern=descriptor.id,
                    )
            if definition.variants is not None and not descriptor.supports_enums:
                self._error("pattern is not supported on enums", element=self.type_ref, pattern=descriptor.id)
            if definition.fields == [] and not descriptor.supports_unit:
                self._error(
                    "pattern is meaningless for types without fields", element=self.type_ref, pattern=descriptor.id
                )
        return modules

    def _normalize_body(self) -> tuple[tuple[FieldInfo, ...] | None, tuple[VariantInfo, ...] | None]:
        name = self.definition.name
        if self.definition.fields is not None:
            return tuple(_field_info(name, None, i, f) for i, f in enumerate(self.definition.fields)), None
        variants = []
        for vi, vdef in enumerate(self.definition.variants or []):
            variants.append(
                VariantInfo(
                    index=vi,
                    name=vdef.name,
                    fields=tuple(_field_info(name, vdef.name, i, f) for i, f in enumerate(vdef.fields)),
                    ref=ElementRef(ElementKind.VARIANT, name, vdef.name),
                    location=vdef.location,
                )
            )
        return None, tuple(variants)

    # ===== 3. アノテーションの分類と照合 =====

    def _collect_annotations(
        self,
        fields: tuple[FieldInfo, ...] | None,
        variants: tuple[VariantInfo, ...] | None,
    ) -> list[Annotation]:
        """全要素のアノテーションをパースし、付与先ごとに集める"""
        targets: list[tuple[ElementRef, list[RawAnnotation]]] = [(self.type_ref, self.definition.annotations)]
        for info, fdef in zip(fields or (), self.definition.fields or []):
            targets.append((info.ref, fdef.annotations))
        for vinfo, vdef in zip(variants or (), self.definition.variants or []):
            targets.append((vinfo.ref, vdef.annotations))
            for info, fdef in zip(vinfo.fields, vdef.fields):
                targets.append((info.ref, fdef.annotations))

        annotations: list[Annotation] = []
        for ref, raws in targets:
            parsed, parse_errors = parse_annotations(raws, ref)
            self.errors.extend(parse_errors)
            annotations.extend(parsed)
        return annotations

    def _rules_for(self, modules: list[PatternModule], name: str) -> list[tuple[str, AnnotationRule]]:
        return [
            (module.descriptor.id, rule)
            for module in modules
            for rule in module.descriptor.rules
            if rule.name == name
        ]

    def _check_annotations(
        self,
        annotations: list[Annotation],
        modules: list[PatternModule],
        fields: tuple[FieldInfo, ...] | None,
        variants: tuple[VariantInfo, ...] | None,
    ) -> None:
        """名前・付与先・形状・キー・重複・必須をチェック"""
        seen: set[tuple[ElementRef, str]] = set()

        for annotation in annotations:
            target = annotation.target
            if target is None:
                raise ValueError(f"annotation `{annotation.name}` is not attached to an element")
            key = (target, annotation.name)
            if key in seen:
                self._error(
                    f"duplicate annotation `{annotation.name}`",
                    element=target,
                    annotation=annotation,
                )
                continue
            seen.add(key)

            candidates = self._rules_for(modules, annotation.name)
            if not candidates:
                self._error(
                    f"annotation `{annotation.name}` is not used by any requested pattern",
                    element=target,
                    annotation=annotation,
                )
                continue

            on_target = [(pid, r) for pid, r in candidates if target.kind in r.targets]
            if not on_target:
                owners = ", ".join(sorted({pid for pid, _ in candidates}))
                self._error(
                    f"annotation `{annotation.name}` is not allowed on a {target.kind.value}",
                    element=target,
                    pattern=owners,
                    annotation=annotation,
                )
                continue

            accepting = [(pid, r) for pid, r in on_target if annotation.shape in r.shapes]
            if not accepting:
                pattern_id, first = on_target[0]
                self._error(
                    f"annotation `{annotation.name}` has the wrong form",
                    element=target,
                    pattern=pattern_id,
                    annotation=annotation,
                    expected_shape=first.expected_shape(),
                    found_shape=annotation.shape.value,
                )
                continue

            if annotation.shape is PayloadShape.MAPPING:
                self._check_keys(annotation, accepting)

        self._check_required(modules, seen)

    def _check_keys(self, annotation: Annotation, accepting: list[tuple[str, AnnotationRule]]) -> None:
        """マッピングキーを規則と照合"""
        pattern_id, first = accepting[0]
        if any(r.free_keys for _, r in accepting):
            return
        flag_keys = frozenset().union(*(r.flag_keys or frozenset() for _, r in accepting))
        value_keys = frozenset().union(*(r.value_keys or frozenset() for _, r in accepting))
        mapping = annotation.mapping if annotation.mapping is not None else Mapping()

        for key, value in mapping.items():
            span = mapping.spans.get(key)
            if key not in flag_keys and key not in value_keys:
                expected = ", ".join(f"`{k}`" for k in sorted(flag_keys | value_keys))
                self._error(
                    f"unknown key `{key}` in `{annotation.name}`; expected one of {expected}",
                    element=annotation.target,
                    pattern=pattern_id,
                    annotation=annotation,
                    span=span,
                )
            elif value is None and key not in flag_keys:
                self._error(
                    f"key `{key}` in `{annotation.name}` requires a value (`{key} = ...`)",
                    element=annotation.target,
                    pattern=pattern_id,
                    annotation=annotation,
                    span=span,
                )
            elif value is not None and key not in value_keys:
                self._error(
                    f"key `{key}` in `{annotation.name}` takes no value",
                    element=annotation.target,
                    pattern=pattern_id,
                    annotation=annotation,
                    span=span,
                )

    def _check_required(self, modules: list[PatternModule], seen: set[tuple[ElementRef, str]]) -> None:
        body = "enum" if self.definition.variants is not None else "struct"
        for module in modules:
            for r in module.descriptor.rules:
                if body in r.required_for and (self.type_ref, r.name) not in seen:
                    self._error(
                        f"missing required annotation `{r.name}`",
                        element=self.type_ref,
                        pattern=module.descriptor.id,
                        expected_shape=r.expected_shape(),
                        found_shape="absent",
                    )

    # ===== 4. 派生事実 =====

    def _markers(self, modules: list[PatternModule]) -> frozenset[str]:
        return frozenset().union(*(m.descriptor.inner_markers for m in modules))

    def _designated(
        self,
        fields: tuple[FieldInfo, ...],
        index: dict[tuple[ElementRef, str], Annotation],
        markers: frozenset[str],
    ) -> list[tuple[FieldInfo, Annotation]]:
        designated = []
        for f in fields:
            for marker in sorted(markers):
                annotation = index.get((f.ref, marker))
                if annotation is not None:
                    designated.append((f, annotation))
        return designated

    def _resolve_inner(
        self,
        fields: tuple[FieldInfo, ...],
        index: dict[tuple[ElementRef, str], Annotation],
        markers: frozenset[str],
        owner: ElementRef,
    ) -> tuple[FieldInfo | None, str]:
        """内側フィールドを決定（明示指定は常に暗黙検出より優先）"""
        designated = self._designated(fields, index, markers)
        distinct = {f.index: f for f, _ in designated}

        if len(distinct) > 1:
            claims = ", ".join(f"`{f.label}` (via `{a.name}`)" for f, a in designated)
            self._error(
                f"conflicting inner field designation: {claims}; only a single field may be the inner field",
                element=owner,
                annotation=designated[1][1],
            )
            return None, INNER_NONE
        if distinct:
            return next(iter(distinct.values())), INNER_EXPLICIT
        if len(fields) == 1:
            return fields[0], INNER_IMPLICIT
        return None, INNER_NONE

    def _derive_struct_inner(
        self,
        fields: tuple[FieldInfo, ...] | None,
        index: dict[tuple[ElementRef, str], Annotation],
        modules: list[PatternModule],
    ) -> tuple[FieldInfo | None, str]:
        if fields is None:
            return None, INNER_NONE
        return self._resolve_inner(fields, index, self._markers(modules), self.type_ref)

    def _derive_variant_inners(
        self,
        variants: tuple[VariantInfo, ...] | None,
        index: dict[tuple[ElementRef, str], Annotation],
        modules: list[PatternModule],
    ) -> tuple[VariantInfo, ...] | None:
        if variants is None:
            return None
        markers = self._markers(modules)
        resolved = []
        for variant in variants:
            inner, designation = self._resolve_inner(variant.fields, index, markers, variant.ref)
            resolved.append(
                VariantInfo(
                    index=variant.index,
                    name=variant.name,
                    fields=variant.fields,
                    ref=variant.ref,
                    location=variant.location,
                    inner_field=inner,
                    inner_designation=designation,
                )
            )
        return tuple(resolved)


def build_model(definition: TypeDefinition, registry: PatternRegistry | None = None) -> SemanticModel:
    """SemanticModel を構築（ModelBuilder の簡易ラッパー）

    Args:
        definition: 型定義
        registry: パターンRegistry

    Returns:
        SemanticModel

    Raises:
        ParseError: アノテーション構文エラー
        ValidationError: 検証エラー
    """
    return ModelBuilder(definition, registry).build()
