"""Wrapper / WrapperMut パターン: 単一フィールドの透過的なラップ

Wrapper は内側フィールドへの読み取りアクセス（`as_inner` / `into_inner`）と
`from_inner` を生成し、`wrapper(...)` で列挙した振る舞いを内側の値に委譲する。
WrapperMut は書き込みアクセス（`set_inner` / `replace_inner`）と
`wrapper_mut(...)` で列挙した代入系の振る舞いを生成する。

`wrapper(...)` / `wrapper_mut(...)` には振る舞い名とグループ名を列挙する:

    wrapper(Display, FromStr, MathOps, NoRefs)
    wrapper_mut(MathAssign, IndexMut)

既定で AsRef / Borrow（WrapperMut は AsMut / BorrowMut）を含み、`NoRefs` で除外する。
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from derivetool.core.base.annotations import Annotation, PayloadShape
from derivetool.core.base.ir import ElementKind
from derivetool.core.base.plan import (
    Arg,
    Assign,
    AssignField,
    AssignIndex,
    Attr,
    BinOp,
    Call,
    Construct,
    FieldRef,
    GeneratedBlock,
    GenerationPlan,
    If,
    Index,
    IsInstance,
    Literal,
    MemberKind,
    MethodSpec,
    Param,
    Raise,
    Replace,
    Return,
    SelfRef,
    Stmt,
    TypeName,
    UnaryOp,
)
from derivetool.core.engine.diagnostics import ValidationError
from derivetool.patterns.base import PatternDescriptor, rule

if TYPE_CHECKING:
    from derivetool.core.engine.model import FieldInfo, SemanticModel

WRAPPER = "Wrapper"
WRAPPER_MUT = "WrapperMut"
CONVERSION = "From"
WRAP_ATTR = "wrap"
WRAPPER_ATTR = "wrapper"
WRAPPER_MUT_ATTR = "wrapper_mut"
NO_REFS = "NoRefs"

# ===== 振る舞いテーブル =====

FORMAT_TRAITS = {"Octal": "o", "LowerHex": "x", "UpperHex": "X", "LowerExp": "e", "UpperExp": "E"}
INDEX_TRAITS = ("Index", "IndexRange", "IndexFrom", "IndexTo", "IndexInclusive", "IndexToInclusive", "IndexFull")
UNARY_OPS = {"Neg": ("__neg__", "-"), "Not": ("__invert__", "~")}
BINARY_OPS = {
    "Add": ("__add__", "+"),
    "Sub": ("__sub__", "-"),
    "Mul": ("__mul__", "*"),
    "Div": ("__truediv__", "/"),
    "Rem": ("__mod__", "%"),
    "Shl": ("__lshift__", "<<"),
    "Shr": ("__rshift__", ">>"),
    "BitAnd": ("__and__", "&"),
    "BitOr": ("__or__", "|"),
    "BitXor": ("__xor__", "^"),
}
REF_ACCESSORS = {
    "AsRef": ("as_ref", None),
    "Borrow": ("borrow", None),
    "AsSlice": ("as_slice", "bytes"),
    "BorrowSlice": ("borrow_slice", "memoryview"),
}

WRAPPER_TRAITS = (
    "Display",
    "Debug",
    "FromStr",
    "FromHex",
    *FORMAT_TRAITS,
    "Deref",
    *REF_ACCESSORS,
    *INDEX_TRAITS,
    *UNARY_OPS,
    *BINARY_OPS,
)
WRAPPER_GROUPS = {
    "Hex": ("LowerHex", "UpperHex", "FromHex"),
    "Exp": ("LowerExp", "UpperExp"),
    "NumberFmt": ("LowerHex", "UpperHex", "LowerExp", "UpperExp", "Octal"),
    "RangeOps": ("IndexRange", "IndexFrom", "IndexTo", "IndexInclusive", "IndexToInclusive", "IndexFull"),
    "MathOps": ("Neg", "Add", "Sub", "Mul", "Div", "Rem"),
    "BoolOps": ("Not", "BitAnd", "BitOr", "BitXor"),
    "BitOps": ("Not", "BitAnd", "BitOr", "BitXor", "Shl", "Shr"),
}
WRAPPER_DEFAULTS = ("AsRef", "Borrow")

INDEX_MUT_TRAITS = (
    "IndexMut",
    "IndexRangeMut",
    "IndexFromMut",
    "IndexToMut",
    "IndexInclusiveMut",
    "IndexToInclusiveMut",
    "IndexFullMut",
)
ASSIGN_OPS = {
    "AddAssign": ("__iadd__", "+"),
    "SubAssign": ("__isub__", "-"),
    "MulAssign": ("__imul__", "*"),
    "DivAssign": ("__itruediv__", "/"),
    "RemAssign": ("__imod__", "%"),
    "ShlAssign": ("__ilshift__", "<<"),
    "ShrAssign": ("__irshift__", ">>"),
    "BitAndAssign": ("__iand__", "&"),
    "BitOrAssign": ("__ior__", "|"),
    "BitXorAssign": ("__ixor__", "^"),
}
MUT_ACCESSORS = {
    "AsMut": ("as_mut", None),
    "BorrowMut": ("borrow_mut", None),
    "AsSliceMut": ("as_slice_mut", "memoryview"),
    "BorrowSliceMut": ("borrow_slice_mut", "memoryview"),
}

WRAPPER_MUT_TRAITS = (*MUT_ACCESSORS, *INDEX_MUT_TRAITS, *ASSIGN_OPS)
WRAPPER_MUT_GROUPS = {
    "RangeMut": (
        "IndexRangeMut",
        "IndexFromMut",
        "IndexToMut",
        "IndexInclusiveMut",
        "IndexToInclusiveMut",
        "IndexFullMut",
    ),
    "MathAssign": ("AddAssign", "SubAssign", "MulAssign", "DivAssign", "RemAssign"),
    "BoolAssign": ("BitAndAssign", "BitOrAssign", "BitXorAssign"),
    "BitAssign": ("BitAndAssign", "BitOrAssign", "BitXorAssign", "ShlAssign", "ShrAssign"),
}
WRAPPER_MUT_DEFAULTS = ("AsMut", "BorrowMut")

# Python では可変参照を返せないため受け付けない
UNSUPPORTED = {"DerefMut": "use `set_inner` or `Deref` over a mutable inner value"}


def expand_traits(
    annotation: Annotation | None,
    known: tuple[str, ...],
    groups: dict[str, tuple[str, ...]],
    defaults: tuple[str, ...],
) -> list[str]:
    """列挙された振る舞い名をグループ展開し、重複を除いて返す（初出順）

    検証済みのアノテーションを前提とする。
    """
    traits = list(defaults)
    keys = annotation.mapping.keys() if annotation is not None and annotation.mapping is not None else []
    for key in keys:
        if key == NO_REFS:
            continue
        for name in groups.get(key, (key,)):
            if name in known and name not in traits:
                traits.append(name)
    if NO_REFS in keys:
        traits = [t for t in traits if t not in defaults]
    return traits


def check_trait_list(
    annotation: Annotation | None,
    pattern: str,
    known: tuple[str, ...],
    groups: dict[str, tuple[str, ...]],
) -> list[ValidationError]:
    """`wrapper(...)` 形式のアノテーションのキーを検証"""
    if annotation is None or annotation.mapping is None:
        return []
    errors = []
    mapping = annotation.mapping
    for key, value in mapping.items():
        span = mapping.spans.get(key)
        if value is not None:
            errors.append(
                ValidationError(
                    f"`{annotation.name}` attributes must be a list of trait names; `{key}` must not have a value",
                    element=annotation.target,
                    pattern=pattern,
                    annotation=annotation,
                    span=span,
                )
            )
        elif key in UNSUPPORTED:
            errors.append(
                ValidationError(
                    f"`{key}` is not supported; {UNSUPPORTED[key]}",
                    element=annotation.target,
                    pattern=pattern,
                    annotation=annotation,
                    span=span,
                )
            )
        elif key != NO_REFS and key not in known and key not in groups:
            errors.append(
                ValidationError(
                    f"unrecognized {annotation.name} parameter `{key}`",
                    element=annotation.target,
                    pattern=pattern,
                    annotation=annotation,
                    span=span,
                )
            )
    return errors


def _require_inner(model: SemanticModel, pattern: str) -> FieldInfo:
    """検証済みモデルの内側フィールド"""
    if model.inner_field is None:
        raise ValueError(f"derive({pattern}) requires an inner field on {model.name}")
    return model.inner_field


def _not_instance(target: str, type_name: str) -> UnaryOp:
    return UnaryOp("not", IsInstance(Arg(target), type_name))


class WrapperPattern:
    """Wrapper パターンモジュール"""

    descriptor = PatternDescriptor(
        id=WRAPPER,
        rules=(
            rule(WRAP_ATTR, {ElementKind.FIELD}, {PayloadShape.FLAG}),
            rule(WRAPPER_ATTR, {ElementKind.TYPE}, {PayloadShape.MAPPING}),
        ),
        supports_enums=False,
        supports_unit=False,
        inner_markers=frozenset({WRAP_ATTR}),
    )

    # ===== 検証 =====

    def validate(self, model: SemanticModel) -> list[ValidationError]:
        annotation = model.type_annotation(WRAPPER_ATTR)
        errors = check_trait_list(annotation, WRAPPER, WRAPPER_TRAITS, WRAPPER_GROUPS)

        inner = model.inner_field
        if inner is None:
            errors.append(
                ValidationError(
                    f"when the structure has multiple fields you must point out the one you will wrap "
                    f"by using `{WRAP_ATTR}`; found {model.field_count} fields",
                    element=model.ref,
                    pattern=WRAPPER,
                    location=model.location,
                )
            )
            return errors

        if not model.defaulted_others:
            missing = [f for f in model.fields or () if f.index != inner.index and not f.has_default]
            labels = ", ".join(f"`{f.label}`" for f in missing)
            errors.append(
                ValidationError(
                    f"fields other than the wrapped `{inner.label}` need a default value (missing: {labels})",
                    element=model.ref,
                    pattern=WRAPPER,
                    location=missing[0].location,
                )
            )

        if errors:
            return errors

        traits = expand_traits(annotation, WRAPPER_TRAITS, WRAPPER_GROUPS, WRAPPER_DEFAULTS)
        for trait in ("FromStr", "FromHex"):
            if trait in traits and model.is_generic_param(inner.type_ref):
                errors.append(
                    ValidationError(
                        f"`{trait}` needs a concrete inner type; `{inner.type_ref}` is a generic parameter",
                        element=model.ref,
                        pattern=WRAPPER,
                        annotation=annotation,
                    )
                )
        return errors

    # ===== 生成 =====

    def generate(self, model: SemanticModel) -> GenerationPlan:
        inner = _require_inner(model, WRAPPER)
        applied = model.signature.applied()
        value = FieldRef(inner.attr)

        members = []
        # From と併用する場合は From の from_inner を共有する
        if CONVERSION not in model.patterns:
            members.append(
                MethodSpec(
                    name="from_inner",
                    kind=MemberKind.CLASSMETHOD,
                    params=(Param("inner", inner.type_ref),),
                    returns=applied,
                    body=(Return(Construct(((inner.attr, Arg("inner")),))),),
                    doc="Wrap an inner value.",
                )
            )
        members.append(
            MethodSpec(
                name="as_inner",
                returns=inner.type_ref,
                body=(Return(value),),
                doc="Return the wrapped value.",
            )
        )
        members.append(
            MethodSpec(
                name="into_inner",
                returns=inner.type_ref,
                body=(Return(value),),
                doc="Unwrap into the inner value.",
            )
        )
        blocks = [GeneratedBlock(trait=WRAPPER, pattern=WRAPPER, signature=model.signature, members=tuple(members))]

        traits = expand_traits(model.type_annotation(WRAPPER_ATTR), WRAPPER_TRAITS, WRAPPER_GROUPS, WRAPPER_DEFAULTS)
        emitted: set[str] = set()
        for trait in traits:
            if trait in emitted:
                continue
            if trait in FORMAT_TRAITS:
                group = [t for t in traits if t in FORMAT_TRAITS]
                blocks.append(self._format_block(model, inner, group))
                emitted.update(group)
            elif trait in INDEX_TRAITS:
                group = [t for t in traits if t in INDEX_TRAITS]
                blocks.append(self._index_block(model, inner, group))
                emitted.update(group)
            else:
                blocks.append(
                    GeneratedBlock(
                        trait=trait,
                        pattern=WRAPPER,
                        signature=model.signature,
                        members=(self._member(trait, model, inner),),
                    )
                )
                emitted.add(trait)

        return GenerationPlan(pattern=WRAPPER, type_name=model.name, blocks=tuple(blocks))

    def _member(self, trait: str, model: SemanticModel, inner: FieldInfo) -> MethodSpec:
        value = FieldRef(inner.attr)
        applied = model.signature.applied()

        if trait == "Display":
            return MethodSpec("__str__", returns="str", body=(Return(Call(TypeName("str"), (value,))),))
        if trait == "Debug":
            return MethodSpec("__repr__", returns="str", body=(Return(Call(TypeName("repr"), (value,))),))
        if trait == "FromStr":
            parsed = Call(TypeName(inner.type_ref), (Arg("s"),))
            return MethodSpec(
                "from_str",
                kind=MemberKind.CLASSMETHOD,
                params=(Param("s", "str"),),
                returns=applied,
                body=(Return(Construct(((inner.attr, parsed),))),),
                doc=f"Parse the inner `{inner.type_ref}` from a string.",
            )
        if trait == "FromHex":
            if inner.type_ref.strip() == "int":
                parsed = Call(TypeName("int"), (Arg("s"), Literal(16)))
            else:
                parsed = Call(Attr(TypeName(inner.type_ref), "fromhex"), (Arg("s"),))
            return MethodSpec(
                "from_hex",
                kind=MemberKind.CLASSMETHOD,
                params=(Param("s", "str"),),
                returns=applied,
                body=(Return(Construct(((inner.attr, parsed),))),),
                doc=f"Parse the inner `{inner.type_ref}` from a hex string.",
            )
        if trait == "Deref":
            return MethodSpec(
                "__getattr__",
                params=(Param("name", "str"),),
                returns="object",
                body=(
                    If(
                        BinOp("==", Arg("name"), Literal(inner.attr)),
                        (Raise("AttributeError", Arg("name")),),
                    ),
                    Return(Call(TypeName("getattr"), (value, Arg("name")))),
                ),
                doc="Delegate attribute lookup to the wrapped value.",
            )
        if trait in REF_ACCESSORS:
            method, converter = REF_ACCESSORS[trait]
            body = value if converter is None else Call(TypeName(converter), (value,))
            return MethodSpec(method, returns=converter or inner.type_ref, body=(Return(body),))
        if trait in UNARY_OPS:
            method, op = UNARY_OPS[trait]
            return MethodSpec(
                method,
                returns=applied,
                body=(Return(Replace(((inner.attr, UnaryOp(op, value)),))),),
            )
        if trait in BINARY_OPS:
            method, op = BINARY_OPS[trait]
            combined = BinOp(op, value, FieldRef(inner.attr, Arg("other")))
            return MethodSpec(
                method,
                params=(Param("other", applied),),
                returns=applied,
                body=(
                    If(_not_instance("other", model.name), (Return(TypeName("NotImplemented")),)),
                    Return(Replace(((inner.attr, combined),))),
                ),
            )
        raise ValueError(f"Unknown wrapper trait: {trait}")

    def _format_block(self, model: SemanticModel, inner: FieldInfo, traits: list[str]) -> GeneratedBlock:
        codes = tuple(FORMAT_TRAITS[t] for t in traits)
        body: tuple[Stmt, ...] = (
            If(UnaryOp("not", Arg("spec")), (Return(Call(TypeName("str"), (SelfRef(),))),)),
            If(
                Call(Attr(Arg("spec"), "endswith"), (Literal(codes),)),
                (Return(Call(TypeName("format"), (FieldRef(inner.attr), Arg("spec")))),),
            ),
            Raise("ValueError", Literal(f"unsupported format specification for {model.name}")),
        )
        method = MethodSpec(
            "__format__",
            params=(Param("spec", "str"),),
            returns="str",
            body=body,
            doc=f"Format the wrapped value with the `{'`, `'.join(codes)}` presentation types.",
        )
        return GeneratedBlock(
            trait=traits[0],
            pattern=WRAPPER,
            signature=model.signature,
            members=(method,),
            aliases=tuple(traits[1:]),
        )

    def _index_block(self, model: SemanticModel, inner: FieldInfo, traits: list[str]) -> GeneratedBlock:
        body: list[Stmt] = []
        if "Index" not in traits:
            body.append(
                If(
                    _not_instance("key", "slice"),
                    (Raise("TypeError", Literal(f"{model.name} supports slice keys only")),),
                )
            )
        elif len(traits) == 1:
            body.append(
                If(
                    IsInstance(Arg("key"), "slice"),
                    (Raise("TypeError", Literal(f"{model.name} does not support slicing")),),
                )
            )
        body.append(Return(Index(FieldRef(inner.attr), Arg("key"))))
        method = MethodSpec(
            "__getitem__",
            params=(Param("key", "int | slice"),),
            returns="object",
            body=tuple(body),
            doc="Index into the wrapped value.",
        )
        return GeneratedBlock(
            trait=traits[0],
            pattern=WRAPPER,
            signature=model.signature,
            members=(method,),
            aliases=tuple(traits[1:]),
        )


class WrapperMutPattern:
    """WrapperMut パターンモジュール（Wrapper と同時に要求すること）"""

    descriptor = PatternDescriptor(
        id=WRAPPER_MUT,
        rules=(rule(WRAPPER_MUT_ATTR, {ElementKind.TYPE}, {PayloadShape.MAPPING}),),
        supports_enums=False,
        supports_unit=False,
        requires=(WRAPPER,),
        inner_markers=frozenset({WRAP_ATTR}),
    )

    def validate(self, model: SemanticModel) -> list[ValidationError]:
        # 内側フィールドの欠如は Wrapper 側で報告される
        return check_trait_list(
            model.type_annotation(WRAPPER_MUT_ATTR), WRAPPER_MUT, WRAPPER_MUT_TRAITS, WRAPPER_MUT_GROUPS
        )

    def generate(self, model: SemanticModel) -> GenerationPlan:
        inner = _require_inner(model, WRAPPER_MUT)
        value = FieldRef(inner.attr)

        blocks = [
            GeneratedBlock(
                trait=WRAPPER_MUT,
                pattern=WRAPPER_MUT,
                signature=model.signature,
                members=(
                    MethodSpec(
                        name="set_inner",
                        params=(Param("value", inner.type_ref),),
                        returns="None",
                        body=(AssignField(inner.attr, Arg("value")),),
                        doc="Replace the wrapped value in place.",
                    ),
                    MethodSpec(
                        name="replace_inner",
                        params=(Param("value", inner.type_ref),),
                        returns=inner.type_ref,
                        body=(
                            Assign("previous", value),
                            AssignField(inner.attr, Arg("value")),
                            Return(Arg("previous")),
                        ),
                        doc="Replace the wrapped value and return the previous one.",
                    ),
                ),
            )
        ]

        traits = expand_traits(
            model.type_annotation(WRAPPER_MUT_ATTR), WRAPPER_MUT_TRAITS, WRAPPER_MUT_GROUPS, WRAPPER_MUT_DEFAULTS
        )
        index_traits = [t for t in traits if t in INDEX_MUT_TRAITS]
        for trait in traits:
            if trait in MUT_ACCESSORS:
                method, converter = MUT_ACCESSORS[trait]
                body = value if converter is None else Call(TypeName(converter), (value,))
                members = (MethodSpec(method, returns=converter or inner.type_ref, body=(Return(body),)),)
                blocks.append(GeneratedBlock(trait, WRAPPER_MUT, model.signature, members))
            elif trait in ASSIGN_OPS:
                blocks.append(GeneratedBlock(trait, WRAPPER_MUT, model.signature, (self._assign_op(trait, model, inner),)))
            elif trait == index_traits[0]:
                blocks.append(self._index_mut_block(model, inner, index_traits))

        return GenerationPlan(pattern=WRAPPER_MUT, type_name=model.name, blocks=tuple(blocks))

    def _assign_op(self, trait: str, model: SemanticModel, inner: FieldInfo) -> MethodSpec:
        method, op = ASSIGN_OPS[trait]
        applied = model.signature.applied()
        combined = BinOp(op, FieldRef(inner.attr), FieldRef(inner.attr, Arg("other")))
        return MethodSpec(
            method,
            params=(Param("other", applied),),
            returns=applied,
            body=(
                If(_not_instance("other", model.name), (Return(TypeName("NotImplemented")),)),
                AssignField(inner.attr, combined),
                Return(SelfRef()),
            ),
        )

    def _index_mut_block(self, model: SemanticModel, inner: FieldInfo, traits: list[str]) -> GeneratedBlock:
        body: list[Stmt] = []
        if "IndexMut" not in traits:
            body.append(
                If(
                    _not_instance("key", "slice"),
                    (Raise("TypeError", Literal(f"{model.name} supports slice assignment only")),),
                )
            )
        elif len(traits) == 1:
            body.append(
                If(
                    IsInstance(Arg("key"), "slice"),
                    (Raise("TypeError", Literal(f"{model.name} does not support slice assignment")),),
                )
            )
        body.append(AssignIndex(FieldRef(inner.attr), Arg("key"), Arg("value")))
        method = MethodSpec(
            "__setitem__",
            params=(Param("key", "int | slice"), Param("value", "object")),
            returns="None",
            body=tuple(body),
            doc="Assign into the wrapped value.",
        )
        return GeneratedBlock(
            trait=traits[0],
            pattern=WRAPPER_MUT,
            signature=model.signature,
            members=(method,),
            aliases=tuple(traits[1:]),
        )
