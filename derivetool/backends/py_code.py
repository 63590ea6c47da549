"""Code Synthesizer: GenerationPlan→Pythonソース断片

生成計画の各ブロックを `@implement(Target, "Trait")` で装飾したクラスとして出力する。
ブロックは元の型名とジェネリクスシグネチャ（境界込み）をヘッダコメントに保持する。

定義バックエンド（render_definition）は TypeDefinition を dataclass として出力し、
render_module で定義と断片を 1 つのインポート可能なモジュールにまとめる。
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any

from derivetool.core.base.ir import FieldDef, TypeDefinition
from derivetool.core.base.plan import (
    Arg,
    Assign,
    AssignField,
    AssignIndex,
    Attr,
    BinOp,
    Call,
    Concat,
    Construct,
    Expr,
    FieldRef,
    GeneratedBlock,
    GenerationPlan,
    GenericSignature,
    If,
    Index,
    IsInstance,
    IsVariant,
    Literal,
    MemberKind,
    MethodSpec,
    Raise,
    Replace,
    Return,
    SelfRef,
    Stmt,
    TypeName,
    UnaryOp,
)

if TYPE_CHECKING:
    from derivetool.core.engine.pipeline import DefinitionResult

INDENT = "    "
IMPLEMENT_IMPORT = "from derivetool.runtime import implement"
_MODULE_IMPORTS = {"copy.deepcopy": "import copy"}
_CLASS_NAME_RE = re.compile(r"\W+")


def render_imports(imports: set[str]) -> str:
    """インポート文を整形して返す"""
    if not imports:
        return ""
    lines = set(imports)
    if "from dataclasses import dataclass, field" in lines:
        lines.discard("from dataclasses import dataclass")
    return "\n".join(sorted(lines))


def build_file_content(imports: set[str], sections: list[str], title: str = "") -> str:
    """ファイルコンテンツを構築

    Args:
        imports: インポート文のセット
        sections: コードセクションのリスト
        title: ヘッダ docstring の 1 行目

    Returns:
        完成したファイルコンテンツ
    """
    header = [
        f'"""{title or "Generated implementations"}',
        "",
        "This file is generated by derivetool. Do not edit by hand.",
        '"""',
        "",
        "from __future__ import annotations",
        "",
    ]
    body = "\n\n\n".join(section.rstrip("\n") for section in sections)
    imports_text = render_imports(imports)
    parts = "\n".join(header)
    if imports_text:
        parts += imports_text + "\n"
    return parts + "\n\n" + body + "\n"


# ===== 式・文のレンダリング =====


class _Context:
    """1 メソッド分のレンダリング文脈"""

    def __init__(self, type_name: str, member: MethodSpec, imports: set[str]):
        self.type_name = type_name
        self.member = member
        self.imports = imports

    @property
    def constructor(self) -> str:
        return "cls" if self.member.kind is MemberKind.CLASSMETHOD else "type(self)"


def _escape_text(text: str) -> str:
    """f-string / 文字列リテラル（ダブルクォート）内のテキストをエスケープ"""
    out = []
    for ch in text:
        if ch == "\\":
            out.append("\\\\")
        elif ch == '"':
            out.append('\\"')
        elif ch == "\n":
            out.append("\\n")
        elif ch == "\t":
            out.append("\\t")
        elif ch == "\r":
            out.append("\\r")
        elif not ch.isprintable():
            out.append(f"\\x{ord(ch):02x}" if ord(ch) < 0x100 else f"\\u{ord(ch):04x}")
        else:
            out.append(ch)
    return "".join(out)


def _render_literal(value: Any) -> str:  # noqa: ANN401
    if isinstance(value, str):
        return f'"{_escape_text(value)}"'
    return repr(value)


def _wrap(expr: Expr, ctx: _Context) -> str:
    """二項・単項演算のオペランドは括弧で囲む"""
    text = render_expr(expr, ctx)
    if isinstance(expr, (BinOp, UnaryOp)):
        return f"({text})"
    return text


def _render_concat(expr: Concat, ctx: _Context) -> str:
    if not expr.parts:
        return '""'
    if all(isinstance(p, Literal) for p in expr.parts):
        return _render_literal("".join(str(p.value) for p in expr.parts))  # type: ignore[union-attr]

    pieces = []
    for part in expr.parts:
        if isinstance(part, Literal):
            pieces.append(_escape_text(str(part.value)).replace("{", "{{").replace("}", "}}"))
        elif isinstance(part, Call) and part.func == TypeName("str") and len(part.args) == 1:
            pieces.append(f"{{{render_expr(part.args[0], ctx)}!s}}")
        else:
            pieces.append(f"{{{render_expr(part, ctx)}}}")
    return 'f"' + "".join(pieces) + '"'


def render_expr(expr: Expr, ctx: _Context) -> str:
    """式をPythonソースに変換"""
    if isinstance(expr, SelfRef):
        return "self"
    if isinstance(expr, FieldRef):
        owner = "self" if expr.owner is None else _wrap(expr.owner, ctx)
        return f"{owner}.{expr.name}"
    if isinstance(expr, Arg):
        return expr.name
    if isinstance(expr, Literal):
        return _render_literal(expr.value)
    if isinstance(expr, TypeName):
        if expr.name in _MODULE_IMPORTS:
            ctx.imports.add(_MODULE_IMPORTS[expr.name])
        return expr.name
    if isinstance(expr, Call):
        args = [render_expr(a, ctx) for a in expr.args]
        args.extend(f"{key}={render_expr(value, ctx)}" for key, value in expr.kwargs)
        return f"{render_expr(expr.func, ctx)}({', '.join(args)})"
    if isinstance(expr, Attr):
        return f"{_wrap(expr.target, ctx)}.{expr.name}"
    if isinstance(expr, BinOp):
        return f"{_wrap(expr.left, ctx)} {expr.op} {_wrap(expr.right, ctx)}"
    if isinstance(expr, UnaryOp):
        if expr.op == "not":
            return f"not {_wrap(expr.operand, ctx)}"
        return f"{expr.op}{_wrap(expr.operand, ctx)}"
    if isinstance(expr, Concat):
        return _render_concat(expr, ctx)
    if isinstance(expr, Construct):
        target = ctx.constructor if expr.variant is None else f"{ctx.constructor}.{expr.variant}"
        args = ", ".join(f"{key}={render_expr(value, ctx)}" for key, value in expr.kwargs)
        return f"{target}({args})"
    if isinstance(expr, Replace):
        ctx.imports.add("import dataclasses")
        changes = ", ".join(f"{key}={render_expr(value, ctx)}" for key, value in expr.changes)
        return f"dataclasses.replace(self, {changes})"
    if isinstance(expr, IsInstance):
        return f"isinstance({render_expr(expr.target, ctx)}, {expr.type_name})"
    if isinstance(expr, Index):
        return f"{_wrap(expr.target, ctx)}[{render_expr(expr.key, ctx)}]"
    if isinstance(expr, IsVariant):
        return f"isinstance(self, {ctx.type_name}.{expr.variant})"
    raise TypeError(f"Unsupported expression: {expr!r}")


def render_stmts(stmts: tuple[Stmt, ...], ctx: _Context, depth: int) -> list[str]:
    """文リストをインデント付きの行に変換"""
    pad = INDENT * depth
    lines: list[str] = []
    for stmt in stmts:
        if isinstance(stmt, Return):
            lines.append(f"{pad}return {render_expr(stmt.value, ctx)}")
        elif isinstance(stmt, AssignField):
            lines.append(f"{pad}self.{stmt.name} = {render_expr(stmt.value, ctx)}")
        elif isinstance(stmt, Assign):
            lines.append(f"{pad}{stmt.name} = {render_expr(stmt.value, ctx)}")
        elif isinstance(stmt, AssignIndex):
            target = _wrap(stmt.target, ctx)
            lines.append(f"{pad}{target}[{render_expr(stmt.key, ctx)}] = {render_expr(stmt.value, ctx)}")
        elif isinstance(stmt, If):
            lines.append(f"{pad}if {render_expr(stmt.condition, ctx)}:")
            lines.extend(render_stmts(stmt.body, ctx, depth + 1) or [f"{pad}{INDENT}pass"])
            if stmt.orelse:
                lines.append(f"{pad}else:")
                lines.extend(render_stmts(stmt.orelse, ctx, depth + 1))
        elif isinstance(stmt, Raise):
            lines.append(f"{pad}raise {stmt.exc_type}({render_expr(stmt.message, ctx)})")
        else:
            raise TypeError(f"Unsupported statement: {stmt!r}")
    return lines


def render_member(member: MethodSpec, type_name: str, imports: set[str]) -> list[str]:
    """メンバー定義（デコレータ・シグネチャ・docstring・本体）を行に変換"""
    ctx = _Context(type_name, member, imports)
    receiver = "cls" if member.kind is MemberKind.CLASSMETHOD else "self"
    params = [receiver]
    for param in member.params:
        params.append(f"{param.name}: {param.annotation}" if param.annotation else param.name)
    returns = f" -> {member.returns}" if member.returns else ""

    lines = []
    if member.kind is MemberKind.CLASSMETHOD:
        lines.append(f"{INDENT}@classmethod")
    elif member.kind is MemberKind.PROPERTY:
        lines.append(f"{INDENT}@property")
    lines.append(f"{INDENT}def {member.name}({', '.join(params)}){returns}:")
    if member.doc:
        lines.append(f'{INDENT * 2}"""{_escape_text(member.doc)}"""')
    body = render_stmts(member.body, ctx, 2)
    if not body and not member.doc:
        body = [f"{INDENT * 2}pass"]
    lines.extend(body)
    return lines


def _block_class_name(type_name: str, trait: str) -> str:
    return f"_{type_name}_{_CLASS_NAME_RE.sub('_', trait).strip('_')}"


def _block_header(block: GeneratedBlock, signature: GenericSignature) -> str:
    traits = " + ".join(block.traits)
    generics = signature.declaration()
    prefix = f"impl[{generics}]" if generics else "impl"
    return f"# {prefix} {traits} for {signature.applied()}"


def render_block(block: GeneratedBlock, signature: GenericSignature, imports: set[str]) -> str:
    """実装ブロック 1 つをソース断片に変換"""
    imports.add(IMPLEMENT_IMPORT)
    trait_args = ", ".join(_render_literal(t) for t in block.traits)
    lines = [
        _block_header(block, signature),
        f"@implement({signature.type_name}, {trait_args})",
        f"class {_block_class_name(signature.type_name, block.trait)}:",
    ]
    if not block.members:
        lines.append(f"{INDENT}pass")
    for i, member in enumerate(block.members):
        if i:
            lines.append("")
        lines.extend(render_member(member, signature.type_name, imports))
    return "\n".join(lines) + "\n"


def render_plan(
    plan: GenerationPlan, signature: GenericSignature | None = None, imports: set[str] | None = None
) -> list[str]:
    """生成計画をソース断片の列に変換

    Args:
        plan: 生成計画
        signature: 元の型のジェネリクスシグネチャ（省略時は各ブロックのもの）
        imports: 必要なインポート文を蓄積するセット

    Returns:
        ブロックごとのソース断片（計画の順序）
    """
    if imports is None:
        imports = set()
    return [render_block(block, signature or block.signature, imports) for block in plan.blocks]


# ===== 定義バックエンド =====


def _render_default(fdef: FieldDef, imports: set[str]) -> str:
    if isinstance(fdef.default, (list, dict, set)):
        imports.add("from dataclasses import dataclass, field")
        return f"field(default_factory=lambda: {fdef.default!r})"
    return _render_literal(fdef.default)


def _render_fields(fields: list[FieldDef], imports: set[str]) -> tuple[list[str], bool]:
    """フィールド行を生成

    Returns:
        (行リスト, kw_only が必要か)
    """
    lines = []
    seen_default = False
    kw_only = False
    for index, fdef in enumerate(fields):
        attr = fdef.name if fdef.name is not None else f"_{index}"
        if fdef.has_default:
            seen_default = True
            lines.append(f"{INDENT}{attr}: {fdef.type_ref} = {_render_default(fdef, imports)}")
        else:
            kw_only = kw_only or seen_default
            lines.append(f"{INDENT}{attr}: {fdef.type_ref}")
    return lines, kw_only


def _dataclass_decorator(kw_only: bool, is_error: bool) -> str:
    options = []
    if is_error:
        options.append("eq=False")
    if kw_only:
        options.append("kw_only=True")
    return f"@dataclass({', '.join(options)})" if options else "@dataclass"


def _bases(definition: TypeDefinition, imports: set[str], is_error: bool) -> str:
    bases = []
    if is_error:
        bases.append("Exception")
    if definition.generics:
        imports.add("from typing import Generic, TypeVar")
        bases.append(f"Generic[{', '.join(g.name for g in definition.generics)}]")
    return f"({', '.join(bases)})" if bases else ""


def _render_typevars(definition: TypeDefinition) -> list[str]:
    lines = []
    for generic in definition.generics:
        if len(generic.bounds) == 1:
            lines.append(f'{generic.name} = TypeVar("{generic.name}", bound="{generic.bounds[0]}")')
        elif generic.bounds:
            lines.append(f'{generic.name} = TypeVar("{generic.name}")  # bounds: {" + ".join(generic.bounds)}')
        else:
            lines.append(f'{generic.name} = TypeVar("{generic.name}")')
    return lines


def render_definition(definition: TypeDefinition, imports: set[str]) -> str:
    """型定義を dataclass として出力

    enum 形式は基底クラスとバリアントごとの dataclass を生成し、
    バリアントを `Type.Variant` として基底クラスに取り付ける。
    Error パターンを要求した型は Exception を基底に持つ。
    """
    is_error = "Error" in definition.derives
    imports.add("from dataclasses import dataclass")

    lines = _render_typevars(definition)
    if lines:
        lines.append("")
        lines.append("")

    doc = f'{INDENT}"""{_escape_text(definition.description)}"""' if definition.description else None

    if definition.variants is None:
        field_lines, kw_only = _render_fields(definition.fields or [], imports)
        lines.append(_dataclass_decorator(kw_only, is_error))
        lines.append(f"class {definition.name}{_bases(definition, imports, is_error)}:")
        if doc:
            lines.append(doc)
        lines.extend(field_lines)
        if not doc and not field_lines:
            lines.append(f"{INDENT}pass")
        return "\n".join(lines) + "\n"

    lines.append(f"class {definition.name}{_bases(definition, imports, is_error)}:")
    lines.append(doc or f"{INDENT}pass")
    for variant in definition.variants:
        class_name = f"_{definition.name}_{variant.name}"
        field_lines, kw_only = _render_fields(variant.fields, imports)
        lines.extend(["", ""])
        lines.append(_dataclass_decorator(kw_only, is_error))
        lines.append(f"class {class_name}({definition.name}):")
        lines.extend(field_lines or [f"{INDENT}pass"])
        lines.extend(["", ""])
        lines.append(f'{class_name}.__name__ = "{variant.name}"')
        lines.append(f'{class_name}.__qualname__ = "{definition.name}.{variant.name}"')
        lines.append(f"{definition.name}.{variant.name} = {class_name}")
    return "\n".join(lines) + "\n"


def render_module(
    results: list[DefinitionResult], include_definitions: bool = True, title: str = ""
) -> str:
    """成功した定義の結果を 1 つのモジュールにまとめる

    Args:
        results: パイプラインの結果（入力順）
        include_definitions: 型定義そのものも出力するか
        title: ヘッダ docstring の 1 行目

    Returns:
        インポート可能なモジュールのソース
    """
    imports: set[str] = set()
    sections: list[str] = []
    for result in results:
        if not result.ok:
            continue
        imports.update(result.imports)
        if include_definitions and result.definition is not None:
            sections.append(render_definition(result.definition, imports))
        sections.extend(result.fragments)
    return build_file_content(imports, sections, title)
