"""Attribute Grammar: アノテーション文字列→Annotation 変換

認識する構文:

    annotation := IDENT [ '=' literal | '(' literal ')' | '(' items? ')' ]
    items      := item (',' item)* [',']
    item       := IDENT [ '=' value ]
    value      := literal | path
    path       := IDENT (('::' | '.') IDENT)*
    literal    := STRING | INTEGER | FLOAT | 'true' | 'false'

ペイロード形状は先頭のトークン列から一意に決まる（FLAG / SCALAR / MAPPING）。
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any

from derivetool.core.base.annotations import Annotation, Mapping, Path, PayloadShape, Span
from derivetool.core.base.ir import ElementRef, RawAnnotation, SourceLocation
from derivetool.core.engine.diagnostics import ParseError


class TokType(Enum):
    IDENT = auto()
    STRING = auto()
    INTEGER = auto()
    FLOAT = auto()
    LPAREN = auto()  # (
    RPAREN = auto()  # )
    COMMA = auto()  # ,
    EQ = auto()  # =
    PATHSEP = auto()  # :: または .
    EOF = auto()


@dataclass
class Token:
    type: TokType
    value: Any
    start: int
    end: int


_IDENT_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_NUMBER_RE = re.compile(r"-?\d+(\.\d+)?([eE][-+]?\d+)?")
_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "\\": "\\", '"': '"', "'": "'", "0": "\0"}
_PUNCT = {"(": TokType.LPAREN, ")": TokType.RPAREN, ",": TokType.COMMA, "=": TokType.EQ}
_LITERAL_TYPES = {TokType.STRING, TokType.INTEGER, TokType.FLOAT}
_BOOLEANS = {"true": True, "false": False}


def _read_string(text: str, start: int) -> tuple[str, int]:
    """引用符で囲まれた文字列を読み取る（エスケープ解除込み）

    Returns:
        (文字列値, 終端引用符の次の位置)
    """
    quote = text[start]
    chars: list[str] = []
    i = start + 1
    while i < len(text):
        ch = text[i]
        if ch == "\\":
            if i + 1 >= len(text):
                break
            nxt = text[i + 1]
            if nxt not in _ESCAPES:
                raise ParseError(f"unknown escape sequence `\\{nxt}`", Span(i, i + 2), text)
            chars.append(_ESCAPES[nxt])
            i += 2
            continue
        if ch == quote:
            return "".join(chars), i + 1
        chars.append(ch)
        i += 1
    raise ParseError("unterminated string literal", Span(start, len(text)), text)


def tokenize(text: str) -> list[Token]:
    """アノテーション文字列をトークン列に分解

    Raises:
        ParseError: 未終端の文字列、未知の文字
    """
    tokens: list[Token] = []
    i = 0
    n = len(text)

    while i < n:
        ch = text[i]

        if ch.isspace():
            i += 1
            continue

        if ch in _PUNCT:
            tokens.append(Token(_PUNCT[ch], ch, i, i + 1))
            i += 1
            continue

        if text.startswith("::", i):
            tokens.append(Token(TokType.PATHSEP, "::", i, i + 2))
            i += 2
            continue

        if ch == "." and i + 1 < n and not text[i + 1].isdigit():
            tokens.append(Token(TokType.PATHSEP, ".", i, i + 1))
            i += 1
            continue

        if ch in "\"'":
            value, end = _read_string(text, i)
            tokens.append(Token(TokType.STRING, value, i, end))
            i = end
            continue

        number = _NUMBER_RE.match(text, i)
        if number and (ch.isdigit() or ch == "-"):
            raw = number.group(0)
            out_of_range = ParseError("numeric literal out of range", Span(i, number.end()), text)
            if number.group(1) or number.group(2):
                value = float(raw)
                # inf は正規化テキストから再解析できない
                if not math.isfinite(value):
                    raise out_of_range
                tokens.append(Token(TokType.FLOAT, value, i, number.end()))
            else:
                try:
                    tokens.append(Token(TokType.INTEGER, int(raw), i, number.end()))
                except ValueError as e:
                    raise out_of_range from e
            i = number.end()
            continue

        ident = _IDENT_RE.match(text, i)
        if ident:
            tokens.append(Token(TokType.IDENT, ident.group(0), i, ident.end()))
            i = ident.end()
            continue

        raise ParseError(f"unexpected character `{ch}`", Span(i, i + 1), text)

    tokens.append(Token(TokType.EOF, None, n, n))
    return tokens


class _Parser:
    """トークン列を 1 つの Annotation に組み立てる再帰下降パーサ"""

    def __init__(self, text: str, tokens: list[Token]):
        self.text = text
        self.tokens = tokens
        self.pos = 0

    def peek(self, offset: int = 0) -> Token:
        index = min(self.pos + offset, len(self.tokens) - 1)
        return self.tokens[index]

    def advance(self) -> Token:
        token = self.peek()
        if token.type is not TokType.EOF:
            self.pos += 1
        return token

    def error(self, reason: str, token: Token) -> ParseError:
        end = max(token.end, token.start + 1)
        return ParseError(reason, Span(token.start, end), self.text)

    def is_literal(self, token: Token) -> bool:
        return token.type in _LITERAL_TYPES or (token.type is TokType.IDENT and token.value in _BOOLEANS)

    def literal(self, token: Token) -> Any:  # noqa: ANN401
        if token.type is TokType.IDENT:
            return _BOOLEANS[token.value]
        return token.value

    def expect_end(self) -> None:
        token = self.peek()
        if token.type is not TokType.EOF:
            raise self.error(f"unexpected trailing input `{self.text[token.start:]}`", token)

    def parse(self) -> Annotation:
        head = self.advance()
        if head.type is TokType.EOF:
            raise ParseError("annotation is empty", Span(0, max(1, len(self.text))), self.text)
        if head.type is not TokType.IDENT or head.value in _BOOLEANS:
            raise self.error("annotation must start with a name", head)
        if self.peek().type is TokType.PATHSEP:
            raise self.error("annotation name must be an identifier, not a path", self.peek())

        name = head.value
        token = self.peek()

        # name
        if token.type is TokType.EOF:
            return Annotation(name=name, shape=PayloadShape.FLAG, text=self.text)

        # name = literal
        if token.type is TokType.EQ:
            self.advance()
            value_token = self.advance()
            if not self.is_literal(value_token):
                if value_token.type is TokType.EOF:
                    raise self.error(f"expected a literal value after `{name} =`", value_token)
                raise self.error("singular annotation value must be a literal (string, number, boolean)", value_token)
            self.expect_end()
            return Annotation(name=name, shape=PayloadShape.SCALAR, value=self.literal(value_token), text=self.text)

        # name(...)
        if token.type is TokType.LPAREN:
            open_token = self.advance()
            if self.is_literal(self.peek()) and self.peek(1).type is TokType.RPAREN:
                value = self.literal(self.advance())
                self.advance()
                self.expect_end()
                return Annotation(name=name, shape=PayloadShape.SCALAR, value=value, text=self.text)
            mapping = self.parse_items(open_token)
            self.expect_end()
            return Annotation(name=name, shape=PayloadShape.MAPPING, mapping=mapping, text=self.text)

        raise self.error(f"expected `=`, `(` or end of annotation after `{name}`", token)

    def parse_items(self, open_token: Token) -> Mapping:
        mapping = Mapping()
        while True:
            token = self.peek()
            if token.type is TokType.RPAREN:
                self.advance()
                return mapping
            if token.type is TokType.EOF:
                raise ParseError(
                    "unterminated group; missing `)`", Span(open_token.start, len(self.text)), self.text
                )
            if self.is_literal(token):
                raise self.error("unexpected literal; expected a key", token)
            if token.type is not TokType.IDENT:
                raise self.error(f"unexpected `{self.text[token.start:token.end]}`; expected a key", token)

            key_token = self.advance()
            key = key_token.value
            nxt = self.peek()
            if nxt.type is TokType.PATHSEP:
                raise self.error(f"keys must be identifiers, not paths (near `{key}`)", nxt)
            if nxt.type is TokType.LPAREN:
                raise self.error(f"nested lists are not supported (`{key}(...)`)", nxt)

            value: Any = None
            end = key_token.end
            if nxt.type is TokType.EQ:
                self.advance()
                value, end = self.parse_value(key)

            if key in mapping:
                raise ParseError(f"duplicate key `{key}`", Span(key_token.start, end), self.text)
            mapping.entries[key] = value
            mapping.spans[key] = Span(key_token.start, end)

            sep = self.peek()
            if sep.type is TokType.COMMA:
                self.advance()
            elif sep.type is TokType.EOF:
                raise ParseError(
                    "unterminated group; missing `)`", Span(open_token.start, len(self.text)), self.text
                )
            elif sep.type is not TokType.RPAREN:
                raise self.error("expected `,` or `)`", sep)

    def parse_value(self, key: str) -> tuple[Any, int]:
        token = self.advance()
        if self.is_literal(token):
            return self.literal(token), token.end
        if token.type is TokType.IDENT:
            segments = [token.value]
            separator = "::"
            end = token.end
            while self.peek().type is TokType.PATHSEP:
                separator = self.advance().value
                segment = self.advance()
                if segment.type is not TokType.IDENT:
                    raise self.error("expected an identifier in path", segment)
                segments.append(segment.value)
                end = segment.end
            if self.peek().type is TokType.LPAREN:
                raise self.error(f"nested lists are not supported (`{key} = ...(...)`)", self.peek())
            return Path(tuple(segments), separator), end
        if token.type is TokType.EOF:
            raise self.error(f"expected a value after `{key} =`", token)
        raise self.error(f"expected a literal or path value for `{key}`", token)


def parse(
    text: str,
    target: ElementRef | None = None,
    location: SourceLocation | None = None,
) -> Annotation:
    """アノテーション文字列をパース

    Args:
        text: 生のアノテーション文字列
        target: 付与先の要素
        location: 定義位置

    Returns:
        Annotation

    Raises:
        ParseError: 構文エラー（範囲付き）
    """
    try:
        annotation = _Parser(text, tokenize(text)).parse()
    except ParseError as exc:
        exc.element = target
        if location is not None:
            exc.location = location
        raise
    annotation.target = target
    if location is not None:
        annotation.location = location
    return annotation


def parse_annotations(
    raws: list[RawAnnotation], target: ElementRef
) -> tuple[list[Annotation], list[ParseError]]:
    """要素に付与された全アノテーションをパース

    1 つの失敗で残りを止めず、全ての ParseError を収集する。

    Returns:
        (パース済みアノテーション, エラーリスト)
    """
    annotations: list[Annotation] = []
    errors: list[ParseError] = []
    for raw in raws:
        try:
            annotations.append(parse(raw.text, target, raw.location))
        except ParseError as exc:
            errors.append(exc)
    return annotations, errors


# ===== 正規化テキストへの逆変換 =====


def _render_string(value: str) -> str:
    escaped = []
    for ch in value:
        if ch == "\\":
            escaped.append("\\\\")
        elif ch == '"':
            escaped.append('\\"')
        elif ch == "\n":
            escaped.append("\\n")
        elif ch == "\t":
            escaped.append("\\t")
        elif ch == "\r":
            escaped.append("\\r")
        elif ch == "\0":
            escaped.append("\\0")
        else:
            escaped.append(ch)
    return '"' + "".join(escaped) + '"'


def render_value(value: Any) -> str:  # noqa: ANN401
    """値を正規化テキストに変換"""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return _render_string(value)
    if isinstance(value, (int, float)):
        return repr(value)
    if isinstance(value, Path):
        return str(value)
    raise TypeError(f"Unsupported annotation value: {value!r}")


def render(annotation: Annotation) -> str:
    """Annotation を正規化されたアノテーション文字列に変換

    `parse(render(a)) == a` が成り立つ。
    """
    if annotation.shape is PayloadShape.FLAG:
        return annotation.name
    if annotation.shape is PayloadShape.SCALAR:
        return f"{annotation.name} = {render_value(annotation.value)}"

    items = []
    mapping = annotation.mapping or Mapping()
    for key, value in mapping.items():
        items.append(key if value is None else f"{key} = {render_value(value)}")
    return f"{annotation.name}({', '.join(items)})"
