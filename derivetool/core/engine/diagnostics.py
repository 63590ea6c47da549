"""診断: エラー型と利用者向けメッセージ生成

パイプラインのどの段階の失敗も、定義元（要素・アノテーション）に紐付いた
1 文のメッセージと位置情報に変換する。
"""

from __future__ import annotations

from derivetool.core.base.annotations import Annotation, Span
from derivetool.core.base.ir import ElementRef, SourceLocation


class DeriveError(Exception):
    """derivetool のエラー基底クラス"""

    def __init__(self, reason: str, location: SourceLocation | None = None):
        super().__init__(reason)
        self.reason = reason
        self.location = location or SourceLocation()

    def sentence(self) -> str:
        """1 文のメッセージ"""
        return self.reason


class LoaderError(DeriveError):
    """定義ファイルの構造エラー（個々の型定義より前の段階）"""


class ParseError(DeriveError):
    """アノテーション構文エラー

    Attributes:
        reason: 理由
        span: アノテーション文字列内の位置
        text: 元のアノテーション文字列
    """

    def __init__(
        self,
        reason: str,
        span: Span,
        text: str = "",
        location: SourceLocation | None = None,
        element: ElementRef | None = None,
    ):
        super().__init__(reason, location)
        self.span = span
        self.text = text
        self.element = element

    def sentence(self) -> str:
        prefix = f"malformed annotation `{self.text}`" if self.text else "malformed annotation"
        if self.element is not None:
            prefix += f" on {self.element.describe()}"
        return f"{prefix}: {self.reason}"

    def __str__(self) -> str:
        return self.sentence()


class ValidationError(DeriveError):
    """整形式だがパターン要件に合わないアノテーション、またはパターン間の矛盾

    Attributes:
        reason: 理由
        element: 問題の要素
        pattern: 関係するパターンID
        annotation: 関係するアノテーション
        expected_shape: 期待されたペイロード形状
        found_shape: 実際のペイロード形状（"absent" は未指定）
    """

    def __init__(
        self,
        reason: str,
        element: ElementRef | None = None,
        pattern: str | None = None,
        annotation: Annotation | None = None,
        expected_shape: str | None = None,
        found_shape: str | None = None,
        location: SourceLocation | None = None,
        span: Span | None = None,
    ):
        if location is None and annotation is not None:
            location = annotation.location
        super().__init__(reason, location)
        self.element = element
        self.pattern = pattern
        self.annotation = annotation
        self.expected_shape = expected_shape
        self.found_shape = found_shape
        self.span = span

    def sentence(self) -> str:
        parts = []
        if self.pattern:
            parts.append(f"derive({self.pattern})")
        if self.element is not None:
            parts.append(self.element.describe())
        head = ", ".join(parts)
        text = f"{head}: {self.reason}" if head else self.reason
        if self.expected_shape and self.found_shape:
            text += f" (expected {self.expected_shape}, found {self.found_shape})"
        return text

    def __str__(self) -> str:
        return self.sentence()


def _underline(text: str, span: Span) -> list[str]:
    """アノテーション文字列の下に ^ で範囲を示す"""
    start = max(0, min(span.start, len(text)))
    end = max(start + 1, min(span.end, len(text) + 1))
    return [f"    | {text}", f"    | {' ' * start}{'^' * (end - start)}"]


def report(error: DeriveError) -> str:
    """エラーを位置付きの利用者向けメッセージに変換

    Args:
        error: 報告するエラー

    Returns:
        `file:line: error: <文>` 形式のメッセージ（範囲があれば下線付き）
    """
    lines = [f"{error.location}: error: {error.sentence()}"]

    if isinstance(error, ParseError) and error.text:
        lines.extend(_underline(error.text, error.span))
    elif isinstance(error, ValidationError) and error.annotation is not None and error.annotation.text:
        span = error.span or Span(0, len(error.annotation.text))
        lines.extend(_underline(error.annotation.text, span))

    return "\n".join(lines)
