"""Formatter: バッチ処理結果のフォーマット

型定義ごとに分類された診断メッセージを整形して出力する。
"""

from __future__ import annotations

from derivetool.core.engine.diagnostics import LoaderError, ParseError, ValidationError, report
from derivetool.core.engine.pipeline import BatchResult, DefinitionResult

_KIND_LABELS = {
    LoaderError: "📂",
    ParseError: "🔤",
    ValidationError: "⚙️ ",
}


def _label(result: DefinitionResult) -> str:
    kind = "enum" if result.definition is not None and result.definition.variants is not None else "struct"
    return f"📦 {result.name} ({kind})"


def _format_message_category(label: str, messages: list[str], message_type: str) -> list[str]:
    """メッセージカテゴリをフォーマット"""
    if not messages:
        return []

    count = len(messages)
    suffix = "s" if count > 1 and message_type != "passed" else ""
    lines = [f"{label} ({count} {message_type}{suffix}):"]
    for msg in messages:
        first, *rest = msg.splitlines()
        lines.append(f"  • {first}")
        lines.extend(f"  {line}" for line in rest)
    lines.append("")
    return lines


def _format_errors(result: BatchResult) -> list[str]:
    """エラーメッセージをフォーマット"""
    if result.error_count == 0:
        return []

    lines = [f"\n❌ Validation failed with {result.error_count} error(s):\n"]
    for failed in result.failed:
        messages = [f"{_KIND_LABELS.get(type(e), '')} {report(e)}".lstrip() for e in failed.errors]
        lines.extend(_format_message_category(_label(failed), messages, "error"))
    return lines


def _format_successes(result: BatchResult, verbose: bool) -> list[str]:
    """成功メッセージをフォーマット（verboseモード）"""
    if not verbose or not result.succeeded:
        return []

    lines = [f"\n✅ {len(result.succeeded)} item(s) passed validation:\n"]
    for item in result.succeeded:
        patterns = ", ".join(item.definition.derives) if item.definition is not None else ""
        messages = [f"derive({patterns}): {len(item.fragments)} block(s) generated"]
        lines.extend(_format_message_category(_label(item), messages, "passed"))
    return lines


def format_batch_result(result: BatchResult, verbose: bool = False) -> str:
    """バッチ処理結果をフォーマットして文字列に変換

    Args:
        result: process_batch()の戻り値
        verbose: 詳細表示モード（成功も表示）

    Returns:
        フォーマットされた結果の文字列
    """
    lines = []
    lines.extend(_format_errors(result))
    lines.extend(_format_successes(result, verbose))

    if result.ok:
        lines.append("✅ All validations passed")

    return "\n".join(lines)
