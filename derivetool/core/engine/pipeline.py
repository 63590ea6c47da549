"""Pipeline: 型定義ごとの生成処理

処理の流れ（型定義ごとに独立）:
    アノテーション解析 → SemanticModel 構築 → 要求パターンの検証 → 生成計画 → ソース断片

生成は型定義単位で all-or-nothing。1 つの定義の失敗は同じバッチの他の定義に影響しない。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from derivetool.backends.py_code import render_plan
from derivetool.core.base.ir import TypeDefinition
from derivetool.core.base.plan import GenerationPlan
from derivetool.core.engine.diagnostics import DeriveError, ValidationError
from derivetool.core.engine.model import FieldInfo, ModelBuilder, SemanticModel
from derivetool.patterns.base import PatternRegistry

logger = logging.getLogger(__name__)


@dataclass
class DefinitionResult:
    """型定義 1 件の処理結果

    Attributes:
        name: 型名
        definition: 入力の型定義
        fragments: 生成されたソース断片（要求順）
        errors: 検出されたエラー（空なら成功）
        imports: 断片が必要とするインポート文
    """

    name: str
    definition: TypeDefinition | None = None
    fragments: list[str] = field(default_factory=list)
    errors: list[DeriveError] = field(default_factory=list)
    imports: set[str] = field(default_factory=set)

    @property
    def ok(self) -> bool:
        return not self.errors


@dataclass
class BatchResult:
    """バッチ全体の処理結果（入力順）"""

    results: list[DefinitionResult] = field(default_factory=list)
    source: str = ""

    @property
    def ok(self) -> bool:
        return all(r.ok for r in self.results)

    @property
    def succeeded(self) -> list[DefinitionResult]:
        return [r for r in self.results if r.ok]

    @property
    def failed(self) -> list[DefinitionResult]:
        return [r for r in self.results if not r.ok]

    @property
    def error_count(self) -> int:
        return sum(len(r.errors) for r in self.results)


def _stored_fields(model: SemanticModel) -> dict[str, FieldInfo]:
    """インスタンス属性として格納されるフィールド（属性名 → フィールド）"""
    fields: dict[str, FieldInfo] = {f.attr: f for f in model.fields or ()}
    for variant in model.variants or ():
        for f in variant.fields:
            fields.setdefault(f.attr, f)
    return fields


def _check_member_collisions(model: SemanticModel, plans: list[GenerationPlan]) -> list[ValidationError]:
    """異なるパターンが同名のメンバーを生成していないか、フィールドに隠されないか"""
    errors = []
    owners: dict[str, str] = {}
    stored = _stored_fields(model)
    for plan in plans:
        for name in plan.member_names():
            if name in stored:
                shadowing = stored[name]
                errors.append(
                    ValidationError(
                        f"member `{name}` generated by derive({plan.pattern}) "
                        f"would be shadowed by the field `{shadowing.label}`",
                        element=shadowing.ref,
                        pattern=plan.pattern,
                        location=shadowing.location,
                    )
                )
                continue
            if name in owners:
                errors.append(
                    ValidationError(
                        f"member `{name}` is generated by both derive({owners[name]}) and derive({plan.pattern})",
                        element=model.ref,
                        pattern=plan.pattern,
                        location=model.location,
                    )
                )
                continue
            owners[name] = plan.pattern
    return errors


def process_definition(definition: TypeDefinition, registry: PatternRegistry | None = None) -> DefinitionResult:
    """型定義 1 件を処理

    Args:
        definition: 型定義
        registry: パターンRegistry（省略時は組み込みRegistry）

    Returns:
        DefinitionResult（エラーがあれば断片は空）
    """
    result = DefinitionResult(name=definition.name, definition=definition)

    builder = ModelBuilder(definition, registry)
    try:
        model = builder.build()
    except DeriveError:
        result.errors = list(builder.errors)
        logger.warning(f"'{definition.name}': semantic model rejected ({len(result.errors)} error(s))")
        return result

    modules = [m for m in (builder.registry.get(pattern_id) for pattern_id in model.patterns) if m is not None]
    for module in modules:
        logger.debug(f"'{definition.name}': validating derive({module.descriptor.id})")
        result.errors.extend(module.validate(model))
    if result.errors:
        logger.warning(f"'{definition.name}': pattern validation failed ({len(result.errors)} error(s))")
        return result

    plans = [module.generate(model) for module in modules]
    result.errors.extend(_check_member_collisions(model, plans))
    if result.errors:
        logger.warning(f"'{definition.name}': generated members conflict ({len(result.errors)} error(s))")
        return result

    for plan in plans:
        result.fragments.extend(render_plan(plan, model.signature, result.imports))
    logger.debug(f"'{definition.name}': generated {len(result.fragments)} block(s)")
    return result


def process_batch(
    definitions: list[TypeDefinition], registry: PatternRegistry | None = None, source: str = ""
) -> BatchResult:
    """複数の型定義を処理（定義ごとに独立）

    Args:
        definitions: 型定義リスト
        registry: パターンRegistry
        source: 定義の読み込み元（表示用）

    Returns:
        BatchResult（入力順）
    """
    batch = BatchResult(source=source)
    for definition in definitions:
        batch.results.append(process_definition(definition, registry))
    logger.info(f"Processed {len(batch.results)} definition(s): {len(batch.failed)} failed")
    return batch
