"""Run Config YAMLのモデル定義とロード機能

複数の定義ファイルから 1 つの Python モジュールを生成するための設定ファイル構造を定義する。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

import yaml
from pydantic import BaseModel, Field

from derivetool.backends.py_code import render_module
from derivetool.core.engine.loader import load_definitions
from derivetool.core.engine.pipeline import BatchResult, process_batch
from derivetool.patterns import default_registry

logger = logging.getLogger(__name__)


class RunMeta(BaseModel):
    """Configメタデータ"""

    name: str
    description: str = ""


class OutputConfig(BaseModel):
    """出力設定"""

    path: str  # 生成するモジュールのパス
    include_definitions: bool = True
    title: str = ""


class PatternConfig(BaseModel):
    """パターン設定（None なら全組み込みパターンを許可）"""

    enabled: list[str] | None = None


class RunConfig(BaseModel):
    """Run Config YAML構造"""

    version: str
    meta: RunMeta
    sources: list[str] = Field(default_factory=list)  # 定義ファイル（Config からの相対パス可）
    output: OutputConfig
    patterns: PatternConfig = Field(default_factory=PatternConfig)
    partial: bool = False  # True なら失敗した定義を除いて出力する


def load_config(config_path: str | Path) -> RunConfig:
    """Run Config YAMLをロードして検証

    Args:
        config_path: Config YAMLのパス

    Returns:
        RunConfig: 検証済みConfig

    Raises:
        FileNotFoundError: ファイルが存在しない
        yaml.YAMLError: YAML形式エラー
        pydantic.ValidationError: Pydantic検証エラー
    """
    config_path_obj = Path(config_path)

    if not config_path_obj.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path_obj) as f:
        data = yaml.safe_load(f)

    return RunConfig.model_validate(data)


@dataclass
class RunOutcome:
    """run_config() の結果"""

    batches: list[BatchResult] = field(default_factory=list)
    output_path: Path | None = None  # 書き出さなかった場合は None

    @property
    def ok(self) -> bool:
        return all(b.ok for b in self.batches)


def run_config(config: RunConfig, base_dir: str | Path = ".") -> RunOutcome:
    """Run Config に従って定義を処理しモジュールを書き出す

    Args:
        config: 検証済みConfig
        base_dir: 相対パスの基準ディレクトリ（通常は Config ファイルのあるディレクトリ）

    Returns:
        RunOutcome

    Raises:
        LoaderError: 定義ファイルの読み込み失敗
        ValueError: patterns.enabled に未知のパターンID
    """
    base = Path(base_dir)
    registry = default_registry()
    if config.patterns.enabled is not None:
        registry = registry.restricted(config.patterns.enabled)

    outcome = RunOutcome()
    for source in config.sources:
        definition_set = load_definitions(base / source)
        outcome.batches.append(process_batch(definition_set.definitions, registry, source=definition_set.source))

    if not outcome.ok and not config.partial:
        logger.warning(f"'{config.meta.name}': errors found, output not written")
        return outcome

    results = [r for batch in outcome.batches for r in batch.results]
    content = render_module(
        results,
        include_definitions=config.output.include_definitions,
        title=config.output.title or config.meta.description or config.meta.name,
    )
    output_path = base / config.output.path
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(content, encoding="utf-8")
    logger.info(f"Wrote {output_path}")
    outcome.output_path = output_path
    return outcome
