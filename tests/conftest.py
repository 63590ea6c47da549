"""pytest設定とフィクスチャ定義"""

from __future__ import annotations

import importlib.util
import itertools
import sys
from pathlib import Path

import pytest

from derivetool.backends.py_code import render_module
from derivetool.core.base.ir import FieldDef, RawAnnotation, TypeDefinition, VariantDef
from derivetool.core.engine.pipeline import process_batch

FIXTURES_DIR = Path(__file__).parent / "fixtures"

_module_counter = itertools.count()


@pytest.fixture
def fixtures_dir() -> Path:
    return FIXTURES_DIR


def make_field(name: str | None, type_ref: str, *annotations: str, **kwargs) -> FieldDef:
    """テスト用フィールド定義"""
    return FieldDef(name=name, type_ref=type_ref, annotations=[RawAnnotation(a) for a in annotations], **kwargs)


def make_struct(name: str, derives: list[str], fields: list[FieldDef], *annotations: str, **kwargs) -> TypeDefinition:
    """テスト用 struct 形式の型定義"""
    return TypeDefinition(
        name=name,
        derives=derives,
        fields=fields,
        annotations=[RawAnnotation(a) for a in annotations],
        **kwargs,
    )


def make_enum(name: str, derives: list[str], variants: list[VariantDef], *annotations: str) -> TypeDefinition:
    """テスト用 enum 形式の型定義"""
    return TypeDefinition(
        name=name,
        derives=derives,
        variants=variants,
        annotations=[RawAnnotation(a) for a in annotations],
    )


def make_variant(name: str, fields: list[FieldDef], *annotations: str) -> VariantDef:
    return VariantDef(name=name, fields=fields, annotations=[RawAnnotation(a) for a in annotations])


@pytest.fixture
def import_generated(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    """生成されたソースをファイルに書き出してモジュールとしてインポートする"""

    def _import(source: str):
        name = f"derived_{next(_module_counter)}"
        path = tmp_path / f"{name}.py"
        path.write_text(source, encoding="utf-8")
        spec = importlib.util.spec_from_file_location(name, path)
        assert spec is not None and spec.loader is not None
        module = importlib.util.module_from_spec(spec)
        monkeypatch.setitem(sys.modules, name, module)
        spec.loader.exec_module(module)
        return module

    return _import


@pytest.fixture
def generate_module(import_generated):
    """型定義のリストから生成モジュールを作ってインポートする（全定義の成功を前提）"""

    def _generate(*definitions: TypeDefinition):
        batch = process_batch(list(definitions))
        assert batch.ok, [str(e) for r in batch.results for e in r.errors]
        return import_generated(render_module(batch.results))

    return _generate
