"""Loader: YAML/JSON→IR変換

定義ファイルを読み込み、DefinitionSet（TypeDefinition のリスト）に変換する。
YAML の場合は各要素・各アノテーションの行番号を SourceLocation として保持する。
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import yaml

from derivetool.core.base.ir import (
    DefinitionMeta,
    DefinitionSet,
    FieldDef,
    GenericParam,
    RawAnnotation,
    SourceLocation,
    TypeDefinition,
    VariantDef,
)
from derivetool.core.engine.diagnostics import LoaderError

logger = logging.getLogger(__name__)

_LINE_KEY = "__line__"
_ANNOTATION_LINES_KEY = "__annotation_lines__"

TYPE_KEYS = {"name", "description", "generics", "derive", "annotations", "fields", "variants"}
FIELD_KEYS = {"name", "type", "description", "annotations", "default"}
VARIANT_KEYS = {"name", "description", "annotations", "fields"}
GENERIC_KEYS = {"name", "bounds"}


class _LineLoader(yaml.SafeLoader):
    """マッピングに行番号を付与する SafeLoader"""

    def construct_mapping(self, node: yaml.MappingNode, deep: bool = False) -> dict[Any, Any]:
        mapping = super().construct_mapping(node, deep=deep)
        mapping[_LINE_KEY] = node.start_mark.line + 1
        for key_node, value_node in node.value:
            if key_node.value == "annotations" and isinstance(value_node, yaml.SequenceNode):
                mapping[_ANNOTATION_LINES_KEY] = [item.start_mark.line + 1 for item in value_node.value]
        return mapping


def load_definitions(path: str | Path) -> DefinitionSet:
    """YAML/JSON定義ファイルを読み込み、IRに変換

    Args:
        path: 定義ファイルのパス

    Returns:
        DefinitionSet

    Raises:
        LoaderError: 読み込み失敗、未対応のファイル形式、構造エラー
    """
    path = Path(path)
    source = str(path)
    logger.debug(f"Loading definitions from {source}")

    try:
        with open(path, encoding="utf-8") as f:
            if path.suffix in {".yaml", ".yml"}:
                data = yaml.load(f, Loader=_LineLoader)  # noqa: S506
            elif path.suffix == ".json":
                data = json.load(f)
            else:
                raise LoaderError(f"unsupported file format: {path.suffix}", SourceLocation(source))
    except OSError as e:
        raise LoaderError(f"cannot read definition file: {e}", SourceLocation(source)) from e
    except yaml.YAMLError as e:
        line = e.problem_mark.line + 1 if getattr(e, "problem_mark", None) else 0
        raise LoaderError(f"invalid YAML: {e}", SourceLocation(source, line)) from e
    except json.JSONDecodeError as e:
        raise LoaderError(f"invalid JSON: {e.msg}", SourceLocation(source, e.lineno)) from e

    return parse_definitions(data, source)


def parse_definitions(data: Any, source: str = "<input>") -> DefinitionSet:  # noqa: ANN401
    """読み込み済みのデータをIRに変換

    Args:
        data: YAML/JSON から読み込んだデータ
        source: 位置表示に使うファイル名

    Returns:
        DefinitionSet

    Raises:
        LoaderError: 構造エラー
    """
    if not isinstance(data, dict):
        raise LoaderError("definition document must be a mapping", SourceLocation(source))

    meta_data = data.get("meta") or {}
    if not isinstance(meta_data, dict):
        raise LoaderError("`meta` must be a mapping", _location(source, data))
    meta = DefinitionMeta(
        name=str(meta_data.get("name", "unknown")),
        description=str(meta_data.get("description", "")),
        version=str(data.get("version", "1.0")),
    )

    types = data.get("types", [])
    if not isinstance(types, list):
        raise LoaderError("`types` must be a list", _location(source, data))

    definitions = [_load_type(item, source) for item in types]
    logger.debug(f"Loaded {len(definitions)} definition(s) from {source}")
    return DefinitionSet(meta=meta, definitions=definitions, source=source)


# ===== 要素ごとの変換 =====


def _location(source: str, data: dict[str, Any]) -> SourceLocation:
    return SourceLocation(source, data.get(_LINE_KEY, 0))


def _strip_lines(value: Any) -> Any:  # noqa: ANN401
    """デフォルト値などのデータから行番号キーを除去"""
    if isinstance(value, dict):
        return {
            k: _strip_lines(v) for k, v in value.items() if k not in {_LINE_KEY, _ANNOTATION_LINES_KEY}
        }
    if isinstance(value, list):
        return [_strip_lines(v) for v in value]
    return value


def _require_mapping(item: Any, what: str, source: str) -> dict[str, Any]:  # noqa: ANN401
    if not isinstance(item, dict):
        raise LoaderError(f"{what} must be a mapping, got {type(item).__name__}", SourceLocation(source))
    return item


def _check_keys(data: dict[str, Any], allowed: set[str], what: str, source: str) -> None:
    unknown = sorted(str(k) for k in data if k not in allowed and k not in {_LINE_KEY, _ANNOTATION_LINES_KEY})
    if unknown:
        raise LoaderError(f"unknown key(s) in {what}: {', '.join(unknown)}", _location(source, data))


def _require_name(data: dict[str, Any], what: str, source: str) -> str:
    name = data.get("name")
    if not isinstance(name, str) or not name:
        raise LoaderError(f"{what} is missing `name`", _location(source, data))
    return name


def _load_annotations(data: dict[str, Any], source: str) -> list[RawAnnotation]:
    raws = data.get("annotations") or []
    if isinstance(raws, str):
        raws = [raws]
    if not isinstance(raws, list):
        raise LoaderError("`annotations` must be a list of strings", _location(source, data))

    lines = data.get(_ANNOTATION_LINES_KEY) or []
    annotations = []
    for i, text in enumerate(raws):
        if not isinstance(text, str):
            raise LoaderError(f"annotation must be a string, got {type(text).__name__}", _location(source, data))
        line = lines[i] if i < len(lines) else data.get(_LINE_KEY, 0)
        annotations.append(RawAnnotation(text=text, location=SourceLocation(source, line)))
    return annotations


def _load_type(item: Any, source: str) -> TypeDefinition:  # noqa: ANN401
    data = _require_mapping(item, "type definition", source)
    _check_keys(data, TYPE_KEYS, "type definition", source)
    name = _require_name(data, "type definition", source)

    derives = data.get("derive") or []
    if isinstance(derives, str):
        derives = [d.strip() for d in derives.split(",") if d.strip()]
    if not isinstance(derives, list) or not all(isinstance(d, str) for d in derives):
        raise LoaderError(f"`derive` of `{name}` must be a list of pattern names", _location(source, data))

    fields = data.get("fields")
    variants = data.get("variants")
    if fields is not None and not isinstance(fields, list):
        raise LoaderError(f"`fields` of `{name}` must be a list", _location(source, data))
    if variants is not None and not isinstance(variants, list):
        raise LoaderError(f"`variants` of `{name}` must be a list", _location(source, data))

    return TypeDefinition(
        name=name,
        generics=[_load_generic(g, source) for g in data.get("generics") or []],
        fields=[_load_field(f, source) for f in fields] if fields is not None else None,
        variants=[_load_variant(v, source) for v in variants] if variants is not None else None,
        annotations=_load_annotations(data, source),
        derives=list(derives),
        description=str(data.get("description", "")),
        location=_location(source, data),
    )


def _load_generic(item: Any, source: str) -> GenericParam:  # noqa: ANN401
    # 文字列 "T" のみの簡略形も受け付ける
    if isinstance(item, str):
        return GenericParam(name=item)
    data = _require_mapping(item, "generic parameter", source)
    _check_keys(data, GENERIC_KEYS, "generic parameter", source)
    bounds = data.get("bounds") or []
    if isinstance(bounds, str):
        bounds = [bounds]
    return GenericParam(name=_require_name(data, "generic parameter", source), bounds=[str(b) for b in bounds])


def _load_field(item: Any, source: str) -> FieldDef:  # noqa: ANN401
    data = _require_mapping(item, "field", source)
    _check_keys(data, FIELD_KEYS, "field", source)

    type_ref = data.get("type")
    if not isinstance(type_ref, str):
        raise LoaderError("field is missing `type`", _location(source, data))

    name = data.get("name")
    if name is not None and not isinstance(name, str):
        raise LoaderError("field `name` must be a string", _location(source, data))

    return FieldDef(
        name=name,
        type_ref=type_ref,
        annotations=_load_annotations(data, source),
        has_default="default" in data,
        default=_strip_lines(data.get("default")),
        location=_location(source, data),
    )


def _load_variant(item: Any, source: str) -> VariantDef:  # noqa: ANN401
    data = _require_mapping(item, "variant", source)
    _check_keys(data, VARIANT_KEYS, "variant", source)
    fields = data.get("fields") or []
    if not isinstance(fields, list):
        raise LoaderError("variant `fields` must be a list", _location(source, data))
    return VariantDef(
        name=_require_name(data, "variant", source),
        fields=[_load_field(f, source) for f in fields],
        annotations=_load_annotations(data, source),
        location=_location(source, data),
    )
