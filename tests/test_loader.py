"""定義ファイルローダーのテスト"""

import json

import pytest

from derivetool.core.engine.diagnostics import LoaderError
from derivetool.core.engine.loader import load_definitions, parse_definitions


def test_load_valid_yaml(fixtures_dir):
    """YAML定義をIRに変換できること"""
    definition_set = load_definitions(fixtures_dir / "valid_types.yaml")

    assert definition_set.meta.name == "sample-types"
    assert definition_set.meta.version == "1.0"
    assert [d.name for d in definition_set.definitions] == ["HttpError", "Meters", "Shape", "Account"]

    http_error = definition_set.definitions[0]
    assert http_error.derives == ["Display", "Error"]
    assert http_error.description == "Error returned by the HTTP layer"
    assert http_error.variants is None
    assert [f.name for f in http_error.fields] == ["code", "message", "cause"]
    cause = http_error.fields[2]
    assert cause.has_default is True
    assert cause.default is None
    assert [a.text for a in cause.annotations] == ["source"]


def test_load_keeps_line_numbers(fixtures_dir):
    """要素とアノテーションに行番号が付くこと"""
    definition_set = load_definitions(fixtures_dir / "valid_types.yaml")
    http_error = definition_set.definitions[0]

    assert http_error.location.file.endswith("valid_types.yaml")
    assert http_error.location.line == 7
    assert http_error.annotations[0].location.line == 11


def test_load_enum_variants(fixtures_dir):
    shape = load_definitions(fixtures_dir / "valid_types.yaml").definitions[2]
    assert shape.fields is None
    assert [v.name for v in shape.variants] == ["Circle", "Empty"]
    circle = shape.variants[0]
    assert circle.fields[0].name is None
    assert circle.fields[0].type_ref == "float"
    assert [a.text for a in circle.annotations] == ['display = "circle r={0}"', "from"]


def test_default_values_have_no_line_keys(tmp_path):
    """デフォルト値のマッピングに行番号キーが混入しないこと"""
    path = tmp_path / "defaults.yaml"
    path.write_text(
        """
types:
  - name: Settings
    fields:
      - name: options
        type: "dict[str, int]"
        default: {retries: 3}
"""
    )
    definition = load_definitions(path).definitions[0]
    assert definition.fields[0].default == {"retries": 3}


def test_load_json(tmp_path):
    path = tmp_path / "types.json"
    path.write_text(
        json.dumps(
            {
                "meta": {"name": "json-types"},
                "types": [{"name": "Celsius", "derive": ["Wrapper"], "fields": [{"type": "float"}]}],
            }
        )
    )
    definition_set = load_definitions(path)
    assert definition_set.meta.name == "json-types"
    assert definition_set.definitions[0].derives == ["Wrapper"]


def test_derive_accepts_comma_string():
    definition_set = parse_definitions({"types": [{"name": "Id", "derive": "From, Display", "fields": []}]})
    assert definition_set.definitions[0].derives == ["From", "Display"]


def test_generic_shorthand_and_bounds():
    definition_set = parse_definitions(
        {
            "types": [
                {
                    "name": "Boxed",
                    "generics": ["T", {"name": "U", "bounds": ["Hashable", "Sized"]}],
                    "fields": [{"name": "value", "type": "T"}],
                }
            ]
        }
    )
    generics = definition_set.definitions[0].generics
    assert [g.name for g in generics] == ["T", "U"]
    assert generics[1].bounds == ["Hashable", "Sized"]


def test_both_fields_and_variants_is_not_a_load_error():
    """fields と variants の両方指定はモデル構築時のエラー（読み込みは成功）"""
    definition_set = parse_definitions({"types": [{"name": "Odd", "fields": [], "variants": []}]})
    definition = definition_set.definitions[0]
    assert definition.fields == []
    assert definition.variants == []


class TestLoaderErrors:
    def test_unsupported_extension(self, tmp_path):
        path = tmp_path / "types.toml"
        path.write_text("")
        with pytest.raises(LoaderError, match="unsupported file format"):
            load_definitions(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(LoaderError, match="cannot read"):
            load_definitions(tmp_path / "missing.yaml")

    def test_invalid_yaml_reports_line(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("types:\n  - name: A\n    fields: [\n")
        with pytest.raises(LoaderError) as exc_info:
            load_definitions(path)
        assert "invalid YAML" in exc_info.value.reason
        assert exc_info.value.location.line > 0

    def test_document_must_be_mapping(self):
        with pytest.raises(LoaderError, match="must be a mapping"):
            parse_definitions(["not", "a", "mapping"])

    def test_type_missing_name(self):
        with pytest.raises(LoaderError, match="missing `name`"):
            parse_definitions({"types": [{"fields": []}]})

    def test_field_missing_type(self):
        with pytest.raises(LoaderError, match="missing `type`"):
            parse_definitions({"types": [{"name": "A", "fields": [{"name": "x"}]}]})

    def test_unknown_key(self):
        with pytest.raises(LoaderError, match="unknown key\\(s\\) in type definition: colour"):
            parse_definitions({"types": [{"name": "A", "fields": [], "colour": "red"}]})

    def test_annotation_must_be_string(self):
        with pytest.raises(LoaderError, match="annotation must be a string"):
            parse_definitions({"types": [{"name": "A", "fields": [], "annotations": [{"display": "x"}]}]})
