"""Run Config のロードと実行のテスト"""

import shutil

import pydantic
import pytest
import yaml

from derivetool.core.engine.config_model import RunConfig, load_config, run_config


@pytest.fixture
def workspace(tmp_path, fixtures_dir):
    """Config と定義ファイルを一時ディレクトリにコピー"""
    for name in ("run_config.yaml", "valid_types.yaml", "mixed_types.yaml"):
        shutil.copy(fixtures_dir / name, tmp_path / name)
    return tmp_path


def _write_config(path, **overrides):
    data = yaml.safe_load((path / "run_config.yaml").read_text())
    data.update(overrides)
    target = path / "custom.yaml"
    target.write_text(yaml.safe_dump(data))
    return target


class TestLoadConfig:
    def test_load(self, fixtures_dir):
        config = load_config(fixtures_dir / "run_config.yaml")

        assert isinstance(config, RunConfig)
        assert config.meta.name == "sample-run"
        assert config.sources == ["valid_types.yaml"]
        assert config.output.path == "out/sample_derived.py"
        assert config.output.include_definitions is True
        assert config.patterns.enabled == ["Display", "Error", "From", "Wrapper", "WrapperMut", "Getters"]
        assert config.partial is False

    def test_defaults(self, tmp_path):
        path = tmp_path / "minimal.yaml"
        path.write_text("version: '1.0'\nmeta: {name: minimal}\noutput: {path: out.py}\n")
        config = load_config(path)
        assert config.sources == []
        assert config.patterns.enabled is None
        assert config.output.title == ""

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError, match="Config file not found"):
            load_config(tmp_path / "nope.yaml")

    def test_invalid_structure(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("version: '1.0'\nmeta: {description: no name}\n")
        with pytest.raises(pydantic.ValidationError):
            load_config(path)


class TestRunConfig:
    def test_writes_module(self, workspace, import_generated):
        config = load_config(workspace / "run_config.yaml")
        outcome = run_config(config, base_dir=workspace)

        assert outcome.ok
        assert outcome.output_path == workspace / "out" / "sample_derived.py"
        content = outcome.output_path.read_text()
        assert content.startswith('"""Derived implementations for the sample types')

        module = import_generated(content)
        assert str(module.HttpError(500, "boom")) == "error 500: boom"

    def test_errors_skip_output(self, workspace):
        config = load_config(_write_config(workspace, sources=["valid_types.yaml", "mixed_types.yaml"]))
        outcome = run_config(config, base_dir=workspace)

        assert not outcome.ok
        assert outcome.output_path is None
        assert not (workspace / "out").exists()
        assert [len(b.failed) for b in outcome.batches] == [0, 2]

    def test_partial_output(self, workspace):
        config = load_config(_write_config(workspace, sources=["mixed_types.yaml"], partial=True))
        outcome = run_config(config, base_dir=workspace)

        assert not outcome.ok
        content = outcome.output_path.read_text()
        assert "class UserId" in content
        assert "Pair" not in content
        assert "Broken" not in content

    def test_disabled_pattern_is_reported(self, workspace):
        config = load_config(_write_config(workspace, patterns={"enabled": ["Display", "Error", "From", "Getters"]}))
        outcome = run_config(config, base_dir=workspace)

        assert not outcome.ok
        meters = [r for r in outcome.batches[0].results if r.name == "Meters"][0]
        assert "unknown pattern `Wrapper`" in meters.errors[0].reason

    def test_unknown_enabled_pattern(self, workspace):
        config = load_config(_write_config(workspace, patterns={"enabled": ["Serialize"]}))
        with pytest.raises(ValueError, match="Serialize"):
            run_config(config, base_dir=workspace)
