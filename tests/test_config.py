from pathlib import Path

import pytest

from openapi_weaver.config import DEFAULT_CONFIG_NAME, GeneratorConfig, load_config, read_config_file
from openapi_weaver.errors import IoFailureError


class TestGeneratorConfig:
    def test_defaults(self):
        config = GeneratorConfig()
        assert config.inputs == []
        assert config.workers == 4
        assert config.require_root is True
        assert config.outputs == {}

    def test_outputs_lists_requested_views(self):
        config = GeneratorConfig(output=Path("a.yaml"), output_fragments=Path("f.yaml"))
        assert config.outputs == {"document": Path("a.yaml"), "fragment": Path("f.yaml")}


class TestReadConfigFile:
    def test_relative_paths_resolve_against_the_file(self, tmp_path):
        config_file = tmp_path / "conf" / "weaver.yaml"
        config_file.parent.mkdir()
        config_file.write_text(
            "inputs: [api.yaml, more/]\n"
            "output-schemas: build/schemas.yaml\n"
            "workers: 2\n",
            encoding="utf-8",
        )
        data = read_config_file(config_file)
        assert data["inputs"] == [tmp_path / "conf" / "api.yaml", tmp_path / "conf" / "more"]
        assert data["output_schemas"] == tmp_path / "conf" / "build" / "schemas.yaml"
        assert data["workers"] == 2

    def test_single_input_string(self, tmp_path):
        config_file = tmp_path / "weaver.yaml"
        config_file.write_text("inputs: api.yaml\n", encoding="utf-8")
        assert read_config_file(config_file)["inputs"] == [tmp_path / "api.yaml"]

    def test_empty_file(self, tmp_path):
        config_file = tmp_path / "weaver.yaml"
        config_file.write_text("", encoding="utf-8")
        assert read_config_file(config_file) == {}

    def test_not_a_mapping(self, tmp_path):
        config_file = tmp_path / "weaver.yaml"
        config_file.write_text("- api.yaml\n", encoding="utf-8")
        with pytest.raises(IoFailureError, match="must be a mapping"):
            read_config_file(config_file)

    def test_broken_yaml(self, tmp_path):
        config_file = tmp_path / "weaver.yaml"
        config_file.write_text("inputs: [\n", encoding="utf-8")
        with pytest.raises(IoFailureError):
            read_config_file(config_file)


class TestLoadConfig:
    def test_no_file_gives_defaults(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        assert load_config() == GeneratorConfig()

    def test_discovers_file_in_working_directory(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        (tmp_path / DEFAULT_CONFIG_NAME).write_text("workers: 3\nrequire-root: false\n", encoding="utf-8")
        config = load_config()
        assert config.workers == 3
        assert config.require_root is False

    def test_explicit_file_beats_discovered_file(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        (tmp_path / DEFAULT_CONFIG_NAME).write_text("workers: 3\n", encoding="utf-8")
        explicit = tmp_path / "other.yaml"
        explicit.write_text("workers: 6\n", encoding="utf-8")
        assert load_config(explicit).workers == 6

    def test_command_line_beats_file(self, tmp_path):
        config_file = tmp_path / "weaver.yaml"
        config_file.write_text("inputs: [api.yaml]\nworkers: 2\n", encoding="utf-8")
        config = load_config(config_file, {"workers": 8, "inputs": ("cli.yaml",)})
        assert config.workers == 8
        assert config.inputs == [Path("cli.yaml")]

    def test_unset_options_do_not_clear_the_file(self, tmp_path):
        config_file = tmp_path / "weaver.yaml"
        config_file.write_text("inputs: [api.yaml]\nrequire-root: false\n", encoding="utf-8")
        config = load_config(config_file, {"inputs": (), "require_root": None, "output": None})
        assert config.inputs == [tmp_path / "api.yaml"]
        assert config.require_root is False

    def test_invalid_value(self, tmp_path):
        config_file = tmp_path / "weaver.yaml"
        config_file.write_text("workers: many\n", encoding="utf-8")
        with pytest.raises(IoFailureError, match="workers"):
            load_config(config_file)
