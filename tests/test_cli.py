import json
from pathlib import Path
from unittest.mock import patch

import yaml
from click.testing import CliRunner

from openapi_weaver.assembler import GenerationResult
from openapi_weaver.cli import main

FIXTURES = Path(__file__).parent / "fixtures"

DUPLICATES = """\
- kind: routine
  name: first
  doc: |
    @route GET /x
    @return 200: ()
- kind: routine
  name: second
  doc: |
    @route GET /x
    @return 200: ()
"""


class TestCliGenerate:
    def test_generate_yaml(self, tmp_path):
        output_file = tmp_path / "openapi.yaml"
        runner = CliRunner()
        result = runner.invoke(main, [
            "generate",
            "-i", str(FIXTURES / "users.yaml"),
            "-o", str(output_file),
        ])

        assert result.exit_code == 0, result.output
        assert "Wrote document" in result.output
        assert "Done! 2 path(s), 5 schema(s)." in result.output
        doc = yaml.safe_load(output_file.read_text(encoding="utf-8"))
        assert doc["openapi"] == "3.0.3"
        assert list(doc["paths"]) == ["/users", "/users/{id}"]

    def test_generate_json_views(self, tmp_path):
        runner = CliRunner()
        result = runner.invoke(main, [
            "generate",
            "-i", str(FIXTURES / "users.yaml"),
            "--include", str(FIXTURES / "extra.yaml"),
            "--output-schemas", str(tmp_path / "schemas.json"),
            "--output-paths", str(tmp_path / "paths.json"),
            "--output-fragments", str(tmp_path / "out" / "fragment.json"),
        ])

        assert result.exit_code == 0, result.output
        schemas = json.loads((tmp_path / "schemas.json").read_text(encoding="utf-8"))
        assert list(schemas) == ["ErrorBody", "User", "Role", "UserList", "Page_User"]
        paths = json.loads((tmp_path / "paths.json").read_text(encoding="utf-8"))
        assert "/users/{id}" in paths
        fragment = json.loads((tmp_path / "out" / "fragment.json").read_text(encoding="utf-8"))
        assert "info" not in fragment
        assert "servers" not in fragment
        assert fragment["tags"][0]["name"] == "Users"

    def test_headless_with_no_root(self, tmp_path):
        runner = CliRunner()
        result = runner.invoke(main, [
            "generate",
            "-i", str(FIXTURES / "headless.yaml"),
            "--no-root",
            "-o", str(tmp_path / "openapi.yaml"),
            "--output-schemas", str(tmp_path / "schemas.yaml"),
        ])

        assert result.exit_code == 0, result.output
        assert "Skipped" in result.output
        assert not (tmp_path / "openapi.yaml").exists()
        schemas = yaml.safe_load((tmp_path / "schemas.yaml").read_text(encoding="utf-8"))
        assert schemas["Pet"]["required"] == ["name"]

    def test_failure_writes_nothing(self, tmp_path):
        manifest = tmp_path / "api.yaml"
        manifest.write_text(DUPLICATES, encoding="utf-8")
        output_file = tmp_path / "openapi.yaml"

        runner = CliRunner()
        result = runner.invoke(main, [
            "generate", "-i", str(manifest), "--no-root", "-o", str(output_file),
        ])

        assert result.exit_code == 1
        assert "error: DuplicateName" in result.output
        assert "in: second" in result.output
        assert "nothing written" in result.output
        assert not output_file.exists()

    def test_requires_an_output(self):
        runner = CliRunner()
        result = runner.invoke(main, ["generate", "-i", str(FIXTURES / "users.yaml")])
        assert result.exit_code == 2
        assert "no output requested" in result.output

    @patch("openapi_weaver.cli.run_config")
    def test_options_reach_the_config(self, mock_run, tmp_path):
        mock_run.return_value = GenerationResult()

        runner = CliRunner()
        result = runner.invoke(main, [
            "generate",
            "-i", str(FIXTURES / "users.yaml"),
            "-o", str(tmp_path / "openapi.yaml"),
            "--workers", "1",
            "--no-root",
        ])

        assert result.exit_code == 0, result.output
        config = mock_run.call_args.args[0]
        assert config.workers == 1
        assert config.require_root is False
        assert config.inputs == [FIXTURES / "users.yaml"]


class TestCliConfigFile:
    def test_config_file_supplies_inputs_and_outputs(self, tmp_path):
        (tmp_path / "api.yaml").write_text(
            (FIXTURES / "users.yaml").read_text(encoding="utf-8"), encoding="utf-8"
        )
        config_file = tmp_path / "weaver.yaml"
        config_file.write_text("inputs: [api.yaml]\noutput: build/openapi.json\n", encoding="utf-8")

        runner = CliRunner()
        result = runner.invoke(main, ["generate", "--config", str(config_file)])

        assert result.exit_code == 0, result.output
        doc = json.loads((tmp_path / "build" / "openapi.json").read_text(encoding="utf-8"))
        assert doc["info"]["title"] == "Users API"

    def test_invalid_config_file(self, tmp_path):
        config_file = tmp_path / "weaver.yaml"
        config_file.write_text("workers: many\n", encoding="utf-8")

        runner = CliRunner()
        result = runner.invoke(main, ["check", "--config", str(config_file)])

        assert result.exit_code == 1
        assert "IoFailure" in result.output


class TestCliCheck:
    def test_check_reports_counts(self):
        runner = CliRunner()
        result = runner.invoke(main, ["check", "-i", str(FIXTURES / "users.yaml")])
        assert result.exit_code == 0, result.output
        assert "OK: 2 path(s), 5 schema(s)." in result.output

    def test_check_without_root_fails(self):
        runner = CliRunner()
        result = runner.invoke(main, ["check", "-i", str(FIXTURES / "headless.yaml")])
        assert result.exit_code == 1
        assert "error: MissingRoot" in result.output

    def test_check_requires_inputs(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        runner = CliRunner()
        result = runner.invoke(main, ["check"])
        assert result.exit_code == 2
        assert "no input manifests" in result.output
