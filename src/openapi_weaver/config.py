"""Generator configuration.

Values come from, in order of priority: command-line options, the file
given with ``--config``, ``openapi-weaver.yaml`` in the working directory,
and the defaults below.
"""

import logging
from pathlib import Path

import yaml
from pydantic import BaseModel, ValidationError

from openapi_weaver.errors import IoFailureError, SourceLocation

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_NAME = "openapi-weaver.yaml"


class GeneratorConfig(BaseModel):
    inputs: list[Path] = []
    includes: list[Path] = []
    output: Path | None = None
    output_schemas: Path | None = None
    output_paths: Path | None = None
    output_fragments: Path | None = None
    workers: int = 4
    require_root: bool = True

    @property
    def outputs(self) -> dict[str, Path]:
        """View name -> destination, for every view that is requested."""
        pairs = {
            "document": self.output,
            "schemas": self.output_schemas,
            "paths": self.output_paths,
            "fragment": self.output_fragments,
        }
        return {view: path for view, path in pairs.items() if path is not None}


def read_config_file(path: Path) -> dict:
    """Read a YAML config file; relative paths in it are resolved against its directory."""
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as e:
        raise IoFailureError(f"cannot load config {path}: {e}", location=SourceLocation(file=str(path)))
    if not isinstance(data, dict):
        raise IoFailureError(f"config {path} must be a mapping", location=SourceLocation(file=str(path)))

    data = {key.replace("-", "_"): value for key, value in data.items()}
    base = path.parent
    for key in ("inputs", "includes"):
        if key in data:
            values = data[key] if isinstance(data[key], list) else [data[key]]
            data[key] = [base / v for v in values]
    for key in ("output", "output_schemas", "output_paths", "output_fragments"):
        if data.get(key):
            data[key] = base / data[key]
    return data


def load_config(config_path: Path | None = None, overrides: dict | None = None) -> GeneratorConfig:
    """Build the effective config; ``overrides`` holds the options given on the command line."""
    data: dict = {}
    if config_path is not None:
        data = read_config_file(Path(config_path))
    elif Path(DEFAULT_CONFIG_NAME).exists():
        logger.debug("using %s from the working directory", DEFAULT_CONFIG_NAME)
        data = read_config_file(Path(DEFAULT_CONFIG_NAME))

    for key, value in (overrides or {}).items():
        if value is None or value == () or value == []:
            continue
        data[key] = list(value) if isinstance(value, tuple) else value

    try:
        return GeneratorConfig.model_validate(data)
    except ValidationError as e:
        raise IoFailureError(f"invalid configuration: {e.errors()[0]['loc']}: {e.errors()[0]['msg']}")
