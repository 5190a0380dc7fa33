"""File-backed Source Provider and static include loader.

An entity manifest is YAML or JSON, either a plain list of entities or a
mapping with an ``entities`` list plus optional defaults::

    file: src/users.rs        # default location for entities without one
    tags: [Users]             # module tags inherited by routines
    entities:
      - kind: routine
        name: get_user
        doc: |
          Get one user
          @route GET /users/{id: u32}
          @return 200: User

This is the only module that touches the filesystem.
"""

import json
import logging
from pathlib import Path

import yaml
from pydantic import ValidationError

from openapi_weaver.errors import IoFailureError, SourceLocation
from openapi_weaver.parser.annotation import stringify_keys
from openapi_weaver.parser.base import SourceEntity

logger = logging.getLogger(__name__)

MANIFEST_SUFFIXES = (".yaml", ".yml", ".json")


def _read_structured(path: Path):
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise IoFailureError(f"cannot read {path}: {e}", location=SourceLocation(file=str(path)))
    try:
        if path.suffix == ".json":
            return json.loads(text)
        return yaml.safe_load(text)
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise IoFailureError(f"cannot parse {path}: {e}", location=SourceLocation(file=str(path)))


def _manifest_files(path: Path) -> list[Path]:
    if path.is_dir():
        return sorted(p for p in path.rglob("*") if p.suffix in MANIFEST_SUFFIXES)
    return [path]


def load_entities(path: Path) -> list[SourceEntity]:
    """Load the entities of one manifest file (or every manifest under a directory)."""
    path = Path(path)
    if not path.exists():
        raise IoFailureError(f"input not found: {path}", location=SourceLocation(file=str(path)))
    entities: list[SourceEntity] = []
    for manifest in _manifest_files(path):
        entities.extend(_load_manifest(manifest))
    return entities


def _load_manifest(path: Path) -> list[SourceEntity]:
    data = _read_structured(path)
    defaults: dict = {}
    if isinstance(data, dict):
        defaults = {"file": data.get("file") or str(path), "tags": data.get("tags") or []}
        items = data.get("entities") or []
    elif isinstance(data, list):
        defaults = {"file": str(path), "tags": []}
        items = data
    elif data is None:
        items = []
    else:
        raise IoFailureError(f"{path}: expected a list of entities", location=SourceLocation(file=str(path)))

    entities = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise IoFailureError(f"{path}: entity #{index + 1} is not a mapping", location=SourceLocation(file=str(path)))
        item = dict(item)
        location = dict(item.get("location") or {})
        location.setdefault("file", defaults["file"])
        item["location"] = location
        if not item.get("tags") and defaults["tags"]:
            item["tags"] = list(defaults["tags"])
        try:
            entities.append(SourceEntity.model_validate(item))
        except ValidationError as e:
            raise IoFailureError(
                f"{path}: entity #{index + 1} is malformed: {e.errors()[0]['msg']}",
                entity=item.get("name"),
                location=SourceLocation(file=str(path)),
            )
    logger.debug("loaded %d entities from %s", len(entities), path)
    return entities


def load_all(paths: list[Path]) -> list[SourceEntity]:
    entities: list[SourceEntity] = []
    for path in paths:
        entities.extend(load_entities(path))
    return entities


def load_document(path: Path) -> dict:
    """Load a static include document."""
    path = Path(path)
    if not path.exists():
        raise IoFailureError(f"include not found: {path}", location=SourceLocation(file=str(path)))
    data = _read_structured(path)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise IoFailureError(f"{path}: an include must be a mapping", location=SourceLocation(file=str(path)))
    return stringify_keys(data)
