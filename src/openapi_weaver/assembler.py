"""Document assembler: renders the registry and layers static includes on top.

Base document order is root block, paths, component schemas, then
document snippets in declaration order. Includes are applied afterwards,
each as a later layer, so a later include wins at scalar collisions.
"""

import logging

from pydantic import BaseModel

from openapi_weaver.errors import (
    GenerationError,
    InvalidDirectiveSyntaxError,
    MergeConflictError,
    MissingRootError,
    UnresolvedReferenceError,
)
from openapi_weaver.generics import Monomorphizer
from openapi_weaver.merger import deep_merge
from openapi_weaver.parser.base import (
    Parameter,
    RouteOperation,
    SchemaDefinition,
    SchemaField,
)
from openapi_weaver.parser.types import is_required
from openapi_weaver.registry import Registry

logger = logging.getLogger(__name__)

HEADLESS_DROPPED_KEYS = ("openapi", "info", "servers")


def local_refs(value, path: str = ""):
    """Yield (location, target) for every in-document ``$ref`` string."""
    if isinstance(value, dict):
        for key, child in value.items():
            if key == "$ref" and isinstance(child, str) and child.startswith("#/"):
                yield path or "/", child
            else:
                escaped = str(key).replace("~", "~0").replace("/", "~1")
                yield from local_refs(child, f"{path}/{escaped}")
    elif isinstance(value, list):
        for index, child in enumerate(value):
            yield from local_refs(child, f"{path}/{index}")


def resolve_pointer(document: dict, pointer: str) -> bool:
    """True when a ``#/a/b`` JSON pointer names something inside ``document``."""
    node = document
    for part in pointer[2:].split("/"):
        part = part.replace("~1", "/").replace("~0", "~")
        if isinstance(node, dict) and part in node:
            node = node[part]
        elif isinstance(node, list) and part.isdigit() and int(part) < len(node):
            node = node[int(part)]
        else:
            return False
    return True


class GenerationResult(BaseModel):
    """The four views of one successful run."""

    document: dict | None = None  # None when no root is required and none exists
    fragment: dict = {}
    schemas: dict = {}
    paths: dict = {}


class Assembler:
    def __init__(self, registry: Registry, monomorphizer: Monomorphizer):
        self.registry = registry
        self.mono = monomorphizer

    def _override(self, generated: dict, data: dict, owner) -> dict:
        """Merge a raw override block over generated content; the override wins."""
        try:
            return deep_merge(generated, self.mono.resolve_raw(data))
        except MergeConflictError as e:
            e.entity, e.location = owner.entity, owner.location
            raise

    # Operations

    def render_parameter(self, param: Parameter) -> dict:
        out = {"name": param.name, "in": param.location}
        if param.description:
            out["description"] = param.description
        out["required"] = param.required
        if param.deprecated:
            out["deprecated"] = True
        out["schema"] = self.mono.schema_for(param.type_ref)
        if param.example is not None:
            out["example"] = param.example
        return out

    def render_operation(self, route: RouteOperation) -> dict:
        op: dict = {}
        if route.tags:
            op["tags"] = list(route.tags)
        if route.summary:
            op["summary"] = route.summary
        if route.description:
            op["description"] = route.description
        if route.operation_id:
            op["operationId"] = route.operation_id
        if route.parameters:
            op["parameters"] = [self.render_parameter(p) for p in route.parameters]
        if route.request_body:
            body = route.request_body
            op["requestBody"] = {
                "content": {body.media_type: {"schema": self.mono.schema_for(body.type_ref)}}
            }
        responses = {}
        for status, spec in route.responses.items():
            response = {"description": spec.description}
            if not spec.unit and spec.type_ref is not None:
                response["content"] = {spec.media_type: {"schema": self.mono.schema_for(spec.type_ref)}}
            responses[status] = response
        op["responses"] = responses
        if route.security:
            op["security"] = [dict(s) for s in route.security]

        op = self._override(op, route.overrides.data, route)
        if not isinstance(op.get("responses"), dict):
            raise InvalidDirectiveSyntaxError(
                f"route '{route.key}': the 'responses' override must be a mapping",
                entity=route.entity,
                location=route.location,
            )

        # a unit response stays content-free even if an override added content
        for status, spec in route.responses.items():
            response = op["responses"].get(str(status))
            if spec.unit and isinstance(response, dict):
                response.pop("content", None)
        return op

    # Schemas

    def render_property(self, field: SchemaField) -> dict:
        prop = self.mono.schema_for(field.type_ref)
        if field.description:
            prop["description"] = field.description
        prop.update(field.validation)
        return deep_merge(prop, self.mono.resolve_raw(field.overrides.data), path=f"/properties/{field.name}")

    def render_schema(self, schema: SchemaDefinition) -> dict:
        kind = schema.kind
        if kind == "object" and schema.shape == "raw":
            out = {}
        elif kind == "object":
            out = {"type": "object"}
            if schema.description:
                out["description"] = schema.description
            if schema.fields:
                try:
                    out["properties"] = {f.name: self.render_property(f) for f in schema.fields}
                except MergeConflictError as e:
                    e.entity, e.location = schema.entity, schema.location
                    raise
                required = [f.name for f in schema.fields if is_required(f.type_ref)]
                if required:
                    out["required"] = required
        elif kind == "enum":
            out = {"type": "string"}
            if schema.description:
                out["description"] = schema.description
            out["enum"] = [f.name for f in schema.fields]
        else:
            out = self.mono.schema_for(schema.alias_of)
            if schema.description:
                out["description"] = schema.description
        return self._override(out, schema.overrides.data, schema)

    # Document

    def base_document(self) -> dict:
        """Generated content only: root, paths, schemas, snippets."""
        document: dict = {}
        roots = self.registry.roots()
        if roots:
            document = self.mono.resolve_raw(roots[0].body.data)
            document["openapi"] = roots[0].version

        paths: dict = {}
        for route in self.registry.routes():
            paths.setdefault(route.path, {})[route.method] = self.render_operation(route)
        if paths:
            document = deep_merge(document, {"paths": paths})

        schemas = {
            s.name: self.render_schema(s)
            for s in self.registry.schemas()
            if s.kind != "generic-template" and s.exported
        }
        if schemas:
            document = deep_merge(document, {"components": {"schemas": schemas}})

        for snippet in self.registry.snippets():
            document = deep_merge(document, self.mono.resolve_raw(snippet.body.data), overlay_wins=False)
        return document

    def assemble(self, includes: list[dict], require_root: bool = True) -> GenerationResult:
        """Build all four views.

        Merge and root failures raise the WeaverError; dangling in-document
        references are all reported together in a GenerationError.
        """
        document = self.base_document()
        for index, layer in enumerate(includes):
            try:
                document = deep_merge(document, layer)
            except MergeConflictError as e:
                e.message = f"include #{index + 1}: {e.message}"
                raise
            logger.debug("merged include #%d", index + 1)

        dangling = [
            UnresolvedReferenceError(f"'{target}' at '{where}' does not point into the document")
            for where, target in local_refs(document)
            if not resolve_pointer(document, target)
        ]
        if dangling:
            raise GenerationError([e.to_diagnostic() for e in dangling])

        has_root = "openapi" in document and "info" in document
        if not has_root and require_root:
            raise MissingRootError(
                "no root document: declare one '@openapi' block with 'openapi' and 'info', "
                "or supply them through an include"
            )

        fragment = {k: v for k, v in document.items() if k not in HEADLESS_DROPPED_KEYS}
        result = GenerationResult(
            document=document if has_root else None,
            fragment=fragment,
            schemas=(document.get("components") or {}).get("schemas") or {},
            paths=document.get("paths") or {},
        )
        if not result.paths:
            logger.info("generated document has no paths")
        if not result.schemas:
            logger.info("generated document has no component schemas")
        return result

