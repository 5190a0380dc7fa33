"""Referential-integrity checks over the frozen registry."""

import logging
import re

from openapi_weaver.errors import (
    ArityMismatchError,
    DuplicateParameterError,
    InvalidDirectiveSyntaxError,
    MissingPathParameterError,
    MultipleRootsError,
    UnmatchedPathTokenError,
    UnresolvedReferenceError,
    WeaverError,
)
from openapi_weaver.parser.base import RouteOperation, SchemaDefinition
from openapi_weaver.parser.types import TypeRef, iter_refs, parse_type, raw_refs, render
from openapi_weaver.registry import Registry, raw_blocks, typed_refs

logger = logging.getLogger(__name__)

PATH_TOKEN = re.compile(r"\{(\w+)\}")


def path_tokens(path: str) -> list[str]:
    return PATH_TOKEN.findall(path)


class Validator:
    """Checks path symmetry, reference resolvability and root cardinality."""

    def __init__(self, registry: Registry):
        self.registry = registry

    def validate(self) -> list[WeaverError]:
        errors: list[WeaverError] = []
        for route in self.registry.routes():
            errors.extend(self.check_path(route))
            errors.extend(self.check_references(route))
        for schema in self.registry.schemas():
            errors.extend(self.check_references(schema, bound=set(schema.generic_params)))
        for item in self.registry.roots() + self.registry.snippets():
            errors.extend(self.check_references(item))
        errors.extend(self.check_roots())
        logger.debug("validation found %d problem(s)", len(errors))
        return errors

    def check_path(self, route: RouteOperation) -> list[WeaverError]:
        """Every {token} has exactly one path parameter and vice versa."""
        errors: list[WeaverError] = []
        tokens = path_tokens(route.path)
        declared = [p.name for p in route.parameters if p.location == "path"]
        context = {"entity": route.entity, "location": route.location}

        seen = set()
        for token in tokens:
            if token in seen:
                errors.append(
                    DuplicateParameterError(f"route '{route.key}' repeats the path token '{{{token}}}'", **context)
                )
            seen.add(token)
            if token not in declared:
                errors.append(
                    MissingPathParameterError(
                        f"route '{route.key}' has no path parameter for '{{{token}}}'", **context
                    )
                )
        for name in declared:
            if name not in tokens:
                errors.append(
                    UnmatchedPathTokenError(
                        f"route '{route.key}' declares path parameter '{name}' but its path has no '{{{name}}}'",
                        **context,
                    )
                )
        return errors

    def check_references(self, item, bound: set[str] | None = None) -> list[WeaverError]:
        """Named references must resolve; generic heads are left to the monomorphizer."""
        bound = bound or set()
        context = {"entity": item.entity, "location": item.location}
        owner = _describe(item)
        errors: list[WeaverError] = []

        refs: list[TypeRef] = list(typed_refs(item))
        for block in raw_blocks(item):
            for text in raw_refs(block):
                try:
                    refs.append(parse_type(text))
                except InvalidDirectiveSyntaxError as e:
                    e.entity, e.location, e.directive = item.entity, item.location, f"$ref: {text}"
                    errors.append(e)

        for ref in refs:
            for node in iter_refs(ref):
                if node.kind != "named" or node.name in bound:
                    continue
                schema = self.registry.schema(node.name)
                if schema is None:
                    errors.append(
                        UnresolvedReferenceError(
                            f"{owner} references unknown schema '{node.name}' (in '{render(ref)}')",
                            **context,
                        )
                    )
                elif self.registry.is_template(node.name):
                    errors.append(
                        ArityMismatchError(
                            f"{owner} uses generic template '{node.name}' without its "
                            f"{len(schema.generic_params)} type argument(s)",
                            **context,
                        )
                    )
        return errors

    def check_roots(self) -> list[WeaverError]:
        roots = self.registry.roots()
        if len(roots) <= 1:
            return []
        where = ", ".join(f"'{r.entity}' ({r.location})" for r in roots)
        return [
            MultipleRootsError(
                f"found {len(roots)} root documents: {where}",
                entity=roots[1].entity,
                location=roots[1].location,
            )
        ]


def _describe(item) -> str:
    if isinstance(item, RouteOperation):
        return f"route '{item.key}'"
    if isinstance(item, SchemaDefinition):
        return f"schema '{item.name}'"
    return f"document block of '{item.entity}'"
