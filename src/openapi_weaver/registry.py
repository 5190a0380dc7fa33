"""Entity registry: the single store every parsed entity contributes to.

Entities are parsed on a worker pool, so every insertion happens under one
lock. Each name keeps the full list of claimants; lookups and conflict
reports always go by declaration order, never by which worker finished
first, so the outcome of a run does not depend on thread scheduling.
"""

import logging
import threading

from openapi_weaver.errors import Diagnostic, DuplicateNameError
from openapi_weaver.parser.base import (
    DocumentSnippet,
    Fragment,
    ParsedEntity,
    RootDocument,
    RouteOperation,
    SchemaDefinition,
)
from openapi_weaver.parser.types import TypeRef

logger = logging.getLogger(__name__)


def _first(claimants: list):
    return min(claimants, key=lambda c: c.order)


def _duplicate(label: str, name: str, first, second) -> DuplicateNameError:
    return DuplicateNameError(
        f"{label} '{name}' is declared by '{first.entity}' ({first.location}) "
        f"and by '{second.entity}' ({second.location})",
        entity=second.entity,
        location=second.location,
    )


class Registry:
    """Owns all schemas, routes, fragments and roots of one generation run."""

    def __init__(self):
        self._lock = threading.Lock()
        self._frozen = False
        self._schemas: dict[str, list[SchemaDefinition]] = {}
        self._fragments: dict[str, list[Fragment]] = {}
        self._routes: dict[str, list[RouteOperation]] = {}
        self._roots: list[RootDocument] = []
        self._snippets: list[DocumentSnippet] = []

    # Insertion

    def _claim(self, table: dict, label: str, name: str, item) -> Diagnostic | None:
        with self._lock:
            claimants = table.setdefault(name, [])
            clash = _first(claimants) if claimants else None
            claimants.append(item)
        if clash is None:
            return None
        first, second = sorted([clash, item], key=lambda c: c.order)
        logger.debug("duplicate %s '%s'", label, name)
        return _duplicate(label, name, first, second).to_diagnostic()

    def add_fragment(self, fragment: Fragment) -> Diagnostic | None:
        return self._claim(self._fragments, "fragment", fragment.name, fragment)

    def add_schema(self, schema: SchemaDefinition) -> Diagnostic | None:
        """Register a schema; the monomorphizer also adds instances after freezing."""
        return self._claim(self._schemas, "schema", schema.name, schema)

    def add_route(self, route: RouteOperation) -> Diagnostic | None:
        if self._frozen:
            raise RuntimeError("registry is frozen; routes can no longer be added")
        return self._claim(self._routes, "route", route.key, route)

    def add_root(self, root: RootDocument) -> None:
        with self._lock:
            self._roots.append(root)

    def add_snippet(self, snippet: DocumentSnippet) -> None:
        with self._lock:
            self._snippets.append(snippet)

    def add_parsed(self, parsed: ParsedEntity) -> list[Diagnostic]:
        """Insert everything one entity produced; returns collisions, never raises."""
        diagnostics = []
        for route in parsed.routes:
            diagnostics.append(self.add_route(route))
        for schema in parsed.schemas:
            diagnostics.append(self.add_schema(schema))
        for root in parsed.roots:
            self.add_root(root)
        for snippet in parsed.snippets:
            self.add_snippet(snippet)
        return [d for d in diagnostics if d is not None]

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    # Conflicts

    def conflicts(self, *labels: str) -> list[DuplicateNameError]:
        """Every name claimed more than once, in declaration order.

        Restricted to the given tables ("fragment", "schema", "route") when any are named.
        """
        errors = []
        for label, table in (
            ("fragment", self._fragments),
            ("schema", self._schemas),
            ("route", self._routes),
        ):
            if labels and label not in labels:
                continue
            for name, claimants in table.items():
                if len(claimants) < 2:
                    continue
                ordered = sorted(claimants, key=lambda c: c.order)
                for later in ordered[1:]:
                    errors.append((later.order, _duplicate(label, name, ordered[0], later)))
        return [error for _, error in sorted(errors, key=lambda pair: pair[0])]

    # Lookup

    def fragment(self, name: str) -> Fragment | None:
        claimants = self._fragments.get(name)
        return _first(claimants) if claimants else None

    def schema(self, name: str) -> SchemaDefinition | None:
        claimants = self._schemas.get(name)
        return _first(claimants) if claimants else None

    def has_schema(self, name: str) -> bool:
        return name in self._schemas

    def is_template(self, name: str) -> bool:
        schema = self.schema(name)
        return schema is not None and schema.kind == "generic-template"

    def schemas(self) -> list[SchemaDefinition]:
        """First claimant of every name, in declaration order."""
        return sorted((_first(c) for c in self._schemas.values()), key=lambda s: s.order)

    def routes(self) -> list[RouteOperation]:
        return sorted((_first(c) for c in self._routes.values()), key=lambda r: r.order)

    def fragments(self) -> list[Fragment]:
        return sorted((_first(c) for c in self._fragments.values()), key=lambda f: f.order)

    def roots(self) -> list[RootDocument]:
        return sorted(self._roots, key=lambda r: r.order)

    def snippets(self) -> list[DocumentSnippet]:
        return sorted(self._snippets, key=lambda s: s.order)


def typed_refs(item) -> list[TypeRef]:
    """Type references stored on a route or schema."""
    if isinstance(item, RouteOperation):
        refs = [p.type_ref for p in item.parameters]
        if item.request_body:
            refs.append(item.request_body.type_ref)
        refs.extend(r.type_ref for r in item.responses.values() if r.type_ref is not None)
        return refs
    if isinstance(item, SchemaDefinition):
        refs = [f.type_ref for f in item.fields if f.type_ref is not None]
        if item.alias_of is not None:
            refs.append(item.alias_of)
        return refs
    return []


def raw_blocks(item) -> list[dict]:
    """Raw structured blocks that may carry ``$ref: $Name`` strings."""
    if isinstance(item, RouteOperation):
        return [item.overrides.data]
    if isinstance(item, SchemaDefinition):
        return [item.overrides.data] + [f.overrides.data for f in item.fields]
    if isinstance(item, (RootDocument, DocumentSnippet)):
        return [item.body.data]
    return []
