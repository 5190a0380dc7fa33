"""Generics monomorphizer.

Rewrites every ``Template<Args>`` reference into a concrete schema named by
mangling (``Page<User>`` -> ``Page_User``). Instances are memoized by
(template, rendered arguments), created in first-discovered order and
scanned again for the generic references their substitution introduced.
Existing schemas are never mutated; references are rewritten when the
assembler renders them through ``rewrite``.
"""

import itertools
import logging
import re
import sys

from openapi_weaver.errors import (
    ArityMismatchError,
    DuplicateNameError,
    InvalidDirectiveSyntaxError,
    UnknownTemplateError,
    WeaverError,
)
from openapi_weaver.parser.base import OverrideBlock, SchemaDefinition
from openapi_weaver.parser.types import (
    SCHEMA_PREFIX,
    TypeRef,
    map_raw_refs,
    mangle,
    parse_type,
    raw_refs,
    render,
    rewrite_generics,
    substitute,
    to_schema,
)
from openapi_weaver.registry import Registry, raw_blocks, typed_refs

logger = logging.getLogger(__name__)

MAX_DEPTH = 32
_PARAM_TOKEN = re.compile(r"\$([A-Za-z_]\w*)")


def _memo_key(ref: TypeRef) -> tuple[str, str]:
    return ref.name, ", ".join(render(a) for a in ref.args)


def substitute_text(value: str, bindings: dict[str, TypeRef]) -> str:
    """Replace ``$T`` tokens in a raw string with the bound argument."""

    def replace(match: re.Match) -> str:
        name = match.group(1)
        if name not in bindings:
            return match.group(0)
        arg = bindings[name]
        return f"${render(arg)}" if arg.kind in ("named", "generic") else render(arg)

    return _PARAM_TOKEN.sub(replace, value)


def substitute_raw(data, bindings: dict[str, TypeRef]):
    if isinstance(data, dict):
        return {k: substitute_raw(v, bindings) for k, v in data.items()}
    if isinstance(data, list):
        return [substitute_raw(v, bindings) for v in data]
    if isinstance(data, str) and "$" in data:
        return substitute_text(data, bindings)
    return data


class Monomorphizer:
    """Instantiates generic templates on first use and remembers the mangled names."""

    def __init__(self, registry: Registry):
        self.registry = registry
        self.instances: dict[tuple[str, str], str] = {}
        self._keys: dict[str, tuple[str, str]] = {}  # mangled name -> memo key
        self._seq = itertools.count()

    def run(self) -> list[WeaverError]:
        """Scan every stored reference in declaration order; returns the failures."""
        errors: list[WeaverError] = []
        owners = self.registry.routes() + [
            s for s in self.registry.schemas() if s.kind != "generic-template"
        ]
        owners.sort(key=lambda o: o.order)
        owners += self.registry.roots() + self.registry.snippets()
        for owner in owners:
            try:
                self.scan(owner)
            except WeaverError as e:
                if e.entity is None:
                    e.entity, e.location = owner.entity, owner.location
                errors.append(e)
        logger.debug("instantiated %d generic schema(s)", len(self.instances))
        return errors

    def scan(self, owner, depth: int = 0) -> None:
        for ref in typed_refs(owner):
            self._resolve_all(ref, owner, depth)
        for block in raw_blocks(owner):
            for text in raw_refs(block):
                self._resolve_all(parse_type(text), owner, depth)

    def _resolve_all(self, ref: TypeRef, owner, depth: int) -> None:
        rewrite_generics(ref, lambda node: self.instantiate(node, owner, depth))

    def instantiate(self, ref: TypeRef, owner, depth: int = 0) -> str:
        """Return the concrete name for ``ref``; its args are already concrete."""
        key = _memo_key(ref)
        if key in self.instances:
            return self.instances[key]

        mangled = mangle(ref)
        context = {"entity": owner.entity, "location": owner.location}
        if mangled in self._keys:
            other = self._keys[mangled]
            raise DuplicateNameError(
                f"'{render(ref)}' and '{other[0]}<{other[1]}>' both instantiate as '{mangled}'",
                **context,
            )
        if self.registry.has_schema(mangled):
            self.instances[key] = mangled
            self._keys[mangled] = key
            return mangled

        template = self.registry.schema(ref.name)
        if template is None or template.kind != "generic-template":
            raise UnknownTemplateError(
                f"'{render(ref)}' refers to '{ref.name}', which is not a generic template", **context
            )
        if len(ref.args) != len(template.generic_params):
            raise ArityMismatchError(
                f"'{render(ref)}': template '{ref.name}' takes {len(template.generic_params)} "
                f"type argument(s), got {len(ref.args)}",
                **context,
            )
        if depth >= MAX_DEPTH:
            raise InvalidDirectiveSyntaxError(
                f"instantiating '{render(ref)}' nests generic templates deeper than {MAX_DEPTH} levels",
                **context,
            )

        self.instances[key] = mangled
        self._keys[mangled] = key
        instance = self._specialize(template, ref, mangled)
        self.registry.add_schema(instance)
        logger.debug("instantiated %s as %s", render(ref), mangled)
        self.scan(instance, depth + 1)
        return mangled

    def _specialize(self, template: SchemaDefinition, ref: TypeRef, name: str) -> SchemaDefinition:
        bindings = dict(zip(template.generic_params, ref.args))

        def raw(block: OverrideBlock) -> OverrideBlock:
            return OverrideBlock(data=substitute_raw(block.data, bindings))

        return template.model_copy(
            update={
                "name": name,
                "kind": template.shape if template.shape != "raw" else "object",
                "generic_params": [],
                "template": template.name,
                "exported": True,
                "fields": [
                    f.model_copy(
                        update={
                            "type_ref": substitute(f.type_ref, bindings) if f.type_ref else None,
                            "overrides": raw(f.overrides),
                        }
                    )
                    for f in template.fields
                ],
                "alias_of": substitute(template.alias_of, bindings) if template.alias_of else None,
                "overrides": raw(template.overrides),
                "order": (sys.maxsize, next(self._seq)),
            }
        )

    # Rendering

    def rewrite(self, ref: TypeRef) -> TypeRef:
        """Point every generic reference at its instance (all must be instantiated)."""
        return rewrite_generics(ref, lambda node: self.instances[_memo_key(node)])

    def schema_for(self, ref: TypeRef) -> dict:
        return to_schema(self.rewrite(ref))

    def resolve_raw(self, data):
        """Turn ``$ref: $Name`` strings of a raw block into component references."""

        def resolve(text: str) -> str:
            ref = self.rewrite(parse_type(text))
            return SCHEMA_PREFIX + ref.name

        return map_raw_refs(data, resolve)
