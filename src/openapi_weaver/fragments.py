"""Fragment resolver.

``@insert`` is textual: before an entity is parsed, the directive line is
replaced by the fragment body (``{{param}}`` placeholders bound), indented
to the directive's column. This is the only way to add entries in the
middle of a sequence.

``@extend`` is structural: the annotation parser leaves a placeholder key
where the call was, and the resolver parses the bound fragment body and
deep-merges it into the enclosing mapping. Keys written locally win over
keys coming from the fragment.
"""

import itertools
import logging
import re

from openapi_weaver.errors import (
    InvalidDirectiveSyntaxError,
    UnresolvedFragmentReferenceError,
)
from openapi_weaver.merger import deep_merge
from openapi_weaver.parser.annotation import build_block
from openapi_weaver.parser.base import (
    Fragment,
    FragmentCall,
    OverrideBlock,
    ParsedEntity,
    SourceEntity,
)
from openapi_weaver.parser.directives import directive_keyword, parse_directive

logger = logging.getLogger(__name__)

PLACEHOLDER = re.compile(r"\{\{\s*(\w+)\s*\}\}")


class FragmentResolver:
    """Expands fragment calls against a fixed fragment namespace."""

    def __init__(self, lookup):
        # lookup(name) -> Fragment | None
        self.lookup = lookup

    def _get(self, call: FragmentCall) -> Fragment:
        fragment = self.lookup(call.name)
        if fragment is None:
            raise UnresolvedFragmentReferenceError(
                f"no fragment named '{call.name}'", directive=call.line
            )
        return fragment

    def bind(self, fragment: Fragment, call: FragmentCall) -> str:
        """Return the fragment body with its placeholders bound to the call's arguments."""
        if len(call.args) > len(fragment.params):
            raise InvalidDirectiveSyntaxError(
                f"fragment '{fragment.name}' takes {len(fragment.params)} argument(s), "
                f"got {len(call.args)}",
                directive=call.line,
            )
        values = dict(zip(fragment.params, call.args))
        for key, value in call.kwargs.items():
            if key not in fragment.params:
                raise InvalidDirectiveSyntaxError(
                    f"fragment '{fragment.name}' has no parameter '{key}'", directive=call.line
                )
            if key in values:
                raise InvalidDirectiveSyntaxError(
                    f"argument '{key}' of fragment '{fragment.name}' is given twice",
                    directive=call.line,
                )
            values[key] = value
        missing = [p for p in fragment.params if p not in values]
        if missing:
            raise InvalidDirectiveSyntaxError(
                f"fragment '{fragment.name}' is missing argument(s): {', '.join(missing)}",
                directive=call.line,
            )

        def replace(match: re.Match) -> str:
            return values.get(match.group(1), match.group(0))

        return PLACEHOLDER.sub(replace, fragment.body)

    def _enter(self, call: FragmentCall, stack: tuple) -> tuple:
        if call.name in stack:
            chain = " -> ".join(stack + (call.name,))
            raise InvalidDirectiveSyntaxError(f"recursive fragment expansion: {chain}", directive=call.line)
        return stack + (call.name,)

    # Textual expansion

    def expand_inserts(self, text: str, stack: tuple = ()) -> str:
        """Splice every @insert line of ``text``, recursively."""
        if "@insert" not in text:
            return text
        out = []
        for line in text.splitlines():
            if directive_keyword(line) != "insert":
                out.append(line)
                continue
            call = parse_directive(line).call
            inner = self._enter(call, stack)
            body = self.expand_inserts(self.bind(self._get(call), call), inner)
            indent = line[: len(line) - len(line.lstrip())]
            out.extend(indent + part if part.strip() else part for part in body.splitlines())
            logger.debug("inserted fragment '%s'", call.name)
        return "\n".join(out)

    def expand_entity(self, entity: SourceEntity) -> SourceEntity:
        """Expand inserts in an entity's doc text and in its field/variant docs."""
        return entity.model_copy(
            update={
                "doc": self.expand_inserts(entity.doc),
                "fields": [
                    f.model_copy(update={"doc": self.expand_inserts(f.doc)}) for f in entity.fields
                ],
                "variants": [
                    v.model_copy(update={"doc": self.expand_inserts(v.doc)}) for v in entity.variants
                ],
            }
        )

    # Structural expansion

    def expand_call(self, call: FragmentCall, stack: tuple = ()) -> dict:
        """Parse one fragment call into a mapping, resolving its own calls first."""
        inner = self._enter(call, stack)
        text = self.expand_inserts(self.bind(self._get(call), call), inner)
        try:
            block = build_block(text.splitlines(), itertools.count())
        except InvalidDirectiveSyntaxError as e:
            e.message = f"fragment '{call.name}': {e.message}"
            e.directive = e.directive or call.line
            raise
        return self.materialize(block, inner).data

    def _materialize(self, value, extends: dict[str, FragmentCall], stack: tuple):
        if isinstance(value, list):
            return [self._materialize(v, extends, stack) for v in value]
        if not isinstance(value, dict):
            return value
        local = {}
        calls = []
        for key, child in value.items():
            if key in extends:
                calls.append(extends[key])
            else:
                local[key] = self._materialize(child, extends, stack)
        for call in calls:
            local = deep_merge(local, self.expand_call(call, stack), overlay_wins=False)
            logger.debug("extended with fragment '%s'", call.name)
        return local

    def materialize(self, block: OverrideBlock, stack: tuple = ()) -> OverrideBlock:
        """Replace every extend placeholder in ``block`` with its merged fragment."""
        if not block.extends:
            return block
        return OverrideBlock(data=self._materialize(block.data, block.extends, stack))

    def resolve_entity(self, parsed: ParsedEntity) -> ParsedEntity:
        """Materialize every structured block an entity produced."""
        routes = [
            r.model_copy(update={"overrides": self.materialize(r.overrides)}) for r in parsed.routes
        ]
        schemas = [
            s.model_copy(
                update={
                    "overrides": self.materialize(s.overrides),
                    "fields": [
                        f.model_copy(update={"overrides": self.materialize(f.overrides)})
                        for f in s.fields
                    ],
                }
            )
            for s in parsed.schemas
        ]
        roots = [r.model_copy(update={"body": self.materialize(r.body)}) for r in parsed.roots]
        snippets = [s.model_copy(update={"body": self.materialize(s.body)}) for s in parsed.snippets]
        return parsed.model_copy(
            update={"routes": routes, "schemas": schemas, "roots": roots, "snippets": snippets}
        )
