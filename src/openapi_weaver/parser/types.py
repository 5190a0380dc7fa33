"""Type references: a small recursive variant plus its grammar.

A reference is one of
    primitive  well-known scalar, mapped straight to a schema
    any        free-form value, renders as {}
    unit       the empty type; only meaningful for responses
    named      a reference to a schema in the registry
    generic    TemplateName<Arg1, ..., ArgN>
    array      Vec<T>, [T], ...
    map        HashMap<K, V>, ... (only the value type survives)
    optional   Option<T>, ...

Wrappers keep the identifier they were written with in ``name`` so a
mangled name can be rebuilt from the reference alone.
"""

import re
from typing import Literal

from pydantic import BaseModel

from openapi_weaver.errors import InvalidDirectiveSyntaxError

SCHEMA_PREFIX = "#/components/schemas/"
MANGLE_SEPARATOR = "_"

PRIMITIVES: dict[str, dict] = {
    "bool": {"type": "boolean"},
    "boolean": {"type": "boolean"},
    "String": {"type": "string"},
    "string": {"type": "string"},
    "str": {"type": "string"},
    "char": {"type": "string"},
    "i8": {"type": "integer", "format": "int32"},
    "i16": {"type": "integer", "format": "int32"},
    "i32": {"type": "integer", "format": "int32"},
    "u8": {"type": "integer", "format": "int32"},
    "u16": {"type": "integer", "format": "int32"},
    "u32": {"type": "integer", "format": "int32"},
    "int": {"type": "integer", "format": "int32"},
    "integer": {"type": "integer"},
    "i64": {"type": "integer", "format": "int64"},
    "u64": {"type": "integer", "format": "int64"},
    "isize": {"type": "integer", "format": "int64"},
    "usize": {"type": "integer", "format": "int64"},
    "f32": {"type": "number", "format": "float"},
    "float": {"type": "number", "format": "float"},
    "f64": {"type": "number", "format": "double"},
    "number": {"type": "number"},
    "Uuid": {"type": "string", "format": "uuid"},
    "NaiveDate": {"type": "string", "format": "date"},
    "DateTime": {"type": "string", "format": "date-time"},
    "NaiveDateTime": {"type": "string", "format": "date-time"},
    "DateTimeUtc": {"type": "string", "format": "date-time"},
    "NaiveTime": {"type": "string", "format": "time"},
    "Url": {"type": "string", "format": "uri"},
    "Uri": {"type": "string", "format": "uri"},
    "Decimal": {"type": "string", "format": "decimal"},
    "BigDecimal": {"type": "string", "format": "decimal"},
    "ObjectId": {"type": "string", "format": "objectid"},
}

ANY_TYPES = {"Value", "any", "Any"}
UNIT_TYPES = {"()", "unit"}
OPTIONAL_WRAPPERS = {"Option", "Optional"}
ARRAY_WRAPPERS = {"Vec", "List", "LinkedList", "HashSet", "BTreeSet", "Set"}
MAP_WRAPPERS = {"HashMap", "BTreeMap", "Map", "Dict"}
TRANSPARENT_WRAPPERS = {"Box", "Arc", "Rc", "Cow"}

_IDENT = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class TypeRef(BaseModel):
    """One node of a type reference tree."""

    kind: Literal["primitive", "any", "unit", "named", "generic", "array", "map", "optional"]
    name: str = ""
    args: list["TypeRef"] = []

    def __str__(self) -> str:
        return render(self)


def primitive(name: str) -> TypeRef:
    return TypeRef(kind="primitive", name=name)


def named(name: str) -> TypeRef:
    return TypeRef(kind="named", name=name)


def generic(name: str, args: list[TypeRef]) -> TypeRef:
    return TypeRef(kind="generic", name=name, args=args)


def split_generic_args(text: str) -> list[str]:
    """Split a generic argument list on top-level commas.

    Commas nested inside ``<...>`` or ``[...]`` do not split.
    """
    parts = []
    depth = 0
    current = []
    for ch in text:
        if ch in "<[(":
            depth += 1
        elif ch in ">])":
            depth -= 1
            if depth < 0:
                raise InvalidDirectiveSyntaxError(f"unbalanced brackets in type arguments '{text}'")
        if ch == "," and depth == 0:
            parts.append("".join(current).strip())
            current = []
        else:
            current.append(ch)
    if depth != 0:
        raise InvalidDirectiveSyntaxError(f"unbalanced brackets in type arguments '{text}'")
    tail = "".join(current).strip()
    if tail or parts:
        parts.append(tail)
    if any(not p for p in parts):
        raise InvalidDirectiveSyntaxError(f"empty type argument in '{text}'")
    return parts


def parse_type(text: str) -> TypeRef:
    """Parse a textual type reference into a TypeRef tree."""
    text = text.strip()
    if not text:
        raise InvalidDirectiveSyntaxError("empty type reference")

    if text in UNIT_TYPES:
        return TypeRef(kind="unit", name="Unit")

    # $Name forces a schema reference, bypassing the primitive table
    if text.startswith("$"):
        head, args = _split_head(text[1:])
        if args:
            return generic(head, [parse_type(a) for a in args])
        return named(head)

    if text.startswith("&"):
        return parse_type(re.sub(r"^&('\w+\s+)?(mut\s+)?", "", text))

    if text.startswith("["):
        if not text.endswith("]"):
            raise InvalidDirectiveSyntaxError(f"unterminated slice type '{text}'")
        inner = text[1:-1]
        # [T; N] fixed-size arrays
        inner = split_generic_args(inner.replace(";", ","))[0] if inner else inner
        return TypeRef(kind="array", name="Array", args=[parse_type(inner)])

    head, args = _split_head(text)
    if head in ANY_TYPES:
        return TypeRef(kind="any", name=head)
    if head in PRIMITIVES:
        # DateTime<Utc> and friends: the argument carries no schema meaning
        return primitive(head)
    if head in OPTIONAL_WRAPPERS:
        _expect_args(head, args, 1, text)
        return TypeRef(kind="optional", name=head, args=[parse_type(args[0])])
    if head in ARRAY_WRAPPERS:
        _expect_args(head, args, 1, text)
        return TypeRef(kind="array", name=head, args=[parse_type(args[0])])
    if head in MAP_WRAPPERS:
        if not args:
            raise InvalidDirectiveSyntaxError(f"'{head}' needs a value type in '{text}'")
        return TypeRef(kind="map", name=head, args=[parse_type(args[-1])])
    if head in TRANSPARENT_WRAPPERS:
        _expect_args(head, args, 1, text)
        return parse_type(args[0])
    if args:
        return generic(head, [parse_type(a) for a in args])
    return named(head)


def _split_head(text: str) -> tuple[str, list[str]]:
    """Split ``path::Name<args>`` into ``Name`` and its raw argument strings."""
    if "<" in text:
        idx = text.index("<")
        if not text.endswith(">"):
            raise InvalidDirectiveSyntaxError(f"unterminated generic arguments in '{text}'")
        head = text[:idx].strip()
        args = split_generic_args(text[idx + 1 : -1])
    else:
        head, args = text, []
    head = head.split("::")[-1].strip()
    if not _IDENT.match(head):
        raise InvalidDirectiveSyntaxError(f"invalid type name '{head}' in '{text}'")
    return head, args


def _expect_args(head: str, args: list[str], count: int, text: str) -> None:
    if len(args) != count:
        raise InvalidDirectiveSyntaxError(
            f"'{head}' takes {count} type argument(s), got {len(args)} in '{text}'"
        )


def render(ref: TypeRef) -> str:
    """Canonical text of a reference; stable, used as a memo key."""
    if ref.kind in ("primitive", "any", "named"):
        return ref.name
    if ref.kind == "unit":
        return "()"
    if ref.kind == "array" and ref.name == "Array":
        return f"[{render(ref.args[0])}]"
    return f"{ref.name}<{', '.join(render(a) for a in ref.args)}>"


def mangle(ref: TypeRef) -> str:
    """Deterministic concrete name: template name joined with argument names."""
    if not ref.args:
        return ref.name
    return MANGLE_SEPARATOR.join([ref.name] + [mangle(a) for a in ref.args])


def is_required(ref: TypeRef) -> bool:
    return ref.kind != "optional"


def iter_refs(ref: TypeRef):
    """Yield every named or generic node, outermost first."""
    if ref.kind in ("named", "generic"):
        yield ref
    for arg in ref.args:
        yield from iter_refs(arg)


def substitute(ref: TypeRef, bindings: dict[str, TypeRef]) -> TypeRef:
    """Replace named references to generic parameters with their bound arguments."""
    if ref.kind == "named" and ref.name in bindings:
        return bindings[ref.name]
    if not ref.args:
        return ref
    return ref.model_copy(update={"args": [substitute(a, bindings) for a in ref.args]})


def rewrite_generics(ref: TypeRef, resolve) -> TypeRef:
    """Rewrite generic nodes (innermost first) through ``resolve(ref) -> name``."""
    if not ref.args:
        return ref
    args = [rewrite_generics(a, resolve) for a in ref.args]
    if ref.kind == "generic":
        return named(resolve(ref.model_copy(update={"args": args})))
    return ref.model_copy(update={"args": args})


def to_schema(ref: TypeRef) -> dict:
    """Map a (fully concrete) reference to an OpenAPI schema object."""
    if ref.kind == "primitive":
        return dict(PRIMITIVES[ref.name])
    if ref.kind in ("any", "unit"):
        return {}
    if ref.kind == "optional":
        return to_schema(ref.args[0])
    if ref.kind == "array":
        return {"type": "array", "items": to_schema(ref.args[0])}
    if ref.kind == "map":
        return {"type": "object", "additionalProperties": to_schema(ref.args[0])}
    if ref.kind == "generic":
        return {"$ref": SCHEMA_PREFIX + mangle(ref)}
    return {"$ref": SCHEMA_PREFIX + ref.name}


def is_raw_ref(value) -> bool:
    """``$Name`` / ``$Tpl<Arg>`` strings written in ``$ref`` positions of raw blocks."""
    return isinstance(value, str) and value.startswith("$") and len(value) > 1


def raw_refs(data):
    """Yield every ``$ref: $Name`` string inside a raw block, in document order."""
    if isinstance(data, dict):
        for key, value in data.items():
            if key == "$ref" and is_raw_ref(value):
                yield value
            else:
                yield from raw_refs(value)
    elif isinstance(data, list):
        for item in data:
            yield from raw_refs(item)


def map_raw_refs(data, fn):
    """Copy ``data`` with every raw ``$ref`` string replaced by ``fn(value)``."""
    if isinstance(data, dict):
        return {
            key: fn(value) if key == "$ref" and is_raw_ref(value) else map_raw_refs(value, fn)
            for key, value in data.items()
        }
    if isinstance(data, list):
        return [map_raw_refs(item, fn) for item in data]
    return data
