"""Annotation parser.

Interprets the directive text attached to one SourceEntity and returns
the routes, schemas, roots and document snippets it declares. Parsing is
entity-local and never consults the registry: textual ``@insert`` calls
are expected to be expanded already, and ``@extend`` calls are left in
the structured blocks as placeholder keys for the fragment resolver.
"""

import itertools
import logging
import re
import textwrap
from typing import Any, Literal

import yaml
from pydantic import BaseModel

from openapi_weaver.casing import CONVENTIONS, apply_casing, is_convention
from openapi_weaver.errors import (
    DuplicateParameterError,
    InvalidDirectiveSyntaxError,
    WeaverError,
)
from openapi_weaver.merger import deep_merge
from openapi_weaver.parser.base import (
    DocumentSnippet,
    EntityKind,
    FieldSignature,
    Fragment,
    OverrideBlock,
    Parameter,
    ParsedEntity,
    RequestBody,
    ResponseSpec,
    RootDocument,
    RouteOperation,
    SchemaDefinition,
    SchemaField,
    SourceEntity,
    VariantSignature,
)
from openapi_weaver.parser.directives import (
    BodyDirective,
    OpenApiDirective,
    ParamDirective,
    RenameAllDirective,
    RenameDirective,
    ReturnDirective,
    RouteDirective,
    SecurityDirective,
    TagDirective,
    directive_keyword,
    parse_directive,
)
from openapi_weaver.parser.types import parse_type, primitive

logger = logging.getLogger(__name__)

# {name}, {name: Type}, {name: Type "Description"}, {name "Description"}
INLINE_PATH_PARAM = re.compile(r'\{(\w+)(?::\s*([^"}]*))?(?:\s*"([^"]*)")?\s*\}')

ROUTE_OVERRIDE_KEYS = (
    "parameters:",
    "requestBody:",
    "responses:",
    "security:",
    "externalDocs:",
    "callbacks:",
    "servers:",
    "operationId:",
    "deprecated:",
)
ROUTE_ONLY_KEYWORDS = {
    "tag",
    "body",
    "return",
    "security",
    "path-param",
    "query-param",
    "header-param",
    "cookie-param",
}
DOCUMENT_KEYS = {"openapi", "info", "paths", "components", "tags", "servers", "security"}
SECTION_KEYWORDS = {"openapi", "openapi-type", "openapi-fragment"}
EXTEND_PLACEHOLDER = "__extend_{}__"


class Section(BaseModel):
    kind: Literal["main", "openapi", "openapi-type", "openapi-fragment"]
    header: Any = None
    lines: list[str] = []


class SplitDoc(BaseModel):
    main: Section
    sections: list[Section] = []
    modifiers: list[Any] = []


def stringify_keys(value):
    """YAML reads ``200:`` as an int key; document keys are always strings."""
    if isinstance(value, dict):
        return {str(k): stringify_keys(v) for k, v in value.items()}
    if isinstance(value, list):
        return [stringify_keys(v) for v in value]
    return value


def load_yaml_block(text: str) -> dict:
    """Parse a raw block that must be a mapping (or empty)."""
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise InvalidDirectiveSyntaxError(f"invalid structured block: {e}")
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise InvalidDirectiveSyntaxError(
            f"structured block must be a mapping, got {type(data).__name__}"
        )
    return stringify_keys(data)


def build_block(lines: list[str], counter) -> OverrideBlock:
    """Structurally parse raw lines, turning @extend calls into placeholder keys."""
    text_lines = []
    extends = {}
    for line in lines:
        keyword = directive_keyword(line)
        if keyword == "extend":
            directive = parse_directive(line)
            key = EXTEND_PLACEHOLDER.format(next(counter))
            indent = line[: len(line) - len(line.lstrip())]
            text_lines.append(f"{indent}{key}: null")
            extends[key] = directive.call
        elif keyword == "insert":
            raise InvalidDirectiveSyntaxError(
                "@insert must be expanded before structural parsing", directive=line.strip()
            )
        else:
            text_lines.append(line)

    text = textwrap.dedent("\n".join(text_lines))
    if not text.strip():
        return OverrideBlock()
    return OverrideBlock(data=load_yaml_block(text), extends=extends)


def merge_blocks(blocks: list[OverrideBlock]) -> OverrideBlock:
    data: dict = {}
    extends = {}
    for block in blocks:
        data = deep_merge(data, block.data)
        extends.update(block.extends)
    return OverrideBlock(data=data, extends=extends)


def split_sections(text: str) -> SplitDoc:
    """Split a directive block into the main section and @openapi* sections.

    Section headers are only recognised at column 0; ``@route`` switches
    back to the main section. ``@openapi rename``/``rename-all`` lines are
    declaration modifiers, not headers.
    """
    main = Section(kind="main")
    doc = SplitDoc(main=main)
    current = main
    for line in textwrap.dedent(text).splitlines():
        at_column_zero = line[:1] not in (" ", "\t")
        keyword = directive_keyword(line) if at_column_zero else None
        if keyword in SECTION_KEYWORDS:
            directive = parse_directive(line)
            if isinstance(directive, (RenameDirective, RenameAllDirective)):
                doc.modifiers.append(directive)
                continue
            current = Section(kind=directive.kind, header=directive)
            doc.sections.append(current)
            continue
        if keyword == "route":
            current = main
        current.lines.append(line)
    return doc


def _block_text(lines: list[str]) -> str:
    return textwrap.dedent("\n".join(lines)).strip("\n")


def _with_context(entity: SourceEntity, e: WeaverError) -> WeaverError:
    if e.entity is None:
        e.entity = entity.name
    if e.location is None:
        e.location = entity.location
    return e


def extract_fragments(entity: SourceEntity) -> list[Fragment]:
    """Collect the @openapi-fragment definitions of one entity."""
    try:
        doc = split_sections(entity.doc)
        fragments = []
        for section in doc.sections:
            if section.kind != "openapi-fragment":
                continue
            header = section.header
            if len(set(header.params)) != len(header.params):
                raise InvalidDirectiveSyntaxError(f"fragment '{header.name}' repeats a parameter name")
            fragments.append(
                Fragment(
                    name=header.name,
                    params=header.params,
                    body=_block_text(section.lines),
                    entity=entity.name,
                    location=entity.location,
                )
            )
        return fragments
    except WeaverError as e:
        raise _with_context(entity, e)


def parse_entity(entity: SourceEntity) -> ParsedEntity:
    """Interpret one entity's directives into structured form."""
    try:
        return _parse_entity(entity)
    except WeaverError as e:
        raise _with_context(entity, e)


def _parse_entity(entity: SourceEntity) -> ParsedEntity:
    counter = itertools.count()
    doc = split_sections(entity.doc)
    result = ParsedEntity(entity=entity.name)

    if _has_route(doc.main.lines):
        result.routes.append(parse_route(entity, doc.main.lines, counter))
    else:
        _reject_route_directives(doc.main.lines)

    schema_blocks: list[OverrideBlock] = []
    generic_params: list[str] | None = None
    for section in doc.sections:
        if section.kind == "openapi-fragment":
            continue
        if section.kind == "openapi-type":
            result.schemas.append(
                SchemaDefinition(
                    name=section.header.name,
                    kind="object",
                    shape="raw",
                    overrides=build_block(section.lines, counter),
                    entity=entity.name,
                    location=entity.location,
                )
            )
            continue

        header: OpenApiDirective = section.header
        lines = ([header.rest] if header.rest else []) + section.lines
        block = build_block(lines, counter)
        if DOCUMENT_KEYS & block.data.keys():
            if header.generic_params:
                raise InvalidDirectiveSyntaxError("document-level blocks cannot take generic parameters")
            if "openapi" in block.data:
                result.roots.append(RootDocument(body=block, entity=entity.name, location=entity.location))
            else:
                result.snippets.append(DocumentSnippet(body=block, entity=entity.name, location=entity.location))
            continue
        if header.generic_params:
            generic_params = header.generic_params
        schema_blocks.append(block)

    if entity.kind == EntityKind.ROUTINE:
        if any(b.data or b.extends for b in schema_blocks) or generic_params:
            raise InvalidDirectiveSyntaxError(
                "schema blocks need a structured, enumerated or alias declaration"
            )
        return result

    result.schemas.append(
        _parse_schema(entity, doc, schema_blocks, generic_params, counter)
    )
    return result


def _has_route(lines: list[str]) -> bool:
    return any(directive_keyword(line) == "route" for line in lines)


def _reject_route_directives(lines: list[str]) -> None:
    for line in lines:
        keyword = directive_keyword(line)
        if keyword in ROUTE_ONLY_KEYWORDS:
            raise InvalidDirectiveSyntaxError(
                f"@{keyword} needs a @route in the same block", directive=line.strip()
            )


def _free_text(lines: list[str]) -> str | None:
    words = [line.strip() for line in lines if line.strip() and not directive_keyword(line)]
    return " ".join(words) or None


def resolve_name(
    source: str,
    rename: str | None = None,
    external_rename: str | None = None,
    rename_all: str | None = None,
    external_rename_all: str | None = None,
) -> str:
    """First match wins: rename directive, external rename, rename-all, external convention."""
    if rename:
        return rename
    if external_rename:
        return external_rename
    if rename_all:
        return apply_casing(source, rename_all)
    if external_rename_all:
        return apply_casing(source, external_rename_all)
    return source


# Routes


def split_path(raw_path: str) -> tuple[str, list[Parameter]]:
    """Strip inline parameter definitions from a path template."""
    inline: list[Parameter] = []

    def replace(match: re.Match) -> str:
        name, type_text, description = match.group(1), match.group(2), match.group(3)
        type_text = (type_text or "").strip()
        if type_text or description is not None:
            inline.append(
                Parameter(
                    name=name,
                    location="path",
                    type_ref=parse_type(type_text) if type_text else primitive("String"),
                    required=True,
                    description=description,
                )
            )
        return "{" + name + "}"

    path = INLINE_PATH_PARAM.sub(replace, raw_path.strip())
    if not path.startswith("/") or any(ch.isspace() for ch in path):
        raise InvalidDirectiveSyntaxError(f"malformed route path '{raw_path}'")
    return path, inline


def add_parameter(params: list[Parameter], param: Parameter) -> None:
    for existing in params:
        if existing.name == param.name and existing.location == param.location:
            if existing == param:
                return
            raise DuplicateParameterError(
                f"{param.location} parameter '{param.name}' is defined twice with different definitions"
            )
    params.append(param)


def parse_route(entity: SourceEntity, lines: list[str], counter=None) -> RouteOperation:
    """Interpret the main section of a routine (or virtual route) block."""
    counter = counter if counter is not None else itertools.count()
    route: RouteDirective | None = None
    path = ""
    summary: str | None = None
    description_lines: list[str] = []
    override_lines: list[str] = []
    collecting = False
    params: list[Parameter] = []
    body: RequestBody | None = None
    responses: dict[str, ResponseSpec] = {}
    tags: list[str] | None = None
    security: list[dict[str, list[str]]] = []

    for line in lines:
        stripped = line.strip()
        if not stripped:
            if collecting:
                override_lines.append(line)
            elif summary is not None:
                description_lines.append("")
            continue

        keyword = directive_keyword(stripped)
        if keyword == "extend":
            override_lines.append(line)
            continue
        if keyword is not None:
            collecting = False
            directive = parse_directive(stripped)
            if directive is None:
                continue
            if isinstance(directive, RouteDirective):
                if route is not None:
                    raise InvalidDirectiveSyntaxError("only one @route per declaration", directive=stripped)
                route = directive
                path, inline = split_path(directive.raw_path)
                for param in inline:
                    add_parameter(params, param)
            elif isinstance(directive, ParamDirective):
                try:
                    add_parameter(params, directive.parameter)
                except DuplicateParameterError as e:
                    e.directive = stripped
                    raise
            elif isinstance(directive, BodyDirective):
                body = RequestBody(type_ref=directive.type_ref, media_type=directive.media_type)
            elif isinstance(directive, ReturnDirective):
                responses[directive.status] = ResponseSpec(
                    description=directive.description,
                    type_ref=directive.type_ref,
                    media_type=directive.media_type,
                    unit=directive.unit,
                )
            elif isinstance(directive, SecurityDirective):
                security.append({directive.scheme: directive.scopes})
            elif isinstance(directive, TagDirective):
                tags = (tags or []) + directive.tags
            else:
                raise InvalidDirectiveSyntaxError(
                    f"@{keyword} is not valid inside a route block", directive=stripped
                )
            continue

        if collecting or stripped.startswith(ROUTE_OVERRIDE_KEYS):
            collecting = True
            override_lines.append(line)
        elif summary is None:
            summary = stripped
        else:
            description_lines.append(line)

    if route is None:
        raise InvalidDirectiveSyntaxError("route block without @route")

    description = textwrap.dedent("\n".join(description_lines)).strip("\n") or None
    return RouteOperation(
        method=route.method,
        path=path,
        operation_id=entity.name,
        summary=summary,
        description=description,
        parameters=params,
        request_body=body,
        responses=responses,
        tags=tags if tags is not None else list(entity.tags),
        security=security,
        overrides=build_block(override_lines, counter),
        entity=entity.name,
        location=entity.location,
    )


# Schemas


def _parse_schema(
    entity: SourceEntity,
    doc: SplitDoc,
    blocks: list[OverrideBlock],
    generic_params: list[str] | None,
    counter,
) -> SchemaDefinition:
    rename = None
    rename_all = None
    for modifier in doc.modifiers:
        if isinstance(modifier, RenameDirective):
            rename = modifier.name
        else:
            rename_all = modifier.convention
    if entity.rename_all and not is_convention(entity.rename_all):
        raise InvalidDirectiveSyntaxError(
            f"unknown rename convention '{entity.rename_all}' on the declaration; "
            f"expected one of: {', '.join(CONVENTIONS)}"
        )

    params = generic_params if generic_params is not None else list(entity.type_params)
    marked = bool(blocks) or bool(doc.modifiers)
    definition = SchemaDefinition(
        name=rename or entity.rename or entity.name,
        kind="object",
        generic_params=params,
        description=_free_text(doc.main.lines),
        overrides=merge_blocks(blocks),
        entity=entity.name,
        location=entity.location,
    )

    if entity.kind == EntityKind.STRUCTURED:
        definition.shape = "object"
        definition.exported = marked
        definition.fields = [
            parse_field(f, rename_all, entity.rename_all, counter) for f in entity.fields
        ]
    elif entity.kind == EntityKind.ENUMERATED:
        definition.shape = "enum"
        definition.exported = marked
        definition.fields = [
            parse_variant(v, rename_all, entity.rename_all) for v in entity.variants if v.unit
        ]
    else:
        if not entity.alias_of:
            raise InvalidDirectiveSyntaxError(f"alias '{entity.name}' has no target type")
        definition.shape = "alias"
        definition.exported = True
        definition.alias_of = parse_type(entity.alias_of)

    definition.kind = "generic-template" if params else definition.shape
    return definition


def _field_doc(doc: str, counter) -> tuple[str | None, str | None, OverrideBlock]:
    """Split a field's doc into (rename, description, override block)."""
    rename = None
    description = []
    override_lines: list[str] = []
    collecting = False
    for line in textwrap.dedent(doc).splitlines():
        stripped = line.strip()
        keyword = directive_keyword(stripped)
        if keyword == "openapi":
            directive = parse_directive(stripped)
            if isinstance(directive, RenameDirective):
                rename = directive.name
            elif isinstance(directive, RenameAllDirective):
                raise InvalidDirectiveSyntaxError(
                    "rename-all applies to declarations, not fields", directive=stripped
                )
            else:
                collecting = True
                if directive.rest:
                    override_lines.append(directive.rest)
        elif keyword == "extend" or collecting:
            override_lines.append(line)
        elif keyword is not None:
            raise InvalidDirectiveSyntaxError(f"@{keyword} is not valid on a field", directive=stripped)
        elif stripped:
            description.append(stripped)
    return rename, " ".join(description) or None, build_block(override_lines, counter)


def parse_field(
    field: FieldSignature,
    rename_all: str | None,
    external_rename_all: str | None,
    counter,
) -> SchemaField:
    rename, description, overrides = _field_doc(field.doc, counter)
    try:
        type_ref = parse_type(field.type)
    except InvalidDirectiveSyntaxError as e:
        e.message = f"field '{field.name}': {e.message}"
        raise
    return SchemaField(
        name=resolve_name(field.name, rename, field.rename, rename_all, external_rename_all),
        source_name=field.name,
        type_ref=type_ref,
        description=description,
        validation=field.validation,
        overrides=overrides,
    )


def parse_variant(
    variant: VariantSignature,
    rename_all: str | None,
    external_rename_all: str | None,
) -> SchemaField:
    rename, description, _ = _field_doc(variant.doc, itertools.count())
    return SchemaField(
        name=resolve_name(variant.name, rename, variant.rename, rename_all, external_rename_all),
        source_name=variant.name,
        description=description,
    )
