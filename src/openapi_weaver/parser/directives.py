"""Directive AST: one tagged model per directive kind, plus the line parser."""

import logging
import re
from typing import Literal, Union

import yaml
from pydantic import BaseModel

from openapi_weaver.casing import CONVENTIONS, is_convention, strip_quotes
from openapi_weaver.errors import InvalidDirectiveSyntaxError
from openapi_weaver.parser.base import FragmentCall, Parameter
from openapi_weaver.parser.tokenizer import tokenize
from openapi_weaver.parser.types import (
    UNIT_TYPES,
    TypeRef,
    is_required,
    parse_type,
    primitive,
    split_generic_args,
)

logger = logging.getLogger(__name__)

HTTP_METHODS = ("get", "post", "put", "delete", "patch", "head", "options", "trace")
PARAM_LOCATIONS = {
    "path-param": "path",
    "query-param": "query",
    "header-param": "header",
    "cookie-param": "cookie",
}

_KEYWORD = re.compile(r"^@([A-Za-z][\w-]*)(.*)$")
_CALL = re.compile(r"^([A-Za-z_][\w.-]*)\s*(?:\((.*)\))?$")
_KWARG = re.compile(r"^([A-Za-z_]\w*)\s*=\s*(.*)$")


class RouteDirective(BaseModel):
    kind: Literal["route"] = "route"
    method: str
    raw_path: str


class ParamDirective(BaseModel):
    kind: Literal["param"] = "param"
    parameter: Parameter


class BodyDirective(BaseModel):
    kind: Literal["body"] = "body"
    type_ref: TypeRef
    media_type: str = "application/json"


class ReturnDirective(BaseModel):
    kind: Literal["return"] = "return"
    status: str
    type_ref: TypeRef | None = None
    media_type: str = "application/json"
    description: str = ""
    unit: bool = False


class SecurityDirective(BaseModel):
    kind: Literal["security"] = "security"
    scheme: str
    scopes: list[str] = []


class TagDirective(BaseModel):
    kind: Literal["tag"] = "tag"
    tags: list[str]


class OpenApiDirective(BaseModel):
    """``@openapi`` or ``@openapi<T, ...>``; ``rest`` is inline block content."""

    kind: Literal["openapi"] = "openapi"
    generic_params: list[str] = []
    rest: str = ""


class OpenApiTypeDirective(BaseModel):
    kind: Literal["openapi-type"] = "openapi-type"
    name: str


class FragmentDirective(BaseModel):
    kind: Literal["openapi-fragment"] = "openapi-fragment"
    name: str
    params: list[str] = []


class InsertDirective(BaseModel):
    kind: Literal["insert"] = "insert"
    call: FragmentCall


class ExtendDirective(BaseModel):
    kind: Literal["extend"] = "extend"
    call: FragmentCall


class RenameDirective(BaseModel):
    kind: Literal["rename"] = "rename"
    name: str


class RenameAllDirective(BaseModel):
    kind: Literal["rename-all"] = "rename-all"
    convention: str


Directive = Union[
    RouteDirective,
    ParamDirective,
    BodyDirective,
    ReturnDirective,
    SecurityDirective,
    TagDirective,
    OpenApiDirective,
    OpenApiTypeDirective,
    FragmentDirective,
    InsertDirective,
    ExtendDirective,
    RenameDirective,
    RenameAllDirective,
]


def directive_keyword(line: str) -> str | None:
    match = _KEYWORD.match(line.strip())
    return match.group(1) if match else None


def parse_directive(line: str) -> Directive | None:
    """Parse one directive line. Unknown keywords yield None."""
    stripped = line.strip()
    match = _KEYWORD.match(stripped)
    if not match:
        return None
    keyword, rest = match.group(1), match.group(2)

    try:
        if keyword == "route":
            return _parse_route(rest)
        if keyword in PARAM_LOCATIONS:
            return ParamDirective(parameter=parse_parameter(rest, PARAM_LOCATIONS[keyword]))
        if keyword == "body":
            return _parse_body(rest)
        if keyword == "return":
            return _parse_return(rest)
        if keyword == "security":
            return _parse_security(rest)
        if keyword == "tag":
            tags = [t.strip() for t in rest.split(",") if t.strip()]
            if not tags:
                raise InvalidDirectiveSyntaxError("@tag needs at least one tag")
            return TagDirective(tags=tags)
        if keyword == "openapi":
            return _parse_openapi(rest)
        if keyword == "openapi-type":
            name = rest.strip()
            if not name:
                raise InvalidDirectiveSyntaxError("@openapi-type needs a schema name")
            return OpenApiTypeDirective(name=name)
        if keyword == "openapi-fragment":
            call = parse_call(rest)
            if call.kwargs:
                raise InvalidDirectiveSyntaxError("fragment parameters are plain names")
            return FragmentDirective(name=call.name, params=call.args)
        if keyword == "insert":
            return InsertDirective(call=parse_call(rest, line=stripped))
        if keyword == "extend":
            return ExtendDirective(call=parse_call(rest, line=stripped))
    except InvalidDirectiveSyntaxError as e:
        if e.directive is None:
            e.directive = stripped
        raise

    logger.debug("ignoring unknown directive '@%s'", keyword)
    return None


def _parse_route(rest: str) -> RouteDirective:
    parts = rest.strip().split(None, 1)
    if len(parts) < 2:
        raise InvalidDirectiveSyntaxError("@route needs a method and a path")
    method = parts[0].lower()
    if method not in HTTP_METHODS:
        raise InvalidDirectiveSyntaxError(f"unknown HTTP method '{parts[0]}'")
    return RouteDirective(method=method, raw_path=parts[1].strip())


def parse_example(literal: str) -> str | int | float | bool | None:
    """Quoted literals stay strings; bare ones are read as YAML scalars."""
    if len(literal) >= 2 and literal[0] == literal[-1] and literal[0] in "\"'":
        return literal[1:-1]
    try:
        value = yaml.safe_load(literal)
    except yaml.YAMLError:
        return literal
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return literal


def parse_parameter(rest: str, location: str) -> Parameter:
    """Parse ``name: [Type] [Flags...] ["Description"]``."""
    if ":" not in rest:
        raise InvalidDirectiveSyntaxError("parameter directives look like 'name: Type'")
    name, _, spec = rest.partition(":")
    name = name.strip()
    if not name:
        raise InvalidDirectiveSyntaxError("parameter name is missing")

    type_ref: TypeRef | None = None
    required_flag = False
    deprecated = False
    example = None
    description = None

    for token in tokenize(spec):
        if token.quoted:
            if description is not None:
                raise InvalidDirectiveSyntaxError(f"parameter '{name}' has more than one description")
            description = token.value
        elif token.text == "required":
            required_flag = True
        elif token.text == "deprecated":
            deprecated = True
        elif token.text.startswith("example="):
            example = parse_example(token.text[len("example="):])
        elif type_ref is None:
            type_ref = parse_type(token.text)
        else:
            raise InvalidDirectiveSyntaxError(f"unexpected token '{token.text}' for parameter '{name}'")

    if type_ref is None:
        type_ref = primitive("String")
    required = required_flag or is_required(type_ref)
    if location == "path":
        required = True

    return Parameter(
        name=name,
        location=location,
        type_ref=type_ref,
        required=required,
        deprecated=deprecated,
        example=example,
        description=description,
    )


def _parse_body(rest: str) -> BodyDirective:
    tokens = tokenize(rest)
    if not tokens or tokens[0].quoted:
        raise InvalidDirectiveSyntaxError("@body needs a type")
    if len(tokens) > 2:
        raise InvalidDirectiveSyntaxError("@body takes a type and an optional media type")
    media = tokens[1].value if len(tokens) > 1 else "application/json"
    return BodyDirective(type_ref=parse_type(tokens[0].text), media_type=media)


def _parse_return(rest: str) -> ReturnDirective:
    status, sep, spec = rest.partition(":")
    status = status.strip()
    if not sep or not status:
        raise InvalidDirectiveSyntaxError("@return looks like 'CODE: [Type] [\"Description\"]'")

    type_text = None
    media = "application/json"
    description = None
    for token in tokenize(spec):
        if token.quoted:
            if description is not None:
                raise InvalidDirectiveSyntaxError(f"response {status} has more than one description")
            description = token.value
        elif type_text is None:
            type_text = token.text
        elif "/" in token.text:
            media = token.text
        else:
            raise InvalidDirectiveSyntaxError(f"unexpected token '{token.text}' for response {status}")

    if type_text is None or type_text in UNIT_TYPES:
        return ReturnDirective(status=status, description=description or "", unit=True)
    return ReturnDirective(
        status=status,
        type_ref=parse_type(type_text),
        media_type=media,
        description=description or "",
    )


def _parse_security(rest: str) -> SecurityDirective:
    call = parse_call(rest)
    if call.kwargs:
        raise InvalidDirectiveSyntaxError("security scopes are plain strings")
    return SecurityDirective(scheme=call.name, scopes=call.args)


def _parse_openapi(rest: str) -> Directive:
    text = rest.strip()
    if text.startswith("rename-all"):
        convention = strip_quotes(text[len("rename-all"):])
        if not convention:
            raise InvalidDirectiveSyntaxError("rename-all needs a convention")
        if not is_convention(convention):
            raise InvalidDirectiveSyntaxError(
                f"unknown rename-all convention '{convention}'; expected one of: {', '.join(CONVENTIONS)}"
            )
        return RenameAllDirective(convention=convention)
    if text.startswith("rename"):
        new_name = strip_quotes(text[len("rename"):])
        if not new_name:
            raise InvalidDirectiveSyntaxError("rename needs a name")
        return RenameDirective(name=new_name)
    if text.startswith("<"):
        end = text.find(">")
        if end < 0:
            raise InvalidDirectiveSyntaxError("unterminated generic parameter list")
        params = split_generic_args(text[1:end])
        return OpenApiDirective(generic_params=params, rest=text[end + 1:].strip())
    return OpenApiDirective(rest=text)


def parse_call(rest: str, line: str = "") -> FragmentCall:
    """Parse ``Name`` or ``Name(a, "b", key=value)``."""
    match = _CALL.match(rest.strip())
    if not match:
        raise InvalidDirectiveSyntaxError(f"malformed call '{rest.strip()}'")
    name, arg_text = match.group(1), match.group(2)
    args: list[str] = []
    kwargs: dict[str, str] = {}
    if arg_text and arg_text.strip():
        for raw in _split_call_args(arg_text):
            kw = _KWARG.match(raw)
            if kw:
                kwargs[kw.group(1)] = strip_quotes(kw.group(2))
            elif kwargs:
                raise InvalidDirectiveSyntaxError("positional argument after keyword argument")
            else:
                args.append(strip_quotes(raw))
    return FragmentCall(name=name, args=args, kwargs=kwargs, line=line or rest.strip())


def _split_call_args(text: str) -> list[str]:
    parts = []
    current: list[str] = []
    in_quote = None
    for ch in text:
        if in_quote:
            current.append(ch)
            if ch == in_quote:
                in_quote = None
        elif ch in "\"'":
            in_quote = ch
            current.append(ch)
        elif ch == ",":
            parts.append("".join(current).strip())
            current = []
        else:
            current.append(ch)
    if in_quote:
        raise InvalidDirectiveSyntaxError(f"unterminated string in '{text}'")
    parts.append("".join(current).strip())
    return [p for p in parts if p]
