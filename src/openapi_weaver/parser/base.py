"""Unified data models for annotated declarations and what they turn into.

The Source Provider hands over SourceEntity records; the annotation
parser converts them into routes, schemas, fragments and roots that the
registry owns for the rest of the run.
"""

from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field

from openapi_weaver.errors import SourceLocation
from openapi_weaver.parser.types import TypeRef


class EntityKind(str, Enum):
    ROUTINE = "routine"
    STRUCTURED = "structured-type"
    ENUMERATED = "enumerated-type"
    ALIAS = "alias"


class FieldSignature(BaseModel):
    """One field of a structured type, as reported by the Source Provider."""

    name: str
    type: str  # type-reference text, e.g. Option<Vec<User>>
    doc: str = ""
    rename: str | None = None  # external per-field rename (serialization attribute)
    validation: dict = {}  # format, minLength, maxLength, minimum, maximum, pattern


class VariantSignature(BaseModel):
    """One variant of an enumerated type."""

    name: str
    doc: str = ""
    rename: str | None = None
    unit: bool = True  # only unit variants become enum values


class SourceEntity(BaseModel):
    """A declaration with its attached directive text. Immutable once produced."""

    model_config = {"frozen": True}

    kind: EntityKind
    name: str
    doc: str = ""
    fields: list[FieldSignature] = []
    variants: list[VariantSignature] = []
    type_params: list[str] = []
    alias_of: str | None = None  # target type-reference text for aliases
    rename: str | None = None  # external rename of the entity itself
    rename_all: str | None = None  # external rename convention
    tags: list[str] = []  # tags inherited from the enclosing module
    location: SourceLocation = Field(default_factory=SourceLocation)


class FragmentCall(BaseModel):
    """A single @insert / @extend call site."""

    name: str
    args: list[str] = []
    kwargs: dict[str, str] = {}
    line: str = ""


class OverrideBlock(BaseModel):
    """A structurally parsed raw block; extend calls wait in placeholder keys."""

    data: dict = {}
    extends: dict[str, FragmentCall] = {}  # placeholder key -> call


class Parameter(BaseModel):
    """A single operation parameter (path, query, header, or cookie)."""

    name: str
    location: Literal["path", "query", "header", "cookie"]
    type_ref: TypeRef
    required: bool = True
    deprecated: bool = False
    example: str | int | float | bool | None = None
    description: str | None = None


class RequestBody(BaseModel):
    type_ref: TypeRef
    media_type: str = "application/json"


class ResponseSpec(BaseModel):
    """One response; a unit response never carries content."""

    description: str = ""
    type_ref: TypeRef | None = None
    media_type: str = "application/json"
    unit: bool = False


class RouteOperation(BaseModel):
    """One HTTP operation with all its metadata."""

    method: str  # get / post / put / delete / patch / head / options / trace
    path: str  # /users/{id}, inline definitions already stripped
    operation_id: str | None = None
    summary: str | None = None
    description: str | None = None
    parameters: list[Parameter] = []
    request_body: RequestBody | None = None
    responses: dict[str, ResponseSpec] = {}
    tags: list[str] = []
    security: list[dict[str, list[str]]] = []
    overrides: OverrideBlock = Field(default_factory=OverrideBlock)
    entity: str = ""
    location: SourceLocation = Field(default_factory=SourceLocation)
    order: tuple[int, int] = (0, 0)

    @property
    def key(self) -> str:
        return f"{self.method.upper()} {self.path}"


class SchemaField(BaseModel):
    """A field or variant after rename resolution."""

    name: str  # emitted name
    source_name: str  # identifier as written
    type_ref: TypeRef | None = None  # None for enum variants
    description: str | None = None
    validation: dict = {}
    overrides: OverrideBlock = Field(default_factory=OverrideBlock)


class SchemaDefinition(BaseModel):
    """A schema in the registry; templates keep their underlying shape."""

    name: str
    kind: Literal["object", "enum", "alias", "generic-template"]
    shape: Literal["object", "enum", "alias", "raw"] = "object"
    fields: list[SchemaField] = []
    alias_of: TypeRef | None = None
    generic_params: list[str] = []
    exported: bool = True
    description: str | None = None
    overrides: OverrideBlock = Field(default_factory=OverrideBlock)
    template: str | None = None  # set on monomorphized instances
    entity: str = ""
    location: SourceLocation = Field(default_factory=SourceLocation)
    order: tuple[int, int] = (0, 0)


class Fragment(BaseModel):
    """A named, parameterized snippet expanded by @insert or @extend."""

    name: str
    params: list[str] = []
    body: str = ""
    entity: str = ""
    location: SourceLocation = Field(default_factory=SourceLocation)
    order: tuple[int, int] = (0, 0)


class RootDocument(BaseModel):
    """The single metadata block of the generated document.

    The typed fields are read from the structured block so that extend
    calls inside it are honoured.
    """

    body: OverrideBlock = Field(default_factory=OverrideBlock)
    entity: str = ""
    location: SourceLocation = Field(default_factory=SourceLocation)
    order: tuple[int, int] = (0, 0)

    @property
    def version(self) -> str:
        return str(self.body.data.get("openapi", ""))

    @property
    def info(self) -> dict:
        return self.body.data.get("info") or {}

    @property
    def components(self) -> dict:
        return self.body.data.get("components") or {}

    @property
    def security(self) -> list:
        return self.body.data.get("security") or []


class DocumentSnippet(BaseModel):
    """A document-level block without a root (components, tags, servers...)."""

    body: OverrideBlock = Field(default_factory=OverrideBlock)
    entity: str = ""
    location: SourceLocation = Field(default_factory=SourceLocation)
    order: tuple[int, int] = (0, 0)


class ParsedEntity(BaseModel):
    """Everything one SourceEntity contributed."""

    entity: str
    routes: list[RouteOperation] = []
    schemas: list[SchemaDefinition] = []
    roots: list[RootDocument] = []
    snippets: list[DocumentSnippet] = []
