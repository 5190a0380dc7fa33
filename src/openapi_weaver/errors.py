"""Error taxonomy for a generation run.

Every failure is fatal to the run. Errors are collected as Diagnostic
models so the caller gets all of them at once instead of the first one.
"""

from enum import Enum

from pydantic import BaseModel


class ErrorKind(str, Enum):
    DUPLICATE_NAME = "DuplicateName"
    DUPLICATE_PARAMETER = "DuplicateParameter"
    MISSING_PATH_PARAMETER = "MissingPathParameter"
    UNMATCHED_PATH_TOKEN = "UnmatchedPathToken"
    UNRESOLVED_REFERENCE = "UnresolvedReference"
    UNKNOWN_TEMPLATE = "UnknownTemplate"
    ARITY_MISMATCH = "ArityMismatch"
    UNRESOLVED_FRAGMENT_REFERENCE = "UnresolvedFragmentReference"
    MERGE_CONFLICT_TYPE_MISMATCH = "MergeConflictTypeMismatch"
    MISSING_ROOT = "MissingRoot"
    MULTIPLE_ROOTS = "MultipleRoots"
    INVALID_DIRECTIVE_SYNTAX = "InvalidDirectiveSyntax"
    IO_FAILURE = "IoFailure"


class SourceLocation(BaseModel):
    """Where an entity came from (file and line, when the provider knows them)."""

    file: str | None = None
    line: int | None = None

    def __str__(self) -> str:
        if self.file and self.line:
            return f"{self.file}:{self.line}"
        return self.file or "<unknown>"


class Diagnostic(BaseModel):
    """A single structured error surfaced to the caller."""

    kind: ErrorKind
    message: str
    entity: str | None = None
    location: SourceLocation | None = None
    directive: str | None = None

    def __str__(self) -> str:
        where = f" ({self.location})" if self.location else ""
        return f"{self.kind.value}{where}: {self.message}"


class WeaverError(Exception):
    """Base class for all generation errors."""

    kind: ErrorKind = ErrorKind.INVALID_DIRECTIVE_SYNTAX

    def __init__(
        self,
        message: str,
        *,
        entity: str | None = None,
        location: SourceLocation | None = None,
        directive: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.entity = entity
        self.location = location
        self.directive = directive

    def to_diagnostic(self) -> Diagnostic:
        return Diagnostic(
            kind=self.kind,
            message=self.message,
            entity=self.entity,
            location=self.location,
            directive=self.directive,
        )


class DuplicateNameError(WeaverError):
    kind = ErrorKind.DUPLICATE_NAME


class DuplicateParameterError(WeaverError):
    kind = ErrorKind.DUPLICATE_PARAMETER


class MissingPathParameterError(WeaverError):
    kind = ErrorKind.MISSING_PATH_PARAMETER


class UnmatchedPathTokenError(WeaverError):
    kind = ErrorKind.UNMATCHED_PATH_TOKEN


class UnresolvedReferenceError(WeaverError):
    kind = ErrorKind.UNRESOLVED_REFERENCE


class UnknownTemplateError(WeaverError):
    kind = ErrorKind.UNKNOWN_TEMPLATE


class ArityMismatchError(WeaverError):
    kind = ErrorKind.ARITY_MISMATCH


class UnresolvedFragmentReferenceError(WeaverError):
    kind = ErrorKind.UNRESOLVED_FRAGMENT_REFERENCE


class MergeConflictError(WeaverError):
    kind = ErrorKind.MERGE_CONFLICT_TYPE_MISMATCH


class MissingRootError(WeaverError):
    kind = ErrorKind.MISSING_ROOT


class MultipleRootsError(WeaverError):
    kind = ErrorKind.MULTIPLE_ROOTS


class InvalidDirectiveSyntaxError(WeaverError):
    kind = ErrorKind.INVALID_DIRECTIVE_SYNTAX


class IoFailureError(WeaverError):
    kind = ErrorKind.IO_FAILURE


class GenerationError(Exception):
    """Raised when a run fails; carries every diagnostic collected."""

    def __init__(self, diagnostics: list[Diagnostic]):
        self.diagnostics = diagnostics
        summary = "; ".join(str(d) for d in diagnostics[:3])
        more = f" (+{len(diagnostics) - 3} more)" if len(diagnostics) > 3 else ""
        super().__init__(f"generation failed with {len(diagnostics)} error(s): {summary}{more}")

    @property
    def kinds(self) -> list[ErrorKind]:
        return [d.kind for d in self.diagnostics]
