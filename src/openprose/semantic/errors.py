"""Validation diagnostics for OpenProse programs.

Provide the ValidationError record used for both errors and warnings,
with factories for the common cases.
"""

from dataclasses import dataclass, field

from openprose.errors.codes import ErrorCode, format_error_message
from openprose.errors.diagnostics import Diagnostic, Severity
from openprose.grammar.tokens import SourceSpan
from openprose.log import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class RelatedNote:
    """Secondary location attached to a validation diagnostic."""

    message: str
    span: SourceSpan


@dataclass
class ValidationError:
    """Validation problem with location and context.

    Errors make the program invalid; warnings are reported but never
    block compilation.
    """

    code: ErrorCode
    """Error code for categorization."""

    message: str
    """Human-readable message."""

    span: SourceSpan
    """Source span of the offending construct."""

    severity: Severity = Severity.ERROR
    """ERROR or WARNING."""

    suggestion: str | None = None
    """Optional suggestion for fixing the problem."""

    related: list[RelatedNote] = field(default_factory=list)
    """Other locations involved (e.g. the first of two duplicate definitions)."""

    @property
    def is_warning(self) -> bool:
        """Check whether this is a warning."""
        return self.severity == Severity.WARNING

    @classmethod
    def error(
        cls,
        code: ErrorCode,
        message: str,
        span: SourceSpan,
        *,
        suggestion: str | None = None,
    ) -> "ValidationError":
        """Create an error with an explicit message."""
        return cls(code=code, message=message, span=span, suggestion=suggestion)

    @classmethod
    def warning(
        cls,
        code: ErrorCode,
        message: str,
        span: SourceSpan,
        *,
        suggestion: str | None = None,
    ) -> "ValidationError":
        """Create a warning with an explicit message."""
        return cls(
            code=code,
            message=message,
            span=span,
            severity=Severity.WARNING,
            suggestion=suggestion,
        )

    @classmethod
    def undefined_reference(
        cls,
        kind: str,
        name: str,
        span: SourceSpan,
        *,
        suggestion: str | None = None,
    ) -> "ValidationError":
        """Create an undefined reference error.

        Args:
            kind: Kind of reference (agent, block, variable, skill).
            name: Name that was not found.
            span: Span of the reference.
            suggestion: Optional suggestion for valid names.

        Returns:
            ValidationError instance.

        """
        return cls(
            code=ErrorCode.E0001,
            message=format_error_message(ErrorCode.E0001, kind=kind, name=name),
            span=span,
            suggestion=suggestion,
        )

    @classmethod
    def used_before_definition(cls, name: str, span: SourceSpan) -> "ValidationError":
        """Create an error for a variable referenced before its binding."""
        return cls(
            code=ErrorCode.E0002,
            message=format_error_message(ErrorCode.E0002, name=name),
            span=span,
        )

    @classmethod
    def duplicate_definition(
        cls,
        kind: str,
        name: str,
        span: SourceSpan,
        first: SourceSpan | None = None,
    ) -> "ValidationError":
        """Create a duplicate definition error.

        Args:
            kind: Kind of definition (agent, block, import, etc.).
            name: Name that was duplicated.
            span: Span of the second definition.
            first: Span of the first definition, attached as a note.

        Returns:
            ValidationError instance.

        """
        related = []
        if first is not None:
            related.append(RelatedNote(f"first definition of '{name}' here", first))
        return cls(
            code=ErrorCode.E0003,
            message=format_error_message(ErrorCode.E0003, kind=kind, name=name),
            span=span,
            related=related,
        )

    @classmethod
    def const_reassignment(
        cls,
        name: str,
        span: SourceSpan,
        binding: SourceSpan | None = None,
    ) -> "ValidationError":
        """Create an error for assigning to a const binding."""
        related = []
        if binding is not None:
            related.append(RelatedNote(f"'{name}' is bound as const here", binding))
        return cls(
            code=ErrorCode.E0009,
            message=format_error_message(ErrorCode.E0009, name=name),
            span=span,
            related=related,
        )

    @classmethod
    def empty_body(cls, kind: str, span: SourceSpan) -> "ValidationError":
        """Create an error for a construct whose body must not be empty."""
        return cls(
            code=ErrorCode.E0011,
            message=format_error_message(ErrorCode.E0011, kind=kind),
            span=span,
        )

    @classmethod
    def invalid_value(
        cls,
        kind: str,
        value: str,
        allowed: list[str] | tuple[str, ...] | frozenset[str],
        span: SourceSpan,
    ) -> "ValidationError":
        """Create an error for a value outside an enumerated set.

        Args:
            kind: What the value is for (model, join strategy, ...).
            value: The offending value.
            allowed: The accepted values.
            span: Span of the value.

        Returns:
            ValidationError instance.

        """
        return cls(
            code=ErrorCode.E0004,
            message=format_error_message(ErrorCode.E0004, kind=kind, value=value),
            span=span,
            suggestion=f"expected one of: {', '.join(sorted(allowed))}",
        )

    def to_diagnostic(self, file: str) -> Diagnostic:
        """Convert to a Diagnostic for reporting.

        Args:
            file: Source file name used in the diagnostic.

        Returns:
            Diagnostic with related notes attached.

        """
        diagnostic = Diagnostic.from_span(
            self.severity,
            self.message,
            file,
            self.span,
            code=self.code,
            help_text=self.suggestion,
            source="validator",
        )
        for note in self.related:
            diagnostic.with_note(note.message, file, note.span.line, note.span.column)
        return diagnostic
