"""Diagnostics shared by the lexer, parser and validator.

A Diagnostic is the user-facing form of every problem the toolchain
finds. Positions follow `SourceSpan`: lines are 1-indexed and columns
0-indexed with an exclusive end. Conversion to LSP diagnostics shifts
lines to the 0-based numbering of the protocol.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from lsprotocol import types as lsp

from openprose.errors.codes import ErrorCode

if TYPE_CHECKING:
    from openprose.grammar.tokens import SourceSpan


class Severity(str, Enum):
    """Diagnostic severity levels."""

    ERROR = "error"
    """Makes the program invalid and blocks compilation."""

    WARNING = "warning"
    NOTE = "note"
    """Context attached to another diagnostic."""

    @property
    def lsp_severity(self) -> lsp.DiagnosticSeverity:
        """Severity used in `textDocument/publishDiagnostics`."""
        return _LSP_SEVERITIES[self]


_LSP_SEVERITIES = {
    Severity.ERROR: lsp.DiagnosticSeverity.Error,
    Severity.WARNING: lsp.DiagnosticSeverity.Warning,
    Severity.NOTE: lsp.DiagnosticSeverity.Information,
}


@dataclass
class Diagnostic:
    """A located problem report.

    Messages start lowercase and carry no trailing period, so they read
    naturally after a `severity:` prefix.
    """

    severity: Severity
    message: str
    file: str
    line: int
    column: int
    code: ErrorCode | None = None
    end_line: int | None = None
    end_column: int | None = None
    help_text: str | None = None
    """Suggestion for fixing the problem."""

    source: str | None = None
    """Toolchain stage that found the problem: lexer, parser or validator."""

    related: list["Diagnostic"] = field(default_factory=list)

    @classmethod
    def from_span(  # noqa: PLR0913
        cls,
        severity: Severity,
        message: str,
        file: str,
        span: "SourceSpan",
        *,
        code: ErrorCode | None = None,
        help_text: str | None = None,
        source: str | None = None,
    ) -> "Diagnostic":
        """Create a diagnostic covering a whole source span."""
        return cls(
            severity,
            message,
            file,
            span.line,
            span.column,
            code=code,
            end_line=span.end_line,
            end_column=span.end_column,
            help_text=help_text,
            source=source,
        )

    @classmethod
    def error(cls, message: str, file: str, line: int, column: int, **details: Any) -> "Diagnostic":
        """Create an error at a position.

        Args:
            message: The error message.
            file: Source file path.
            line: Line number (1-indexed).
            column: Column number (0-indexed).
            **details: Optional fields such as `code`, `end_column` or `help_text`.

        Returns:
            A new Diagnostic with ERROR severity.

        """
        return cls(Severity.ERROR, message, file, line, column, **details)

    @classmethod
    def warning(
        cls,
        message: str,
        file: str,
        line: int,
        column: int,
        **details: Any,
    ) -> "Diagnostic":
        """Create a warning at a position; see `error` for the arguments."""
        return cls(Severity.WARNING, message, file, line, column, **details)

    @property
    def is_error(self) -> bool:
        """Check whether this diagnostic blocks compilation."""
        return self.severity == Severity.ERROR

    @property
    def span_length(self) -> int:
        """Characters covered on the first line, at least 1."""
        if self.end_column is None or self.end_line != self.line:
            return 1
        return max(1, self.end_column - self.column)

    def with_help(self, help_text: str) -> "Diagnostic":
        """Attach help text and return self for chaining."""
        self.help_text = help_text
        return self

    def with_note(self, message: str, file: str, line: int, column: int) -> "Diagnostic":
        """Attach a related note and return self for chaining."""
        self.related.append(Diagnostic(Severity.NOTE, message, file, line, column))
        return self

    def format_compact(self) -> str:
        """Format as a single `file:line:col: severity: message` line.

        Columns are shown 1-indexed, as editors and terminals expect.
        """
        return f"{self.file}:{self.line}:{self.column + 1}: {self.severity.value}: {self.message}"

    def to_dict(self) -> dict[str, object]:
        """Convert to a JSON-ready dictionary, leaving out unset fields."""
        location: dict[str, str | int] = {
            "file": self.file,
            "line": self.line,
            "column": self.column,
        }
        if self.end_line is not None:
            location["end_line"] = self.end_line
        if self.end_column is not None:
            location["end_column"] = self.end_column

        result: dict[str, object] = {
            "severity": self.severity.value,
            "message": self.message,
            "location": location,
        }
        optional = {
            "code": self.code.value if self.code is not None else None,
            "help": self.help_text,
            "source": self.source,
        }
        result.update({k: v for k, v in optional.items() if v is not None})
        if self.related:
            result["related"] = [d.to_dict() for d in self.related]
        return result

    def _lsp_range(self) -> lsp.Range:
        end_line = self.end_line if self.end_line is not None else self.line
        end_column = self.end_column if self.end_column is not None else self.column + 1
        return lsp.Range(
            start=lsp.Position(line=self.line - 1, character=self.column),
            end=lsp.Position(line=end_line - 1, character=end_column),
        )

    def to_lsp(self, uri: str) -> lsp.Diagnostic:
        """Convert to an LSP diagnostic for a document.

        Args:
            uri: Document URI. Related notes in the same file point at it.

        Returns:
            Diagnostic for a `textDocument/publishDiagnostics` notification.

        """
        related = [
            lsp.DiagnosticRelatedInformation(
                location=lsp.Location(
                    uri=uri if note.file == self.file else note.file,
                    range=note._lsp_range(),  # noqa: SLF001
                ),
                message=note.message,
            )
            for note in self.related
        ]
        message = self.message if self.help_text is None else f"{self.message}\n{self.help_text}"
        return lsp.Diagnostic(
            range=self._lsp_range(),
            message=message,
            severity=self.severity.lsp_severity,
            code=self.code.value if self.code is not None else None,
            source=f"openprose-{self.source}" if self.source else "openprose",
            related_information=related or None,
        )
