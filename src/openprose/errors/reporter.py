"""Rendering of diagnostics for terminals, CI logs and tools.

Three formats are supported:
- rustc-style blocks quoting the source with carets under the span
- compact `file:line:col: severity: message` lines
- a JSON document split into errors and warnings
"""

import json
from collections.abc import Mapping, Sequence

from openprose.errors.diagnostics import Diagnostic, Severity
from openprose.log import get_logger

logger = get_logger(__name__)

GUTTER = "     |"
"""Empty gutter; line numbers are right-aligned to the width before the bar."""

NUMBER_WIDTH = len(GUTTER) - 2


def _plural(count: int, noun: str) -> str:
    return f"{count} {noun}" if count == 1 else f"{count} {noun}s"


def _word_length(text: str, column: int) -> int:
    end = column
    while end < len(text) and not text[end].isspace():
        end += 1
    return max(1, end - column)


class DiagnosticReporter:
    """Format diagnostics, quoting registered source text where available."""

    def __init__(
        self,
        sources: Mapping[str, str] | None = None,
        *,
        context_lines: int = 1,
    ) -> None:
        """Initialize the reporter.

        Args:
            sources: Source text by file name.
            context_lines: Lines shown above and below the offending line.

        """
        self._sources: dict[str, list[str]] = {}
        self._context_lines = context_lines
        for file, text in (sources or {}).items():
            self.add_source(file, text)

    def add_source(self, file: str, source: str) -> None:
        """Register the text of a file so its lines can be quoted."""
        self._sources[file] = source.replace("\r\n", "\n").split("\n")

    # ==== rustc style ====

    def format_diagnostic(self, diagnostic: Diagnostic) -> str:
        """Format one diagnostic as a rustc-style block.

        Example:
            error[E0009]: cannot reassign const binding 'x'
              --> main.prose:2:1
                 |
               1 | const x = session "A"
               2 | x = session "B"
                 | ^^^^^^^^^^^^^^^
                 |

        """
        code = f"[{diagnostic.code.value}]" if diagnostic.code else ""
        lines = [
            f"{diagnostic.severity.value}{code}: {diagnostic.message}",
            f"  --> {diagnostic.file}:{diagnostic.line}:{diagnostic.column + 1}",
            *self._snippet(diagnostic),
        ]
        if diagnostic.help_text:
            lines.append(f"{GUTTER[:-1]}= help: {diagnostic.help_text}")
        for note in diagnostic.related:
            lines.extend(
                (
                    "",
                    f"note: {note.message}",
                    f"  --> {note.file}:{note.line}:{note.column + 1}",
                ),
            )
        return "\n".join(lines) + "\n"

    def _snippet(self, diagnostic: Diagnostic) -> list[str]:
        source = self._sources.get(diagnostic.file)
        index = diagnostic.line - 1
        if source is None or not 0 <= index < len(source):
            return [GUTTER]

        first = max(0, index - self._context_lines)
        last = min(len(source), index + self._context_lines + 1)
        snippet = [GUTTER]
        for i in range(first, last):
            snippet.append(f"{i + 1:>{NUMBER_WIDTH}} | {source[i]}")
            if i == index:
                snippet.append(self._carets(diagnostic, source[i]))
        snippet.append(GUTTER)
        return snippet

    @staticmethod
    def _carets(diagnostic: Diagnostic, text: str) -> str:
        if diagnostic.end_column is not None and diagnostic.end_line == diagnostic.line:
            width = diagnostic.span_length
        elif diagnostic.end_line is not None and diagnostic.end_line > diagnostic.line:
            width = max(1, len(text) - diagnostic.column)
        else:
            width = _word_length(text, diagnostic.column)
        # Keep tabs so the carets line up under tab-indented text.
        pad = "".join("\t" if c == "\t" else " " for c in text[: diagnostic.column])
        return f"{GUTTER} {pad}{'^' * width}"

    def format_diagnostics(
        self,
        diagnostics: Sequence[Diagnostic],
        *,
        include_summary: bool = True,
    ) -> str:
        """Format several diagnostics as blocks separated by blank lines.

        Args:
            diagnostics: Diagnostics to format.
            include_summary: Append a "Found N errors" line.

        Returns:
            The formatted text, empty when there is nothing to report.

        """
        if not diagnostics:
            return ""
        blocks = [self.format_diagnostic(d) for d in diagnostics]
        summary = summarize(diagnostics) if include_summary else None
        if summary:
            blocks.append(summary + "\n")
        return "\n".join(blocks)

    # ==== Machine-readable formats ====

    def format_compact(self, diagnostics: Sequence[Diagnostic]) -> str:
        """Format diagnostics as one line each, notes after their diagnostic."""
        return "\n".join(
            line
            for d in diagnostics
            for line in (d.format_compact(), *(n.format_compact() for n in d.related))
        )

    def format_json(
        self,
        diagnostics: Sequence[Diagnostic],
        file: str,
        *,
        stats: Mapping[str, int | str] | None = None,
    ) -> str:
        """Format diagnostics as a JSON document.

        Args:
            diagnostics: Diagnostics to serialize.
            file: File that was checked.
            stats: Optional counts such as agents or sessions.

        Returns:
            Indented JSON with `valid`, `errors` and `warnings` keys.

        """
        errors = [d.to_dict() for d in diagnostics if d.severity == Severity.ERROR]
        warnings = [d.to_dict() for d in diagnostics if d.severity == Severity.WARNING]
        document: dict[str, object] = {
            "version": "1.0",
            "file": file,
            "valid": not errors,
            "errors": errors,
            "warnings": warnings,
        }
        if stats:
            document["stats"] = dict(stats)
        logger.debug("Serialized %d diagnostics for %s", len(diagnostics), file)
        return json.dumps(document, indent=2)


def summarize(diagnostics: Sequence[Diagnostic]) -> str | None:
    """Summarize error and warning counts, or None when there are none.

    Notes are not counted.
    """
    errors = sum(1 for d in diagnostics if d.severity == Severity.ERROR)
    warnings = sum(1 for d in diagnostics if d.severity == Severity.WARNING)
    counts = [
        _plural(n, noun) for n, noun in ((errors, "error"), (warnings, "warning")) if n
    ]
    if not counts:
        return None

    files = {d.file for d in diagnostics}
    where = next(iter(files)) if len(files) == 1 else f"{len(files)} files"
    return f"Found {' and '.join(counts)} in {where}"


def format_success_message(*, agents: int = 0, blocks: int = 0, sessions: int = 0) -> str:
    """Format the message shown for a valid program.

    Returns:
        "valid" followed by the non-zero counts, e.g. "valid (1 agent, 3 sessions)".

    """
    counts = [
        _plural(n, noun)
        for n, noun in ((agents, "agent"), (blocks, "block"), (sessions, "session"))
        if n
    ]
    return f"valid ({', '.join(counts)})" if counts else "valid"
