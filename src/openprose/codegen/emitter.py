"""Line builder for canonical OpenProse text.

Lines are collected with their nesting depth and joined once at the
end. Every line emitted with a span also records where in the source
it came from.
"""

from collections.abc import Iterator
from contextlib import contextmanager

from openprose.grammar.tokens import SourceSpan
from openprose.log import get_logger
from openprose.sourcemap.registry import SourceMapping

logger = get_logger(__name__)

DEFAULT_INDENT_WIDTH = 2
"""Spaces per indentation level in canonical output."""


class CanonicalEmitter:
    """Collect canonical lines and their source mappings."""

    def __init__(
        self,
        source_file: str,
        *,
        indent_width: int = DEFAULT_INDENT_WIDTH,
        record_mappings: bool = True,
    ) -> None:
        """Initialize an emitter.

        Args:
            source_file: Original file name stored in each mapping.
            indent_width: Spaces per nesting level.
            record_mappings: Record a mapping for lines emitted with a span.

        """
        self._source_file = source_file
        self._unit = " " * indent_width
        self._record_mappings = record_mappings
        self._depth = 0
        self._lines: list[tuple[int, str]] = []
        self._mappings: list[SourceMapping] = []

    @contextmanager
    def indented(self) -> Iterator[None]:
        """Nest the lines emitted inside the `with` block one level deeper."""
        self._depth += 1
        try:
            yield
        finally:
            self._depth -= 1

    def emit(self, text: str, span: SourceSpan | None = None) -> None:
        """Append one line at the current depth.

        Args:
            text: Line content without indentation or newline.
            span: Source range the line was generated from.

        """
        self._lines.append((self._depth, text))
        if span is None or span.line < 1 or not self._record_mappings:
            return
        self._mappings.append(
            SourceMapping(
                generated_line=len(self._lines),
                generated_column=self._depth * len(self._unit),
                source_file=self._source_file,
                source_line=span.line,
                source_column=span.column,
                source_end_line=span.end_line,
                source_end_column=span.end_column,
            ),
        )

    def emit_comment(self, text: str, span: SourceSpan | None = None) -> None:
        """Append a comment line, adding the '#' marker when missing."""
        self.emit(text if text.startswith("#") else f"# {text}", span)

    @property
    def line_count(self) -> int:
        return len(self._lines)

    @property
    def mappings(self) -> list[SourceMapping]:
        """Mappings recorded so far, in generated line order."""
        return list(self._mappings)

    def render(self) -> str:
        """Join the lines into text ending in a newline, or "" when empty."""
        if not self._lines:
            return ""
        rendered = "\n".join(f"{self._unit * depth}{text}" for depth, text in self._lines)
        logger.debug("Rendered %d canonical lines", len(self._lines))
        return rendered + "\n"
