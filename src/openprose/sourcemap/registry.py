"""Source maps for canonical OpenProse output.

Map lines of the canonical text produced by the compiler back to the
positions in the original source they were generated from, so that
diagnostics raised against canonical text can be reported where the
user wrote the code.
"""

import bisect
import dataclasses
from dataclasses import dataclass, field

from openprose.errors.diagnostics import Diagnostic
from openprose.log import get_logger

logger = get_logger(__name__)


@dataclass
class SourceMapping:
    """Single mapping entry from canonical text to source.

    Map a line in the canonical output back to its original position
    in the source file.
    """

    generated_line: int
    """Line number in the canonical text (1-indexed)."""

    generated_column: int
    """Column number in the canonical text (0-indexed)."""

    source_file: str
    """Path to the original source file."""

    source_line: int
    """Line number in the source file (1-indexed)."""

    source_column: int
    """Column number in the source file (0-indexed)."""

    source_end_line: int | None = None
    """End line for multi-line spans (optional)."""

    source_end_column: int | None = None
    """End column for multi-line spans (optional)."""


@dataclass
class SourceMap:
    """Line mappings for one compiled file, kept sorted by generated line."""

    source_file: str
    mappings: list[SourceMapping] = field(default_factory=list)
    _sorted_lines: list[int] = field(default_factory=list, repr=False)

    def __post_init__(self) -> None:
        """Sort mappings passed at construction."""
        pending = sorted(self.mappings, key=lambda m: m.generated_line)
        self.mappings = []
        self._sorted_lines = []
        for mapping in pending:
            self.add(mapping)

    def __len__(self) -> int:
        """Get the number of mappings."""
        return len(self.mappings)

    def add(self, mapping: SourceMapping) -> None:
        """Add a mapping, maintaining sorted order.

        Args:
            mapping: The source mapping to add.

        """
        idx = bisect.bisect_right(self._sorted_lines, mapping.generated_line)
        self._sorted_lines.insert(idx, mapping.generated_line)
        self.mappings.insert(idx, mapping)

    def lookup(self, generated_line: int) -> SourceMapping | None:
        """Find the mapping for a canonical line.

        Args:
            generated_line: Line number in the canonical text.

        Returns:
            The mapping at or before the line, or None if no mapping exists.

        """
        if not self._sorted_lines:
            return None

        # Rightmost mapping with line <= generated_line
        idx = bisect.bisect_right(self._sorted_lines, generated_line)
        if idx == 0:
            return None
        return self.mappings[idx - 1]

    def translate(self, diagnostic: Diagnostic) -> Diagnostic:
        """Rewrite a diagnostic against canonical text to the source location.

        A diagnostic on a line with its own mapping takes the mapped
        column; one on an unmapped continuation line keeps the column of
        the closest preceding mapping. Related notes are translated too.

        Args:
            diagnostic: Diagnostic whose line refers to canonical text.

        Returns:
            A new diagnostic pointing into the original source, or the
            diagnostic unchanged when no mapping covers its line.

        """
        mapping = self.lookup(diagnostic.line)
        if mapping is None:
            logger.debug("No source mapping for canonical line %d", diagnostic.line)
            return diagnostic

        related = [self.translate(note) for note in diagnostic.related]
        return dataclasses.replace(
            diagnostic,
            file=mapping.source_file,
            line=mapping.source_line,
            column=mapping.source_column,
            end_line=mapping.source_end_line,
            end_column=mapping.source_end_column,
            related=related,
        )
