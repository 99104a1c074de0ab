"""Tests for error codes, diagnostics and the diagnostic reporter."""

import json
import logging

import pytest
from lsprotocol import types as lsp

from openprose.errors.codes import ErrorCode, format_error_message
from openprose.errors.diagnostics import Diagnostic, Severity
from openprose.errors.reporter import DiagnosticReporter, format_success_message, summarize

# =============================================================================
# Error Codes
# =============================================================================


class TestErrorCodes:
    """Test error code categories and messages."""

    @pytest.mark.parametrize(
        ("code", "category"),
        [
            (ErrorCode.E0001, "reference"),
            (ErrorCode.E0003, "reference"),
            (ErrorCode.E0004, "value"),
            (ErrorCode.E0006, "import"),
            (ErrorCode.E0007, "syntax"),
            (ErrorCode.E0012, "semantic"),
            (ErrorCode.W0001, "lint"),
        ],
    )
    def test_category(self, code: ErrorCode, category: str) -> None:
        """Codes fall into the category of their number range."""
        assert code.category == category

    def test_warning_codes(self) -> None:
        """W-prefixed codes are warnings."""
        assert ErrorCode.W0002.is_warning
        assert not ErrorCode.E0002.is_warning

    def test_format_message(self) -> None:
        """Templates are filled from keyword arguments."""
        message = format_error_message(ErrorCode.E0001, kind="agent", name="ghost")
        assert message == "undefined agent 'ghost'"

    def test_format_message_missing_parameter(self) -> None:
        """A missing parameter returns the raw template."""
        assert format_error_message(ErrorCode.E0009) == "cannot reassign const binding '{name}'"

    def test_missing_parameter_is_logged_at_debug(self, caplog: pytest.LogCaptureFixture) -> None:
        """Filling a template with missing parameters logs only at debug level."""
        with caplog.at_level(logging.DEBUG, logger="openprose"):
            format_error_message(ErrorCode.E0009)
        assert caplog.records
        assert all(r.levelno == logging.DEBUG for r in caplog.records)


# =============================================================================
# Diagnostics
# =============================================================================


class TestDiagnostic:
    """Test the Diagnostic record."""

    def test_compact_format_uses_one_based_columns(self) -> None:
        """Compact output shows the column 1-indexed."""
        diagnostic = Diagnostic.error("bad token", "main.prose", 2, 4)
        assert diagnostic.format_compact() == "main.prose:2:5: error: bad token"

    def test_span_length(self) -> None:
        """Span length comes from the end column on the same line."""
        diagnostic = Diagnostic.error("x", "f", 1, 2, end_line=1, end_column=7)
        assert diagnostic.span_length == 5
        assert Diagnostic.error("x", "f", 1, 2).span_length == 1

    def test_chaining(self) -> None:
        """Help and notes can be attached fluently."""
        diagnostic = (
            Diagnostic.error("duplicate agent name 'a'", "f", 4, 0, code=ErrorCode.E0003)
            .with_help("rename one of them")
            .with_note("first definition of 'a' here", "f", 1, 0)
        )
        assert diagnostic.help_text == "rename one of them"
        assert diagnostic.related[0].severity == Severity.NOTE

    def test_to_dict(self) -> None:
        """Only fields that are set are serialized."""
        diagnostic = Diagnostic.warning("hmm", "f", 1, 0, code=ErrorCode.W0003)
        assert diagnostic.to_dict() == {
            "severity": "warning",
            "message": "hmm",
            "location": {"file": "f", "line": 1, "column": 0},
            "code": "W0003",
        }

    def test_is_error(self) -> None:
        """Only errors block compilation."""
        assert Diagnostic.error("x", "f", 1, 0).is_error
        assert not Diagnostic.warning("x", "f", 1, 0).is_error

    def test_to_lsp_uses_zero_based_lines(self) -> None:
        """LSP ranges are 0-based in both lines and characters."""
        diagnostic = Diagnostic.error(
            "undefined agent 'ghost'",
            "main.prose",
            3,
            9,
            code=ErrorCode.E0001,
            end_line=3,
            end_column=14,
            source="validator",
        )
        converted = diagnostic.to_lsp("file:///main.prose")
        assert (converted.range.start.line, converted.range.start.character) == (2, 9)
        assert (converted.range.end.line, converted.range.end.character) == (2, 14)
        assert converted.severity == lsp.DiagnosticSeverity.Error
        assert converted.code == "E0001"
        assert converted.source == "openprose-validator"
        assert converted.related_information is None

    def test_to_lsp_related_notes_point_at_document(self) -> None:
        """Notes in the same file are located in the given document."""
        diagnostic = Diagnostic.warning("hmm", "main.prose", 1, 0).with_note(
            "first here",
            "main.prose",
            5,
            2,
        )
        (related,) = diagnostic.to_lsp("file:///main.prose").related_information
        assert related.location.uri == "file:///main.prose"
        assert related.location.range.start.line == 4
        assert related.message == "first here"

    def test_to_lsp_appends_help(self) -> None:
        """Help text follows the message on its own line."""
        diagnostic = Diagnostic.error("bad", "f", 1, 0).with_help("fix it")
        assert diagnostic.to_lsp("file:///f").message == "bad\nfix it"


# =============================================================================
# Reporter
# =============================================================================


class TestDiagnosticReporter:
    """Test rendering of diagnostics."""

    SOURCE = 'const x = session "A"\nx = session "B"\n'

    @pytest.fixture
    def reporter(self) -> DiagnosticReporter:
        """Create a reporter with the sample source registered."""
        reporter = DiagnosticReporter()
        reporter.add_source("main.prose", self.SOURCE)
        return reporter

    @pytest.fixture
    def diagnostic(self) -> Diagnostic:
        """Create a const reassignment error on line 2."""
        return Diagnostic.error(
            "cannot reassign const binding 'x'",
            "main.prose",
            2,
            0,
            code=ErrorCode.E0009,
            end_line=2,
            end_column=15,
        )

    def test_rustc_style(self, reporter: DiagnosticReporter, diagnostic: Diagnostic) -> None:
        """The block shows header, location, context and carets."""
        output = reporter.format_diagnostic(diagnostic)
        lines = output.splitlines()
        assert lines[0] == "error[E0009]: cannot reassign const binding 'x'"
        assert lines[1] == "  --> main.prose:2:1"
        assert '   1 | const x = session "A"' in lines
        assert '   2 | x = session "B"' in lines
        assert "     | " + "^" * 15 in lines

    def test_missing_source_has_no_context(self, diagnostic: Diagnostic) -> None:
        """Without source text only the gutter is shown."""
        output = DiagnosticReporter().format_diagnostic(diagnostic)
        assert " | x = session" not in output

    def test_summary(self, reporter: DiagnosticReporter, diagnostic: Diagnostic) -> None:
        """Several diagnostics end with a count summary."""
        warning = Diagnostic.warning("hmm", "main.prose", 1, 0)
        output = reporter.format_diagnostics([diagnostic, warning])
        assert output.rstrip().endswith("Found 1 error and 1 warning in main.prose")

    def test_nothing_to_report(self, reporter: DiagnosticReporter) -> None:
        """No diagnostics format to an empty string."""
        assert reporter.format_diagnostics([]) == ""

    def test_compact_includes_notes(self, reporter: DiagnosticReporter) -> None:
        """Related notes follow their diagnostic."""
        diagnostic = Diagnostic.error("dup", "f", 3, 0).with_note("first here", "f", 1, 0)
        assert reporter.format_compact([diagnostic]) == (
            "f:3:1: error: dup\nf:1:1: note: first here"
        )

    def test_json(self, reporter: DiagnosticReporter, diagnostic: Diagnostic) -> None:
        """JSON output splits errors from warnings."""
        warning = Diagnostic.warning("hmm", "main.prose", 1, 0)
        data = json.loads(
            reporter.format_json([diagnostic, warning], "main.prose", stats={"sessions": 2}),
        )
        assert data["valid"] is False
        assert len(data["errors"]) == 1
        assert len(data["warnings"]) == 1
        assert data["stats"] == {"sessions": 2}


class TestSuccessMessage:
    """Test format_success_message."""

    def test_counts(self) -> None:
        """Non-zero counts are listed with plurals."""
        assert format_success_message(agents=1, sessions=3) == "valid (1 agent, 3 sessions)"

    def test_empty(self) -> None:
        """An empty program is simply valid."""
        assert format_success_message() == "valid"


class TestSummarize:
    """Test summarize."""

    def test_several_files(self) -> None:
        """Counts across files name the number of files."""
        diagnostics = [
            Diagnostic.error("a", "one.prose", 1, 0),
            Diagnostic.error("b", "two.prose", 1, 0),
        ]
        assert summarize(diagnostics) == "Found 2 errors in 2 files"

    def test_notes_only(self) -> None:
        """Notes alone produce no summary."""
        note = Diagnostic(Severity.NOTE, "context", "f", 1, 0)
        assert summarize([note]) is None
