"""Tests for the compiler pipeline and canonical output.

Test the public compile functions, the exceptions they raise and the
canonical form produced for each construct.
"""

import pytest

from openprose.codegen.generator import CompiledOutput
from openprose.compiler import (
    ProseCompileError,
    ProseError,
    ProseSyntaxError,
    ProseValidationError,
    compile,
    compile_source,
    validate_source,
)
from openprose.config import CompilerOptions, ProseConfig
from openprose.errors.diagnostics import Severity
from openprose.grammar.parser import parse

RICH_PROGRAM = """\
import "web-search" from "github:example/web"

agent researcher:
  model: sonnet
  prompt: "You research topics."
  skills: ["web-search"]

agent writer:
  model: opus
  prompt: "You write clearly."

block review(draft):
  session "Review {draft}"

let topic = session: researcher
parallel ("any", count: 1):
  a = session "Angle one on {topic}"
  b = session "Angle two on {topic}"
session: writer
  context: { a, b }
do review(topic)
loop until **the draft is approved** (max: 3) as round:
  session "Revise round {round}"
try:
  session "Publish"
catch as err:
  session "Report {err}"
for item, idx in [topic]:
  session "Summarize {item}"
"""


def _canonical(source: str, **options: object) -> str:
    config = ProseConfig(compiler=CompilerOptions(**options))
    return compile_source(source, config=config).code


# =============================================================================
# Canonical Form
# =============================================================================


class TestCanonicalSessions:
    """Test canonical session expansion."""

    def test_hello_world(self) -> None:
        """An anonymous session gets a name, a prompt key and empty context."""
        assert _canonical('session "Hello world"') == (
            'session _anon_0: { prompt: "Hello world", context: [] }\n'
        )

    def test_implicit_context_follows_previous_binding(self) -> None:
        """A session without context receives the most recent binding."""
        source = 'let a = session "first"\nsession "second"\n'
        assert _canonical(source) == (
            'let a = session _anon_0: { prompt: "first", context: [] }\n'
            'session _anon_1: { prompt: "second", context: a }\n'
        )

    def test_agent_properties_are_inherited(self) -> None:
        """Sessions referencing an agent carry its model and prompt."""
        source = 'agent critic:\n  model: haiku\n  prompt: "Be harsh."\nsession review: critic\n'
        assert _canonical(source).splitlines()[-1] == (
            'session review: { agent: critic, model: haiku, prompt: "Be harsh.", context: [] }'
        )

    def test_retry_gets_default_backoff(self) -> None:
        """A retry without backoff is given an explicit "none" backoff."""
        code = _canonical('session "Fetch"\n  retry: 3\n')
        assert code == (
            'session _anon_0: { prompt: "Fetch", context: [], retry: 3, backoff: "none" }\n'
        )

    def test_interpolation_and_escapes_survive(self) -> None:
        """Interpolations stay live and literal braces stay escaped."""
        source = 'let who = "world"\nsession "Hi {who} \\{not}"\n'
        last = _canonical(source).splitlines()[-1]
        assert last == 'session _anon_0: { prompt: "Hi {who} \\{not\\}", context: who }'


class TestCanonicalBlocks:
    """Test canonical form of block constructs."""

    def test_parallel_names_branches(self) -> None:
        """Unnamed branches are named and the join becomes the context."""
        source = 'parallel:\n  a = session "x"\n  session "y"\nsession "merge"\n'
        assert _canonical(source) == (
            'parallel ("all", on-fail: "fail-fast"):\n'
            '  a = session _anon_0: { prompt: "x", context: [] }\n'
            '  _branch_0 = session _anon_1: { prompt: "y", context: [] }\n'
            'session _anon_2: { prompt: "merge", context: { a, _branch_0 } }\n'
        )

    def test_arrow_binding_becomes_do_block(self) -> None:
        """A bound arrow chain is written as a `do:` block."""
        assert _canonical('let x = session "a" -> session "b"\n') == (
            "let x = do:\n"
            '  session _anon_0: { prompt: "a", context: [] }\n'
            '  session _anon_1: { prompt: "b", context: _anon_0 }\n'
        )

    def test_pipeline_stages(self) -> None:
        """Later pipeline stages are written one level below the first."""
        source = (
            'let xs = ["a", "b"]\n'
            "let out = xs | map:\n"
            '  session "Expand {item}"\n'
            "  | filter:\n"
            '    session "Keep {item}?"\n'
        )
        assert _canonical(source) == (
            'let xs = ["a", "b"]\n'
            "let out = xs | map:\n"
            '  session _anon_0: { prompt: "Expand {item}", context: xs }\n'
            "  | filter:\n"
            '    session _anon_1: { prompt: "Keep {item}?", context: xs }\n'
        )

    def test_arrow_into_pipe(self) -> None:
        """Leading arrow steps run first and the last one feeds the pipe."""
        assert _canonical('session "A" -> session "B" | map: session "C"\n') == (
            'session _anon_0: { prompt: "A", context: [] }\n'
            'session _anon_1: { prompt: "B", context: _anon_0 } | map:\n'
            '  session _anon_2: { prompt: "C", context: _anon_1 }\n'
        )

    def test_context_after_if_is_binding_before_it(self) -> None:
        """Bindings made inside an if do not become the context after it."""
        source = (
            'let a = session "first"\n'
            "if **ready**:\n"
            '  session "y"\n'
            "else:\n"
            '  session "z"\n'
            'session "after"\n'
        )
        assert _canonical(source).splitlines()[-1] == (
            'session _anon_3: { prompt: "after", context: a }'
        )

    def test_rich_program(self) -> None:
        """Every construct of a larger program is expanded."""
        lines = _canonical(RICH_PROGRAM).splitlines()
        assert lines[0] == 'import "web-search" from "github:example/web"'
        assert 'parallel ("any", count: 1, on-fail: "fail-fast"):' in lines
        assert '  a = session _anon_2: { prompt: "Angle one on {topic}", context: topic }' in lines
        assert (
            'session _anon_4: { agent: writer, model: opus, prompt: "You write clearly.", '
            "context: { a, b } }"
        ) in lines
        assert "do review(topic)" in lines
        assert "loop until **the draft is approved** (max: 3) as round:" in lines

    @pytest.mark.parametrize(
        "source",
        [
            RICH_PROGRAM,
            'session "Hello world"',
            'parallel:\n  a = session "x"\n  session "y"\nsession "merge"\n',
            'let x = session "a" -> session "b"\n',
            'session "A" -> session "B" | map: session "C"\n',
        ],
    )
    def test_canonical_output_is_a_fixed_point(self, source: str) -> None:
        """Compiling canonical text again reproduces it exactly."""
        first = _canonical(source)
        assert _canonical(first) == first


class TestCompilerOptions:
    """Test the options that shape the output."""

    def test_comments_dropped_by_default(self) -> None:
        """Standalone comments are removed unless preserved."""
        source = '# header\nsession "a"\n'
        assert _canonical(source).startswith("session ")

    def test_preserve_comments(self) -> None:
        """Standalone comments are kept when asked for."""
        code = _canonical('# header\nsession "a"\n', preserve_comments=True)
        assert code.splitlines()[0] == "# header"

    def test_indent_width(self) -> None:
        """Nested lines use the configured indentation."""
        code = _canonical('do:\n  session "a"\n', indent=4)
        assert code == 'do:\n    session _anon_0: { prompt: "a", context: [] }\n'

    def test_source_map(self) -> None:
        """Canonical lines map back to the line the user wrote."""
        output = compile_source('# header\n\nsession "a"\n', "main.prose")
        assert output.source_map is not None
        mapping = output.source_map.lookup(1)
        assert mapping.source_line == 3
        assert mapping.source_file == "main.prose"

    def test_source_maps_disabled(self) -> None:
        """No source map is built when disabled."""
        output = compile_source('session "a"', config=ProseConfig(
            compiler=CompilerOptions(source_maps=False),
        ))
        assert output.source_map is None

    def test_stripped_comments_are_reported(self) -> None:
        """Every source comment is returned alongside the code."""
        output = compile_source('# one\nsession "a"  # two\n')
        assert [c.text for c in output.stripped_comments] == ["# one", "# two"]
        assert [c.is_inline for c in output.stripped_comments] == [False, True]

    def test_unsupported_target(self) -> None:
        """Targets other than canonical are rejected."""
        program = parse('session "a"').program
        with pytest.raises(ProseCompileError) as exc_info:
            compile(program, CompilerOptions(target="json"))
        assert str(exc_info.value) == "unsupported compile target 'json'"

    def test_canonical_program_round_trip(self) -> None:
        """The compiled output parses back into a program."""
        output = compile(parse('session "a"').program)
        assert isinstance(output, CompiledOutput)
        assert len(output.canonical_program().statements) == 1


# =============================================================================
# Errors
# =============================================================================


class TestCompileErrors:
    """Test the exceptions raised by compile_source."""

    def test_syntax_error(self) -> None:
        """Parse failures raise ProseSyntaxError with diagnostics."""
        with pytest.raises(ProseSyntaxError) as exc_info:
            compile_source("session\n", "bad.prose")
        error = exc_info.value
        assert error.filename == "bad.prose"
        assert len(error.diagnostics) == 1
        assert error.diagnostics[0].is_error
        assert str(error).startswith("syntax errors in bad.prose\n  - bad.prose:1:8: error:")

    def test_validation_error(self) -> None:
        """Semantic failures raise ProseValidationError."""
        with pytest.raises(ProseValidationError) as exc_info:
            compile_source("session: ghost\n")
        error = exc_info.value
        assert [d.message for d in error.diagnostics] == ["undefined agent 'ghost'"]
        assert str(error) == (
            "validation failed for <input>\n"
            "  - <input>:1:10: error: undefined agent 'ghost'"
        )

    def test_help_text_is_listed(self) -> None:
        """Suggestions appear under their diagnostic."""
        with pytest.raises(ProseValidationError) as exc_info:
            compile_source('session "x"\n  model: gpt\n')
        assert "    help: expected one of: haiku, opus, sonnet" in str(exc_info.value)

    def test_errors_share_a_base_class(self) -> None:
        """All toolchain exceptions derive from ProseError."""
        assert issubclass(ProseSyntaxError, ProseError)
        assert issubclass(ProseValidationError, ProseError)
        assert issubclass(ProseCompileError, ProseError)

    def test_warnings_do_not_block_compilation(self) -> None:
        """A program with only warnings still compiles."""
        assert _canonical('loop:\n  session "again"\n').startswith("loop:\n")


class TestValidateSource:
    """Test validate_source."""

    def test_clean_source(self) -> None:
        """A valid program has no diagnostics."""
        assert validate_source('session "Hello world"') == []

    def test_escape_warning_is_reported_once(self) -> None:
        """The escape warning appears exactly once."""
        diagnostics = validate_source('session "a\\qb"')
        assert len(diagnostics) == 1
        assert diagnostics[0].severity == Severity.WARNING
        assert diagnostics[0].message == "unrecognized escape sequence '\\q'"

    def test_syntax_errors_skip_validation(self) -> None:
        """Only syntax problems are reported when parsing fails."""
        diagnostics = validate_source("session: ghost\nsession\n", "f.prose")
        assert len(diagnostics) == 1
        assert diagnostics[0].line == 2
        assert diagnostics[0].file == "f.prose"
