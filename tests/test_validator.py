"""Tests for the OpenProse semantic validator.

Test reference resolution, binding rules, enumerated values, structural
checks and the warnings the validator reports.
"""

import pytest

from openprose.config import ValidatorOptions
from openprose.errors.codes import ErrorCode
from openprose.grammar.parser import parse
from openprose.semantic.scope import Scope, ScopeType, SymbolKind
from openprose.semantic.validator import ValidationResult, validate


def _validate(source: str, **options: object) -> ValidationResult:
    result = parse(source)
    assert not result.has_errors, [e.message for e in result.errors]
    return validate(result.program, ValidatorOptions(**options) if options else None)


def _error_messages(result: ValidationResult) -> list[str]:
    return [e.message for e in result.errors]


def _warning_messages(result: ValidationResult) -> list[str]:
    return [w.message for w in result.warnings]


# =============================================================================
# Valid Programs
# =============================================================================


class TestValidPrograms:
    """Test programs that should validate cleanly."""

    def test_agent_and_session(self) -> None:
        """A referenced agent with model and prompt is clean."""
        source = 'agent writer:\n  model: sonnet\n  prompt: "You write."\nsession: writer\n'
        result = _validate(source)
        assert result.valid
        assert result.errors == []
        assert result.warnings == []

    def test_parallel_branches_are_visible_afterwards(self) -> None:
        """Named branches can be used as context after the block."""
        source = (
            "parallel:\n"
            '  a = session "Research"\n'
            '  b = session "Survey"\n'
            'session "Merge"\n'
            "  context: { a, b }\n"
        )
        assert _validate(source).valid

    def test_pipe_binds_item(self) -> None:
        """Map bodies see the implicit `item` variable."""
        source = 'let xs = ["a", "b"]\nlet out = xs | map:\n  session "Expand {item}"\n'
        assert _validate(source).valid

    def test_block_parameters_are_in_scope(self) -> None:
        """Block bodies see their parameters."""
        source = 'block greet(name):\n  session "Hi {name}"\ndo greet("world")\n'
        assert _validate(source).valid

    def test_custom_model_list(self) -> None:
        """Configured models replace the default tiers."""
        result = _validate('session "x"\n  model: gpt\n', models=["gpt"])
        assert result.valid

    def test_agent_without_model_or_prompt_only_warns(self) -> None:
        """Missing agent model and prompt are warnings."""
        result = _validate("agent bare:\n  permissions:\n    bash: deny\nsession: bare\n")
        assert result.valid
        assert _warning_messages(result) == [
            "agent 'bare' has no 'model' property",
            "agent 'bare' has no 'prompt' property",
        ]


# =============================================================================
# References
# =============================================================================


class TestReferences:
    """Test resolution of agents, blocks, skills and variables."""

    def test_undefined_agent(self) -> None:
        """Sessions must reference defined agents."""
        result = _validate("session: ghost\n")
        assert not result.valid
        assert _error_messages(result) == ["undefined agent 'ghost'"]
        assert result.errors[0].code == ErrorCode.E0001

    def test_undefined_block(self) -> None:
        """Invocations must name defined blocks."""
        result = _validate("do missing\n")
        assert _error_messages(result) == ["undefined block 'missing'"]

    def test_undefined_skill(self) -> None:
        """Agent skills must be imported."""
        source = 'agent a:\n  model: sonnet\n  prompt: "x"\n  skills: ["web"]\n'
        result = _validate(source)
        assert _error_messages(result) == ["undefined skill 'web'"]
        assert result.errors[0].suggestion == 'add: import "web" from "..."'

    def test_unresolved_import(self) -> None:
        """Imports are checked against the available skills when given."""
        result = _validate('import "web" from "github:example/web"\n', available_skills=[])
        assert result.errors[0].code == ErrorCode.E0006
        assert result.errors[0].message == "imported skill 'web' could not be resolved"

    def test_undefined_interpolation(self) -> None:
        """Interpolated names must be bound."""
        result = _validate('session "Hello {who}"\n')
        assert _error_messages(result) == ["undefined variable 'who' in interpolation"]

    def test_undefined_context_variable(self) -> None:
        """Context references must be bound."""
        result = _validate('session "x"\n  context: [nope]\n')
        assert _error_messages(result) == ["undefined variable 'nope' in context"]

    def test_used_before_definition(self) -> None:
        """A name bound later in the file is reported as used too early."""
        source = 'session "x"\n  context: later\nlet later = session "y"\n'
        result = _validate(source)
        assert _error_messages(result) == ["variable 'later' used before definition"]
        assert result.errors[0].code == ErrorCode.E0002

    def test_out_of_scope_name_is_undefined(self) -> None:
        """A loop-local name used after the loop is undefined, not early."""
        source = (
            'for x in ["a"]:\n'
            '  let y = session "Use {x}"\n'
            'session "after"\n'
            "  context: [y]\n"
        )
        result = _validate(source)
        assert _error_messages(result) == ["undefined variable 'y' in context"]
        assert result.errors[0].code == ErrorCode.E0001

    def test_duplicate_agent(self) -> None:
        """A second agent with the same name points at the first."""
        source = (
            "agent a:\n  model: sonnet\n  prompt: \"x\"\n"
            "agent a:\n  model: opus\n  prompt: \"y\"\n"
        )
        result = _validate(source)
        assert _error_messages(result) == ["duplicate agent name 'a'"]
        error = result.errors[0]
        assert error.code == ErrorCode.E0003
        assert error.related[0].message == "first definition of 'a' here"
        assert error.related[0].span.line == 1


# =============================================================================
# Bindings
# =============================================================================


class TestBindings:
    """Test let, const and reassignment rules."""

    def test_const_reassignment(self) -> None:
        """Const bindings cannot be reassigned."""
        result = _validate('const x = "a"\nx = "b"\n')
        assert _error_messages(result) == ["cannot reassign const binding 'x'"]
        assert result.errors[0].code == ErrorCode.E0009

    def test_named_session_is_read_only(self) -> None:
        """Session results cannot be reassigned."""
        result = _validate('session r: "go"\nr = session "again"\n')
        assert _error_messages(result) == ["cannot reassign read-only binding 'r'"]

    def test_let_can_be_reassigned(self) -> None:
        """Let bindings accept reassignment."""
        assert _validate('let x = session "a"\nx = session "b"\n').valid

    def test_assignment_to_undeclared(self) -> None:
        """Reassignment needs an existing binding."""
        result = _validate('y = session "a"\n')
        assert _error_messages(result) == ["cannot assign to undeclared variable 'y'"]

    def test_shadowing_warns(self) -> None:
        """A loop-local binding hiding an outer one is a warning."""
        source = 'let x = session "a"\nfor item in [x]:\n  let x = session "b"\n'
        result = _validate(source)
        assert result.valid
        assert _warning_messages(result) == ["variable 'x' shadows an outer variable"]
        assert result.warnings[0].code == ErrorCode.W0001


# =============================================================================
# Values
# =============================================================================


class TestValues:
    """Test enumerated and numeric property values."""

    def test_invalid_model(self) -> None:
        """Models outside the configured tiers are rejected."""
        result = _validate('session "x"\n  model: gpt\n')
        assert _error_messages(result) == ["invalid model 'gpt'"]
        assert result.errors[0].suggestion == "expected one of: haiku, opus, sonnet"

    def test_invalid_join_strategy(self) -> None:
        """Unknown join strategies are rejected."""
        source = 'parallel ("fastest"):\n  a = session "x"\n  b = session "y"\n'
        result = _validate(source)
        assert "invalid join strategy 'fastest'" in _error_messages(result)

    def test_retry_must_be_positive(self) -> None:
        """A zero retry count is an error."""
        result = _validate('session "a"\n  retry: 0\n')
        assert _error_messages(result) == ["retry count must be positive, got 0"]

    def test_unknown_property_warns(self) -> None:
        """Unknown properties are reported as warnings."""
        result = _validate('session "a"\n  colour: red\n')
        assert result.valid
        assert _warning_messages(result) == ["unknown property 'colour'"]
        assert result.warnings[0].code == ErrorCode.W0004

    def test_unrecognized_escape_warns(self) -> None:
        """Unknown escapes in prompts produce a warning."""
        result = _validate('session "a\\qb"\n')
        assert result.valid
        assert _warning_messages(result) == ["unrecognized escape sequence '\\q'"]


# =============================================================================
# Structure
# =============================================================================


class TestStructure:
    """Test structural rules."""

    def test_empty_parallel(self) -> None:
        """A parallel block needs at least one branch."""
        result = _validate("parallel:\n")
        assert _error_messages(result) == ["parallel block must not be empty"]
        assert result.errors[0].code == ErrorCode.E0011

    def test_first_needs_two_branches(self) -> None:
        """Racing strategies need more than one branch."""
        result = _validate('parallel ("first"):\n  a = session "x"\n')
        assert _error_messages(result) == ["parallel 'first' strategy needs at least 2 branches"]

    def test_any_without_count_warns(self) -> None:
        """`any` without a count falls back to 1 with a warning."""
        source = 'parallel ("any"):\n  a = session "x"\n  b = session "y"\n'
        result = _validate(source)
        assert result.valid
        assert _warning_messages(result) == ["parallel 'any' without count; count defaults to 1"]

    def test_count_requires_any(self) -> None:
        """`count` only applies to the `any` strategy."""
        source = 'parallel ("all", count: 2):\n  a = session "x"\n  b = session "y"\n'
        result = _validate(source)
        assert _error_messages(result) == ["'count' is only valid with the 'any' strategy"]

    def test_block_arity(self) -> None:
        """Invocations pass exactly as many arguments as parameters."""
        source = 'block greet(name):\n  session "Hi {name}"\ndo greet\n'
        result = _validate(source)
        assert _error_messages(result) == ["block 'greet' expects 1 argument(s), got 0"]
        assert result.errors[0].code == ErrorCode.E0012

    def test_import_after_code(self) -> None:
        """Imports must come before any other statement."""
        result = _validate('session "a"\nimport "web" from "github:example/web"\n')
        assert _error_messages(result) == ["import statements must appear at the top of the file"]
        assert result.errors[0].code == ErrorCode.E0005

    def test_try_requires_handler(self) -> None:
        """A try block needs catch or finally."""
        result = _validate('try:\n  session "a"\n')
        assert _error_messages(result) == ["try block requires 'catch' or 'finally'"]

    def test_session_needs_prompt_or_agent(self) -> None:
        """A session with neither prompt nor agent is rejected."""
        result = _validate("session s: { model: sonnet }\n")
        assert _error_messages(result) == ["session requires a prompt or an agent reference"]
        assert result.errors[0].code == ErrorCode.E0010

    def test_unbounded_loop_warns(self) -> None:
        """A bare loop without max iterations is a warning."""
        result = _validate('loop:\n  session "again"\n')
        assert result.valid
        assert _warning_messages(result) == [
            "unbounded loop without max iterations; consider adding (max: N)",
        ]

    @pytest.mark.parametrize("marker", ["TODO", "FIXME", "HACK"])
    def test_marker_comments_warn(self, marker: str) -> None:
        """Comments with work markers are flagged."""
        result = _validate(f'# {marker}: tighten this\nsession "a"\n')
        assert _warning_messages(result) == [f"{marker} comment found"]
        assert result.warnings[0].code == ErrorCode.W0002


class TestDiagnostics:
    """Test conversion of results to diagnostics."""

    def test_diagnostics_are_in_source_order(self) -> None:
        """Errors and warnings are merged by position."""
        result = _validate('loop:\n  session "again"\nsession: ghost\n')
        diagnostics = result.diagnostics("main.prose")
        assert [d.line for d in diagnostics] == [1, 3]
        assert diagnostics[0].file == "main.prose"
        assert diagnostics[1].is_error


# =============================================================================
# Scopes
# =============================================================================


class TestScope:
    """Test name resolution through nested scopes."""

    def test_lookup_walks_outward(self) -> None:
        """Inner scopes see outer bindings and shadow them locally."""
        outer = Scope(ScopeType.FILE)
        outer.define("draft", SymbolKind.VARIABLE)
        inner = Scope(ScopeType.LOOP, parent=outer)
        inner.define("item", SymbolKind.LOOP_VARIABLE)

        assert inner.lookup("draft") is outer.lookup_local("draft")
        assert inner.lookup_local("draft") is None
        assert inner.lookup_outer("item") is None
        assert inner.visible_names() == ["draft", "item"]

    def test_read_only_kinds(self) -> None:
        """Only plain variables accept reassignment."""
        scope = Scope(ScopeType.FILE)
        assert not scope.define("a", SymbolKind.VARIABLE).is_read_only
        assert scope.define("b", SymbolKind.RESULT).is_read_only
        assert scope.define("c", SymbolKind.PARAMETER).is_read_only
