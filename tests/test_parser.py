"""Tests for the OpenProse parser.

Test coverage for every statement form, the arrow and pipe
mini-language, and error recovery.
"""

from openprose.ast.nodes import (
    AgentDefinition,
    BlockDefinition,
    BlockInvocation,
    ChoiceBlock,
    CommentStatement,
    ConstBinding,
    Discretion,
    DoBlock,
    ForEachBlock,
    Identifier,
    IfElseBlock,
    ImportStatement,
    LetBinding,
    LoopBlock,
    NumberLiteral,
    ObjectExpression,
    ParallelBlock,
    PipeExpression,
    Reassignment,
    RepeatBlock,
    SessionStatement,
    StringLiteral,
    ThrowStatement,
    TryBlock,
)
from openprose.errors.codes import ErrorCode
from openprose.grammar.lexer import tokenize
from openprose.grammar.parser import parse


def _parse_ok(source: str) -> list:
    result = parse(source)
    assert result.errors == [], [e.message for e in result.errors]
    return result.program.statements


# =============================================================================
# Sessions
# =============================================================================


class TestSessions:
    """Test the session statement forms."""

    def test_inline_prompt(self) -> None:
        """A bare session carries its prompt and no agent."""
        (stmt,) = _parse_ok('session "Hello world"')
        assert isinstance(stmt, SessionStatement)
        assert stmt.prompt is not None
        assert stmt.prompt.value == "Hello world"
        assert stmt.agent is None
        assert stmt.name is None

    def test_agent_reference(self) -> None:
        """`session: name` references an agent."""
        (stmt,) = _parse_ok("session: researcher")
        assert stmt.agent == Identifier("researcher", stmt.agent.span)
        assert stmt.prompt is None

    def test_named_session_with_agent(self) -> None:
        """`session name: agent` names the result."""
        (stmt,) = _parse_ok("session review: critic")
        assert stmt.name.name == "review"
        assert stmt.agent.name == "critic"

    def test_named_session_with_prompt(self) -> None:
        """`session name: "prompt"` names an inline-prompt session."""
        (stmt,) = _parse_ok('session draft: "Write a draft"')
        assert stmt.name.name == "draft"
        assert stmt.prompt.value == "Write a draft"

    def test_property_block(self) -> None:
        """Indented properties attach to the session."""
        (stmt,) = _parse_ok('session "Summarize"\n  model: opus\n  retry: 3\n')
        assert [p.name for p in stmt.properties] == ["model", "retry"]
        retry = stmt.get_property("retry")
        assert isinstance(retry.value, NumberLiteral)
        assert retry.value.value == 3

    def test_modifier_list(self) -> None:
        """Parenthesized modifiers become properties."""
        (stmt,) = _parse_ok('session "Fetch" (retry: 2, backoff: "linear")')
        assert [p.name for p in stmt.properties] == ["retry", "backoff"]
        assert stmt.get_property("backoff").value.value == "linear"

    def test_object_form(self) -> None:
        """The object form sets agent, prompt and context in one line."""
        (stmt,) = _parse_ok('session s: { agent: writer, prompt: "Go", context: [a, b] }')
        assert stmt.name.name == "s"
        assert stmt.agent.name == "writer"
        assert stmt.get_property("prompt").value.value == "Go"
        context = stmt.context
        assert context.kind == "list"
        assert context.names == ["a", "b"]

    def test_context_forms(self) -> None:
        """Context accepts a name, a list, an object or nothing."""
        cases = {
            "context: a": ("single", ["a"]),
            "context: [a, b]": ("list", ["a", "b"]),
            "context: { a, b }": ("object", ["a", "b"]),
            "context: []": ("empty", []),
        }
        for line, (kind, names) in cases.items():
            (stmt,) = _parse_ok(f'session "x"\n  {line}\n')
            assert stmt.context.kind == kind
            assert stmt.context.names == names

    def test_implicit_context(self) -> None:
        """A session without context has an implicit context spec."""
        (stmt,) = _parse_ok('session "x"')
        assert stmt.context.kind == "implicit"

    def test_bare_name_colon_requires_session_keyword(self) -> None:
        """`name: agent` at statement position is rejected with a hint."""
        result = parse("review: critic\n")
        assert len(result.errors) == 1
        assert "sessions require the 'session' keyword" in result.errors[0].message


# =============================================================================
# Definitions
# =============================================================================


class TestDefinitions:
    """Test imports, agents and blocks."""

    def test_import(self) -> None:
        """Imports carry the skill name and source."""
        (stmt,) = _parse_ok('import "web-search" from "github:example/web"')
        assert isinstance(stmt, ImportStatement)
        assert stmt.skill.value == "web-search"
        assert stmt.source.value == "github:example/web"

    def test_agent_with_nested_permissions(self) -> None:
        """Agent properties may contain nested property blocks."""
        source = (
            "agent builder:\n"
            "  model: sonnet\n"
            '  prompt: "You build things."\n'
            "  permissions:\n"
            '    write: ["src/**"]\n'
            "    bash: deny\n"
        )
        (stmt,) = _parse_ok(source)
        assert isinstance(stmt, AgentDefinition)
        assert stmt.name.name == "builder"
        permissions = stmt.get_property("permissions")
        assert [c.name for c in permissions.children] == ["write", "bash"]

    def test_block_definition_and_invocation(self) -> None:
        """Blocks declare parameters; `do name(args)` invokes them."""
        source = 'block review(draft, focus):\n  session "Review {draft}"\ndo review(x, "style")\n'
        block, call = _parse_ok(source)
        assert isinstance(block, BlockDefinition)
        assert [p.name for p in block.params] == ["draft", "focus"]
        assert isinstance(call, BlockInvocation)
        assert call.name.name == "review"
        assert isinstance(call.args[0], Identifier)
        assert isinstance(call.args[1], StringLiteral)

    def test_block_without_parameters(self) -> None:
        """Parentheses are optional on parameterless blocks."""
        block, call = _parse_ok('block greet:\n  session "Hi"\ndo greet\n')
        assert block.params == []
        assert call.args == []


# =============================================================================
# Bindings
# =============================================================================


class TestBindings:
    """Test let, const and reassignment."""

    def test_let_and_const(self) -> None:
        """Bindings take an expression value."""
        let, const = _parse_ok('let a = session "x"\nconst b = "text"\n')
        assert isinstance(let, LetBinding)
        assert isinstance(let.value, SessionStatement)
        assert isinstance(const, ConstBinding)
        assert isinstance(const.value, StringLiteral)

    def test_reassignment(self) -> None:
        """`name = value` reassigns."""
        _, stmt = _parse_ok('let a = session "x"\na = session "y"\n')
        assert isinstance(stmt, Reassignment)
        assert stmt.name.name == "a"

    def test_binding_with_property_block(self) -> None:
        """A bound session may carry a property block."""
        (stmt,) = _parse_ok('let a = session "x"\n  model: haiku\n')
        assert stmt.value.get_property("model").value.name == "haiku"

    def test_object_literal(self) -> None:
        """Object literals support shorthand entries."""
        (stmt,) = _parse_ok("let o = { a, b: 1 }\n")
        assert isinstance(stmt.value, ObjectExpression)
        first, second = stmt.value.entries
        assert first.shorthand
        assert second.value.value == 1


# =============================================================================
# Arrows and Pipes
# =============================================================================


class TestArrowsAndPipes:
    """Test sequencing and pipeline syntax."""

    def test_arrow_at_statement_level_splices(self) -> None:
        """An arrow chain in statement position yields one statement per step."""
        statements = _parse_ok('session "a" -> session "b" -> session "c"')
        assert len(statements) == 3
        assert all(isinstance(s, SessionStatement) for s in statements)

    def test_arrow_in_value_position_is_a_do_block(self) -> None:
        """An arrow chain bound to a name becomes a do block."""
        (stmt,) = _parse_ok('let r = session "a" -> session "b"')
        assert isinstance(stmt.value, DoBlock)
        assert len(stmt.value.body) == 2

    def test_pipe_chain_keeps_source_order(self) -> None:
        """Chained stages are recorded in order."""
        (stmt,) = _parse_ok('session "A" | map: session "B" | filter: session "C"')
        assert isinstance(stmt, PipeExpression)
        assert len(stmt.operations) == 2
        assert [op.operator for op in stmt.operations] == ["map", "filter"]
        assert isinstance(stmt.input, SessionStatement)

    def test_pipe_with_block_bodies(self) -> None:
        """A '|' at body level starts the next stage."""
        source = (
            "let out = items | map:\n"
            '  session "Expand {item}"\n'
            "  | filter:\n"
            '    session "Keep {item}?"\n'
            'session "after"\n'
        )
        binding, after = _parse_ok(source)
        pipe = binding.value
        assert isinstance(pipe, PipeExpression)
        assert [op.operator for op in pipe.operations] == ["map", "filter"]
        assert isinstance(after, SessionStatement)

    def test_reduce_variables(self) -> None:
        """Reduce stages name their accumulator and item."""
        (stmt,) = _parse_ok('let total = items | reduce(acc, x): session "Merge"')
        op = stmt.value.operations[0]
        assert op.acc_var.name == "acc"
        assert op.item_var.name == "x"

    def test_arrow_into_pipe_splices_leading_steps(self) -> None:
        """Only the last arrow step feeds the pipe at statement level."""
        first, pipe = _parse_ok('session "A" -> session "B" | map: session "C"')
        assert isinstance(first, SessionStatement)
        assert first.prompt.value == "A"
        assert isinstance(pipe, PipeExpression)
        assert isinstance(pipe.input, SessionStatement)
        assert pipe.input.prompt.value == "B"

    def test_arrow_into_pipe_in_value_position_is_rejected(self) -> None:
        """A bound arrow chain cannot feed a pipe."""
        result = parse('let r = session "A" -> session "B" | map: session "C"\nsession "ok"\n')
        assert len(result.errors) == 1
        assert "arrow sequence cannot feed a pipeline" in result.errors[0].message
        (stmt,) = result.program.statements
        assert isinstance(stmt, SessionStatement)

    def test_pipe_requires_operator(self) -> None:
        """Only map, filter, reduce and pmap may follow '|'."""
        result = parse('let r = items | sort: session "x"\n')
        assert len(result.errors) == 1
        assert "expected map, filter, reduce or pmap" in result.errors[0].message


# =============================================================================
# Control Flow
# =============================================================================


class TestControlFlow:
    """Test parallel, loops, try, choice and conditionals."""

    def test_parallel_with_modifiers(self) -> None:
        """Parallel modifiers set strategy, count and failure policy."""
        source = (
            'parallel ("any", count: 2, on-fail: "continue"):\n'
            '  a = session "x"\n'
            '  b = session "y"\n'
        )
        (stmt,) = _parse_ok(source)
        assert isinstance(stmt, ParallelBlock)
        assert stmt.join_strategy == "any"
        assert stmt.count == 2
        assert stmt.on_fail == "continue"
        assert [type(s) for s in stmt.body] == [Reassignment, Reassignment]

    def test_empty_parallel_parses(self) -> None:
        """An empty parallel body is left to the validator."""
        (stmt,) = _parse_ok("parallel:\n")
        assert isinstance(stmt, ParallelBlock)
        assert stmt.body == []

    def test_for_each_with_index(self) -> None:
        """For loops bind an item and an optional index."""
        (stmt,) = _parse_ok('for x, i in items:\n  session "Do {x}"\n')
        assert isinstance(stmt, ForEachBlock)
        assert stmt.item_var.name == "x"
        assert stmt.index_var.name == "i"
        assert not stmt.parallel

    def test_parallel_for(self) -> None:
        """`parallel for` accepts modifiers."""
        (stmt,) = _parse_ok('parallel for x in [a, b] ("first"):\n  session "Do {x}"\n')
        assert stmt.parallel
        assert stmt.join_strategy == "first"

    def test_modifiers_only_on_parallel_for(self) -> None:
        """A plain for loop rejects modifiers."""
        result = parse('for x in items ("all"):\n  session "x"\n')
        assert result.errors[0].message == "modifiers are only allowed on 'parallel for'"

    def test_repeat(self) -> None:
        """Repeat takes a count and an optional index."""
        (stmt,) = _parse_ok('repeat 3 as i:\n  session "Try"\n')
        assert isinstance(stmt, RepeatBlock)
        assert stmt.count.value == 3
        assert stmt.index_var.name == "i"

    def test_loop_until_with_discretion(self) -> None:
        """The loop condition is an opaque discretion node."""
        (stmt,) = _parse_ok('loop until **the user approves**:\n  session "Revise"\n')
        assert isinstance(stmt, LoopBlock)
        assert stmt.variant == "until"
        assert stmt.condition == Discretion(
            "the user approves",
            multiline=False,
            span=stmt.condition.span,
        )

    def test_loop_with_max_and_index(self) -> None:
        """Loops accept `(max: N)` and `as name`."""
        (stmt,) = _parse_ok('loop (max: 5) as n:\n  session "Step"\n')
        assert stmt.variant is None
        assert stmt.max_iterations.value == 5
        assert stmt.index_var.name == "n"

    def test_unknown_loop_modifier(self) -> None:
        """Only `max` is accepted on loops."""
        result = parse('loop (limit: 5):\n  session "x"\n')
        assert result.errors[0].message == "unknown loop modifier 'limit'"

    def test_try_catch_finally(self) -> None:
        """Try blocks collect catch and finally bodies."""
        source = (
            "try:\n"
            '  session "Risky"\n'
            "catch as err:\n"
            '  session "Recover"\n'
            "finally:\n"
            '  session "Clean up"\n'
        )
        (stmt,) = _parse_ok(source)
        assert isinstance(stmt, TryBlock)
        assert stmt.error_var.name == "err"
        assert len(stmt.catch_body) == 1
        assert len(stmt.finally_body) == 1

    def test_throw(self) -> None:
        """Throw takes an optional message."""
        with_message, bare = _parse_ok('throw "boom"\nthrow\n')
        assert isinstance(with_message, ThrowStatement)
        assert with_message.message.value == "boom"
        assert bare.message is None

    def test_choice(self) -> None:
        """Choice blocks hold labelled options."""
        source = (
            "choice **the best approach**:\n"
            '  option "Fast":\n'
            '    session "Quick fix"\n'
            '  option "Thorough":\n'
            '    session "Full rewrite"\n'
        )
        (stmt,) = _parse_ok(source)
        assert isinstance(stmt, ChoiceBlock)
        assert stmt.criteria.text == "the best approach"
        assert [o.label.value for o in stmt.options] == ["Fast", "Thorough"]

    def test_if_elif_else(self) -> None:
        """Conditionals collect elif clauses and an else body."""
        source = (
            "if **tests pass**:\n"
            '  session "Ship"\n'
            "elif **tests are flaky**:\n"
            '  session "Retry"\n'
            "else:\n"
            '  session "Fix"\n'
        )
        (stmt,) = _parse_ok(source)
        assert isinstance(stmt, IfElseBlock)
        assert stmt.condition.text == "tests pass"
        assert len(stmt.elif_clauses) == 1
        assert stmt.else_body is not None

    def test_do_block(self) -> None:
        """`do:` groups statements."""
        (stmt,) = _parse_ok('do:\n  session "a"\n  session "b"\n')
        assert isinstance(stmt, DoBlock)
        assert len(stmt.body) == 2


# =============================================================================
# Comments and Recovery
# =============================================================================


class TestCommentsAndRecovery:
    """Test comment placement and error recovery."""

    def test_comments_are_collected(self) -> None:
        """Standalone comments become statements; all comments are kept."""
        result = parse('# note\nsession "a"  # inline\n')
        program = result.program
        assert [c.is_inline for c in program.comments] == [False, True]
        assert isinstance(program.statements[0], CommentStatement)
        assert program.statements[0].text == "# note"
        assert isinstance(program.statements[1], SessionStatement)

    def test_recovers_after_broken_statement(self) -> None:
        """Parsing continues at the next statement after an error."""
        result = parse('session\nsession "ok"\n')
        assert len(result.errors) == 1
        assert result.errors[0].code == ErrorCode.E0007
        assert "found end of line" in result.errors[0].message
        (stmt,) = result.program.statements
        assert stmt.prompt.value == "ok"

    def test_reports_several_errors_in_one_pass(self) -> None:
        """Independent problems are all reported."""
        result = parse('session\nlet = 1\nsession "ok"\n')
        assert len(result.errors) == 2
        assert len(result.program.statements) == 1

    def test_unclosed_bracket_keeps_later_statements(self) -> None:
        """Errors after an unclosed bracket are still found."""
        result = parse('session "a" (retry: 3\nsession "b"\nfoo:\n  session "c"\nbar:\n')
        assert [e.message for e in result.lex_errors] == ["unclosed '('"]
        error_lines = [e.span.line for e in result.errors]
        assert 3 in error_lines
        assert 5 in error_lines
        prompts = [
            s.prompt.value for s in result.program.statements if isinstance(s, SessionStatement)
        ]
        assert "b" in prompts

    def test_unexpected_indentation(self) -> None:
        """An indented line without a header is an indentation error."""
        result = parse('throw "a"\n    session "b"\n')
        assert result.errors[0].code == ErrorCode.E0008

    def test_parse_accepts_tokens(self) -> None:
        """`parse` accepts a token list from `tokenize`."""
        result = parse(tokenize('session "a"').tokens)
        assert not result.has_errors
        assert len(result.program.statements) == 1

    def test_lex_errors_are_reported(self) -> None:
        """Parsing from text carries lexer problems along."""
        result = parse('session "abc')
        assert result.has_errors
        assert result.lex_errors[0].message == "unterminated string literal"
