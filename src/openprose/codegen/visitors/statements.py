"""Statement visitor for canonical code generation.

Emit OpenProse statements in canonical form. This is where the surface
sugar is expanded: sessions get names and an explicit property object,
implicit context becomes explicit, and parallel blocks get their full
modifier list and named branches.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from openprose.ast.nodes import (
    AgentDefinition,
    BlockDefinition,
    BlockInvocation,
    ChoiceBlock,
    CommentStatement,
    ConstBinding,
    DoBlock,
    ForEachBlock,
    IfElseBlock,
    ImportStatement,
    LetBinding,
    LoopBlock,
    ParallelBlock,
    PipeExpression,
    PipeOperation,
    Property,
    Reassignment,
    RepeatBlock,
    SessionStatement,
    ThrowStatement,
    TryBlock,
    find_property,
)
from openprose.codegen.visitors.expressions import (
    ExpressionVisitor,
    quote_string,
    render_context,
    render_discretion,
)
from openprose.log import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable

    from openprose.ast.nodes import Expression, Statement
    from openprose.codegen.emitter import CanonicalEmitter
    from openprose.grammar.tokens import SourceSpan

logger = get_logger(__name__)

ANON_SESSION_PREFIX = "_anon_"
BRANCH_PREFIX = "_branch_"

DEFAULT_JOIN_STRATEGY = "all"
DEFAULT_ON_FAIL = "fail-fast"
DEFAULT_ANY_COUNT = 1
DEFAULT_BACKOFF = '"none"'

AGENT_PROPERTY_ORDER = ("model", "prompt", "skills", "permissions")
"""Agent properties in canonical order; others follow in source order."""

INHERITED_AGENT_KEYS = ("model", "skills", "prompt")
"""Session keys filled in from the referenced agent when not set."""

SESSION_KEYS = frozenset({"agent", "model", "skills", "prompt", "context", "retry", "backoff"})
"""Session keys with a fixed canonical position."""

BRANCH_TYPES = (
    SessionStatement,
    DoBlock,
    BlockInvocation,
    ParallelBlock,
    ForEachBlock,
    RepeatBlock,
    PipeExpression,
)
"""Statements that can stand as the value of a parallel branch."""

Binding = str | tuple[str, ...]
"""A single binding name, or the branch names of a parallel block."""


class NameAllocator:
    """Allocate generated names that never collide with source names."""

    def __init__(self, used: set[str]) -> None:
        """Initialize with the names already present in the program."""
        self._used = set(used)
        self._counters: dict[str, int] = {}

    def fresh(self, prefix: str) -> str:
        """Allocate the next free `<prefix><n>` name."""
        while True:
            index = self._counters.get(prefix, 0)
            self._counters[prefix] = index + 1
            name = f"{prefix}{index}"
            if name not in self._used:
                self._used.add(name)
                return name


@dataclass
class _Frame:
    """Bindings visible at the current point, for implicit context."""

    parent: _Frame | None = None
    last: Binding | None = None

    def recent(self) -> Binding | None:
        frame: _Frame | None = self
        while frame is not None:
            if frame.last is not None:
                return frame.last
            frame = frame.parent
        return None


class StatementVisitor:
    """Emit canonical text for OpenProse statements."""

    def __init__(
        self,
        emitter: CanonicalEmitter,
        *,
        agents: dict[str, AgentDefinition],
        names: NameAllocator,
        preserve_comments: bool = False,
    ) -> None:
        """Initialize the statement visitor.

        Args:
            emitter: Emitter receiving the canonical lines.
            agents: Agent definitions indexed by name, for property inheritance.
            names: Allocator for generated session and branch names.
            preserve_comments: Whether standalone comments are emitted.

        """
        self._emitter = emitter
        self._agents = agents
        self._names = names
        self._preserve_comments = preserve_comments
        self._frame = _Frame()
        self._expr = ExpressionVisitor(session_renderer=self.render_session)
        self._stmt_dispatch: dict[type, Callable[..., None]] = {
            CommentStatement: self._visit_comment,
            ImportStatement: self._visit_import,
            AgentDefinition: self._visit_agent,
            BlockDefinition: self._visit_block_definition,
            LetBinding: self._visit_let,
            ConstBinding: self._visit_const,
            Reassignment: self._visit_reassignment,
            LoopBlock: self._visit_loop,
            TryBlock: self._visit_try,
            ThrowStatement: self._visit_throw,
            ChoiceBlock: self._visit_choice,
            IfElseBlock: self._visit_if,
        }
        self._value_dispatch: dict[type, Callable[..., None]] = {
            DoBlock: self._emit_do,
            ParallelBlock: self._emit_parallel,
            ForEachBlock: self._emit_for_each,
            RepeatBlock: self._emit_repeat,
            PipeExpression: self._emit_pipe,
        }

    def visit_statement(self, stmt: Statement) -> None:
        """Emit one statement.

        Args:
            stmt: Statement AST node.

        """
        visitor = self._stmt_dispatch.get(type(stmt))
        if visitor is not None:
            visitor(stmt)
            return
        self._emit_value("", stmt, stmt.span)  # type: ignore[arg-type]

    # ==== Bodies and bindings ====

    def _emit_body(self, body: list[Statement], *, new_scope: bool = False) -> None:
        outer = self._frame
        if new_scope:
            self._frame = _Frame(parent=outer)
        with self._emitter.indented():
            for stmt in body:
                self.visit_statement(stmt)
        self._frame = outer

    def _bind(self, binding: Binding) -> None:
        self._frame.last = binding

    def _emit_value(self, prefix: str, value: Expression, span: SourceSpan) -> None:
        """Emit `prefix` followed by a value, expanding block-valued forms."""
        emit_block = self._value_dispatch.get(type(value))
        if emit_block is not None:
            emit_block(prefix, value)
            return
        self._emitter.emit(prefix + self._expr.visit(value), span)

    # ==== Definitions ====

    def _visit_comment(self, node: CommentStatement) -> None:
        if self._preserve_comments:
            self._emitter.emit_comment(node.text, node.span)

    def _visit_import(self, node: ImportStatement) -> None:
        self._emitter.emit(
            f"import {quote_string(node.skill)} from {quote_string(node.source)}",
            node.span,
        )

    def _visit_agent(self, node: AgentDefinition) -> None:
        self._emitter.emit(f"agent {node.name.name}:", node.span)
        ordered = sorted(
            node.properties,
            key=lambda p: (
                AGENT_PROPERTY_ORDER.index(p.name)
                if p.name in AGENT_PROPERTY_ORDER
                else len(AGENT_PROPERTY_ORDER)
            ),
        )
        with self._emitter.indented():
            for prop in ordered:
                self._emit_property(prop)

    def _emit_property(self, prop: Property) -> None:
        if not prop.children:
            self._emitter.emit(self._expr.render_entry(prop), prop.span)
            return
        self._emitter.emit(f"{prop.name}:", prop.span)
        with self._emitter.indented():
            for child in prop.children:
                self._emit_property(child)

    def _visit_block_definition(self, node: BlockDefinition) -> None:
        params = ", ".join(p.name for p in node.params)
        header = f"block {node.name.name}({params}):" if node.params else f"block {node.name.name}:"
        self._emitter.emit(header, node.span)

        # Block bodies start with no implicit context
        outer = self._frame
        self._frame = _Frame()
        with self._emitter.indented():
            for stmt in node.body:
                self.visit_statement(stmt)
        self._frame = outer

    # ==== Sessions ====

    def render_session(self, node: SessionStatement) -> str:
        """Render a session as `session NAME: { ... }` and record its binding.

        Args:
            node: Session node in statement or value position.

        Returns:
            The single-line canonical session.

        """
        name = node.name.name if node.name is not None else self._names.fresh(ANON_SESSION_PREFIX)
        agent = self._agents.get(node.agent.name) if node.agent is not None else None

        entries: list[str] = []
        if node.agent is not None:
            entries.append(f"agent: {node.agent.name}")
        for key in INHERITED_AGENT_KEYS:
            text = self._session_key(node, key, agent)
            if text is not None:
                entries.append(f"{key}: {text}")
        entries.append(f"context: {self._session_context(node)}")

        retry = find_property(node.properties, "retry")
        backoff = find_property(node.properties, "backoff")
        if retry is not None:
            entries.append(self._expr.render_entry(retry))
        if backoff is not None:
            entries.append(self._expr.render_entry(backoff))
        elif retry is not None:
            entries.append(f"backoff: {DEFAULT_BACKOFF}")

        entries.extend(
            self._expr.render_entry(p) for p in node.properties if p.name not in SESSION_KEYS
        )

        self._bind(name)
        return f"session {name}: {{ {', '.join(entries)} }}"

    def _session_key(
        self,
        node: SessionStatement,
        key: str,
        agent: AgentDefinition | None,
    ) -> str | None:
        if key == "prompt" and node.prompt is not None:
            return quote_string(node.prompt)
        prop = find_property(node.properties, key)
        if prop is None and agent is not None:
            prop = agent.get_property(key)
        if prop is None:
            return None
        if prop.children:
            return self._expr.render_entries(prop.children)
        if prop.value is None:
            return None
        return self._expr.visit(prop.value)

    def _session_context(self, node: SessionStatement) -> str:
        spec = node.context
        if spec.kind != "implicit":
            return render_context(spec)
        recent = self._frame.recent()
        if recent is None:
            return "[]"
        if isinstance(recent, tuple):
            return "{ " + ", ".join(recent) + " }"
        return recent

    # ==== Bindings ====

    def _visit_let(self, node: LetBinding) -> None:
        self._emit_value(f"let {node.name.name} = ", node.value, node.span)
        self._bind(node.name.name)

    def _visit_const(self, node: ConstBinding) -> None:
        self._emit_value(f"const {node.name.name} = ", node.value, node.span)
        self._bind(node.name.name)

    def _visit_reassignment(self, node: Reassignment) -> None:
        self._emit_value(f"{node.name.name} = ", node.value, node.span)
        self._bind(node.name.name)

    # ==== Block-valued forms ====

    def _emit_do(self, prefix: str, node: DoBlock) -> None:
        self._emitter.emit(f"{prefix}do:", node.span)
        self._emit_body(node.body)

    def _emit_parallel(self, prefix: str, node: ParallelBlock) -> None:
        modifiers = self._parallel_modifiers(node.join_strategy, node.on_fail, node.count)
        self._emitter.emit(f"{prefix}parallel {modifiers}:", node.span)

        # Each branch sees only the bindings from before the block
        before = self._frame.last
        branches: list[str] = []
        with self._emitter.indented():
            for stmt in node.body:
                self._frame.last = before
                if isinstance(stmt, Reassignment):
                    self._emit_value(f"{stmt.name.name} = ", stmt.value, stmt.span)
                    branches.append(stmt.name.name)
                elif isinstance(stmt, BRANCH_TYPES):
                    name = self._names.fresh(BRANCH_PREFIX)
                    self._emit_value(f"{name} = ", stmt, stmt.span)
                    branches.append(name)
                else:
                    self.visit_statement(stmt)
        self._frame.last = tuple(branches) if branches else before

    @staticmethod
    def _parallel_modifiers(strategy: str | None, on_fail: str | None, count: int | None) -> str:
        strategy = strategy or DEFAULT_JOIN_STRATEGY
        parts = [f'"{strategy}"']
        if strategy == "any":
            parts.append(f"count: {count if count is not None else DEFAULT_ANY_COUNT}")
        parts.append(f'on-fail: "{on_fail or DEFAULT_ON_FAIL}"')
        return "(" + ", ".join(parts) + ")"

    def _emit_for_each(self, prefix: str, node: ForEachBlock) -> None:
        header = f"for {node.item_var.name}"
        if node.index_var is not None:
            header += f", {node.index_var.name}"
        header += f" in {self._expr.visit(node.collection)}"
        if node.parallel:
            modifiers = self._parallel_modifiers(node.join_strategy, node.on_fail, node.count)
            header = f"parallel {header} {modifiers}"
        self._emitter.emit(f"{prefix}{header}:", node.span)
        self._emit_body(node.body, new_scope=True)

    def _emit_repeat(self, prefix: str, node: RepeatBlock) -> None:
        header = f"repeat {self._expr.visit(node.count)}"
        if node.index_var is not None:
            header += f" as {node.index_var.name}"
        self._emitter.emit(f"{prefix}{header}:", node.span)
        self._emit_body(node.body, new_scope=True)

    def _emit_pipe(self, prefix: str, node: PipeExpression) -> None:
        source = self._expr.visit(node.input)
        if not node.operations:
            self._emitter.emit(prefix + source, node.span)
            return

        first, *rest = node.operations
        self._emitter.emit(f"{prefix}{source} | {self._pipe_header(first)}", node.span)
        self._emit_body(first.body, new_scope=True)

        # Later stages continue at the level of the first stage's body
        with self._emitter.indented():
            for op in rest:
                self._emitter.emit(f"| {self._pipe_header(op)}", op.span)
                self._emit_body(op.body, new_scope=True)

    @staticmethod
    def _pipe_header(op: PipeOperation) -> str:
        if op.operator == "reduce" and op.acc_var is not None and op.item_var is not None:
            return f"reduce({op.acc_var.name}, {op.item_var.name}):"
        return f"{op.operator}:"

    # ==== Control flow ====

    def _visit_loop(self, node: LoopBlock) -> None:
        header = "loop"
        if node.variant is not None and node.condition is not None:
            header += f" {node.variant} {render_discretion(node.condition)}"
        if node.max_iterations is not None:
            header += f" (max: {self._expr.visit(node.max_iterations)})"
        if node.index_var is not None:
            header += f" as {node.index_var.name}"
        self._emitter.emit(f"{header}:", node.span)
        self._emit_body(node.body, new_scope=True)

    def _visit_try(self, node: TryBlock) -> None:
        self._emitter.emit("try:", node.span)
        self._emit_body(node.body)
        if node.catch_body is not None:
            header = f"catch as {node.error_var.name}:" if node.error_var is not None else "catch:"
            self._emitter.emit(header)
            self._emit_body(node.catch_body, new_scope=True)
        if node.finally_body is not None:
            self._emitter.emit("finally:")
            self._emit_body(node.finally_body)

    def _visit_throw(self, node: ThrowStatement) -> None:
        if node.message is None:
            self._emitter.emit("throw", node.span)
        else:
            self._emitter.emit(f"throw {quote_string(node.message)}", node.span)

    def _visit_choice(self, node: ChoiceBlock) -> None:
        self._emitter.emit(f"choice {render_discretion(node.criteria)}:", node.span)
        with self._emitter.indented():
            for option in node.options:
                self._emitter.emit(f"option {quote_string(option.label)}:", option.span)
                self._emit_body(option.body, new_scope=True)

    def _visit_if(self, node: IfElseBlock) -> None:
        # Each clause starts from the bindings before the if
        before = self._frame.last
        self._emitter.emit(f"if {render_discretion(node.condition)}:", node.span)
        self._emit_body(node.then_body)
        for clause in node.elif_clauses:
            self._frame.last = before
            self._emitter.emit(f"elif {render_discretion(clause.condition)}:", clause.span)
            self._emit_body(clause.body)
        if node.else_body is not None:
            self._frame.last = before
            self._emitter.emit("else:")
            self._emit_body(node.else_body)
        self._frame.last = before
