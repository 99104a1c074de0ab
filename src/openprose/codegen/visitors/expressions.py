"""Expression visitor for canonical code generation.

Render OpenProse expression nodes as single-line canonical text.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from openprose.ast.nodes import (
    ArrayExpression,
    BlockInvocation,
    ContextSpec,
    Discretion,
    Identifier,
    NumberLiteral,
    ObjectExpression,
    Property,
    SessionStatement,
    StringLiteral,
)
from openprose.log import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable

logger = get_logger(__name__)

STRING_ESCAPES = {
    "\\": "\\\\",
    '"': '\\"',
    "\n": "\\n",
    "\t": "\\t",
    "\r": "\\r",
    "\0": "\\0",
    "{": "\\{",
    "}": "\\}",
}
"""Characters re-escaped inside canonical double-quoted strings."""


def quote_string(literal: StringLiteral) -> str:
    """Render a string literal in canonical double-quoted form.

    Recorded interpolation segments are written back as `{name}`; any
    other brace is escaped so that it stays literal text on reparse.

    Args:
        literal: The string literal node.

    Returns:
        The quoted string.

    """
    segments = {i.offset: i.raw for i in literal.interpolations}
    value = literal.value
    parts: list[str] = []
    pos = 0
    while pos < len(value):
        raw = segments.get(pos)
        if raw is not None:
            parts.append(raw)
            pos += len(raw)
            continue
        ch = value[pos]
        parts.append(STRING_ESCAPES.get(ch, ch))
        pos += 1
    return '"' + "".join(parts) + '"'


def render_discretion(node: Discretion) -> str:
    """Render a discretion span with its original marker width."""
    marker = "***" if node.multiline else "**"
    return f"{marker}{node.text}{marker}"


def render_context(spec: ContextSpec) -> str:
    """Render an explicit context specification.

    Args:
        spec: Context spec of kind single, list, object or empty.

    Returns:
        Canonical context text.

    """
    names = ", ".join(spec.names)
    if spec.kind == "single" and spec.refs:
        return spec.refs[0].name
    if spec.kind == "object" and spec.refs:
        return f"{{ {names} }}"
    return f"[{names}]"


class ExpressionVisitor:
    """Render expression nodes as canonical text.

    Sessions and block calls nested inside arrays or objects are handed
    to `session_renderer`, which owns session naming and context.
    """

    def __init__(
        self,
        session_renderer: Callable[[SessionStatement], str] | None = None,
    ) -> None:
        """Initialize the expression visitor.

        Args:
            session_renderer: Callback rendering a session in value position.

        """
        self._session_renderer = session_renderer
        self._dispatch: dict[type, Callable[..., str]] = {
            StringLiteral: quote_string,
            NumberLiteral: self._visit_number_literal,
            Identifier: self._visit_identifier,
            Discretion: render_discretion,
            ArrayExpression: self._visit_array_expression,
            ObjectExpression: self._visit_object_expression,
            ContextSpec: render_context,
            BlockInvocation: self._visit_block_invocation,
            SessionStatement: self._visit_session,
        }

    def visit(self, node: object) -> str:
        """Render an expression node.

        Args:
            node: The expression node.

        Returns:
            Single-line canonical text.

        Raises:
            TypeError: If the node cannot be written on a single line.

        """
        visitor = self._dispatch.get(type(node))
        if visitor is None:
            msg = f"cannot render {type(node).__name__} as an inline expression"
            raise TypeError(msg)
        return visitor(node)

    def _visit_number_literal(self, node: NumberLiteral) -> str:
        return node.raw or str(node.value)

    def _visit_identifier(self, node: Identifier) -> str:
        return node.name

    def _visit_array_expression(self, node: ArrayExpression) -> str:
        elements = ", ".join(self.visit(elem) for elem in node.elements)
        return f"[{elements}]"

    def _visit_object_expression(self, node: ObjectExpression) -> str:
        return self.render_entries(node.entries)

    def render_entries(self, entries: list[Property]) -> str:
        """Render properties as an object literal.

        Args:
            entries: Properties to render; nested property blocks become
                nested objects.

        Returns:
            `{ a, b: value }` text, or `{}` when empty.

        """
        if not entries:
            return "{}"
        parts = [self.render_entry(entry) for entry in entries]
        return "{ " + ", ".join(parts) + " }"

    def render_entry(self, entry: Property) -> str:
        """Render one `name: value` entry."""
        if entry.shorthand:
            return entry.name
        if entry.children:
            return f"{entry.name}: {self.render_entries(entry.children)}"
        if entry.value is None:
            return entry.name
        return f"{entry.name}: {self.visit(entry.value)}"

    def _visit_block_invocation(self, node: BlockInvocation) -> str:
        if not node.args:
            return f"do {node.name.name}"
        args = ", ".join(self.visit(arg) for arg in node.args)
        return f"do {node.name.name}({args})"

    def _visit_session(self, node: SessionStatement) -> str:
        if self._session_renderer is None:
            msg = "no session renderer configured"
            raise TypeError(msg)
        return self._session_renderer(node)
