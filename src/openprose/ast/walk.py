"""Generic traversal utilities for the OpenProse AST.

Provide a visitor base class that dispatches on node class, plus helpers
to enumerate children of any node. Passes override only the handlers
they care about; everything else falls through to `generic_visit`.
"""

import re
from collections.abc import Callable, Iterator
from dataclasses import fields
from typing import Any

from openprose.ast.nodes import NODE_TYPES, AstNode, ProgramNode
from openprose.log import get_logger

logger = get_logger(__name__)

_SKIPPED_FIELDS = frozenset({"span", "name_span", "tokens", "comments"})
"""Dataclass fields that never hold child statements or expressions."""

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def _method_name(cls: type) -> str:
    return "visit_" + _CAMEL_BOUNDARY.sub("_", cls.__name__).lower()


_METHOD_NAMES: dict[type, str] = {cls: _method_name(cls) for cls in NODE_TYPES}
"""Visitor method name per node class (e.g. ParallelBlock -> visit_parallel_block)."""


def iter_child_nodes(node: AstNode) -> Iterator[AstNode]:
    """Yield the direct child nodes of a node in field order.

    Comments and the token stream of a ProgramNode are not children;
    they are reachable through the program's own attributes.

    Args:
        node: Node whose children to enumerate.

    Yields:
        Each child node, including members of list-valued fields.

    """
    for f in fields(node):  # type: ignore[arg-type]
        if f.name in _SKIPPED_FIELDS:
            continue
        value = getattr(node, f.name)
        if isinstance(value, NODE_TYPES):
            yield value
        elif isinstance(value, list):
            for item in value:
                if isinstance(item, NODE_TYPES):
                    yield item


def iter_nodes(node: AstNode) -> Iterator[AstNode]:
    """Yield a node and all of its descendants in document order."""
    yield node
    for child in iter_child_nodes(node):
        yield from iter_nodes(child)


class AstVisitor:
    """Base class for AST passes.

    `visit(node)` calls `visit_<snake_case_class_name>(node)` when the
    subclass defines it, otherwise `generic_visit(node)`, which visits
    every child. Handlers that still want the children visited call
    `generic_visit` themselves.
    """

    def visit(self, node: AstNode) -> Any:
        """Dispatch a node to its handler.

        Args:
            node: Node to visit.

        Returns:
            Whatever the handler returns.

        """
        name = _METHOD_NAMES.get(type(node))
        handler: Callable[[Any], Any] | None = (
            getattr(self, name, None) if name is not None else None
        )
        if handler is None:
            return self.generic_visit(node)
        return handler(node)

    def generic_visit(self, node: AstNode) -> None:
        """Visit every child of a node."""
        for child in iter_child_nodes(node):
            self.visit(child)


def walk_ast(program: ProgramNode, visitor: AstVisitor) -> None:
    """Walk a whole program with a visitor.

    Args:
        program: Program to walk.
        visitor: Visitor receiving the program node first.

    """
    logger.debug("Walking program with %s", type(visitor).__name__)
    visitor.visit(program)
