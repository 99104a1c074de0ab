"""Scope tracking for OpenProse validation.

Provide scope management for variable and symbol tracking during
validation. Supports hierarchical scopes with parent lookup.
"""

from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import TYPE_CHECKING

from openprose.log import get_logger

if TYPE_CHECKING:
    from openprose.ast.nodes import AstNode
    from openprose.grammar.tokens import SourceSpan

logger = get_logger(__name__)


class SymbolKind(Enum):
    """Kind of symbol in the symbol table."""

    VARIABLE = auto()
    CONSTANT = auto()
    RESULT = auto()
    """Named session or parallel branch result."""

    LOOP_VARIABLE = auto()
    PARAMETER = auto()
    ERROR_VARIABLE = auto()


READ_ONLY_KINDS = frozenset({
    SymbolKind.CONSTANT,
    SymbolKind.RESULT,
    SymbolKind.LOOP_VARIABLE,
    SymbolKind.PARAMETER,
    SymbolKind.ERROR_VARIABLE,
})
"""Variable kinds that cannot be reassigned."""


class ScopeType(Enum):
    """Type of scope for variable visibility rules."""

    FILE = auto()
    BLOCK = auto()
    """Body of a block definition."""

    LOOP = auto()
    PIPE = auto()
    OPTION = auto()
    CATCH = auto()


@dataclass
class Symbol:
    """Symbol entry in the symbol table.

    Represents a named entity that can be referenced in a program.
    """

    name: str
    """Name of the symbol."""

    kind: SymbolKind
    """Kind of symbol (variable, constant, result, ...)."""

    defined_at: "AstNode | None" = None
    """AST node where this symbol was defined."""

    span: "SourceSpan | None" = None
    """Span of the defining name."""

    @property
    def is_read_only(self) -> bool:
        """Check whether the symbol rejects reassignment."""
        return self.kind in READ_ONLY_KINDS


@dataclass
class Scope:
    """A level of name visibility.

    Lookups walk outward through `parent` until the file scope.
    """

    scope_type: ScopeType
    parent: "Scope | None" = None
    _symbols: dict[str, Symbol] = field(default_factory=dict)

    def define(
        self,
        name: str,
        kind: SymbolKind,
        *,
        node: "AstNode | None" = None,
        span: "SourceSpan | None" = None,
    ) -> Symbol:
        """Bind a name in this scope, replacing any local binding.

        Args:
            name: Bound name.
            kind: What the name refers to.
            node: Node that introduced the binding.
            span: Span of the name at its definition.

        Returns:
            The new Symbol.

        """
        symbol = Symbol(name=name, kind=kind, defined_at=node, span=span)
        self._symbols[name] = symbol
        logger.debug("Bound %s (%s) in %s scope", name, kind.name, self.scope_type.name)
        return symbol

    def _chain(self) -> Iterator["Scope"]:
        scope: Scope | None = self
        while scope is not None:
            yield scope
            scope = scope.parent

    def lookup(self, name: str) -> Symbol | None:
        """Resolve a name in this scope or the nearest enclosing one."""
        for scope in self._chain():
            if name in scope._symbols:  # noqa: SLF001
                return scope._symbols[name]  # noqa: SLF001
        return None

    def lookup_local(self, name: str) -> Symbol | None:
        """Resolve a name in this scope only."""
        return self._symbols.get(name)

    def lookup_outer(self, name: str) -> Symbol | None:
        """Resolve a name in the enclosing scopes, skipping this one."""
        return self.parent.lookup(name) if self.parent is not None else None

    def visible_names(self) -> list[str]:
        """Get every name resolvable from this scope, sorted."""
        return sorted({name for scope in self._chain() for name in scope._symbols})  # noqa: SLF001
