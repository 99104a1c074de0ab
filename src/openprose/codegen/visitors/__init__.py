"""Visitors emitting canonical text for OpenProse nodes."""

from openprose.codegen.visitors.expressions import ExpressionVisitor, quote_string
from openprose.codegen.visitors.statements import NameAllocator, StatementVisitor

__all__ = ["ExpressionVisitor", "NameAllocator", "StatementVisitor", "quote_string"]
