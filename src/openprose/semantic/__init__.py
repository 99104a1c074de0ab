"""Semantic analysis for OpenProse programs."""

from openprose.semantic.errors import RelatedNote, ValidationError
from openprose.semantic.scope import Scope, ScopeType, Symbol, SymbolKind
from openprose.semantic.validator import ValidationResult, Validator, validate

__all__ = [
    "RelatedNote",
    "Scope",
    "ScopeType",
    "Symbol",
    "SymbolKind",
    "ValidationError",
    "ValidationResult",
    "Validator",
    "validate",
]
