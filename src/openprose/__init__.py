"""OpenProse compiler toolchain.

Provide lexing, parsing, semantic validation, canonical compilation and
semantic highlighting for the OpenProse orchestration language.
"""

from openprose.ast.walk import AstVisitor, walk_ast
from openprose.codegen.comments import StrippedComment, StrippedSource, strip_comments
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
from openprose.config import CompilerOptions, ProseConfig, ValidatorOptions, load_config
from openprose.errors import Diagnostic, DiagnosticReporter, ErrorCode, Severity
from openprose.grammar.lexer import tokenize
from openprose.grammar.parser import ParseResult, parse
from openprose.lsp.semantic_tokens import (
    get_encoded_semantic_tokens,
    get_semantic_tokens,
    get_semantic_tokens_legend,
)
from openprose.semantic.validator import ValidationResult, validate

__version__ = "0.1.0"

__all__ = [
    "AstVisitor",
    "CompiledOutput",
    "CompilerOptions",
    "Diagnostic",
    "DiagnosticReporter",
    "ErrorCode",
    "ParseResult",
    "ProseCompileError",
    "ProseConfig",
    "ProseError",
    "ProseSyntaxError",
    "ProseValidationError",
    "Severity",
    "StrippedComment",
    "StrippedSource",
    "ValidationResult",
    "ValidatorOptions",
    "compile",
    "compile_source",
    "get_encoded_semantic_tokens",
    "get_semantic_tokens",
    "get_semantic_tokens_legend",
    "load_config",
    "parse",
    "strip_comments",
    "tokenize",
    "validate",
    "validate_source",
    "walk_ast",
]
