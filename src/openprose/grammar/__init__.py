"""Grammar package for OpenProse.

Provide token definitions and the lexer. The parser lives in
`openprose.grammar.parser`, which depends on the AST package.
"""

from openprose.grammar.lexer import Lexer, LexError, LexResult, tokenize
from openprose.grammar.tokens import KEYWORDS, SourceSpan, Token, TokenType

__all__ = [
    "KEYWORDS",
    "LexError",
    "LexResult",
    "Lexer",
    "SourceSpan",
    "Token",
    "TokenType",
    "tokenize",
]
