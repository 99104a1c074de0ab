"""Token definitions for the OpenProse lexer.

Define token kinds, the reserved-word table, source spans, and the
metadata attached to string literal tokens.
"""

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType

from openprose.log import get_logger

logger = get_logger(__name__)


class TokenType(str, Enum):
    """Kinds of tokens produced by the lexer."""

    # Literals
    STRING = "STRING"
    NUMBER = "NUMBER"
    IDENTIFIER = "IDENTIFIER"
    DISCRETION = "DISCRETION"

    # Trivia
    COMMENT = "COMMENT"

    # Keywords
    IMPORT = "IMPORT"
    FROM = "FROM"
    AGENT = "AGENT"
    SESSION = "SESSION"
    BLOCK = "BLOCK"
    DO = "DO"
    PARALLEL = "PARALLEL"
    CHOICE = "CHOICE"
    OPTION = "OPTION"
    LET = "LET"
    CONST = "CONST"
    LOOP = "LOOP"
    UNTIL = "UNTIL"
    WHILE = "WHILE"
    REPEAT = "REPEAT"
    FOR = "FOR"
    IN = "IN"
    AS = "AS"
    IF = "IF"
    ELIF = "ELIF"
    ELSE = "ELSE"
    TRY = "TRY"
    CATCH = "CATCH"
    FINALLY = "FINALLY"
    THROW = "THROW"
    MAP = "MAP"
    FILTER = "FILTER"
    REDUCE = "REDUCE"
    PMAP = "PMAP"

    # Operators and punctuation
    ARROW = "ARROW"
    PIPE = "PIPE"
    EQUALS = "EQUALS"
    COLON = "COLON"
    COMMA = "COMMA"
    LPAREN = "LPAREN"
    RPAREN = "RPAREN"
    LBRACKET = "LBRACKET"
    RBRACKET = "RBRACKET"
    LBRACE = "LBRACE"
    RBRACE = "RBRACE"

    # Structure
    NEWLINE = "NEWLINE"
    INDENT = "INDENT"
    DEDENT = "DEDENT"
    EOF = "EOF"


KEYWORDS: MappingProxyType[str, TokenType] = MappingProxyType({
    "import": TokenType.IMPORT,
    "from": TokenType.FROM,
    "agent": TokenType.AGENT,
    "session": TokenType.SESSION,
    "block": TokenType.BLOCK,
    "do": TokenType.DO,
    "parallel": TokenType.PARALLEL,
    "choice": TokenType.CHOICE,
    "option": TokenType.OPTION,
    "let": TokenType.LET,
    "const": TokenType.CONST,
    "loop": TokenType.LOOP,
    "until": TokenType.UNTIL,
    "while": TokenType.WHILE,
    "repeat": TokenType.REPEAT,
    "for": TokenType.FOR,
    "in": TokenType.IN,
    "as": TokenType.AS,
    "if": TokenType.IF,
    "elif": TokenType.ELIF,
    "else": TokenType.ELSE,
    "try": TokenType.TRY,
    "catch": TokenType.CATCH,
    "finally": TokenType.FINALLY,
    "throw": TokenType.THROW,
    "map": TokenType.MAP,
    "filter": TokenType.FILTER,
    "reduce": TokenType.REDUCE,
    "pmap": TokenType.PMAP,
})
"""Reserved words, matched case-sensitively. Read-only and shared by all lexers."""

KEYWORD_TYPES = frozenset(KEYWORDS.values())
"""Token types that correspond to reserved words."""

OPERATOR_TYPES = frozenset({
    TokenType.ARROW,
    TokenType.PIPE,
    TokenType.EQUALS,
    TokenType.COLON,
})
"""Token types highlighted as operators."""

STRUCTURAL_TYPES = frozenset({
    TokenType.NEWLINE,
    TokenType.INDENT,
    TokenType.DEDENT,
    TokenType.EOF,
})
"""Token types that carry layout only."""


@dataclass(frozen=True)
class SourceSpan:
    """A region of source text.

    Lines are 1-indexed, columns are 0-indexed, and the end position is
    exclusive.
    """

    line: int
    column: int
    end_line: int
    end_column: int

    @classmethod
    def point(cls, line: int, column: int) -> "SourceSpan":
        """Create an empty span at a single position."""
        return cls(line, column, line, column)

    def merge(self, other: "SourceSpan") -> "SourceSpan":
        """Create a span covering this span through the end of another."""
        return SourceSpan(self.line, self.column, other.end_line, other.end_column)


@dataclass(frozen=True)
class EscapeSequence:
    """An escape sequence found inside a string literal."""

    kind: str
    """One of 'standard', 'unicode' or 'invalid'."""

    sequence: str
    """The escape as written, e.g. '\\n'."""

    resolved: str
    """The character the escape decodes to."""

    offset: int
    """Offset of the backslash within the raw literal text."""


@dataclass(frozen=True)
class Interpolation:
    """An interpolated `{name}` segment inside a string literal."""

    name: str
    """The interpolated identifier."""

    offset: int
    """Offset of the opening brace within the decoded value."""

    raw: str
    """The segment as written, braces included."""

    span: SourceSpan
    """Source location of the segment."""


@dataclass(frozen=True)
class StringMetadata:
    """Extra information carried by STRING tokens."""

    raw: str
    """The literal as written, quotes included."""

    is_triple_quoted: bool
    escape_sequences: tuple[EscapeSequence, ...] = ()
    interpolations: tuple[Interpolation, ...] = ()


@dataclass(frozen=True)
class Token:
    """A single lexical token."""

    type: TokenType
    value: str
    """Decoded value (string contents, discretion text, identifier name)."""

    span: SourceSpan
    text: str = ""
    """The token exactly as written in the source."""

    string: StringMetadata | None = None
    """String metadata, present for STRING tokens only."""

    multiline: bool = False
    """True for `***` discretion tokens."""

    def is_keyword(self) -> bool:
        """Check whether this token is a reserved word."""
        return self.type in KEYWORD_TYPES

