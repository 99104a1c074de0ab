"""Hand-written lexer for OpenProse source text.

Turn source text into a flat token list. Indentation follows the
off-side rule: the lexer keeps a stack of indentation widths and emits
INDENT/DEDENT tokens as logical lines open and close blocks. Problems
in the input are collected as LexError records; the lexer never raises
on malformed source.
"""

import re
from dataclasses import dataclass, field

from openprose.errors.codes import ErrorCode
from openprose.errors.diagnostics import Diagnostic, Severity
from openprose.grammar.tokens import (
    KEYWORDS,
    EscapeSequence,
    Interpolation,
    SourceSpan,
    StringMetadata,
    Token,
    TokenType,
)
from openprose.log import get_logger

logger = get_logger(__name__)

SIMPLE_ESCAPES = {
    "n": "\n",
    "t": "\t",
    "r": "\r",
    "\\": "\\",
    '"': '"',
    "#": "#",
    "0": "\0",
    "{": "{",
    "}": "}",
}
"""Single-character escapes and the characters they decode to."""

PUNCTUATION = {
    ":": TokenType.COLON,
    ",": TokenType.COMMA,
    "|": TokenType.PIPE,
    "=": TokenType.EQUALS,
    "(": TokenType.LPAREN,
    ")": TokenType.RPAREN,
    "[": TokenType.LBRACKET,
    "]": TokenType.RBRACKET,
    "{": TokenType.LBRACE,
    "}": TokenType.RBRACE,
}
"""Single-character punctuation tokens."""

_OPENERS = frozenset("([{")
_CLOSERS = frozenset(")]}")

INTERPOLATION_PATTERN = re.compile(r"\{([A-Za-z_][A-Za-z0-9_-]*)\}")
"""Pattern for `{name}` segments in decoded string values."""

_HEX_DIGITS = frozenset("0123456789abcdefABCDEF")
_UNICODE_ESCAPE_LEN = 4


def _is_digit(ch: str) -> bool:
    return "0" <= ch <= "9"


def _is_ident_start(ch: str) -> bool:
    return ch == "_" or ("a" <= ch <= "z") or ("A" <= ch <= "Z")


def _is_ident_char(ch: str) -> bool:
    return _is_ident_start(ch) or _is_digit(ch)


@dataclass(frozen=True)
class LexError:
    """A problem found while tokenizing."""

    message: str
    span: SourceSpan
    severity: Severity = Severity.ERROR
    code: ErrorCode = ErrorCode.E0007

    def to_diagnostic(self, file: str) -> Diagnostic:
        """Convert to a Diagnostic for reporting.

        Args:
            file: Source file name used in the diagnostic.

        Returns:
            Diagnostic covering the offending span.

        """
        return Diagnostic.from_span(
            self.severity,
            self.message,
            file,
            self.span,
            code=self.code,
            source="lexer",
        )


@dataclass
class LexResult:
    """Tokens and problems produced by one tokenize call."""

    tokens: list[Token]
    errors: list[LexError] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        """Check whether any error-severity problem was found."""
        return any(e.severity == Severity.ERROR for e in self.errors)


class Lexer:
    """Tokenizer for a single OpenProse source text.

    A Lexer instance holds per-call state (position, indentation stack,
    open brackets) and is meant to be used once.
    """

    def __init__(self, source: str) -> None:
        """Initialize the lexer.

        Args:
            source: Program source text. CRLF line endings are accepted.

        """
        self._source = source.replace("\r\n", "\n")
        self._pos = 0
        self._line = 1
        self._column = 0
        self._tokens: list[Token] = []
        self._errors: list[LexError] = []
        self._indent_stack: list[int] = [0]
        self._open_brackets: list[tuple[str, SourceSpan]] = []
        self._line_indent = 0
        self._at_line_start = True

    def tokenize(self) -> LexResult:
        """Tokenize the whole source.

        Returns:
            LexResult with the token list (always ending in EOF) and any
            problems found.

        """
        source = self._source
        while self._pos < len(source):
            if self._at_line_start and not self._open_brackets:
                self._lex_line_start()
                continue

            ch = source[self._pos]
            if ch == "\n":
                self._lex_newline()
            elif ch in " \t":
                self._advance()
            elif ch == "#":
                self._lex_comment()
            elif ch == '"':
                self._lex_string()
            elif ch == "*":
                self._lex_discretion()
            elif _is_digit(ch):
                self._lex_number()
            elif _is_ident_start(ch):
                self._lex_identifier()
            elif ch == "-" and self._peek(1) == ">":
                self._lex_simple(TokenType.ARROW, 2)
            elif ch in PUNCTUATION:
                self._lex_punctuation(ch)
            else:
                start = self._location()
                self._advance()
                self._error(f"unexpected character '{ch}'", self._span_from(start))

        self._finish()
        logger.debug(
            "Tokenized %d tokens with %d problems",
            len(self._tokens),
            len(self._errors),
        )
        return LexResult(tokens=self._tokens, errors=self._errors)

    # ==== Position helpers ====

    def _peek(self, offset: int = 0) -> str:
        idx = self._pos + offset
        if idx < len(self._source):
            return self._source[idx]
        return ""

    def _advance(self, count: int = 1) -> None:
        for _ in range(count):
            if self._pos >= len(self._source):
                return
            if self._source[self._pos] == "\n":
                self._line += 1
                self._column = 0
            else:
                self._column += 1
            self._pos += 1

    def _location(self) -> tuple[int, int, int]:
        return (self._pos, self._line, self._column)

    def _span_from(self, start: tuple[int, int, int]) -> SourceSpan:
        _, line, column = start
        return SourceSpan(line, column, self._line, self._column)

    def _emit(
        self,
        token_type: TokenType,
        value: str,
        start: tuple[int, int, int],
        **extra: object,
    ) -> Token:
        text = self._source[start[0] : self._pos]
        token = Token(
            type=token_type,
            value=value,
            span=self._span_from(start),
            text=text,
            **extra,  # type: ignore[arg-type]
        )
        self._tokens.append(token)
        return token

    def _error(
        self,
        message: str,
        span: SourceSpan,
        *,
        severity: Severity = Severity.ERROR,
        code: ErrorCode = ErrorCode.E0007,
    ) -> None:
        self._errors.append(LexError(message, span, severity, code))

    # ==== Layout ====

    def _lex_line_start(self) -> None:
        """Measure indentation of a new physical line.

        Blank and comment-only lines leave the indentation stack alone.
        """
        source = self._source
        end = self._pos
        first_tab = -1
        while end < len(source) and source[end] in " \t":
            if source[end] == "\t" and first_tab < 0:
                first_tab = end - self._pos
            end += 1

        width = end - self._pos
        next_char = source[end] if end < len(source) else ""

        if next_char in ("", "\n", "#"):
            self._advance(width)
            if next_char == "#":
                self._lex_comment()
            if self._peek() == "\n":
                self._advance()
            return

        self._at_line_start = False
        if first_tab >= 0:
            self._error(
                "tab character in indentation; use spaces",
                SourceSpan(self._line, first_tab, self._line, first_tab + 1),
                code=ErrorCode.E0008,
            )
        self._advance(width)
        self._line_indent = width
        self._apply_indentation(width)

    def _apply_indentation(self, width: int) -> None:
        stack = self._indent_stack
        line = self._line

        if width > stack[-1]:
            stack.append(width)
            self._tokens.append(
                Token(TokenType.INDENT, "", SourceSpan(line, 0, line, width)),
            )
            return

        dedents = 0
        while width < stack[-1]:
            stack.pop()
            dedents += 1

        if width != stack[-1]:
            self._error(
                "unindent does not match any outer indentation level",
                SourceSpan(line, 0, line, width),
                code=ErrorCode.E0008,
            )
            # Treat the odd width as the innermost open level.
            stack.append(width)
            dedents -= 1

        for _ in range(dedents):
            self._tokens.append(
                Token(TokenType.DEDENT, "", SourceSpan.point(line, width)),
            )

    def _lex_newline(self) -> None:
        start = self._location()
        self._advance()
        if self._open_brackets and not self._closes_open_brackets():
            return
        self._tokens.append(
            Token(
                TokenType.NEWLINE,
                "\n",
                SourceSpan(start[1], start[2], start[1], start[2] + 1),
                text="\n",
            ),
        )
        self._at_line_start = True

    def _closes_open_brackets(self) -> bool:
        """Check whether the next line ends an unclosed bracket.

        A non-blank line indented no deeper than the line that opened
        the bracket, and not starting with a closer, is a new statement.
        The open brackets are then reported and dropped.
        """
        source = self._source
        end = self._pos
        while end < len(source) and source[end] in " \t":
            end += 1
        next_char = source[end] if end < len(source) else ""
        if next_char in ("", "\n", "#") or next_char in _CLOSERS:
            return False
        if end - self._pos > self._line_indent:
            return False

        opener, span = self._open_brackets[0]
        self._error(f"unclosed '{opener}'", span)
        self._open_brackets.clear()
        return True

    def _finish(self) -> None:
        line, column = self._line, self._column
        last_code = next(
            (t for t in reversed(self._tokens) if t.type != TokenType.COMMENT),
            None,
        )
        if last_code is not None and last_code.type not in (
            TokenType.NEWLINE,
            TokenType.INDENT,
            TokenType.DEDENT,
        ):
            self._tokens.append(
                Token(TokenType.NEWLINE, "", SourceSpan.point(line, column)),
            )

        while len(self._indent_stack) > 1:
            self._indent_stack.pop()
            self._tokens.append(
                Token(TokenType.DEDENT, "", SourceSpan.point(line, column)),
            )

        self._tokens.append(Token(TokenType.EOF, "", SourceSpan.point(line, column)))

    # ==== Simple tokens ====

    def _lex_simple(self, token_type: TokenType, length: int) -> None:
        start = self._location()
        self._advance(length)
        self._emit(token_type, self._source[start[0] : self._pos], start)

    def _lex_punctuation(self, ch: str) -> None:
        if ch in _OPENERS:
            span = SourceSpan(self._line, self._column, self._line, self._column + 1)
            self._open_brackets.append((ch, span))
        elif ch in _CLOSERS and self._open_brackets:
            self._open_brackets.pop()
        self._lex_simple(PUNCTUATION[ch], 1)

    def _lex_comment(self) -> None:
        start = self._location()
        end = self._source.find("\n", self._pos)
        if end < 0:
            end = len(self._source)
        self._advance(end - self._pos)
        text = self._source[start[0] : self._pos]
        self._emit(TokenType.COMMENT, text, start)

    def _lex_number(self) -> None:
        start = self._location()
        while _is_digit(self._peek()):
            self._advance()
        if self._peek() == "." and _is_digit(self._peek(1)):
            self._advance()
            while _is_digit(self._peek()):
                self._advance()
        self._emit(TokenType.NUMBER, self._source[start[0] : self._pos], start)

    def _lex_identifier(self) -> None:
        start = self._location()
        while True:
            ch = self._peek()
            if _is_ident_char(ch) or (ch == "-" and self._peek(1) != ">"):
                self._advance()
            else:
                break
        text = self._source[start[0] : self._pos]
        self._emit(KEYWORDS.get(text, TokenType.IDENTIFIER), text, start)

    # ==== Discretion ====

    def _lex_discretion(self) -> None:
        start = self._location()
        run = 0
        while self._peek(run) == "*":
            run += 1

        if run == 1:
            self._advance()
            self._error("unexpected character '*'", self._span_from(start))
            return

        if run >= 3:  # noqa: PLR2004
            self._lex_multiline_discretion(start)
        else:
            self._lex_inline_discretion(start)

    def _lex_inline_discretion(self, start: tuple[int, int, int]) -> None:
        self._advance(2)
        content_start = self._pos
        while True:
            ch = self._peek()
            if ch in ("", "\n"):
                value = self._source[content_start : self._pos]
                self._error(
                    "unterminated discretion span (use *** for multi-line)",
                    self._span_from(start),
                )
                break
            if ch == "*":
                run = 0
                while self._peek(run) == "*":
                    run += 1
                if run == 2:  # noqa: PLR2004
                    value = self._source[content_start : self._pos]
                    self._advance(2)
                    break
                if run >= 3:  # noqa: PLR2004
                    value = self._source[content_start : self._pos]
                    self._advance(run)
                    self._error(
                        "'**' discretion span closed by '***'",
                        self._span_from(start),
                    )
                    break
            self._advance()
        self._emit(TokenType.DISCRETION, value, start)

    def _lex_multiline_discretion(self, start: tuple[int, int, int]) -> None:
        self._advance(3)
        content_start = self._pos
        end = self._source.find("***", self._pos)
        if end < 0:
            self._advance(len(self._source) - self._pos)
            value = self._source[content_start:]
            self._error("unterminated discretion span", self._span_from(start))
        else:
            self._advance(end - self._pos)
            value = self._source[content_start:end]
            self._advance(3)
        self._emit(TokenType.DISCRETION, value, start, multiline=True)

    # ==== Strings ====

    def _lex_string(self) -> None:
        """Lex a single or triple-quoted string literal.

        Decoded characters are tracked together with their source position
        so that interpolation segments can be located after decoding.
        Characters produced by escapes never take part in interpolation.
        """
        start = self._location()
        triple = self._source.startswith('"""', self._pos)
        self._advance(3 if triple else 1)

        chars: list[str] = []
        positions: list[tuple[int, int] | None] = []
        escapes: list[EscapeSequence] = []
        terminated = False

        while self._pos < len(self._source):
            ch = self._source[self._pos]
            if triple and self._source.startswith('"""', self._pos):
                self._advance(3)
                terminated = True
                break
            if not triple and ch == '"':
                self._advance()
                terminated = True
                break
            if not triple and ch == "\n":
                break
            if ch == "\\":
                if not self._lex_escape(start, chars, positions, escapes, triple=triple):
                    break
                continue
            chars.append(ch)
            positions.append((self._line, self._column))
            self._advance()

        if not terminated:
            kind = "triple-quoted string" if triple else "string"
            self._error(f"unterminated {kind} literal", self._span_from(start))

        value = "".join(chars)
        raw = self._source[start[0] : self._pos]
        metadata = StringMetadata(
            raw=raw,
            is_triple_quoted=triple,
            escape_sequences=tuple(escapes),
            interpolations=tuple(self._find_interpolations(value, positions)),
        )
        self._emit(TokenType.STRING, value, start, string=metadata)

    def _lex_escape(
        self,
        start: tuple[int, int, int],
        chars: list[str],
        positions: list[tuple[int, int] | None],
        escapes: list[EscapeSequence],
        *,
        triple: bool,
    ) -> bool:
        """Decode one escape sequence at the current backslash.

        Returns:
            False when the literal ends at this point (end of input, or a
            newline inside a single-line string).

        """
        esc_start = self._location()
        offset = self._pos - start[0]
        nxt = self._peek(1)
        if nxt == "" or (nxt == "\n" and not triple):
            self._advance()
            return False

        if nxt in SIMPLE_ESCAPES:
            self._advance(2)
            resolved = SIMPLE_ESCAPES[nxt]
            escapes.append(EscapeSequence("standard", "\\" + nxt, resolved, offset))
        elif nxt == "u":
            digits = self._source[self._pos + 2 : self._pos + 2 + _UNICODE_ESCAPE_LEN]
            if len(digits) == _UNICODE_ESCAPE_LEN and all(d in _HEX_DIGITS for d in digits):
                self._advance(2 + _UNICODE_ESCAPE_LEN)
                resolved = chr(int(digits, 16))
                escapes.append(
                    EscapeSequence("unicode", "\\u" + digits, resolved, offset),
                )
            else:
                self._advance(2)
                resolved = "u"
                escapes.append(EscapeSequence("invalid", "\\u", resolved, offset))
                self._error(
                    "invalid unicode escape sequence (expected \\uXXXX)",
                    self._span_from(esc_start),
                )
        else:
            self._advance(2)
            resolved = nxt
            escapes.append(EscapeSequence("invalid", "\\" + nxt, resolved, offset))
            self._error(
                f"unrecognized escape sequence '\\{nxt}'",
                self._span_from(esc_start),
                severity=Severity.WARNING,
            )

        chars.append(resolved)
        positions.append(None)
        return True

    @staticmethod
    def _find_interpolations(
        value: str,
        positions: list[tuple[int, int] | None],
    ) -> list[Interpolation]:
        found: list[Interpolation] = []
        for match in INTERPOLATION_PATTERN.finditer(value):
            segment = positions[match.start() : match.end()]
            if any(pos is None for pos in segment):
                continue
            first, last = segment[0], segment[-1]
            if first is None or last is None:
                continue
            found.append(
                Interpolation(
                    name=match.group(1),
                    offset=match.start(),
                    raw=match.group(0),
                    span=SourceSpan(first[0], first[1], last[0], last[1] + 1),
                ),
            )
        return found


def tokenize(source: str) -> LexResult:
    """Tokenize OpenProse source text.

    Args:
        source: Program source text.

    Returns:
        LexResult with tokens and collected problems.

    """
    return Lexer(source).tokenize()
