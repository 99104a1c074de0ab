"""Comment stripping for OpenProse source.

Comments are located with the lexer, so a `#` inside a string literal is
never mistaken for a comment.
"""

from dataclasses import dataclass, field

from openprose.grammar.lexer import tokenize
from openprose.grammar.tokens import STRUCTURAL_TYPES, SourceSpan, TokenType
from openprose.log import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class StrippedComment:
    """A comment removed from the source."""

    span: SourceSpan
    text: str
    """The comment as written, including the leading '#'."""

    is_inline: bool = False
    """True when code precedes the comment on the same line."""


@dataclass
class StrippedSource:
    """Comment-free source and the comments taken out of it."""

    code: str
    comments: list[StrippedComment] = field(default_factory=list)


def strip_comments(source: str) -> StrippedSource:
    """Remove every comment from source text.

    Inline comments are cut from their line together with the whitespace
    before them. Lines holding only a comment are dropped.

    Args:
        source: Program source text.

    Returns:
        StrippedSource with the remaining code and the removed comments
        in source order.

    """
    result = tokenize(source)
    comments: list[StrippedComment] = []
    code_lines: set[int] = set()
    for token in result.tokens:
        if token.type == TokenType.COMMENT:
            comments.append(
                StrippedComment(
                    span=token.span,
                    text=token.value,
                    is_inline=token.span.line in code_lines,
                ),
            )
        elif token.type not in STRUCTURAL_TYPES:
            code_lines.update(range(token.span.line, token.span.end_line + 1))

    by_line = {c.span.line: c for c in comments}
    lines = source.replace("\r\n", "\n").split("\n")
    kept: list[str] = []
    for number, line in enumerate(lines, start=1):
        comment = by_line.get(number)
        if comment is None:
            kept.append(line)
        elif comment.is_inline:
            kept.append(line[: comment.span.column].rstrip())

    logger.debug("Stripped %d comments", len(comments))
    return StrippedSource(code="\n".join(kept), comments=comments)
