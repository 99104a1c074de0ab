"""Recursive-descent parser for OpenProse.

Consume the lexer's token stream and build a ProgramNode. The parser
never raises on malformed input: a local failure is recorded as a
ParseError, the parser skips to the next statement boundary and carries
on, so one pass reports as many problems as it can find.
"""

from dataclasses import dataclass, field
from typing import NoReturn

from openprose.ast.nodes import (
    AgentDefinition,
    ArrayExpression,
    BlockDefinition,
    BlockInvocation,
    ChoiceBlock,
    ChoiceOption,
    CommentNode,
    CommentStatement,
    ConstBinding,
    ContextSpec,
    Discretion,
    DoBlock,
    ElifClause,
    Expression,
    ForEachBlock,
    Identifier,
    IfElseBlock,
    ImportStatement,
    LetBinding,
    LoopBlock,
    NumberLiteral,
    ObjectExpression,
    ParallelBlock,
    PipeExpression,
    PipeOperation,
    ProgramNode,
    Property,
    Reassignment,
    RepeatBlock,
    SessionStatement,
    Statement,
    StringLiteral,
    ThrowStatement,
    TryBlock,
)
from openprose.errors.codes import ErrorCode
from openprose.errors.diagnostics import Diagnostic, Severity
from openprose.grammar.lexer import LexError, tokenize
from openprose.grammar.tokens import (
    STRUCTURAL_TYPES,
    SourceSpan,
    Token,
    TokenType,
)
from openprose.log import get_logger

logger = get_logger(__name__)

PIPE_OPERATORS = frozenset({
    TokenType.MAP,
    TokenType.FILTER,
    TokenType.REDUCE,
    TokenType.PMAP,
})
"""Keywords that start a pipeline stage."""

STATEMENT_EXPRESSIONS = (
    SessionStatement,
    DoBlock,
    BlockInvocation,
    ParallelBlock,
    ForEachBlock,
    RepeatBlock,
    PipeExpression,
)
"""Expression nodes that may stand alone as statements."""

EXPECTED_BLOCK = "expected an indented block after ':'"


@dataclass(frozen=True)
class ParseError:
    """A syntax problem found while parsing."""

    message: str
    span: SourceSpan
    code: ErrorCode = ErrorCode.E0007

    def to_diagnostic(self, file: str) -> Diagnostic:
        """Convert to an error Diagnostic for reporting."""
        return Diagnostic.from_span(
            Severity.ERROR,
            self.message,
            file,
            self.span,
            code=self.code,
            source="parser",
        )


@dataclass
class ParseResult:
    """Program and problems produced by one parse call."""

    program: ProgramNode
    errors: list[ParseError] = field(default_factory=list)
    lex_errors: list[LexError] = field(default_factory=list)
    """Problems reported by the lexer when parsing from source text."""

    @property
    def has_errors(self) -> bool:
        """Check whether lexing or parsing produced any error."""
        return bool(self.errors) or any(
            e.severity == Severity.ERROR for e in self.lex_errors
        )


class _ParseAbort(Exception):  # noqa: N818
    """Abandon the current statement after an error was recorded."""


def _describe(token: Token) -> str:
    if token.type == TokenType.EOF:
        return "end of input"
    if token.type == TokenType.NEWLINE:
        return "end of line"
    if token.type == TokenType.INDENT:
        return "indentation"
    if token.type == TokenType.DEDENT:
        return "end of block"
    return f"'{token.text or token.value}'"


class Parser:
    """Parser for one token stream.

    A Parser instance keeps per-call state and is meant to be used once.
    """

    def __init__(self, tokens: list[Token]) -> None:
        """Initialize the parser.

        Args:
            tokens: Token stream from the lexer, comments included. A
                trailing EOF token is added when missing.

        """
        self._all_tokens = tokens
        self._tokens = [t for t in tokens if t.type != TokenType.COMMENT]
        if not self._tokens or self._tokens[-1].type != TokenType.EOF:
            end = self._tokens[-1].span if self._tokens else SourceSpan.point(1, 0)
            self._tokens.append(
                Token(TokenType.EOF, "", SourceSpan.point(end.end_line, end.end_column)),
            )
        self._pos = 0
        self._last: Token | None = None
        self._errors: list[ParseError] = []
        self._comments = self._collect_comments(tokens)
        self._standalone = [c for c in self._comments if not c.is_inline]
        self._next_comment = 0

    # ==== Entry point ====

    def parse(self) -> ParseResult:
        """Parse the whole token stream.

        Returns:
            ParseResult with the program and collected errors.

        """
        statements: list[Statement] = []
        while True:
            self._skip_newlines()
            token = self._peek()
            self._flush_comments(statements, token.span.line)
            if token.type == TokenType.EOF:
                break
            if token.type == TokenType.INDENT:
                self._error("unexpected indentation", token.span, code=ErrorCode.E0008)
                self._skip_indented_block()
                continue
            if token.type == TokenType.DEDENT:
                self._advance()
                continue
            start = self._pos
            try:
                statements.extend(self._parse_statement())
            except _ParseAbort:
                self._synchronize(start)
            if self._last is not None:
                self._drop_comments(self._last.span.end_line)

        eof = self._peek()
        self._flush_comments(statements, eof.span.line + 1)
        program = ProgramNode(
            statements=statements,
            comments=self._comments,
            tokens=self._all_tokens,
            span=SourceSpan(1, 0, eof.span.end_line, eof.span.end_column),
        )
        logger.debug(
            "Parsed %d statements with %d errors",
            len(statements),
            len(self._errors),
        )
        return ParseResult(program=program, errors=self._errors)

    # ==== Comments ====

    @staticmethod
    def _collect_comments(tokens: list[Token]) -> list[CommentNode]:
        comments: list[CommentNode] = []
        previous: Token | None = None
        for token in tokens:
            if token.type == TokenType.COMMENT:
                inline = previous is not None and previous.span.end_line == token.span.line
                comments.append(
                    CommentNode(text=token.value, is_inline=inline, span=token.span),
                )
            elif token.type not in STRUCTURAL_TYPES:
                previous = token
        return comments

    def _flush_comments(self, statements: list[Statement], before_line: int) -> None:
        while self._next_comment < len(self._standalone):
            comment = self._standalone[self._next_comment]
            if comment.span.line >= before_line:
                return
            statements.append(CommentStatement(text=comment.text, span=comment.span))
            self._next_comment += 1

    def _drop_comments(self, through_line: int) -> None:
        while self._next_comment < len(self._standalone):
            if self._standalone[self._next_comment].span.line > through_line:
                return
            self._next_comment += 1

    # ==== Token helpers ====

    def _peek(self, offset: int = 0) -> Token:
        idx = min(self._pos + offset, len(self._tokens) - 1)
        return self._tokens[idx]

    def _check(self, *types: TokenType) -> bool:
        return self._peek().type in types

    def _previous(self) -> Token | None:
        return self._tokens[self._pos - 1] if self._pos > 0 else None

    def _advance(self) -> Token:
        token = self._peek()
        if token.type != TokenType.EOF:
            self._pos += 1
        if token.type not in STRUCTURAL_TYPES:
            self._last = token
        return token

    def _match(self, *types: TokenType) -> Token | None:
        if self._check(*types):
            return self._advance()
        return None

    def _expect(self, token_type: TokenType, what: str) -> Token:
        if self._check(token_type):
            return self._advance()
        self._fail(f"expected {what}, found {_describe(self._peek())}")

    def _error(
        self,
        message: str,
        span: SourceSpan,
        *,
        code: ErrorCode = ErrorCode.E0007,
    ) -> None:
        self._errors.append(ParseError(message, span, code))

    def _fail(self, message: str, span: SourceSpan | None = None) -> NoReturn:
        """Record an error and abandon the current statement."""
        self._error(message, span or self._peek().span)
        raise _ParseAbort(message)

    def _span_from(self, start: Token) -> SourceSpan:
        end = self._last if self._last is not None else start
        return start.span.merge(end.span)

    def _skip_newlines(self) -> None:
        while self._check(TokenType.NEWLINE):
            self._advance()

    def _skip_indented_block(self) -> None:
        depth = 0
        while not self._check(TokenType.EOF):
            token = self._advance()
            if token.type == TokenType.INDENT:
                depth += 1
            elif token.type == TokenType.DEDENT:
                depth -= 1
                if depth <= 0:
                    return

    def _synchronize(self, start: int) -> None:
        """Skip to the start of the next statement at the current depth.

        Any indented block opened by the broken statement is skipped as
        well. A DEDENT closing the enclosing block is left in place.

        Args:
            start: Token index where the broken statement began.

        """
        previous = self._previous()
        at_boundary = (
            self._pos > start
            and previous is not None
            and previous.type in (TokenType.NEWLINE, TokenType.DEDENT)
        )
        if not at_boundary:
            depth = 0
            while not self._check(TokenType.EOF):
                token = self._peek()
                if token.type == TokenType.INDENT:
                    depth += 1
                elif token.type == TokenType.DEDENT:
                    if depth == 0:
                        return
                    depth -= 1
                elif token.type == TokenType.NEWLINE and depth == 0:
                    self._advance()
                    break
                self._advance()
        if self._check(TokenType.INDENT):
            self._skip_indented_block()

    def _end_statement(self) -> None:
        previous = self._previous()
        if previous is not None and previous.type in (TokenType.NEWLINE, TokenType.DEDENT):
            return
        if self._match(TokenType.NEWLINE):
            return
        if self._check(TokenType.EOF, TokenType.DEDENT):
            return
        self._fail(f"unexpected {_describe(self._peek())} after statement")

    # ==== Statements ====

    def _parse_statement(self) -> list[Statement]:
        """Parse one statement.

        Returns:
            The parsed statements. Arrow sequences at statement position
            produce one statement per step.

        """
        token = self._peek()
        kind = token.type

        if kind == TokenType.IMPORT:
            result: list[Statement] = [self._parse_import()]
        elif kind == TokenType.AGENT:
            result = [self._parse_agent_definition()]
        elif kind == TokenType.BLOCK:
            result = [self._parse_block_definition()]
        elif kind in (TokenType.LET, TokenType.CONST):
            result = [self._parse_binding()]
        elif kind == TokenType.LOOP:
            result = [self._parse_loop()]
        elif kind == TokenType.TRY:
            result = [self._parse_try()]
        elif kind == TokenType.THROW:
            result = [self._parse_throw()]
        elif kind == TokenType.CHOICE:
            result = [self._parse_choice()]
        elif kind == TokenType.IF:
            result = [self._parse_if()]
        elif kind == TokenType.IDENTIFIER and self._peek(1).type == TokenType.EQUALS:
            result = [self._parse_reassignment()]
        elif kind == TokenType.IDENTIFIER and self._peek(1).type == TokenType.COLON:
            self._fail(
                f"unexpected '{token.value}:' at statement position; "
                "sessions require the 'session' keyword",
                token.span.merge(self._peek(1).span),
            )
        elif kind in (
            TokenType.OPTION,
            TokenType.ELIF,
            TokenType.ELSE,
            TokenType.CATCH,
            TokenType.FINALLY,
            TokenType.PIPE,
        ):
            self._fail(f"unexpected {_describe(token)} at statement position")
        else:
            result = self._parse_expression_statement()

        self._end_statement()
        return result

    def _parse_block_body(
        self,
        *,
        allow_empty: bool = False,
        stop_at_pipe: bool = False,
    ) -> tuple[list[Statement], bool]:
        """Parse `NEWLINE INDENT statement+ DEDENT` after a colon.

        Args:
            allow_empty: Accept a colon with no indented block.
            stop_at_pipe: End the body at a `|` that starts the next
                pipeline stage, leaving the block open.

        Returns:
            The body statements and whether the block is still open
            because a pipe continuation was found.

        """
        if not self._check(TokenType.NEWLINE):
            self._fail(EXPECTED_BLOCK)
        newline = self._advance()
        if not self._check(TokenType.INDENT):
            if allow_empty:
                return [], False
            self._fail(EXPECTED_BLOCK, newline.span)
        self._advance()

        body: list[Statement] = []
        while not self._check(TokenType.DEDENT, TokenType.EOF):
            if stop_at_pipe and self._check(TokenType.PIPE):
                return body, True
            if self._check(TokenType.NEWLINE):
                self._advance()
                continue
            if self._check(TokenType.INDENT):
                self._error(
                    "unexpected indentation",
                    self._peek().span,
                    code=ErrorCode.E0008,
                )
                self._skip_indented_block()
                continue
            start = self._pos
            try:
                body.extend(self._parse_statement())
            except _ParseAbort:
                self._synchronize(start)
        self._match(TokenType.DEDENT)
        return body, False

    def _parse_body(self, *, allow_empty: bool = False) -> list[Statement]:
        body, _ = self._parse_block_body(allow_empty=allow_empty)
        return body

    def _parse_import(self) -> ImportStatement:
        start = self._advance()
        skill = self._parse_string("skill name in quotes")
        self._expect(TokenType.FROM, "'from'")
        source = self._parse_string("skill source in quotes")
        return ImportStatement(skill=skill, source=source, span=self._span_from(start))

    def _parse_agent_definition(self) -> AgentDefinition:
        start = self._advance()
        name = self._parse_identifier("agent name")
        self._expect(TokenType.COLON, "':' after agent name")
        properties = self._parse_property_block()
        return AgentDefinition(name=name, properties=properties, span=self._span_from(start))

    def _parse_block_definition(self) -> BlockDefinition:
        start = self._advance()
        name = self._parse_identifier("block name")
        params: list[Identifier] = []
        if self._match(TokenType.LPAREN):
            if not self._check(TokenType.RPAREN):
                params.append(self._parse_identifier("parameter name"))
                while self._match(TokenType.COMMA):
                    params.append(self._parse_identifier("parameter name"))
            self._expect(TokenType.RPAREN, "')' after block parameters")
        self._expect(TokenType.COLON, "':' after block header")
        body = self._parse_body()
        return BlockDefinition(name=name, params=params, body=body, span=self._span_from(start))

    def _parse_binding(self) -> LetBinding | ConstBinding:
        start = self._advance()
        name = self._parse_identifier("variable name")
        self._expect(TokenType.EQUALS, f"'=' after '{name.name}'")
        value = self._parse_expression()
        if start.type == TokenType.CONST:
            return ConstBinding(name=name, value=value, span=self._span_from(start))
        return LetBinding(name=name, value=value, span=self._span_from(start))

    def _parse_reassignment(self) -> Reassignment:
        start = self._peek()
        name = self._parse_identifier("variable name")
        self._advance()
        value = self._parse_expression()
        return Reassignment(name=name, value=value, span=self._span_from(start))

    def _parse_loop(self) -> LoopBlock:
        start = self._advance()
        variant: str | None = None
        condition: Discretion | None = None
        if self._check(TokenType.UNTIL, TokenType.WHILE):
            variant = self._advance().value
            condition = self._parse_discretion(f"a condition after '{variant}' (**...**)")

        max_iterations: NumberLiteral | None = None
        if self._check(TokenType.LPAREN):
            for modifier in self._parse_modifiers():
                if modifier.name != "max":
                    self._fail(f"unknown loop modifier '{modifier.name}'", modifier.span)
                if not isinstance(modifier.value, NumberLiteral):
                    self._fail("loop 'max' must be a number", modifier.span)
                max_iterations = modifier.value

        index_var = self._parse_as_clause()
        self._expect(TokenType.COLON, "':' after loop header")
        body = self._parse_body()
        return LoopBlock(
            variant=variant,
            condition=condition,
            max_iterations=max_iterations,
            index_var=index_var,
            body=body,
            span=self._span_from(start),
        )

    def _parse_try(self) -> TryBlock:
        start = self._advance()
        self._expect(TokenType.COLON, "':' after 'try'")
        body = self._parse_body()

        catch_body: list[Statement] | None = None
        error_var: Identifier | None = None
        if self._match(TokenType.CATCH):
            error_var = self._parse_as_clause()
            self._expect(TokenType.COLON, "':' after 'catch'")
            catch_body = self._parse_body()

        finally_body: list[Statement] | None = None
        if self._match(TokenType.FINALLY):
            self._expect(TokenType.COLON, "':' after 'finally'")
            finally_body = self._parse_body()

        return TryBlock(
            body=body,
            catch_body=catch_body,
            finally_body=finally_body,
            error_var=error_var,
            span=self._span_from(start),
        )

    def _parse_throw(self) -> ThrowStatement:
        start = self._advance()
        message = None
        if self._check(TokenType.STRING):
            message = self._parse_string("error message")
        return ThrowStatement(message=message, span=self._span_from(start))

    def _parse_choice(self) -> ChoiceBlock:
        start = self._advance()
        criteria = self._parse_discretion("choice criteria (**...**)")
        self._expect(TokenType.COLON, "':' after choice criteria")
        if not self._check(TokenType.NEWLINE) or self._peek(1).type != TokenType.INDENT:
            self._fail(EXPECTED_BLOCK)
        self._advance()
        self._advance()

        options: list[ChoiceOption] = []
        while not self._check(TokenType.DEDENT, TokenType.EOF):
            if self._match(TokenType.NEWLINE):
                continue
            option_start = self._peek()
            option_pos = self._pos
            try:
                self._expect(TokenType.OPTION, "'option'")
                label = self._parse_string("option label in quotes")
                self._expect(TokenType.COLON, "':' after option label")
                body = self._parse_body()
                options.append(
                    ChoiceOption(label=label, body=body, span=self._span_from(option_start)),
                )
            except _ParseAbort:
                self._synchronize(option_pos)
        self._match(TokenType.DEDENT)
        return ChoiceBlock(criteria=criteria, options=options, span=self._span_from(start))

    def _parse_if(self) -> IfElseBlock:
        start = self._advance()
        condition = self._parse_discretion("a condition after 'if' (**...**)")
        self._expect(TokenType.COLON, "':' after condition")
        then_body = self._parse_body()

        elif_clauses: list[ElifClause] = []
        while self._check(TokenType.ELIF):
            clause_start = self._advance()
            clause_condition = self._parse_discretion("a condition after 'elif' (**...**)")
            self._expect(TokenType.COLON, "':' after condition")
            clause_body = self._parse_body()
            elif_clauses.append(
                ElifClause(
                    condition=clause_condition,
                    body=clause_body,
                    span=self._span_from(clause_start),
                ),
            )

        else_body: list[Statement] | None = None
        if self._match(TokenType.ELSE):
            self._expect(TokenType.COLON, "':' after 'else'")
            else_body = self._parse_body()

        return IfElseBlock(
            condition=condition,
            then_body=then_body,
            elif_clauses=elif_clauses,
            else_body=else_body,
            span=self._span_from(start),
        )

    def _parse_expression_statement(self) -> list[Statement]:
        token = self._peek()
        steps = self._parse_arrow_steps()
        # Only the last step of an arrow sequence feeds a following pipe
        piped = self._check(TokenType.PIPE)
        leading = steps[:-1] if piped else steps
        for step in leading:
            if not isinstance(step, STATEMENT_EXPRESSIONS):
                self._fail(f"expected a statement, found {_describe(token)}", step.span)
        if piped:
            return [*leading, self._parse_pipe(steps[-1])]  # type: ignore[list-item]
        return list(steps)  # type: ignore[arg-type]

    # ==== Expressions ====

    def _parse_expression(self) -> Expression:
        token = self._peek()
        steps = self._parse_arrow_steps()
        if self._check(TokenType.PIPE):
            if len(steps) > 1:
                self._fail(
                    "an arrow sequence cannot feed a pipeline in a value; "
                    "run the sequence as statements first",
                )
            return self._parse_pipe(steps[0])
        return self._steps_to_expression(steps, token)

    def _steps_to_expression(self, steps: list[Expression], start: Token) -> Expression:
        if len(steps) == 1:
            return steps[0]
        return DoBlock(body=list(steps), span=self._span_from(start))  # type: ignore[arg-type]

    def _parse_arrow_steps(self) -> list[Expression]:
        steps = [self._parse_primary()]
        while self._match(TokenType.ARROW):
            if self._check(TokenType.SESSION):
                steps.append(self._parse_session())
            elif self._check(TokenType.DO) and self._peek(1).type == TokenType.IDENTIFIER:
                steps.append(self._parse_do())
            else:
                self._fail(
                    f"expected a session or block call after '->', "
                    f"found {_describe(self._peek())}",
                )
        return steps

    def _parse_pipe(self, input_expr: Expression) -> PipeExpression:
        """Parse the `| op: body` stages following a pipeline input.

        A `|` at the level of an indented stage body starts the next
        stage; the blocks left open that way are closed once the chain
        ends.
        """
        operations: list[PipeOperation] = []
        open_blocks = 0
        while self._check(TokenType.PIPE):
            self._advance()
            op_start = self._peek()
            if op_start.type not in PIPE_OPERATORS:
                self._fail(
                    f"expected map, filter, reduce or pmap after '|', "
                    f"found {_describe(op_start)}",
                )
            self._advance()

            acc_var: Identifier | None = None
            item_var: Identifier | None = None
            if op_start.type == TokenType.REDUCE and self._match(TokenType.LPAREN):
                acc_var = self._parse_identifier("accumulator name")
                self._expect(TokenType.COMMA, "',' between reduce variables")
                item_var = self._parse_identifier("item name")
                self._expect(TokenType.RPAREN, "')' after reduce variables")
            self._expect(TokenType.COLON, f"':' after '{op_start.value}'")

            if self._check(TokenType.NEWLINE):
                body, still_open = self._parse_block_body(stop_at_pipe=True)
                if still_open:
                    open_blocks += 1
            else:
                body = self._parse_inline_body()

            operations.append(
                PipeOperation(
                    operator=op_start.value,
                    body=body,
                    acc_var=acc_var,
                    item_var=item_var,
                    span=self._span_from(op_start),
                ),
            )

        for _ in range(open_blocks):
            self._skip_newlines()
            self._match(TokenType.DEDENT)

        return PipeExpression(
            input=input_expr,
            operations=operations,
            span=input_expr.span.merge(self._span_from(self._peek())),
        )

    def _parse_inline_body(self) -> list[Statement]:
        token = self._peek()
        steps = self._parse_arrow_steps()
        for step in steps:
            if not isinstance(step, STATEMENT_EXPRESSIONS):
                self._fail(f"expected a statement, found {_describe(token)}", step.span)
        return list(steps)  # type: ignore[arg-type]

    def _parse_primary(self) -> Expression:
        token = self._peek()
        kind = token.type

        if kind == TokenType.SESSION:
            return self._parse_session()
        if kind == TokenType.DO:
            return self._parse_do()
        if kind == TokenType.PARALLEL:
            if self._peek(1).type == TokenType.FOR:
                return self._parse_for_each(parallel=True)
            return self._parse_parallel()
        if kind == TokenType.FOR:
            return self._parse_for_each(parallel=False)
        if kind == TokenType.REPEAT:
            return self._parse_repeat()
        return self._parse_value()

    def _parse_value(self) -> Expression:
        token = self._peek()
        kind = token.type

        if kind == TokenType.STRING:
            return self._parse_string("string")
        if kind == TokenType.NUMBER:
            return self._parse_number()
        if kind == TokenType.IDENTIFIER:
            return self._parse_identifier("identifier")
        if kind == TokenType.DISCRETION:
            return self._parse_discretion("discretion")
        if kind == TokenType.LBRACKET:
            return self._parse_array()
        if kind == TokenType.LBRACE:
            return self._parse_object()
        self._fail(f"expected a value, found {_describe(token)}")

    def _parse_array(self) -> ArrayExpression:
        start = self._advance()
        elements: list[Expression] = []
        while not self._check(TokenType.RBRACKET):
            elements.append(self._parse_expression())
            if not self._match(TokenType.COMMA):
                break
        self._expect(TokenType.RBRACKET, "']' to close the array")
        return ArrayExpression(elements=elements, span=self._span_from(start))

    def _parse_object(self) -> ObjectExpression:
        start = self._advance()
        entries: list[Property] = []
        while not self._check(TokenType.RBRACE):
            key = self._parse_key("object key")
            if self._match(TokenType.COLON):
                value = self._parse_expression()
                entries.append(
                    Property(
                        name=key.name,
                        value=value,
                        name_span=key.span,
                        span=key.span.merge(value.span),
                    ),
                )
            else:
                entries.append(
                    Property(
                        name=key.name,
                        value=Identifier(key.name, key.span),
                        name_span=key.span,
                        shorthand=True,
                        span=key.span,
                    ),
                )
            if not self._match(TokenType.COMMA):
                break
        self._expect(TokenType.RBRACE, "'}' to close the object")
        return ObjectExpression(entries=entries, span=self._span_from(start))

    # ==== Sessions and properties ====

    def _parse_session(self) -> SessionStatement:
        start = self._advance()
        session = SessionStatement()

        if self._check(TokenType.STRING):
            session.prompt = self._parse_string("prompt")
        elif self._match(TokenType.COLON):
            session.agent = self._parse_identifier("agent name after 'session:'")
        elif self._check(TokenType.IDENTIFIER):
            session.name = self._parse_identifier("session name")
            self._expect(TokenType.COLON, f"':' after '{session.name.name}'")
            if self._check(TokenType.LBRACE):
                self._parse_session_object(session)
            elif self._check(TokenType.STRING):
                session.prompt = self._parse_string("prompt")
            else:
                session.agent = self._parse_identifier("agent name")
        else:
            self._fail(
                f"expected a prompt, ':' or a name after 'session', "
                f"found {_describe(self._peek())}",
            )

        if self._check(TokenType.LPAREN):
            session.properties.extend(self._parse_modifiers())

        has_colon = self._match(TokenType.COLON) is not None
        if self._check(TokenType.NEWLINE) and self._peek(1).type == TokenType.INDENT:
            for prop in self._parse_property_block():
                self._add_session_property(session, prop)
        elif has_colon:
            self._fail(EXPECTED_BLOCK)

        session.span = self._span_from(start)
        return session

    def _parse_session_object(self, session: SessionStatement) -> None:
        self._advance()
        while not self._check(TokenType.RBRACE):
            key = self._parse_key("property name")
            self._expect(TokenType.COLON, f"':' after '{key.name}'")
            value = self._parse_property_value(key.name)
            self._add_session_property(
                session,
                Property(
                    name=key.name,
                    value=value,
                    name_span=key.span,
                    span=key.span.merge(value.span),
                ),
            )
            if not self._match(TokenType.COMMA):
                break
        self._expect(TokenType.RBRACE, "'}' to close the session properties")

    def _add_session_property(self, session: SessionStatement, prop: Property) -> None:
        if prop.name != "agent":
            session.properties.append(prop)
            return
        if not isinstance(prop.value, Identifier):
            self._fail("'agent' must name an agent", prop.span)
        if session.agent is not None:
            self._fail("session already references an agent", prop.span)
        session.agent = prop.value  # type: ignore[assignment]

    def _parse_property_block(self) -> list[Property]:
        if not self._check(TokenType.NEWLINE) or self._peek(1).type != TokenType.INDENT:
            self._fail(EXPECTED_BLOCK)
        self._advance()
        self._advance()

        properties: list[Property] = []
        while not self._check(TokenType.DEDENT, TokenType.EOF):
            if self._match(TokenType.NEWLINE):
                continue
            start = self._pos
            try:
                properties.append(self._parse_property())
            except _ParseAbort:
                self._synchronize(start)
        self._match(TokenType.DEDENT)
        return properties

    def _parse_property(self) -> Property:
        token = self._peek()
        if token.type != TokenType.IDENTIFIER or self._peek(1).type != TokenType.COLON:
            self._fail(f"expected a property (name: value), found {_describe(token)}")
        name = self._advance()
        self._advance()

        if self._check(TokenType.NEWLINE) and self._peek(1).type == TokenType.INDENT:
            children = self._parse_property_block()
            return Property(
                name=name.value,
                children=children,
                name_span=name.span,
                span=self._span_from(name),
            )

        value = self._parse_property_value(name.value)
        self._end_statement()
        return Property(
            name=name.value,
            value=value,
            name_span=name.span,
            span=name.span.merge(value.span),
        )

    def _parse_property_value(self, name: str) -> Expression | ContextSpec:
        if name == "context":
            return self._parse_context()
        return self._parse_value()

    def _parse_context(self) -> ContextSpec:
        token = self._peek()
        if token.type == TokenType.IDENTIFIER:
            ref = self._parse_identifier("variable")
            return ContextSpec("single", [ref], span=ref.span)

        if token.type in (TokenType.LBRACKET, TokenType.LBRACE):
            closer = TokenType.RBRACKET if token.type == TokenType.LBRACKET else TokenType.RBRACE
            self._advance()
            refs: list[Identifier] = []
            while not self._check(closer):
                refs.append(self._parse_identifier("variable name in context"))
                if not self._match(TokenType.COMMA):
                    break
            self._expect(closer, "closing bracket for context")
            span = self._span_from(token)
            if not refs:
                return ContextSpec("empty", span=span)
            kind = "list" if token.type == TokenType.LBRACKET else "object"
            return ContextSpec(kind, refs, span=span)

        self._fail(
            "context must be a variable, a list of variables or an object of variables",
        )

    def _parse_modifiers(self) -> list[Property]:
        """Parse a parenthesized modifier list such as `("any", count: 2)`.

        A positional string is stored under the name 'strategy'.
        """
        self._advance()
        modifiers: list[Property] = []
        while not self._check(TokenType.RPAREN):
            token = self._peek()
            if token.type == TokenType.STRING:
                value = self._parse_string("strategy")
                modifiers.append(
                    Property(name="strategy", value=value, name_span=value.span, span=value.span),
                )
            elif token.type == TokenType.IDENTIFIER and self._peek(1).type == TokenType.COLON:
                self._advance()
                self._advance()
                if self._check(TokenType.STRING):
                    value_node: Expression = self._parse_string("modifier value")
                elif self._check(TokenType.NUMBER):
                    value_node = self._parse_number()
                else:
                    self._fail(
                        f"modifier '{token.value}' needs a quoted string or a number, "
                        f"found {_describe(self._peek())}",
                    )
                modifiers.append(
                    Property(
                        name=token.value,
                        value=value_node,
                        name_span=token.span,
                        span=token.span.merge(value_node.span),
                    ),
                )
            else:
                self._fail(
                    f"expected a quoted value or 'name: value' modifier, "
                    f"found {_describe(token)}",
                )
            if not self._match(TokenType.COMMA):
                break
        self._expect(TokenType.RPAREN, "')' to close the modifier list")
        return modifiers

    # ==== Control blocks ====

    def _parse_do(self) -> DoBlock | BlockInvocation:
        start = self._advance()
        if self._match(TokenType.COLON):
            body = self._parse_body()
            return DoBlock(body=body, span=self._span_from(start))

        name = self._parse_identifier("block name or ':' after 'do'")
        args: list[Expression] = []
        if self._match(TokenType.LPAREN):
            while not self._check(TokenType.RPAREN):
                args.append(self._parse_expression())
                if not self._match(TokenType.COMMA):
                    break
            self._expect(TokenType.RPAREN, "')' after block arguments")
        return BlockInvocation(name=name, args=args, span=self._span_from(start))

    def _parse_parallel(self) -> ParallelBlock:
        start = self._advance()
        block = ParallelBlock()
        if self._check(TokenType.LPAREN):
            block.modifiers = self._parse_modifiers()
            self._apply_parallel_modifiers(block, block.modifiers)
        self._expect(TokenType.COLON, "':' after 'parallel'")
        block.body = self._parse_body(allow_empty=True)
        block.span = self._span_from(start)
        return block

    @staticmethod
    def _apply_parallel_modifiers(
        block: ParallelBlock | ForEachBlock,
        modifiers: list[Property],
    ) -> None:
        for modifier in modifiers:
            value = modifier.value
            if modifier.name == "strategy" and isinstance(value, StringLiteral):
                block.join_strategy = value.value
            elif modifier.name == "on-fail" and isinstance(value, StringLiteral):
                block.on_fail = value.value
            elif modifier.name == "count" and isinstance(value, NumberLiteral):
                if isinstance(value.value, int):
                    block.count = value.value

    def _parse_for_each(self, *, parallel: bool) -> ForEachBlock:
        start = self._advance()
        if parallel:
            self._advance()
        item_var = self._parse_identifier("loop variable")
        index_var = None
        if self._match(TokenType.COMMA):
            index_var = self._parse_identifier("index variable")
        self._expect(TokenType.IN, "'in'")
        collection = self._parse_primary()

        block = ForEachBlock(
            item_var=item_var,
            collection=collection,
            index_var=index_var,
            parallel=parallel,
        )
        if self._check(TokenType.LPAREN):
            if not parallel:
                self._fail("modifiers are only allowed on 'parallel for'")
            block.modifiers = self._parse_modifiers()
            self._apply_parallel_modifiers(block, block.modifiers)
        self._expect(TokenType.COLON, "':' after for header")
        block.body = self._parse_body()
        block.span = self._span_from(start)
        return block

    def _parse_repeat(self) -> RepeatBlock:
        start = self._advance()
        count: NumberLiteral | Identifier
        if self._check(TokenType.NUMBER):
            count = self._parse_number()
        else:
            count = self._parse_identifier("repeat count")
        index_var = self._parse_as_clause()
        self._expect(TokenType.COLON, "':' after repeat count")
        body = self._parse_body()
        return RepeatBlock(count=count, index_var=index_var, body=body, span=self._span_from(start))

    def _parse_as_clause(self) -> Identifier | None:
        if self._match(TokenType.AS):
            return self._parse_identifier("variable name after 'as'")
        return None

    # ==== Leaves ====

    def _parse_identifier(self, what: str) -> Identifier:
        token = self._expect(TokenType.IDENTIFIER, what)
        return Identifier(name=token.value, span=token.span)

    def _parse_key(self, what: str) -> Identifier:
        """Parse a key inside braces, where reserved words such as `agent` are allowed."""
        if self._peek().is_keyword():
            token = self._advance()
            return Identifier(name=token.value, span=token.span)
        return self._parse_identifier(what)

    def _parse_string(self, what: str) -> StringLiteral:
        token = self._expect(TokenType.STRING, what)
        meta = token.string
        if meta is None:
            return StringLiteral(value=token.value, raw=token.text, span=token.span)
        return StringLiteral(
            value=token.value,
            raw=meta.raw,
            triple=meta.is_triple_quoted,
            escapes=meta.escape_sequences,
            interpolations=meta.interpolations,
            span=token.span,
        )

    def _parse_number(self) -> NumberLiteral:
        token = self._expect(TokenType.NUMBER, "number")
        value: int | float = float(token.value) if "." in token.value else int(token.value)
        return NumberLiteral(value=value, raw=token.value, span=token.span)

    def _parse_discretion(self, what: str) -> Discretion:
        token = self._expect(TokenType.DISCRETION, what)
        return Discretion(text=token.value, multiline=token.multiline, span=token.span)


def parse(source: str | list[Token]) -> ParseResult:
    """Parse OpenProse source text or a token stream.

    Args:
        source: Program source text, or tokens from `tokenize`.

    Returns:
        ParseResult with the program and any problems found. Lexer
        problems are included when parsing from text.

    """
    if isinstance(source, str):
        lexed = tokenize(source)
        result = Parser(lexed.tokens).parse()
        result.lex_errors = lexed.errors
        return result
    return Parser(source).parse()
