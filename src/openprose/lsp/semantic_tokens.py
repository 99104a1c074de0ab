"""Semantic tokens for OpenProse editor highlighting.

Classify the text of a program for an LSP server. Names are classified
from the AST, so an identifier is an agent name only where it stands in
an agent position. Keywords, operators, literals and comments come from
the token stream the program was parsed from.
"""

from dataclasses import dataclass
from enum import IntEnum, IntFlag

from lsprotocol.types import (
    SemanticTokenModifiers,
    SemanticTokens,
    SemanticTokensLegend,
    SemanticTokenTypes,
)

from openprose.ast.nodes import (
    AgentDefinition,
    ArrayExpression,
    BlockDefinition,
    BlockInvocation,
    ConstBinding,
    ContextSpec,
    Discretion,
    ForEachBlock,
    Identifier,
    ImportStatement,
    LetBinding,
    LoopBlock,
    NumberLiteral,
    ObjectExpression,
    ParallelBlock,
    PipeExpression,
    ProgramNode,
    Property,
    Reassignment,
    RepeatBlock,
    SessionStatement,
    StringLiteral,
    TryBlock,
)
from openprose.ast.walk import AstVisitor
from openprose.grammar.parser import parse
from openprose.grammar.tokens import (
    KEYWORD_TYPES,
    OPERATOR_TYPES,
    SourceSpan,
    Token,
    TokenType,
)
from openprose.log import get_logger

logger = get_logger(__name__)


class SemanticTokenType(IntEnum):
    """LSP semantic token types, in legend order."""

    NAMESPACE = 0
    TYPE = 1
    CLASS = 2
    ENUM = 3
    INTERFACE = 4
    STRUCT = 5
    TYPE_PARAMETER = 6
    PARAMETER = 7
    VARIABLE = 8
    PROPERTY = 9
    ENUM_MEMBER = 10
    EVENT = 11
    FUNCTION = 12
    METHOD = 13
    MACRO = 14
    KEYWORD = 15
    MODIFIER = 16
    COMMENT = 17
    STRING = 18
    NUMBER = 19
    REGEXP = 20
    OPERATOR = 21

    # Language classes mapped onto LSP types
    AGENT_NAME = 2
    SKILL_NAME = 0
    BLOCK_NAME = 12
    DISCRETION = 14


class SemanticTokenModifier(IntFlag):
    """LSP semantic token modifiers as bit flags, in legend order."""

    NONE = 0
    DECLARATION = 1 << 0
    DEFINITION = 1 << 1
    READONLY = 1 << 2
    STATIC = 1 << 3
    DEPRECATED = 1 << 4
    ABSTRACT = 1 << 5
    ASYNC = 1 << 6
    MODIFICATION = 1 << 7
    DOCUMENTATION = 1 << 8
    DEFAULT_LIBRARY = 1 << 9


TOKEN_TYPE_NAMES = tuple(
    t.value
    for t in (
        SemanticTokenTypes.Namespace,
        SemanticTokenTypes.Type,
        SemanticTokenTypes.Class,
        SemanticTokenTypes.Enum,
        SemanticTokenTypes.Interface,
        SemanticTokenTypes.Struct,
        SemanticTokenTypes.TypeParameter,
        SemanticTokenTypes.Parameter,
        SemanticTokenTypes.Variable,
        SemanticTokenTypes.Property,
        SemanticTokenTypes.EnumMember,
        SemanticTokenTypes.Event,
        SemanticTokenTypes.Function,
        SemanticTokenTypes.Method,
        SemanticTokenTypes.Macro,
        SemanticTokenTypes.Keyword,
        SemanticTokenTypes.Modifier,
        SemanticTokenTypes.Comment,
        SemanticTokenTypes.String,
        SemanticTokenTypes.Number,
        SemanticTokenTypes.Regexp,
        SemanticTokenTypes.Operator,
    )
)
"""Legend names, indexed by SemanticTokenType."""

TOKEN_MODIFIER_NAMES = tuple(
    m.value
    for m in (
        SemanticTokenModifiers.Declaration,
        SemanticTokenModifiers.Definition,
        SemanticTokenModifiers.Readonly,
        SemanticTokenModifiers.Static,
        SemanticTokenModifiers.Deprecated,
        SemanticTokenModifiers.Abstract,
        SemanticTokenModifiers.Async,
        SemanticTokenModifiers.Modification,
        SemanticTokenModifiers.Documentation,
        SemanticTokenModifiers.DefaultLibrary,
    )
)
"""Legend names, indexed by bit position of SemanticTokenModifier."""

ENUMERATED_PROPERTIES = frozenset({"model", "read", "write", "execute", "bash", "network"})
"""Properties whose bare identifier values are enumeration members."""

_LEXICAL_TYPES: dict[TokenType, SemanticTokenType] = {
    TokenType.COMMENT: SemanticTokenType.COMMENT,
    TokenType.STRING: SemanticTokenType.STRING,
    TokenType.NUMBER: SemanticTokenType.NUMBER,
    TokenType.DISCRETION: SemanticTokenType.DISCRETION,
}

_DECLARED = SemanticTokenModifier.DECLARATION | SemanticTokenModifier.DEFINITION
_READONLY_DECLARATION = SemanticTokenModifier.DECLARATION | SemanticTokenModifier.READONLY


@dataclass(frozen=True)
class SemanticToken:
    """A classified source range on a single line.

    Lines and characters are 0-based, as in the LSP protocol.
    """

    line: int
    start_char: int
    length: int
    token_type: SemanticTokenType
    token_modifiers: int = 0


def _split_lines(
    span: SourceSpan,
    text: str,
    token_type: SemanticTokenType,
    modifiers: int,
) -> list[SemanticToken]:
    """Cut a possibly multi-line range into one token per line."""
    if text:
        lengths = [len(part) for part in text.split("\n")]
    elif span.end_line == span.line:
        lengths = [span.end_column - span.column]
    else:
        lengths = []

    tokens: list[SemanticToken] = []
    for offset, length in enumerate(lengths):
        start = span.column if offset == 0 else 0
        if length > 0:
            tokens.append(
                SemanticToken(
                    line=span.line - 1 + offset,
                    start_char=start,
                    length=length,
                    token_type=token_type,
                    token_modifiers=int(modifiers),
                ),
            )
    return tokens


class _NameClassifier(AstVisitor):
    """Collect semantic tokens for names from the AST."""

    def __init__(self) -> None:
        self.tokens: list[SemanticToken] = []
        self._parameters: set[str] = set()

    def _add(
        self,
        span: SourceSpan,
        token_type: SemanticTokenType,
        modifiers: int = 0,
        text: str = "",
    ) -> None:
        self.tokens.extend(_split_lines(span, text, token_type, modifiers))

    def _name(
        self,
        ident: Identifier | None,
        token_type: SemanticTokenType,
        modifiers: int = 0,
    ) -> None:
        if ident is not None:
            self._add(ident.span, token_type, modifiers)

    def _properties(self, properties: list[Property]) -> None:
        for prop in properties:
            self._add(prop.name_span, SemanticTokenType.PROPERTY)
            self._property_value(prop)
            self._properties(prop.children)

    def _property_value(self, prop: Property) -> None:
        value = prop.value
        if value is None:
            return
        if prop.name == "skills" and isinstance(value, ArrayExpression):
            for element in value.elements:
                if isinstance(element, StringLiteral):
                    self._add(element.span, SemanticTokenType.SKILL_NAME, text=element.raw)
            return
        if prop.name in ENUMERATED_PROPERTIES and isinstance(value, Identifier):
            self._add(value.span, SemanticTokenType.ENUM_MEMBER)
            return
        self.visit(value)

    # ==== Definitions ====

    def visit_import_statement(self, node: ImportStatement) -> None:
        self._add(node.skill.span, SemanticTokenType.SKILL_NAME, _DECLARED, node.skill.raw)

    def visit_agent_definition(self, node: AgentDefinition) -> None:
        self._name(node.name, SemanticTokenType.AGENT_NAME, _DECLARED)
        self._properties(node.properties)

    def visit_block_definition(self, node: BlockDefinition) -> None:
        self._name(node.name, SemanticTokenType.BLOCK_NAME, _DECLARED)
        for param in node.params:
            self._name(param, SemanticTokenType.PARAMETER, _READONLY_DECLARATION)
        outer = self._parameters
        self._parameters = {p.name for p in node.params}
        for stmt in node.body:
            self.visit(stmt)
        self._parameters = outer

    def visit_block_invocation(self, node: BlockInvocation) -> None:
        self._name(node.name, SemanticTokenType.BLOCK_NAME)
        for arg in node.args:
            self.visit(arg)

    def visit_session_statement(self, node: SessionStatement) -> None:
        self._name(node.name, SemanticTokenType.VARIABLE, _READONLY_DECLARATION)
        self._name(node.agent, SemanticTokenType.AGENT_NAME)
        self._properties(node.properties)

    def visit_context_spec(self, node: ContextSpec) -> None:
        for ref in node.refs:
            self.visit(ref)

    def visit_object_expression(self, node: ObjectExpression) -> None:
        for entry in node.entries:
            if entry.shorthand:
                self.visit(entry.value)  # type: ignore[arg-type]
            else:
                self._add(entry.name_span, SemanticTokenType.PROPERTY)
                if entry.value is not None:
                    self.visit(entry.value)

    # ==== Bindings ====

    def visit_let_binding(self, node: LetBinding) -> None:
        self._name(node.name, SemanticTokenType.VARIABLE, SemanticTokenModifier.DECLARATION)
        self.visit(node.value)

    def visit_const_binding(self, node: ConstBinding) -> None:
        self._name(node.name, SemanticTokenType.VARIABLE, _READONLY_DECLARATION)
        self.visit(node.value)

    def visit_reassignment(self, node: Reassignment) -> None:
        self._name(node.name, SemanticTokenType.VARIABLE, SemanticTokenModifier.MODIFICATION)
        self.visit(node.value)

    def visit_for_each_block(self, node: ForEachBlock) -> None:
        self._name(node.item_var, SemanticTokenType.VARIABLE, _READONLY_DECLARATION)
        self._name(node.index_var, SemanticTokenType.VARIABLE, _READONLY_DECLARATION)
        self._modifiers(node.modifiers)
        self.visit(node.collection)
        for stmt in node.body:
            self.visit(stmt)

    def visit_parallel_block(self, node: ParallelBlock) -> None:
        self._modifiers(node.modifiers)
        for stmt in node.body:
            self.visit(stmt)

    def _modifiers(self, modifiers: list[Property]) -> None:
        for modifier in modifiers:
            if modifier.name != "strategy":
                self._add(modifier.name_span, SemanticTokenType.PROPERTY)

    def visit_repeat_block(self, node: RepeatBlock) -> None:
        self.visit(node.count)
        self._name(node.index_var, SemanticTokenType.VARIABLE, _READONLY_DECLARATION)
        for stmt in node.body:
            self.visit(stmt)

    def visit_loop_block(self, node: LoopBlock) -> None:
        self._name(node.index_var, SemanticTokenType.VARIABLE, _READONLY_DECLARATION)
        for stmt in node.body:
            self.visit(stmt)

    def visit_try_block(self, node: TryBlock) -> None:
        self._name(node.error_var, SemanticTokenType.VARIABLE, _READONLY_DECLARATION)
        for body in (node.body, node.catch_body or [], node.finally_body or []):
            for stmt in body:
                self.visit(stmt)

    def visit_pipe_expression(self, node: PipeExpression) -> None:
        self.visit(node.input)
        for op in node.operations:
            self._name(op.acc_var, SemanticTokenType.VARIABLE, _READONLY_DECLARATION)
            self._name(op.item_var, SemanticTokenType.VARIABLE, _READONLY_DECLARATION)
            for stmt in op.body:
                self.visit(stmt)

    # ==== References ====

    def visit_identifier(self, node: Identifier) -> None:
        if node.name in self._parameters:
            self._add(node.span, SemanticTokenType.PARAMETER, SemanticTokenModifier.READONLY)
        else:
            self._add(node.span, SemanticTokenType.VARIABLE)

    def visit_string_literal(self, node: StringLiteral) -> None:
        """Strings are classified from the token stream."""

    def visit_number_literal(self, node: NumberLiteral) -> None:
        """Numbers are classified from the token stream."""

    def visit_discretion(self, node: Discretion) -> None:
        """Discretion spans are classified from the token stream."""


def _is_object_key(tokens: list[Token], index: int) -> bool:
    """Check for a reserved word used as a key, as in `{ agent: writer }`."""
    if index == 0 or index + 1 >= len(tokens):
        return False
    return (
        tokens[index - 1].type in (TokenType.LBRACE, TokenType.COMMA)
        and tokens[index + 1].type == TokenType.COLON
    )


def _lexical_tokens(tokens: list[Token]) -> list[SemanticToken]:
    """Classify keywords, operators, literals, comments and leftover names."""
    result: list[SemanticToken] = []
    layout = (TokenType.NEWLINE, TokenType.INDENT, TokenType.DEDENT)
    significant = [t for t in tokens if t.type not in layout]
    for index, token in enumerate(significant):
        if token.type in KEYWORD_TYPES and _is_object_key(significant, index):
            token_type = SemanticTokenType.PROPERTY
        elif token.type in KEYWORD_TYPES:
            token_type = SemanticTokenType.KEYWORD
        elif token.type in OPERATOR_TYPES:
            token_type = SemanticTokenType.OPERATOR
        elif token.type in _LEXICAL_TYPES:
            token_type = _LEXICAL_TYPES[token.type]
        elif token.type == TokenType.IDENTIFIER:
            following = significant[index + 1] if index + 1 < len(significant) else None
            is_key = following is not None and following.type == TokenType.COLON
            token_type = SemanticTokenType.PROPERTY if is_key else SemanticTokenType.VARIABLE
        else:
            continue
        result.extend(_split_lines(token.span, token.text, token_type, 0))
    return result


def get_semantic_tokens(program: ProgramNode | str) -> list[SemanticToken]:
    """Compute semantic tokens for a program.

    Args:
        program: Parsed program, or source text to parse first.

    Returns:
        Tokens sorted by position, one per line of each classified range,
        with at most one token per start position.

    """
    if isinstance(program, str):
        program = parse(program).program

    classifier = _NameClassifier()
    for stmt in program.statements:
        classifier.visit(stmt)

    seen: set[tuple[int, int]] = set()
    tokens: list[SemanticToken] = []
    # Structural classification from the AST wins over the lexical fallback
    for token in [*classifier.tokens, *_lexical_tokens(program.tokens)]:
        key = (token.line, token.start_char)
        if key in seen or token.length <= 0:
            continue
        seen.add(key)
        tokens.append(token)

    tokens.sort(key=lambda t: (t.line, t.start_char))
    logger.debug("Computed %d semantic tokens", len(tokens))
    return tokens


def encode_semantic_tokens(tokens: list[SemanticToken]) -> SemanticTokens:
    """Delta-encode sorted tokens into the LSP integer array format.

    Every token contributes five integers: delta line, delta start
    character, length, token type and modifier bits.

    Args:
        tokens: Tokens sorted by position.

    Returns:
        SemanticTokens ready for a `textDocument/semanticTokens/full` reply.

    """
    data: list[int] = []
    prev_line = 0
    prev_char = 0
    for token in tokens:
        delta_line = token.line - prev_line
        delta_char = token.start_char - prev_char if delta_line == 0 else token.start_char
        data.extend(
            (delta_line, delta_char, token.length, int(token.token_type), token.token_modifiers),
        )
        prev_line = token.line
        prev_char = token.start_char
    return SemanticTokens(data=data)


def get_encoded_semantic_tokens(program: ProgramNode | str) -> SemanticTokens:
    """Compute delta-encoded semantic tokens for a program."""
    return encode_semantic_tokens(get_semantic_tokens(program))


def get_semantic_tokens_legend() -> SemanticTokensLegend:
    """Get the legend matching the encoded token type and modifier values."""
    return SemanticTokensLegend(
        token_types=list(TOKEN_TYPE_NAMES),
        token_modifiers=list(TOKEN_MODIFIER_NAMES),
    )
