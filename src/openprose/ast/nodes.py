"""AST node dataclasses for OpenProse programs.

Every construct of the language is a flat dataclass carrying a `span`.
Statements and expressions are tagged unions over these classes; the
class itself is the tag, so passes dispatch on it with `match` or via
`openprose.ast.walk.AstVisitor`.
"""

from dataclasses import dataclass, field
from typing import Union

from openprose.grammar.tokens import (
    EscapeSequence,
    Interpolation,
    SourceSpan,
    Token,
)
from openprose.log import get_logger

logger = get_logger(__name__)

NO_SPAN = SourceSpan(0, 0, 0, 0)
"""Placeholder span for nodes built outside the parser."""


# =============================================================================
# Expression Nodes
# =============================================================================


@dataclass
class StringLiteral:
    """String literal node (e.g., "Review {draft}")."""

    value: str
    """Decoded string value."""

    raw: str = ""
    """The literal exactly as written, quotes included."""

    triple: bool = False
    escapes: tuple[EscapeSequence, ...] = ()
    interpolations: tuple[Interpolation, ...] = ()
    span: SourceSpan = NO_SPAN


@dataclass
class NumberLiteral:
    """Numeric literal node (e.g., 3, 0.5)."""

    value: int | float
    raw: str = ""
    span: SourceSpan = NO_SPAN

    @property
    def is_integer(self) -> bool:
        """Check whether the literal was written without a fraction."""
        return isinstance(self.value, int)


@dataclass
class Identifier:
    """Bare name reference (variable, agent, block or skill)."""

    name: str
    span: SourceSpan = NO_SPAN


@dataclass
class Discretion:
    """Natural-language span (`**...**` or `***...***`), kept opaque."""

    text: str
    multiline: bool = False
    span: SourceSpan = NO_SPAN


@dataclass
class ArrayExpression:
    """Array literal node (e.g., [a, "b"])."""

    elements: list["Expression"] = field(default_factory=list)
    span: SourceSpan = NO_SPAN


@dataclass
class ObjectExpression:
    """Object literal node (e.g., { a, b: session "x" })."""

    entries: list["Property"] = field(default_factory=list)
    span: SourceSpan = NO_SPAN


@dataclass
class ContextSpec:
    """Value of a `context:` property.

    `kind` is one of 'implicit', 'single', 'list', 'object' or 'empty'.
    """

    kind: str
    refs: list[Identifier] = field(default_factory=list)
    span: SourceSpan = NO_SPAN

    @property
    def names(self) -> list[str]:
        """Get the referenced variable names in order."""
        return [ref.name for ref in self.refs]


@dataclass
class Property:
    """Named property (e.g., `model: sonnet`).

    Either `value` is set, or `children` holds a nested property block
    (as used by `permissions:`).
    """

    name: str
    value: Union["Expression", ContextSpec, None] = None
    children: list["Property"] = field(default_factory=list)
    name_span: SourceSpan = NO_SPAN
    shorthand: bool = False
    """True for object entries written as a bare name (`{ a }`)."""

    span: SourceSpan = NO_SPAN


def find_property(properties: list[Property], name: str) -> Property | None:
    """Find the first property with the given name.

    Args:
        properties: Properties to search.
        name: Property name.

    Returns:
        The property, or None when absent.

    """
    return next((p for p in properties if p.name == name), None)


# =============================================================================
# Definition Nodes
# =============================================================================


@dataclass
class CommentNode:
    """A comment collected from the source, standalone or inline."""

    text: str
    is_inline: bool = False
    span: SourceSpan = NO_SPAN


@dataclass
class CommentStatement:
    """Standalone comment kept in statement position."""

    text: str
    span: SourceSpan = NO_SPAN


@dataclass
class ImportStatement:
    """Skill import (e.g., import "web-search" from "github:org/skills")."""

    skill: StringLiteral
    source: StringLiteral
    span: SourceSpan = NO_SPAN


@dataclass
class AgentDefinition:
    """Agent definition with an indented property block."""

    name: Identifier
    properties: list[Property] = field(default_factory=list)
    span: SourceSpan = NO_SPAN

    def get_property(self, name: str) -> Property | None:
        """Get a property by name."""
        return find_property(self.properties, name)


@dataclass
class BlockDefinition:
    """Reusable block definition (e.g., block review(topic):)."""

    name: Identifier
    params: list[Identifier] = field(default_factory=list)
    body: list["Statement"] = field(default_factory=list)
    span: SourceSpan = NO_SPAN


# =============================================================================
# Statement Nodes
# =============================================================================


@dataclass
class SessionStatement:
    """Session statement.

    Examples:
    - session "Summarize the report"  (inline prompt)
    - session: researcher  (agent reference)
    - session review: critic  (named result, agent reference)

    """

    name: Identifier | None = None
    agent: Identifier | None = None
    prompt: StringLiteral | None = None
    properties: list[Property] = field(default_factory=list)
    span: SourceSpan = NO_SPAN

    def get_property(self, name: str) -> Property | None:
        """Get a property by name."""
        return find_property(self.properties, name)

    @property
    def context(self) -> ContextSpec:
        """Get the context spec, implicit when no `context:` is given."""
        prop = self.get_property("context")
        if prop is not None and isinstance(prop.value, ContextSpec):
            return prop.value
        return ContextSpec("implicit", span=self.span)


@dataclass
class LetBinding:
    """Mutable variable binding (e.g., let draft = session "Write")."""

    name: Identifier
    value: "Expression"
    span: SourceSpan = NO_SPAN


@dataclass
class ConstBinding:
    """Immutable variable binding (e.g., const topic = "AI")."""

    name: Identifier
    value: "Expression"
    span: SourceSpan = NO_SPAN


@dataclass
class Reassignment:
    """Assignment to an existing name, or a named branch inside parallel."""

    name: Identifier
    value: "Expression"
    span: SourceSpan = NO_SPAN


@dataclass
class DoBlock:
    """Anonymous sequential block (`do:`)."""

    body: list["Statement"] = field(default_factory=list)
    span: SourceSpan = NO_SPAN


@dataclass
class BlockInvocation:
    """Invocation of a defined block (e.g., do review("topic"))."""

    name: Identifier
    args: list["Expression"] = field(default_factory=list)
    span: SourceSpan = NO_SPAN


@dataclass
class ParallelBlock:
    """Parallel block with optional join strategy and failure policy.

    `modifiers` keeps the written modifier list (a positional strategy is
    stored under the name 'strategy') for diagnostics; the typed fields
    hold the parsed values, None when not written.
    """

    join_strategy: str | None = None
    on_fail: str | None = None
    count: int | None = None
    body: list["Statement"] = field(default_factory=list)
    modifiers: list[Property] = field(default_factory=list)
    span: SourceSpan = NO_SPAN


@dataclass
class ForEachBlock:
    """For-each loop, sequential or `parallel for`."""

    item_var: Identifier
    collection: "Expression"
    index_var: Identifier | None = None
    body: list["Statement"] = field(default_factory=list)
    parallel: bool = False
    join_strategy: str | None = None
    on_fail: str | None = None
    count: int | None = None
    modifiers: list[Property] = field(default_factory=list)
    span: SourceSpan = NO_SPAN


@dataclass
class RepeatBlock:
    """Fixed-count loop (e.g., repeat 3 as i:)."""

    count: NumberLiteral | Identifier
    index_var: Identifier | None = None
    body: list["Statement"] = field(default_factory=list)
    span: SourceSpan = NO_SPAN


@dataclass
class LoopBlock:
    """Unbounded or condition-driven loop.

    `variant` is 'until', 'while' or None for a bare `loop:`.
    """

    variant: str | None = None
    condition: Discretion | None = None
    max_iterations: NumberLiteral | None = None
    index_var: Identifier | None = None
    body: list["Statement"] = field(default_factory=list)
    span: SourceSpan = NO_SPAN


@dataclass
class TryBlock:
    """Try block with optional catch and finally."""

    body: list["Statement"] = field(default_factory=list)
    catch_body: list["Statement"] | None = None
    finally_body: list["Statement"] | None = None
    error_var: Identifier | None = None
    span: SourceSpan = NO_SPAN


@dataclass
class ThrowStatement:
    """Throw statement, optionally with a message."""

    message: StringLiteral | None = None
    span: SourceSpan = NO_SPAN


@dataclass
class ChoiceOption:
    """One labelled option of a choice block."""

    label: StringLiteral
    body: list["Statement"] = field(default_factory=list)
    span: SourceSpan = NO_SPAN


@dataclass
class ChoiceBlock:
    """Choice among options decided by the orchestrator."""

    criteria: Discretion
    options: list[ChoiceOption] = field(default_factory=list)
    span: SourceSpan = NO_SPAN


@dataclass
class ElifClause:
    """An `elif` branch of an if statement."""

    condition: Discretion
    body: list["Statement"] = field(default_factory=list)
    span: SourceSpan = NO_SPAN


@dataclass
class IfElseBlock:
    """Conditional with discretion conditions."""

    condition: Discretion
    then_body: list["Statement"] = field(default_factory=list)
    elif_clauses: list[ElifClause] = field(default_factory=list)
    else_body: list["Statement"] | None = None
    span: SourceSpan = NO_SPAN


@dataclass
class PipeOperation:
    """One stage of a pipeline (map, filter, reduce or pmap)."""

    operator: str
    body: list["Statement"] = field(default_factory=list)
    acc_var: Identifier | None = None
    item_var: Identifier | None = None
    span: SourceSpan = NO_SPAN


@dataclass
class PipeExpression:
    """Left-associative pipeline (e.g., items | map: ... | filter: ...)."""

    input: "Expression"
    operations: list[PipeOperation] = field(default_factory=list)
    span: SourceSpan = NO_SPAN


# =============================================================================
# Program
# =============================================================================


@dataclass
class ProgramNode:
    """Root node of a parsed program."""

    statements: list["Statement"] = field(default_factory=list)
    comments: list[CommentNode] = field(default_factory=list)
    tokens: list[Token] = field(default_factory=list, repr=False, compare=False)
    """Token stream the program was parsed from."""

    span: SourceSpan = NO_SPAN


# =============================================================================
# Unions
# =============================================================================

Statement = Union[
    CommentStatement,
    ImportStatement,
    AgentDefinition,
    BlockDefinition,
    SessionStatement,
    LetBinding,
    ConstBinding,
    Reassignment,
    DoBlock,
    BlockInvocation,
    ParallelBlock,
    ForEachBlock,
    RepeatBlock,
    LoopBlock,
    TryBlock,
    ThrowStatement,
    ChoiceBlock,
    IfElseBlock,
    PipeExpression,
]
"""Any node that can appear in statement position."""

Expression = Union[
    StringLiteral,
    NumberLiteral,
    Identifier,
    Discretion,
    ArrayExpression,
    ObjectExpression,
    SessionStatement,
    DoBlock,
    BlockInvocation,
    ParallelBlock,
    ForEachBlock,
    RepeatBlock,
    PipeExpression,
]
"""Any node that can appear in value position."""

NODE_TYPES: tuple[type, ...] = (
    StringLiteral,
    NumberLiteral,
    Identifier,
    Discretion,
    ArrayExpression,
    ObjectExpression,
    ContextSpec,
    Property,
    CommentNode,
    CommentStatement,
    ImportStatement,
    AgentDefinition,
    BlockDefinition,
    SessionStatement,
    LetBinding,
    ConstBinding,
    Reassignment,
    DoBlock,
    BlockInvocation,
    ParallelBlock,
    ForEachBlock,
    RepeatBlock,
    LoopBlock,
    TryBlock,
    ThrowStatement,
    ChoiceOption,
    ChoiceBlock,
    ElifClause,
    IfElseBlock,
    PipeOperation,
    PipeExpression,
    ProgramNode,
)
"""Every AST node class."""

AstNode = Union[
    Statement,
    Expression,
    ContextSpec,
    Property,
    CommentNode,
    ChoiceOption,
    ElifClause,
    PipeOperation,
    ProgramNode,
]
"""Any AST node."""
