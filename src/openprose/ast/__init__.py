"""AST node definitions and traversal for OpenProse programs."""

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
from openprose.ast.walk import AstVisitor, iter_child_nodes, iter_nodes, walk_ast

__all__ = [
    "AgentDefinition",
    "ArrayExpression",
    "AstVisitor",
    "BlockDefinition",
    "BlockInvocation",
    "ChoiceBlock",
    "ChoiceOption",
    "CommentNode",
    "CommentStatement",
    "ConstBinding",
    "ContextSpec",
    "Discretion",
    "DoBlock",
    "ElifClause",
    "Expression",
    "ForEachBlock",
    "Identifier",
    "IfElseBlock",
    "ImportStatement",
    "LetBinding",
    "LoopBlock",
    "NumberLiteral",
    "ObjectExpression",
    "ParallelBlock",
    "PipeExpression",
    "PipeOperation",
    "ProgramNode",
    "Property",
    "Reassignment",
    "RepeatBlock",
    "SessionStatement",
    "Statement",
    "StringLiteral",
    "ThrowStatement",
    "TryBlock",
    "iter_child_nodes",
    "iter_nodes",
    "walk_ast",
]
