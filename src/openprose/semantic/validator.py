"""Semantic validator for OpenProse programs.

Validate a parsed program for semantic correctness: reference
resolution, scoping in textual order, const and read-only bindings,
enumerated property values, and structural rules such as non-empty
bodies. The validator never mutates the AST.
"""

import re
from dataclasses import dataclass, field

from openprose.ast.nodes import (
    AgentDefinition,
    ArrayExpression,
    AstNode,
    BlockDefinition,
    BlockInvocation,
    ChoiceBlock,
    CommentStatement,
    ConstBinding,
    ContextSpec,
    Discretion,
    DoBlock,
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
from openprose.ast.walk import AstVisitor, iter_nodes
from openprose.config import ValidatorOptions
from openprose.errors.codes import ErrorCode, format_error_message
from openprose.errors.diagnostics import Diagnostic
from openprose.grammar.tokens import SourceSpan
from openprose.log import get_logger
from openprose.semantic.errors import ValidationError
from openprose.semantic.scope import Scope, ScopeType, SymbolKind

logger = get_logger(__name__)

VALID_JOIN_STRATEGIES = frozenset({"all", "first", "any", "regardless"})
VALID_ON_FAIL_POLICIES = frozenset({"fail-fast", "continue", "ignore"})
VALID_BACKOFF_STRATEGIES = frozenset({"none", "linear", "exponential"})
PARALLEL_MODIFIERS = frozenset({"strategy", "on-fail", "count"})

PERMISSION_TYPES = frozenset({"read", "write", "execute", "bash", "network"})
PERMISSION_VALUES = frozenset({"deny", "allow", "prompt"})

AGENT_ONLY_PROPERTIES = frozenset({"permissions"})
SESSION_ONLY_PROPERTIES = frozenset({"context", "retry", "backoff"})
SHARED_PROPERTIES = frozenset({"model", "prompt", "skills"})

IMPORT_SOURCE_PREFIXES = ("github:", "npm:", "./", "../", "/")

COMMENT_MARKER = re.compile(r"\b(TODO|FIXME|HACK)\b")

MIN_DISCRETION_LENGTH = 3
"""Discretion text shorter than this is likely ambiguous."""

MIN_RACING_BRANCHES = 2
"""Branches needed for 'first' and 'any' strategies to mean anything."""


@dataclass
class ValidationResult:
    """Result of validating a program."""

    valid: bool
    """True when no error-severity problem was found."""

    errors: list[ValidationError] = field(default_factory=list)
    warnings: list[ValidationError] = field(default_factory=list)

    def diagnostics(self, file: str) -> list[Diagnostic]:
        """Convert errors and warnings to diagnostics in source order."""
        items = sorted(
            [*self.errors, *self.warnings],
            key=lambda e: (e.span.line, e.span.column),
        )
        return [e.to_diagnostic(file) for e in items]


class Validator(AstVisitor):
    """Semantic validator for OpenProse programs.

    Perform validation in two passes:
    - collect imports, agents and blocks at file scope
    - walk statements in textual order, binding variables as they appear
    """

    def __init__(self, options: ValidatorOptions | None = None) -> None:
        """Initialize the validator.

        Args:
            options: Validation options; defaults apply when omitted.

        """
        self._options = options or ValidatorOptions()
        self._problems: list[ValidationError] = []
        self._agents: dict[str, AgentDefinition] = {}
        self._blocks: dict[str, BlockDefinition] = {}
        self._skills: dict[str, ImportStatement] = {}
        self._binding_sites: dict[str, list[SourceSpan]] = {}
        self._file_scope = Scope(scope_type=ScopeType.FILE)
        self._scope = self._file_scope
        self._depth = 0

    def validate(self, program: ProgramNode) -> ValidationResult:
        """Validate a program.

        Args:
            program: Program to validate.

        Returns:
            ValidationResult with errors and warnings in source order.

        """
        self._problems = []
        self._agents = {}
        self._blocks = {}
        self._skills = {}
        self._file_scope = Scope(scope_type=ScopeType.FILE)
        self._scope = self._file_scope
        self._depth = 0
        self._binding_sites = self._collect_binding_sites(program)

        self._collect_definitions(program)
        self._check_comments(program)
        for stmt in program.statements:
            self.visit(stmt)

        ordered = sorted(self._problems, key=lambda e: (e.span.line, e.span.column))
        errors = [e for e in ordered if not e.is_warning]
        warnings = [e for e in ordered if e.is_warning]
        logger.debug(
            "Validation finished with %d errors and %d warnings",
            len(errors),
            len(warnings),
        )
        return ValidationResult(valid=not errors, errors=errors, warnings=warnings)

    # ==== Reporting ====

    def _add(self, problem: ValidationError) -> None:
        self._problems.append(problem)
        logger.debug("Validation %s: %s", problem.severity.value, problem.message)

    def _error(self, code: ErrorCode, message: str, span: SourceSpan) -> None:
        self._add(ValidationError.error(code, message, span))

    def _warn(self, code: ErrorCode, message: str, span: SourceSpan) -> None:
        self._add(ValidationError.warning(code, message, span))

    def _suggest(self, name: str, candidates: list[str], kind: str) -> str | None:
        if not candidates:
            return None
        for candidate in candidates:
            if candidate.lower().startswith(name.lower()[:3]):
                return f"did you mean '{candidate}'?"
        return f"defined {kind}s are: {', '.join(candidates)}"

    # ==== First pass ====

    @staticmethod
    def _collect_binding_sites(program: ProgramNode) -> dict[str, list[SourceSpan]]:
        names: list[Identifier] = []
        for node in iter_nodes(program):
            if isinstance(node, (LetBinding, ConstBinding)):
                names.append(node.name)
            elif isinstance(node, SessionStatement) and node.name is not None:
                names.append(node.name)
            elif isinstance(node, ParallelBlock):
                names.extend(s.name for s in node.body if isinstance(s, Reassignment))
        sites: dict[str, list[SourceSpan]] = {}
        for name in names:
            sites.setdefault(name.name, []).append(name.span)
        return sites

    def _collect_definitions(self, program: ProgramNode) -> None:
        seen_code = False
        for stmt in program.statements:
            if isinstance(stmt, ImportStatement):
                if seen_code:
                    self._error(
                        ErrorCode.E0005,
                        "import statements must appear at the top of the file",
                        stmt.span,
                    )
                self._collect_import(stmt)
                continue
            if not isinstance(stmt, CommentStatement):
                seen_code = True
            if isinstance(stmt, AgentDefinition):
                self._collect_agent(stmt)
            elif isinstance(stmt, BlockDefinition):
                self._collect_block(stmt)

    def _collect_import(self, stmt: ImportStatement) -> None:
        name = stmt.skill.value
        source = stmt.source.value
        if not name.strip():
            self._error(ErrorCode.E0005, "import skill name must not be empty", stmt.skill.span)
            return
        if not source.strip():
            self._error(ErrorCode.E0005, "import source must not be empty", stmt.source.span)
        elif not source.startswith(IMPORT_SOURCE_PREFIXES):
            self._warn(
                ErrorCode.W0003,
                f"import source '{source}' should start with "
                f"{', '.join(IMPORT_SOURCE_PREFIXES)}",
                stmt.source.span,
            )

        if name in self._skills:
            self._add(
                ValidationError.duplicate_definition(
                    "import",
                    name,
                    stmt.skill.span,
                    self._skills[name].skill.span,
                ),
            )
            return

        available = self._options.available_skills
        if available is not None and name not in available:
            self._error(
                ErrorCode.E0006,
                format_error_message(ErrorCode.E0006, name=name),
                stmt.skill.span,
            )
        self._skills[name] = stmt

    def _collect_agent(self, agent: AgentDefinition) -> None:
        name = agent.name.name
        if name in self._agents:
            self._add(
                ValidationError.duplicate_definition(
                    "agent",
                    name,
                    agent.span,
                    self._agents[name].span,
                ),
            )
            return
        self._agents[name] = agent

    def _collect_block(self, block: BlockDefinition) -> None:
        name = block.name.name
        if name in self._blocks:
            self._add(
                ValidationError.duplicate_definition(
                    "block",
                    name,
                    block.span,
                    self._blocks[name].span,
                ),
            )
            return
        if name in self._agents:
            self._error(
                ErrorCode.E0003,
                f"block '{name}' conflicts with agent name",
                block.name.span,
            )
        self._blocks[name] = block

    def _check_comments(self, program: ProgramNode) -> None:
        for comment in program.comments:
            match = COMMENT_MARKER.search(comment.text)
            if match is not None:
                self._warn(
                    ErrorCode.W0002,
                    format_error_message(ErrorCode.W0002, marker=match.group(1)),
                    comment.span,
                )

    # ==== Scopes and bindings ====

    def _visit_body(
        self,
        body: list[Statement],
        kind: str,
        span: SourceSpan,
        *,
        scope: Scope | None = None,
    ) -> None:
        """Validate a nested statement list.

        Args:
            body: Statements of the body.
            kind: Construct name used in the empty-body message.
            span: Span reported when the body is empty.
            scope: Child scope for the body; None shares the current one.

        """
        if not body:
            self._add(ValidationError.empty_body(f"{kind} body", span))
            return
        outer = self._scope
        if scope is not None:
            self._scope = scope
        self._depth += 1
        try:
            for stmt in body:
                self.visit(stmt)
        finally:
            self._depth -= 1
            self._scope = outer

    def _child_scope(self, scope_type: ScopeType) -> Scope:
        return Scope(scope_type=scope_type, parent=self._scope)

    def _define_variable(
        self,
        name: Identifier,
        kind: SymbolKind,
        node: AstNode,
        scope: Scope | None = None,
    ) -> None:
        target = scope if scope is not None else self._scope
        if name.name in self._agents:
            self._error(
                ErrorCode.E0003,
                f"variable '{name.name}' conflicts with agent name",
                name.span,
            )
            return
        existing = target.lookup_local(name.name)
        if existing is not None:
            self._add(
                ValidationError.duplicate_definition(
                    "variable",
                    name.name,
                    name.span,
                    existing.span,
                ),
            )
            return
        if target.lookup_outer(name.name) is not None:
            self._warn(
                ErrorCode.W0001,
                format_error_message(ErrorCode.W0001, name=name.name),
                name.span,
            )
        target.define(name.name, kind, node=node, span=name.span)

    def _check_variable(self, name: str, span: SourceSpan, where: str | None = None) -> None:
        if self._scope.lookup(name) is not None:
            return
        if any(
            (site.line, site.column) > (span.line, span.column)
            for site in self._binding_sites.get(name, ())
        ):
            self._add(ValidationError.used_before_definition(name, span))
            return
        if where is None:
            candidates = self._scope.visible_names()
            self._add(
                ValidationError.undefined_reference(
                    "variable",
                    name,
                    span,
                    suggestion=self._suggest(name, candidates, "variable"),
                ),
            )
        else:
            self._error(ErrorCode.E0001, f"undefined variable '{name}' in {where}", span)

    # ==== Definitions ====

    def visit_comment_statement(self, node: CommentStatement) -> None:
        """Comments are checked once from the program's comment list."""

    def visit_import_statement(self, node: ImportStatement) -> None:
        if self._depth > 0:
            self._error(
                ErrorCode.E0005,
                "import statements must appear at the top of the file",
                node.span,
            )

    def visit_agent_definition(self, node: AgentDefinition) -> None:
        if self._depth > 0:
            self._error(ErrorCode.E0011, "agent definitions must be at top level", node.span)
        self._check_properties(node.properties, "agent")
        name = node.name.name
        if node.get_property("model") is None:
            self._warn(ErrorCode.W0003, f"agent '{name}' has no 'model' property", node.name.span)
        if node.get_property("prompt") is None:
            self._warn(ErrorCode.W0003, f"agent '{name}' has no 'prompt' property", node.name.span)

    def visit_block_definition(self, node: BlockDefinition) -> None:
        if self._depth > 0:
            self._error(ErrorCode.E0011, "block definitions must be at top level", node.span)
        scope = Scope(scope_type=ScopeType.BLOCK, parent=self._file_scope)
        for param in node.params:
            existing = scope.lookup_local(param.name)
            if existing is not None:
                self._add(
                    ValidationError.duplicate_definition(
                        "parameter",
                        param.name,
                        param.span,
                        existing.span,
                    ),
                )
                continue
            scope.define(param.name, SymbolKind.PARAMETER, node=param, span=param.span)

        outer = self._scope
        self._scope = self._file_scope
        try:
            self._visit_body(node.body, "block", node.span, scope=scope)
        finally:
            self._scope = outer

    # ==== Sessions and properties ====

    def visit_session_statement(self, node: SessionStatement) -> None:
        prompt_prop = node.get_property("prompt")
        if node.prompt is not None and prompt_prop is not None:
            self._error(
                ErrorCode.E0003,
                "session has both an inline prompt and a 'prompt' property",
                prompt_prop.span,
            )

        if node.prompt is None and prompt_prop is None and node.agent is None:
            self._error(
                ErrorCode.E0010,
                "session requires a prompt or an agent reference",
                node.span,
            )

        if node.prompt is not None:
            if not node.prompt.value.strip():
                self._error(ErrorCode.E0004, "session prompt must not be empty", node.prompt.span)
            self.visit(node.prompt)

        if node.agent is not None and node.agent.name not in self._agents:
            self._add(
                ValidationError.undefined_reference(
                    "agent",
                    node.agent.name,
                    node.agent.span,
                    suggestion=self._suggest(node.agent.name, list(self._agents), "agent"),
                ),
            )

        self._check_properties(node.properties, "session")

        if node.name is not None:
            self._define_variable(node.name, SymbolKind.RESULT, node)

    def _check_properties(self, properties: list[Property], owner: str) -> None:
        seen: dict[str, Property] = {}
        for prop in properties:
            if prop.name in seen:
                self._add(
                    ValidationError.duplicate_definition(
                        "property",
                        prop.name,
                        prop.name_span,
                        seen[prop.name].name_span,
                    ),
                )
                continue
            seen[prop.name] = prop
            self._check_property(prop, owner)

    def _check_property(self, prop: Property, owner: str) -> None:
        name = prop.name
        if name in AGENT_ONLY_PROPERTIES and owner != "agent":
            self._warn(ErrorCode.W0004, f"'{name}' is only valid on agents", prop.name_span)
            return
        if name in SESSION_ONLY_PROPERTIES and owner != "session":
            self._warn(ErrorCode.W0004, f"'{name}' is only valid on sessions", prop.name_span)
            return
        if name not in SHARED_PROPERTIES | AGENT_ONLY_PROPERTIES | SESSION_ONLY_PROPERTIES:
            self._warn(
                ErrorCode.W0004,
                format_error_message(ErrorCode.W0004, name=name),
                prop.name_span,
            )
            return

        checks = {
            "model": self._check_model,
            "prompt": self._check_prompt,
            "skills": self._check_skills,
            "permissions": self._check_permissions,
            "context": self._check_context,
            "retry": self._check_retry,
            "backoff": self._check_backoff,
        }
        checks[name](prop, owner)

    def _check_model(self, prop: Property, owner: str) -> None:  # noqa: ARG002
        value = prop.value
        if isinstance(value, (Identifier, StringLiteral)):
            model = value.name if isinstance(value, Identifier) else value.value
            if model not in self._options.models:
                self._add(
                    ValidationError.invalid_value("model", model, self._options.models, value.span),
                )
            return
        self._error(
            ErrorCode.E0004,
            f"model must be one of: {', '.join(self._options.models)}",
            prop.span,
        )

    def _check_prompt(self, prop: Property, owner: str) -> None:
        value = prop.value
        if not isinstance(value, StringLiteral):
            self._error(ErrorCode.E0004, "prompt must be a string literal", prop.span)
            return
        if not value.value.strip():
            self._error(ErrorCode.E0004, f"{owner} prompt must not be empty", value.span)
        if owner == "session":
            self.visit(value)

    def _check_skills(self, prop: Property, owner: str) -> None:  # noqa: ARG002
        value = prop.value
        if not isinstance(value, ArrayExpression):
            self._error(ErrorCode.E0004, "skills must be an array of skill names", prop.span)
            return
        if not value.elements:
            self._warn(ErrorCode.W0003, "skills array is empty", value.span)
        for element in value.elements:
            if not isinstance(element, StringLiteral):
                self._error(ErrorCode.E0004, "skill name must be a string", element.span)
            elif element.value not in self._skills:
                self._add(
                    ValidationError.undefined_reference(
                        "skill",
                        element.value,
                        element.span,
                        suggestion=f"add: import \"{element.value}\" from \"...\"",
                    ),
                )

    def _check_permissions(self, prop: Property, owner: str) -> None:  # noqa: ARG002
        if prop.children:
            rules = prop.children
        elif isinstance(prop.value, ObjectExpression):
            rules = prop.value.entries
        else:
            self._error(
                ErrorCode.E0004,
                "permissions must be a block of permission rules",
                prop.span,
            )
            return

        for rule in rules:
            if rule.name not in PERMISSION_TYPES:
                self._warn(
                    ErrorCode.W0004,
                    f"unknown permission type '{rule.name}'",
                    rule.name_span,
                )
            value = rule.value
            if isinstance(value, ArrayExpression):
                for element in value.elements:
                    if not isinstance(element, StringLiteral):
                        self._error(
                            ErrorCode.E0004,
                            "permission pattern must be a string",
                            element.span,
                        )
            elif isinstance(value, Identifier):
                if value.name not in PERMISSION_VALUES:
                    self._warn(
                        ErrorCode.W0004,
                        f"unknown permission value '{value.name}'; "
                        "expected deny, allow or prompt",
                        value.span,
                    )
            else:
                self._error(
                    ErrorCode.E0004,
                    "permission value must be an array of patterns or an identifier",
                    rule.span,
                )

    def _check_context(self, prop: Property, owner: str) -> None:  # noqa: ARG002
        value = prop.value
        if not isinstance(value, ContextSpec):
            self._error(
                ErrorCode.E0004,
                "context must be a variable, a list of variables or an object of variables",
                prop.span,
            )
            return
        for ref in value.refs:
            self._check_variable(ref.name, ref.span, "context")

    def _check_retry(self, prop: Property, owner: str) -> None:  # noqa: ARG002
        value = prop.value
        if not isinstance(value, NumberLiteral):
            self._error(ErrorCode.E0004, "retry must be a number", prop.span)
            return
        if not value.is_integer:
            self._error(
                ErrorCode.E0004,
                f"retry count must be an integer, got {value.raw}",
                value.span,
            )
        elif value.value < 1:
            self._error(
                ErrorCode.E0004,
                f"retry count must be positive, got {value.raw}",
                value.span,
            )
        elif value.value > self._options.max_retry_warning:
            self._warn(
                ErrorCode.W0003,
                f"retry count {value.raw} is unusually high",
                value.span,
            )

    def _check_backoff(self, prop: Property, owner: str) -> None:  # noqa: ARG002
        value = prop.value
        if isinstance(value, StringLiteral):
            if value.value not in VALID_BACKOFF_STRATEGIES:
                self._add(
                    ValidationError.invalid_value(
                        "backoff strategy",
                        value.value,
                        VALID_BACKOFF_STRATEGIES,
                        value.span,
                    ),
                )
        elif not isinstance(value, NumberLiteral):
            self._error(
                ErrorCode.E0004,
                "backoff must be \"none\", \"linear\", \"exponential\" or a delay in ms",
                prop.span,
            )

    # ==== Bindings ====

    def visit_let_binding(self, node: LetBinding) -> None:
        self.visit(node.value)
        self._define_variable(node.name, SymbolKind.VARIABLE, node)

    def visit_const_binding(self, node: ConstBinding) -> None:
        self.visit(node.value)
        self._define_variable(node.name, SymbolKind.CONSTANT, node)

    def visit_reassignment(self, node: Reassignment) -> None:
        self.visit(node.value)
        name = node.name.name
        symbol = self._scope.lookup(name)
        if symbol is None:
            self._error(
                ErrorCode.E0001,
                f"cannot assign to undeclared variable '{name}'",
                node.name.span,
            )
        elif symbol.kind == SymbolKind.CONSTANT:
            self._add(ValidationError.const_reassignment(name, node.span, symbol.span))
        elif symbol.is_read_only:
            self._error(ErrorCode.E0009, f"cannot reassign read-only binding '{name}'", node.span)

    # ==== Control flow ====

    def visit_do_block(self, node: DoBlock) -> None:
        self._visit_body(node.body, "do", node.span)

    def visit_block_invocation(self, node: BlockInvocation) -> None:
        name = node.name.name
        block = self._blocks.get(name)
        if block is None:
            self._add(
                ValidationError.undefined_reference(
                    "block",
                    name,
                    node.name.span,
                    suggestion=self._suggest(name, list(self._blocks), "block"),
                ),
            )
        elif len(block.params) != len(node.args):
            self._error(
                ErrorCode.E0012,
                format_error_message(
                    ErrorCode.E0012,
                    name=name,
                    expected=str(len(block.params)),
                    actual=str(len(node.args)),
                ),
                node.span,
            )
        for arg in node.args:
            self.visit(arg)

    def visit_parallel_block(self, node: ParallelBlock) -> None:
        branches = [s for s in node.body if not isinstance(s, CommentStatement)]
        self._check_parallel_modifiers(node.modifiers, node.join_strategy, node.count, node.span)

        if not branches:
            self._add(ValidationError.empty_body("parallel block", node.span))
            return

        strategy = node.join_strategy
        if strategy in ("first", "any") and len(branches) < MIN_RACING_BRANCHES:
            self._error(
                ErrorCode.E0011,
                f"parallel '{strategy}' strategy needs at least {MIN_RACING_BRANCHES} branches",
                node.span,
            )
        if strategy == "any" and node.count is not None and node.count > len(branches):
            self._warn(
                ErrorCode.W0003,
                f"count {node.count} exceeds the number of branches ({len(branches)})",
                node.span,
            )

        self._depth += 1
        try:
            for stmt in node.body:
                if isinstance(stmt, Reassignment):
                    self.visit(stmt.value)
                    self._define_variable(stmt.name, SymbolKind.RESULT, stmt)
                else:
                    self.visit(stmt)
        finally:
            self._depth -= 1

    def _check_parallel_modifiers(
        self,
        modifiers: list[Property],
        strategy: str | None,
        count: int | None,
        span: SourceSpan,
    ) -> None:
        for modifier in modifiers:
            value = modifier.value
            if modifier.name not in PARALLEL_MODIFIERS:
                self._warn(
                    ErrorCode.W0004,
                    f"unknown parallel modifier '{modifier.name}'",
                    modifier.name_span,
                )
            elif modifier.name == "strategy" and isinstance(value, StringLiteral):
                if value.value not in VALID_JOIN_STRATEGIES:
                    self._add(
                        ValidationError.invalid_value(
                            "join strategy",
                            value.value,
                            VALID_JOIN_STRATEGIES,
                            value.span,
                        ),
                    )
            elif modifier.name == "on-fail":
                valid = isinstance(value, StringLiteral) and value.value in VALID_ON_FAIL_POLICIES
                if not valid:
                    shown = value.value if isinstance(value, StringLiteral) else modifier.name
                    self._add(
                        ValidationError.invalid_value(
                            "on-fail policy",
                            str(shown),
                            VALID_ON_FAIL_POLICIES,
                            modifier.span,
                        ),
                    )
            elif modifier.name == "count":
                self._check_count(modifier, strategy)

        if strategy == "any" and count is None and not any(m.name == "count" for m in modifiers):
            self._warn(
                ErrorCode.W0003,
                "parallel 'any' without count; count defaults to 1",
                modifiers[0].span if modifiers else span,
            )

    def _check_count(self, modifier: Property, strategy: str | None) -> None:
        value = modifier.value
        if strategy != "any":
            self._error(
                ErrorCode.E0004,
                "'count' is only valid with the 'any' strategy",
                modifier.span,
            )
        if not isinstance(value, NumberLiteral) or not value.is_integer:
            self._error(ErrorCode.E0004, "count must be an integer", modifier.span)
        elif value.value < 1:
            self._error(
                ErrorCode.E0004,
                f"count must be at least 1, got {value.raw}",
                modifier.span,
            )

    def visit_for_each_block(self, node: ForEachBlock) -> None:
        self.visit(node.collection)
        if node.parallel:
            self._check_parallel_modifiers(
                node.modifiers,
                node.join_strategy,
                node.count,
                node.span,
            )
        scope = self._child_scope(ScopeType.LOOP)
        self._define_variable(node.item_var, SymbolKind.LOOP_VARIABLE, node, scope)
        if node.index_var is not None:
            self._define_variable(node.index_var, SymbolKind.LOOP_VARIABLE, node, scope)
        self._visit_body(node.body, "for", node.span, scope=scope)

    def visit_repeat_block(self, node: RepeatBlock) -> None:
        count = node.count
        if isinstance(count, NumberLiteral):
            if not count.is_integer:
                self._error(
                    ErrorCode.E0004,
                    f"repeat count must be an integer, got {count.raw}",
                    count.span,
                )
            elif count.value < 1:
                self._error(
                    ErrorCode.E0004,
                    f"repeat count must be positive, got {count.raw}",
                    count.span,
                )
        else:
            self._check_variable(count.name, count.span)

        scope = self._child_scope(ScopeType.LOOP)
        if node.index_var is not None:
            self._define_variable(node.index_var, SymbolKind.LOOP_VARIABLE, node, scope)
        self._visit_body(node.body, "repeat", node.span, scope=scope)

    def visit_loop_block(self, node: LoopBlock) -> None:
        if node.condition is not None:
            self.visit(node.condition)
        limit = node.max_iterations
        if limit is None:
            if node.variant is None:
                self._warn(
                    ErrorCode.W0003,
                    "unbounded loop without max iterations; consider adding (max: N)",
                    node.span,
                )
        elif not limit.is_integer:
            self._error(
                ErrorCode.E0004,
                f"max iterations must be an integer, got {limit.raw}",
                limit.span,
            )
        elif limit.value < 1:
            self._error(
                ErrorCode.E0004,
                f"max iterations must be positive, got {limit.raw}",
                limit.span,
            )

        scope = self._child_scope(ScopeType.LOOP)
        if node.index_var is not None:
            self._define_variable(node.index_var, SymbolKind.LOOP_VARIABLE, node, scope)
        self._visit_body(node.body, "loop", node.span, scope=scope)

    def visit_try_block(self, node: TryBlock) -> None:
        self._visit_body(node.body, "try", node.span)
        if node.catch_body is None and node.finally_body is None:
            self._error(
                ErrorCode.E0011,
                "try block requires 'catch' or 'finally'",
                node.span,
            )
        if node.catch_body is not None:
            scope = self._child_scope(ScopeType.CATCH)
            if node.error_var is not None:
                self._define_variable(node.error_var, SymbolKind.ERROR_VARIABLE, node, scope)
            self._visit_body(node.catch_body, "catch", node.span, scope=scope)
        if node.finally_body is not None:
            self._visit_body(node.finally_body, "finally", node.span)

    def visit_throw_statement(self, node: ThrowStatement) -> None:
        if node.message is not None:
            if not node.message.value.strip():
                self._warn(ErrorCode.W0003, "throw message is empty", node.message.span)
            self.visit(node.message)

    def visit_choice_block(self, node: ChoiceBlock) -> None:
        self.visit(node.criteria)
        if not node.options:
            self._error(
                ErrorCode.E0011,
                "choice block must have at least one option",
                node.span,
            )
            return
        labels: set[str] = set()
        for option in node.options:
            label = option.label.value
            if label in labels:
                self._warn(ErrorCode.W0003, f"duplicate option label '{label}'", option.label.span)
            labels.add(label)
            scope = self._child_scope(ScopeType.OPTION)
            self._visit_body(option.body, "option", option.span, scope=scope)

    def visit_if_else_block(self, node: IfElseBlock) -> None:
        self.visit(node.condition)
        self._visit_body(node.then_body, "if", node.span)
        for clause in node.elif_clauses:
            self.visit(clause.condition)
            self._visit_body(clause.body, "elif", clause.span)
        if node.else_body is not None:
            self._visit_body(node.else_body, "else", node.span)

    def visit_pipe_expression(self, node: PipeExpression) -> None:
        self.visit(node.input)
        if not node.operations:
            self._error(
                ErrorCode.E0011,
                "pipeline must have at least one operation",
                node.span,
            )
            return
        for op in node.operations:
            scope = self._child_scope(ScopeType.PIPE)
            if op.operator == "reduce":
                if op.acc_var is None or op.item_var is None:
                    self._error(
                        ErrorCode.E0010,
                        "reduce requires (accumulator, item) names",
                        op.span,
                    )
                else:
                    self._define_variable(op.acc_var, SymbolKind.LOOP_VARIABLE, op, scope)
                    self._define_variable(op.item_var, SymbolKind.LOOP_VARIABLE, op, scope)
            else:
                scope.define("item", SymbolKind.LOOP_VARIABLE, node=op, span=op.span)
            self._visit_body(op.body, "pipeline operation", op.span, scope=scope)

    # ==== Expressions ====

    def visit_identifier(self, node: Identifier) -> None:
        self._check_variable(node.name, node.span)

    def visit_string_literal(self, node: StringLiteral) -> None:
        for escape in node.escapes:
            if escape.kind == "invalid" and not escape.sequence.startswith("\\u"):
                self._warn(
                    ErrorCode.W0003,
                    f"unrecognized escape sequence '{escape.sequence}'",
                    node.span,
                )
        for segment in node.interpolations:
            self._check_variable(segment.name, segment.span, "interpolation")

    def visit_number_literal(self, node: NumberLiteral) -> None:
        """Numbers need no checks."""

    def visit_discretion(self, node: Discretion) -> None:
        text = node.text.strip()
        if not text:
            self._error(ErrorCode.E0004, "discretion condition must not be empty", node.span)
        elif len(text) < MIN_DISCRETION_LENGTH:
            self._warn(
                ErrorCode.W0003,
                "discretion condition is very short and may be ambiguous",
                node.span,
            )

    def visit_object_expression(self, node: ObjectExpression) -> None:
        for entry in node.entries:
            if entry.value is not None:
                self.visit(entry.value)


def validate(
    program: ProgramNode,
    options: ValidatorOptions | None = None,
) -> ValidationResult:
    """Validate a parsed program.

    Args:
        program: Program from `parse`.
        options: Optional validation options.

    Returns:
        ValidationResult with errors and warnings.

    """
    return Validator(options).validate(program)
