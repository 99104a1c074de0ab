"""Canonical generator for OpenProse programs.

Transform a parsed program into canonical OpenProse text with source
mappings. Canonical text is itself a valid program; generating from it
again yields identical text.
"""

from dataclasses import dataclass, field

from openprose.ast.nodes import AgentDefinition, Identifier, ProgramNode
from openprose.ast.walk import iter_nodes
from openprose.codegen.comments import StrippedComment
from openprose.codegen.emitter import CanonicalEmitter
from openprose.codegen.visitors.statements import NameAllocator, StatementVisitor
from openprose.config import CompilerOptions
from openprose.grammar.parser import parse
from openprose.log import get_logger
from openprose.sourcemap.registry import SourceMap

logger = get_logger(__name__)

DEFAULT_SOURCE_FILE = "<input>"


@dataclass
class CompiledOutput:
    """Result of canonical compilation."""

    code: str
    """Canonical program text."""

    stripped_comments: list[StrippedComment] = field(default_factory=list)
    """Comments of the source program, kept for tooling."""

    source_map: SourceMap | None = None
    """Canonical-to-source line mappings, when enabled."""

    target: str = "canonical"

    def canonical_program(self) -> ProgramNode:
        """Parse the canonical text back into a program.

        Returns:
            The program parsed from `code`.

        """
        return parse(self.code).program


class CanonicalGenerator:
    """Generate canonical text from a program AST.

    Expand the surface sugar of a parsed program into its canonical
    form, along with source mappings for diagnostic translation.
    """

    def __init__(self, options: CompilerOptions | None = None) -> None:
        """Initialize the generator.

        Args:
            options: Compiler options; defaults apply when omitted.

        """
        self._options = options or CompilerOptions()
        logger.debug("Created CanonicalGenerator")

    def generate(
        self,
        program: ProgramNode,
        source_file: str = DEFAULT_SOURCE_FILE,
    ) -> CompiledOutput:
        """Generate canonical text for a program.

        Args:
            program: Parsed program, normally already validated.
            source_file: Name of the original source file for mappings.

        Returns:
            CompiledOutput with the canonical text and its source map.

        """
        logger.debug("Generating canonical text for %s", source_file)

        emitter = CanonicalEmitter(
            source_file,
            indent_width=self._options.indent,
            record_mappings=self._options.source_maps,
        )
        agents: dict[str, AgentDefinition] = {}
        for stmt in program.statements:
            if isinstance(stmt, AgentDefinition):
                agents.setdefault(stmt.name.name, stmt)
        used = {node.name for node in iter_nodes(program) if isinstance(node, Identifier)}

        visitor = StatementVisitor(
            emitter,
            agents=agents,
            names=NameAllocator(used),
            preserve_comments=self._options.preserve_comments,
        )
        for stmt in program.statements:
            visitor.visit_statement(stmt)

        stripped = [
            StrippedComment(span=c.span, text=c.text, is_inline=c.is_inline)
            for c in program.comments
        ]
        mappings = emitter.mappings
        source_map = SourceMap(source_file, mappings) if self._options.source_maps else None

        logger.debug(
            "Generated %d lines with %d source mappings",
            emitter.line_count,
            len(mappings),
        )
        return CompiledOutput(
            code=emitter.render(),
            stripped_comments=stripped,
            source_map=source_map,
            target=self._options.target,
        )
