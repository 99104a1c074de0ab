"""Main compiler for OpenProse.

Provide the primary compilation and validation functions for turning
OpenProse source text into canonical text, and the exception hierarchy
raised when a caller asks for a compilation that cannot succeed.
"""

from openprose.ast.nodes import ProgramNode
from openprose.codegen.generator import DEFAULT_SOURCE_FILE, CanonicalGenerator, CompiledOutput
from openprose.config import CompilerOptions, ProseConfig, ValidatorOptions
from openprose.errors.diagnostics import Diagnostic, Severity
from openprose.grammar.parser import ParseResult, parse
from openprose.log import get_logger
from openprose.semantic.validator import validate

logger = get_logger(__name__)

SUPPORTED_TARGETS = frozenset({"canonical"})


def compile(  # noqa: A001
    program: ProgramNode,
    options: CompilerOptions | None = None,
    *,
    source_file: str = DEFAULT_SOURCE_FILE,
) -> CompiledOutput:
    """Compile a validated program to canonical text.

    Args:
        program: Program that already passed validation.
        options: Compiler options; defaults apply when omitted.
        source_file: Name of the original source file for mappings.

    Returns:
        CompiledOutput with canonical text, comments and source map.

    Raises:
        ProseCompileError: If the requested target is not supported.

    """
    options = options or CompilerOptions()
    if options.target not in SUPPORTED_TARGETS:
        msg = f"unsupported compile target '{options.target}'"
        raise ProseCompileError(msg, filename=source_file)

    return CanonicalGenerator(options).generate(program, source_file)


def _parse_diagnostics(result: ParseResult, filename: str) -> list[Diagnostic]:
    diagnostics = [e.to_diagnostic(filename) for e in result.lex_errors]
    diagnostics.extend(e.to_diagnostic(filename) for e in result.errors)
    return diagnostics


def validate_source(
    source: str,
    filename: str = DEFAULT_SOURCE_FILE,
    options: ValidatorOptions | None = None,
) -> list[Diagnostic]:
    """Validate OpenProse source and return diagnostics.

    Semantic validation only runs on source that lexes and parses
    cleanly; otherwise the syntax diagnostics are returned alone.

    Args:
        source: Program source text.
        filename: Name of the source file for diagnostics.
        options: Optional validation options.

    Returns:
        List of diagnostics (empty if valid), in source order.

    """
    logger.debug("Validating OpenProse source: %s", filename)

    result = parse(source)
    if result.has_errors:
        return _parse_diagnostics(result, filename)

    # The validator reports the lexer's escape warnings itself.
    diagnostics = [
        e.to_diagnostic(filename)
        for e in result.lex_errors
        if e.severity != Severity.WARNING
    ]
    diagnostics.extend(validate(result.program, options).diagnostics(filename))
    diagnostics.sort(key=lambda d: (d.line, d.column))
    return diagnostics


def compile_source(
    source: str,
    filename: str = DEFAULT_SOURCE_FILE,
    config: ProseConfig | None = None,
) -> CompiledOutput:
    """Compile OpenProse source text to canonical text.

    Run the complete pipeline: tokenize, parse, validate and generate.

    Args:
        source: Program source text.
        filename: Name of the source file for diagnostics and mappings.
        config: Toolchain configuration; defaults apply when omitted.

    Returns:
        CompiledOutput for the program.

    Raises:
        ProseSyntaxError: If lexing or parsing fails.
        ProseValidationError: If semantic validation fails.
        ProseCompileError: If the configured target is not supported.

    """
    logger.debug("Compiling OpenProse file: %s", filename)
    config = config or ProseConfig()

    result = parse(source)
    if result.has_errors:
        diagnostics = [d for d in _parse_diagnostics(result, filename) if d.is_error]
        msg = f"syntax errors in {filename}"
        raise ProseSyntaxError(msg, filename=filename, diagnostics=diagnostics)

    validation = validate(result.program, config.validator)
    if not validation.valid:
        diagnostics = [e.to_diagnostic(filename) for e in validation.errors]
        msg = f"validation failed for {filename}"
        raise ProseValidationError(msg, filename=filename, diagnostics=diagnostics)

    output = compile(result.program, config.compiler, source_file=filename)
    logger.debug("Compiled %s to %d characters", filename, len(output.code))
    return output


class ProseError(Exception):
    """Base exception for OpenProse compiler errors."""

    def __init__(self, message: str, *, filename: str | None = None) -> None:
        """Initialize OpenProse error.

        Args:
            message: Error message.
            filename: Optional source filename.

        """
        super().__init__(message)
        self.filename = filename


class _DiagnosticError(ProseError):
    """Error carrying the diagnostics that caused it."""

    def __init__(
        self,
        message: str,
        *,
        filename: str | None = None,
        diagnostics: list[Diagnostic] | None = None,
    ) -> None:
        super().__init__(message, filename=filename)
        self.diagnostics = diagnostics or []

    def __str__(self) -> str:
        """Format error with every diagnostic on its own line.

        Returns:
            User-friendly error message including all diagnostics.

        """
        if not self.diagnostics:
            return super().__str__()

        lines = [super().__str__()]
        for diagnostic in self.diagnostics:
            lines.append(f"  - {diagnostic.format_compact()}")
            if diagnostic.help_text:
                lines.append(f"    help: {diagnostic.help_text}")
        return "\n".join(lines)


class ProseSyntaxError(_DiagnosticError):
    """Exception for lexing and parsing errors."""


class ProseValidationError(_DiagnosticError):
    """Exception for semantic validation errors."""


class ProseCompileError(ProseError):
    """Exception for compile requests that cannot be honored."""
