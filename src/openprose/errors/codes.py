"""Error code definitions for the OpenProse toolchain.

Provide standardized error codes following compiler conventions for
categorizing and identifying specific error conditions.
"""

from enum import Enum

from openprose.log import get_logger

logger = get_logger(__name__)

_CATEGORIES = (
    (3, "reference"),
    (4, "value"),
    (6, "import"),
    (8, "syntax"),
)
"""Highest code number of each error category, in ascending order."""


class ErrorCode(str, Enum):
    """Toolchain error codes.

    Error codes follow the convention E0001-E9999 where the number
    indicates the error category:
    - E0001-E0003: Reference errors (undefined or duplicate symbols)
    - E0004: Invalid values for enumerated properties
    - E0005-E0006: Import errors
    - E0007-E0008: Syntax errors
    - E0009 and above: Semantic errors
    Warning codes use the W prefix.
    """

    # Reference errors
    E0001 = "E0001"
    """Undefined reference to agent, block, skill, or variable."""

    E0002 = "E0002"
    """Variable used before definition."""

    E0003 = "E0003"
    """Duplicate definition."""

    # Value errors
    E0004 = "E0004"
    """Invalid value for an enumerated or numeric property."""

    # Import errors
    E0005 = "E0005"
    """Misplaced or malformed import."""

    E0006 = "E0006"
    """Imported skill could not be resolved."""

    # Syntax errors
    E0007 = "E0007"
    """Invalid token or unexpected end of input."""

    E0008 = "E0008"
    """Mismatched indentation."""

    # Semantic errors
    E0009 = "E0009"
    """Reassignment of a const binding."""

    E0010 = "E0010"
    """Missing required property."""

    E0011 = "E0011"
    """Structural violation (empty body, misplaced definition)."""

    E0012 = "E0012"
    """Block invoked with the wrong number of arguments."""

    # Warning codes
    W0001 = "W0001"
    """Variable shadows an outer variable."""

    W0002 = "W0002"
    """Comment carries a TODO, FIXME or HACK marker."""

    W0003 = "W0003"
    """Suspicious but legal construct."""

    W0004 = "W0004"
    """Unknown or misplaced property."""

    @property
    def is_warning(self) -> bool:
        """Check whether this code denotes a warning."""
        return self.value.startswith("W")

    @property
    def category(self) -> str:
        """Get the category name: reference, value, import, syntax, semantic or lint."""
        if self.is_warning:
            return "lint"
        number = int(self.value[1:])
        return next((name for limit, name in _CATEGORIES if number <= limit), "semantic")


# Error message templates for each code
ERROR_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.E0001: "undefined {kind} '{name}'",
    ErrorCode.E0002: "variable '{name}' used before definition",
    ErrorCode.E0003: "duplicate {kind} name '{name}'",
    ErrorCode.E0004: "invalid {kind} '{value}'",
    ErrorCode.E0005: "invalid import: {message}",
    ErrorCode.E0006: "imported skill '{name}' could not be resolved",
    ErrorCode.E0007: "invalid token or unexpected end of input",
    ErrorCode.E0008: "mismatched indentation",
    ErrorCode.E0009: "cannot reassign const binding '{name}'",
    ErrorCode.E0010: "missing required property '{field}' in {kind}",
    ErrorCode.E0011: "{kind} must not be empty",
    ErrorCode.E0012: "block '{name}' expects {expected} argument(s), got {actual}",
    ErrorCode.W0001: "variable '{name}' shadows an outer variable",
    ErrorCode.W0002: "{marker} comment found",
    ErrorCode.W0003: "{message}",
    ErrorCode.W0004: "unknown property '{name}'",
}


def format_error_message(code: ErrorCode, **kwargs: str) -> str:
    """Format an error message with the given parameters.

    Args:
        code: The error code.
        **kwargs: Parameters to substitute in the message template.

    Returns:
        Formatted error message string.

    """
    template = ERROR_MESSAGES.get(code, "unknown error")
    try:
        return template.format(**kwargs)
    except KeyError as e:
        logger.debug("Missing parameter for error message: %s", e)
        return template
