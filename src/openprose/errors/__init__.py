"""Error handling and diagnostics for the OpenProse toolchain.

Provide error codes, diagnostic messages, and rustc-style or compact
formatting for reporting problems with source context.
"""

from openprose.errors.codes import ErrorCode
from openprose.errors.diagnostics import Diagnostic, Severity
from openprose.errors.reporter import DiagnosticReporter, format_success_message, summarize

__all__ = [
    "Diagnostic",
    "DiagnosticReporter",
    "ErrorCode",
    "Severity",
    "format_success_message",
    "summarize",
]
