"""Canonical code generation for OpenProse."""

from openprose.codegen.comments import StrippedComment, StrippedSource, strip_comments
from openprose.codegen.emitter import CanonicalEmitter
from openprose.codegen.generator import CanonicalGenerator, CompiledOutput

__all__ = [
    "CanonicalEmitter",
    "CanonicalGenerator",
    "CompiledOutput",
    "StrippedComment",
    "StrippedSource",
    "strip_comments",
]
