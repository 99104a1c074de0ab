"""Source mapping between canonical output and original source."""

from openprose.sourcemap.registry import SourceMap, SourceMapping

__all__ = ["SourceMap", "SourceMapping"]
