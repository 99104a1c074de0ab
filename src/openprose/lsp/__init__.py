"""Editor support for OpenProse (LSP semantic tokens)."""

from openprose.lsp.semantic_tokens import (
    TOKEN_MODIFIER_NAMES,
    TOKEN_TYPE_NAMES,
    SemanticToken,
    SemanticTokenModifier,
    SemanticTokenType,
    encode_semantic_tokens,
    get_encoded_semantic_tokens,
    get_semantic_tokens,
    get_semantic_tokens_legend,
)

__all__ = [
    "TOKEN_MODIFIER_NAMES",
    "TOKEN_TYPE_NAMES",
    "SemanticToken",
    "SemanticTokenModifier",
    "SemanticTokenType",
    "encode_semantic_tokens",
    "get_encoded_semantic_tokens",
    "get_semantic_tokens",
    "get_semantic_tokens_legend",
]
