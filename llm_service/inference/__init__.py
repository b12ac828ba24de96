"""Inference backends and chat sessions."""

from .backend import (
    EmbeddingContext,
    GenerationContext,
    InferenceBackend,
    ModelHandle,
    RankedDocument,
    RankingContext,
)
from .chat import (
    ChatChunk,
    ChatSession,
    ChatSessionManager,
    ChatTemplate,
    ChatTurn,
    GenerationOptions,
)
from .llama_backend import LlamaBackend

__all__ = [
    "ChatChunk",
    "ChatSession",
    "ChatSessionManager",
    "ChatTemplate",
    "ChatTurn",
    "EmbeddingContext",
    "GenerationContext",
    "GenerationOptions",
    "InferenceBackend",
    "LlamaBackend",
    "ModelHandle",
    "RankedDocument",
    "RankingContext",
]
