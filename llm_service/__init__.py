"""
Local LLM Service.

Serves on-disk GGUF artifacts (chat, embedding, reranking) behind an
OpenAI-compatible HTTP API, loading them lazily and evicting idle ones.
"""

__version__ = "0.3.0"

from . import api, configs, enums, exceptions, inference, models, utils  # noqa: E402

__all__ = [
    "api",
    "configs",
    "enums",
    "exceptions",
    "inference",
    "models",
    "utils",
    "__version__",
]
