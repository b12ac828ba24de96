"""Model artifacts on disk and the in-memory model cache."""

from .registry import ModelRegistry
from .store import ModelStore

__all__ = [
    "ModelRegistry",
    "ModelStore",
]
