"""Enums for the Local LLM Service."""

from .models import LoadState, ModelCategory
from .sessions import SessionState

__all__ = [
    "LoadState",
    "ModelCategory",
    "SessionState",
]
