"""HTTP API of the Local LLM Service."""

from .server import create_app

__all__ = ["create_app"]
