"""Exceptions raised by the model cache, the session controller and the engine adapter."""

from __future__ import annotations

from pathlib import Path
from typing import Any

__all__ = [
    "ServiceError",
    "InvalidRequestError",
    "ModelNotFoundError",
    "WrongCategoryError",
    "ModelLoadError",
    "GenerationError",
    "ModelUnloadedError",
    "SessionExpiredError",
]


class ServiceError(Exception):
    """Base exception for the Local LLM Service."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        """
        Initialize the exception.
        Args:
            message: Human readable message, passed through to API clients.
            error_code: Optional machine readable code.
            details: Optional extra context.
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert the exception to a dictionary for logs and diagnostics."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "details": self.details,
        }


class InvalidRequestError(ServiceError):
    """Missing or malformed request fields."""

    def __init__(self, message: str, param: str | None = None):
        super().__init__(message, error_code="INVALID_REQUEST", details={"param": param})
        self.param = param


class ModelNotFoundError(ServiceError):
    """The artifact does not exist on disk."""

    def __init__(self, path: str | Path, message: str | None = None):
        """
        Initialize model not found error.
        Args:
            path: Resolved artifact path that was attempted.
            message: Custom error message.
        """
        if message is None:
            message = f"Model '{path}' not found in models directory"
        super().__init__(message, error_code="model_not_found", details={"path": str(path)})
        self.path = str(path)


class WrongCategoryError(ServiceError):
    """The artifact was loaded but cannot serve the requested operation."""

    def __init__(self, category: str, message: str | None = None):
        if message is None:
            message = f"Model is not suitable for {category}"
        super().__init__(message, error_code="WRONG_CATEGORY", details={"category": category})
        self.category = category


class ModelLoadError(ServiceError):
    """The engine failed to load an artifact or to build its context."""

    def __init__(self, path: str | Path, reason: str):
        super().__init__(reason, error_code="MODEL_LOAD_FAILED", details={"path": str(path)})
        self.path = str(path)


class GenerationError(ServiceError):
    """An engine call (generation, embedding, ranking) failed."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, error_code="GENERATION_ERROR", details=details)


class ModelUnloadedError(GenerationError):
    """An engine call was made against a handle that has been disposed."""

    def __init__(self, path: str | Path):
        super().__init__(f"Model '{path}' was unloaded", details={"path": str(path)})


class SessionExpiredError(ServiceError):
    """The chat session is no longer active; callers rebuild it."""

    def __init__(self, session_id: str):
        super().__init__(
            f"Chat session '{session_id}' has expired",
            error_code="SESSION_EXPIRED",
            details={"session_id": session_id},
        )
        self.session_id = session_id
