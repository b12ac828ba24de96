"""
Error responses.

The OpenAI-compatible endpoints answer failures with the nested
``{"error": {message, type, param, code}}`` envelope. The model management
endpoints answer with a flat ``{"error": message}`` body.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ..exceptions import (
    InvalidRequestError,
    ModelNotFoundError,
    ServiceError,
    WrongCategoryError,
)

logger = logging.getLogger(__name__)

MANAGEMENT_PREFIX = "/v1/models/"


def openai_error(
    status_code: int,
    message: str,
    error_type: str = "invalid_request_error",
    param: str | None = None,
    code: str | None = None,
) -> JSONResponse:
    """Build an OpenAI style error response."""
    body: dict[str, Any] = {
        "error": {"message": message, "type": error_type, "param": param, "code": code}
    }
    return JSONResponse(status_code=status_code, content=body)


def management_error(status_code: int, message: str) -> JSONResponse:
    """Build a model management error response."""
    return JSONResponse(status_code=status_code, content={"error": message})


def openai_error_from_exception(exc: Exception, action: str) -> JSONResponse:
    """
    Map an exception raised while serving an OpenAI-compatible request.
    Args:
        exc: The failure.
        action: What was being done, for the server log.
    Returns:
        404 for missing artifacts, 400 for request and category errors and
        500 with the exception message for everything else.
    """
    if isinstance(exc, ModelNotFoundError):
        return openai_error(404, exc.message, param="model", code=exc.error_code)
    if isinstance(exc, WrongCategoryError):
        return openai_error(400, exc.message, param="model")
    if isinstance(exc, InvalidRequestError):
        return openai_error(400, exc.message, param=exc.param)

    if isinstance(exc, ServiceError):
        logger.error("Error %s: %s", action, exc.to_dict(), exc_info=exc)
    else:
        logger.error("Error %s: %s", action, exc, exc_info=exc)
    return openai_error(500, str(exc) or exc.__class__.__name__, error_type="server_error")


def missing_parameters(message: str, **fields: Any) -> InvalidRequestError | None:
    """Return an ``InvalidRequestError`` naming the first empty field, if any."""
    for name, value in fields.items():
        if value is None or value == "":
            return InvalidRequestError(message, param=name)
    return None


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Answer malformed bodies with a 400 in the envelope of the endpoint family."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = [str(part) for part in first.get("loc", ()) if part != "body"]
    message = first.get("msg", "Invalid request body")
    if location:
        message = f"Invalid value for '{'.'.join(location)}': {message}"

    logger.debug("Rejected request to %s: %s", request.url.path, errors)
    if request.url.path.startswith(MANAGEMENT_PREFIX):
        return management_error(400, message)
    return openai_error(400, message, param=location[0] if location else None)
