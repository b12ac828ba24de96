"""Request bodies of the HTTP API.

Fields are optional so that missing parameters are reported by the handlers
with the documented 400 envelopes rather than by FastAPI's generic 422.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class _Body(BaseModel):
    model_config = ConfigDict(extra="allow", protected_namespaces=())


class EmbeddingRequest(_Body):
    model: str | None = None
    input: str | list[str] | None = None


class RerankRequest(_Body):
    model: str | None = None
    query: str | None = None
    documents: list[str] | None = None


class ChatMessage(_Body):
    role: str
    content: str = ""


class ChatCompletionRequest(_Body):
    model: str | None = None
    messages: list[ChatMessage] | None = None
    temperature: float = Field(0.7, ge=0.0, le=2.0)
    max_tokens: int | None = Field(None, gt=0)
    stream: bool = False
    session_id: str | None = Field(
        None, description="Key of a session to continue; the response id of an earlier call."
    )


class LoadModelRequest(_Body):
    model: str | None = None
    type: str | None = None


class UnloadModelRequest(_Body):
    model: str | None = None
