"""OpenAI-compatible endpoints: embeddings, rerank and chat completions."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import AsyncIterator
from contextlib import aclosing
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, StreamingResponse

from ..configs import LoadedModel
from ..enums import ModelCategory
from ..exceptions import SessionExpiredError
from ..inference import (
    ChatChunk,
    ChatSession,
    ChatSessionManager,
    ChatTurn,
    GenerationOptions,
)
from ..models import ModelRegistry
from .dependencies import get_registry, get_sessions
from .errors import missing_parameters, openai_error_from_exception
from .schemas import ChatCompletionRequest, EmbeddingRequest, RerankRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["openai"])

UNKNOWN_USAGE = {"prompt_tokens": -1, "total_tokens": -1}

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


@router.post("/embeddings")
async def create_embeddings(
    body: EmbeddingRequest, registry: ModelRegistry = Depends(get_registry)
) -> Any:
    """Embed one text or a list of texts."""
    missing = missing_parameters(
        "Missing required parameters: model, input", model=body.model, input=body.input
    )
    if missing is not None:
        return openai_error_from_exception(missing, "creating embeddings")

    inputs = [body.input] if isinstance(body.input, str) else list(body.input)
    try:
        loaded = await registry.acquire(body.model, ModelCategory.EMBEDDING)
        try:
            context = loaded.embedding_context()
            data = []
            for index, text in enumerate(inputs):
                vector = await asyncio.to_thread(context.embed, text)
                data.append({"object": "embedding", "embedding": vector, "index": index})
        finally:
            registry.release(loaded.identity)
    except Exception as e:
        return openai_error_from_exception(e, "creating embeddings")

    return {"object": "list", "data": data, "model": body.model, "usage": UNKNOWN_USAGE}


@router.post("/rerank")
async def rerank(body: RerankRequest, registry: ModelRegistry = Depends(get_registry)) -> Any:
    """Score documents against a query, most relevant first."""
    missing = missing_parameters(
        "Missing required parameters: model, query, documents (array)",
        model=body.model,
        query=body.query,
        documents=body.documents,
    )
    if missing is not None:
        return openai_error_from_exception(missing, "reranking documents")

    try:
        loaded = await registry.acquire(body.model, ModelCategory.RERANKER)
        try:
            context = loaded.ranking_context()
            ranked = await asyncio.to_thread(context.rank_and_sort, body.query, body.documents)
        finally:
            registry.release(loaded.identity)
    except Exception as e:
        return openai_error_from_exception(e, "reranking documents")

    data = [
        {
            "object": "rerank_result",
            "document": item.document,
            "relevance_score": item.score,
            "index": index,
        }
        for index, item in enumerate(ranked)
    ]
    return {"object": "list", "model": body.model, "data": data, "usage": UNKNOWN_USAGE}


@router.post("/chat/completions")
async def create_chat_completion(
    body: ChatCompletionRequest,
    request: Request,
    registry: ModelRegistry = Depends(get_registry),
    sessions: ChatSessionManager = Depends(get_sessions),
) -> Any:
    """Generate the next assistant turn, optionally as a server-sent event stream."""
    missing = missing_parameters(
        "Missing required parameters: model, messages (array)",
        model=body.model,
        messages=body.messages or None,
    )
    if missing is not None:
        return openai_error_from_exception(missing, "generating chat completion")

    options = GenerationOptions(temperature=body.temperature, max_tokens=body.max_tokens)
    prompt = body.messages[-1].content
    try:
        loaded, session = await _open_session(registry, sessions, body)
    except Exception as e:
        return openai_error_from_exception(e, "generating chat completion")

    if body.stream:
        return StreamingResponse(
            _stream_chat_completion(request, registry, sessions, body, session, prompt, options),
            media_type="text/event-stream",
            headers=SSE_HEADERS,
        )

    try:
        try:
            content = await sessions.prompt(session, prompt, options)
        except SessionExpiredError:
            logger.info("Session %s expired before prompting, rebuilding", session.session_id)
            registry.release(loaded.identity)
            loaded, session = await _open_session(registry, sessions, body, session.session_id)
            content = await sessions.prompt(session, prompt, options)
    except Exception as e:
        return openai_error_from_exception(e, "generating chat completion")
    finally:
        registry.release(loaded.identity)

    return JSONResponse(
        {
            "id": session.session_id,
            "object": "chat.completion",
            "created": int(time.time()),
            "model": body.model,
            "choices": [
                {
                    "index": 0,
                    "message": {"role": "assistant", "content": content},
                    "finish_reason": "stop",
                }
            ],
            "usage": {**UNKNOWN_USAGE, "completion_tokens": -1},
        }
    )


async def _open_session(
    registry: ModelRegistry,
    sessions: ChatSessionManager,
    body: ChatCompletionRequest,
    session_id: str | None = None,
) -> tuple[LoadedModel, ChatSession]:
    loaded = await registry.acquire(body.model, ModelCategory.CHAT)
    messages = body.messages[:-1]
    system_prompt = ""
    history = []
    for message in messages:
        if message.role == "system":
            system_prompt = message.content
        else:
            history.append(ChatTurn(role=message.role, content=message.content))

    session_id = session_id or body.session_id or sessions.new_session_id()
    try:
        session = await sessions.get_or_create(session_id, loaded, system_prompt, history)
    except BaseException:
        registry.release(loaded.identity)
        raise
    return loaded, session


async def _stream_chat_completion(
    request: Request,
    registry: ModelRegistry,
    sessions: ChatSessionManager,
    body: ChatCompletionRequest,
    session: ChatSession,
    prompt: str,
    options: GenerationOptions,
) -> AsyncIterator[str]:
    created = int(time.time())
    identity = session.identity
    try:
        for attempt in range(2):
            try:
                async with aclosing(sessions.prompt_stream(session, prompt, options)) as chunks:
                    async for chunk in chunks:
                        if await request.is_disconnected():
                            logger.info("Client disconnected from session %s", session.session_id)
                            return
                        yield _chunk_frame(session.session_id, created, body.model, chunk)
                break
            except SessionExpiredError:
                # Raised before the first token, so nothing has been sent yet.
                if attempt:
                    raise
                logger.info("Session %s expired before prompting, rebuilding", session.session_id)
                registry.release(identity)
                loaded, session = await _open_session(registry, sessions, body, session.session_id)
                identity = loaded.identity
        yield "data: [DONE]\n\n"
    except Exception:
        # Headers are already sent; aborting the body is the only signal left.
        logger.exception("Error streaming chat completion for session %s", session.session_id)
        raise
    finally:
        registry.release(identity)


def _chunk_frame(session_id: str, created: int, model: str, chunk: ChatChunk) -> str:
    payload = {
        "id": session_id,
        "object": "chat.completion.chunk",
        "created": created,
        "model": model,
        "choices": [
            {
                "index": 0,
                "delta": {"content": chunk.content},
                "finish_reason": chunk.finish_reason,
            }
        ],
    }
    return f"data: {json.dumps(payload)}\n\n"
