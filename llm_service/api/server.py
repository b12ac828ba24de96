"""
FastAPI application for the Local LLM Service.

``create_app`` wires the model store, the model registry and the chat
session manager into one application. The registry's idle sweep runs for
the lifetime of the application; shutdown ends every chat session and
releases every loaded model.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager
from typing import Any

import psutil
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.responses import PlainTextResponse

from .. import __version__
from ..configs import ServiceConfig
from ..inference import ChatSessionManager, InferenceBackend, LlamaBackend
from ..models import ModelRegistry, ModelStore
from . import management, openai
from .errors import validation_error_handler
from .telemetry import setup_telemetry

logger = logging.getLogger(__name__)

BANNER = "Local LLM Service"


def create_app(
    config: ServiceConfig | None = None,
    backend: InferenceBackend | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> FastAPI:
    """
    Build the application.
    Args:
        config: Service configuration. Read from the environment when omitted.
        backend: Inference engine. Defaults to llama.cpp.
        clock: Monotonic time source for idle tracking.
    Returns:
        The FastAPI application.
    """
    config = config or ServiceConfig.from_env()
    if backend is None:
        backend = LlamaBackend(n_ctx=config.n_ctx, n_gpu_layers=config.n_gpu_layers)

    store = ModelStore(config.category_dirs(), config.model_extension)
    registry = ModelRegistry(store, backend, clock=clock)
    sessions = ChatSessionManager(backend, ttl=config.session_ttl_s, clock=clock)
    registry.add_eviction_listener(sessions.on_model_evicted)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Manages the lifespan of the service, handling startup and shutdown."""
        store.ensure_dirs()
        registry.start(config.sweep_interval_s, config.idle_timeout_s)
        logger.info("Models directory: %s", config.models_dir)

        yield

        sessions.close_all()
        await registry.stop()

    app = FastAPI(
        title=BANNER,
        description="OpenAI-compatible embeddings, reranking and chat over local GGUF models.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.store = store
    app.state.registry = registry
    app.state.sessions = sessions

    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.include_router(openai.router)
    app.include_router(management.router)

    if config.enable_telemetry:
        setup_telemetry(app)

    @app.get("/", response_class=PlainTextResponse)
    async def banner() -> str:
        return BANNER

    @app.get("/health")
    async def health_check() -> dict[str, Any]:
        """Service health check."""
        return {
            "status": "healthy",
            "loaded_models": len(registry),
            "active_sessions": len(sessions),
            "system": {
                "cpu_percent": psutil.cpu_percent(),
                "memory_percent": psutil.virtual_memory().percent,
            },
        }

    return app
