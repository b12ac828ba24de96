"""Model management endpoints: explicit load, unload and listing."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends

from ..enums import ModelCategory
from ..exceptions import ModelNotFoundError, WrongCategoryError
from ..models import ModelRegistry, ModelStore
from .dependencies import get_registry, get_store
from .errors import management_error, openai_error
from .schemas import LoadModelRequest, UnloadModelRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/models", tags=["models"])


@router.get("")
async def list_models(
    registry: ModelRegistry = Depends(get_registry),
    store: ModelStore = Depends(get_store),
) -> Any:
    """Every artifact on disk with its category and whether it is loaded."""
    try:
        models = store.list_all(registry.loaded_paths())
    except Exception as e:
        logger.error("Error listing models: %s", e, exc_info=e)
        return openai_error(500, str(e), error_type="server_error")
    return models


@router.post("/load")
async def load_model(
    body: LoadModelRequest, registry: ModelRegistry = Depends(get_registry)
) -> Any:
    """Load a model ahead of its first use."""
    if not body.model or not body.type:
        return management_error(400, "Model name and type (embedding or reranker) are required")
    try:
        category = ModelCategory.parse(body.type)
    except ValueError as e:
        return management_error(400, str(e))

    try:
        await registry.acquire(body.model, category)
    except ModelNotFoundError as e:
        return management_error(404, e.message)
    except WrongCategoryError as e:
        return management_error(400, e.message)
    except Exception as e:
        logger.error("Error loading model %s: %s", body.model, e, exc_info=e)
        return management_error(500, str(e))
    return {"message": "Model loaded successfully"}


@router.post("/unload")
async def unload_model(
    body: UnloadModelRequest, registry: ModelRegistry = Depends(get_registry)
) -> Any:
    """Unload a model from whichever category holds it."""
    if not body.model:
        return management_error(400, "Model name is required")
    try:
        unloaded = await registry.unload(body.model)
    except Exception as e:
        logger.error("Error unloading model %s: %s", body.model, e, exc_info=e)
        return management_error(500, str(e))
    if not unloaded:
        return management_error(404, "Model not found or not loaded")
    return {"message": "Model unloaded successfully"}
