"""
Service Configuration.

Network, filesystem, cache and engine settings for the Local LLM Service.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..enums import ModelCategory
from .base import BaseConfig

__all__ = ["ServiceConfig"]

ENV_PREFIX = "LLM_SERVICE_"


@dataclass
class ServiceConfig(BaseConfig):
    """Configuration for the HTTP service and the model cache.

    Attributes:
        host: Interface to bind.
        port: Port to listen on.
        models_dir: Root holding one sub-directory per model category.
        model_extension: Extension of artifact files.
        idle_timeout_s: Loaded models unused for longer than this are evicted.
        sweep_interval_s: Period of the idle sweep.
        session_ttl_s: Chat sessions untouched for this long expire.
        n_ctx: Context window passed to the engine.
        n_gpu_layers: Layers offloaded to the GPU (-1 for all).
        log_level: Root logging level.
        enable_telemetry: Export OpenTelemetry traces over OTLP.
    """

    host: str = "0.0.0.0"
    port: int = 23673
    models_dir: str = "./models"
    model_extension: str = ".gguf"
    idle_timeout_s: float = 30 * 60
    sweep_interval_s: float = 15 * 60
    session_ttl_s: float = 30 * 60
    n_ctx: int = 4096
    n_gpu_layers: int = -1
    log_level: str = "INFO"
    enable_telemetry: bool = False

    def category_dirs(self) -> dict[ModelCategory, Path]:
        """Directory of each model category under ``models_dir``."""
        root = Path(self.models_dir)
        return {category: root / category.value for category in ModelCategory}

    @classmethod
    def from_env(cls, base: ServiceConfig | None = None) -> ServiceConfig:
        """Create config from ``LLM_SERVICE_*`` environment variables."""
        config = base or cls()
        return config.merged(_read_env())


def _read_env() -> dict[str, Any]:
    def _get(name: str, cast: Any = str) -> Any:
        value = os.getenv(ENV_PREFIX + name)
        if value is None or value == "":
            return None
        return cast(value)

    return {
        "host": _get("HOST"),
        "port": _get("PORT", int),
        "models_dir": _get("MODELS_DIR"),
        "model_extension": _get("MODEL_EXTENSION"),
        "idle_timeout_s": _get("IDLE_TIMEOUT", float),
        "sweep_interval_s": _get("SWEEP_INTERVAL", float),
        "session_ttl_s": _get("SESSION_TTL", float),
        "n_ctx": _get("N_CTX", int),
        "n_gpu_layers": _get("N_GPU_LAYERS", int),
        "log_level": _get("LOG_LEVEL"),
        "enable_telemetry": _get("ENABLE_TELEMETRY", lambda v: v.lower() == "true"),
    }
