"""Configuration dataclasses and cache records."""

from .base import BaseConfig
from .model import LoadedModel, ModelIdentity
from .service import ServiceConfig

__all__ = [
    "BaseConfig",
    "LoadedModel",
    "ModelIdentity",
    "ServiceConfig",
]
