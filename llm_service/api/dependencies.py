"""Accessors for the per-application state created by ``create_app``."""

from __future__ import annotations

from fastapi import Request

from ..inference import ChatSessionManager
from ..models import ModelRegistry, ModelStore


def get_registry(request: Request) -> ModelRegistry:
    return request.app.state.registry


def get_store(request: Request) -> ModelStore:
    return request.app.state.store


def get_sessions(request: Request) -> ChatSessionManager:
    return request.app.state.sessions
