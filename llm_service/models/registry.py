"""Model registry: loads, shares and evicts in-memory models."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

from opentelemetry import trace

from ..configs import LoadedModel, ModelIdentity
from ..enums import LoadState, ModelCategory
from ..exceptions import ModelLoadError, ModelNotFoundError, WrongCategoryError
from ..inference.backend import InferenceBackend
from ..utils import SingleFlight
from .store import ModelStore

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

EvictionListener = Callable[[LoadedModel], None]

# Attempts made by ``acquire`` when a freshly loaded entry is evicted before
# the waiter resumes.
MAX_ACQUIRE_ATTEMPTS = 3


class ModelRegistry:
    """Registry for managing loaded models.

    The registry is the only writer of its entry map. Every mutation is a
    synchronous section on the event loop (no ``await`` between reading and
    writing the map), so ``acquire``, ``unload`` and ``sweep`` never observe a
    torn state. Engine work (loading, disposing) runs in worker threads and
    never inside such a section.

    Idle eviction is purely timestamp based: ``acquire`` and ``release``
    refresh ``last_used_at``; ``sweep`` removes ready entries idle for longer
    than the threshold. There is no reference counting.
    """

    def __init__(
        self,
        store: ModelStore,
        backend: InferenceBackend,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the model registry.
        Args:
            store: Resolves names to artifact paths.
            backend: Engine used to load artifacts and build contexts.
            clock: Monotonic time source in seconds.
        """
        self.store = store
        self.backend = backend
        self._clock = clock
        self._entries: dict[ModelIdentity, LoadedModel] = {}
        self._flight: SingleFlight[ModelIdentity, LoadedModel] = SingleFlight()
        self._listeners: list[EvictionListener] = []
        self._sweep_task: asyncio.Task[None] | None = None

    # ── Acquisition ──────────────────────────────────────────────

    async def acquire(self, name: str, category: ModelCategory) -> LoadedModel:
        """
        Return a ready model, loading it on first use.
        Args:
            name: Artifact name, with or without extension.
            category: Category to load the artifact for.
        Returns:
            The shared ``LoadedModel`` with ``last_used_at`` refreshed.
        Raises:
            ModelNotFoundError: The artifact does not exist.
            WrongCategoryError: The artifact cannot serve ``category``.
            ModelLoadError: Any other engine failure.
        """
        identity = self.store.identity(name, category)
        for _ in range(MAX_ACQUIRE_ATTEMPTS):
            entry = self._entries.get(identity)
            if entry is not None and entry.is_ready:
                entry.touch(self._clock())
                logger.debug("Model cache hit: %s", identity)
                return entry

            if self._flight.in_flight(identity):
                logger.info("Waiting for in-flight load of %s", identity)
            entry = await self._flight.do(identity, lambda: self._load(identity))

            # The entry may have been evicted while this waiter was resuming.
            if entry.is_ready and self._entries.get(identity) is entry:
                entry.touch(self._clock())
                return entry
            logger.info("Model %s was evicted before use, reloading", identity)

        raise ModelLoadError(identity.path, f"Model '{identity.path}' was evicted while loading")

    def release(self, identity: ModelIdentity) -> None:
        """Signal end of use. Refreshes ``last_used_at`` of a ready entry."""
        entry = self._entries.get(identity)
        if entry is not None and entry.is_ready:
            entry.touch(self._clock())

    def is_live(self, loaded: LoadedModel) -> bool:
        """Whether ``loaded`` is still the ready cache entry for its identity."""
        return loaded.is_ready and self._entries.get(loaded.identity) is loaded

    async def _load(self, identity: ModelIdentity) -> LoadedModel:
        placeholder = LoadedModel(identity=identity, state=LoadState.LOADING)
        self._entries[identity] = placeholder

        logger.info("Loading model: %s", identity)
        started = time.perf_counter()
        ready = False
        try:
            with tracer.start_as_current_span("model.load") as span:
                span.set_attribute("model.category", identity.category.value)
                span.set_attribute("model.path", str(identity.path))
                handle, context = await asyncio.to_thread(self._load_blocking, identity)

            if self._entries.get(identity) is not placeholder:
                # Dropped by shutdown while the engine was working.
                await asyncio.to_thread(_close_pair, handle, context)
                raise ModelLoadError(
                    identity.path, f"Model '{identity.path}' was unloaded while loading"
                )

            now = self._clock()
            placeholder.handle = handle
            placeholder.context = context
            placeholder.loaded_at = now
            placeholder.touch(now)
            placeholder.state = LoadState.READY
            ready = True
            logger.info(
                "Loaded model %s in %.2fs", identity, time.perf_counter() - started
            )
            return placeholder
        except FileNotFoundError as e:
            logger.warning("Model artifact not found: %s", e.filename or identity.path)
            raise ModelNotFoundError(e.filename or identity.path) from e
        except (ModelLoadError, WrongCategoryError):
            logger.warning("Failed to load model %s", identity, exc_info=True)
            raise
        except Exception as e:
            logger.error("Failed to load model %s: %s", identity, e)
            raise ModelLoadError(identity.path, str(e)) from e
        finally:
            if not ready:
                placeholder.state = LoadState.FAILED
                if self._entries.get(identity) is placeholder:
                    del self._entries[identity]

    def _load_blocking(self, identity: ModelIdentity) -> tuple[Any, Any]:
        handle = self.backend.load(identity.path, identity.category)
        try:
            context = self.backend.create_context(handle, identity.category)
        except BaseException:
            handle.close()
            raise
        return handle, context

    # ── Eviction ─────────────────────────────────────────────────

    def add_eviction_listener(self, listener: EvictionListener) -> None:
        """Register a callback invoked with every record the registry destroys."""
        self._listeners.append(listener)

    async def unload(self, name: str) -> bool:
        """
        Unload a model by name, searching every category.
        Args:
            name: Artifact name, with or without extension.
        Returns:
            Whether a loaded model was removed. The first category (in
            embedding, reranker, chat order) holding the name wins.
        """
        for category in ModelCategory:
            identity = self.store.identity(name, category)
            entry = self._entries.get(identity)
            if entry is not None and entry.is_ready:
                self._detach(entry)
                await self._dispose(entry)
                logger.info("Unloaded model: %s", identity)
                return True
        return False

    async def sweep(self, max_idle: float, now: float | None = None) -> list[ModelIdentity]:
        """
        Evict ready entries idle for longer than ``max_idle`` seconds.
        Returns:
            Identities of the evicted entries.
        """
        if now is None:
            now = self._clock()
        stale = [
            entry
            for entry in self._entries.values()
            if entry.is_ready and now - entry.last_used_at > max_idle
        ]
        for entry in stale:
            self._detach(entry)
        for entry in stale:
            logger.info(
                "Evicting idle model %s (idle %.0fs)", entry.identity, now - entry.last_used_at
            )
            await self._dispose(entry)
        return [entry.identity for entry in stale]

    def _detach(self, entry: LoadedModel) -> None:
        del self._entries[entry.identity]
        self._notify(entry)

    def _notify(self, entry: LoadedModel) -> None:
        entry.state = LoadState.CLOSED
        for listener in list(self._listeners):
            try:
                listener(entry)
            except Exception:
                logger.exception("Eviction listener failed for %s", entry.identity)

    async def _dispose(self, entry: LoadedModel) -> None:
        try:
            await asyncio.to_thread(entry.close)
        except Exception:
            logger.exception("Error releasing model %s", entry.identity)

    # ── Diagnostics ──────────────────────────────────────────────

    def list(self) -> list[dict[str, Any]]:
        """Snapshot of cache membership."""
        return [
            {
                "path": str(entry.identity.path),
                "category": entry.identity.category.value,
                "ready": entry.is_ready,
            }
            for entry in self._entries.values()
        ]

    def loaded_paths(self) -> set[Path]:
        return {identity.path for identity, entry in self._entries.items() if entry.is_ready}

    def __len__(self) -> int:
        return sum(1 for entry in self._entries.values() if entry.is_ready)

    # ── Background sweep ─────────────────────────────────────────

    def start(self, interval: float, max_idle: float) -> None:
        """Start the periodic idle sweep."""
        if self._sweep_task is not None and not self._sweep_task.done():
            return
        self._sweep_task = asyncio.create_task(self._sweep_loop(interval, max_idle))
        logger.info(
            "Idle sweep every %.0fs, evicting models idle for more than %.0fs",
            interval,
            max_idle,
        )

    async def _sweep_loop(self, interval: float, max_idle: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await self.sweep(max_idle)
            except Exception:
                logger.exception("Idle sweep failed")

    async def stop(self) -> None:
        """Stop the sweep and release every loaded model."""
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None

        ready = [entry for entry in self._entries.values() if entry.is_ready]
        # Loading placeholders are dropped; their loads close what they built.
        self._entries.clear()
        for entry in ready:
            self._notify(entry)
            await self._dispose(entry)
        if ready:
            logger.info("Released %d model(s) on shutdown", len(ready))


def _close_pair(handle: Any, context: Any) -> None:
    try:
        if context is not None:
            context.close()
    finally:
        handle.close()
