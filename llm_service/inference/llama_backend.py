"""llama.cpp backend for GGUF artifacts."""

from __future__ import annotations

import errno
import logging
import math
import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from ..enums import ModelCategory
from ..exceptions import ModelUnloadedError, WrongCategoryError
from .backend import (
    EmbeddingContext,
    GenerationContext,
    InferenceBackend,
    ModelHandle,
    RankingContext,
)

logger = logging.getLogger(__name__)


class LlamaHandle(ModelHandle):
    """A ``llama_cpp.Llama`` instance guarded by a lock.

    llama.cpp contexts are not thread safe, so every engine call holds the
    lock. ``close`` takes the same lock, which makes it wait for the call in
    flight; calls issued after ``close`` raise ``ModelUnloadedError``.
    """

    def __init__(self, path: Path, llama: Any, category: ModelCategory):
        self.path = path
        self.llama = llama
        self.category = category
        self._lock = threading.Lock()
        self._closed = False

    @contextmanager
    def use(self) -> Iterator[Any]:
        with self._lock:
            if self._closed:
                raise ModelUnloadedError(self.path)
            yield self.llama

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            llama, self.llama = self.llama, None
        close = getattr(llama, "close", None)
        if close is not None:
            close()
        logger.info("Disposed llama.cpp model %s", self.path)


class LlamaEmbeddingContext(EmbeddingContext):
    def __init__(self, handle: LlamaHandle):
        self.handle = handle

    def embed(self, text: str) -> list[float]:
        with self.handle.use() as llama:
            vector = llama.embed(text)
        # Models without pooling return one vector per token.
        if vector and isinstance(vector[0], list):
            return _mean_pool(vector)
        return [float(v) for v in vector]


class LlamaRankingContext(RankingContext):
    """Cross-encoder scoring through llama.cpp rank pooling."""

    def __init__(self, handle: LlamaHandle):
        self.handle = handle

    def rank(self, query: str, document: str) -> float:
        with self.handle.use() as llama:
            logits = llama.embed(f"{query}\n{document}")
        if logits and isinstance(logits[0], list):
            logits = logits[0]
        if not logits:
            return 0.0
        return _sigmoid(float(logits[0]))


class LlamaGenerationContext(GenerationContext):
    """Completion streaming against a shared llama.cpp model.

    The handle lock is held for the whole generation, so sessions on the
    same model take turns. llama.cpp reuses the longest matching prompt
    prefix, which keeps follow-up turns of a session cheap.
    """

    def __init__(self, handle: LlamaHandle):
        self.handle = handle
        self._closed = False

    def generate(
        self,
        prompt: str,
        temperature: float,
        max_tokens: int | None,
        stop: Sequence[str] = (),
    ) -> Iterator[str]:
        if self._closed:
            raise ModelUnloadedError(self.handle.path)
        with self.handle.use() as llama:
            stream = llama.create_completion(
                prompt,
                max_tokens=max_tokens,
                temperature=temperature,
                stop=list(stop),
                stream=True,
            )
            for chunk in stream:
                token = chunk["choices"][0].get("text", "")
                if token:
                    yield token

    def close(self) -> None:
        self._closed = True


class LlamaBackend(InferenceBackend):
    """Loads GGUF artifacts with llama-cpp-python."""

    def __init__(self, n_ctx: int = 4096, n_gpu_layers: int = -1, verbose: bool = False):
        self.n_ctx = n_ctx
        self.n_gpu_layers = n_gpu_layers
        self.verbose = verbose

    def _load_kwargs(self, category: ModelCategory) -> dict[str, Any]:
        import llama_cpp  # type: ignore

        kwargs: dict[str, Any] = {"n_ctx": self.n_ctx, "verbose": self.verbose}
        if category is ModelCategory.EMBEDDING:
            kwargs["embedding"] = True
        elif category is ModelCategory.RERANKER:
            kwargs["embedding"] = True
            kwargs["pooling_type"] = llama_cpp.LLAMA_POOLING_TYPE_RANK
        return kwargs

    def load(self, path: Path, category: ModelCategory) -> LlamaHandle:
        if not path.is_file():
            raise FileNotFoundError(errno.ENOENT, "No such model file", str(path))

        from llama_cpp import Llama  # type: ignore

        kwargs = self._load_kwargs(category)
        logger.info(
            "Loading GGUF model from %s (category=%s, n_gpu_layers=%s, n_ctx=%s)",
            path,
            category.value,
            self.n_gpu_layers,
            self.n_ctx,
        )
        try:
            llama = Llama(model_path=str(path), n_gpu_layers=self.n_gpu_layers, **kwargs)
        except ValueError as e:
            if "Failed to create llama_context" in str(e) and self.n_gpu_layers != 0:
                logger.warning(
                    "Failed to create Llama context with GPU acceleration. Falling back to CPU."
                )
                llama = Llama(model_path=str(path), n_gpu_layers=0, **kwargs)
            else:
                raise
        return LlamaHandle(path, llama, category)

    def create_context(
        self, handle: ModelHandle, category: ModelCategory
    ) -> EmbeddingContext | RankingContext | None:
        assert isinstance(handle, LlamaHandle)
        if handle.category is not category:
            raise WrongCategoryError(category.value)
        if category is ModelCategory.EMBEDDING:
            return LlamaEmbeddingContext(handle)
        if category is ModelCategory.RERANKER:
            return LlamaRankingContext(handle)
        return None

    def create_generation_context(self, handle: ModelHandle) -> GenerationContext:
        assert isinstance(handle, LlamaHandle)
        if handle.category is not ModelCategory.CHAT:
            raise WrongCategoryError("chat completions")
        return LlamaGenerationContext(handle)


def _mean_pool(vectors: list[list[float]]) -> list[float]:
    count = len(vectors)
    return [sum(column) / count for column in zip(*vectors)]


def _sigmoid(x: float) -> float:
    if x >= 0:
        return 1.0 / (1.0 + math.exp(-x))
    z = math.exp(x)
    return z / (1.0 + z)
