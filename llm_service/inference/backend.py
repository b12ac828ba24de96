"""
Base classes for inference backends.

Defines the interface between the model cache and the numerical engine:
loading an artifact into a handle, building category specific execution
contexts on top of it, and the embed / rank / generate operations. All
methods are blocking and are called off the event loop.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from pathlib import Path

from ..enums import ModelCategory


@dataclass
class RankedDocument:
    """A document with its relevance score."""

    document: str
    score: float


class ModelHandle(ABC):
    """Opaque loaded model. Exclusively owned by one ``LoadedModel``."""

    path: Path

    @abstractmethod
    def close(self) -> None:
        """Free the model. Waits for an in-flight engine call to finish."""


class EmbeddingContext(ABC):
    """Produces embedding vectors."""

    @abstractmethod
    def embed(self, text: str) -> list[float]:
        """Embed a single text."""

    def close(self) -> None:
        """Release context resources. The handle is released separately."""


class RankingContext(ABC):
    """Scores documents against a query with a cross-encoder."""

    @abstractmethod
    def rank(self, query: str, document: str) -> float:
        """Relevance score of ``document`` for ``query``."""

    def rank_and_sort(self, query: str, documents: Sequence[str]) -> list[RankedDocument]:
        """Score every document and sort by descending relevance."""
        ranked = [RankedDocument(document=doc, score=self.rank(query, doc)) for doc in documents]
        ranked.sort(key=lambda r: r.score, reverse=True)
        return ranked

    def close(self) -> None:
        """Release context resources. The handle is released separately."""


class GenerationContext(ABC):
    """Token streaming text generation, owned by one chat session."""

    @abstractmethod
    def generate(
        self,
        prompt: str,
        temperature: float,
        max_tokens: int | None,
        stop: Sequence[str] = (),
    ) -> Iterator[str]:
        """Yield text pieces as the engine produces them."""

    def close(self) -> None:
        """Release context resources. Called on the event loop, so it must not block."""


class InferenceBackend(ABC):
    """Numerical engine used by the model registry."""

    @abstractmethod
    def load(self, path: Path, category: ModelCategory) -> ModelHandle:
        """
        Load an artifact.
        Args:
            path: Resolved artifact path.
            category: Category the artifact is loaded for.
        Returns:
            A handle to the loaded model.
        Raises:
            FileNotFoundError: If ``path`` does not exist.
        """

    @abstractmethod
    def create_context(
        self, handle: ModelHandle, category: ModelCategory
    ) -> EmbeddingContext | RankingContext | None:
        """Build the category execution context. Chat artifacts get ``None``."""

    @abstractmethod
    def create_generation_context(self, handle: ModelHandle) -> GenerationContext:
        """Build a fresh generation context for a chat session."""
