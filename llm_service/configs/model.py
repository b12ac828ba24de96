from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Union

from ..enums import LoadState, ModelCategory
from ..exceptions import WrongCategoryError

if TYPE_CHECKING:
    from ..inference.backend import EmbeddingContext, ModelHandle, RankingContext

    CategoryContext = Union[EmbeddingContext, RankingContext, None]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelIdentity:
    """Cache key: a category plus the resolved artifact path."""

    category: ModelCategory
    path: Path

    @property
    def name(self) -> str:
        """Artifact file name without its extension."""
        return self.path.stem

    def __str__(self) -> str:
        return f"{self.category.value}:{self.path}"


@dataclass(eq=False)
class LoadedModel:
    """One in-memory model instance owned by the model registry.

    ``context`` is the category specific execution context: an embedding
    context for embedding artifacts, a ranking context for rerankers and
    ``None`` for chat artifacts, whose generation contexts belong to chat
    sessions.
    """

    identity: ModelIdentity
    handle: ModelHandle | None = None
    context: CategoryContext = None
    state: LoadState = LoadState.LOADING
    last_used_at: float = 0.0
    loaded_at: float = 0.0

    @property
    def is_ready(self) -> bool:
        return self.state is LoadState.READY

    def touch(self, now: float) -> None:
        """Record a use at ``now``."""
        self.last_used_at = now

    def embedding_context(self) -> EmbeddingContext:
        """Return the embedding context or raise ``WrongCategoryError``."""
        from ..inference.backend import EmbeddingContext

        if not isinstance(self.context, EmbeddingContext):
            raise WrongCategoryError("embeddings")
        return self.context

    def ranking_context(self) -> RankingContext:
        """Return the ranking context or raise ``WrongCategoryError``."""
        from ..inference.backend import RankingContext

        if not isinstance(self.context, RankingContext):
            raise WrongCategoryError("reranking")
        return self.context

    def require_handle(self) -> ModelHandle:
        if self.identity.category is not ModelCategory.CHAT or self.handle is None:
            raise WrongCategoryError("chat completions")
        return self.handle

    def close(self) -> None:
        """Release the context and then the handle. Blocking; run off the event loop."""
        self.state = LoadState.CLOSED
        if self.context is not None:
            try:
                self.context.close()
            finally:
                self.context = None
        if self.handle is not None:
            handle, self.handle = self.handle, None
            handle.close()
        logger.debug("Released %s", self.identity)
