from enum import Enum


class ModelCategory(str, Enum):
    """Kind of execution context an artifact is loaded into."""

    EMBEDDING = "embedding"
    RERANKER = "reranker"
    CHAT = "chat"

    @classmethod
    def parse(cls, value: str) -> "ModelCategory":
        """Return the category named by ``value`` or raise ``ValueError``."""
        try:
            return cls(value)
        except ValueError:
            raise ValueError(
                "Type must be either 'embedding', 'reranker', or 'chat'"
            ) from None


class LoadState(str, Enum):
    """Load state of a cache entry."""

    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"
    CLOSED = "closed"
