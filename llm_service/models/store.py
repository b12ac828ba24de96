"""Resolves model names to artifact paths and lists artifacts on disk."""

from __future__ import annotations

import logging
from collections.abc import Container
from pathlib import Path
from typing import Any

from ..configs import ModelIdentity
from ..enums import ModelCategory

logger = logging.getLogger(__name__)


class ModelStore:
    """Category directories under a models root."""

    def __init__(self, category_dirs: dict[ModelCategory, Path], extension: str = ".gguf"):
        """
        Initialize the store.
        Args:
            category_dirs: Base directory of each category.
            extension: Artifact file extension, appended to names lacking it.
        """
        self.category_dirs = {category: Path(d) for category, d in category_dirs.items()}
        self.extension = extension

    @classmethod
    def from_root(cls, models_dir: str | Path, extension: str = ".gguf") -> ModelStore:
        root = Path(models_dir)
        return cls({category: root / category.value for category in ModelCategory}, extension)

    def ensure_dirs(self) -> None:
        """Create the category directories if they do not exist."""
        for directory in self.category_dirs.values():
            directory.mkdir(parents=True, exist_ok=True)

    def file_name(self, name: str) -> str:
        return name if name.endswith(self.extension) else f"{name}{self.extension}"

    def model_name(self, file_name: str) -> str:
        """Inverse of ``file_name``: the artifact name without its extension."""
        if file_name.endswith(self.extension):
            return file_name[: -len(self.extension)]
        return file_name

    def resolve(self, name: str, category: ModelCategory) -> Path:
        """Artifact path for ``name`` in ``category``. Does no I/O."""
        return self.category_dirs[category] / self.file_name(name)

    def identity(self, name: str, category: ModelCategory) -> ModelIdentity:
        return ModelIdentity(category=category, path=self.resolve(name, category))

    def list(self, category: ModelCategory, loaded: Container[Path] = ()) -> list[dict[str, Any]]:
        """
        List the artifacts of one category.
        Args:
            category: Category to enumerate.
            loaded: Paths currently held by the model cache.
        Returns:
            ``{"name", "type", "loaded"}`` dictionaries sorted by name. An
            unreadable directory yields an empty list.
        """
        directory = self.category_dirs[category]
        try:
            files = sorted(
                item
                for item in directory.iterdir()
                if item.name.endswith(self.extension) and not item.is_dir()
            )
        except OSError as e:
            logger.warning("Error reading %s models directory: %s", category.value, e)
            return []

        return [
            {
                "name": self.model_name(item.name),
                "type": category.value,
                "loaded": item in loaded,
            }
            for item in files
        ]

    def list_all(self, loaded: Container[Path] = ()) -> list[dict[str, Any]]:
        models: list[dict[str, Any]] = []
        for category in ModelCategory:
            models.extend(self.list(category, loaded))
        return models
