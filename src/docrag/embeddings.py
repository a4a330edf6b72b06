"""Embedding helpers backed by Sentence Transformers."""
from __future__ import annotations

import hashlib
import logging
import re
import time
from functools import lru_cache
from typing import List, Sequence

import numpy as np

from .telemetry import emit_embeddings_event

LOGGER = logging.getLogger(__name__)

DEFAULT_MODEL_NAME = "sentence-transformers/all-MiniLM-L6-v2"
HASHING_BACKEND = "hashing"
SENTENCE_TRANSFORMERS_BACKEND = "sentence-transformers"
DEFAULT_DIMENSION = 384

_TOKEN_RE = re.compile(r"[a-z0-9]+")


class HashingEmbedder:
    """Deterministic feature-hashed bag of words, L2 normalised.

    Texts that share words land near each other.
    """

    def __init__(self, dimension: int = DEFAULT_DIMENSION) -> None:
        if dimension < 1:
            raise ValueError("dimension must be positive")
        self.dimension = dimension

    def embed(self, text: str) -> List[float]:
        vector = np.zeros(self.dimension, dtype=np.float32)
        for token in _TOKEN_RE.findall(text.lower()):
            digest = hashlib.blake2b(token.encode("utf-8"), digest_size=8).digest()
            value = int.from_bytes(digest, "big")
            sign = 1.0 if value & 1 else -1.0
            vector[(value >> 1) % self.dimension] += sign
        norm = float(np.linalg.norm(vector))
        if norm > 0:
            vector /= norm
        return vector.tolist()


class EmbeddingModel:
    """Wrapper around a SentenceTransformer embedding model or a hashing backend."""

    def __init__(
        self,
        model_name_or_path: str | None = None,
        *,
        backend: str = SENTENCE_TRANSFORMERS_BACKEND,
        device: str | None = None,
        dimension: int = DEFAULT_DIMENSION,
    ) -> None:
        model_path = model_name_or_path or DEFAULT_MODEL_NAME

        self._model = None
        self._hashing = HashingEmbedder(dimension)
        self._dimension = dimension
        self._model_name = HASHING_BACKEND

        if backend == HASHING_BACKEND:
            LOGGER.info("Using deterministic hashing embeddings (dimension %s).", dimension)
            return

        try:
            from sentence_transformers import SentenceTransformer  # type: ignore import-not-found
        except ImportError as error:
            LOGGER.warning(
                "sentence-transformers is unavailable; using deterministic hashing embeddings (%s).",
                error,
            )
            return

        try:
            self._model = SentenceTransformer(model_path, device=device)
        except Exception as error:  # pragma: no cover - unexpected backend errors
            LOGGER.warning(
                "Failed to initialize sentence-transformers model '%s': %s. "
                "Using deterministic hashing embeddings instead.",
                model_path,
                error,
            )
            self._model = None
            return

        self._model_name = model_path
        self._dimension = int(self._model.get_sentence_embedding_dimension())

    def embed(self, text: str) -> List[float]:
        """Embed a single text; failures propagate to the caller."""

        started = time.perf_counter()
        try:
            if self._model is not None:
                vector = self._model.encode(
                    [text],
                    convert_to_numpy=True,
                    show_progress_bar=False,
                    normalize_embeddings=True,
                )[0].tolist()
            else:
                vector = self._hashing.embed(text)
        except Exception as error:
            emit_embeddings_event(
                model=self._model_name,
                count=1,
                duration_ms=(time.perf_counter() - started) * 1000.0,
                errors=[str(error)],
            )
            raise

        emit_embeddings_event(
            model=self._model_name,
            count=1,
            duration_ms=(time.perf_counter() - started) * 1000.0,
        )
        return vector

    def embed_texts(self, texts: Sequence[str]) -> List[List[float]]:
        return [self.embed(text) for text in texts]

    @property
    def model_name(self) -> str:
        return self._model_name

    @property
    def dimension(self) -> int:
        return int(self._dimension)


@lru_cache()
def get_embedding_model() -> EmbeddingModel:
    """Return a cached embedding model instance."""

    from .config import get_settings

    settings = get_settings()
    return EmbeddingModel(
        settings.embedding_model_path,
        backend=settings.embedding_backend,
        device=settings.embedding_device,
        dimension=settings.embedding_dimension,
    )


def reset_embedding_model_cache() -> None:
    """Clear the cached embedding model instance (primarily for testing)."""

    get_embedding_model.cache_clear()  # type: ignore[attr-defined]


__all__ = [
    "EmbeddingModel",
    "HashingEmbedder",
    "get_embedding_model",
    "reset_embedding_model_cache",
]
