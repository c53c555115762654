"""SentenceTransformerEmbedding — local embedding provider (all-MiniLM-L6-v2)."""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any

import numpy as np

from vecnotes.config import DEFAULT_MODEL_NAME
from vecnotes.exceptions import EmbeddingError, ModelLoadError

try:
    from sentence_transformers import SentenceTransformer

    _HAS_SENTENCE_TRANSFORMERS = True
except ImportError:  # pragma: no cover
    _HAS_SENTENCE_TRANSFORMERS = False

logger = logging.getLogger(__name__)


class SentenceTransformerEmbedding:
    """Embedding provider backed by ``sentence-transformers``.

    The model is loaded once, either explicitly through :meth:`load` or on
    the first embedding call, and is read-only afterwards.  The first load
    may download weights into the sentence-transformers cache and can take
    a long time.  Async methods run the CPU-bound work in a thread pool via
    :func:`asyncio.to_thread`.
    """

    def __init__(self, model_name: str = DEFAULT_MODEL_NAME) -> None:
        if not _HAS_SENTENCE_TRANSFORMERS:
            msg = (
                "sentence-transformers is required for SentenceTransformerEmbedding. "
                "Install it with: pip install sentence-transformers"
            )
            raise ImportError(msg)
        self._model_name = model_name
        self._model: SentenceTransformer | None = None
        self._load_lock = threading.Lock()

    def _load_model(self) -> SentenceTransformer:
        if self._model is not None:
            return self._model
        with self._load_lock:
            if self._model is None:
                logger.info("Loading embedding model %s", self._model_name)
                try:
                    self._model = SentenceTransformer(self._model_name)
                except Exception as exc:
                    msg = f"Failed to load embedding model {self._model_name!r}: {exc}"
                    raise ModelLoadError(msg) from exc
        return self._model

    # ------------------------------------------------------------------
    # Sync methods
    # ------------------------------------------------------------------

    def load_sync(self) -> None:
        """Load the model (synchronous)."""
        self._load_model()

    def embed_sync(self, text: str) -> list[float]:
        """Embed a single text string (synchronous)."""
        return self._encode([text])[0]

    def embed_batch_sync(self, texts: list[str]) -> list[list[float]]:
        """Embed multiple texts (synchronous)."""
        if not texts:
            return []
        return self._encode(texts)

    # ------------------------------------------------------------------
    # Async methods (EmbeddingProvider protocol)
    # ------------------------------------------------------------------

    async def load(self) -> None:
        """Load the model in a thread pool."""
        await asyncio.to_thread(self.load_sync)

    async def embed(self, text: str) -> list[float]:
        """Embed a single text string in a thread pool."""
        return await asyncio.to_thread(self.embed_sync, text)

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed multiple texts in a thread pool."""
        return await asyncio.to_thread(self.embed_batch_sync, texts)

    @property
    def dimensions(self) -> int:
        """Return the embedding dimensionality."""
        model = self._load_model()
        dim = model.get_sentence_embedding_dimension()
        if dim is None:
            msg = f"Model {self._model_name!r} did not report embedding dimensions"
            raise ModelLoadError(msg)
        return dim

    @property
    def model_name(self) -> str:
        """Return the model name."""
        return self._model_name

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _encode(self, texts: list[str]) -> list[list[float]]:
        model = self._load_model()
        try:
            result: Any = model.encode(texts)
        except Exception as exc:
            msg = f"Embedding inference failed: {exc}"
            raise EmbeddingError(msg) from exc

        matrix = np.asarray(result, dtype=np.float32)
        if matrix.ndim != 2 or matrix.shape[0] != len(texts):
            msg = f"Model returned shape {matrix.shape} for {len(texts)} text(s)"
            raise EmbeddingError(msg)
        if not np.isfinite(matrix).all():
            msg = "Model returned non-finite values"
            raise EmbeddingError(msg)
        return [row.tolist() for row in matrix]
