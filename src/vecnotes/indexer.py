"""DocumentIndexer — embed notes and append them to the knowledge-base table."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from vecnotes.exceptions import EmbeddingError
from vecnotes.types import IndexedDocument, TextEntry

if TYPE_CHECKING:
    from vecnotes.protocols import EmbeddingProvider
    from vecnotes.table import VectorTableManager

logger = logging.getLogger(__name__)


class DocumentIndexer:
    """Appends embedded notes to the vector table.

    Indexing is append-only: the same ``id`` indexed twice yields two
    rows.  The embedding is computed before the table is touched, so an
    :class:`EmbeddingError` never leaves a partial write behind.
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        tables: VectorTableManager,
        *,
        dimension: int,
    ) -> None:
        self._provider = provider
        self._tables = tables
        self._dimension = dimension

    async def index(self, doc_id: str, text: str) -> IndexedDocument:
        """Embed *text* and append it as a new row under *doc_id*."""
        vector = await self._provider.embed(text)
        self._check_dimension(vector)

        table = await self._tables.ensure_table(create_if_missing=True)
        written = await table.append(IndexedDocument(id=doc_id, text=text, vector=vector))
        logger.debug("Indexed %s (seq=%s)", doc_id, written.seq)
        return written

    async def index_batch(self, entries: list[TextEntry]) -> list[IndexedDocument]:
        """Embed all *entries* in one batch and append them in one transaction."""
        if not entries:
            return []

        vectors = await self._provider.embed_batch([e.text for e in entries])
        if len(vectors) != len(entries):
            msg = f"Provider returned {len(vectors)} vector(s) for {len(entries)} text(s)"
            raise EmbeddingError(msg)
        for vector in vectors:
            self._check_dimension(vector)

        table = await self._tables.ensure_table(create_if_missing=True)
        written = await table.append_many(
            [
                IndexedDocument(id=entry.id, text=entry.text, vector=vector)
                for entry, vector in zip(entries, vectors, strict=True)
            ]
        )
        logger.debug("Indexed batch of %d note(s)", len(written))
        return written

    def _check_dimension(self, vector: list[float]) -> None:
        if len(vector) != self._dimension:
            msg = f"Embedding size mismatch: expected {self._dimension}, got {len(vector)}"
            raise EmbeddingError(msg)
