"""SimilaritySearch — rank indexed notes by closeness to a free-text query."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from vecnotes.exceptions import EmbeddingError
from vecnotes.table import distance_to_score
from vecnotes.types import SearchResult

if TYPE_CHECKING:
    from vecnotes.protocols import EmbeddingProvider
    from vecnotes.table import VectorTableManager

logger = logging.getLogger(__name__)


class SimilaritySearch:
    """Embeds a query and runs a top-k nearest-neighbour lookup.

    Results are ordered by decreasing score; equal scores keep insertion
    order.  The score is cosine similarity for the ``cosine`` metric
    (``1 - distance``) and the negated squared euclidean distance for
    ``l2sq``, so higher always means closer.

    Searching before anything was ever indexed raises
    :class:`~vecnotes.exceptions.TableNotFoundError`.
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        tables: VectorTableManager,
        *,
        dimension: int,
        exact: bool = True,
    ) -> None:
        self._provider = provider
        self._tables = tables
        self._dimension = dimension
        self._exact = exact

    async def search(
        self,
        query: str,
        k: int = 5,
        *,
        score_threshold: float | None = None,
    ) -> list[SearchResult]:
        """Return up to *k* notes closest to *query*."""
        if k <= 0:
            msg = f"k must be positive, got {k}"
            raise ValueError(msg)

        vector = await self._provider.embed(query)
        if len(vector) != self._dimension:
            msg = f"Embedding size mismatch: expected {self._dimension}, got {len(vector)}"
            raise EmbeddingError(msg)

        table = await self._tables.ensure_table(create_if_missing=False)
        metric = table.info.metric
        hits = await table.nearest(vector, k, exact=self._exact)

        results: list[SearchResult] = []
        for row, distance in hits:
            score = distance_to_score(distance, metric)
            if score_threshold is not None and score < score_threshold:
                continue
            results.append(SearchResult(id=row.id, text=row.text, score=score))

        logger.debug("Search returned %d of k=%d result(s)", len(results), k)
        return results
