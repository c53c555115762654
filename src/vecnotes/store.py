"""KnowledgeStore — async facade wiring embedding, table, indexing and search."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from vecnotes.config import StoreConfig
from vecnotes.exceptions import ModelLoadError, NotInitializedError, TableNotFoundError
from vecnotes.indexer import DocumentIndexer
from vecnotes.search import SimilaritySearch
from vecnotes.table import VectorTableManager

if TYPE_CHECKING:
    from vecnotes.protocols import EmbeddingProvider
    from vecnotes.types import IndexedDocument, SearchResult, TextEntry

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class VectorStoreHandle:
    """Everything an index or search call needs, published as one unit.

    The handle is replaced wholesale on (re)initialization and never
    mutated.  Callers copy the reference under the store's lock and then
    work on their copy without holding it.
    """

    provider: EmbeddingProvider
    tables: VectorTableManager
    indexer: DocumentIndexer
    searcher: SimilaritySearch

    @property
    def table_name(self) -> str:
        return self.tables.table_name


class KnowledgeStore:
    """Single entry point for indexing and searching free-text notes.

    Call :meth:`initialize` once at startup; it loads the embedding model
    (possibly downloading it on first run), opens or creates the vector
    table and publishes a ready :class:`VectorStoreHandle`.  Until then
    every operation raises :class:`NotInitializedError`.

    Usage::

        async with KnowledgeStore(StoreConfig(data_dir=app_dir)) as kb:
            await kb.index("note1", "Patient exhibited signs of hypoglycemia")
            results = await kb.search("low blood sugar symptoms")

    The store's lock only covers reading or replacing the handle, so a slow
    search never holds up other index or search calls.  A second lock
    serializes :meth:`initialize` and :meth:`reset` against each other;
    index and search calls never wait on it.  No call is retried;
    callers wanting a timeout (first model load can be slow) should wrap
    the call in :func:`asyncio.wait_for`.
    """

    def __init__(
        self,
        config: StoreConfig | None = None,
        *,
        embedding_provider: EmbeddingProvider | None = None,
    ) -> None:
        self._config = config if config is not None else StoreConfig()
        self._embedding_provider = embedding_provider
        self._lock = asyncio.Lock()
        self._lifecycle_lock = asyncio.Lock()
        self._handle: VectorStoreHandle | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Load the model, ensure the table exists and publish the handle.

        Overlapping calls run one after the other; each publishes its own
        handle and the later one disposes the earlier.
        """
        async with self._lifecycle_lock:
            await self._initialize()

    async def _initialize(self) -> None:
        config = self._config
        provider = self._embedding_provider
        if provider is None:
            provider = self._default_provider()

        await provider.load()
        dimensions = provider.dimensions
        if dimensions != config.dimension:
            msg = (
                f"Model {provider.model_name!r} produces {dimensions}-dimensional vectors, "
                f"configured dimension is {config.dimension}"
            )
            raise ModelLoadError(msg)

        tables = VectorTableManager(
            config.table_dir,
            dimension=config.dimension,
            model_name=provider.model_name,
            metric=config.metric,
        )
        try:
            await tables.ensure_table(create_if_missing=True)
        except Exception:
            await tables.close()
            raise

        handle = VectorStoreHandle(
            provider=provider,
            tables=tables,
            indexer=DocumentIndexer(provider, tables, dimension=config.dimension),
            searcher=SimilaritySearch(
                provider, tables, dimension=config.dimension, exact=config.exact
            ),
        )
        async with self._lock:
            previous, self._handle = self._handle, handle
        if previous is not None:
            await previous.tables.close()
        logger.info(
            "Knowledge store ready (model=%s, table=%s, dir=%s)",
            provider.model_name,
            handle.table_name,
            config.table_dir,
        )

    async def reset(self) -> None:
        """Drop every row and recreate an empty table (e.g. after a model change).

        Index calls already in flight may land in either the old or the new
        table; searches pick up whatever the new table holds.
        """
        async with self._lifecycle_lock:
            handle = await self._acquire()
            await handle.tables.drop_table()
            await handle.tables.ensure_table(create_if_missing=True)
        logger.info("Knowledge store reset (table=%s)", handle.table_name)

    async def close(self) -> None:
        """Unpublish the handle and release the database engine."""
        async with self._lock:
            handle, self._handle = self._handle, None
        if handle is not None:
            await handle.tables.close()

    async def __aenter__(self) -> KnowledgeStore:
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def index(self, doc_id: str, text: str) -> IndexedDocument:
        """Embed *text* and append it under *doc_id*.  Duplicate ids are kept."""
        handle = await self._acquire()
        return await handle.indexer.index(doc_id, text)

    async def index_batch(self, entries: list[TextEntry]) -> list[IndexedDocument]:
        """Embed and append several notes in one transaction."""
        handle = await self._acquire()
        return await handle.indexer.index_batch(entries)

    async def search(
        self,
        query: str,
        k: int | None = None,
        *,
        score_threshold: float | None = None,
    ) -> list[SearchResult]:
        """Return the notes closest to *query*, best first.

        Returns an empty list when nothing has been indexed yet.
        """
        handle = await self._acquire()
        try:
            return await handle.searcher.search(
                query,
                k if k is not None else self._config.default_k,
                score_threshold=score_threshold,
            )
        except TableNotFoundError:
            logger.warning("Vector table %s not found; returning no results", handle.table_name)
            return []

    async def delete(self, doc_id: str) -> int:
        """Remove every row stored under *doc_id*.  Returns the number removed."""
        handle = await self._acquire()
        table = await handle.tables.ensure_table(create_if_missing=True)
        return await table.delete(doc_id)

    async def count(self) -> int:
        """Return the number of rows in the knowledge base."""
        handle = await self._acquire()
        table = await handle.tables.ensure_table(create_if_missing=True)
        return await table.count()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def config(self) -> StoreConfig:
        return self._config

    @property
    def is_initialized(self) -> bool:
        return self._handle is not None

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _acquire(self) -> VectorStoreHandle:
        async with self._lock:
            handle = self._handle
        if handle is None:
            msg = "Knowledge store is not initialized; call initialize() first"
            raise NotInitializedError(msg)
        return handle

    def _default_provider(self) -> EmbeddingProvider:
        from vecnotes.providers.sentence_transformers import SentenceTransformerEmbedding

        try:
            return SentenceTransformerEmbedding(self._config.model_name)
        except ImportError as exc:
            msg = f"No embedding provider available: {exc}"
            raise ModelLoadError(msg) from exc
