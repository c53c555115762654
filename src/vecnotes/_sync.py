"""KnowledgeBase — synchronous wrapper around :class:`KnowledgeStore`."""

from __future__ import annotations

import asyncio
import threading
from typing import TYPE_CHECKING, Any

from vecnotes.store import KnowledgeStore

if TYPE_CHECKING:
    from vecnotes.config import StoreConfig
    from vecnotes.protocols import EmbeddingProvider
    from vecnotes.types import IndexedDocument, SearchResult, TextEntry


class KnowledgeBase:
    """Blocking facade over the async knowledge store.

    Runs a private event loop in a daemon thread so the store can be used
    from plain sync code, such as UI callbacks in the desktop shell.

    Usage::

        with KnowledgeBase(StoreConfig(data_dir=app_dir)) as kb:
            kb.index("note1", "Patient exhibited signs of hypoglycemia")
            results = kb.search("low blood sugar symptoms")
    """

    def __init__(
        self,
        config: StoreConfig | None = None,
        *,
        embedding_provider: EmbeddingProvider | None = None,
        initialize: bool = True,
    ) -> None:
        self._closed = False

        # Private event loop in a daemon thread
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._loop.run_forever, daemon=True)
        self._thread.start()

        self._store = KnowledgeStore(config, embedding_provider=embedding_provider)
        if initialize:
            try:
                self._run(self._store.initialize())
            except Exception:
                self._stop_loop()
                raise

    def _run(self, coro: Any) -> Any:
        """Submit *coro* to the private loop and block for the result."""
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        return future.result()

    def _stop_loop(self) -> None:
        self._closed = True
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join(timeout=5)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self) -> None:
        self._run(self._store.initialize())

    def reset(self) -> None:
        self._run(self._store.reset())

    def close(self) -> None:
        """Close the store, stop the event loop and join the thread."""
        if self._closed:
            return
        try:
            self._run(self._store.close())
        finally:
            self._stop_loop()

    def __enter__(self) -> KnowledgeBase:
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def index(self, doc_id: str, text: str) -> IndexedDocument:
        return self._run(self._store.index(doc_id, text))

    def index_batch(self, entries: list[TextEntry]) -> list[IndexedDocument]:
        return self._run(self._store.index_batch(entries))

    def search(
        self,
        query: str,
        k: int | None = None,
        *,
        score_threshold: float | None = None,
    ) -> list[SearchResult]:
        return self._run(self._store.search(query, k, score_threshold=score_threshold))

    def delete(self, doc_id: str) -> int:
        return self._run(self._store.delete(doc_id))

    def count(self) -> int:
        return self._run(self._store.count())

    @property
    def store(self) -> KnowledgeStore:
        """Return the underlying async :class:`KnowledgeStore`."""
        return self._store

    @property
    def is_initialized(self) -> bool:
        return self._store.is_initialized
