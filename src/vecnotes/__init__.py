"""vecnotes: semantic search over free-text notes.

Embeds notes with a local sentence-transformers model and keeps them in an
on-disk vector table for nearest-neighbour retrieval.
"""

__version__ = "0.1.0"

from vecnotes._sync import KnowledgeBase
from vecnotes.config import EMBEDDING_DIMENSION, StoreConfig
from vecnotes.exceptions import (
    EmbeddingError,
    IndexWriteError,
    ModelLoadError,
    NotInitializedError,
    SchemaMismatchError,
    StorageError,
    TableNotFoundError,
    VecNotesError,
)
from vecnotes.indexer import DocumentIndexer
from vecnotes.protocols import EmbeddingProvider
from vecnotes.search import SimilaritySearch
from vecnotes.store import KnowledgeStore, VectorStoreHandle
from vecnotes.table import VectorTable, VectorTableManager
from vecnotes.types import IndexedDocument, SearchResult, TableInfo, TextEntry

__all__ = [
    "EMBEDDING_DIMENSION",
    "DocumentIndexer",
    "EmbeddingError",
    "EmbeddingProvider",
    "IndexWriteError",
    "IndexedDocument",
    "KnowledgeBase",
    "KnowledgeStore",
    "ModelLoadError",
    "NotInitializedError",
    "SchemaMismatchError",
    "SearchResult",
    "SimilaritySearch",
    "StorageError",
    "StoreConfig",
    "TableInfo",
    "TableNotFoundError",
    "TextEntry",
    "VecNotesError",
    "VectorStoreHandle",
    "VectorTable",
    "VectorTableManager",
    "__version__",
]
