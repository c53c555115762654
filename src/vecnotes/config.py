"""StoreConfig — settings for the knowledge-base vector store."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

EMBEDDING_DIMENSION = 384
"""Output size of ``all-MiniLM-L6-v2``; the table schema is built from it."""

DEFAULT_MODEL_NAME = "all-MiniLM-L6-v2"
DEFAULT_DATA_DIR = Path.home() / ".vecnotes"

TABLE_SUBDIR = "vectors"
DB_FILENAME = "knowledge_base.db"

SUPPORTED_METRICS = ("cosine", "l2sq")


@dataclass
class StoreConfig:
    """Configuration for a :class:`~vecnotes.store.KnowledgeStore`."""

    data_dir: Path = field(default_factory=lambda: DEFAULT_DATA_DIR)
    """Application data directory; the table lives in ``data_dir / "vectors"``."""

    model_name: str = DEFAULT_MODEL_NAME
    """Name of the sentence-transformers model used for embeddings."""

    dimension: int = EMBEDDING_DIMENSION
    """Vector length.  Must match the model's output size."""

    metric: str = "cosine"
    """Distance metric: ``"cosine"`` or ``"l2sq"`` (squared euclidean)."""

    exact: bool = True
    """If True, search is brute-force top-k; otherwise HNSW approximate search."""

    default_k: int = 5
    """Number of results returned when ``search()`` is called without *k*."""

    def __post_init__(self) -> None:
        self.data_dir = Path(self.data_dir).expanduser()
        if self.dimension <= 0:
            msg = f"dimension must be positive, got {self.dimension}"
            raise ValueError(msg)
        if self.default_k <= 0:
            msg = f"default_k must be positive, got {self.default_k}"
            raise ValueError(msg)
        if self.metric not in SUPPORTED_METRICS:
            msg = f"Unsupported metric {self.metric!r}; expected one of {SUPPORTED_METRICS}"
            raise ValueError(msg)

    @property
    def table_dir(self) -> Path:
        """Directory dedicated to the vector table files."""
        return self.data_dir / TABLE_SUBDIR

    @property
    def db_path(self) -> Path:
        """SQLite file holding the vector table."""
        return self.table_dir / DB_FILENAME
