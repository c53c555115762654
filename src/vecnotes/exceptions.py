"""Custom exception hierarchy for the vecnotes search layer."""


class VecNotesError(Exception):
    """Base exception for all vecnotes errors."""


class ModelLoadError(VecNotesError):
    """Raised when the embedding model cannot be loaded (missing, corrupt, offline)."""


class EmbeddingError(VecNotesError):
    """Raised when inference fails or returns a malformed vector."""


class TableNotFoundError(VecNotesError):
    """Raised when the vector table is opened before it was ever created."""


class StorageError(VecNotesError):
    """Raised when the SQLite store backing the vector table cannot be opened or read."""


class IndexWriteError(StorageError):
    """Raised when a row cannot be written to (or removed from) the vector table."""


class NotInitializedError(VecNotesError):
    """Raised when the store is used before ``initialize()`` has succeeded."""


class SchemaMismatchError(VecNotesError):
    """Raised when the on-disk table was built for a different model or dimension."""
