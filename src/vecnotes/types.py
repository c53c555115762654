"""Value objects for the knowledge-base vector table and its search results."""

from __future__ import annotations

from dataclasses import dataclass

# ------------------------------------------------------------------
# Rows
# ------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class TextEntry:
    """A note waiting to be embedded and indexed.

    Attributes:
        id: Caller-supplied identifier of the source record.
        text: Raw note text.
    """

    id: str
    text: str


@dataclass(frozen=True, slots=True)
class IndexedDocument:
    """One row of the vector table.

    Rows are immutable once written.  ``id`` is not unique: indexing the
    same identifier twice stores two rows.

    Attributes:
        id: Caller-supplied identifier of the source record.
        text: The indexed content, kept verbatim for display.
        vector: Embedding of ``text`` (exactly the configured dimension).
        seq: Insertion counter assigned by the table; ``None`` until written.
    """

    id: str
    text: str
    vector: list[float]
    seq: int | None = None


# ------------------------------------------------------------------
# Results
# ------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class SearchResult:
    """A single ranked match from the knowledge base.

    Attributes:
        id: Identifier of the matched row.
        text: Text stored with the row.
        score: Closeness to the query (higher is closer).  Cosine
            similarity for the ``cosine`` metric, negated squared
            euclidean distance for ``l2sq``.
    """

    id: str
    text: str
    score: float


@dataclass(frozen=True, slots=True)
class TableInfo:
    """Schema metadata recorded when the vector table is created.

    Attributes:
        name: Table name.
        dimension: Vector length every row must have.
        model_name: Embedding model the vectors were produced with.
        metric: Distance metric used for search.
    """

    name: str
    dimension: int
    model_name: str
    metric: str
