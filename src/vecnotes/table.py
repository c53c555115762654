"""VectorTableManager — on-disk knowledge-base table with an in-memory usearch index."""

from __future__ import annotations

import asyncio
import logging
import math
import threading
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import numpy as np
from sqlalchemy import delete, event, func, inspect
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.schema import CreateIndex, CreateTable, DropTable
from sqlmodel import select
from usearch.index import Index

from vecnotes.config import DB_FILENAME
from vecnotes.exceptions import (
    IndexWriteError,
    SchemaMismatchError,
    StorageError,
    TableNotFoundError,
)
from vecnotes.models import KNOWLEDGE_BASE_TABLE, KnowledgeBaseRow, VectorTableMeta
from vecnotes.types import IndexedDocument, TableInfo

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence
    from pathlib import Path

logger = logging.getLogger(__name__)

_USEARCH_METRICS = {"cosine": "cos", "l2sq": "l2sq"}


# ------------------------------------------------------------------
# Vector codec
# ------------------------------------------------------------------


def encode_vector(vector: Sequence[float] | np.ndarray, dimension: int) -> bytes:
    """Pack *vector* as little-endian float32 bytes, enforcing *dimension*."""
    arr = np.asarray(vector, dtype="<f4")
    if arr.ndim != 1 or arr.shape[0] != dimension:
        msg = f"Vector has shape {arr.shape}, expected ({dimension},)"
        raise ValueError(msg)
    return arr.tobytes()


def decode_vector(blob: bytes, dimension: int) -> np.ndarray:
    """Unpack float32 bytes written by :func:`encode_vector`."""
    arr = np.frombuffer(blob, dtype="<f4")
    if arr.shape[0] != dimension:
        msg = f"Stored vector has {arr.shape[0]} values, expected {dimension}"
        raise ValueError(msg)
    return arr.astype(np.float32)


def distance_to_score(distance: float, metric: str) -> float:
    """Map a usearch distance to a score where higher means closer."""
    if metric == "cosine":
        return 1.0 - distance
    return -distance


# ------------------------------------------------------------------
# Table
# ------------------------------------------------------------------


class VectorTable:
    """An open knowledge-base table.

    Rows are persisted in SQLite; every append or delete is one
    transaction, so a row is either fully visible or absent.  Search goes
    through a usearch index keyed by the row's ``seq``, built lazily from
    the table on first use and kept in step with later appends and deletes.

    Other writers (a second manager or process on the same file) are
    picked up on the next query: ``nearest`` compares the table's row
    count, highest ``seq`` and creation stamp with what the index holds,
    adds newer rows when nothing was removed and rebuilds otherwise.

    The usearch index itself is guarded by a :class:`threading.Lock`
    because queries run in worker threads.
    """

    def __init__(
        self,
        session_factory: Callable[..., AsyncSession],
        info: TableInfo,
    ) -> None:
        self._session_factory = session_factory
        self._info = info

        self._cache_lock = asyncio.Lock()
        self._index_lock = threading.Lock()
        self._index: Index | None = None
        # seq → (id, text)
        self._key_to_row: dict[int, tuple[str, str]] = {}
        # Highest seq ever added to the index; seq is never reused.
        self._max_seq = 0
        self._created_at: datetime | None = None

    @property
    def name(self) -> str:
        return self._info.name

    @property
    def info(self) -> TableInfo:
        return self._info

    @property
    def dimension(self) -> int:
        return self._info.dimension

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def append(self, document: IndexedDocument) -> IndexedDocument:
        """Append a single row.  Returns the row with its ``seq`` assigned."""
        written = await self.append_many([document])
        return written[0]

    async def append_many(self, documents: list[IndexedDocument]) -> list[IndexedDocument]:
        """Append *documents* in one transaction."""
        if not documents:
            return []

        try:
            rows = [
                KnowledgeBaseRow(
                    id=doc.id,
                    text=doc.text,
                    vector=encode_vector(doc.vector, self.dimension),
                )
                for doc in documents
            ]
        except ValueError as exc:
            raise IndexWriteError(str(exc)) from exc

        try:
            async with self._session_factory() as session:
                session.add_all(rows)
                await session.commit()
        except (SQLAlchemyError, OSError) as exc:
            logger.error("Append to %s failed: %s", self.name, exc, exc_info=True)
            msg = f"Failed to append {len(rows)} row(s) to {self.name!r}: {exc}"
            raise IndexWriteError(msg) from exc

        written = [
            IndexedDocument(id=doc.id, text=doc.text, vector=list(doc.vector), seq=row.seq)
            for doc, row in zip(documents, rows, strict=True)
        ]

        async with self._cache_lock:
            if self._index is not None:
                entries = [
                    (row.seq, doc.id, doc.text, np.asarray(doc.vector, dtype=np.float32))
                    for doc, row in zip(documents, rows, strict=True)
                ]
                self._add_to_index(entries)  # type: ignore[arg-type]

        logger.debug("Appended %d row(s) to %s", len(written), self.name)
        return written

    async def delete(self, doc_id: str) -> int:
        """Delete every row whose ``id`` is *doc_id*.  Returns the row count removed."""
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    delete(KnowledgeBaseRow)
                    .where(KnowledgeBaseRow.id == doc_id)  # type: ignore[arg-type]
                    .returning(KnowledgeBaseRow.seq)
                )
                seqs = [int(seq) for seq in result.scalars().all()]
                await session.commit()
        except (SQLAlchemyError, OSError) as exc:
            logger.error("Delete from %s failed for %s: %s", self.name, doc_id, exc, exc_info=True)
            msg = f"Failed to delete {doc_id!r} from {self.name!r}: {exc}"
            raise IndexWriteError(msg) from exc

        async with self._cache_lock:
            if self._index is not None:
                self._remove_from_index(seqs)

        logger.debug("Deleted %d row(s) with id %s from %s", len(seqs), doc_id, self.name)
        return len(seqs)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def count(self) -> int:
        """Return the number of rows in the table."""
        async with self._session_factory() as session:
            result = await session.execute(select(func.count()).select_from(KnowledgeBaseRow))
            return int(result.scalar_one())

    async def rows(self) -> list[IndexedDocument]:
        """Return every row in insertion order."""
        return [
            IndexedDocument(
                id=row.id,
                text=row.text,
                vector=decode_vector(row.vector, self.dimension).tolist(),
                seq=row.seq,
            )
            for row in await self._fetch_rows()
        ]

    async def ids(self) -> list[str]:
        """Return the ``id`` of every row in insertion order (duplicates included)."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(KnowledgeBaseRow.id).order_by(KnowledgeBaseRow.seq)  # type: ignore[arg-type]
            )
            return list(result.scalars().all())

    async def nearest(
        self,
        vector: Sequence[float],
        k: int,
        *,
        exact: bool = True,
    ) -> list[tuple[IndexedDocument, float]]:
        """Return up to *k* ``(row, distance)`` pairs closest to *vector*.

        Pairs are ordered by increasing distance; equal distances keep
        insertion order.  With ``exact=True`` every row is ranked, so ties
        are resolved across the whole table.  Returned rows carry an empty
        ``vector``.
        """
        query = np.asarray(vector, dtype=np.float32)
        if query.ndim != 1 or query.shape[0] != self.dimension:
            msg = f"Query vector has shape {query.shape}, expected ({self.dimension},)"
            raise ValueError(msg)

        try:
            await self._ensure_index()
        except (SQLAlchemyError, OSError) as exc:
            logger.error("Reading %s for search failed: %s", self.name, exc, exc_info=True)
            msg = f"Failed to read vector table {self.name!r}: {exc}"
            raise StorageError(msg) from exc
        return await asyncio.to_thread(self._search_sync, query, k, exact)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _fetch_rows(self, after: int = 0) -> list[KnowledgeBaseRow]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(KnowledgeBaseRow)
                .where(KnowledgeBaseRow.seq > after)  # type: ignore[operator]
                .order_by(KnowledgeBaseRow.seq)  # type: ignore[arg-type]
            )
            return list(result.scalars().all())

    async def _table_state(self) -> tuple[int, int, datetime | None]:
        """Return ``(row count, highest seq, creation stamp)`` in one query."""
        created_at = (
            select(VectorTableMeta.created_at)
            .where(VectorTableMeta.name == self.name)  # type: ignore[arg-type]
            .scalar_subquery()
        )
        async with self._session_factory() as session:
            result = await session.execute(
                select(
                    func.count(KnowledgeBaseRow.seq),  # type: ignore[arg-type]
                    func.max(KnowledgeBaseRow.seq),  # type: ignore[arg-type]
                    created_at,
                )
            )
            total, max_seq, stamp = result.one()
        return int(total), int(max_seq or 0), stamp

    def _decode_rows(
        self, rows: list[KnowledgeBaseRow]
    ) -> list[tuple[int, str, str, np.ndarray]]:
        try:
            return [
                (int(r.seq), r.id, r.text, decode_vector(r.vector, self.dimension))  # type: ignore[arg-type]
                for r in rows
            ]
        except ValueError as exc:
            msg = f"Corrupt row in {self.name!r}: {exc}"
            raise SchemaMismatchError(msg) from exc

    async def _ensure_index(self) -> None:
        async with self._cache_lock:
            total, max_seq, created_at = await self._table_state()
            if self._index is not None and created_at == self._created_at:
                cached = len(self._key_to_row)
                if total == cached and max_seq <= self._max_seq:
                    return
                if total > cached:
                    fresh = self._decode_rows(await self._fetch_rows(after=self._max_seq))
                    if cached + len(fresh) == total:
                        self._add_to_index(fresh)
                        logger.debug(
                            "Added %d row(s) written elsewhere to %s", len(fresh), self.name
                        )
                        return
            await self._rebuild_index(created_at)

    async def _rebuild_index(self, created_at: datetime | None) -> None:
        entries = self._decode_rows(await self._fetch_rows())
        index = Index(
            ndim=self.dimension,
            metric=_USEARCH_METRICS[self._info.metric],
            dtype="f32",
        )
        if entries:
            keys = np.array([e[0] for e in entries], dtype=np.uint64)
            matrix = np.stack([e[3] for e in entries])
            await asyncio.to_thread(index.add, keys, matrix)
        with self._index_lock:
            self._index = index
            self._key_to_row = {key: (doc_id, text) for key, doc_id, text, _ in entries}
            self._max_seq = max(self._key_to_row, default=0)
            self._created_at = created_at
        logger.debug("Built search index for %s with %d row(s)", self.name, len(entries))

    def _add_to_index(self, entries: list[tuple[int, str, str, np.ndarray]]) -> None:
        assert self._index is not None
        with self._index_lock:
            for key, doc_id, text, vector in entries:
                # A refresh from disk may already have picked this row up.
                if key in self._key_to_row:
                    continue
                self._index.add(key, vector)
                self._key_to_row[key] = (doc_id, text)
                self._max_seq = max(self._max_seq, key)

    def _remove_from_index(self, seqs: list[int]) -> None:
        assert self._index is not None
        with self._index_lock:
            for key in seqs:
                if self._key_to_row.pop(key, None) is not None:
                    self._index.remove(key)

    def _search_sync(
        self,
        query: np.ndarray,
        k: int,
        exact: bool,
    ) -> list[tuple[IndexedDocument, float]]:
        assert self._index is not None
        with self._index_lock:
            size = len(self._key_to_row)
            if size == 0:
                return []
            count = size if exact else min(k, size)
            matches = self._index.search(query, count, exact=exact)
            hits: list[tuple[float, int, str, str]] = []
            for key, distance in zip(
                matches.keys.tolist(), matches.distances.tolist(), strict=True
            ):
                row = self._key_to_row.get(int(key))
                if row is None:
                    continue
                dist = float(distance)
                if math.isnan(dist):
                    dist = math.inf
                hits.append((dist, int(key), row[0], row[1]))

        hits.sort(key=lambda h: (h[0], h[1]))
        return [
            (IndexedDocument(id=doc_id, text=text, vector=[], seq=seq), dist)
            for dist, seq, doc_id, text in hits[:k]
        ]


# ------------------------------------------------------------------
# Manager
# ------------------------------------------------------------------


class VectorTableManager:
    """Owns the knowledge-base table's lifecycle in a dedicated directory.

    ``ensure_table(create_if_missing=True)`` opens the table, creating the
    fixed schema with zero rows when absent; repeated or concurrent calls
    never fail because the table already exists.  With
    ``create_if_missing=False`` a missing table raises
    :class:`TableNotFoundError`.

    The schema record stored alongside the table (dimension, model,
    metric) is checked on every open; vectors from a different model are
    incompatible and raise :class:`SchemaMismatchError`.
    """

    def __init__(
        self,
        table_dir: Path,
        *,
        dimension: int,
        model_name: str,
        metric: str = "cosine",
    ) -> None:
        if metric not in _USEARCH_METRICS:
            msg = f"Unsupported metric {metric!r}"
            raise ValueError(msg)
        self.table_dir = table_dir
        self._expected = TableInfo(
            name=KNOWLEDGE_BASE_TABLE,
            dimension=dimension,
            model_name=model_name,
            metric=metric,
        )

        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None
        self._init_lock = asyncio.Lock()
        self._table_lock = asyncio.Lock()
        self._table: VectorTable | None = None

    @property
    def table_name(self) -> str:
        return self._expected.name

    @property
    def db_path(self) -> Path:
        return self.table_dir / DB_FILENAME

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def ensure_table(self, create_if_missing: bool = True) -> VectorTable:
        """Open the table, creating it first if *create_if_missing* is set."""
        if self._table is not None:
            return self._table

        if not create_if_missing and not self.db_path.exists():
            msg = f"Vector table {self.table_name!r} does not exist in {self.table_dir}"
            raise TableNotFoundError(msg)

        try:
            await self._ensure_engine()
            async with self._table_lock:
                if self._table is not None:
                    return self._table
                info = await self._open_info(create_if_missing)
                self._verify(info)
                assert self._session_factory is not None
                self._table = VectorTable(self._session_factory, info)
                return self._table
        except (SQLAlchemyError, OSError) as exc:
            logger.error("Opening vector table %s failed: %s", self.table_name, exc, exc_info=True)
            msg = f"Failed to open vector table {self.table_name!r} in {self.table_dir}: {exc}"
            raise StorageError(msg) from exc

    async def drop_table(self) -> None:
        """Drop the table and its schema record.  No-op if it was never created."""
        if not self.db_path.exists():
            return
        row_table = KnowledgeBaseRow.__table__  # type: ignore[attr-defined]
        meta_table = VectorTableMeta.__table__  # type: ignore[attr-defined]
        try:
            await self._ensure_engine()
            assert self._engine is not None
            async with self._table_lock:
                async with self._engine.begin() as conn:
                    await conn.execute(DropTable(row_table, if_exists=True))
                    await conn.execute(CreateTable(meta_table, if_not_exists=True))
                    await conn.execute(
                        delete(VectorTableMeta).where(VectorTableMeta.name == self.table_name)  # type: ignore[arg-type]
                    )
                self._table = None
        except (SQLAlchemyError, OSError) as exc:
            logger.error("Dropping vector table %s failed: %s", self.table_name, exc, exc_info=True)
            msg = f"Failed to drop vector table {self.table_name!r}: {exc}"
            raise StorageError(msg) from exc
        logger.info("Dropped vector table %s", self.table_name)

    async def close(self) -> None:
        """Dispose the database engine and forget the open table."""
        self._table = None
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _ensure_engine(self) -> None:
        if self._session_factory is not None:
            return
        async with self._init_lock:
            if self._session_factory is not None:
                return

            self.table_dir.mkdir(parents=True, exist_ok=True)
            self._engine = create_async_engine(
                f"sqlite+aiosqlite:///{self.db_path}",
                echo=False,
            )

            @event.listens_for(self._engine.sync_engine, "connect")
            def _set_sqlite_pragma(dbapi_connection: object, connection_record: object) -> None:
                cursor = dbapi_connection.cursor()  # type: ignore[union-attr]
                # Before journal_mode: switching a fresh file to WAL takes a lock.
                cursor.execute("PRAGMA busy_timeout=5000")
                cursor.execute("PRAGMA journal_mode=WAL")
                result = cursor.fetchone()
                if result[0].lower() != "wal":
                    logger.warning("WAL mode not active, got: %s", result[0])
                cursor.execute("PRAGMA synchronous=FULL")
                cursor.close()

            self._session_factory = async_sessionmaker(
                self._engine,
                class_=AsyncSession,
                expire_on_commit=False,
            )

    async def _table_exists(self) -> bool:
        assert self._engine is not None
        async with self._engine.connect() as conn:
            return await conn.run_sync(
                lambda c: inspect(c).has_table(KNOWLEDGE_BASE_TABLE)
                and inspect(c).has_table(VectorTableMeta.__tablename__)
            )

    async def _create_table(self) -> None:
        """Create the schema and its record; safe against other managers doing the same.

        Every statement is a no-op when its target already exists, so a
        concurrent creator on the same file (another manager or process)
        never turns into an "already exists" failure here.
        """
        assert self._engine is not None
        row_table = KnowledgeBaseRow.__table__  # type: ignore[attr-defined]
        meta_table = VectorTableMeta.__table__  # type: ignore[attr-defined]
        async with self._engine.begin() as conn:
            for table in (row_table, meta_table):
                await conn.execute(CreateTable(table, if_not_exists=True))
                for index in table.indexes:
                    await conn.execute(CreateIndex(index, if_not_exists=True))
            stmt = (
                sqlite_insert(meta_table)
                .values(
                    name=self.table_name,
                    dimension=self._expected.dimension,
                    model_name=self._expected.model_name,
                    metric=self._expected.metric,
                    created_at=datetime.now(UTC),
                )
                .on_conflict_do_nothing(index_elements=["name"])
            )
            result = await conn.execute(stmt)

        if not result.rowcount:
            logger.debug("Vector table %s was created concurrently", self.table_name)
            return
        logger.info(
            "Created vector table %s (dimension=%d, model=%s) in %s",
            self.table_name,
            self._expected.dimension,
            self._expected.model_name,
            self.table_dir,
        )

    async def _open_info(self, create_if_missing: bool) -> TableInfo:
        if not await self._table_exists():
            if not create_if_missing:
                msg = f"Vector table {self.table_name!r} does not exist in {self.table_dir}"
                raise TableNotFoundError(msg)
            await self._create_table()

        info = await self._read_info()
        if info is None:
            # Table present without a schema record; adopt the configured one.
            await self._create_table()
            info = await self._read_info()
        assert info is not None
        return info

    async def _read_info(self) -> TableInfo | None:
        assert self._session_factory is not None
        async with self._session_factory() as session:
            meta = await session.get(VectorTableMeta, self.table_name)
        if meta is None:
            return None
        return TableInfo(
            name=meta.name,
            dimension=meta.dimension,
            model_name=meta.model_name,
            metric=meta.metric,
        )

    def _verify(self, info: TableInfo) -> None:
        expected = self._expected
        mismatches = [
            f"{attr}: table has {getattr(info, attr)!r}, configured {getattr(expected, attr)!r}"
            for attr in ("dimension", "model_name", "metric")
            if getattr(info, attr) != getattr(expected, attr)
        ]
        if mismatches:
            msg = (
                f"Vector table {info.name!r} is incompatible with the current configuration "
                f"({'; '.join(mismatches)}); reset the store to rebuild it"
            )
            raise SchemaMismatchError(msg)
