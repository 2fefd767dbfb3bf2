from __future__ import annotations

import asyncio
import json
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from notememory.errors import ProviderError, StorageError
from notememory.retrieval import sqlite_store, store_faiss
from notememory.retrieval.embedder import EmbeddingProvider
from notememory.retrieval.types import NoteDocument, SearchHit
from notememory.utils.logging import get_logger
from notememory.utils.rwlock import ReadWriteLock

MAX_NOTE_CHARS = 25000


class NoteMemory:
    """
    Semantic index over notes: one document and one vector per note id.

    Rows live in SQLite (see ``sqlite_store``); an in-memory FAISS index over
    the same vectors answers nearest-neighbour queries. ``search`` holds the
    read side of a reader/writer lock; ``clear_all`` and the in-memory part of
    ``index_note``/``remove_note`` hold the write side. Writes are ordered
    among themselves and are not interrupted by caller cancellation.

    Must be opened before use (``await memory.open()`` or ``async with``).
    """

    def __init__(
        self,
        db_path: str | Path,
        embedder: EmbeddingProvider,
        *,
        model: Optional[str] = None,
        max_note_chars: int = MAX_NOTE_CHARS,
        logger=None,
    ):
        self.db_path = str(db_path)
        self.embedder = embedder
        self.model = model or embedder.provider_name
        self.max_note_chars = int(max_note_chars)
        self.log = logger or get_logger("memory")

        self._conn = sqlite_store.StoreConnection(self.db_path)
        self._lock = ReadWriteLock()
        self._writes = asyncio.Lock()
        self._index = None
        self._stale: Optional[str] = None

    @property
    def dimension(self) -> int:
        return self.embedder.dimension

    @property
    def is_open(self) -> bool:
        return self._index is not None

    @property
    def stale(self) -> bool:
        return self._stale is not None

    # --- lifecycle ---

    async def open(self) -> "NoteMemory":
        if self._index is not None:
            return self

        await self._conn.open()
        try:
            dimension, model = await self._conn.call(sqlite_store.create_schema, self.dimension, self.model)

            if (dimension, model) != (self.dimension, self.model):
                self._stale = (
                    f"Vector store was built with model={model} dimension={dimension}, "
                    f"but the embedder uses model={self.model} dimension={self.dimension}; "
                    f"run clear_all() and reindex"
                )
                self.log.warning("OPEN stale | db=%s | %s", self.db_path, self._stale)
                self._index = store_faiss.new_index(self.dimension)
                return self

            rows = await self._conn.call(sqlite_store.load_vectors)
            self._index = await asyncio.to_thread(self._build_index, rows)
        except BaseException:
            await self._conn.close()
            raise

        self.log.info(
            "OPEN ok | db=%s | notes=%s | dimension=%s | model=%s",
            self.db_path, self._index.ntotal, self.dimension, self.model
        )
        return self

    def _build_index(self, rows: Sequence[Tuple[int, bytes]]):
        ids = [rowid for rowid, _ in rows]
        vectors = [store_faiss.from_blob(blob, self.dimension) for _, blob in rows]
        return store_faiss.build_index(self.dimension, ids, np.array(vectors, dtype="float32"))

    async def close(self) -> None:
        async with self._writes:
            await self._conn.close()
            self._index = None

    async def __aenter__(self) -> "NoteMemory":
        return await self.open()

    async def __aexit__(self, *exc) -> None:
        await self.close()

    def _require_open(self) -> None:
        if self._index is None:
            raise StorageError("NoteMemory is not open")

    def _require_fresh(self) -> None:
        if self._stale is not None:
            raise StorageError(self._stale)

    def _check_vector(self, vector: Sequence[float]) -> None:
        if len(vector) != self.dimension:
            raise ProviderError(
                f"Embedding has dimension {len(vector)}, index expects {self.dimension}"
            )

    # --- operations ---

    def _document(self, note_id: str, content: str, metadata: Optional[Dict[str, Any]]) -> NoteDocument:
        if not note_id or not note_id.strip():
            raise ValueError("note_id must not be empty")
        text = content or ""
        if len(text) > self.max_note_chars:
            self.log.warning(
                "INDEX truncated | note_id=%s | chars=%s | kept=%s",
                note_id, len(text), self.max_note_chars
            )
            text = text[: self.max_note_chars]
        return NoteDocument(id=note_id, content=text, metadata=dict(metadata or {}))

    async def index_note(
        self,
        note_id: str,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> NoteDocument:
        """
        Embed a note and insert or replace its row and vector.

        Content longer than ``max_note_chars`` is truncated before embedding.
        If embedding or the write fails the previously stored document is left
        as it was.
        """
        self._require_open()
        self._require_fresh()

        doc = self._document(note_id, content, metadata)
        meta_json = json.dumps(doc.metadata, ensure_ascii=False)

        t0 = time.perf_counter()
        vector = await self.embedder.embed_text(doc.content)
        self._check_vector(vector)

        await asyncio.shield(self._write_note(doc, meta_json, vector))

        self.log.info(
            "INDEX ok | note_id=%s | chars=%s | latency_ms=%s",
            doc.id, len(doc.content), int((time.perf_counter() - t0) * 1000)
        )
        return doc

    async def _write_note(self, doc: NoteDocument, meta_json: str, vector: Sequence[float]) -> None:
        blob = store_faiss.to_blob(vector)
        async with self._writes:
            self._require_fresh()
            rowid = await self._conn.call(
                sqlite_store.upsert_note, doc.id, doc.content, meta_json, blob
            )
            async with self._lock.write():
                store_faiss.upsert(self._index, rowid, vector)

    async def remove_note(self, note_id: str) -> bool:
        """Delete a note's vector and row. Returns False if there was nothing to delete."""
        self._require_open()
        return await asyncio.shield(self._delete_note(note_id))

    async def _delete_note(self, note_id: str) -> bool:
        async with self._writes:
            rowid = await self._conn.call(sqlite_store.delete_note, note_id)
            if rowid is None:
                self.log.info("REMOVE noop | note_id=%s", note_id)
                return False
            async with self._lock.write():
                store_faiss.remove(self._index, rowid)

        self.log.info("REMOVE ok | note_id=%s | rowid=%s", note_id, rowid)
        return True

    async def search(
        self,
        query: str,
        limit: int = 5,
        *,
        min_score: Optional[float] = None,
    ) -> List[SearchHit]:
        """Nearest notes to ``query`` by cosine similarity, best first."""
        self._require_open()
        self._require_fresh()

        q = (query or "").strip()
        if not q:
            raise ValueError("Empty query")
        if limit <= 0:
            raise ValueError("limit must be > 0")

        t0 = time.perf_counter()
        q_vec = await self.embedder.embed_text(q)
        self._check_vector(q_vec)

        async with self._lock.read():
            scores, ids = await asyncio.to_thread(store_faiss.query, self._index, q_vec, limit)

            pairs: List[Tuple[int, float]] = []
            for s, i in zip(scores, ids):
                if i < 0:
                    continue
                if min_score is not None and s < min_score:
                    continue
                pairs.append((int(i), float(s)))

            rows = await self._conn.call(sqlite_store.fetch_notes, [i for i, _ in pairs])

        hits: List[SearchHit] = []
        for rowid, score in pairs:
            row = rows.get(rowid)
            if row is None:
                continue
            note_id, content, metadata = row
            hits.append(SearchHit(score=score, note_id=note_id, metadata=metadata, content=content))

        hits.sort(key=lambda h: h.score, reverse=True)

        self.log.info(
            "SEARCH ok | q_len=%s | limit=%s | returned=%s | top_score=%s | latency_ms=%s",
            len(q), limit, len(hits),
            f"{hits[0].score:.4f}" if hits else None,
            int((time.perf_counter() - t0) * 1000),
        )
        return hits

    async def clear_all(self) -> List[str]:
        """
        Drop every stored note and vector table and recreate an empty schema.

        Used to rebuild from scratch after the embedding model or dimension
        changed. Exclusive with every other operation, and runs to completion
        once started even if the caller is cancelled. Returns the dropped tables.
        """
        self._require_open()
        return await asyncio.shield(self._rebuild())

    async def _rebuild(self) -> List[str]:
        async with self._writes:
            async with self._lock.write():
                dropped = await self._conn.call(
                    sqlite_store.rebuild_schema, self.dimension, self.model
                )
                self._index = store_faiss.new_index(self.dimension)
                self._stale = None

        self.log.warning("CLEAR ok | db=%s | dropped=%s", self.db_path, ",".join(dropped))
        return dropped

    async def count(self) -> int:
        self._require_open()
        return await self._conn.call(sqlite_store.count_notes)
