"""
SQLite persistence for note vectors.

Layout:
    note                  (id TEXT PRIMARY KEY, content TEXT, metadata TEXT)
    note_embeddings       (note_rowid INTEGER PRIMARY KEY, embedding BLOB)
    note_embeddings_info  (key TEXT PRIMARY KEY, value TEXT)

``note_embeddings*`` is the vector table family; ``clear_all`` drops the
content table and every table in that family, nothing else.

Every function here takes the connection as its first argument and is meant
to run through ``StoreConnection.call`` on the store's own thread.
"""

from __future__ import annotations

import asyncio
import functools
import json
import sqlite3
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from notememory.errors import StorageError

NOTE_TABLE = "note"
VECTOR_PREFIX = "note_embeddings"
VECTOR_TABLE = VECTOR_PREFIX
INFO_TABLE = f"{VECTOR_PREFIX}_info"

NoteRow = Tuple[str, str, Dict[str, Any]]


class StoreConnection:
    """
    A single sqlite3 connection owned by a single worker thread.

    ``call(fn, *args)`` runs ``fn(conn, *args)`` on that thread; calls are
    executed one at a time in submission order, so statements from different
    tasks never interleave. ``sqlite3.Error`` is re-raised as ``StorageError``.
    """

    def __init__(self, path: str | Path):
        self.path = str(path)
        self._executor: Optional[ThreadPoolExecutor] = None
        self._conn: Optional[sqlite3.Connection] = None

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.path)
        if self.path != ":memory:":
            conn.execute("PRAGMA journal_mode=WAL")
        return conn

    async def _submit(self, fn: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(self._executor, functools.partial(fn, *args))
        except sqlite3.Error as e:
            raise StorageError(f"{type(e).__name__}: {e}") from e

    async def open(self) -> None:
        if self._executor is not None:
            return
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="note-store")
        self._conn = await self._submit(self._connect)

    async def call(self, fn: Callable[..., Any], *args: Any) -> Any:
        if self._conn is None:
            raise StorageError("store connection is not open")
        return await self._submit(fn, self._conn, *args)

    async def close(self) -> None:
        if self._executor is None:
            return
        conn, self._conn = self._conn, None
        if conn is not None:
            await self._submit(conn.close)
        self._executor.shutdown(wait=True)
        self._executor = None


# --- schema ---

def _create(conn: sqlite3.Connection, dimension: int, model: str) -> None:
    conn.execute(
        f"CREATE TABLE IF NOT EXISTS {NOTE_TABLE} "
        "(id TEXT PRIMARY KEY, content TEXT, metadata TEXT)"
    )
    conn.execute(
        f"CREATE TABLE IF NOT EXISTS {VECTOR_TABLE} "
        "(note_rowid INTEGER PRIMARY KEY, embedding BLOB NOT NULL)"
    )
    conn.execute(
        f"CREATE TABLE IF NOT EXISTS {INFO_TABLE} "
        "(key TEXT PRIMARY KEY, value TEXT NOT NULL)"
    )
    conn.executemany(
        f"INSERT OR IGNORE INTO {INFO_TABLE} (key, value) VALUES (?, ?)",
        [("dimension", str(dimension)), ("model", model)],
    )


def _vector_tables(conn: sqlite3.Connection) -> List[str]:
    # GLOB: case-sensitive, and '_' is not a wildcard
    rows = conn.execute(
        "SELECT name FROM sqlite_master WHERE type = 'table' AND name GLOB ?",
        (f"{VECTOR_PREFIX}*",),
    ).fetchall()
    return [r[0] for r in rows]


def read_info(conn: sqlite3.Connection) -> Tuple[int, str]:
    info = dict(conn.execute(f"SELECT key, value FROM {INFO_TABLE}").fetchall())
    return int(info["dimension"]), info["model"]


def create_schema(conn: sqlite3.Connection, dimension: int, model: str) -> Tuple[int, str]:
    """Create missing tables; return the (dimension, model) the store was built with."""
    with conn:
        _create(conn, dimension, model)
    return read_info(conn)


def rebuild_schema(conn: sqlite3.Connection, dimension: int, model: str) -> List[str]:
    """Drop the note table and the whole vector table family, then recreate them. Atomic."""
    conn.execute("BEGIN")
    try:
        dropped = sorted(set(_vector_tables(conn)) | {VECTOR_TABLE})
        for name in dropped:
            conn.execute(f'DROP TABLE IF EXISTS "{name}"')
        conn.execute(f"DROP TABLE IF EXISTS {NOTE_TABLE}")
        _create(conn, dimension, model)
    except BaseException:
        conn.rollback()
        raise
    conn.commit()
    return dropped + [NOTE_TABLE]


def list_tables(conn: sqlite3.Connection) -> List[str]:
    rows = conn.execute("SELECT name FROM sqlite_master WHERE type = 'table' ORDER BY name").fetchall()
    return [r[0] for r in rows]


# --- rows ---

def upsert_note(
    conn: sqlite3.Connection,
    note_id: str,
    content: str,
    metadata_json: str,
    embedding: bytes,
) -> int:
    with conn:
        conn.execute(
            f"INSERT INTO {NOTE_TABLE} (id, content, metadata) VALUES (?, ?, ?) "
            "ON CONFLICT(id) DO UPDATE SET content = excluded.content, metadata = excluded.metadata",
            (note_id, content, metadata_json),
        )
        (rowid,) = conn.execute(
            f"SELECT rowid FROM {NOTE_TABLE} WHERE id = ?", (note_id,)
        ).fetchone()
        conn.execute(
            f"INSERT OR REPLACE INTO {VECTOR_TABLE} (note_rowid, embedding) VALUES (?, ?)",
            (rowid, embedding),
        )
    return int(rowid)


def delete_note(conn: sqlite3.Connection, note_id: str) -> Optional[int]:
    row = conn.execute(f"SELECT rowid FROM {NOTE_TABLE} WHERE id = ?", (note_id,)).fetchone()
    if row is None:
        return None
    with conn:
        conn.execute(f"DELETE FROM {VECTOR_TABLE} WHERE note_rowid = ?", (row[0],))
        conn.execute(f"DELETE FROM {NOTE_TABLE} WHERE id = ?", (note_id,))
    return int(row[0])


def fetch_notes(conn: sqlite3.Connection, rowids: Sequence[int]) -> Dict[int, NoteRow]:
    if not rowids:
        return {}
    placeholders = ", ".join("?" for _ in rowids)
    rows = conn.execute(
        f"SELECT rowid, id, content, metadata FROM {NOTE_TABLE} WHERE rowid IN ({placeholders})",
        [int(r) for r in rowids],
    ).fetchall()
    return {
        int(rowid): (note_id, content or "", json.loads(metadata) if metadata else {})
        for rowid, note_id, content, metadata in rows
    }


def load_vectors(conn: sqlite3.Connection) -> List[Tuple[int, bytes]]:
    rows = conn.execute(
        f"SELECT note_rowid, embedding FROM {VECTOR_TABLE} ORDER BY note_rowid"
    ).fetchall()
    return [(int(r), bytes(b)) for r, b in rows]


def count_notes(conn: sqlite3.Connection) -> int:
    (n,) = conn.execute(f"SELECT COUNT(*) FROM {NOTE_TABLE}").fetchone()
    return int(n)
