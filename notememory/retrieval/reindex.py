from __future__ import annotations

import asyncio
import time
from typing import Any, Dict, Iterable, Optional, Tuple

from notememory.errors import RetrievalError
from notememory.retrieval.chunking import ChunkConfig, chunk_text
from notememory.retrieval.memory import NoteMemory
from notememory.retrieval.types import IndexStats
from notememory.utils.logging import get_logger

NoteInput = Tuple[str, str, Optional[Dict[str, Any]]]

log = get_logger("reindex")


async def reindex_notes(
    memory: NoteMemory,
    notes: Iterable[NoteInput],
    *,
    chunk_config: Optional[ChunkConfig] = None,
    clear: bool = True,
) -> IndexStats:
    """
    Rebuild the index from already-read notes.

    With ``clear`` the store is wiped first (``clear_all``). Blank notes are
    skipped; a note whose embedding or write fails is recorded in
    ``stats.errors`` and the run moves on. Chunk and token counts are
    estimates from the chunker, collected for reporting only.
    """
    t0 = time.perf_counter()
    chunk_config = chunk_config or ChunkConfig()
    chunk_config.check()

    if clear:
        await memory.clear_all()

    stats = IndexStats()

    for note_id, content, metadata in notes:
        stats.total_notes += 1

        if not content or not content.strip():
            stats.skip_note()
            continue

        chunks = await asyncio.to_thread(chunk_text, content, chunk_config)

        try:
            await memory.index_note(note_id, content, metadata)
        except (RetrievalError, ValueError, TypeError) as e:
            # bad id or unserializable metadata fails this note only
            log.warning("REINDEX note failed | note_id=%s | err=%s", note_id, f"{type(e).__name__}: {e}")
            stats.add_error(f"{note_id}: {e}")
            continue

        stats.add_note(len(chunks), sum(c.token_count for c in chunks))

    log.info(
        "REINDEX done | notes=%s | indexed=%s | skipped=%s | errors=%s | chunks=%s | tokens=%s | build_time_sec=%.3f",
        stats.total_notes,
        stats.indexed_notes,
        stats.skipped_notes,
        len(stats.errors),
        stats.total_chunks,
        stats.total_tokens,
        time.perf_counter() - t0,
    )
    return stats
