from __future__ import annotations

import pytest

from notememory.errors import ConfigError
from notememory.retrieval.chunking import ChunkConfig
from notememory.retrieval.reindex import reindex_notes


@pytest.mark.asyncio
async def test_reindex_replaces_everything(memory):
    await memory.index_note("old", "python legacy")

    stats = await reindex_notes(
        memory,
        [
            ("a", "python code", {"lang": "py"}),
            ("b", "garden plan", None),
            ("blank", "   ", None),
        ],
    )

    assert stats.total_notes == 3
    assert stats.indexed_notes == 2
    assert stats.skipped_notes == 1
    assert stats.total_chunks == 2
    assert stats.total_tokens > 0
    assert stats.errors == []
    assert stats.success_rate() == pytest.approx(200 / 3)

    assert await memory.count() == 2
    hits = await memory.search("python")
    assert hits[0].note_id == "a"
    assert hits[0].metadata == {"lang": "py"}
    assert "old" not in {h.note_id for h in hits}


@pytest.mark.asyncio
async def test_reindex_counts_chunks_of_long_notes(memory):
    config = ChunkConfig(max_tokens=20, overlap_tokens=2)

    stats = await reindex_notes(memory, [("long", "python " * 100, None)], chunk_config=config)

    assert stats.indexed_notes == 1
    assert stats.total_chunks > 1


@pytest.mark.asyncio
async def test_reindex_records_failures_and_continues(memory, embedder):
    embedder.fail_on = {"broken"}

    stats = await reindex_notes(
        memory,
        [("a", "python fine", None), ("b", "broken note", None), ("c", "garden fine", None)],
    )

    assert stats.indexed_notes == 2
    assert len(stats.errors) == 1
    assert stats.errors[0].startswith("b:")
    assert await memory.count() == 2


@pytest.mark.asyncio
async def test_reindex_without_clear_keeps_existing_notes(memory):
    await memory.index_note("old", "travel diary")

    await reindex_notes(memory, [("new", "python code", None)], clear=False)

    assert await memory.count() == 2


@pytest.mark.asyncio
async def test_reindex_rejects_bad_chunk_config(memory):
    await memory.index_note("old", "travel diary")

    with pytest.raises(ConfigError):
        await reindex_notes(
            memory,
            [("a", "python", None)],
            chunk_config=ChunkConfig(max_tokens=10, overlap_tokens=10),
        )

    assert await memory.count() == 1


@pytest.mark.asyncio
async def test_reindex_bad_note_does_not_abort_the_run(memory):
    await memory.index_note("old", "travel diary")

    stats = await reindex_notes(
        memory,
        [
            ("   ", "python text", {}),
            ("meta", "recipe soup", {"x": object()}),
            ("b", "garden notes", {}),
        ],
    )

    assert stats.total_notes == 3
    assert stats.indexed_notes == 1
    assert len(stats.errors) == 2
    assert stats.errors[1].startswith("meta:")
    assert await memory.count() == 1
    assert [h.note_id for h in await memory.search("garden", limit=1)] == ["b"]
