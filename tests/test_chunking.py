from __future__ import annotations

import pytest

from notememory.config import EmbeddingConfig
from notememory.errors import ConfigError
from notememory.retrieval.chunking import (
    ChunkConfig,
    chunk_by_paragraphs,
    chunk_text,
    estimate_tokens,
)


def _assert_contiguous(chunks, text):
    assert [c.index for c in chunks] == list(range(len(chunks)))
    for c in chunks:
        assert c.text == text[c.start_pos : c.end_pos]
        assert c.start_pos < c.end_pos


def test_small_text_is_one_chunk():
    text = "A short note that needs no chunking."

    chunks = chunk_text(text)

    assert len(chunks) == 1
    assert chunks[0].text == text
    assert chunks[0].index == 0
    assert chunks[0].start_pos == 0
    assert chunks[0].end_pos == len(text)


def test_empty_text():
    assert chunk_text("") == []
    assert chunk_by_paragraphs("") == []


def test_large_text_chunking():
    config = ChunkConfig()
    text = "palabra " * 3000

    chunks = chunk_text(text, config)

    assert len(chunks) > 1
    _assert_contiguous(chunks, text)
    assert all(c.token_count <= config.max_tokens for c in chunks)
    assert chunks[0].start_pos == 0
    assert chunks[-1].end_pos == len(text)
    for cur, nxt in zip(chunks, chunks[1:]):
        assert nxt.start_pos < cur.end_pos


def test_custom_config_scenario():
    config = ChunkConfig(max_tokens=100, overlap_tokens=10, chars_per_token=5.0)
    text = "palabra " * 250
    assert len(text) == 2000

    chunks = chunk_text(text, config)

    assert len(chunks) >= 2
    _assert_contiguous(chunks, text)
    assert all(c.token_count <= 100 for c in chunks)
    for cur, nxt in zip(chunks, chunks[1:]):
        assert cur.end_pos - nxt.start_pos >= 10 * 5


def test_windows_break_on_word_boundaries():
    config = ChunkConfig(max_tokens=40, overlap_tokens=5, chars_per_token=4.0)
    text = "lorem ipsum, dolor sit amet. consectetur adipiscing elit; sed do! " * 20

    chunks = chunk_text(text, config)

    assert len(chunks) > 1
    for c in chunks[:-1]:
        assert c.text[-1].isspace() or c.text[-1] in ".!?,;:"


def test_snapped_boundary_keeps_overlap():
    # boundaries every 40 chars, so most window ends snap back
    config = ChunkConfig(max_tokens=100, overlap_tokens=2, chars_per_token=5.0)
    text = ("a" * 39 + " ") * 60

    chunks = chunk_text(text, config)

    for cur, nxt in zip(chunks, chunks[1:]):
        assert cur.end_pos - nxt.start_pos >= config.overlap_size_chars()


def test_small_tail_is_merged_into_previous_chunk():
    config = ChunkConfig(max_tokens=100, overlap_tokens=10, chars_per_token=5.0)
    text = "x" * 1450  # no boundaries: windows are 0-500, 450-950, 900-1400, tail of 100

    chunks = chunk_text(text, config)

    assert [(c.start_pos, c.end_pos) for c in chunks] == [(0, 500), (450, 950), (900, 1450)]
    assert chunks[-1].text == text[900:]
    assert chunks[-1].token_count == 110


def test_overlap_not_smaller_than_max_is_config_error():
    config = ChunkConfig(max_tokens=10, overlap_tokens=10)

    with pytest.raises(ConfigError):
        chunk_text("word " * 100, config)
    with pytest.raises(ConfigError):
        chunk_by_paragraphs("word " * 100, config)


def test_paragraphs_small_text_is_one_chunk():
    text = "Paragraph one.\n\nParagraph two.\n\nParagraph three."

    chunks = chunk_by_paragraphs(text)

    assert len(chunks) == 1
    assert chunks[0].text == text


def test_paragraphs_are_packed_greedily():
    config = ChunkConfig(max_tokens=20, overlap_tokens=2, chars_per_token=4.0)
    text = "\n\n".join(c * 30 for c in "abcd")

    chunks = chunk_by_paragraphs(text, config)

    assert [(c.start_pos, c.end_pos) for c in chunks] == [(0, 62), (64, 126)]
    assert chunks[0].text == "a" * 30 + "\n\n" + "b" * 30
    _assert_contiguous(chunks, text)


def test_large_paragraph_falls_back_to_windows():
    para1 = "palabra " * 300
    para2 = "texto " * 300
    para3 = "contenido " * 300
    text = f"{para1}\n\n{para2}\n\n{para3}"

    chunks = chunk_by_paragraphs(text)

    assert len(chunks) >= 2
    _assert_contiguous(chunks, text)
    assert all(c.token_count <= 512 for c in chunks)


def test_token_estimation():
    config = ChunkConfig()

    # 10 chars / 4 chars per token = 2.5 -> 3
    assert config.estimate_tokens("Hola mundo") == 3
    assert estimate_tokens("Hola mundo", 5.0) == 2


def test_config_from_embedding_config():
    cfg = EmbeddingConfig(max_chunk_tokens=256, overlap_tokens=32)

    config = ChunkConfig.from_embedding_config(cfg)

    assert config.max_tokens == 256
    assert config.overlap_tokens == 32
    assert config.chunk_size_chars() == 1024
    assert config.overlap_size_chars() == 128
