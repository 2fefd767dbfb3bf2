from __future__ import annotations

import math
from dataclasses import dataclass
from typing import List, Optional, Tuple

from notememory.config import EmbeddingConfig
from notememory.errors import ConfigError
from notememory.retrieval.types import TextChunk

BOUNDARY_PUNCT = frozenset(".!?,;:")
LOOKBACK_CHARS = 50
PARAGRAPH_SEP = "\n\n"

Span = Tuple[int, int]


@dataclass(frozen=True)
class ChunkConfig:
    max_tokens: int = 512
    overlap_tokens: int = 50
    chars_per_token: float = 4.0  # rough average for English/Spanish prose

    @classmethod
    def from_embedding_config(cls, cfg: EmbeddingConfig) -> "ChunkConfig":
        return cls(max_tokens=cfg.max_chunk_tokens, overlap_tokens=cfg.overlap_tokens)

    def chunk_size_chars(self) -> int:
        return int(self.max_tokens * self.chars_per_token)

    def overlap_size_chars(self) -> int:
        return int(self.overlap_tokens * self.chars_per_token)

    def estimate_tokens(self, text: str) -> int:
        return estimate_tokens(text, self.chars_per_token)

    def check(self) -> None:
        if self.max_tokens <= 0:
            raise ConfigError("max_tokens must be > 0")
        if self.overlap_tokens < 0:
            raise ConfigError("overlap_tokens must be >= 0")
        if self.overlap_tokens >= self.max_tokens:
            raise ConfigError("overlap_tokens must be < max_tokens")
        if self.chars_per_token <= 0:
            raise ConfigError("chars_per_token must be > 0")
        if self.chunk_size_chars() - self.overlap_size_chars() <= 0:
            raise ConfigError("chunk size in characters must exceed the overlap")


def estimate_tokens(text: str, chars_per_token: float = 4.0) -> int:
    """
    Approximate token count: ceil(characters / chars_per_token).

    This is a character heuristic, not a tokenizer. Counts from different
    models' tokenizers will differ; treat the result as an estimate.
    """
    return math.ceil(len(text) / chars_per_token)


def _snap_to_boundary(text: str, start: int, end: int) -> int:
    # never snap back to (or behind) the window start
    lo = max(start + 1, end - LOOKBACK_CHARS)
    for i in range(end - 1, lo - 1, -1):
        c = text[i]
        if c.isspace() or c in BOUNDARY_PUNCT:
            return i + 1
    return end


def _window_spans(text: str, config: ChunkConfig) -> List[Span]:
    n = len(text)
    size = config.chunk_size_chars()
    overlap = config.overlap_size_chars()
    step = size - overlap

    spans: List[List[int]] = []
    start = 0

    while start < n:
        end = min(n, start + size)
        if end < n:
            end = _snap_to_boundary(text, start, end)
        spans.append([start, end])

        if end >= n:
            break

        # a snapped end must not eat into the overlap
        start = max(start + 1, min(start + step, end - overlap))

        if n - start < size // 4:
            spans[-1][1] = n
            break

    return [(s, e) for s, e in spans]


def _build(text: str, spans: List[Span], config: ChunkConfig) -> List[TextChunk]:
    out: List[TextChunk] = []
    for i, (s, e) in enumerate(spans):
        piece = text[s:e]
        out.append(
            TextChunk(
                text=piece,
                index=i,
                start_pos=s,
                end_pos=e,
                token_count=config.estimate_tokens(piece),
            )
        )
    return out


def _single(text: str, config: ChunkConfig) -> Optional[List[TextChunk]]:
    if not text:
        return []
    if config.estimate_tokens(text) <= config.max_tokens:
        return _build(text, [(0, len(text))], config)
    return None


def chunk_text(text: str, config: Optional[ChunkConfig] = None) -> List[TextChunk]:
    config = config or ChunkConfig()
    config.check()

    small = _single(text, config)
    if small is not None:
        return small

    return _build(text, _window_spans(text, config), config)


def chunk_by_paragraphs(text: str, config: Optional[ChunkConfig] = None) -> List[TextChunk]:
    config = config or ChunkConfig()
    config.check()

    small = _single(text, config)
    if small is not None:
        return small

    spans: List[Span] = []
    cur_start: Optional[int] = None
    cur_end = 0
    pos = 0

    for para in text.split(PARAGRAPH_SEP):
        p_start, p_end = pos, pos + len(para)
        pos = p_end + len(PARAGRAPH_SEP)

        if not para.strip():
            continue

        if config.estimate_tokens(para) > config.max_tokens:
            if cur_start is not None:
                spans.append((cur_start, cur_end))
                cur_start = None
            spans.extend((p_start + s, p_start + e) for s, e in _window_spans(para, config))
            continue

        if cur_start is not None and config.estimate_tokens(text[cur_start:p_end]) > config.max_tokens:
            spans.append((cur_start, cur_end))
            cur_start = None

        if cur_start is None:
            cur_start = p_start
        cur_end = p_end

    if cur_start is not None:
        spans.append((cur_start, cur_end))

    return _build(text, spans, config)
