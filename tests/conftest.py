from __future__ import annotations

from typing import List, Sequence

import pytest
import pytest_asyncio

from notememory.errors import EmbeddingError
from notememory.retrieval.memory import NoteMemory

VOCAB = ["python", "garden", "recipe", "travel", "music", "finance", "misc"]


class KeywordEmbedder:
    """
    Deterministic stand-in for a real model: one axis per vocabulary word,
    value = how often the word occurs. Texts sharing words are similar.
    """

    provider_name = "fake"

    def __init__(self, vocab: Sequence[str] = VOCAB):
        self.vocab = list(vocab)
        self.calls = 0
        self.fail = False
        self.fail_on: set[str] = set()

    @property
    def dimension(self) -> int:
        return len(self.vocab)

    def _vec(self, text: str) -> List[float]:
        words = [w.strip(".,;:!?").lower() for w in text.split()]
        vec = [float(words.count(v)) for v in self.vocab]
        if not any(vec):
            vec[-1] = 1.0
        return vec

    async def embed_text(self, text: str) -> List[float]:
        self.calls += 1
        if self.fail or any(w in text for w in self.fail_on):
            raise EmbeddingError("embedding service unavailable")
        return self._vec(text)

    async def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        return [await self.embed_text(t) for t in texts]


@pytest.fixture
def embedder() -> KeywordEmbedder:
    return KeywordEmbedder()


@pytest.fixture
def make_embedder():
    return KeywordEmbedder


@pytest_asyncio.fixture
async def memory(tmp_path, embedder):
    mem = NoteMemory(tmp_path / "memory.db", embedder, model="fake-model")
    await mem.open()
    yield mem
    await mem.close()
