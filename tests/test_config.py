from __future__ import annotations

import pytest

from notememory.config import EmbeddingConfig, Settings
from notememory.errors import ConfigError
from notememory.retrieval.types import IndexStats


def test_default_config():
    config = EmbeddingConfig()

    assert config.enabled is True
    assert config.provider == "remote"
    assert config.dimension == 4096
    assert config.max_chunk_tokens == 512
    assert config.overlap_tokens == 50


def test_remote_needs_api_key():
    config = EmbeddingConfig()
    assert not config.is_valid()

    config.api_key = "test-key"
    assert config.is_valid()


def test_local_does_not_need_api_key():
    assert EmbeddingConfig(provider="local").is_valid()


@pytest.mark.parametrize(
    "changes",
    [
        {"enabled": False},
        {"model": ""},
        {"dimension": 0},
        {"dimension": 4097},
    ],
)
def test_is_valid_rejects(changes):
    config = EmbeddingConfig(api_key="test-key", **changes)

    assert not config.is_valid()
    assert config.invalid_reason()


def test_validate_normalizes():
    config = EmbeddingConfig(provider=" Remote ", model=" qwen/test ", api_url=" https://x.test/v1/ ")

    config.validate()

    assert config.provider == "remote"
    assert config.model == "qwen/test"
    assert config.api_url == "https://x.test/v1"


@pytest.mark.parametrize(
    "changes",
    [
        {"provider": "openrouter"},
        {"dimension": 0},
        {"max_chunk_tokens": 0},
        {"overlap_tokens": 512},
        {"min_similarity": 1.5},
        {"min_similarity": -0.1},
    ],
)
def test_validate_rejects(changes):
    with pytest.raises(ConfigError):
        EmbeddingConfig(**changes).validate()


def test_embeddings_endpoint():
    assert EmbeddingConfig(api_url="https://x.test/v1").embeddings_endpoint() == "https://x.test/v1/embeddings"
    assert (
        EmbeddingConfig(provider="local", api_url="http://localhost:11434").embeddings_endpoint()
        == "http://localhost:11434/api/embeddings"
    )


def test_from_settings():
    s = Settings()
    s.EMBEDDING_API_KEY = "k"
    s.EMBEDDING_DIMENSION = 8
    s.EMBEDDING_MODEL = "m"
    s.MIN_SIMILARITY = 0.5

    config = EmbeddingConfig.from_settings(s)

    assert config.api_key == "k"
    assert config.dimension == 8
    assert config.model == "m"
    assert config.min_similarity == 0.5


def test_index_stats():
    stats = IndexStats(total_notes=10)
    stats.add_note(5, 100)
    stats.add_note(3, 80)
    stats.skip_note()
    stats.add_error("x: failed")

    assert stats.indexed_notes == 2
    assert stats.total_chunks == 8
    assert stats.total_tokens == 180
    assert stats.skipped_notes == 1
    assert stats.errors == ["x: failed"]
    assert stats.success_rate() == 20.0
    assert IndexStats().success_rate() == 0.0
