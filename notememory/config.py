from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from notememory.errors import ConfigError

load_dotenv()


def _bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _api_key() -> Optional[str]:
    for name in ("EMBEDDING_API_KEY", "OPENROUTER_API_KEY", "OPENAI_API_KEY"):
        v = os.getenv(name)
        if v:
            return v
    return None


class Settings:
    # --- Embeddings ---
    EMBEDDING_ENABLED: bool = _bool("EMBEDDING_ENABLED", "true")
    EMBEDDING_PROVIDER: str = os.getenv("EMBEDDING_PROVIDER", "remote")
    EMBEDDING_MODEL: str = os.getenv("EMBEDDING_MODEL", "qwen/qwen3-embedding-8b")
    EMBEDDING_API_KEY: Optional[str] = _api_key()
    EMBEDDING_API_URL: str = os.getenv("EMBEDDING_API_URL", "https://openrouter.ai/api/v1")
    EMBEDDING_DIMENSION: int = int(os.getenv("EMBEDDING_DIMENSION", "4096"))
    EMBEDDING_CACHE_ENABLED: bool = _bool("EMBEDDING_CACHE_ENABLED", "true")
    EMBED_TIMEOUT_S: float = float(os.getenv("EMBED_TIMEOUT_S", "60"))
    EMBED_RETRIES: int = int(os.getenv("EMBED_RETRIES", "3"))

    # --- Chunking ---
    MAX_CHUNK_TOKENS: int = int(os.getenv("MAX_CHUNK_TOKENS", "512"))
    OVERLAP_TOKENS: int = int(os.getenv("OVERLAP_TOKENS", "50"))

    # --- Retrieval ---
    MIN_SIMILARITY: float = float(os.getenv("MIN_SIMILARITY", "0.3"))
    SEARCH_LIMIT: int = int(os.getenv("SEARCH_LIMIT", "5"))

    # --- Storage ---
    MEMORY_DB_PATH: str = os.getenv("MEMORY_DB_PATH", "data/notes_memory.db")
    MAX_NOTE_CHARS: int = int(os.getenv("MAX_NOTE_CHARS", "25000"))

    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")


settings = Settings()


SUPPORTED_PROVIDERS = ("remote", "local")
MAX_DIMENSION = 4096


@dataclass
class EmbeddingConfig:
    enabled: bool = True
    provider: str = "remote"
    model: str = "qwen/qwen3-embedding-8b"
    api_key: Optional[str] = None
    api_url: str = "https://openrouter.ai/api/v1"
    dimension: int = 4096
    cache_enabled: bool = True
    max_chunk_tokens: int = 512
    overlap_tokens: int = 50
    min_similarity: float = 0.3

    @classmethod
    def from_settings(cls, s: Settings = settings) -> "EmbeddingConfig":
        return cls(
            enabled=s.EMBEDDING_ENABLED,
            provider=s.EMBEDDING_PROVIDER,
            model=s.EMBEDDING_MODEL,
            api_key=s.EMBEDDING_API_KEY,
            api_url=s.EMBEDDING_API_URL,
            dimension=s.EMBEDDING_DIMENSION,
            cache_enabled=s.EMBEDDING_CACHE_ENABLED,
            max_chunk_tokens=s.MAX_CHUNK_TOKENS,
            overlap_tokens=s.OVERLAP_TOKENS,
            min_similarity=s.MIN_SIMILARITY,
        )

    def invalid_reason(self) -> Optional[str]:
        """Why this config cannot be used, or None. Does not modify the config."""
        if not self.enabled:
            return "embeddings are disabled"
        if self.provider == "remote" and not self.api_key:
            return "an API key is required for the remote provider"
        if not self.model:
            return "model must not be empty"
        if self.dimension <= 0 or self.dimension > MAX_DIMENSION:
            return f"dimension must be between 1 and {MAX_DIMENSION}, got {self.dimension}"
        return None

    def is_valid(self) -> bool:
        return self.invalid_reason() is None

    def validate(self) -> None:
        """Normalize in place, then reject structurally inconsistent values."""
        self.model = self.model.strip()
        self.provider = self.provider.strip().lower()
        self.api_url = self.api_url.strip().rstrip("/")
        if self.api_key is not None:
            self.api_key = self.api_key.strip() or None

        if self.provider not in SUPPORTED_PROVIDERS:
            raise ConfigError(f"Unsupported embedding provider: {self.provider}")
        if self.dimension <= 0:
            raise ConfigError("dimension must be greater than 0")
        if self.dimension > MAX_DIMENSION:
            raise ConfigError(f"dimension must be at most {MAX_DIMENSION}")
        if self.max_chunk_tokens <= 0:
            raise ConfigError("max_chunk_tokens must be greater than 0")
        if self.overlap_tokens >= self.max_chunk_tokens:
            raise ConfigError("overlap_tokens must be smaller than max_chunk_tokens")
        if not 0.0 <= self.min_similarity <= 1.0:
            raise ConfigError("min_similarity must be between 0.0 and 1.0")

    def embeddings_endpoint(self) -> str:
        if self.provider == "local":
            return f"{self.api_url}/api/embeddings"
        return f"{self.api_url}/embeddings"
