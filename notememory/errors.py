from __future__ import annotations

from typing import Optional


class NoteMemoryError(Exception):
    pass


class ConfigError(NoteMemoryError, ValueError):
    """Invalid embedding or chunking configuration. Raised eagerly, at construction."""


class ProviderNotImplementedError(ConfigError, NotImplementedError):
    def __init__(self, provider: str, dimension: int):
        self.provider = provider
        self.dimension = dimension
        super().__init__(
            f"Embedding provider '{provider}' (dimension={dimension}) is not implemented; "
            f"use the 'remote' provider"
        )


class RetrievalError(NoteMemoryError):
    """Semantic retrieval is unavailable. Callers degrade, they do not crash."""


class EmbeddingError(RetrievalError):
    pass


class TransportError(EmbeddingError):
    pass


class ProviderError(EmbeddingError):
    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        error_type: Optional[str] = None,
        code: Optional[str] = None,
    ):
        self.status_code = status_code
        self.error_type = error_type
        self.code = code
        super().__init__(message)


class StorageError(RetrievalError):
    pass
