from __future__ import annotations

import asyncio
import dataclasses
import time
from collections import OrderedDict
from typing import List, Optional, Protocol, Sequence, runtime_checkable

import httpx
import openai
from openai import AsyncOpenAI

from notememory.config import EmbeddingConfig
from notememory.errors import ConfigError, ProviderError, ProviderNotImplementedError, TransportError
from notememory.utils.logging import get_logger

Vector = List[float]

MAX_BATCH_SIZE = 100
DEFAULT_RETRIES = 3
DEFAULT_TIMEOUT_S = 60.0
REMOTE_API_URL = "https://openrouter.ai/api/v1"
LOCAL_API_URL = "http://localhost:11434"


@runtime_checkable
class EmbeddingProvider(Protocol):
    """
    Turns text into fixed-length vectors.

    The same provider (same model, same dimension) must be used for indexing
    and for querying, otherwise stored vectors and query vectors live in
    different spaces and similarity scores are meaningless.
    """

    @property
    def dimension(self) -> int:
        ...

    @property
    def provider_name(self) -> str:
        ...

    async def embed_text(self, text: str) -> Vector:
        ...

    async def embed_batch(self, texts: Sequence[str]) -> List[Vector]:
        """One vector per input, in input order."""
        ...


def _normalize_texts(texts: Sequence[str]) -> List[str]:
    out: List[str] = []
    for t in texts:
        s = (t or "").strip()
        out.append(s if s else " ")
    return out


def _status_error(e: openai.APIStatusError) -> ProviderError:
    body = e.body if isinstance(e.body, dict) else {}
    message = body.get("message") or e.message
    code = body.get("code")
    return ProviderError(
        f"Embedding API error: HTTP {e.status_code} - {message}",
        status_code=e.status_code,
        error_type=body.get("type"),
        code=str(code) if code is not None else None,
    )


def _is_retryable(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


def _body_error(resp) -> Optional[str]:
    # some gateways answer 200 with {"error": {...}} and no data
    err = getattr(resp, "error", None)
    if isinstance(err, dict):
        return str(err.get("message") or err)
    if err:
        return str(err)
    return None


def _empty_response(resp) -> ProviderError:
    detail = _body_error(resp)
    if detail:
        return ProviderError(f"Embedding API returned no data: {detail}")
    return ProviderError("Embedding API returned an empty response")


class RemoteEmbeddingProvider:
    """OpenAI-compatible ``/embeddings`` endpoint (OpenRouter by default)."""

    def __init__(
        self,
        *,
        api_key: str,
        model: str,
        dimension: int,
        api_url: Optional[str] = None,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        retries: int = DEFAULT_RETRIES,
        sleep_base_s: float = 0.5,
        http_client: Optional[httpx.AsyncClient] = None,
        logger=None,
    ):
        if not api_key:
            raise ConfigError("An API key is required for the remote embedding provider")

        self.model = model
        self._dimension = int(dimension)
        self.api_url = api_url or REMOTE_API_URL
        self.retries = max(0, int(retries))
        self.sleep_base_s = float(sleep_base_s)
        self.log = logger or get_logger("embedder")

        # retries are ours, not the SDK's
        self.client = AsyncOpenAI(
            api_key=api_key,
            base_url=self.api_url,
            timeout=float(timeout_s),
            max_retries=0,
            http_client=http_client,
        )

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def provider_name(self) -> str:
        return "remote"

    async def aclose(self) -> None:
        await self.client.close()

    async def _request(self, payload: str | List[str]):
        delay = self.sleep_base_s
        size = 1 if isinstance(payload, str) else len(payload)

        for attempt in range(1, self.retries + 2):
            try:
                resp = await self.client.embeddings.create(
                    model=self.model,
                    input=payload,
                    encoding_format="float",
                )
                self.log.debug(
                    "EMBED request ok | model=%s | size=%s | attempt=%s",
                    self.model, size, attempt
                )
                return resp

            except openai.APIStatusError as e:
                err: Exception = _status_error(e)
                if not _is_retryable(e.status_code) or attempt > self.retries:
                    raise err from e

            except (openai.APIResponseValidationError, ValueError) as e:
                # 2xx body that is not JSON or not an embeddings response
                raise ProviderError(f"Malformed embedding response: {type(e).__name__}: {e}") from e

            except openai.APIConnectionError as e:
                err = TransportError(f"Connection error talking to {self.api_url}: {e}")
                if attempt > self.retries:
                    raise err from e

            self.log.warning(
                "EMBED retry | model=%s | attempt=%s/%s | delay_s=%.2f | err=%s",
                self.model, attempt, self.retries, delay, err
            )
            await asyncio.sleep(delay)
            delay *= 2

        raise AssertionError("unreachable")

    def _vector(self, item, position: int) -> Vector:
        emb = getattr(item, "embedding", None)
        if not isinstance(emb, list):
            raise ProviderError(f"Missing or non-float embedding at index {position}")
        if len(emb) != self._dimension:
            raise ProviderError(
                f"Wrong embedding dimension at index {position}: "
                f"expected {self._dimension}, got {len(emb)}"
            )
        return list(emb)

    async def embed_text(self, text: str) -> Vector:
        resp = await self._request(_normalize_texts([text])[0])

        data = list(getattr(resp, "data", None) or [])
        if not data:
            raise _empty_response(resp)

        return self._vector(data[0], 0)

    async def embed_batch(self, texts: Sequence[str]) -> List[Vector]:
        if not texts:
            return []

        if len(texts) > MAX_BATCH_SIZE:
            all_vecs: List[Vector] = []
            for i in range(0, len(texts), MAX_BATCH_SIZE):
                all_vecs.extend(await self.embed_batch(texts[i : i + MAX_BATCH_SIZE]))
            return all_vecs

        t0 = time.perf_counter()
        batch = _normalize_texts(texts)
        resp = await self._request(batch)

        data = list(getattr(resp, "data", None) or [])
        if not data:
            raise _empty_response(resp)
        if len(data) != len(batch):
            raise ProviderError(
                f"Incomplete batch response: expected {len(batch)} embeddings, got {len(data)}"
            )

        if not all(isinstance(getattr(d, "index", None), int) for d in data):
            raise ProviderError("Batch response items are missing an integer index")

        # arrival order is not guaranteed, the index field is
        data.sort(key=lambda d: d.index)
        if [d.index for d in data] != list(range(len(batch))):
            raise ProviderError("Batch response indices do not match the request")

        vectors = [self._vector(item, i) for i, item in enumerate(data)]

        self.log.info(
            "EMBED batch ok | model=%s | size=%s | latency_ms=%s",
            self.model, len(batch), int((time.perf_counter() - t0) * 1000)
        )
        return vectors


class LocalEmbeddingProvider:
    """Placeholder for a locally served model. Every call fails."""

    def __init__(self, *, model: str, dimension: int, api_url: Optional[str] = None):
        self.model = model
        self._dimension = int(dimension)
        self.api_url = api_url or LOCAL_API_URL

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def provider_name(self) -> str:
        return "local"

    async def embed_text(self, text: str) -> Vector:
        raise ProviderNotImplementedError(self.provider_name, self._dimension)

    async def embed_batch(self, texts: Sequence[str]) -> List[Vector]:
        raise ProviderNotImplementedError(self.provider_name, self._dimension)


def build_provider(
    config: EmbeddingConfig,
    *,
    timeout_s: float = DEFAULT_TIMEOUT_S,
    retries: int = DEFAULT_RETRIES,
    http_client: Optional[httpx.AsyncClient] = None,
    logger=None,
) -> EmbeddingProvider:
    if config.provider == "remote":
        return RemoteEmbeddingProvider(
            api_key=config.api_key or "",
            model=config.model,
            dimension=config.dimension,
            api_url=config.api_url,
            timeout_s=timeout_s,
            retries=retries,
            http_client=http_client,
            logger=logger,
        )
    if config.provider == "local":
        return LocalEmbeddingProvider(
            model=config.model,
            dimension=config.dimension,
            api_url=config.api_url,
        )
    raise ConfigError(f"Unknown embedding provider: {config.provider}")


class EmbeddingClient:
    """
    Validated, immutable entry point to one embedding provider.

    Construction normalizes a private copy of ``config`` and fails with
    ``ConfigError`` if it cannot be used; after that every call is delegated
    to the selected provider. With ``cache_enabled`` recently embedded texts
    are served from a bounded LRU instead of the network.
    """

    def __init__(
        self,
        config: EmbeddingConfig,
        *,
        provider: Optional[EmbeddingProvider] = None,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        retries: int = DEFAULT_RETRIES,
        http_client: Optional[httpx.AsyncClient] = None,
        cache_size: int = 1024,
        logger=None,
    ):
        config = dataclasses.replace(config)
        config.validate()
        reason = config.invalid_reason()
        if reason is not None:
            raise ConfigError(f"Invalid embedding configuration: {reason}")

        self._config = config
        self.log = logger or get_logger("embedder")
        self._provider = provider or build_provider(
            config,
            timeout_s=timeout_s,
            retries=retries,
            http_client=http_client,
            logger=self.log,
        )
        self._cache: Optional["OrderedDict[str, Vector]"] = OrderedDict() if config.cache_enabled else None
        self._cache_size = max(1, int(cache_size))

        self.log.info(
            "EMBED client ready | provider=%s | model=%s | dimension=%s | cache=%s",
            self._provider.provider_name, config.model, config.dimension, config.cache_enabled
        )

    @property
    def config(self) -> EmbeddingConfig:
        return dataclasses.replace(self._config)

    @property
    def dimension(self) -> int:
        return self._provider.dimension

    @property
    def provider_name(self) -> str:
        return self._provider.provider_name

    def _lookup(self, text: str) -> Optional[Vector]:
        if self._cache is None or text not in self._cache:
            return None
        self._cache.move_to_end(text)
        return list(self._cache[text])

    def _remember(self, text: str, vec: Vector) -> None:
        if self._cache is None:
            return
        self._cache[text] = list(vec)
        self._cache.move_to_end(text)
        while len(self._cache) > self._cache_size:
            self._cache.popitem(last=False)

    async def embed_text(self, text: str) -> Vector:
        hit = self._lookup(text)
        if hit is not None:
            return hit
        vec = await self._provider.embed_text(text)
        self._remember(text, vec)
        return vec

    async def embed_batch(self, texts: Sequence[str]) -> List[Vector]:
        texts = list(texts)
        if self._cache is None:
            return await self._provider.embed_batch(texts)

        out: List[Optional[Vector]] = [self._lookup(t) for t in texts]
        missing = [i for i, v in enumerate(out) if v is None]
        if missing:
            fetched = await self._provider.embed_batch([texts[i] for i in missing])
            if len(fetched) != len(missing):
                raise ProviderError(
                    f"Provider returned {len(fetched)} embeddings for {len(missing)} texts"
                )
            for i, vec in zip(missing, fetched):
                out[i] = vec
                self._remember(texts[i], vec)

        return [v for v in out if v is not None]

    async def aclose(self) -> None:
        close = getattr(self._provider, "aclose", None)
        if close is not None:
            await close()
