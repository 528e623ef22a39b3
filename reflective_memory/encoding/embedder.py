"""
Embeddings for queries and memory summaries.

Three ways to get vectors: a local Ollama server (the default), the OpenAI
embeddings API, or any LangChain ``Embeddings`` object. The reranker only
cares that every vector has the configured dimension D.
"""

import logging
import math
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Sequence

import httpx
import numpy as np

from reflective_memory.config import ConfigurationError, EmbeddingConfig
from reflective_memory.encoding.clients import OllamaHTTP, async_openai_client

logger = logging.getLogger(__name__)


class EmbeddingError(Exception):
    """Raised when a provider returns an unusable vector."""

    pass


def validate_embedding(vector: Sequence[float], dimension: int) -> np.ndarray:
    """
    Check a provider vector and convert it to float64.

    Raises:
        EmbeddingError: If the vector is not exactly ``dimension`` finite numbers.
    """
    try:
        array = np.asarray(vector, dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise EmbeddingError(f"Embedding is not numeric: {e}") from e

    if array.ndim != 1 or array.shape[0] != dimension:
        raise EmbeddingError(
            f"Expected embedding of dimension {dimension}, got shape {array.shape}"
        )
    if not np.all(np.isfinite(array)):
        raise EmbeddingError("Embedding contains NaN or infinite values")
    return array


class BaseEmbedder(ABC):
    """Maps text to a vector whose length is ``dimension``."""

    def __init__(self, config: EmbeddingConfig):
        self.config = config

    @property
    def dimension(self) -> int:
        return self.config.dimensions

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        ...

    @abstractmethod
    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Vectors for ``texts``, in input order."""
        ...

    async def close(self) -> None:
        return None


class OllamaEmbedder(BaseEmbedder):
    """
    Embeddings from Ollama's ``/api/embed`` endpoint.

    Inputs are sent ``batch_size`` at a time. Typical models are
    nomic-embed-text (768 dimensions) and mxbai-embed-large (1024).
    """

    def __init__(
        self,
        config: EmbeddingConfig,
        timeout: float = 60.0,
        client: httpx.AsyncClient | None = None,
    ):
        super().__init__(config)
        self.http = OllamaHTTP(config.ollama_base_url, timeout, client)

    async def embed(self, text: str) -> list[float]:
        (vector,) = await self.embed_batch([text])
        return vector

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        vectors: list[list[float]] = []
        step = self.config.batch_size

        for start in range(0, len(texts), step):
            chunk = texts[start : start + step]
            body = await self.http.post("/api/embed", {"model": self.config.model, "input": chunk})
            embeddings = body.get("embeddings") or []
            if len(embeddings) != len(chunk):
                raise EmbeddingError(
                    f"Ollama returned {len(embeddings)} embeddings for {len(chunk)} inputs"
                )
            vectors.extend(embeddings)

        return vectors

    async def close(self) -> None:
        await self.http.aclose()

    async def __aenter__(self) -> "OllamaEmbedder":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


class OpenAIEmbedder(BaseEmbedder):
    """Embeddings from the OpenAI API, requested at the configured dimension."""

    def __init__(self, config: EmbeddingConfig, client: Any = None):
        super().__init__(config)
        self._openai = client

    async def _create(self, inputs: list[str]) -> list[list[float]]:
        if self._openai is None:
            self._openai = async_openai_client()

        response = await self._openai.embeddings.create(
            model=self.config.model,
            input=inputs,
            dimensions=self.config.dimensions,
        )
        return [item.embedding for item in sorted(response.data, key=lambda item: item.index)]

    async def embed(self, text: str) -> list[float]:
        return (await self._create([text]))[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        return await self._create(texts)


class LangChainEmbedder(BaseEmbedder):
    """Adapter for any ``langchain_core.embeddings.Embeddings``."""

    def __init__(self, embeddings: Any, config: EmbeddingConfig | None = None):
        super().__init__(config or EmbeddingConfig())
        self.embeddings = embeddings

    async def embed(self, text: str) -> list[float]:
        return await self.embeddings.aembed_query(text)

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        return await self.embeddings.aembed_documents(texts)


EMBEDDERS: dict[str, type[BaseEmbedder]] = {
    "ollama": OllamaEmbedder,
    "openai": OpenAIEmbedder,
}


def create_embedder(config: EmbeddingConfig | None = None) -> BaseEmbedder:
    """
    Embedder for ``config.provider``; Ollama with nomic-embed-text when omitted.

    Raises:
        ConfigurationError: If the provider name is not registered.
    """
    config = config or EmbeddingConfig()
    embedder_cls = EMBEDDERS.get(config.provider)
    if embedder_cls is None:
        raise ConfigurationError(f"Unknown embedding provider: {config.provider}")
    return embedder_cls(config)


def lazy_dimension_validator(
    embedder: BaseEmbedder,
    dimension: int,
    log: logging.Logger | None = None,
) -> Callable[[], Awaitable[None]]:
    """
    Build a check that embeds a sample text once and remembers the outcome.

    A check that succeeds with the wrong length is a configuration error and
    raises. A check that fails (provider unreachable) is logged and retried
    on the next call.
    """
    log = log or logger
    validated = False

    async def validate() -> None:
        nonlocal validated
        if validated:
            return
        try:
            vector = await embedder.embed("dimension check")
        except Exception as e:
            log.warning(f"Embedding dimension check failed, will retry: {e}")
            return

        if len(vector) != dimension or not all(math.isfinite(v) for v in vector):
            raise ConfigurationError(
                f"Embedding provider returned {len(vector)} dimensions, configured {dimension}"
            )
        validated = True

    return validate
