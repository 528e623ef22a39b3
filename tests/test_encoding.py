"""
Tests for encoding module (embedders and generators).

Note: Tests that require an Ollama server are skipped if Ollama is not running.
"""

import json
import math
from types import SimpleNamespace

import httpx
import numpy as np
import pytest
from langchain_core.embeddings import DeterministicFakeEmbedding
from langchain_core.language_models import FakeListChatModel

from reflective_memory.config import ConfigurationError, EmbeddingConfig, LLMConfig
from reflective_memory.encoding.embedder import (
    EmbeddingError,
    LangChainEmbedder,
    OllamaEmbedder,
    OpenAIEmbedder,
    create_embedder,
    lazy_dimension_validator,
    validate_embedding,
)
from reflective_memory.encoding.generator import (
    ChatModelGenerator,
    OllamaGenerator,
    OpenAIGenerator,
    create_generator,
)

from conftest import FakeEmbedder


def is_ollama_running() -> bool:
    """Check if Ollama server is running."""
    try:
        response = httpx.get("http://localhost:11434/api/tags", timeout=2.0)
        return response.status_code == 200
    except Exception:
        return False


# Skip marker for tests requiring Ollama
ollama_required = pytest.mark.skipif(
    not is_ollama_running(),
    reason="Ollama server not running",
)


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestValidateEmbedding:
    def test_valid(self):
        vector = validate_embedding([1, 2, 3], 3)

        assert vector.dtype == np.float64
        assert vector.tolist() == [1.0, 2.0, 3.0]

    @pytest.mark.parametrize(
        "vector",
        [[1.0, 2.0], [[1.0, 2.0, 3.0]], [1.0, math.nan, 0.0], [1.0, math.inf, 0.0], ["a", "b", "c"], []],
    )
    def test_invalid(self, vector):
        with pytest.raises(EmbeddingError):
            validate_embedding(vector, 3)


class TestOllamaEmbedder:
    """Tests for the Ollama embedder against a mocked server."""

    @pytest.mark.asyncio
    async def test_embed(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append((request.url.path, json.loads(request.content)))
            return httpx.Response(200, json={"embeddings": [[0.1, 0.2, 0.3]]})

        embedder = OllamaEmbedder(
            EmbeddingConfig(dimensions=3, ollama_base_url="http://ollama:11434/"),
            client=mock_client(handler),
        )

        vector = await embedder.embed("hello")
        await embedder.close()

        assert vector == [0.1, 0.2, 0.3]
        assert requests == [("/api/embed", {"model": "nomic-embed-text", "input": ["hello"]})]

    @pytest.mark.asyncio
    async def test_embed_batch_chunks_and_keeps_order(self):
        chunks = []

        def handler(request: httpx.Request) -> httpx.Response:
            inputs = json.loads(request.content)["input"]
            chunks.append(inputs)
            return httpx.Response(200, json={"embeddings": [[float(len(t))] for t in inputs]})

        embedder = OllamaEmbedder(
            EmbeddingConfig(dimensions=1, batch_size=2), client=mock_client(handler)
        )

        vectors = await embedder.embed_batch(["a", "bbb", "cc", "dddd", "e"])
        await embedder.close()

        assert vectors == [[1.0], [3.0], [2.0], [4.0], [1.0]]
        assert chunks == [["a", "bbb"], ["cc", "dddd"], ["e"]]

    @pytest.mark.asyncio
    async def test_empty_batch_makes_no_request(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("unexpected request")

        embedder = OllamaEmbedder(EmbeddingConfig(), client=mock_client(handler))

        assert await embedder.embed_batch([]) == []
        await embedder.close()

    @pytest.mark.asyncio
    async def test_short_response_raises(self):
        embedder = OllamaEmbedder(
            EmbeddingConfig(dimensions=1),
            client=mock_client(lambda request: httpx.Response(200, json={"embeddings": [[1.0]]})),
        )

        with pytest.raises(EmbeddingError):
            await embedder.embed_batch(["a", "b"])
        await embedder.close()

    @pytest.mark.asyncio
    async def test_server_error_raises(self):
        embedder = OllamaEmbedder(
            EmbeddingConfig(), client=mock_client(lambda request: httpx.Response(500))
        )

        with pytest.raises(httpx.HTTPStatusError):
            await embedder.embed("hello")
        await embedder.close()

    @ollama_required
    @pytest.mark.asyncio
    async def test_live_embedding_dimension(self):
        async with OllamaEmbedder(EmbeddingConfig()) as embedder:
            vector = await embedder.embed("I love hiking")

        assert len(vector) == 768


class TestLangChainEmbedder:
    @pytest.mark.asyncio
    async def test_wraps_embeddings(self):
        embedder = LangChainEmbedder(
            DeterministicFakeEmbedding(size=8), EmbeddingConfig(dimensions=8)
        )

        single = await embedder.embed("hiking")
        batch = await embedder.embed_batch(["hiking", "cats"])

        assert len(single) == 8
        assert batch[0] == single
        assert embedder.dimension == 8


class FakeOpenAIEmbeddings:
    """Stand-in for ``AsyncOpenAI().embeddings`` returning rows out of order."""

    def __init__(self):
        self.calls = []

    async def create(self, model, input, dimensions):
        self.calls.append((model, list(input), dimensions))
        rows = [
            SimpleNamespace(index=i, embedding=[float(i)] * dimensions)
            for i in range(len(input))
        ]
        return SimpleNamespace(data=list(reversed(rows)))


class TestOpenAIEmbedder:
    @pytest.mark.asyncio
    async def test_batch_sorted_by_index(self):
        api = FakeOpenAIEmbeddings()
        config = EmbeddingConfig(provider="openai", model="text-embedding-3-small", dimensions=2)
        embedder = OpenAIEmbedder(config, client=SimpleNamespace(embeddings=api))

        vectors = await embedder.embed_batch(["a", "b", "c"])

        assert vectors == [[0.0, 0.0], [1.0, 1.0], [2.0, 2.0]]
        assert api.calls == [("text-embedding-3-small", ["a", "b", "c"], 2)]

    @pytest.mark.asyncio
    async def test_empty_batch_skips_api(self):
        api = FakeOpenAIEmbeddings()
        embedder = OpenAIEmbedder(EmbeddingConfig(provider="openai"), client=SimpleNamespace(embeddings=api))

        assert await embedder.embed_batch([]) == []
        assert api.calls == []


class TestCreateEmbedder:
    def test_default_is_ollama(self):
        assert isinstance(create_embedder(), OllamaEmbedder)

    def test_openai(self):
        assert isinstance(create_embedder(EmbeddingConfig(provider="openai")), OpenAIEmbedder)

    def test_unknown_provider(self):
        config = EmbeddingConfig.model_construct(provider="cohere")

        with pytest.raises(ConfigurationError):
            create_embedder(config)


class TestLazyDimensionValidator:
    """Tests for the one-time embedding dimension check."""

    @pytest.mark.asyncio
    async def test_matching_dimension_checked_once(self):
        embedder = FakeEmbedder(dimension=4)
        validate = lazy_dimension_validator(embedder, 4)

        await validate()
        await validate()

        assert embedder.calls == ["dimension check"]

    @pytest.mark.asyncio
    async def test_wrong_dimension_raises(self):
        validate = lazy_dimension_validator(FakeEmbedder(dimension=3), 4)

        with pytest.raises(ConfigurationError):
            await validate()

    @pytest.mark.asyncio
    async def test_unreachable_provider_retried(self):
        embedder = FakeEmbedder(dimension=4)
        embedder.fail = True
        validate = lazy_dimension_validator(embedder, 4)

        await validate()
        embedder.fail = False
        await validate()
        await validate()

        assert embedder.calls == ["dimension check"] * 2


class TestGenerators:
    """Tests for LLM generators."""

    @pytest.mark.asyncio
    async def test_ollama_generate(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(json.loads(request.content))
            return httpx.Response(200, json={"response": "  Add()\n"})

        generator = OllamaGenerator(LLMConfig(max_tokens=50), client=mock_client(handler))

        assert await generator.generate("prompt") == "Add()"
        await generator.close()

        assert requests[0]["stream"] is False
        assert requests[0]["options"] == {"temperature": 0.0, "num_predict": 50}

    @pytest.mark.asyncio
    async def test_chat_model_generator(self):
        generator = ChatModelGenerator(FakeListChatModel(responses=[" NO_TRAIT "]))

        assert await generator.generate("extract") == "NO_TRAIT"

    def test_chat_model_from_ollama(self):
        generator = ChatModelGenerator.from_ollama(LLMConfig(model="qwen2.5"))

        assert generator.model.model == "qwen2.5"

    def test_create_generator(self):
        assert isinstance(create_generator(), OllamaGenerator)
        assert isinstance(create_generator(LLMConfig(provider="openai")), OpenAIGenerator)

    def test_create_generator_unknown_provider(self):
        with pytest.raises(ConfigurationError):
            create_generator(LLMConfig.model_construct(provider="anthropic"))
