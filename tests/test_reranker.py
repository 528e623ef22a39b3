"""
Tests for the learnable reranker.
"""

import logging

import numpy as np
import pytest

from reflective_memory.config import ConfigurationError, RerankerConfig
from reflective_memory.models.memory import RetrievedMemory
from reflective_memory.models.reranker import RerankerState
from reflective_memory.reranking.reranker import LearnableReranker, sample_gumbel, softmax

from conftest import DIMENSION, FakeEmbedder

VECTORS = {
    "query": [1.0, 0.0, 0.0, 0.0],
    "weak": [0.1, 0.0, 1.0, 0.0],
    "strong": [0.9, 0.0, 0.0, 1.0],
    "middle": [0.5, 1.0, 0.0, 0.0],
}


def candidates(*summaries: str) -> list[RetrievedMemory]:
    return [RetrievedMemory(id=f"id-{s}", topic_summary=s) for s in summaries]


def state_with(**config) -> RerankerState:
    return RerankerState.initialize(DIMENSION, RerankerConfig(**config))


@pytest.fixture
def vector_embedder():
    return FakeEmbedder(VECTORS)


class TestHelpers:
    def test_softmax_sums_to_one(self):
        probabilities = softmax(np.array([1000.0, 999.0, -5.0]))

        assert probabilities.sum() == pytest.approx(1.0)
        assert np.all(np.isfinite(probabilities))

    def test_gumbel_noise_is_finite(self):
        noise = sample_gumbel(np.random.default_rng(0), 10_000)

        assert noise.shape == (10_000,)
        assert np.all(np.isfinite(noise))


class TestSelect:
    """Tests for Gumbel top-M selection."""

    @pytest.mark.asyncio
    async def test_no_candidates_skips_embedding(self, vector_embedder):
        reranker = LearnableReranker(vector_embedder, DIMENSION)

        selection = await reranker.select("query", [], state_with())

        assert selection.selected == []
        assert selection.trace is None
        assert vector_embedder.calls == []

    @pytest.mark.asyncio
    async def test_top_m_clamped_to_candidate_count(self, vector_embedder):
        reranker = LearnableReranker(vector_embedder, DIMENSION, rng=np.random.default_rng(1))

        selection = await reranker.select(
            "query", candidates("weak", "strong"), state_with(top_m=5)
        )

        assert len(selection.selected) == 2
        assert {m.id for m in selection.selected} == {"id-weak", "id-strong"}
        assert len(selection.trace.scores) == 2

    @pytest.mark.asyncio
    async def test_low_temperature_picks_highest_scores(self, vector_embedder):
        """Test that Gumbel noise is negligible as the temperature approaches zero."""
        reranker = LearnableReranker(vector_embedder, DIMENSION, rng=np.random.default_rng(3))

        selection = await reranker.select(
            "query",
            candidates("weak", "strong", "middle"),
            state_with(top_m=2, temperature=1e-6),
        )

        assert [m.id for m in selection.selected] == ["id-strong", "id-middle"]
        assert [s.index for s in selection.trace.selected] == [1, 2]
        assert [s.rank for s in selection.trace.selected] == [0, 1]

    @pytest.mark.asyncio
    async def test_trace_contents(self, vector_embedder):
        reranker = LearnableReranker(vector_embedder, DIMENSION, rng=np.random.default_rng(5))

        selection = await reranker.select(
            "query", candidates("weak", "strong", "middle"), state_with(top_m=2)
        )
        trace = selection.trace

        # Identity transforms leave the embeddings unchanged
        assert trace.scores == pytest.approx([0.1, 0.9, 0.5])
        assert trace.probabilities.sum() == pytest.approx(1.0)
        assert trace.temperature == 0.5
        assert trace.memory_embeddings.shape == (3, DIMENSION)
        for sampled in trace.selected:
            assert sampled.perturbed_score == pytest.approx(
                sampled.score / 0.5 + sampled.gumbel_noise
            )
        for memory in selection.selected:
            assert memory.rerank_score is not None

    @pytest.mark.asyncio
    async def test_learned_transform_changes_scores(self, vector_embedder):
        memory_transform = np.eye(DIMENSION)
        memory_transform[0, 2] = 5.0  # route the "weak" direction into the query direction
        state = RerankerState(
            query_transform=np.eye(DIMENSION),
            memory_transform=memory_transform,
            config=RerankerConfig(top_m=1, temperature=1e-6),
        )
        reranker = LearnableReranker(vector_embedder, DIMENSION, rng=np.random.default_rng(0))

        selection = await reranker.select("query", candidates("weak", "strong"), state)

        assert [m.id for m in selection.selected] == ["id-weak"]

    @pytest.mark.asyncio
    async def test_seeded_selection_is_reproducible(self, vector_embedder):
        pool = candidates("weak", "strong", "middle")
        state = state_with(top_m=2, temperature=5.0)

        first = await LearnableReranker(
            vector_embedder, DIMENSION, rng=np.random.default_rng(42)
        ).select("query", pool, state)
        second = await LearnableReranker(
            vector_embedder, DIMENSION, rng=np.random.default_rng(42)
        ).select("query", pool, state)

        assert [m.id for m in first.selected] == [m.id for m in second.selected]

    @pytest.mark.asyncio
    async def test_reuses_stored_embeddings(self, vector_embedder):
        pool = [
            RetrievedMemory(id="a", topic_summary="strong", embedding=VECTORS["strong"]),
            RetrievedMemory(id="b", topic_summary="weak"),
        ]
        reranker = LearnableReranker(vector_embedder, DIMENSION)

        await reranker.select("query", pool, state_with())

        assert vector_embedder.calls == ["query", "weak"]

    @pytest.mark.asyncio
    async def test_embedding_failure_falls_back_to_index_order(self, vector_embedder, caplog):
        vector_embedder.fail = True
        reranker = LearnableReranker(vector_embedder, DIMENSION)

        with caplog.at_level(logging.WARNING):
            selection = await reranker.select(
                "query", candidates("weak", "strong", "middle"), state_with(top_m=2)
            )

        assert [m.id for m in selection.selected] == ["id-weak", "id-strong"]
        assert selection.trace is None
        assert "Embeddings unavailable" in caplog.text

    @pytest.mark.asyncio
    async def test_wrong_sized_embedding_falls_back(self):
        embedder = FakeEmbedder({"query": [1.0, 0.0]})
        reranker = LearnableReranker(embedder, DIMENSION)

        selection = await reranker.select("query", candidates("weak"), state_with())

        assert selection.trace is None
        assert [m.id for m in selection.selected] == ["id-weak"]

    @pytest.mark.asyncio
    async def test_state_dimension_mismatch_raises(self, vector_embedder):
        reranker = LearnableReranker(vector_embedder, DIMENSION)

        with pytest.raises(ConfigurationError):
            await reranker.select("query", candidates("weak"), RerankerState.initialize(3))

    def test_init_state(self, vector_embedder):
        reranker = LearnableReranker(vector_embedder, DIMENSION)
        existing = state_with(top_m=2)

        assert reranker.init_state() == RerankerState.initialize(DIMENSION)
        assert reranker.init_state(existing) is existing
