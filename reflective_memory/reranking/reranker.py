"""
Learnable reranker for retrospective reflection.

Each turn the K retrieved candidates are rescored with two learned linear
transforms and M of them are sampled for the model:

    q'   = W_q q
    m'_i = W_m m_i
    s_i  = q' · m'_i
    pick top-M of  s_i / temperature + g_i,   g_i = -log(-log(U_i)),  U_i ~ U(0, 1)

The Gumbel perturbation makes the top-M pick a sample from the
softmax(s / temperature) policy, which the REINFORCE update in
``reranking.update`` then improves from citations.
"""

import logging
from dataclasses import dataclass, field
from typing import Sequence

import numpy as np

from reflective_memory.config import ConfigurationError
from reflective_memory.encoding.embedder import BaseEmbedder, EmbeddingError, validate_embedding
from reflective_memory.models.memory import RetrievedMemory
from reflective_memory.models.reranker import RerankerState, SampledCandidate, SampleTrace

# Keeps U strictly inside (0, 1) so the Gumbel transform stays finite
UNIFORM_EPSILON = 1e-12


@dataclass
class Selection:
    """Memories to show the model, plus the trace needed to learn from the answer.

    ``trace`` is None when reranking was skipped (no candidates, or
    embeddings unavailable), in which case no weight update happens.
    """

    selected: list[RetrievedMemory] = field(default_factory=list)
    trace: SampleTrace | None = None


def softmax(logits: np.ndarray) -> np.ndarray:
    shifted = logits - np.max(logits)
    exp = np.exp(shifted)
    return exp / exp.sum()


def sample_gumbel(rng: np.random.Generator, size: int) -> np.ndarray:
    uniform = rng.uniform(0.0, 1.0, size=size)
    uniform = np.clip(uniform, UNIFORM_EPSILON, 1.0 - UNIFORM_EPSILON)
    return -np.log(-np.log(uniform))


class LearnableReranker:
    """
    Scores and samples candidates with per-user learned transforms.

    Example:
        reranker = LearnableReranker(embedder, dimension=768)
        selection = await reranker.select(query, candidates, state)
        shown = selection.selected
    """

    def __init__(
        self,
        embedder: BaseEmbedder,
        dimension: int,
        rng: np.random.Generator | None = None,
        logger: logging.Logger | None = None,
    ):
        """
        Args:
            embedder: Provider for query and summary embeddings
            dimension: Embedding dimension D of the transforms
            rng: Random generator for the Gumbel draws (seed it for reproducible runs)
            logger: Logger for degraded paths
        """
        self.embedder = embedder
        self.dimension = dimension
        self.rng = rng or np.random.default_rng()
        self.logger = logger or logging.getLogger(__name__)

    def init_state(self, state: RerankerState | None = None) -> RerankerState:
        """The given state, or a fresh identity state of the right dimension."""
        if state is not None:
            return state
        return RerankerState.initialize(self.dimension)

    async def _embed(
        self, query: str, candidates: Sequence[RetrievedMemory]
    ) -> tuple[np.ndarray, np.ndarray]:
        """Query vector and (K, D) candidate matrix, reusing stored embeddings when usable."""
        query_vector = validate_embedding(await self.embedder.embed(query), self.dimension)

        vectors: list[np.ndarray | None] = []
        missing: list[int] = []
        for i, candidate in enumerate(candidates):
            try:
                vectors.append(validate_embedding(candidate.embedding or [], self.dimension))
            except EmbeddingError:
                vectors.append(None)
                missing.append(i)

        if missing:
            embedded = await self.embedder.embed_batch(
                [candidates[i].topic_summary for i in missing]
            )
            if len(embedded) != len(missing):
                raise EmbeddingError(
                    f"Expected {len(missing)} embeddings, provider returned {len(embedded)}"
                )
            for i, vector in zip(missing, embedded):
                vectors[i] = validate_embedding(vector, self.dimension)

        return query_vector, np.vstack(vectors)

    async def select(
        self,
        query: str,
        candidates: Sequence[RetrievedMemory],
        state: RerankerState,
    ) -> Selection:
        """
        Sample up to ``top_m`` candidates to show the model.

        Raises:
            ConfigurationError: If the state's transforms are not D×D.
        """
        if not candidates:
            return Selection()

        try:
            state.validate_dimension(self.dimension)
        except ValueError as e:
            raise ConfigurationError(str(e)) from e

        config = state.config
        top_m = min(config.top_m, len(candidates))

        try:
            query_vector, memory_matrix = await self._embed(query, candidates)
        except Exception as e:
            self.logger.warning(f"Embeddings unavailable, showing first {top_m} candidates: {e}")
            return Selection(selected=list(candidates[:top_m]))

        adapted_query = state.query_transform @ query_vector
        adapted_memories = memory_matrix @ state.memory_transform.T
        scores = adapted_memories @ adapted_query

        logits = scores / config.temperature
        noise = sample_gumbel(self.rng, len(candidates))
        perturbed = logits + noise
        order = np.argsort(-perturbed, kind="stable")[:top_m]

        sampled = [
            SampledCandidate(
                memory_id=candidates[i].id,
                index=int(i),
                rank=rank,
                score=float(scores[i]),
                gumbel_noise=float(noise[i]),
                perturbed_score=float(perturbed[i]),
            )
            for rank, i in enumerate(order)
        ]

        trace = SampleTrace(
            query_embedding=query_vector,
            adapted_query=adapted_query,
            memory_embeddings=memory_matrix,
            adapted_memories=adapted_memories,
            scores=scores,
            probabilities=softmax(logits),
            temperature=config.temperature,
            selected=sampled,
        )

        selected = [
            candidates[s.index].model_copy(update={"rerank_score": s.score})
            for s in sampled
        ]
        self.logger.debug(f"Selected candidates {trace.selected_indices} of {len(candidates)}")
        return Selection(selected=selected, trace=trace)
