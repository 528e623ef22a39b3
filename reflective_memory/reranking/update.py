"""
Citation-driven REINFORCE update of the reranker transforms.

For every memory shown this turn (index i in the K candidates) with reward
r_i (1 if cited, else 0) and advantage A_i = r_i - baseline:

    ΔW_q += η/τ · A_i · (m'_i - E_p[m']) ⊗ q
    ΔW_m += η/τ · A_i · q' ⊗ (m_i - E_p[m])

where p = softmax(s / τ) over the K candidates. These are the gradients of
log p_i with respect to each transform. Weights are then clipped to
±clip_threshold. Optionally, gradients from several turns are summed and
applied as one step.
"""

import logging
from dataclasses import dataclass, field

import numpy as np

from reflective_memory.models.reranker import (
    Citation,
    GradientAccumulator,
    RerankerState,
    SampleTrace,
)
from reflective_memory.reranking.citations import build_citations


@dataclass
class UpdateOutcome:
    state: RerankerState
    citations: list[Citation] = field(default_factory=list)
    applied: bool = False
    accumulator: GradientAccumulator | None = None

    @property
    def cited(self) -> list[Citation]:
        return [c for c in self.citations if c.cited]


class WeightUpdater:
    """
    Applies policy-gradient steps to the reranker transforms.

    With ``batch_size`` 1 every turn steps the weights. Larger batches sum
    each turn's gradients into a GradientAccumulator and step once the
    batch holds ``batch_size`` turns.
    """

    def __init__(
        self,
        clip_threshold: float = 100.0,
        logger: logging.Logger | None = None,
        batch_size: int = 1,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.clip_threshold = clip_threshold
        self.batch_size = batch_size
        self.logger = logger or logging.getLogger(__name__)

    def gradients(
        self, trace: SampleTrace, citations: list[Citation], baseline: float
    ) -> tuple[np.ndarray, np.ndarray]:
        """Advantage-weighted gradients for both transforms (before the step size)."""
        q = trace.query_embedding
        q_adapted = trace.adapted_query
        expected_memory = trace.probabilities @ trace.memory_embeddings
        expected_adapted = trace.probabilities @ trace.adapted_memories

        rewards = {c.index: c.reward for c in citations}
        grad_query = np.zeros((q.shape[0], q.shape[0]))
        grad_memory = np.zeros_like(grad_query)

        for candidate in trace.selected:
            advantage = rewards.get(candidate.rank, 0.0) - baseline
            if advantage == 0.0:
                continue
            i = candidate.index
            grad_query += advantage * np.outer(trace.adapted_memories[i] - expected_adapted, q)
            grad_memory += advantage * np.outer(q_adapted, trace.memory_embeddings[i] - expected_memory)

        scale = 1.0 / trace.temperature
        return grad_query * scale, grad_memory * scale

    def step(
        self, state: RerankerState, grad_query: np.ndarray, grad_memory: np.ndarray
    ) -> RerankerState | None:
        """Clipped gradient step, or None when the result is not finite."""
        rate = state.config.learning_rate
        with np.errstate(over="ignore", invalid="ignore"):
            query_transform = np.clip(
                state.query_transform + rate * grad_query, -self.clip_threshold, self.clip_threshold
            )
            memory_transform = np.clip(
                state.memory_transform + rate * grad_memory, -self.clip_threshold, self.clip_threshold
            )

        if not (np.all(np.isfinite(query_transform)) and np.all(np.isfinite(memory_transform))):
            return None
        return state.with_weights(query_transform, memory_transform)

    def update(
        self,
        trace: SampleTrace | None,
        answer_text: str,
        state: RerankerState,
        accumulator: GradientAccumulator | None = None,
    ) -> UpdateOutcome:
        """
        Reward the shown memories the answer cites and step the transforms.

        Runs even when nothing is cited: all-zero rewards still push weights
        away from memories that were shown but not used. The input state is
        never modified.

        When batching, ``accumulator`` is the batch so far (None starts a new
        one) and the outcome carries the accumulator to persist.
        """
        if trace is None or not trace.selected:
            return UpdateOutcome(state=state, accumulator=accumulator)

        citations = build_citations(answer_text or "", trace.selected, self.logger)
        grad_query, grad_memory = self.gradients(trace, citations, state.config.baseline)
        if not (np.all(np.isfinite(grad_query)) and np.all(np.isfinite(grad_memory))):
            self.logger.warning("Weight update produced non-finite values, keeping previous weights")
            return UpdateOutcome(state=state, citations=citations, accumulator=accumulator)

        if self.batch_size > 1:
            if accumulator is None or accumulator.dimension != state.dimension:
                accumulator = GradientAccumulator.empty(state.dimension)
            accumulator = accumulator.add(grad_query, grad_memory)
            if accumulator.samples < self.batch_size:
                self.logger.debug(
                    f"Accumulated gradients ({accumulator.samples}/{self.batch_size} turns)"
                )
                return UpdateOutcome(state=state, citations=citations, accumulator=accumulator)
            grad_query, grad_memory = accumulator.grad_query, accumulator.grad_memory
            accumulator = accumulator.next_batch()

        updated = self.step(state, grad_query, grad_memory)
        if updated is None:
            self.logger.warning("Weight update produced non-finite values, keeping previous weights")
            return UpdateOutcome(state=state, citations=citations, accumulator=accumulator)

        cited = sum(1 for c in citations if c.cited)
        self.logger.info(f"Updated reranker weights ({cited}/{len(citations)} shown memories cited)")
        return UpdateOutcome(state=updated, citations=citations, applied=True, accumulator=accumulator)
