"""
Reranker state and per-turn sampling records.

RerankerState carries the two D×D transforms the reranker learns per
user. It converts to and from the persisted payload:

    {
        "weights": {"queryTransform": [[...]], "memoryTransform": [[...]]},
        "config": {"topK": .., "topM": .., "temperature": .., "learningRate": .., "baseline": ..},
        "updatedAt": <epoch ms>
    }
"""

from dataclasses import dataclass, field
from typing import Any

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, field_validator

from reflective_memory.config import RerankerConfig


REQUIRED_CONFIG_KEYS = ("topK", "topM", "temperature", "learningRate", "baseline")


def _as_matrix(value: Any) -> np.ndarray:
    """Coerce nested lists to a finite, square float64 matrix."""
    matrix = np.array(value, dtype=np.float64)
    if matrix.ndim != 2 or matrix.shape[0] != matrix.shape[1] or matrix.shape[0] == 0:
        raise ValueError(f"transform must be a non-empty square matrix, got shape {matrix.shape}")
    if not np.all(np.isfinite(matrix)):
        raise ValueError("transform contains NaN or infinite values")
    return matrix


class RerankerState(BaseModel):
    """Learned query/memory transforms plus the hyperparameters that produced them."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    query_transform: np.ndarray
    memory_transform: np.ndarray
    config: RerankerConfig = Field(default_factory=RerankerConfig)

    @field_validator("query_transform", "memory_transform", mode="before")
    @classmethod
    def _validate_transform(cls, value: Any) -> np.ndarray:
        return _as_matrix(value)

    @field_validator("memory_transform")
    @classmethod
    def _same_shape(cls, value: np.ndarray, info) -> np.ndarray:
        query = info.data.get("query_transform")
        if query is not None and query.shape != value.shape:
            raise ValueError(
                f"transform shapes differ: {query.shape} vs {value.shape}"
            )
        return value

    @property
    def dimension(self) -> int:
        return int(self.query_transform.shape[0])

    @classmethod
    def initialize(cls, dimension: int, config: RerankerConfig | None = None) -> "RerankerState":
        """Fresh state whose transforms start as the identity."""
        return cls(
            query_transform=np.eye(dimension),
            memory_transform=np.eye(dimension),
            config=config or RerankerConfig(),
        )

    def validate_dimension(self, dimension: int) -> None:
        """Raise ValueError unless both transforms are exactly dimension×dimension."""
        expected = (dimension, dimension)
        if self.query_transform.shape != expected or self.memory_transform.shape != expected:
            raise ValueError(
                f"expected {expected} transforms, got {self.query_transform.shape} "
                f"and {self.memory_transform.shape}"
            )

    def with_weights(self, query_transform: np.ndarray, memory_transform: np.ndarray) -> "RerankerState":
        return RerankerState(
            query_transform=query_transform,
            memory_transform=memory_transform,
            config=self.config,
        )

    def to_payload(self) -> dict[str, Any]:
        """Persisted form (without the updatedAt stamp)."""
        return {
            "weights": {
                "queryTransform": self.query_transform.tolist(),
                "memoryTransform": self.memory_transform.tolist(),
            },
            "config": self.config.model_dump(by_alias=True),
        }

    @classmethod
    def from_payload(cls, payload: Any, dimension: int) -> "RerankerState":
        """
        Rebuild state from a persisted payload.

        Raises:
            ValueError: If the payload is not a complete, D×D, finite state.
        """
        if not isinstance(payload, dict):
            raise ValueError("payload is not an object")

        weights = payload.get("weights")
        config = payload.get("config")
        if not isinstance(weights, dict) or not isinstance(config, dict):
            raise ValueError("payload is missing weights or config")

        missing = [key for key in REQUIRED_CONFIG_KEYS if key not in config]
        if missing:
            raise ValueError(f"config is missing fields: {missing}")

        state = cls(
            query_transform=weights.get("queryTransform"),
            memory_transform=weights.get("memoryTransform"),
            config=RerankerConfig.model_validate(config),
        )
        state.validate_dimension(dimension)
        return state

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RerankerState):
            return NotImplemented
        return (
            self.config == other.config
            and np.array_equal(self.query_transform, other.query_transform)
            and np.array_equal(self.memory_transform, other.memory_transform)
        )


@dataclass
class SampledCandidate:
    """One candidate picked by Gumbel top-M sampling."""

    memory_id: str
    index: int  # position in the K candidates
    rank: int  # position in the M shown memories
    score: float
    gumbel_noise: float
    perturbed_score: float


@dataclass
class SampleTrace:
    """Everything the REINFORCE step needs from one selection."""

    query_embedding: np.ndarray  # q, shape (D,)
    adapted_query: np.ndarray  # q' = W_q q
    memory_embeddings: np.ndarray  # m_i, shape (K, D)
    adapted_memories: np.ndarray  # m'_i = W_m m_i
    scores: np.ndarray  # q' · m'_i, shape (K,)
    probabilities: np.ndarray  # softmax(scores / temperature)
    temperature: float
    selected: list[SampledCandidate] = field(default_factory=list)

    @property
    def selected_indices(self) -> list[int]:
        return [s.index for s in self.selected]


@dataclass
class Citation:
    """Reward observed for one shown memory."""

    memory_id: str
    index: int  # position in the shown list
    cited: bool

    @property
    def reward(self) -> float:
        return 1.0 if self.cited else 0.0


class GradientAccumulator(BaseModel):
    """
    Gradients summed over turns until a batched weight step.

    Persisted as:

        {"accumulatedGradWq": [[...]], "accumulatedGradWm": [[...]],
         "sampleCount": n, "lastBatchIndex": b, "lastUpdated": <epoch ms>}
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    grad_query: np.ndarray
    grad_memory: np.ndarray
    samples: int = Field(default=0, ge=0)
    batch_index: int = Field(default=0, ge=0)

    @field_validator("grad_query", "grad_memory", mode="before")
    @classmethod
    def _validate_gradient(cls, value: Any) -> np.ndarray:
        return _as_matrix(value)

    @classmethod
    def empty(cls, dimension: int, batch_index: int = 0) -> "GradientAccumulator":
        return cls(
            grad_query=np.zeros((dimension, dimension)),
            grad_memory=np.zeros((dimension, dimension)),
            batch_index=batch_index,
        )

    @property
    def dimension(self) -> int:
        return int(self.grad_query.shape[0])

    def add(self, grad_query: np.ndarray, grad_memory: np.ndarray) -> "GradientAccumulator":
        """New accumulator with one more turn's gradients summed in."""
        return GradientAccumulator(
            grad_query=self.grad_query + grad_query,
            grad_memory=self.grad_memory + grad_memory,
            samples=self.samples + 1,
            batch_index=self.batch_index,
        )

    def next_batch(self) -> "GradientAccumulator":
        return GradientAccumulator.empty(self.dimension, self.batch_index + 1)

    def to_payload(self) -> dict[str, Any]:
        return {
            "accumulatedGradWq": self.grad_query.tolist(),
            "accumulatedGradWm": self.grad_memory.tolist(),
            "sampleCount": self.samples,
            "lastBatchIndex": self.batch_index,
        }

    @classmethod
    def from_payload(cls, payload: Any, dimension: int) -> "GradientAccumulator":
        """
        Rebuild an accumulator from its persisted form.

        Raises:
            ValueError: If the payload is incomplete or not D×D.
        """
        if not isinstance(payload, dict):
            raise ValueError("payload is not an object")
        accumulator = cls(
            grad_query=payload.get("accumulatedGradWq"),
            grad_memory=payload.get("accumulatedGradWm"),
            samples=payload.get("sampleCount", 0),
            batch_index=payload.get("lastBatchIndex", 0),
        )
        if accumulator.dimension != dimension or accumulator.grad_memory.shape != (dimension, dimension):
            raise ValueError(
                f"expected {dimension}x{dimension} gradients, got {accumulator.grad_query.shape} "
                f"and {accumulator.grad_memory.shape}"
            )
        return accumulator
