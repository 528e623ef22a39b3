"""
Data models for the Reflective Memory system.

- MemoryEntry / RetrievedMemory: memory bank records
- RerankerState / SampleTrace / Citation: reranker learning state
- MessageBuffer / StoredMessage: dialogue awaiting reflection
"""

from reflective_memory.models.buffer import MessageBuffer, StoredMessage
from reflective_memory.models.memory import MemoryEntry, RetrievedMemory, now_ms
from reflective_memory.models.reranker import (
    Citation,
    GradientAccumulator,
    RerankerState,
    SampledCandidate,
    SampleTrace,
)
from reflective_memory.models.session import SessionMetadata, config_hash

__all__ = [
    # Memory bank
    "MemoryEntry",
    "RetrievedMemory",
    "now_ms",
    # Reranker
    "RerankerState",
    "SampleTrace",
    "SampledCandidate",
    "Citation",
    "GradientAccumulator",
    # Session
    "SessionMetadata",
    "config_hash",
    # Buffer
    "MessageBuffer",
    "StoredMessage",
]
