"""
Storage backends and persistence adapters.

- BaseStore / InMemoryStore / SQLiteStore: namespaced key-value stores
- WeightStorage: per-user reranker state
- MessageBufferStorage: per-user main and staging buffers
- GradientStorage: per-user gradient batches for batched updates
- MetadataStorage: per-user session metadata
- ChromaMemoryIndex: the memory bank
"""

from reflective_memory.storage.base import BaseStore, InMemoryStore, StorageError, StoreItem
from reflective_memory.storage.buffer import MessageBufferStorage
from reflective_memory.storage.gradients import GradientStorage
from reflective_memory.storage.metadata import MetadataStorage
from reflective_memory.storage.sqlite import SQLiteStore
from reflective_memory.storage.vector import ChromaMemoryIndex
from reflective_memory.storage.weights import WeightStorage

__all__ = [
    "BaseStore",
    "InMemoryStore",
    "SQLiteStore",
    "StorageError",
    "StoreItem",
    "MessageBufferStorage",
    "WeightStorage",
    "GradientStorage",
    "MetadataStorage",
    "ChromaMemoryIndex",
]
