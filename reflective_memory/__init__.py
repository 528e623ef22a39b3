"""
Reflective Memory - learned memory selection for conversational agents

Implements Reflective Memory Management (RMM):
- Retrospective reflection: retrieve top-K memories, rerank them with
  per-user learned transforms and Gumbel top-M sampling, learn from the
  model's citations with REINFORCE
- Prospective reflection: extract memories from buffered dialogue and
  consolidate them (Add vs. Merge) into the memory bank
- Durable per-user weights and message buffers

Quick Start:
    from reflective_memory import ReflectiveMemory, RMMConfig, SQLiteStore
    from reflective_memory.encoding import create_embedder, create_generator
    from reflective_memory.storage import ChromaMemoryIndex

    config = RMMConfig()
    embedder = create_embedder(config.embedding)
    index = ChromaMemoryIndex(embedder, config.storage)
    index.connect()
    store = SQLiteStore(config.storage)
    await store.connect()

    memory = ReflectiveMemory(config, store, index, embedder, create_generator(config.llm))
    ctx = await memory.on_turn_start("user-1")
    await memory.before_model_call(ctx, messages)
    response = await memory.around_model_call(ctx, messages, model.ainvoke)
    await memory.after_model_call(ctx)
    await memory.on_turn_end(ctx, [messages[-1], response])
"""

from reflective_memory.config import (
    ConfigurationError,
    EmbeddingConfig,
    LLMConfig,
    ReflectionConfig,
    RerankerConfig,
    RMMConfig,
    StorageConfig,
    validate_config,
)
from reflective_memory.models import (
    Citation,
    MemoryEntry,
    MessageBuffer,
    RerankerState,
    RetrievedMemory,
    SampleTrace,
    StoredMessage,
)
from reflective_memory.storage import (
    BaseStore,
    InMemoryStore,
    MessageBufferStorage,
    SQLiteStore,
    StorageError,
    WeightStorage,
)
from reflective_memory.retrieval import CandidateRetrieval, MemoryIndex
from reflective_memory.reranking import LearnableReranker, Selection, WeightUpdater, extract_citations
from reflective_memory.consolidation import (
    AddAction,
    MemoryConsolidator,
    MemoryExtractor,
    MergeAction,
    ProspectiveReflector,
    parse_update_actions,
)
from reflective_memory.api import ReflectiveMemory, TurnContext

__version__ = "0.1.0"
