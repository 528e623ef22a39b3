"""
Embedding and text generation providers.
"""

from reflective_memory.encoding.embedder import (
    BaseEmbedder,
    EmbeddingError,
    LangChainEmbedder,
    OllamaEmbedder,
    OpenAIEmbedder,
    create_embedder,
    lazy_dimension_validator,
    validate_embedding,
)
from reflective_memory.encoding.generator import (
    BaseGenerator,
    ChatModelGenerator,
    OllamaGenerator,
    OpenAIGenerator,
    create_generator,
)

__all__ = [
    "BaseEmbedder",
    "EmbeddingError",
    "LangChainEmbedder",
    "OllamaEmbedder",
    "OpenAIEmbedder",
    "create_embedder",
    "lazy_dimension_validator",
    "validate_embedding",
    "BaseGenerator",
    "ChatModelGenerator",
    "OllamaGenerator",
    "OpenAIGenerator",
    "create_generator",
]
