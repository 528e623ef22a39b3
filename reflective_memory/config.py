"""
Configuration management for Reflective Memory Management.

One pydantic model per concern, nested under RMMConfig:
- Reranker hyperparameters
- Embedding and LLM providers
- Storage backends
- Prospective reflection triggers
"""

import json
import logging
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator


class ConfigurationError(ValueError):
    """Raised for invalid configuration or a mismatched embedding dimension."""

    pass


class RerankerConfig(BaseModel):
    """Hyperparameters of the learnable reranker.

    Serialized with the camelCase keys used by the persisted weight payload.
    """

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    top_k: int = Field(
        default=20,
        alias="topK",
        description="Number of candidates fetched from the memory index",
        gt=0,
    )
    top_m: int = Field(
        default=5,
        alias="topM",
        description="Number of candidates shown to the model after reranking",
        gt=0,
    )
    temperature: float = Field(
        default=0.5,
        description="Gumbel-softmax temperature (lower = closer to greedy top-M)",
        gt=0.0,
        allow_inf_nan=False,
    )
    learning_rate: float = Field(
        default=1e-3,
        alias="learningRate",
        description="REINFORCE step size",
        gt=0.0,
        allow_inf_nan=False,
    )
    baseline: float = Field(
        default=0.5,
        description="Reward baseline for variance reduction",
        ge=0.0,
        le=1.0,
    )


class EmbeddingConfig(BaseModel):
    """Which embedding model produces query and memory vectors."""

    model_config = ConfigDict(extra="forbid")

    provider: Literal["ollama", "openai"] = Field(
        default="ollama",
        description="Embedding provider (ollama or openai)",
    )
    model: str = Field(
        default="nomic-embed-text",
        description="Provider model id; nomic-embed-text on Ollama",
    )
    dimensions: int = Field(
        default=768,
        description="Vector length D shared by the embedder and the reranker transforms",
        gt=0,
    )
    batch_size: int = Field(
        default=100,
        description="Texts sent per embedding request",
        gt=0,
    )

    # Ollama-specific settings
    ollama_base_url: str = Field(
        default="http://localhost:11434",
        description="Where the Ollama server listens",
    )


class LLMConfig(BaseModel):
    """Configuration for LLM operations (extraction, add/merge decisions)."""

    model_config = ConfigDict(extra="forbid")

    provider: Literal["ollama", "openai"] = Field(
        default="ollama",
        description="Backend for extraction and Add/Merge prompts",
    )
    model: str = Field(
        default="llama3.2",
        description="Provider model id; llama3.2 on Ollama",
    )
    temperature: float = Field(
        default=0.0,
        description="Sampling temperature; 0 keeps Add/Merge output stable",
        ge=0.0,
        le=2.0,
    )
    max_tokens: int = Field(
        default=500,
        description="Completion length cap",
        gt=0,
    )

    # Ollama-specific settings
    ollama_base_url: str = Field(
        default="http://localhost:11434",
        description="Where the Ollama server listens",
    )


class StorageConfig(BaseModel):
    """Locations of the key-value store and the memory index."""

    model_config = ConfigDict(extra="forbid")

    # SQLite key-value store
    sqlite_path: Path = Field(
        default=Path("./data/rmm.db"),
        description="Path to the SQLite key-value store",
    )

    # Memory bank
    chroma_persist_directory: Path = Field(
        default=Path("./data/chroma"),
        description="Chroma persistence directory for the memory bank",
    )
    collection_name: str = Field(
        default="rmm_memories",
        description="Collection holding the memory bank",
    )


class ReflectionConfig(BaseModel):
    """Triggers for prospective reflection over the message buffer."""

    model_config = ConfigDict(extra="forbid")

    min_turns: int = Field(
        default=2,
        description="Minimum human messages before reflection may trigger",
        ge=1,
    )
    max_turns: int = Field(
        default=50,
        description="Human messages that force reflection",
        ge=1,
    )
    min_inactivity_ms: int = Field(
        default=600_000,  # 10 minutes
        description="Minimum inactivity before reflection may trigger",
        ge=0,
    )
    max_inactivity_ms: int = Field(
        default=1_800_000,  # 30 minutes
        description="Inactivity that forces reflection",
        ge=0,
    )
    mode: Literal["strict", "relaxed"] = Field(
        default="strict",
        description="strict: both minimums must hold, relaxed: either one",
    )
    max_retries: int = Field(
        default=3,
        description="Attempts on a staged buffer before it is dropped",
        ge=0,
    )

    @model_validator(mode="after")
    def _check_bounds(self) -> "ReflectionConfig":
        if self.max_turns < self.min_turns:
            raise ValueError("max_turns must be >= min_turns")
        if self.max_inactivity_ms < self.min_inactivity_ms:
            raise ValueError("max_inactivity_ms must be >= min_inactivity_ms")
        return self


class RMMConfig(BaseModel):
    """Master configuration for the Reflective Memory system."""

    model_config = ConfigDict(extra="forbid")

    # Sub-configurations
    reranker: RerankerConfig = Field(default_factory=RerankerConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    reflection: ReflectionConfig = Field(default_factory=ReflectionConfig)

    # Global settings
    scope: str = Field(
        default="rmm",
        description="First namespace segment for every persisted record",
        min_length=1,
    )
    enabled: bool = Field(
        default=True,
        description="Disable to pass turns through untouched",
    )
    clip_threshold: float = Field(
        default=100.0,
        description="Absolute bound applied to weights after each update",
        gt=0.0,
    )
    update_batch_size: int = Field(
        default=1,
        description="Turns whose gradients are summed before one weight step (1 = every turn)",
        ge=1,
    )
    debug: bool = Field(
        default=False,
        description="Log at DEBUG instead of INFO",
    )

    @property
    def dimension(self) -> int:
        """Embedding dimension D of both transform matrices."""
        return self.embedding.dimensions

    @classmethod
    def from_file(cls, path: Path) -> "RMMConfig":
        """Load configuration from a JSON file."""
        if path.suffix != ".json":
            raise ConfigurationError(f"Unsupported config file format: {path.suffix}")

        with open(path) as f:
            data = json.load(f)
        return validate_config(data)

    def to_file(self, path: Path) -> None:
        """Write this configuration as indented JSON, creating parent directories."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.model_dump(mode="json"), f, indent=2)


def validate_config(data: dict[str, Any] | None = None) -> RMMConfig:
    """
    Build a validated configuration once, at startup.

    Unknown fields are rejected.

    Raises:
        ConfigurationError: If any field is missing, unknown, or out of range.
    """
    try:
        return RMMConfig.model_validate(data or {})
    except ValidationError as e:
        raise ConfigurationError(f"Invalid RMM configuration: {e}") from e


def configure_logging(config: RMMConfig) -> None:
    """Basic logging setup for scripts embedding the package."""
    logging.basicConfig(
        level=logging.DEBUG if config.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
