"""
Per-user session bookkeeping stored next to the reranker weights.
"""

import hashlib
import json
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from reflective_memory.config import RerankerConfig

SCHEMA_VERSION = "1"


class SessionMetadata(BaseModel):
    """Per-user bookkeeping: schema version, reranker config hash and reflected sessions."""

    model_config = ConfigDict(populate_by_name=True)

    version: str = Field(min_length=1)
    config_hash: str = Field(alias="configHash", min_length=1)
    session_count: int = Field(default=0, alias="sessionCount", ge=0)
    last_updated: int = Field(alias="lastUpdated", gt=0)

    @classmethod
    def start(cls, config: RerankerConfig, now: int) -> "SessionMetadata":
        return cls(version=SCHEMA_VERSION, config_hash=config_hash(config), last_updated=now)

    def record_session(self, config: RerankerConfig, now: int) -> "SessionMetadata":
        """Count one more reflected session under the current version and config."""
        return SessionMetadata(
            version=SCHEMA_VERSION,
            config_hash=config_hash(config),
            session_count=self.session_count + 1,
            last_updated=now,
        )

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


def config_hash(config: RerankerConfig) -> str:
    """Stable digest of the reranker hyperparameters."""
    encoded = json.dumps(config.model_dump(by_alias=True), sort_keys=True).encode()
    return hashlib.sha256(encoded).hexdigest()[:16]
