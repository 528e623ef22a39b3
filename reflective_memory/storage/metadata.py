"""
Per-user session metadata under ``(scope, user_id, "metadata")``, key ``"session"``.
"""

import logging

from pydantic import ValidationError

from reflective_memory.config import RerankerConfig
from reflective_memory.models.memory import now_ms
from reflective_memory.models.session import SessionMetadata
from reflective_memory.storage.base import BaseStore, Namespace

METADATA_KEY = "session"


class MetadataStorage:
    """Load and save SessionMetadata for each user."""

    def __init__(self, store: BaseStore, scope: str = "rmm", logger: logging.Logger | None = None):
        self.store = store
        self.scope = scope
        self.logger = logger or logging.getLogger(__name__)

    def namespace(self, user_id: str) -> Namespace:
        return (self.scope, user_id, "metadata")

    async def load_metadata(self, user_id: str) -> SessionMetadata | None:
        try:
            item = await self.store.get(self.namespace(user_id), METADATA_KEY)
        except Exception as e:
            self.logger.warning(f"Failed to load session metadata for {user_id}: {e}")
            return None

        if item is None:
            return None

        try:
            return SessionMetadata.model_validate(item.value)
        except (ValidationError, TypeError) as e:
            self.logger.warning(f"Ignoring invalid session metadata for {user_id}: {e}")
            return None

    async def save_metadata(self, user_id: str, metadata: SessionMetadata) -> bool:
        try:
            await self.store.put(self.namespace(user_id), METADATA_KEY, metadata.to_payload())
        except Exception as e:
            self.logger.warning(f"Failed to save session metadata for {user_id}: {e}")
            return False
        return True

    async def record_session(self, user_id: str, config: RerankerConfig) -> SessionMetadata:
        """
        Count one reflected session for ``user_id`` and persist it.

        Returns the new metadata even when the write fails.
        """
        now = now_ms()
        previous = await self.load_metadata(user_id)
        metadata = (
            previous.record_session(config, now)
            if previous is not None
            else SessionMetadata.start(config, now).record_session(config, now)
        )
        await self.save_metadata(user_id, metadata)
        return metadata
