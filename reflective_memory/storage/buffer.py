"""
Per-user persistence of the message buffers awaiting reflection.

Two records exist per user, both under key ``"message-buffer"``:

- main buffer: ``(scope, user_id, "buffer")``, accumulates every turn
- staging buffer: ``(scope, user_id, "buffer", "staging")``, a snapshot
  frozen while reflection runs on it

Reading the main buffer always yields a buffer (empty when missing or
invalid). Reading staging yields None when nothing is staged, so a cleared
snapshot is never mistaken for unprocessed work.

The main buffer is written by turn ends and by reflection releasing a
snapshot. Both go through ``append_messages`` and ``release_snapshot``,
which hold a per-user lock across the read and the write so neither
overwrites the other within one process.
"""

import asyncio
import logging
from typing import Sequence

from langchain_core.messages import BaseMessage
from pydantic import ValidationError

from reflective_memory.models.buffer import MessageBuffer
from reflective_memory.models.memory import now_ms
from reflective_memory.storage.base import BaseStore, Namespace, StoreItem

BUFFER_KEY = "message-buffer"


class MessageBufferStorage:
    """Load, save, stage and clear message buffers for each user."""

    def __init__(
        self,
        store: BaseStore,
        scope: str = "rmm",
        logger: logging.Logger | None = None,
    ):
        self.store = store
        self.scope = scope
        self.logger = logger or logging.getLogger(__name__)
        self._locks: dict[str, asyncio.Lock] = {}

    def lock(self, user_id: str) -> asyncio.Lock:
        """Lock serializing read-modify-write cycles on ``user_id``'s main buffer."""
        return self._locks.setdefault(user_id, asyncio.Lock())

    def namespace(self, user_id: str) -> Namespace:
        return (self.scope, user_id, "buffer")

    def staging_namespace(self, user_id: str) -> Namespace:
        return (self.scope, user_id, "buffer", "staging")

    async def _read(self, namespace: Namespace, user_id: str) -> StoreItem | None:
        try:
            return await self.store.get(namespace, BUFFER_KEY)
        except Exception as e:
            self.logger.warning(f"Failed to load buffer for {user_id}: {e}")
            return None

    def _parse(self, item: StoreItem | None, user_id: str) -> MessageBuffer | None:
        if item is None:
            return None
        try:
            return MessageBuffer.model_validate(item.value)
        except (ValidationError, TypeError) as e:
            self.logger.warning(f"Ignoring invalid stored buffer for {user_id}: {e}")
            return None

    async def _write(self, namespace: Namespace, user_id: str, buffer: MessageBuffer) -> bool:
        try:
            await self.store.put(namespace, BUFFER_KEY, buffer.to_payload())
        except Exception as e:
            self.logger.warning(f"Failed to save buffer for {user_id}: {e}")
            return False
        return True

    # Main buffer
    async def load_buffer(self, user_id: str) -> MessageBuffer:
        buffer = self._parse(await self._read(self.namespace(user_id), user_id), user_id)
        return buffer if buffer is not None else MessageBuffer.empty()

    async def load_buffer_item(self, user_id: str) -> tuple[MessageBuffer, StoreItem] | None:
        """
        Main buffer together with its store timestamps.

        Reflection triggers measure inactivity from the store's ``updated_at``.
        """
        item = await self._read(self.namespace(user_id), user_id)
        buffer = self._parse(item, user_id)
        if buffer is None:
            return None
        return buffer, item

    async def save_buffer(self, user_id: str, buffer: MessageBuffer) -> bool:
        return await self._write(self.namespace(user_id), user_id, buffer)

    async def clear_buffer(self, user_id: str) -> bool:
        return await self._write(self.namespace(user_id), user_id, MessageBuffer.empty())

    async def append_messages(self, user_id: str, messages: Sequence[BaseMessage]) -> bool:
        """Append ``messages`` to the main buffer."""
        async with self.lock(user_id):
            buffer = await self.load_buffer(user_id)
            return await self.save_buffer(user_id, buffer.append(messages))

    async def release_snapshot(self, user_id: str, snapshot: MessageBuffer) -> bool:
        """
        Drop ``snapshot``'s messages from the front of the main buffer.

        Messages appended after the snapshot was taken stay. A main buffer
        that no longer starts with the snapshot is left untouched and False
        is returned.
        """
        async with self.lock(user_id):
            main = await self.load_buffer(user_id)
            count = len(snapshot.messages)
            if main.messages[:count] != snapshot.messages:
                return False

            remaining = main.messages[count:]
            last = main.last_message_timestamp if remaining else now_ms()
            return await self.save_buffer(
                user_id, MessageBuffer.empty().append(remaining, now=last)
            )

    # Staging buffer
    async def stage_buffer(self, user_id: str, buffer: MessageBuffer) -> bool:
        """Freeze a snapshot for reflection. The main buffer is left untouched."""
        return await self._write(self.staging_namespace(user_id), user_id, buffer)

    async def load_staging_buffer(self, user_id: str) -> MessageBuffer | None:
        buffer = self._parse(await self._read(self.staging_namespace(user_id), user_id), user_id)
        if buffer is None or buffer.is_empty:
            return None
        return buffer

    async def clear_staging(self, user_id: str) -> bool:
        return await self._write(self.staging_namespace(user_id), user_id, MessageBuffer.empty())
