"""
Prospective reflection over the per-user message buffer.

When the buffered conversation is long enough or has gone quiet, it is
snapshotted into the staging buffer, turned into memories and consolidated
into the memory bank. The main buffer keeps accumulating meanwhile; the
snapshot's messages are removed from it only once reflection on them has
finished (or been abandoned after ``max_retries`` failures).
"""

import logging
from datetime import datetime

from reflective_memory.config import ReflectionConfig
from reflective_memory.consolidation.consolidator import MemoryConsolidator
from reflective_memory.consolidation.extraction import MemoryExtractor
from reflective_memory.models.buffer import MessageBuffer
from reflective_memory.storage.base import utcnow
from reflective_memory.storage.buffer import MessageBufferStorage


def should_trigger_reflection(
    human_message_count: int,
    inactivity_ms: float,
    config: ReflectionConfig,
) -> bool:
    """
    Decide whether a buffer is ready for reflection.

    Either maximum forces it. Otherwise ``strict`` needs both minimums and
    ``relaxed`` needs either.
    """
    if human_message_count >= config.max_turns or inactivity_ms >= config.max_inactivity_ms:
        return True

    enough_turns = human_message_count >= config.min_turns
    quiet_enough = inactivity_ms >= config.min_inactivity_ms

    if config.mode == "strict":
        return enough_turns and quiet_enough
    return enough_turns or quiet_enough


class ProspectiveReflector:
    """Runs the stage -> extract -> consolidate -> clear workflow for a user."""

    def __init__(
        self,
        buffers: MessageBufferStorage,
        extractor: MemoryExtractor,
        consolidator: MemoryConsolidator,
        config: ReflectionConfig | None = None,
        logger: logging.Logger | None = None,
    ):
        self.buffers = buffers
        self.extractor = extractor
        self.consolidator = consolidator
        self.config = config or ReflectionConfig()
        self.logger = logger or logging.getLogger(__name__)
        self._running: set[str] = set()

    async def maybe_reflect(self, user_id: str, now: datetime | None = None) -> bool:
        """
        Reflect if a snapshot is pending or the main buffer meets the triggers.

        At most one reflection runs per user; a call made while one is in
        progress returns False without touching staging.

        Returns True when a snapshot was fully processed. Never raises.
        """
        if user_id in self._running:
            self.logger.debug(f"Reflection already running for {user_id}")
            return False

        self._running.add(user_id)
        try:
            return await self._reflect(user_id, now)
        except Exception as e:
            self.logger.warning(f"Reflection for {user_id} failed: {e}")
            return False
        finally:
            self._running.discard(user_id)

    async def _reflect(self, user_id: str, now: datetime | None) -> bool:
        staged = await self.buffers.load_staging_buffer(user_id)
        if staged is not None:
            self.logger.info(f"Retrying staged reflection for {user_id}")
            return await self.reflect_staged(user_id, staged)

        loaded = await self.buffers.load_buffer_item(user_id)
        if loaded is None:
            return False
        buffer, item = loaded
        if buffer.is_empty:
            return False

        inactivity_ms = ((now or utcnow()) - item.updated_at).total_seconds() * 1000
        if not should_trigger_reflection(buffer.human_message_count, inactivity_ms, self.config):
            self.logger.debug(
                f"Reflection not triggered for {user_id} "
                f"({buffer.human_message_count} turns, {inactivity_ms:.0f} ms idle)"
            )
            return False

        if not await self.buffers.stage_buffer(user_id, buffer):
            self.logger.warning(f"Failed to stage buffer for {user_id}, skipping reflection")
            return False

        return await self.reflect_staged(user_id, buffer)

    async def reflect_staged(self, user_id: str, staged: MessageBuffer | None = None) -> bool:
        """Extract and consolidate the staged snapshot, clearing it on success."""
        if staged is None:
            staged = await self.buffers.load_staging_buffer(user_id)
        if staged is None:
            return False

        memories = await self.extractor.extract(staged.to_messages())
        if memories is None:
            await self._record_failure(user_id, staged)
            return False

        for memory in memories:
            await self.consolidator.process_new_memory(memory)

        await self._release_snapshot(user_id, staged)
        await self.buffers.clear_staging(user_id)
        self.logger.info(f"Reflection for {user_id} consolidated {len(memories)} memories")
        return True

    async def _record_failure(self, user_id: str, staged: MessageBuffer) -> None:
        retries = (staged.retry_count or 0) + 1
        if retries > self.config.max_retries:
            self.logger.warning(
                f"Dropping staged buffer for {user_id} after {retries - 1} failed retries"
            )
            await self._release_snapshot(user_id, staged)
            await self.buffers.clear_staging(user_id)
            return

        await self.buffers.stage_buffer(user_id, staged.model_copy(update={"retry_count": retries}))
        self.logger.warning(f"Reflection for {user_id} failed, staged buffer kept (attempt {retries})")

    async def _release_snapshot(self, user_id: str, staged: MessageBuffer) -> None:
        if not await self.buffers.release_snapshot(user_id, staged):
            self.logger.debug(f"Snapshot for {user_id} not released from the main buffer")
