"""
Memory consolidation: add a newly extracted memory or merge it into an
existing one.

Pipeline per memory:
1. Retrieve the most similar memories by topic summary
2. No neighbours -> Add
3. Ask the LLM for Add() / Merge(i, summary)
4. No parseable action or LLM unavailable -> Add
5. Several actions -> keep the first
6. Apply it (an out-of-range merge index falls back to Add)

Memory capture never blocks on the LLM or the index: every failure path
ends in an Add attempt, and index write errors are logged, not raised.
"""

import logging

from reflective_memory.consolidation.actions import (
    AddAction,
    MergeAction,
    UpdateAction,
    parse_update_actions,
)
from reflective_memory.encoding.generator import BaseGenerator
from reflective_memory.models.memory import MemoryEntry, RetrievedMemory, now_ms
from reflective_memory.prompts import update_memory_prompt
from reflective_memory.retrieval.candidates import CandidateRetrieval, MemoryIndex


class MemoryConsolidator:
    """Keeps the memory bank free of near-duplicate entries."""

    def __init__(
        self,
        index: MemoryIndex,
        generator: BaseGenerator | None = None,
        retrieval: CandidateRetrieval | None = None,
        similar_k: int = 5,
        logger: logging.Logger | None = None,
    ):
        self.index = index
        self.generator = generator
        self.logger = logger or logging.getLogger(__name__)
        self.retrieval = retrieval or CandidateRetrieval(index, self.logger)
        self.similar_k = similar_k

    async def decide_update_action(
        self, memory: MemoryEntry, similar: list[RetrievedMemory]
    ) -> list[UpdateAction]:
        """Ask the LLM how to fold ``memory`` into ``similar``. Returns [] on failure."""
        if self.generator is None:
            return []

        prompt = update_memory_prompt([m.topic_summary for m in similar], memory.topic_summary)
        try:
            response = await self.generator.generate(prompt)
        except Exception as e:
            self.logger.warning(f"Add/merge decision failed, defaulting to add: {e}")
            return []

        return parse_update_actions(response, len(similar))

    async def add_memory(self, memory: MemoryEntry) -> bool:
        """Insert ``memory`` into the bank."""
        try:
            await self.index.aadd_documents([memory.to_document()], ids=[memory.id])
        except Exception as e:
            self.logger.warning(f"Failed to add memory {memory.id}: {e}")
            return False
        return True

    async def _write(self, memory: RetrievedMemory) -> None:
        await self.index.aadd_documents([memory.to_document()], ids=[memory.id])

    async def merge_memory(self, existing: RetrievedMemory, merged_summary: str) -> bool:
        """
        Rewrite ``existing`` with ``merged_summary``.

        Metadata is kept and the timestamp refreshed. The merged document is
        written under the existing id, which upserts on Chroma and most
        LangChain stores. Indexes that reject a duplicate id get a delete
        followed by an add, and the original is restored if that add fails.
        The existing memory is never left deleted.
        """
        updated = existing.model_copy(
            update={
                "topic_summary": merged_summary,
                "raw_dialogue": existing.raw_dialogue or merged_summary,
                "timestamp": now_ms(),
            }
        )

        try:
            await self._write(updated)
            return True
        except Exception as e:
            self.logger.info(f"Upsert of memory {existing.id} failed, trying delete and add: {e}")

        delete = getattr(self.index, "adelete", None)
        if not callable(delete):
            self.logger.warning(f"Failed to merge memory {existing.id}: index cannot delete")
            return False
        try:
            await delete(ids=[existing.id])
        except Exception as e:
            self.logger.warning(f"Failed to merge memory {existing.id}: {e}")
            return False

        try:
            await self._write(updated)
        except Exception as e:
            self.logger.warning(f"Failed to merge memory {existing.id}, restoring original: {e}")
            try:
                await self._write(existing)
            except Exception as restore_error:
                self.logger.error(f"Could not restore memory {existing.id}: {restore_error}")
            return False
        return True

    async def process_new_memory(self, memory: MemoryEntry) -> UpdateAction:
        """
        Consolidate one extracted memory into the bank.

        Returns:
            The action that was applied.
        """
        similar = await self.retrieval.retrieve_similar(memory, k=self.similar_k)
        if not similar:
            await self.add_memory(memory)
            return AddAction()

        actions = await self.decide_update_action(memory, similar)
        if not actions:
            await self.add_memory(memory)
            return AddAction()

        if len(actions) > 1:
            self.logger.warning(
                f"LLM proposed {len(actions)} actions for memory {memory.id}, applying only the first"
            )
        action = actions[0]

        if isinstance(action, MergeAction) and 0 <= action.index < len(similar):
            target = similar[action.index]
            if await self.merge_memory(target, action.merged_summary):
                self.logger.info(f"Merged memory {memory.id} into {target.id}")
                return action

        await self.add_memory(memory)
        return AddAction()
