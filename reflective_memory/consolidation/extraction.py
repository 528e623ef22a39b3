"""
Prospective reflection: extract personal memories from a dialogue session.
"""

import json
import logging
import re
from typing import Sequence

from pydantic import BaseModel, Field, ValidationError
from ulid import ULID

from reflective_memory.encoding.embedder import BaseEmbedder
from reflective_memory.encoding.generator import BaseGenerator
from reflective_memory.messages import Message, format_dialogue, group_turns
from reflective_memory.models.memory import MemoryEntry, now_ms
from reflective_memory.prompts import extraction_prompt

NO_TRAIT = "NO_TRAIT"

_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$")


class ExtractedMemory(BaseModel):
    summary: str = Field(min_length=1)
    reference: list[int] = Field(default_factory=list)


class ExtractionOutput(BaseModel):
    extracted_memories: list[ExtractedMemory]


def parse_extraction(response: str) -> ExtractionOutput | None:
    """Parse the model's JSON answer; None if it is not the expected shape."""
    text = _CODE_FENCE.sub("", response.strip())
    start, end = text.find("{"), text.rfind("}")
    if start == -1 or end < start:
        return None
    try:
        return ExtractionOutput.model_validate(json.loads(text[start : end + 1]))
    except (json.JSONDecodeError, ValidationError):
        return None


class MemoryExtractor:
    """Turns a buffered conversation into MemoryEntry candidates."""

    def __init__(
        self,
        generator: BaseGenerator,
        embedder: BaseEmbedder,
        logger: logging.Logger | None = None,
    ):
        self.generator = generator
        self.embedder = embedder
        self.logger = logger or logging.getLogger(__name__)

    async def extract(
        self,
        messages: Sequence[Message],
        session_id: str | None = None,
    ) -> list[MemoryEntry] | None:
        """
        Extract memories about the user from ``messages``.

        Returns:
            [] when there is nothing to extract (empty dialogue or NO_TRAIT),
            None when the LLM or embeddings failed and the dialogue should be
            retried later.
        """
        turns = group_turns(messages)
        if not turns:
            return []

        try:
            response = await self.generator.generate(extraction_prompt(format_dialogue(turns)))
        except Exception as e:
            self.logger.warning(f"Memory extraction failed: {e}")
            return None

        if response.strip() == NO_TRAIT:
            return []

        output = parse_extraction(response)
        if output is None:
            self.logger.warning(f"Could not parse extraction output: {response[:200]!r}")
            return None
        if not output.extracted_memories:
            return []

        summaries = [m.summary for m in output.extracted_memories]
        try:
            embeddings = await self.embedder.embed_batch(summaries)
        except Exception as e:
            self.logger.warning(f"Failed to embed extracted memories: {e}")
            return None

        session_id = session_id or str(ULID())
        timestamp = now_ms()
        memories = []
        for extracted, embedding in zip(output.extracted_memories, embeddings):
            references = [r for r in extracted.reference if 0 <= r < len(turns)]
            raw_dialogue = "\n".join(
                f"{speaker}: {text}" for r in references for speaker, text in turns[r]
            )
            memories.append(
                MemoryEntry(
                    topic_summary=extracted.summary,
                    raw_dialogue=raw_dialogue or extracted.summary,
                    timestamp=timestamp,
                    session_id=session_id,
                    embedding=list(embedding),
                    turn_references=references,
                )
            )

        self.logger.info(f"Extracted {len(memories)} memories from {len(turns)} turns")
        return memories
