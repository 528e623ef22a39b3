"""
Memory bank entry models.

A MemoryEntry is one consolidated unit of remembered dialogue. The memory
bank itself lives in an external vector index; entries travel to and from
it as LangChain ``Document`` objects whose ``page_content`` is the topic
summary.
"""

import time
from typing import Any

from langchain_core.documents import Document
from pydantic import BaseModel, Field
from ulid import ULID


def now_ms() -> int:
    """Current time as epoch milliseconds."""
    return int(time.time() * 1000)


class MemoryEntry(BaseModel):
    """A consolidated memory extracted from dialogue."""

    id: str = Field(default_factory=lambda: str(ULID()))
    topic_summary: str = Field(
        description="Short text used for future retrieval",
        min_length=1,
    )
    raw_dialogue: str = Field(
        description="Dialogue excerpt the summary was derived from",
        min_length=1,
    )
    timestamp: int = Field(
        default_factory=now_ms,
        description="Creation time (epoch ms)",
        gt=0,
    )
    session_id: str = Field(min_length=1)
    embedding: list[float] = Field(default_factory=list)
    turn_references: list[int] = Field(default_factory=list)

    def metadata(self) -> dict[str, Any]:
        """Index metadata for this entry."""
        return {
            "id": self.id,
            "sessionId": self.session_id,
            "timestamp": self.timestamp,
            "turnReferences": list(self.turn_references),
            "rawDialogue": self.raw_dialogue,
        }

    def to_document(self) -> Document:
        """Convert to the document form stored in the memory index."""
        return Document(
            page_content=self.topic_summary,
            metadata=self.metadata(),
            id=self.id,
        )


class RetrievedMemory(BaseModel):
    """A memory returned by the index for one query. Never persisted."""

    id: str
    topic_summary: str
    raw_dialogue: str = ""
    timestamp: int = Field(default_factory=now_ms)
    session_id: str = "unknown"
    embedding: list[float] | None = None
    turn_references: list[int] = Field(default_factory=list)
    relevance_score: float = Field(
        default=-1.0,
        description="Similarity reported by the index, -1 when unavailable",
    )
    rerank_score: float | None = None

    @classmethod
    def from_document(
        cls,
        document: Document,
        position: int,
        relevance_score: float | None = None,
    ) -> "RetrievedMemory":
        """
        Translate an index match, filling missing metadata with safe defaults.

        Args:
            document: The match returned by the index
            position: Rank of the match, used to build a fallback id
            relevance_score: Score reported alongside the match, if any
        """
        metadata = document.metadata or {}

        memory_id = metadata.get("id") or document.id or f"memory-{position}"

        timestamp = metadata.get("timestamp")
        if not isinstance(timestamp, (int, float)) or isinstance(timestamp, bool) or timestamp <= 0:
            timestamp = now_ms()

        references = metadata.get("turnReferences")
        if not isinstance(references, list):
            references = []
        references = [r for r in references if isinstance(r, int) and not isinstance(r, bool)]

        raw_dialogue = metadata.get("rawDialogue")
        session_id = metadata.get("sessionId")

        return cls(
            id=str(memory_id),
            topic_summary=document.page_content,
            raw_dialogue=raw_dialogue if isinstance(raw_dialogue, str) else "",
            timestamp=int(timestamp),
            session_id=session_id if isinstance(session_id, str) and session_id else "unknown",
            turn_references=references,
            relevance_score=relevance_score if relevance_score is not None else -1.0,
        )

    def to_document(self, topic_summary: str | None = None) -> Document:
        """Document form, optionally with a replacement summary."""
        return Document(
            page_content=topic_summary if topic_summary is not None else self.topic_summary,
            metadata={
                "id": self.id,
                "sessionId": self.session_id,
                "timestamp": self.timestamp,
                "turnReferences": list(self.turn_references),
                "rawDialogue": self.raw_dialogue,
            },
            id=self.id,
        )
