"""
Message buffer awaiting prospective reflection.

Messages are kept in LangChain's serialized dict form (``{"type", "data"}``)
so a buffer survives a JSON round trip through any key-value store.
"""

from typing import Any, Sequence

from langchain_core.messages import BaseMessage, message_to_dict, messages_from_dict
from pydantic import BaseModel, ConfigDict, Field, field_validator

from reflective_memory.models.memory import now_ms


class StoredMessage(BaseModel):
    """A serialized chat message."""

    type: str = Field(min_length=1)
    data: dict[str, Any]

    @field_validator("data")
    @classmethod
    def _has_content(cls, value: dict[str, Any]) -> dict[str, Any]:
        if "content" not in value:
            raise ValueError("stored message data must include content")
        return value

    @classmethod
    def from_message(cls, message: BaseMessage) -> "StoredMessage":
        return cls.model_validate(message_to_dict(message))

    @property
    def content(self) -> Any:
        return self.data.get("content")

    @property
    def is_human(self) -> bool:
        return self.type == "human"


class MessageBuffer(BaseModel):
    """Ordered messages for one user plus the counters used by reflection triggers."""

    model_config = ConfigDict(populate_by_name=True)

    messages: list[StoredMessage] = Field(default_factory=list)
    human_message_count: int = Field(default=0, alias="humanMessageCount", ge=0)
    last_message_timestamp: int = Field(default_factory=now_ms, alias="lastMessageTimestamp")
    created_at: int = Field(default_factory=now_ms, alias="createdAt")
    retry_count: int | None = Field(default=None, alias="retryCount", ge=0)

    @classmethod
    def empty(cls) -> "MessageBuffer":
        now = now_ms()
        return cls(messages=[], human_message_count=0, last_message_timestamp=now, created_at=now)

    @property
    def is_empty(self) -> bool:
        return not self.messages

    def append(self, messages: Sequence[BaseMessage | StoredMessage], now: int | None = None) -> "MessageBuffer":
        """Return a new buffer with messages appended and the counters refreshed."""
        stored = [
            m if isinstance(m, StoredMessage) else StoredMessage.from_message(m)
            for m in messages
        ]
        combined = self.messages + stored
        return MessageBuffer(
            messages=combined,
            human_message_count=sum(1 for m in combined if m.is_human),
            last_message_timestamp=now if now is not None else now_ms(),
            created_at=self.created_at,
            retry_count=self.retry_count,
        )

    def to_messages(self) -> list[BaseMessage]:
        """Deserialize into LangChain message objects."""
        return messages_from_dict([m.model_dump() for m in self.messages])

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)
