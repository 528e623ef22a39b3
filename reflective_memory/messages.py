"""
Helpers for LangChain chat messages.
"""

from typing import Any, Sequence

from langchain_core.messages import BaseMessage, HumanMessage

from reflective_memory.models.buffer import StoredMessage

Message = BaseMessage | StoredMessage

# Speaker labels used by the extraction prompt
USER_SPEAKER = "SPEAKER_1"
ASSISTANT_SPEAKER = "SPEAKER_2"


def message_text(message: Message) -> str:
    """Plain text of a message, joining text blocks of multimodal content."""
    content: Any = message.content
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(str(block.get("text", "")))
        return "".join(parts)
    return "" if content is None else str(content)


def is_human_message(message: Message) -> bool:
    if isinstance(message, StoredMessage):
        return message.is_human
    return isinstance(message, HumanMessage) or message.type == "human"


def count_human_messages(messages: Sequence[Message]) -> int:
    return sum(1 for m in messages if is_human_message(m))


def extract_last_human_message(messages: Sequence[Message]) -> str | None:
    """Text of the most recent human message, or None if there is none."""
    for message in reversed(messages):
        if is_human_message(message):
            text = message_text(message).strip()
            return text or None
    return None


def group_turns(messages: Sequence[Message]) -> list[list[tuple[str, str]]]:
    """
    Split a conversation into turns of ``(speaker, text)`` lines.

    A turn opens at each human message. Tool and system messages are skipped.
    """
    turns: list[list[tuple[str, str]]] = []
    for message in messages:
        text = " ".join(message_text(message).split())
        if not text:
            continue
        if is_human_message(message):
            turns.append([(USER_SPEAKER, text)])
        elif message.type == "ai":
            if not turns:
                turns.append([])
            turns[-1].append((ASSISTANT_SPEAKER, text))
    return turns


def format_dialogue(turns: Sequence[Sequence[tuple[str, str]]]) -> str:
    """Render grouped turns the way the extraction prompt expects."""
    lines = []
    for number, turn in enumerate(turns):
        lines.append(f"* Turn {number}:")
        lines.extend(f"  - {speaker}: {text}" for speaker, text in turn)
    return "\n".join(lines)
