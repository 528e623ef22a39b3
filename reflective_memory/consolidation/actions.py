"""
Add/Merge decisions returned by the LLM.

The model answers with one action per line:

    Add()
    Merge(<index>, <merged summary>)

where index points into the similar memories shown in the prompt.
"""

import re
from dataclasses import dataclass
from typing import Union

MERGE_PATTERN = re.compile(r"^Merge\((\d+),\s*([^)]+)\)$")


@dataclass(frozen=True)
class AddAction:
    """Insert the new memory as its own entry."""


@dataclass(frozen=True)
class MergeAction:
    """Rewrite similar memory ``index`` with ``merged_summary``."""

    index: int
    merged_summary: str


UpdateAction = Union[AddAction, MergeAction]


def parse_update_actions(text: str, history_length: int) -> list[UpdateAction]:
    """
    Parse the model output into actions.

    Unknown lines, malformed merges and merges pointing outside the
    ``history_length`` similar memories are dropped.
    """
    actions: list[UpdateAction] = []
    for line in (text or "").strip().splitlines():
        line = line.strip()
        if line == "Add()":
            actions.append(AddAction())
            continue

        match = MERGE_PATTERN.match(line)
        if match is None:
            continue

        index = int(match.group(1))
        summary = match.group(2).strip()
        if 0 <= index < history_length and summary:
            actions.append(MergeAction(index=index, merged_summary=summary))

    return actions


def validate_update_actions(text: str, history_length: int) -> tuple[bool, list[str]]:
    """
    Diagnose model output line by line.

    Returns:
        (is_valid, errors): valid when there are no errors and at least one action.
    """
    errors = []
    has_action = False

    for number, line in enumerate((text or "").strip().splitlines(), start=1):
        line = line.strip()
        if not line:
            continue
        if line == "Add()":
            has_action = True
            continue
        if not line.startswith("Merge("):
            errors.append(f"Line {number}: unknown action {line!r}")
            continue

        match = MERGE_PATTERN.match(line)
        if match is None:
            errors.append(f"Line {number}: expected Merge(index, summary)")
            continue

        index = int(match.group(1))
        if index >= history_length:
            errors.append(
                f"Line {number}: merge index {index} out of range (history length {history_length})"
            )
            continue
        has_action = True

    return (not errors and has_action), errors
