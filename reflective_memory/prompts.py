"""
Prompt templates exchanged with the LLM.

- EXTRACTION_PROMPT: dialogue session -> personal summaries (or NO_TRAIT)
- UPDATE_MEMORY_PROMPT: new summary + similar history -> Add() / Merge(i, ...)
- CITATION_INSTRUCTIONS: how the answering model marks the memories it used
"""

import json
from html import escape
from typing import Sequence

from reflective_memory.models.memory import RetrievedMemory


EXTRACTION_PROMPT = """Task Description: Given a session of dialogue between SPEAKER_1 and SPEAKER_2, extract the
personal summaries of SPEAKER_1, with references to the corresponding turn IDs. Ensure
the output adheres to the following rules:

* Output results in JSON format. The top-level key is "extracted_memories". The value
  should be a list of dictionaries, where each dictionary has the keys "summary" and
  "reference":
  - summary: A concise personal summary, which captures relevant information about
    SPEAKER_1's experiences, preferences, and background, across multiple turns.
  - reference: A list of turn IDs indicating where the information appears.
* If no personal summary can be extracted, return NO_TRAIT.

Example:
INPUT:
* Turn 0:
  - SPEAKER_1: Did you check out that new gym in town?
  - SPEAKER_2: Yeah, I did. I'm not sure I like the vibe there, though.
* Turn 1:
  - SPEAKER_1: I usually just lift weights at mine, to be honest.
  - SPEAKER_2: Makes sense. Is the weather nice where you are?
* Turn 2:
  - SPEAKER_1: It gets foggy and rainy in New England, but the fall is beautiful.
  - SPEAKER_2: I've heard about the fall colors!

OUTPUT:
{{
  "extracted_memories": [
    {{
      "summary": "SPEAKER_1 usually lifts weights at the gym.",
      "reference": [1]
    }},
    {{
      "summary": "SPEAKER_1 lives in New England and enjoys the fall despite the rainy weather.",
      "reference": [2]
    }}
  ]
}}

Task: Follow the JSON format demonstrated in the example above and extract the personal
summaries for SPEAKER_1 from the following dialogue session.
Input: {dialogue}
Output:
"""

UPDATE_MEMORY_PROMPT = """Task Description: Given a list of history personal summaries for a specific user and a new
and similar personal summary from the same user, update the personal history summaries
following the instructions below:

* Input format: Both the history personal summaries and the new personal summary
  are provided in JSON format, with the top-level keys of "history_summaries" and
  "new_summary".
* Possible update actions:
  - Add: If the new personal summary is not relevant to any history personal summary,
    add it.
    Format: Add()
  - Merge: If the new personal summary is relevant to a history personal summary,
    merge them as an updated summary.
    Format: Merge(index, merged_summary)
    Note: index is the position of the relevant history summary in the list.
    merged_summary is the merged summary of the new summary and the relevant history
    summary. Two summaries are considered relevant if they discuss the same aspect
    of the user's personal information or experiences.
* Output exactly one action function on a single line.
* Do not include additional explanations or examples in the output, only the
  required action function.

Example:
INPUT:
* History Personal Summaries:
  - {{"history_summaries": ["SPEAKER_1 works out although they don't particularly enjoy it."]}}
* New Personal Summary:
  - {{"new_summary": "SPEAKER_1 exercises every Monday and Thursday."}}

OUTPUT ACTION:
Merge(0, SPEAKER_1 exercises every Monday and Thursday, although they don't particularly enjoy it.)

Task: Follow the example format above to update the personal history for the given case.
INPUT:
* History Personal Summaries:
  - {history_json}
* New Personal Summary:
  - {new_summary_json}

OUTPUT ACTION:
"""

CITATION_INSTRUCTIONS = """The memories above are personal summaries with their original turns.
* Cite useful memories using [i], where i is the index of the cited memory.
* If the answer relies on several memories, list all of them, e.g. [i, j, k].
* Do not cite memories that are not useful. If no memory is useful, output [NO_CITE]."""


def extraction_prompt(dialogue: str) -> str:
    return EXTRACTION_PROMPT.format(dialogue=dialogue)


def update_memory_prompt(history_summaries: Sequence[str], new_summary: str) -> str:
    """Build the Add/Merge decision prompt. Same inputs always give the same prompt."""
    return UPDATE_MEMORY_PROMPT.format(
        history_json=json.dumps({"history_summaries": list(history_summaries)}, ensure_ascii=False),
        new_summary_json=json.dumps({"new_summary": new_summary}, ensure_ascii=False),
    )


def format_memories_block(memories: Sequence[RetrievedMemory]) -> str:
    """
    Render the shown memories with their positional indices.

    Summaries and dialogue are XML-escaped so stored text cannot close the
    ``<memories>`` block. Returns "" for no memories.
    """
    if not memories:
        return ""

    entries = []
    for i, memory in enumerate(memories):
        lines = [f"- Memory [{i}]: {escape(memory.topic_summary)}"]
        for turn in memory.raw_dialogue.splitlines():
            if turn.strip():
                lines.append(f"    {escape(turn.strip())}")
        entries.append("\n".join(lines))

    body = "\n".join(entries)
    return f"<memories>\n{body}\n</memories>\n\n{CITATION_INSTRUCTIONS}"
