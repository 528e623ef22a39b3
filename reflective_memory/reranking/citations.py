"""
Citation parsing for the model's answers.

Answers cite shown memories by position, e.g. ``... [0]`` or ``... [0, 2]``,
and use ``[NO_CITE]`` when none helped. Parsing never raises; anything
unreadable counts as "no citations observed".
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Sequence

from reflective_memory.models.reranker import Citation, SampledCandidate

logger = logging.getLogger(__name__)

CITATION_PATTERN = re.compile(r"\[([^\]]*)\]")
NO_CITE_MARKER = "NO_CITE"


class CitationKind(str, Enum):
    CITED = "cited"
    NO_CITE = "no_cite"
    MALFORMED = "malformed"


@dataclass
class CitationResult:
    kind: CitationKind
    indices: list[int] = field(default_factory=list)


def _parse_group(content: str) -> list[int] | None:
    """Indices in one bracket group, or None if it is not a list of non-negative ints."""
    indices = []
    for part in content.split(","):
        part = part.strip()
        if not re.fullmatch(r"[0-9]+", part):
            return None
        indices.append(int(part))
    return indices


def extract_citations(text: str) -> CitationResult:
    """
    Classify an answer and collect its cited indices.

    Indices keep first-seen order and are de-duplicated. Groups that are not
    index lists (``[x]``, ``[]``, ``[see above]``) are ignored.
    """
    if not text or not text.strip():
        return CitationResult(CitationKind.MALFORMED)

    groups = CITATION_PATTERN.findall(text)
    if any(g.strip() == NO_CITE_MARKER for g in groups):
        return CitationResult(CitationKind.NO_CITE)

    indices: list[int] = []
    for group in groups:
        parsed = _parse_group(group)
        if parsed is None:
            continue
        for index in parsed:
            if index not in indices:
                indices.append(index)

    if not indices:
        return CitationResult(CitationKind.MALFORMED)
    return CitationResult(CitationKind.CITED, indices)


def build_citations(
    text: str,
    shown: Sequence[SampledCandidate],
    log: logging.Logger | None = None,
) -> list[Citation]:
    """
    One Citation per shown memory; ``cited`` is True where the answer cites its position.

    Out-of-range indices are logged and dropped.
    """
    log = log or logger
    result = extract_citations(text)

    cited: set[int] = set()
    for index in result.indices:
        if index < len(shown):
            cited.add(index)
        else:
            log.warning(f"Ignoring out-of-range citation [{index}] (shown {len(shown)})")

    return [
        Citation(memory_id=candidate.memory_id, index=candidate.rank, cited=candidate.rank in cited)
        for candidate in shown
    ]
