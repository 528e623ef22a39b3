"""
Retrospective reflection: learnable reranking and citation-driven updates.
"""

from reflective_memory.reranking.citations import (
    CitationKind,
    CitationResult,
    build_citations,
    extract_citations,
)
from reflective_memory.reranking.reranker import LearnableReranker, Selection
from reflective_memory.reranking.update import UpdateOutcome, WeightUpdater

__all__ = [
    "LearnableReranker",
    "Selection",
    "WeightUpdater",
    "UpdateOutcome",
    "CitationKind",
    "CitationResult",
    "extract_citations",
    "build_citations",
]
