"""
Prospective reflection: extraction, Add/Merge consolidation and triggers.
"""

from reflective_memory.consolidation.actions import (
    AddAction,
    MergeAction,
    UpdateAction,
    parse_update_actions,
    validate_update_actions,
)
from reflective_memory.consolidation.consolidator import MemoryConsolidator
from reflective_memory.consolidation.extraction import MemoryExtractor, parse_extraction
from reflective_memory.consolidation.reflection import (
    ProspectiveReflector,
    should_trigger_reflection,
)

__all__ = [
    "AddAction",
    "MergeAction",
    "UpdateAction",
    "parse_update_actions",
    "validate_update_actions",
    "MemoryConsolidator",
    "MemoryExtractor",
    "parse_extraction",
    "ProspectiveReflector",
    "should_trigger_reflection",
]
