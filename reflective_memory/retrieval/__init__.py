"""
Candidate retrieval from the memory bank.
"""

from reflective_memory.retrieval.candidates import CandidateRetrieval, MemoryIndex

__all__ = ["CandidateRetrieval", "MemoryIndex"]
