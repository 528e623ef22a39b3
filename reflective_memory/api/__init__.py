"""
Turn-stage interface for host orchestrators.
"""

from reflective_memory.api.lifecycle import ModelHandler, ReflectiveMemory, TurnContext

__all__ = ["ReflectiveMemory", "TurnContext", "ModelHandler"]
