"""Tool registry and bounded agent loop."""

from .tools import Tool, ToolKind, ToolInput, PatientScopedTool
from .registry import ToolRegistry, ToolRegistrationError, create_default_registry
from .loop import AgentLoop, AgentSession

__all__ = [
    "Tool",
    "ToolKind",
    "ToolInput",
    "PatientScopedTool",
    "ToolRegistry",
    "ToolRegistrationError",
    "create_default_registry",
    "AgentLoop",
    "AgentSession",
]
