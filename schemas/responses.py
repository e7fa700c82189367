"""Tool, loop and composer response schemas."""

from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from .records import PatientRecord


class ToolErrorKind(str, Enum):
    """Failure kinds a tool can report to the agent loop."""
    NOT_FOUND = "not_found"
    AMBIGUOUS = "ambiguous"
    UPSTREAM_ERROR = "upstream_error"
    TIMEOUT = "timeout"
    VALIDATION_ERROR = "validation_error"

    @property
    def is_transient(self) -> bool:
        """Transport-level failures that may succeed on retry."""
        return self in (ToolErrorKind.UPSTREAM_ERROR, ToolErrorKind.TIMEOUT)


class ToolError(BaseModel):
    """Error result from a tool."""
    kind: ToolErrorKind
    message: str
    candidates: List[PatientRecord] = Field(default_factory=list)


class ToolResult(BaseModel):
    """Result from tool execution: data or error, never both."""
    tool_name: str
    success: bool
    data: Optional[Dict[str, Any]] = None
    error: Optional[ToolError] = None

    @classmethod
    def ok(cls, tool_name: str, data: Dict[str, Any]) -> "ToolResult":
        return cls(tool_name=tool_name, success=True, data=data)

    @classmethod
    def fail(
        cls,
        tool_name: str,
        kind: ToolErrorKind,
        message: str,
        candidates: Optional[List[PatientRecord]] = None
    ) -> "ToolResult":
        return cls(
            tool_name=tool_name,
            success=False,
            error=ToolError(kind=kind, message=message, candidates=candidates or []),
        )


class ResolutionStatus(str, Enum):
    """Outcome of turning a patient reference into a canonical record."""
    RESOLVED = "resolved"
    NOT_FOUND = "not_found"
    AMBIGUOUS = "ambiguous"


class PatientResolution(BaseModel):
    """Zero, one or many canonical patient records for a reference."""
    status: ResolutionStatus
    patient: Optional[PatientRecord] = None
    candidates: List[PatientRecord] = Field(default_factory=list)


class LoopOutcome(str, Enum):
    """How an agent loop run ended."""
    FINISHED = "finished"
    MAX_ITERATIONS_EXCEEDED = "max_iterations_exceeded"
    ABORTED = "aborted"


class FinishReason(str, Enum):
    """Why THINK decided to finish."""
    ANSWERED = "answered"
    CLARIFICATION = "clarification"
    MISSING_PATIENT = "missing_patient"
    NOT_FOUND = "not_found"
    VALIDATION = "validation"
    SERVICE_UNAVAILABLE = "service_unavailable"
    FALLBACK = "fallback"
    RECALL = "recall"
    BEST_EFFORT = "best_effort"
    ERROR = "error"


class ToolInvocation(BaseModel):
    """Trace of one ACT step."""
    iteration: int
    tool_name: str
    input: Dict[str, Any]
    result: ToolResult


class AgentResult(BaseModel):
    """Result of one agent loop run."""
    outcome: LoopOutcome
    finish_reason: FinishReason
    answer: str
    iterations_used: int
    invocations: List[ToolInvocation] = Field(default_factory=list)

    @property
    def tools_called(self) -> List[str]:
        return [inv.tool_name for inv in self.invocations]


class ComposerOutput(BaseModel):
    """Output from the response composer."""
    response_text: str
    sources: List[str] = Field(default_factory=list)
    qualifiers: List[str] = Field(default_factory=list)


class AssistantReply(BaseModel):
    """Message returned to the caller of the assistant."""
    role: str = "assistant"
    content: str
    conversation_id: str
