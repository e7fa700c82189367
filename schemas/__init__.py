"""Pydantic schemas for the Clinician Assistant."""

from .context import (
    Intent,
    FALLBACK_INTENTS,
    ReferenceKind,
    ReferenceSource,
    PatientReference,
    DateRange,
    QueryParameters,
    ExtractedEntities,
)
from .records import (
    PatientRecord,
    GoalRecord,
    SubgoalRecord,
    BudgetSettingsRecord,
    BudgetItemRecord,
    SessionRecord,
    StrategyUsageRecord,
    RecordFilter,
    RecordQuery,
)
from .responses import (
    ToolErrorKind,
    ToolError,
    ToolResult,
    ResolutionStatus,
    PatientResolution,
    LoopOutcome,
    FinishReason,
    ToolInvocation,
    AgentResult,
    ComposerOutput,
    AssistantReply,
)

__all__ = [
    "Intent",
    "FALLBACK_INTENTS",
    "ReferenceKind",
    "ReferenceSource",
    "PatientReference",
    "DateRange",
    "QueryParameters",
    "ExtractedEntities",
    "PatientRecord",
    "GoalRecord",
    "SubgoalRecord",
    "BudgetSettingsRecord",
    "BudgetItemRecord",
    "SessionRecord",
    "StrategyUsageRecord",
    "RecordFilter",
    "RecordQuery",
    "ToolErrorKind",
    "ToolError",
    "ToolResult",
    "ResolutionStatus",
    "PatientResolution",
    "LoopOutcome",
    "FinishReason",
    "ToolInvocation",
    "AgentResult",
    "ComposerOutput",
    "AssistantReply",
]
