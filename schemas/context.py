"""Query understanding schemas."""

from datetime import date
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


class Intent(str, Enum):
    """Closed set of clinician query intents."""
    PATIENT_COUNT = "patient_count"
    PATIENT_INFO = "patient_info"
    PATIENT_GOALS = "patient_goals"
    GOAL_PROGRESS = "goal_progress"
    BUDGET_INFO = "budget_info"
    BUDGET_EXPIRATION = "budget_expiration"
    SESSION_INFO = "session_info"
    STRATEGY_INFO = "strategy_info"
    RECORD_QUERY = "record_query"
    CONVERSATIONAL = "conversational"
    GENERAL_QUESTION = "general_question"
    UNKNOWN = "unknown"


# Intents answered by the language model without any tool call
FALLBACK_INTENTS = frozenset({
    Intent.CONVERSATIONAL,
    Intent.GENERAL_QUESTION,
    Intent.UNKNOWN,
})


class ReferenceKind(str, Enum):
    """How a patient was referred to in the query."""
    IDENTIFIER = "identifier"
    NAME = "name"
    COMBINED = "combined"


class ReferenceSource(str, Enum):
    """Where the patient reference came from."""
    QUERY = "query"
    CONTEXT = "context"


class PatientReference(BaseModel):
    """A patient reference extracted from free text."""
    kind: ReferenceKind
    name: Optional[str] = None
    identifier: Optional[str] = None

    @classmethod
    def by_identifier(cls, identifier: str) -> "PatientReference":
        return cls(kind=ReferenceKind.IDENTIFIER, identifier=identifier)

    @classmethod
    def by_name(cls, name: str) -> "PatientReference":
        return cls(kind=ReferenceKind.NAME, name=name)

    @classmethod
    def combined(cls, name: str, identifier: str) -> "PatientReference":
        return cls(kind=ReferenceKind.COMBINED, name=name, identifier=identifier)

    @property
    def value(self) -> str:
        """Human readable form, e.g. for error messages."""
        if self.kind == ReferenceKind.IDENTIFIER:
            return self.identifier or ""
        if self.kind == ReferenceKind.NAME:
            return self.name or ""
        return f"{self.name}-{self.identifier}"

    def describe(self) -> str:
        """Describe the reference the way a clinician would say it."""
        if self.kind == ReferenceKind.IDENTIFIER:
            return f"identifier {self.identifier}"
        if self.kind == ReferenceKind.NAME:
            return f"the name \"{self.name}\""
        return f"\"{self.value}\""


class DateRange(BaseModel):
    """Inclusive date range resolved from a relative expression."""
    start: Optional[date] = None
    end: Optional[date] = None
    label: str = "all time"

    def contains(self, day: date) -> bool:
        if self.start and day < self.start:
            return False
        if self.end and day > self.end:
            return False
        return True


class QueryParameters(BaseModel):
    """Free parameters extracted alongside the intent."""
    date_range: Optional[DateRange] = None
    sub_topic: Optional[str] = Field(None, description="Goal area, e.g. communication")
    category: Optional[str] = Field(None, description="Budget category or count filter")
    status: Optional[str] = Field(None, description="Goal or session status")
    focus: Optional[str] = Field(None, description="Budget focus: remaining, spent, categories")
    record_entity: Optional[str] = Field(None, description="Entity for structured record queries")
    within_days: Optional[int] = None


class ExtractedEntities(BaseModel):
    """Output of the intent & entity extractor."""
    intent: Intent = Intent.UNKNOWN
    patient_reference: Optional[PatientReference] = None
    reference_source: Optional[ReferenceSource] = None
    parameters: QueryParameters = Field(default_factory=QueryParameters)
    references_history: bool = False
    matched_pattern: Optional[str] = None

    @classmethod
    def unknown(cls, references_history: bool = False) -> "ExtractedEntities":
        return cls(intent=Intent.UNKNOWN, references_history=references_history)

    @property
    def needs_language_model(self) -> bool:
        return self.intent in FALLBACK_INTENTS
