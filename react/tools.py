"""Tool contract for the agent loop."""

import logging
from abc import ABC, abstractmethod
from datetime import date
from enum import Enum
from typing import Any, Callable, Dict, Optional
from pydantic import BaseModel, Field

from retrieval.clinical_provider import ClinicalDataProvider
from retrieval.errors import CollaboratorError, CollaboratorTimeout
from retrieval.patient_resolver import PatientResolver
from schemas.context import PatientReference, QueryParameters
from schemas.records import PatientRecord, RecordQuery
from schemas.responses import ResolutionStatus, ToolErrorKind, ToolResult

logger = logging.getLogger(__name__)


class ToolKind(str, Enum):
    """Tag identifying each tool variant."""
    PATIENT_COUNT = "patient_count"
    PATIENT_LOOKUP = "patient_lookup"
    GOAL_TRACKING = "goal_tracking"
    BUDGET_TRACKING = "budget_tracking"
    BUDGET_EXPIRATION = "budget_expiration"
    STRATEGY_INSIGHTS = "strategy_insights"
    SESSION_ENGAGEMENT = "session_engagement"
    QUERY_BUILDER = "query_builder"


class ToolInput(BaseModel):
    """Structured tool input: a patient reference plus free parameters."""
    patient_reference: Optional[PatientReference] = None
    parameters: QueryParameters = Field(default_factory=QueryParameters)
    record_query: Optional[RecordQuery] = None


# Input schema shared by the patient-scoped tools
PATIENT_INPUT_SCHEMA = {
    "type": "object",
    "properties": {
        "patient_reference": {
            "type": "object",
            "description": "Patient reference: kind (identifier | name | combined), name, identifier"
        },
        "parameters": {
            "type": "object",
            "description": "Optional date_range, sub_topic, category, status, focus, within_days"
        }
    },
    "required": ["patient_reference"]
}


class Tool(ABC):
    """Abstract base class for tools."""
    name: str
    kind: ToolKind
    description: str
    parameters: Dict[str, Any] = PATIENT_INPUT_SCHEMA
    requires_patient: bool = True

    def __init__(
        self,
        provider: ClinicalDataProvider,
        clock: Callable[[], date] = date.today
    ):
        """
        Initialize tool.

        Args:
            provider: Clinical data collaborator
            clock: Returns today's date
        """
        self.provider = provider
        self.clock = clock

    @abstractmethod
    def run(self, tool_input: ToolInput) -> ToolResult:
        """Run the tool; collaborator exceptions may propagate."""
        pass

    def execute(self, tool_input: ToolInput) -> ToolResult:
        """
        Execute the tool, reporting collaborator failures as tool errors.

        Args:
            tool_input: Patient reference and parameters

        Returns:
            ToolResult carrying either data or a ToolError
        """
        try:
            return self.run(tool_input)
        except CollaboratorTimeout as e:
            logger.warning(f"{self.name} timed out: {e}")
            return ToolResult.fail(self.name, ToolErrorKind.TIMEOUT, str(e))
        except CollaboratorError as e:
            logger.warning(f"{self.name} upstream error: {e}")
            return ToolResult.fail(self.name, ToolErrorKind.UPSTREAM_ERROR, str(e))

    def get_definition(self) -> Dict:
        """Get OpenAI-compatible tool definition."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters
            }
        }


class PatientScopedTool(Tool):
    """
    Tool that resolves a patient before querying.

    Zero matches report NOT_FOUND, several report AMBIGUOUS with every
    candidate; only a single canonical record reaches ``summarize``.
    """

    def __init__(
        self,
        provider: ClinicalDataProvider,
        clock: Callable[[], date] = date.today,
        resolver: Optional[PatientResolver] = None
    ):
        super().__init__(provider, clock)
        self.resolver = resolver or PatientResolver(provider)

    @abstractmethod
    def summarize(self, patient: Optional[PatientRecord], parameters: QueryParameters) -> Dict[str, Any]:
        """Shape a bounded summary of the patient's records."""
        pass

    def run(self, tool_input: ToolInput) -> ToolResult:
        reference = tool_input.patient_reference

        if reference is None:
            if self.requires_patient:
                return ToolResult.fail(
                    self.name, ToolErrorKind.VALIDATION_ERROR, "A patient reference is required"
                )
            return ToolResult.ok(self.name, self.summarize(None, tool_input.parameters))

        resolution = self.resolver.resolve(reference)

        if resolution.status == ResolutionStatus.NOT_FOUND:
            return ToolResult.fail(
                self.name, ToolErrorKind.NOT_FOUND, f"No patient matched {reference.describe()}"
            )

        if resolution.status == ResolutionStatus.AMBIGUOUS:
            return ToolResult.fail(
                self.name,
                ToolErrorKind.AMBIGUOUS,
                f"{len(resolution.candidates)} patients matched {reference.describe()}",
                candidates=resolution.candidates,
            )

        patient = resolution.patient
        data = self.summarize(patient, tool_input.parameters)
        data["patient"] = patient.brief()
        return ToolResult.ok(self.name, data)
