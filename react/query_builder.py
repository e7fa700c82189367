"""Structured record queries over an allow-list of entities and fields."""

import logging
from datetime import date
from typing import Callable, Dict, List, Optional

from retrieval.clinical_provider import ClinicalDataProvider
from retrieval.csv_loader import load_practice_schema
from retrieval.patient_resolver import PatientResolver
from schemas.context import QueryParameters
from schemas.records import RecordFilter, RecordQuery
from schemas.responses import ResolutionStatus, ToolErrorKind, ToolResult
from .tools import Tool, ToolInput, ToolKind

logger = logging.getLogger(__name__)


ALLOWED_OPERATORS = ("=", "!=", ">", ">=", "<", "<=", "contains", "in")
MAX_LIMIT = 50
DEFAULT_LIMIT = 20


class QueryValidationError(ValueError):
    """A structured query stepped outside the allow-list."""


class QueryBuilderTool(Tool):
    """
    Flexible record listing.

    Accepts only a structured description: an allow-listed entity, filters
    on that entity's allow-listed fields with allow-listed operators, and a
    bounded limit. Free text is never turned into a query.
    """

    name = "query_builder"
    kind = ToolKind.QUERY_BUILDER
    description = """List practice records matching structured filters.
Entities: patients, goals, subgoals, budget_settings, budget_items, sessions,
strategy_usage. Operators: = != > >= < <= contains in. Limit at most 50."""
    parameters = {
        "type": "object",
        "properties": {
            "record_query": {
                "type": "object",
                "description": "entity, filters [{field, operator, value}], limit"
            },
            "patient_reference": {
                "type": "object",
                "description": "Optional patient to scope the listing to"
            }
        },
        "required": ["record_query"]
    }
    requires_patient = False

    def __init__(
        self,
        provider: ClinicalDataProvider,
        clock: Callable[[], date] = date.today,
        resolver: Optional[PatientResolver] = None,
        allowed_fields: Optional[Dict[str, List[str]]] = None
    ):
        super().__init__(provider, clock)
        self.resolver = resolver or PatientResolver(provider)
        if allowed_fields is None:
            schema = load_practice_schema()
            allowed_fields = {entity: table.get("fields", []) for entity, table in schema.items()}
        self.allowed_fields = allowed_fields

    def validate(self, query: RecordQuery) -> None:
        """
        Check a query against the allow-list.

        Raises:
            QueryValidationError: naming the rejected entity, field,
                operator or limit
        """
        if query.entity not in self.allowed_fields:
            raise QueryValidationError(f"entity '{query.entity}' is not queryable")

        fields = self.allowed_fields[query.entity]
        for condition in query.filters:
            if condition.field not in fields:
                raise QueryValidationError(
                    f"field '{condition.field}' is not queryable on {query.entity}"
                )
            if condition.operator not in ALLOWED_OPERATORS:
                raise QueryValidationError(f"operator '{condition.operator}' is not allowed")
            if condition.operator == "in" and not isinstance(condition.value, list):
                raise QueryValidationError(f"operator 'in' on '{condition.field}' needs a list of values")

        if query.limit < 1 or query.limit > MAX_LIMIT:
            raise QueryValidationError(f"limit {query.limit} is outside 1-{MAX_LIMIT}")

    def from_parameters(self, parameters: QueryParameters) -> Optional[RecordQuery]:
        """Build a query from extracted parameters (entity plus status)."""
        if not parameters.record_entity:
            return None
        filters = []
        if parameters.status and "status" in self.allowed_fields.get(parameters.record_entity, []):
            filters.append(RecordFilter(field="status", operator="=", value=parameters.status))
        return RecordQuery(entity=parameters.record_entity, filters=filters, limit=DEFAULT_LIMIT)

    def run(self, tool_input: ToolInput) -> ToolResult:
        query = tool_input.record_query or self.from_parameters(tool_input.parameters)
        if query is None:
            return ToolResult.fail(
                self.name, ToolErrorKind.VALIDATION_ERROR, "no record entity was given"
            )

        try:
            self.validate(query)
        except QueryValidationError as e:
            logger.info(f"Rejected record query: {e}")
            return ToolResult.fail(self.name, ToolErrorKind.VALIDATION_ERROR, str(e))

        filters = list(query.filters)
        patient = None
        reference = tool_input.patient_reference
        if reference is not None:
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
            scope = self._patient_scope(query.entity, patient.id)
            if scope is None:
                return ToolResult.fail(
                    self.name,
                    ToolErrorKind.VALIDATION_ERROR,
                    f"entity '{query.entity}' cannot be scoped to a patient",
                )
            filters.append(scope)

        rows = self.provider.query_records(query.entity, filters, query.limit)

        data = {
            "entity": query.entity,
            "filters": [f.model_dump() for f in filters],
            "limit": query.limit,
            "count": len(rows),
            "truncated": len(rows) >= query.limit,
            "rows": rows,
        }
        if patient:
            data["patient"] = patient.brief()
        return ToolResult.ok(self.name, data)

    def _patient_scope(self, entity: str, patient_id: int) -> Optional[RecordFilter]:
        """Filter restricting an entity to one patient."""
        fields = self.allowed_fields.get(entity, [])
        if entity == "patients":
            return RecordFilter(field="id", operator="=", value=patient_id)
        if "patient_id" in fields:
            return RecordFilter(field="patient_id", operator="=", value=patient_id)
        if "goal_id" in fields:
            goal_ids = [g.id for g in self.provider.list_goals(patient_id)]
            return RecordFilter(field="goal_id", operator="in", value=goal_ids)
        return None
