"""Clinical data provider interface."""

from abc import ABC, abstractmethod
from datetime import date
from typing import Any, Dict, List, Optional

from schemas.records import (
    PatientRecord,
    GoalRecord,
    SubgoalRecord,
    BudgetSettingsRecord,
    BudgetItemRecord,
    SessionRecord,
    StrategyUsageRecord,
    RecordFilter,
)


# Record model backing each practice entity
RECORD_MODELS = {
    "patients": PatientRecord,
    "goals": GoalRecord,
    "subgoals": SubgoalRecord,
    "budget_settings": BudgetSettingsRecord,
    "budget_items": BudgetItemRecord,
    "sessions": SessionRecord,
    "strategy_usage": StrategyUsageRecord,
}


class ClinicalDataProvider(ABC):
    """
    Read-only access to practice records.

    Implementations raise ``CollaboratorError`` (or ``CollaboratorTimeout``)
    when the underlying service fails; they never return partial data.
    """

    @abstractmethod
    def find_patients_by_identifier(self, identifier: str) -> List[PatientRecord]:
        """Patients whose numeric id or unique identifier equals ``identifier``."""
        pass

    @abstractmethod
    def find_patients_by_name(self, name: str) -> List[PatientRecord]:
        """
        Patients matching a name.

        Exact full-name matches (case-insensitive) take precedence; only when
        there are none are partial and fuzzy matches returned.
        """
        pass

    @abstractmethod
    def list_patients(self) -> List[PatientRecord]:
        pass

    @abstractmethod
    def list_goals(self, patient_id: int) -> List[GoalRecord]:
        pass

    @abstractmethod
    def list_subgoals(self, goal_ids: List[int]) -> List[SubgoalRecord]:
        pass

    @abstractmethod
    def list_budget_settings(self, patient_id: Optional[int] = None) -> List[BudgetSettingsRecord]:
        """Funding plans for one patient, or for the whole practice."""
        pass

    @abstractmethod
    def list_budget_items(self, budget_settings_id: int) -> List[BudgetItemRecord]:
        pass

    @abstractmethod
    def list_sessions(
        self,
        patient_id: Optional[int] = None,
        start: Optional[date] = None,
        end: Optional[date] = None
    ) -> List[SessionRecord]:
        """Sessions in an inclusive date range, newest first."""
        pass

    @abstractmethod
    def list_strategy_usage(self, patient_id: int) -> List[StrategyUsageRecord]:
        pass

    @abstractmethod
    def query_records(
        self,
        entity: str,
        filters: List[RecordFilter],
        limit: int
    ) -> List[Dict[str, Any]]:
        """
        Run an already validated structured query.

        Args:
            entity: Entity name from the practice schema
            filters: Conditions, all of which must hold
            limit: Maximum rows to return

        Returns:
            Matching rows as plain dicts
        """
        pass
