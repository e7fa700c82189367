"""In-process clinical data provider backed by CSV fixtures."""

import logging
from datetime import date
from typing import Any, Dict, List, Optional

from rapidfuzz import fuzz, process, utils

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
from .clinical_provider import ClinicalDataProvider, RECORD_MODELS
from .csv_loader import PracticeCSVLoader

logger = logging.getLogger(__name__)


# Minimum WRatio score for a fuzzy name match
FUZZY_NAME_CUTOFF = 85


def _coerce(expected: Any, like: Any) -> Any:
    """Coerce a filter value to the type of the stored value."""
    if expected is None or like is None:
        return expected
    if isinstance(like, date) and isinstance(expected, str):
        return date.fromisoformat(expected)
    if isinstance(like, bool) and isinstance(expected, str):
        return expected.lower() in ("true", "1", "yes")
    if isinstance(like, (int, float)) and not isinstance(like, bool) and isinstance(expected, str):
        return float(expected)
    if isinstance(like, str) and not isinstance(expected, str):
        return str(expected)
    return expected


def matches_filter(value: Any, operator: str, expected: Any) -> bool:
    """
    Evaluate one filter condition against a stored value.

    String equality is case-insensitive; comparisons against a missing
    value never match.
    """
    if operator == "contains":
        return value is not None and str(expected).lower() in str(value).lower()

    if operator == "in":
        options = expected if isinstance(expected, (list, tuple, set)) else [expected]
        return any(matches_filter(value, "=", option) for option in options)

    if value is None:
        return operator == "!=" and expected is not None

    try:
        expected = _coerce(expected, value)
    except (TypeError, ValueError):
        return False

    if isinstance(value, str) and isinstance(expected, str):
        value, expected = value.lower(), expected.lower()

    try:
        if operator == "=":
            return value == expected
        if operator == "!=":
            return value != expected
        if operator == ">":
            return value > expected
        if operator == ">=":
            return value >= expected
        if operator == "<":
            return value < expected
        if operator == "<=":
            return value <= expected
    except TypeError:
        return False

    raise ValueError(f"Unsupported operator: {operator}")


class InMemoryClinicalProvider(ClinicalDataProvider):
    """Serves practice records from CSV fixtures loaded once at startup."""

    def __init__(self, fixture_dir: str, loader: Optional[PracticeCSVLoader] = None):
        """
        Initialize with a fixture directory.

        Args:
            fixture_dir: Directory holding patients.csv, goals.csv, ...
            loader: Optional CSV loader (defaults to the bundled schema)
        """
        self.fixture_dir = fixture_dir
        self.loader = loader or PracticeCSVLoader()
        self.tables: Dict[str, list] = {}
        self._load()

    def _load(self):
        """Load every table and validate rows into records."""
        frames = self.loader.load_all(self.fixture_dir)
        for entity, df in frames.items():
            model = RECORD_MODELS.get(entity)
            if model is None:
                continue
            self.tables[entity] = [model(**row) for row in df.to_dict(orient="records")]

        logger.info(
            f"Loaded practice fixtures from {self.fixture_dir}: "
            + ", ".join(f"{name}={len(rows)}" for name, rows in self.tables.items())
        )

    @property
    def _patients(self) -> List[PatientRecord]:
        return self.tables.get("patients", [])

    def find_patients_by_identifier(self, identifier: str) -> List[PatientRecord]:
        identifier = str(identifier).strip()
        matches = []
        for patient in self._patients:
            if identifier.isdigit() and patient.id == int(identifier):
                matches.append(patient)
            elif patient.unique_identifier and patient.unique_identifier == identifier:
                matches.append(patient)
        return matches

    def find_patients_by_name(self, name: str) -> List[PatientRecord]:
        needle = name.strip().lower()
        if not needle:
            return []

        exact = [p for p in self._patients if p.name.lower() == needle]
        if exact:
            return exact

        tokens = needle.split()
        partial = [
            p for p in self._patients
            if all(token in p.name.lower().split() for token in tokens)
        ]
        if partial:
            return partial

        choices = {p.id: p.name for p in self._patients}
        fuzzy = process.extract(
            name,
            choices,
            scorer=fuzz.WRatio,
            processor=utils.default_process,
            score_cutoff=FUZZY_NAME_CUTOFF,
            limit=None,
        )
        matched_ids = {key for _, _, key in fuzzy}
        if matched_ids:
            logger.info(f"Fuzzy name match for {name!r}: {sorted(matched_ids)}")
        return [p for p in self._patients if p.id in matched_ids]

    def list_patients(self) -> List[PatientRecord]:
        return list(self._patients)

    def list_goals(self, patient_id: int) -> List[GoalRecord]:
        return [g for g in self.tables.get("goals", []) if g.patient_id == patient_id]

    def list_subgoals(self, goal_ids: List[int]) -> List[SubgoalRecord]:
        wanted = set(goal_ids)
        return [s for s in self.tables.get("subgoals", []) if s.goal_id in wanted]

    def list_budget_settings(self, patient_id: Optional[int] = None) -> List[BudgetSettingsRecord]:
        plans = self.tables.get("budget_settings", [])
        if patient_id is None:
            return list(plans)
        return [b for b in plans if b.patient_id == patient_id]

    def list_budget_items(self, budget_settings_id: int) -> List[BudgetItemRecord]:
        return [i for i in self.tables.get("budget_items", []) if i.budget_settings_id == budget_settings_id]

    def list_sessions(
        self,
        patient_id: Optional[int] = None,
        start: Optional[date] = None,
        end: Optional[date] = None
    ) -> List[SessionRecord]:
        sessions = [
            s for s in self.tables.get("sessions", [])
            if (patient_id is None or s.patient_id == patient_id)
            and (start is None or s.session_date >= start)
            and (end is None or s.session_date <= end)
        ]
        sessions.sort(key=lambda s: (s.session_date, s.id), reverse=True)
        return sessions

    def list_strategy_usage(self, patient_id: int) -> List[StrategyUsageRecord]:
        return [u for u in self.tables.get("strategy_usage", []) if u.patient_id == patient_id]

    def query_records(
        self,
        entity: str,
        filters: List[RecordFilter],
        limit: int
    ) -> List[Dict[str, Any]]:
        rows = []
        for record in self.tables.get(entity, []):
            row = record.model_dump()
            if all(matches_filter(row.get(f.field), f.operator, f.value) for f in filters):
                rows.append(row)
                if len(rows) >= limit:
                    break
        return rows
