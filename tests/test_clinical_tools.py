"""Tests for the clinical tools."""

import pytest
from datetime import date, timedelta
from pathlib import Path
from unittest.mock import Mock

from react.clinical_tools import (
    PatientCountTool,
    PatientLookupTool,
    GoalTrackingTool,
    BudgetTrackingTool,
    BudgetExpirationTool,
    StrategyInsightsTool,
    SessionEngagementTool,
)
from react.tools import ToolInput
from retrieval.errors import CollaboratorError, CollaboratorTimeout
from retrieval.memory_provider import InMemoryClinicalProvider
from schemas.context import DateRange, PatientReference, QueryParameters
from schemas.responses import ToolErrorKind


TODAY = date(2026, 10, 19)
FIXTURE_DIR = Path(__file__).parent.parent / "data" / "sample_practice"
RADWAN = PatientReference.combined("Radwan", "563004")
LAST_MONTH = DateRange(start=TODAY - timedelta(days=30), end=TODAY, label="the last month")


def _input(reference=None, **parameters):
    return ToolInput(patient_reference=reference, parameters=QueryParameters(**parameters))


class TestPatientCountTool:
    """Test practice-wide counts."""

    def setup_method(self):
        """Set up test fixtures."""
        self.tool = PatientCountTool(InMemoryClinicalProvider(str(FIXTURE_DIR)), clock=lambda: TODAY)

    def test_counts(self):
        result = self.tool.execute(_input())

        assert result.success
        assert result.data["total_patients"] == 8
        assert result.data["with_goals"] == 4
        assert result.data["with_recent_sessions"] == 4
        assert result.data["with_active_budgets"] == 4
        assert "filtered_count" not in result.data

    @pytest.mark.parametrize("count_filter,expected", [("active", 4), ("inactive", 4), ("new", 1)])
    def test_filters(self, count_filter, expected):
        result = self.tool.execute(_input(category=count_filter))

        assert result.data["filtered_count"] == expected
        assert result.data["filter"] == count_filter


class TestPatientScopedTools:
    """Test tools that resolve a patient first."""

    def setup_method(self):
        """Set up test fixtures."""
        self.provider = InMemoryClinicalProvider(str(FIXTURE_DIR))
        self.clock = lambda: TODAY

    def test_lookup(self):
        result = PatientLookupTool(self.provider, clock=self.clock).execute(_input(RADWAN))

        assert result.success
        assert result.data["patient"]["id"] == 5
        assert result.data["goal_count"] == 3
        assert result.data["session_count"] == 5
        assert result.data["last_session"] == date(2026, 10, 14)
        assert result.data["active_plan"]["plan_code"] == "NDIS-2026-005"

    def test_goals(self):
        result = GoalTrackingTool(self.provider, clock=self.clock).execute(
            _input(PatientReference.by_identifier("5"))
        )

        assert result.success
        data = result.data
        assert data["total_goals"] == 3
        assert [g["title"] for g in data["goals"]] == [
            "Improve expressive communication",
            "Develop fine motor skills",
            "Build social play skills",
        ]
        assert data["goals"][0]["progress_percent"] == 67
        assert data["goals"][0]["subgoals_completed"] == 2
        assert data["status_breakdown"] == {"completed": 1, "in_progress": 1, "not_started": 1}
        assert data["average_progress"] == 56

    def test_goals_filtered_by_topic(self):
        result = GoalTrackingTool(self.provider, clock=self.clock).execute(
            _input(RADWAN, sub_topic="communication")
        )
        assert [g["id"] for g in result.data["goals"]] == [1]

    def test_budget(self):
        result = BudgetTrackingTool(self.provider, clock=self.clock).execute(_input(RADWAN))

        data = result.data
        assert data["has_active_plan"] is True
        assert data["total_funds"] == 12000.0
        assert data["spent"] == pytest.approx(3847.83)
        assert data["remaining"] == pytest.approx(8152.17)
        assert data["percent_remaining"] == 67.9
        assert list(data["categories"])[0] == "Therapy"

    def test_budget_category_filter(self):
        result = BudgetTrackingTool(self.provider, clock=self.clock).execute(
            _input(RADWAN, category="Therapy")
        )

        data = result.data
        assert data["total_funds"] == pytest.approx(6789.65)
        assert data["spent"] == pytest.approx(3297.83)
        assert list(data["categories"]) == ["Therapy"]

    def test_budget_without_active_plan(self):
        result = BudgetTrackingTool(self.provider, clock=self.clock).execute(
            _input(PatientReference.by_name("Liam Nguyen"))
        )
        assert result.success
        assert result.data["has_active_plan"] is False

    def test_expiration_practice_wide(self):
        result = BudgetExpirationTool(self.provider, clock=self.clock).execute(_input())

        data = result.data
        assert data["within_days"] == 30
        assert [p["plan_code"] for p in data["plans"]] == ["NDIS-2026-005"]
        assert data["plans"][0]["days_remaining"] == 17
        assert data["plans"][0]["patient_name"] == "Radwan-563004"

    def test_expiration_wider_window(self):
        result = BudgetExpirationTool(self.provider, clock=self.clock).execute(_input(within_days=60))
        assert [p["plan_code"] for p in result.data["plans"]] == ["NDIS-2026-005", "PRIV-2026-003"]

    def test_expiration_for_one_patient(self):
        result = BudgetExpirationTool(self.provider, clock=self.clock).execute(
            _input(PatientReference.by_name("John Smith"))
        )
        assert result.data["plans"] == []
        assert result.data["patient"]["id"] == 1

    def test_strategies(self):
        result = StrategyInsightsTool(self.provider, clock=self.clock).execute(_input(RADWAN))

        data = result.data
        assert data["total_uses"] == 6
        assert data["unique_strategies"] == 4
        assert data["average_effectiveness"] == 7.0
        assert [s["strategy"] for s in data["top_used"][:2]] == ["Modelling", "Visual schedules"]
        assert data["most_effective"][0] == {
            "strategy": "Visual schedules", "uses": 2, "average_effectiveness": 8.5
        }
        assert data["categories"] == {"Communication": 4, "Motor": 1, "Social": 1}

    def test_strategies_in_date_range(self):
        result = StrategyInsightsTool(self.provider, clock=self.clock).execute(
            _input(RADWAN, date_range=LAST_MONTH)
        )
        assert result.data["total_uses"] == 4
        assert result.data["period"] == "the last month"

    def test_sessions(self):
        result = SessionEngagementTool(self.provider, clock=self.clock).execute(
            _input(RADWAN, date_range=LAST_MONTH)
        )

        data = result.data
        assert data["total_sessions"] == 3
        assert data["status_counts"] == {"cancelled": 1, "completed": 2}
        assert data["attendance_rate"] == 66.7
        assert data["total_duration"] == 120
        assert data["last_session"] == date(2026, 10, 14)
        assert data["days_since_last_session"] == 5
        assert data["upcoming_sessions"] == 1

    def test_missing_reference_is_validation_error(self):
        result = GoalTrackingTool(self.provider, clock=self.clock).execute(_input())
        assert result.success is False
        assert result.error.kind == ToolErrorKind.VALIDATION_ERROR

    def test_not_found(self):
        result = GoalTrackingTool(self.provider, clock=self.clock).execute(
            _input(PatientReference.by_identifier("999999"))
        )
        assert result.error.kind == ToolErrorKind.NOT_FOUND
        assert "999999" in result.error.message

    def test_ambiguous_carries_candidates(self):
        result = GoalTrackingTool(self.provider, clock=self.clock).execute(
            _input(PatientReference.by_name("Alex Taylor"))
        )
        assert result.error.kind == ToolErrorKind.AMBIGUOUS
        assert {p.id for p in result.error.candidates} == {3, 4}
        assert result.data is None


class TestCollaboratorFailures:
    """Test collaborator exceptions become tool errors."""

    def test_timeout(self):
        provider = Mock()
        provider.find_patients_by_identifier.side_effect = CollaboratorTimeout("timed out")
        result = GoalTrackingTool(provider).execute(_input(PatientReference.by_identifier("5")))
        assert result.error.kind == ToolErrorKind.TIMEOUT
        assert result.error.kind.is_transient

    def test_upstream_error(self):
        provider = Mock()
        provider.list_patients.side_effect = CollaboratorError("boom", status_code=500)
        result = PatientCountTool(provider).execute(_input())
        assert result.error.kind == ToolErrorKind.UPSTREAM_ERROR
