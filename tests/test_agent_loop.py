"""Tests for the agent loop."""

import pytest
from datetime import date
from pathlib import Path
from unittest.mock import patch

from agents.composer import ResponseComposer
from memory.models import RecallItem
from react.loop import AgentLoop, reference_fallbacks
from react.registry import create_default_registry
from retrieval.memory_provider import InMemoryClinicalProvider
from schemas.context import ExtractedEntities, Intent, PatientReference, QueryParameters, ReferenceKind
from schemas.responses import FinishReason, LoopOutcome, ToolErrorKind, ToolResult


TODAY = date(2026, 10, 19)
FIXTURE_DIR = Path(__file__).parent.parent / "data" / "sample_practice"


def _entities(intent, reference=None, references_history=False, **parameters):
    return ExtractedEntities(
        intent=intent,
        patient_reference=reference,
        parameters=QueryParameters(**parameters),
        references_history=references_history
    )


def _failure(tool_name, kind):
    return ToolResult.fail(tool_name, kind, f"{kind.value} injected")


class TestReferenceFallbacks:
    """Test corrected references after a miss."""

    def test_combined(self):
        fallbacks = reference_fallbacks(PatientReference.combined("Radwan", "563004"))
        assert [(r.kind, r.value) for r in fallbacks] == [
            (ReferenceKind.IDENTIFIER, "563004"),
            (ReferenceKind.NAME, "Radwan"),
        ]

    def test_multi_word_name(self):
        fallbacks = reference_fallbacks(PatientReference.by_name("Sophie Browning"))
        assert [r.name for r in fallbacks] == ["Sophie"]

    def test_identifier_has_no_fallback(self):
        assert reference_fallbacks(PatientReference.by_identifier("5")) == []
        assert reference_fallbacks(None) == []


class TestAgentLoop:
    """Test THINK / ACT / OBSERVE behavior."""

    def setup_method(self):
        """Set up test fixtures."""
        provider = InMemoryClinicalProvider(str(FIXTURE_DIR))
        self.registry = create_default_registry(provider, clock=lambda: TODAY)
        self.loop = AgentLoop(self.registry, ResponseComposer(), max_iterations=5, retry_budget=2)

    def test_answers_with_primary_tool(self):
        result = self.loop.run(
            "What are the goals for patient ID 5",
            _entities(Intent.PATIENT_GOALS, PatientReference.by_identifier("5"))
        )

        assert result.outcome == LoopOutcome.FINISHED
        assert result.finish_reason == FinishReason.ANSWERED
        assert result.tools_called == ["goal_tracking"]
        assert result.invocations[0].input["patient_reference"]["identifier"] == "5"
        assert "Improve expressive communication" in result.answer
        assert "Build social play skills" in result.answer

    def test_follow_up_tool_runs_after_success(self):
        result = self.loop.run(
            "What progress has Radwan made?",
            _entities(Intent.GOAL_PROGRESS, PatientReference.by_name("Radwan"))
        )

        assert result.tools_called == ["goal_tracking", "strategy_insights"]
        assert result.iterations_used == 2
        assert "Visual schedules" in result.answer

    def test_fallback_intent_uses_no_tool(self):
        result = self.loop.run("Hello there", _entities(Intent.CONVERSATIONAL))

        assert result.finish_reason == FinishReason.FALLBACK
        assert result.invocations == []
        assert result.answer == ResponseComposer.GREETING_REPLY

    def test_missing_patient(self):
        result = self.loop.run("What are the goals?", _entities(Intent.PATIENT_GOALS))

        assert result.finish_reason == FinishReason.MISSING_PATIENT
        assert result.invocations == []
        assert "Which patient" in result.answer

    def test_missing_patient_answered_from_recall(self):
        items = [RecallItem(
            source="message", content="How much budget is left for Radwan-563004?",
            position=1, score=2, role="user"
        )]
        result = self.loop.run(
            "What did I ask about the budget earlier?",
            _entities(Intent.BUDGET_INFO, references_history=True),
            recall_items=items
        )

        assert result.finish_reason == FinishReason.RECALL
        assert "How much budget is left for Radwan-563004?" in result.answer

    def test_backward_reference_with_patient_answered_from_recall(self):
        items = [
            RecallItem(source="message", content="What are the goals for Radwan-563004?",
                       position=1, score=1, role="user"),
            RecallItem(source="message", content="Radwan-563004 has 3 goal(s).",
                       position=2, score=1, role="assistant"),
        ]
        result = self.loop.run(
            "Remind me what you said earlier about Radwan",
            _entities(Intent.PATIENT_INFO, PatientReference.by_name("Radwan"), references_history=True),
            recall_items=items
        )

        assert result.finish_reason == FinishReason.RECALL
        assert result.invocations == []
        assert "I answered: Radwan-563004 has 3 goal(s)." in result.answer

    def test_backward_reference_without_recall_items_runs_tool(self):
        result = self.loop.run(
            "Remind me about the goals for patient ID 5",
            _entities(Intent.PATIENT_GOALS, PatientReference.by_identifier("5"), references_history=True),
            recall_items=[]
        )

        assert result.finish_reason == FinishReason.ANSWERED
        assert result.tools_called == ["goal_tracking"]

    def test_unknown_intent_answered_from_recall(self):
        items = [RecallItem(source="message", content="How many patients do we have?",
                            position=1, score=0, role="user")]
        result = self.loop.run(
            "Remind me what you said earlier",
            _entities(Intent.UNKNOWN, references_history=True),
            recall_items=items
        )

        assert result.finish_reason == FinishReason.RECALL
        assert "You asked: How many patients do we have?" in result.answer

    def test_ambiguous_name_asks_for_clarification(self):
        result = self.loop.run(
            "Show goals for Alex Taylor",
            _entities(Intent.PATIENT_GOALS, PatientReference.by_name("Alex Taylor"))
        )

        assert result.finish_reason == FinishReason.CLARIFICATION
        assert "345678" in result.answer
        assert "456789" in result.answer
        assert result.iterations_used == 1

    def test_not_found_retries_with_corrected_reference(self):
        result = self.loop.run(
            "Goals for Radwan-999999",
            _entities(Intent.PATIENT_GOALS, PatientReference.combined("Radwan", "999999"))
        )

        assert result.finish_reason == FinishReason.ANSWERED
        assert result.iterations_used == 3
        assert result.invocations[-1].input["patient_reference"] == {"kind": "name", "name": "Radwan"}
        assert "Improve expressive communication" in result.answer

    def test_not_found_without_fallback(self):
        result = self.loop.run(
            "Goals for patient #999999",
            _entities(Intent.PATIENT_GOALS, PatientReference.by_identifier("999999"))
        )

        assert result.finish_reason == FinishReason.NOT_FOUND
        assert "999999" in result.answer
        assert result.iterations_used == 1

    def test_transient_error_retried(self):
        tool = self.registry.get("goal_tracking")
        real_execute = tool.execute
        calls = []

        def flaky(tool_input):
            calls.append(tool_input)
            if len(calls) == 1:
                return _failure(tool.name, ToolErrorKind.TIMEOUT)
            return real_execute(tool_input)

        with patch.object(tool, "execute", side_effect=flaky):
            result = self.loop.run(
                "Goals for patient ID 5",
                _entities(Intent.PATIENT_GOALS, PatientReference.by_identifier("5"))
            )

        assert result.finish_reason == FinishReason.ANSWERED
        assert result.iterations_used == 2

    def test_transient_error_exhausts_retry_budget(self):
        tool = self.registry.get("goal_tracking")
        with patch.object(tool, "execute", return_value=_failure(tool.name, ToolErrorKind.UPSTREAM_ERROR)):
            result = self.loop.run(
                "Goals for patient ID 5",
                _entities(Intent.PATIENT_GOALS, PatientReference.by_identifier("5"))
            )

        assert result.finish_reason == FinishReason.SERVICE_UNAVAILABLE
        assert result.answer == ResponseComposer.SERVICE_UNAVAILABLE
        assert result.iterations_used == 3

    def test_follow_up_failure_keeps_gathered_data(self):
        tool = self.registry.get("strategy_insights")
        with patch.object(tool, "execute", return_value=_failure(tool.name, ToolErrorKind.TIMEOUT)):
            result = self.loop.run(
                "What progress has Radwan made?",
                _entities(Intent.GOAL_PROGRESS, PatientReference.by_name("Radwan"))
            )

        assert result.finish_reason == FinishReason.ANSWERED
        assert "Improve expressive communication" in result.answer
        assert result.tools_called[0] == "goal_tracking"

    def test_validation_error_finishes(self):
        result = self.loop.run("list all invoices", _entities(Intent.RECORD_QUERY))

        assert result.finish_reason == FinishReason.VALIDATION
        assert "can't run that query" in result.answer

    def test_iteration_cap_gives_best_effort(self):
        loop = AgentLoop(self.registry, ResponseComposer(), max_iterations=2, retry_budget=10)
        tool = self.registry.get("goal_tracking")
        with patch.object(tool, "execute", return_value=_failure(tool.name, ToolErrorKind.TIMEOUT)):
            result = loop.run(
                "Goals for patient ID 5",
                _entities(Intent.PATIENT_GOALS, PatientReference.by_identifier("5"))
            )

        assert result.outcome == LoopOutcome.MAX_ITERATIONS_EXCEEDED
        assert result.finish_reason == FinishReason.BEST_EFFORT
        assert result.iterations_used == 2
        assert ResponseComposer.BEST_EFFORT_QUALIFIER in result.answer

    def test_unexpected_exception_aborts(self):
        tool = self.registry.get("goal_tracking")
        with patch.object(tool, "execute", side_effect=RuntimeError("boom")):
            result = self.loop.run(
                "Goals for patient ID 5",
                _entities(Intent.PATIENT_GOALS, PatientReference.by_identifier("5"))
            )

        assert result.outcome == LoopOutcome.ABORTED
        assert result.answer

    @pytest.mark.parametrize("kind", list(ToolErrorKind))
    def test_always_terminates_with_an_answer(self, kind):
        loop = AgentLoop(self.registry, ResponseComposer(), max_iterations=3, retry_budget=5)
        tool = self.registry.get("session_engagement")
        with patch.object(tool, "execute", return_value=_failure(tool.name, kind)):
            result = loop.run(
                "Sessions for Radwan Smith-404924",
                _entities(Intent.SESSION_INFO, PatientReference.combined("Radwan Smith", "404924"))
            )

        assert result.iterations_used <= 3
        assert result.answer.strip()
