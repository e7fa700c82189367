"""Tests for the response composer."""

from datetime import date
from unittest.mock import Mock

from agents.composer import ResponseComposer
from agents.llm_composer import LLMResponder
from llm.base_client import LLMResponse, Message
from memory.models import RecallItem
from schemas.context import Intent, PatientReference
from schemas.records import PatientRecord
from schemas.responses import ToolErrorKind, ToolResult


RADWAN = {"id": 5, "name": "Radwan", "unique_identifier": "563004"}


class TestToolRendering:
    """Test rendering of successful tool results."""

    def setup_method(self):
        """Set up test fixtures."""
        self.composer = ResponseComposer()

    def test_patient_count(self):
        result = ToolResult.ok("patient_count", {
            "total_patients": 8, "with_goals": 4, "with_recent_sessions": 4, "with_active_budgets": 4
        })

        text = self.composer.render_result(result)

        assert text.startswith("There are 8 patients in the practice.")
        assert "- Patients with goals: 4 (50%)" in text

    def test_patient_count_with_filter(self):
        result = ToolResult.ok("patient_count", {
            "total_patients": 8, "with_goals": 4, "with_recent_sessions": 4, "with_active_budgets": 4,
            "filter": "new", "filtered_count": 1, "filter_description": "new (added in the last 30 days)"
        })

        text = self.composer.render_result(result)

        assert text.startswith("1 of the 8 patients are new (added in the last 30 days).")

    def test_goals(self):
        result = ToolResult.ok("goal_tracking", {
            "patient": RADWAN,
            "total_goals": 2,
            "status_breakdown": {"completed": 1, "in_progress": 1, "not_started": 0},
            "goals": [
                {"id": 1, "title": "Improve expressive communication", "status": "in_progress",
                 "progress_percent": 67, "subgoals_total": 3, "subgoals_completed": 2},
                {"id": 2, "title": "Develop fine motor skills", "status": "completed",
                 "progress_percent": 100, "subgoals_total": 0, "subgoals_completed": 0},
            ],
            "average_progress": 84,
        })

        text = self.composer.render_result(result)

        assert text.startswith("Radwan-563004 has 2 goal(s) (1 completed, 1 in progress):")
        assert "- Improve expressive communication: in progress, 67% progress (2/3 subgoals completed)" in text
        assert "- Develop fine motor skills: completed, 100% progress" in text
        assert "not started" not in text

    def test_budget_money_format(self):
        result = ToolResult.ok("budget_tracking", {
            "patient": RADWAN,
            "has_active_plan": True,
            "plan_code": "NDIS-2026-005",
            "end_of_plan": "2026-11-05",
            "total_funds": 12000.0,
            "spent": 3847.83,
            "remaining": 8152.17,
            "percent_remaining": 67.9,
            "categories": {"Therapy": {"allocated": 6789.65, "spent": 3297.83}},
        })

        text = self.composer.render_result(result)

        assert "$3,847.83 spent of $12,000.00, $8,152.17 remaining (67.9%)" in text
        assert "- Therapy: $3,297.83 spent of $6,789.65 allocated" in text

    def test_budget_without_plan(self):
        result = ToolResult.ok("budget_tracking", {"patient": RADWAN, "has_active_plan": False})
        assert self.composer.render_result(result) == "Radwan-563004 has no active funding plan."

    def test_unknown_tool_falls_back_to_data(self):
        result = ToolResult.ok("custom_tool", {"value": 1})
        assert self.composer.render_result(result) == "{'value': 1}"

    def test_compose_joins_results_and_qualifiers(self):
        results = [
            ToolResult.ok("budget_tracking", {"patient": RADWAN, "has_active_plan": False}),
            ToolResult.fail("strategy_insights", ToolErrorKind.TIMEOUT, "timed out"),
        ]

        output = self.composer.compose(results, qualifiers=["Note: partial."])

        assert output.sources == ["budget_tracking"]
        assert output.response_text == "Radwan-563004 has no active funding plan.\n\nNote: partial."


class TestOutcomeMessages:
    """Test clarification, recall and error messages."""

    def setup_method(self):
        """Set up test fixtures."""
        self.composer = ResponseComposer()

    def test_clarification_lists_every_candidate(self):
        candidates = [
            PatientRecord(id=3, name="Alex Taylor", unique_identifier="345678", date_of_birth=date(2015, 3, 2)),
            PatientRecord(id=4, name="Alex Taylor", unique_identifier="456789"),
        ]

        text = self.composer.clarification(candidates, PatientReference.by_name("Alex Taylor"))

        assert text.startswith("I found 2 patients matching the name \"Alex Taylor\".")
        assert "- Alex Taylor (ID 3, identifier 345678, born 2015-03-02)" in text
        assert "- Alex Taylor (ID 4, identifier 456789)" in text

    def test_missing_patient(self):
        text = self.composer.missing_patient(Intent.BUDGET_INFO)
        assert text.startswith("Which patient would you like me to check the budget for?")

    def test_not_found(self):
        text = self.composer.not_found("No patient with identifier 999999")
        assert "no patient with identifier 999999" in text

    def test_not_found_empty_message(self):
        assert self.composer.not_found("").startswith("Sorry, I couldn't find that patient.")

    def test_recall(self):
        items = [
            RecallItem(source="summary", content="Reviewed budgets.", position=12, score=3, start_index=1),
            RecallItem(source="message", content="Goals for Radwan?", position=13, score=1, role="user"),
        ]

        text = self.composer.recall(items)

        assert text.splitlines() == [
            "Here's what we covered earlier:",
            "- Messages 1-12: Reviewed budgets.",
            "- You asked: Goals for Radwan?",
        ]

    def test_best_effort_without_data(self):
        output = self.composer.best_effort([
            ToolResult.fail("goal_tracking", ToolErrorKind.TIMEOUT, "timed out")
        ])
        assert ResponseComposer.BEST_EFFORT_QUALIFIER in output.response_text


class TestFallback:
    """Test free-form replies."""

    def test_canned_replies(self):
        composer = ResponseComposer()

        assert composer.fallback("Hi there", Intent.CONVERSATIONAL) == ResponseComposer.GREETING_REPLY
        assert composer.fallback("Thanks!", Intent.CONVERSATIONAL) == ResponseComposer.THANKS_REPLY
        assert composer.fallback("What is ABA?", Intent.GENERAL_QUESTION) == ResponseComposer.GENERAL_REPLY

    def test_llm_responder(self):
        llm = Mock()
        llm.chat.return_value = LLMResponse(content="ABA is applied behaviour analysis.")
        composer = ResponseComposer(responder=LLMResponder(llm))
        context = [Message(role="user", content="Hello")]

        answer = composer.fallback("What is ABA?", Intent.GENERAL_QUESTION, context)

        assert answer == "ABA is applied behaviour analysis."
        sent = llm.chat.call_args.kwargs["messages"]
        assert sent[0].role == "system"
        assert [m.content for m in sent[1:]] == ["Hello", "What is ABA?"]

    def test_llm_failure_uses_canned_reply(self):
        llm = Mock()
        llm.chat.side_effect = RuntimeError("rate limited")
        composer = ResponseComposer(responder=LLMResponder(llm))

        assert LLMResponder(llm).answer("What is ABA?") is None
        assert composer.fallback("What is ABA?", Intent.GENERAL_QUESTION) == ResponseComposer.GENERAL_REPLY
