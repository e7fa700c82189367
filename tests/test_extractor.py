"""Tests for the intent & entity extractor."""

import pytest
from datetime import date, timedelta

from agents.extractor import IntentExtractor
from agents.rules import INTENT_EXAMPLES, IntentRule
from llm.base_client import Message
from schemas.context import Intent, ReferenceKind, ReferenceSource


TODAY = date(2026, 10, 19)


class TestIntentClassification:
    """Test rule-table intent classification."""

    def setup_method(self):
        """Set up test fixtures."""
        self.extractor = IntentExtractor(today=TODAY)

    @pytest.mark.parametrize("query,expected", INTENT_EXAMPLES)
    def test_example_corpus(self, query, expected):
        """Every example query maps to its intent."""
        assert self.extractor.extract(query).intent == expected

    def test_patient_count(self):
        result = self.extractor.extract("How many patients do we have?")
        assert result.intent == Intent.PATIENT_COUNT
        assert result.patient_reference is None
        assert result.matched_pattern is not None

    def test_budget_declared_before_sessions_wins_tie(self):
        """Budget and session rules share a tier; declaration order decides."""
        result = self.extractor.extract("How much funding is left after sessions for Radwan-563004?")
        assert result.intent == Intent.BUDGET_INFO

    def test_higher_priority_wins(self):
        """A progress phrase beats the goal rule regardless of order."""
        result = self.extractor.extract("Show goal progress for Radwan-563004")
        assert result.intent == Intent.GOAL_PROGRESS

    def test_custom_rule_table(self):
        rules = [
            IntentRule(pattern=r"\bplan\b", intent=Intent.BUDGET_INFO, priority=1),
            IntentRule(pattern=r"\bplan\b", intent=Intent.BUDGET_EXPIRATION, priority=5),
        ]
        extractor = IntentExtractor(rules=rules, today=TODAY)
        assert extractor.classify("the plan")[0] == Intent.BUDGET_EXPIRATION

    def test_equal_priority_keeps_declaration_order(self):
        rules = [
            IntentRule(pattern=r"\bplan\b", intent=Intent.BUDGET_INFO, priority=5),
            IntentRule(pattern=r"\bplan\b", intent=Intent.BUDGET_EXPIRATION, priority=5),
        ]
        extractor = IntentExtractor(rules=rules, today=TODAY)
        assert extractor.classify("the plan")[0] == Intent.BUDGET_INFO

    def test_unmatched_query_is_unknown(self):
        result = self.extractor.extract("banana")
        assert result.intent == Intent.UNKNOWN
        assert result.patient_reference is None
        assert result.needs_language_model is True

    def test_empty_query_is_unknown(self):
        assert self.extractor.extract("   ").intent == Intent.UNKNOWN

    def test_unmatched_backward_reference_is_flagged(self):
        result = self.extractor.extract("Remind me what you said earlier")
        assert result.intent == Intent.UNKNOWN
        assert result.references_history is True

    def test_bare_patient_reference_is_lookup(self):
        result = self.extractor.extract("Radwan-563004")
        assert result.intent == Intent.PATIENT_INFO

    def test_invalid_combined_mode_rejected(self):
        with pytest.raises(ValueError):
            IntentExtractor(combined_name_mode="fuzzy")


class TestPatientReferences:
    """Test patient reference extraction."""

    def setup_method(self):
        """Set up test fixtures."""
        self.extractor = IntentExtractor(today=TODAY)

    def test_hash_identifier(self):
        reference = self.extractor.extract("patient #123456").patient_reference
        assert reference.kind == ReferenceKind.IDENTIFIER
        assert reference.identifier == "123456"

    def test_id_keyword(self):
        result = self.extractor.extract("What are the goals for patient ID 5")
        assert result.intent == Intent.PATIENT_GOALS
        assert result.patient_reference.kind == ReferenceKind.IDENTIFIER
        assert result.patient_reference.identifier == "5"

    def test_bare_six_digit_identifier(self):
        reference = self.extractor.extract("How much budget is remaining for 563004?").patient_reference
        assert reference.kind == ReferenceKind.IDENTIFIER
        assert reference.identifier == "563004"

    def test_name_after_trigger(self):
        reference = self.extractor.extract("Find patient John Smith").patient_reference
        assert reference.kind == ReferenceKind.NAME
        assert reference.name == "John Smith"

    def test_possessive_name(self):
        reference = self.extractor.extract("Show Alex Taylor's sessions").patient_reference
        assert reference.kind == ReferenceKind.NAME
        assert reference.name == "Alex Taylor"

    def test_combined_reference(self):
        reference = self.extractor.extract("Radwan-563004").patient_reference
        assert reference.kind == ReferenceKind.COMBINED
        assert reference.name == "Radwan"
        assert reference.identifier == "563004"

    def test_combined_beats_name(self):
        reference = self.extractor.extract("What goals does Radwan-563004 have?").patient_reference
        assert reference.kind == ReferenceKind.COMBINED

    def test_identifier_beats_name(self):
        reference = self.extractor.extract("Show sessions for John Smith #123456").patient_reference
        assert reference.kind == ReferenceKind.IDENTIFIER
        assert reference.identifier == "123456"

    def test_token_mode_keeps_hyphen_attached_name(self):
        reference = self.extractor.extract("Show goals for Radwan Smith-404924").patient_reference
        assert reference.kind == ReferenceKind.COMBINED
        assert reference.name == "Smith"
        assert reference.identifier == "404924"

    def test_greedy_mode_takes_leading_name_words(self):
        extractor = IntentExtractor(combined_name_mode="greedy", today=TODAY)
        reference = extractor.extract("Show goals for Radwan Smith-404924").patient_reference
        assert reference.kind == ReferenceKind.COMBINED
        assert reference.name == "Radwan Smith"

    def test_greedy_mode_skips_question_words(self):
        extractor = IntentExtractor(combined_name_mode="greedy", today=TODAY)
        reference = extractor.extract("What Radwan-563004 goals are open?").patient_reference
        assert reference.name == "Radwan"

    def test_month_names_are_not_patients(self):
        result = self.extractor.extract("How many sessions were there in October?")
        assert result.patient_reference is None

    def test_no_reference(self):
        assert self.extractor.extract("Which budgets are expiring next month?").patient_reference is None

    def test_anaphora_reuses_recent_patient(self):
        context = [
            Message(role="user", content="What are the goals for Radwan-563004?"),
            Message(role="assistant", content="Radwan-563004 has 3 goal(s)."),
        ]
        result = self.extractor.extract("What about her budget?", recent_context=context)
        assert result.intent == Intent.BUDGET_INFO
        assert result.patient_reference.kind == ReferenceKind.COMBINED
        assert result.patient_reference.identifier == "563004"
        assert result.reference_source == ReferenceSource.CONTEXT

    def test_anaphora_prefers_newest_user_message(self):
        context = [
            Message(role="user", content="Find patient John Smith"),
            Message(role="assistant", content="John Smith-123456"),
            Message(role="user", content="Show sessions for Radwan-563004"),
            Message(role="assistant", content="Radwan-563004 had 3 sessions."),
        ]
        result = self.extractor.extract("How is this patient progressing?", recent_context=context)
        assert result.patient_reference.identifier == "563004"

    def test_explicit_reference_ignores_context(self):
        context = [Message(role="user", content="Show sessions for Radwan-563004")]
        result = self.extractor.extract("What about her goals, patient #123456?", recent_context=context)
        assert result.patient_reference.identifier == "123456"
        assert result.reference_source == ReferenceSource.QUERY


class TestParameters:
    """Test free parameter extraction."""

    def setup_method(self):
        """Set up test fixtures."""
        self.extractor = IntentExtractor(today=TODAY)

    def test_last_month(self):
        params = self.extractor.extract("How many sessions did patient ID 5 attend last month?").parameters
        assert params.date_range.start == TODAY - timedelta(days=30)
        assert params.date_range.end == TODAY
        assert params.date_range.label == "the last month"

    def test_last_n_weeks(self):
        params = self.extractor.extract("Sessions for Radwan-563004 in the last 2 weeks").parameters
        assert params.date_range.start == TODAY - timedelta(days=14)

    def test_between_dates(self):
        params = self.extractor.extract(
            "Sessions for Radwan-563004 between 2026-09-01 and 2026-09-30"
        ).parameters
        assert params.date_range.start == date(2026, 9, 1)
        assert params.date_range.end == date(2026, 9, 30)

    def test_impossible_date_is_ignored(self):
        result = self.extractor.extract("Sessions for Radwan-563004 between 2025-02-30 and 2025-03-31")
        assert result.intent == Intent.SESSION_INFO
        assert result.patient_reference.identifier == "563004"
        assert result.parameters.date_range is None

    def test_impossible_since_date_is_ignored(self):
        result = self.extractor.extract("Goals for Radwan-563004 since 2026-13-01")
        assert result.intent == Intent.PATIENT_GOALS
        assert result.parameters.date_range is None

    def test_this_year(self):
        params = self.extractor.extract("Strategies used with Radwan-563004 this year").parameters
        assert params.date_range.start == date(2026, 1, 1)

    def test_expiration_window(self):
        result = self.extractor.extract("Which plans are expiring in the next 60 days?")
        assert result.intent == Intent.BUDGET_EXPIRATION
        assert result.parameters.within_days == 60

    def test_sub_topic_and_status(self):
        params = self.extractor.extract("Show completed communication goals for Radwan-563004").parameters
        assert params.sub_topic == "communication"
        assert params.status == "completed"

    def test_budget_category_and_focus(self):
        params = self.extractor.extract("How much was spent on therapy for Radwan-563004?").parameters
        assert params.category == "Therapy"
        assert params.focus == "spent"

    def test_count_filter(self):
        result = self.extractor.extract("How many patients are inactive?")
        assert result.intent == Intent.PATIENT_COUNT
        assert result.parameters.category == "inactive"

    def test_record_entity(self):
        result = self.extractor.extract("show all goals with status completed")
        assert result.parameters.record_entity == "goals"
        assert result.parameters.status == "completed"

    def test_backward_reference_flag(self):
        assert self.extractor.extract("What did we discuss earlier about budgets?").references_history is True
        assert self.extractor.extract("What are the goals for Radwan-563004?").references_history is False
