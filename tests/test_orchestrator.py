"""End-to-end tests for ClinicianAssistant on the sample practice."""

import os
import tempfile
import threading
from datetime import date
from pathlib import Path
from unittest.mock import Mock, patch

import pytest

from config.settings import Settings
from llm.base_client import LLMResponse
from memory.context_manager import ConversationNotFoundError
from orchestrator import ClinicianAssistant


TODAY = date(2026, 10, 19)
FIXTURE_DIR = Path(__file__).parent.parent / "data" / "sample_practice"


class TestClinicianAssistant:
    """Test full conversations against the bundled fixtures."""

    def setup_method(self):
        """Set up test fixtures."""
        self.tmpdir = tempfile.TemporaryDirectory()
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings(
                fixture_dir=str(FIXTURE_DIR),
                db_path=os.path.join(self.tmpdir.name, "conversations.db")
            )
        self.assistant = ClinicianAssistant(settings, clock=lambda: TODAY)

    def teardown_method(self):
        self.assistant.shutdown()
        self.tmpdir.cleanup()

    def test_no_llm_without_keys(self):
        assert self.assistant.llm_client is None
        assert self.assistant.composer.responder is None

    def test_patient_count(self):
        reply = self.assistant.submit_message("c1", "How many patients do we have?")

        assert reply.conversation_id == "c1"
        assert reply.content.startswith("There are 8 patients in the practice.")

    def test_goals_with_trace(self):
        reply = self.assistant.submit_message("c1", "What are the goals for patient ID 5")

        assert "Improve expressive communication" in reply.content
        assert "Build social play skills" in reply.content

        history = self.assistant.get_history("c1")
        assert [m.role for m in history] == ["user", "assistant"]
        assert history[1].trace[0]["tool_name"] == "goal_tracking"
        assert history[1].trace[0]["result"]["success"] is True

    def test_ambiguous_name_asks_which_patient(self):
        reply = self.assistant.submit_message("c1", "Show goals for Alex Taylor")

        assert "Which one did you mean?" in reply.content
        assert "345678" in reply.content
        assert "456789" in reply.content

    def test_follow_up_uses_earlier_patient(self):
        self.assistant.submit_message("c1", "What are the goals for Radwan-563004?")
        reply = self.assistant.submit_message("c1", "What about her budget?")

        assert "$8,152.17 remaining" in reply.content

    def test_backward_reference_recalls_earlier_question(self):
        self.assistant.submit_message("c1", "How much budget is left for Radwan-563004?")
        reply = self.assistant.submit_message("c1", "What did we discuss earlier about budgets?")

        assert reply.content.startswith("Here's what we covered earlier:")
        assert "You asked: How much budget is left for Radwan-563004?" in reply.content

    def test_backward_reference_naming_patient_uses_memory(self):
        self.assistant.submit_message("c1", "What are the goals for Radwan-563004?")
        reply = self.assistant.submit_message("c1", "Remind me what you said earlier about Radwan")

        assert reply.content.startswith("Here's what we covered earlier:")
        assert "You asked: What are the goals for Radwan-563004?" in reply.content
        assert "Date of birth" not in reply.content
        assert self.assistant.get_history("c1")[-1].trace is None

    def test_phrase_only_backward_reference(self):
        self.assistant.submit_message("c1", "What are the goals for Radwan-563004?")
        reply = self.assistant.submit_message("c1", "Remind me what you said earlier")

        assert "You asked: What are the goals for Radwan-563004?" in reply.content
        assert "I answered: Radwan-563004 has 3 goal(s)" in reply.content

    def test_missing_patient(self):
        reply = self.assistant.submit_message("c1", "What are the goals?")
        assert reply.content.startswith("Which patient")

    def test_greeting_without_llm(self):
        reply = self.assistant.submit_message("c1", "Hello")
        assert reply.content == self.assistant.composer.GREETING_REPLY

    def test_conversation_lifecycle(self):
        conversation = self.assistant.create_conversation(title="Radwan review")
        cid = conversation.conversation_id
        self.assistant.submit_message(cid, "How many patients do we have?")

        self.assistant.rename_conversation(cid, "Practice overview")
        assert [c.title for c in self.assistant.list_conversations()] == ["Practice overview"]

        self.assistant.clear_conversation(cid)
        assert self.assistant.get_history(cid) == []

        self.assistant.delete_conversation(cid)
        with pytest.raises(ConversationNotFoundError):
            self.assistant.get_history(cid)

    def test_run_tool_with_reference_string(self):
        text = self.assistant.run_tool("goal_tracking", {"patient_reference": "Radwan-563004"})
        assert text.startswith("Radwan-563004 has 3 goal(s)")

    def test_run_tool_with_parameters(self):
        text = self.assistant.run_tool("budget_expiration", {"parameters": {"within_days": 60}})
        assert "NDIS-2026-005" in text
        assert "PRIV-2026-003" in text

    def test_run_tool_with_null_parameters(self):
        text = self.assistant.run_tool("patient_count", {"parameters": None})
        assert text.startswith("There are 8 patients in the practice.")

    def test_run_tool_unknown(self):
        with pytest.raises(KeyError):
            self.assistant.run_tool("does_not_exist", {})

    def test_ask_without_memory(self):
        result = self.assistant.ask("Which plans are expiring in the next 30 days?")
        assert "NDIS-2026-005" in result.answer
        assert result.tools_called == ["budget_expiration"]

    def test_same_conversation_waits_for_running_message(self):
        lock = self.assistant.memory.conversation_lock("c1")
        worker = threading.Thread(
            target=self.assistant.submit_message, args=("c1", "How many patients do we have?")
        )

        with lock:
            worker.start()
            worker.join(timeout=0.2)
            assert worker.is_alive()
            assert self.assistant.memory.store.get_message_count("c1") == 0

        worker.join(timeout=10)
        assert not worker.is_alive()
        assert self.assistant.memory.store.get_message_count("c1") == 2

    def test_other_conversation_not_blocked(self):
        worker = threading.Thread(
            target=self.assistant.submit_message, args=("c2", "How many patients do we have?")
        )

        with self.assistant.memory.conversation_lock("c1"):
            worker.start()
            worker.join(timeout=10)
            assert not worker.is_alive()

        assert self.assistant.get_history("c2")[1].content.startswith("There are 8 patients")

    def test_concurrent_messages_are_not_interleaved(self):
        questions = ["How many patients do we have?", "Which plans are expiring in the next 30 days?"]
        workers = [
            threading.Thread(target=self.assistant.submit_message, args=("c1", question))
            for question in questions
        ]
        for worker in workers:
            worker.start()
        for worker in workers:
            worker.join(timeout=10)

        history = self.assistant.get_history("c1")
        assert [m.index for m in history] == [1, 2, 3, 4]
        assert [m.role for m in history] == ["user", "assistant", "user", "assistant"]
        for question, answer in zip(history[0::2], history[1::2]):
            if question.content == questions[0]:
                assert answer.content.startswith("There are 8 patients")
            else:
                assert "NDIS-2026-005" in answer.content

class TestClinicianAssistantWithLLM:
    """Test that a configured LLM client reaches the free-form path."""

    def setup_method(self):
        """Set up test fixtures."""
        self.tmpdir = tempfile.TemporaryDirectory()
        self.llm = Mock()
        self.llm.chat.return_value = LLMResponse(content="Applied behaviour analysis is a therapy approach.")
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings(
                fixture_dir=str(FIXTURE_DIR),
                db_path=os.path.join(self.tmpdir.name, "conversations.db"),
                memory_enabled=False
            )
        self.assistant = ClinicianAssistant(settings, llm_client=self.llm, clock=lambda: TODAY)

    def teardown_method(self):
        self.assistant.shutdown()
        self.tmpdir.cleanup()

    def test_general_question_uses_llm(self):
        reply = self.assistant.submit_message("c1", "What is applied behaviour analysis?")

        assert reply.content == "Applied behaviour analysis is a therapy approach."
        self.llm.chat.assert_called_once()

    def test_memory_disabled(self):
        with pytest.raises(RuntimeError):
            self.assistant.list_conversations()
