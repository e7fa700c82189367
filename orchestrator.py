"""Main orchestrator for the Clinician Assistant."""

import logging
from datetime import date
from typing import Any, Callable, Dict, List, Optional

from config.settings import Settings
from schemas.context import PatientReference, QueryParameters
from schemas.records import RecordQuery
from schemas.responses import AgentResult, AssistantReply

# Data providers
from retrieval.clinical_provider import ClinicalDataProvider
from retrieval.api_provider import ClinicalAPIProvider, RetryPolicy
from retrieval.memory_provider import InMemoryClinicalProvider

# LLM components
from llm.factory import create_llm_client, LLMProvider
from llm.base_client import BaseLLMClient

# Memory components
from memory.models import Conversation, ConversationMessage
from memory.sqlite_store import SQLiteMemoryStore
from memory.summarizer import ConversationSummarizer
from memory.context_manager import MemoryManager

# Agent loop components
from react.registry import ToolRegistry, create_default_registry
from react.tools import ToolInput
from react.loop import AgentLoop

# Agents
from agents.extractor import IntentExtractor
from agents.composer import ResponseComposer
from agents.llm_composer import LLMResponder

logger = logging.getLogger(__name__)


class ClinicianAssistant:
    """Routes clinician questions through extraction, the agent loop and memory."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        provider: Optional[ClinicalDataProvider] = None,
        llm_client: Optional[BaseLLMClient] = None,
        clock: Optional[Callable[[], date]] = None
    ):
        """
        Initialize assistant.

        Args:
            settings: Application settings
            provider: Clinical data collaborator (built from settings if omitted)
            llm_client: LLM client (built from settings if omitted)
            clock: Returns today's date (default: date.today)
        """
        self.settings = settings or Settings()
        self.clock = clock or date.today

        self.provider = provider or self._init_provider()

        self.llm_client: Optional[BaseLLMClient] = llm_client
        if self.llm_client is None:
            self._init_llm_client()

        self.registry: ToolRegistry = create_default_registry(self.provider, clock=self.clock)
        self.extractor = IntentExtractor(
            combined_name_mode=self.settings.combined_name_mode,
            today=self.clock() if clock else None
        )
        self.composer = ResponseComposer(
            responder=LLMResponder(self.llm_client) if self.llm_client else None
        )
        self.loop = AgentLoop(
            registry=self.registry,
            composer=self.composer,
            max_iterations=self.settings.max_iterations,
            retry_budget=self.settings.retry_budget
        )

        self.memory: Optional[MemoryManager] = None
        if self.settings.memory_enabled:
            self._init_memory()

    def _init_provider(self) -> ClinicalDataProvider:
        """Use the clinical API when configured, else the bundled sample practice."""
        if self.settings.clinical_api_url:
            logger.info(f"Using clinical API: {self.settings.clinical_api_url}")
            return ClinicalAPIProvider(
                base_url=self.settings.clinical_api_url,
                timeout=self.settings.collaborator_timeout,
                auth_token=self.settings.clinical_api_token,
                retry_policy=RetryPolicy(
                    max_attempts=self.settings.collaborator_max_attempts,
                    backoff=self.settings.collaborator_backoff
                )
            )

        logger.info(f"Using fixture data: {self.settings.fixture_dir}")
        return InMemoryClinicalProvider(self.settings.fixture_dir)

    def _init_llm_client(self):
        """Initialize LLM client based on settings."""
        api_key = self.settings.get_llm_api_key()

        if not api_key:
            logger.warning(
                f"No API key for {self.settings.llm_provider}. "
                "General questions will get canned replies."
            )
            return

        try:
            self.llm_client = create_llm_client(
                provider=LLMProvider(self.settings.llm_provider),
                api_key=api_key,
                model=self.settings.llm_model
            )
            logger.info(
                f"LLM client initialized: {self.settings.llm_provider} "
                f"({self.llm_client.get_model_name()})"
            )
        except Exception as e:
            logger.error(f"Failed to initialize LLM client: {e}")
            self.llm_client = None

    def _init_memory(self):
        """Initialize memory system."""
        store = SQLiteMemoryStore(db_path=self.settings.db_path)
        self.memory = MemoryManager(
            store=store,
            summarizer=ConversationSummarizer(self.llm_client),
            window_turns=self.settings.window_turns,
            summary_threshold=self.settings.summary_threshold,
            background=self.settings.background_summarization
        )
        logger.info(f"Memory initialized: {self.settings.db_path}")

    def _require_memory(self) -> MemoryManager:
        if self.memory is None:
            raise RuntimeError("Conversation memory is disabled")
        return self.memory

    # Queries

    def ask(self, text: str) -> AgentResult:
        """Answer a one-off question without conversation memory."""
        entities = self.extractor.extract(text)
        logger.info(f"Intent: {entities.intent.value}")
        return self.loop.run(text, entities)

    def submit_message(self, conversation_id: str, text: str) -> AssistantReply:
        """
        Answer a clinician message within a conversation.

        Messages to the same conversation are processed one at a time;
        the turn and its tool trace are recorded before returning.

        Args:
            conversation_id: Conversation ID (created if unknown)
            text: Clinician message

        Returns:
            AssistantReply with the answer
        """
        if self.memory is None:
            result = self.ask(text)
            return AssistantReply(content=result.answer, conversation_id=conversation_id)

        memory = self.memory
        with memory.conversation_lock(conversation_id):
            memory.ensure_conversation(conversation_id)
            context = memory.get_context(conversation_id)

            entities = self.extractor.extract(text, recent_context=memory.get_window(conversation_id))
            logger.info(
                f"Intent: {entities.intent.value}"
                + (f", patient: {entities.patient_reference.value}" if entities.patient_reference else "")
            )

            recall_items = None
            if entities.references_history:
                recall_items = memory.recall(conversation_id, text, limit=self.settings.recall_limit)

            result = self.loop.run(
                text,
                entities,
                context_messages=context,
                recall_items=recall_items
            )

            trace = [inv.model_dump(mode="json") for inv in result.invocations]
            memory.record_turn(conversation_id, text, result.answer, trace=trace)

        logger.info(
            f"Answered in {result.iterations_used} iteration(s) "
            f"({result.outcome.value}/{result.finish_reason.value})"
        )
        return AssistantReply(content=result.answer, conversation_id=conversation_id)

    # Conversation lifecycle

    def create_conversation(self, title: Optional[str] = None) -> Conversation:
        return self._require_memory().create_conversation(title=title)

    def rename_conversation(self, conversation_id: str, title: str) -> None:
        self._require_memory().rename_conversation(conversation_id, title)

    def clear_conversation(self, conversation_id: str) -> None:
        memory = self._require_memory()
        with memory.conversation_lock(conversation_id):
            memory.clear_conversation(conversation_id)

    def delete_conversation(self, conversation_id: str) -> None:
        memory = self._require_memory()
        with memory.conversation_lock(conversation_id):
            memory.delete_conversation(conversation_id)

    def list_conversations(self, limit: int = 50) -> List[Conversation]:
        return self._require_memory().list_conversations(limit=limit)

    def get_history(self, conversation_id: str) -> List[ConversationMessage]:
        return self._require_memory().history(conversation_id)

    # Debug

    def run_tool(self, tool_name: str, tool_input: Optional[Dict[str, Any]] = None) -> str:
        """
        Execute one tool directly and render its result.

        Args:
            tool_name: Registered tool name
            tool_input: Dict with optional "patient_reference" (a string
                such as "Radwan-563004" or a reference dict), "parameters"
                and "record_query"

        Returns:
            Rendered tool result

        Raises:
            KeyError: Unknown tool name
        """
        tool = self.registry.get(tool_name)
        tool_input = tool_input or {}

        reference = tool_input.get("patient_reference")
        if isinstance(reference, str):
            reference = self._parse_reference(reference)
        elif isinstance(reference, dict):
            reference = PatientReference(**reference)

        record_query = tool_input.get("record_query")
        parsed = ToolInput(
            patient_reference=reference,
            parameters=QueryParameters(**(tool_input.get("parameters") or {})),
            record_query=RecordQuery(**record_query) if record_query else None
        )

        result = tool.execute(parsed)
        return self.composer.render_result(result)

    def _parse_reference(self, text: str) -> PatientReference:
        text = text.strip()
        if text.isdigit():
            return PatientReference.by_identifier(text)
        return self.extractor.extract_patient_reference(text) or PatientReference.by_name(text)

    def shutdown(self) -> None:
        if self.memory is not None:
            self.memory.shutdown()
