"""LLM-backed phrasing for questions answered without clinical tools."""

import logging
from typing import List, Optional

from llm.base_client import BaseLLMClient, Message

logger = logging.getLogger(__name__)


class LLMResponder:
    """
    Phrases free-form answers with a hosted language model.

    Used for greetings, general clinical questions and anything the
    extractor could not classify. Failures return None so callers can fall
    back to a canned reply.
    """

    SYSTEM_PROMPT = """You are a clinical practice assistant for allied health clinicians.
You help clinicians with questions about their patients' therapy goals, funding
budgets, sessions and therapy strategies.

## Guidelines
- Be concise and professional
- For general clinical questions, give an accurate, practical overview
- Never invent patient data; if the clinician asks about a specific patient,
  suggest they name the patient or give the patient identifier
- Use the earlier conversation for context when it is relevant"""

    def __init__(self, llm_client: BaseLLMClient, max_context_messages: int = 12):
        """
        Initialize LLM responder.

        Args:
            llm_client: LLM client for generation
            max_context_messages: Most recent context messages sent with the question
        """
        self.llm_client = llm_client
        self.max_context_messages = max_context_messages

    def answer(self, question: str, context_messages: Optional[List[Message]] = None) -> Optional[str]:
        """
        Answer a question with the language model.

        Args:
            question: Clinician question
            context_messages: Conversation context (summaries and recent turns)

        Returns:
            Answer text, or None when the model call fails
        """
        messages = [Message(role="system", content=self.SYSTEM_PROMPT)]
        for msg in (context_messages or [])[-self.max_context_messages:]:
            if msg.role in ("user", "assistant", "system"):
                messages.append(Message(role=msg.role, content=msg.content))
        messages.append(Message(role="user", content=question))

        try:
            response = self.llm_client.chat(
                messages=messages,
                temperature=0.5,
                max_tokens=800
            )
        except Exception as e:
            logger.error(f"LLM responder error: {e}")
            return None

        content = (response.content or "").strip()
        return content or None
