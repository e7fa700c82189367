"""Condense blocks of conversation into summaries."""

import logging
import re
from typing import List, Optional, Set, Tuple

from llm.base_client import BaseLLMClient, Message
from .models import ConversationMessage, ConversationSummary

logger = logging.getLogger(__name__)


# Topic tag -> keywords that signal it
TOPIC_KEYWORDS = {
    "goals": ["goal", "goals", "subgoal", "subgoals", "milestone", "milestones"],
    "progress": ["progress", "improve", "improved", "improvement", "achieved"],
    "budget": ["budget", "budgets", "funds", "funding", "spent", "remaining", "ndis", "plan", "plans"],
    "sessions": ["session", "sessions", "appointment", "appointments", "attendance", "attended"],
    "strategies": ["strategy", "strategies", "technique", "techniques", "intervention", "interventions"],
    "patients": ["patient", "patients", "client", "clients"],
}

STOPWORDS = {
    "the", "and", "for", "are", "was", "were", "what", "which", "who", "how", "with",
    "that", "this", "have", "has", "had", "does", "did", "can", "you", "your", "our",
    "about", "from", "there", "their", "they", "them", "any", "all", "been", "will",
    "would", "could", "should", "into", "than", "then", "when", "where", "why", "its",
    "his", "her", "she", "him", "tell", "show", "give", "list", "please", "much", "many",
}

PATIENT_TOKEN = re.compile(r"\b[A-Z][a-z]+(?:\s[A-Z][a-z]+)?-\d+\b")
WORD = re.compile(r"[a-z0-9]+")


def _stem(word: str) -> str:
    if len(word) > 4 and word.endswith("ies"):
        return word[:-3] + "y"
    if len(word) > 3 and word.endswith("s") and not word.endswith("ss"):
        return word[:-1]
    return word


def keywords(text: str) -> Set[str]:
    """Normalized content words of a text."""
    return {
        _stem(word) for word in WORD.findall(text.lower())
        if len(word) > 2 and word not in STOPWORDS
    }


def extract_topics(messages: List[ConversationMessage]) -> List[str]:
    """
    Topic tags for a block of messages.

    Keyword tags come first in a fixed order, followed by patient
    references such as "Radwan-563004" in order of first mention.
    """
    words = set()
    for message in messages:
        words.update(WORD.findall(message.content.lower()))

    topics = [tag for tag, signals in TOPIC_KEYWORDS.items() if words.intersection(signals)]

    for message in messages:
        if message.role != "user":
            continue
        for match in PATIENT_TOKEN.findall(message.content):
            if match not in topics:
                topics.append(match)

    return topics


def _first_sentence(text: str, max_chars: int) -> str:
    sentence = re.split(r"(?<=[.?!])\s|\n", text.strip(), maxsplit=1)[0]
    if len(sentence) > max_chars:
        sentence = sentence[:max_chars - 3].rstrip() + "..."
    return sentence


def heuristic_paraphrase(messages: List[ConversationMessage], max_chars: int = 800) -> str:
    """Compressed paraphrase: first sentence of each question and answer."""
    parts = []
    for message in messages:
        if message.role == "user":
            parts.append(f"Asked: {_first_sentence(message.content, 120)}")
        else:
            parts.append(f"Answered: {_first_sentence(message.content, 160)}")

    text = " ".join(parts)
    if len(text) > max_chars:
        text = text[:max_chars - 3].rstrip() + "..."
    return text


class ConversationSummarizer:
    """Builds one summary per block of messages."""

    def __init__(self, llm_client: Optional[BaseLLMClient] = None):
        """
        Initialize summarizer.

        Args:
            llm_client: Optional LLM client for the paraphrase; the heuristic
                paraphrase is used without one or when the call fails
        """
        self.llm_client = llm_client

    def summarize(self, conversation_id: str, messages: List[ConversationMessage]) -> ConversationSummary:
        """
        Summarize a contiguous block of messages.

        Args:
            conversation_id: Conversation ID
            messages: Block of messages in order

        Returns:
            ConversationSummary covering the block's index range
        """
        if not messages:
            raise ValueError("Cannot summarize an empty block")

        topics = extract_topics(messages)
        content = None

        if self.llm_client:
            content, llm_topics = self._generate_summary(messages)
            for topic in llm_topics:
                if topic and topic not in topics:
                    topics.append(topic)

        if not content:
            content = heuristic_paraphrase(messages)

        return ConversationSummary(
            conversation_id=conversation_id,
            start_index=messages[0].index,
            end_index=messages[-1].index,
            message_count=len(messages),
            summary=content,
            key_topics=topics
        )

    def _generate_summary(self, messages: List[ConversationMessage]) -> Tuple[Optional[str], List[str]]:
        """
        Use LLM to generate a block summary.

        Returns:
            (summary, key topics); summary is None when the call fails
        """
        turns_text = "\n".join(f"{m.role.upper()}: {m.content}" for m in messages)
        prompt = [
            Message(
                role="system",
                content="""You are a conversation summarizer for a clinical practice assistant.
Create a concise summary of the conversation below. Keep patient names,
identifiers, numbers and dates.

Output format:
SUMMARY: [2-3 sentence summary of what was asked and answered]
KEY_TOPICS: [comma-separated list of main topics]"""
            ),
            Message(role="user", content=f"Summarize this conversation:\n\n{turns_text}")
        ]

        try:
            response = self.llm_client.chat(messages=prompt, temperature=0.3, max_tokens=500)
        except Exception as e:
            logger.warning(f"LLM summary failed, using heuristic paraphrase: {e}")
            return None, []

        summary = ""
        key_topics: List[str] = []
        for line in (response.content or "").split("\n"):
            if line.startswith("SUMMARY:"):
                summary = line[8:].strip()
            elif line.startswith("KEY_TOPICS:"):
                key_topics = [t.strip().lower() for t in line[11:].split(",") if t.strip()]

        return (summary or None), key_topics
