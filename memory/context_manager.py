"""Tiered conversation memory: verbatim window plus block summaries."""

import logging
import threading
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Dict, List, Optional, Set

from llm.base_client import Message
from .models import Conversation, ConversationMessage, ConversationSummary, RecallItem
from .sqlite_store import SQLiteMemoryStore
from .summarizer import ConversationSummarizer, keywords

logger = logging.getLogger(__name__)


# Words that ask about the conversation rather than name a topic
RECALL_PHRASE_WORDS = {
    "remind", "said", "told", "earlier", "previously", "before", "discuss", "discussed",
    "talked", "covered", "mentioned", "asked", "again", "back", "last", "time",
}


class ConversationNotFoundError(KeyError):
    """Raised for lifecycle operations on an unknown conversation."""


class MemoryManager:
    """
    Manages per-conversation memory for the assistant.

    A turn is one user message plus the assistant reply. The last
    ``window_turns`` turns are kept verbatim; once ``summary_threshold``
    older turns are unsummarized, the oldest block of exactly that many
    turns is condensed into one summary. Summaries never overlap.
    """

    def __init__(
        self,
        store: SQLiteMemoryStore,
        summarizer: Optional[ConversationSummarizer] = None,
        window_turns: int = 4,
        summary_threshold: int = 6,
        background: bool = False
    ):
        """
        Initialize memory manager.

        Args:
            store: SQLite memory store
            summarizer: Block summarizer (heuristic-only by default)
            window_turns: Turns kept verbatim (K)
            summary_threshold: Turns condensed per summary (T)
            background: Run summarization on a worker thread
        """
        if window_turns < 1 or summary_threshold < 1:
            raise ValueError("window_turns and summary_threshold must be positive")

        self.store = store
        self.summarizer = summarizer or ConversationSummarizer()
        self.window_turns = window_turns
        self.summary_threshold = summary_threshold

        self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="summarizer") if background else None
        self._jobs: Dict[str, Future] = {}
        self._running: Set[str] = set()
        self._rerun: Set[str] = set()
        self._jobs_lock = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    # Lifecycle

    def create_conversation(
        self,
        title: Optional[str] = None,
        conversation_id: Optional[str] = None
    ) -> Conversation:
        conversation_id = conversation_id or str(uuid.uuid4())
        conversation = self.store.create_conversation(conversation_id, title or "New conversation")
        logger.info(f"Created conversation {conversation_id}")
        return conversation

    def ensure_conversation(self, conversation_id: str) -> None:
        if not self.store.conversation_exists(conversation_id):
            self.create_conversation(conversation_id=conversation_id)

    def get_conversation(self, conversation_id: str) -> Conversation:
        self.wait_for_summaries(conversation_id)
        conversation = self.store.get_conversation(conversation_id)
        if conversation is None:
            raise ConversationNotFoundError(conversation_id)
        return conversation

    def rename_conversation(self, conversation_id: str, title: str) -> None:
        if not self.store.rename_conversation(conversation_id, title):
            raise ConversationNotFoundError(conversation_id)

    def clear_conversation(self, conversation_id: str) -> None:
        self.wait_for_summaries(conversation_id)
        if not self.store.clear_conversation(conversation_id):
            raise ConversationNotFoundError(conversation_id)
        logger.info(f"Cleared conversation {conversation_id}")

    def delete_conversation(self, conversation_id: str) -> None:
        self.wait_for_summaries(conversation_id)
        if not self.store.delete_conversation(conversation_id):
            raise ConversationNotFoundError(conversation_id)
        # The conversation lock stays registered: callers may hold or wait on it
        with self._jobs_lock:
            self._jobs.pop(conversation_id, None)
        logger.info(f"Deleted conversation {conversation_id}")

    def list_conversations(self, limit: int = 50) -> List[Conversation]:
        return self.store.list_conversations(limit=limit)

    def history(self, conversation_id: str) -> List[ConversationMessage]:
        """Full message history in order."""
        return self.get_conversation(conversation_id).messages

    def conversation_lock(self, conversation_id: str) -> threading.Lock:
        """Lock serializing query processing within one conversation."""
        with self._locks_guard:
            if conversation_id not in self._locks:
                self._locks[conversation_id] = threading.Lock()
            return self._locks[conversation_id]

    # Write path

    def record_turn(
        self,
        conversation_id: str,
        user_text: str,
        assistant_text: str,
        trace: Optional[list] = None
    ) -> None:
        """
        Append a completed turn and trigger summarization if due.

        Args:
            conversation_id: Conversation ID
            user_text: Clinician message
            assistant_text: Assistant reply
            trace: Tool invocations behind the reply
        """
        self.ensure_conversation(conversation_id)
        self.store.add_message(conversation_id, "user", user_text)
        self.store.add_message(conversation_id, "assistant", assistant_text, trace=trace)

        if self._executor is None:
            self.maybe_summarize(conversation_id)
            return

        with self._jobs_lock:
            if conversation_id in self._running:
                # The running job checks again before it exits
                self._rerun.add(conversation_id)
                return
            self._running.add(conversation_id)
            self._jobs[conversation_id] = self._executor.submit(self._summarize_in_background, conversation_id)

    def _summarize_in_background(self, conversation_id: str) -> None:
        try:
            while True:
                self.maybe_summarize(conversation_id)
                with self._jobs_lock:
                    if conversation_id not in self._rerun:
                        self._running.discard(conversation_id)
                        return
                    self._rerun.discard(conversation_id)
        except Exception:
            with self._jobs_lock:
                self._running.discard(conversation_id)
                self._rerun.discard(conversation_id)
            raise

    def _group_turns(self, messages: List[ConversationMessage]) -> List[List[ConversationMessage]]:
        """Group messages into turns, each starting at a user message."""
        turns: List[List[ConversationMessage]] = []
        for message in messages:
            if message.role == "user" or not turns:
                turns.append([message])
            else:
                turns[-1].append(message)
        return turns

    def maybe_summarize(self, conversation_id: str) -> List[ConversationSummary]:
        """
        Condense every due block of turns older than the window.

        Re-running on an unchanged conversation creates nothing.

        Args:
            conversation_id: Conversation ID

        Returns:
            Summaries created by this call
        """
        created = []
        while True:
            summarized_upto = self.store.get_last_summarized_index(conversation_id)
            turns = self._group_turns(self.store.get_messages(conversation_id))
            older = turns[:-self.window_turns] if len(turns) > self.window_turns else []
            pending = [turn for turn in older if turn[0].index > summarized_upto]

            if len(pending) < self.summary_threshold:
                break

            block = [message for turn in pending[:self.summary_threshold] for message in turn]
            summary = self.summarizer.summarize(conversation_id, block)
            if not self.store.add_summary(summary):
                break

            created.append(summary)
            logger.info(
                f"Summarized messages {summary.start_index}-{summary.end_index} "
                f"of conversation {conversation_id}"
            )

        return created

    def wait_for_summaries(self, conversation_id: str) -> None:
        """Block until any background summarization for the conversation finishes."""
        with self._jobs_lock:
            job = self._jobs.get(conversation_id)
        if job is None:
            return
        try:
            job.result()
        except Exception as e:
            logger.error(f"Background summarization failed for {conversation_id}: {e}")

        with self._jobs_lock:
            if self._jobs.get(conversation_id) is job and conversation_id not in self._running:
                del self._jobs[conversation_id]

    # Read path

    def get_window(self, conversation_id: str) -> List[ConversationMessage]:
        """Messages of the last ``window_turns`` turns."""
        turns = self._group_turns(self.store.get_messages(conversation_id))
        return [message for turn in turns[-self.window_turns:] for message in turn]

    def get_context(self, conversation_id: str) -> List[Message]:
        """
        Get messages for LLM context window.

        Summaries come first as system messages, followed by every message
        not yet covered by a summary (the window plus at most a partial
        block before it).

        Args:
            conversation_id: Conversation ID

        Returns:
            List of Message objects for LLM context
        """
        self.wait_for_summaries(conversation_id)
        messages = []

        for summary in self.store.get_summaries(conversation_id):
            topics = f"\nKey topics discussed: {', '.join(summary.key_topics)}" if summary.key_topics else ""
            messages.append(Message(
                role="system",
                content=(
                    f"Summary of messages {summary.start_index}-{summary.end_index}: "
                    f"{summary.summary}{topics}"
                )
            ))

        summarized_upto = self.store.get_last_summarized_index(conversation_id)
        for message in self.store.get_messages(conversation_id, after_index=summarized_upto):
            messages.append(Message(role=message.role, content=message.content))

        return messages

    def recall(self, conversation_id: str, query: str, limit: int = 5) -> List[RecallItem]:
        """
        Select earlier summaries and messages relevant to a query.

        Items are ranked by keyword overlap with the query (summary topics
        count double); ties go to the more recent item. A query with no
        topic words, such as "what did you say earlier?", selects the most
        recent unsummarized messages. The selected items are returned in
        chronological order.

        Args:
            conversation_id: Conversation ID
            query: Backward-referencing query
            limit: Maximum number of items

        Returns:
            List of RecallItem
        """
        self.wait_for_summaries(conversation_id)
        query_words = keywords(query) - RECALL_PHRASE_WORDS
        summarized_upto = self.store.get_last_summarized_index(conversation_id)

        if not query_words:
            recent = self.store.get_messages(conversation_id, after_index=summarized_upto)[-limit:]
            return [
                RecallItem(source="message", content=m.content, position=m.index, score=0, role=m.role)
                for m in recent
            ]

        candidates: List[RecallItem] = []
        for summary in self.store.get_summaries(conversation_id):
            topic_words = set()
            for topic in summary.key_topics:
                topic_words.update(keywords(topic))
            score = len(query_words & keywords(summary.summary)) + 2 * len(query_words & topic_words)
            if score:
                candidates.append(RecallItem(
                    source="summary",
                    content=summary.summary,
                    position=summary.end_index,
                    score=score,
                    start_index=summary.start_index,
                    key_topics=summary.key_topics
                ))

        for message in self.store.get_messages(conversation_id, after_index=summarized_upto):
            score = len(query_words & keywords(message.content))
            if score:
                candidates.append(RecallItem(
                    source="message",
                    content=message.content,
                    position=message.index,
                    score=score,
                    role=message.role
                ))

        selected = sorted(candidates, key=lambda item: (-item.score, -item.position))[:limit]
        return sorted(selected, key=lambda item: item.position)

    def shutdown(self) -> None:
        """Wait for background jobs and stop the worker pool."""
        if self._executor is not None:
            self._executor.shutdown(wait=True)
