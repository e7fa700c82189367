"""Memory system for conversation persistence."""

from .models import Conversation, ConversationMessage, ConversationSummary, RecallItem
from .sqlite_store import SQLiteMemoryStore
from .summarizer import ConversationSummarizer
from .context_manager import MemoryManager, ConversationNotFoundError

__all__ = [
    "Conversation",
    "ConversationMessage",
    "ConversationSummary",
    "RecallItem",
    "SQLiteMemoryStore",
    "ConversationSummarizer",
    "MemoryManager",
    "ConversationNotFoundError",
]
