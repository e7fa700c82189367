"""Memory data models."""

from datetime import datetime
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field


class ConversationMessage(BaseModel):
    """A single message in a conversation; immutable once appended."""
    index: int  # 1-based position in the conversation
    role: str  # "user" or "assistant"
    content: str
    timestamp: datetime = Field(default_factory=datetime.now)
    trace: Optional[List[Dict[str, Any]]] = None  # Tool invocations behind an assistant reply


class ConversationSummary(BaseModel):
    """Condensed block of older messages, covering an inclusive index range."""
    conversation_id: str
    start_index: int
    end_index: int
    message_count: int
    summary: str
    key_topics: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.now)


class Conversation(BaseModel):
    """A complete conversation."""
    conversation_id: str
    title: str = "New conversation"
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)
    messages: List[ConversationMessage] = Field(default_factory=list)
    summaries: List[ConversationSummary] = Field(default_factory=list)


class RecallItem(BaseModel):
    """A summary or message selected as relevant to a backward-referencing query."""
    source: str  # "summary" or "message"
    content: str
    position: int  # message index (summary end index for summaries)
    score: float
    role: Optional[str] = None
    start_index: Optional[int] = None
    key_topics: List[str] = Field(default_factory=list)
