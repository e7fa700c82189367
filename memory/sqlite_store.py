"""SQLite-based memory store for conversation persistence."""

import sqlite3
import json
import logging
from pathlib import Path
from datetime import datetime
from typing import Optional, List

from .models import Conversation, ConversationMessage, ConversationSummary

logger = logging.getLogger(__name__)


def _parse_time(value: Optional[str]) -> datetime:
    return datetime.fromisoformat(value) if value else datetime.now()


class SQLiteMemoryStore:
    """SQLite-based persistent memory store."""

    def __init__(self, db_path: str = "data/conversations.db"):
        """
        Initialize SQLite memory store.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get database connection with row factory."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _init_db(self):
        """Initialize database schema."""
        conn = self._get_connection()
        cursor = conn.cursor()

        # Conversations table
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS conversations (
                conversation_id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

        # Messages table (append-only, 1-based index per conversation)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS messages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                conversation_id TEXT NOT NULL,
                message_index INTEGER NOT NULL,
                role TEXT NOT NULL CHECK(role IN ('user', 'assistant')),
                content TEXT NOT NULL,
                timestamp TEXT NOT NULL,
                trace TEXT,
                UNIQUE (conversation_id, message_index),
                FOREIGN KEY (conversation_id) REFERENCES conversations(conversation_id) ON DELETE CASCADE
            )
        """)

        # Summaries table (one row per condensed block)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS summaries (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                conversation_id TEXT NOT NULL,
                start_index INTEGER NOT NULL,
                end_index INTEGER NOT NULL,
                message_count INTEGER NOT NULL,
                summary TEXT NOT NULL,
                key_topics TEXT,
                created_at TEXT NOT NULL,
                UNIQUE (conversation_id, start_index),
                FOREIGN KEY (conversation_id) REFERENCES conversations(conversation_id) ON DELETE CASCADE
            )
        """)

        # Indexes
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_messages_conversation ON messages(conversation_id, message_index)"
        )
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_summaries_conversation ON summaries(conversation_id, start_index)"
        )

        conn.commit()
        conn.close()
        logger.info(f"Database initialized at {self.db_path}")

    def create_conversation(self, conversation_id: str, title: str) -> Conversation:
        """
        Create a new conversation.

        Args:
            conversation_id: Unique conversation ID
            title: Display title

        Returns:
            Created Conversation object
        """
        conn = self._get_connection()
        cursor = conn.cursor()

        now = datetime.now()

        cursor.execute(
            """
            INSERT INTO conversations (conversation_id, title, created_at, updated_at)
            VALUES (?, ?, ?, ?)
            """,
            (conversation_id, title, now.isoformat(), now.isoformat())
        )

        conn.commit()
        conn.close()

        return Conversation(
            conversation_id=conversation_id,
            title=title,
            created_at=now,
            updated_at=now
        )

    def conversation_exists(self, conversation_id: str) -> bool:
        conn = self._get_connection()
        row = conn.execute(
            "SELECT 1 FROM conversations WHERE conversation_id = ?",
            (conversation_id,)
        ).fetchone()
        conn.close()
        return row is not None

    def rename_conversation(self, conversation_id: str, title: str) -> bool:
        """Rename a conversation. Returns False if it does not exist."""
        conn = self._get_connection()
        cursor = conn.cursor()
        cursor.execute(
            "UPDATE conversations SET title = ?, updated_at = ? WHERE conversation_id = ?",
            (title, datetime.now().isoformat(), conversation_id)
        )
        updated = cursor.rowcount > 0
        conn.commit()
        conn.close()
        return updated

    def clear_conversation(self, conversation_id: str) -> bool:
        """Drop all messages and summaries, keeping the conversation itself."""
        conn = self._get_connection()
        cursor = conn.cursor()
        cursor.execute("DELETE FROM summaries WHERE conversation_id = ?", (conversation_id,))
        cursor.execute("DELETE FROM messages WHERE conversation_id = ?", (conversation_id,))
        cursor.execute(
            "UPDATE conversations SET updated_at = ? WHERE conversation_id = ?",
            (datetime.now().isoformat(), conversation_id)
        )
        cleared = cursor.rowcount > 0
        conn.commit()
        conn.close()
        return cleared

    def delete_conversation(self, conversation_id: str) -> bool:
        """Delete a conversation with its messages and summaries."""
        conn = self._get_connection()
        cursor = conn.cursor()
        cursor.execute("DELETE FROM summaries WHERE conversation_id = ?", (conversation_id,))
        cursor.execute("DELETE FROM messages WHERE conversation_id = ?", (conversation_id,))
        cursor.execute("DELETE FROM conversations WHERE conversation_id = ?", (conversation_id,))
        deleted = cursor.rowcount > 0
        conn.commit()
        conn.close()
        return deleted

    def add_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        trace: Optional[list] = None
    ) -> ConversationMessage:
        """
        Append a message to a conversation.

        Args:
            conversation_id: Conversation ID
            role: Role (user, assistant)
            content: Message content
            trace: Optional tool invocation trace

        Returns:
            Created ConversationMessage object
        """
        conn = self._get_connection()
        cursor = conn.cursor()

        # Get next message index
        cursor.execute(
            "SELECT MAX(message_index) FROM messages WHERE conversation_id = ?",
            (conversation_id,)
        )
        result = cursor.fetchone()
        message_index = (result[0] or 0) + 1

        now = datetime.now()
        trace_json = json.dumps(trace, default=str) if trace else None

        cursor.execute(
            """
            INSERT INTO messages (conversation_id, message_index, role, content, timestamp, trace)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (conversation_id, message_index, role, content, now.isoformat(), trace_json)
        )

        # Update conversation timestamp
        cursor.execute(
            "UPDATE conversations SET updated_at = ? WHERE conversation_id = ?",
            (now.isoformat(), conversation_id)
        )

        conn.commit()
        conn.close()

        return ConversationMessage(
            index=message_index,
            role=role,
            content=content,
            timestamp=now,
            trace=trace
        )

    def _row_to_message(self, row: sqlite3.Row) -> ConversationMessage:
        return ConversationMessage(
            index=row["message_index"],
            role=row["role"],
            content=row["content"],
            timestamp=_parse_time(row["timestamp"]),
            trace=json.loads(row["trace"]) if row["trace"] else None
        )

    def get_messages(self, conversation_id: str, after_index: int = 0) -> List[ConversationMessage]:
        """
        Get messages in order.

        Args:
            conversation_id: Conversation ID
            after_index: Only return messages with a greater index

        Returns:
            Chronological list of messages
        """
        conn = self._get_connection()
        rows = conn.execute(
            """
            SELECT message_index, role, content, timestamp, trace
            FROM messages
            WHERE conversation_id = ? AND message_index > ?
            ORDER BY message_index
            """,
            (conversation_id, after_index)
        ).fetchall()
        conn.close()
        return [self._row_to_message(row) for row in rows]

    def get_recent_messages(self, conversation_id: str, limit: int = 10) -> List[ConversationMessage]:
        """
        Get most recent messages from a conversation.

        Args:
            conversation_id: Conversation ID
            limit: Maximum number of messages to return

        Returns:
            List of recent messages in chronological order
        """
        conn = self._get_connection()
        rows = conn.execute(
            """
            SELECT message_index, role, content, timestamp, trace
            FROM messages
            WHERE conversation_id = ?
            ORDER BY message_index DESC
            LIMIT ?
            """,
            (conversation_id, limit)
        ).fetchall()
        conn.close()
        return [self._row_to_message(row) for row in reversed(rows)]

    def get_message_count(self, conversation_id: str) -> int:
        conn = self._get_connection()
        result = conn.execute(
            "SELECT COUNT(*) FROM messages WHERE conversation_id = ?",
            (conversation_id,)
        ).fetchone()
        conn.close()
        return result[0] if result else 0

    def add_summary(self, summary: ConversationSummary) -> bool:
        """
        Store a summary unless it overlaps an existing one.

        Args:
            summary: Summary covering a contiguous message range

        Returns:
            True if stored, False if rejected as overlapping
        """
        conn = self._get_connection()
        cursor = conn.cursor()

        cursor.execute(
            """
            SELECT COUNT(*) FROM summaries
            WHERE conversation_id = ? AND start_index <= ? AND end_index >= ?
            """,
            (summary.conversation_id, summary.end_index, summary.start_index)
        )
        if cursor.fetchone()[0]:
            conn.close()
            logger.warning(
                f"Rejected overlapping summary {summary.start_index}-{summary.end_index} "
                f"for conversation {summary.conversation_id}"
            )
            return False

        try:
            cursor.execute(
                """
                INSERT INTO summaries
                (conversation_id, start_index, end_index, message_count, summary, key_topics, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    summary.conversation_id,
                    summary.start_index,
                    summary.end_index,
                    summary.message_count,
                    summary.summary,
                    json.dumps(summary.key_topics),
                    summary.created_at.isoformat(),
                )
            )
            conn.commit()
        except sqlite3.IntegrityError as e:
            logger.warning(f"Rejected summary for conversation {summary.conversation_id}: {e}")
            return False
        finally:
            conn.close()

        return True

    def get_summaries(self, conversation_id: str) -> List[ConversationSummary]:
        """
        Get conversation summaries in message order.

        Args:
            conversation_id: Conversation ID

        Returns:
            List of ConversationSummary
        """
        conn = self._get_connection()
        rows = conn.execute(
            "SELECT * FROM summaries WHERE conversation_id = ? ORDER BY start_index",
            (conversation_id,)
        ).fetchall()
        conn.close()

        return [
            ConversationSummary(
                conversation_id=row["conversation_id"],
                start_index=row["start_index"],
                end_index=row["end_index"],
                message_count=row["message_count"],
                summary=row["summary"],
                key_topics=json.loads(row["key_topics"]) if row["key_topics"] else [],
                created_at=_parse_time(row["created_at"])
            )
            for row in rows
        ]

    def get_last_summarized_index(self, conversation_id: str) -> int:
        """Highest message index covered by a summary (0 if none)."""
        conn = self._get_connection()
        result = conn.execute(
            "SELECT MAX(end_index) FROM summaries WHERE conversation_id = ?",
            (conversation_id,)
        ).fetchone()
        conn.close()
        return result[0] or 0

    def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        """
        Get a conversation with all messages and summaries.

        Args:
            conversation_id: Conversation ID

        Returns:
            Conversation object or None if not found
        """
        conn = self._get_connection()
        conv_row = conn.execute(
            "SELECT * FROM conversations WHERE conversation_id = ?",
            (conversation_id,)
        ).fetchone()
        conn.close()

        if not conv_row:
            return None

        return Conversation(
            conversation_id=conv_row["conversation_id"],
            title=conv_row["title"],
            created_at=_parse_time(conv_row["created_at"]),
            updated_at=_parse_time(conv_row["updated_at"]),
            messages=self.get_messages(conversation_id),
            summaries=self.get_summaries(conversation_id)
        )

    def list_conversations(self, limit: int = 50) -> List[Conversation]:
        """
        List conversations, most recently updated first.

        Args:
            limit: Maximum number of conversations

        Returns:
            List of Conversation objects (without messages)
        """
        conn = self._get_connection()
        rows = conn.execute(
            """
            SELECT * FROM conversations
            ORDER BY updated_at DESC
            LIMIT ?
            """,
            (limit,)
        ).fetchall()
        conn.close()

        return [
            Conversation(
                conversation_id=row["conversation_id"],
                title=row["title"],
                created_at=_parse_time(row["created_at"]),
                updated_at=_parse_time(row["updated_at"])
            )
            for row in rows
        ]
