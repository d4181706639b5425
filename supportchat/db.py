"""
Database module for the support chat relay.
Manages the SQLite store of conversations and their messages.
"""

import sqlite3
import logging
from pathlib import Path
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Optional, Generator

from supportchat.config import config
from supportchat.errors import MessageLimitError
from supportchat.ids import generate_message_id
from supportchat.models import DEFAULT_TITLE, Conversation, Message

logger = logging.getLogger(__name__)

TITLE_FROM_MESSAGE_CHARS = 50


def derive_title(content: str) -> str:
    """Build a conversation title from the first user message."""
    title = content[:TITLE_FROM_MESSAGE_CHARS].strip()
    if len(title) < len(content):
        title += "..."
    return title


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _advance(previous: str) -> datetime:
    """Return a timestamp strictly later than ``previous``."""
    now = _now()
    last = datetime.fromisoformat(previous)
    if now <= last:
        return last + timedelta(microseconds=1)
    return now


class Database:
    """SQLite store for conversations and messages."""

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = db_path or config.DATABASE_PATH
        self._connection: Optional[sqlite3.Connection] = None

    def connect(self) -> sqlite3.Connection:
        """Get or create database connection."""
        if self._connection is None:
            self._connection = sqlite3.connect(
                str(self.db_path),
                check_same_thread=False
            )
            self._connection.row_factory = sqlite3.Row
            # Enable foreign keys
            self._connection.execute("PRAGMA foreign_keys = ON")
        return self._connection

    def close(self) -> None:
        """Close database connection."""
        if self._connection:
            self._connection.close()
            self._connection = None

    @contextmanager
    def cursor(self) -> Generator[sqlite3.Cursor, None, None]:
        """Context manager for database cursor with auto-commit."""
        conn = self.connect()
        cursor = conn.cursor()
        try:
            yield cursor
            conn.commit()
        except Exception:
            conn.rollback()
            raise

    def initialize(self) -> None:
        """Create database schema if not exists."""
        logger.info(f"Initializing database at {self.db_path}")

        with self.cursor() as cur:
            # Conversations - custom_id is the externally visible identifier
            cur.execute("""
                CREATE TABLE IF NOT EXISTS conversations (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    custom_id TEXT UNIQUE NOT NULL,
                    owner_id TEXT NOT NULL,
                    title TEXT NOT NULL,
                    model TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            # Messages - append-only, ordered by rowid
            cur.execute("""
                CREATE TABLE IF NOT EXISTS messages (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    message_id TEXT NOT NULL,
                    conversation_id INTEGER NOT NULL,
                    role TEXT NOT NULL CHECK (role IN ('user', 'assistant', 'system')),
                    content TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY (conversation_id) REFERENCES conversations(id) ON DELETE CASCADE
                )
            """)

            cur.execute(
                "CREATE INDEX IF NOT EXISTS idx_conversations_owner "
                "ON conversations(owner_id, updated_at)"
            )
            cur.execute(
                "CREATE INDEX IF NOT EXISTS idx_messages_conversation "
                "ON messages(conversation_id, id)"
            )

        logger.info("Database schema initialized")

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self.cursor() as cur:
                cur.execute("SELECT 1")
            return True
        except sqlite3.Error as e:
            logger.error(f"Database ping failed: {e}")
            return False

    # =========================================================================
    # Conversation Operations
    # =========================================================================

    def create_conversation(
        self,
        custom_id: str,
        owner_id: str,
        model: str,
        title: str = DEFAULT_TITLE,
    ) -> Conversation:
        """
        Insert a new, empty conversation.

        Raises:
            sqlite3.IntegrityError: If ``custom_id`` is already taken.
        """
        now = _now().isoformat()
        with self.cursor() as cur:
            cur.execute(
                """
                INSERT INTO conversations (custom_id, owner_id, title, model, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (custom_id, owner_id, title, model, now, now)
            )
        return self.get_conversation(custom_id, owner_id)

    def get_conversation(self, custom_id: str, owner_id: str) -> Optional[Conversation]:
        """Return the owner's conversation with all messages, or None."""
        with self.cursor() as cur:
            cur.execute(
                "SELECT * FROM conversations WHERE custom_id = ? AND owner_id = ?",
                (custom_id, owner_id)
            )
            row = cur.fetchone()
            if row is None:
                return None

            cur.execute(
                """
                SELECT message_id, role, content, created_at FROM messages
                WHERE conversation_id = ?
                ORDER BY id
                """,
                (row["id"],)
            )
            messages = [
                Message(
                    id=m["message_id"],
                    role=m["role"],
                    content=m["content"],
                    created_at=datetime.fromisoformat(m["created_at"]),
                )
                for m in cur.fetchall()
            ]

        return Conversation(
            id=row["custom_id"],
            owner_id=row["owner_id"],
            title=row["title"],
            model=row["model"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
            messages=messages,
        )

    def add_message(
        self,
        custom_id: str,
        owner_id: str,
        role: str,
        content: str,
        max_messages: Optional[int] = None,
    ) -> Optional[Message]:
        """
        Append a message to the owner's conversation.

        The first user message also replaces the default title.

        Returns:
            The stored message, or None if the conversation does not exist.

        Raises:
            MessageLimitError: If the conversation already holds
                ``max_messages`` messages.
        """
        limit = config.MAX_MESSAGES if max_messages is None else max_messages

        with self.cursor() as cur:
            cur.execute(
                "SELECT id, title, updated_at FROM conversations WHERE custom_id = ? AND owner_id = ?",
                (custom_id, owner_id)
            )
            row = cur.fetchone()
            if row is None:
                return None

            cur.execute(
                """
                SELECT COUNT(*) AS total, COALESCE(SUM(role = 'user'), 0) AS user_count
                FROM messages WHERE conversation_id = ?
                """,
                (row["id"],)
            )
            counts = cur.fetchone()
            if counts["total"] >= limit:
                raise MessageLimitError(
                    f"Conversation {custom_id} cannot have more than {limit} messages",
                    conversation_id=custom_id,
                )

            created_at = _advance(row["updated_at"])
            message = Message(
                id=generate_message_id(),
                role=role,
                content=content,
                created_at=created_at,
            )
            cur.execute(
                """
                INSERT INTO messages (message_id, conversation_id, role, content, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (message.id, row["id"], role, content, created_at.isoformat())
            )

            title = row["title"]
            if role == "user" and counts["user_count"] == 0 and title == DEFAULT_TITLE:
                title = derive_title(content)

            cur.execute(
                "UPDATE conversations SET title = ?, updated_at = ? WHERE id = ?",
                (title, created_at.isoformat(), row["id"])
            )

        return message

    def rename_conversation(self, custom_id: str, owner_id: str, title: str) -> bool:
        """Set a new title. Returns False if the conversation does not exist."""
        with self.cursor() as cur:
            cur.execute(
                "SELECT updated_at FROM conversations WHERE custom_id = ? AND owner_id = ?",
                (custom_id, owner_id)
            )
            row = cur.fetchone()
            if row is None:
                return False
            cur.execute(
                "UPDATE conversations SET title = ?, updated_at = ? WHERE custom_id = ? AND owner_id = ?",
                (title, _advance(row["updated_at"]).isoformat(), custom_id, owner_id)
            )
        return True

    def clear_messages(self, custom_id: str, owner_id: str) -> bool:
        """Discard every message. Returns False if the conversation does not exist."""
        with self.cursor() as cur:
            cur.execute(
                "SELECT id, updated_at FROM conversations WHERE custom_id = ? AND owner_id = ?",
                (custom_id, owner_id)
            )
            row = cur.fetchone()
            if row is None:
                return False
            cur.execute("DELETE FROM messages WHERE conversation_id = ?", (row["id"],))
            cur.execute(
                "UPDATE conversations SET updated_at = ? WHERE id = ?",
                (_advance(row["updated_at"]).isoformat(), row["id"])
            )
        return True

    def delete_conversation(self, custom_id: str, owner_id: str) -> bool:
        """Delete a conversation and its messages. Returns False if absent."""
        with self.cursor() as cur:
            cur.execute(
                "DELETE FROM conversations WHERE custom_id = ? AND owner_id = ?",
                (custom_id, owner_id)
            )
            return cur.rowcount > 0
