"""
Conversation service: owner-scoped access to conversations and messages.

Wraps :class:`supportchat.db.Database`, validating identifiers before any
store access and translating storage failures into chat errors.
"""

import logging
import sqlite3
from typing import Optional

from supportchat.config import config
from supportchat.db import Database
from supportchat.errors import InvalidIdError, NotFoundError, PersistenceError, ValidationError
from supportchat.ids import generate_conversation_id, is_valid_conversation_id
from supportchat.models import ROLES, Conversation, Message

logger = logging.getLogger(__name__)


def ensure_valid_id(conversation_id: str) -> None:
    """Raise InvalidIdError unless ``conversation_id`` is well-formed."""
    if not is_valid_conversation_id(conversation_id):
        raise InvalidIdError(f"Invalid conversation ID format: {conversation_id}")


def validate_content(content: str) -> None:
    """Raise ValidationError for blank or oversized message content."""
    if not content or not content.strip():
        raise ValidationError("Message content cannot be empty")
    if len(content) > config.MAX_MESSAGE_LENGTH:
        raise ValidationError(
            f"Message content cannot exceed {config.MAX_MESSAGE_LENGTH} characters"
        )


def _not_found(conversation_id: str) -> NotFoundError:
    return NotFoundError(
        f"Conversation not found or access denied. ID: {conversation_id}",
        "Conversation not found",
        conversation_id=conversation_id,
    )


class ConversationService:
    """Manages conversations stored in SQLite."""

    def __init__(self, database: Database, default_model: Optional[str] = None):
        self.db = database
        self.default_model = default_model or config.DEFAULT_MODEL

    async def create(
        self,
        owner_id: str,
        model: Optional[str] = None,
        conversation_id: Optional[str] = None,
    ) -> Conversation:
        """
        Create a new, empty conversation.

        Args:
            owner_id: The owning user.
            model: Model for the conversation; defaults to the configured one.
            conversation_id: Use this exact id instead of generating one.

        Raises:
            InvalidIdError: If ``conversation_id`` is malformed.
            NotFoundError: If ``conversation_id`` belongs to another owner.
        """
        if conversation_id is not None:
            ensure_valid_id(conversation_id)
        custom_id = conversation_id or generate_conversation_id()

        try:
            conversation = self.db.create_conversation(
                custom_id=custom_id,
                owner_id=owner_id,
                model=model or self.default_model,
            )
        except sqlite3.IntegrityError:
            # Id already taken by someone else; do not reveal that it exists
            raise _not_found(custom_id)
        except sqlite3.Error as e:
            raise PersistenceError(f"Create conversation failed: {e}") from e

        logger.info(
            "Conversation created: id=%s, owner=%s, model=%s",
            conversation.id, owner_id, conversation.model,
        )
        return conversation

    async def get(self, owner_id: str, conversation_id: str) -> Conversation:
        """
        Return the owner's conversation with all messages.

        Raises:
            InvalidIdError: If the id is malformed.
            NotFoundError: If absent or owned by someone else.
        """
        ensure_valid_id(conversation_id)
        try:
            conversation = self.db.get_conversation(conversation_id, owner_id)
        except sqlite3.Error as e:
            raise PersistenceError(f"Load conversation failed: {e}") from e
        if conversation is None:
            raise _not_found(conversation_id)
        return conversation

    async def resolve(
        self,
        owner_id: str,
        conversation_id: Optional[str] = None,
        model: Optional[str] = None,
        create_missing: bool = False,
    ) -> Conversation:
        """
        Load an existing conversation or start a new one.

        Without an id a new conversation is created. With an id the
        conversation is loaded; when it does not exist it is created under
        that exact id only if ``create_missing`` is set.
        """
        if conversation_id is None:
            return await self.create(owner_id, model=model)

        try:
            return await self.get(owner_id, conversation_id)
        except NotFoundError:
            if not create_missing:
                raise
        logger.info("Conversation %s not found, creating it with the provided id", conversation_id)
        return await self.create(owner_id, model=model, conversation_id=conversation_id)

    async def add_message(
        self,
        owner_id: str,
        conversation_id: str,
        role: str,
        content: str,
    ) -> Message:
        """
        Append a message to a conversation.

        Raises:
            ValidationError: For an unknown role or empty/oversized content.
            MessageLimitError: If the conversation is full.
            NotFoundError: If the conversation is absent.
            PersistenceError: If the write fails.
        """
        ensure_valid_id(conversation_id)
        if role not in ROLES:
            raise ValidationError(f"Invalid message role: {role}")
        validate_content(content)

        try:
            message = self.db.add_message(
                conversation_id,
                owner_id,
                role,
                content,
                max_messages=config.MAX_MESSAGES,
            )
        except sqlite3.Error as e:
            raise PersistenceError(f"Add message failed: {e}") from e
        if message is None:
            raise _not_found(conversation_id)

        logger.debug(
            "Message added: conversation=%s, role=%s, length=%d",
            conversation_id, role, len(content),
        )
        return message

    async def rename(self, owner_id: str, conversation_id: str, title: str) -> Conversation:
        """Rename a conversation."""
        ensure_valid_id(conversation_id)
        title = (title or "").strip()
        if not title:
            raise ValidationError("Title cannot be empty")
        if len(title) > config.MAX_TITLE_LENGTH:
            raise ValidationError(f"Title cannot exceed {config.MAX_TITLE_LENGTH} characters")

        try:
            renamed = self.db.rename_conversation(conversation_id, owner_id, title)
        except sqlite3.Error as e:
            raise PersistenceError(f"Rename conversation failed: {e}") from e
        if not renamed:
            raise _not_found(conversation_id)
        return await self.get(owner_id, conversation_id)

    async def clear(self, owner_id: str, conversation_id: str) -> Conversation:
        """Discard all messages of a conversation."""
        ensure_valid_id(conversation_id)
        try:
            cleared = self.db.clear_messages(conversation_id, owner_id)
        except sqlite3.Error as e:
            raise PersistenceError(f"Clear conversation failed: {e}") from e
        if not cleared:
            raise _not_found(conversation_id)
        return await self.get(owner_id, conversation_id)

    async def delete(self, owner_id: str, conversation_id: str) -> None:
        """Delete a conversation."""
        ensure_valid_id(conversation_id)
        try:
            deleted = self.db.delete_conversation(conversation_id, owner_id)
        except sqlite3.Error as e:
            raise PersistenceError(f"Delete conversation failed: {e}") from e
        if not deleted:
            raise _not_found(conversation_id)
        logger.info("Conversation deleted: id=%s, owner=%s", conversation_id, owner_id)
