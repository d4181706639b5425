"""
Conversation-related API models.
"""

from typing import Optional

from pydantic import Field

from supportchat.api.models.chat import CamelModel
from supportchat.config import config
from supportchat.models import Conversation


class ConversationCreate(CamelModel):
    """Request to create a conversation."""
    model: Optional[str] = None


class RenameRequest(CamelModel):
    """Request to rename a conversation."""
    title: str = Field(..., min_length=1, max_length=config.MAX_TITLE_LENGTH)


class MessageResponse(CamelModel):
    id: str
    role: str
    content: str
    created_at: str


class ConversationResponse(CamelModel):
    """Conversation with messages."""
    id: str
    title: str
    model: str
    messages: list[MessageResponse] = []
    created_at: str
    updated_at: str

    @classmethod
    def from_conversation(cls, conversation: Conversation) -> "ConversationResponse":
        return cls.model_validate(conversation.to_dict())
