"""
Domain types: conversations, messages, relay requests and stream events.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Union

ROLES = ("user", "assistant", "system")
DEFAULT_TITLE = "New Conversation"


@dataclass(frozen=True)
class Message:
    """A single immutable chat message."""
    id: str
    role: str
    content: str
    created_at: datetime

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "createdAt": self.created_at.isoformat(),
        }


@dataclass
class Conversation:
    """A conversation owned by one user, with its ordered messages."""
    id: str
    owner_id: str
    title: str
    model: str
    created_at: datetime
    updated_at: datetime
    messages: list[Message] = field(default_factory=list)

    def history(self) -> list[dict[str, str]]:
        """Project messages to the upstream role/content wire shape."""
        return [{"role": m.role, "content": m.content} for m in self.messages]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "model": self.model,
            "messages": [m.to_dict() for m in self.messages],
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }


@dataclass
class TokenUsage:
    """Token usage information from a completion."""
    prompt: int = 0
    completion: int = 0
    total: int = 0


@dataclass
class RelayRequest:
    """One upstream completion request. Built per call, never persisted."""
    model: str
    messages: list[dict[str, str]]
    temperature: float
    max_tokens: int
    stream: bool = False

    def to_payload(self) -> dict:
        payload = {
            "model": self.model,
            "messages": self.messages,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        if self.stream:
            payload["stream"] = True
        return payload


@dataclass
class ChatResult:
    """Result of a non-streaming send."""
    message: str
    conversation_id: str
    model: str
    usage: Optional[TokenUsage] = None


# ---------------------------------------------------------------------------
# Stream events
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ConversationReady:
    conversation_id: str
    model: str


@dataclass(frozen=True)
class ContentDelta:
    text: str


@dataclass(frozen=True)
class StreamError:
    message: str


@dataclass(frozen=True)
class StreamEnd:
    pass


StreamEvent = Union[ConversationReady, ContentDelta, StreamError, StreamEnd]


class SessionState(str, Enum):
    """States of one streaming send."""
    IDLE = "idle"
    CONVERSATION_RESOLVED = "conversation_resolved"
    USER_MESSAGE_APPENDED = "user_message_appended"
    RELAY_IN_FLIGHT = "relay_in_flight"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED_MID_STREAM = "failed_mid_stream"
    CLOSED = "closed"
