"""
Pydantic models (schemas) for API request/response types.

All models are re-exported here for convenience:
    from supportchat.api.models import ChatSendRequest, HealthResponse, ...
"""

from supportchat.api.models.system import (
    HealthResponse,
    ErrorResponse,
)
from supportchat.api.models.chat import (
    CamelModel,
    ChatSendRequest,
    UsageResponse,
    ChatSendData,
)
from supportchat.api.models.conversations import (
    ConversationCreate,
    RenameRequest,
    MessageResponse,
    ConversationResponse,
)

__all__ = [
    "HealthResponse",
    "ErrorResponse",
    "CamelModel",
    "ChatSendRequest",
    "UsageResponse",
    "ChatSendData",
    "ConversationCreate",
    "RenameRequest",
    "MessageResponse",
    "ConversationResponse",
]
