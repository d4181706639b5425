"""
Common API dependencies: owner identity and the services held on app.state.
"""

from typing import Optional

from fastapi import Header, Request

from supportchat.errors import UnauthorizedError
from supportchat.services.chat_service import ChatService
from supportchat.services.conversation_service import ConversationService


def get_owner_id(x_user_id: Optional[str] = Header(None, alias="X-User-ID")) -> str:
    """Return the caller's user id. Raise 401 if the header is missing."""
    if not x_user_id or not x_user_id.strip():
        raise UnauthorizedError("Missing user identity. Include 'X-User-ID' header.")
    return x_user_id.strip()


def get_chat_service(request: Request) -> ChatService:
    return request.app.state.chat_service


def get_conversation_service(request: Request) -> ConversationService:
    return request.app.state.conversation_service
