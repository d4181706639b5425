"""
Chat routes: /chat/send, /chat/conversation
"""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from supportchat.api.dependencies import get_chat_service, get_conversation_service, get_owner_id
from supportchat.api.models.chat import ChatSendData, ChatSendRequest
from supportchat.api.models.conversations import ConversationCreate, ConversationResponse
from supportchat.services.chat_service import ChatService
from supportchat.services.conversation_service import (
    ConversationService,
    ensure_valid_id,
    validate_content,
)
from supportchat.sse import SSE_HEADERS, SSE_MEDIA_TYPE, encode_stream

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["Chat"])


@router.post("/send")
async def send_message(
    body: ChatSendRequest,
    owner_id: str = Depends(get_owner_id),
    chat_service: ChatService = Depends(get_chat_service),
):
    """
    Send a message to the assistant.

    With ``stream=true`` the reply is returned as Server-Sent Events:
    a ``conversation`` frame, ``content`` frames, and at most one ``error``
    frame. Otherwise the full reply is returned as JSON.
    """
    # Rejected here so a bad request never opens a stream
    if body.conversation_id is not None:
        ensure_valid_id(body.conversation_id)
    validate_content(body.message)

    logger.info(
        "Send request: owner=%s, conversation=%s, stream=%s, length=%d",
        owner_id, body.conversation_id, body.stream, len(body.message),
    )

    if body.stream:
        events = chat_service.stream(
            owner_id,
            body.message,
            conversation_id=body.conversation_id,
            model=body.model,
        )
        return StreamingResponse(
            encode_stream(events),
            media_type=SSE_MEDIA_TYPE,
            headers=SSE_HEADERS,
        )

    result = await chat_service.send(
        owner_id,
        body.message,
        conversation_id=body.conversation_id,
        model=body.model,
    )
    return {
        "success": True,
        "data": ChatSendData.from_result(result).model_dump(by_alias=True),
        "message": "Message sent successfully",
    }


@router.post("/conversation", status_code=201)
async def create_conversation(
    body: ConversationCreate,
    owner_id: str = Depends(get_owner_id),
    conversations: ConversationService = Depends(get_conversation_service),
):
    """Create a new, empty conversation."""
    conversation = await conversations.create(owner_id, model=body.model)
    return {
        "success": True,
        "data": ConversationResponse.from_conversation(conversation).model_dump(by_alias=True),
        "message": "Conversation created successfully",
    }
