"""
Conversation routes: read, rename, clear and delete.
"""

from fastapi import APIRouter, Depends

from supportchat.api.dependencies import get_conversation_service, get_owner_id
from supportchat.api.models.conversations import ConversationResponse, RenameRequest
from supportchat.services.conversation_service import ConversationService

router = APIRouter(prefix="/chat", tags=["Conversations"])


def _payload(conversation) -> dict:
    return ConversationResponse.from_conversation(conversation).model_dump(by_alias=True)


@router.get("/{conversation_id}")
async def get_conversation(
    conversation_id: str,
    owner_id: str = Depends(get_owner_id),
    conversations: ConversationService = Depends(get_conversation_service),
):
    """Get a conversation with all its messages."""
    conversation = await conversations.get(owner_id, conversation_id)
    return {"success": True, "data": _payload(conversation)}


@router.put("/{conversation_id}/rename")
async def rename_conversation(
    conversation_id: str,
    body: RenameRequest,
    owner_id: str = Depends(get_owner_id),
    conversations: ConversationService = Depends(get_conversation_service),
):
    conversation = await conversations.rename(owner_id, conversation_id, body.title)
    return {
        "success": True,
        "data": _payload(conversation),
        "message": "Conversation renamed successfully",
    }


@router.post("/{conversation_id}/clear")
async def clear_conversation(
    conversation_id: str,
    owner_id: str = Depends(get_owner_id),
    conversations: ConversationService = Depends(get_conversation_service),
):
    """Remove every message but keep the conversation."""
    conversation = await conversations.clear(owner_id, conversation_id)
    return {
        "success": True,
        "data": _payload(conversation),
        "message": "Conversation cleared successfully",
    }


@router.delete("/{conversation_id}")
async def delete_conversation(
    conversation_id: str,
    owner_id: str = Depends(get_owner_id),
    conversations: ConversationService = Depends(get_conversation_service),
):
    await conversations.delete(owner_id, conversation_id)
    return {"success": True, "message": "Conversation deleted successfully"}
