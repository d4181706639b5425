"""
Chat-related API models: send requests and their non-streaming results.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from supportchat.config import config
from supportchat.models import ChatResult


class CamelModel(BaseModel):
    """Base model that reads and writes camelCase field names."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ChatSendRequest(CamelModel):
    """Request body for /chat/send."""
    message: str = Field(..., min_length=1, max_length=config.MAX_MESSAGE_LENGTH)
    conversation_id: Optional[str] = None
    model: Optional[str] = None
    stream: bool = False


class UsageResponse(CamelModel):
    """Token usage reported by the upstream."""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ChatSendData(CamelModel):
    """Assistant reply of a non-streaming send."""
    message: str
    conversation_id: str
    model: str
    usage: Optional[UsageResponse] = None

    @classmethod
    def from_result(cls, result: ChatResult) -> "ChatSendData":
        usage = None
        if result.usage is not None:
            usage = UsageResponse(
                prompt_tokens=result.usage.prompt,
                completion_tokens=result.usage.completion,
                total_tokens=result.usage.total,
            )
        return cls(
            message=result.message,
            conversation_id=result.conversation_id,
            model=result.model,
            usage=usage,
        )
