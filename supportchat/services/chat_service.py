"""
Chat service: sends user messages to the upstream model and persists replies.

``stream`` runs one streaming send as a small state machine:

    IDLE -> CONVERSATION_RESOLVED -> USER_MESSAGE_APPENDED -> RELAY_IN_FLIGHT
         -> STREAMING -> COMPLETED | FAILED_MID_STREAM -> CLOSED

Whatever text was received before the stream ends (normally, on an upstream
error or because the client went away) is saved as the assistant message.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Optional

from supportchat.cancellation import CancellationToken, iterate_until_cancelled
from supportchat.config import config
from supportchat.errors import ChatError, RelayError
from supportchat.models import (
    ChatResult,
    ContentDelta,
    ConversationReady,
    SessionState,
    StreamEnd,
    StreamError,
    StreamEvent,
)
from supportchat.relay import RelayClient
from supportchat.services.conversation_service import (
    ConversationService,
    ensure_valid_id,
    validate_content,
)

logger = logging.getLogger(__name__)


@dataclass
class StreamSession:
    """Bookkeeping for one streaming send."""
    owner_id: str
    conversation_id: Optional[str] = None
    state: SessionState = SessionState.IDLE
    parts: list[str] = field(default_factory=list)
    chunk_count: int = 0

    @property
    def text(self) -> str:
        return "".join(self.parts)

    def transition(self, state: SessionState) -> None:
        logger.debug(
            "Stream session %s: %s -> %s",
            self.conversation_id or "<new>", self.state.value, state.value,
        )
        self.state = state


class ChatService:
    """Orchestrates conversation persistence around upstream relay calls."""

    def __init__(
        self,
        conversations: ConversationService,
        relay: RelayClient,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ):
        self.conversations = conversations
        self.relay = relay
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_holders: dict[str, int] = {}

    @asynccontextmanager
    async def _conversation_lock(self, conversation_id: Optional[str]):
        """Serialize sends that target the same conversation id."""
        if conversation_id is None:
            # A fresh id is generated, nobody else can hold it
            yield
            return

        lock = self._locks.setdefault(conversation_id, asyncio.Lock())
        self._lock_holders[conversation_id] = self._lock_holders.get(conversation_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_holders[conversation_id] -= 1
            if self._lock_holders[conversation_id] == 0:
                del self._lock_holders[conversation_id]
                del self._locks[conversation_id]

    # ------------------------------------------------------------------
    # Non-streaming
    # ------------------------------------------------------------------

    async def send(
        self,
        owner_id: str,
        message: str,
        conversation_id: Optional[str] = None,
        model: Optional[str] = None,
    ) -> ChatResult:
        """
        Send a message and wait for the complete reply.

        An unknown ``conversation_id`` fails with NotFoundError. If the relay
        fails no assistant message is stored and the error propagates.
        """
        if conversation_id is not None:
            ensure_valid_id(conversation_id)
        validate_content(message)

        async with self._conversation_lock(conversation_id):
            conversation = await self.conversations.resolve(owner_id, conversation_id, model)
            await self.conversations.add_message(owner_id, conversation.id, "user", message)
            conversation = await self.conversations.get(owner_id, conversation.id)

            try:
                response = await self.relay.complete(
                    conversation.model,
                    conversation.history(),
                    temperature=self.temperature,
                    max_tokens=self.max_tokens,
                )
                answer = self.relay.extract_content(response)
            except RelayError as e:
                logger.error(
                    "Send message failed: conversation=%s, model=%s, error=%s",
                    conversation.id, conversation.model, e,
                )
                raise

            usage = self.relay.extract_usage(response)
            await self.conversations.add_message(owner_id, conversation.id, "assistant", answer)

        logger.info(
            "Message sent: conversation=%s, model=%s, usage=%s",
            conversation.id, conversation.model, usage,
        )
        return ChatResult(
            message=answer,
            conversation_id=conversation.id,
            model=conversation.model,
            usage=usage,
        )

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    async def stream(
        self,
        owner_id: str,
        message: str,
        conversation_id: Optional[str] = None,
        model: Optional[str] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> AsyncIterator[StreamEvent]:
        """
        Send a message and stream the reply as events.

        Yields ``ConversationReady`` once, then ``ContentDelta`` per upstream
        token, then at most one ``StreamError``, and always ends with
        ``StreamEnd``. An unknown but well-formed ``conversation_id`` is
        created under that exact id.
        """
        session = StreamSession(owner_id=owner_id, conversation_id=conversation_id)
        async with self._conversation_lock(conversation_id):
            events = self._run_stream(session, message, model, cancel)
            try:
                async for event in events:
                    yield event
            finally:
                await events.aclose()

    async def _run_stream(
        self,
        session: StreamSession,
        message: str,
        model: Optional[str],
        cancel: Optional[CancellationToken],
    ) -> AsyncIterator[StreamEvent]:
        owner_id = session.owner_id
        try:
            validate_content(message)
            conversation = await self.conversations.resolve(
                owner_id, session.conversation_id, model, create_missing=True
            )
            session.conversation_id = conversation.id
            session.transition(SessionState.CONVERSATION_RESOLVED)

            await self.conversations.add_message(owner_id, conversation.id, "user", message)
            session.transition(SessionState.USER_MESSAGE_APPENDED)

            conversation = await self.conversations.get(owner_id, conversation.id)
            session.transition(SessionState.RELAY_IN_FLIGHT)
            upstream = await self.relay.stream(
                conversation.model,
                conversation.history(),
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
        except ChatError as e:
            logger.error(
                "Stream setup failed: conversation=%s, state=%s, error=%s",
                session.conversation_id, session.state.value, e,
            )
            session.transition(SessionState.FAILED_MID_STREAM)
            yield StreamError(message=e.public_message)
            session.transition(SessionState.CLOSED)
            yield StreamEnd()
            return
        except Exception as e:
            logger.exception("Unexpected stream setup error: %s", e)
            session.transition(SessionState.FAILED_MID_STREAM)
            yield StreamError(message="Service error. Please try again.")
            session.transition(SessionState.CLOSED)
            yield StreamEnd()
            return

        logger.info(
            "Streaming started: conversation=%s, model=%s, history=%d",
            conversation.id, conversation.model, len(conversation.messages),
        )
        yield ConversationReady(conversation_id=conversation.id, model=conversation.model)
        session.transition(SessionState.STREAMING)

        error_message: Optional[str] = None
        events = iterate_until_cancelled(upstream, cancel)
        try:
            async for event in events:
                if isinstance(event, ContentDelta):
                    session.parts.append(event.text)
                    session.chunk_count += 1
                    yield event
                elif isinstance(event, StreamError):
                    logger.error(
                        "Upstream reported an error mid-stream: conversation=%s, error=%s",
                        conversation.id, event.message,
                    )
                    error_message = f"Stream processing failed: {event.message}"
                    break
            if cancel is not None and cancel.is_cancelled:
                logger.info(
                    "Stream cancelled: conversation=%s, chunks=%d, reason=%s",
                    conversation.id, session.chunk_count, cancel.reason,
                )
        except RelayError as e:
            logger.error(
                "Error during stream processing: conversation=%s, chunks=%d, error=%s",
                conversation.id, session.chunk_count, e,
            )
            error_message = e.public_message
        except (asyncio.CancelledError, GeneratorExit):
            logger.info(
                "Client disconnected: conversation=%s, chunks=%d",
                conversation.id, session.chunk_count,
            )
            raise
        except Exception as e:
            logger.exception("Unexpected error during stream processing: %s", e)
            error_message = "Stream processing failed."
        finally:
            # Saved before closing upstream so a cancelled close cannot skip it
            await self._save_answer(session)
            await events.aclose()
            await upstream.aclose()

        if error_message is not None:
            session.transition(SessionState.FAILED_MID_STREAM)
            yield StreamError(message=error_message)
        else:
            session.transition(SessionState.COMPLETED)
            logger.info(
                "Streaming completed: conversation=%s, chunks=%d, length=%d",
                conversation.id, session.chunk_count, len(session.text),
            )

        session.transition(SessionState.CLOSED)
        yield StreamEnd()

    async def _save_answer(self, session: StreamSession) -> None:
        """Persist the accumulated text. Failures are logged, never raised."""
        text = session.text
        if not text.strip():
            return

        if len(text) > config.MAX_MESSAGE_LENGTH:
            logger.warning(
                "Truncating assistant reply for %s from %d to %d characters",
                session.conversation_id, len(text), config.MAX_MESSAGE_LENGTH,
            )
            text = text[:config.MAX_MESSAGE_LENGTH]

        try:
            await self.conversations.add_message(
                session.owner_id, session.conversation_id, "assistant", text
            )
            logger.info(
                "AI response saved: conversation=%s, length=%d",
                session.conversation_id, len(text),
            )
        except ChatError as e:
            logger.error(
                "Failed to save AI response: conversation=%s, length=%d, error=%s",
                session.conversation_id, len(text), e,
            )
