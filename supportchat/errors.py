"""
Error taxonomy for the chat relay.

Every error carries an HTTP status, a machine-readable code and a message
that is safe to show to the end user. ``str(exc)`` keeps the detailed
message for logs.
"""

from typing import Optional


class ChatError(Exception):
    """Base class for all chat relay errors."""

    status_code: int = 500
    code: str = "INTERNAL_ERROR"
    default_public_message: str = "Something went wrong. Please try again."

    def __init__(self, message: str, public_message: Optional[str] = None, **details):
        super().__init__(message)
        self.message = message
        self.public_message = public_message or message
        self.details = details


class UnauthorizedError(ChatError):
    """Caller identity is missing."""
    status_code = 401
    code = "UNAUTHORIZED"


class InvalidIdError(ChatError):
    """Malformed conversation identifier."""
    status_code = 400
    code = "INVALID_ID"


class ValidationError(ChatError):
    """Request content failed validation (empty or too long)."""
    status_code = 400
    code = "VALIDATION_ERROR"


class MessageLimitError(ChatError):
    """Conversation already holds the maximum number of messages."""
    status_code = 409
    code = "MESSAGE_LIMIT"


class NotFoundError(ChatError):
    """Conversation absent or not owned by the caller."""
    status_code = 404
    code = "NOT_FOUND"


class PersistenceError(ChatError):
    """A store write failed."""
    status_code = 500
    code = "PERSISTENCE_ERROR"

    def __init__(self, message: str, public_message: Optional[str] = None, **details):
        super().__init__(
            message,
            public_message or "Failed to save the conversation. Please try again.",
            **details,
        )


# ---------------------------------------------------------------------------
# Upstream relay errors
# ---------------------------------------------------------------------------

class RelayError(ChatError):
    """Generic upstream failure."""
    status_code = 502
    code = "RELAY_ERROR"
    default_public_message = "Failed to get AI response. Please try again."

    def __init__(self, message: str, public_message: Optional[str] = None, **details):
        super().__init__(message, public_message or self.default_public_message, **details)


class AuthError(RelayError):
    """Upstream rejected our credential. Never shown verbatim to users."""
    code = "UPSTREAM_AUTH"
    default_public_message = "The assistant is temporarily unavailable. Please try again later."


class RateLimitError(RelayError):
    status_code = 429
    code = "RATE_LIMITED"
    default_public_message = "Rate limit exceeded. Please try again later."


class UpstreamUnavailableError(RelayError):
    status_code = 503
    code = "UPSTREAM_UNAVAILABLE"
    default_public_message = "The AI service is temporarily unavailable."


class UpstreamTimeoutError(RelayError):
    status_code = 504
    code = "UPSTREAM_TIMEOUT"
    default_public_message = "Request timeout. Please try again."


class EmptyResponseError(RelayError):
    """Upstream returned no usable content."""
    code = "EMPTY_RESPONSE"
    default_public_message = "The AI service returned an empty response."


class DecodeError(RelayError):
    """The upstream stream broke at the transport or encoding level."""
    code = "DECODE_ERROR"
    default_public_message = "The response stream was interrupted."


def error_for_status(status_code: int, detail: str = "") -> RelayError:
    """Map an upstream HTTP status to a relay error."""
    message = f"Upstream API error ({status_code})"
    if detail:
        message = f"{message}: {detail}"

    if status_code == 401:
        return AuthError(message, status=status_code)
    if status_code == 429:
        return RateLimitError(message, status=status_code)
    if status_code >= 500:
        return UpstreamUnavailableError(message, status=status_code)
    return RelayError(message, status=status_code)
