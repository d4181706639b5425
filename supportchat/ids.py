"""
Identifier helpers for conversations and messages.

Format: ``<prefix>_<millisecond timestamp>_<12 hex chars>``,
e.g. ``conv_1703123456789_abc123def456``.
"""

import re
import secrets
import time

CONVERSATION_PREFIX = "conv"
MESSAGE_PREFIX = "msg"

_PATTERNS = {
    prefix: re.compile(rf"{prefix}_[0-9]+_[a-f0-9]{{12}}")
    for prefix in (CONVERSATION_PREFIX, MESSAGE_PREFIX)
}


def generate_custom_id(prefix: str) -> str:
    """Generate a new identifier with the given prefix."""
    timestamp = int(time.time() * 1000)
    return f"{prefix}_{timestamp}_{secrets.token_hex(6)}"


def generate_conversation_id() -> str:
    return generate_custom_id(CONVERSATION_PREFIX)


def generate_message_id() -> str:
    return generate_custom_id(MESSAGE_PREFIX)


def is_valid_custom_id(value: object, prefix: str) -> bool:
    """Return True if ``value`` is a string id with the given prefix."""
    if not isinstance(value, str):
        return False
    return _PATTERNS[prefix].fullmatch(value) is not None


def is_valid_conversation_id(value: object) -> bool:
    return is_valid_custom_id(value, CONVERSATION_PREFIX)


def is_valid_message_id(value: object) -> bool:
    return is_valid_custom_id(value, MESSAGE_PREFIX)
