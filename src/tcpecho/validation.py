"""
Message validation for the echo server.

A message is accepted only if it is non-empty, no longer than the length
bound, and free of control bytes. Tab (0x09) and line feed (0x0A) are the
only control bytes allowed; DEL (0x7F) is rejected. Bytes >= 0x80 pass,
so UTF-8 text in any script is fine.
"""

import re
from typing import Union

from .config import MAX_MESSAGE_LENGTH


# 0x00-0x08, 0x0B-0x1F (carriage return included) and DEL
_FORBIDDEN = re.compile(rb"[\x00-\x08\x0b-\x1f\x7f]")


class InputValidator:
    """
    Stateless predicate over a received message.

    Usage:
        validator = InputValidator()
        if not validator.validate(data):
            conn.send(INVALID_NOTICE)
    """

    def __init__(self, max_length: int = MAX_MESSAGE_LENGTH):
        self.max_length = max_length

    def validate(self, message: Union[bytes, str]) -> bool:
        """Return True if the message may be echoed back."""
        if isinstance(message, str):
            message = message.encode("utf-8")
        return (
            len(message) > 0
            and len(message) <= self.max_length
            and not self.contains_invalid_chars(message)
        )

    @staticmethod
    def contains_invalid_chars(message: bytes) -> bool:
        return _FORBIDDEN.search(message) is not None


_default_validator = InputValidator()


def validate_message(message: Union[bytes, str]) -> bool:
    """Validate with the default 1024-byte bound."""
    return _default_validator.validate(message)
