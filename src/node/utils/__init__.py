"""
Utilities for Node Server

This module contains utility functions for input validation.
"""

from .validation import (
    MAX_MESSAGE_LENGTH,
    MAX_NICKNAME_LENGTH,
    validate_message_content,
    validate_nickname,
)

__all__ = [
    "MAX_MESSAGE_LENGTH",
    "MAX_NICKNAME_LENGTH",
    "validate_message_content",
    "validate_nickname",
]
