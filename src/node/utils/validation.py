"""
Validation Utilities

Contains utility functions for validating nicknames and message content.
"""

from typing import Tuple, Optional

# Validation constants
MAX_MESSAGE_LENGTH = 5000
MAX_NICKNAME_LENGTH = 32


def validate_message_content(content: str) -> Tuple[bool, Optional[str]]:
    """
    Validate message content.

    Args:
        content: The message content to validate

    Returns:
        tuple: (is_valid, error_message)
            - is_valid: True if content is valid, False otherwise
            - error_message: Error message if invalid, None if valid
    """
    if not content:
        return False, "Message content cannot be empty"

    if len(content) > MAX_MESSAGE_LENGTH:
        return (
            False,
            f"Message content too long (max {MAX_MESSAGE_LENGTH} characters)",
        )

    return True, None


def validate_nickname(nickname: str) -> Tuple[bool, Optional[str]]:
    """
    Validate a nickname.

    Args:
        nickname: The nickname to validate

    Returns:
        tuple: (is_valid, error_message)
    """
    if not isinstance(nickname, str) or not nickname:
        return False, "Nickname cannot be empty"

    if len(nickname) > MAX_NICKNAME_LENGTH:
        return (
            False,
            f"Nickname too long (max {MAX_NICKNAME_LENGTH} characters)",
        )

    if any(ch.isspace() for ch in nickname):
        return False, "Nickname cannot contain whitespace"

    return True, None
