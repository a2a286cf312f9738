"""
Error types for the chat-backed document store
"""

from typing import Optional


class ChatDBError(Exception):
    pass


class ChannelError(ChatDBError):
    pass


class TransientChannelError(ChannelError):
    """Network or rate-limit failure; safe to retry."""

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class PayloadTooLarge(ChatDBError):
    def __init__(self, size: int, limit: int):
        super().__init__(f"Payload of {size} characters exceeds the channel limit of {limit}")
        self.size = size
        self.limit = limit


class QueryError(ChatDBError, ValueError):
    pass


class InitializationError(ChatDBError):
    pass
