"""
Configuration for the chat-backed document store
"""

import os
from dataclasses import dataclass
from typing import Optional

from .codec import DEFAULT_PREFIX


def _env_int(name: str) -> Optional[int]:
    value = os.getenv(name)
    return int(value) if value else None


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


@dataclass
class ChatDBConfig:
    message_prefix: str = DEFAULT_PREFIX
    batch_delay: float = 0.1
    max_retries: int = 3
    retry_delay: float = 1.0
    max_payload_size: Optional[int] = None
    history_limit: Optional[int] = None
    index_file_path: Optional[str] = None
    tombstones: bool = False

    def __post_init__(self):
        if not self.message_prefix:
            raise ValueError("message_prefix cannot be empty")
        if self.max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        if self.batch_delay < 0 or self.retry_delay < 0:
            raise ValueError("delays cannot be negative")

    @classmethod
    def from_env(cls) -> 'ChatDBConfig':
        return cls(
            message_prefix=os.getenv('CHATDB_PREFIX', DEFAULT_PREFIX),
            batch_delay=float(os.getenv('CHATDB_BATCH_DELAY', '0.1')),
            max_retries=int(os.getenv('CHATDB_MAX_RETRIES', '3')),
            retry_delay=float(os.getenv('CHATDB_RETRY_DELAY', '1.0')),
            max_payload_size=_env_int('CHATDB_MAX_PAYLOAD_SIZE'),
            history_limit=_env_int('CHATDB_HISTORY_LIMIT'),
            index_file_path=os.getenv('CHATDB_INDEX_FILE') or None,
            tombstones=_env_bool('CHATDB_TOMBSTONES'),
        )
