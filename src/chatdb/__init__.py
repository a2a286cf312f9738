"""
Chat-backed Document Store
A schema-less document database that keeps its data as chat messages

Features:
- Documents stored as prefixed JSON messages in a single chat channel
- In-memory index rebuilt by replaying channel history
- Index snapshots published to the channel for faster recovery
- MongoDB-style filters with dotted paths and comparison operators
"""

from .codec import MessagePrefixes, RecordKind, encode, decode, DEFAULT_PREFIX, SNAPSHOT_ID, SYSTEM_TABLE
from .query import QueryFilter, Condition, Operator, matches
from .index import DocumentIndex, IndexEntry
from .channel import MessageChannel, ChannelMessage, InMemoryChannel
from .config import ChatDBConfig
from .engine import ChatDB, OperationResult, BatchOptions, UpdateOptions, DatabaseStats
from .table import TableHandler
from .errors import (
    ChatDBError, ChannelError, TransientChannelError,
    PayloadTooLarge, QueryError, InitializationError
)

__all__ = [
    'ChatDB',
    'ChatDBConfig',
    'OperationResult',
    'BatchOptions',
    'UpdateOptions',
    'DatabaseStats',
    'TableHandler',
    'DocumentIndex',
    'IndexEntry',
    'MessageChannel',
    'ChannelMessage',
    'InMemoryChannel',
    'MessagePrefixes',
    'RecordKind',
    'encode',
    'decode',
    'DEFAULT_PREFIX',
    'SNAPSHOT_ID',
    'SYSTEM_TABLE',
    'QueryFilter',
    'Condition',
    'Operator',
    'matches',
    'ChatDBError',
    'ChannelError',
    'TransientChannelError',
    'PayloadTooLarge',
    'QueryError',
    'InitializationError',
]

__version__ = '1.0.0'
