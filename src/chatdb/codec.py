"""
Message Codec for the chat-backed document store
Turns documents into prefixed text payloads and back

Wire layout:
    <prefix><json document>          document record
    <prefix>INDEX:<json snapshot>    index snapshot record
    <prefix>TOMB:<json tombstone>    deletion marker
"""

import json
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .errors import PayloadTooLarge


DEFAULT_PREFIX = 'TDB:'
SNAPSHOT_ID = '__INDEX__'
SYSTEM_TABLE = '__SYSTEM__'


class RecordKind(Enum):
    DOCUMENT = 1
    SNAPSHOT = 2
    TOMBSTONE = 3


def encode(document: Dict[str, Any], prefix: str = DEFAULT_PREFIX, max_size: Optional[int] = None) -> str:
    body = json.dumps(
        document,
        ensure_ascii=False,
        sort_keys=True,
        separators=(',', ':'),
        default=str
    )
    payload = f"{prefix}{body}"

    if max_size is not None and len(payload) > max_size:
        raise PayloadTooLarge(len(payload), max_size)

    return payload


def decode(payload: str, prefix: str = DEFAULT_PREFIX) -> Optional[Dict[str, Any]]:
    if not isinstance(payload, str) or not payload.startswith(prefix):
        return None

    try:
        value = json.loads(payload[len(prefix):])
    except (json.JSONDecodeError, ValueError):
        return None

    if not isinstance(value, dict):
        return None
    return value


@dataclass(frozen=True)
class MessagePrefixes:
    document: str = DEFAULT_PREFIX

    @property
    def snapshot(self) -> str:
        return f"{self.document}INDEX:"

    @property
    def tombstone(self) -> str:
        return f"{self.document}TOMB:"

    def classify(self, payload: str) -> Optional[Tuple[RecordKind, Dict[str, Any]]]:
        # Longer prefixes first: both extend the document prefix.
        for kind, prefix in (
            (RecordKind.SNAPSHOT, self.snapshot),
            (RecordKind.TOMBSTONE, self.tombstone),
        ):
            if isinstance(payload, str) and payload.startswith(prefix):
                body = decode(payload, prefix)
                return (kind, body) if body is not None else None

        body = decode(payload, self.document)
        if body is None:
            return None
        return RecordKind.DOCUMENT, body


def now_millis() -> int:
    return int(time.time() * 1000)


def build_snapshot(
    message_index: Iterable[Tuple[str, int]],
    documents: Iterable[Dict[str, Any]],
    updated_at: Optional[int] = None
) -> Dict[str, Any]:
    return {
        'id': SNAPSHOT_ID,
        'table': SYSTEM_TABLE,
        'messageIndex': [[doc_id, message_id] for doc_id, message_id in message_index],
        'documents': list(documents),
        'updatedAt': updated_at if updated_at is not None else now_millis(),
    }


def parse_snapshot(record: Dict[str, Any]) -> Optional[List[Tuple[Dict[str, Any], int]]]:
    """
    Pair each snapshot document with its message id.
    Returns None when the record is not a well-formed snapshot.
    """
    if record.get('id') != SNAPSHOT_ID:
        return None

    message_index = record.get('messageIndex')
    documents = record.get('documents')
    if not isinstance(message_index, list) or not isinstance(documents, list):
        return None

    ids: Dict[str, int] = {}
    for pair in message_index:
        if isinstance(pair, (list, tuple)) and len(pair) == 2:
            ids[str(pair[0])] = pair[1]

    entries = []
    for doc in documents:
        if not isinstance(doc, dict) or 'id' not in doc:
            continue
        message_id = ids.get(doc['id'])
        if message_id is None:
            continue
        entries.append((doc, message_id))
    return entries


def build_tombstone(doc_id: str, table: Optional[str], deleted_at: Optional[int] = None) -> Dict[str, Any]:
    return {
        'id': doc_id,
        'table': table,
        'deletedAt': deleted_at if deleted_at is not None else now_millis(),
    }
