"""
Document Index for the chat-backed document store
In-memory projection of the channel log, keyed by document id
"""

import copy
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Set, Union

from .channel import ChannelMessage
from .codec import MessagePrefixes, RecordKind, SNAPSHOT_ID, SYSTEM_TABLE, build_snapshot, parse_snapshot
from .query import QueryFilter, matches


logger = logging.getLogger('chatdb.index')


@dataclass
class IndexEntry:
    document: Dict[str, Any]
    message_id: int


class DocumentIndex:
    """
    Maps document id to (document, message id).

    The index is never persisted directly; `rehydrate` rebuilds it by replaying
    channel history, and `snapshot_record` produces the mirror that gets
    published back to the channel. Iteration follows insertion order of the
    underlying dict, which after a rehydrate is replay order, not creation order.
    """

    def __init__(self, prefixes: Optional[MessagePrefixes] = None):
        self.prefixes = prefixes or MessagePrefixes()
        self._entries: Dict[str, IndexEntry] = {}
        # last message id each removed document had when it left the index
        self._removed: Dict[str, int] = {}
        self.snapshot_message_id: Optional[int] = None

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, doc_id: str) -> bool:
        return doc_id in self._entries

    def get(self, doc_id: str) -> Optional[Dict[str, Any]]:
        entry = self._entries.get(doc_id)
        return entry.document if entry else None

    def message_id_for(self, doc_id: str) -> Optional[int]:
        entry = self._entries.get(doc_id)
        return entry.message_id if entry else None

    def upsert_local(self, document: Dict[str, Any], message_id: int):
        doc_id = document.get('id')
        if not isinstance(doc_id, str) or doc_id == SNAPSHOT_ID:
            return
        self._entries[doc_id] = IndexEntry(document=document, message_id=message_id)

    def remove_local(self, doc_id: str) -> bool:
        entry = self._entries.pop(doc_id, None)
        if entry is None:
            return False
        self._removed[doc_id] = entry.message_id
        return True

    def clear(self):
        self._reset()
        self._removed.clear()

    def _reset(self):
        self._entries.clear()
        self.snapshot_message_id = None

    def _retired(self, doc_id: str, message_id: int) -> bool:
        removed = self._removed.get(doc_id)
        return removed is not None and message_id <= removed

    def documents(self) -> List[Dict[str, Any]]:
        return [entry.document for entry in self._entries.values()]

    def scan(self, predicate: Union[Dict[str, Any], QueryFilter, None] = None) -> List[Dict[str, Any]]:
        if predicate is None:
            return self.documents()
        if not isinstance(predicate, QueryFilter):
            predicate = QueryFilter.parse(predicate)
        return [doc for doc in self.documents() if matches(doc, predicate)]

    def tables(self) -> Set[str]:
        tables = set()
        for entry in self._entries.values():
            table = entry.document.get('table')
            if isinstance(table, str) and table != SYSTEM_TABLE:
                tables.add(table)
        return tables

    def snapshot_record(self, updated_at: Optional[int] = None) -> Dict[str, Any]:
        return build_snapshot(
            ((doc_id, entry.message_id) for doc_id, entry in self._entries.items()),
            (entry.document for entry in self._entries.values()),
            updated_at=updated_at
        )

    def load_snapshot(self, record: Dict[str, Any], message_id: Optional[int] = None) -> bool:
        entries = parse_snapshot(record)
        if entries is None:
            return False

        self._entries = {}
        for document, doc_message_id in entries:
            if self._retired(document['id'], doc_message_id):
                continue
            self.upsert_local(copy.deepcopy(document), doc_message_id)
        if message_id is not None:
            self.snapshot_message_id = message_id
        return True

    def apply(self, message: ChannelMessage) -> Optional[RecordKind]:
        """One replay step. Returns the kind of record applied, None if skipped."""
        decoded = self.prefixes.classify(message.text)
        if decoded is None:
            return None

        kind, record = decoded
        if kind == RecordKind.SNAPSHOT:
            if not self.load_snapshot(record, message.message_id):
                return None
        elif kind == RecordKind.TOMBSTONE:
            doc_id = record.get('id')
            if not isinstance(doc_id, str):
                return None
            self.remove_local(doc_id)
        else:
            doc_id = record.get('id')
            if not isinstance(doc_id, str) or self._retired(doc_id, message.message_id):
                return None
            self.upsert_local(record, message.message_id)
        return kind

    def rehydrate(self, history: Iterable[ChannelMessage], seed: Optional[Dict[str, Any]] = None) -> int:
        """
        Rebuild from channel history in ascending message id order.

        A snapshot replaces the whole index at its point in the replay; plain
        document messages after it still win. Deletions are only visible as the
        absence of a message, or as a tombstone when those are enabled.
        `seed` is a snapshot record loaded before the replay starts.

        Documents removed locally stay removed: a replayed message no newer
        than the one a document had when it was removed is skipped.
        """
        self._reset()
        if seed is not None:
            self.load_snapshot(seed)

        applied = 0
        for message in sorted(history, key=lambda m: m.message_id):
            if not message.chat_matches:
                continue
            if self.apply(message) is not None:
                applied += 1

        logger.debug(f"Rehydrated {len(self._entries)} document(s) from {applied} message(s)")
        return applied

    def apply_live(self, message: ChannelMessage) -> Optional[RecordKind]:
        """
        Apply a message that arrived after initialization.

        Echoes of the store's own writes can arrive late, so nothing here may
        move an entry back to an older message.
        """
        decoded = self.prefixes.classify(message.text)
        if decoded is None:
            return None

        kind, record = decoded
        if kind == RecordKind.SNAPSHOT:
            if message.message_id == self.snapshot_message_id:
                return None
            entries = parse_snapshot(record)
            if entries is None:
                return None
            for document, doc_message_id in entries:
                self._upsert_if_newer(copy.deepcopy(document), doc_message_id)
            return kind

        doc_id = record.get('id')
        if not isinstance(doc_id, str):
            return None

        if kind == RecordKind.TOMBSTONE:
            current = self.message_id_for(doc_id)
            if current is not None and current < message.message_id:
                self.remove_local(doc_id)
            return kind

        if not self._upsert_if_newer(record, message.message_id):
            return None
        return kind

    def _upsert_if_newer(self, document: Dict[str, Any], message_id: int) -> bool:
        doc_id = document.get('id')
        current = self.message_id_for(doc_id)
        if current is None:
            current = self._removed.get(doc_id)
        if current is not None and current >= message_id:
            return False
        self.upsert_local(document, message_id)
        return True
