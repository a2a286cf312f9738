"""
Chat-backed Document Store
Ties the codec, filter engine and index to a message channel

Every write is a new channel message; updates post a fresh message and
retire the old one, deletes remove it. The in-memory index is the only
read path and is rebuilt from channel history on start-up.

Limitation: nothing survives a restart except what can be replayed from the
channel (plus the optional local index file). A delete whose channel-delete
failed comes back after a rehydrate unless tombstones are enabled.
"""

import asyncio
import copy
import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, TypeVar

from src.utils.helpers import deep_merge, expand_dotted, generate_id, id_timestamp

from .channel import ChannelMessage, MessageChannel
from .codec import (
    MessagePrefixes, SNAPSHOT_ID, SYSTEM_TABLE, build_tombstone, encode
)
from .config import ChatDBConfig
from .errors import ChatDBError, InitializationError, QueryError, TransientChannelError
from .index import DocumentIndex
from .query import QueryFilter
from .table import TableHandler


logger = logging.getLogger('chatdb')

T = TypeVar('T')


@dataclass
class OperationResult:
    success: bool
    message: str = ''
    data: Any = None
    error: Optional[BaseException] = None
    message_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {
            'success': self.success,
            'message': self.message,
            'data': self.data,
        }
        if self.message_id is not None:
            result['message_id'] = self.message_id
        if self.error is not None:
            result['error'] = str(self.error)
        return result


@dataclass
class BatchOptions:
    delay: Optional[float] = None
    stop_on_error: bool = False


@dataclass
class UpdateOptions:
    upsert: bool = False
    replace: bool = False


@dataclass
class DatabaseStats:
    total_documents: int
    total_messages: int
    oldest_document: Optional[Dict[str, Any]] = None
    newest_document: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total_documents': self.total_documents,
            'total_messages': self.total_messages,
            'oldest_document': self.oldest_document,
            'newest_document': self.newest_document,
        }


class ChatDB:
    def __init__(self, channel: MessageChannel, config: Optional[ChatDBConfig] = None):
        self.channel = channel
        self.config = config or ChatDBConfig()
        self.prefixes = MessagePrefixes(self.config.message_prefix)
        self.max_payload_size = self.config.max_payload_size or channel.max_payload_size

        self._index = DocumentIndex(self.prefixes)
        self._lock = asyncio.Lock()
        self._init_lock = asyncio.Lock()
        self._initialized = False
        self._listen_task: Optional[asyncio.Task] = None

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self):
        if self._initialized:
            return

        async with self._init_lock:
            if self._initialized:
                return

            try:
                await self.channel.connect()
                await self._rehydrate(strict=True)
            except Exception as e:
                logger.error(f"Failed to initialize ChatDB: {e}")
                raise InitializationError(f"Failed to initialize ChatDB: {e}") from e

            self._listen_task = asyncio.create_task(self._listen_loop(self.channel.listen()))
            self._initialized = True
            logger.info(f"ChatDB initialized with {len(self._index)} document(s)")

    async def close(self):
        if self._listen_task:
            self._listen_task.cancel()
            try:
                await self._listen_task
            except asyncio.CancelledError:
                pass
            self._listen_task = None

        await self.channel.close()
        self._initialized = False
        logger.info("ChatDB closed")

    async def _ensure_initialized(self):
        if not self._initialized:
            await self.initialize()

    async def _listen_loop(self, stream):
        try:
            async for message in stream:
                if not message.chat_matches:
                    continue
                try:
                    kind = self._index.apply_live(message)
                except Exception as e:
                    logger.error(f"Error applying message {message.message_id}: {e}", exc_info=True)
                    continue
                if kind is not None:
                    logger.debug(f"Applied live {kind.name.lower()} message {message.message_id}")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Message listener stopped: {e}", exc_info=True)

    async def _retry_operation(self, operation: Callable[[], Awaitable[T]]) -> T:
        last_error: Optional[Exception] = None

        for attempt in range(1, self.config.max_retries + 1):
            try:
                return await operation()
            except TransientChannelError as e:
                last_error = e
                if attempt < self.config.max_retries:
                    delay = attempt * self.config.retry_delay
                    if e.retry_after:
                        delay = max(delay, e.retry_after)
                    logger.warning(f"Send attempt {attempt} failed ({e}), retrying in {delay:.1f}s")
                    await asyncio.sleep(delay)

        raise last_error

    async def _send(self, record: Dict[str, Any], prefix: str) -> int:
        payload = encode(record, prefix, self.max_payload_size)
        return await self._retry_operation(lambda: self.channel.send(payload))

    async def _send_document(self, document: Dict[str, Any]) -> int:
        return await self._send(document, self.prefixes.document)

    async def _delete_message(self, message_id: int) -> bool:
        try:
            deleted = await self.channel.delete(message_id)
        except Exception as e:
            logger.warning(f"Could not delete message {message_id}: {e}")
            return False
        if not deleted:
            logger.debug(f"Message {message_id} was already gone")
        return deleted

    async def _send_tombstone(self, document: Dict[str, Any]):
        record = build_tombstone(document['id'], document.get('table'))
        try:
            await self._send(record, self.prefixes.tombstone)
        except Exception as e:
            logger.warning(f"Failed to publish tombstone for {document['id']}: {e}")

    async def _publish_snapshot(self):
        previous = self._index.snapshot_message_id
        record = self._index.snapshot_record()
        await self._write_index_file(record)

        message_id = None
        if len(self._index) > 0:
            try:
                message_id = await self._send(record, self.prefixes.snapshot)
            except ChatDBError as e:
                # a stale snapshot would shadow later deletes, so it goes anyway
                logger.warning(f"Index snapshot not published: {e}")
            except Exception as e:
                logger.error(f"Index snapshot not published: {e}", exc_info=True)

        if previous is not None:
            await self._delete_message(previous)
        self._index.snapshot_message_id = message_id

    async def _write_index_file(self, record: Dict[str, Any]):
        path = self.config.index_file_path
        if not path:
            return

        def write():
            directory = os.path.dirname(path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            tmp_path = f"{path}.tmp"
            with open(tmp_path, 'w', encoding='utf-8') as f:
                json.dump(record, f, ensure_ascii=False, default=str)
            os.replace(tmp_path, path)

        try:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, write)
        except OSError as e:
            logger.warning(f"Failed to write index file {path}: {e}")

    async def _read_index_file(self) -> Optional[Dict[str, Any]]:
        path = self.config.index_file_path
        if not path or not os.path.exists(path):
            return None

        def read():
            with open(path, 'r', encoding='utf-8') as f:
                return json.load(f)

        try:
            loop = asyncio.get_running_loop()
            record = await loop.run_in_executor(None, read)
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable index file {path}: {e}")
            return None
        return record if isinstance(record, dict) else None

    async def _rehydrate(self, strict: bool = False):
        seed = await self._read_index_file()
        try:
            history: List[ChannelMessage] = await self.channel.history()
        except Exception as e:
            if strict:
                raise
            logger.warning(f"Could not read channel history: {e}")
            history = []

        applied = self._index.rehydrate(history, seed=seed)
        logger.info(f"Rehydrated {len(self._index)} document(s) from {applied} of {len(history)} message(s)")

    def _scoped_filter(self, filter: Optional[Mapping[str, Any]], table: str) -> QueryFilter:
        if not isinstance(table, str) or not table:
            raise QueryError("A table name is required")
        predicate = dict(filter or {})
        predicate['table'] = table
        return QueryFilter.parse(predicate)

    async def _find(self, filter: Optional[Mapping[str, Any]], table: str) -> List[Dict[str, Any]]:
        query = self._scoped_filter(filter, table)
        if len(self._index) == 0:
            await self._rehydrate()
        return self._index.scan(query)

    def _prepare_document(self, doc: Mapping[str, Any], table: str) -> Dict[str, Any]:
        if not isinstance(table, str) or not table:
            raise ValueError("A table name is required")
        if table == SYSTEM_TABLE:
            raise ValueError(f"Table name {SYSTEM_TABLE} is reserved")

        doc_id = doc.get('id') or generate_id()
        if not isinstance(doc_id, str):
            raise ValueError("Document id must be a string")
        if doc_id == SNAPSHOT_ID:
            raise ValueError(f"Document id {SNAPSHOT_ID} is reserved")
        if doc_id in self._index:
            raise ValueError(f"Document with id {doc_id} already exists")

        document = copy.deepcopy(dict(doc))
        document['id'] = doc_id
        document['table'] = table
        return document

    @staticmethod
    def _apply_patch(document: Dict[str, Any], patch: Mapping[str, Any], replace: bool) -> Dict[str, Any]:
        if replace:
            updated = copy.deepcopy(dict(patch))
        else:
            updated = deep_merge(document, patch)
        updated['id'] = document['id']
        updated['table'] = document['table']
        return updated

    async def insert(self, doc: Mapping[str, Any], table: str) -> OperationResult:
        await self._ensure_initialized()

        async with self._lock:
            return await self._insert(doc, table)

    async def _insert(self, doc: Mapping[str, Any], table: str) -> OperationResult:
        try:
            document = self._prepare_document(doc, table)
            message_id = await self._send_document(document)
        except Exception as e:
            logger.error(f"Failed to insert document into {table}: {e}")
            return OperationResult(
                success=False,
                error=e,
                message=f"Failed to insert document: {e}"
            )

        self._index.upsert_local(document, message_id)
        await self._publish_snapshot()

        return OperationResult(
            success=True,
            data=copy.deepcopy(document),
            message_id=message_id,
            message='Document inserted successfully'
        )

    async def insert_many(
        self,
        docs: Sequence[Mapping[str, Any]],
        table: str,
        options: Optional[BatchOptions] = None
    ) -> List[OperationResult]:
        await self._ensure_initialized()

        options = options or BatchOptions()
        delay = self.config.batch_delay if options.delay is None else options.delay
        results: List[OperationResult] = []

        for position, doc in enumerate(docs):
            result = await self.insert(doc, table)
            results.append(result)

            if not result.success and options.stop_on_error:
                break

            # the channel has a send-rate ceiling; batches stay sequential
            if delay > 0 and position < len(docs) - 1:
                await asyncio.sleep(delay)

        return results

    async def find(self, filter: Optional[Mapping[str, Any]] = None, table: str = '') -> List[Dict[str, Any]]:
        await self._ensure_initialized()

        async with self._lock:
            documents = await self._find(filter, table)
        return [copy.deepcopy(doc) for doc in documents]

    async def find_one(self, filter: Optional[Mapping[str, Any]] = None, table: str = '') -> Optional[Dict[str, Any]]:
        results = await self.find(filter, table)
        return results[0] if results else None

    async def find_by_id(self, doc_id: str, table: str) -> Optional[Dict[str, Any]]:
        return await self.find_one({'id': doc_id}, table)

    async def count(self, filter: Optional[Mapping[str, Any]] = None, table: str = '') -> int:
        await self._ensure_initialized()

        async with self._lock:
            return len(await self._find(filter, table))

    async def update(
        self,
        filter: Optional[Mapping[str, Any]],
        patch: Mapping[str, Any],
        table: str,
        options: Optional[UpdateOptions] = None
    ) -> OperationResult:
        await self._ensure_initialized()
        options = options or UpdateOptions()

        async with self._lock:
            try:
                documents = await self._find(filter, table)
            except QueryError as e:
                return OperationResult(success=False, error=e, message=f"Invalid filter: {e}")

            if not documents:
                if options.upsert:
                    return await self._upsert(filter, patch, table)
                return OperationResult(success=False, message='No documents found to update')

            updated: List[Dict[str, Any]] = []
            last_error: Optional[Exception] = None

            for document in documents:
                new_document = self._apply_patch(document, patch, options.replace)
                old_message_id = self._index.message_id_for(document['id'])

                try:
                    message_id = await self._send_document(new_document)
                except Exception as e:
                    logger.warning(f"Failed to update document {document['id']}: {e}")
                    last_error = e
                    continue

                self._index.upsert_local(new_document, message_id)
                if old_message_id is not None:
                    await self._delete_message(old_message_id)
                updated.append(copy.deepcopy(new_document))

            if updated:
                await self._publish_snapshot()

        failed = len(documents) - len(updated)
        if not updated:
            return OperationResult(
                success=False,
                data=[],
                error=last_error,
                message=f"Failed to update documents: {last_error}"
            )

        message = f"Updated {len(updated)} document(s)"
        if failed:
            message += f", {failed} failed"
        return OperationResult(success=True, data=updated, error=last_error, message=message)

    async def _upsert(self, filter: Optional[Mapping[str, Any]], patch: Mapping[str, Any], table: str) -> OperationResult:
        literals = QueryFilter.parse(filter or {}).literal_fields()
        if literals is None:
            return OperationResult(
                success=False,
                message='Upsert requires a filter made only of literal field values'
            )

        literals.pop('table', None)
        seed = expand_dotted(literals)
        return await self._insert(deep_merge(seed, patch), table)

    async def update_by_id(
        self,
        doc_id: str,
        patch: Mapping[str, Any],
        table: str,
        options: Optional[UpdateOptions] = None
    ) -> OperationResult:
        return await self.update({'id': doc_id}, patch, table, options)

    async def delete(self, filter: Optional[Mapping[str, Any]], table: str) -> OperationResult:
        await self._ensure_initialized()

        async with self._lock:
            try:
                documents = await self._find(filter, table)
            except QueryError as e:
                return OperationResult(success=False, error=e, message=f"Invalid filter: {e}")

            if not documents:
                return OperationResult(
                    success=False,
                    data={'deleted_count': 0, 'removed_count': 0},
                    message='No documents found to delete'
                )

            deleted_count = 0
            for document in documents:
                message_id = self._index.message_id_for(document['id'])
                if message_id is not None and await self._delete_message(message_id):
                    deleted_count += 1
                # local removal happens whether or not the channel delete worked
                self._index.remove_local(document['id'])
                if self.config.tombstones:
                    await self._send_tombstone(document)

            await self._publish_snapshot()

        return OperationResult(
            success=True,
            data={'deleted_count': deleted_count, 'removed_count': len(documents)},
            message=f"Deleted {deleted_count} document(s)"
        )

    async def delete_by_id(self, doc_id: str, table: str) -> OperationResult:
        return await self.delete({'id': doc_id}, table)

    async def delete_all(self, table: str) -> OperationResult:
        return await self.delete({}, table)

    async def get_tables(self) -> List[str]:
        await self._ensure_initialized()
        return sorted(self._index.tables())

    async def drop_table(self, table: str) -> OperationResult:
        return await self.delete_all(table)

    async def get_stats(self, table: Optional[str] = None) -> DatabaseStats:
        await self._ensure_initialized()

        async with self._lock:
            if table:
                documents = await self._find(None, table)
                total_messages = len(documents)
            else:
                documents = self._index.documents()
                total_messages = len(documents) + (1 if self._index.snapshot_message_id is not None else 0)

        oldest = newest = None
        oldest_ts = newest_ts = None
        for document in documents:
            ts = id_timestamp(document.get('id'))
            if ts is None:
                continue
            if oldest_ts is None or ts < oldest_ts:
                oldest, oldest_ts = document, ts
            if newest_ts is None or ts > newest_ts:
                newest, newest_ts = document, ts

        return DatabaseStats(
            total_documents=len(documents),
            total_messages=total_messages,
            oldest_document=copy.deepcopy(oldest),
            newest_document=copy.deepcopy(newest)
        )

    async def clear(self) -> OperationResult:
        tables = await self.get_tables()
        results = [await self.drop_table(table) for table in tables]

        return OperationResult(
            success=all(r.success for r in results),
            data=results,
            message=f"Cleared {len(tables)} table(s)"
        )

    def table(self, name: str) -> TableHandler:
        return TableHandler(self, name)
