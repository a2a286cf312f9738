"""Shared fixtures for the document store tests."""

import asyncio
from typing import Callable, Optional, Set

import pytest
import pytest_asyncio

from src.chatdb import ChatDB, ChatDBConfig, InMemoryChannel
from src.chatdb.errors import ChannelError, TransientChannelError


class FlakyChannel(InMemoryChannel):
    """In-memory channel with switchable send and delete failures."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.fail_send_when: Optional[Callable[[str], bool]] = None
        self.fail_send_calls: Set[int] = set()
        self.fail_deletes = False
        self.send_calls = 0
        self.delete_calls = 0

    async def send(self, text: str) -> int:
        self.send_calls += 1
        if self.send_calls in self.fail_send_calls:
            raise TransientChannelError("simulated outage")
        if self.fail_send_when is not None and self.fail_send_when(text):
            raise TransientChannelError("simulated outage")
        return await super().send(text)

    async def delete(self, message_id: int) -> bool:
        self.delete_calls += 1
        if self.fail_deletes:
            raise ChannelError("simulated delete failure")
        return await super().delete(message_id)

    def snapshot_texts(self):
        return [t for t in self.texts() if t.startswith('TDB:INDEX:')]

    def document_texts(self):
        return [t for t in self.texts() if t.startswith('TDB:{')]


async def settle(rounds: int = 5):
    """Let background listener tasks drain their queues."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def config() -> ChatDBConfig:
    return ChatDBConfig(batch_delay=0, retry_delay=0, max_retries=2)


@pytest.fixture
def channel() -> FlakyChannel:
    return FlakyChannel()


@pytest_asyncio.fixture
async def db(channel, config):
    database = ChatDB(channel, config)
    await database.initialize()
    yield database
    await database.close()
