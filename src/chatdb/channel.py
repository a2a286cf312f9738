"""
Message Channel contract
The transport the document store uses as its append-only log
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import AsyncIterator, Dict, List, Optional


logger = logging.getLogger('chatdb.channel')


@dataclass
class ChannelMessage:
    message_id: int
    text: str
    chat_matches: bool = True


class MessageChannel(ABC):
    max_payload_size: int = 4096

    async def connect(self) -> None:
        pass

    async def close(self) -> None:
        pass

    @abstractmethod
    async def send(self, text: str) -> int:
        """Post a message and return the id the channel assigned to it."""

    @abstractmethod
    async def delete(self, message_id: int) -> bool:
        """Remove a message. Returns False when it no longer exists."""

    @abstractmethod
    async def history(self) -> List[ChannelMessage]:
        """Past messages in ascending id order. May be capped."""

    @abstractmethod
    def listen(self) -> AsyncIterator[ChannelMessage]:
        """Messages arriving after the call, delivered until the channel closes."""


class InMemoryChannel(MessageChannel):
    """
    Process-local channel. Messages live in a dict keyed by id, sends are
    echoed to listeners the same way a chat service echoes a bot's own posts.
    """

    def __init__(self, max_payload_size: int = 4096, history_limit: Optional[int] = None):
        self.max_payload_size = max_payload_size
        self.history_limit = history_limit
        self._messages: Dict[int, str] = {}
        self._next_id = 1
        self._subscribers: List[asyncio.Queue] = []
        self._closed = False

    async def connect(self) -> None:
        self._closed = False

    async def close(self) -> None:
        self._closed = True
        for queue in self._subscribers:
            queue.put_nowait(None)
        self._subscribers.clear()

    def _append(self, text: str) -> int:
        message_id = self._next_id
        self._next_id += 1
        self._messages[message_id] = text

        message = ChannelMessage(message_id=message_id, text=text)
        for queue in self._subscribers:
            queue.put_nowait(message)
        return message_id

    async def send(self, text: str) -> int:
        return self._append(text)

    def post(self, text: str) -> int:
        """Append a message as some other writer in the same chat would."""
        return self._append(text)

    async def delete(self, message_id: int) -> bool:
        if message_id not in self._messages:
            return False
        del self._messages[message_id]
        return True

    async def history(self) -> List[ChannelMessage]:
        messages = [
            ChannelMessage(message_id=message_id, text=text)
            for message_id, text in sorted(self._messages.items())
        ]
        if self.history_limit is not None:
            messages = messages[-self.history_limit:] if self.history_limit > 0 else []
        return messages

    def listen(self) -> AsyncIterator[ChannelMessage]:
        # subscribe now so nothing sent before the first iteration is missed
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.append(queue)
        return self._drain(queue)

    async def _drain(self, queue: asyncio.Queue) -> AsyncIterator[ChannelMessage]:
        try:
            while True:
                message = await queue.get()
                if message is None:
                    return
                yield message
        finally:
            if queue in self._subscribers:
                self._subscribers.remove(queue)

    def texts(self) -> List[str]:
        return [text for _, text in sorted(self._messages.items())]

    def __len__(self) -> int:
        return len(self._messages)
