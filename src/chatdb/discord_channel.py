"""
Discord Message Channel
Uses one Discord text channel as the document store's log
"""

import asyncio
import logging
from typing import AsyncIterator, List, Optional

import discord

from .channel import ChannelMessage, MessageChannel
from .errors import ChannelError, TransientChannelError


logger = logging.getLogger('chatdb.discord')


class _ChannelClient(discord.Client):
    def __init__(self, owner: 'DiscordChannel', **kwargs):
        super().__init__(**kwargs)
        self._owner = owner

    async def on_ready(self):
        logger.info(f"Logged in as: {self.user} (ID: {self.user.id if self.user else '?'})")

    async def on_message(self, message: discord.Message):
        self._owner._dispatch(message)


class DiscordChannel(MessageChannel):
    # Discord rejects messages longer than 2000 characters
    max_payload_size = 2000

    def __init__(
        self,
        token: str,
        channel_id: int,
        history_limit: Optional[int] = None,
        intents: Optional[discord.Intents] = None
    ):
        self.token = token
        self.channel_id = int(channel_id)
        self.history_limit = history_limit

        if intents is None:
            intents = discord.Intents.default()
            intents.message_content = True

        self.client = _ChannelClient(self, intents=intents)
        self._channel: Optional[discord.abc.Messageable] = None
        self._connect_task: Optional[asyncio.Task] = None
        self._subscribers: List[asyncio.Queue] = []

    async def connect(self) -> None:
        if self._channel is not None:
            return

        try:
            await self.client.login(self.token)
        except discord.LoginFailure as e:
            raise ChannelError(f"Invalid Discord token: {e}") from e
        except discord.HTTPException as e:
            raise ChannelError(f"Discord login failed: {e}") from e

        self._connect_task = asyncio.create_task(self.client.connect(reconnect=True))
        ready_task = asyncio.create_task(self.client.wait_until_ready())

        done, _ = await asyncio.wait(
            {self._connect_task, ready_task},
            return_when=asyncio.FIRST_COMPLETED
        )
        if ready_task not in done:
            ready_task.cancel()
            error = self._connect_task.exception()
            raise ChannelError(f"Discord gateway connection failed: {error}")

        channel = self.client.get_channel(self.channel_id)
        if channel is None:
            try:
                channel = await self.client.fetch_channel(self.channel_id)
            except (discord.NotFound, discord.Forbidden) as e:
                raise ChannelError(f"Cannot access channel {self.channel_id}: {e}") from e

        if not hasattr(channel, 'get_partial_message'):
            raise ChannelError(f"Channel {self.channel_id} does not hold messages")

        self._channel = channel
        logger.info(f"Using Discord channel {self.channel_id} as message log")

    async def close(self) -> None:
        for queue in self._subscribers:
            queue.put_nowait(None)
        self._subscribers.clear()

        if not self.client.is_closed():
            await self.client.close()

        if self._connect_task:
            self._connect_task.cancel()
            try:
                await self._connect_task
            except (asyncio.CancelledError, discord.DiscordException):
                pass
            self._connect_task = None

        self._channel = None

    def _require_channel(self) -> discord.abc.Messageable:
        if self._channel is None:
            raise ChannelError("Discord channel is not connected")
        return self._channel

    def _dispatch(self, message: discord.Message):
        item = ChannelMessage(
            message_id=message.id,
            text=message.content or '',
            chat_matches=message.channel.id == self.channel_id
        )
        for queue in self._subscribers:
            queue.put_nowait(item)

    async def send(self, text: str) -> int:
        channel = self._require_channel()
        try:
            message = await channel.send(text)
        except discord.Forbidden as e:
            raise ChannelError(f"Missing permission to send in {self.channel_id}: {e}") from e
        except discord.HTTPException as e:
            retry_after = getattr(e, 'retry_after', None)
            raise TransientChannelError(f"Discord send failed: {e}", retry_after=retry_after) from e
        except (OSError, asyncio.TimeoutError) as e:
            raise TransientChannelError(f"Discord send failed: {e}") from e
        return message.id

    async def delete(self, message_id: int) -> bool:
        channel = self._require_channel()
        try:
            await channel.get_partial_message(message_id).delete()
        except discord.NotFound:
            return False
        except discord.HTTPException as e:
            raise ChannelError(f"Failed to delete message {message_id}: {e}") from e
        return True

    async def history(self) -> List[ChannelMessage]:
        channel = self._require_channel()
        messages = []
        try:
            # newest first so a limit keeps the most recent messages
            async for message in channel.history(limit=self.history_limit):
                messages.append(ChannelMessage(message_id=message.id, text=message.content or ''))
        except discord.HTTPException as e:
            logger.warning(f"History read stopped after {len(messages)} message(s): {e}")
        messages.reverse()
        return messages

    def listen(self) -> AsyncIterator[ChannelMessage]:
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.append(queue)
        return self._drain(queue)

    async def _drain(self, queue: asyncio.Queue) -> AsyncIterator[ChannelMessage]:
        try:
            while True:
                item = await queue.get()
                if item is None:
                    return
                yield item
        finally:
            if queue in self._subscribers:
                self._subscribers.remove(queue)
