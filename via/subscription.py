"""Subscription: a subscriber's output handle (bounded asyncio.Queue plus a close signal)."""

import asyncio
import itertools
from typing import AsyncIterator, Optional

from via.message import Message
from via.observability import get_logger

# Sentinel that tells readers the topic actor closed this handle
_CLOSED = None

_ids = itertools.count(1)


class Subscription:
    """
    Output handle owned by a topic actor and read by the transport.

    The actor pushes with deliver() and never blocks: when the queue is full
    the oldest pending message is dropped. Readers call get() until it returns
    None, or iterate with `async for`.
    """

    def __init__(self, topic_key: str, queue_max_size: int) -> None:
        self._topic_key = topic_key
        self._subscription_id = f"sub_{next(_ids)}"
        # one extra slot so the close sentinel never evicts a message
        self._queue: "asyncio.Queue[Optional[Message]]" = asyncio.Queue(maxsize=max(1, queue_max_size) + 1)
        self._capacity = max(1, queue_max_size)
        self._closed = False
        self._dropped = 0
        self._logger = get_logger("via.subscription")

    @property
    def subscription_id(self) -> str:
        return self._subscription_id

    @property
    def topic_key(self) -> str:
        return self._topic_key

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        """Messages queued and not yet read."""
        return max(0, self._queue.qsize() - (1 if self._closed else 0))

    @property
    def dropped(self) -> int:
        """Number of messages discarded because the reader fell behind."""
        return self._dropped

    def deliver(self, message: Message) -> bool:
        """Enqueue a message; on a full queue drop the oldest. Returns False if one was dropped."""
        if self._closed:
            return True
        dropped = False
        if self._queue.qsize() >= self._capacity:
            try:
                evicted = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                evicted = None
            if evicted is not None:
                dropped = True
                self._dropped += 1
                self._logger.warning(
                    "queue_full_dropped_oldest",
                    extra={
                        "topic": self._topic_key,
                        "dropped_message_id": evicted.id,
                        "subscription_id": self._subscription_id,
                    },
                )
        self._queue.put_nowait(message)
        return not dropped

    def close(self) -> None:
        """Signal end of stream to the reader. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)

    async def get(self) -> Optional[Message]:
        """Next message, or None once the handle has been closed and drained."""
        if self._closed and self._queue.empty():
            return None
        return await self._queue.get()

    async def drain(self) -> None:
        """Discard pending messages until the close signal is observed."""
        while await self.get() is not None:
            pass

    async def __aiter__(self) -> AsyncIterator[Message]:
        while True:
            message = await self.get()
            if message is None:
                return
            yield message

    def __repr__(self) -> str:
        return f"Subscription(id={self._subscription_id!r}, topic={self._topic_key!r})"
