"""Topic actor: owns one topic's state and applies its commands one at a time."""

import asyncio
from collections import deque
from typing import TYPE_CHECKING, Callable, Deque, List, Optional, Set, Tuple

from via.commands import ClearHistory, Command, Compact, Publish, Subscribe, Unsubscribe
from via.errors import HistoryCorruptError, HistoryDisabledError
from via.message import Message
from via.observability import Metrics, get_logger
from via.subscription import Subscription

if TYPE_CHECKING:
    from via.history import HistoryStore

DEFAULT_MAX_HISTORY_SIZE = 100
DEFAULT_QUEUE_MAX_SIZE = 1024

logger = get_logger("via.topic")


class TopicActor:
    """
    Named channel backed by a single asyncio task.

    Every mutation (subscribe, unsubscribe, publish, compact, clear) is a
    command on one queue, so history, id assignment and fan-out never
    interleave. The task ends, and calls on_idle, as soon as the topic has no
    subscribers and no queued commands.
    """

    def __init__(
        self,
        key: str,
        *,
        history_enabled: bool = False,
        max_history_size: int = DEFAULT_MAX_HISTORY_SIZE,
        subscriber_queue_size: int = DEFAULT_QUEUE_MAX_SIZE,
        store: Optional["HistoryStore"] = None,
        password: Optional[str] = None,
        on_idle: Optional[Callable[["TopicActor"], None]] = None,
        metrics: Optional[Metrics] = None,
    ) -> None:
        self._key = key
        self._history_enabled = history_enabled
        self._max_history_size = max(1, max_history_size)
        # a fresh handle must hold a full replay without dropping
        self._queue_size = max(subscriber_queue_size, self._max_history_size + 1)
        self._store = store if history_enabled else None
        self._password = password
        self._on_idle = on_idle
        self._metrics = metrics or Metrics()

        self._commands: "asyncio.Queue[Command]" = asyncio.Queue()
        self._history: Deque[Message] = deque()
        self._last_id = 0
        self._subscribers: Set[Subscription] = set()
        self._task: Optional[asyncio.Task] = None
        self._stopped = False

    @property
    def key(self) -> str:
        return self._key

    @property
    def password(self) -> Optional[str]:
        """Shared secret, or None until the first subscriber sets one."""
        return self._password

    def claim_password(self, password: str) -> bool:
        """Fix the password if no subscriber has yet; True when it matches."""
        if self._password is None:
            self._password = password
        return self._password == password

    @property
    def history_enabled(self) -> bool:
        return self._history_enabled

    @property
    def last_id(self) -> int:
        return self._last_id

    @property
    def history(self) -> Tuple[Message, ...]:
        return tuple(self._history)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    @property
    def stopped(self) -> bool:
        return self._stopped

    def start(self) -> None:
        """Start the command loop on the running event loop (idempotent)."""
        if self._task is not None:
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name=f"topic:{self._key}")

    async def wait_closed(self) -> None:
        if self._task is not None:
            await asyncio.shield(self._task)

    def submit(self, command: Command) -> asyncio.Future:
        """Queue a command without awaiting; the returned future resolves once it is applied."""
        if self._stopped:
            raise RuntimeError(f"topic {self._key!r} is no longer running")
        self._commands.put_nowait(command)
        return command.result

    # ---- Loop ----

    async def _run(self) -> None:
        try:
            if self._store is not None:
                await self._load_history()
            while True:
                if not self._subscribers and self._commands.empty():
                    break
                command = await self._commands.get()
                await self._apply(command)
        finally:
            self._stopped = True
            self._cancel_pending()
            logger.debug("topic_idle", extra={"topic": self._key, "last_id": self._last_id})
            if self._on_idle is not None:
                self._on_idle(self)

    def _cancel_pending(self) -> None:
        while not self._commands.empty():
            command = self._commands.get_nowait()
            command.result.cancel()
        for subscription in self._subscribers:
            subscription.close()
        self._subscribers.clear()

    async def _apply(self, command: Command) -> None:
        if command.result.done():
            # caller gave up before this command was reached
            return
        try:
            if isinstance(command, Subscribe):
                result = self._subscribe(command.last_id)
            elif isinstance(command, Unsubscribe):
                result = self._unsubscribe(command.subscription)
            elif isinstance(command, Publish):
                result = await self._publish(command.data)
            elif isinstance(command, Compact):
                result = await self._compact(command.new_id, command.data)
            elif isinstance(command, ClearHistory):
                result = await self._clear_history()
            else:
                raise TypeError(f"unknown command {command!r}")
        except asyncio.CancelledError:
            command.result.cancel()
            raise
        except Exception as e:
            logger.exception(
                "command_failed",
                extra={"topic": self._key, "command": type(command).__name__, "error": str(e)},
            )
            if not command.result.done():
                command.result.set_exception(e)
            return
        if not command.result.done():
            command.result.set_result(result)

    # ---- Transitions ----

    def _subscribe(self, last_id: int) -> Subscription:
        subscription = Subscription(self._key, self._queue_size)
        replayed = 0
        for message in self._history:
            if message.id > last_id:
                subscription.deliver(message)
                replayed += 1
        self._subscribers.add(subscription)
        logger.info(
            "subscribed",
            extra={
                "topic": self._key,
                "subscription_id": subscription.subscription_id,
                "last_id": last_id,
                "replayed": replayed,
            },
        )
        return subscription

    def _unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscribers:
            self._subscribers.discard(subscription)
            logger.info(
                "unsubscribed",
                extra={"topic": self._key, "subscription_id": subscription.subscription_id},
            )
        subscription.close()

    async def _publish(self, data: bytes) -> Optional[int]:
        message = Message(id=self._last_id + 1, data=data)
        self._last_id = message.id
        remaining = None
        if self._history_enabled:
            self._history.append(message)
            self._trim()
            await self._persist()
            remaining = self._max_history_size - len(self._history)

        logger.info(
            "delivering",
            extra={
                "topic": self._key,
                "message_id": message.id,
                "subscriber_count": len(self._subscribers),
            },
        )
        self._metrics.increment("messages_published")
        for subscription in list(self._subscribers):
            if not subscription.deliver(message):
                self._metrics.increment("messages_dropped")
        return remaining

    async def _compact(self, new_id: int, data: bytes) -> None:
        if not self._history_enabled:
            raise HistoryDisabledError(self._key)
        if self._history and new_id < self._history[0].id:
            logger.debug(
                "stale_compaction_ignored",
                extra={"topic": self._key, "new_id": new_id, "oldest_id": self._history[0].id},
            )
            return
        kept: List[Message] = [m for m in self._history if m.id > new_id]
        self._history = deque([Message(id=new_id, data=data)] + kept)
        self._trim()
        self._last_id = max(self._last_id, new_id)
        logger.info(
            "compacted",
            extra={"topic": self._key, "new_id": new_id, "kept": len(kept)},
        )
        await self._persist()

    async def _clear_history(self) -> None:
        if not self._history_enabled:
            raise HistoryDisabledError(self._key)
        self._history.clear()
        self._last_id = 0
        logger.info("history_cleared", extra={"topic": self._key})
        if self._store is None:
            return
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._store.delete, self._key)
        except OSError:
            self._metrics.increment("persistence_errors")
            logger.exception("history_delete_failed", extra={"topic": self._key})

    # ---- History buffer ----

    def _trim(self) -> None:
        while len(self._history) > self._max_history_size:
            self._history.popleft()

    async def _load_history(self) -> None:
        loop = asyncio.get_running_loop()
        try:
            messages = await loop.run_in_executor(None, self._store.load, self._key)
        except HistoryCorruptError as e:
            self._metrics.increment("persistence_errors")
            logger.warning("history_corrupt", extra={"topic": self._key, "error": str(e)})
            return
        except OSError:
            self._metrics.increment("persistence_errors")
            logger.exception("history_load_failed", extra={"topic": self._key})
            return
        if not messages:
            return
        self._history = deque(messages)
        self._trim()
        self._last_id = self._history[-1].id
        logger.info(
            "history_loaded",
            extra={"topic": self._key, "count": len(self._history), "last_id": self._last_id},
        )

    async def _persist(self) -> None:
        if self._store is None:
            return
        snapshot = list(self._history)
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._store.save, self._key, snapshot)
        except OSError:
            self._metrics.increment("persistence_errors")
            logger.exception("history_save_failed", extra={"topic": self._key})

    def __repr__(self) -> str:
        return f"TopicActor(key={self._key!r}, subscribers={len(self._subscribers)}, last_id={self._last_id})"
