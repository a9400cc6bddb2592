"""In-memory registry of live topic actors."""

import asyncio
import threading
from typing import Dict, Optional

from via.commands import ClearHistory, Compact, Publish, Subscribe, Unsubscribe
from via.config import DEFAULT_HISTORY_PREFIX
from via.errors import BadRequestError, ForbiddenError, HistoryDisabledError
from via.history import HistoryStore
from via.observability import Metrics, get_logger
from via.subscription import Subscription
from via.topic import DEFAULT_MAX_HISTORY_SIZE, DEFAULT_QUEUE_MAX_SIZE, TopicActor

logger = get_logger("via.registry")


class TopicRegistry:
    """
    Maps topic keys to at most one running TopicActor.

    Actors are created on first reference and remove themselves once idle.
    Every operation looks up (or creates) the actor and enqueues its command
    with no await in between, so a command never reaches an actor that has
    already deregistered.
    """

    def __init__(
        self,
        store: Optional[HistoryStore] = None,
        history_prefix: str = DEFAULT_HISTORY_PREFIX,
        max_history_size: int = DEFAULT_MAX_HISTORY_SIZE,
        subscriber_queue_size: int = DEFAULT_QUEUE_MAX_SIZE,
        metrics: Optional[Metrics] = None,
    ) -> None:
        self._store = store
        self._history_prefix = history_prefix
        self._max_history_size = max_history_size
        self._subscriber_queue_size = subscriber_queue_size
        self._metrics = metrics or Metrics()
        self._topics: Dict[str, TopicActor] = {}
        self._lock = threading.Lock()

    @property
    def metrics(self) -> Metrics:
        return self._metrics

    def is_history_key(self, key: str) -> bool:
        """Whether a key falls in the history-enabled namespace."""
        return bool(self._history_prefix) and key.startswith(self._history_prefix)

    # ---- Actor lifecycle ----

    def get(self, key: str) -> Optional[TopicActor]:
        """Return the live actor for key or None."""
        with self._lock:
            return self._topics.get(key)

    def get_or_create(self, key: str, password: Optional[str] = None) -> TopicActor:
        """
        Return the live actor for key, constructing and starting one if needed.
        A password of None leaves the topic open for its first subscriber to claim.
        """
        with self._lock:
            actor = self._topics.get(key)
            if actor is not None:
                return actor
            actor = TopicActor(
                key,
                history_enabled=self.is_history_key(key),
                max_history_size=self._max_history_size,
                subscriber_queue_size=self._subscriber_queue_size,
                store=self._store,
                password=password,
                on_idle=self.release,
                metrics=self._metrics,
            )
            self._topics[key] = actor
        actor.start()
        self._metrics.increment("topics_created")
        logger.info(
            "topic_created",
            extra={"topic": key, "history_enabled": actor.history_enabled},
        )
        return actor

    def release(self, actor: TopicActor) -> None:
        """Remove an actor that has gone idle. Called only from the actor's own loop."""
        with self._lock:
            if self._topics.get(actor.key) is not actor:
                return
            del self._topics[actor.key]
        self._metrics.increment("topics_released")
        logger.info("topic_released", extra={"topic": actor.key})

    # ---- Operations ----

    async def subscribe(self, key: str, last_id: int = 0, password: str = "") -> Subscription:
        """
        Attach a new subscriber, replaying retained history with id > last_id first.
        Raises ForbiddenError on a password mismatch and HistoryDisabledError
        when a resume cursor is given for a topic without history.
        """
        if last_id > 0 and not self.is_history_key(key):
            raise HistoryDisabledError(key)
        actor = self.get_or_create(key, password)
        if not actor.claim_password(password):
            raise ForbiddenError(key)
        future = actor.submit(Subscribe(last_id=max(0, last_id)))
        try:
            return await future
        except asyncio.CancelledError:
            # the handle was created but its caller is gone
            if future.done() and not future.cancelled() and future.exception() is None:
                self.unsubscribe(key, future.result())
            raise

    def unsubscribe(self, key: str, subscription: Subscription) -> None:
        """
        Detach a subscriber. Does not await, so it is safe from cancelled
        contexts; the actor closes the handle once the command is applied.
        """
        actor = self.get(key)
        if actor is None or actor.stopped:
            subscription.close()
            return
        actor.submit(Unsubscribe(subscription=subscription))

    async def publish(self, key: str, data: bytes) -> Optional[int]:
        """Publish data; returns remaining history capacity for history topics, else None."""
        actor = self.get_or_create(key)
        return await actor.submit(Publish(data=data))

    async def compact(self, key: str, new_id: int, data: bytes) -> None:
        """Collapse history up to new_id into one summary message."""
        if not self.is_history_key(key):
            raise HistoryDisabledError(key)
        if new_id < 1:
            raise BadRequestError("compaction requires a positive message id")
        actor = self.get_or_create(key)
        await actor.submit(Compact(new_id=new_id, data=data))

    async def clear_history(self, key: str) -> None:
        """Drop retained and persisted history and reset ids."""
        if not self.is_history_key(key):
            raise HistoryDisabledError(key)
        actor = self.get_or_create(key)
        await actor.submit(ClearHistory())

    # ---- Introspection ----

    def topic_count(self) -> int:
        """Number of live topics."""
        with self._lock:
            return len(self._topics)

    def subscriber_count(self) -> int:
        """Total subscribers across live topics."""
        with self._lock:
            actors = list(self._topics.values())
        return sum(a.subscriber_count for a in actors)

    def topic_stats(self) -> Dict[str, Dict[str, int]]:
        """Return { key: { subscribers, last_id, history } } for the stats endpoint."""
        with self._lock:
            actors = list(self._topics.values())
        return {
            a.key: {
                "subscribers": a.subscriber_count,
                "last_id": a.last_id,
                "history": len(a.history),
            }
            for a in actors
        }
