"""via: per-topic pub/sub over HTTP streams with optional persisted history."""

from via.message import Message
from via.history import HistoryStore
from via.subscription import Subscription
from via.topic import TopicActor
from via.registry import TopicRegistry

__all__ = [
    "Message",
    "HistoryStore",
    "Subscription",
    "TopicActor",
    "TopicRegistry",
]
