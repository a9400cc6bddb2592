"""
Test configuration.

Topics use a temporary storage directory; nothing touches the real
VIA_STORAGE_DIR.
"""

import asyncio
import os

import pytest

os.environ.setdefault("VIA_LOG_LEVEL", "WARNING")
os.environ.pop("VIA_STORAGE_DIR", None)

from via.history import HistoryStore  # noqa: E402
from via.message import Message  # noqa: E402
from via.registry import TopicRegistry  # noqa: E402


@pytest.fixture
def store(tmp_path):
    return HistoryStore(str(tmp_path / "history"))


@pytest.fixture
def registry(store):
    return TopicRegistry(store=store, max_history_size=100)


def make_history(*pairs):
    """[(id, data), ...] → list of Message."""
    return [Message(id=i, data=d) for i, d in pairs]


async def read_pending(subscription):
    """Read everything currently queued on a subscription without waiting for more."""
    out = []
    for _ in range(subscription.pending):
        out.append(await subscription.get())
    return out


async def close_topic(registry, key, *subscriptions):
    """Unsubscribe every handle and wait until the topic's actor has exited."""
    actor = registry.get(key)
    for subscription in subscriptions:
        registry.unsubscribe(key, subscription)
        await subscription.drain()
    if actor is not None:
        await asyncio.wait_for(actor.wait_closed(), timeout=2)
