"""Commands accepted by a topic actor's queue."""

import asyncio
from dataclasses import dataclass, field
from typing import Union

from via.subscription import Subscription


def _new_future() -> asyncio.Future:
    return asyncio.get_running_loop().create_future()


@dataclass
class Subscribe:
    last_id: int = 0
    result: asyncio.Future = field(default_factory=_new_future, repr=False)


@dataclass
class Unsubscribe:
    subscription: Subscription
    result: asyncio.Future = field(default_factory=_new_future, repr=False)


@dataclass
class Publish:
    data: bytes
    result: asyncio.Future = field(default_factory=_new_future, repr=False)


@dataclass
class Compact:
    """Replace history up to and including new_id with a single summary message."""

    new_id: int
    data: bytes
    result: asyncio.Future = field(default_factory=_new_future, repr=False)


@dataclass
class ClearHistory:
    result: asyncio.Future = field(default_factory=_new_future, repr=False)


Command = Union[Subscribe, Unsubscribe, Publish, Compact, ClearHistory]
