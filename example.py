"""Example: in-process topic registry with a history-enabled topic."""

import asyncio
import logging
import tempfile

from via import HistoryStore, TopicRegistry

logging.basicConfig(level=logging.INFO)


async def main() -> None:
    with tempfile.TemporaryDirectory() as storage_dir:
        registry = TopicRegistry(store=HistoryStore(storage_dir), max_history_size=2)

        for payload in (b"A", b"B", b"C"):
            remaining = await registry.publish("hmsg/events", payload)
            print("published", payload, "remaining", remaining)

        subscription = await registry.subscribe("hmsg/events", last_id=1)
        for _ in range(2):
            message = await subscription.get()
            print("replayed", message.id, message.data)

        registry.unsubscribe("hmsg/events", subscription)
        await subscription.drain()


if __name__ == "__main__":
    asyncio.run(main())
