"""
History Store.

File I/O for the persisted history of history-enabled topics. One JSON file
per topic key, named by the URL-safe base64 encoding of the key.
"""

import base64
import binascii
import json
import os
import tempfile
from typing import List, Optional

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from via.errors import HistoryCorruptError
from via.message import Message
from via.observability import get_logger

logger = get_logger("via.history")


class StoredMessage(BaseModel):
    """On-disk shape of one history entry."""

    id: int = Field(ge=1)
    data: str


_history_adapter = TypeAdapter(List[StoredMessage])


class HistoryStore:
    """
    Persists ordered message lists per topic key under a storage directory.

    Each file is owned by the single topic actor for its key, so there is no
    locking here; writes go through a temp file and os.replace.
    """

    def __init__(self, storage_dir: str):
        """
        Args:
            storage_dir: Root directory for history files (created if missing)
        """
        self.storage_dir = storage_dir
        os.makedirs(storage_dir, exist_ok=True)
        logger.info("history_store_ready", extra={"storage_dir": storage_dir})

    def path_for(self, key: str) -> str:
        """Collision-free, filesystem-safe path for a topic key."""
        encoded = base64.urlsafe_b64encode(key.encode("utf-8")).decode("ascii")
        return os.path.join(self.storage_dir, f"{encoded}.json")

    def load(self, key: str) -> Optional[List[Message]]:
        """
        Load history for a topic.

        Returns:
            Messages oldest first, or None if nothing was persisted

        Raises:
            HistoryCorruptError: If the file exists but cannot be parsed
            OSError: If the file exists but cannot be read
        """
        path = self.path_for(key)
        try:
            with open(path, "rb") as f:
                raw = f.read()
        except FileNotFoundError:
            return None

        try:
            stored = _history_adapter.validate_json(raw)
            messages = [
                Message(id=item.id, data=base64.b64decode(item.data, validate=True))
                for item in stored
            ]
        except (ValidationError, binascii.Error) as e:
            raise HistoryCorruptError(f"{path}: {e}") from e

        for prev, cur in zip(messages, messages[1:]):
            if cur.id <= prev.id:
                raise HistoryCorruptError(f"{path}: ids not strictly increasing at {cur.id}")

        logger.debug("history_loaded", extra={"path": path, "count": len(messages)})
        return messages

    def save(self, key: str, messages: List[Message]) -> None:
        """Replace the persisted history for a topic. Raises OSError on failure."""
        path = self.path_for(key)
        fd, tmp_path = tempfile.mkstemp(dir=self.storage_dir, suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump([m.to_dict() for m in messages], f)
            os.replace(tmp_path, path)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except FileNotFoundError:
                pass
            raise
        logger.debug("history_saved", extra={"path": path, "count": len(messages)})

    def delete(self, key: str) -> None:
        """Delete the persisted history for a topic; an absent file is not an error."""
        path = self.path_for(key)
        try:
            os.remove(path)
        except FileNotFoundError:
            logger.debug("history_already_absent", extra={"path": path})
            return
        logger.debug("history_deleted", extra={"path": path})
