"""Message class for topic payloads."""

import base64
from dataclasses import dataclass
from typing import Any, Dict


@dataclass(frozen=True)
class Message:
    """A message published to a topic; ids are unique and increasing within a topic."""

    id: int
    data: bytes

    def to_dict(self) -> Dict[str, Any]:
        """Serialize message for persistence (data is base64 encoded)."""
        return {
            "id": self.id,
            "data": base64.b64encode(self.data).decode("ascii"),
        }

    def text(self) -> str:
        """Payload decoded as UTF-8 for text transports; undecodable bytes are replaced."""
        return self.data.decode("utf-8", errors="replace")
