"""Protocol shapes for HTTP: key/cursor parsing, SSE framing, JSON acknowledgements."""

from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional, Tuple

from via.errors import ViaError
from via.message import Message


# ---- Request parsing ----

def split_password(path: str) -> Tuple[str, str]:
    """Split 'key:password' into (key, password); password is '' when absent."""
    key, sep, password = path.partition(":")
    if not sep:
        return path, ""
    return key, password


def parse_cursor(raw: Optional[str]) -> int:
    """Parse a last-seen-id; anything unparsable or negative means 'no cursor' (0)."""
    if raw is None:
        return 0
    try:
        value = int(raw.strip())
    except (ValueError, AttributeError):
        return 0
    return value if value > 0 else 0


# ---- Server-sent events ----

SSE_PING = b": ping\n\n"


def sse_event(message: Message, include_id: bool = True) -> bytes:
    """
    Frame one message as an SSE event; multi-line payloads become several data lines.

    SSE is a text protocol: payloads that are not valid UTF-8 are sent with
    U+FFFD in place of the undecodable bytes. Use the blocking GET for binary data.
    """
    lines = []
    if include_id:
        lines.append(f"id: {message.id}")
    text = message.text().replace("\r\n", "\n").replace("\r", "\n")
    for line in text.split("\n"):
        lines.append(f"data: {line}")
    return ("\n".join(lines) + "\n\n").encode("utf-8")


# ---- Responses ----

@dataclass
class HealthResponse:
    """Response for GET /_/health."""
    uptime_sec: float
    topics: int
    subscribers: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "uptime_sec": int(self.uptime_sec),
            "topics": self.topics,
            "subscribers": self.subscribers,
        }


@dataclass
class PublishAck:
    """Response for POST /{key}; remaining is only present for history topics."""
    topic: str
    status: str = "ok"
    remaining: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        if d.get("remaining") is None:
            d.pop("remaining", None)
        return d


def ack(topic: str) -> Dict[str, Any]:
    return {"status": "ok", "topic": topic}


def stats_response(topics_stats: Dict[str, Dict[str, int]], counters: Dict[str, int]) -> Dict[str, Any]:
    """Response for GET /_/stats."""
    return {"topics": topics_stats, "counters": counters}


def error_body(code: str, message: str) -> Dict[str, Any]:
    return {"error": {"code": code, "message": message}}


def error_from(exc: ViaError) -> Dict[str, Any]:
    return error_body(exc.code, str(exc))
