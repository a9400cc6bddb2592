"""Error taxonomy for topic operations."""

from typing import Optional

# Error codes (rendered by the HTTP layer)
ERROR_BAD_REQUEST = "BAD_REQUEST"
ERROR_FORBIDDEN = "FORBIDDEN"
ERROR_HISTORY_DISABLED = "HISTORY_DISABLED"
ERROR_INTERNAL = "INTERNAL"


class ViaError(Exception):
    """Base class for errors surfaced to clients."""

    code = ERROR_INTERNAL
    status_code = 500


class BadRequestError(ViaError):
    code = ERROR_BAD_REQUEST
    status_code = 400


class HistoryDisabledError(ViaError):
    """Compact, clear or resume requested on a topic whose key does not opt into history."""

    code = ERROR_HISTORY_DISABLED
    status_code = 400

    def __init__(self, key: str) -> None:
        super().__init__(f"topic {key!r} does not keep history")
        self.key = key


class ForbiddenError(ViaError):
    code = ERROR_FORBIDDEN
    status_code = 403

    def __init__(self, key: str, message: Optional[str] = None) -> None:
        super().__init__(message or f"topic {key!r} is protected by a different password")
        self.key = key


class HistoryCorruptError(ValueError):
    """A persisted history file exists but cannot be parsed."""
