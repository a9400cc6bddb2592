"""Settings loaded from the environment (and .env, if present)."""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

DEFAULT_HOST = "localhost"
DEFAULT_PORT = 8001
DEFAULT_HISTORY_PREFIX = "hmsg/"
DEFAULT_MAX_HISTORY_SIZE = 100
DEFAULT_SUBSCRIBER_QUEUE_SIZE = 1024
DEFAULT_KEEPALIVE_INTERVAL_SEC = 15.0


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, default))
    except (ValueError, TypeError):
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.environ.get(name, default))
    except (ValueError, TypeError):
        return default


@dataclass
class Settings:
    """Server and topic settings; see from_env() for the variable names."""

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    storage_dir: Optional[str] = None
    history_prefix: str = DEFAULT_HISTORY_PREFIX
    max_history_size: int = DEFAULT_MAX_HISTORY_SIZE
    subscriber_queue_size: int = DEFAULT_SUBSCRIBER_QUEUE_SIZE
    keepalive_interval: float = DEFAULT_KEEPALIVE_INTERVAL_SEC
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()
        return cls(
            host=(os.environ.get("VIA_HOST") or "").strip() or DEFAULT_HOST,
            port=_env_int("VIA_PORT", DEFAULT_PORT),
            storage_dir=(os.environ.get("VIA_STORAGE_DIR") or "").strip() or None,
            history_prefix=os.environ.get("VIA_HISTORY_PREFIX", DEFAULT_HISTORY_PREFIX),
            max_history_size=max(1, _env_int("VIA_MAX_HISTORY_SIZE", DEFAULT_MAX_HISTORY_SIZE)),
            subscriber_queue_size=max(1, _env_int("VIA_SUBSCRIBER_QUEUE_SIZE", DEFAULT_SUBSCRIBER_QUEUE_SIZE)),
            keepalive_interval=_env_float("VIA_KEEPALIVE_INTERVAL_SEC", DEFAULT_KEEPALIVE_INTERVAL_SEC),
            log_level=(os.environ.get("VIA_LOG_LEVEL") or "INFO").upper(),
        )
