"""Command line entry point: python -m via [-v] [-d DIR] [[host]:port]."""

import argparse
import os
from typing import List, Optional, Tuple

import uvicorn

from via.config import DEFAULT_HOST, DEFAULT_PORT
from via.observability import get_logger


def parse_address(addr: Optional[str]) -> Tuple[str, int]:
    """'host:port', ':port' or 'host' → (host, port)."""
    if not addr:
        return DEFAULT_HOST, DEFAULT_PORT
    host, sep, port = addr.rpartition(":")
    if not sep:
        return addr, DEFAULT_PORT
    return host or DEFAULT_HOST, int(port)


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="via", description="Simple HTTP pub/sub server")
    parser.add_argument("-v", "--verbose", action="store_true", help="enable verbose logs")
    parser.add_argument("-d", "--storage-dir", help="directory for persisted topic history")
    parser.add_argument("address", nargs="?", help="[host]:port to listen on (default localhost:8001)")
    args = parser.parse_args(argv)

    try:
        host, port = parse_address(args.address)
    except ValueError:
        parser.error(f"invalid address: {args.address!r}")

    # server.py reads its settings from the environment at import time
    if args.verbose:
        os.environ["VIA_LOG_LEVEL"] = "DEBUG"
    if args.storage_dir:
        os.environ["VIA_STORAGE_DIR"] = args.storage_dir

    get_logger("via.cli").info("serving", extra={"url": f"http://{host}:{port}"})
    uvicorn.run("server:app", host=host, port=port, log_level="debug" if args.verbose else "info")


if __name__ == "__main__":
    main()
