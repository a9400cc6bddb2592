"""HTTP server: GET streams (SSE or one-shot), POST publish, PUT compact, DELETE clear history."""

from dotenv import load_dotenv
load_dotenv()

import asyncio
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable

from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse
from starlette.background import BackgroundTask

from via.config import Settings
from via.errors import BadRequestError, ForbiddenError, ViaError
from via.history import HistoryStore
from via.observability import get_logger
from via.protocol import (
    HealthResponse,
    PublishAck,
    SSE_PING,
    ack,
    error_from,
    parse_cursor,
    split_password,
    sse_event,
    stats_response,
)
from via.registry import TopicRegistry
from via.subscription import Subscription

logger = get_logger("via.server")


def build_registry(settings: Settings) -> TopicRegistry:
    """Registry wired to a history store when a storage dir is configured."""
    store = HistoryStore(settings.storage_dir) if settings.storage_dir else None
    return TopicRegistry(
        store=store,
        history_prefix=settings.history_prefix,
        max_history_size=settings.max_history_size,
        subscriber_queue_size=settings.subscriber_queue_size,
    )


settings = Settings.from_env()
registry = build_registry(settings)
_start_time: float = time.time()


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _start_time
    _start_time = time.time()
    logger.info(
        "server_started",
        extra={"storage_dir": settings.storage_dir, "history_prefix": settings.history_prefix},
    )
    yield


app = FastAPI(title="via", lifespan=lifespan)


@app.exception_handler(ViaError)
async def via_error_handler(request: Request, exc: ViaError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=error_from(exc))


# ---- Admin (registered before the catch-all topic routes) ----

admin = APIRouter(prefix="/_")


@admin.get("/health")
def health() -> JSONResponse:
    """GET /_/health → { uptime_sec, topics, subscribers }."""
    body = HealthResponse(
        uptime_sec=time.time() - _start_time,
        topics=registry.topic_count(),
        subscribers=registry.subscriber_count(),
    ).to_dict()
    return JSONResponse(content=body, status_code=200)


@admin.get("/stats")
def stats() -> JSONResponse:
    """GET /_/stats → { topics: { key: { subscribers, last_id, history } }, counters }."""
    body = stats_response(registry.topic_stats(), registry.metrics.snapshot())
    return JSONResponse(content=body, status_code=200)


app.include_router(admin)


# ---- Helpers ----

def _cursor(request: Request) -> int:
    """Resume cursor from Last-Event-ID (set by EventSource on reconnect) or ?last_id=."""
    raw = request.headers.get("last-event-id")
    if raw is None:
        raw = request.query_params.get("last_id")
    return parse_cursor(raw)


def _topic(path: str):
    """URL path → (key, password); the key may contain slashes but not be empty."""
    key, password = split_password(path)
    if not key:
        raise BadRequestError("topic key is required")
    return key, password


def _log_request(request: Request) -> None:
    logger.debug("request", extra={"method": request.method, "url": str(request.url)})


def _releaser(key: str, subscription: Subscription) -> Callable[[], None]:
    """Unsubscribe exactly once, however many exit paths call it."""
    released = False

    def release() -> None:
        nonlocal released
        if released:
            return
        released = True
        registry.unsubscribe(key, subscription)

    return release


async def _release_async(release: Callable[[], None]) -> None:
    """Release on the event loop thread (registry operations are not thread-safe)."""
    release()


async def event_stream(
    subscription: Subscription,
    release: Callable[[], None],
    include_id: bool = True,
    keepalive: float = 15.0,
) -> AsyncIterator[bytes]:
    """Render a subscription as SSE frames, with a ping comment after each idle keepalive interval."""
    try:
        while True:
            if keepalive > 0:
                try:
                    message = await asyncio.wait_for(subscription.get(), timeout=keepalive)
                except asyncio.TimeoutError:
                    yield SSE_PING
                    continue
            else:
                message = await subscription.get()
            if message is None:
                return
            yield sse_event(message, include_id=include_id)
    finally:
        # fan-out never blocks on this handle, so no drain is needed here
        release()


async def _wait_disconnected(request: Request) -> None:
    while True:
        message = await request.receive()
        if message["type"] == "http.disconnect":
            return


async def _next_message(request: Request, key: str, subscription: Subscription) -> Response:
    """Wait for one message (or client disconnect), then unsubscribe and drain."""
    get_task = asyncio.ensure_future(subscription.get())
    watch_task = asyncio.ensure_future(_wait_disconnected(request))
    try:
        await asyncio.wait({get_task, watch_task}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in (get_task, watch_task):
            if not task.done():
                task.cancel()
        registry.unsubscribe(key, subscription)

    message = None
    if get_task.done() and not get_task.cancelled():
        message = get_task.result()
    await subscription.drain()

    if message is None:
        return Response(status_code=204)
    headers = {}
    if registry.is_history_key(key):
        headers["Last-Event-ID"] = str(message.id)
    return Response(content=message.data, media_type="application/octet-stream", headers=headers)


# ---- Topics ----

@app.get("/{path:path}")
async def subscribe(path: str, request: Request) -> Response:
    """GET /{key[:password]}[?sse] → event stream, or the next single message."""
    _log_request(request)
    key, password = _topic(path)
    subscription = await registry.subscribe(key, _cursor(request), password)

    if "sse" not in request.query_params:
        return await _next_message(request, key, subscription)

    release = _releaser(key, subscription)
    stream = event_stream(
        subscription,
        release,
        include_id=registry.is_history_key(key),
        keepalive=settings.keepalive_interval,
    )
    return StreamingResponse(
        stream,
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        background=BackgroundTask(_release_async, release),
    )


def _reject_password(key: str, password: str) -> None:
    if password:
        raise ForbiddenError(key, "passwords are only accepted when subscribing")


@app.post("/{path:path}")
async def publish(path: str, request: Request) -> JSONResponse:
    """POST /{key} with the payload as body → { status, topic[, remaining] }."""
    _log_request(request)
    key, password = _topic(path)
    _reject_password(key, password)
    data = await request.body()
    remaining = await registry.publish(key, data)
    return JSONResponse(content=PublishAck(topic=key, remaining=remaining).to_dict(), status_code=200)


@app.put("/{path:path}")
async def compact(path: str, request: Request) -> JSONResponse:
    """PUT /{key} with Last-Event-ID (or ?last_id=) → replace history up to that id with the body."""
    _log_request(request)
    key, password = _topic(path)
    _reject_password(key, password)
    data = await request.body()
    await registry.compact(key, _cursor(request), data)
    return JSONResponse(content=ack(key), status_code=200)


@app.delete("/{path:path}")
async def clear_history(path: str, request: Request) -> JSONResponse:
    """DELETE /{key} → drop retained and persisted history."""
    _log_request(request)
    key, password = _topic(path)
    _reject_password(key, password)
    await registry.clear_history(key)
    return JSONResponse(content=ack(key), status_code=200)
