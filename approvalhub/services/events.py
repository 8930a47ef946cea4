"""Live event sinks.

Events are freshness hints: nothing here acknowledges, retries or replays.
A client that missed an event re-queries its inbox.

The engine emits synchronously into an :class:`EventOutbox`. The outbox is
flushed once the request's transaction has committed, and the flush awaits
the asynchronous publishers (in-process bus, Redis, webhooks), so delivery
never blocks the event loop and never announces a rolled-back change.
"""

import asyncio
import json
import logging
import threading
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Set, Tuple

import httpx
import redis.asyncio as redis
from jinja2 import Template

from approvalhub.core.config import Settings

logger = logging.getLogger(__name__)


class InMemoryEventBus:
    """
    In-process fan-out to asyncio subscribers, used by the SSE stream.

    ``emit`` may be called from any thread; delivery is scheduled onto each
    subscriber's event loop.
    """

    def __init__(self, max_queue_size: int = 100):
        self.max_queue_size = max_queue_size
        self._subscribers: Dict[str, Set[Tuple[asyncio.AbstractEventLoop, asyncio.Queue]]] = {}
        self._lock = threading.Lock()

    def subscribe(self, role: str) -> asyncio.Queue:
        """Register a queue for ``role``. Must be called from a running event loop."""
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.max_queue_size)
        with self._lock:
            self._subscribers.setdefault(role, set()).add((loop, queue))
        logger.debug("SSE subscriber added for role %s", role)
        return queue

    def unsubscribe(self, role: str, queue: asyncio.Queue) -> None:
        with self._lock:
            subscribers = self._subscribers.get(role, set())
            for entry in [e for e in subscribers if e[1] is queue]:
                subscribers.discard(entry)
            if not subscribers:
                self._subscribers.pop(role, None)

    def listeners(self, role: str) -> int:
        with self._lock:
            return len(self._subscribers.get(role, ()))

    def emit(self, role: str, payload: Dict[str, Any]) -> None:
        with self._lock:
            targets = list(self._subscribers.get(role, ()))
        for loop, queue in targets:
            if loop.is_closed():
                self.unsubscribe(role, queue)
                continue
            loop.call_soon_threadsafe(_offer, queue, payload)

    async def publish(self, role: str, payload: Dict[str, Any]) -> None:
        self.emit(role, payload)


def _offer(queue: asyncio.Queue, payload: Dict[str, Any]) -> None:
    try:
        queue.put_nowait(payload)
    except asyncio.QueueFull:
        logger.warning("Dropping event for a slow subscriber (queue full)")


class RedisEventSink:
    """Publishes events on ``<prefix>:<role>`` Redis channels."""

    def __init__(
        self,
        redis_url: str,
        channel_prefix: str = "approvalhub:notifications",
        client: Optional[redis.Redis] = None,
    ):
        self.redis_url = redis_url
        self.channel_prefix = channel_prefix
        self._client = client

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.from_url(
                self.redis_url,
                socket_connect_timeout=2,
                socket_timeout=2,
            )
        return self._client

    def channel(self, role: str) -> str:
        return f"{self.channel_prefix}:{role}"

    async def publish(self, role: str, payload: Dict[str, Any]) -> None:
        await self.client.publish(self.channel(role), json.dumps(payload, default=str))


class WebhookEventSink:
    """
    POSTs events to external systems.

    An optional Jinja2 ``payload_template`` rendering to JSON replaces the
    default body; the event fields are available as template variables.
    """

    def __init__(
        self,
        urls: Iterable[str],
        timeout: float = 10,
        payload_template: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.urls = list(urls)
        self.timeout = timeout
        self.payload_template = payload_template
        self.transport = transport

    def build_payload(self, role: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        if self.payload_template:
            try:
                template = Template(self.payload_template)
                return json.loads(template.render(role=role, **payload))
            except Exception as e:
                logger.warning(f"Failed to render webhook template: {e}")
        return {"event": "approval.notification", "role": role, "data": payload}

    async def publish(self, role: str, payload: Dict[str, Any]) -> None:
        body = self.build_payload(role, payload)
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            for url in self.urls:
                try:
                    response = await client.post(url, json=body)
                    response.raise_for_status()
                except httpx.HTTPError:
                    logger.exception(f"Failed to send webhook to {url}")


class CompositeEventSink:
    """Fans one event out to several publishers; one failing publisher does not stop the rest."""

    def __init__(self, sinks: Iterable[Any]):
        self.sinks: List[Any] = list(sinks)

    async def publish(self, role: str, payload: Dict[str, Any]) -> None:
        for sink in self.sinks:
            try:
                await sink.publish(role, payload)
            except Exception:
                logger.exception("Event sink %s failed", type(sink).__name__)


class EventOutbox:
    """
    Collects the events of one unit of work for delivery after commit.

    ``emit`` is the synchronous sink the engine writes to; ``flush`` awaits
    ``target.publish`` for every collected event in order. Dropping the
    outbox (on rollback) drops its events.
    """

    def __init__(self, target: Any):
        self.target = target
        self.events: List[Tuple[str, Dict[str, Any]]] = []

    def __len__(self) -> int:
        return len(self.events)

    def emit(self, role: str, payload: Dict[str, Any]) -> None:
        self.events.append((role, payload))

    async def flush(self) -> None:
        events, self.events = self.events, []
        for role, payload in events:
            try:
                await self.target.publish(role, payload)
            except Exception:
                logger.exception("Failed to publish event for role %s", role)


def build_event_sink(settings: Settings, bus: Optional[InMemoryEventBus] = None):
    """
    Build the publisher configured by settings.

    The in-process bus is always present so the SSE stream works; Redis and
    webhooks are added on top when configured.
    """
    sinks: List[Any] = [bus or InMemoryEventBus()]
    if settings.event_backend == "redis":
        sinks.append(RedisEventSink(settings.redis_url, settings.event_channel_prefix))
    elif settings.event_backend != "memory":
        raise ValueError(f"Unknown event backend: {settings.event_backend}")
    if settings.webhook_urls_list:
        sinks.append(
            WebhookEventSink(
                settings.webhook_urls_list,
                timeout=settings.webhook_timeout,
                payload_template=settings.webhook_payload_template,
            )
        )
    return sinks[0] if len(sinks) == 1 else CompositeEventSink(sinks)


async def sse_events(
    bus: InMemoryEventBus,
    role: str,
    heartbeat_seconds: float = 30,
    is_disconnected=None,
) -> AsyncIterator[str]:
    """
    Server-sent-event frames for one role.

    Yields a comment frame on connect and every ``heartbeat_seconds`` of
    silence, and one ``notification`` event per emitted payload.
    ``is_disconnected`` is an optional coroutine function checked between
    frames (``Request.is_disconnected`` in the API).
    """
    queue = bus.subscribe(role)
    try:
        yield ": connected\n\n"
        while True:
            if is_disconnected is not None and await is_disconnected():
                break
            try:
                payload = await asyncio.wait_for(queue.get(), timeout=heartbeat_seconds)
            except asyncio.TimeoutError:
                yield ": heartbeat\n\n"
                continue
            yield f"event: notification\ndata: {json.dumps(payload, default=str)}\n\n"
    finally:
        bus.unsubscribe(role, queue)
        logger.debug("SSE subscriber for role %s closed", role)
