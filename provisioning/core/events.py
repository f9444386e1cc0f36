"""
In-process event bus for domain events.

Events are handed to the bus by ``UnitOfWork.commit()`` only, so subscribers
never observe rows that were rolled back. When Redis is configured, every
event is also forwarded to a pub/sub channel for out-of-process consumers.
"""

from __future__ import annotations

import inspect
import json
from collections import defaultdict
from typing import Any, Awaitable, Callable, Union

import redis.asyncio as redis
import structlog

from provisioning.core.config import Settings
from provisioning.core.redis import get_redis
from provisioning.schemas.events import DomainEvent

log = structlog.get_logger()

Handler = Callable[[DomainEvent], Union[None, Awaitable[None]]]


class EventBus:
    """Dispatches events to handlers in subscription order."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = defaultdict(list)
        self._catch_all: list[Handler] = []

    def subscribe(self, event_type: str, handler: Handler) -> None:
        self._handlers[event_type].append(handler)

    def subscribe_all(self, handler: Handler) -> None:
        self._catch_all.append(handler)

    async def publish(self, event: DomainEvent) -> None:
        handlers = [*self._handlers.get(event.event_type, []), *self._catch_all]
        for handler in handlers:
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                log.exception("events.handler_failed", event_type=event.event_type)


class RedisEventForwarder:
    """Catch-all handler that publishes events as JSON to a Redis channel."""

    def __init__(self, client: redis.Redis, channel: str):
        self._client = client
        self._channel = channel

    async def __call__(self, event: DomainEvent) -> None:
        message = json.dumps(_envelope(event))
        await self._client.publish(self._channel, message)


def _envelope(event: DomainEvent) -> dict[str, Any]:
    return {"type": event.event_type, "payload": event.model_dump(mode="json")}


async def build_event_bus(settings: Settings) -> EventBus:
    """Create the bus, forwarding to Redis when ``redis_url`` is configured."""
    bus = EventBus()
    if settings.redis_url:
        client = await get_redis(settings.redis_url)
        bus.subscribe_all(RedisEventForwarder(client, settings.events_channel))
        log.info("events.redis_forwarding", channel=settings.events_channel)
    return bus
