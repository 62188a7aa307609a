"""Fan-out of typed chat events to subscribers registered by event name."""
from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable

from pydantic import ValidationError as PydanticValidationError

from chat_client.domain.events import ChatEvent
from chat_client.domain.value_objects.enums import EventName
from chat_client.infrastructure.transport.decoder import EventDecoder

logger = logging.getLogger(__name__)

EventHandler = Callable[[Any], Awaitable[None] | None]


class EventRouter:
    """Observer registry keyed by ``EventName``.

    Raw transport events are queued by ``feed`` and dispatched one at a time
    by a single pump task, so handlers see events in arrival order. A handler
    that raises is logged and the remaining handlers still run.
    """

    def __init__(self, decoder: EventDecoder | None = None) -> None:
        self._decoder = decoder
        self._handlers: dict[EventName, list[EventHandler]] = {}
        self._queue: asyncio.Queue[tuple[str, Any]] = asyncio.Queue()
        self._task: asyncio.Task[None] | None = None

    # -- registry ------------------------------------------------------------

    def subscribe(self, name: EventName, handler: EventHandler) -> None:
        handlers = self._handlers.setdefault(name, [])
        if handler not in handlers:
            handlers.append(handler)

    def unsubscribe(self, name: EventName, handler: EventHandler) -> None:
        handlers = self._handlers.get(name)
        if handlers and handler in handlers:
            handlers.remove(handler)

    def clear(self) -> None:
        self._handlers.clear()

    def handler_count(self, name: EventName) -> int:
        return len(self._handlers.get(name, ()))

    # -- pump ----------------------------------------------------------------

    async def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.create_task(self._pump(), name="chat-event-router")
        logger.debug("Event router started")

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            logger.debug("Event router stopped")

    def feed(self, wire_name: str, payload: Any) -> None:
        """Queue a raw inbound event. Safe to call from transport callbacks."""
        self._queue.put_nowait((wire_name, payload))

    async def drain(self) -> None:
        """Wait until every queued raw event has been dispatched."""
        await self._queue.join()

    async def _pump(self) -> None:
        while True:
            wire_name, payload = await self._queue.get()
            try:
                await self.dispatch_raw(wire_name, payload)
            except Exception:
                logger.exception("Unexpected error dispatching %s", wire_name)
            finally:
                self._queue.task_done()

    # -- dispatch ------------------------------------------------------------

    async def dispatch_raw(self, wire_name: str, payload: Any) -> None:
        if self._decoder is None:
            logger.debug("No decoder configured, dropping %s", wire_name)
            return
        try:
            event = self._decoder.decode(wire_name, payload)
        except (PydanticValidationError, ValueError) as exc:
            logger.warning("Discarding malformed %s payload: %s", wire_name, exc)
            return
        if event is not None:
            await self.publish(event)

    async def publish(self, event: ChatEvent) -> None:
        for handler in list(self._handlers.get(event.name, ())):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Handler %r failed for %s", handler, event.name)
