"""Async event aggregator for host notifications.

Provides:
- Handler registration per event type, or for all events
- Error isolation (a failing handler doesn't stop the others)
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

from taler_gateway.events.types import HostEvent

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=HostEvent)

EventHandler = Callable[[Any], "Awaitable[None] | None"]


@dataclass
class HandlerRegistration:
    """Registration of an event handler."""

    handler: EventHandler
    event_types: set[str] | None  # None = all events


class EventAggregator:
    """Publishes host events to subscribed handlers.

    Usage:
        events = EventAggregator()

        async def on_update(event: InvoiceNeedUpdate) -> None:
            await invoices.update_status(event.invoice_id)

        events.subscribe(InvoiceNeedUpdate, on_update)
        await events.publish(InvoiceNeedUpdate(invoice_id="..."))
    """

    def __init__(self) -> None:
        self._handlers: list[HandlerRegistration] = []

    def subscribe(
        self,
        event_type: type[T] | list[type[T]],
        handler: EventHandler,
    ) -> None:
        """Register handler (sync or async) for specific event type(s)."""
        if isinstance(event_type, list):
            types = {t.__name__ for t in event_type}
        else:
            types = {event_type.__name__}
        self._handlers.append(HandlerRegistration(handler=handler, event_types=types))

    def subscribe_all(self, handler: EventHandler) -> None:
        """Register handler for all events."""
        self._handlers.append(HandlerRegistration(handler=handler, event_types=None))

    def unsubscribe(self, handler: EventHandler) -> None:
        self._handlers = [reg for reg in self._handlers if reg.handler != handler]

    async def publish(self, event: HostEvent) -> list[Exception]:
        """Publish an event to all matching handlers.

        Returns list of any exceptions raised by handlers.
        """
        event_type = event.event_type
        tasks: list[asyncio.Task[None]] = []
        errors: list[Exception] = []

        for reg in self._handlers:
            if reg.event_types is not None and event_type not in reg.event_types:
                continue

            if inspect.iscoroutinefunction(reg.handler):
                tasks.append(asyncio.create_task(self._call_async_handler(reg.handler, event)))
                continue

            try:
                result = reg.handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.exception("Handler %s failed for event %s", reg.handler, event_type)
                errors.append(e)

        if tasks:
            results = await asyncio.gather(*tasks, return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    errors.append(result)

        return errors

    async def _call_async_handler(self, handler: EventHandler, event: HostEvent) -> None:
        try:
            await handler(event)  # type: ignore[misc]
        except Exception:
            logger.exception(
                "Async handler %s failed for event %s", handler, event.event_type
            )
            raise
