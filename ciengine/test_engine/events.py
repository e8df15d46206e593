"""In-process event bus carrying pipeline progress to subscribers."""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime

import aiohttp

from ciengine.test_engine.models.pipeline import (
    PipelineResult,
    PipelineStage,
    StageResult,
    Trigger,
)
from ciengine.test_engine.models.test_result import utcnow

logger = logging.getLogger(__name__)


@dataclass
class Event:
    """Base class for all events."""

    execution_id: str = ""
    timestamp: datetime = field(default_factory=utcnow)

    @property
    def event_type(self) -> str:
        """Event type name."""
        return self.__class__.__name__


@dataclass
class PipelineStarted(Event):
    """A pipeline run started."""

    trigger: Trigger = "manual"
    planned_stages: tuple[PipelineStage, ...] = ()


@dataclass
class StageStarted(Event):
    """A stage started."""

    stage: PipelineStage = PipelineStage.PREPARATION


@dataclass
class StageCompleted(Event):
    """A stage produced its result."""

    result: StageResult | None = None


@dataclass
class PipelineProgress(Event):
    """Progress fraction increased."""

    progress: float = 0.0


@dataclass
class PipelineCompleted(Event):
    """A pipeline run produced its result."""

    result: PipelineResult | None = None


EventHandler = Callable[[Event], None]
AsyncEventHandler = Callable[[Event], Awaitable[None]]


class EventBus:
    """Dispatches events to sync and async handlers.

    Handlers subscribed to a base class receive its subclasses; ``None``
    subscribes to everything. A failing handler is logged and does not stop
    delivery to the others.
    """

    def __init__(self) -> None:
        """Initialize an empty bus."""
        self._handlers: dict[type | None, list[EventHandler]] = {}
        self._async_handlers: dict[type | None, list[AsyncEventHandler]] = {}

    def subscribe(
        self, event_type: type | None = None
    ) -> Callable[[EventHandler], EventHandler]:
        """Decorator registering a sync handler."""

        def decorator(handler: EventHandler) -> EventHandler:
            self.add_handler(event_type, handler)
            return handler

        return decorator

    def add_handler(self, event_type: type | None, handler: EventHandler) -> None:
        """Register a sync handler."""
        self._handlers.setdefault(event_type, []).append(handler)

    def add_async_handler(
        self, event_type: type | None, handler: AsyncEventHandler
    ) -> None:
        """Register an async handler."""
        self._async_handlers.setdefault(event_type, []).append(handler)

    def remove_handler(self, event_type: type | None, handler: EventHandler) -> None:
        """Unregister a sync handler."""
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def _matching(self, registry: dict, event: Event) -> list:
        matched = []
        for base_type in type(event).__mro__:
            matched.extend(registry.get(base_type, []))
        matched.extend(registry.get(None, []))
        return matched

    async def publish(self, event: Event) -> None:
        """Deliver an event to sync handlers, then to async handlers."""
        for handler in self._matching(self._handlers, event):
            try:
                handler(event)
            except Exception as e:
                logger.error(
                    f"Error in event handler: {e}",
                    extra={"event_type": event.event_type},
                )
        for async_handler in self._matching(self._async_handlers, event):
            try:
                await async_handler(event)
            except Exception as e:
                logger.error(
                    f"Error in async event handler: {e}",
                    extra={"event_type": event.event_type},
                )
        logger.debug(f"Published {event.event_type}")


class WebhookNotifier:
    """Posts completed pipeline results to a webhook URL."""

    def __init__(
        self, url: str, token: str | None = None, timeout: float = 10.0
    ) -> None:
        """Initialize notifier with the target URL and optional bearer token."""
        self.url = url
        self.token = token
        self.timeout = timeout

    def attach(self, bus: EventBus) -> None:
        """Subscribe to pipeline completion on a bus."""
        bus.add_async_handler(PipelineCompleted, self)

    async def __call__(self, event: Event) -> None:
        """Send the result carried by a PipelineCompleted event."""
        if not isinstance(event, PipelineCompleted) or event.result is None:
            return
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        client_timeout = aiohttp.ClientTimeout(total=self.timeout)
        async with aiohttp.ClientSession(timeout=client_timeout) as session:
            async with session.post(
                self.url, data=event.result.model_dump_json(), headers=headers
            ) as response:
                if response.status >= 400:
                    text = await response.text()
                    raise RuntimeError(
                        f"Failed to deliver pipeline result: {response.status} {text}"
                    )
        logger.info(f"Delivered pipeline result {event.result.id} to {self.url}")
