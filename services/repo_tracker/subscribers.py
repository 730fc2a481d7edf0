"""
Subscriber adapters for the dispatcher.

A subscriber receives envelopes one at a time, in emission order. The
transport is the adapter's concern: in-process callbacks, WebSocket clients,
Redis pub/sub, or the console.
"""

import inspect
import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional, Union

from rich.console import Console
from rich.markup import escape

from shared.events import (
    AdvisoryPayload,
    BaselinePayload,
    Event,
    EventSerializer,
    describe_event,
)
from shared.models import ChangeEvent, Severity

logger = logging.getLogger(__name__)


class Subscriber(ABC):
    """Abstract base class for dispatcher subscribers."""

    name: str = "subscriber"

    @abstractmethod
    async def send(self, event: Event) -> None:
        """Deliver one envelope. Raising disconnects the subscriber."""
        pass

    async def close(self) -> None:
        """Release transport resources."""
        pass


class CallbackSubscriber(Subscriber):
    """In-process subscriber wrapping a plain or async callable."""

    name = "callback"

    def __init__(self, callback: Callable[[Event], Union[None, Awaitable[None]]], name: Optional[str] = None):
        self.callback = callback
        if name:
            self.name = name

    async def send(self, event: Event) -> None:
        result = self.callback(event)
        if inspect.isawaitable(result):
            await result


class WebSocketSubscriber(Subscriber):
    """Pushes JSON envelopes to a connected WebSocket client."""

    name = "websocket"

    def __init__(self, websocket):
        self.websocket = websocket

    async def send(self, event: Event) -> None:
        await self.websocket.send_text(EventSerializer.serialize(event))


class RedisSubscriber(Subscriber):
    """Publishes JSON envelopes to a Redis pub/sub channel."""

    name = "redis"

    def __init__(self, redis_client, channel: str):
        self.redis_client = redis_client
        self.channel = channel

    async def send(self, event: Event) -> None:
        await self.redis_client.publish(self.channel, EventSerializer.serialize(event))

    async def close(self) -> None:
        if self.redis_client is not None:
            await self.redis_client.aclose()
            logger.info("Redis subscriber connection closed")


SEVERITY_STYLES = {
    Severity.SUCCESS: "green",
    Severity.INFO: "cyan",
    Severity.WARNING: "yellow",
    Severity.ERROR: "red",
}


class ConsoleSubscriber(Subscriber):
    """Prints envelopes to a rich console."""

    name = "console"

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    async def send(self, event: Event) -> None:
        data = event.data
        if isinstance(data, AdvisoryPayload):
            style = SEVERITY_STYLES.get(data.severity, "white")
            self.console.print(f"[{style}]{escape(data.message)}[/{style}]")
        elif isinstance(data, BaselinePayload):
            note = " [yellow](truncated)[/yellow]" if data.truncated else ""
            self.console.print(
                f"[bold]Baseline:[/bold] {len(data.commits)} commits from {escape(data.repo_path)}{note}"
            )
        elif isinstance(data, ChangeEvent):
            self.console.print(f"[bold magenta]{escape(describe_event(event))}[/bold magenta]")
