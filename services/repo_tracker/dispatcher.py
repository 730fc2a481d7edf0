"""
Dispatcher: fans out baselines, change events and advisories to subscribers.

Every subscriber gets its own FIFO queue drained by a dedicated pump task, so
a slow subscriber never reorders or delays another, and emission order is
delivery order for each subscriber. Emitting is synchronous: callers never
suspend while broadcasting. With no subscribers an emission is dropped, not
queued; there is no replay for late or reconnecting subscribers.
"""

import asyncio
import itertools
import logging
import uuid
from typing import Dict, Optional, Sequence, Set

from shared.events import Event, EventFactory
from shared.models import ChangeEvent, CommitRecord, Severity
from services.repo_tracker.subscribers import Subscriber

logger = logging.getLogger(__name__)


class _Subscription:
    """Queue and pump task for one subscriber."""

    def __init__(self, subscription_id: str, subscriber: Subscriber, on_failure):
        self.id = subscription_id
        self.subscriber = subscriber
        self.queue: "asyncio.Queue[Event]" = asyncio.Queue()
        self._on_failure = on_failure
        self._task: Optional[asyncio.Task] = None

    def start(self):
        self._task = asyncio.get_running_loop().create_task(
            self._pump(), name=f"subscriber-{self.subscriber.name}-{self.id[:8]}"
        )

    async def _pump(self):
        while True:
            event = await self.queue.get()
            try:
                await self.subscriber.send(event)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Delivery to subscriber {self.subscriber.name} failed: {e}")
                self.queue.task_done()
                while not self.queue.empty():
                    self.queue.get_nowait()
                    self.queue.task_done()
                self._on_failure(self.id)
                return
            self.queue.task_done()

    async def close(self):
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        await self.subscriber.close()


class Dispatcher:
    """Broadcasts envelopes to every currently-subscribed observer."""

    def __init__(self):
        self._subscriptions: Dict[str, _Subscription] = {}
        self._sequence = itertools.count(1)
        self._closing: Set[asyncio.Task] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(self, subscriber: Subscriber) -> str:
        """Register a subscriber; must be called from the running event loop."""
        subscription_id = str(uuid.uuid4())
        subscription = _Subscription(subscription_id, subscriber, self._drop_failed)
        self._subscriptions[subscription_id] = subscription
        subscription.start()
        logger.info(f"Subscriber connected: {subscriber.name} ({subscription_id})")
        return subscription_id

    async def unsubscribe(self, subscription_id: str) -> bool:
        subscription = self._subscriptions.pop(subscription_id, None)
        if subscription is None:
            return False
        await subscription.close()
        logger.info(f"Subscriber disconnected: {subscription.subscriber.name} ({subscription_id})")
        return True

    def _drop_failed(self, subscription_id: str):
        subscription = self._subscriptions.pop(subscription_id, None)
        if subscription is None:
            return
        logger.warning(f"Dropped failing subscriber {subscription.subscriber.name}")
        task = asyncio.get_running_loop().create_task(subscription.subscriber.close())
        self._closing.add(task)
        task.add_done_callback(self._closed)

    def _closed(self, task: asyncio.Task):
        self._closing.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Closing a dropped subscriber failed: {task.exception()}")

    def _broadcast(self, event: Event) -> int:
        if not self._subscriptions:
            logger.debug(f"No subscribers, dropping {event.event_type.value} event")
            return 0
        for subscription in list(self._subscriptions.values()):
            subscription.queue.put_nowait(event)
        return len(self._subscriptions)

    def emit_baseline(
        self, repo_path: str, commits: Sequence[CommitRecord], truncated: bool = False
    ) -> int:
        """Broadcast a repository baseline. Returns the number of recipients."""
        event = EventFactory.create_baseline_event(
            repo_path, commits, truncated=truncated, sequence=next(self._sequence)
        )
        recipients = self._broadcast(event)
        if recipients:
            logger.info(f"Emitted baseline of {len(commits)} commits to {recipients} subscribers")
        return recipients

    def emit_change(self, change: ChangeEvent) -> int:
        """Broadcast one accepted change event."""
        event = EventFactory.create_change_event(change, sequence=next(self._sequence))
        recipients = self._broadcast(event)
        if recipients:
            logger.info(f"Emitted {change.kind.value} event to {recipients} subscribers")
        return recipients

    def emit_advisory(self, severity: Severity, message: str) -> int:
        """Broadcast a user-facing notice."""
        event = EventFactory.create_advisory_event(
            severity, message, sequence=next(self._sequence)
        )
        return self._broadcast(event)

    def send_baseline_to(
        self,
        subscription_id: str,
        repo_path: str,
        commits: Sequence[CommitRecord],
        truncated: bool = False,
    ) -> bool:
        """Queue a baseline for a single subscriber that asked for one."""
        subscription = self._subscriptions.get(subscription_id)
        if subscription is None:
            return False
        subscription.queue.put_nowait(
            EventFactory.create_baseline_event(
                repo_path, commits, truncated=truncated, sequence=next(self._sequence)
            )
        )
        return True

    async def drain(self):
        """Wait until every queued envelope has been handed to its subscriber."""
        for subscription in list(self._subscriptions.values()):
            await subscription.queue.join()

    async def close(self):
        """Disconnect every subscriber and finish closing dropped ones."""
        for subscription_id in list(self._subscriptions):
            await self.unsubscribe(subscription_id)
        if self._closing:
            await asyncio.gather(*self._closing, return_exceptions=True)
