"""
GitFlow Live repository tracker service.

Composes the tracking pipeline with its collaborators:
- Repository Reader, Dispatcher and the session controller
- Push channel (hook notifications) and subscriber channel (WebSocket) listeners
- Optional Redis pub/sub fan-out of every envelope
- The recent-repository store used to resume the last session

A listener that cannot bind degrades that channel only; the service keeps
running on whatever detection channels remain.
"""

import asyncio
import logging
import signal
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError
from rich.console import Console
from sqlalchemy.exc import SQLAlchemyError

from config.settings import settings
from shared.database import RepositoryStore
from shared.exceptions import PortInUse, RepoTrackerError
from services.repo_tracker.dispatcher import Dispatcher
from services.repo_tracker.push_channel import create_push_app
from services.repo_tracker.reader import RepositoryReader
from services.repo_tracker.servers import LocalServer
from services.repo_tracker.subscriber_channel import create_subscriber_app
from services.repo_tracker.subscribers import ConsoleSubscriber, RedisSubscriber
from services.repo_tracker.tracker import (
    PUSH_CHANNEL,
    SUBSCRIBER_CHANNEL,
    RepositoryTracker,
)

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.monitoring.log_level),
    format=settings.monitoring.log_format,
)
logger = logging.getLogger(__name__)


class TrackerService:
    """Owns the tracker and the listeners for one process lifetime."""

    def __init__(
        self,
        reader: Optional[RepositoryReader] = None,
        store: Optional[RepositoryStore] = None,
        push_port: Optional[int] = None,
        subscriber_port: Optional[int] = None,
        echo: bool = False,
        console: Optional[Console] = None,
    ):
        self.reader = reader or RepositoryReader()
        self.dispatcher = Dispatcher()
        self.store = store if store is not None else RepositoryStore()
        self.tracker = RepositoryTracker(
            reader=self.reader, dispatcher=self.dispatcher, store=self.store
        )
        self.push_server = LocalServer(
            create_push_app(self.tracker.handle_signal),
            "Push channel",
            port=settings.service.push_port if push_port is None else push_port,
        )
        self.subscriber_server = LocalServer(
            create_subscriber_app(self.tracker),
            "Subscriber channel",
            port=settings.service.subscriber_port if subscriber_port is None else subscriber_port,
        )
        self.echo = echo
        self.console = console
        self.redis_client: Optional[redis.Redis] = None
        self._stop_event = asyncio.Event()

    async def initialize_redis(self) -> bool:
        """Subscribe a Redis publisher when fan-out is enabled and reachable."""
        if not settings.redis.enabled:
            return False

        client = redis.from_url(
            settings.redis.url,
            decode_responses=True,
            socket_connect_timeout=settings.redis.socket_connect_timeout,
            socket_timeout=settings.redis.socket_timeout,
        )
        try:
            await client.ping()
        except (RedisError, OSError) as e:
            logger.error(f"Redis fan-out unavailable at {settings.redis.url}: {e}")
            await client.aclose()
            return False

        self.redis_client = client
        self.dispatcher.subscribe(RedisSubscriber(client, settings.redis.channel))
        logger.info(f"Publishing events to Redis channel {settings.redis.channel}")
        return True

    async def _start_listener(self, server: LocalServer, channel: str):
        try:
            await server.start()
        except PortInUse as e:
            logger.error(f"Failed to start {channel}: {e}")
            self.tracker.report_degraded(channel)

    def _last_repository(self) -> Optional[str]:
        try:
            return self.store.last_repository()
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Error reading recent repositories: {e}")
            return None

    async def _resume(self):
        last = self._last_repository()
        if last is None:
            logger.info("No recent repository to resume")
            return
        try:
            await self.tracker.select_repository(last)
        except RepoTrackerError as e:
            logger.warning(f"Could not resume {last}: {e}")

    async def start(self, repo_path: Optional[str] = None, resume: bool = False):
        """
        Start listeners and optionally select a repository.

        Raises:
            NotAGitRepository, ReadFailure: an explicitly requested repository
                could not be loaded
        """
        if self.echo:
            self.dispatcher.subscribe(ConsoleSubscriber(self.console))

        await self.initialize_redis()
        await self._start_listener(self.push_server, PUSH_CHANNEL)
        await self._start_listener(self.subscriber_server, SUBSCRIBER_CHANNEL)

        if repo_path:
            await self.tracker.select_repository(repo_path)
        elif resume:
            await self._resume()

        logger.info(f"{settings.app_name} tracker started")

    def request_stop(self):
        self._stop_event.set()

    async def run_forever(self):
        """Block until SIGINT/SIGTERM or request_stop()."""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self._stop_event.set)
            except (NotImplementedError, RuntimeError):
                logger.debug(f"Signal handler for {sig.name} not supported here")
        try:
            await self._stop_event.wait()
        finally:
            for sig in (signal.SIGINT, signal.SIGTERM):
                try:
                    loop.remove_signal_handler(sig)
                except (NotImplementedError, RuntimeError):
                    logger.debug(f"Could not remove signal handler for {sig.name}")

    async def stop(self):
        """Stop listeners, the active session and every subscriber."""
        logger.info("Shutting down tracker service...")
        await self.push_server.stop()
        await self.subscriber_server.stop()
        await self.tracker.close()
        await self.dispatcher.close()
        self.redis_client = None
        self.store.manager.close()
        logger.info("Tracker service stopped")


async def main(repo_path: Optional[str] = None, resume: bool = False, echo: bool = True):
    """Run the tracker until interrupted."""
    service = TrackerService(echo=echo)
    try:
        await service.start(repo_path=repo_path, resume=resume)
        await service.run_forever()
    finally:
        await service.stop()


if __name__ == "__main__":
    asyncio.run(main(resume=True))
