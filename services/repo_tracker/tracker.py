"""
Session controller for GitFlow Live.

Owns the active SessionState, its log-tail watcher and normalizer, and routes
push-channel signals to the current session. Switching repositories follows a
strict order: the new baseline is loaded first (a failure leaves the previous
session untouched), then the old watcher is stopped and the old state
discarded, and only then is the new session installed and watched.
"""

import asyncio
import logging
import os
from typing import Any, Dict, Optional, Set

from sqlalchemy.exc import SQLAlchemyError

from config.settings import settings
from shared.exceptions import NotAGitRepository, ReadFailure
from shared.models import RawSignal, Severity, canonical_path
from services.repo_tracker.dispatcher import Dispatcher
from services.repo_tracker.normalizer import EventNormalizer
from services.repo_tracker.reader import RepositoryReader
from services.repo_tracker.session import SessionState
from services.repo_tracker.watcher import LogTailWatcher

logger = logging.getLogger(__name__)

PUSH_CHANNEL = "push channel"
LOG_TAIL_CHANNEL = "log-tail channel"
SUBSCRIBER_CHANNEL = "subscriber channel"


def repository_name(repo_path: str) -> str:
    return os.path.basename(repo_path.rstrip(os.sep)) or repo_path


class RepositoryTracker:
    """Creates, replaces and tears down repository sessions."""

    def __init__(
        self,
        reader: Optional[RepositoryReader] = None,
        dispatcher: Optional[Dispatcher] = None,
        store=None,
        baseline_limit: Optional[int] = None,
        watcher_factory=None,
    ):
        self.reader = reader or RepositoryReader()
        self.dispatcher = dispatcher or Dispatcher()
        self.store = store
        self.baseline_limit = baseline_limit or settings.git.baseline_limit
        self.watcher_factory = watcher_factory or LogTailWatcher
        self._state: Optional[SessionState] = None
        self._normalizer: Optional[EventNormalizer] = None
        self._watcher: Optional[LogTailWatcher] = None
        self._selection_lock = asyncio.Lock()
        self._degraded: Set[str] = set()

    @property
    def state(self) -> Optional[SessionState]:
        return self._state

    @property
    def watcher(self) -> Optional[LogTailWatcher]:
        return self._watcher

    @property
    def degraded_channels(self) -> Set[str]:
        return set(self._degraded)

    async def select_repository(self, repo_path: str) -> SessionState:
        """
        Make ``repo_path`` the active repository.

        Raises:
            NotAGitRepository: the path failed validation
            ReadFailure: the baseline could not be loaded
        """
        async with self._selection_lock:
            path = canonical_path(repo_path)
            logger.info(f"Loading repository: {path}")

            if not self.reader.validate(path):
                self.dispatcher.emit_advisory(
                    Severity.ERROR, "The selected directory is not a valid Git repository."
                )
                raise NotAGitRepository(path)

            try:
                # One extra record tells a complete history from a truncated one
                commits = await self.reader.load_baseline(path, self.baseline_limit + 1)
            except ReadFailure as e:
                logger.error(f"Error loading repository {path}: {e}")
                self.dispatcher.emit_advisory(Severity.ERROR, f"Failed to load repository: {e}")
                raise

            truncated = len(commits) > self.baseline_limit
            commits = commits[: self.baseline_limit]
            await self._teardown()

            state = SessionState(path, commits, truncated=truncated)
            self._state = state
            self._normalizer = EventNormalizer(state, self.reader, self.dispatcher)
            self.dispatcher.emit_baseline(path, state.commits, truncated=truncated)

            if truncated:
                logger.warning(
                    f"Baseline for {path} truncated to the {self.baseline_limit} most recent commits"
                )
                self.dispatcher.emit_advisory(
                    Severity.WARNING,
                    f"History truncated to the {self.baseline_limit} most recent commits",
                )

            await self._start_watcher(path)
            self._remember(path)
            self.dispatcher.emit_advisory(
                Severity.SUCCESS, f"Loaded repository: {repository_name(path)}"
            )
            return state

    async def _start_watcher(self, path: str):
        watcher = self.watcher_factory(path)
        watcher.on_signal(self._normalizer.handle)
        watcher.on_error(lambda e: logger.error(f"Log-tail channel error: {e}"))
        try:
            await watcher.start()
        except OSError as e:
            logger.error(f"Log-tail channel failed to start for {path}: {e}")
            self.report_degraded(LOG_TAIL_CHANNEL)
            return
        self._watcher = watcher

    def _remember(self, path: str):
        if self.store is None:
            return
        try:
            self.store.record_repository(path)
        except (SQLAlchemyError, OSError) as e:
            # Don't raise - recent-repository bookkeeping is not critical
            logger.error(f"Error recording recent repository: {e}")

    async def _teardown(self):
        if self._watcher is not None:
            await self._watcher.stop()
            self._watcher = None
        if self._state is not None:
            self._state.close()
        self._state = None
        self._normalizer = None

    async def handle_signal(self, signal: RawSignal):
        """Route a push-channel signal to the active session, if any."""
        normalizer = self._normalizer
        if normalizer is None:
            logger.warning("No repository loaded, ignoring signal")
            return None
        return await normalizer.handle(signal)

    def request_baseline(self, subscription_id: str) -> bool:
        """Queue the active session's commits for one subscriber."""
        state = self._state
        if state is None:
            return False
        return self.dispatcher.send_baseline_to(
            subscription_id, state.repository_path, state.commits, truncated=state.truncated
        )

    def report_degraded(self, channel: str):
        """Advise once that a channel is unavailable and live updates are reduced."""
        if channel in self._degraded:
            return
        self._degraded.add(channel)
        logger.warning(f"{channel} unavailable, live-update fidelity reduced")
        self.dispatcher.emit_advisory(
            Severity.WARNING,
            f"The {channel} is unavailable; live updates may be incomplete.",
        )

    async def status(self) -> Dict[str, Any]:
        state = self._state
        if state is None:
            return {
                "repository": None,
                "subscribers": self.dispatcher.subscriber_count,
                "degraded": sorted(self._degraded),
            }
        return {
            "repository": state.repository_path,
            "branch": await self.reader.current_branch(state.repository_path),
            "commits": len(state),
            "truncated": state.truncated,
            "watching": self._watcher is not None and self._watcher.is_watching,
            "subscribers": self.dispatcher.subscriber_count,
            "degraded": sorted(self._degraded),
        }

    async def close(self):
        async with self._selection_lock:
            await self._teardown()
