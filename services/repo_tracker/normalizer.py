"""
Event Normalizer: turns one RawSignal into zero or one ChangeEvent.

Both change-signal sources feed the same normalizer and race each other. The
only thing making that safe is deduplication at append time: after the commit
lookup completes, the known-id check and the append happen with no suspension
point in between, so whichever source finishes its lookup first wins and the
other is dropped. That is an at-most-once guarantee per commit id, not an
ordering guarantee across unrelated commits.
"""

import logging
from typing import Optional

from shared.exceptions import CommitNotFound, ReadFailure
from shared.models import (
    ChangeEvent,
    ChangeKind,
    RawSignal,
    Severity,
    SignalKind,
    SignalSource,
    canonical_path,
)
from services.repo_tracker.dispatcher import Dispatcher
from services.repo_tracker.reader import RepositoryReader
from services.repo_tracker.session import SessionState

logger = logging.getLogger(__name__)


class EventNormalizer:
    """Normalizes, deduplicates and forwards signals for one session."""

    def __init__(self, state: SessionState, reader: RepositoryReader, dispatcher: Dispatcher):
        self.state = state
        self.reader = reader
        self.dispatcher = dispatcher
        self._last_checkout: Optional[tuple] = None

    def _is_for_session(self, signal: RawSignal) -> bool:
        if self.state.closed:
            logger.debug("Session closed, ignoring signal")
            return False
        if signal.repo_path and canonical_path(signal.repo_path) != self.state.repository_path:
            logger.info(f"Event is for different repo ({signal.repo_path}), ignoring")
            return False
        return True

    async def handle(self, signal: RawSignal) -> Optional[ChangeEvent]:
        """
        Normalize one signal. Never raises for per-event failures: they are
        logged and, for read failures, reported as an advisory.
        """
        if not self._is_for_session(signal):
            return None

        if signal.kind == SignalKind.CHECKOUT:
            event = self._checkout_event(signal)
        elif signal.kind == SignalKind.PUSH:
            event = ChangeEvent.for_push(signal.remote, signal.branch)
        else:
            event = await self._commit_event(signal)

        if event is None:
            return None

        self.dispatcher.emit_change(event)
        self.dispatcher.emit_advisory(*self._advisory(signal, event))
        return event

    async def _commit_event(self, signal: RawSignal) -> Optional[ChangeEvent]:
        if not signal.new_hash:
            logger.debug(f"Dropping {signal.kind.value} signal without a hash")
            return None
        if self.state.is_known(signal.new_hash):
            logger.debug(f"Commit {signal.new_hash} already known, skipping lookup")
            return None

        try:
            commit = await self.reader.load_one(self.state.repository_path, signal.new_hash)
        except CommitNotFound:
            logger.warning(f"Commit {signal.new_hash} not resolvable yet, dropping signal")
            return None
        except ReadFailure as e:
            logger.error(f"Error processing git event: {e}")
            self.dispatcher.emit_advisory(Severity.ERROR, "Error processing git event")
            return None

        # No await between here and the append: the dedup check is atomic
        if self.state.closed:
            logger.debug(f"Session closed during lookup of {commit.id}, dropping")
            return None
        if not self.state.append(commit):
            logger.debug(f"Duplicate commit {commit.id} from {signal.source.value}, discarded")
            return None

        return ChangeEvent.for_commit(commit, merge=signal.kind == SignalKind.MERGE)

    def _checkout_event(self, signal: RawSignal) -> Optional[ChangeEvent]:
        ref = signal.ref or signal.new_hash
        if not ref:
            logger.debug("Dropping checkout signal without ref or hash")
            return None

        target = (ref, signal.new_hash)
        if target == self._last_checkout:
            logger.debug(f"Duplicate checkout of {ref} from {signal.source.value}, discarded")
            return None
        self._last_checkout = target
        return ChangeEvent.for_checkout(ref, commit_id=signal.new_hash)

    def _advisory(self, signal: RawSignal, event: ChangeEvent):
        if event.kind == ChangeKind.CHECKOUT:
            return Severity.INFO, f"Checked out: {event.ref}"
        if event.kind == ChangeKind.PUSH:
            return Severity.INFO, f"Pushed to {event.remote_branch}"

        subject = signal.message or event.commit.subject
        if signal.source == SignalSource.LOG_TAIL:
            return Severity.INFO, f"Detected {event.kind.value}: {subject}"
        label = "Merge" if event.kind == ChangeKind.MERGE else "Commit"
        return Severity.SUCCESS, f"{label}: {subject}"
