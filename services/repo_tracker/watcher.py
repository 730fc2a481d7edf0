"""
Log-Tail Channel: watches ``.git/logs/HEAD`` for appended reference-log lines.

Filesystem notifications come from watchfiles. Each notification (re)starts a
debounce window; only when the window elapses quietly is the final line of
the file re-read and compared with the last processed line. Rapid successive
writes (a rebase, say) therefore collapse into a single read of the last line,
and intermediate entries in that burst are not observed by this channel.
"""

import asyncio
import logging
import os
import re
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Optional

from watchfiles import awatch

from config.settings import settings
from shared.exceptions import MalformedLogLine
from shared.models import RawSignal, SignalKind, SignalSource, canonical_path

logger = logging.getLogger(__name__)

SignalHandler = Callable[[RawSignal], Awaitable[None]]

CHECKOUT_PATTERN = re.compile(r"checkout: moving from .+ to (.+)", re.IGNORECASE)
TAIL_CHUNK_SIZE = 4096


class WatcherState(Enum):
    STOPPED = "stopped"
    WATCHING = "watching"


def reflog_path(repo_path: str) -> Path:
    """Location of the primary ref's reference log."""
    return Path(repo_path) / ".git" / "logs" / "HEAD"


def classify_action(action: str) -> SignalKind:
    lowered = action.lower()
    if "commit" in lowered:
        return SignalKind.MERGE if "merge" in lowered else SignalKind.COMMIT
    if "checkout" in lowered:
        return SignalKind.CHECKOUT
    if "merge" in lowered:
        return SignalKind.MERGE
    return SignalKind.UNKNOWN


def parse_reflog_line(line: str, repo_path: Optional[str] = None) -> RawSignal:
    """
    Parse one reference-log line.

    Format: ``<old> <new> <name> <email> <timestamp> <tz>\\t<action>: <message>``

    Raises:
        MalformedLogLine: fewer than two tab-delimited segments, or a header
            without old hash, new hash and identity
    """
    parts = line.rstrip("\r\n").split("\t", 1)
    if len(parts) < 2:
        raise MalformedLogLine(line, "missing tab-delimited action")

    header = parts[0].split(" ")
    if len(header) < 3 or not header[1]:
        raise MalformedLogLine(line, "incomplete header")

    action = parts[1].strip()
    kind = classify_action(action)

    ref = None
    if kind == SignalKind.CHECKOUT:
        match = CHECKOUT_PATTERN.search(action)
        if match:
            ref = match.group(1).strip()

    return RawSignal(
        source=SignalSource.LOG_TAIL,
        action=action,
        kind=kind,
        new_hash=header[1],
        ref=ref,
        repo_path=repo_path,
    )


def read_last_line(path: Path) -> Optional[str]:
    """Read only the final non-empty line of a file, scanning backwards from the end."""
    with open(path, "rb") as f:
        f.seek(0, os.SEEK_END)
        end = f.tell()
        buffer = b""
        position = end
        while position > 0:
            step = min(TAIL_CHUNK_SIZE, position)
            position -= step
            f.seek(position)
            buffer = f.read(step) + buffer
            stripped = buffer.rstrip(b"\r\n")
            if b"\n" in stripped:
                return stripped.rsplit(b"\n", 1)[1].decode("utf-8", errors="replace") or None
        stripped = buffer.rstrip(b"\r\n")
        return stripped.decode("utf-8", errors="replace") or None


class LogTailWatcher:
    """
    Passive change detector for one repository.

    State machine: ``STOPPED -> WATCHING -> STOPPED``. ``start`` is a no-op while
    already watching; a caller switching repositories stops this instance and
    starts a new one for the new path.
    """

    def __init__(
        self,
        repo_path: str,
        debounce_ms: Optional[int] = None,
        force_polling: Optional[bool] = None,
        poll_delay_ms: Optional[int] = None,
        retry_delay: Optional[float] = None,
    ):
        self.repo_path = canonical_path(repo_path)
        self.log_path = reflog_path(self.repo_path)
        self.debounce_ms = settings.watcher.debounce_ms if debounce_ms is None else debounce_ms
        self.force_polling = (
            settings.watcher.force_polling if force_polling is None else force_polling
        )
        self.poll_delay_ms = poll_delay_ms or settings.watcher.poll_delay_ms
        self.retry_delay = settings.watcher.retry_delay if retry_delay is None else retry_delay

        self.state = WatcherState.STOPPED
        self.last_processed_line: Optional[str] = None
        self.read_count = 0
        self._handler: Optional[SignalHandler] = None
        self._error_handler: Optional[Callable[[Exception], None]] = None
        self._queue: "asyncio.Queue[RawSignal]" = asyncio.Queue()
        self._stop_event: Optional[asyncio.Event] = None
        self._watch_task: Optional[asyncio.Task] = None
        self._consumer_task: Optional[asyncio.Task] = None
        self._debounce_task: Optional[asyncio.Task] = None

    @property
    def is_watching(self) -> bool:
        return self.state == WatcherState.WATCHING

    def on_signal(self, handler: SignalHandler):
        """Register the single handler receiving this source's signals."""
        self._handler = handler

    def on_error(self, handler: Callable[[Exception], None]):
        """Register a callback for filesystem errors during the watch."""
        self._error_handler = handler

    async def start(self) -> bool:
        """
        Begin watching. Returns False, without raising, when the reference log
        does not exist yet (e.g. before the first commit).
        """
        if self.is_watching:
            return True

        if not self.log_path.is_file():
            logger.warning(f"HEAD log file does not exist, log-tail channel inert: {self.log_path}")
            return False

        # Seed with the current tail so existing history is not replayed
        self.last_processed_line = read_last_line(self.log_path)

        loop = asyncio.get_running_loop()
        self._stop_event = asyncio.Event()
        self._queue = asyncio.Queue()
        self._consumer_task = loop.create_task(self._consume(), name="log-tail-consumer")
        self._watch_task = loop.create_task(self._watch(), name="log-tail-watch")
        self.state = WatcherState.WATCHING
        logger.info(f"Starting file watcher on: {self.log_path}")
        return True

    async def stop(self):
        """Cancel any pending debounce, release the watch and drop queued signals."""
        if self._debounce_task is not None:
            self._debounce_task.cancel()
            self._debounce_task = None

        if self._stop_event is not None:
            self._stop_event.set()

        for task in (self._watch_task, self._consumer_task):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        was_watching = self.is_watching
        self._watch_task = None
        self._consumer_task = None
        self._stop_event = None
        self.state = WatcherState.STOPPED
        if was_watching:
            logger.info(f"Stopped watching {self.log_path}")

    def _is_reflog(self, change, path: str) -> bool:
        return Path(path).name == self.log_path.name

    async def _watch(self):
        while not self._stop_event.is_set():
            try:
                async for _changes in awatch(
                    self.log_path.parent,
                    watch_filter=self._is_reflog,
                    stop_event=self._stop_event,
                    recursive=False,
                    debounce=50,
                    step=10,
                    force_polling=self.force_polling,
                    poll_delay_ms=self.poll_delay_ms,
                ):
                    self.notify_change()
            except asyncio.CancelledError:
                raise
            except (OSError, RuntimeError) as e:
                logger.error(f"Watcher error on {self.log_path}: {e}")
                if self._error_handler is not None:
                    self._error_handler(e)
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.retry_delay)
            except asyncio.TimeoutError:
                pass

    def notify_change(self):
        """Record one filesystem change, (re)starting the debounce window."""
        if self._debounce_task is not None:
            self._debounce_task.cancel()
        self._debounce_task = asyncio.get_running_loop().create_task(self._debounced_read())

    async def _debounced_read(self):
        await asyncio.sleep(self.debounce_ms / 1000)
        self._debounce_task = None
        signal = self.process_change()
        if signal is not None:
            self._queue.put_nowait(signal)

    def process_change(self) -> Optional[RawSignal]:
        """Re-read the final line and turn it into a signal if it is new."""
        self.read_count += 1
        try:
            last_line = read_last_line(self.log_path)
        except OSError as e:
            logger.error(f"Error reading {self.log_path}: {e}")
            if self._error_handler is not None:
                self._error_handler(e)
            return None

        if not last_line or last_line == self.last_processed_line:
            logger.debug("Reference log unchanged, ignoring notification")
            return None

        try:
            signal = parse_reflog_line(last_line, repo_path=self.repo_path)
        except MalformedLogLine as e:
            logger.warning(str(e))
            return None

        self.last_processed_line = last_line
        logger.info(f"Detected event: {signal.kind.value} {signal.new_hash}")
        return signal

    async def _consume(self):
        while True:
            signal = await self._queue.get()
            if self._handler is None:
                continue
            try:
                await self._handler(signal)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error processing watcher event: {e}")
