"""
Tests for the session controller: selection, switching, isolation and
degraded channels.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.exc import SQLAlchemyError

from shared.events import EventType
from shared.exceptions import NotAGitRepository, ReadFailure
from shared.models import RawSignal, Severity, SignalKind, SignalSource, canonical_path
from services.repo_tracker.dispatcher import Dispatcher
from services.repo_tracker.reader import RepositoryReader
from services.repo_tracker.subscribers import CallbackSubscriber
from services.repo_tracker.tracker import (
    LOG_TAIL_CHANNEL,
    PUSH_CHANNEL,
    RepositoryTracker,
    repository_name,
)


class FakeWatcher:
    """Stand-in for LogTailWatcher recording its lifecycle."""

    def __init__(self, repo_path):
        self.repo_path = canonical_path(repo_path)
        self.handler = None
        self.is_watching = False
        self.stopped = False

    def on_signal(self, handler):
        self.handler = handler

    def on_error(self, handler):
        pass

    async def start(self):
        self.is_watching = True
        return True

    async def stop(self):
        self.is_watching = False
        self.stopped = True


class BrokenWatcher(FakeWatcher):
    async def start(self):
        raise OSError("inotify watch limit reached")


def commit_signal(repo_path, commit_hash, source=SignalSource.PUSH_CHANNEL):
    return RawSignal(
        source=source, action="hook: commit", kind=SignalKind.COMMIT,
        new_hash=commit_hash, repo_path=repo_path,
    )


class Recorder:
    def __init__(self, dispatcher):
        self.events = []
        self.subscription_id = dispatcher.subscribe(CallbackSubscriber(self.events.append))

    def of_type(self, event_type):
        return [e.data for e in self.events if e.event_type == event_type]

    def advisories(self):
        return [(a.severity, a.message) for a in self.of_type(EventType.ADVISORY)]


@pytest.fixture
def tracker(store):
    return RepositoryTracker(
        reader=RepositoryReader(), dispatcher=Dispatcher(), store=store, watcher_factory=FakeWatcher
    )


class TestRepositoryTracker:
    """Test cases for RepositoryTracker."""

    @pytest.mark.asyncio
    async def test_select_loads_baseline_and_starts_watcher(self, tracker, linear_repo):
        recorder = Recorder(tracker.dispatcher)
        path = linear_repo.working_tree_dir

        state = await tracker.select_repository(path)
        await tracker.dispatcher.drain()

        assert len(state) == 3
        assert state.truncated is False
        assert tracker.watcher.is_watching
        assert tracker.watcher.repo_path == canonical_path(path)
        baselines = recorder.of_type(EventType.BASELINE)
        assert len(baselines) == 1
        assert baselines[0].repo_path == canonical_path(path)
        assert [c.subject for c in baselines[0].commits] == ["c3", "c2", "c1"]
        assert recorder.advisories() == [(Severity.SUCCESS, "Loaded repository: repo")]

    @pytest.mark.asyncio
    async def test_select_invalid_path(self, tracker, tmp_path):
        recorder = Recorder(tracker.dispatcher)

        with pytest.raises(NotAGitRepository):
            await tracker.select_repository(str(tmp_path))
        await tracker.dispatcher.drain()

        assert tracker.state is None
        assert recorder.advisories() == [
            (Severity.ERROR, "The selected directory is not a valid Git repository.")
        ]

    @pytest.mark.asyncio
    async def test_failed_selection_leaves_previous_session(self, tracker, linear_repo, other_repo):
        await tracker.select_repository(linear_repo.working_tree_dir)
        previous_state = tracker.state
        previous_watcher = tracker.watcher

        with patch.object(tracker.reader, "load_baseline", AsyncMock(side_effect=ReadFailure("corrupt"))):
            with pytest.raises(ReadFailure):
                await tracker.select_repository(other_repo.working_tree_dir)

        assert tracker.state is previous_state
        assert not previous_state.closed
        assert tracker.watcher is previous_watcher
        assert not previous_watcher.stopped

    @pytest.mark.asyncio
    async def test_baseline_truncation_is_reported(self, store, linear_repo):
        tracker = RepositoryTracker(
            dispatcher=Dispatcher(), store=store, baseline_limit=2, watcher_factory=FakeWatcher
        )
        recorder = Recorder(tracker.dispatcher)

        state = await tracker.select_repository(linear_repo.working_tree_dir)
        await tracker.dispatcher.drain()

        assert len(state) == 2
        assert state.truncated is True
        assert recorder.of_type(EventType.BASELINE)[0].truncated is True
        assert (Severity.WARNING, "History truncated to the 2 most recent commits") in recorder.advisories()

    @pytest.mark.asyncio
    async def test_baseline_exactly_at_limit_is_complete(self, store, linear_repo):
        tracker = RepositoryTracker(
            dispatcher=Dispatcher(), store=store, baseline_limit=3, watcher_factory=FakeWatcher
        )

        state = await tracker.select_repository(linear_repo.working_tree_dir)

        assert len(state) == 3
        assert state.truncated is False

    @pytest.mark.asyncio
    async def test_switching_repositories_isolates_sessions(self, tracker, linear_repo, other_repo, add_commit):
        await tracker.select_repository(linear_repo.working_tree_dir)
        old_state = tracker.state
        old_watcher = tracker.watcher
        late_handler = old_watcher.handler

        await tracker.select_repository(other_repo.working_tree_dir)
        new_state = tracker.state
        new_commits = new_state.commits

        assert old_watcher.stopped
        assert old_state.closed
        assert tracker.watcher is not old_watcher

        late_hash = add_commit(linear_repo, "late commit in A")
        await late_handler(commit_signal(linear_repo.working_tree_dir, late_hash, SignalSource.LOG_TAIL))
        await tracker.handle_signal(commit_signal(linear_repo.working_tree_dir, late_hash))

        assert new_state.commits == new_commits
        assert not new_state.is_known(late_hash)
        assert not old_state.is_known(late_hash)

    @pytest.mark.asyncio
    async def test_push_signal_for_new_commit(self, tracker, linear_repo, add_commit):
        recorder = Recorder(tracker.dispatcher)
        await tracker.select_repository(linear_repo.working_tree_dir)
        new_hash = add_commit(linear_repo, "c4")

        event = await tracker.handle_signal(commit_signal(linear_repo.working_tree_dir, new_hash))
        await tracker.dispatcher.drain()

        assert event.commit.id == new_hash
        assert event.commit.subject == "c4"
        assert [c.commit.id for c in recorder.of_type(EventType.CHANGE)] == [new_hash]
        assert tracker.state.commits[-1].id == new_hash

    @pytest.mark.asyncio
    async def test_signal_without_session_is_ignored(self, tracker):
        assert await tracker.handle_signal(commit_signal("/r", "abc123")) is None

    @pytest.mark.asyncio
    async def test_request_baseline_reaches_only_requester(self, tracker, linear_repo):
        await tracker.select_repository(linear_repo.working_tree_dir)
        requester = Recorder(tracker.dispatcher)
        bystander = Recorder(tracker.dispatcher)

        assert tracker.request_baseline(requester.subscription_id) is True
        await tracker.dispatcher.drain()

        assert len(requester.of_type(EventType.BASELINE)) == 1
        assert len(requester.of_type(EventType.BASELINE)[0].commits) == 3
        assert bystander.events == []

    @pytest.mark.asyncio
    async def test_request_baseline_without_session(self, tracker):
        recorder = Recorder(tracker.dispatcher)

        assert tracker.request_baseline(recorder.subscription_id) is False

    @pytest.mark.asyncio
    async def test_degraded_channel_is_advised_once(self, tracker):
        recorder = Recorder(tracker.dispatcher)

        tracker.report_degraded(PUSH_CHANNEL)
        tracker.report_degraded(PUSH_CHANNEL)
        await tracker.dispatcher.drain()

        assert tracker.degraded_channels == {PUSH_CHANNEL}
        assert recorder.advisories() == [
            (Severity.WARNING, "The push channel is unavailable; live updates may be incomplete.")
        ]

    @pytest.mark.asyncio
    async def test_watcher_failure_degrades_log_tail(self, store, linear_repo):
        tracker = RepositoryTracker(dispatcher=Dispatcher(), store=store, watcher_factory=BrokenWatcher)

        state = await tracker.select_repository(linear_repo.working_tree_dir)

        assert len(state) == 3
        assert tracker.watcher is None
        assert LOG_TAIL_CHANNEL in tracker.degraded_channels

    @pytest.mark.asyncio
    async def test_selection_is_remembered(self, tracker, store, linear_repo):
        await tracker.select_repository(linear_repo.working_tree_dir)

        assert store.last_repository() == canonical_path(linear_repo.working_tree_dir)

    @pytest.mark.asyncio
    async def test_store_errors_do_not_fail_selection(self, linear_repo):
        store = MagicMock()
        store.record_repository.side_effect = SQLAlchemyError("database is locked")
        tracker = RepositoryTracker(dispatcher=Dispatcher(), store=store, watcher_factory=FakeWatcher)

        state = await tracker.select_repository(linear_repo.working_tree_dir)

        assert len(state) == 3

    @pytest.mark.asyncio
    async def test_status_and_close(self, tracker, linear_repo):
        assert (await tracker.status())["repository"] is None

        await tracker.select_repository(linear_repo.working_tree_dir)
        status = await tracker.status()

        assert status["repository"] == canonical_path(linear_repo.working_tree_dir)
        assert status["branch"] == linear_repo.active_branch.name
        assert status["commits"] == 3
        assert status["watching"] is True

        watcher = tracker.watcher
        await tracker.close()

        assert watcher.stopped
        assert tracker.state is None

    def test_repository_name(self):
        assert repository_name("/home/dev/project") == "project"
        assert repository_name("/home/dev/project/") == "project"
