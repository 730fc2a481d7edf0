"""
Unit tests for SessionState.
"""

import os

from shared.models import canonical_path
from services.repo_tracker.session import SessionState


class TestSessionState:
    """Test cases for the in-memory repository view."""

    def test_baseline_commits_are_known(self, make_record):
        state = SessionState("/r", [make_record("c3"), make_record("c2"), make_record("c1")])

        assert len(state) == 3
        assert [c.id for c in state.commits] == ["c3", "c2", "c1"]
        assert state.known_ids == frozenset({"c1", "c2", "c3"})
        assert state.is_known("c2")
        assert not state.is_known("c4")

    def test_append_is_idempotent(self, make_record):
        state = SessionState("/r", [make_record("c1")])

        assert state.append(make_record("c2")) is True
        assert state.append(make_record("c2", subject="again")) is False
        assert state.append(make_record("c1")) is False

        assert [c.id for c in state.commits] == ["c1", "c2"]
        assert state.commits[1].subject == "fix bug"

    def test_duplicate_ids_in_baseline_collapse(self, make_record):
        state = SessionState("/r", [make_record("c1"), make_record("c1")])

        assert len(state) == 1

    def test_commits_returns_a_copy(self, make_record):
        state = SessionState("/r", [make_record("c1")])

        state.commits.append(make_record("c2"))

        assert len(state) == 1

    def test_repository_path_is_canonical(self, tmp_path):
        target = tmp_path / "repo"
        target.mkdir()
        link = tmp_path / "link"
        os.symlink(target, link)

        state = SessionState(str(link))

        assert state.repository_path == canonical_path(str(target))

    def test_close(self):
        state = SessionState("/r", truncated=True)

        assert state.closed is False
        state.close()

        assert state.closed is True
        assert state.truncated is True
