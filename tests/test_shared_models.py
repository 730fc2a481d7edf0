"""
Unit tests for shared models module.
"""

import os
from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from shared.models import (
    ChangeEvent,
    ChangeKind,
    CommitRecord,
    RawSignal,
    RemoteBranch,
    SignalKind,
    SignalSource,
    canonical_path,
)


class TestCommitRecord:
    """Test cases for CommitRecord."""

    def test_computed_fields(self, make_record):
        record = make_record("0123456789abcdef", parents=["a", "b"])

        assert record.short_id == "0123456"
        assert record.is_merge is True
        assert make_record(parents=[]).is_merge is False

    def test_empty_id_is_rejected(self):
        with pytest.raises(ValidationError):
            CommitRecord(id="", author="Jane", timestamp=datetime.now(timezone.utc))

    def test_timestamp_keeps_offset(self):
        record = CommitRecord(id="a", author="Jane", timestamp="2023-11-14T22:13:20-05:00")

        assert record.timestamp.utcoffset().total_seconds() == -5 * 3600

    def test_records_are_immutable(self, make_record):
        record = make_record()

        with pytest.raises(ValidationError):
            record.subject = "changed"

    def test_serialization_includes_computed_fields(self, make_record):
        data = make_record("abcdef0123").model_dump(mode="json")

        assert data["short_id"] == "abcdef0"
        assert data["is_merge"] is False
        assert data["timestamp"] == "2023-11-14T22:13:20Z"


class TestChangeEvent:
    """Test cases for ChangeEvent payload shapes."""

    def test_commit_and_merge_factories(self, make_record):
        record = make_record()

        assert ChangeEvent.for_commit(record).kind == ChangeKind.COMMIT
        assert ChangeEvent.for_commit(record, merge=True).kind == ChangeKind.MERGE
        assert ChangeEvent.for_commit(record).commit == record

    def test_checkout_factory(self):
        event = ChangeEvent.for_checkout("topic", commit_id="abc123")

        assert event.ref == "topic"
        assert event.commit_id == "abc123"
        assert event.commit is None

    def test_push_factory(self):
        event = ChangeEvent.for_push("origin", "main")

        assert str(event.remote_branch) == "origin/main"

    def test_push_with_unknown_target(self):
        assert str(ChangeEvent.for_push(None, None).remote_branch) == "?/?"

    @pytest.mark.parametrize("kind", [ChangeKind.COMMIT, ChangeKind.MERGE])
    def test_commit_kinds_require_commit(self, kind):
        with pytest.raises(ValidationError):
            ChangeEvent(kind=kind, ref="main")

    def test_checkout_requires_ref(self):
        with pytest.raises(ValidationError):
            ChangeEvent(kind=ChangeKind.CHECKOUT)

    def test_push_rejects_extra_payload(self, make_record):
        with pytest.raises(ValidationError):
            ChangeEvent(kind=ChangeKind.PUSH, remote_branch=RemoteBranch(remote="origin"), commit=make_record())


class TestRawSignal:
    """Test cases for RawSignal."""

    def test_defaults(self):
        signal = RawSignal(source=SignalSource.LOG_TAIL, action="reset: moving to HEAD~1")

        assert signal.kind == SignalKind.UNKNOWN
        assert signal.new_hash is None
        assert signal.repo_path is None

    def test_source_values(self):
        assert SignalSource("push-channel") == SignalSource.PUSH_CHANNEL
        assert SignalSource("log-tail") == SignalSource.LOG_TAIL


class TestCanonicalPath:
    """Test cases for canonical_path."""

    def test_resolves_symlinks_and_dots(self, tmp_path):
        target = tmp_path / "repo"
        target.mkdir()
        link = tmp_path / "alias"
        os.symlink(target, link)

        assert canonical_path(str(link)) == canonical_path(str(tmp_path / "x" / ".." / "repo"))

    def test_expands_home(self):
        assert canonical_path("~") == canonical_path(os.path.expanduser("~"))
