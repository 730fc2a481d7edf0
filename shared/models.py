"""
Data models for the GitFlow Live repository tracker.

This module provides the canonical model shared by every component:
- CommitRecord: one commit as read from the repository
- RawSignal: an un-normalized notification from a change-signal source
- ChangeEvent: a canonical, typed change notification
"""

import os
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator


class ChangeKind(str, Enum):
    """Kinds of canonical change events."""
    COMMIT = "commit"
    MERGE = "merge"
    CHECKOUT = "checkout"
    PUSH = "push"


class SignalKind(str, Enum):
    """Coarse action kinds carried by raw signals."""
    COMMIT = "commit"
    MERGE = "merge"
    CHECKOUT = "checkout"
    PUSH = "push"
    UNKNOWN = "unknown"


class SignalSource(str, Enum):
    """Change-signal sources."""
    PUSH_CHANNEL = "push-channel"
    LOG_TAIL = "log-tail"


class Severity(str, Enum):
    """Advisory notification severities."""
    SUCCESS = "success"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


def canonical_path(path: str) -> str:
    """Return the canonical filesystem form of a repository path."""
    return os.path.normcase(os.path.realpath(os.path.expanduser(str(path))))


class CommitRecord(BaseModel):
    """One Git commit, immutable once read."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Full commit hash")
    parent_ids: List[str] = Field(default_factory=list, description="Ordered parent hashes")
    author: str = Field(..., description="Author name")
    author_email: str = Field(default="", description="Author email")
    timestamp: datetime = Field(..., description="Commit date with its original offset")
    subject: str = Field(default="", description="First line of the commit message")
    decorations: List[str] = Field(
        default_factory=list, description="Ref names pointing here at read time"
    )

    @computed_field
    @property
    def is_merge(self) -> bool:
        return len(self.parent_ids) >= 2

    @computed_field
    @property
    def short_id(self) -> str:
        return self.id[:7]


class RemoteBranch(BaseModel):
    """Remote and branch targeted by a push."""

    remote: Optional[str] = None
    branch: Optional[str] = None

    def __str__(self) -> str:
        return f"{self.remote or '?'}/{self.branch or '?'}"


class RawSignal(BaseModel):
    """
    Un-normalized notification produced by a change-signal source.

    Ephemeral: created, normalized and discarded within one detection cycle.
    """

    source: SignalSource
    action: str = Field(..., description="Action label as reported by the source")
    kind: SignalKind = SignalKind.UNKNOWN
    new_hash: Optional[str] = None
    repo_path: Optional[str] = None
    ref: Optional[str] = None
    remote: Optional[str] = None
    branch: Optional[str] = None
    message: Optional[str] = None


class ChangeEvent(BaseModel):
    """
    Canonical change notification.

    Exactly one payload shape is populated per kind:

    ========  ===============
    kind      payload
    ========  ===============
    commit    ``commit``
    merge     ``commit``
    checkout  ``ref``
    push      ``remote_branch``
    ========  ===============
    """

    model_config = ConfigDict(frozen=True)

    kind: ChangeKind
    commit: Optional[CommitRecord] = None
    ref: Optional[str] = None
    remote_branch: Optional[RemoteBranch] = None
    commit_id: Optional[str] = Field(
        default=None, description="Target hash of a checkout, when known"
    )

    @model_validator(mode="after")
    def validate_payload_shape(self):
        populated = {
            "commit": self.commit is not None,
            "ref": self.ref is not None,
            "remote_branch": self.remote_branch is not None,
        }
        expected = {
            ChangeKind.COMMIT: "commit",
            ChangeKind.MERGE: "commit",
            ChangeKind.CHECKOUT: "ref",
            ChangeKind.PUSH: "remote_branch",
        }[self.kind]
        if not populated[expected]:
            raise ValueError(f"{self.kind.value} events require '{expected}'")
        extra = [name for name, present in populated.items() if present and name != expected]
        if extra:
            raise ValueError(f"{self.kind.value} events must not carry {extra}")
        return self

    @classmethod
    def for_commit(cls, commit: CommitRecord, merge: bool = False) -> "ChangeEvent":
        return cls(kind=ChangeKind.MERGE if merge else ChangeKind.COMMIT, commit=commit)

    @classmethod
    def for_checkout(cls, ref: str, commit_id: Optional[str] = None) -> "ChangeEvent":
        return cls(kind=ChangeKind.CHECKOUT, ref=ref, commit_id=commit_id)

    @classmethod
    def for_push(cls, remote: Optional[str], branch: Optional[str]) -> "ChangeEvent":
        return cls(kind=ChangeKind.PUSH, remote_branch=RemoteBranch(remote=remote, branch=branch))


__all__ = [
    "ChangeKind", "SignalKind", "SignalSource", "Severity",
    "CommitRecord", "RemoteBranch", "RawSignal", "ChangeEvent",
    "canonical_path",
]
