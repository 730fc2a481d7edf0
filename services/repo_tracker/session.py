"""
Session State: the authoritative in-memory view of the active repository.
"""

import logging
from typing import Iterable, List, Set

from shared.models import CommitRecord, canonical_path

logger = logging.getLogger(__name__)


class SessionState:
    """
    Append-ordered commits of one repository plus the ids already delivered.

    Insertion order is discovery order, not commit-date order. Only the
    baseline load and the normalizer's accept path add commits.
    """

    def __init__(self, repository_path: str, commits: Iterable[CommitRecord] = (), truncated: bool = False):
        self._repository_path = canonical_path(repository_path)
        self._commits: List[CommitRecord] = []
        self._known_ids: Set[str] = set()
        self.truncated = truncated
        self.closed = False
        for commit in commits:
            self.append(commit)

    @property
    def repository_path(self) -> str:
        return self._repository_path

    @property
    def commits(self) -> List[CommitRecord]:
        return list(self._commits)

    @property
    def known_ids(self) -> frozenset:
        return frozenset(self._known_ids)

    def __len__(self) -> int:
        return len(self._commits)

    def is_known(self, commit_id: str) -> bool:
        return commit_id in self._known_ids

    def append(self, commit: CommitRecord) -> bool:
        """Add a commit unless its id is already known. Returns True if added."""
        if commit.id in self._known_ids:
            return False
        self._known_ids.add(commit.id)
        self._commits.append(commit)
        return True

    def close(self):
        """Mark the session discarded; late signals must not touch it."""
        self.closed = True
        logger.debug(f"Session for {self._repository_path} closed")
