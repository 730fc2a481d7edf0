"""
Error taxonomy for the GitFlow Live repository tracker.

Selection errors (NotAGitRepository, ReadFailure during a baseline load)
propagate to the caller. Errors raised while handling live signals are
absorbed by the normalizer and at most become advisory notifications.
"""

from typing import Optional


class RepoTrackerError(Exception):
    """Base class for repository tracker errors."""


class NotAGitRepository(RepoTrackerError):
    """The selected path has no repository marker directory."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Not a git repository: {path}")


class ReadFailure(RepoTrackerError):
    """A repository query failed (missing tool, corruption, permissions, timeout)."""

    def __init__(self, message: str, repo_path: Optional[str] = None):
        self.repo_path = repo_path
        super().__init__(message)


class CommitNotFound(RepoTrackerError):
    """A commit hash did not resolve in the repository."""

    def __init__(self, commit_hash: str, repo_path: Optional[str] = None):
        self.commit_hash = commit_hash
        self.repo_path = repo_path
        super().__init__(f"Commit not found: {commit_hash}")


class MalformedLogLine(RepoTrackerError, ValueError):
    """A reference-log line does not match the expected structure."""

    def __init__(self, line: str, reason: str = "unexpected structure"):
        self.line = line
        self.reason = reason
        super().__init__(f"Malformed reference-log line ({reason}): {line!r}")


class PortInUse(RepoTrackerError):
    """A loopback listener could not bind its address."""

    def __init__(self, host: str, port: int, detail: Optional[str] = None):
        self.host = host
        self.port = port
        message = f"Port {port} on {host} is already in use"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
