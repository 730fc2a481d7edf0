"""
Repository Reader: read-only git log queries parsed into CommitRecords.

Queries run through GitPython's command wrapper in a worker thread so they
never block the event loop. Each one is bounded by
``settings.git.query_timeout``: GitPython kills a git process that overruns
it, and the overrun surfaces as ReadFailure.

Baselines are capped at ``settings.git.baseline_limit`` commits across all
refs. The cap is system-wide, not per branch: in a repository larger than the
cap, older history and commits reachable only from older refs are absent from
the baseline. Callers learn about this through the ``truncated`` flag of the
baseline rather than treating the snapshot as complete.
"""

import asyncio
import logging
import os
from typing import List, Optional

from pydantic import ValidationError

from config.settings import settings
from shared.exceptions import CommitNotFound, NotAGitRepository, ReadFailure
from shared.models import CommitRecord

# GitPython checks for its executable on import; a missing git must fail per query
os.environ.setdefault("GIT_PYTHON_REFRESH", "quiet")
if settings.git.binary:
    os.environ.setdefault("GIT_PYTHON_GIT_EXECUTABLE", settings.git.binary)

from git import Repo  # noqa: E402
from git.exc import GitCommandError, GitError  # noqa: E402

logger = logging.getLogger(__name__)

REPOSITORY_MARKER = ".git"

# ASCII unit separator: not typed in authored text, and git emits it via %x1f
FIELD_DELIMITER = "\x1f"

LOG_FIELDS = {
    "id": "%H",
    "parent_ids": "%P",
    "author": "%an",
    "author_email": "%ae",
    "timestamp": "%ad",
    "subject": "%s",
    "decorations": "%D",
}

PRETTY_FORMAT = "format:" + "%x1f".join(LOG_FIELDS.values())
MIN_FIELDS = 6


def parse_decorations(refs: str) -> List[str]:
    """Split a ``%D`` decoration string into ref names."""
    if not refs or not refs.strip():
        return []
    return [ref.strip() for ref in refs.split(",") if ref.strip()]


def parse_record(line: str) -> Optional[CommitRecord]:
    """
    Parse one formatted log record.

    Returns None for records with fewer fields than expected or with values
    that do not validate; such records are skipped, not fatal.
    """
    parts = line.split(FIELD_DELIMITER)
    if len(parts) < MIN_FIELDS:
        logger.debug(f"Skipping malformed log record: {line!r}")
        return None

    try:
        return CommitRecord(
            id=parts[0].strip(),
            parent_ids=parts[1].split() if parts[1] else [],
            author=parts[2],
            author_email=parts[3],
            timestamp=parts[4],
            subject=parts[5],
            decorations=parse_decorations(parts[6]) if len(parts) > 6 else [],
        )
    except ValidationError as e:
        logger.debug(f"Skipping invalid log record {line!r}: {e}")
        return None


def parse_log_output(output: str) -> List[CommitRecord]:
    """Parse multi-record log output, one record per line."""
    commits = []
    for line in output.splitlines():
        if not line.strip():
            continue
        record = parse_record(line)
        if record is not None:
            commits.append(record)
    return commits


def is_timeout(error: GitCommandError) -> bool:
    """True when GitPython killed the command for overrunning ``kill_after_timeout``."""
    return "Timeout" in str(error.stderr)


class RepositoryReader:
    """Translates repository queries into CommitRecord values."""

    def __init__(self, query_timeout: Optional[float] = None):
        self.query_timeout = query_timeout or settings.git.query_timeout

    @staticmethod
    def validate(path: str) -> bool:
        """True iff ``path`` contains a repository marker directory. Never raises."""
        try:
            return os.path.isdir(os.path.join(str(path), REPOSITORY_MARKER))
        except (OSError, TypeError, ValueError):
            return False

    @staticmethod
    def _open(repo_path: str) -> Repo:
        return Repo(repo_path)

    def _query_log(self, repo_path: str, limit: int) -> str:
        return self._open(repo_path).git.log(
            "--all",
            "--date=iso-strict",
            f"--pretty={PRETTY_FORMAT}",
            "-n",
            str(limit),
            kill_after_timeout=self.query_timeout,
        )

    def _query_show(self, repo_path: str, commit_hash: str) -> str:
        return self._open(repo_path).git.show(
            "-s",
            "--date=iso-strict",
            f"--pretty={PRETTY_FORMAT}",
            commit_hash,
            "--",
            kill_after_timeout=self.query_timeout,
        )

    def _query_branch(self, repo_path: str) -> str:
        return self._open(repo_path).git.rev_parse(
            "--abbrev-ref", "HEAD", kill_after_timeout=self.query_timeout
        )

    def _timed_out(self, description: str, repo_path: str) -> ReadFailure:
        logger.error(f"{description} killed after {self.query_timeout}s")
        return ReadFailure(
            f"{description} timed out after {self.query_timeout}s", repo_path=repo_path
        )

    async def load_baseline(self, repo_path: str, limit: Optional[int] = None) -> List[CommitRecord]:
        """
        Load up to ``limit`` most recent commits across all local and
        remote-tracking refs, reverse-chronological as git reports them.

        Raises:
            NotAGitRepository: ``repo_path`` has no repository marker directory
            ReadFailure: the log query failed, timed out, or git is missing
        """
        if not self.validate(repo_path):
            raise NotAGitRepository(repo_path)

        limit = limit or settings.git.baseline_limit
        try:
            output = await asyncio.to_thread(self._query_log, repo_path, limit)
        except GitCommandError as e:
            if is_timeout(e):
                raise self._timed_out(f"git log for {repo_path}", repo_path)
            logger.error(f"Error getting full log for {repo_path}: {e}")
            raise ReadFailure(f"Failed to get git log: {e}", repo_path=repo_path)
        except (GitError, OSError) as e:
            logger.error(f"Error getting full log for {repo_path}: {e}")
            raise ReadFailure(f"Failed to get git log: {e}", repo_path=repo_path)

        commits = parse_log_output(output)
        logger.info(f"Loaded {len(commits)} commits from {repo_path} (limit {limit})")
        return commits

    async def load_one(self, repo_path: str, commit_hash: str) -> CommitRecord:
        """
        Load exactly one commit by hash.

        Raises:
            CommitNotFound: the hash does not resolve
            ReadFailure: the repository could not be queried
        """
        if not commit_hash or commit_hash.startswith("-"):
            raise CommitNotFound(commit_hash or "", repo_path=repo_path)
        if not self.validate(repo_path):
            raise ReadFailure(f"Not a git repository: {repo_path}", repo_path=repo_path)

        try:
            output = await asyncio.to_thread(self._query_show, repo_path, commit_hash)
        except GitCommandError as e:
            if is_timeout(e):
                raise self._timed_out(f"git show {commit_hash}", repo_path)
            logger.debug(f"Commit {commit_hash} did not resolve: {e}")
            raise CommitNotFound(commit_hash, repo_path=repo_path)
        except (GitError, OSError) as e:
            logger.error(f"Error getting commit {commit_hash}: {e}")
            raise ReadFailure(f"Failed to get commit: {e}", repo_path=repo_path)

        lines = [line for line in output.splitlines() if line.strip()]
        record = parse_record(lines[0]) if lines else None
        if record is None:
            raise CommitNotFound(commit_hash, repo_path=repo_path)
        return record

    async def current_branch(self, repo_path: str) -> str:
        """Return the checked-out branch name, or ``HEAD`` when detached or unknown."""
        try:
            return (await asyncio.to_thread(self._query_branch, repo_path)).strip() or "HEAD"
        except (GitError, OSError) as e:
            logger.error(f"Error getting current branch: {e}")
            return "HEAD"
