"""
Shared fixtures: throwaway Git repositories and sample commit records.
"""

import subprocess
from datetime import datetime, timezone
from pathlib import Path

import pytest
from git import Repo

from shared.database import DatabaseManager, RepositoryStore
from shared.models import CommitRecord


def _configure(repo: Repo):
    with repo.config_writer() as writer:
        writer.set_value("user", "name", "Test User")
        writer.set_value("user", "email", "test@example.com")
        writer.set_value("commit", "gpgsign", "false")


def make_commit(repo: Repo, message: str, filename: str = "file.txt", when: str = None) -> str:
    """Append to a file, commit it with the git CLI and return the new hash."""
    path = Path(repo.working_tree_dir) / filename
    with open(path, "a", encoding="utf-8") as f:
        f.write(message + "\n")
    repo.git.add(A=True)
    env = {"GIT_AUTHOR_DATE": when, "GIT_COMMITTER_DATE": when} if when else None
    repo.git.commit("-m", message, env=env)
    return repo.head.commit.hexsha


@pytest.fixture
def add_commit():
    """The make_commit helper, for tests that grow a repository."""
    return make_commit


@pytest.fixture
def git_repo(tmp_path):
    """An initialized repository with no commits."""
    repo = Repo.init(tmp_path / "repo")
    _configure(repo)
    return repo


@pytest.fixture
def linear_repo(git_repo):
    """c1 -> c2 -> c3, c3 newest."""
    for index, when in enumerate(
        ["2023-11-14T10:00:00+00:00", "2023-11-14T11:00:00+00:00", "2023-11-14T12:00:00+00:00"],
        start=1,
    ):
        make_commit(git_repo, f"c{index}", when=when)
    return git_repo


@pytest.fixture
def other_repo(tmp_path):
    """A second repository with one commit, for switching tests."""
    repo = Repo.init(tmp_path / "other")
    _configure(repo)
    make_commit(repo, "other initial", when="2023-11-15T09:00:00+00:00")
    return repo


@pytest.fixture(scope="session")
def large_repo(tmp_path_factory):
    """6000 linear commits created with git fast-import, one second apart."""
    path = tmp_path_factory.mktemp("large") / "repo"
    repo = Repo.init(path)
    _configure(repo)

    chunks = []
    for index in range(1, 6001):
        message = f"commit {index}\n".encode()
        chunks.append(b"commit refs/heads/main\n")
        chunks.append(f"mark :{index}\n".encode())
        chunks.append(
            f"committer Test User <test@example.com> {1700000000 + index} +0000\n".encode()
        )
        chunks.append(f"data {len(message)}\n".encode() + message)
        if index > 1:
            chunks.append(f"from :{index - 1}\n".encode())
        chunks.append(b"\n")

    subprocess.run(
        ["git", "fast-import", "--quiet"],
        input=b"".join(chunks),
        cwd=str(path),
        check=True,
    )
    return repo


@pytest.fixture
def store(tmp_path):
    """Recent-repository store backed by a temporary SQLite file."""
    manager = DatabaseManager(f"sqlite:///{tmp_path / 'store' / 'recent.db'}")
    repository_store = RepositoryStore(manager=manager, max_recent=3)
    yield repository_store
    manager.close()


@pytest.fixture
def make_record():
    """Factory for CommitRecord values."""
    def factory(commit_id: str = "abc123", subject: str = "fix bug", parents=None):
        return CommitRecord(
            id=commit_id,
            parent_ids=parents if parents is not None else ["0" * 40],
            author="Jane",
            author_email="j@x.com",
            timestamp=datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc),
            subject=subject,
            decorations=[],
        )

    return factory
