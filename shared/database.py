"""
Recent-repository store for GitFlow Live.

This module persists which repositories were opened, most recent first,
so the tracker can resume the last session. It provides:
- Connection and session management
- Schema creation
- A small repository-pattern store over the recent list
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Optional

from sqlalchemy import DateTime, String, create_engine, delete, select
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker

from config.settings import settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


class RecentRepositoryModel(Base):
    """SQLAlchemy model for a recently opened repository."""

    __tablename__ = "recent_repositories"

    path: Mapped[str] = mapped_column(String(4096), primary_key=True)
    last_opened_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)


class DatabaseManager:
    """Database connection and session management."""

    def __init__(self, url: Optional[str] = None):
        self.url = url or settings.store.database_url
        self.engine: Optional[Engine] = None
        self.SessionLocal = None
        self._initialized = False

    def initialize(self):
        """Initialize the engine and create tables."""
        if self._initialized:
            return

        database = make_url(self.url).database
        if self.url.startswith("sqlite") and database and database != ":memory:":
            Path(database).parent.mkdir(parents=True, exist_ok=True)

        self.engine = create_engine(self.url, future=True)
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)
        Base.metadata.create_all(bind=self.engine)

        self._initialized = True
        logger.info(f"Recent-repository store initialized at {self.url}")

    @contextmanager
    def get_session(self) -> Iterator[Session]:
        """Get a transactional session."""
        if not self._initialized:
            self.initialize()

        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def close(self):
        """Dispose of the engine."""
        if self.engine is not None:
            self.engine.dispose()
        self._initialized = False


class RepositoryStore:
    """Most-recently-used list of opened repositories."""

    def __init__(self, manager: Optional[DatabaseManager] = None, max_recent: Optional[int] = None):
        self.manager = manager or DatabaseManager()
        self.max_recent = max_recent or settings.store.max_recent

    def record_repository(self, path: str) -> None:
        """Mark a repository as just opened and trim the list."""
        with self.manager.get_session() as session:
            row = session.get(RecentRepositoryModel, path)
            now = datetime.now(timezone.utc)
            if row is None:
                session.add(RecentRepositoryModel(path=path, last_opened_at=now))
            else:
                row.last_opened_at = now
            session.flush()

            stale = session.scalars(
                select(RecentRepositoryModel.path)
                .order_by(RecentRepositoryModel.last_opened_at.desc())
                .offset(self.max_recent)
            ).all()
            if stale:
                session.execute(
                    delete(RecentRepositoryModel).where(RecentRepositoryModel.path.in_(stale))
                )
        logger.debug(f"Recorded recent repository {path}")

    def recent_repositories(self, limit: Optional[int] = None) -> List[str]:
        """Return repository paths, most recently opened first."""
        with self.manager.get_session() as session:
            query = select(RecentRepositoryModel.path).order_by(
                RecentRepositoryModel.last_opened_at.desc()
            )
            if limit is not None:
                query = query.limit(limit)
            return list(session.scalars(query).all())

    def last_repository(self) -> Optional[str]:
        """Return the most recently opened repository, if any."""
        recent = self.recent_repositories(limit=1)
        return recent[0] if recent else None

    def clear(self) -> None:
        """Forget every recent repository."""
        with self.manager.get_session() as session:
            session.execute(delete(RecentRepositoryModel))


__all__ = [
    "Base", "RecentRepositoryModel", "DatabaseManager", "RepositoryStore",
]
