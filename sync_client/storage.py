"""
Durable client-side storage.

One SQLite database holds both the cache snapshots and the offline queue so
they survive a full client restart. Every row is keyed by account so
switching accounts on the same device never exposes another account's data.
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional, Iterator

from sqlalchemy import create_engine, String, Integer, DateTime, Text, JSON, Index
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker, Session
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class ClientBase(DeclarativeBase):
    pass


class CacheSnapshotRow(ClientBase):
    __tablename__ = "cache_snapshots"

    # At most one snapshot per account
    account_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tasks: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    captured_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


class QueuedOperationRow(ClientBase):
    __tablename__ = "offline_queue"

    # Enqueue order; AUTOINCREMENT so a removed sequence is never reused
    sequence: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    account_id: Mapped[str] = mapped_column(String(64), nullable=False)

    kind: Mapped[str] = mapped_column(String(16), nullable=False)
    target_kind: Mapped[Optional[str]] = mapped_column(String(16))
    target_id: Mapped[Optional[str]] = mapped_column(String(64))
    placeholder_id: Mapped[Optional[str]] = mapped_column(String(64))
    payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[Optional[str]] = mapped_column(Text)
    enqueued_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index('ix_offline_queue_account_sequence', 'account_id', 'sequence'),
        {'sqlite_autoincrement': True},
    )


class LocalStore:
    """
    Engine and session factory over the client database.

    Args:
        path: SQLite file path, or None for a private in-memory database
    """

    def __init__(self, path: Optional[str] = None, echo: bool = False):
        self.path = path
        if path:
            self.engine = create_engine(
                f"sqlite:///{path}",
                echo=echo,
                connect_args={"check_same_thread": False},
            )
        else:
            # One shared connection so every thread sees the same in-memory database
            self.engine = create_engine(
                "sqlite://",
                echo=echo,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        ClientBase.metadata.create_all(self.engine)
        self._sessions = sessionmaker(bind=self.engine, expire_on_commit=False)
        logger.debug(f"Local store ready at {path or ':memory:'}")

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """Session whose work commits on success and rolls back on error."""
        with self._sessions.begin() as session:
            yield session

    def close(self):
        self.engine.dispose()
