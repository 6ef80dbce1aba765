"""
Task Model
Personal task records. Every task has exactly one owner and only the owner may read or mutate it.
"""

import enum
import uuid
from typing import Optional, TYPE_CHECKING
from datetime import datetime, date

from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import String, Integer, DateTime, Date, Text, ForeignKey, Index

from .base import db, utcnow

if TYPE_CHECKING:
    from .user import User


class TaskStatus(str, enum.Enum):
    TODO = "todo"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"


class TaskPriority(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


def generate_task_id() -> str:
    return uuid.uuid4().hex


class Task(db.Model):
    __tablename__ = "tasks"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=generate_task_id)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    owner: Mapped["User"] = relationship(back_populates="tasks")

    # Task content
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")

    # Task classification
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=TaskStatus.TODO.value)
    priority: Mapped[str] = mapped_column(String(16), nullable=False, default=TaskPriority.MEDIUM.value)

    due_date: Mapped[Optional[date]] = mapped_column(Date)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        # User task list ordered newest first
        Index('ix_tasks_user_created', 'user_id', 'created_at'),
    )

    def __repr__(self):
        return f'<Task {self.id}: {self.title}>'

    @property
    def is_completed(self) -> bool:
        """Check if task is completed."""
        return self.status == TaskStatus.COMPLETED.value

    @property
    def is_overdue(self) -> bool:
        """Check if task is overdue."""
        if not self.due_date or self.is_completed:
            return False
        return date.today() > self.due_date

    def is_owned_by(self, user_id: int) -> bool:
        return self.user_id == user_id

    def apply_changes(self, changes: dict):
        """Apply an already-validated partial update."""
        for field in ('title', 'description', 'status', 'priority', 'due_date'):
            if field in changes:
                setattr(self, field, changes[field])
        self.updated_at = utcnow()

    def to_dict(self):
        """Convert task to dictionary for JSON serialization."""
        return {
            'id': self.id,
            'user_id': self.user_id,
            'title': self.title,
            'description': self.description,
            'status': self.status,
            'priority': self.priority,
            'due_date': self.due_date.isoformat() if self.due_date else None,
            'is_overdue': self.is_overdue,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }
