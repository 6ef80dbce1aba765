from .base import Base, db, utcnow
from .user import User, AuthProvider
from .task import Task, TaskStatus, TaskPriority

__all__ = [
    "Base",
    "db",
    "utcnow",
    "User",
    "AuthProvider",
    "Task",
    "TaskStatus",
    "TaskPriority",
]
