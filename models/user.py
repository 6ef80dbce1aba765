"""
User Model
Accounts authenticate either with local credentials or with Google OAuth.
"""

import enum
from datetime import datetime
from typing import Optional, TYPE_CHECKING

from flask_login import UserMixin
from sqlalchemy import String, Integer, DateTime
from sqlalchemy.orm import Mapped, mapped_column, relationship
from werkzeug.security import generate_password_hash, check_password_hash

from .base import db, utcnow

if TYPE_CHECKING:
    from .task import Task


class AuthProvider(str, enum.Enum):
    LOCAL = "local"
    GOOGLE = "google"


class User(UserMixin, db.Model):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Google-only accounts have no username
    username: Mapped[Optional[str]] = mapped_column(String(30), unique=True, nullable=True, index=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    password_hash: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    google_id: Mapped[Optional[str]] = mapped_column(String(64), unique=True, nullable=True, index=True)
    display_name: Mapped[Optional[str]] = mapped_column(String(120))
    avatar_url: Mapped[Optional[str]] = mapped_column(String(512))
    auth_provider: Mapped[str] = mapped_column(String(16), default=AuthProvider.LOCAL.value, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    tasks: Mapped[list["Task"]] = relationship(back_populates="owner", cascade="all, delete-orphan")

    def __repr__(self):
        return f'<User {self.id}: {self.email}>'

    def set_password(self, password: str):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        if not self.password_hash:
            return False
        return check_password_hash(self.password_hash, password)

    @property
    def is_local(self) -> bool:
        return self.auth_provider == AuthProvider.LOCAL.value

    def to_dict(self):
        """Public profile; never includes the password hash."""
        return {
            'id': self.id,
            'username': self.username,
            'email': self.email,
            'display_name': self.display_name,
            'auth_provider': self.auth_provider,
            'avatar_url': self.avatar_url,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
