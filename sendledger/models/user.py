from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import Enum, ForeignKey, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from sendledger.models.base import Base, TimestampMixin


class UserRole(str, enum.Enum):
    """Account roles on the marketplace."""

    TALENT = "talent"
    CLIENT = "client"
    ADMIN = "admin"


class User(Base, TimestampMixin):
    """Marketplace account (talent, client, or admin)."""

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    first_name: Mapped[str | None] = mapped_column(String(100), default=None)
    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole, native_enum=False, length=20), default=UserRole.TALENT
    )
    email_verified_at: Mapped[datetime | None] = mapped_column(default=None)

    # Relationships
    sessions: Mapped[list[Session]] = relationship(back_populates="user", lazy="selectin")

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def display_name(self) -> str:
        """First name, falling back to the local part of the email."""
        return self.first_name or self.email.split("@")[0]

    def __repr__(self) -> str:
        return f"<User {self.email}>"


class Session(Base, TimestampMixin):
    """User session for cookie-based authentication."""

    __tablename__ = "sessions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), index=True
    )
    expires_at: Mapped[datetime] = mapped_column()

    # Relationships
    user: Mapped[User] = relationship(back_populates="sessions", lazy="selectin")

    def __repr__(self) -> str:
        return f"<Session {self.id}>"
