"""User model for local and SSO-provisioned accounts."""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import Boolean, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class User(Base):
    """An application user.

    Local accounts carry a password hash; accounts provisioned through Entra ID
    carry the directory object id in ``external_subject_id`` and no password.
    ``active=False`` is a soft delete.
    """

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    password_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    # Legacy/local accounts predate roles and were all administrators
    role: Mapped[str] = mapped_column(String(20), default="admin", nullable=False)
    external_subject_id: Mapped[str | None] = mapped_column(
        String(255), unique=True, nullable=True
    )
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False
    )
    last_login: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<User(id={self.id}, username='{self.username}', role='{self.role}')>"

    @property
    def has_external_identity(self) -> bool:
        return bool(self.external_subject_id)

    @property
    def has_password(self) -> bool:
        return bool(self.password_hash)

    def to_dict(self) -> dict:
        """Convert to the channel representation (never exposes hash or subject id)."""
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "displayName": self.display_name,
            "role": self.role or "admin",
            "lastLogin": self.last_login.isoformat() if self.last_login else None,
            "hasEntraId": self.has_external_identity,
            "hasPassword": self.has_password,
        }
