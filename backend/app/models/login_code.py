"""One-time login code model bridging the OIDC redirect to the session channel."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class LoginCode(Base):
    """Short-lived, single-use code minted at the end of a successful OIDC callback.

    ``used`` only ever moves from False to True. A code that is used or past
    ``expires_at`` is indistinguishable from a missing one for consumers.
    """

    __tablename__ = "login_codes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE", onupdate="CASCADE"),
        nullable=False,
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    used: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (
        Index("idx_login_codes_code", "code"),
        Index("idx_login_codes_expires_at", "expires_at"),
    )

    def __repr__(self):
        return f"<LoginCode(code={self.code[:8]}..., user_id={self.user_id}, used={self.used})>"

    def is_expired(self, now: datetime | None = None) -> bool:
        """Check if the code has expired."""
        now = now or datetime.now(UTC)
        expires = self.expires_at
        # Handle timezone-naive datetimes from SQLite
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=UTC)
        return bool(now >= expires)

    @classmethod
    def get_expiry_time(cls, minutes: int = 5) -> datetime:
        """Get expiry timestamp for a new code (default 5 minutes)."""
        return datetime.now(UTC) + timedelta(minutes=minutes)
