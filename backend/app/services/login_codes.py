"""One-time login codes handing an SSO result from the HTTP redirect to the session channel.

The callback leg mints a code and puts it in the landing page URL; the front
end sends it back over the WebSocket channel, where it is exchanged exactly
once. Claiming is a single conditional ``UPDATE ... WHERE used = 0``, so among
concurrent exchanges of the same code only one sees a changed row.
"""

import asyncio
import logging
import secrets
from datetime import UTC, datetime

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.errors import LoginCodeRejected, RejectReason
from app.models import LoginCode, User
from app.services.users import get_active_user
from app.utils.log_redaction import sanitize_for_log

logger = logging.getLogger(__name__)


class LoginCodeBridge:
    """Issues and redeems single-use login codes."""

    def __init__(self, ttl_minutes: int | None = None):
        self.ttl_minutes = ttl_minutes or settings.login_code_ttl_minutes
        self._claim_lock = asyncio.Lock()

    async def issue(self, db: AsyncSession, user_id: int) -> str:
        """Persist a fresh code for ``user_id`` and return it."""
        code = secrets.token_hex(32)
        db.add(
            LoginCode(
                code=code,
                user_id=user_id,
                expires_at=LoginCode.get_expiry_time(minutes=self.ttl_minutes),
                used=False,
            )
        )
        await db.commit()
        logger.debug("Issued login code %s... for user %s", code[:8], user_id)
        return code

    async def exchange(self, db: AsyncSession, code: str) -> User:
        """Burn ``code`` and return its owner.

        Raises:
            LoginCodeRejected: Unknown, already used or expired code, or the
                owner is missing or inactive
        """
        if not code or not isinstance(code, str):
            raise LoginCodeRejected(RejectReason.INVALID_OR_USED, "Invalid login code")

        # Mark used before anything else so a failure below cannot leave it replayable
        async with self._claim_lock:
            result = await db.execute(
                update(LoginCode)
                .where(LoginCode.code == code, LoginCode.used.is_(False))
                .values(used=True)
            )
            await db.commit()

        if result.rowcount != 1:
            logger.warning("Invalid or already used login code: %s...", sanitize_for_log(code[:8]))
            raise LoginCodeRejected(RejectReason.INVALID_OR_USED)

        login_code = (
            await db.execute(select(LoginCode).where(LoginCode.code == code))
        ).scalar_one()

        if login_code.is_expired():
            logger.warning("Login code expired: %s...", sanitize_for_log(code[:8]))
            await db.delete(login_code)
            await db.commit()
            raise LoginCodeRejected(RejectReason.EXPIRED)

        user = await get_active_user(db, login_code.user_id)
        if not user:
            logger.warning("User %s not found or inactive for login code", login_code.user_id)
            raise LoginCodeRejected(RejectReason.USER_UNAVAILABLE)

        user.last_login = datetime.now(UTC)
        await db.commit()
        return user

    async def purge_for_user(self, db: AsyncSession, user_id: int, commit: bool = True) -> int:
        """Delete every code belonging to ``user_id``."""
        result = await db.execute(delete(LoginCode).where(LoginCode.user_id == user_id))
        if commit:
            await db.commit()
        return result.rowcount or 0

    async def purge_expired(self, db: AsyncSession) -> int:
        """Delete expired codes, used or not."""
        result = await db.execute(delete(LoginCode).where(LoginCode.expires_at < datetime.now(UTC)))
        await db.commit()
        deleted = result.rowcount or 0
        if deleted > 0:
            logger.info(f"Cleaned up {deleted} expired login codes")
        return deleted


# Module-level singleton for shared usage.
login_codes = LoginCodeBridge()
