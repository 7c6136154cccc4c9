"""User directory: lookups, SSO provisioning and admin-guarded mutations.

Role changes and deletions run inside one process-wide lock and re-count the
remaining active admins immediately before committing, so two concurrent
mutations cannot together remove the last admin.
"""

import asyncio
import logging
import secrets
from datetime import UTC, datetime

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import Conflict, LastAdminError, NotFound, ValidationFailed
from app.models import User
from app.services.permissions import Role
from app.utils.log_redaction import sanitize_for_log

logger = logging.getLogger(__name__)

_mutation_lock = asyncio.Lock()


async def get_active_user(db: AsyncSession, user_id: int) -> User | None:
    """Fetch an active user by id."""
    result = await db.execute(select(User).where(User.id == user_id, User.active.is_(True)))
    return result.scalar_one_or_none()


async def get_user_by_subject(db: AsyncSession, subject_id: str) -> User | None:
    """Fetch a user (active or not) by external subject id."""
    result = await db.execute(select(User).where(User.external_subject_id == subject_id))
    return result.scalar_one_or_none()


async def list_active_users(db: AsyncSession) -> list[User]:
    result = await db.execute(select(User).where(User.active.is_(True)).order_by(User.id.asc()))
    return list(result.scalars().all())


async def has_active_users(db: AsyncSession) -> bool:
    result = await db.execute(select(func.count(User.id)).where(User.active.is_(True)))
    return (result.scalar() or 0) > 0


async def count_active_admins(db: AsyncSession, exclude_user_id: int | None = None) -> int:
    """Count active admins, optionally ignoring one user."""
    stmt = select(func.count(User.id)).where(
        User.active.is_(True), User.role == Role.ADMIN.value
    )
    if exclude_user_id is not None:
        stmt = stmt.where(User.id != exclude_user_id)
    result = await db.execute(stmt)
    return result.scalar() or 0


async def _username_taken(db: AsyncSession, username: str) -> bool:
    result = await db.execute(select(User.id).where(User.username == username))
    return result.first() is not None


def username_from_email(email: str | None, subject_id: str) -> str:
    """Derive a username from the local part of an email address."""
    local_part = (email or "").split("@")[0].strip()
    return local_part or f"user_{subject_id[:8]}"


async def create_sso_user(
    db: AsyncSession,
    subject_id: str,
    email: str | None,
    display_name: str | None,
    role: Role,
) -> User:
    """Provision an active, password-less user for an external identity.

    The username is the email local part. On collision a single random
    ``_xxxxxxxx`` suffix is tried before giving up with Conflict.
    """
    username = username_from_email(email, subject_id)
    if await _username_taken(db, username):
        username = f"{username}_{secrets.token_hex(4)}"
        if await _username_taken(db, username):
            raise Conflict("Could not allocate a unique username")

    user = User(
        username=username,
        external_subject_id=subject_id,
        email=email,
        display_name=display_name,
        role=role.value,
        active=True,
        password_hash=None,
        last_login=datetime.now(UTC),
    )
    db.add(user)
    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        logger.warning(f"Username or subject collision creating SSO user: {sanitize_for_log(username)}")
        raise Conflict("Could not allocate a unique username") from e

    await db.refresh(user)
    logger.info(f"Created new user: {sanitize_for_log(username)} ({sanitize_for_log(email)})")
    return user


async def update_sso_profile(
    db: AsyncSession,
    user: User,
    email: str | None,
    display_name: str | None,
) -> User:
    """Refresh profile fields from the provider and stamp the login time."""
    user.email = email
    user.display_name = display_name
    user.last_login = datetime.now(UTC)
    await db.commit()
    await db.refresh(user)
    logger.info(f"Updated user: {sanitize_for_log(user.username)} ({sanitize_for_log(email)})")
    return user


async def create_local_admin(
    db: AsyncSession,
    username: str,
    password_hash: str,
    email: str | None = None,
    display_name: str | None = None,
) -> User:
    """Create a password-based administrator (first-run setup)."""
    user = User(
        username=username,
        password_hash=password_hash,
        email=email,
        display_name=display_name,
        role=Role.ADMIN.value,
        active=True,
    )
    db.add(user)
    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        raise Conflict("Username already exists") from e
    await db.refresh(user)
    return user


async def set_user_role(db: AsyncSession, user_id: int, role: Role, actor_id: int | None) -> User:
    """Change a user's role, refusing to demote the last active admin."""
    async with _mutation_lock:
        user = await get_active_user(db, user_id)
        if not user:
            raise NotFound("User not found")

        if role is not Role.ADMIN and user.role == Role.ADMIN.value:
            if await count_active_admins(db, exclude_user_id=user.id) == 0:
                raise LastAdminError()

        user.role = role.value
        await db.commit()

    logger.info(
        f"User {sanitize_for_log(user.username)} role changed to {role.value} by user {actor_id}"
    )
    return user


async def deactivate_user(db: AsyncSession, user_id: int, actor_id: int | None) -> User:
    """Soft-delete a user and purge their pending login codes."""
    from app.services.login_codes import login_codes

    if actor_id is not None and user_id == actor_id:
        raise ValidationFailed("You cannot delete your own account")

    async with _mutation_lock:
        user = await get_active_user(db, user_id)
        if not user:
            raise NotFound("User not found")

        if user.role == Role.ADMIN.value:
            if await count_active_admins(db, exclude_user_id=user.id) == 0:
                raise LastAdminError(
                    "Cannot delete the last admin. At least one admin must remain."
                )

        user.active = False
        await login_codes.purge_for_user(db, user.id, commit=False)
        await db.commit()

    logger.info(f"User {sanitize_for_log(user.username)} deleted by user {actor_id}")
    return user
