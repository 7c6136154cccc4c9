"""First-run setup and authentication status endpoints."""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.errors import Conflict
from app.schemas.user_auth import SetupRequest, SetupResponse, UserAuthStatusResponse
from app.services import users
from app.services.oidc import get_oidc_settings
from app.services.user_auth import hash_password
from app.utils.log_redaction import sanitize_for_log

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/user-auth", tags=["User Authentication"])


# ============================================================================
# Public Endpoints (No Auth Required)
# ============================================================================


@router.get("/status", response_model=UserAuthStatusResponse)
async def get_user_auth_status(
    db: AsyncSession = Depends(get_db),
):
    """Get user authentication status (public endpoint).

    Returns setup completion status and Entra ID SSO enablement.
    """
    setup_complete = await users.has_active_users(db)
    oidc_settings = await get_oidc_settings(db)

    return {
        "setup_complete": setup_complete,
        "oidc_enabled": oidc_settings.enabled,
    }


@router.post("/setup", response_model=SetupResponse, status_code=status.HTTP_201_CREATED)
async def setup_admin_account(
    setup_data: SetupRequest,
    db: AsyncSession = Depends(get_db),
):
    """Create the initial admin account (first-time setup).

    Only works while no active user exists.
    """
    if await users.has_active_users(db):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Setup already complete. Admin account exists.",
        )

    try:
        user = await users.create_local_admin(
            db,
            username=setup_data.username,
            password_hash=hash_password(setup_data.password),
            email=setup_data.email,
            display_name=setup_data.full_name,
        )
    except Conflict as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.user_message) from e

    logger.info("Initial admin account created: %s", sanitize_for_log(user.username))

    return {
        "id": user.id,
        "username": user.username,
        "email": user.email,
        "role": user.role,
        "message": "Admin account created successfully",
    }
