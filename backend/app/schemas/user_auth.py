"""First-run setup and status schemas."""

import re

from pydantic import BaseModel, EmailStr, Field, field_validator


class SetupRequest(BaseModel):
    """Schema for initial admin account setup."""

    username: str = Field(..., min_length=3, max_length=100)
    email: EmailStr = Field(..., max_length=255)
    password: str = Field(..., min_length=8, max_length=100)
    full_name: str | None = Field(None, max_length=255)

    @field_validator("username")
    @classmethod
    def validate_username(cls, v: str) -> str:
        """Validate username format."""
        if not re.match(r"^[a-zA-Z0-9_.-]+$", v):
            raise ValueError(
                "Username can only contain letters, numbers, dots, underscores, and hyphens"
            )
        return v

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        """Validate password strength."""
        if len(v) < 8:
            raise ValueError("Password must be at least 8 characters long")
        if not re.search(r"[A-Z]", v):
            raise ValueError("Password must contain at least one uppercase letter")
        if not re.search(r"[a-z]", v):
            raise ValueError("Password must contain at least one lowercase letter")
        if not re.search(r"\d", v):
            raise ValueError("Password must contain at least one digit")
        return v


class SetupResponse(BaseModel):
    """Response after successful setup."""

    id: int
    username: str
    email: str | None
    role: str
    message: str = "Admin account created successfully"


class UserAuthStatusResponse(BaseModel):
    """User authentication status response."""

    setup_complete: bool
    oidc_enabled: bool
