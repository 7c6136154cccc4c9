"""Database models for Watchpost."""

from app.models.login_code import LoginCode
from app.models.setting import Setting
from app.models.user import User

__all__ = [
    "LoginCode",
    "Setting",
    "User",
]
