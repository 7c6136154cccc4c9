"""User authentication primitives for Watchpost.

Key features:
- Argon2id password hashing for local accounts
- HS256 bearer tokens carrying the user id, username and role
- Signing key from configuration or a persisted key file
"""

import logging
import secrets
import time
from datetime import UTC, datetime, timedelta
from pathlib import Path

from argon2 import PasswordHasher
from authlib.jose import JoseError, jwt

from app.config import settings
from app.errors import Unauthenticated

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"
JWT_SECRET_KEY_FILENAME = "user_auth_secret.key"

# time_cost=2, memory_cost=102400 (100MB), parallelism=8
ph = PasswordHasher(time_cost=2, memory_cost=102400, parallelism=8)


# ============================================================================
# Secret Key Management
# ============================================================================


def get_or_create_secret_key(data_dir: str | None = None) -> str:
    """Get existing or create new signing key.

    A key set through configuration wins. Otherwise the key is read from
    ``<data_dir>/user_auth_secret.key`` and generated on first use.

    Note:
        Falls back to in-memory key generation if file operations fail.
        This means the key will change on restart, logging out all users.
    """
    if settings.jwt_secret_key:
        return settings.jwt_secret_key

    key_file = Path(data_dir or settings.data_dir) / JWT_SECRET_KEY_FILENAME
    try:
        if key_file.exists():
            secret_key = key_file.read_text().strip()
            if secret_key:
                logger.debug("Loaded existing signing key from %s", key_file)
                return secret_key
            logger.warning("Signing key file at %s is empty, generating new key", key_file)

        # Generate cryptographically secure key (32 bytes = 256 bits)
        secret_key = secrets.token_urlsafe(32)
        key_file.parent.mkdir(parents=True, exist_ok=True)
        key_file.write_text(secret_key)  # noqa: S105
        key_file.chmod(0o600)

        logger.info("Generated new signing key and saved to %s", key_file)
        return secret_key

    except OSError as e:
        logger.error("Failed to handle signing key file: %s", str(e))
        logger.warning("Using temporary in-memory signing key (will change on restart)")
        return secrets.token_urlsafe(32)


_SECRET_KEY: str | None = None


def _secret_key() -> str:
    global _SECRET_KEY
    if _SECRET_KEY is None:
        _SECRET_KEY = get_or_create_secret_key()
    return _SECRET_KEY


# ============================================================================
# Password Operations
# ============================================================================


def hash_password(password: str) -> str:
    """Hash a password using Argon2id."""
    return ph.hash(password)


# ============================================================================
# Bearer Tokens
# ============================================================================


def create_access_token(
    user_id: int,
    username: str,
    role: str,
    expires_delta: timedelta | None = None,
) -> str:
    """Create a bearer token for a user/role pair."""
    now = datetime.now(UTC)
    expire = now + (expires_delta or timedelta(minutes=settings.jwt_expire_minutes))
    payload = {
        "sub": str(user_id),
        "username": username,
        "role": role,
        "iat": int(now.timestamp()),
        "exp": int(expire.timestamp()),
    }
    header = {"alg": JWT_ALGORITHM}
    encoded_jwt = jwt.encode(header, payload, _secret_key())
    return encoded_jwt.decode("utf-8") if isinstance(encoded_jwt, bytes) else encoded_jwt


def decode_token(token: str) -> dict:
    """Decode and validate a bearer token.

    Raises:
        Unauthenticated: If the token is malformed, forged or expired
    """
    try:
        payload = jwt.decode(token, _secret_key())
    except (JoseError, ValueError) as e:
        logger.warning("JWT decode error: %s", e)
        raise Unauthenticated("Could not validate credentials") from e

    # authlib does not check exp unless claims.validate() is called
    exp = payload.get("exp")
    if exp is None or exp < time.time():
        logger.warning("JWT token has expired")
        raise Unauthenticated("Could not validate credentials")

    return dict(payload)
