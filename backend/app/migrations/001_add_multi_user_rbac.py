"""Add roles and Entra ID identity columns to users, plus the login_codes table.

Pre-RBAC databases have a ``users`` table with only local accounts; every
existing user becomes an admin.
"""

import logging

from sqlalchemy import text

logger = logging.getLogger(__name__)


async def check_table_exists(conn, table: str) -> bool:
    """Check if a table exists."""
    result = await conn.execute(
        text("SELECT name FROM sqlite_master WHERE type='table' AND name=:table"), {"table": table}
    )
    return result.fetchone() is not None


async def get_columns(conn, table: str) -> set[str]:
    result = await conn.execute(text(f"PRAGMA table_info({table})"))
    return {row[1] for row in result}


USER_COLUMNS = [
    ("role", "VARCHAR(20) NOT NULL DEFAULT 'admin'"),
    ("external_subject_id", "VARCHAR(255)"),
    ("email", "VARCHAR(255)"),
    ("display_name", "VARCHAR(255)"),
    ("last_login", "DATETIME"),
]


async def upgrade(conn):
    """Upgrade users for multi-user RBAC and create login_codes."""
    logger.info("Migration 001: Adding multi-user RBAC support")

    # ================================================================
    # STEP 1: Extend users
    # ================================================================
    if await check_table_exists(conn, "users"):
        columns = await get_columns(conn, "users")
        for name, ddl in USER_COLUMNS:
            if name not in columns:
                await conn.execute(text(f"ALTER TABLE users ADD COLUMN {name} {ddl}"))
                logger.info(f"  ✓ Added users.{name}")

        # SQLite cannot add a UNIQUE column; enforce it with an index instead
        await conn.execute(
            text(
                "CREATE UNIQUE INDEX IF NOT EXISTS idx_users_external_subject_id "
                "ON users(external_subject_id)"
            )
        )
    else:
        logger.debug("Users table doesn't exist yet - skipping")

    # ================================================================
    # STEP 2: Create login_codes
    # ================================================================
    if not await check_table_exists(conn, "login_codes"):
        await conn.execute(
            text("""
            CREATE TABLE login_codes (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                code VARCHAR(64) NOT NULL UNIQUE,
                user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                expires_at DATETIME NOT NULL,
                used BOOLEAN NOT NULL DEFAULT 0
            )
        """)
        )
        logger.info("  ✓ Created login_codes table")
    else:
        logger.info("  ⊘ Table already exists: login_codes")

    await conn.execute(
        text("CREATE INDEX IF NOT EXISTS idx_login_codes_code ON login_codes(code)")
    )
    await conn.execute(
        text("CREATE INDEX IF NOT EXISTS idx_login_codes_expires_at ON login_codes(expires_at)")
    )

    logger.info("✓ Migration 001 completed")
