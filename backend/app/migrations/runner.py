"""Numbered schema migrations tracked in a ``schema_migrations`` table.

Each migration is a module named ``NNN_description.py`` exposing
``async def upgrade(conn)``. Migrations run in filename order inside their own
transaction and are recorded only after they succeed.
"""

import importlib.util
import logging
from pathlib import Path
from types import ModuleType

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

logger = logging.getLogger(__name__)

SKIPPED_FILES = ("__init__.py", "runner.py")


class MigrationRunner:
    """Discovers, tracks and applies migrations."""

    def __init__(self, engine: AsyncEngine, migrations_dir: Path):
        self.engine = engine
        self.migrations_dir = Path(migrations_dir)

    async def _ensure_tracking_table(self, conn: AsyncConnection) -> None:
        await conn.execute(
            text("""
            CREATE TABLE IF NOT EXISTS schema_migrations (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                migration_name VARCHAR(255) NOT NULL UNIQUE,
                applied_at DATETIME DEFAULT CURRENT_TIMESTAMP NOT NULL
            )
        """)
        )

    async def applied_migrations(self) -> set[str]:
        """Names of migrations already recorded as applied."""
        async with self.engine.begin() as conn:
            await self._ensure_tracking_table(conn)
            result = await conn.execute(text("SELECT migration_name FROM schema_migrations"))
            return {row[0] for row in result}

    def discover(self) -> list[tuple[str, Path]]:
        """All migration files as (name, path), sorted by filename."""
        migrations = [
            (path.stem, path)
            for path in self.migrations_dir.glob("*.py")
            if path.name not in SKIPPED_FILES
        ]
        migrations.sort(key=lambda item: item[0])
        return migrations

    async def pending(self) -> list[tuple[str, Path]]:
        applied = await self.applied_migrations()
        return [(name, path) for name, path in self.discover() if name not in applied]

    @staticmethod
    def _load(name: str, path: Path) -> ModuleType:
        spec = importlib.util.spec_from_file_location(f"watchpost_migration_{name}", path)
        if spec is None or spec.loader is None:
            raise ImportError(f"Could not load migration module: {path}")
        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)
        if not hasattr(module, "upgrade"):
            raise AttributeError(f"Migration {name} has no upgrade(conn) function")
        return module

    async def apply(self, name: str, path: Path) -> None:
        """Run one migration and record it in the same transaction."""
        module = self._load(name, path)
        logger.info(f"Running migration: {name}")
        async with self.engine.begin() as conn:
            await module.upgrade(conn)
            await conn.execute(
                text("INSERT INTO schema_migrations (migration_name) VALUES (:name)"),
                {"name": name},
            )

    async def run_pending_migrations(self) -> int:
        """Apply every pending migration in order; stop at the first failure.

        Returns:
            Number of migrations applied
        """
        pending = await self.pending()
        if not pending:
            logger.info("No pending migrations")
            return 0

        logger.info(f"Found {len(pending)} pending migration(s)")
        for name, path in pending:
            try:
                await self.apply(name, path)
            except Exception as e:
                logger.error(f"Migration '{name}' failed: {e}")
                logger.error("Stopping migration run - fix errors and restart")
                raise

        logger.info(f"All {len(pending)} migration(s) applied successfully")
        return len(pending)


async def run_migrations(engine: AsyncEngine, migrations_dir: Path) -> int:
    """Convenience wrapper around ``MigrationRunner.run_pending_migrations``."""
    runner = MigrationRunner(engine, migrations_dir)
    return await runner.run_pending_migrations()
