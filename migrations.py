"""
Database Migration System

Applies versioned SQL files from migrations/ (NNN_name.sql) in numeric
order. Each migration runs in its own transaction and is recorded in the
schema_migrations table; applied versions are skipped.
"""
import logging
import re
from pathlib import Path
from typing import List, Set, Tuple

import asyncpg

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"
MIGRATION_FILE_RE = re.compile(r"^(\d+)_(.+)\.sql$")


async def ensure_migrations_table(conn: asyncpg.Connection):
    await conn.execute("""
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version TEXT PRIMARY KEY,
            applied_at TIMESTAMPTZ DEFAULT NOW()
        )
    """)


async def get_applied_migrations(conn: asyncpg.Connection) -> Set[str]:
    rows = await conn.fetch("SELECT version FROM schema_migrations")
    return {row["version"] for row in rows}


def get_migration_files(migrations_dir: Path = MIGRATIONS_DIR) -> List[Tuple[str, Path]]:
    """
    List migration files sorted by numeric version.

    Returns:
        [(version, path), ...]
    """
    if not migrations_dir.exists():
        logger.warning(f"Migrations directory not found: {migrations_dir}")
        return []

    migrations = []
    for file_path in migrations_dir.glob("*.sql"):
        match = MIGRATION_FILE_RE.match(file_path.name)
        if match:
            migrations.append((match.group(1), file_path))
        else:
            logger.warning(f"Migration file name doesn't match pattern: {file_path.name}")

    # numeric, not lexicographic
    migrations.sort(key=lambda x: int(x[0]))
    return migrations


async def apply_migration(conn: asyncpg.Connection, version: str, migration_path: Path) -> None:
    """
    Apply one migration. Caller holds the transaction.

    Raises:
        asyncpg.PostgresError: SQL failed
    """
    sql_content = migration_path.read_text(encoding="utf-8")
    if not sql_content.strip():
        logger.warning(f"Migration {version} is empty, skipping")
        return

    logger.info(f"Applying migration {version}: {migration_path.name}")
    # asyncpg executes multi-statement SQL natively
    await conn.execute(sql_content)
    await conn.execute(
        "INSERT INTO schema_migrations (version) VALUES ($1) ON CONFLICT (version) DO NOTHING",
        version,
    )
    logger.info(f"Migration {version} applied successfully")


async def run_migrations(conn: asyncpg.Connection, migrations_dir: Path = MIGRATIONS_DIR) -> List[str]:
    """
    Apply all pending migrations.

    Returns:
        Versions applied by this call

    Raises:
        asyncpg.PostgresError: A migration failed; it is rolled back,
            earlier ones stay applied
    """
    await ensure_migrations_table(conn)
    applied = await get_applied_migrations(conn)

    newly_applied = []
    for version, migration_path in get_migration_files(migrations_dir):
        if version in applied:
            continue
        try:
            async with conn.transaction():
                await apply_migration(conn, version, migration_path)
        except asyncpg.PostgresError:
            logger.exception(f"CRITICAL: Migration {version} ({migration_path.name}) FAILED")
            raise
        newly_applied.append(version)

    logger.info(f"Migrations up to date (applied now: {newly_applied or 'none'})")
    return newly_applied


async def run_migrations_safe(pool: asyncpg.Pool) -> List[str]:
    """Run migrations on a pooled connection."""
    async with pool.acquire() as conn:
        return await run_migrations(conn)
