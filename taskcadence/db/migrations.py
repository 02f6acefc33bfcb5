"""Database migration runner.

The schema version is kept in SQLite's ``user_version`` pragma.
"""

import logging
from pathlib import Path

import aiosqlite

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1


async def get_schema_version(db: aiosqlite.Connection) -> int:
    async with db.execute("PRAGMA user_version") as cursor:
        row = await cursor.fetchone()
        return row[0]


async def _apply_initial_schema(db: aiosqlite.Connection) -> None:
    schema_path = Path(__file__).parent / "schema.sql"
    with open(schema_path) as f:
        await db.executescript(f.read())


# Version reached -> step that upgrades from the previous version
MIGRATIONS = {
    1: _apply_initial_schema,
}


async def run_migrations(db_path: Path) -> int:
    """Bring the database up to ``SCHEMA_VERSION``; returns the version reached.

    Raises:
        RuntimeError: the database was written by a newer version
    """
    async with aiosqlite.connect(db_path) as db:
        current = await get_schema_version(db)
        if current > SCHEMA_VERSION:
            raise RuntimeError(
                f"Database {db_path} has schema version {current}, "
                f"newer than supported version {SCHEMA_VERSION}"
            )

        for version in range(current + 1, SCHEMA_VERSION + 1):
            await MIGRATIONS[version](db)
            # PRAGMA does not take bound parameters
            await db.execute(f"PRAGMA user_version = {version}")
            await db.commit()
            logger.info(f"Migrated {db_path} to schema version {version}")

        if current == SCHEMA_VERSION:
            logger.info(f"Database {db_path} is at schema version {current}")
        return SCHEMA_VERSION
