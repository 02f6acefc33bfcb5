"""Database repository - all SQL queries."""

import json
import logging
from pathlib import Path

import aiosqlite

from taskcadence.db.models import TaskInstance, TaskTemplate
from taskcadence.utils.time_utils import format_datetime, to_utc

logger = logging.getLogger(__name__)


class Repository:
    """Database access layer.

    Aggregates are stored whole as JSON and rebuilt with ``from_persistence``,
    so every load hands out a fresh object.
    """

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self._db: aiosqlite.Connection | None = None

    async def connect(self) -> None:
        """Open database connection."""
        self._db = await aiosqlite.connect(self.db_path)
        self._db.row_factory = aiosqlite.Row
        logger.info(f"Connected to database at {self.db_path}")

    async def close(self) -> None:
        """Close database connection."""
        if self._db:
            await self._db.close()
            self._db = None
            logger.info("Database connection closed")

    @property
    def db(self) -> aiosqlite.Connection:
        """Get the database connection."""
        if self._db is None:
            raise RuntimeError("Database not connected")
        return self._db

    # Template operations

    async def save_template(self, template: TaskTemplate) -> None:
        """Insert or replace a template."""
        await self.db.execute(
            """
            INSERT INTO task_templates (id, title, status, payload, version, updated_at)
            VALUES (?, ?, ?, ?, ?, datetime('now'))
            ON CONFLICT(id) DO UPDATE SET
                title = excluded.title,
                status = excluded.status,
                payload = excluded.payload,
                version = excluded.version,
                updated_at = excluded.updated_at
            """,
            (
                template.id,
                template.title,
                template.status,
                json.dumps(template.to_dict()),
                template.version,
            ),
        )
        await self.db.commit()

    async def get_template(self, template_id: str) -> TaskTemplate | None:
        async with self.db.execute(
            "SELECT payload FROM task_templates WHERE id = ?", (template_id,)
        ) as cursor:
            row = await cursor.fetchone()
            if row:
                return TaskTemplate.from_persistence(json.loads(row["payload"]))
            return None

    async def get_templates_by_status(self, status: str) -> list[TaskTemplate]:
        async with self.db.execute(
            "SELECT payload FROM task_templates WHERE status = ? ORDER BY title", (status,)
        ) as cursor:
            rows = await cursor.fetchall()
            return [TaskTemplate.from_persistence(json.loads(row["payload"])) for row in rows]

    async def delete_template(self, template_id: str) -> None:
        await self.db.execute("DELETE FROM task_templates WHERE id = ?", (template_id,))
        await self.db.commit()
        logger.info(f"Deleted template {template_id}")

    # Instance operations

    async def save_instance(self, instance: TaskInstance) -> None:
        """Insert or replace an instance."""
        await self.db.execute(
            """
            INSERT INTO task_instances
                (id, template_id, status, scheduled_time, payload, version, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, datetime('now'))
            ON CONFLICT(id) DO UPDATE SET
                status = excluded.status,
                scheduled_time = excluded.scheduled_time,
                payload = excluded.payload,
                version = excluded.version,
                updated_at = excluded.updated_at
            """,
            (
                instance.id,
                instance.template_id,
                instance.status,
                format_datetime(to_utc(instance.scheduled_time, instance.timezone)),
                json.dumps(instance.to_dict()),
                instance.version,
            ),
        )
        await self.db.commit()

    async def get_instance(self, instance_id: str) -> TaskInstance | None:
        async with self.db.execute(
            "SELECT payload FROM task_instances WHERE id = ?", (instance_id,)
        ) as cursor:
            row = await cursor.fetchone()
            if row:
                return TaskInstance.from_persistence(json.loads(row["payload"]))
            return None

    async def delete_instance(self, instance_id: str) -> None:
        await self.db.execute("DELETE FROM task_instances WHERE id = ?", (instance_id,))
        await self.db.commit()

    async def get_instances_by_template(self, template_id: str) -> list[TaskInstance]:
        async with self.db.execute(
            "SELECT payload FROM task_instances WHERE template_id = ? ORDER BY scheduled_time",
            (template_id,),
        ) as cursor:
            rows = await cursor.fetchall()
            return [TaskInstance.from_persistence(json.loads(row["payload"])) for row in rows]

    async def get_instances_by_status(self, *statuses: str) -> list[TaskInstance]:
        if not statuses:
            return []
        placeholders = ", ".join("?" for _ in statuses)
        async with self.db.execute(
            f"SELECT payload FROM task_instances WHERE status IN ({placeholders}) "
            "ORDER BY scheduled_time",
            statuses,
        ) as cursor:
            rows = await cursor.fetchall()
            return [TaskInstance.from_persistence(json.loads(row["payload"])) for row in rows]
