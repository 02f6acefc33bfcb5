"""Collaborator interfaces used by the scheduling service.

The service depends on these Protocols, not on concrete implementations, so
the SQLite repository and the Telegram job queue can be swapped for fakes in
tests.
"""

from datetime import datetime
from typing import Any, Awaitable, Callable, Protocol

from taskcadence.db.models import ReminderStatusAlert, TaskInstance, TaskTemplate

TriggerHandler = Callable[[str, dict[str, Any]], Awaitable[None]]


class TaskRepository(Protocol):
    async def save_template(self, template: TaskTemplate) -> None: ...
    async def get_template(self, template_id: str) -> TaskTemplate | None: ...
    async def delete_template(self, template_id: str) -> None: ...

    async def save_instance(self, instance: TaskInstance) -> None: ...
    async def get_instance(self, instance_id: str) -> TaskInstance | None: ...
    async def delete_instance(self, instance_id: str) -> None: ...

    async def get_instances_by_template(self, template_id: str) -> list[TaskInstance]: ...
    async def get_instances_by_status(self, *statuses: str) -> list[TaskInstance]: ...


class Clock(Protocol):
    def now(self) -> datetime: ...


class TimeTrigger(Protocol):
    """Cron-like job runner. Delivery is at-or-after ``fire_at``, at least once."""

    async def schedule(self, trigger_id: str, fire_at: datetime, payload: dict[str, Any]) -> None: ...
    async def cancel(self, trigger_id: str) -> None: ...
    def set_handler(self, handler: TriggerHandler) -> None: ...


class Notifier(Protocol):
    async def notify(self, instance: TaskInstance, alert: ReminderStatusAlert, text: str) -> None: ...
