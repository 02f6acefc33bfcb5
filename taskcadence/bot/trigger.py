"""TimeTrigger on top of the python-telegram-bot job queue."""

import logging
from datetime import datetime
from typing import Any

from telegram.ext import CallbackContext, JobQueue

from taskcadence.service.ports import TriggerHandler
from taskcadence.utils.time_utils import UTC

logger = logging.getLogger(__name__)


class JobQueueTrigger:
    """One ``run_once`` job per trigger id; the job name is the trigger id.

    Scheduling an id that already has a job replaces it.
    """

    def __init__(self, job_queue: JobQueue):
        self.job_queue = job_queue
        self._handler: TriggerHandler | None = None

    def set_handler(self, handler: TriggerHandler) -> None:
        self._handler = handler

    async def schedule(self, trigger_id: str, fire_at: datetime, payload: dict[str, Any]) -> None:
        self._remove(trigger_id)
        # Past fire times (restart catch-up) run right away
        delay = max(0.0, (fire_at - datetime.now(UTC)).total_seconds())
        self.job_queue.run_once(self._fire, when=delay, data=payload, name=trigger_id)
        logger.debug(f"Scheduled trigger {trigger_id} at {fire_at.isoformat()}")

    async def cancel(self, trigger_id: str) -> None:
        if self._remove(trigger_id):
            logger.debug(f"Cancelled trigger {trigger_id}")

    def _remove(self, trigger_id: str) -> int:
        jobs = self.job_queue.get_jobs_by_name(trigger_id)
        for job in jobs:
            job.schedule_removal()
        return len(jobs)

    async def _fire(self, context: CallbackContext) -> None:
        job = context.job
        if self._handler is None:
            logger.warning(f"Trigger {job.name} fired before a handler was registered")
            return
        await self._handler(job.name, job.data)
