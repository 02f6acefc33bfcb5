"""Task scheduling service - wires the engine to storage, clock and trigger."""

import asyncio
import logging
from collections import Counter
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from taskcadence.db.models import (
    RecurrenceRule,
    ReminderStatusAlert,
    TaskInstance,
    TaskTemplate,
)
from taskcadence.engine import alerts, generator, lifecycle, reminders, templates
from taskcadence.engine.conflicts import find_time_conflicts
from taskcadence.engine.generator import GenerationOptions
from taskcadence.engine.validation import validate_rule, validate_template
from taskcadence.service.ports import Clock, Notifier, TaskRepository, TimeTrigger
from taskcadence.utils.constants import (
    ARMED_ALERT_STATUSES,
    DEFAULT_BATCH_SIZE,
    RESCHEDULABLE_STATUSES,
    TRIGGER_ID_PREFIX,
)
from taskcadence.utils.errors import (
    ExternalCollaboratorError,
    NotFoundError,
    PolicyViolation,
    SchedulingError,
)

logger = logging.getLogger(__name__)


def trigger_id_for(instance_id: str, alert_id: str) -> str:
    return f"{TRIGGER_ID_PREFIX}:{instance_id}:{alert_id}"


@dataclass
class ArmReport:
    """Outcome of arming one instance's reminders."""

    instance_id: str
    armed: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


class TaskSchedulingService:
    """Entry point for everything that mutates templates and instances.

    Mutations of one aggregate are serialized with a per-id lock. Locks are
    always taken template first, then instance, never the other way round.
    """

    def __init__(
        self,
        repo: TaskRepository,
        clock: Clock,
        trigger: TimeTrigger,
        notifier: Notifier | None = None,
        options: GenerationOptions | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ):
        self.repo = repo
        self.clock = clock
        self.trigger = trigger
        self.notifier = notifier
        self.options = options or GenerationOptions()
        self.batch_size = batch_size
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: Counter[str] = Counter()

        trigger.set_handler(self.handle_trigger_fired)

    @asynccontextmanager
    async def _locked(self, key: str):
        """Hold the lock for ``key``; the lock is dropped once nobody uses it."""
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._locks[key]

    # Loading and saving

    async def get_template(self, template_id: str) -> TaskTemplate:
        template = await self._call_repo("load template", self.repo.get_template(template_id))
        if template is None:
            raise NotFoundError(f"Template {template_id} not found")
        return template

    async def get_instance(self, instance_id: str) -> TaskInstance:
        instance = await self._call_repo("load instance", self.repo.get_instance(instance_id))
        if instance is None:
            raise NotFoundError(f"Instance {instance_id} not found")
        return instance

    async def _save_template(self, template: TaskTemplate) -> None:
        await self._call_repo(f"save template {template.id}", self.repo.save_template(template))

    async def _save_instance(self, instance: TaskInstance) -> None:
        await self._call_repo(f"save instance {instance.id}", self.repo.save_instance(instance))

    async def _call_repo(self, action: str, call: Any) -> Any:
        try:
            return await call
        except SchedulingError:
            raise
        except Exception as e:
            raise ExternalCollaboratorError("repository", f"Failed to {action}: {e}", e) from e

    # Templates

    async def create_template(self, template: TaskTemplate) -> TaskTemplate:
        """Validate and store a new draft template."""
        validate_template(template)
        now = self.clock.now()
        template.lifecycle.created_at = now
        template.lifecycle.updated_at = now

        await self._save_template(template)
        logger.info(f"Created template {template.id} ({template.title})")
        return template

    async def activate_template(self, template_id: str) -> TaskTemplate:
        async with self._locked(template_id):
            template = await self.get_template(template_id)
            validate_template(template)
            templates.activate(template, self.clock.now())
            await self._save_template(template)

        logger.info(f"Activated template {template_id}")
        return template

    async def pause_template(self, template_id: str) -> int:
        """Pause a template, disarming and deleting its not-yet-started instances.

        Returns the number of instances removed.
        """
        async with self._locked(template_id):
            template = await self.get_template(template_id)
            now = self.clock.now()
            templates.pause(template, now)
            removed = await self._remove_unstarted(template, now)
            await self._save_template(template)

        logger.info(f"Paused template {template_id}, removed {removed} pending instances")
        return removed

    async def resume_template(self, template_id: str) -> list[TaskInstance]:
        """Resume a paused template and generate a fresh batch from now on."""
        async with self._locked(template_id):
            template = await self.get_template(template_id)
            now = self.clock.now()
            templates.resume(template, now)
            await self._save_template(template)
            instances = await self._generate(template, now, count=self.batch_size, start=now)

        logger.info(f"Resumed template {template_id} with {len(instances)} new instances")
        return instances

    async def archive_template(self, template_id: str) -> TaskTemplate:
        async with self._locked(template_id):
            template = await self.get_template(template_id)
            now = self.clock.now()
            templates.archive(template, now)
            removed = await self._remove_unstarted(template, now)
            await self._save_template(template)

        logger.info(f"Archived template {template_id}, removed {removed} pending instances")
        return template

    async def update_recurrence(self, template_id: str, rule: RecurrenceRule) -> list[TaskInstance]:
        """Replace a template's recurrence rule.

        Not-yet-started instances of the old series are removed; an active
        template gets a fresh batch from now on. Returns the new instances.
        """
        async with self._locked(template_id):
            template = await self.get_template(template_id)
            validate_rule(rule, template.time_config.base_time.start)
            now = self.clock.now()
            template.time_config.recurrence = rule
            template.touch(now)
            removed = await self._remove_unstarted(template, now)
            await self._save_template(template)

            instances: list[TaskInstance] = []
            if template.status == "active":
                instances = await self._generate(template, now, count=self.batch_size, start=now)

        logger.info(
            f"Updated recurrence of template {template_id} to {rule.type}: "
            f"removed {removed}, generated {len(instances)} instances"
        )
        return instances

    async def _remove_unstarted(self, template: TaskTemplate, now: datetime) -> int:
        """Caller holds the template lock."""
        removed = 0
        instances = await self._call_repo(
            "list instances", self.repo.get_instances_by_template(template.id)
        )
        for stale in instances:
            if stale.status != "pending":
                continue
            async with self._locked(stale.id):
                instance = await self._call_repo("load instance", self.repo.get_instance(stale.id))
                if instance is None or instance.status != "pending":
                    continue
                await self._disarm(instance, now)
                await self._call_repo(
                    f"delete instance {instance.id}", self.repo.delete_instance(instance.id)
                )
            removed += 1

        if removed:
            templates.record_removed(template, removed, now)
        return removed

    # Generation

    async def generate_instances(
        self,
        template_id: str,
        count: int | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        skip_conflicts: bool = False,
        persist: bool = True,
    ) -> list[TaskInstance]:
        """Materialize instances of an active template.

        With ``end`` the range ``[start or series start, end]`` is generated,
        otherwise up to ``count`` (default batch size) occurrences at or after
        ``start``. Occurrences that already have an instance are skipped.

        With ``persist`` the batch is saved all-or-nothing and reminders are
        armed; without it the instances are only returned.

        Raises:
            NotFoundError: unknown template
            PolicyViolation: template is not active
            ValidationError: malformed time config
            ExternalCollaboratorError: saving the batch failed; nothing is kept
        """
        async with self._locked(template_id):
            template = await self.get_template(template_id)
            return await self._generate(
                template,
                self.clock.now(),
                count=count,
                start=start,
                end=end,
                skip_conflicts=skip_conflicts,
                persist=persist,
            )

    async def _generate(
        self,
        template: TaskTemplate,
        now: datetime,
        count: int | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        skip_conflicts: bool = False,
        persist: bool = True,
    ) -> list[TaskInstance]:
        if template.status != "active":
            raise PolicyViolation(
                f"Template {template.id} is {template.status}; only active templates generate"
            )

        if end is not None:
            range_start = start or template.time_config.base_time.start
            candidates = generator.by_range(template, range_start, end, self.options, now)
        else:
            candidates = generator.by_count(
                template, count or self.batch_size, self.options, now, after=start
            )

        existing = await self._call_repo(
            "list instances", self.repo.get_instances_by_template(template.id)
        )
        taken = {i.original_scheduled_time for i in existing}
        instances = [i for i in candidates if i.scheduled_time not in taken]

        if skip_conflicts:
            instances = await self._drop_conflicts(instances)

        if not persist or not instances:
            return instances

        saved: list[TaskInstance] = []
        try:
            for instance in instances:
                await self._save_instance(instance)
                saved.append(instance)
        except ExternalCollaboratorError:
            logger.error(
                f"Batch save failed for template {template.id} after "
                f"{len(saved)}/{len(instances)} instances, rolling back"
            )
            await self._discard_batch(saved)
            raise

        templates.record_generated(template, instances, now)
        await self._save_template(template)
        logger.info(f"Generated {len(instances)} instances for template {template.id}")

        for instance in instances:
            async with self._locked(instance.id):
                report = await self._arm(instance, template, now)
                await self._save_instance(instance)
            if not report.ok:
                logger.warning(
                    f"Instance {instance.id}: {len(report.failed)} reminders could not be armed"
                )

        return instances

    async def _drop_conflicts(self, instances: list[TaskInstance]) -> list[TaskInstance]:
        busy = await self._call_repo(
            "list instances", self.repo.get_instances_by_status(*RESCHEDULABLE_STATUSES)
        )
        kept: list[TaskInstance] = []
        for instance in instances:
            conflicts = find_time_conflicts(busy + kept, instance)
            if conflicts:
                logger.info(
                    f"Skipping occurrence at {instance.scheduled_time.isoformat()}: "
                    f"overlaps {len(conflicts)} task(s)"
                )
                continue
            kept.append(instance)
        return kept

    async def _discard_batch(self, saved: list[TaskInstance]) -> None:
        for instance in saved:
            try:
                await self.repo.delete_instance(instance.id)
            except Exception as e:
                logger.error(f"Rollback could not delete instance {instance.id}: {e}")

    # Reminders

    async def arm_reminders(self, instance_id: str) -> ArmReport:
        """Plan and arm the instance's future reminders."""
        async with self._locked(instance_id):
            instance = await self.get_instance(instance_id)
            template = await self.get_template(instance.template_id)
            report = await self._arm(instance, template, self.clock.now())
            await self._save_instance(instance)
        return report

    async def disarm_reminders(self, instance_id: str) -> int:
        """Cancel every outstanding trigger of an instance, then drop its alerts.

        A missing instance is a no-op. Returns the number of registrations
        cancelled.
        """
        async with self._locked(instance_id):
            instance = await self._call_repo("load instance", self.repo.get_instance(instance_id))
            if instance is None:
                return 0
            cancelled = await self._disarm(instance, self.clock.now())
            await self._save_instance(instance)
        return cancelled

    async def rearm_all(self) -> int:
        """Restore trigger registrations after a restart.

        Alerts whose fire time passed while the process was down are
        scheduled to fire immediately.
        """
        now = self.clock.now()
        armed = failed = 0
        instances = await self._call_repo(
            "list instances", self.repo.get_instances_by_status(*RESCHEDULABLE_STATUSES)
        )

        for stale in instances:
            async with self._locked(stale.id):
                instance = await self._call_repo("load instance", self.repo.get_instance(stale.id))
                if instance is None or instance.status not in RESCHEDULABLE_STATUSES:
                    continue

                for alert in alerts.armed_alerts(instance):
                    fire_at = max(alert.scheduled_time, now)
                    try:
                        await self._schedule(instance, alert, fire_at)
                    except ExternalCollaboratorError as e:
                        alerts.detach(instance, alert.id, now, reason="trigger_failed")
                        failed += 1
                        logger.warning(f"Could not re-arm alert {alert.id} of instance {instance.id}: {e}")
                        continue
                    armed += 1

                template = await self._call_repo(
                    "load template", self.repo.get_template(instance.template_id)
                )
                if template is not None and template.status == "active":
                    report = await self._arm(instance, template, now)
                    armed += len(report.armed)
                    failed += len(report.failed)
                await self._save_instance(instance)

        logger.info(
            f"Startup re-arm: {armed} reminders registered, {failed} failed, "
            f"for {len(instances)} tasks"
        )
        return armed

    async def _arm(self, instance: TaskInstance, template: TaskTemplate, now: datetime) -> ArmReport:
        """Attach locally, then register with the trigger; roll back on failure.

        Caller holds the instance lock.
        """
        report = ArmReport(instance.id)
        if instance.status not in RESCHEDULABLE_STATUSES:
            return report

        instance.reminder_status.enabled = template.reminder_config.enabled
        planned = [
            alert
            for alert in reminders.plan(instance, template.reminder_config, now)
            if instance.reminder_status.find(alert.id) is None
        ]

        attached: list[str] = []
        try:
            for alert in planned:
                alerts.attach(instance, alert, now)
                attached.append(alert.id)
                try:
                    await self.trigger.schedule(
                        trigger_id_for(instance.id, alert.id),
                        alert.scheduled_time,
                        {"instance_id": instance.id, "alert_id": alert.id},
                    )
                except Exception as e:
                    alerts.detach(instance, alert.id, now, reason="trigger_failed")
                    attached.remove(alert.id)
                    report.failed[alert.id] = str(e)
                    logger.warning(f"Could not arm alert {alert.id} of instance {instance.id}: {e}")
                    continue
                report.armed.append(alert.id)
        except asyncio.CancelledError:
            for alert_id in attached:
                try:
                    await self.trigger.cancel(trigger_id_for(instance.id, alert_id))
                except Exception as e:
                    logger.error(f"Could not cancel trigger for alert {alert_id}: {e}")
                alerts.detach(instance, alert_id, now, reason="arm_cancelled")
            raise

        if report.armed:
            logger.info(f"Armed {len(report.armed)} reminders for instance {instance.id}")
        return report

    async def _disarm(self, instance: TaskInstance, now: datetime) -> int:
        """Caller holds the instance lock.

        Raises ExternalCollaboratorError and leaves local state untouched when
        a registration cannot be cancelled.
        """
        armed = alerts.armed_alerts(instance)
        for alert in armed:
            try:
                await self.trigger.cancel(trigger_id_for(instance.id, alert.id))
            except Exception as e:
                raise ExternalCollaboratorError(
                    "trigger", f"Failed to cancel alert {alert.id}: {e}", e
                ) from e

        alerts.discard_alerts(instance, now)
        if armed:
            logger.info(f"Disarmed {len(armed)} reminders for instance {instance.id}")
        return len(armed)

    async def _schedule(self, instance: TaskInstance, alert: ReminderStatusAlert, fire_at: datetime) -> None:
        try:
            await self.trigger.schedule(
                trigger_id_for(instance.id, alert.id),
                fire_at,
                {"instance_id": instance.id, "alert_id": alert.id},
            )
        except Exception as e:
            raise ExternalCollaboratorError(
                "trigger", f"Failed to schedule alert {alert.id}: {e}", e
            ) from e

    # Instance lifecycle

    async def start(self, instance_id: str) -> TaskInstance:
        async with self._locked(instance_id):
            instance = await self.get_instance(instance_id)
            lifecycle.start(instance, self.clock.now())
            await self._save_instance(instance)

        logger.info(f"Started instance {instance_id}")
        return instance

    async def complete(self, instance_id: str) -> TaskInstance:
        """Complete an instance and drop its outstanding reminders."""
        async with self._locked(instance_id):
            instance = await self.get_instance(instance_id)
            now = self.clock.now()
            lifecycle.complete(instance, now)
            await self._disarm(instance, now)
            await self._save_instance(instance)

        await self._update_template(
            instance.template_id, lambda t: templates.record_completed(t, instance, now)
        )
        logger.info(f"Completed instance {instance_id}")
        return instance

    async def cancel(self, instance_id: str, reason: str | None = None) -> TaskInstance:
        async with self._locked(instance_id):
            instance = await self.get_instance(instance_id)
            now = self.clock.now()
            lifecycle.cancel(instance, now, reason)
            await self._disarm(instance, now)
            await self._save_instance(instance)

        logger.info(f"Cancelled instance {instance_id}")
        return instance

    async def undo(self, instance_id: str) -> TaskInstance:
        """Reopen a completed instance and re-arm its future reminders."""
        async with self._locked(instance_id):
            instance = await self.get_instance(instance_id)
            now = self.clock.now()
            duration = instance.actual_duration
            lifecycle.undo(instance, now)
            template = await self._call_repo(
                "load template", self.repo.get_template(instance.template_id)
            )
            if template is not None:
                await self._arm(instance, template, now)
            await self._save_instance(instance)

        await self._update_template(
            instance.template_id, lambda t: templates.record_undone(t, duration, now)
        )
        logger.info(f"Undid completion of instance {instance_id}")
        return instance

    async def reschedule(
        self, instance_id: str, new_time: datetime, reason: str | None = None
    ) -> TaskInstance:
        """Move an instance and re-plan its reminders around the new time."""
        async with self._locked(instance_id):
            instance = await self.get_instance(instance_id)
            template = await self.get_template(instance.template_id)
            now = self.clock.now()

            lifecycle.reschedule(instance, new_time, template.scheduling_policy, now, reason)
            await self._disarm(instance, now)
            report = await self._arm(instance, template, now)
            await self._save_instance(instance)

        logger.info(
            f"Rescheduled instance {instance_id} to {new_time.isoformat()} "
            f"({len(report.armed)} reminders armed)"
        )
        return instance

    async def delete_instance(self, instance_id: str) -> bool:
        """Disarm and delete. Deleting a missing instance returns False."""
        async with self._locked(instance_id):
            instance = await self._call_repo("load instance", self.repo.get_instance(instance_id))
            if instance is None:
                return False
            now = self.clock.now()
            await self._disarm(instance, now)
            await self._call_repo(
                f"delete instance {instance_id}", self.repo.delete_instance(instance_id)
            )

        if instance.status != "completed":
            await self._update_template(
                instance.template_id, lambda t: templates.record_removed(t, 1, now)
            )
        logger.info(f"Deleted instance {instance_id}")
        return True

    async def sweep_overdue(self) -> list[str]:
        """Mark pending instances whose time has passed as overdue."""
        now = self.clock.now()
        marked = []
        pending = await self._call_repo(
            "list instances", self.repo.get_instances_by_status("pending")
        )

        for stale in pending:
            if stale.scheduled_time >= now:
                continue
            async with self._locked(stale.id):
                instance = await self._call_repo("load instance", self.repo.get_instance(stale.id))
                if instance is None or instance.status != "pending" or instance.scheduled_time >= now:
                    continue
                lifecycle.mark_overdue(instance, now)
                await self._save_instance(instance)
            marked.append(instance.id)

        if marked:
            logger.info(f"Marked {len(marked)} instances overdue")
        return marked

    async def available_actions(self, instance_id: str) -> list[lifecycle.ActionAvailability]:
        instance = await self.get_instance(instance_id)
        template = await self.get_template(instance.template_id)
        return lifecycle.available_actions(instance, template.scheduling_policy)

    async def upcoming_reminders(self, within_minutes: int = 60) -> list[reminders.UpcomingReminder]:
        instances = await self._call_repo(
            "list instances", self.repo.get_instances_by_status(*RESCHEDULABLE_STATUSES)
        )
        return reminders.upcoming_reminders(instances, self.clock.now(), within_minutes)

    async def _update_template(self, template_id: str, change) -> None:
        async with self._locked(template_id):
            template = await self._call_repo("load template", self.repo.get_template(template_id))
            if template is None:
                logger.warning(f"Template {template_id} is gone, analytics not updated")
                return
            change(template)
            await self._save_template(template)

    # Alerts

    async def trigger_alert(self, instance_id: str, alert_id: str) -> ReminderStatusAlert:
        async with self._locked(instance_id):
            instance = await self.get_instance(instance_id)
            alert = alerts.trigger(instance, alert_id, self.clock.now())
            await self._save_instance(instance)
        return alert

    async def dismiss_alert(self, instance_id: str, alert_id: str) -> ReminderStatusAlert:
        async with self._locked(instance_id):
            instance = await self.get_instance(instance_id)
            alert = alerts.dismiss(instance, alert_id, self.clock.now())
            await self._save_instance(instance)

        logger.info(f"Dismissed alert {alert_id} of instance {instance_id}")
        return alert

    async def snooze_alert(
        self,
        instance_id: str,
        alert_id: str,
        snooze_until: datetime | None = None,
        reason: str | None = None,
    ) -> ReminderStatusAlert:
        """Snooze a triggered alert and re-register it at ``snooze_until``.

        ``snooze_until`` defaults to now plus the template's snooze interval.
        If the trigger cannot be registered nothing is saved.
        """
        async with self._locked(instance_id):
            instance = await self.get_instance(instance_id)
            template = await self.get_template(instance.template_id)
            now = self.clock.now()
            policy = template.reminder_config.snooze
            if snooze_until is None:
                snooze_until = now + timedelta(minutes=policy.interval_minutes)

            alert = alerts.snooze(instance, alert_id, snooze_until, policy, now, reason)
            await self._schedule(instance, alert, snooze_until)
            await self._save_instance(instance)

        logger.info(
            f"Snoozed alert {alert_id} of instance {instance_id} until {snooze_until.isoformat()} "
            f"({instance.reminder_status.global_snooze_count}/{policy.max_count})"
        )
        return alert

    async def handle_trigger_fired(self, trigger_id: str, payload: dict[str, Any]) -> None:
        """Callback for the time trigger.

        Deliveries are at least once: an alert that already fired, or one
        whose fire time moved later, is ignored.
        """
        instance_id = payload.get("instance_id")
        alert_id = payload.get("alert_id")
        if not instance_id or not alert_id:
            logger.warning(f"Trigger {trigger_id} fired without instance/alert ids")
            return

        async with self._locked(instance_id):
            instance = await self._call_repo("load instance", self.repo.get_instance(instance_id))
            if instance is None:
                logger.info(f"Trigger {trigger_id} fired for deleted instance {instance_id}")
                return

            now = self.clock.now()
            alert = instance.reminder_status.find(alert_id)
            if alert is None or alert.status not in ARMED_ALERT_STATUSES:
                logger.info(f"Ignoring duplicate delivery of trigger {trigger_id}")
                return
            if alert.scheduled_time > now:
                logger.info(f"Ignoring early delivery of trigger {trigger_id}")
                return

            fire_at = alert.scheduled_time
            alerts.trigger(instance, alert_id, now)
            await self._save_instance(instance)

        logger.info(f"Alert {alert_id} of instance {instance_id} triggered")

        if self.notifier is None:
            return
        text = reminders.build_reminder_message(instance, fire_at, alert.alert.message)
        try:
            await self.notifier.notify(instance, alert, text)
        except Exception as e:
            logger.error(f"Failed to deliver reminder {alert_id} for instance {instance_id}: {e}")
