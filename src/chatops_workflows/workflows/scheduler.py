"""Cron timers for schedule-triggered workflows.

This module wraps APScheduler to keep exactly one armed timer per enabled
schedule workflow and none for any other workflow. Timer state per workflow id:

    unregistered -> armed -> unregistered   (re-armed on every refresh)

Each arm is stamped with a fresh generation token. A tick only runs when its
token is still the armed one, so disarming cancels ticks that are queued but
have not started; a tick already running is allowed to finish.
"""

from __future__ import annotations

import itertools
import threading
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from apscheduler.events import (
    EVENT_JOB_ERROR,
    EVENT_JOB_MAX_INSTANCES,
    EVENT_JOB_MISSED,
    JobEvent,
)
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.schedulers.base import BaseScheduler
from apscheduler.triggers.cron import CronTrigger

from ..core.config import SchedulerConfig
from ..core.exceptions import InvalidScheduleError
from ..core.logger import get_logger, log_exception
from .actions import ActionDispatcher, build_match
from .engine import WorkflowEngine
from .models import ScheduleConfig, TriggerType, Workflow, WorkflowEvent, utcnow
from .store import WorkflowStore

logger = get_logger("scheduler")

JOB_PREFIX = "workflow."


def build_cron_trigger(schedule: ScheduleConfig, default_timezone: str = "UTC") -> CronTrigger:
    """Parse a crontab expression into an APScheduler trigger.

    Raises:
        InvalidScheduleError: If the expression or timezone is invalid
    """
    timezone = schedule.timezone or default_timezone
    try:
        return CronTrigger.from_crontab(schedule.cron, timezone=timezone)
    except (ValueError, TypeError, KeyError) as exc:
        raise InvalidScheduleError(schedule.cron, str(exc) or type(exc).__name__) from exc


def validate_schedule(schedule: ScheduleConfig, default_timezone: str = "UTC") -> str | None:
    """Return a diagnostic for an invalid schedule, or None when it parses."""
    try:
        build_cron_trigger(schedule, default_timezone)
    except InvalidScheduleError as exc:
        return str(exc)
    return None


def upcoming_runs(
    schedule: ScheduleConfig,
    count: int = 5,
    default_timezone: str = "UTC",
    start: datetime | None = None,
) -> list[datetime]:
    """Compute the next ``count`` fire times of a schedule."""
    trigger = build_cron_trigger(schedule, default_timezone)
    now = start or datetime.now(trigger.timezone)
    runs: list[datetime] = []
    previous: datetime | None = None
    while len(runs) < count:
        next_time = trigger.get_next_fire_time(previous, now)
        if next_time is None:
            break
        runs.append(next_time)
        previous = now = next_time
    return runs


@dataclass(slots=True)
class ScheduleStatus:
    """Outcome of the latest arm attempt for a workflow."""

    workflow_id: str
    armed: bool
    next_run_time: datetime | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "workflow_id": self.workflow_id,
            "armed": self.armed,
            "next_run_time": self.next_run_time.isoformat() if self.next_run_time else None,
            "error": self.error,
        }


@dataclass(slots=True)
class _ArmedTimer:
    token: int
    job_id: str
    workflow: Workflow
    trigger: CronTrigger


class WorkflowScheduler:
    """Keeps one cron timer per enabled schedule workflow.

    Example:
        ```python
        scheduler = WorkflowScheduler(store, WorkflowEngine(), SchedulerConfig())
        scheduler.start()
        status = scheduler.refresh_workflow(workflow)
        if not status.armed:
            print(status.error)
        ```
    """

    def __init__(
        self,
        store: WorkflowStore,
        engine: WorkflowEngine,
        config: SchedulerConfig | None = None,
        on_match: ActionDispatcher | None = None,
        scheduler: BaseScheduler | None = None,
    ) -> None:
        """Initialize the workflow scheduler.

        Args:
            store: Workflow store read at start-up
            engine: Engine used to evaluate each tick
            config: Scheduler configuration
            on_match: Action-execution path for ticks that match
            scheduler: Pre-built APScheduler instance (a BackgroundScheduler is created if None)
        """
        self.config = config or SchedulerConfig()
        self._store = store
        self._engine = engine
        self.on_match = on_match

        self._timers: dict[str, _ArmedTimer] = {}
        self._statuses: dict[str, ScheduleStatus] = {}
        self._skipped: dict[str, int] = defaultdict(int)
        self._tokens = itertools.count(1)

        self._guard = threading.Lock()
        self._state_locks: dict[str, threading.Lock] = {}
        self._run_locks: dict[str, threading.Lock] = {}

        self._scheduler = scheduler if scheduler is not None else self._create_scheduler()
        self._scheduler.add_listener(
            self._on_job_event, EVENT_JOB_ERROR | EVENT_JOB_MISSED | EVENT_JOB_MAX_INSTANCES
        )

    def _create_scheduler(self) -> BackgroundScheduler:
        # Same-workflow overlap is handled by the run lock in _fire.
        return BackgroundScheduler(
            executors={"default": ThreadPoolExecutor(max_workers=self.config.max_workers)},
            job_defaults={
                "coalesce": True,
                "max_instances": self.config.max_workers,
                "misfire_grace_time": self.config.misfire_grace_time,
            },
            timezone=self.config.timezone,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self) -> dict[str, ScheduleStatus]:
        """Start the timer thread and arm every eligible stored workflow.

        Returns:
            Arm status for each schedule-triggered workflow, keyed by id
        """
        if not self.config.enabled:
            logger.warning("Workflow scheduler disabled; schedule triggers will not fire")
            return {}

        if not self._scheduler.running:
            self._scheduler.start()
            logger.info("Workflow scheduler started (timezone: %s)", self.config.timezone)

        try:
            workflows = self._store.list()
        except Exception as exc:
            log_exception(logger, exc, "Failed to load workflows for scheduling")
            return {}

        statuses: dict[str, ScheduleStatus] = {}
        for workflow in workflows:
            status = self.refresh_workflow(workflow)
            if workflow.is_schedulable:
                statuses[workflow.id] = status
        armed = sum(1 for status in statuses.values() if status.armed)
        logger.info("Armed %d of %d schedule workflows", armed, len(statuses))
        return statuses

    def stop(self, wait: bool = True) -> None:
        """Disarm every timer and shut the timer thread down.

        Args:
            wait: Whether to wait for running ticks to complete
        """
        for workflow_id in list(self._timers):
            self.stop_workflow(workflow_id)
        if self._scheduler.running:
            self._scheduler.shutdown(wait=wait)
            logger.info("Workflow scheduler stopped")

    @property
    def is_running(self) -> bool:
        return bool(self._scheduler.running)

    # ------------------------------------------------------------------
    # Timer reconciliation
    # ------------------------------------------------------------------
    def _lock_for(self, locks: dict[str, threading.Lock], workflow_id: str) -> threading.Lock:
        with self._guard:
            lock = locks.get(workflow_id)
            if lock is None:
                lock = locks[workflow_id] = threading.Lock()
            return lock

    def refresh_workflow(self, workflow: Workflow) -> ScheduleStatus:
        """Reconcile the timer for ``workflow``.

        Any existing timer for the id is disarmed first; a new one is armed when
        the workflow is enabled and schedule-triggered. Never raises for an
        invalid schedule: the returned status carries the diagnostic instead.
        """
        with self._lock_for(self._state_locks, workflow.id):
            self._disarm(workflow.id)
            if not workflow.is_schedulable:
                status = ScheduleStatus(workflow_id=workflow.id, armed=False)
            elif not self.config.enabled:
                status = ScheduleStatus(
                    workflow_id=workflow.id, armed=False, error="Scheduler is disabled"
                )
            else:
                status = self._arm(workflow)
            self._statuses[workflow.id] = status
            return status

    def stop_workflow(self, workflow_id: str) -> None:
        """Disarm the timer for ``workflow_id``; a no-op when none is armed."""
        with self._lock_for(self._state_locks, workflow_id):
            self._disarm(workflow_id)
            self._statuses.pop(workflow_id, None)
        with self._guard:
            self._state_locks.pop(workflow_id, None)
            self._skipped.pop(workflow_id, None)
            run_lock = self._run_locks.get(workflow_id)
            # A tick still holding its run lock keeps the entry.
            if run_lock is not None and not run_lock.locked():
                del self._run_locks[workflow_id]

    def _arm(self, workflow: Workflow) -> ScheduleStatus:
        schedule = workflow.trigger.schedule
        if schedule is None:
            return ScheduleStatus(
                workflow_id=workflow.id, armed=False, error="Schedule config missing"
            )
        try:
            trigger = build_cron_trigger(schedule, self.config.timezone)
        except InvalidScheduleError as exc:
            exc.workflow_id = workflow.id
            logger.warning("Workflow %s not scheduled: %s", workflow.id, exc)
            return ScheduleStatus(workflow_id=workflow.id, armed=False, error=str(exc))

        token = next(self._tokens)
        job_id = f"{JOB_PREFIX}{workflow.id}"
        self._scheduler.add_job(
            self._fire,
            trigger,
            args=[workflow.id, token],
            id=job_id,
            name=workflow.name,
            replace_existing=True,
        )
        self._timers[workflow.id] = _ArmedTimer(
            token=token,
            job_id=job_id,
            workflow=workflow.model_copy(deep=True),
            trigger=trigger,
        )
        next_run = trigger.get_next_fire_time(None, datetime.now(trigger.timezone))
        logger.info(
            "Armed workflow %s with cron '%s' (next run: %s)",
            workflow.id,
            schedule.cron,
            next_run,
        )
        return ScheduleStatus(workflow_id=workflow.id, armed=True, next_run_time=next_run)

    def _disarm(self, workflow_id: str) -> bool:
        timer = self._timers.pop(workflow_id, None)
        if timer is None:
            return False
        try:
            self._scheduler.remove_job(timer.job_id)
        except JobLookupError:
            logger.debug("Job %s already removed", timer.job_id)
        logger.info("Disarmed workflow %s", workflow_id)
        return True

    # ------------------------------------------------------------------
    # Firing
    # ------------------------------------------------------------------
    def _current_timer(self, workflow_id: str, token: int) -> _ArmedTimer | None:
        with self._lock_for(self._state_locks, workflow_id):
            timer = self._timers.get(workflow_id)
            if timer is None or timer.token != token:
                return None
            return timer

    def _fire(self, workflow_id: str, token: int) -> None:
        """Timer callback: evaluate the owning workflow against a schedule event."""
        if self._current_timer(workflow_id, token) is None:
            logger.debug("Ignoring stale tick for workflow %s", workflow_id)
            return

        run_lock = self._lock_for(self._run_locks, workflow_id)
        if self.config.overlap_policy == "skip":
            if not run_lock.acquire(blocking=False):
                skipped = self._record_skip(workflow_id)
                logger.warning(
                    "Skipped firing of workflow %s: previous run still in progress "
                    "(%d skipped so far)",
                    workflow_id,
                    skipped,
                )
                return
        else:
            run_lock.acquire()

        try:
            timer = self._current_timer(workflow_id, token)
            if timer is None:
                logger.debug("Workflow %s disarmed while waiting to run", workflow_id)
                return
            self._run_tick(timer.workflow)
        finally:
            run_lock.release()

    def _run_tick(self, workflow: Workflow) -> None:
        now = utcnow()
        event = WorkflowEvent.create(
            TriggerType.SCHEDULE,
            payload={"workflowId": workflow.id, "workflowName": workflow.name},
            metadata={"scheduledAt": now.isoformat()},
        )
        result = self._engine.run([workflow], event)[0]
        if not result.matched:
            logger.debug("Scheduled tick for workflow %s did not match", workflow.id)
            return

        match = build_match(workflow, result, event)
        if self.on_match is None:
            logger.info(
                "Workflow %s fired with %d action(s) but no dispatcher is configured",
                workflow.id,
                len(match.actions),
            )
            return
        try:
            self.on_match(match)
        except Exception as exc:
            logger.error(
                "Dispatch failed for scheduled workflow %s: %s", workflow.id, exc, exc_info=True
            )

    def _record_skip(self, workflow_id: str) -> int:
        with self._guard:
            self._skipped[workflow_id] += 1
            return self._skipped[workflow_id]

    def fire_now(self, workflow_id: str) -> bool:
        """Run the armed workflow immediately on the calling thread.

        Returns:
            True if the workflow was armed and the tick was attempted
        """
        timer = self._timers.get(workflow_id)
        if timer is None:
            logger.warning("Workflow not armed: %s", workflow_id)
            return False
        self._fire(workflow_id, timer.token)
        return True

    def _on_job_event(self, event: JobEvent) -> None:
        workflow_id = event.job_id.removeprefix(JOB_PREFIX)
        if event.code == EVENT_JOB_MISSED:
            logger.warning("Missed scheduled run of workflow %s", workflow_id)
        elif event.code == EVENT_JOB_MAX_INSTANCES:
            self._record_skip(workflow_id)
            logger.warning("Skipped run of workflow %s: worker limit reached", workflow_id)
        elif event.code == EVENT_JOB_ERROR:
            logger.error(
                "Tick for workflow %s failed: %s",
                workflow_id,
                getattr(event, "exception", None),
            )

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------
    def is_armed(self, workflow_id: str) -> bool:
        return workflow_id in self._timers

    def armed_ids(self) -> list[str]:
        return sorted(self._timers)

    def get_status(self, workflow_id: str) -> ScheduleStatus:
        """Status of the latest arm attempt; unarmed when the id is unknown."""
        status = self._statuses.get(workflow_id)
        if status is None:
            return ScheduleStatus(workflow_id=workflow_id, armed=False)
        return status

    def next_run_time(self, workflow_id: str) -> datetime | None:
        timer = self._timers.get(workflow_id)
        if timer is None:
            return None
        job = self._scheduler.get_job(timer.job_id)
        next_run = getattr(job, "next_run_time", None) if job else None
        if next_run is None:
            next_run = timer.trigger.get_next_fire_time(None, datetime.now(timer.trigger.timezone))
        return next_run

    def skipped_count(self, workflow_id: str) -> int:
        return self._skipped.get(workflow_id, 0)
