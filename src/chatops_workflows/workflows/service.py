"""Workflow service: CRUD over workflows plus event handling.

Writes always go to the store before the scheduler is told about them, and
all writes for one workflow id are serialized by a per-id lock so the
scheduler never observes a half-applied update.
"""

from __future__ import annotations

import threading
import uuid
from collections.abc import Mapping
from datetime import timedelta
from typing import Any

from ..core.config import WorkflowSettings
from ..core.logger import get_logger
from .actions import ActionDispatcher, WorkflowMatch, build_match
from .engine import WorkflowEngine
from .models import Workflow, WorkflowEvent, WorkflowInput, WorkflowUpdate, utcnow
from .scheduler import ScheduleStatus, WorkflowScheduler
from .store import WorkflowStore, create_workflow_store

logger = get_logger("service")


class WorkflowService:
    """Orchestrates the store, engine and scheduler.

    Example:
        ```python
        service = WorkflowService.from_settings(WorkflowSettings(), dispatcher=run_actions)
        service.start()

        workflow = service.create_workflow(
            {"name": "Closed deals", "trigger": {"type": "deal_close"}, "actions": []}
        )
        for match in service.match_event(event):
            service.dispatch(match)
        ```
    """

    def __init__(
        self,
        store: WorkflowStore,
        engine: WorkflowEngine | None = None,
        scheduler: WorkflowScheduler | None = None,
        dispatcher: ActionDispatcher | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            store: Workflow persistence
            engine: Matching engine (a new one is created if None)
            scheduler: Schedule timer manager (created over ``store`` if None)
            dispatcher: Caller's action-execution path for matched workflows
        """
        self._store = store
        self._engine = engine if engine is not None else WorkflowEngine()
        self._scheduler = (
            scheduler if scheduler is not None else WorkflowScheduler(store, self._engine)
        )
        if self._scheduler.on_match is None:
            self._scheduler.on_match = self.dispatch
        self.dispatcher = dispatcher

        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    @classmethod
    def from_settings(
        cls,
        settings: WorkflowSettings,
        dispatcher: ActionDispatcher | None = None,
    ) -> WorkflowService:
        """Build store, engine, scheduler and service in that order."""
        store = create_workflow_store(settings.store)
        engine = WorkflowEngine()
        scheduler = WorkflowScheduler(store, engine, settings.scheduler)
        return cls(store, engine, scheduler, dispatcher)

    @property
    def store(self) -> WorkflowStore:
        return self._store

    @property
    def engine(self) -> WorkflowEngine:
        return self._engine

    @property
    def scheduler(self) -> WorkflowScheduler:
        return self._scheduler

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self) -> dict[str, ScheduleStatus]:
        """Arm schedule timers for every stored workflow."""
        return self._scheduler.start()

    def stop(self, wait: bool = True) -> None:
        """Disarm all timers and release the store."""
        self._scheduler.stop(wait=wait)
        self._store.close()

    def _lock_for(self, workflow_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(workflow_id)
            if lock is None:
                lock = self._locks[workflow_id] = threading.Lock()
            return lock

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------
    def list_workflows(self) -> list[Workflow]:
        return self._store.list()

    def get_workflow(self, workflow_id: str) -> Workflow | None:
        return self._store.get(workflow_id)

    def create_workflow(self, data: WorkflowInput | Mapping[str, Any]) -> Workflow:
        """Create and persist a workflow, then register it with the scheduler.

        An invalid schedule does not fail creation; see :meth:`schedule_status`.
        """
        workflow_input = (
            data if isinstance(data, WorkflowInput) else WorkflowInput.model_validate(data)
        )
        now = utcnow()
        workflow = Workflow(
            **workflow_input.model_dump(),
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
        )
        with self._lock_for(workflow.id):
            self._store.set(workflow)
            status = self._scheduler.refresh_workflow(workflow)
        logger.info("Created workflow %s (%s)", workflow.id, workflow.name)
        if status.error:
            logger.warning("Workflow %s created but not scheduled: %s", workflow.id, status.error)
        return workflow

    def update_workflow(
        self,
        workflow_id: str,
        update: WorkflowUpdate | Mapping[str, Any],
    ) -> Workflow | None:
        """Apply a partial update; ``id`` and ``created_at`` are preserved.

        Returns:
            The updated workflow, or None if ``workflow_id`` is unknown
        """
        changes = (
            update if isinstance(update, WorkflowUpdate) else WorkflowUpdate.model_validate(update)
        )
        with self._lock_for(workflow_id):
            existing = self._store.get(workflow_id)
            if existing is None:
                return None

            now = utcnow()
            if now <= existing.updated_at:
                now = existing.updated_at + timedelta(microseconds=1)

            data = existing.model_dump()
            data.update(changes.model_dump(include=changes.model_fields_set, exclude_none=True))
            data.update(id=existing.id, created_at=existing.created_at, updated_at=now)
            workflow = Workflow.model_validate(data)

            self._store.set(workflow)
            status = self._scheduler.refresh_workflow(workflow)
        logger.info("Updated workflow %s", workflow.id)
        if status.error:
            logger.warning("Workflow %s updated but not scheduled: %s", workflow.id, status.error)
        return workflow

    def delete_workflow(self, workflow_id: str) -> bool:
        """Delete a workflow and disarm its timer.

        Returns:
            True if the workflow existed
        """
        with self._lock_for(workflow_id):
            existing = self._store.get(workflow_id)
            if existing is not None:
                self._store.delete(workflow_id)
            self._scheduler.stop_workflow(workflow_id)
        with self._guard:
            self._locks.pop(workflow_id, None)
        if existing is None:
            return False
        logger.info("Deleted workflow %s", workflow_id)
        return True

    def schedule_status(self, workflow_id: str) -> ScheduleStatus:
        """Latest scheduling diagnostic for ``workflow_id``."""
        return self._scheduler.get_status(workflow_id)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------
    def match_event(self, event: WorkflowEvent) -> list[WorkflowMatch]:
        """Evaluate ``event`` against every stored workflow.

        Returns:
            One WorkflowMatch per matched workflow, in store order
        """
        workflows = self._store.list()
        results = self._engine.run(workflows, event)
        matches = [
            build_match(workflow, result, event)
            for workflow, result in zip(workflows, results)
            if result.matched
        ]
        logger.info(
            "Event %s (%s) processed: %d/%d workflows matched",
            event.id,
            event.type.value,
            len(matches),
            len(workflows),
        )
        return matches

    def handle_event(self, event: WorkflowEvent) -> list[Workflow]:
        """Return the stored workflows whose trigger matches ``event``."""
        return [match.workflow for match in self.match_event(event)]

    def dispatch(self, match: WorkflowMatch) -> None:
        """Hand a matched workflow to the configured action-execution path."""
        if self.dispatcher is None:
            logger.info(
                "No dispatcher configured; dropping %d action(s) for workflow %s",
                len(match.actions),
                match.workflow.id,
            )
            return
        self.dispatcher(match)
