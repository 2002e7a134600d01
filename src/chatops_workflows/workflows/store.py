"""Workflow persistence with pluggable backends.

Two interchangeable stores share the ``WorkflowStore`` contract:

- MemoryWorkflowStore: in-process dictionary, lost on restart
- RedisWorkflowStore: one Redis hash, one JSON-encoded field per workflow

Neither performs cross-record locking or optimistic concurrency checks; the
last ``set`` for an id wins.
"""

from __future__ import annotations

import json
import threading
from abc import ABC, abstractmethod
from typing import Any

import redis
from pydantic import ValidationError

from ..core.config import StoreConfig
from ..core.exceptions import StoreUnavailableError
from ..core.logger import get_logger
from .models import Workflow

logger = get_logger("store")


class WorkflowStore(ABC):
    """Key/value persistence for workflow records."""

    @abstractmethod
    def list(self) -> list[Workflow]:
        """Return every readable workflow."""

    @abstractmethod
    def get(self, workflow_id: str) -> Workflow | None:
        """Return the workflow with ``workflow_id`` or None."""

    @abstractmethod
    def set(self, workflow: Workflow) -> None:
        """Insert or overwrite a workflow."""

    @abstractmethod
    def delete(self, workflow_id: str) -> None:
        """Remove a workflow; unknown ids are ignored."""

    def close(self) -> None:
        """Release backend resources."""


class MemoryWorkflowStore(WorkflowStore):
    """Volatile store backed by a dictionary."""

    def __init__(self) -> None:
        self._workflows: dict[str, Workflow] = {}
        self._lock = threading.Lock()

    def list(self) -> list[Workflow]:
        with self._lock:
            return [workflow.model_copy(deep=True) for workflow in self._workflows.values()]

    def get(self, workflow_id: str) -> Workflow | None:
        with self._lock:
            workflow = self._workflows.get(workflow_id)
            return workflow.model_copy(deep=True) if workflow else None

    def set(self, workflow: Workflow) -> None:
        with self._lock:
            self._workflows[workflow.id] = workflow.model_copy(deep=True)

    def delete(self, workflow_id: str) -> None:
        with self._lock:
            self._workflows.pop(workflow_id, None)


class RedisWorkflowStore(WorkflowStore):
    """Durable store using a namespaced Redis hash.

    Backend failures never propagate: reads degrade to empty results and
    writes become no-ops, each logged. Records that fail to deserialize are
    logged and treated as absent.
    """

    def __init__(
        self,
        config: StoreConfig,
        client: Any | None = None,
    ) -> None:
        """Initialize the store.

        Args:
            config: Store configuration (URL, namespace, timeouts)
            client: Pre-built Redis client; created from ``config.redis_url`` if None
        """
        self.config = config
        self.namespace = config.namespace
        if client is None:
            if not config.redis_url:
                raise ValueError("redis_url required for the Redis workflow store")
            client = redis.Redis.from_url(
                config.redis_url,
                socket_timeout=config.socket_timeout,
                socket_connect_timeout=config.connect_timeout,
            )
        self._client = client
        self.available = self._ping()

    def _ping(self) -> bool:
        try:
            self._command("ping")
        except StoreUnavailableError as exc:
            logger.warning(
                "Redis workflow store unavailable (%s); reads will be empty and writes "
                "dropped until it recovers",
                exc,
            )
            return False
        logger.info("Using Redis workflow store: %s", self.namespace)
        return True

    def _command(self, name: str, *args: Any) -> Any:
        """Run one Redis command, translating backend failures."""
        try:
            return getattr(self._client, name)(*args)
        except redis.RedisError as exc:
            raise StoreUnavailableError(f"Redis {name} failed: {exc}", exc) from exc

    def _decode(self, raw: Any, workflow_id: str | None = None) -> Workflow | None:
        if raw is None:
            return None
        try:
            if isinstance(raw, bytes):
                raw = raw.decode("utf-8")
            return Workflow.from_record(json.loads(raw))
        except (ValidationError, ValueError, TypeError) as exc:
            logger.warning(
                "Skipping malformed workflow record %s in %s: %s",
                workflow_id or "<unknown>",
                self.namespace,
                exc,
            )
            return None

    def list(self) -> list[Workflow]:
        try:
            entries = self._command("hgetall", self.namespace)
        except StoreUnavailableError as exc:
            logger.warning("Failed to list workflows: %s", exc)
            return []
        workflows = []
        for key, raw in entries.items():
            if isinstance(key, bytes):
                key = key.decode("utf-8", errors="replace")
            workflow = self._decode(raw, key)
            if workflow is not None:
                workflows.append(workflow)
        return workflows

    def get(self, workflow_id: str) -> Workflow | None:
        try:
            raw = self._command("hget", self.namespace, workflow_id)
        except StoreUnavailableError as exc:
            logger.warning("Failed to read workflow %s: %s", workflow_id, exc)
            return None
        return self._decode(raw, workflow_id)

    def set(self, workflow: Workflow) -> None:
        payload = json.dumps(workflow.to_record())
        try:
            self._command("hset", self.namespace, workflow.id, payload)
        except StoreUnavailableError as exc:
            logger.error("Failed to write workflow %s: %s", workflow.id, exc)

    def delete(self, workflow_id: str) -> None:
        try:
            self._command("hdel", self.namespace, workflow_id)
        except StoreUnavailableError as exc:
            logger.error("Failed to delete workflow %s: %s", workflow_id, exc)

    def close(self) -> None:
        try:
            self._command("close")
        except StoreUnavailableError as exc:
            logger.debug("Failed to close Redis client: %s", exc)


def create_workflow_store(config: StoreConfig) -> WorkflowStore:
    """Create the store selected by configuration.

    Called once at process start; the result is held by the service.
    """
    if config.backend == "memory":
        logger.info("Using in-memory workflow store")
        return MemoryWorkflowStore()
    if config.redis_url:
        return RedisWorkflowStore(config)
    logger.warning("Redis not configured, using in-memory workflow store")
    return MemoryWorkflowStore()
