"""Workflow, trigger, action and event models.

Every model accepts both snake_case field names and the camelCase keys used by
persisted records and inbound JSON (``createdAt``, ``integrationId``, ...).
Records are always written with camelCase keys.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-compatible dictionary using wire (camelCase) keys."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class TriggerType(str, Enum):
    """Event sources a workflow can be triggered by."""

    EMAIL = "email"
    FORM_SUBMIT = "form_submit"
    DEAL_CLOSE = "deal_close"
    WEBHOOK = "webhook"
    SCHEDULE = "schedule"


class ConditionOperator(str, Enum):
    """Operators supported by payload conditions."""

    EQUALS = "equals"
    CONTAINS = "contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    EXISTS = "exists"
    NOT_EXISTS = "not_exists"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"


# ----------------------------------------------------------------------
# Triggers
# ----------------------------------------------------------------------
class Condition(_WireModel):
    """Predicate over a single payload path."""

    path: str = Field(..., description="Dot-separated path into the event payload")
    operator: ConditionOperator = Field(..., description="Comparison operator")
    value: str | int | float | bool | None = Field(
        default=None, description="Operand; ignored by exists/not_exists"
    )


class ConditionGroup(_WireModel):
    """Conditions combined with ``all`` or ``any`` semantics."""

    op: Literal["all", "any"] = Field(default="all", description="Group semantics")
    conditions: list[Condition] = Field(default_factory=list)


class EmailExtractor(_WireModel):
    """Regex rule that derives a named field from free text."""

    field: str = Field(..., description="Output field name in the extracted map")
    source: Literal["subject", "body", "text"] = Field(
        default="text", description="Payload text field to search"
    )
    pattern: str = Field(..., description="Regular expression; group 1 becomes the value")


class ScheduleConfig(_WireModel):
    """Cron schedule for time-based triggers."""

    cron: str = Field(..., description="Five-field crontab expression")
    timezone: str | None = Field(default=None, description="IANA timezone name")


class TriggerConfig(_WireModel):
    """Describes which events make a workflow eligible to fire."""

    type: TriggerType = Field(..., description="Trigger category")
    keywords: list[str] | None = Field(default=None, description="Cheap text prefilter")
    senders: list[str] | None = Field(default=None, description="Allowed sender addresses")
    conditions: ConditionGroup | None = Field(default=None, description="Payload conditions")
    extractors: list[EmailExtractor] = Field(default_factory=list)
    schedule: ScheduleConfig | None = Field(default=None, description="Cron schedule")

    @model_validator(mode="after")
    def ensure_schedule(self) -> TriggerConfig:
        if self.type == TriggerType.SCHEDULE and self.schedule is None:
            raise ValueError("Schedule trigger selected but schedule config missing")
        if self.type != TriggerType.SCHEDULE and self.schedule is not None:
            raise ValueError("Schedule config is only valid for schedule triggers")
        return self


# ----------------------------------------------------------------------
# Actions
# ----------------------------------------------------------------------
class ToolRef(_WireModel):
    """Names an integration operation plus its (templated) input."""

    integration_id: str = Field(..., description="Integration identifier")
    tool_name: str = Field(..., description="Tool exposed by the integration")
    input: dict[str, Any] | None = Field(default=None, description="Tool input template")


class SlackMessageAction(_WireModel):
    type: Literal["slack_message"] = "slack_message"
    channel_id: str
    text: str

    def tool_refs(self) -> list[ToolRef]:
        return []


class IntegrationToolAction(_WireModel):
    type: Literal["integration_tool"] = "integration_tool"
    integration_id: str
    tool_name: str
    input: dict[str, Any] | None = None

    def tool_refs(self) -> list[ToolRef]:
        return [
            ToolRef(integration_id=self.integration_id, tool_name=self.tool_name, input=self.input)
        ]


class DataSyncAction(_WireModel):
    type: Literal["data_sync"] = "data_sync"
    source: ToolRef
    target: ToolRef
    mapping: dict[str, str] | None = None

    def tool_refs(self) -> list[ToolRef]:
        return [self.source, self.target]


class FileTransferAction(_WireModel):
    type: Literal["file_transfer"] = "file_transfer"
    download: ToolRef
    upload: ToolRef
    content_field: str | None = None
    name_field: str | None = None

    def tool_refs(self) -> list[ToolRef]:
        return [self.download, self.upload]


class RouteAttachmentsAction(_WireModel):
    type: Literal["route_attachments"] = "route_attachments"
    target: ToolRef

    def tool_refs(self) -> list[ToolRef]:
        return [self.target]


STRIPE_INTEGRATION_ID = "stripe"


class StripeUpdateAction(_WireModel):
    type: Literal["stripe_update"] = "stripe_update"
    tool_name: str
    input: dict[str, Any] | None = None

    def tool_refs(self) -> list[ToolRef]:
        return [
            ToolRef(
                integration_id=STRIPE_INTEGRATION_ID,
                tool_name=self.tool_name,
                input=self.input,
            )
        ]


WorkflowAction = Annotated[
    Union[
        SlackMessageAction,
        IntegrationToolAction,
        DataSyncAction,
        FileTransferAction,
        RouteAttachmentsAction,
        StripeUpdateAction,
    ],
    Field(discriminator="type"),
]


# ----------------------------------------------------------------------
# Workflows
# ----------------------------------------------------------------------
class WorkflowInput(_WireModel):
    """Fields supplied by callers when creating a workflow."""

    name: str = Field(..., description="Display label")
    enabled: bool = Field(default=True, description="Whether the workflow is active")
    trigger: TriggerConfig = Field(..., description="Trigger configuration")
    actions: list[WorkflowAction] = Field(
        default_factory=list, description="Actions executed in order when matched"
    )


class WorkflowUpdate(_WireModel):
    """Partial update; only explicitly set fields are applied."""

    name: str | None = None
    enabled: bool | None = None
    trigger: TriggerConfig | None = None
    actions: list[WorkflowAction] | None = None


class Workflow(WorkflowInput):
    """A stored automation rule."""

    id: str = Field(..., description="Opaque unique identifier")
    created_at: datetime = Field(..., description="Creation timestamp")
    updated_at: datetime = Field(..., description="Last update timestamp")

    @property
    def is_schedulable(self) -> bool:
        """True when the scheduler should keep a timer armed for this workflow."""
        return self.enabled and self.trigger.type == TriggerType.SCHEDULE

    def to_record(self) -> dict[str, Any]:
        """Serialize for persistence."""
        return self.to_dict()

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> Workflow:
        """Deserialize a persisted record."""
        return cls.model_validate(record)


# ----------------------------------------------------------------------
# Events and results
# ----------------------------------------------------------------------
class Attachment(_WireModel):
    id: str | None = None
    name: str | None = None
    filename: str | None = None
    content_type: str | None = None
    content_base64: str | None = None
    url: str | None = None
    size: int | None = None
    metadata: dict[str, Any] | None = None


class WorkflowEvent(_WireModel):
    """Immutable input to the engine."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    type: TriggerType
    payload: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] | None = None
    attachments: list[Attachment] | None = None
    received_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def create(
        cls,
        type: TriggerType | str,
        payload: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
        attachments: list[Attachment] | None = None,
    ) -> WorkflowEvent:
        """Build an event with a fresh id and the current timestamp."""
        return cls(
            id=str(uuid.uuid4()),
            type=TriggerType(type),
            payload=payload or {},
            metadata=metadata,
            attachments=attachments,
            received_at=utcnow(),
        )


class MatchResult(_WireModel):
    """Outcome of evaluating one workflow against one event."""

    workflow_id: str
    matched: bool
    extracted: dict[str, str] = Field(default_factory=dict)
