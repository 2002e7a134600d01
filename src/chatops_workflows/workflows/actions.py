"""Action planning for matched workflows.

Nothing here performs a side effect. Planning resolves ``{{ path }}``
placeholders in action inputs against the event and the engine's extracted
fields, and hands the caller a list of tool references to dispatch in order.
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

from ..core.logger import get_logger
from .conditions import MISSING, resolve_path
from .models import (
    DataSyncAction,
    FileTransferAction,
    IntegrationToolAction,
    MatchResult,
    RouteAttachmentsAction,
    SlackMessageAction,
    StripeUpdateAction,
    ToolRef,
    Workflow,
    WorkflowAction,
    WorkflowEvent,
)

logger = get_logger("actions")

_PLACEHOLDER = re.compile(r"{{\s*([^}]+?)\s*}}")


@dataclass(slots=True)
class PlannedAction:
    """One resolved step of a matched workflow.

    ``tool_refs`` carry rendered inputs, except where the input depends on the
    result of an earlier tool call in the same action (the ``data_sync`` target
    and the ``file_transfer`` upload); those stay as templates for the caller to
    render with :func:`render_template` once the earlier result is known.
    """

    index: int
    action_type: str
    tool_refs: list[ToolRef] = field(default_factory=list)
    input: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "action_type": self.action_type,
            "tool_refs": [ref.to_dict() for ref in self.tool_refs],
            "input": self.input,
        }


@dataclass(slots=True)
class WorkflowMatch:
    """A workflow that matched an event, with everything needed to run it."""

    workflow: Workflow
    result: MatchResult
    event: WorkflowEvent
    actions: list[PlannedAction] = field(default_factory=list)

    @property
    def extracted(self) -> dict[str, str]:
        return self.result.extracted


class ActionDispatcher(Protocol):
    """Caller-supplied execution path for matched workflows."""

    def __call__(self, match: WorkflowMatch) -> None: ...


def build_context(
    event: WorkflowEvent,
    extracted: Mapping[str, str] | None = None,
    **extra: Any,
) -> dict[str, Any]:
    """Template context: payload, metadata, attachments, extracted, event."""
    context: dict[str, Any] = {
        "payload": event.payload,
        "metadata": event.metadata or {},
        "attachments": [a.to_dict() for a in event.attachments or []],
        "extracted": dict(extracted or {}),
        "event": event.to_dict(),
    }
    context.update(extra)
    return context


def _render_string(template: str, context: Mapping[str, Any]) -> str:
    def replace(match: re.Match[str]) -> str:
        value = resolve_path(context, match.group(1))
        if value is MISSING or value is None:
            return ""
        if isinstance(value, str):
            return value
        return json.dumps(value, separators=(",", ":"), default=str)

    return _PLACEHOLDER.sub(replace, template)


def render_template(value: Any, context: Mapping[str, Any]) -> Any:
    """Recursively render ``{{ path }}`` placeholders in strings, lists and dicts."""
    if isinstance(value, str):
        return _render_string(value, context)
    if isinstance(value, list):
        return [render_template(item, context) for item in value]
    if isinstance(value, dict):
        return {key: render_template(item, context) for key, item in value.items()}
    return value


def _rendered_ref(ref: ToolRef, context: Mapping[str, Any]) -> ToolRef:
    return ToolRef(
        integration_id=ref.integration_id,
        tool_name=ref.tool_name,
        input=render_template(ref.input or {}, context),
    )


def plan_action(index: int, action: WorkflowAction, context: Mapping[str, Any]) -> PlannedAction:
    """Resolve a single action against the template context."""
    planned = PlannedAction(index=index, action_type=action.type)

    if isinstance(action, SlackMessageAction):
        planned.input = {
            "channelId": _render_string(action.channel_id, context),
            "text": _render_string(action.text, context),
        }
    elif isinstance(action, (IntegrationToolAction, StripeUpdateAction)):
        ref = _rendered_ref(action.tool_refs()[0], context)
        planned.tool_refs = [ref]
        planned.input = dict(ref.input or {})
    elif isinstance(action, DataSyncAction):
        planned.tool_refs = [_rendered_ref(action.source, context), action.target]
        planned.input = {"mapping": dict(action.mapping or {})}
    elif isinstance(action, FileTransferAction):
        planned.tool_refs = [_rendered_ref(action.download, context), action.upload]
        planned.input = {
            "contentField": action.content_field,
            "nameField": action.name_field,
        }
    elif isinstance(action, RouteAttachmentsAction):
        for attachment in context.get("attachments", []):
            attachment_context = {**context, "attachment": attachment}
            planned.tool_refs.append(_rendered_ref(action.target, attachment_context))
        if not planned.tool_refs:
            logger.debug("route_attachments action %d has no attachments to route", index)
    else:
        raise TypeError(f"Unsupported action type: {type(action).__name__}")

    return planned


def plan_actions(
    workflow: Workflow,
    event: WorkflowEvent,
    extracted: Mapping[str, str] | None = None,
) -> list[PlannedAction]:
    """Resolve every action of ``workflow`` in list order."""
    context = build_context(event, extracted)
    return [plan_action(index, action, context) for index, action in enumerate(workflow.actions)]


def build_match(workflow: Workflow, result: MatchResult, event: WorkflowEvent) -> WorkflowMatch:
    """Bundle a matched workflow with its planned actions."""
    return WorkflowMatch(
        workflow=workflow,
        result=result,
        event=event,
        actions=plan_actions(workflow, event, result.extracted),
    )
