"""Workflow engine: matches events against workflow triggers.

The engine is stateless. It performs no I/O and keeps nothing between calls, so
a single instance can be shared by the service and every scheduler thread.
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterable, Mapping
from functools import lru_cache
from typing import Any

from ..core.logger import get_logger
from .conditions import evaluate_group, to_text
from .models import EmailExtractor, MatchResult, TriggerConfig, Workflow, WorkflowEvent

logger = get_logger("engine")

TEXT_FIELDS = ("subject", "body", "text", "message")


@lru_cache(maxsize=512)
def _compile(pattern: str) -> re.Pattern[str] | None:
    try:
        return re.compile(pattern, re.IGNORECASE)
    except re.error as exc:
        logger.warning("Invalid extractor pattern %r: %s", pattern, exc)
        return None


def extract_text(payload: Mapping[str, Any]) -> str:
    """Text searched by keyword prefilters."""
    parts = [value for key in TEXT_FIELDS if isinstance(value := payload.get(key), str) and value]
    if parts:
        return "\n".join(parts)
    return json.dumps(payload, ensure_ascii=False, default=str)


def extract_sender(payload: Mapping[str, Any]) -> str:
    """Sender address from ``from``/``sender`` (string or address object)."""
    sender = payload.get("from")
    if sender is None:
        sender = payload.get("sender")
    if isinstance(sender, str):
        return sender
    if isinstance(sender, Mapping):
        address = sender.get("email")
        if address is None:
            address = sender.get("address")
        if isinstance(address, str):
            return address
    return ""


def _extractor_source(extractor: EmailExtractor, payload: Mapping[str, Any]) -> str:
    if extractor.source == "text":
        value = payload.get("text")
        if value is None:
            value = payload.get("body")
    else:
        value = payload.get(extractor.source)
    return to_text(value)


class WorkflowEngine:
    """Evaluates workflows against a single event."""

    def run(self, workflows: Iterable[Workflow], event: WorkflowEvent) -> list[MatchResult]:
        """Evaluate every workflow against ``event``.

        Returns:
            One MatchResult per input workflow, in input order
        """
        results = [self.evaluate(workflow, event) for workflow in workflows]
        logger.debug(
            "Event %s (%s) evaluated: %d/%d matched",
            event.id,
            event.type.value,
            sum(1 for result in results if result.matched),
            len(results),
        )
        return results

    def evaluate(self, workflow: Workflow, event: WorkflowEvent) -> MatchResult:
        """Evaluate a single workflow against ``event``."""
        if not self.matches(workflow, event):
            return MatchResult(workflow_id=workflow.id, matched=False)
        extracted = self.extract(workflow.trigger, event.payload)
        return MatchResult(workflow_id=workflow.id, matched=True, extracted=extracted)

    def matches(self, workflow: Workflow, event: WorkflowEvent) -> bool:
        """Return True when the workflow's trigger accepts the event."""
        if not workflow.enabled:
            return False
        trigger = workflow.trigger
        if trigger.type != event.type:
            return False
        if not self._keywords_match(trigger.keywords, event.payload):
            return False
        if not self._senders_match(trigger.senders, event.payload):
            return False
        return evaluate_group(trigger.conditions, event.payload)

    @staticmethod
    def _keywords_match(keywords: list[str] | None, payload: Mapping[str, Any]) -> bool:
        if not keywords:
            return True
        text = extract_text(payload).lower()
        return any(keyword.lower() in text for keyword in keywords)

    @staticmethod
    def _senders_match(senders: list[str] | None, payload: Mapping[str, Any]) -> bool:
        if not senders:
            return True
        sender = extract_sender(payload).strip().lower()
        if not sender:
            return False
        return sender in {candidate.strip().lower() for candidate in senders}

    @staticmethod
    def extract(trigger: TriggerConfig, payload: Mapping[str, Any]) -> dict[str, str]:
        """Apply the trigger's extractors; fields that do not match are left out."""
        extracted: dict[str, str] = {}
        for extractor in trigger.extractors:
            regex = _compile(extractor.pattern)
            if regex is None:
                continue
            match = regex.search(_extractor_source(extractor, payload))
            if not match:
                continue
            value = match.group(1) if regex.groups else None
            extracted[extractor.field] = value if value is not None else match.group(0)
        return extracted
