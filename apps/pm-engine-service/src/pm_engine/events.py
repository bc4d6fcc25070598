"""Command payload builders for outgoing PM notifications."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import uuid4

SEVERITY_BY_PRIORITY = {
    "LOW": "watch",
    "MEDIUM": "watch",
    "HIGH": "warning",
    "URGENT": "critical",
}


def build_notification_dispatch_command(
    *,
    channel: str,
    recipient: str,
    title: str,
    message: str,
    priority: str,
    requested_by: str,
    requested_at: datetime,
    related_entity_type: str | None = None,
    related_entity_id: int | None = None,
    action_url: str | None = None,
    trace_id: str | None = None,
) -> dict[str, Any]:
    """Build `notification.dispatch` command envelope for one recipient."""

    context: dict[str, Any] = {"title": title, "priority": priority}
    if related_entity_type:
        context["related_entity_type"] = related_entity_type
    if related_entity_id is not None:
        context["related_entity_id"] = related_entity_id
    if action_url:
        context["action_url"] = action_url

    text = f"{title}\n\n{message}" if message else title
    command: dict[str, Any] = {
        "command_id": str(uuid4()),
        "command_type": "notification.dispatch",
        "command_version": "v1",
        "requested_at": requested_at.isoformat(),
        "requested_by": requested_by,
        "trace_id": trace_id or uuid4().hex,
        "payload": {
            "channel": channel,
            "recipient": recipient,
            "message": text[:2000],
            "severity": SEVERITY_BY_PRIORITY.get(priority, "warning"),
            "context": context,
        },
    }
    if related_entity_type and related_entity_id is not None:
        command["correlation_id"] = f"{related_entity_type}:{related_entity_id}"
    return command
