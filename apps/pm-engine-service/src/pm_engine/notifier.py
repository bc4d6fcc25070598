"""Notification payloads, notifier implementations and the delivery gateway."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, replace
from datetime import datetime, timezone
import json
import logging
import socket
from threading import Lock
from typing import Protocol
from urllib import error as url_error
from urllib import request as url_request

from .config import Settings
from .errors import CollaboratorFailure
from .events import build_notification_dispatch_command
from .observability import PMEngineMetrics, log_event
from .repository import PMRepository
from .schemas import NotificationKind, NotificationLevel
from .store import User

logger = logging.getLogger("pm_engine")


@dataclass(frozen=True)
class Notification:
    """In-app notice; `user_id` is filled per recipient by the gateway."""

    organization_id: int
    title: str
    message: str
    priority: NotificationLevel
    kind: NotificationKind = "INFO"
    related_entity_type: str | None = None
    related_entity_id: int | None = None
    action_url: str | None = None
    action_label: str | None = None
    user_id: int | None = None


class Notifier(Protocol):
    """Delivery collaborator for PM notifications."""

    def notify(self, notification: Notification, recipient: User) -> None:
        """Deliver one notification; raise on failure."""


class RecordingNotifier:
    """Keeps delivered notifications in memory."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._sent: list[Notification] = []

    def notify(self, notification: Notification, recipient: User) -> None:
        with self._lock:
            self._sent.append(replace(notification, user_id=recipient.user_id))

    @property
    def sent(self) -> list[Notification]:
        with self._lock:
            return list(self._sent)

    def reset(self) -> None:
        with self._lock:
            self._sent.clear()


class HttpNotifier:
    """Posts `notification.dispatch` commands to the notification service."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def notify(self, notification: Notification, recipient: User) -> None:
        command = build_notification_dispatch_command(
            channel=self._settings.notification_channel,
            recipient=recipient.email or f"user:{recipient.user_id}",
            title=notification.title,
            message=notification.message,
            priority=notification.priority,
            requested_by=self._settings.command_requested_by,
            requested_at=datetime.now(tz=timezone.utc),
            related_entity_type=notification.related_entity_type,
            related_entity_id=notification.related_entity_id,
            action_url=notification.action_url,
        )
        timeout_seconds = max(self._settings.notification_timeout_seconds, 0.1)
        endpoint = f"{self._settings.notification_base_url.rstrip('/')}/dispatch"
        request = url_request.Request(
            url=endpoint,
            data=json.dumps(command).encode("utf-8"),
            method="POST",
            headers={
                "content-type": "application/json",
                "accept": "application/json",
            },
        )

        try:
            with url_request.urlopen(request, timeout=timeout_seconds) as response:
                raw = response.read().decode("utf-8")
        except url_error.HTTPError as exc:
            details = exc.read().decode("utf-8", errors="ignore")
            raise CollaboratorFailure(f"notification HTTP {exc.code}: {details[:180]}") from exc
        except url_error.URLError as exc:
            raise CollaboratorFailure(f"notification unavailable: {exc.reason}") from exc
        except (TimeoutError, socket.timeout) as exc:
            raise CollaboratorFailure(f"notification timeout after {timeout_seconds:.1f}s") from exc
        except OSError as exc:
            raise CollaboratorFailure(f"notification network error: {exc}") from exc

        try:
            body = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise CollaboratorFailure("notification returned invalid JSON") from exc

        dispatch = body.get("dispatch") if isinstance(body, dict) else None
        if not isinstance(dispatch, dict):
            raise CollaboratorFailure("notification response missing dispatch payload")
        if str(dispatch.get("status", "failed")).lower() != "delivered":
            raise CollaboratorFailure(dispatch.get("last_error") or "notification delivery failed")


class NotificationGateway:
    """Resolves recipients and isolates the caller from delivery failures."""

    def __init__(self, *, store: PMRepository, notifier: Notifier, metrics: PMEngineMetrics) -> None:
        self._store = store
        self._metrics = metrics
        self.notifier = notifier

    def send(self, notification: Notification, recipients: Iterable[User]) -> int:
        """Deliver to each distinct recipient; return how many succeeded."""

        delivered = 0
        seen: set[int] = set()
        for recipient in recipients:
            if recipient.user_id in seen:
                continue
            seen.add(recipient.user_id)
            try:
                self.notifier.notify(replace(notification, user_id=recipient.user_id), recipient)
            except Exception as exc:
                self._metrics.record_notification(delivered=False)
                log_event(
                    logger,
                    "pm_notification_failed",
                    level=logging.WARNING,
                    user_id=recipient.user_id,
                    title=notification.title,
                    related_entity_type=notification.related_entity_type,
                    related_entity_id=notification.related_entity_id,
                    error=str(exc) or type(exc).__name__,
                )
                continue
            self._metrics.record_notification(delivered=True)
            delivered += 1
        return delivered

    def send_to_roles(self, notification: Notification, roles: Iterable[str]) -> int:
        try:
            recipients = self._store.list_users(notification.organization_id, roles)
        except Exception as exc:
            log_event(
                logger,
                "pm_notification_recipients_failed",
                level=logging.WARNING,
                organization_id=notification.organization_id,
                error=str(exc) or type(exc).__name__,
            )
            return 0
        return self.send(notification, recipients)

    def recipients_for(self, organization_id: int, roles: Iterable[str], *, assignee_id: int | None) -> list[User]:
        """Assignee (when set) followed by every user holding one of `roles`."""

        recipients: list[User] = []
        if assignee_id is not None:
            assignee = self._store.get_user(assignee_id)
            if assignee is not None:
                recipients.append(assignee)
        recipients.extend(self._store.list_users(organization_id, roles))
        return recipients
