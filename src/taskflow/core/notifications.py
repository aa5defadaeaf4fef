"""Notification transport used by background jobs.

Delivery itself is an external concern: the rest of the service only depends
on the ``NotificationSender`` protocol. The default implementation sends
plain-text e-mail over SMTP.
"""

from __future__ import annotations

import logging
import smtplib
from dataclasses import dataclass, field
from email.message import EmailMessage
from enum import Enum
from threading import Lock
from typing import Protocol, runtime_checkable

from .config import Settings, get_settings

logger = logging.getLogger(__name__)


class NotificationKind(str, Enum):
    """Notification templates the service can deliver."""

    TASK_ASSIGNED = "task_assigned"
    TASK_COMPLETED = "task_completed"
    TASK_REMINDER = "task_reminder"
    DATA_EXPORT = "data_export"


@dataclass(slots=True, frozen=True)
class Attachment:
    filename: str
    content: bytes
    mimetype: str = "text/csv"


@dataclass(slots=True)
class NotificationPayload:
    """Rendered notification content."""

    subject: str
    body: str
    attachments: list[Attachment] = field(default_factory=list)


class Recipient(Protocol):
    email: str

    @property
    def full_name(self) -> str:  # pragma: no cover - interface definition
        ...


@runtime_checkable
class NotificationSender(Protocol):
    """Protocol describing the delivery surface background jobs rely on."""

    def send(
        self,
        kind: NotificationKind,
        recipient: Recipient,
        payload: NotificationPayload,
    ) -> None:  # pragma: no cover - interface definition
        """Deliver ``payload`` to ``recipient`` or raise ``NotificationDeliveryError``."""


class NotificationDeliveryError(RuntimeError):
    """Raised when the transport fails to hand a notification over."""


class SmtpNotificationSender:
    """Deliver notifications as e-mail through an SMTP relay."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def build_message(
        self,
        kind: NotificationKind,
        recipient: Recipient,
        payload: NotificationPayload,
    ) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self._settings.mail_from
        message["To"] = recipient.email
        message["Subject"] = payload.subject
        message["X-Notification-Kind"] = kind.value
        message.set_content(payload.body)
        for attachment in payload.attachments:
            maintype, _, subtype = attachment.mimetype.partition("/")
            message.add_attachment(
                attachment.content,
                maintype=maintype,
                subtype=subtype or "octet-stream",
                filename=attachment.filename,
            )
        return message

    def send(
        self,
        kind: NotificationKind,
        recipient: Recipient,
        payload: NotificationPayload,
    ) -> None:
        message = self.build_message(kind, recipient, payload)
        settings = self._settings
        try:
            with smtplib.SMTP(
                settings.smtp_host,
                settings.smtp_port,
                timeout=settings.smtp_timeout_seconds,
            ) as client:
                if settings.smtp_use_tls:
                    client.starttls()
                if settings.smtp_username:
                    client.login(settings.smtp_username, settings.smtp_password or "")
                client.send_message(message)
        except (smtplib.SMTPException, OSError) as exc:
            raise NotificationDeliveryError(
                f"Failed to deliver {kind.value} notification to {recipient.email}"
            ) from exc
        logger.info(
            "Delivered %s notification",
            kind.value,
            extra={"notification_kind": kind.value, "recipient": recipient.email},
        )


_sender: NotificationSender | None = None
_sender_lock = Lock()


def set_notification_sender(sender: NotificationSender | None) -> None:
    """Inject the sender used by background jobs (primarily for tests)."""

    global _sender
    with _sender_lock:
        _sender = sender


def get_notification_sender() -> NotificationSender:
    """Return the configured sender, defaulting to SMTP delivery."""

    global _sender
    with _sender_lock:
        if _sender is None:
            _sender = SmtpNotificationSender(get_settings())
        return _sender


__all__ = [
    "Attachment",
    "NotificationDeliveryError",
    "NotificationKind",
    "NotificationPayload",
    "NotificationSender",
    "Recipient",
    "SmtpNotificationSender",
    "get_notification_sender",
    "set_notification_sender",
]
