"""
Notification sinks.

Responsibility:
    Delivers lifecycle events to users.  Three sinks are provided:

    * ``NotificationService`` -- the in-app inbox (``notifications`` table)
      plus the reader-side operations on it.
    * ``EmailNotificationSink`` -- SMTP delivery for the events that
      warrant an email.
    * ``FanOutNotificationSink`` -- delivers one event to several sinks,
      isolating each from the others' failures.

Architecture position:
    Kernel > Services -- collaborators implementing NotificationSink.

Failure modes:
    Email failures are logged and swallowed; delivery is best-effort.
    Inbox failures propagate to the caller, which logs them (the lifecycle
    engine never lets them undo a transition).
"""

import smtplib
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from procurement_kernel.domain.clock import Clock, SystemClock
from procurement_kernel.domain.identity import IdentityProvider
from procurement_kernel.domain.notifications import (
    NotificationEvent,
    NotificationInfo,
    NotificationSink,
    render_notification,
)
from procurement_kernel.exceptions import ForbiddenError, NotificationNotFoundError
from procurement_kernel.logging_config import get_logger
from procurement_kernel.models.notification import NotificationModel
from procurement_kernel.services.base import BaseService

logger = get_logger("services.notification")


class NotificationService(BaseService):
    """
    In-app inbox.

    Contract:
        ``notify`` flushes within the caller's transaction.  ``mark_read``
        and ``mark_all_read`` are reader operations and commit.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    def notify(self, user_id: UUID, event: NotificationEvent, payload: dict[str, Any]) -> None:
        title, message = render_notification(event, payload)
        related_id = payload.get("requisition_id") or payload.get("purchase_order_id")
        related_model = (
            "requisition" if "requisition_id" in payload
            else "purchase_order" if "purchase_order_id" in payload
            else "department" if "department_id" in payload
            else None
        )
        self.session.add(
            NotificationModel(
                user_id=user_id,
                type=NotificationEvent(event).value,
                title=title,
                message=message,
                related_model=related_model,
                related_id=UUID(str(related_id)) if related_id else None,
                payload=dict(payload),
                is_read=False,
                created_at=self._clock.now(),
            )
        )
        self.session.flush()
        logger.debug(
            "notification_stored",
            extra={"user_id": str(user_id), "event": NotificationEvent(event).value},
        )

    def list_for_user(
        self, user_id: UUID, unread_only: bool = False, limit: int = 50
    ) -> list[NotificationInfo]:
        stmt = select(NotificationModel).where(NotificationModel.user_id == user_id)
        if unread_only:
            stmt = stmt.where(NotificationModel.is_read.is_(False))
        rows = self.session.execute(
            stmt.order_by(NotificationModel.created_at.desc()).limit(limit)
        ).scalars().all()
        return [row.to_dto() for row in rows]

    def unread_count(self, user_id: UUID) -> int:
        return self.session.execute(
            select(func.count(NotificationModel.id)).where(
                NotificationModel.user_id == user_id,
                NotificationModel.is_read.is_(False),
            )
        ).scalar_one()

    def mark_read(self, user_id: UUID, notification_id: UUID) -> NotificationInfo:
        """
        Raises:
            NotificationNotFoundError: Unknown notification.
            ForbiddenError: The notification belongs to someone else.
        """
        row = self.session.get(NotificationModel, notification_id)
        if row is None:
            raise NotificationNotFoundError(str(notification_id))
        if row.user_id != user_id:
            raise ForbiddenError(str(user_id), "read another user's notification")
        if not row.is_read:
            row.is_read = True
            row.read_at = self._clock.now()
            self.session.commit()
        return row.to_dto()

    def mark_all_read(self, user_id: UUID) -> int:
        result = self.session.execute(
            update(NotificationModel)
            .where(
                NotificationModel.user_id == user_id,
                NotificationModel.is_read.is_(False),
            )
            .values(is_read=True, read_at=self._clock.now())
            .execution_options(synchronize_session=False)
        )
        self.session.commit()
        return result.rowcount


@dataclass(frozen=True)
class EmailSettings:
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_username: str | None = None
    smtp_password: str | None = None
    use_tls: bool = True
    from_address: str = "procurement@localhost"
    client_url: str = "http://localhost:3000"

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.smtp_username and self.smtp_password)


DEFAULT_EMAIL_EVENTS: frozenset[NotificationEvent] = frozenset({
    NotificationEvent.APPROVAL_REQUIRED,
    NotificationEvent.REQUISITION_APPROVED,
    NotificationEvent.REQUISITION_REJECTED,
    NotificationEvent.BUDGET_ALERT,
})


class EmailNotificationSink:
    """
    SMTP delivery of selected events.

    Never raises: an unconfigured transport or a failed send is logged and
    reported through ``send``'s boolean result.
    """

    def __init__(
        self,
        settings: EmailSettings,
        identity: IdentityProvider,
        events: frozenset[NotificationEvent] = DEFAULT_EMAIL_EVENTS,
        smtp_factory: Any = smtplib.SMTP,
    ):
        self._settings = settings
        self._identity = identity
        self._events = events
        self._smtp_factory = smtp_factory
        if not settings.is_configured:
            logger.warning("email_transport_not_configured")

    def notify(self, user_id: UUID, event: NotificationEvent, payload: dict[str, Any]) -> None:
        if event not in self._events:
            return
        recipient = self._identity.resolve(user_id)
        if not recipient.email:
            logger.warning("email_recipient_missing_address", extra={"user_id": str(user_id)})
            return
        title, message = render_notification(event, payload)
        self.send([recipient.email], title, self._html(recipient.name, title, message, payload), message)

    def send(
        self,
        to_addresses: list[str],
        subject: str,
        html_content: str,
        text_content: str,
    ) -> bool:
        if not self._settings.is_configured:
            logger.info(
                "email_skipped_unconfigured",
                extra={"recipients": to_addresses, "subject": subject},
            )
            return False

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self._settings.from_address
        msg["To"] = ", ".join(to_addresses)
        msg.attach(MIMEText(text_content, "plain"))
        msg.attach(MIMEText(html_content, "html"))

        try:
            with self._smtp_factory(self._settings.smtp_host, self._settings.smtp_port) as server:
                if self._settings.use_tls:
                    server.starttls()
                server.login(self._settings.smtp_username, self._settings.smtp_password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError):
            logger.error(
                "email_send_failed",
                extra={"recipients": to_addresses, "subject": subject},
                exc_info=True,
            )
            return False

        logger.info("email_sent", extra={"recipients": to_addresses, "subject": subject})
        return True

    def _html(self, name: str, title: str, message: str, payload: dict[str, Any]) -> str:
        link = ""
        if payload.get("requisition_id"):
            url = f"{self._settings.client_url}/requisitions/{payload['requisition_id']}"
            link = f'<p><a href="{url}">View requisition</a></p>'
        return (
            f"<h2>{title}</h2>"
            f"<p>Hello {name or 'there'},</p>"
            f"<p>{message}</p>"
            f"{link}"
        )


class FanOutNotificationSink:
    """Delivers each event to every wrapped sink; one failure never blocks the rest."""

    def __init__(self, sinks: list[NotificationSink]):
        self._sinks = list(sinks)

    def notify(self, user_id: UUID, event: NotificationEvent, payload: dict[str, Any]) -> None:
        for sink in self._sinks:
            try:
                sink.notify(user_id, event, payload)
            except Exception:
                logger.error(
                    "notification_sink_failed",
                    extra={
                        "sink": type(sink).__name__,
                        "user_id": str(user_id),
                        "event": NotificationEvent(event).value,
                    },
                    exc_info=True,
                )
