"""Notification events, the inbox DTO and the sink contract.

Sinks are fire-and-forget from the engine's point of view: a failing sink
is logged by the caller and never undoes the transition that triggered it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Protocol
from uuid import UUID


class NotificationEvent(str, Enum):
    REQUISITION_CREATED = "requisition_created"
    APPROVAL_REQUIRED = "approval_required"
    REQUISITION_APPROVED = "requisition_approved"
    REQUISITION_REJECTED = "requisition_rejected"
    REQUISITION_CANCELLED = "requisition_cancelled"
    BUDGET_ALERT = "budget_alert"
    PURCHASE_ORDER_CREATED = "purchase_order_created"


@dataclass(frozen=True)
class NotificationInfo:
    id: UUID
    user_id: UUID
    event: NotificationEvent
    title: str
    message: str
    related_model: str | None = None
    related_id: UUID | None = None
    payload: dict[str, Any] = field(default_factory=dict)
    is_read: bool = False
    read_at: datetime | None = None
    created_at: datetime | None = None


class NotificationSink(Protocol):
    def notify(self, user_id: UUID, event: NotificationEvent, payload: dict[str, Any]) -> None:
        ...


_TITLES: dict[NotificationEvent, str] = {
    NotificationEvent.REQUISITION_CREATED: "Requisition {number} submitted",
    NotificationEvent.APPROVAL_REQUIRED: "Requisition {number} awaits your approval",
    NotificationEvent.REQUISITION_APPROVED: "Requisition {number} approved",
    NotificationEvent.REQUISITION_REJECTED: "Requisition {number} rejected",
    NotificationEvent.REQUISITION_CANCELLED: "Requisition {number} cancelled",
    NotificationEvent.BUDGET_ALERT: "Budget alert for {department_name}",
    NotificationEvent.PURCHASE_ORDER_CREATED: "Purchase order {number} created",
}

_MESSAGES: dict[NotificationEvent, str] = {
    NotificationEvent.REQUISITION_CREATED:
        "Your requisition '{title}' for {total_amount} was submitted for approval.",
    NotificationEvent.APPROVAL_REQUIRED:
        "Requisition '{title}' ({total_amount}) is waiting at level '{level_name}'.",
    NotificationEvent.REQUISITION_APPROVED:
        "Your requisition '{title}' was approved.",
    NotificationEvent.REQUISITION_REJECTED:
        "Your requisition '{title}' was rejected: {reason}",
    NotificationEvent.REQUISITION_CANCELLED:
        "Requisition '{title}' was cancelled.",
    NotificationEvent.BUDGET_ALERT:
        "Budget usage reached {usage_percentage}% (threshold {percentage}%).",
    NotificationEvent.PURCHASE_ORDER_CREATED:
        "Purchase order {number} for {total_amount} was raised from your requisition.",
}


class _Defaulting(dict):
    def __missing__(self, key: str) -> str:
        return ""


def render_notification(event: NotificationEvent, payload: dict[str, Any]) -> tuple[str, str]:
    """Title and message for an event; missing payload keys render empty."""
    values = _Defaulting({k: "" if v is None else v for k, v in payload.items()})
    return (
        _TITLES[event].format_map(values),
        _MESSAGES[event].format_map(values),
    )
