"""
Module: procurement_kernel.models.notification
Responsibility: In-app notification inbox rows.
Architecture position: Kernel > Models.  May import from db/base.py only.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import JSON, Boolean, DateTime, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from procurement_kernel.db.base import Base, UUIDString

if TYPE_CHECKING:
    from procurement_kernel.domain.notifications import NotificationInfo


class NotificationModel(Base):
    __tablename__ = "notifications"

    __table_args__ = (
        Index("ix_notifications_user_read", "user_id", "is_read", "created_at"),
    )

    user_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    related_model: Mapped[str | None] = mapped_column(String(50), nullable=True)
    related_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<Notification {self.type} user={self.user_id} read={self.is_read}>"

    def to_dto(self) -> NotificationInfo:
        from procurement_kernel.domain.notifications import (
            NotificationEvent,
            NotificationInfo,
        )

        return NotificationInfo(
            id=self.id,
            user_id=self.user_id,
            event=NotificationEvent(self.type),
            title=self.title,
            message=self.message,
            related_model=self.related_model,
            related_id=self.related_id,
            payload=dict(self.payload or {}),
            is_read=self.is_read,
            read_at=self.read_at,
            created_at=self.created_at,
        )
