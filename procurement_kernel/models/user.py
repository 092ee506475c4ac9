"""
Module: procurement_kernel.models.user
Responsibility: ORM persistence for the user directory that backs the
    default IdentityProvider.  Authentication lives elsewhere; this table
    only answers "which role and which department does this actor have".
Architecture position: Kernel > Models.  May import from db/base.py only.
"""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from procurement_kernel.db.base import Base, UUIDString

if TYPE_CHECKING:
    from procurement_kernel.domain.identity import ActorIdentity


class UserModel(Base):
    __tablename__ = "users"

    __table_args__ = (
        CheckConstraint(
            "role IN ('admin', 'approver', 'purchasing', 'finance', "
            "'warehouse', 'requester')",
            name="ck_users_valid_role",
        ),
        Index("ix_users_role_department", "role", "department_id"),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="requester")
    department_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("departments.id"), nullable=True,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<User {self.email} role={self.role}>"

    def to_identity(self) -> ActorIdentity:
        from procurement_kernel.domain.approval import Role
        from procurement_kernel.domain.identity import ActorIdentity

        return ActorIdentity(
            actor_id=self.id,
            role=Role(self.role),
            department_id=self.department_id,
            name=self.name,
            email=self.email,
        )
