"""
Module: procurement_kernel.models.approval_config
Responsibility: ORM persistence for amount-keyed approval configurations
    and their levels, plus the approval-step columns shared by requisitions
    and purchase orders.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - UNIQUE(name, module): a configuration is identified by its name
      within a module, so re-installing a configuration set updates it.
    - UNIQUE(config_id, level_order): no two levels share a position.
    - Step status is one of pending/approved/rejected.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from procurement_kernel.db.base import TrackedBase, Base, UUIDString

if TYPE_CHECKING:
    from procurement_kernel.domain.approval import ApprovalChain, ApprovalLevel
    from procurement_kernel.domain.requisition import ApprovalStep


class ApprovalConfigModel(TrackedBase):
    """An approval policy for one amount range of one module."""

    __tablename__ = "approval_configs"

    __table_args__ = (
        UniqueConstraint("name", "module", name="uq_approval_configs_name_module"),
        CheckConstraint(
            "module IN ('requisition', 'purchase_order')",
            name="ck_approval_configs_valid_module",
        ),
        CheckConstraint("min_amount >= 0", name="ck_approval_configs_min_non_negative"),
        CheckConstraint(
            "max_amount IS NULL OR max_amount > min_amount",
            name="ck_approval_configs_range_ordered",
        ),
        Index("ix_approval_configs_lookup", "module", "is_active", "min_amount"),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    module: Mapped[str] = mapped_column(String(30), nullable=False)
    min_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    max_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    levels: Mapped[list["ApprovalConfigLevelModel"]] = relationship(
        "ApprovalConfigLevelModel",
        back_populates="config",
        order_by="ApprovalConfigLevelModel.level_order",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<ApprovalConfig {self.module}/{self.name} "
            f"[{self.min_amount}, {self.max_amount})>"
        )

    def to_chain(self) -> ApprovalChain:
        """Convert to a domain chain; levels are re-sorted by order."""
        from procurement_kernel.domain.approval import ApprovalChain, ApprovalModule

        return ApprovalChain.from_levels(
            ApprovalModule(self.module),
            [level.to_dto() for level in self.levels],
            config_id=self.id,
            config_name=self.name,
        )


class ApprovalConfigLevelModel(Base):
    __tablename__ = "approval_config_levels"

    __table_args__ = (
        UniqueConstraint("config_id", "level_order", name="uq_approval_config_levels_order"),
    )

    config_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("approval_configs.id", ondelete="CASCADE"), nullable=False,
    )
    level_order: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    approval_limit: Mapped[Decimal | None] = mapped_column(nullable=True)

    config: Mapped[ApprovalConfigModel] = relationship(back_populates="levels")

    def to_dto(self) -> ApprovalLevel:
        from procurement_kernel.domain.approval import ApprovalLevel, Role

        return ApprovalLevel(
            order=self.level_order,
            name=self.name,
            role=Role(self.role),
            approval_limit=self.approval_limit,
        )


class ApprovalStepMixin:
    """
    Columns of one snapshotted approval level.

    The level's role and name are copied from the resolved chain when the
    document is created; later policy edits never change them.
    """

    level: Mapped[int] = mapped_column(Integer, nullable=False)
    level_name: Mapped[str] = mapped_column(String(200), nullable=False)
    required_role: Mapped[str] = mapped_column(String(20), nullable=False)
    approval_limit: Mapped[Decimal | None] = mapped_column(nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    approver_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    decided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def to_dto(self) -> ApprovalStep:
        from procurement_kernel.domain.requisition import ApprovalStep, StepStatus

        return ApprovalStep(
            level=self.level,
            level_name=self.level_name,
            required_role=self.required_role,
            status=StepStatus(self.status),
            approver_id=self.approver_id,
            comments=self.comments,
            decided_at=self.decided_at,
            approval_limit=self.approval_limit,
        )

    @classmethod
    def skeleton_from_chain(cls, chain: ApprovalChain) -> list:
        """One pending step per chain level, no approver, no date."""
        return [
            cls(
                level=index,
                level_name=level.name,
                required_role=level.role.value,
                approval_limit=level.approval_limit,
                status="pending",
            )
            for index, level in enumerate(chain.levels)
        ]
