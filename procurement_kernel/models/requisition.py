"""
Module: procurement_kernel.models.requisition
Responsibility: ORM persistence for requisitions, their line items and
    their snapshotted approval history.
Architecture position: Kernel > Models.  May import from db/base.py and
    models/approval_config.py (shared step columns).

Invariants enforced:
    - UNIQUE(number): sequence numbers never collide.
    - UNIQUE(requisition_id, item_number) and UNIQUE(requisition_id, level).
    - version_id_col: every UPDATE of a requisition row is conditional on
      the version that was read, so two racing approvers cannot both
      persist a transition.  The loser gets StaleDataError.
    - spent_recorded flips false -> true at most once (see
      BudgetLedgerService.record_spend).

Failure modes:
    - IntegrityError on duplicate number.
    - StaleDataError on a lost optimistic race.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from procurement_kernel.db.base import Base, TrackedBase, UUIDString
from procurement_kernel.models.approval_config import ApprovalStepMixin

if TYPE_CHECKING:
    from procurement_kernel.domain.requisition import RequisitionInfo, RequisitionItem


class RequisitionModel(TrackedBase):
    """A purchase requisition raised by a requester for their department."""

    __tablename__ = "requisitions"

    __table_args__ = (
        CheckConstraint(
            "status IN ('draft', 'pending', 'in_approval', 'approved', "
            "'rejected', 'cancelled', 'partially_ordered', 'ordered')",
            name="ck_requisitions_valid_status",
        ),
        CheckConstraint(
            "priority IN ('low', 'medium', 'high', 'urgent')",
            name="ck_requisitions_valid_priority",
        ),
        CheckConstraint("current_level >= 0", name="ck_requisitions_level_non_negative"),
        CheckConstraint("total_amount >= 0", name="ck_requisitions_total_non_negative"),
        # Committed recompute and list filters query by department + status
        Index("ix_requisitions_department_status", "department_id", "status"),
        Index("ix_requisitions_requester", "requester_id"),
    )

    number: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    requester_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    department_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("departments.id"), nullable=False,
    )
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="pending")
    priority: Mapped[str] = mapped_column(String(10), nullable=False, default="medium")
    request_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    required_date: Mapped[date] = mapped_column(Date, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(nullable=False)
    current_level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    approval_config_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    approval_config_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    spent_recorded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    items: Mapped[list["RequisitionItemModel"]] = relationship(
        "RequisitionItemModel",
        back_populates="requisition",
        order_by="RequisitionItemModel.item_number",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    approval_steps: Mapped[list["RequisitionApprovalStepModel"]] = relationship(
        "RequisitionApprovalStepModel",
        back_populates="requisition",
        order_by="RequisitionApprovalStepModel.level",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<Requisition {self.number} status={self.status} "
            f"level={self.current_level} total={self.total_amount}>"
        )

    @property
    def current_step(self) -> "RequisitionApprovalStepModel":
        return self.approval_steps[self.current_level]

    def to_dto(self) -> RequisitionInfo:
        from procurement_kernel.db.types import to_decimal
        from procurement_kernel.domain.requisition import (
            Priority,
            RequisitionInfo,
            RequisitionStatus,
        )

        return RequisitionInfo(
            id=self.id,
            number=self.number,
            title=self.title,
            requester_id=self.requester_id,
            department_id=self.department_id,
            status=RequisitionStatus(self.status),
            priority=Priority(self.priority),
            required_date=self.required_date,
            total_amount=to_decimal(self.total_amount),
            current_level=self.current_level,
            items=tuple(item.to_dto() for item in self.items),
            approval_history=tuple(step.to_dto() for step in self.approval_steps),
            description=self.description,
            rejection_reason=self.rejection_reason,
            approval_config_id=self.approval_config_id,
            approval_config_name=self.approval_config_name,
            request_date=self.request_date,
            version=self.version,
        )


class RequisitionItemModel(Base):
    __tablename__ = "requisition_items"

    __table_args__ = (
        UniqueConstraint("requisition_id", "item_number", name="uq_requisition_items_number"),
        CheckConstraint("quantity > 0", name="ck_requisition_items_quantity_positive"),
        CheckConstraint("estimated_price >= 0", name="ck_requisition_items_price_non_negative"),
    )

    requisition_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("requisitions.id", ondelete="CASCADE"), nullable=False,
    )
    item_number: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    unit: Mapped[str] = mapped_column(String(30), nullable=False, default="unit")
    estimated_price: Mapped[Decimal] = mapped_column(nullable=False)
    total_price: Mapped[Decimal] = mapped_column(nullable=False)
    justification: Mapped[str | None] = mapped_column(Text, nullable=True)
    specifications: Mapped[str | None] = mapped_column(Text, nullable=True)

    requisition: Mapped[RequisitionModel] = relationship(back_populates="items")

    def to_dto(self) -> RequisitionItem:
        from procurement_kernel.db.types import to_decimal
        from procurement_kernel.domain.requisition import RequisitionItem

        return RequisitionItem(
            item_number=self.item_number,
            description=self.description,
            category=self.category,
            quantity=to_decimal(self.quantity),
            unit=self.unit,
            estimated_price=to_decimal(self.estimated_price),
            total_price=to_decimal(self.total_price),
            justification=self.justification,
            specifications=self.specifications,
        )

    @classmethod
    def from_dto(cls, dto: RequisitionItem) -> RequisitionItemModel:
        return cls(
            item_number=dto.item_number,
            description=dto.description,
            category=dto.category,
            quantity=dto.quantity,
            unit=dto.unit,
            estimated_price=dto.estimated_price,
            total_price=dto.total_price,
            justification=dto.justification,
            specifications=dto.specifications,
        )


class RequisitionApprovalStepModel(ApprovalStepMixin, Base):
    __tablename__ = "requisition_approval_steps"

    __table_args__ = (
        UniqueConstraint("requisition_id", "level", name="uq_requisition_steps_level"),
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')",
            name="ck_requisition_steps_valid_status",
        ),
        Index("ix_requisition_steps_approver", "approver_id"),
    )

    requisition_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("requisitions.id", ondelete="CASCADE"), nullable=False,
    )

    requisition: Mapped[RequisitionModel] = relationship(back_populates="approval_steps")
