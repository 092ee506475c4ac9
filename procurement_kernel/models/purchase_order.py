"""
Module: procurement_kernel.models.purchase_order
Responsibility: ORM persistence for purchase orders derived from approved
    requisitions, their lines and their approval history.
Architecture position: Kernel > Models.  May import from db/base.py and
    models/approval_config.py.

Invariants enforced:
    - UNIQUE(number).
    - version_id_col guards approve/reject races like requisitions.
    - Every order line references the requisition item it fulfils.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from procurement_kernel.db.base import Base, TrackedBase, UUIDString
from procurement_kernel.models.approval_config import ApprovalStepMixin

if TYPE_CHECKING:
    from procurement_kernel.domain.purchase_order import PurchaseOrderInfo, PurchaseOrderItem
    from procurement_kernel.models.requisition import RequisitionModel


purchase_order_requisitions = Table(
    "purchase_order_requisitions",
    Base.metadata,
    Column("purchase_order_id", UUIDString(), ForeignKey("purchase_orders.id", ondelete="CASCADE"), primary_key=True),
    Column("requisition_id", UUIDString(), ForeignKey("requisitions.id"), primary_key=True),
)


class PurchaseOrderModel(TrackedBase):
    __tablename__ = "purchase_orders"

    __table_args__ = (
        CheckConstraint(
            "status IN ('draft', 'pending_approval', 'approved', 'rejected', "
            "'sent', 'partially_received', 'received', 'cancelled')",
            name="ck_purchase_orders_valid_status",
        ),
        Index("ix_purchase_orders_department_status", "department_id", "status"),
    )

    number: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    buyer_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    department_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("departments.id"), nullable=False,
    )
    supplier_ref: Mapped[str] = mapped_column(String(200), nullable=False)
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="pending_approval")
    subtotal: Mapped[Decimal] = mapped_column(nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(nullable=False)
    current_level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    expected_delivery_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    delivery_address: Mapped[str | None] = mapped_column(Text, nullable=True)
    payment_terms: Mapped[str | None] = mapped_column(String(200), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    approval_config_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    requisitions: Mapped[list["RequisitionModel"]] = relationship(
        "RequisitionModel",
        secondary=purchase_order_requisitions,
        lazy="selectin",
    )

    items: Mapped[list["PurchaseOrderItemModel"]] = relationship(
        "PurchaseOrderItemModel",
        back_populates="purchase_order",
        order_by="[PurchaseOrderItemModel.requisition_id, PurchaseOrderItemModel.requisition_item_number]",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    approval_steps: Mapped[list["PurchaseOrderApprovalStepModel"]] = relationship(
        "PurchaseOrderApprovalStepModel",
        back_populates="purchase_order",
        order_by="PurchaseOrderApprovalStepModel.level",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<PurchaseOrder {self.number} status={self.status} total={self.total_amount}>"

    def to_dto(self) -> PurchaseOrderInfo:
        from procurement_kernel.db.types import to_decimal
        from procurement_kernel.domain.purchase_order import (
            PurchaseOrderInfo,
            PurchaseOrderStatus,
        )

        return PurchaseOrderInfo(
            id=self.id,
            number=self.number,
            buyer_id=self.buyer_id,
            department_id=self.department_id,
            supplier_ref=self.supplier_ref,
            status=PurchaseOrderStatus(self.status),
            subtotal=to_decimal(self.subtotal),
            tax_amount=to_decimal(self.tax_amount),
            discount_amount=to_decimal(self.discount_amount),
            total_amount=to_decimal(self.total_amount),
            current_level=self.current_level,
            requisition_ids=tuple(r.id for r in self.requisitions),
            items=tuple(i.to_dto() for i in self.items),
            approval_history=tuple(s.to_dto() for s in self.approval_steps),
            expected_delivery_date=self.expected_delivery_date,
            delivery_address=self.delivery_address,
            payment_terms=self.payment_terms,
            notes=self.notes,
            rejection_reason=self.rejection_reason,
        )


class PurchaseOrderItemModel(Base):
    __tablename__ = "purchase_order_items"

    __table_args__ = (
        Index("ix_purchase_order_items_requisition", "requisition_id", "requisition_item_number"),
    )

    purchase_order_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("purchase_orders.id", ondelete="CASCADE"), nullable=False,
    )
    requisition_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("requisitions.id"), nullable=False,
    )
    requisition_item_number: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    unit: Mapped[str] = mapped_column(String(30), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(nullable=False)
    tax: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    discount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    total_price: Mapped[Decimal] = mapped_column(nullable=False)

    purchase_order: Mapped[PurchaseOrderModel] = relationship(back_populates="items")

    def to_dto(self) -> PurchaseOrderItem:
        from procurement_kernel.db.types import to_decimal
        from procurement_kernel.domain.purchase_order import PurchaseOrderItem

        return PurchaseOrderItem(
            requisition_id=self.requisition_id,
            requisition_item_number=self.requisition_item_number,
            description=self.description,
            quantity=to_decimal(self.quantity),
            unit=self.unit,
            unit_price=to_decimal(self.unit_price),
            tax=to_decimal(self.tax),
            discount=to_decimal(self.discount),
            total_price=to_decimal(self.total_price),
        )

    @classmethod
    def from_dto(cls, dto: PurchaseOrderItem) -> PurchaseOrderItemModel:
        return cls(
            requisition_id=dto.requisition_id,
            requisition_item_number=dto.requisition_item_number,
            description=dto.description,
            quantity=dto.quantity,
            unit=dto.unit,
            unit_price=dto.unit_price,
            tax=dto.tax,
            discount=dto.discount,
            total_price=dto.total_price,
        )


class PurchaseOrderApprovalStepModel(ApprovalStepMixin, Base):
    __tablename__ = "purchase_order_approval_steps"

    __table_args__ = (
        UniqueConstraint("purchase_order_id", "level", name="uq_purchase_order_steps_level"),
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')",
            name="ck_purchase_order_steps_valid_status",
        ),
    )

    purchase_order_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("purchase_orders.id", ondelete="CASCADE"), nullable=False,
    )

    purchase_order: Mapped[PurchaseOrderModel] = relationship(back_populates="approval_steps")
