"""
Purchase order domain types.

A purchase order is derived from one or more approved requisitions.  It
carries its own amount-keyed approval chain (module ``purchase_order``)
and reuses :func:`~procurement_kernel.domain.approval.advance_chain`, so
level handling is identical to requisitions.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

from procurement_kernel.db.types import ZERO, round_money, to_decimal
from procurement_kernel.domain.approval import ChainOutcome, Decision, advance_chain
from procurement_kernel.domain.requisition import ApprovalStep


class PurchaseOrderStatus(str, Enum):
    DRAFT = "draft"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    REJECTED = "rejected"
    SENT = "sent"
    PARTIALLY_RECEIVED = "partially_received"
    RECEIVED = "received"
    CANCELLED = "cancelled"


PURCHASE_ORDER_TRANSITIONS: dict[PurchaseOrderStatus, frozenset[PurchaseOrderStatus]] = {
    PurchaseOrderStatus.DRAFT: frozenset({
        PurchaseOrderStatus.PENDING_APPROVAL,
        PurchaseOrderStatus.CANCELLED,
    }),
    PurchaseOrderStatus.PENDING_APPROVAL: frozenset({
        PurchaseOrderStatus.PENDING_APPROVAL,
        PurchaseOrderStatus.APPROVED,
        PurchaseOrderStatus.REJECTED,
        PurchaseOrderStatus.CANCELLED,
    }),
    PurchaseOrderStatus.APPROVED: frozenset({
        PurchaseOrderStatus.SENT,
        PurchaseOrderStatus.CANCELLED,
    }),
    PurchaseOrderStatus.SENT: frozenset({
        PurchaseOrderStatus.PARTIALLY_RECEIVED,
        PurchaseOrderStatus.RECEIVED,
    }),
    PurchaseOrderStatus.PARTIALLY_RECEIVED: frozenset({
        PurchaseOrderStatus.RECEIVED,
    }),
    PurchaseOrderStatus.RECEIVED: frozenset(),
    PurchaseOrderStatus.REJECTED: frozenset(),
    PurchaseOrderStatus.CANCELLED: frozenset(),
}

_STATUS_FOR_OUTCOME: dict[ChainOutcome, PurchaseOrderStatus] = {
    ChainOutcome.ADVANCED: PurchaseOrderStatus.PENDING_APPROVAL,
    ChainOutcome.COMPLETED: PurchaseOrderStatus.APPROVED,
    ChainOutcome.REJECTED: PurchaseOrderStatus.REJECTED,
}


@dataclass(frozen=True)
class PurchaseOrderTransition:
    status: PurchaseOrderStatus
    current_level: int
    decided_level: int
    outcome: ChainOutcome


def decide_purchase_order(
    status: PurchaseOrderStatus,
    current_level: int,
    level_count: int,
    decision: Decision,
) -> PurchaseOrderTransition:
    """Purchase-order counterpart of ``decide_requisition``."""
    if status != PurchaseOrderStatus.PENDING_APPROVAL:
        raise ValueError(f"Purchase order in status '{status.value}' cannot be decided")
    advance = advance_chain(current_level, level_count, decision)
    new_status = _STATUS_FOR_OUTCOME[advance.outcome]
    if new_status not in PURCHASE_ORDER_TRANSITIONS[status]:
        raise ValueError(f"Illegal transition {status.value} -> {new_status.value}")
    return PurchaseOrderTransition(
        status=new_status,
        current_level=advance.next_level,
        decided_level=advance.decided_level,
        outcome=advance.outcome,
    )


@dataclass(frozen=True)
class PurchaseOrderItemInput:
    """
    One order line.  ``requisition_id``/``item_number`` point back at the
    requisition item it fulfils; price fields override the estimate.
    """

    requisition_id: UUID
    item_number: int
    unit_price: Decimal | None = None
    quantity: Decimal | None = None
    tax: Decimal = ZERO
    discount: Decimal = ZERO


@dataclass(frozen=True)
class PurchaseOrderItem:
    requisition_id: UUID
    requisition_item_number: int
    description: str
    quantity: Decimal
    unit: str
    unit_price: Decimal
    tax: Decimal
    discount: Decimal
    total_price: Decimal


def order_line_total(quantity: Decimal, unit_price: Decimal, tax: Decimal, discount: Decimal) -> Decimal:
    return round_money(
        to_decimal(quantity) * to_decimal(unit_price) + to_decimal(tax) - to_decimal(discount)
    )


@dataclass(frozen=True)
class OrderTotals:
    subtotal: Decimal
    tax_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal


def order_totals(items: tuple[PurchaseOrderItem, ...] | list[PurchaseOrderItem]) -> OrderTotals:
    """subtotal = sum(qty * unit_price); total = subtotal + tax - discount."""
    subtotal = sum((round_money(i.quantity * i.unit_price) for i in items), ZERO)
    tax = sum((i.tax for i in items), ZERO)
    discount = sum((i.discount for i in items), ZERO)
    return OrderTotals(
        subtotal=subtotal,
        tax_amount=tax,
        discount_amount=discount,
        total_amount=round_money(subtotal + tax - discount),
    )


@dataclass(frozen=True)
class PurchaseOrderInfo:
    id: UUID
    number: str
    buyer_id: UUID
    department_id: UUID
    supplier_ref: str
    status: PurchaseOrderStatus
    subtotal: Decimal
    tax_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    current_level: int
    requisition_ids: tuple[UUID, ...] = ()
    items: tuple[PurchaseOrderItem, ...] = ()
    approval_history: tuple[ApprovalStep, ...] = ()
    expected_delivery_date: date | None = None
    delivery_address: str | None = None
    payment_terms: str | None = None
    notes: str | None = None
    rejection_reason: str | None = None
