"""
Requisition domain types (``procurement_kernel.domain.requisition``).

Responsibility
--------------
Status lifecycle, line-item pricing, draft validation and the designated
state-transition function for requisitions, plus the frozen DTOs handed
across the service boundary.

Architecture position
---------------------
**Kernel domain layer** -- pure.  ZERO I/O.  Imports only from
``domain/approval`` and ``db/types`` (rounding).

Invariants enforced
-------------------
* ``total_amount == sum(item.total_price)`` for every priced item list.
* Item numbers are 1-based, assigned in input order, never renumbered.
* ``REQUISITION_TRANSITIONS`` lists the only legal status changes;
  ``approved``, ``rejected`` and ``cancelled`` accept no approve, reject
  or cancel.
* ``decide_requisition`` is the only function that computes a new
  status/level pair from a decision.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from procurement_kernel.db.types import ZERO, to_decimal
from procurement_kernel.domain.approval import (
    ChainOutcome,
    Decision,
    advance_chain,
)


class RequisitionStatus(str, Enum):
    DRAFT = "draft"
    PENDING = "pending"
    IN_APPROVAL = "in_approval"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    PARTIALLY_ORDERED = "partially_ordered"
    ORDERED = "ordered"


class Priority(str, Enum):
    """Informational only; never affects control flow."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class StepStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


REQUISITION_TRANSITIONS: dict[RequisitionStatus, frozenset[RequisitionStatus]] = {
    RequisitionStatus.DRAFT: frozenset({
        RequisitionStatus.PENDING,
        RequisitionStatus.CANCELLED,
    }),
    RequisitionStatus.PENDING: frozenset({
        RequisitionStatus.IN_APPROVAL,
        RequisitionStatus.APPROVED,
        RequisitionStatus.REJECTED,
        RequisitionStatus.CANCELLED,
    }),
    RequisitionStatus.IN_APPROVAL: frozenset({
        RequisitionStatus.IN_APPROVAL,
        RequisitionStatus.APPROVED,
        RequisitionStatus.REJECTED,
        RequisitionStatus.CANCELLED,
    }),
    RequisitionStatus.APPROVED: frozenset({
        RequisitionStatus.PARTIALLY_ORDERED,
        RequisitionStatus.ORDERED,
    }),
    RequisitionStatus.PARTIALLY_ORDERED: frozenset({
        RequisitionStatus.PARTIALLY_ORDERED,
        RequisitionStatus.ORDERED,
    }),
    RequisitionStatus.ORDERED: frozenset(),
    RequisitionStatus.REJECTED: frozenset(),
    RequisitionStatus.CANCELLED: frozenset(),
}

TERMINAL_STATUSES: frozenset[RequisitionStatus] = frozenset({
    RequisitionStatus.APPROVED,
    RequisitionStatus.REJECTED,
    RequisitionStatus.CANCELLED,
})

# Statuses in which a level decision may be recorded.
DECIDABLE_STATUSES: frozenset[RequisitionStatus] = frozenset({
    RequisitionStatus.PENDING,
    RequisitionStatus.IN_APPROVAL,
})

# Statuses whose totals count toward a department's committed figure.
COMMITTED_STATUSES: frozenset[RequisitionStatus] = DECIDABLE_STATUSES

ORDERED_STATUSES: frozenset[RequisitionStatus] = frozenset({
    RequisitionStatus.PARTIALLY_ORDERED,
    RequisitionStatus.ORDERED,
})

# Statuses whose totals count as spent once recorded.
SPENT_STATUSES: frozenset[RequisitionStatus] = frozenset({
    RequisitionStatus.APPROVED,
    RequisitionStatus.PARTIALLY_ORDERED,
    RequisitionStatus.ORDERED,
})

# Statuses a purchase order may be raised against.
ORDERABLE_STATUSES: frozenset[RequisitionStatus] = frozenset({
    RequisitionStatus.APPROVED,
    RequisitionStatus.PARTIALLY_ORDERED,
})


def is_valid_transition(current: RequisitionStatus, target: RequisitionStatus) -> bool:
    return target in REQUISITION_TRANSITIONS[current]


# =========================================================================
# Items and pricing
# =========================================================================


@dataclass(frozen=True)
class RequisitionItemInput:
    """A raw line item as submitted by the requester."""

    description: str
    quantity: Decimal
    estimated_price: Decimal
    unit: str = "unit"
    category: str = ""
    justification: str | None = None
    specifications: str | None = None


@dataclass(frozen=True)
class RequisitionItem:
    """A priced, numbered line item."""

    item_number: int
    description: str
    category: str
    quantity: Decimal
    unit: str
    estimated_price: Decimal
    total_price: Decimal
    justification: str | None = None
    specifications: str | None = None


@dataclass(frozen=True)
class RequisitionDraft:
    """Everything a requester submits to create a requisition."""

    title: str
    required_date: date
    items: tuple[RequisitionItemInput, ...]
    priority: Priority = Priority.MEDIUM
    description: str | None = None


def line_total(quantity: Decimal, estimated_price: Decimal) -> Decimal:
    """Exact product; no rounding before the requisition total is summed."""
    return to_decimal(quantity) * to_decimal(estimated_price)


def price_items(raw_items: tuple[RequisitionItemInput, ...] | list[RequisitionItemInput]) -> tuple[RequisitionItem, ...]:
    """Number items 1..N in input order and compute each line total."""
    return tuple(
        RequisitionItem(
            item_number=index,
            description=raw.description,
            category=raw.category,
            quantity=to_decimal(raw.quantity),
            unit=raw.unit,
            estimated_price=to_decimal(raw.estimated_price),
            total_price=line_total(raw.quantity, raw.estimated_price),
            justification=raw.justification,
            specifications=raw.specifications,
        )
        for index, raw in enumerate(raw_items, start=1)
    )


def total_amount(items: tuple[RequisitionItem, ...] | list[RequisitionItem]) -> Decimal:
    return sum((item.total_price for item in items), ZERO)


def validate_draft(draft: RequisitionDraft) -> dict[str, str]:
    """Return field errors for a draft; an empty dict means valid."""
    errors: dict[str, str] = {}
    if not draft.title or not draft.title.strip():
        errors["title"] = "required"
    if not draft.items:
        errors["items"] = "at least one item is required"
    for index, item in enumerate(draft.items):
        if not item.description or not item.description.strip():
            errors[f"items[{index}].description"] = "required"
        if to_decimal(item.quantity) <= ZERO:
            errors[f"items[{index}].quantity"] = "must be greater than 0"
        if to_decimal(item.estimated_price) < ZERO:
            errors[f"items[{index}].estimated_price"] = "must not be negative"
    return errors


# =========================================================================
# State transition
# =========================================================================


_STATUS_FOR_OUTCOME: dict[ChainOutcome, RequisitionStatus] = {
    ChainOutcome.ADVANCED: RequisitionStatus.IN_APPROVAL,
    ChainOutcome.COMPLETED: RequisitionStatus.APPROVED,
    ChainOutcome.REJECTED: RequisitionStatus.REJECTED,
}


@dataclass(frozen=True)
class RequisitionTransition:
    """New status/level pair produced by one decision."""

    status: RequisitionStatus
    current_level: int
    decided_level: int
    outcome: ChainOutcome


def decide_requisition(
    status: RequisitionStatus,
    current_level: int,
    level_count: int,
    decision: Decision,
) -> RequisitionTransition:
    """
    Compute the requisition's next status and level for a decision.

    Raises:
        ValueError: If ``status`` does not accept decisions or the level
            is not a valid index.  Callers check these first and raise
            their own typed errors; reaching this is a programming error.
    """
    if status not in DECIDABLE_STATUSES:
        raise ValueError(f"Requisition in status '{status.value}' cannot be decided")
    advance = advance_chain(current_level, level_count, decision)
    new_status = _STATUS_FOR_OUTCOME[advance.outcome]
    if not is_valid_transition(status, new_status):
        raise ValueError(f"Illegal transition {status.value} -> {new_status.value}")
    return RequisitionTransition(
        status=new_status,
        current_level=advance.next_level,
        decided_level=advance.decided_level,
        outcome=advance.outcome,
    )


def order_coverage_status(
    ordered_item_numbers: set[int] | frozenset[int],
    all_item_numbers: set[int] | frozenset[int],
) -> RequisitionStatus:
    """``ordered`` once every item is on some order, else ``partially_ordered``."""
    if set(all_item_numbers) <= set(ordered_item_numbers):
        return RequisitionStatus.ORDERED
    return RequisitionStatus.PARTIALLY_ORDERED


# =========================================================================
# DTOs
# =========================================================================


@dataclass(frozen=True)
class ApprovalStep:
    """One entry of a requisition's approval history."""

    level: int
    level_name: str
    required_role: str
    status: StepStatus = StepStatus.PENDING
    approver_id: UUID | None = None
    comments: str | None = None
    decided_at: datetime | None = None
    approval_limit: Decimal | None = None


@dataclass(frozen=True)
class RequisitionInfo:
    """Read-only view of a persisted requisition."""

    id: UUID
    number: str
    title: str
    requester_id: UUID
    department_id: UUID
    status: RequisitionStatus
    priority: Priority
    required_date: date
    total_amount: Decimal
    current_level: int
    items: tuple[RequisitionItem, ...] = ()
    approval_history: tuple[ApprovalStep, ...] = ()
    description: str | None = None
    rejection_reason: str | None = None
    approval_config_id: UUID | None = None
    approval_config_name: str | None = None
    request_date: datetime | None = None
    version: int = 1

    @property
    def current_step(self) -> ApprovalStep | None:
        if self.status not in DECIDABLE_STATUSES:
            return None
        return self.approval_history[self.current_level]

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
