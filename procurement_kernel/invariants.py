"""
Kernel Invariants Contract.

These invariants are structural law.  They are hardcoded in the lifecycle
engine, the ORM version column and the database constraints.  No YAML
configuration set or approval policy may override them.

This module exists solely to declare these invariants explicitly.  The
enforcement is distributed across RequisitionService, BudgetLedgerService,
SequenceService and the domain transition functions.
"""

from enum import Enum, unique


@unique
class ProcurementInvariant(str, Enum):
    """Non-configurable invariants enforced by the kernel.

    Configuration decides *which* chain a requisition follows, never
    *whether* these rules apply.
    """

    TOTAL_IS_SUM_OF_ITEMS = "total_is_sum_of_items"
    """A requisition's total equals the sum of its line totals.  Enforced
    by price_items/total_amount before the INSERT."""

    ONE_STEP_PER_LEVEL = "one_step_per_level"
    """A requisition has one approval step per resolved level, created
    once at submission.  Enforced by skeleton_from_chain and
    UNIQUE(requisition_id, level)."""

    MONOTONIC_LEVEL = "monotonic_level"
    """The current level only moves forward, by exactly one, on approval.
    Enforced by advance_chain."""

    TERMINAL_CLOSURE = "terminal_closure"
    """Approved, rejected and cancelled requisitions accept no further
    approve, reject or cancel.  Enforced by REQUISITION_TRANSITIONS."""

    SINGLE_WINNER = "single_winner"
    """Concurrent decisions on one requisition persist at most one
    transition per level.  Enforced by the ORM version column."""

    COMMITTED_IS_RECOMPUTED = "committed_is_recomputed"
    """A department's committed figure is always a full recomputation,
    never an increment.  Enforced by BudgetLedgerService.recompute."""

    SPEND_ONCE = "spend_once"
    """An approved requisition adds to spent exactly once.  Enforced by
    the spent_recorded flag and a conditional UPDATE."""

    SEQUENCE_UNIQUENESS = "sequence_uniqueness"
    """Document numbers are unique per (sequence, year).  Enforced by an
    atomic counter UPDATE and UNIQUE(number)."""


# All invariants as a frozenset for programmatic checks.
ALL_PROCUREMENT_INVARIANTS: frozenset[ProcurementInvariant] = frozenset(ProcurementInvariant)

# The kernel package may not import from these packages.
# This is enforced by tests/architecture/test_kernel_boundary.py.
FORBIDDEN_KERNEL_IMPORTS: tuple[str, ...] = (
    "procurement_config",
    "scripts",
)
