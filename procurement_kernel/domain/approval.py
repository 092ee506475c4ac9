"""
Approval domain types (``procurement_kernel.domain.approval``).

Responsibility
--------------
Pure value objects for amount-keyed approval chains: the closed set of
roles, the capability table deciding which level roles an actor may act
on, approval levels/chains, and the single function that advances a
chain position on a decision.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* Levels in a chain are sorted ascending by ``order``; index ``i`` of the
  chain is approval step ``i``.
* A chain has at least one level.
* ``advance_chain`` is the only place a level pointer moves: by exactly
  one on approval, never on rejection, never backwards.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Protocol
from uuid import UUID


class Role(str, Enum):
    """Closed set of actor roles."""

    ADMIN = "admin"
    APPROVER = "approver"
    PURCHASING = "purchasing"
    FINANCE = "finance"
    WAREHOUSE = "warehouse"
    REQUESTER = "requester"


# Actor role -> level roles that actor may act on.  Kept explicit (rather
# than ``actor == level``) so the permission matrix is testable row by row.
ROLE_CAPABILITIES: dict[Role, frozenset[Role]] = {
    Role.ADMIN: frozenset({Role.ADMIN}),
    Role.APPROVER: frozenset({Role.APPROVER}),
    Role.PURCHASING: frozenset({Role.PURCHASING}),
    Role.FINANCE: frozenset({Role.FINANCE}),
    Role.WAREHOUSE: frozenset({Role.WAREHOUSE}),
    Role.REQUESTER: frozenset({Role.REQUESTER}),
}

# Roles allowed to cancel a requisition they did not raise.
CANCEL_OVERRIDE_ROLES: frozenset[Role] = frozenset({Role.ADMIN})

# Roles allowed to administer department budgets.
BUDGET_ADMIN_ROLES: frozenset[Role] = frozenset({Role.ADMIN, Role.FINANCE})

# Roles allowed to raise purchase orders.
BUYER_ROLES: frozenset[Role] = frozenset({Role.PURCHASING, Role.ADMIN})

# Level roles whose holders are looked up within the document's department
# when notifying; other roles are organisation-wide.
DEPARTMENT_SCOPED_ROLES: frozenset[Role] = frozenset({Role.APPROVER})


def can_act_on_level(actor_role: Role, level_role: Role) -> bool:
    """Return True if an actor with ``actor_role`` may decide a level
    that requires ``level_role``."""
    return level_role in ROLE_CAPABILITIES[actor_role]


class ApprovalModule(str, Enum):
    """Document kinds that carry an approval chain."""

    REQUISITION = "requisition"
    PURCHASE_ORDER = "purchase_order"


@dataclass(frozen=True)
class ApprovalLevel:
    """One step of an approval chain."""

    order: int
    name: str
    role: Role
    approval_limit: Decimal | None = None


@dataclass(frozen=True)
class ApprovalChain:
    """
    The resolved, ordered list of levels for one document.

    ``config_id``/``config_name`` identify the configuration the chain was
    resolved from, so a snapshot can be traced back to its policy.
    """

    module: ApprovalModule
    levels: tuple[ApprovalLevel, ...]
    config_id: UUID | None = None
    config_name: str = ""

    def __post_init__(self) -> None:
        if not self.levels:
            raise ValueError("An approval chain needs at least one level")
        orders = [level.order for level in self.levels]
        if orders != sorted(orders):
            raise ValueError(f"Approval levels must be sorted by order: {orders}")

    @classmethod
    def from_levels(
        cls,
        module: ApprovalModule,
        levels: list[ApprovalLevel] | tuple[ApprovalLevel, ...],
        config_id: UUID | None = None,
        config_name: str = "",
    ) -> ApprovalChain:
        """Build a chain, sorting levels ascending by ``order``."""
        return cls(
            module=module,
            levels=tuple(sorted(levels, key=lambda level: level.order)),
            config_id=config_id,
            config_name=config_name,
        )

    @property
    def roles(self) -> tuple[Role, ...]:
        return tuple(level.role for level in self.levels)

    def __len__(self) -> int:
        return len(self.levels)


def amount_in_range(
    amount: Decimal, min_amount: Decimal, max_amount: Decimal | None
) -> bool:
    """Half-open range test: ``min_amount <= amount < max_amount``.

    A missing ``max_amount`` means the range is unbounded above.
    """
    if amount < min_amount:
        return False
    return max_amount is None or amount < max_amount


# =========================================================================
# Chain advance
# =========================================================================


class Decision(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


class ChainOutcome(str, Enum):
    """What a decision did to the chain."""

    ADVANCED = "advanced"
    COMPLETED = "completed"
    REJECTED = "rejected"


@dataclass(frozen=True)
class ChainAdvance:
    """Result of applying one decision at ``decided_level``."""

    decided_level: int
    next_level: int
    outcome: ChainOutcome


def advance_chain(current_level: int, level_count: int, decision: Decision) -> ChainAdvance:
    """
    Apply a decision at ``current_level`` of a chain of ``level_count`` levels.

    Approval on the last level completes the chain and leaves the pointer
    where it is; approval elsewhere moves it forward by one.  Rejection
    never moves it.

    Raises:
        ValueError: If ``current_level`` is not a valid index.
    """
    if not 0 <= current_level < level_count:
        raise ValueError(
            f"Level {current_level} is outside a chain of {level_count} levels"
        )
    if decision == Decision.REJECT:
        return ChainAdvance(current_level, current_level, ChainOutcome.REJECTED)
    if current_level == level_count - 1:
        return ChainAdvance(current_level, current_level, ChainOutcome.COMPLETED)
    return ChainAdvance(current_level, current_level + 1, ChainOutcome.ADVANCED)


class ApprovalPolicyStore(Protocol):
    """Resolves the approval chain for a document of a given amount."""

    def resolve(self, module: ApprovalModule, amount: Decimal) -> ApprovalChain:
        ...
