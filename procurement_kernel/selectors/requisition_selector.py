"""
Module: procurement_kernel.selectors.requisition_selector
Responsibility: Read-only requisition queries: lookup by id or number,
    the role-filtered listing, the approver's work queue and the live
    committed total of a department.
Architecture position: Kernel > Selectors.  Takes an IdentityProvider to
    resolve the viewer; never writes.

Visibility rules for ``list_requisitions``:
    - admin, finance, purchasing: every requisition.
    - approver: their department's requisitions plus any they decided.
    - requester: only their own.
    - anyone else: their department's requisitions.
    Every viewer always sees the requisitions they raised.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import ColumnElement, and_, false, func, or_, select, true

from procurement_kernel.db.types import round_money, to_decimal
from procurement_kernel.domain.approval import (
    DEPARTMENT_SCOPED_ROLES,
    ROLE_CAPABILITIES,
    Role,
)
from procurement_kernel.domain.identity import ActorIdentity, IdentityProvider
from procurement_kernel.domain.requisition import (
    COMMITTED_STATUSES,
    DECIDABLE_STATUSES,
    Priority,
    RequisitionInfo,
    RequisitionStatus,
)
from procurement_kernel.exceptions import RequisitionNotFoundError, ValidationError
from procurement_kernel.models.requisition import (
    RequisitionApprovalStepModel,
    RequisitionModel,
)
from procurement_kernel.selectors.base import BaseSelector, Page

# Roles that see every requisition.
ORGANISATION_WIDE_ROLES = frozenset({Role.ADMIN, Role.FINANCE, Role.PURCHASING})

MAX_PAGE_SIZE = 100


class RequisitionSelector(BaseSelector):
    """Requisition read side."""

    def __init__(self, session, identity: IdentityProvider | None = None):
        super().__init__(session)
        self._identity = identity

    def get(self, requisition_id: UUID) -> RequisitionInfo:
        requisition = self.session.get(RequisitionModel, requisition_id)
        if requisition is None:
            raise RequisitionNotFoundError(str(requisition_id))
        return requisition.to_dto()

    def get_by_number(self, number: str) -> RequisitionInfo:
        requisition = self.session.execute(
            select(RequisitionModel).where(RequisitionModel.number == number)
        ).scalar_one_or_none()
        if requisition is None:
            raise RequisitionNotFoundError(number)
        return requisition.to_dto()

    def list_requisitions(
        self,
        viewer_id: UUID,
        status: RequisitionStatus | None = None,
        department_id: UUID | None = None,
        priority: Priority | None = None,
        search: str | None = None,
        page: int = 1,
        limit: int = 10,
    ) -> Page[RequisitionInfo]:
        """
        List requisitions visible to ``viewer_id``, newest first.

        Raises:
            ValidationError: ``page`` < 1 or ``limit`` outside 1..100.
            ActorNotFoundError: Unknown viewer.
        """
        errors = {}
        if page < 1:
            errors["page"] = "must be at least 1"
        if not 1 <= limit <= MAX_PAGE_SIZE:
            errors["limit"] = f"must be between 1 and {MAX_PAGE_SIZE}"
        if errors:
            raise ValidationError("Invalid pagination", errors)

        viewer = self._resolve(viewer_id)
        conditions = [self._visibility(viewer)]
        if status is not None:
            conditions.append(RequisitionModel.status == RequisitionStatus(status).value)
        if department_id is not None:
            conditions.append(RequisitionModel.department_id == department_id)
        if priority is not None:
            conditions.append(RequisitionModel.priority == Priority(priority).value)
        if search:
            pattern = f"%{search.strip()}%"
            conditions.append(
                or_(
                    RequisitionModel.title.ilike(pattern),
                    RequisitionModel.number.ilike(pattern),
                    RequisitionModel.description.ilike(pattern),
                )
            )

        where = and_(*conditions)
        total = self.session.execute(
            select(func.count()).select_from(RequisitionModel).where(where)
        ).scalar_one()
        rows = self.session.execute(
            select(RequisitionModel)
            .where(where)
            .order_by(RequisitionModel.request_date.desc(), RequisitionModel.number.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).scalars().all()

        return Page(
            items=tuple(row.to_dto() for row in rows),
            page=page,
            limit=limit,
            total=total,
        )

    def awaiting_action(self, actor_id: UUID) -> list[RequisitionInfo]:
        """Requisitions whose current level the actor's role may decide."""
        actor = self._resolve(actor_id)
        roles = [role.value for role in ROLE_CAPABILITIES[actor.role]]
        query = (
            select(RequisitionModel)
            .join(
                RequisitionApprovalStepModel,
                and_(
                    RequisitionApprovalStepModel.requisition_id == RequisitionModel.id,
                    RequisitionApprovalStepModel.level == RequisitionModel.current_level,
                ),
            )
            .where(
                RequisitionModel.status.in_([s.value for s in DECIDABLE_STATUSES]),
                RequisitionApprovalStepModel.required_role.in_(roles),
            )
        )
        if actor.role in DEPARTMENT_SCOPED_ROLES:
            query = query.where(RequisitionModel.department_id == actor.department_id)
        rows = self.session.execute(
            query.order_by(RequisitionModel.request_date, RequisitionModel.number)
        ).scalars().all()
        return [row.to_dto() for row in rows]

    def committed_total(self, department_id: UUID) -> Decimal:
        total = self.session.execute(
            select(func.coalesce(func.sum(RequisitionModel.total_amount), 0)).where(
                RequisitionModel.department_id == department_id,
                RequisitionModel.status.in_([s.value for s in COMMITTED_STATUSES]),
            )
        ).scalar_one()
        return round_money(to_decimal(total))

    def _resolve(self, actor_id: UUID) -> ActorIdentity:
        if self._identity is None:
            raise RuntimeError("RequisitionSelector needs an IdentityProvider for viewer queries")
        return self._identity.resolve(actor_id)

    def _visibility(self, viewer: ActorIdentity) -> ColumnElement[bool]:
        own = RequisitionModel.requester_id == viewer.actor_id
        if viewer.role in ORGANISATION_WIDE_ROLES:
            return true()
        if viewer.role == Role.REQUESTER:
            return own
        in_department = (
            RequisitionModel.department_id == viewer.department_id
            if viewer.department_id is not None
            else false()
        )
        if viewer.role == Role.APPROVER:
            decided = RequisitionModel.approval_steps.any(
                RequisitionApprovalStepModel.approver_id == viewer.actor_id
            )
            return or_(own, in_department, decided)
        return or_(own, in_department)
