"""
Module: procurement_kernel.selectors.budget_selector
Responsibility: Read-only department budget queries, including a drift
    check comparing the stored ``committed`` projection with the live sum
    over requisitions.
Architecture position: Kernel > Selectors.
"""

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from procurement_kernel.db.types import round_money, to_decimal
from procurement_kernel.domain.budget import DepartmentBudgetInfo
from procurement_kernel.domain.requisition import COMMITTED_STATUSES
from procurement_kernel.exceptions import DepartmentNotFoundError
from procurement_kernel.models.department import DepartmentModel
from procurement_kernel.models.requisition import RequisitionModel
from procurement_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class BudgetDrift:
    """Stored vs live committed figure for one department."""

    department_id: UUID
    stored_committed: Decimal
    live_committed: Decimal

    @property
    def drift(self) -> Decimal:
        return self.live_committed - self.stored_committed

    @property
    def is_consistent(self) -> bool:
        return self.drift == 0


class BudgetSelector(BaseSelector):
    """Department budget read side."""

    def get(self, department_id: UUID) -> DepartmentBudgetInfo:
        department = self.session.get(DepartmentModel, department_id)
        if department is None:
            raise DepartmentNotFoundError(str(department_id))
        return department.to_dto()

    def get_by_code(self, code: str) -> DepartmentBudgetInfo:
        department = self.session.execute(
            select(DepartmentModel).where(DepartmentModel.code == code)
        ).scalar_one_or_none()
        if department is None:
            raise DepartmentNotFoundError(code)
        return department.to_dto()

    def list_budgets(self, active_only: bool = True) -> list[DepartmentBudgetInfo]:
        query = select(DepartmentModel).order_by(DepartmentModel.code)
        if active_only:
            query = query.where(DepartmentModel.is_active.is_(True))
        return [d.to_dto() for d in self.session.execute(query).scalars()]

    def drift(self, department_id: UUID) -> BudgetDrift:
        """
        Compare the stored committed figure with a live recomputation.

        A non-zero drift means a projection was lost and the next
        recompute will repair it.
        """
        stored = self.session.execute(
            select(DepartmentModel.committed).where(DepartmentModel.id == department_id)
        ).scalar_one_or_none()
        if stored is None:
            raise DepartmentNotFoundError(str(department_id))
        live = self.session.execute(
            select(func.coalesce(func.sum(RequisitionModel.total_amount), 0)).where(
                RequisitionModel.department_id == department_id,
                RequisitionModel.status.in_([s.value for s in COMMITTED_STATUSES]),
            )
        ).scalar_one()
        return BudgetDrift(
            department_id=department_id,
            stored_committed=round_money(to_decimal(stored)),
            live_committed=round_money(to_decimal(live)),
        )
