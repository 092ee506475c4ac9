"""
BudgetLedgerService -- derived department budget figures.

Responsibility:
    Keeps each department's ``committed``, ``spent`` and ``available``
    figures and its usage alerts in step with requisition state, and lets
    budget administrators change the annual budget and alert thresholds.

Architecture position:
    Kernel > Services -- collaborator of RequisitionService (implements the
    BudgetLedger protocol).  It reads requisitions but never writes their
    status: the projection is one-directional.

Invariants enforced:
    - ``committed`` is a full recompute: the live SUM of ``total_amount``
      over the department's requisitions in pending/in_approval.  Two
      recomputes with no requisition change in between produce the same
      value.  Concurrent recomputes converge (last write wins).
    - ``spent`` grows by a requisition's total exactly once, whether the
      spend is recorded by the approving call or picked up by a later
      recompute after that call's projection failed.  The
      requisition's ``spent_recorded`` flag is flipped with a conditional
      UPDATE; only the caller whose UPDATE matched adds to ``spent``, and
      the addition itself is an atomic ``spent = spent + amount``.
    - ``available`` is always written as ``annual - spent - committed`` in
      the same UPDATE that writes ``committed``.

Failure modes:
    - DepartmentNotFoundError for unknown departments.
    - Alert notification failures are logged and contained in a SAVEPOINT.

Audit relevance:
    ``budget_recomputed``, ``budget_spend_recorded`` and
    ``budget_alert_triggered`` are logged with department and amounts.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from procurement_kernel.db.types import ZERO, round_money, to_decimal
from procurement_kernel.domain.approval import BUDGET_ADMIN_ROLES
from procurement_kernel.domain.budget import (
    BudgetAlert,
    BudgetFigures,
    DepartmentBudgetInfo,
    evaluate_alerts,
    validate_alert_percentages,
)
from procurement_kernel.domain.clock import Clock, SystemClock
from procurement_kernel.domain.identity import IdentityProvider
from procurement_kernel.domain.notifications import NotificationEvent, NotificationSink
from procurement_kernel.domain.requisition import COMMITTED_STATUSES, SPENT_STATUSES
from procurement_kernel.exceptions import (
    DepartmentNotFoundError,
    ForbiddenError,
    ValidationError,
)
from procurement_kernel.logging_config import get_logger
from procurement_kernel.models.department import BudgetAlertModel, DepartmentModel
from procurement_kernel.models.requisition import RequisitionModel
from procurement_kernel.services.base import BaseService

logger = get_logger("services.budget_ledger")


class BudgetLedgerService(BaseService):
    """
    Department budget projection.

    Contract:
        ``recompute`` and ``record_spend`` flush within the caller's
        transaction.  ``update_budget`` is a public operation and commits.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        identity: IdentityProvider | None = None,
        notifier: NotificationSink | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._identity = identity
        self._notifier = notifier

    # ------------------------------------------------------------------
    # Projection
    # ------------------------------------------------------------------

    def committed_total(self, department_id: UUID) -> Decimal:
        """Live sum of totals awaiting a decision in ``department_id``."""
        total = self.session.execute(
            select(func.coalesce(func.sum(RequisitionModel.total_amount), 0)).where(
                RequisitionModel.department_id == department_id,
                RequisitionModel.status.in_([s.value for s in COMMITTED_STATUSES]),
            )
        ).scalar_one()
        return round_money(to_decimal(total))

    def recompute(self, department_id: UUID) -> DepartmentBudgetInfo:
        """
        Recompute committed/available and re-evaluate alerts.

        Raises:
            DepartmentNotFoundError: Unknown department.
        """
        self._record_missed_spend(department_id)
        committed = self.committed_total(department_id)
        now = self._clock.now()
        result = self.session.execute(
            update(DepartmentModel)
            .where(DepartmentModel.id == department_id)
            .values(
                committed=committed,
                available=DepartmentModel.annual_budget - DepartmentModel.spent - committed,
                budget_updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise DepartmentNotFoundError(str(department_id))

        department = self._load_department(department_id, refresh=True)
        self._apply_alerts(department)
        self.session.flush()

        logger.info(
            "budget_recomputed",
            extra={
                "department_id": str(department_id),
                "committed": str(committed),
                "spent": str(to_decimal(department.spent)),
                "available": str(to_decimal(department.available)),
            },
        )
        return department.to_dto()

    def record_spend(self, requisition_id: UUID) -> bool:
        """
        Add an approved requisition's total to its department's ``spent``.

        Returns:
            True if this call recorded the spend, False if it had already
            been recorded (or the requisition was never approved).
        """
        claimed = self.session.execute(
            update(RequisitionModel)
            .where(
                RequisitionModel.id == requisition_id,
                RequisitionModel.status.in_([s.value for s in SPENT_STATUSES]),
                RequisitionModel.spent_recorded.is_(False),
            )
            .values(spent_recorded=True)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            logger.debug(
                "budget_spend_already_recorded",
                extra={"requisition_id": str(requisition_id)},
            )
            return False

        department_id, amount = self.session.execute(
            select(RequisitionModel.department_id, RequisitionModel.total_amount).where(
                RequisitionModel.id == requisition_id
            )
        ).one()
        amount = to_decimal(amount)
        self.session.execute(
            update(DepartmentModel)
            .where(DepartmentModel.id == department_id)
            .values(spent=DepartmentModel.spent + amount)
            .execution_options(synchronize_session=False)
        )
        self.session.flush()
        logger.info(
            "budget_spend_recorded",
            extra={
                "requisition_id": str(requisition_id),
                "department_id": str(department_id),
                "amount": str(amount),
            },
        )
        return True

    def rebuild_spent(self, department_id: UUID) -> DepartmentBudgetInfo:
        """
        Repair ``spent`` from the requisitions whose spend was recorded,
        then recompute the rest.
        """
        spent = self.session.execute(
            select(func.coalesce(func.sum(RequisitionModel.total_amount), 0)).where(
                RequisitionModel.department_id == department_id,
                RequisitionModel.spent_recorded.is_(True),
            )
        ).scalar_one()
        self.session.execute(
            update(DepartmentModel)
            .where(DepartmentModel.id == department_id)
            .values(spent=round_money(to_decimal(spent)))
            .execution_options(synchronize_session=False)
        )
        logger.warning(
            "budget_spent_rebuilt",
            extra={"department_id": str(department_id), "spent": str(spent)},
        )
        return self.recompute(department_id)

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def update_budget(
        self,
        actor_id: UUID,
        department_id: UUID,
        annual: Decimal | None = None,
        fiscal_year: int | None = None,
        alert_percentages: list[Decimal] | None = None,
    ) -> DepartmentBudgetInfo:
        """
        Change a department's annual budget, fiscal year or alert thresholds.

        Raises:
            ForbiddenError: Actor is not admin or finance.
            ValidationError: Negative annual or out-of-range thresholds.
            DepartmentNotFoundError: Unknown department.
        """
        if self._identity is None:
            raise RuntimeError("update_budget requires an IdentityProvider")
        actor = self._identity.resolve(actor_id)
        if actor.role not in BUDGET_ADMIN_ROLES:
            raise ForbiddenError(str(actor_id), "update department budgets")

        errors: dict[str, str] = {}
        if annual is not None and to_decimal(annual) < ZERO:
            errors["annual"] = "must not be negative"
        if alert_percentages is not None:
            errors.update(validate_alert_percentages([to_decimal(p) for p in alert_percentages]))
        if errors:
            raise ValidationError("Invalid budget update", errors)

        try:
            department = self._load_department(department_id)
            if annual is not None:
                department.annual_budget = to_decimal(annual)
            if fiscal_year is not None:
                department.fiscal_year = fiscal_year
            if alert_percentages is not None:
                self._replace_alerts(department, [to_decimal(p) for p in alert_percentages])
            self.session.flush()
            info = self.recompute(department_id)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info(
            "budget_updated",
            extra={
                "actor_id": str(actor_id),
                "department_id": str(department_id),
                "annual": str(info.annual),
                "fiscal_year": info.fiscal_year,
            },
        )
        return info

    def get_budget(self, actor_id: UUID, department_id: UUID) -> DepartmentBudgetInfo:
        """
        Read a department budget.  Admin, finance and the department's
        manager may read it.
        """
        if self._identity is None:
            raise RuntimeError("get_budget requires an IdentityProvider")
        actor = self._identity.resolve(actor_id)
        department = self._load_department(department_id)
        if actor.role not in BUDGET_ADMIN_ROLES and department.manager_id != actor.actor_id:
            raise ForbiddenError(str(actor_id), "view this department budget")
        return department.to_dto()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _record_missed_spend(self, department_id: UUID) -> None:
        # Approvals whose spend was lost to an earlier failed projection
        missed = self.session.execute(
            select(RequisitionModel.id).where(
                RequisitionModel.department_id == department_id,
                RequisitionModel.status.in_([s.value for s in SPENT_STATUSES]),
                RequisitionModel.spent_recorded.is_(False),
            )
        ).scalars().all()
        for requisition_id in missed:
            self.record_spend(requisition_id)

    def _load_department(self, department_id: UUID, refresh: bool = False) -> DepartmentModel:
        if refresh:
            department = self.session.get(
                DepartmentModel, department_id, populate_existing=True
            )
        else:
            department = self.session.get(DepartmentModel, department_id)
        if department is None:
            raise DepartmentNotFoundError(str(department_id))
        return department

    def _replace_alerts(self, department: DepartmentModel, percentages: list[Decimal]) -> None:
        existing = {to_decimal(a.percentage): a for a in department.alerts}
        wanted = sorted(set(percentages))
        for pct, alert in existing.items():
            if pct not in wanted:
                department.alerts.remove(alert)
        for pct in wanted:
            if pct not in existing:
                department.alerts.append(BudgetAlertModel(percentage=pct, triggered=False))

    def _apply_alerts(self, department: DepartmentModel) -> None:
        figures = BudgetFigures(
            annual=to_decimal(department.annual_budget),
            spent=to_decimal(department.spent),
            committed=to_decimal(department.committed),
        )
        rows = list(department.alerts)
        evaluation = evaluate_alerts(
            figures, tuple(row.to_dto() for row in rows), self._clock.now()
        )
        for row, alert in zip(rows, evaluation.alerts):
            row.triggered = alert.triggered
            row.triggered_date = alert.triggered_date

        for alert in evaluation.newly_triggered:
            logger.warning(
                "budget_alert_triggered",
                extra={
                    "department_id": str(department.id),
                    "percentage": str(alert.percentage),
                    "usage_percentage": str(evaluation.usage_percentage),
                },
            )
            self._notify_manager(department, alert, evaluation.usage_percentage)

    def _notify_manager(
        self,
        department: DepartmentModel,
        alert: BudgetAlert,
        usage: Decimal | None,
    ) -> None:
        if self._notifier is None or department.manager_id is None:
            return
        try:
            with self.session.begin_nested():
                self._notifier.notify(
                    department.manager_id,
                    NotificationEvent.BUDGET_ALERT,
                    {
                        "department_id": str(department.id),
                        "department_code": department.code,
                        "department_name": department.name,
                        "percentage": str(alert.percentage),
                        "usage_percentage": str(usage),
                        "available": str(to_decimal(department.available)),
                    },
                )
        except Exception:
            logger.error(
                "budget_alert_notification_failed",
                extra={"department_id": str(department.id)},
                exc_info=True,
            )
