"""
Department budget figures and threshold alerts.

``committed`` is never adjusted incrementally: it is recomputed from the
live set of awaiting requisitions, and ``available`` is always derived as
``annual - spent - committed``.  Alert evaluation is a pure function of
the figures, so running it twice with the same input is a no-op.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Protocol
from uuid import UUID

from procurement_kernel.db.types import ZERO, round_money


@dataclass(frozen=True)
class BudgetFigures:
    annual: Decimal
    spent: Decimal = ZERO
    committed: Decimal = ZERO

    @property
    def available(self) -> Decimal:
        return self.annual - self.spent - self.committed

    def usage_percentage(self) -> Decimal | None:
        """``(spent + committed) / annual * 100``; None when annual is zero."""
        if self.annual <= ZERO:
            return None
        return round_money((self.spent + self.committed) / self.annual * 100)


@dataclass(frozen=True)
class BudgetAlert:
    """A usage threshold, in percent of the annual budget."""

    percentage: Decimal
    triggered: bool = False
    triggered_date: datetime | None = None


@dataclass(frozen=True)
class AlertEvaluation:
    alerts: tuple[BudgetAlert, ...]
    newly_triggered: tuple[BudgetAlert, ...]
    usage_percentage: Decimal | None


def evaluate_alerts(
    figures: BudgetFigures,
    alerts: tuple[BudgetAlert, ...],
    now: datetime,
) -> AlertEvaluation:
    """
    Re-evaluate every threshold against current usage.

    A threshold fires once when usage reaches it and re-arms when usage
    drops back below it.  With a zero annual budget nothing is evaluated.
    """
    usage = figures.usage_percentage()
    if usage is None:
        return AlertEvaluation(tuple(alerts), (), None)

    updated: list[BudgetAlert] = []
    fired: list[BudgetAlert] = []
    for alert in alerts:
        if usage >= alert.percentage and not alert.triggered:
            alert = replace(alert, triggered=True, triggered_date=now)
            fired.append(alert)
        elif usage < alert.percentage and alert.triggered:
            alert = replace(alert, triggered=False, triggered_date=None)
        updated.append(alert)
    return AlertEvaluation(tuple(updated), tuple(fired), usage)


def validate_alert_percentages(percentages: list[Decimal] | tuple[Decimal, ...]) -> dict[str, str]:
    errors: dict[str, str] = {}
    for index, pct in enumerate(percentages):
        if not ZERO < pct <= Decimal("100"):
            errors[f"alerts[{index}]"] = "must be within (0, 100]"
    return errors


@dataclass(frozen=True)
class DepartmentBudgetInfo:
    """Read-only view of a department and its budget."""

    department_id: UUID
    code: str
    name: str
    annual: Decimal
    spent: Decimal
    committed: Decimal
    available: Decimal
    fiscal_year: int
    cost_center: str | None = None
    manager_id: UUID | None = None
    alerts: tuple[BudgetAlert, ...] = ()
    last_updated: datetime | None = None

    @property
    def figures(self) -> BudgetFigures:
        return BudgetFigures(self.annual, self.spent, self.committed)


class BudgetLedger(Protocol):
    """Department budget store as seen by the lifecycle engine."""

    def recompute(self, department_id: UUID) -> DepartmentBudgetInfo:
        ...

    def record_spend(self, requisition_id: UUID) -> bool:
        ...
