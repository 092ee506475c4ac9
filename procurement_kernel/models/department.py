"""
Module: procurement_kernel.models.department
Responsibility: ORM persistence for departments, their budget figures and
    budget usage alerts.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - available == annual_budget - spent - committed after every recompute
      (maintained by BudgetLedgerService, not by the database).
    - One alert row per (department, percentage).
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from procurement_kernel.db.base import Base, UUIDString

if TYPE_CHECKING:
    from procurement_kernel.domain.budget import BudgetAlert, DepartmentBudgetInfo


class DepartmentModel(Base):
    """A cost-bearing department and its annual budget."""

    __tablename__ = "departments"

    __table_args__ = (
        CheckConstraint("annual_budget >= 0", name="ck_departments_annual_non_negative"),
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    cost_center: Mapped[str | None] = mapped_column(String(50), nullable=True)
    manager_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    annual_budget: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    spent: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    committed: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    available: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    fiscal_year: Mapped[int] = mapped_column(Integer, nullable=False)
    budget_updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    alerts: Mapped[list["BudgetAlertModel"]] = relationship(
        "BudgetAlertModel",
        back_populates="department",
        order_by="BudgetAlertModel.percentage",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Department {self.code} available={self.available}>"

    def to_dto(self) -> DepartmentBudgetInfo:
        from procurement_kernel.db.types import to_decimal
        from procurement_kernel.domain.budget import DepartmentBudgetInfo

        return DepartmentBudgetInfo(
            department_id=self.id,
            code=self.code,
            name=self.name,
            annual=to_decimal(self.annual_budget),
            spent=to_decimal(self.spent),
            committed=to_decimal(self.committed),
            available=to_decimal(self.available),
            fiscal_year=self.fiscal_year,
            cost_center=self.cost_center,
            manager_id=self.manager_id,
            alerts=tuple(a.to_dto() for a in self.alerts),
            last_updated=self.budget_updated_at,
        )


class BudgetAlertModel(Base):
    __tablename__ = "budget_alerts"

    __table_args__ = (
        UniqueConstraint("department_id", "percentage", name="uq_budget_alerts_department_pct"),
        CheckConstraint(
            "percentage > 0 AND percentage <= 100",
            name="ck_budget_alerts_percentage_range",
        ),
    )

    department_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("departments.id", ondelete="CASCADE"), nullable=False,
    )
    percentage: Mapped[Decimal] = mapped_column(nullable=False)
    triggered: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    triggered_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    department: Mapped[DepartmentModel] = relationship(back_populates="alerts")

    def to_dto(self) -> BudgetAlert:
        from procurement_kernel.db.types import to_decimal
        from procurement_kernel.domain.budget import BudgetAlert

        return BudgetAlert(
            percentage=to_decimal(self.percentage),
            triggered=self.triggered,
            triggered_date=self.triggered_date,
        )
