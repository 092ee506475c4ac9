"""
Configuration installer.

Writes a parsed ProcurementConfigurationSet into the kernel's tables:
approval policies, departments with their budgets and alert thresholds,
and seed users.  Every step is an upsert keyed by a natural key (policy
name + module, department code, user email), so installing the same set
twice changes nothing.

The installer flushes but never commits; the caller owns the transaction.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from procurement_config.schema import DepartmentDef, ProcurementConfigurationSet
from procurement_kernel.domain.approval import ApprovalLevel, ApprovalModule, Role
from procurement_kernel.domain.clock import Clock, SystemClock
from procurement_kernel.logging_config import get_logger
from procurement_kernel.models.department import BudgetAlertModel, DepartmentModel
from procurement_kernel.services.approval_policy_service import ApprovalPolicyService
from procurement_kernel.services.budget_ledger_service import BudgetLedgerService
from procurement_kernel.services.identity_service import UserDirectory

logger = get_logger("config.installer")


@dataclass(frozen=True)
class InstallReport:
    approval_configs: int
    departments: int
    users: int


def install_configuration(
    session: Session,
    config_set: ProcurementConfigurationSet,
    clock: Clock | None = None,
) -> InstallReport:
    """Upsert everything in ``config_set``.  Flushes, does not commit."""
    clock = clock or SystemClock()
    policies = ApprovalPolicyService(session)
    for config in config_set.approval_configs:
        policies.register(
            name=config.name,
            module=ApprovalModule(config.module),
            min_amount=config.min_amount,
            max_amount=config.max_amount,
            is_active=config.is_active,
            levels=[
                ApprovalLevel(
                    order=level.order,
                    name=level.name,
                    role=Role(level.role),
                    approval_limit=level.approval_limit,
                )
                for level in config.levels
            ],
        )

    departments = {
        d.code: _upsert_department(session, d, clock.now().year)
        for d in config_set.departments
    }
    session.flush()

    directory = UserDirectory(session)
    users: dict[str, UUID] = {}
    for user in config_set.users:
        department = departments.get(user.department) if user.department else None
        identity = directory.register_user(
            name=user.name,
            email=user.email,
            role=Role(user.role),
            department_id=department.id if department is not None else None,
        )
        users[user.email] = identity.actor_id

    for definition in config_set.departments:
        if definition.manager is not None:
            departments[definition.code].manager_id = users[definition.manager]
    session.flush()

    ledger = BudgetLedgerService(session, clock)
    for department in departments.values():
        ledger.recompute(department.id)

    logger.info(
        "configuration_installed",
        extra={
            "config_set": config_set.name,
            "version": config_set.version,
            "approval_configs": len(config_set.approval_configs),
            "departments": len(departments),
            "users": len(users),
        },
    )
    return InstallReport(
        approval_configs=len(config_set.approval_configs),
        departments=len(departments),
        users=len(users),
    )


def _upsert_department(session: Session, definition: DepartmentDef, default_year: int) -> DepartmentModel:
    department = session.execute(
        select(DepartmentModel).where(DepartmentModel.code == definition.code)
    ).scalar_one_or_none()
    if department is None:
        department = DepartmentModel(code=definition.code)
        session.add(department)
    department.name = definition.name
    department.cost_center = definition.cost_center
    department.annual_budget = definition.annual_budget
    department.fiscal_year = definition.fiscal_year or default_year
    department.is_active = True

    wanted = set(definition.alert_percentages)
    for alert in list(department.alerts):
        if alert.percentage not in wanted:
            department.alerts.remove(alert)
    existing = {alert.percentage for alert in department.alerts}
    for percentage in sorted(wanted - existing):
        department.alerts.append(BudgetAlertModel(percentage=percentage, triggered=False))
    return department
