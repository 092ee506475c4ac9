"""
Pytest fixtures for the procurement kernel test suite.

Provides:
- A fresh database per test: a SQLite file under tmp_path by default, or
  the database named by DATABASE_URL (e.g. a local PostgreSQL).
- A DeterministicClock pinned to 2025-01-15 09:00 UTC.
- Captured structured logs.
- A seeded organisation: two departments, one user per role, and the
  standard requisition / purchase order approval tiers.
- A recording notification sink.

Environment Variables:
- DATABASE_URL: run the suite against this database instead of SQLite.
  Tables are dropped and recreated for every test.
"""

import json
import logging
import os
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from io import StringIO
from typing import Any, Generator
from uuid import UUID

import pytest
from sqlalchemy.orm import Session

from procurement_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session,
    get_session_factory,
    init_engine_from_url,
    is_postgres,
    reset_engine,
)
from procurement_kernel.domain.approval import ApprovalLevel, ApprovalModule, Role
from procurement_kernel.domain.clock import DeterministicClock
from procurement_kernel.domain.notifications import NotificationEvent
from procurement_kernel.domain.requisition import (
    Priority,
    RequisitionDraft,
    RequisitionItemInput,
)
from procurement_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from procurement_kernel.models.department import BudgetAlertModel, DepartmentModel
from procurement_kernel.services.approval_policy_service import ApprovalPolicyService
from procurement_kernel.services.identity_service import UserDirectory
from procurement_kernel.services.purchase_order_service import PurchaseOrderService
from procurement_kernel.services.requisition_service import RequisitionService


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture procurement_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, requisitions):
            requisitions.create_requisition(...)
            logs = captured_logs()
            assert any(r["message"] == "requisition_created" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("procurement_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database
# =============================================================================


def get_database_url(tmp_path) -> str:
    return os.environ.get("DATABASE_URL") or f"sqlite:///{tmp_path / 'procurement.db'}"


@pytest.fixture
def db_engine(tmp_path):
    """Engine with freshly created tables; one per test."""
    engine = init_engine_from_url(
        get_database_url(tmp_path),
        pool_size=10,
        max_overflow=10,
        pool_timeout=10,
    )
    drop_tables()
    create_tables()
    yield engine
    try:
        drop_tables()
    finally:
        reset_engine()


@pytest.fixture
def session(db_engine) -> Generator[Session, None, None]:
    """A real session; services commit through it."""
    sess = get_session()
    try:
        yield sess
    finally:
        sess.rollback()
        sess.close()


@pytest.fixture
def session_factory(db_engine):
    """Factory for additional independent sessions (concurrency tests)."""
    factory = get_session_factory()
    created: list[Session] = []

    def _make() -> Session:
        s = factory()
        created.append(s)
        return s

    yield _make

    for s in created:
        s.rollback()
        s.close()


@pytest.fixture
def postgres_only(db_engine):
    if not is_postgres():
        pytest.skip("requires PostgreSQL (set DATABASE_URL)")


# =============================================================================
# Clock and notifications
# =============================================================================


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    return DeterministicClock()


class RecordingSink:
    """NotificationSink that keeps every notice in memory."""

    def __init__(self):
        self.sent: list[tuple[UUID, NotificationEvent, dict[str, Any]]] = []

    def notify(self, user_id: UUID, event: NotificationEvent, payload: dict[str, Any]) -> None:
        self.sent.append((user_id, event, dict(payload)))

    def events_for(self, user_id: UUID) -> list[NotificationEvent]:
        return [event for uid, event, _ in self.sent if uid == user_id]

    def recipients_of(self, event: NotificationEvent) -> set[UUID]:
        return {uid for uid, e, _ in self.sent if e == event}

    def clear(self) -> None:
        self.sent.clear()


class FailingSink:
    """NotificationSink whose every delivery fails."""

    def __init__(self):
        self.attempts = 0

    def notify(self, user_id: UUID, event: NotificationEvent, payload: dict[str, Any]) -> None:
        self.attempts += 1
        raise RuntimeError("notification transport down")


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


# =============================================================================
# Seeded organisation
# =============================================================================


@dataclass(frozen=True)
class Org:
    ops_id: UUID
    it_id: UUID
    requester: UUID
    other_requester: UUID
    approver: UUID
    it_approver: UUID
    finance: UUID
    admin: UUID
    purchasing: UUID
    warehouse: UUID
    homeless: UUID


STANDARD_REQUISITION_TIERS = [
    ("requisition-standard", Decimal("0"), Decimal("10000"), [Role.APPROVER]),
    ("requisition-elevated", Decimal("10000"), Decimal("50000"), [Role.APPROVER, Role.FINANCE]),
    ("requisition-executive", Decimal("50000"), None, [Role.APPROVER, Role.FINANCE, Role.ADMIN]),
]

STANDARD_PURCHASE_ORDER_TIERS = [
    ("purchase-order-standard", Decimal("0"), Decimal("25000"), [Role.PURCHASING]),
    ("purchase-order-elevated", Decimal("25000"), None, [Role.PURCHASING, Role.FINANCE]),
]


def install_policies(session: Session) -> None:
    policies = ApprovalPolicyService(session)
    for module, tiers in (
        (ApprovalModule.REQUISITION, STANDARD_REQUISITION_TIERS),
        (ApprovalModule.PURCHASE_ORDER, STANDARD_PURCHASE_ORDER_TIERS),
    ):
        for name, low, high, roles in tiers:
            policies.register(
                name=name,
                module=module,
                min_amount=low,
                max_amount=high,
                levels=[
                    ApprovalLevel(order=index + 1, name=f"{role.value} review", role=role)
                    for index, role in enumerate(roles)
                ],
            )


@pytest.fixture
def org(session, deterministic_clock) -> Org:
    """Departments OPS (annual 100000, alerts 50/80) and IT, one user per role."""
    ops = DepartmentModel(
        code="OPS", name="Operations", cost_center="CC-100",
        annual_budget=Decimal("100000"), available=Decimal("100000"), fiscal_year=2025,
    )
    ops.alerts = [
        BudgetAlertModel(percentage=Decimal("50"), triggered=False),
        BudgetAlertModel(percentage=Decimal("80"), triggered=False),
    ]
    it = DepartmentModel(
        code="IT", name="Information Technology", cost_center="CC-200",
        annual_budget=Decimal("200000"), available=Decimal("200000"), fiscal_year=2025,
    )
    session.add_all([ops, it])
    session.flush()

    directory = UserDirectory(session)
    requester = directory.register_user("Rita Requester", "rita@example.com", Role.REQUESTER, ops.id)
    other = directory.register_user("Omar Requester", "omar@example.com", Role.REQUESTER, ops.id)
    approver = directory.register_user("Ana Approver", "ana@example.com", Role.APPROVER, ops.id)
    it_approver = directory.register_user("Ivo Approver", "ivo@example.com", Role.APPROVER, it.id)
    finance = directory.register_user("Fay Finance", "fay@example.com", Role.FINANCE)
    admin = directory.register_user("Ada Admin", "ada@example.com", Role.ADMIN)
    purchasing = directory.register_user("Pat Purchasing", "pat@example.com", Role.PURCHASING)
    warehouse = directory.register_user("Wes Warehouse", "wes@example.com", Role.WAREHOUSE, ops.id)
    homeless = directory.register_user("Noa Nodept", "noa@example.com", Role.REQUESTER)

    ops.manager_id = approver.actor_id
    install_policies(session)
    session.commit()

    return Org(
        ops_id=ops.id,
        it_id=it.id,
        requester=requester.actor_id,
        other_requester=other.actor_id,
        approver=approver.actor_id,
        it_approver=it_approver.actor_id,
        finance=finance.actor_id,
        admin=admin.actor_id,
        purchasing=purchasing.actor_id,
        warehouse=warehouse.actor_id,
        homeless=homeless.actor_id,
    )


@pytest.fixture
def make_requisition_service(deterministic_clock):
    """Build a RequisitionService on a given session with the test clock."""

    def _make(sess: Session, notifier=None) -> RequisitionService:
        return RequisitionService(
            sess,
            UserDirectory(sess),
            clock=deterministic_clock,
            notifier=notifier,
        )

    return _make


@pytest.fixture
def requisitions(session, org, sink, make_requisition_service) -> RequisitionService:
    return make_requisition_service(session, notifier=sink)


@pytest.fixture
def purchase_orders(session, org, sink, deterministic_clock) -> PurchaseOrderService:
    return PurchaseOrderService(
        session, UserDirectory(session), clock=deterministic_clock, notifier=sink,
    )


def make_draft(*prices: str, title: str = "Office supplies", quantity: str = "1") -> RequisitionDraft:
    """A draft with one item per price, each of ``quantity`` units."""
    return RequisitionDraft(
        title=title,
        required_date=date(2025, 2, 1),
        priority=Priority.MEDIUM,
        items=tuple(
            RequisitionItemInput(
                description=f"Item {index}",
                quantity=Decimal(quantity),
                estimated_price=Decimal(price),
            )
            for index, price in enumerate(prices, start=1)
        ),
    )


@pytest.fixture
def draft_factory():
    return make_draft
