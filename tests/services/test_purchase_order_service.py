"""
Tests for PurchaseOrderService -- purchase orders raised from approved
requisitions.

Covers:
- create_purchase_order(): default lines, explicit lines with price
  overrides, coverage (partially_ordered / ordered), numbering, buyer role,
  orderable states, single department, line validation
- approve / reject: level roles, reason required, rejection hands items back
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from procurement_kernel.domain.notifications import NotificationEvent
from procurement_kernel.domain.purchase_order import PurchaseOrderItemInput, PurchaseOrderStatus
from procurement_kernel.domain.requisition import RequisitionStatus
from procurement_kernel.exceptions import (
    ForbiddenError,
    InsufficientPermissionError,
    InvalidStateTransitionError,
    PurchaseOrderNotFoundError,
    ReasonRequiredError,
    RequisitionNotFoundError,
    ValidationError,
)
from procurement_kernel.selectors.budget_selector import BudgetSelector
from procurement_kernel.selectors.requisition_selector import RequisitionSelector
from procurement_kernel.services.budget_ledger_service import BudgetLedgerService
from procurement_kernel.services.identity_service import UserDirectory
from procurement_kernel.services.purchase_order_service import PurchaseOrderService
from tests.conftest import make_draft


@pytest.fixture
def approved(requisitions, org):
    """Approved OPS requisition with two items: 100 x 2 and 50 x 2."""
    created = requisitions.create_requisition(org.requester, make_draft("100", "50", quantity="2"))
    return requisitions.approve_requisition(created.id, org.approver)


def _status(session, requisition_id) -> RequisitionStatus:
    session.expire_all()
    return RequisitionSelector(session).get(requisition_id).status


class TestCreatePurchaseOrder:
    def test_defaults_to_all_items(self, purchase_orders, approved, org, session):
        order = purchase_orders.create_purchase_order(
            org.purchasing, [approved.id], "ACME-001", payment_terms="Net 30",
        )

        assert order.number == "OC-2025-00001"
        assert order.status == PurchaseOrderStatus.PENDING_APPROVAL
        assert order.department_id == org.ops_id
        assert order.subtotal == Decimal("300")
        assert order.total_amount == Decimal("300")
        assert order.requisition_ids == (approved.id,)
        assert [i.requisition_item_number for i in order.items] == [1, 2]
        assert [s.required_role for s in order.approval_history] == ["purchasing"]
        assert _status(session, approved.id) == RequisitionStatus.ORDERED

    def test_partial_order_with_negotiated_price(self, purchase_orders, approved, org, session):
        order = purchase_orders.create_purchase_order(
            org.purchasing,
            [approved.id],
            "ACME-001",
            items=[
                PurchaseOrderItemInput(
                    approved.id, 1, unit_price=Decimal("90"), tax=Decimal("27"), discount=Decimal("5"),
                ),
            ],
        )
        assert order.subtotal == Decimal("180")
        assert order.tax_amount == Decimal("27")
        assert order.discount_amount == Decimal("5")
        assert order.total_amount == Decimal("202")
        assert _status(session, approved.id) == RequisitionStatus.PARTIALLY_ORDERED

    def test_remaining_items_complete_coverage(self, purchase_orders, approved, org, session):
        purchase_orders.create_purchase_order(
            org.purchasing, [approved.id], "A", items=[PurchaseOrderItemInput(approved.id, 1)],
        )
        second = purchase_orders.create_purchase_order(
            org.purchasing, [approved.id], "B", items=[PurchaseOrderItemInput(approved.id, 2)],
        )
        assert second.number == "OC-2025-00002"
        assert _status(session, approved.id) == RequisitionStatus.ORDERED

    def test_fully_ordered_requisition_is_not_orderable(self, purchase_orders, approved, org):
        purchase_orders.create_purchase_order(org.purchasing, [approved.id], "A")
        with pytest.raises(InvalidStateTransitionError):
            purchase_orders.create_purchase_order(org.purchasing, [approved.id], "B")

    def test_large_order_needs_finance(self, requisitions, purchase_orders, org):
        created = requisitions.create_requisition(org.requester, make_draft("30000"))
        requisitions.approve_requisition(created.id, org.approver)
        requisitions.approve_requisition(created.id, org.finance)

        order = purchase_orders.create_purchase_order(org.purchasing, [created.id], "BIG")
        assert [s.required_role for s in order.approval_history] == ["purchasing", "finance"]

    def test_requesters_are_notified(self, purchase_orders, approved, org, sink):
        sink.clear()
        purchase_orders.create_purchase_order(org.purchasing, [approved.id], "ACME-001")
        (user_id, event, payload), = sink.sent
        assert (user_id, event) == (org.requester, NotificationEvent.PURCHASE_ORDER_CREATED)
        assert payload["requisition_number"] == approved.number

    def test_admin_may_buy(self, purchase_orders, approved, org):
        order = purchase_orders.create_purchase_order(org.admin, [approved.id], "ACME-001")
        assert order.buyer_id == org.admin

    @pytest.mark.parametrize("actor", ["requester", "approver", "finance"])
    def test_buyer_role_required(self, purchase_orders, approved, org, actor):
        with pytest.raises(ForbiddenError):
            purchase_orders.create_purchase_order(getattr(org, actor), [approved.id], "X")

    def test_pending_requisition_is_not_orderable(self, requisitions, purchase_orders, org):
        created = requisitions.create_requisition(org.requester, make_draft("10"))
        with pytest.raises(InvalidStateTransitionError):
            purchase_orders.create_purchase_order(org.purchasing, [created.id], "X")

    def test_unknown_requisition(self, purchase_orders, org):
        with pytest.raises(RequisitionNotFoundError):
            purchase_orders.create_purchase_order(org.purchasing, [uuid4()], "X")

    def test_no_requisitions(self, purchase_orders, org):
        with pytest.raises(ValidationError):
            purchase_orders.create_purchase_order(org.purchasing, [], "X")

    def test_blank_supplier(self, purchase_orders, approved, org):
        with pytest.raises(ValidationError) as exc_info:
            purchase_orders.create_purchase_order(org.purchasing, [approved.id], "  ")
        assert "supplier_ref" in exc_info.value.field_errors

    def test_mixed_departments(self, requisitions, purchase_orders, approved, org):
        it_req = requisitions.create_requisition(org.it_approver, make_draft("10"))
        requisitions.approve_requisition(it_req.id, org.it_approver)
        with pytest.raises(ValidationError) as exc_info:
            purchase_orders.create_purchase_order(org.purchasing, [approved.id, it_req.id], "X")
        assert "requisition_ids" in exc_info.value.field_errors

    def test_invalid_lines(self, purchase_orders, approved, org, session):
        with pytest.raises(ValidationError) as exc_info:
            purchase_orders.create_purchase_order(
                org.purchasing,
                [approved.id],
                "X",
                items=[
                    PurchaseOrderItemInput(approved.id, 1, quantity=Decimal("0")),
                    PurchaseOrderItemInput(approved.id, 7),
                ],
            )
        assert set(exc_info.value.field_errors) == {"items[0].quantity", "items[1]"}
        assert _status(session, approved.id) == RequisitionStatus.APPROVED


class TestDecidePurchaseOrder:
    def test_purchasing_approves(self, purchase_orders, approved, org):
        order = purchase_orders.create_purchase_order(org.purchasing, [approved.id], "A")
        info = purchase_orders.approve_purchase_order(order.id, org.purchasing)
        assert info.status == PurchaseOrderStatus.APPROVED
        assert info.approval_history[0].approver_id == org.purchasing

    def test_wrong_role(self, purchase_orders, approved, org):
        order = purchase_orders.create_purchase_order(org.purchasing, [approved.id], "A")
        with pytest.raises(InsufficientPermissionError):
            purchase_orders.approve_purchase_order(order.id, org.finance)

    def test_reason_required(self, purchase_orders, approved, org):
        order = purchase_orders.create_purchase_order(org.purchasing, [approved.id], "A")
        with pytest.raises(ReasonRequiredError):
            purchase_orders.reject_purchase_order(order.id, org.purchasing, " ")

    def test_rejection_releases_items(self, purchase_orders, approved, org, session):
        order = purchase_orders.create_purchase_order(org.purchasing, [approved.id], "A")
        info = purchase_orders.reject_purchase_order(order.id, org.purchasing, "Supplier withdrew")

        assert info.status == PurchaseOrderStatus.REJECTED
        assert info.rejection_reason == "Supplier withdrew"
        assert _status(session, approved.id) == RequisitionStatus.APPROVED

        again = purchase_orders.create_purchase_order(org.purchasing, [approved.id], "B")
        assert again.status == PurchaseOrderStatus.PENDING_APPROVAL

    def test_decided_order_is_closed(self, purchase_orders, approved, org):
        order = purchase_orders.create_purchase_order(org.purchasing, [approved.id], "A")
        purchase_orders.approve_purchase_order(order.id, org.purchasing)
        with pytest.raises(InvalidStateTransitionError):
            purchase_orders.reject_purchase_order(order.id, org.purchasing, "late")

    def test_unknown_order(self, purchase_orders, org):
        with pytest.raises(PurchaseOrderNotFoundError):
            purchase_orders.get(uuid4())


# =============================================================================
# Budget projection
# =============================================================================


class RecordingLedger:
    """BudgetLedger that records recomputes and delegates to the real one."""

    def __init__(self, inner):
        self.inner = inner
        self.recomputed = []

    def recompute(self, department_id):
        self.recomputed.append(department_id)
        return self.inner.recompute(department_id)

    def record_spend(self, requisition_id):
        return self.inner.record_spend(requisition_id)


class FailingLedger:
    def recompute(self, department_id):
        raise RuntimeError("ledger unavailable")

    def record_spend(self, requisition_id):
        raise RuntimeError("ledger unavailable")


def _service(session, clock, ledger) -> PurchaseOrderService:
    return PurchaseOrderService(session, UserDirectory(session), clock=clock, ledger=ledger)


class TestBudgetProjection:
    def test_coverage_changes_recompute_the_department(
        self, session, approved, org, deterministic_clock
    ):
        ledger = RecordingLedger(BudgetLedgerService(session, deterministic_clock))
        service = _service(session, deterministic_clock, ledger)

        order = service.create_purchase_order(org.purchasing, [approved.id], "ACME-001")
        assert ledger.recomputed == [org.ops_id]

        service.reject_purchase_order(order.id, org.purchasing, "Supplier withdrew")
        assert ledger.recomputed == [org.ops_id, org.ops_id]

        session.expire_all()
        budget = BudgetSelector(session).get(org.ops_id)
        assert budget.spent == Decimal("300")
        assert budget.committed == Decimal("0")
        assert BudgetSelector(session).drift(org.ops_id).is_consistent

    def test_approval_leaves_coverage_and_budget_alone(
        self, session, approved, org, deterministic_clock
    ):
        ledger = RecordingLedger(BudgetLedgerService(session, deterministic_clock))
        service = _service(session, deterministic_clock, ledger)
        order = service.create_purchase_order(org.purchasing, [approved.id], "ACME-001")

        service.approve_purchase_order(order.id, org.purchasing)

        assert ledger.recomputed == [org.ops_id]

    def test_failed_recompute_keeps_the_order(
        self, session, approved, org, deterministic_clock, captured_logs
    ):
        service = _service(session, deterministic_clock, FailingLedger())

        order = service.create_purchase_order(org.purchasing, [approved.id], "ACME-001")

        assert order.status == PurchaseOrderStatus.PENDING_APPROVAL
        assert _status(session, approved.id) == RequisitionStatus.ORDERED
        failures = [r for r in captured_logs() if r["message"] == "budget_recompute_failed"]
        assert failures and failures[0]["purchase_order_id"] == str(order.id)
