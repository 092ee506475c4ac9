"""
PurchaseOrderService -- derives purchase orders from approved requisitions.

Responsibility:
    Converts one or more approved requisitions into a purchase order,
    prices its lines, resolves and snapshots the ``purchase_order``
    approval chain, and moves each source requisition to
    ``partially_ordered`` or ``ordered``.  Approves and rejects purchase
    orders level by level with the same chain-advance function used for
    requisitions.

Architecture position:
    Kernel > Services -- operation service.  Owns its transaction
    boundary; shares collaborators with RequisitionService.

Invariants enforced:
    - Only requisitions in ``approved`` / ``partially_ordered`` may be
      ordered, and all of them must belong to one department.
    - ``total_amount == subtotal + tax_amount - discount_amount``.
    - A requisition is ``ordered`` once every one of its item numbers is
      covered by a non-cancelled, non-rejected purchase order.
    - Requisition and purchase order updates are version-checked; a lost
      race surfaces as ConcurrentModificationError.
    - Every coverage change (creation, rejection) is followed by a
      best-effort recompute of the department budget, logged on failure.
"""

from datetime import date
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from procurement_kernel.db.types import to_decimal
from procurement_kernel.domain.approval import (
    BUYER_ROLES,
    ApprovalModule,
    ApprovalPolicyStore,
    ChainOutcome,
    Decision,
    Role,
    can_act_on_level,
)
from procurement_kernel.domain.budget import BudgetLedger
from procurement_kernel.domain.clock import Clock, SystemClock
from procurement_kernel.domain.identity import IdentityProvider
from procurement_kernel.domain.notifications import NotificationEvent, NotificationSink
from procurement_kernel.domain.purchase_order import (
    PurchaseOrderInfo,
    PurchaseOrderItem,
    PurchaseOrderItemInput,
    PurchaseOrderStatus,
    decide_purchase_order,
    order_line_total,
    order_totals,
)
from procurement_kernel.domain.requisition import (
    ORDERABLE_STATUSES,
    RequisitionStatus,
    StepStatus,
    is_valid_transition,
    order_coverage_status,
)
from procurement_kernel.domain.sequence import PURCHASE_ORDER_SEQUENCE, SequenceGenerator
from procurement_kernel.exceptions import (
    ConcurrentModificationError,
    ForbiddenError,
    InsufficientPermissionError,
    InvalidStateTransitionError,
    PurchaseOrderNotFoundError,
    ReasonRequiredError,
    RequisitionNotFoundError,
    ValidationError,
)
from procurement_kernel.logging_config import LogContext, get_logger
from procurement_kernel.models.purchase_order import (
    PurchaseOrderApprovalStepModel,
    PurchaseOrderItemModel,
    PurchaseOrderModel,
)
from procurement_kernel.models.requisition import RequisitionModel
from procurement_kernel.services.approval_policy_service import ApprovalPolicyService
from procurement_kernel.services.base import BaseService
from procurement_kernel.services.budget_ledger_service import BudgetLedgerService
from procurement_kernel.services.sequence_service import SequenceService

logger = get_logger("services.purchase_order")

_ENTITY = "purchase_order"

# Orders whose lines no longer cover requisition items.
_VOID_ORDER_STATUSES = (PurchaseOrderStatus.CANCELLED.value, PurchaseOrderStatus.REJECTED.value)


class PurchaseOrderService(BaseService):
    """Purchase order creation and approval."""

    def __init__(
        self,
        session: Session,
        identity: IdentityProvider,
        clock: Clock | None = None,
        sequences: SequenceGenerator | None = None,
        policies: ApprovalPolicyStore | None = None,
        ledger: BudgetLedger | None = None,
        notifier: NotificationSink | None = None,
    ):
        super().__init__(session)
        self._identity = identity
        self._clock = clock or SystemClock()
        self._sequences = sequences or SequenceService(session, self._clock)
        self._policies = policies or ApprovalPolicyService(session)
        self._ledger = ledger or BudgetLedgerService(
            session, self._clock, identity=identity, notifier=notifier,
        )
        self._notifier = notifier

    def create_purchase_order(
        self,
        buyer_id: UUID,
        requisition_ids: list[UUID],
        supplier_ref: str,
        expected_delivery_date: date | None = None,
        delivery_address: str | None = None,
        payment_terms: str | None = None,
        items: list[PurchaseOrderItemInput] | None = None,
        notes: str | None = None,
    ) -> PurchaseOrderInfo:
        """
        Raise a purchase order against approved requisitions.

        ``items`` defaults to every item of every referenced requisition at
        its estimated price.

        Raises:
            ForbiddenError: Buyer is not purchasing or admin.
            RequisitionNotFoundError: An unknown requisition id.
            InvalidStateTransitionError: A requisition is not orderable.
            ValidationError: Bad supplier, mixed departments or bad lines.
            ConfigurationNotFoundError: No purchase order policy covers
                the total.
        """
        with LogContext.bind(actor_id=buyer_id):
            try:
                buyer = self._identity.resolve(buyer_id)
                if buyer.role not in BUYER_ROLES:
                    raise ForbiddenError(str(buyer_id), "create purchase orders")

                requisitions = self._load_orderable(requisition_ids)
                departments = {r.department_id for r in requisitions}
                errors: dict[str, str] = {}
                if not supplier_ref or not supplier_ref.strip():
                    errors["supplier_ref"] = "required"
                if len(departments) > 1:
                    errors["requisition_ids"] = "requisitions must belong to one department"
                if errors:
                    raise ValidationError("Invalid purchase order", errors)

                lines = self._price_lines(requisitions, items)
                totals = order_totals(lines)
                chain = self._policies.resolve(ApprovalModule.PURCHASE_ORDER, totals.total_amount)
                number = self._sequences.next(PURCHASE_ORDER_SEQUENCE)

                order = PurchaseOrderModel(
                    number=number,
                    buyer_id=buyer.actor_id,
                    department_id=departments.pop(),
                    supplier_ref=supplier_ref.strip(),
                    status=PurchaseOrderStatus.PENDING_APPROVAL.value,
                    subtotal=totals.subtotal,
                    tax_amount=totals.tax_amount,
                    discount_amount=totals.discount_amount,
                    total_amount=totals.total_amount,
                    current_level=0,
                    expected_delivery_date=expected_delivery_date,
                    delivery_address=delivery_address,
                    payment_terms=payment_terms,
                    notes=notes,
                    approval_config_id=chain.config_id,
                    created_by_id=buyer.actor_id,
                )
                order.requisitions = list(requisitions)
                order.items = [PurchaseOrderItemModel.from_dto(line) for line in lines]
                order.approval_steps = PurchaseOrderApprovalStepModel.skeleton_from_chain(chain)
                self.session.add(order)
                self.session.flush()

                for requisition in requisitions:
                    self._update_coverage(requisition, buyer.actor_id)
                self.session.flush()
                self.session.commit()
            except StaleDataError:
                self.session.rollback()
                raise ConcurrentModificationError(
                    "requisition", ",".join(str(r) for r in requisition_ids),
                    "unknown", "create_purchase_order",
                )
            except Exception:
                self.session.rollback()
                raise

            logger.info(
                "purchase_order_created",
                extra={
                    "purchase_order_id": str(order.id),
                    "number": number,
                    "requisitions": [r.number for r in requisitions],
                    "total_amount": str(totals.total_amount),
                    "level_count": len(chain),
                },
            )

            self._project_budget(order.department_id, order.id)

            payload = {
                "purchase_order_id": str(order.id),
                "number": order.number,
                "total_amount": str(order.total_amount),
                "supplier_ref": order.supplier_ref,
            }
            self._dispatch(
                [
                    (r.requester_id, {**payload, "requisition_number": r.number})
                    for r in requisitions
                ],
                NotificationEvent.PURCHASE_ORDER_CREATED,
            )
            return order.to_dto()

    def approve_purchase_order(
        self,
        purchase_order_id: UUID,
        actor_id: UUID,
        comments: str | None = None,
    ) -> PurchaseOrderInfo:
        return self._decide(purchase_order_id, actor_id, Decision.APPROVE, comments)

    def reject_purchase_order(
        self,
        purchase_order_id: UUID,
        actor_id: UUID,
        reason: str | None,
    ) -> PurchaseOrderInfo:
        """
        Reject a purchase order.  The items it covered become orderable
        again, so each source requisition's coverage is recomputed.
        """
        return self._decide(purchase_order_id, actor_id, Decision.REJECT, reason)

    def get(self, purchase_order_id: UUID) -> PurchaseOrderInfo:
        return self._load(purchase_order_id).to_dto()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _decide(
        self,
        purchase_order_id: UUID,
        actor_id: UUID,
        decision: Decision,
        text: str | None,
    ) -> PurchaseOrderInfo:
        with LogContext.bind(actor_id=actor_id, purchase_order_id=purchase_order_id):
            try:
                actor = self._identity.resolve(actor_id)
                order = self._load(purchase_order_id)
                status = PurchaseOrderStatus(order.status)
                if status != PurchaseOrderStatus.PENDING_APPROVAL:
                    raise InvalidStateTransitionError(
                        _ENTITY, str(purchase_order_id), status.value,
                        decision.value, order.current_level,
                    )
                if decision == Decision.REJECT and (text is None or not text.strip()):
                    raise ReasonRequiredError(str(purchase_order_id))

                step = order.approval_steps[order.current_level]
                required = Role(step.required_role)
                if not can_act_on_level(actor.role, required):
                    raise InsufficientPermissionError(
                        str(actor_id), actor.role.value, required.value, order.current_level,
                    )

                transition = decide_purchase_order(
                    status, order.current_level, len(order.approval_steps), decision,
                )
                step.approver_id = actor.actor_id
                step.status = (
                    StepStatus.REJECTED.value
                    if decision == Decision.REJECT
                    else StepStatus.APPROVED.value
                )
                step.comments = text
                step.decided_at = self._clock.now()
                order.status = transition.status.value
                order.current_level = transition.current_level
                order.updated_by_id = actor.actor_id
                if decision == Decision.REJECT:
                    order.rejection_reason = text
                self.session.flush()

                if transition.outcome == ChainOutcome.REJECTED:
                    for requisition in order.requisitions:
                        self._update_coverage(requisition, actor.actor_id, releasing=True)
                    self.session.flush()
                self.session.commit()
            except StaleDataError:
                self.session.rollback()
                current = self.session.get(
                    PurchaseOrderModel, purchase_order_id, populate_existing=True,
                )
                raise ConcurrentModificationError(
                    _ENTITY,
                    str(purchase_order_id),
                    current.status if current else "unknown",
                    decision.value,
                    current.current_level if current else None,
                )
            except Exception:
                self.session.rollback()
                raise

            logger.info(
                f"purchase_order_{transition.outcome.value}",
                extra={
                    "purchase_order_id": str(order.id),
                    "number": order.number,
                    "decided_level": transition.decided_level,
                    "status": transition.status.value,
                },
            )
            if transition.outcome == ChainOutcome.REJECTED:
                self._project_budget(order.department_id, order.id)
            return order.to_dto()

    def _load(self, purchase_order_id: UUID) -> PurchaseOrderModel:
        order = self.session.get(PurchaseOrderModel, purchase_order_id)
        if order is None:
            raise PurchaseOrderNotFoundError(str(purchase_order_id))
        return order

    def _load_orderable(self, requisition_ids: list[UUID]) -> list[RequisitionModel]:
        if not requisition_ids:
            raise ValidationError(
                "Invalid purchase order", {"requisition_ids": "at least one requisition is required"}
            )
        requisitions = []
        for requisition_id in dict.fromkeys(requisition_ids):
            requisition = self.session.get(RequisitionModel, requisition_id)
            if requisition is None:
                raise RequisitionNotFoundError(str(requisition_id))
            status = RequisitionStatus(requisition.status)
            if status not in ORDERABLE_STATUSES:
                raise InvalidStateTransitionError(
                    "requisition", str(requisition_id), status.value,
                    "create_purchase_order", requisition.current_level,
                )
            requisitions.append(requisition)
        return requisitions

    def _price_lines(
        self,
        requisitions: list[RequisitionModel],
        inputs: list[PurchaseOrderItemInput] | None,
    ) -> list[PurchaseOrderItem]:
        by_key = {
            (r.id, item.item_number): item
            for r in requisitions
            for item in r.items
        }
        if inputs is None:
            inputs = [
                PurchaseOrderItemInput(requisition_id=r_id, item_number=number)
                for r_id, number in by_key
            ]
        if not inputs:
            raise ValidationError("Invalid purchase order", {"items": "at least one item is required"})

        errors: dict[str, str] = {}
        lines = []
        for index, line in enumerate(inputs):
            source = by_key.get((line.requisition_id, line.item_number))
            if source is None:
                errors[f"items[{index}]"] = (
                    f"item {line.item_number} is not on a referenced requisition"
                )
                continue
            quantity = to_decimal(source.quantity if line.quantity is None else line.quantity)
            unit_price = to_decimal(
                source.estimated_price if line.unit_price is None else line.unit_price
            )
            tax = to_decimal(line.tax)
            discount = to_decimal(line.discount)
            if quantity <= 0:
                errors[f"items[{index}].quantity"] = "must be greater than 0"
            if unit_price < 0:
                errors[f"items[{index}].unit_price"] = "must not be negative"
            if tax < 0 or discount < 0:
                errors[f"items[{index}].adjustments"] = "tax and discount must not be negative"
            lines.append(
                PurchaseOrderItem(
                    requisition_id=line.requisition_id,
                    requisition_item_number=line.item_number,
                    description=source.description,
                    quantity=quantity,
                    unit=source.unit,
                    unit_price=unit_price,
                    tax=tax,
                    discount=discount,
                    total_price=order_line_total(quantity, unit_price, tax, discount),
                )
            )
        if errors:
            raise ValidationError("Invalid purchase order items", errors)
        return lines

    def _update_coverage(
        self,
        requisition: RequisitionModel,
        actor_id: UUID,
        releasing: bool = False,
    ) -> None:
        ordered = set(
            self.session.execute(
                select(PurchaseOrderItemModel.requisition_item_number)
                .join(PurchaseOrderModel, PurchaseOrderItemModel.purchase_order_id == PurchaseOrderModel.id)
                .where(
                    PurchaseOrderItemModel.requisition_id == requisition.id,
                    PurchaseOrderModel.status.not_in(_VOID_ORDER_STATUSES),
                )
            ).scalars()
        )
        current = RequisitionStatus(requisition.status)
        if ordered:
            target = order_coverage_status(ordered, {i.item_number for i in requisition.items})
        else:
            target = RequisitionStatus.APPROVED
        if target == current:
            return
        # A rejected order hands its items back, which may move coverage backwards
        if not releasing and not is_valid_transition(current, target):
            raise InvalidStateTransitionError(
                "requisition", str(requisition.id), current.value, target.value,
                requisition.current_level,
            )
        requisition.status = target.value
        requisition.updated_by_id = actor_id
        logger.info(
            "requisition_order_coverage_changed",
            extra={
                "requisition_id": str(requisition.id),
                "number": requisition.number,
                "from_status": current.value,
                "to_status": target.value,
            },
        )

    def _project_budget(self, department_id: UUID, purchase_order_id: UUID) -> None:
        # Coverage changes move requisition status, so the projection follows
        try:
            self._ledger.recompute(department_id)
            self.session.commit()
        except Exception:
            self.session.rollback()
            logger.error(
                "budget_recompute_failed",
                extra={
                    "purchase_order_id": str(purchase_order_id),
                    "department_id": str(department_id),
                },
                exc_info=True,
            )

    def _dispatch(self, notices: list[tuple[UUID, dict[str, Any]]], event: NotificationEvent) -> None:
        if self._notifier is None:
            return
        for user_id, payload in notices:
            try:
                self._notifier.notify(user_id, event, payload)
                self.session.commit()
            except Exception:
                self.session.rollback()
                logger.warning(
                    "notification_dispatch_failed",
                    extra={"user_id": str(user_id), "event": event.value},
                    exc_info=True,
                )
