"""
RequisitionService -- the requisition lifecycle and approval engine.

Responsibility:
    Owns requisition creation and the approve / reject / cancel state
    transitions.  Prices line items, resolves and snapshots the approval
    chain, allocates the sequence number, checks the acting role against
    the current level, and then projects the change onto the department
    budget and notifies the people concerned.

Architecture position:
    Kernel > Services -- operation service.  Owns the transaction boundary
    of each public method.  Consumes the collaborator protocols
    IdentityProvider, SequenceGenerator, ApprovalPolicyStore, BudgetLedger
    and NotificationSink; concrete defaults are built on the same session.

Invariants enforced:
    - ``total_amount == sum(item.total_price)`` before the INSERT.
    - One approval step per resolved level, created once at submission.
    - ``current_level`` only moves through ``decide_requisition``: up by
      one on approval, unchanged on rejection.
    - Per-requisition optimistic concurrency: the ORM version column makes
      every transition an UPDATE conditional on the version that was read.
      The loser of a race gets ConcurrentModificationError (an
      InvalidStateTransitionError) carrying the current status.
    - approved / rejected / cancelled accept no further approve, reject
      or cancel.

Failure modes:
    - Synchronous errors (validation, identity, policy, state, permission)
      roll back before anything is persisted.
    - Budget projection and notification failures are logged and never
      propagate: the committed transition is the source of truth.

Audit relevance:
    ``requisition_created`` / ``_approved`` / ``_advanced`` / ``_rejected``
    / ``_cancelled`` are logged with number, actor, level and amounts.

Design note:
    The approval chain is snapshotted onto the requisition at creation
    (each step stores its required role and level name).  Approve/reject
    check against that snapshot, so editing a policy never changes the
    chain of a requisition already in flight.
"""

from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from procurement_kernel.domain.approval import (
    CANCEL_OVERRIDE_ROLES,
    DEPARTMENT_SCOPED_ROLES,
    ApprovalModule,
    ApprovalPolicyStore,
    ChainOutcome,
    Decision,
    Role,
    can_act_on_level,
)
from procurement_kernel.domain.budget import BudgetLedger
from procurement_kernel.domain.clock import Clock, SystemClock
from procurement_kernel.domain.identity import ActorIdentity, IdentityProvider
from procurement_kernel.domain.notifications import NotificationEvent, NotificationSink
from procurement_kernel.domain.requisition import (
    DECIDABLE_STATUSES,
    ORDERED_STATUSES,
    RequisitionDraft,
    RequisitionInfo,
    RequisitionStatus,
    StepStatus,
    decide_requisition,
    is_valid_transition,
    price_items,
    total_amount,
    validate_draft,
)
from procurement_kernel.domain.sequence import REQUISITION_SEQUENCE, SequenceGenerator
from procurement_kernel.exceptions import (
    CannotCancelOrderedError,
    ConcurrentModificationError,
    ForbiddenError,
    InsufficientPermissionError,
    InvalidStateTransitionError,
    NoDepartmentAssignedError,
    ReasonRequiredError,
    RequisitionNotFoundError,
    ValidationError,
)
from procurement_kernel.logging_config import LogContext, get_logger
from procurement_kernel.models.requisition import (
    RequisitionApprovalStepModel,
    RequisitionItemModel,
    RequisitionModel,
)
from procurement_kernel.services.approval_policy_service import ApprovalPolicyService
from procurement_kernel.services.base import BaseService
from procurement_kernel.services.budget_ledger_service import BudgetLedgerService
from procurement_kernel.services.sequence_service import SequenceService

logger = get_logger("services.requisition")

_ENTITY = "requisition"


class RequisitionService(BaseService):
    """
    Requisition lifecycle engine.

    Contract:
        Every public method is one unit of work: it commits the transition
        on success and rolls back on any synchronous error.  Side effects
        run afterwards, each in its own transaction.

    Non-goals:
        - Does NOT deduplicate repeated create requests (the number is
          unique, the request is not).
        - Does NOT export or render requisitions.
    """

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

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create_requisition(self, requester_id: UUID, draft: RequisitionDraft) -> RequisitionInfo:
        """
        Create a requisition in ``pending`` with a snapshotted approval chain.

        Raises:
            ActorNotFoundError: Unknown requester.
            NoDepartmentAssignedError: Requester has no department.
            ValidationError: Empty title/items, quantity <= 0 or price < 0.
            ConfigurationNotFoundError: No approval policy covers the total.
        """
        with LogContext.bind(actor_id=requester_id):
            try:
                requester = self._identity.resolve(requester_id)
                if requester.department_id is None:
                    raise NoDepartmentAssignedError(str(requester_id))

                errors = validate_draft(draft)
                if errors:
                    raise ValidationError("Invalid requisition", errors)

                items = price_items(draft.items)
                amount = total_amount(items)
                chain = self._policies.resolve(ApprovalModule.REQUISITION, amount)
                number = self._sequences.next(REQUISITION_SEQUENCE)

                requisition = RequisitionModel(
                    number=number,
                    title=draft.title.strip(),
                    description=draft.description,
                    requester_id=requester.actor_id,
                    department_id=requester.department_id,
                    status=RequisitionStatus.PENDING.value,
                    priority=draft.priority.value,
                    request_date=self._clock.now(),
                    required_date=draft.required_date,
                    total_amount=amount,
                    current_level=0,
                    approval_config_id=chain.config_id,
                    approval_config_name=chain.config_name,
                    spent_recorded=False,
                    created_by_id=requester.actor_id,
                )
                requisition.items = [RequisitionItemModel.from_dto(item) for item in items]
                requisition.approval_steps = RequisitionApprovalStepModel.skeleton_from_chain(chain)
                self.session.add(requisition)
                self.session.flush()
                self.session.commit()
            except Exception:
                self.session.rollback()
                raise

            logger.info(
                "requisition_created",
                extra={
                    "requisition_id": str(requisition.id),
                    "number": number,
                    "department_id": str(requisition.department_id),
                    "total_amount": str(amount),
                    "level_count": len(chain),
                    "approval_config": chain.config_name,
                },
            )

            self._project_budget(requisition, record_spend=False)
            payload = self._payload(requisition)
            notices = [(requisition.requester_id, NotificationEvent.REQUISITION_CREATED, payload)]
            notices += self._level_holder_notices(
                requisition, NotificationEvent.APPROVAL_REQUIRED, payload
            )
            self._dispatch(notices)
            return requisition.to_dto()

    # ------------------------------------------------------------------
    # Approve / reject
    # ------------------------------------------------------------------

    def approve_requisition(
        self,
        requisition_id: UUID,
        actor_id: UUID,
        comments: str | None = None,
    ) -> RequisitionInfo:
        """
        Approve the current level.  The last level moves the requisition to
        ``approved``; any other level moves it to ``in_approval`` and
        advances ``current_level`` by one.

        Raises:
            RequisitionNotFoundError, ActorNotFoundError
            InvalidStateTransitionError: Not pending/in_approval, or another
                approver persisted first (ConcurrentModificationError).
            InsufficientPermissionError: Actor's role cannot act on the
                current level.
        """
        return self._decide(requisition_id, actor_id, Decision.APPROVE, comments)

    def reject_requisition(
        self,
        requisition_id: UUID,
        actor_id: UUID,
        reason: str | None,
    ) -> RequisitionInfo:
        """
        Reject at the current level.  Terminal; ``current_level`` is kept.
        Any active user may reject; the level role gates approval only.

        Raises:
            RequisitionNotFoundError, ActorNotFoundError
            InvalidStateTransitionError: Not pending/in_approval, or another
                decision persisted first (ConcurrentModificationError).
            ReasonRequiredError: ``reason`` is missing or blank.
        """
        return self._decide(requisition_id, actor_id, Decision.REJECT, reason)

    def _decide(
        self,
        requisition_id: UUID,
        actor_id: UUID,
        decision: Decision,
        text: str | None,
    ) -> RequisitionInfo:
        with LogContext.bind(actor_id=actor_id, requisition_id=requisition_id):
            try:
                actor = self._identity.resolve(actor_id)
                requisition = self._load(requisition_id)
                status = self._ensure_decidable(requisition, decision.value)
                if decision == Decision.REJECT and (text is None or not text.strip()):
                    raise ReasonRequiredError(str(requisition_id))

                step = requisition.current_step
                if decision == Decision.APPROVE:
                    self._ensure_can_act(actor, step, requisition.current_level)

                transition = decide_requisition(
                    status,
                    requisition.current_level,
                    len(requisition.approval_steps),
                    decision,
                )

                step.approver_id = actor.actor_id
                step.status = (
                    StepStatus.REJECTED.value
                    if decision == Decision.REJECT
                    else StepStatus.APPROVED.value
                )
                step.comments = text
                step.decided_at = self._clock.now()

                requisition.status = transition.status.value
                requisition.current_level = transition.current_level
                requisition.updated_by_id = actor.actor_id
                if decision == Decision.REJECT:
                    requisition.rejection_reason = text

                self.session.flush()
                self.session.commit()
            except StaleDataError:
                self.session.rollback()
                raise self._concurrent_modification(requisition_id, decision.value)
            except Exception:
                self.session.rollback()
                raise

            logger.info(
                f"requisition_{transition.outcome.value}",
                extra={
                    "requisition_id": str(requisition.id),
                    "number": requisition.number,
                    "decided_level": transition.decided_level,
                    "current_level": transition.current_level,
                    "status": transition.status.value,
                    "total_amount": str(requisition.total_amount),
                },
            )

            completed = transition.outcome == ChainOutcome.COMPLETED
            self._project_budget(requisition, record_spend=completed)

            payload = self._payload(requisition)
            if transition.outcome == ChainOutcome.ADVANCED:
                notices = self._level_holder_notices(
                    requisition, NotificationEvent.APPROVAL_REQUIRED, payload
                )
            elif completed:
                notices = [(requisition.requester_id, NotificationEvent.REQUISITION_APPROVED, payload)]
            else:
                notices = [(requisition.requester_id, NotificationEvent.REQUISITION_REJECTED, payload)]
            self._dispatch(notices)
            return requisition.to_dto()

    # ------------------------------------------------------------------
    # Cancel
    # ------------------------------------------------------------------

    def cancel_requisition(self, requisition_id: UUID, actor_id: UUID) -> RequisitionInfo:
        """
        Cancel a requisition.  Only its requester or an admin may cancel.

        Raises:
            RequisitionNotFoundError, ActorNotFoundError
            ForbiddenError: Actor is neither the requester nor an admin.
            CannotCancelOrderedError: Requisition is (partially) ordered.
            InvalidStateTransitionError: Already approved, rejected or
                cancelled.
        """
        with LogContext.bind(actor_id=actor_id, requisition_id=requisition_id):
            try:
                actor = self._identity.resolve(actor_id)
                requisition = self._load(requisition_id)
                if (
                    actor.actor_id != requisition.requester_id
                    and actor.role not in CANCEL_OVERRIDE_ROLES
                ):
                    raise ForbiddenError(str(actor_id), f"cancel requisition {requisition.number}")

                status = RequisitionStatus(requisition.status)
                if status in ORDERED_STATUSES:
                    raise CannotCancelOrderedError(str(requisition_id), status.value)
                if not is_valid_transition(status, RequisitionStatus.CANCELLED):
                    raise InvalidStateTransitionError(
                        _ENTITY, str(requisition_id), status.value, "cancel",
                        requisition.current_level,
                    )

                awaiting_decision = status in DECIDABLE_STATUSES
                requisition.status = RequisitionStatus.CANCELLED.value
                requisition.updated_by_id = actor.actor_id
                self.session.flush()
                self.session.commit()
            except StaleDataError:
                self.session.rollback()
                raise self._concurrent_modification(requisition_id, "cancel")
            except Exception:
                self.session.rollback()
                raise

            logger.info(
                "requisition_cancelled",
                extra={
                    "requisition_id": str(requisition.id),
                    "number": requisition.number,
                    "previous_status": status.value,
                    "by_requester": actor.actor_id == requisition.requester_id,
                },
            )

            self._project_budget(requisition, record_spend=False)
            payload = self._payload(requisition)
            notices = []
            if awaiting_decision:
                notices += self._level_holder_notices(
                    requisition, NotificationEvent.REQUISITION_CANCELLED, payload
                )
            if actor.actor_id != requisition.requester_id:
                notices.append(
                    (requisition.requester_id, NotificationEvent.REQUISITION_CANCELLED, payload)
                )
            self._dispatch(notices)
            return requisition.to_dto()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _load(self, requisition_id: UUID) -> RequisitionModel:
        requisition = self.session.get(RequisitionModel, requisition_id)
        if requisition is None:
            raise RequisitionNotFoundError(str(requisition_id))
        return requisition

    def _ensure_decidable(self, requisition: RequisitionModel, attempted: str) -> RequisitionStatus:
        status = RequisitionStatus(requisition.status)
        if status not in DECIDABLE_STATUSES:
            raise InvalidStateTransitionError(
                _ENTITY, str(requisition.id), status.value, attempted,
                requisition.current_level,
            )
        return status

    def _ensure_can_act(
        self,
        actor: ActorIdentity,
        step: RequisitionApprovalStepModel,
        level: int,
    ) -> None:
        required = Role(step.required_role)
        if not can_act_on_level(actor.role, required):
            raise InsufficientPermissionError(
                str(actor.actor_id), actor.role.value, required.value, level,
            )

    def _concurrent_modification(self, requisition_id: UUID, attempted: str) -> ConcurrentModificationError:
        current = self.session.get(RequisitionModel, requisition_id, populate_existing=True)
        logger.warning(
            "requisition_concurrent_modification",
            extra={
                "requisition_id": str(requisition_id),
                "attempted": attempted,
                "current_status": current.status if current else None,
            },
        )
        return ConcurrentModificationError(
            _ENTITY,
            str(requisition_id),
            current.status if current else "unknown",
            attempted,
            current.current_level if current else None,
        )

    def _project_budget(self, requisition: RequisitionModel, record_spend: bool) -> None:
        requisition_id = requisition.id
        department_id = requisition.department_id
        try:
            if record_spend:
                self._ledger.record_spend(requisition_id)
            self._ledger.recompute(department_id)
            self.session.commit()
        except Exception:
            self.session.rollback()
            logger.error(
                "budget_recompute_failed",
                extra={
                    "requisition_id": str(requisition_id),
                    "department_id": str(department_id),
                },
                exc_info=True,
            )

    def _payload(self, requisition: RequisitionModel) -> dict[str, Any]:
        step = requisition.current_step
        payload: dict[str, Any] = {
            "requisition_id": str(requisition.id),
            "number": requisition.number,
            "title": requisition.title,
            "total_amount": str(requisition.total_amount),
            "department_id": str(requisition.department_id),
            "status": requisition.status,
            "level": requisition.current_level,
            "level_name": step.level_name,
            "required_role": step.required_role,
        }
        if requisition.rejection_reason:
            payload["reason"] = requisition.rejection_reason
        return payload

    def _level_holder_notices(
        self,
        requisition: RequisitionModel,
        event: NotificationEvent,
        payload: dict[str, Any],
    ) -> list[tuple[UUID, NotificationEvent, dict[str, Any]]]:
        """Notices for everyone holding the role of the current level."""
        if self._notifier is None:
            return []
        role = Role(requisition.current_step.required_role)
        department_id = requisition.department_id if role in DEPARTMENT_SCOPED_ROLES else None
        try:
            holders = self._identity.find_by_role(role, department_id)
        except Exception:
            logger.warning(
                "approver_lookup_failed",
                extra={"requisition_id": str(requisition.id), "role": role.value},
                exc_info=True,
            )
            return []
        return [(holder.actor_id, event, payload) for holder in holders]

    def _dispatch(self, notices: list[tuple[UUID, NotificationEvent, dict[str, Any]]]) -> None:
        if self._notifier is None:
            return
        for user_id, event, payload in notices:
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
