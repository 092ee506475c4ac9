"""Services for the procurement kernel (write side)."""

from procurement_kernel.services.approval_policy_service import ApprovalPolicyService
from procurement_kernel.services.budget_ledger_service import BudgetLedgerService
from procurement_kernel.services.identity_service import UserDirectory
from procurement_kernel.services.notification_service import (
    EmailNotificationSink,
    EmailSettings,
    FanOutNotificationSink,
    NotificationService,
)
from procurement_kernel.services.purchase_order_service import PurchaseOrderService
from procurement_kernel.services.requisition_service import RequisitionService
from procurement_kernel.services.sequence_service import SequenceService

__all__ = [
    "ApprovalPolicyService",
    "BudgetLedgerService",
    "EmailNotificationSink",
    "EmailSettings",
    "FanOutNotificationSink",
    "NotificationService",
    "PurchaseOrderService",
    "RequisitionService",
    "SequenceService",
    "UserDirectory",
]
