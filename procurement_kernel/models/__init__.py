"""ORM models for the procurement kernel."""

from procurement_kernel.models.approval_config import (
    ApprovalConfigLevelModel,
    ApprovalConfigModel,
)
from procurement_kernel.models.department import BudgetAlertModel, DepartmentModel
from procurement_kernel.models.notification import NotificationModel
from procurement_kernel.models.purchase_order import (
    PurchaseOrderApprovalStepModel,
    PurchaseOrderItemModel,
    PurchaseOrderModel,
    purchase_order_requisitions,
)
from procurement_kernel.models.requisition import (
    RequisitionApprovalStepModel,
    RequisitionItemModel,
    RequisitionModel,
)
from procurement_kernel.models.sequence import SequenceCounterModel
from procurement_kernel.models.user import UserModel

__all__ = [
    "ApprovalConfigLevelModel",
    "ApprovalConfigModel",
    "BudgetAlertModel",
    "DepartmentModel",
    "NotificationModel",
    "PurchaseOrderApprovalStepModel",
    "PurchaseOrderItemModel",
    "PurchaseOrderModel",
    "RequisitionApprovalStepModel",
    "RequisitionItemModel",
    "RequisitionModel",
    "SequenceCounterModel",
    "UserModel",
    "purchase_order_requisitions",
]
