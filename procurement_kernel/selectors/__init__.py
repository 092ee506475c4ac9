"""Selectors for the procurement kernel (read side)."""

from procurement_kernel.selectors.base import BaseSelector, Page
from procurement_kernel.selectors.budget_selector import BudgetDrift, BudgetSelector
from procurement_kernel.selectors.requisition_selector import RequisitionSelector

__all__ = [
    "BaseSelector",
    "BudgetDrift",
    "BudgetSelector",
    "Page",
    "RequisitionSelector",
]
