"""
Procurement Kernel

Requisition lifecycle and approval engine with:
- Amount-keyed, multi-level approval chains
- Atomic year-scoped sequence numbers
- Optimistic per-requisition concurrency control
- A derived, self-healing department budget ledger
"""

__version__ = "0.1.0"
