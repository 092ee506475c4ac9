"""Human-readable, year-scoped document numbers such as ``REQ-2025-00007``."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

DEFAULT_PADDING = 5


@dataclass(frozen=True)
class SequenceFormat:
    prefix: str
    padding: int = DEFAULT_PADDING

    def __post_init__(self) -> None:
        if not self.prefix:
            raise ValueError("Sequence prefix must not be empty")
        if self.padding < 1:
            raise ValueError(f"Sequence padding must be positive, got {self.padding}")


REQUISITION_SEQUENCE = "requisition"
PURCHASE_ORDER_SEQUENCE = "purchase_order"
GOODS_RECEIPT_SEQUENCE = "goods_receipt"

DEFAULT_SEQUENCE_FORMATS: dict[str, SequenceFormat] = {
    REQUISITION_SEQUENCE: SequenceFormat("REQ"),
    PURCHASE_ORDER_SEQUENCE: SequenceFormat("OC"),
    GOODS_RECEIPT_SEQUENCE: SequenceFormat("REC"),
}


def format_for(name: str, formats: dict[str, SequenceFormat] | None = None) -> SequenceFormat:
    """Look up a sequence's format; unknown names use their upper-cased name."""
    table = DEFAULT_SEQUENCE_FORMATS if formats is None else formats
    return table.get(name) or SequenceFormat(name.upper())


def format_sequence_number(fmt: SequenceFormat, year: int, value: int) -> str:
    return f"{fmt.prefix}-{year}-{value:0{fmt.padding}d}"


class SequenceGenerator(Protocol):
    def next(self, name: str) -> str:
        ...
