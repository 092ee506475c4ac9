"""
ProcurementConfigurationSet schema.

The human-authored, reviewable source artifact for procurement
configuration.  YAML sets are parsed into these types by the loader and
written into the kernel's tables by the installer.

Plain data only: no type here imports a service or a model.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from procurement_kernel.domain.sequence import SequenceFormat

# ---------------------------------------------------------------------------
# Approval policies
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ApprovalLevelDef:
    """One level of an approval chain."""

    order: int
    name: str
    role: str
    approval_limit: Decimal | None = None


@dataclass(frozen=True)
class ApprovalConfigDef:
    """An amount range of one module and the chain it requires."""

    name: str
    module: str  # requisition | purchase_order
    min_amount: Decimal
    levels: tuple[ApprovalLevelDef, ...]
    max_amount: Decimal | None = None
    is_active: bool = True


# ---------------------------------------------------------------------------
# Organisation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DepartmentDef:
    """A department and its annual budget."""

    code: str
    name: str
    annual_budget: Decimal
    cost_center: str | None = None
    fiscal_year: int | None = None
    manager: str | None = None  # email of a UserDef
    alert_percentages: tuple[Decimal, ...] = ()


@dataclass(frozen=True)
class UserDef:
    """A seed user."""

    name: str
    email: str
    role: str
    department: str | None = None  # DepartmentDef.code


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SequenceDef:
    name: str
    prefix: str
    padding: int = 5


@dataclass(frozen=True)
class NotificationSettingsDef:
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_username: str | None = None
    smtp_password: str | None = None
    use_tls: bool = True
    from_address: str = "procurement@localhost"
    client_url: str = "http://localhost:3000"


@dataclass(frozen=True)
class ProcurementSettings:
    database_url: str | None = None
    sequences: tuple[SequenceDef, ...] = ()
    notifications: NotificationSettingsDef = field(default_factory=NotificationSettingsDef)

    def sequence_formats(self) -> dict[str, SequenceFormat]:
        """Sequence formats keyed by sequence name, for SequenceService."""
        return {s.name: SequenceFormat(s.prefix, s.padding) for s in self.sequences}


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProcurementConfigurationSet:
    """Root configuration artifact: one YAML set, fully parsed."""

    name: str
    version: int
    settings: ProcurementSettings
    approval_configs: tuple[ApprovalConfigDef, ...] = ()
    departments: tuple[DepartmentDef, ...] = ()
    users: tuple[UserDef, ...] = ()
