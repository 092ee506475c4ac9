"""
Configuration Loader (``procurement_config.loader``).

Responsibility
--------------
Loads a YAML configuration set and parses it into the frozen dataclasses
of ``procurement_config.schema``.

Architecture position
---------------------
**Config layer** -- infrastructure tooling, consumed by the installer and
``scripts/init_db.py``.  The kernel never imports this package.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages; required keys have no silent defaults.
* Roles and modules are checked against the kernel's closed enums.
* Amounts are parsed to ``Decimal`` from their string form, never through
  ``float``.
* ``DATABASE_URL`` in the environment overrides ``settings.database_url``.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
"""

from __future__ import annotations

import hashlib
import os
from collections.abc import Mapping
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from procurement_config.schema import (
    ApprovalConfigDef,
    ApprovalLevelDef,
    DepartmentDef,
    NotificationSettingsDef,
    ProcurementConfigurationSet,
    ProcurementSettings,
    SequenceDef,
    UserDef,
)
from procurement_kernel.domain.approval import ApprovalModule, Role

DATABASE_URL_ENV = "DATABASE_URL"


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_decimal(value: Any, field_name: str) -> Decimal:
    """Parse an amount; YAML floats go through ``str`` to keep their digits."""
    if isinstance(value, bool):
        raise ValueError(f"{field_name}: expected an amount, got {value!r}")
    try:
        return Decimal(str(value))
    except (InvalidOperation, TypeError) as exc:
        raise ValueError(f"{field_name}: cannot parse amount from {value!r}") from exc


def parse_role(value: Any, field_name: str) -> str:
    try:
        return Role(value).value
    except ValueError as exc:
        allowed = ", ".join(r.value for r in Role)
        raise ValueError(f"{field_name}: unknown role {value!r} (allowed: {allowed})") from exc


def parse_level(data: dict[str, Any], context: str) -> ApprovalLevelDef:
    limit = data.get("approval_limit")
    return ApprovalLevelDef(
        order=int(data["order"]),
        name=data["name"],
        role=parse_role(data["role"], f"{context}.role"),
        approval_limit=None if limit is None else parse_decimal(limit, f"{context}.approval_limit"),
    )


def parse_approval_config(data: dict[str, Any]) -> ApprovalConfigDef:
    """
    Parse an ``ApprovalConfigDef``.

    Raises:
        KeyError: if ``name``, ``module``, ``min_amount`` or ``levels`` is missing.
        ValueError: on unknown modules/roles, empty levels or an empty range.
    """
    name = data["name"]
    try:
        module = ApprovalModule(data["module"]).value
    except ValueError as exc:
        raise ValueError(f"approval config {name!r}: unknown module {data['module']!r}") from exc

    levels = tuple(
        parse_level(level, f"approval config {name!r} level {index}")
        for index, level in enumerate(data["levels"] or [])
    )
    if not levels:
        raise ValueError(f"approval config {name!r}: at least one level is required")

    min_amount = parse_decimal(data["min_amount"], f"approval config {name!r}.min_amount")
    raw_max = data.get("max_amount")
    max_amount = None if raw_max is None else parse_decimal(raw_max, f"approval config {name!r}.max_amount")
    if max_amount is not None and max_amount <= min_amount:
        raise ValueError(f"approval config {name!r}: max_amount must be greater than min_amount")

    return ApprovalConfigDef(
        name=name,
        module=module,
        min_amount=min_amount,
        max_amount=max_amount,
        levels=tuple(sorted(levels, key=lambda lv: lv.order)),
        is_active=bool(data.get("is_active", True)),
    )


def parse_department(data: dict[str, Any]) -> DepartmentDef:
    code = data["code"]
    fiscal_year = data.get("fiscal_year")
    return DepartmentDef(
        code=code,
        name=data["name"],
        annual_budget=parse_decimal(data["annual_budget"], f"department {code!r}.annual_budget"),
        cost_center=data.get("cost_center"),
        fiscal_year=None if fiscal_year is None else int(fiscal_year),
        manager=data.get("manager"),
        alert_percentages=tuple(
            parse_decimal(p, f"department {code!r}.alert_percentages")
            for p in data.get("alert_percentages", [])
        ),
    )


def parse_user(data: dict[str, Any]) -> UserDef:
    email = data["email"]
    return UserDef(
        name=data["name"],
        email=email,
        role=parse_role(data["role"], f"user {email!r}.role"),
        department=data.get("department"),
    )


def parse_sequence(data: dict[str, Any]) -> SequenceDef:
    return SequenceDef(
        name=data["name"],
        prefix=data["prefix"],
        padding=int(data.get("padding", 5)),
    )


def parse_settings(
    data: dict[str, Any],
    environ: Mapping[str, str] | None = None,
) -> ProcurementSettings:
    """Parse settings; ``DATABASE_URL`` in ``environ`` wins over the file."""
    env = os.environ if environ is None else environ
    notifications = data.get("notifications") or {}
    return ProcurementSettings(
        database_url=env.get(DATABASE_URL_ENV) or data.get("database_url"),
        sequences=tuple(parse_sequence(s) for s in data.get("sequences", [])),
        notifications=NotificationSettingsDef(
            smtp_host=notifications.get("smtp_host"),
            smtp_port=int(notifications.get("smtp_port", 587)),
            smtp_username=notifications.get("smtp_username"),
            smtp_password=notifications.get("smtp_password"),
            use_tls=bool(notifications.get("use_tls", True)),
            from_address=notifications.get("from_address", "procurement@localhost"),
            client_url=notifications.get("client_url", "http://localhost:3000"),
        ),
    )


def parse_config_set(
    data: dict[str, Any],
    environ: Mapping[str, str] | None = None,
) -> ProcurementConfigurationSet:
    """
    Parse a whole configuration set.

    Raises:
        KeyError: if ``name`` is missing.
        ValueError: on duplicate names/codes/emails or dangling references.
    """
    approval_configs = tuple(parse_approval_config(c) for c in data.get("approval_configs", []))
    departments = tuple(parse_department(d) for d in data.get("departments", []))
    users = tuple(parse_user(u) for u in data.get("users", []))

    _require_unique([(c.module, c.name) for c in approval_configs], "approval config")
    _require_unique([d.code for d in departments], "department code")
    _require_unique([u.email for u in users], "user email")

    codes = {d.code for d in departments}
    emails = {u.email for u in users}
    for user in users:
        if user.department is not None and user.department not in codes:
            raise ValueError(f"user {user.email!r}: unknown department {user.department!r}")
    for department in departments:
        if department.manager is not None and department.manager not in emails:
            raise ValueError(f"department {department.code!r}: unknown manager {department.manager!r}")

    return ProcurementConfigurationSet(
        name=data["name"],
        version=int(data.get("version", 1)),
        settings=parse_settings(data.get("settings") or {}, environ),
        approval_configs=approval_configs,
        departments=departments,
        users=users,
    )


def load_config_set(
    path: Path | str,
    environ: Mapping[str, str] | None = None,
) -> ProcurementConfigurationSet:
    """Load and parse the YAML configuration set at ``path``."""
    return parse_config_set(load_yaml_file(Path(path)), environ)


def compute_checksum(path: Path | str) -> str:
    """SHA-256 of the raw YAML, identifying the exact set that was installed."""
    return hashlib.sha256(Path(path).read_bytes()).hexdigest()


def _require_unique(values: list[Any], what: str) -> None:
    seen = set()
    for value in values:
        if value in seen:
            raise ValueError(f"duplicate {what}: {value!r}")
        seen.add(value)
