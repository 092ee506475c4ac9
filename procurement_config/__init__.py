"""
procurement_config -- YAML configuration sets for the procurement kernel.

Responsibility:
    Parses human-authored YAML sets (approval policies, departments and
    budgets, seed users, sequence formats, notification settings) and
    installs them into the kernel's tables.

Architecture position:
    Configuration layer, above ``procurement_kernel``.  The kernel MUST
    NEVER import from this package.
"""

from __future__ import annotations

from pathlib import Path

from procurement_config.installer import InstallReport, install_configuration
from procurement_config.loader import compute_checksum, load_config_set
from procurement_config.schema import ProcurementConfigurationSet, ProcurementSettings

DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"
DEFAULT_CONFIG_SET = DEFAULT_CONFIG_DIR / "default.yaml"

__all__ = [
    "DEFAULT_CONFIG_DIR",
    "DEFAULT_CONFIG_SET",
    "InstallReport",
    "ProcurementConfigurationSet",
    "ProcurementSettings",
    "compute_checksum",
    "install_configuration",
    "load_config_set",
]
