#!/usr/bin/env python3
"""
Create the procurement schema and install a YAML configuration set.

Approval policies, departments (with budgets and alert thresholds) and
seed users are upserted, so running this twice is harmless.

Usage:
  python3 scripts/init_db.py [--config PATH] [--db-url URL] [--reset] [--verbose]

The database URL is taken from --db-url, then DATABASE_URL, then the
configuration set's settings.database_url.
"""

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def _parse_args() -> argparse.Namespace:
    from procurement_config import DEFAULT_CONFIG_SET

    p = argparse.ArgumentParser(description="Create tables and install a procurement configuration set")
    p.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG_SET,
        help=f"YAML configuration set (default: {DEFAULT_CONFIG_SET})",
    )
    p.add_argument("--db-url", default=None, help="Database URL (overrides DATABASE_URL)")
    p.add_argument("--reset", action="store_true", help="Drop all tables first")
    p.add_argument("--verbose", action="store_true", help="Log at DEBUG")
    return p.parse_args()


def main() -> int:
    args = _parse_args()

    from procurement_config import compute_checksum, install_configuration, load_config_set
    from procurement_kernel.db.engine import (
        create_tables,
        drop_tables,
        init_engine_from_url,
        session_scope,
    )
    from procurement_kernel.logging_config import configure_logging

    configure_logging(level=logging.DEBUG if args.verbose else logging.INFO)

    config_set = load_config_set(args.config)
    db_url = args.db_url or config_set.settings.database_url
    if not db_url:
        print("Error: no database URL (use --db-url or DATABASE_URL)", file=sys.stderr)
        return 1

    print(f"  config set: {config_set.name} v{config_set.version}")
    print(f"  checksum:   {compute_checksum(args.config)[:16]}...")

    init_engine_from_url(db_url)
    if args.reset:
        print("  Dropping tables...")
        drop_tables()
    print("  Creating tables...")
    create_tables()

    with session_scope() as session:
        report = install_configuration(session, config_set)

    print(
        f"  Installed {report.approval_configs} approval configs, "
        f"{report.departments} departments, {report.users} users."
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
