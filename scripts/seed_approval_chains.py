#!/usr/bin/env python3
"""
Seed approval chains from a configuration set.

Creates the tables (and immutability triggers) when missing, inserts every
configured chain whose name is not already present, and leaves existing
chains untouched.

Usage:
    python3 scripts/seed_approval_chains.py
    python3 scripts/seed_approval_chains.py --config-name default --actor admin-1
"""

import argparse
import os
import sys
from pathlib import Path

# ---------------------------------------------------------------------------
# Project root on sys.path
# ---------------------------------------------------------------------------
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

DEFAULT_DB_URL = "sqlite:///approvals.db"


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Seed approval chains from configuration.")
    parser.add_argument(
        "--database-url",
        default=os.environ.get("DATABASE_URL", DEFAULT_DB_URL),
        help="Database URL (default: $DATABASE_URL or %(default)s)",
    )
    parser.add_argument("--config-dir", type=Path, default=None, help="Configuration sets directory")
    parser.add_argument("--config-name", default="default", help="Configuration set name")
    parser.add_argument("--actor", default=None, help="User recorded as chain creator")
    parser.add_argument("--no-create", action="store_true", help="Do not create missing tables")
    args = parser.parse_args(argv)

    from approval_config import get_active_config
    from approval_kernel.db.engine import create_tables, init_engine_from_url
    from approval_kernel.logging_config import configure_logging
    from approval_services.bootstrap import seed_chains

    configure_logging()
    init_engine_from_url(args.database_url)
    if not args.no_create:
        create_tables()

    config = get_active_config(args.config_dir, args.config_name)
    created = seed_chains(config=config, actor_id=args.actor)

    for name in created:
        print(f"  created {name}")
    print(f"Seeded {len(created)} chain(s) from {config.config_id} v{config.version}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
