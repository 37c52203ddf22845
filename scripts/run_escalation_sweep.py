#!/usr/bin/env python3
"""
Run the approval escalation sweep once, or repeatedly on an interval.

Pending requests whose current step has waited longer than the chain's
escalation window are escalated to the first active admin.

Usage:
    python3 scripts/run_escalation_sweep.py
    python3 scripts/run_escalation_sweep.py --interval 900
"""

import argparse
import os
import sys
import time
from pathlib import Path

# ---------------------------------------------------------------------------
# Project root on sys.path
# ---------------------------------------------------------------------------
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

DEFAULT_DB_URL = "sqlite:///approvals.db"


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Escalate overdue approval requests.")
    parser.add_argument(
        "--database-url",
        default=os.environ.get("DATABASE_URL", DEFAULT_DB_URL),
        help="Database URL (default: $DATABASE_URL or %(default)s)",
    )
    parser.add_argument("--config-dir", type=Path, default=None, help="Configuration sets directory")
    parser.add_argument("--config-name", default="default", help="Configuration set name")
    parser.add_argument(
        "--interval", type=int, default=None,
        help="Keep running, sweeping every N seconds (default: run once)",
    )
    args = parser.parse_args(argv)

    from approval_config import get_active_config
    from approval_kernel.db.engine import get_session_factory, init_engine_from_url
    from approval_kernel.db.immutability import register_immutability_listeners
    from approval_kernel.logging_config import configure_logging
    from approval_services.escalation_scheduler import EscalationScheduler

    configure_logging()
    init_engine_from_url(args.database_url)
    register_immutability_listeners()
    config = get_active_config(args.config_dir, args.config_name)

    scheduler = EscalationScheduler(
        get_session_factory(), config, interval_seconds=args.interval,
    )

    if args.interval is None:
        result = scheduler.tick()
        if result is None:
            print("Escalation sweep failed; see logs", file=sys.stderr)
            return 1
        if result.skipped_no_admin:
            print("No active admin; nothing escalated")
            return 0
        print(
            f"Examined {result.examined}, escalated {len(result.escalated)}, "
            f"failed {len(result.failed)}"
        )
        return 0

    scheduler.start()
    try:
        while scheduler.is_running:
            time.sleep(1)
    except KeyboardInterrupt:
        print("Stopping escalation sweep")
    finally:
        scheduler.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
