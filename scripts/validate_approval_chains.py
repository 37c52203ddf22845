#!/usr/bin/env python3
"""
Startup hook: verify that every critical operation type has an approval chain.

Exits 0 when the approval engine may serve traffic, 1 when a critical
chain is missing or could not be checked.  Warnings (non-critical gaps,
generous auto-approve thresholds, band gaps) are printed but never fail
the check.

Usage:
    python3 scripts/validate_approval_chains.py
    python3 scripts/validate_approval_chains.py --database-url postgresql://... --coverage
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
    parser = argparse.ArgumentParser(description="Validate approval chain coverage at startup.")
    parser.add_argument(
        "--database-url",
        default=os.environ.get("DATABASE_URL", DEFAULT_DB_URL),
        help="Database URL (default: $DATABASE_URL or %(default)s)",
    )
    parser.add_argument("--config-dir", type=Path, default=None, help="Configuration sets directory")
    parser.add_argument("--config-name", default="default", help="Configuration set name")
    parser.add_argument("--coverage", action="store_true", help="Also print per-type chain coverage")
    args = parser.parse_args(argv)

    from approval_config import get_active_config
    from approval_kernel.db.engine import get_session_factory, init_engine_from_url
    from approval_kernel.exceptions import StartupValidationError
    from approval_kernel.logging_config import configure_logging
    from approval_services.bootstrap import run_startup_validation
    from approval_services.orchestrator import ApprovalOrchestrator

    configure_logging()
    init_engine_from_url(args.database_url)
    config = get_active_config(args.config_dir, args.config_name)

    try:
        report = run_startup_validation(config=config)
    except StartupValidationError as exc:
        print("APPROVAL CHAIN VALIDATION FAILED", file=sys.stderr)
        for error in exc.errors:
            print(f"  ERROR   {error}", file=sys.stderr)
        return 1

    for warning in report.warnings:
        print(f"  WARNING {warning}")

    if args.coverage:
        session = get_session_factory()()
        try:
            coverage = ApprovalOrchestrator(session, config).startup_validator.get_approval_chain_coverage()
        finally:
            session.close()
        for item in coverage.coverage:
            print(
                f"  {item.operation_type.value:<24} {item.criticality.value:<9} "
                f"{item.active_chains} active chain(s)"
            )
        print(f"  coverage: {coverage.coverage_percentage}%")

    print(f"Approval chains OK ({len(report.warnings)} warning(s))")
    return 0


if __name__ == "__main__":
    sys.exit(main())
