"""
approval_services.bootstrap -- process startup for the approval engine.

Responsibility:
    Connects to the database, installs the immutability guards, optionally
    seeds chains from configuration, and runs the startup chain check
    that decides whether the process may serve traffic.

Invariants enforced:
    - ORM immutability listeners are registered before any session is used.
    - A missing critical chain raises StartupValidationError (the CLI hook
      turns this into exit code 1).  The failed-startup audit event is
      committed before the error is raised.
"""

from __future__ import annotations

from typing import Callable

from sqlalchemy.orm import Session

from approval_config import get_active_config
from approval_config.bridges import seed_approval_chains
from approval_config.schema import ApprovalConfigurationSet
from approval_kernel.db.engine import create_tables, get_session_factory, init_engine_from_url
from approval_kernel.db.immutability import register_immutability_listeners
from approval_kernel.domain.approval import StartupValidationReport
from approval_kernel.domain.clock import Clock
from approval_kernel.exceptions import StartupValidationError
from approval_kernel.logging_config import configure_logging, get_logger
from approval_services.orchestrator import ApprovalOrchestrator

logger = get_logger("services.bootstrap")


def run_startup_validation(
    session_factory: Callable[[], Session] | None = None,
    config: ApprovalConfigurationSet | None = None,
    clock: Clock | None = None,
    raise_on_failure: bool = True,
) -> StartupValidationReport:
    """
    Check required chain coverage and audit the result.

    Raises:
        StartupValidationError: a critical chain is missing and
            ``raise_on_failure`` is True.
    """
    register_immutability_listeners()
    config = config if config is not None else get_active_config()
    factory = session_factory or get_session_factory()

    session = factory()
    try:
        services = ApprovalOrchestrator(session, config, clock)
        report = services.startup_validator.validate()
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

    if not report.is_valid:
        logger.critical(
            "approval_startup_blocked",
            extra={"missing_critical": [op.value for op in report.missing_critical]},
        )
        if raise_on_failure:
            raise StartupValidationError(
                [op.value for op in report.missing_critical],
                list(report.errors),
            )
    return report


def seed_chains(
    session_factory: Callable[[], Session] | None = None,
    config: ApprovalConfigurationSet | None = None,
    actor_id: str | None = None,
    clock: Clock | None = None,
) -> list[str]:
    """Seed configured chains in one transaction; returns the names created."""
    register_immutability_listeners()
    config = config if config is not None else get_active_config()
    factory = session_factory or get_session_factory()

    session = factory()
    try:
        created = seed_approval_chains(session, config, actor_id=actor_id, clock=clock)
        session.commit()
        return created
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def initialize_approval_system(
    database_url: str,
    config: ApprovalConfigurationSet | None = None,
    seed: bool = False,
    create_schema: bool = True,
    raise_on_failure: bool = True,
) -> StartupValidationReport:
    """Full startup sequence for a process that serves approval traffic."""
    configure_logging()
    init_engine_from_url(database_url)
    if create_schema:
        create_tables()
    register_immutability_listeners()

    config = config if config is not None else get_active_config()
    if seed:
        seed_chains(config=config)
    return run_startup_validation(config=config, raise_on_failure=raise_on_failure)
