"""
Config -> Kernel Bridges.

Functions that convert an ApprovalConfigurationSet into kernel-compatible
inputs.  These live in approval_config (the producer) because the kernel
must NEVER import approval_config.

Usage:
    from approval_config.bridges import (
        build_required_chain_specs, build_validation_policy, seed_approval_chains,
    )

    config = get_active_config()
    validator = StartupChainValidator(..., required_chains=build_required_chain_specs(config))
    guard = ConsumptionGuard(..., policy=build_validation_policy(config))
    seed_approval_chains(session, config)
"""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from approval_config.schema import ApprovalConfigurationSet
from approval_engines.tamper import ValidationPolicy
from approval_kernel.domain.approval import RequiredChainSpec
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.operations import Criticality, OperationType, Role
from approval_kernel.logging_config import get_logger
from approval_kernel.models.approval import ApprovalChainModel
from approval_kernel.services.auditor_service import AuditorService

logger = get_logger("config.bridges")


def build_required_chain_specs(config: ApprovalConfigurationSet) -> tuple[RequiredChainSpec, ...]:
    """Required-chain table for StartupChainValidator."""
    return tuple(
        RequiredChainSpec(
            operation_type=OperationType(r.operation_type),
            criticality=Criticality(r.criticality),
            required_roles=tuple(Role(role) for role in r.required_roles),
            max_auto_approve=r.max_auto_approve,
            description=r.description,
        )
        for r in config.required_chains
    )


def build_validation_policy(config: ApprovalConfigurationSet) -> ValidationPolicy:
    """Expiry window and amount tolerance for ConsumptionGuard."""
    s = config.settings
    return ValidationPolicy(
        max_age_hours=s.approval_max_age_hours,
        tolerance_floor=s.amount_tolerance_floor,
        tolerance_ratio=s.amount_tolerance_ratio,
    )


def seed_approval_chains(
    session: Session,
    config: ApprovalConfigurationSet,
    actor_id: str | None = None,
    clock: Clock | None = None,
) -> list[str]:
    """Insert configured chains that do not exist yet (matched by name).

    Existing rows are left untouched, so administrator edits made in the
    database survive a re-seed.  Does not commit.

    Returns:
        Names of the chains created.
    """
    clock = clock or SystemClock()
    actor = actor_id or config.settings.system_user_id
    auditor = AuditorService(session, clock)

    existing = set(session.execute(select(ApprovalChainModel.chain_name)).scalars().all())
    created: list[str] = []

    for chain in config.chains:
        if chain.chain_name in existing:
            continue
        model = ApprovalChainModel(
            chain_name=chain.chain_name,
            operation_type=OperationType(chain.operation_type).value,
            required_roles=[Role(r).value for r in chain.required_roles],
            min_amount=chain.min_amount,
            max_amount=chain.max_amount,
            auto_approve_below=chain.auto_approve_below,
            auto_approve_same_user=chain.auto_approve_same_user,
            priority=chain.priority,
            is_active=chain.is_active,
            escalate_after_hours=chain.escalate_after_hours,
            description=chain.description or None,
            created_by=actor,
            created_at=clock.now(),
        )
        session.add(model)
        session.flush()
        auditor.record_chain_seeded(
            chain_id=model.id,
            chain_name=chain.chain_name,
            operation_type=model.operation_type,
            actor_id=actor,
            config_id=config.config_id,
            config_checksum=config.checksum,
        )
        created.append(chain.chain_name)

    logger.info(
        "approval_chains_seeded",
        extra={
            "config_id": config.config_id,
            "created_count": len(created),
            "skipped_count": len(config.chains) - len(created),
        },
    )
    return created
