"""
approval_services.orchestrator -- DI container for the approval kernel services.

Responsibility:
    Creates every kernel service for one session exactly once and wires
    them together.  No kernel service creates other services internally.

Architecture position:
    Services -- composition over the kernel.  The only place where the
    approval kernel services are constructed and composed.

Invariants enforced:
    - Single-instance lifecycle: one AuditorService (and therefore one
      audit sequence allocator) per session.
    - Configuration reaches the kernel only through approval_config.bridges.

Usage:
    orchestrator = ApprovalOrchestrator(session, config=get_active_config())
    orchestrator.resolver.requires_approval(...)
    orchestrator.workflow.create_approval_request(...)
    orchestrator.guard.consume_approval_request(...)
"""

from __future__ import annotations

from sqlalchemy.orm import Session

from approval_config.bridges import build_required_chain_specs, build_validation_policy
from approval_config.schema import ApprovalConfigurationSet, ApprovalSettings
from approval_engines.tamper import DEFAULT_VALIDATION_POLICY
from approval_kernel.domain.approval import UserDirectory
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.services.approval_service import ApprovalWorkflowService
from approval_kernel.services.auditor_service import AuditorService
from approval_kernel.services.chain_resolver import ApprovalChainResolver
from approval_kernel.services.consumption_guard import ConsumptionGuard
from approval_kernel.services.security_audit import SecurityAuditLog
from approval_kernel.services.startup_validator import (
    DEFAULT_REQUIRED_CHAINS,
    StartupChainValidator,
)
from approval_kernel.services.user_directory import SqlUserDirectory


class ApprovalOrchestrator:
    """All approval kernel services bound to one session."""

    def __init__(
        self,
        session: Session,
        config: ApprovalConfigurationSet | None = None,
        clock: Clock | None = None,
        users: UserDirectory | None = None,
    ):
        self.session = session
        self.config = config
        self.clock = clock or SystemClock()
        self.settings = config.settings if config is not None else ApprovalSettings()

        policy = build_validation_policy(config) if config is not None else DEFAULT_VALIDATION_POLICY
        required = (
            build_required_chain_specs(config)
            if config is not None and config.required_chains
            else DEFAULT_REQUIRED_CHAINS
        )

        self.auditor = AuditorService(session, self.clock)
        self.security_log = SecurityAuditLog(session, self.auditor)
        self.users = users if users is not None else SqlUserDirectory(session)
        self.resolver = ApprovalChainResolver(session, self.security_log)
        self.workflow = ApprovalWorkflowService(
            session,
            self.resolver,
            self.auditor,
            self.security_log,
            self.users,
            self.clock,
            default_escalation_hours=self.settings.default_escalation_hours,
            system_user_id=self.settings.system_user_id,
        )
        self.guard = ConsumptionGuard(
            session,
            self.auditor,
            self.security_log,
            self.clock,
            policy,
        )
        self.startup_validator = StartupChainValidator(
            session,
            self.resolver,
            self.auditor,
            self.security_log,
            self.clock,
            required_chains=required,
            system_user_id=self.settings.system_user_id,
        )
