"""
approval_services -- Package init and public API.

Responsibility:
    Composition and process-level services over the approval kernel: the
    per-session DI container, the ApprovalGate used by domain handlers,
    the escalation scheduler and the startup bootstrap.

Architecture position:
    Services -- top layer.

    Dependency direction:
        approval_services/ -> approval_config/, approval_kernel/, approval_engines/  (allowed)
        approval_kernel/   -> approval_services/                                      (FORBIDDEN)
        approval_engines/  -> approval_services/                                      (FORBIDDEN)
"""

from approval_services.approval_gate import ApprovalGate, GateOutcome, GateStatus
from approval_services.bootstrap import (
    initialize_approval_system,
    run_startup_validation,
    seed_chains,
)
from approval_services.escalation_scheduler import EscalationScheduler
from approval_services.orchestrator import ApprovalOrchestrator

__all__ = [
    "ApprovalGate",
    "ApprovalOrchestrator",
    "EscalationScheduler",
    "GateOutcome",
    "GateStatus",
    "initialize_approval_system",
    "run_startup_validation",
    "seed_chains",
]
