"""Services for the approval kernel (write side)."""

from approval_kernel.services.approval_service import ApprovalWorkflowService
from approval_kernel.services.auditor_service import AuditorService, AuditTrace, AuditTraceEntry
from approval_kernel.services.chain_resolver import ApprovalChainResolver
from approval_kernel.services.consumption_guard import ConsumptionGuard
from approval_kernel.services.security_audit import SecurityAuditLog
from approval_kernel.services.sequence_service import SequenceService
from approval_kernel.services.startup_validator import (
    DEFAULT_REQUIRED_CHAINS,
    StartupChainValidator,
)
from approval_kernel.services.user_directory import SqlUserDirectory

__all__ = [
    "ApprovalChainResolver",
    "ApprovalWorkflowService",
    "AuditTrace",
    "AuditTraceEntry",
    "AuditorService",
    "ConsumptionGuard",
    "DEFAULT_REQUIRED_CHAINS",
    "SecurityAuditLog",
    "SequenceService",
    "SqlUserDirectory",
    "StartupChainValidator",
]
