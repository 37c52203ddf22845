"""SQLAlchemy ORM models for the approval kernel."""

from approval_kernel.models.approval import (
    ApprovalChainModel,
    ApprovalDecisionModel,
    ApprovalRequestModel,
)
from approval_kernel.models.audit_event import AuditAction, AuditEvent, AuditSeverity
from approval_kernel.models.sequence import SequenceCounter
from approval_kernel.models.user import UserModel

__all__ = [
    "ApprovalChainModel",
    "ApprovalDecisionModel",
    "ApprovalRequestModel",
    "AuditAction",
    "AuditEvent",
    "AuditSeverity",
    "SequenceCounter",
    "UserModel",
]
