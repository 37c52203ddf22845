"""
Module: approval_kernel.models.audit_event
Responsibility: ORM persistence for the tamper-evident audit hash chain.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Audit records are append-only; no UPDATE or DELETE (ORM + DB trigger).
    - Hash chain integrity: hash = H(entity_type | entity_id | action |
      payload_hash | prev_hash).  Validated by AuditorService.
    - seq is monotonically increasing, allocated by SequenceService.

Failure modes:
    - ImmutabilityViolationError on any UPDATE/DELETE attempt through the ORM.
    - IntegrityError / OperationalError from the DB trigger on raw SQL.
    - AuditChainBrokenError when chain validation detects a hash mismatch.

Audit relevance:
    AuditEvent IS the audit trail.  Every approval lifecycle step, every
    consumption attempt, every validation failure and every fail-closed
    trigger produces an AuditEvent.
"""

from datetime import datetime
from enum import Enum

from sqlalchemy import JSON, BigInteger, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import Base


class AuditAction(str, Enum):
    """Types of auditable actions.

    Contract: Every member represents one class of security-relevant event
    that MUST be recorded in the audit chain.
    """

    # Request lifecycle
    APPROVAL_REQUESTED = "approval_requested"
    APPROVAL_STEP_APPROVED = "approval_step_approved"
    APPROVAL_GRANTED = "approval_granted"
    APPROVAL_REJECTED = "approval_rejected"
    APPROVAL_ESCALATED = "approval_escalated"
    APPROVAL_DELEGATED = "approval_delegated"
    APPROVAL_CANCELLED = "approval_cancelled"

    # Consumption
    APPROVAL_CONSUMED = "approval_consumed"
    APPROVAL_CONSUMPTION_FAILED = "approval_consumption_failed"
    APPROVAL_VALIDATION_FAILED = "approval_validation_failed"

    # Fail-closed triggers
    APPROVAL_CHAIN_MISSING = "approval_chain_missing"
    APPROVAL_CHAIN_LOOKUP_FAILED = "approval_chain_lookup_failed"
    APPROVAL_AMOUNT_OUT_OF_BAND = "approval_amount_out_of_band"
    APPROVAL_TAMPER_DETECTED = "approval_tamper_detected"
    APPROVAL_SKIP_BLOCKED = "approval_skip_blocked"

    # Configuration
    APPROVAL_STARTUP_VALIDATED = "approval_startup_validated"
    APPROVAL_STARTUP_FAILED = "approval_startup_failed"
    APPROVAL_CHAIN_SEEDED = "approval_chain_seeded"


class AuditSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class AuditEvent(Base):
    """
    Audit event with hash chain for tamper evidence.

    Contract:
        AuditEvent rows are append-only, never updated or deleted.
        Each row's hash includes the previous row's hash, creating a
        tamper-evident chain.

    Guarantees:
        - seq is globally unique and monotonically increasing.
        - prev_hash is None only for the genesis event.

    Non-goals:
        - This model does NOT enforce hash correctness at INSERT time;
          that is the responsibility of AuditorService.
    """

    __tablename__ = "audit_events"

    __table_args__ = (
        Index("idx_audit_entity", "entity_type", "entity_id"),
        Index("idx_audit_action", "action"),
        Index("idx_audit_occurred", "occurred_at"),
        Index("idx_audit_severity", "severity"),
    )

    seq: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        unique=True,
    )

    # e.g. "ApprovalRequest", "ApprovalChain", "OperationType"
    entity_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )

    entity_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
    )

    action: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )

    actor_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
    )

    occurred_at: Mapped[datetime] = mapped_column(nullable=False)

    severity: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=AuditSeverity.INFO.value,
    )

    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    payload: Mapped[dict | None] = mapped_column(
        JSON,
        nullable=True,
    )

    payload_hash: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
    )

    prev_hash: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
    )

    # hash = H(entity_type + entity_id + action + payload_hash + prev_hash)
    hash: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<AuditEvent {self.action} on {self.entity_type}:{self.entity_id}>"

    @property
    def is_genesis(self) -> bool:
        return self.prev_hash is None

    @property
    def is_critical(self) -> bool:
        return self.severity == AuditSeverity.CRITICAL.value
