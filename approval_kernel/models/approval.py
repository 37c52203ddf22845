"""
Module: approval_kernel.models.approval
Responsibility: ORM persistence for approval chains, approval requests and
    the append-only decision log.

Architecture position: Kernel > Models.  May import from db/base.py and
    exceptions only.

Invariants enforced:
    - Valid status / priority values: DB check constraints.
    - A consumed request is always an approved request: DB check constraint.
    - Single-use: partial unique index scoped to unconsumed approved
      requests, plus the update-guard trigger and ORM listener (see
      db/immutability.py) that freeze a consumed row.
    - Snapshot tamper evidence: operation_data and payload_checksum are
      write-once (ORM listener).
    - Decisions are append-only (ORM listener + DB trigger).

Failure modes:
    - IntegrityError on an invalid status / priority / consumed state.
    - ImmutabilityViolationError on decision UPDATE/DELETE.

Audit relevance:
    Approval requests are themselves part of the audit trail and are never
    deleted.  Decisions form the governance trail for every step.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    event,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from approval_kernel.db.base import Base, UUIDString
from approval_kernel.exceptions import ImmutabilityViolationError

if TYPE_CHECKING:
    from approval_kernel.domain.approval import (
        ApprovalChain,
        ApprovalRequest,
    )


_STATUS_CHECK = (
    "status IN ('pending', 'approved', 'rejected', 'escalated', 'cancelled')"
)
_PRIORITY_CHECK = "priority IN ('low', 'normal', 'high', 'urgent')"


class ApprovalChainModel(Base):
    """Persistent approval chain configuration.

    Contract:
        Read-only to the approval engine.  Rows are created by administrators
        or seeded from configuration (approval_config.bridges).
    """

    __tablename__ = "approval_chains"

    __table_args__ = (
        CheckConstraint(
            "min_amount IS NULL OR max_amount IS NULL OR min_amount <= max_amount",
            name="ck_approval_chains_band_order",
        ),
        Index(
            "idx_approval_chains_lookup",
            "operation_type", "is_active", "priority",
        ),
    )

    chain_name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    operation_type: Mapped[str] = mapped_column(String(50), nullable=False)
    required_roles: Mapped[list] = mapped_column(JSON, nullable=False)
    min_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    max_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    auto_approve_below: Mapped[Decimal | None] = mapped_column(nullable=True)
    auto_approve_same_user: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False,
    )
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    escalate_after_hours: Mapped[int | None] = mapped_column(Integer, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return (
            f"<ApprovalChain {self.chain_name} {self.operation_type} "
            f"[{self.min_amount}, {self.max_amount}] p={self.priority}>"
        )

    def to_dto(self) -> ApprovalChain:
        """Convert ORM model to frozen domain DTO."""
        from approval_kernel.domain.approval import ApprovalChain as ApprovalChainDTO
        from approval_kernel.domain.operations import OperationType, Role

        return ApprovalChainDTO(
            id=self.id,
            chain_name=self.chain_name,
            operation_type=OperationType(self.operation_type),
            required_roles=tuple(Role(r) for r in self.required_roles),
            min_amount=self.min_amount,
            max_amount=self.max_amount,
            auto_approve_below=self.auto_approve_below,
            auto_approve_same_user=self.auto_approve_same_user,
            priority=self.priority,
            is_active=self.is_active,
            escalate_after_hours=self.escalate_after_hours,
            description=self.description,
        )


class ApprovalRequestModel(Base):
    """Persistent approval request: the single-use authorization token.

    Contract:
        Mutated only by ApprovalWorkflowService (decisions, cancellation,
        escalation) and ConsumptionGuard (the conditional consumption
        UPDATE).  Never deleted.

    Guarantees:
        - request_number is unique.
        - is_consumed implies status = 'approved'.
        - At most one unconsumed approved row per id (partial unique index).
    """

    __tablename__ = "approval_requests"

    __table_args__ = (
        CheckConstraint(_STATUS_CHECK, name="ck_approval_requests_valid_status"),
        CheckConstraint(_PRIORITY_CHECK, name="ck_approval_requests_valid_priority"),
        CheckConstraint(
            "NOT is_consumed OR status = 'approved'",
            name="ck_approval_requests_consumed_is_approved",
        ),
        CheckConstraint(
            "current_step >= 1 AND current_step <= total_steps",
            name="ck_approval_requests_step_range",
        ),
        CheckConstraint(
            "consumption_attempts >= 0",
            name="ck_approval_requests_attempts_nonnegative",
        ),
        Index(
            "uq_approval_requests_unconsumed_approved",
            "id",
            unique=True,
            postgresql_where=text("status = 'approved' AND is_consumed = false"),
            sqlite_where=text("status = 'approved' AND is_consumed = 0"),
        ),
        Index(
            "idx_approval_requests_approver_status",
            "current_approver", "status", "submitted_at",
        ),
        Index(
            "idx_approval_requests_requester_status",
            "requested_by", "status",
        ),
        Index(
            "idx_approval_requests_status_submitted",
            "status", "submitted_at",
        ),
    )

    request_number: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)
    chain_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("approval_chains.id"),
        nullable=False,
    )
    operation_type: Mapped[str] = mapped_column(String(50), nullable=False)
    operation_data: Mapped[dict] = mapped_column(JSON, nullable=False)
    payload_checksum: Mapped[str] = mapped_column(String(32), nullable=False)
    business_context: Mapped[str | None] = mapped_column(Text, nullable=True)
    priority: Mapped[str] = mapped_column(String(10), nullable=False, default="normal")
    amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    requested_by: Mapped[str] = mapped_column(String(64), nullable=False)

    approval_history: Mapped[list] = mapped_column(JSON, nullable=False)
    current_step: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    total_steps: Mapped[int] = mapped_column(Integer, nullable=False)
    current_approver: Mapped[str | None] = mapped_column(String(64), nullable=True)
    final_approver: Mapped[str | None] = mapped_column(String(64), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")

    submitted_at: Mapped[datetime] = mapped_column(nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    escalated_at: Mapped[datetime | None] = mapped_column(nullable=True)

    is_consumed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    consumed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    consumed_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    consumed_operation_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    consumed_operation_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    consumed_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    consumed_currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    consumed_entity_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    operation_checksum: Mapped[str | None] = mapped_column(String(32), nullable=True)
    consumption_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    chain: Mapped[ApprovalChainModel] = relationship("ApprovalChainModel")

    decisions: Mapped[list[ApprovalDecisionModel]] = relationship(
        "ApprovalDecisionModel",
        back_populates="request",
        order_by="ApprovalDecisionModel.decided_at",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<ApprovalRequest {self.request_number} {self.operation_type} "
            f"status={self.status} consumed={self.is_consumed}>"
        )

    def to_dto(self) -> ApprovalRequest:
        """Convert ORM model to frozen domain DTO."""
        from approval_kernel.domain.approval import (
            ApprovalRequest as ApprovalRequestDTO,
            ApprovalStatus,
            ApprovalStep,
        )
        from approval_kernel.domain.operations import OperationType, Priority

        return ApprovalRequestDTO(
            id=self.id,
            request_number=self.request_number,
            chain_id=self.chain_id,
            operation_type=OperationType(self.operation_type),
            operation_data=self.operation_data,
            payload_checksum=self.payload_checksum,
            requested_by=self.requested_by,
            status=ApprovalStatus(self.status),
            current_step=self.current_step,
            total_steps=self.total_steps,
            approval_history=tuple(
                ApprovalStep.from_dict(s) for s in self.approval_history
            ),
            amount=self.amount,
            currency=self.currency,
            business_context=self.business_context,
            priority=Priority(self.priority),
            current_approver=self.current_approver,
            final_approver=self.final_approver,
            submitted_at=self.submitted_at,
            completed_at=self.completed_at,
            escalated_at=self.escalated_at,
            is_consumed=self.is_consumed,
            consumed_at=self.consumed_at,
            consumed_by=self.consumed_by,
            consumed_operation_id=self.consumed_operation_id,
            consumed_operation_type=self.consumed_operation_type,
            consumed_amount=self.consumed_amount,
            consumed_currency=self.consumed_currency,
            consumed_entity_id=self.consumed_entity_id,
            operation_checksum=self.operation_checksum,
            consumption_attempts=self.consumption_attempts,
        )


class ApprovalDecisionModel(Base):
    """Persistent approval decision record. Append-only.

    Contract:
        Decisions are immutable once created -- no UPDATE, no DELETE.
    """

    __tablename__ = "approval_decisions"

    __table_args__ = (
        CheckConstraint(
            "decision IN ('approve', 'reject', 'escalate', 'delegate')",
            name="ck_approval_decisions_valid_decision",
        ),
        Index("idx_approval_decisions_request", "request_id", "decided_at"),
    )

    request_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("approval_requests.id"),
        nullable=False,
    )
    step: Mapped[int] = mapped_column(Integer, nullable=False)
    decider_id: Mapped[str] = mapped_column(String(64), nullable=False)
    decision: Mapped[str] = mapped_column(String(20), nullable=False)
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    escalate_to: Mapped[str | None] = mapped_column(String(64), nullable=True)
    delegate_to: Mapped[str | None] = mapped_column(String(64), nullable=True)
    decided_at: Mapped[datetime] = mapped_column(nullable=False)

    request: Mapped[ApprovalRequestModel] = relationship(
        "ApprovalRequestModel",
        back_populates="decisions",
    )

    def __repr__(self) -> str:
        return (
            f"<ApprovalDecision request={self.request_id} step={self.step} "
            f"decision={self.decision} by={self.decider_id}>"
        )


# =============================================================================
# ORM-Level Immutability for Decisions (Append-Only)
# =============================================================================


@event.listens_for(ApprovalDecisionModel, "before_update")
def prevent_decision_update(mapper, connection, target):
    """Prevent updates to approval decision records."""
    raise ImmutabilityViolationError(
        entity_type="ApprovalDecision",
        entity_id=str(target.id),
        reason="Approval decisions are immutable -- cannot modify",
    )


@event.listens_for(ApprovalDecisionModel, "before_delete")
def prevent_decision_delete(mapper, connection, target):
    """Prevent deletion of approval decision records."""
    raise ImmutabilityViolationError(
        entity_type="ApprovalDecision",
        entity_id=str(target.id),
        reason="Approval decisions are immutable -- cannot delete",
    )
