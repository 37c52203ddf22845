"""
Approval domain types (``approval_kernel.domain.approval``).

Responsibility
--------------
Pure value objects for the approval engine.  Defines the request
lifecycle state machine, chain configuration, step records, decision
inputs, execution contexts, and the explicit result types returned by
validation and consumption.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, or outer layers.  May import only from
``domain/operations``.

Invariants enforced
-------------------
* ``APPROVAL_TRANSITIONS`` defines the only valid status transitions.
  Terminal states have no outgoing edges.
* ``ApprovalChain.band_contains`` treats both bounds as inclusive and a
  missing bound as unbounded; a missing amount always matches.
* ``ApprovalRequest.is_consumable`` is true only for an approved,
  unconsumed request.
* Expected business-rule failures (mismatch, replay, expiry, lost race)
  are values (``ValidationResult``, ``ConsumptionResult``), never
  exceptions.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Protocol
from uuid import UUID

from approval_kernel.domain.operations import (
    Criticality,
    OperationType,
    Priority,
    Role,
)


# =========================================================================
# Approval Status Lifecycle
# =========================================================================


class ApprovalStatus(str, Enum):
    """Approval request lifecycle states."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    ESCALATED = "escalated"
    CANCELLED = "cancelled"


APPROVAL_TRANSITIONS: dict[ApprovalStatus, frozenset[ApprovalStatus]] = {
    ApprovalStatus.PENDING: frozenset({
        ApprovalStatus.PENDING,
        ApprovalStatus.APPROVED,
        ApprovalStatus.REJECTED,
        ApprovalStatus.ESCALATED,
        ApprovalStatus.CANCELLED,
    }),
    ApprovalStatus.ESCALATED: frozenset({
        ApprovalStatus.PENDING,
        ApprovalStatus.APPROVED,
        ApprovalStatus.REJECTED,
        ApprovalStatus.ESCALATED,
        ApprovalStatus.CANCELLED,
    }),
    ApprovalStatus.APPROVED: frozenset(),
    ApprovalStatus.REJECTED: frozenset(),
    ApprovalStatus.CANCELLED: frozenset(),
}

TERMINAL_APPROVAL_STATUSES: frozenset[ApprovalStatus] = frozenset({
    ApprovalStatus.APPROVED,
    ApprovalStatus.REJECTED,
    ApprovalStatus.CANCELLED,
})

OPEN_APPROVAL_STATUSES: frozenset[ApprovalStatus] = frozenset({
    ApprovalStatus.PENDING,
    ApprovalStatus.ESCALATED,
})


def is_valid_transition(current: ApprovalStatus, target: ApprovalStatus) -> bool:
    return target in APPROVAL_TRANSITIONS.get(current, frozenset())


class ApprovalDecision(str, Enum):
    """Decision types that an approver can make."""

    APPROVE = "approve"
    REJECT = "reject"
    ESCALATE = "escalate"
    DELEGATE = "delegate"


# =========================================================================
# Chain configuration
# =========================================================================


@dataclass(frozen=True)
class ApprovalChain:
    """An amount-banded, ordered list of roles that must sign off.

    ``min_amount`` and ``max_amount`` are inclusive; None is unbounded.
    Higher ``priority`` wins when several active chains match.
    """

    id: UUID
    chain_name: str
    operation_type: OperationType
    required_roles: tuple[Role, ...]
    min_amount: Decimal | None = None
    max_amount: Decimal | None = None
    auto_approve_below: Decimal | None = None
    auto_approve_same_user: bool = False
    priority: int = 1
    is_active: bool = True
    escalate_after_hours: int | None = None
    description: str | None = None

    def band_contains(self, amount: Decimal | None) -> bool:
        if amount is None:
            return True
        if self.min_amount is not None and amount < self.min_amount:
            return False
        if self.max_amount is not None and amount > self.max_amount:
            return False
        return True

    @property
    def is_bounded(self) -> bool:
        return self.min_amount is not None and self.max_amount is not None


# =========================================================================
# Steps and requests
# =========================================================================


@dataclass(frozen=True)
class ApprovalStep:
    """One position in a request's approval history. Immutable; replaced on change."""

    step: int
    role: Role
    approver_id: str | None = None
    decision: ApprovalDecision | None = None
    comments: str | None = None
    decided_at: datetime | None = None
    escalated_from: str | None = None
    delegated_from: str | None = None

    @property
    def is_decided(self) -> bool:
        return self.decision in (ApprovalDecision.APPROVE, ApprovalDecision.REJECT)

    def with_changes(self, **changes: Any) -> ApprovalStep:
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "step": self.step,
            "role": self.role.value,
            "approver_id": self.approver_id,
            "decision": self.decision.value if self.decision else None,
            "comments": self.comments,
            "decided_at": self.decided_at.isoformat() if self.decided_at else None,
            "escalated_from": self.escalated_from,
            "delegated_from": self.delegated_from,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ApprovalStep:
        decided_at = data.get("decided_at")
        decision = data.get("decision")
        return cls(
            step=int(data["step"]),
            role=Role(data["role"]),
            approver_id=data.get("approver_id"),
            decision=ApprovalDecision(decision) if decision else None,
            comments=data.get("comments"),
            decided_at=datetime.fromisoformat(decided_at) if decided_at else None,
            escalated_from=data.get("escalated_from"),
            delegated_from=data.get("delegated_from"),
        )


@dataclass(frozen=True)
class ApprovalRequest:
    """Immutable snapshot of an approval request (the authorization token).

    ``operation_data`` is the deep snapshot taken at creation and
    ``payload_checksum`` its fingerprint; both are write-once.
    """

    id: UUID
    request_number: str
    chain_id: UUID
    operation_type: OperationType
    operation_data: Mapping[str, Any]
    payload_checksum: str
    requested_by: str
    status: ApprovalStatus
    current_step: int
    total_steps: int
    approval_history: tuple[ApprovalStep, ...] = ()
    amount: Decimal | None = None
    currency: str | None = None
    business_context: str | None = None
    priority: Priority = Priority.NORMAL
    current_approver: str | None = None
    final_approver: str | None = None
    submitted_at: datetime | None = None
    completed_at: datetime | None = None
    escalated_at: datetime | None = None
    is_consumed: bool = False
    consumed_at: datetime | None = None
    consumed_by: str | None = None
    consumed_operation_id: str | None = None
    consumed_operation_type: str | None = None
    consumed_amount: Decimal | None = None
    consumed_currency: str | None = None
    consumed_entity_id: str | None = None
    operation_checksum: str | None = None
    consumption_attempts: int = 0

    @property
    def is_consumable(self) -> bool:
        return self.status == ApprovalStatus.APPROVED and not self.is_consumed

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_APPROVAL_STATUSES

    @property
    def current_step_record(self) -> ApprovalStep | None:
        for step in self.approval_history:
            if step.step == self.current_step:
                return step
        return None


# =========================================================================
# Inputs
# =========================================================================


@dataclass(frozen=True)
class CreateApprovalRequest:
    """Input to ``create_approval_request``."""

    operation_type: OperationType
    requested_by: str
    operation_data: Mapping[str, Any]
    amount: Decimal | None = None
    currency: str | None = None
    business_context: str | None = None
    priority: Priority | None = None


@dataclass(frozen=True)
class DecisionInput:
    """A decision submitted against the current step of a request."""

    decision: ApprovalDecision
    comments: str | None = None
    escalate_to: str | None = None
    delegate_to: str | None = None


@dataclass(frozen=True)
class OperationContext:
    """The operation a caller is about to execute under an approval handle.

    ``executed_by`` must be the user who requested the approval.
    """

    operation_type: OperationType
    executed_by: str
    operation_data: Mapping[str, Any] = field(default_factory=dict)
    amount: Decimal | None = None
    currency: str | None = None
    operation_id: str | None = None
    entity_id: str | None = None


# =========================================================================
# Results
# =========================================================================


class ValidationReason(str, Enum):
    """Machine-readable failure reasons for validation and consumption."""

    APPROVAL_NOT_FOUND = "approval_not_found"
    ALREADY_CONSUMED = "already_consumed"
    NOT_APPROVED = "not_approved"
    OPERATION_TYPE_MISMATCH = "operation_type_mismatch"
    REQUESTER_MISMATCH = "requester_mismatch"
    AMOUNT_MISMATCH = "amount_mismatch"
    CURRENCY_MISMATCH = "currency_mismatch"
    APPROVAL_EXPIRED = "approval_expired"
    CORE_FIELD_MISMATCH = "core_field_mismatch"
    VALIDATION_ERROR = "validation_error"
    RACE_CONDITION_DETECTED = "race_condition_detected"


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of validating an approval handle against an operation."""

    is_valid: bool
    reason: ValidationReason | None = None
    message: str = ""
    approval: ApprovalRequest | None = None
    mismatched_fields: tuple[str, ...] = ()

    @classmethod
    def ok(cls, approval: ApprovalRequest) -> ValidationResult:
        return cls(is_valid=True, approval=approval)

    @classmethod
    def fail(
        cls,
        reason: ValidationReason,
        message: str,
        approval: ApprovalRequest | None = None,
        mismatched_fields: tuple[str, ...] = (),
    ) -> ValidationResult:
        return cls(
            is_valid=False,
            reason=reason,
            message=message,
            approval=approval,
            mismatched_fields=mismatched_fields,
        )


@dataclass(frozen=True)
class ConsumptionResult:
    """Outcome of the single-use consumption update."""

    success: bool
    reason: ValidationReason | None = None
    message: str = ""
    operation_checksum: str | None = None
    checksum_matches_approval: bool | None = None


# =========================================================================
# Startup validation and coverage
# =========================================================================


@dataclass(frozen=True)
class RequiredChainSpec:
    """An operation type that must have an active chain at boot."""

    operation_type: OperationType
    criticality: Criticality
    required_roles: tuple[Role, ...]
    max_auto_approve: Decimal | None = None
    description: str = ""

    @property
    def is_critical(self) -> bool:
        return self.criticality == Criticality.CRITICAL


@dataclass(frozen=True)
class StartupValidationReport:
    """Result of the boot-time chain check."""

    is_valid: bool
    errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    missing_critical: tuple[OperationType, ...] = ()
    missing_non_critical: tuple[OperationType, ...] = ()
    checked_at: datetime | None = None


@dataclass(frozen=True)
class ChainCoverage:
    operation_type: OperationType
    criticality: Criticality
    active_chains: int


@dataclass(frozen=True)
class ChainCoverageReport:
    """Per-operation-type chain counts for required operation types."""

    coverage: tuple[ChainCoverage, ...]
    missing_critical: tuple[OperationType, ...]

    @property
    def covered_count(self) -> int:
        return sum(1 for c in self.coverage if c.active_chains > 0)

    @property
    def coverage_percentage(self) -> float:
        if not self.coverage:
            return 100.0
        return round(100.0 * self.covered_count / len(self.coverage), 2)


@dataclass(frozen=True)
class EscalationSweepResult:
    """Counts from one run of the escalation sweep."""

    examined: int = 0
    escalated: tuple[UUID, ...] = ()
    failed: tuple[UUID, ...] = ()
    skipped_no_admin: bool = False


# =========================================================================
# UserDirectory Protocol
# =========================================================================


class UserDirectory(Protocol):
    """Pluggable interface for user/role lookups."""

    def active_users_with_role(self, role: Role) -> tuple[str, ...]:
        """Return active user ids holding ``role``, in deterministic order."""
        ...

    def get_user_roles(self, user_id: str) -> tuple[Role, ...]:
        """Return the roles held by an active user (empty if unknown/inactive)."""
        ...

    def first_active_admin(self) -> str | None:
        """Return the first active admin, or None."""
        ...
