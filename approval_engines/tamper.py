"""
approval_engines.tamper -- Pure checks that an approval matches an operation.

Responsibility:
    Decide whether an approved request may authorize the operation a
    caller is about to execute: replay state, status, operation type,
    requester, amount within tolerance, currency, age, and equality of the
    operation type's core fields.

Architecture position:
    Engines -- pure decision layer, zero I/O.  ``now`` is passed in.
    May only import approval_kernel/domain/ types and utils.

Invariants enforced:
    - Checks run in a fixed order and the first failure wins; a result is
      never partially valid.
    - Amount tolerance is ``max(floor, ratio * |approved|)``; a difference
      equal to the tolerance passes, anything above fails.
    - An approval that recorded an amount requires the execution to carry
      one.
    - Age is measured from ``completed_at`` (else ``submitted_at``); an
      approval older than ``max_age_hours`` fails even if never used.
    - Core fields: numbers compare with the same tolerance, everything
      else by exact text; a field missing on both sides matches.

Failure modes:
    - Returns ``ValidationResult(is_valid=False, reason=...)``; never
      raises for business-rule failures.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any

from approval_engines.tracer import traced_engine
from approval_kernel.domain.approval import (
    ApprovalRequest,
    ApprovalStatus,
    OperationContext,
    ValidationReason,
    ValidationResult,
)
from approval_kernel.domain.operations import get_operation_spec, parse_amount, resolve_field
from approval_kernel.utils.hashing import canonicalize_json


@dataclass(frozen=True)
class ValidationPolicy:
    """Tunables for approval validation."""

    max_age_hours: int = 24
    tolerance_floor: Decimal = Decimal("0.01")
    tolerance_ratio: Decimal = Decimal("0.001")


DEFAULT_VALIDATION_POLICY = ValidationPolicy()


def amount_tolerance(
    approved: Decimal,
    policy: ValidationPolicy = DEFAULT_VALIDATION_POLICY,
) -> Decimal:
    return max(policy.tolerance_floor, policy.tolerance_ratio * abs(approved))


def amounts_match(
    approved: Decimal,
    executed: Decimal,
    policy: ValidationPolicy = DEFAULT_VALIDATION_POLICY,
) -> bool:
    return abs(executed - approved) <= amount_tolerance(approved, policy)


def approval_reference_time(approval: ApprovalRequest) -> datetime | None:
    return approval.completed_at or approval.submitted_at


def is_expired(
    approval: ApprovalRequest,
    now: datetime,
    policy: ValidationPolicy = DEFAULT_VALIDATION_POLICY,
) -> bool:
    reference = approval_reference_time(approval)
    if reference is None:
        return True
    return now - reference > timedelta(hours=policy.max_age_hours)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


def _as_text(value: Any) -> str:
    if isinstance(value, (dict, list)):
        return canonicalize_json(value)
    return str(value)


def core_values_match(
    approved: Any,
    executed: Any,
    policy: ValidationPolicy = DEFAULT_VALIDATION_POLICY,
) -> bool:
    """Compare one core field value between approval and execution."""
    if approved is None and executed is None:
        return True
    if approved is None or executed is None:
        return False

    if _is_number(approved) or _is_number(executed):
        approved_num = parse_amount(approved)
        executed_num = parse_amount(executed)
        if approved_num is not None and executed_num is not None:
            return amounts_match(approved_num, executed_num, policy)

    return _as_text(approved) == _as_text(executed)


def compare_core_fields(
    operation_type: Any,
    approved_data: Mapping[str, Any],
    executed_data: Mapping[str, Any],
    policy: ValidationPolicy = DEFAULT_VALIDATION_POLICY,
) -> tuple[str, ...]:
    """Names of the operation type's core fields that differ."""
    spec = get_operation_spec(operation_type)
    return tuple(
        name
        for name in spec.core_fields
        if not core_values_match(
            resolve_field(approved_data, name),
            resolve_field(executed_data, name),
            policy,
        )
    )


@traced_engine(
    "approval_validation", "1.0",
    fingerprint_fields=("approval_id", "operation_type", "executed_by"),
)
def evaluate_approval_for_operation(
    approval: ApprovalRequest,
    context: OperationContext,
    now: datetime,
    policy: ValidationPolicy = DEFAULT_VALIDATION_POLICY,
    *,
    approval_id: str | None = None,
    operation_type: str | None = None,
    executed_by: str | None = None,
) -> ValidationResult:
    """Run the ordered validation checks on a loaded approval.

    The keyword-only identifiers feed the trace fingerprint only.
    """
    if approval.is_consumed:
        return ValidationResult.fail(
            ValidationReason.ALREADY_CONSUMED,
            f"Approval {approval.request_number} has already been consumed",
            approval,
        )

    if approval.status != ApprovalStatus.APPROVED:
        return ValidationResult.fail(
            ValidationReason.NOT_APPROVED,
            f"Approval {approval.request_number} is {approval.status.value}, not approved",
            approval,
        )

    if context.operation_type != approval.operation_type:
        return ValidationResult.fail(
            ValidationReason.OPERATION_TYPE_MISMATCH,
            f"Approval is for {approval.operation_type.value}, "
            f"not {getattr(context.operation_type, 'value', context.operation_type)}",
            approval,
        )

    if context.executed_by != approval.requested_by:
        return ValidationResult.fail(
            ValidationReason.REQUESTER_MISMATCH,
            "Approval was requested by a different user",
            approval,
        )

    if approval.amount is not None:
        if context.amount is None:
            return ValidationResult.fail(
                ValidationReason.AMOUNT_MISMATCH,
                f"Approval covers {approval.amount} but the operation carries no amount",
                approval,
            )
        if not amounts_match(approval.amount, context.amount, policy):
            return ValidationResult.fail(
                ValidationReason.AMOUNT_MISMATCH,
                f"Operation amount {context.amount} differs from approved "
                f"amount {approval.amount} beyond tolerance "
                f"{amount_tolerance(approval.amount, policy)}",
                approval,
            )

    if (
        approval.currency is not None
        and context.currency is not None
        and approval.currency != context.currency
    ):
        return ValidationResult.fail(
            ValidationReason.CURRENCY_MISMATCH,
            f"Approval currency {approval.currency} differs from {context.currency}",
            approval,
        )

    if is_expired(approval, now, policy):
        return ValidationResult.fail(
            ValidationReason.APPROVAL_EXPIRED,
            f"Approval {approval.request_number} is older than "
            f"{policy.max_age_hours} hours",
            approval,
        )

    mismatched = compare_core_fields(
        approval.operation_type,
        approval.operation_data,
        context.operation_data,
        policy,
    )
    if mismatched:
        return ValidationResult.fail(
            ValidationReason.CORE_FIELD_MISMATCH,
            f"Core fields changed since approval: {', '.join(mismatched)}",
            approval,
            mismatched_fields=mismatched,
        )

    return ValidationResult.ok(approval)
