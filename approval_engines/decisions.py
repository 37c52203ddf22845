"""
approval_engines.decisions -- Pure approval state machine transitions.

Responsibility:
    Compute step assignments for a new request, decide whether a user may
    act on a request's current step, and compute the next state of a
    request for an approve / reject / escalate / delegate decision.

Architecture position:
    Engines -- pure decision layer, zero I/O.  ``now`` is passed in.
    May only import approval_kernel/domain/ types.

Invariants enforced:
    - Sequential chain: only the current step is ever decided; ``approve``
      advances exactly one step.
    - ``escalate`` keeps the step index and reassigns the approver with
      ``escalated_from`` provenance; status becomes ``escalated``.
    - ``delegate`` reassigns the approver with ``delegated_from``
      provenance; status returns to ``pending``.  It completes nothing.
    - Authority = current approver, OR admin, OR holder of a role in the
      chain's required roles.

Failure modes:
    - ValueError on precondition violations (closed request, missing
      reassignment target).  Services validate first and raise typed
      errors; the ValueError is a last line of defence.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from approval_engines.tracer import traced_engine
from approval_kernel.domain.approval import (
    OPEN_APPROVAL_STATUSES,
    ApprovalDecision,
    ApprovalRequest,
    ApprovalStatus,
    ApprovalStep,
    DecisionInput,
    is_valid_transition,
)
from approval_kernel.domain.operations import Role


class DecisionEffect(str, Enum):
    """What a decision did to the request, for auditing."""

    STEP_APPROVED = "step_approved"
    GRANTED = "granted"
    REJECTED = "rejected"
    ESCALATED = "escalated"
    DELEGATED = "delegated"


@dataclass(frozen=True)
class DecisionOutcome:
    """Next state of a request after one decision."""

    effect: DecisionEffect
    status: ApprovalStatus
    current_step: int
    current_approver: str | None
    approval_history: tuple[ApprovalStep, ...]
    final_approver: str | None = None
    completed_at: datetime | None = None
    escalated_at: datetime | None = None
    reassigned_to: str | None = None


def build_steps(
    required_roles: Iterable[Role],
    assignee_for: Callable[[Role], str | None],
) -> tuple[ApprovalStep, ...]:
    """One step per required role, in order, with its assigned approver.

    ``assignee_for`` returns the user to assign for a role, or None when
    no active user holds it (an admin can still decide that step).
    """
    return tuple(
        ApprovalStep(step=index, role=Role(role), approver_id=assignee_for(Role(role)))
        for index, role in enumerate(required_roles, start=1)
    )


def can_decide(
    approval: ApprovalRequest,
    decider_id: str,
    decider_roles: Iterable[Role],
    chain_roles: Iterable[Role],
) -> bool:
    """Whether ``decider_id`` has authority over the current step."""
    if approval.current_approver is not None and decider_id == approval.current_approver:
        return True
    roles = set(decider_roles)
    if Role.ADMIN in roles:
        return True
    return bool(roles & set(chain_roles))


def _replace_step(
    history: tuple[ApprovalStep, ...],
    step_number: int,
    **changes,
) -> tuple[ApprovalStep, ...]:
    return tuple(
        s.with_changes(**changes) if s.step == step_number else s
        for s in history
    )


def _step(history: tuple[ApprovalStep, ...], number: int) -> ApprovalStep | None:
    for s in history:
        if s.step == number:
            return s
    return None


@traced_engine(
    "approval_decision", "1.0",
    fingerprint_fields=("request_id", "decision", "decider_id"),
)
def apply_decision(
    approval: ApprovalRequest,
    decision: DecisionInput,
    decider_id: str,
    now: datetime,
    *,
    request_id: str | None = None,
) -> DecisionOutcome:
    """Compute the request state after ``decision`` by ``decider_id``.

    ``request_id`` feeds the trace fingerprint only.
    """
    if approval.status not in OPEN_APPROVAL_STATUSES:
        raise ValueError(f"Request {approval.id} is {approval.status.value}")

    history = approval.approval_history
    step_no = approval.current_step
    current = _step(history, step_no)
    previous_approver = (
        current.approver_id if current and current.approver_id else approval.current_approver
    )

    if decision.decision == ApprovalDecision.REJECT:
        outcome = DecisionOutcome(
            effect=DecisionEffect.REJECTED,
            status=ApprovalStatus.REJECTED,
            current_step=step_no,
            current_approver=None,
            approval_history=_replace_step(
                history, step_no,
                approver_id=decider_id,
                decision=ApprovalDecision.REJECT,
                comments=decision.comments,
                decided_at=now,
            ),
            final_approver=decider_id,
            completed_at=now,
        )

    elif decision.decision == ApprovalDecision.ESCALATE:
        if not decision.escalate_to:
            raise ValueError("escalate requires escalate_to")
        outcome = DecisionOutcome(
            effect=DecisionEffect.ESCALATED,
            status=ApprovalStatus.ESCALATED,
            current_step=step_no,
            current_approver=decision.escalate_to,
            approval_history=_replace_step(
                history, step_no,
                approver_id=decision.escalate_to,
                escalated_from=previous_approver or decider_id,
                comments=decision.comments,
            ),
            escalated_at=now,
            reassigned_to=decision.escalate_to,
        )

    elif decision.decision == ApprovalDecision.DELEGATE:
        if not decision.delegate_to:
            raise ValueError("delegate requires delegate_to")
        outcome = DecisionOutcome(
            effect=DecisionEffect.DELEGATED,
            status=ApprovalStatus.PENDING,
            current_step=step_no,
            current_approver=decision.delegate_to,
            approval_history=_replace_step(
                history, step_no,
                approver_id=decision.delegate_to,
                delegated_from=previous_approver or decider_id,
                comments=decision.comments,
            ),
            escalated_at=approval.escalated_at,
            reassigned_to=decision.delegate_to,
        )

    else:
        decided = _replace_step(
            history, step_no,
            approver_id=decider_id,
            decision=ApprovalDecision.APPROVE,
            comments=decision.comments,
            decided_at=now,
        )
        if step_no >= approval.total_steps:
            outcome = DecisionOutcome(
                effect=DecisionEffect.GRANTED,
                status=ApprovalStatus.APPROVED,
                current_step=step_no,
                current_approver=None,
                approval_history=decided,
                final_approver=decider_id,
                completed_at=now,
                escalated_at=approval.escalated_at,
            )
        else:
            next_step = _step(decided, step_no + 1)
            outcome = DecisionOutcome(
                effect=DecisionEffect.STEP_APPROVED,
                status=ApprovalStatus.PENDING,
                current_step=step_no + 1,
                current_approver=next_step.approver_id if next_step else None,
                approval_history=decided,
                escalated_at=approval.escalated_at,
            )

    if not is_valid_transition(approval.status, outcome.status):
        raise ValueError(
            f"Invalid transition {approval.status.value} -> {outcome.status.value}"
        )
    return outcome
