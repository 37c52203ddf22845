"""
ApprovalWorkflowService -- approval request creation and decision processing.

Responsibility:
    Creates approval requests against the governing chain, advances them
    through their steps on approve / reject / escalate / delegate
    decisions, cancels them, answers inbox queries, and runs the periodic
    escalation sweep.

Architecture position:
    Kernel > Services -- imperative shell around the pure decision engine
    (``approval_engines.decisions``).  Owns every write to an approval
    request except consumption, which belongs to ConsumptionGuard.

Invariants enforced:
    - A request is created only against an active chain; no chain raises
      ApprovalChainNotFoundError (fail-closed, audited).
    - The operation payload is deep-snapshotted and checksummed at
      creation; ``get_request`` verifies the checksum on every load.
    - Decisions are serialized by ``SELECT ... FOR UPDATE`` on the
      request row and are only accepted while the request is pending or
      escalated.
    - Every decision is appended to ``approval_decisions`` and audited.

Failure modes:
    - ApprovalChainNotFoundError, ApprovalNotFoundError,
      ApprovalNotPendingError, InvalidDecisionError,
      ApprovalAuthorityError, ApprovalTamperDetectedError.
    - SQLAlchemyError propagates.

Audit relevance:
    approval_requested, approval_step_approved, approval_granted,
    approval_rejected, approval_escalated, approval_delegated and
    approval_cancelled events, one per state change.
"""

import secrets
import string
from collections.abc import Mapping
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from approval_engines.decisions import (
    DecisionEffect,
    DecisionOutcome,
    apply_decision,
    build_steps,
    can_decide,
)
from approval_kernel.domain.approval import (
    OPEN_APPROVAL_STATUSES,
    ApprovalDecision,
    ApprovalRequest,
    ApprovalStatus,
    CreateApprovalRequest,
    DecisionInput,
    EscalationSweepResult,
    UserDirectory,
)
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.operations import (
    SYSTEM_USER_ID,
    OperationType,
    Priority,
    Role,
    extract_operation_context,
)
from approval_kernel.exceptions import (
    ApprovalAuthorityError,
    ApprovalChainNotFoundError,
    ApprovalKernelError,
    ApprovalNotFoundError,
    ApprovalNotPendingError,
    ApprovalTamperDetectedError,
    InvalidDecisionError,
)
from approval_kernel.logging_config import LogContext, get_logger
from approval_kernel.models.approval import (
    ApprovalChainModel,
    ApprovalDecisionModel,
    ApprovalRequestModel,
)
from approval_kernel.models.audit_event import AuditAction
from approval_kernel.services.auditor_service import APPROVAL_REQUEST_ENTITY, AuditorService
from approval_kernel.services.chain_resolver import ApprovalChainResolver, coerce_amount
from approval_kernel.services.security_audit import SecurityAuditLog
from approval_kernel.utils.hashing import operation_checksum, snapshot_payload

logger = get_logger("services.approval")

DEFAULT_ESCALATION_HOURS = 48
DEFAULT_PAGE_SIZE = 50

_EFFECT_ACTIONS: dict[DecisionEffect, AuditAction] = {
    DecisionEffect.STEP_APPROVED: AuditAction.APPROVAL_STEP_APPROVED,
    DecisionEffect.GRANTED: AuditAction.APPROVAL_GRANTED,
    DecisionEffect.REJECTED: AuditAction.APPROVAL_REJECTED,
    DecisionEffect.ESCALATED: AuditAction.APPROVAL_ESCALATED,
    DecisionEffect.DELEGATED: AuditAction.APPROVAL_DELEGATED,
}

_BASE36 = string.digits + string.ascii_uppercase


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_request_number(now: datetime) -> str:
    """Human-readable request number: ``APR-<base36 ms timestamp>-<random>``."""
    millis = int(now.timestamp() * 1000)
    suffix = "".join(secrets.choice(_BASE36) for _ in range(5))
    return f"APR-{_to_base36(millis)}-{suffix}"


def _coerce_uuid(value: Any) -> UUID | None:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        return None


class ApprovalWorkflowService:
    """
    Approval request state machine.

    Contract:
        All methods run inside the caller's transaction.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Does NOT consume approvals (see ConsumptionGuard).
    """

    def __init__(
        self,
        session: Session,
        resolver: ApprovalChainResolver,
        auditor: AuditorService,
        security_log: SecurityAuditLog,
        users: UserDirectory,
        clock: Clock | None = None,
        default_escalation_hours: int = DEFAULT_ESCALATION_HOURS,
        system_user_id: str = SYSTEM_USER_ID,
    ):
        self._session = session
        self._resolver = resolver
        self._auditor = auditor
        self._security_log = security_log
        self._users = users
        self._clock = clock or SystemClock()
        self._default_escalation_hours = default_escalation_hours
        self._system_user_id = system_user_id

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_approval_request(self, config: CreateApprovalRequest) -> ApprovalRequest:
        """
        Create a pending approval request for an operation.

        Amount, currency, business context and priority default to the
        values derived from the operation payload.

        Raises:
            ApprovalChainNotFoundError: No active chain governs the operation.
        """
        op = OperationType(config.operation_type)
        derived = extract_operation_context(op, config.operation_data)
        amount = coerce_amount(config.amount) if config.amount is not None else derived.amount
        currency = config.currency or derived.currency
        priority = Priority(config.priority) if config.priority else derived.priority

        chain = self._resolver.find_chain(op, amount, currency)
        if chain is None:
            self._security_log.record(
                entity_type="OperationType",
                entity_id=op.value,
                action=AuditAction.APPROVAL_CHAIN_MISSING,
                description=f"Cannot create approval request: no active chain for {op.value}",
                actor_id=config.requested_by,
                new_values={"amount": amount, "currency": currency},
            )
            raise ApprovalChainNotFoundError(
                op.value, str(amount) if amount is not None else None,
            )

        steps = build_steps(chain.required_roles, self._assignee_for)
        snapshot = snapshot_payload(dict(config.operation_data))
        checksum = operation_checksum(snapshot)
        now = self._clock.now()

        model = ApprovalRequestModel(
            request_number=generate_request_number(now),
            chain_id=chain.id,
            operation_type=op.value,
            operation_data=snapshot,
            payload_checksum=checksum,
            business_context=config.business_context or derived.business_context,
            priority=priority.value,
            amount=amount,
            currency=currency,
            requested_by=config.requested_by,
            approval_history=[s.to_dict() for s in steps],
            current_step=1,
            total_steps=len(steps),
            current_approver=steps[0].approver_id,
            status=ApprovalStatus.PENDING.value,
            submitted_at=now,
            is_consumed=False,
            consumption_attempts=0,
        )
        self._session.add(model)
        self._session.flush()

        self._auditor.record_approval_requested(
            request_id=model.id,
            request_number=model.request_number,
            operation_type=op.value,
            chain_name=chain.chain_name,
            requested_by=config.requested_by,
            amount=amount,
            currency=currency,
            payload_checksum=checksum,
        )

        logger.info(
            "approval_request_created",
            extra={
                "request_id": str(model.id),
                "request_number": model.request_number,
                "operation_type": op.value,
                "chain_name": chain.chain_name,
                "total_steps": len(steps),
                "priority": priority.value,
            },
        )
        return model.to_dto()

    def _assignee_for(self, role: Role) -> str | None:
        users = self._users.active_users_with_role(role)
        if not users:
            logger.warning("approval_step_unassigned", extra={"role": role.value})
            return None
        return users[0]

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def _lock_request(self, request_id: Any) -> ApprovalRequestModel:
        rid = _coerce_uuid(request_id)
        model = None
        if rid is not None:
            model = self._session.execute(
                select(ApprovalRequestModel)
                .where(ApprovalRequestModel.id == rid)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
        if model is None:
            raise ApprovalNotFoundError(str(request_id))
        return model

    def _validate_target(self, request_id: Any, decision: DecisionInput) -> None:
        if decision.decision == ApprovalDecision.ESCALATE:
            target, label = decision.escalate_to, "escalate_to"
        elif decision.decision == ApprovalDecision.DELEGATE:
            target, label = decision.delegate_to, "delegate_to"
        else:
            return
        if not target:
            raise InvalidDecisionError(
                str(request_id), decision.decision.value, f"{label} is required",
            )
        if not self._users.get_user_roles(target):
            raise InvalidDecisionError(
                str(request_id), decision.decision.value,
                f"{label} {target} is not an active user",
            )

    def process_approval_decision(
        self,
        request_id: Any,
        decision: DecisionInput,
        decider_id: str,
    ) -> ApprovalRequest:
        """
        Apply a decision to the current step of a request.

        Raises:
            ApprovalNotFoundError: Unknown request id.
            ApprovalNotPendingError: Request is not pending or escalated.
            InvalidDecisionError: Missing or unknown reassignment target.
            ApprovalAuthorityError: Decider lacks authority over the step.
        """
        with LogContext.bind(request_id=str(request_id), actor_id=decider_id):
            model = self._lock_request(request_id)
            if ApprovalStatus(model.status) not in OPEN_APPROVAL_STATUSES:
                raise ApprovalNotPendingError(str(request_id), model.status)

            decision = DecisionInput(
                decision=ApprovalDecision(decision.decision),
                comments=decision.comments,
                escalate_to=decision.escalate_to,
                delegate_to=decision.delegate_to,
            )
            self._validate_target(request_id, decision)

            current = model.to_dto()
            chain_roles = model.chain.to_dto().required_roles
            if not can_decide(
                current, decider_id, self._users.get_user_roles(decider_id), chain_roles,
            ):
                logger.warning(
                    "approval_authority_denied",
                    extra={
                        "decider_id": decider_id,
                        "current_approver": current.current_approver,
                        "step": current.current_step,
                    },
                )
                raise ApprovalAuthorityError(str(request_id), decider_id, current.current_step)

            return self._apply(model, current, decision, decider_id)

    def _apply(
        self,
        model: ApprovalRequestModel,
        current: ApprovalRequest,
        decision: DecisionInput,
        decider_id: str,
    ) -> ApprovalRequest:
        now = self._clock.now()
        outcome: DecisionOutcome = apply_decision(
            current, decision, decider_id, now, request_id=str(model.id),
        )

        model.status = outcome.status.value
        model.current_step = outcome.current_step
        model.current_approver = outcome.current_approver
        model.approval_history = [s.to_dict() for s in outcome.approval_history]
        model.final_approver = outcome.final_approver
        model.completed_at = outcome.completed_at
        model.escalated_at = outcome.escalated_at or model.escalated_at

        self._session.add(ApprovalDecisionModel(
            request_id=model.id,
            step=current.current_step,
            decider_id=decider_id,
            decision=decision.decision.value,
            comments=decision.comments,
            escalate_to=decision.escalate_to,
            delegate_to=decision.delegate_to,
            decided_at=now,
        ))
        self._session.flush()

        self._auditor.record_decision(
            request_id=model.id,
            action=_EFFECT_ACTIONS[outcome.effect],
            decider_id=decider_id,
            step=current.current_step,
            old_status=current.status.value,
            new_status=outcome.status.value,
            comments=decision.comments,
            reassigned_to=outcome.reassigned_to,
        )

        logger.info(
            "approval_decision_processed",
            extra={
                "request_id": str(model.id),
                "decision": decision.decision.value,
                "effect": outcome.effect.value,
                "step": current.current_step,
                "new_status": outcome.status.value,
            },
        )
        return model.to_dto()

    def cancel_request(self, request_id: Any, actor_id: str, reason: str) -> ApprovalRequest:
        """
        Cancel an open request.  Only the requester or an admin may cancel.

        Raises:
            ApprovalNotFoundError, ApprovalNotPendingError, ApprovalAuthorityError.
        """
        model = self._lock_request(request_id)
        old_status = model.status
        if ApprovalStatus(old_status) not in OPEN_APPROVAL_STATUSES:
            raise ApprovalNotPendingError(str(request_id), old_status)
        if actor_id != model.requested_by and Role.ADMIN not in self._users.get_user_roles(actor_id):
            raise ApprovalAuthorityError(str(request_id), actor_id, model.current_step)

        model.status = ApprovalStatus.CANCELLED.value
        model.completed_at = self._clock.now()
        model.current_approver = None
        self._session.flush()

        self._auditor.record_decision(
            request_id=model.id,
            action=AuditAction.APPROVAL_CANCELLED,
            decider_id=actor_id,
            step=model.current_step,
            old_status=old_status,
            new_status=ApprovalStatus.CANCELLED.value,
            comments=reason,
        )
        logger.info(
            "approval_request_cancelled",
            extra={"request_id": str(model.id), "cancelled_by": actor_id},
        )
        return model.to_dto()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_request(self, request_id: Any) -> ApprovalRequest:
        """
        Load a request and verify its payload snapshot checksum.

        Raises:
            ApprovalNotFoundError: Unknown request id.
            ApprovalTamperDetectedError: Stored snapshot no longer matches
                the checksum recorded at creation (audited CRITICAL).
        """
        rid = _coerce_uuid(request_id)
        model = None
        if rid is not None:
            model = self._session.execute(
                select(ApprovalRequestModel)
                .where(ApprovalRequestModel.id == rid)
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
        if model is None:
            raise ApprovalNotFoundError(str(request_id))

        actual = operation_checksum(model.operation_data)
        if actual != model.payload_checksum:
            self._security_log.record(
                entity_type=APPROVAL_REQUEST_ENTITY,
                entity_id=model.id,
                action=AuditAction.APPROVAL_TAMPER_DETECTED,
                description=f"Stored snapshot of {model.request_number} does not match its checksum",
                actor_id=self._system_user_id,
                old_values={"payload_checksum": model.payload_checksum},
                new_values={"payload_checksum": actual},
                checksum=actual,
            )
            raise ApprovalTamperDetectedError(str(model.id), model.payload_checksum, actual)
        return model.to_dto()

    def get_pending_approvals(
        self,
        user_id: str,
        operation_type: OperationType | str | None = None,
        priority: Priority | str | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> list[ApprovalRequest]:
        """Open requests waiting on ``user_id``, newest first."""
        stmt = select(ApprovalRequestModel).where(
            ApprovalRequestModel.status.in_([s.value for s in OPEN_APPROVAL_STATUSES]),
            ApprovalRequestModel.current_approver == user_id,
        )
        if operation_type is not None:
            stmt = stmt.where(ApprovalRequestModel.operation_type == OperationType(operation_type).value)
        if priority is not None:
            stmt = stmt.where(ApprovalRequestModel.priority == Priority(priority).value)
        stmt = stmt.order_by(
            ApprovalRequestModel.submitted_at.desc(), ApprovalRequestModel.request_number,
        ).limit(limit).offset(offset)
        return [m.to_dto() for m in self._session.execute(stmt).scalars().all()]

    def get_approvals_by_status(
        self,
        status: ApprovalStatus | str,
        user_id: str | None = None,
        operation_type: OperationType | str | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> list[ApprovalRequest]:
        """Requests in ``status``; ``user_id`` matches requester, current or final approver."""
        stmt = select(ApprovalRequestModel).where(
            ApprovalRequestModel.status == ApprovalStatus(status).value,
        )
        if user_id is not None:
            stmt = stmt.where(or_(
                ApprovalRequestModel.requested_by == user_id,
                ApprovalRequestModel.current_approver == user_id,
                ApprovalRequestModel.final_approver == user_id,
            ))
        if operation_type is not None:
            stmt = stmt.where(ApprovalRequestModel.operation_type == OperationType(operation_type).value)
        stmt = stmt.order_by(
            ApprovalRequestModel.submitted_at.desc(), ApprovalRequestModel.request_number,
        ).limit(limit).offset(offset)
        return [m.to_dto() for m in self._session.execute(stmt).scalars().all()]

    # ------------------------------------------------------------------
    # Escalation sweep
    # ------------------------------------------------------------------

    def _waiting_since(self, request: ApprovalRequest) -> datetime:
        if request.current_step > 1:
            for step in request.approval_history:
                if step.step == request.current_step - 1 and step.decided_at:
                    return max(step.decided_at, request.submitted_at)
        return request.submitted_at

    def process_escalations(self) -> EscalationSweepResult:
        """
        Escalate pending requests whose current step has waited too long.

        The wait limit is the chain's ``escalate_after_hours`` or the
        configured default.  Overdue requests are escalated to the first
        active admin by the system identity.  Each escalation runs in its
        own SAVEPOINT; a failure is logged and retried on the next run.
        """
        admin = self._users.first_active_admin()
        if admin is None:
            logger.warning("escalation_sweep_no_admin")
            return EscalationSweepResult(skipped_no_admin=True)

        now = self._clock.now()
        rows = self._session.execute(
            select(ApprovalRequestModel.id, ApprovalChainModel.escalate_after_hours)
            .join(ApprovalChainModel, ApprovalRequestModel.chain_id == ApprovalChainModel.id)
            .where(ApprovalRequestModel.status == ApprovalStatus.PENDING.value)
            .order_by(ApprovalRequestModel.submitted_at)
        ).all()

        escalated: list[UUID] = []
        failed: list[UUID] = []

        for request_id, chain_hours in rows:
            hours = chain_hours if chain_hours is not None else self._default_escalation_hours
            savepoint = self._session.begin_nested()
            try:
                model = self._lock_request(request_id)
                current = model.to_dto()
                if (
                    current.status != ApprovalStatus.PENDING
                    or current.current_approver == admin
                    or now - self._waiting_since(current) <= timedelta(hours=hours)
                ):
                    savepoint.commit()
                    continue
                self._apply(
                    model,
                    current,
                    DecisionInput(
                        decision=ApprovalDecision.ESCALATE,
                        comments=f"Automatically escalated after {hours} hours without a decision",
                        escalate_to=admin,
                    ),
                    self._system_user_id,
                )
                savepoint.commit()
                escalated.append(request_id)
            except (ApprovalKernelError, SQLAlchemyError, ValueError):
                savepoint.rollback()
                logger.error(
                    "approval_escalation_failed",
                    exc_info=True,
                    extra={"request_id": str(request_id)},
                )
                failed.append(request_id)

        logger.info(
            "escalation_sweep_completed",
            extra={
                "examined": len(rows),
                "escalated": len(escalated),
                "failed": len(failed),
            },
        )
        return EscalationSweepResult(
            examined=len(rows),
            escalated=tuple(escalated),
            failed=tuple(failed),
        )
