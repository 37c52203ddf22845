"""
ApprovalGate -- the create-path every sensitive operation goes through.

Responsibility:
    One call for domain handlers: honour or refuse a skip request, decide
    whether approval is needed, open an approval request when it is, and
    when the caller presents an approval handle, validate it, consume it
    and run the operation in the same transaction.

Architecture position:
    Services -- composes kernel services via ApprovalOrchestrator.  Owns
    its session and transaction boundary (one session per call).

Invariants enforced:
    - Critical operation types can never skip approval; the refusal is a
      distinct error and is audited.
    - The operation callable runs only after a successful consumption, in
      the same transaction; if it raises, the consumption rolls back with
      it.
    - Denials are committed to the audit trail before the error is raised
      and are never retried with relaxed checks.

Failure modes:
    - CannotSkipApprovalError / UnauthorizedSkipError on refused skips.
    - ApprovalChainNotFoundError when approval is needed but no chain
      exists to route it.
    - ApprovalDeniedError (``reason`` = ValidationReason value) when a
      handle fails validation or consumption.
    - Errors raised by the operation callable propagate after rollback.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from sqlalchemy.orm import Session

from approval_config.schema import ApprovalConfigurationSet, ApprovalSettings
from approval_engines.skip_guard import SkipVerdict, evaluate_skip_request
from approval_kernel.domain.approval import (
    ApprovalRequest,
    ConsumptionResult,
    CreateApprovalRequest,
    OperationContext,
)
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.operations import (
    OperationType,
    estimate_approval_time,
    extract_operation_context,
)
from approval_kernel.exceptions import (
    ApprovalChainNotFoundError,
    ApprovalDeniedError,
    CannotSkipApprovalError,
    UnauthorizedSkipError,
)
from approval_kernel.logging_config import LogContext, get_logger
from approval_kernel.models.audit_event import AuditAction
from approval_services.orchestrator import ApprovalOrchestrator

logger = get_logger("services.approval_gate")


class GateStatus(str, Enum):
    AUTO_APPROVED = "auto_approved"
    APPROVAL_REQUIRED = "approval_required"
    AUTHORIZED = "authorized"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class GateOutcome:
    """What the gate did with an operation."""

    status: GateStatus
    operation_type: OperationType
    approval_request: ApprovalRequest | None = None
    consumption: ConsumptionResult | None = None
    result: Any = None
    estimated_time: str | None = None

    @property
    def executed(self) -> bool:
        return self.status != GateStatus.APPROVAL_REQUIRED


class ApprovalGate:
    """
    Entry point for executing operations under approval control.

    Contract:
        ``authorize`` opens its own session, commits on every outcome it
        returns or denial it raises, and rolls back on anything else.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        config: ApprovalConfigurationSet | None = None,
        clock: Clock | None = None,
    ):
        self._session_factory = session_factory
        self._config = config
        self._clock = clock or SystemClock()
        self._settings = config.settings if config is not None else ApprovalSettings()

    def authorize(
        self,
        operation_type: OperationType | str,
        operation_data: Mapping[str, Any],
        requested_by: str,
        *,
        approval_id: Any = None,
        operation_id: str | None = None,
        skip_approval: bool = False,
        business_context: str | None = None,
        execute: Callable[[Session], Any] | None = None,
    ) -> GateOutcome:
        """
        Route an operation through approval.

        Args:
            operation_type: Operation being attempted.
            operation_data: The operation payload.
            requested_by: User attempting the operation.
            approval_id: Handle of a granted approval, when executing one.
            operation_id: Identifier of the operation record, recorded on
                consumption.
            skip_approval: Ask to bypass approval (system identity and
                non-critical types only).
            business_context: Overrides the derived business context.
            execute: Called with the gate's session once the operation is
                authorized; its return value is ``GateOutcome.result``.
        """
        op = OperationType(operation_type)
        with LogContext.bind(actor_id=requested_by, operation_type=op.value):
            session = self._session_factory()
            try:
                services = ApprovalOrchestrator(session, self._config, self._clock)
                if skip_approval:
                    return self._skip(session, services, op, requested_by, execute)

                derived = extract_operation_context(
                    op, operation_data, self._settings.default_currency,
                )
                if approval_id is None:
                    return self._request_or_auto_approve(
                        session, services, op, operation_data, requested_by,
                        derived, business_context, execute,
                    )
                return self._execute_with_handle(
                    session, services, op, operation_data, requested_by,
                    derived, approval_id, operation_id, execute,
                )
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()

    def _skip(self, session, services, op, requested_by, execute) -> GateOutcome:
        verdict = evaluate_skip_request(op, requested_by, self._settings.system_user_id)
        if verdict != SkipVerdict.ALLOWED:
            services.security_log.record(
                entity_type="OperationType",
                entity_id=op.value,
                action=AuditAction.APPROVAL_SKIP_BLOCKED,
                description=f"Approval skip refused for {op.value}: {verdict.value}",
                actor_id=requested_by,
                new_values={"verdict": verdict.value},
            )
            session.commit()
            if verdict == SkipVerdict.CRITICAL_OPERATION:
                raise CannotSkipApprovalError(op.value, requested_by)
            raise UnauthorizedSkipError(op.value, requested_by)

        logger.warning("approval_skipped", extra={"operation_type": op.value})
        result = execute(session) if execute is not None else None
        session.commit()
        return GateOutcome(status=GateStatus.SKIPPED, operation_type=op, result=result)

    def _request_or_auto_approve(
        self, session, services, op, operation_data, requested_by,
        derived, business_context, execute,
    ) -> GateOutcome:
        if not services.resolver.requires_approval(
            op, derived.amount, derived.currency, requested_by,
        ):
            result = execute(session) if execute is not None else None
            session.commit()
            logger.info("operation_auto_approved", extra={"amount": derived.amount})
            return GateOutcome(status=GateStatus.AUTO_APPROVED, operation_type=op, result=result)

        try:
            request = services.workflow.create_approval_request(CreateApprovalRequest(
                operation_type=op,
                requested_by=requested_by,
                operation_data=operation_data,
                amount=derived.amount,
                currency=derived.currency,
                business_context=business_context or derived.business_context,
                priority=derived.priority,
            ))
        except ApprovalChainNotFoundError:
            session.commit()
            raise
        session.commit()
        return GateOutcome(
            status=GateStatus.APPROVAL_REQUIRED,
            operation_type=op,
            approval_request=request,
            estimated_time=estimate_approval_time(request.total_steps, request.priority),
        )

    def _execute_with_handle(
        self, session, services, op, operation_data, requested_by,
        derived, approval_id, operation_id, execute,
    ) -> GateOutcome:
        context = OperationContext(
            operation_type=op,
            executed_by=requested_by,
            operation_data=operation_data,
            amount=derived.amount,
            currency=derived.currency,
            operation_id=operation_id,
            entity_id=derived.entity_id,
        )

        validation = services.guard.validate_approval_request(approval_id, context)
        if not validation.is_valid:
            session.commit()
            raise ApprovalDeniedError(str(approval_id), op.value, validation.reason.value)

        consumption = services.guard.consume_approval_request(approval_id, context)
        if not consumption.success:
            session.commit()
            raise ApprovalDeniedError(str(approval_id), op.value, consumption.reason.value)

        result = execute(session) if execute is not None else None
        session.commit()
        return GateOutcome(
            status=GateStatus.AUTHORIZED,
            operation_type=op,
            approval_request=validation.approval,
            consumption=consumption,
            result=result,
        )
