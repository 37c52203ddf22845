"""
ConsumptionGuard -- validation and single-use consumption of approvals.

Responsibility:
    Confirms that an approved request authorizes exactly the operation
    about to execute, then atomically marks it consumed so it can never
    authorize anything again.

Architecture position:
    Kernel > Services -- imperative shell around the pure validation engine
    (``approval_engines.tamper``).  Called by ApprovalGate and by domain
    handlers executing an approved operation.

Invariants enforced:
    - Validation never mutates the request.
    - Consumption is a single conditional UPDATE
      (``WHERE id = :id AND is_consumed = false AND status = 'approved'``);
      the database is the sole arbiter between concurrent consumers and a
      lost race is never retried.
    - Every validation failure and every failed consumption emits a
      CRITICAL security event.

Failure modes:
    - Business-rule failures are returned as ValidationResult /
      ConsumptionResult values, never raised.
    - Store errors during validation become ``validation_error``
      (fail-closed); store errors during consumption propagate.

Audit relevance:
    approval_validation_failed, approval_consumed and
    approval_consumption_failed events.
"""

from typing import Any
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from approval_engines.tamper import (
    DEFAULT_VALIDATION_POLICY,
    ValidationPolicy,
    evaluate_approval_for_operation,
)
from approval_kernel.domain.approval import (
    ApprovalStatus,
    ConsumptionResult,
    OperationContext,
    ValidationReason,
    ValidationResult,
)
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.operations import (
    OperationType,
    extract_amount,
    extract_entity_id,
    get_operation_spec,
    resolve_field,
)
from approval_kernel.logging_config import LogContext, get_logger
from approval_kernel.models.approval import ApprovalRequestModel
from approval_kernel.models.audit_event import AuditAction
from approval_kernel.services.auditor_service import APPROVAL_REQUEST_ENTITY, AuditorService
from approval_kernel.services.chain_resolver import coerce_amount
from approval_kernel.services.security_audit import SecurityAuditLog
from approval_kernel.utils.hashing import operation_checksum, snapshot_payload

logger = get_logger("services.consumption_guard")


def _coerce_uuid(value: Any) -> UUID | None:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        return None


def normalize_context(context: OperationContext) -> OperationContext:
    """
    Fill amount, currency and entity id from the operation payload when the
    caller did not pass them explicitly.
    """
    op = OperationType(context.operation_type)
    data = context.operation_data or {}
    amount = coerce_amount(context.amount) if context.amount is not None else extract_amount(op, data)
    currency = context.currency
    if currency is None:
        spec = get_operation_spec(op)
        if spec.currency_field:
            value = resolve_field(data, spec.currency_field)
            currency = str(value) if value not in (None, "") else None
    return OperationContext(
        operation_type=op,
        executed_by=context.executed_by,
        operation_data=data,
        amount=amount,
        currency=currency,
        operation_id=context.operation_id,
        entity_id=context.entity_id or extract_entity_id(op, data),
    )


class ConsumptionGuard:
    """
    Validates and consumes approved requests.

    Non-goals:
        - Does NOT call ``session.commit()``; the caller commits the
          consumption together with the operation it authorizes.
    """

    def __init__(
        self,
        session: Session,
        auditor: AuditorService,
        security_log: SecurityAuditLog,
        clock: Clock | None = None,
        policy: ValidationPolicy = DEFAULT_VALIDATION_POLICY,
    ):
        self._session = session
        self._auditor = auditor
        self._security_log = security_log
        self._clock = clock or SystemClock()
        self._policy = policy

    def _load(self, approval_id: UUID) -> ApprovalRequestModel | None:
        return self._session.execute(
            select(ApprovalRequestModel)
            .where(ApprovalRequestModel.id == approval_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def validate_approval_request(
        self,
        approval_id: Any,
        context: OperationContext,
    ) -> ValidationResult:
        """
        Check that approval ``approval_id`` authorizes ``context``.

        Returns the first failing check (see ``ValidationReason``) or a
        valid result carrying the approval.  Never raises for store
        errors; they yield ``validation_error``.
        """
        context = normalize_context(context)
        with LogContext.bind(
            request_id=str(approval_id),
            actor_id=context.executed_by,
            operation_type=context.operation_type.value,
        ):
            result = self._validate(approval_id, context)
            if result.is_valid:
                logger.info(
                    "approval_validated",
                    extra={"request_number": result.approval.request_number},
                )
            else:
                self._security_log.record(
                    entity_type=APPROVAL_REQUEST_ENTITY,
                    entity_id=approval_id,
                    action=AuditAction.APPROVAL_VALIDATION_FAILED,
                    description=result.message,
                    actor_id=context.executed_by,
                    new_values={
                        "reason": result.reason.value,
                        "operation_type": context.operation_type.value,
                        "amount": context.amount,
                        "currency": context.currency,
                        "mismatched_fields": list(result.mismatched_fields),
                    },
                )
            return result

    def _validate(self, approval_id: Any, context: OperationContext) -> ValidationResult:
        rid = _coerce_uuid(approval_id)
        if rid is None:
            return ValidationResult.fail(
                ValidationReason.APPROVAL_NOT_FOUND,
                f"Approval {approval_id} not found",
            )
        try:
            model = self._load(rid)
            if model is None:
                return ValidationResult.fail(
                    ValidationReason.APPROVAL_NOT_FOUND,
                    f"Approval {approval_id} not found",
                )
            approval = model.to_dto()
        except SQLAlchemyError as exc:
            logger.critical(
                "approval_validation_store_error",
                exc_info=exc,
                extra={"approval_id": str(approval_id)},
            )
            return ValidationResult.fail(
                ValidationReason.VALIDATION_ERROR,
                f"Approval {approval_id} could not be validated ({type(exc).__name__})",
            )

        return evaluate_approval_for_operation(
            approval,
            context,
            self._clock.now(),
            self._policy,
            approval_id=str(rid),
            operation_type=context.operation_type.value,
            executed_by=context.executed_by,
        )

    def consume_approval_request(
        self,
        approval_id: Any,
        context: OperationContext,
    ) -> ConsumptionResult:
        """
        Atomically mark an approved request as consumed by ``context``.

        Exactly one of any number of concurrent callers succeeds; the
        others get ``race_condition_detected``.

        Raises:
            SQLAlchemyError: on store failure.
        """
        context = normalize_context(context)
        checksum = operation_checksum(snapshot_payload(dict(context.operation_data)))
        rid = _coerce_uuid(approval_id)

        with LogContext.bind(
            request_id=str(approval_id),
            actor_id=context.executed_by,
            operation_type=context.operation_type.value,
            operation_id=context.operation_id,
        ):
            if rid is None:
                return self._consumption_failed(
                    approval_id, context, checksum,
                    ValidationReason.APPROVAL_NOT_FOUND,
                    f"Approval {approval_id} not found",
                )

            now = self._clock.now()
            result = self._session.execute(
                update(ApprovalRequestModel)
                .where(
                    ApprovalRequestModel.id == rid,
                    ApprovalRequestModel.is_consumed.is_(False),
                    ApprovalRequestModel.status == ApprovalStatus.APPROVED.value,
                )
                .values(
                    is_consumed=True,
                    consumed_at=now,
                    consumed_by=context.executed_by,
                    consumed_operation_id=context.operation_id,
                    consumed_operation_type=context.operation_type.value,
                    consumed_amount=context.amount,
                    consumed_currency=context.currency,
                    consumed_entity_id=context.entity_id,
                    operation_checksum=checksum,
                    consumption_attempts=ApprovalRequestModel.consumption_attempts + 1,
                )
                .execution_options(synchronize_session=False)
            )

            if result.rowcount != 1:
                exists = self._session.execute(
                    select(ApprovalRequestModel.id).where(ApprovalRequestModel.id == rid)
                ).scalar_one_or_none()
                if exists is None:
                    return self._consumption_failed(
                        approval_id, context, checksum,
                        ValidationReason.APPROVAL_NOT_FOUND,
                        f"Approval {approval_id} not found",
                    )
                return self._consumption_failed(
                    approval_id, context, checksum,
                    ValidationReason.RACE_CONDITION_DETECTED,
                    f"Approval {approval_id} was already consumed or is no longer approved",
                )

            model = self._load(rid)
            matches = checksum == model.payload_checksum
            self._auditor.record_consumption(
                request_id=rid,
                consumed_by=context.executed_by,
                operation_type=context.operation_type.value,
                operation_id=context.operation_id,
                operation_checksum=checksum,
                checksum_matches_approval=matches,
            )
            logger.info(
                "approval_consumed",
                extra={
                    "request_number": model.request_number,
                    "checksum_matches_approval": matches,
                },
            )
            return ConsumptionResult(
                success=True,
                message=f"Approval {model.request_number} consumed",
                operation_checksum=checksum,
                checksum_matches_approval=matches,
            )

    def _consumption_failed(
        self,
        approval_id: Any,
        context: OperationContext,
        checksum: str,
        reason: ValidationReason,
        message: str,
    ) -> ConsumptionResult:
        self._security_log.record(
            entity_type=APPROVAL_REQUEST_ENTITY,
            entity_id=approval_id,
            action=AuditAction.APPROVAL_CONSUMPTION_FAILED,
            description=message,
            actor_id=context.executed_by,
            new_values={
                "reason": reason.value,
                "operation_id": context.operation_id,
                "operation_type": context.operation_type.value,
            },
            checksum=checksum,
        )
        return ConsumptionResult(
            success=False,
            reason=reason,
            message=message,
            operation_checksum=checksum,
        )
