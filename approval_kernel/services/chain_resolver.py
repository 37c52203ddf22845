"""
ApprovalChainResolver -- chain lookup and the fail-closed approval decision.

Responsibility:
    Loads active chains for an operation type, selects the governing chain
    for an amount (via ``approval_engines.chain_selection``), and answers
    the single question domain handlers must ask before a sensitive
    operation: does this need approval?

Architecture position:
    Kernel > Services -- imperative shell around the pure chain selection
    engine.  Called by ApprovalWorkflowService, ApprovalGate and the
    startup validator.

Invariants enforced:
    - ``resolve`` / ``find_chain`` never swallow store errors; they propagate.
    - ``requires_approval`` is fail-closed: an unknown operation type, a
      lookup error or a missing chain answers True and records a
      distinguishable CRITICAL audit event (``approval_chain_lookup_failed``
      / ``approval_chain_missing``).
    - A negative amount (CRITICAL) or a band fallback (WARNING) answers
      True and records ``approval_amount_out_of_band``; auto-approval
      thresholds apply only inside the selected chain's own band.
    - Band fallback is logged (``chain_band_fallback_used``).

Failure modes:
    - SQLAlchemyError from ``resolve`` / ``find_chain`` / ``get_active_chains``.
    - ``requires_approval`` never raises.
"""

from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from approval_engines.chain_selection import ChainSelection, evaluate_auto_approval, select_chain
from approval_kernel.domain.approval import ApprovalChain
from approval_kernel.domain.operations import SYSTEM_USER_ID, OperationType, parse_amount
from approval_kernel.logging_config import get_logger
from approval_kernel.models.approval import ApprovalChainModel
from approval_kernel.models.audit_event import AuditAction, AuditSeverity
from approval_kernel.services.security_audit import SecurityAuditLog

logger = get_logger("services.chain_resolver")


def coerce_amount(amount: Any) -> Decimal | None:
    """Decimal amount, or None when missing or unparseable."""
    if amount is None:
        return None
    return parse_amount(amount)


class ApprovalChainResolver:
    """
    Chain lookup with fail-closed approval requirement.

    Non-goals:
        - Does NOT call ``session.commit()``.
        - Does NOT create or edit chains.
    """

    def __init__(self, session: Session, security_log: SecurityAuditLog):
        self._session = session
        self._security_log = security_log

    def get_active_chains(self, operation_type: OperationType | str) -> list[ApprovalChain]:
        """Active chains for an operation type (store errors propagate)."""
        op = OperationType(operation_type)
        rows = self._session.execute(
            select(ApprovalChainModel)
            .where(
                ApprovalChainModel.operation_type == op.value,
                ApprovalChainModel.is_active.is_(True),
            )
            .order_by(
                ApprovalChainModel.priority.desc(),
                ApprovalChainModel.chain_name,
                ApprovalChainModel.id,
            )
        ).scalars().all()
        return [row.to_dto() for row in rows]

    def resolve(
        self,
        operation_type: OperationType | str,
        amount: Any = None,
        currency: str | None = None,
    ) -> ChainSelection:
        """
        Select the chain governing an operation, with the fallback flag.

        Highest priority chain whose inclusive band contains ``amount``;
        otherwise the highest priority chain with both bounds set;
        otherwise no chain.  ``currency`` is accepted for interface parity;
        bands are currency-agnostic.

        Raises:
            ValueError: unknown operation type.
            SQLAlchemyError: on any store failure.
        """
        op = OperationType(operation_type)
        value = coerce_amount(amount)
        selection = select_chain(self.get_active_chains(op), amount=value)

        if selection.used_fallback:
            logger.warning(
                "chain_band_fallback_used",
                extra={
                    "operation_type": op.value,
                    "amount": value,
                    "currency": currency,
                    "chain_name": selection.chain.chain_name,
                },
            )
        elif selection.found:
            logger.debug(
                "chain_selected",
                extra={
                    "operation_type": op.value,
                    "chain_name": selection.chain.chain_name,
                },
            )
        return selection

    def find_chain(
        self,
        operation_type: OperationType | str,
        amount: Any = None,
        currency: str | None = None,
    ) -> ApprovalChain | None:
        """The chain ``resolve`` picks, or None (store errors propagate)."""
        return self.resolve(operation_type, amount, currency).chain

    def requires_approval(
        self,
        operation_type: OperationType | str,
        amount: Any = None,
        currency: str | None = None,
        requested_by: str | None = None,
    ) -> bool:
        """
        Whether the operation needs human sign-off.  Fail-closed.

        Returns False only when a chain's own band contains the amount AND
        either the amount is below its auto-approve threshold or the chain
        auto-approves the requester's own actions.  Negative amounts and
        band fallbacks always need approval.
        """
        actor_id = requested_by or SYSTEM_USER_ID
        value = coerce_amount(amount)

        try:
            op = OperationType(operation_type)
            selection = self.resolve(op, value, currency)
        except Exception as exc:
            op_name = getattr(operation_type, "value", str(operation_type))
            logger.critical(
                "approval_chain_lookup_failed",
                exc_info=exc,
                extra={"operation_type": op_name},
            )
            self._security_log.record(
                entity_type="OperationType",
                entity_id=op_name,
                action=AuditAction.APPROVAL_CHAIN_LOOKUP_FAILED,
                description=(
                    f"Chain lookup for {op_name} failed "
                    f"({type(exc).__name__}); approval required"
                ),
                actor_id=actor_id,
                new_values={"amount": value, "currency": currency, "error": str(exc)},
            )
            return True

        chain = selection.chain
        if chain is None:
            self._security_log.record(
                entity_type="OperationType",
                entity_id=op.value,
                action=AuditAction.APPROVAL_CHAIN_MISSING,
                description=f"No active approval chain for {op.value}; approval required",
                actor_id=actor_id,
                new_values={"amount": value, "currency": currency},
            )
            return True

        negative = value is not None and value < 0
        if negative or selection.used_fallback:
            reason = "negative amount" if negative else f"outside every band, fell back to {chain.chain_name}"
            self._security_log.record(
                entity_type="OperationType",
                entity_id=op.value,
                action=AuditAction.APPROVAL_AMOUNT_OUT_OF_BAND,
                description=f"Amount {value} for {op.value}: {reason}; approval required",
                actor_id=actor_id,
                new_values={
                    "amount": value,
                    "currency": currency,
                    "chain_name": chain.chain_name,
                },
                severity=AuditSeverity.CRITICAL if negative else AuditSeverity.WARNING,
            )
            return True

        decision = evaluate_auto_approval(
            chain, amount=value, requested_by=requested_by,
        )
        logger.info(
            "approval_requirement_evaluated",
            extra={
                "operation_type": op.value,
                "chain_name": chain.chain_name,
                "requires_approval": decision.requires_approval,
                "reason": decision.reason,
            },
        )
        return decision.requires_approval
