"""
AuditorService -- tamper-evident audit trail and hash chain maintenance.

Responsibility:
    Creates immutable, hash-chained audit events for every approval
    lifecycle step, every consumption attempt and every security event.
    Provides chain validation for tamper detection and trace queries for
    forensic review.

Architecture position:
    Kernel > Services -- imperative shell, called by
    ApprovalWorkflowService, ConsumptionGuard, StartupChainValidator and
    (through SecurityAuditLog) by the chain resolver.

Invariants enforced:
    - Sequence monotonicity via SequenceService (never raw SQL max+1).
    - Audit chain integrity: every event carries a cryptographic link to
      its predecessor.
    - Append-only: audit events are never modified or deleted (ORM +
      DB trigger enforced on the AuditEvent model).

Failure modes:
    - AuditChainBrokenError: recomputed hash does not match stored hash,
      or prev_hash does not match the predecessor's hash.
    - SQLAlchemyError: store failure while writing; propagates.

Audit relevance:
    This IS the audit service.  All audit events flow through
    ``_create_audit_event()``.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.exceptions import AuditChainBrokenError
from approval_kernel.logging_config import get_logger
from approval_kernel.models.audit_event import AuditAction, AuditEvent, AuditSeverity
from approval_kernel.services.sequence_service import SequenceService
from approval_kernel.utils.hashing import hash_audit_event, hash_payload, snapshot_payload

logger = get_logger("services.auditor")

APPROVAL_REQUEST_ENTITY = "ApprovalRequest"


@dataclass(frozen=True)
class AuditTraceEntry:
    """A single entry in an audit trace."""

    seq: int
    action: str
    severity: str
    occurred_at: datetime
    actor_id: str
    description: str | None
    payload: dict[str, Any]
    hash: str


@dataclass(frozen=True)
class AuditTrace:
    """Complete audit trace for an entity, in chronological order."""

    entity_type: str
    entity_id: str
    entries: tuple[AuditTraceEntry, ...]

    @property
    def is_empty(self) -> bool:
        return len(self.entries) == 0

    @property
    def actions(self) -> tuple[str, ...]:
        return tuple(e.action for e in self.entries)

    @property
    def last_action(self) -> str | None:
        return self.entries[-1].action if self.entries else None


class AuditorService:
    """
    Service for creating and validating tamper-evident audit events.

    Guarantees:
        - Every audit event's ``hash`` is a deterministic function of
          ``(entity_type, entity_id, action, payload_hash, prev_hash)``.
        - Sequence numbers are allocated via ``SequenceService``.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._sequence_service = SequenceService(session)

    def _get_last_hash(self) -> str | None:
        """Get the hash of the most recent audit event."""
        last_event = self._session.execute(
            select(AuditEvent)
            .order_by(AuditEvent.seq.desc())
            .limit(1)
        ).scalar_one_or_none()

        return last_event.hash if last_event else None

    def _create_audit_event(
        self,
        entity_type: str,
        entity_id: Any,
        action: AuditAction,
        actor_id: str,
        payload: dict[str, Any] | None = None,
        severity: AuditSeverity = AuditSeverity.INFO,
        description: str | None = None,
    ) -> AuditEvent:
        """
        Create a new audit event with hash chain linkage.

        Postconditions:
            - A new ``AuditEvent`` row is flushed to the session with a
              monotonically increasing ``seq`` and a valid hash chain link.
        """
        seq = self._sequence_service.next_value(SequenceService.AUDIT_EVENT)
        prev_hash = self._get_last_hash()

        payload_data = snapshot_payload(payload or {})
        computed_payload_hash = hash_payload(payload_data)

        event_hash = hash_audit_event(
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action.value,
            payload_hash=computed_payload_hash,
            prev_hash=prev_hash,
        )

        audit_event = AuditEvent(
            seq=seq,
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action.value,
            actor_id=str(actor_id),
            occurred_at=self._clock.now(),
            severity=severity.value,
            description=description,
            payload=payload_data,
            payload_hash=computed_payload_hash,
            prev_hash=prev_hash,
            hash=event_hash,
        )

        self._session.add(audit_event)
        self._session.flush()

        logger.info(
            "audit_event_created",
            extra={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "action": action.value,
                "severity": severity.value,
                "seq": seq,
            },
        )

        return audit_event

    # Approval lifecycle

    def record_approval_requested(
        self,
        request_id,
        request_number: str,
        operation_type: str,
        chain_name: str,
        requested_by: str,
        amount,
        currency: str | None,
        payload_checksum: str,
    ) -> AuditEvent:
        """Record that an approval request was created."""
        return self._create_audit_event(
            entity_type=APPROVAL_REQUEST_ENTITY,
            entity_id=request_id,
            action=AuditAction.APPROVAL_REQUESTED,
            actor_id=requested_by,
            description=f"Approval request {request_number} created for {operation_type}",
            payload={
                "request_number": request_number,
                "operation_type": operation_type,
                "chain_name": chain_name,
                "amount": amount,
                "currency": currency,
                "payload_checksum": payload_checksum,
            },
        )

    def record_decision(
        self,
        request_id,
        action: AuditAction,
        decider_id: str,
        step: int,
        old_status: str,
        new_status: str,
        comments: str | None = None,
        reassigned_to: str | None = None,
    ) -> AuditEvent:
        """Record a decision (approve, reject, escalate, delegate, cancel)."""
        return self._create_audit_event(
            entity_type=APPROVAL_REQUEST_ENTITY,
            entity_id=request_id,
            action=action,
            actor_id=decider_id,
            description=f"Step {step}: {old_status} -> {new_status}",
            payload={
                "step": step,
                "old_values": {"status": old_status},
                "new_values": {"status": new_status, "reassigned_to": reassigned_to},
                "comments": comments,
            },
        )

    def record_consumption(
        self,
        request_id,
        consumed_by: str,
        operation_type: str,
        operation_id: str | None,
        operation_checksum: str,
        checksum_matches_approval: bool,
    ) -> AuditEvent:
        """Record a successful single-use consumption."""
        return self._create_audit_event(
            entity_type=APPROVAL_REQUEST_ENTITY,
            entity_id=request_id,
            action=AuditAction.APPROVAL_CONSUMED,
            actor_id=consumed_by,
            description=f"Approval consumed by {operation_type} operation",
            payload={
                "old_values": {"is_consumed": False},
                "new_values": {
                    "is_consumed": True,
                    "consumed_operation_id": operation_id,
                },
                "checksum": operation_checksum,
                "checksum_matches_approval": checksum_matches_approval,
            },
        )

    def record_security_event(
        self,
        entity_type: str,
        entity_id: Any,
        action: AuditAction,
        actor_id: str,
        description: str,
        old_values: dict[str, Any] | None = None,
        new_values: dict[str, Any] | None = None,
        severity: AuditSeverity = AuditSeverity.CRITICAL,
        checksum: str | None = None,
    ) -> AuditEvent:
        """Record a security-relevant event (fail-closed trigger, violation)."""
        return self._create_audit_event(
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            actor_id=actor_id,
            severity=severity,
            description=description,
            payload={
                "old_values": old_values,
                "new_values": new_values,
                "checksum": checksum,
            },
        )

    def record_chain_seeded(
        self,
        chain_id,
        chain_name: str,
        operation_type: str,
        actor_id: str,
        config_id: str,
        config_checksum: str,
    ) -> AuditEvent:
        """Record that an approval chain was created from configuration."""
        return self._create_audit_event(
            entity_type="ApprovalChain",
            entity_id=chain_id,
            action=AuditAction.APPROVAL_CHAIN_SEEDED,
            actor_id=actor_id,
            description=f"Chain {chain_name} seeded for {operation_type} from {config_id}",
            payload={
                "chain_name": chain_name,
                "operation_type": operation_type,
                "config_id": config_id,
                "config_checksum": config_checksum,
            },
        )

    # Chain validation

    def validate_chain(self) -> bool:
        """
        Validate the entire audit chain.

        Raises:
            AuditChainBrokenError: If chain validation fails at any point.
        """
        events = self._session.execute(
            select(AuditEvent).order_by(AuditEvent.seq)
        ).scalars().all()

        if not events:
            return True

        if events[0].prev_hash is not None:
            logger.critical("audit_chain_broken", extra={"seq": events[0].seq})
            raise AuditChainBrokenError(
                str(events[0].id),
                "None",
                events[0].prev_hash,
            )

        for i, event in enumerate(events):
            expected_hash = hash_audit_event(
                entity_type=event.entity_type,
                entity_id=event.entity_id,
                action=event.action,
                payload_hash=hash_payload(event.payload or {}),
                prev_hash=event.prev_hash,
            )

            if event.hash != expected_hash:
                logger.critical("audit_chain_broken", extra={"seq": event.seq})
                raise AuditChainBrokenError(
                    str(event.id),
                    expected_hash,
                    event.hash,
                )

            if i > 0:
                expected_prev = events[i - 1].hash
                if event.prev_hash != expected_prev:
                    logger.critical("audit_chain_broken", extra={"seq": event.seq})
                    raise AuditChainBrokenError(
                        str(event.id),
                        expected_prev,
                        event.prev_hash or "None",
                    )

        logger.info(
            "audit_chain_valid",
            extra={"event_count": len(events)},
        )
        return True

    # Trace and query methods

    def get_trace(self, entity_type: str, entity_id: Any) -> AuditTrace:
        """Get the complete audit trace for an entity."""
        events = self._session.execute(
            select(AuditEvent)
            .where(
                AuditEvent.entity_type == entity_type,
                AuditEvent.entity_id == str(entity_id),
            )
            .order_by(AuditEvent.seq)
        ).scalars().all()

        entries = tuple(
            AuditTraceEntry(
                seq=event.seq,
                action=event.action,
                severity=event.severity,
                occurred_at=event.occurred_at,
                actor_id=event.actor_id,
                description=event.description,
                payload=event.payload or {},
                hash=event.hash,
            )
            for event in events
        )

        return AuditTrace(
            entity_type=entity_type,
            entity_id=str(entity_id),
            entries=entries,
        )

    def get_events_by_action(self, action: AuditAction) -> list[AuditEvent]:
        """All events with the given action, oldest first."""
        return list(
            self._session.execute(
                select(AuditEvent)
                .where(AuditEvent.action == action.value)
                .order_by(AuditEvent.seq)
            ).scalars().all()
        )

    def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        """Most recent audit events, newest first."""
        result = self._session.execute(
            select(AuditEvent)
            .order_by(AuditEvent.seq.desc())
            .limit(limit)
        )
        return list(result.scalars().all())
