"""
SecurityAuditLog -- best-effort side channel for security events.

Responsibility:
    Records fail-closed triggers, validation failures, lost consumption
    races, tamper detections and skip attempts as CRITICAL audit events.

Architecture position:
    Kernel > Services -- thin wrapper over AuditorService.

Invariants enforced:
    - Writing a security event never changes the outcome of the
      authorization decision that produced it.  The primary path denies
      (or requires approval) whether or not the audit write succeeds.
    - A failed audit write is never silent: it is reported to the
      ``approval_kernel.audit_fallback`` logger and written to stderr.
    - The audit write runs in a SAVEPOINT, so a failed write cannot poison
      the caller's transaction.

Failure modes:
    - None raised.  ``record()`` returns None when the write failed.
"""

import sys
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.orm import Session

from approval_kernel.logging_config import get_logger
from approval_kernel.models.audit_event import AuditAction, AuditEvent, AuditSeverity
from approval_kernel.services.auditor_service import AuditorService
from approval_kernel.utils.hashing import canonicalize_json

logger = get_logger("services.security_audit")
fallback_logger = get_logger("audit_fallback")


class SecurityAuditLog:
    """
    Records security events through the hash-chained audit trail.

    Non-goals:
        - Does NOT call ``session.commit()``.  Events become durable with
          the caller's transaction.
    """

    def __init__(self, session: Session, auditor: AuditorService):
        self._session = session
        self._auditor = auditor

    def record(
        self,
        entity_type: str,
        entity_id: Any,
        action: AuditAction,
        description: str,
        actor_id: str,
        old_values: dict[str, Any] | None = None,
        new_values: dict[str, Any] | None = None,
        severity: AuditSeverity = AuditSeverity.CRITICAL,
        checksum: str | None = None,
    ) -> AuditEvent | None:
        log_fn = logger.critical if severity == AuditSeverity.CRITICAL else logger.warning
        log_fn(
            action.value,
            extra={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "actor": actor_id,
                "description": description,
            },
        )

        savepoint = self._session.begin_nested()
        try:
            event = self._auditor.record_security_event(
                entity_type=entity_type,
                entity_id=entity_id,
                action=action,
                actor_id=actor_id,
                description=description,
                old_values=old_values,
                new_values=new_values,
                severity=severity,
                checksum=checksum,
            )
            savepoint.commit()
            return event
        except Exception as exc:
            savepoint.rollback()
            self._report_failure(
                exc,
                {
                    "entity_type": entity_type,
                    "entity_id": str(entity_id),
                    "action": action.value,
                    "actor_id": actor_id,
                    "severity": severity.value,
                    "description": description,
                    "new_values": new_values,
                },
            )
            return None

    def _report_failure(self, exc: Exception, event: dict[str, Any]) -> None:
        fallback_logger.critical(
            "security_audit_write_failed",
            exc_info=exc,
            extra={"audit_event": event},
        )
        line = canonicalize_json({
            "ts": datetime.now(timezone.utc).isoformat(),
            "message": "security_audit_write_failed",
            "error": f"{type(exc).__name__}: {exc}",
            "audit_event": event,
        })
        sys.stderr.write(line + "\n")
        sys.stderr.flush()
