"""
ORM-Level Immutability Enforcement (Layer 1 of 2).

===============================================================================
WHY THIS EXISTS
===============================================================================

An approval is a single-use authorization token and is itself part of the
audit trail.  Once consumed it must never become consumable again, the
payload snapshot it was granted for must never change, and the audit log
that records every attempt must be append-only.

  Layer 1: THIS FILE (ORM event listeners)
    - Catches modifications made through SQLAlchemy unit-of-work flushes
    - Fires BEFORE the SQL is sent to the database

  Layer 2: db/sql/<dialect>/*.sql (database triggers)
    - Catches raw SQL, bulk UPDATE statements, direct database access
    - Fires AT the database level, independent of application code

The consumption guard's conditional UPDATE is a Core statement and does
not pass through Layer 1; Layer 2 still constrains it.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity             | Rule
-------------------|-------------------------------------------------------------
AuditEvent         | No UPDATE, no DELETE, ever
ApprovalRequest    | No DELETE; no UPDATE once approved/rejected/cancelled or
                   | consumed; snapshot fields write-once; is_consumed never
                   | set through the ORM
ApprovalDecision   | No UPDATE, no DELETE (listeners live beside the model)

===============================================================================
USAGE
===============================================================================

    from approval_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # Called once at startup

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
    ...
    register_immutability_listeners()
"""

from sqlalchemy import event, inspect

from approval_kernel.exceptions import ImmutabilityViolationError
from approval_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

# Fields fixed at creation time.  The snapshot and its checksum are the
# basis for tamper detection.
APPROVAL_REQUEST_WRITE_ONCE_FIELDS = frozenset({
    "request_number",
    "chain_id",
    "operation_type",
    "operation_data",
    "payload_checksum",
    "requested_by",
    "amount",
    "currency",
    "submitted_at",
})

_FROZEN_REQUEST_STATUSES = frozenset({"approved", "rejected", "cancelled"})


def _blocked(entity_type: str, entity_id, operation: str, reason: str):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
        },
    )
    return ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _previous_value(state, attr_name: str):
    """Value the attribute had when loaded (current value if unchanged)."""
    history = state.attrs[attr_name].history
    if history.deleted:
        return history.deleted[0]
    if history.unchanged:
        return history.unchanged[0]
    return getattr(state.object, attr_name)


# =============================================================================
# AuditEvent
# =============================================================================


def _check_audit_event_immutability(mapper, connection, target):
    """Prevent any updates to AuditEvent records."""
    raise _blocked(
        "AuditEvent", target.id, "UPDATE",
        "Audit events are immutable and cannot be modified",
    )


def _check_audit_event_delete(mapper, connection, target):
    """Prevent deletion of AuditEvent records."""
    raise _blocked(
        "AuditEvent", target.id, "DELETE",
        "Audit events cannot be deleted",
    )


# =============================================================================
# ApprovalRequest
# =============================================================================


def _check_approval_request_immutability(mapper, connection, target):
    """
    Guard ORM updates of approval requests.

    Rules:
        - A consumed request is frozen.
        - approved / rejected / cancelled requests are frozen.
        - Snapshot fields are write-once.
        - is_consumed may only be set by the consumption guard's
          conditional UPDATE, never by a flush.
    """
    state = inspect(target)

    if _previous_value(state, "is_consumed"):
        raise _blocked(
            "ApprovalRequest", target.id, "UPDATE",
            "Consumed approval requests cannot be modified",
        )

    previous_status = _previous_value(state, "status")
    if previous_status in _FROZEN_REQUEST_STATUSES:
        raise _blocked(
            "ApprovalRequest", target.id, "UPDATE",
            f"Approval request in status {previous_status} cannot be modified",
        )

    if state.attrs.is_consumed.history.has_changes():
        raise _blocked(
            "ApprovalRequest", target.id, "UPDATE",
            "Consumption must go through the conditional consumption update",
        )

    changed = sorted(
        name for name in APPROVAL_REQUEST_WRITE_ONCE_FIELDS
        if state.attrs[name].history.deleted
    )
    if changed:
        raise _blocked(
            "ApprovalRequest", target.id, "UPDATE",
            f"Write-once fields cannot be modified: {', '.join(changed)}",
        )


def _check_approval_request_delete(mapper, connection, target):
    """Prevent deletion of approval requests."""
    raise _blocked(
        "ApprovalRequest", target.id, "DELETE",
        "Approval requests are part of the audit trail and cannot be deleted",
    )


# =============================================================================
# Registration
# =============================================================================


def _listeners():
    from approval_kernel.models.approval import ApprovalRequestModel
    from approval_kernel.models.audit_event import AuditEvent

    return [
        (AuditEvent, "before_update", _check_audit_event_immutability),
        (AuditEvent, "before_delete", _check_audit_event_delete),
        (ApprovalRequestModel, "before_update", _check_approval_request_immutability),
        (ApprovalRequestModel, "before_delete", _check_approval_request_delete),
    ]


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Call this after all models are imported but before any database
    operations begin.  Idempotent.
    """
    for target, event_name, listener_fn in _listeners():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if not registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests where you need to intentionally
    violate immutability rules to verify detection.
    """
    for target, event_name, listener_fn in _listeners():
        _safe_remove_listener(target, event_name, listener_fn)
