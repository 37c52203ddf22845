"""
approval_engines.skip_guard -- Pure policy for requests to bypass approval.

Responsibility:
    Decide whether a caller's request to skip approval may be honoured.

Architecture position:
    Engines -- pure decision layer, zero I/O.

Invariants enforced:
    - Critical operation types can never skip approval, whoever asks,
      the system identity included.
    - Non-critical types may skip only when the caller IS the system
      identity.
"""

from __future__ import annotations

from enum import Enum

from approval_kernel.domain.operations import (
    CRITICAL_OPERATION_TYPES,
    SYSTEM_USER_ID,
    OperationType,
)


class SkipVerdict(str, Enum):
    ALLOWED = "allowed"
    CRITICAL_OPERATION = "critical_operation"
    UNAUTHORIZED_CALLER = "unauthorized_caller"


def evaluate_skip_request(
    operation_type: OperationType | str,
    actor_id: str | None,
    system_user_id: str = SYSTEM_USER_ID,
) -> SkipVerdict:
    if OperationType(operation_type) in CRITICAL_OPERATION_TYPES:
        return SkipVerdict.CRITICAL_OPERATION
    if actor_id != system_user_id:
        return SkipVerdict.UNAUTHORIZED_CALLER
    return SkipVerdict.ALLOWED
