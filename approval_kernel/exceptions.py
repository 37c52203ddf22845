"""
Typed Exception Hierarchy for the Approval Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Authorization failures must be handled precisely. A caller that receives
"approval denied" needs to know whether the chain was missing (configuration
drift), the decider lacked authority (normal business rule), or a skip was
attempted on a critical operation (a programming or security defect).
String matching on messages cannot make that distinction reliably.

Every exception in this module:
  1. Has its own class (catch by type, not message)
  2. Has a CODE attribute (machine-readable, API-safe)
  3. Carries structured DATA (not just a message string)

Expected business-rule failures during consumption (mismatch, expiry,
replay, lost race) are NOT exceptions; they are returned as explicit
``ValidationResult`` / ``ConsumptionResult`` values.  Exceptions are for
configuration errors, authority errors, skip violations, store errors and
integrity violations.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ApprovalKernelError (base)
    |
    +-- ApprovalConfigurationError
    |   +-- ApprovalChainNotFoundError
    |   +-- StartupValidationError
    |
    +-- ApprovalRequestError
    |   +-- ApprovalNotFoundError
    |   +-- ApprovalNotPendingError
    |   +-- InvalidDecisionError
    |
    +-- ApprovalAuthorityError
    |
    +-- ApprovalSkipError
    |   +-- CannotSkipApprovalError
    |   +-- UnauthorizedSkipError
    |
    +-- ApprovalSecurityError
    |   +-- ApprovalTamperDetectedError
    |   +-- ApprovalDeniedError
    |
    +-- AuditError
    |   +-- AuditChainBrokenError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Configuration   | APPROVAL_CHAIN_NOT_FOUND    | No active chain for operation type
                | STARTUP_VALIDATION_FAILED   | Critical chain missing at boot
----------------|-----------------------------|-----------------------------------------
Request         | APPROVAL_NOT_FOUND          | Request id doesn't exist
                | APPROVAL_NOT_PENDING        | Decision on a resolved request
                | INVALID_DECISION            | Missing escalate_to / delegate_to
----------------|-----------------------------|-----------------------------------------
Authority       | APPROVAL_AUTHORITY_DENIED   | Decider may not act on this step
----------------|-----------------------------|-----------------------------------------
Skip            | CANNOT_SKIP_APPROVAL        | Skip requested for a critical type
                | UNAUTHORIZED_SKIP           | Skip requested by a non-system caller
----------------|-----------------------------|-----------------------------------------
Security        | APPROVAL_TAMPER_DETECTED    | Stored snapshot no longer matches checksum
                | APPROVAL_DENIED             | Gate refused the operation
----------------|-----------------------------|-----------------------------------------
Audit           | AUDIT_CHAIN_BROKEN          | Hash chain validation failed
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | Modifying an append-only / consumed row
"""


class ApprovalKernelError(Exception):
    """
    Base exception for all approval kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "APPROVAL_KERNEL_ERROR"


# Configuration-related exceptions


class ApprovalConfigurationError(ApprovalKernelError):
    """Base exception for approval configuration errors."""

    code: str = "APPROVAL_CONFIGURATION_ERROR"


class ApprovalChainNotFoundError(ApprovalConfigurationError):
    """No active approval chain matches the operation."""

    code: str = "APPROVAL_CHAIN_NOT_FOUND"

    def __init__(self, operation_type: str, amount: str | None = None):
        self.operation_type = operation_type
        self.amount = amount
        super().__init__(
            f"No active approval chain for operation type {operation_type}"
            + (f" and amount {amount}" if amount is not None else "")
        )


class StartupValidationError(ApprovalConfigurationError):
    """Critical approval chains are missing; the process must not serve traffic."""

    code: str = "STARTUP_VALIDATION_FAILED"

    def __init__(self, missing_operation_types: list[str], errors: list[str]):
        self.missing_operation_types = missing_operation_types
        self.errors = errors
        super().__init__(
            "Approval chain startup validation failed: "
            + "; ".join(errors)
        )


# Request-related exceptions


class ApprovalRequestError(ApprovalKernelError):
    """Base exception for approval request lifecycle errors."""

    code: str = "APPROVAL_REQUEST_ERROR"


class ApprovalNotFoundError(ApprovalRequestError):
    """Approval request does not exist."""

    code: str = "APPROVAL_NOT_FOUND"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Approval request not found: {request_id}")


class ApprovalNotPendingError(ApprovalRequestError):
    """A decision was submitted for a request that is no longer open."""

    code: str = "APPROVAL_NOT_PENDING"

    def __init__(self, request_id: str, status: str):
        self.request_id = request_id
        self.status = status
        super().__init__(
            f"Approval request {request_id} is not pending (status: {status})"
        )


class InvalidDecisionError(ApprovalRequestError):
    """Decision payload is incomplete or inconsistent."""

    code: str = "INVALID_DECISION"

    def __init__(self, request_id: str, decision: str, reason: str):
        self.request_id = request_id
        self.decision = decision
        self.reason = reason
        super().__init__(
            f"Invalid {decision} decision for {request_id}: {reason}"
        )


# Authority


class ApprovalAuthorityError(ApprovalKernelError):
    """Decider lacks authority over the current approval step."""

    code: str = "APPROVAL_AUTHORITY_DENIED"

    def __init__(self, request_id: str, decider_id: str, step: int):
        self.request_id = request_id
        self.decider_id = decider_id
        self.step = step
        super().__init__(
            f"User {decider_id} is not authorized to decide step {step} "
            f"of approval request {request_id}"
        )


# Skip guard


class ApprovalSkipError(ApprovalKernelError):
    """Base exception for approval bypass attempts."""

    code: str = "APPROVAL_SKIP_ERROR"


class CannotSkipApprovalError(ApprovalSkipError):
    """Skip requested for an operation type that must always be approved."""

    code: str = "CANNOT_SKIP_APPROVAL"

    def __init__(self, operation_type: str, actor_id: str | None):
        self.operation_type = operation_type
        self.actor_id = actor_id
        super().__init__(
            f"Approval cannot be skipped for critical operation {operation_type}"
        )


class UnauthorizedSkipError(ApprovalSkipError):
    """Skip requested by a caller other than the system identity."""

    code: str = "UNAUTHORIZED_SKIP"

    def __init__(self, operation_type: str, actor_id: str | None):
        self.operation_type = operation_type
        self.actor_id = actor_id
        super().__init__(
            f"Only the system identity may skip approval for {operation_type} "
            f"(caller: {actor_id})"
        )


# Security


class ApprovalSecurityError(ApprovalKernelError):
    """Base exception for security-relevant approval failures."""

    code: str = "APPROVAL_SECURITY_ERROR"


class ApprovalTamperDetectedError(ApprovalSecurityError):
    """The stored operation snapshot no longer matches its checksum."""

    code: str = "APPROVAL_TAMPER_DETECTED"

    def __init__(self, request_id: str, expected_checksum: str, actual_checksum: str):
        self.request_id = request_id
        self.expected_checksum = expected_checksum
        self.actual_checksum = actual_checksum
        super().__init__(
            f"Approval request {request_id} snapshot tampered: "
            f"expected {expected_checksum}, found {actual_checksum}"
        )


class ApprovalDeniedError(ApprovalSecurityError):
    """An operation was refused because its approval handle failed."""

    code: str = "APPROVAL_DENIED"

    def __init__(self, approval_id: str, operation_type: str, reason: str):
        self.approval_id = approval_id
        self.operation_type = operation_type
        self.reason = reason
        super().__init__(
            f"Operation {operation_type} denied for approval {approval_id}: {reason}"
        )


# Audit


class AuditError(ApprovalKernelError):
    """Base exception for audit-related errors."""

    code: str = "AUDIT_ERROR"


class AuditChainBrokenError(AuditError):
    """Audit hash chain validation failed."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, audit_event_id: str, expected_hash: str, actual_hash: str):
        self.audit_event_id = audit_event_id
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at {audit_event_id}: "
            f"expected {expected_hash}, found {actual_hash}"
        )


# Immutability


class ImmutabilityError(ApprovalKernelError):
    """Base exception for immutability violations."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    Audit events and decisions are append-only; approval requests are never
    deleted and are frozen once consumed.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
