"""
Module: approval_engines
Responsibility:
    Package entrypoint that re-exports the pure approval decision engines.
    This is the canonical import surface for the kernel services.

Architecture position:
    Engines -- pure decision layer, zero I/O.
    May only import approval_kernel/domain/ (and utils for hashing).
    MUST NOT import approval_kernel.services or approval_services.

Invariants enforced:
    - Purity: engines NEVER call ``datetime.now()``.  Timestamps are
      passed in by the calling service from its injected Clock.
    - Decimal-only arithmetic for amounts and tolerances.
    - Determinism: identical inputs always produce identical outputs.

Audit relevance:
    Engine invocations are traced via ``@traced_engine``
    (``approval_engines.tracer``), emitting APPROVAL_ENGINE_TRACE records.
"""

from approval_engines.chain_selection import (
    AutoApprovalDecision,
    ChainSelection,
    evaluate_auto_approval,
    find_band_gaps,
    order_chains,
    select_chain,
)
from approval_engines.decisions import (
    DecisionEffect,
    DecisionOutcome,
    apply_decision,
    build_steps,
    can_decide,
)
from approval_engines.skip_guard import SkipVerdict, evaluate_skip_request
from approval_engines.tamper import (
    DEFAULT_VALIDATION_POLICY,
    ValidationPolicy,
    amount_tolerance,
    amounts_match,
    compare_core_fields,
    evaluate_approval_for_operation,
    is_expired,
)

__all__ = [
    "AutoApprovalDecision",
    "ChainSelection",
    "DEFAULT_VALIDATION_POLICY",
    "DecisionEffect",
    "DecisionOutcome",
    "SkipVerdict",
    "ValidationPolicy",
    "amount_tolerance",
    "amounts_match",
    "apply_decision",
    "build_steps",
    "can_decide",
    "compare_core_fields",
    "evaluate_approval_for_operation",
    "evaluate_auto_approval",
    "evaluate_skip_request",
    "find_band_gaps",
    "is_expired",
    "order_chains",
    "select_chain",
]
