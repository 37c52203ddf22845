"""
approval_engines.chain_selection -- Pure chain selection and auto-approval rules.

Responsibility:
    Given the active chains for one operation type, pick the chain that
    governs an amount, decide whether the operation may proceed without
    sign-off, and find the amount ranges no chain covers.

Architecture position:
    Engines -- pure decision layer, zero I/O.
    May only import approval_kernel/domain/ types.

Invariants enforced:
    - Deterministic ordering: priority descending, then chain name, then
      id.  Identical inputs always select the same chain.
    - Inclusive bands: ``min_amount <= amount <= max_amount``; a missing
      bound is unbounded and a missing amount matches any band.
    - Fallback: when no band contains the amount, the highest-priority
      chain with BOTH bounds set is selected and flagged
      ``used_fallback=True`` so the caller can log it.
    - No chain is never "no approval needed"; that decision belongs to
      the caller, which fails closed.
    - Auto-approval never applies to a negative amount or to an amount
      outside the chain's own band (a fallback selection).

Failure modes:
    - Returns ``ChainSelection(chain=None)`` when nothing matches.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal

from approval_engines.tracer import traced_engine
from approval_kernel.domain.approval import ApprovalChain


@dataclass(frozen=True)
class ChainSelection:
    """Outcome of selecting a chain for an amount."""

    chain: ApprovalChain | None
    used_fallback: bool = False
    candidates: int = 0

    @property
    def found(self) -> bool:
        return self.chain is not None


@dataclass(frozen=True)
class AutoApprovalDecision:
    requires_approval: bool
    reason: str


def order_chains(chains: Iterable[ApprovalChain]) -> list[ApprovalChain]:
    """Active chains in deterministic selection order."""
    return sorted(
        (c for c in chains if c.is_active),
        key=lambda c: (-c.priority, c.chain_name, str(c.id)),
    )


@traced_engine("chain_selection", "1.0", fingerprint_fields=("amount",))
def select_chain(
    chains: Iterable[ApprovalChain],
    amount: Decimal | None = None,
) -> ChainSelection:
    """Select the governing chain for ``amount``.

    Args:
        chains: Candidate chains for a single operation type.
        amount: Operation amount, or None when the operation has none.
    """
    ordered = order_chains(chains)

    for chain in ordered:
        if chain.band_contains(amount):
            return ChainSelection(chain=chain, candidates=len(ordered))

    for chain in ordered:
        if chain.is_bounded:
            return ChainSelection(
                chain=chain, used_fallback=True, candidates=len(ordered),
            )

    return ChainSelection(chain=None, candidates=len(ordered))


@traced_engine(
    "auto_approval", "1.0",
    fingerprint_fields=("amount", "requested_by"),
)
def evaluate_auto_approval(
    chain: ApprovalChain,
    amount: Decimal | None = None,
    requested_by: str | None = None,
) -> AutoApprovalDecision:
    """Decide whether an operation under ``chain`` needs human sign-off."""
    if amount is not None and amount < 0:
        return AutoApprovalDecision(
            requires_approval=True,
            reason=f"Negative amount {amount} always requires approval",
        )

    if not chain.band_contains(amount):
        return AutoApprovalDecision(
            requires_approval=True,
            reason=f"Amount {amount} is outside the band of chain {chain.chain_name}",
        )

    if (
        amount is not None
        and chain.auto_approve_below is not None
        and amount < chain.auto_approve_below
    ):
        return AutoApprovalDecision(
            requires_approval=False,
            reason=f"Amount {amount} below auto-approve threshold {chain.auto_approve_below}",
        )

    if chain.auto_approve_same_user and requested_by:
        return AutoApprovalDecision(
            requires_approval=False,
            reason=f"Chain {chain.chain_name} auto-approves requester actions",
        )

    return AutoApprovalDecision(
        requires_approval=True,
        reason=f"Approval required by chain {chain.chain_name}",
    )


def find_band_gaps(
    chains: Iterable[ApprovalChain],
) -> tuple[tuple[Decimal, Decimal | None], ...]:
    """Ranges of ``[0, inf)`` not covered by any active chain's band.

    Each gap is ``(low, high)`` exclusive of the covering bands; ``high``
    is None for an uncovered upper tail.  Any amount strictly between two
    bands is a gap, however small.  An active chain with no bounds
    covers everything.
    """
    active = [c for c in chains if c.is_active]
    if not active:
        return ((Decimal("0"), None),)

    bands = sorted(
        (
            (
                c.min_amount if c.min_amount is not None else Decimal("0"),
                c.max_amount,
            )
            for c in active
        ),
        key=lambda band: band[0],
    )

    gaps: list[tuple[Decimal, Decimal | None]] = []
    covered_to: Decimal | None = None
    started = False

    for low, high in bands:
        if not started:
            if low > 0:
                gaps.append((Decimal("0"), low))
            started = True
        elif covered_to is not None and low > covered_to:
            gaps.append((covered_to, low))

        if high is None:
            return tuple(gaps)
        if covered_to is None or high > covered_to:
            covered_to = high

    gaps.append((covered_to, None))
    return tuple(gaps)
