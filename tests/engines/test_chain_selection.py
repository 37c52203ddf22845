"""
Tests for the pure chain selection engine.

Tests cover:
- select_chain: band matching, priority ordering, bounded fallback, none
- evaluate_auto_approval: threshold, same-user flag, missing amount
- find_band_gaps: contiguous, gapped, open-ended and empty chain sets
- Determinism and inclusive-band properties (hypothesis)
"""

from decimal import Decimal
from uuid import uuid4

from hypothesis import given, settings
from hypothesis import strategies as st

from approval_engines.chain_selection import (
    evaluate_auto_approval,
    find_band_gaps,
    order_chains,
    select_chain,
)
from approval_engines.tracer import compute_input_fingerprint
from approval_kernel.domain.approval import ApprovalChain
from approval_kernel.domain.operations import OperationType, Role


# =========================================================================
# Factory helpers
# =========================================================================


def make_chain(
    chain_name: str = "chain",
    min_amount: Decimal | None = None,
    max_amount: Decimal | None = None,
    auto_approve_below: Decimal | None = None,
    auto_approve_same_user: bool = False,
    priority: int = 1,
    is_active: bool = True,
) -> ApprovalChain:
    return ApprovalChain(
        id=uuid4(),
        chain_name=chain_name,
        operation_type=OperationType.PURCHASE,
        required_roles=(Role.PURCHASING, Role.FINANCE),
        min_amount=min_amount,
        max_amount=max_amount,
        auto_approve_below=auto_approve_below,
        auto_approve_same_user=auto_approve_same_user,
        priority=priority,
        is_active=is_active,
    )


STANDARD = make_chain("standard", Decimal("0"), Decimal("20000"), Decimal("5000"), priority=2)
LARGE = make_chain("large", Decimal("20000"), None)


# =========================================================================
# select_chain
# =========================================================================


class TestSelectChain:
    """Band matching and ordering."""

    def test_amount_inside_band_selects_that_chain(self):
        selection = select_chain([STANDARD, LARGE], amount=Decimal("15000"))
        assert selection.chain == STANDARD
        assert not selection.used_fallback

    def test_amount_above_standard_band_selects_large(self):
        selection = select_chain([STANDARD, LARGE], amount=Decimal("25000"))
        assert selection.chain == LARGE

    def test_band_bounds_are_inclusive(self):
        """Both min_amount and max_amount belong to the band."""
        assert select_chain([STANDARD, LARGE], amount=Decimal("20000")).chain == STANDARD
        assert select_chain([STANDARD, LARGE], amount=Decimal("20000.01")).chain == LARGE
        assert select_chain([STANDARD, LARGE], amount=Decimal("0")).chain == STANDARD

    def test_sub_cent_amount_at_shared_boundary_is_covered(self):
        selection = select_chain([STANDARD, LARGE], amount=Decimal("20000.005"))
        assert selection.chain == LARGE
        assert not selection.used_fallback

    def test_missing_amount_matches_first_chain_in_order(self):
        selection = select_chain([STANDARD, LARGE], amount=None)
        assert selection.chain == STANDARD

    def test_missing_amount_breaks_priority_ties_by_name(self):
        a = make_chain("a", Decimal("0"), Decimal("10"))
        b = make_chain("b", Decimal("10"), None)
        assert select_chain([b, a], amount=None).chain == a

    def test_higher_priority_wins_when_bands_overlap(self):
        low = make_chain("a-low", Decimal("0"), Decimal("100000"), priority=1)
        high = make_chain("b-high", Decimal("0"), Decimal("100000"), priority=5)
        assert select_chain([low, high], amount=Decimal("10")).chain == high

    def test_inactive_chains_are_ignored(self):
        inactive = make_chain("inactive", Decimal("0"), Decimal("100"), is_active=False)
        selection = select_chain([inactive], amount=Decimal("50"))
        assert selection.chain is None
        assert selection.candidates == 0

    def test_gap_falls_back_to_first_bounded_chain(self):
        """An amount in no band uses the highest-priority bounded chain."""
        bounded = make_chain("bounded", Decimal("0"), Decimal("1000"))
        upper = make_chain("upper", Decimal("5000"), None, priority=3)
        selection = select_chain([upper, bounded], amount=Decimal("2000"))
        assert selection.chain == bounded
        assert selection.used_fallback

    def test_no_bounded_chain_and_no_match_returns_none(self):
        upper = make_chain("upper", Decimal("5000"), None)
        selection = select_chain([upper], amount=Decimal("10"))
        assert not selection.found

    def test_empty_candidate_list(self):
        assert select_chain([], amount=Decimal("1")).chain is None

    def test_order_is_deterministic_for_equal_priority(self):
        b = make_chain("b", priority=2)
        a = make_chain("a", priority=2)
        c = make_chain("c", priority=9)
        assert [ch.chain_name for ch in order_chains([b, a, c])] == ["c", "a", "b"]


# =========================================================================
# evaluate_auto_approval
# =========================================================================


class TestAutoApproval:
    """Auto-approve threshold and same-user flag."""

    def test_below_threshold_is_auto_approved(self):
        decision = evaluate_auto_approval(STANDARD, amount=Decimal("4999.99"))
        assert not decision.requires_approval

    def test_threshold_is_exclusive(self):
        decision = evaluate_auto_approval(STANDARD, amount=Decimal("5000"))
        assert decision.requires_approval

    def test_missing_amount_never_auto_approves_on_threshold(self):
        decision = evaluate_auto_approval(STANDARD, amount=None, requested_by="worker-1")
        assert decision.requires_approval

    def test_chain_without_threshold_requires_approval(self):
        assert evaluate_auto_approval(LARGE, amount=Decimal("1")).requires_approval

    def test_same_user_flag_auto_approves_requester_actions(self):
        chain = make_chain("self", auto_approve_same_user=True)
        decision = evaluate_auto_approval(chain, amount=Decimal("1000000"), requested_by="u-1")
        assert not decision.requires_approval
        assert "auto-approves requester" in decision.reason

    def test_same_user_flag_needs_a_requester(self):
        chain = make_chain("self", auto_approve_same_user=True)
        assert evaluate_auto_approval(chain, amount=Decimal("1"), requested_by=None).requires_approval

    def test_negative_amount_is_never_auto_approved(self):
        decision = evaluate_auto_approval(STANDARD, amount=Decimal("-250000"))
        assert decision.requires_approval
        assert "Negative amount" in decision.reason

    def test_negative_amount_ignores_same_user_flag(self):
        chain = make_chain("self", auto_approve_same_user=True)
        assert evaluate_auto_approval(chain, amount=Decimal("-1"), requested_by="u-1").requires_approval

    def test_amount_outside_chain_band_is_never_auto_approved(self):
        tiny = make_chain("tiny", Decimal("0"), Decimal("100"), auto_approve_below=Decimal("1000000"))
        decision = evaluate_auto_approval(tiny, amount=Decimal("5000"))
        assert decision.requires_approval
        assert "outside the band" in decision.reason


# =========================================================================
# find_band_gaps
# =========================================================================


class TestBandGaps:
    """Coverage of [0, infinity) by active chain bands."""

    def test_contiguous_bands_have_no_gaps(self):
        assert find_band_gaps([STANDARD, LARGE]) == ()

    def test_unbounded_chain_covers_everything(self):
        assert find_band_gaps([make_chain("all")]) == ()

    def test_no_active_chains_is_one_open_gap(self):
        assert find_band_gaps([]) == ((Decimal("0"), None),)

    def test_gap_between_bands(self):
        low = make_chain("low", Decimal("0"), Decimal("1000"))
        high = make_chain("high", Decimal("5000"), None)
        assert find_band_gaps([low, high]) == ((Decimal("1000"), Decimal("5000")),)

    def test_uncovered_upper_tail(self):
        low = make_chain("low", Decimal("0"), Decimal("1000"))
        assert find_band_gaps([low]) == ((Decimal("1000"), None),)

    def test_uncovered_lower_range(self):
        high = make_chain("high", Decimal("100"), None)
        assert find_band_gaps([high]) == ((Decimal("0"), Decimal("100")),)

    def test_one_cent_step_between_bands_is_a_gap(self):
        low = make_chain("low", Decimal("0"), Decimal("20000"))
        high = make_chain("high", Decimal("20000.01"), None)
        assert find_band_gaps([low, high]) == ((Decimal("20000"), Decimal("20000.01")),)


# =========================================================================
# Properties
# =========================================================================


amounts = st.decimals(
    min_value=Decimal("0"), max_value=Decimal("1000000"), places=2,
    allow_nan=False, allow_infinity=False,
)


class TestSelectionProperties:
    """Property-based checks over random amounts and band layouts."""

    @settings(max_examples=200)
    @given(amount=amounts)
    def test_contiguous_layout_always_selects_a_containing_band(self, amount):
        selection = select_chain([STANDARD, LARGE], amount=amount)
        assert selection.found
        assert not selection.used_fallback
        assert selection.chain.band_contains(amount)

    @settings(max_examples=100)
    @given(amount=amounts, split=amounts)
    def test_selection_is_deterministic(self, amount, split):
        chains = [
            make_chain("lower", Decimal("0"), split),
            make_chain("upper", split, None),
        ]
        first = select_chain(chains, amount=amount)
        second = select_chain(list(reversed(chains)), amount=amount)
        assert first.chain == second.chain

    @settings(max_examples=100)
    @given(amount=amounts, threshold=amounts)
    def test_auto_approval_matches_strict_threshold(self, amount, threshold):
        chain = make_chain("t", auto_approve_below=threshold)
        decision = evaluate_auto_approval(chain, amount=amount)
        assert decision.requires_approval == (amount >= threshold)


# =========================================================================
# Engine tracing
# =========================================================================


class TestEngineTrace:

    def test_select_chain_emits_trace(self, captured_logs):
        select_chain([STANDARD, LARGE], amount=Decimal("100"))

        traces = [r for r in captured_logs() if r["message"] == "APPROVAL_ENGINE_TRACE"]
        assert len(traces) == 1
        assert traces[0]["engine_name"] == "chain_selection"
        assert traces[0]["function"] == "select_chain"
        assert len(traces[0]["input_fingerprint"]) == 16

    def test_fingerprint_is_deterministic(self):
        a = compute_input_fingerprint(("amount",), {"amount": Decimal("100.00")})
        b = compute_input_fingerprint(("amount",), {"amount": Decimal("100")})
        c = compute_input_fingerprint(("amount",), {"amount": Decimal("101")})
        assert a == b
        assert a != c

    def test_missing_field_fingerprints_as_null(self):
        assert compute_input_fingerprint(("amount",), {}) == compute_input_fingerprint(
            ("amount",), {"amount": None},
        )
