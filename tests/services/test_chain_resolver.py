"""
Tests for ApprovalChainResolver and SqlUserDirectory.

The resolver is the fail-closed gate every sensitive operation asks first:
any doubt (lookup error, missing chain, unparseable amount) means approval
is required, and the doubt is recorded in the audit trail.
"""

from decimal import Decimal
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from approval_kernel.domain.operations import OperationType, Role
from approval_kernel.models.audit_event import AuditAction
from approval_kernel.services.chain_resolver import ApprovalChainResolver, coerce_amount


class TestCoerceAmount:

    def test_none_stays_none(self):
        assert coerce_amount(None) is None

    def test_garbage_is_none(self):
        assert coerce_amount("twelve") is None

    def test_string_is_parsed(self):
        assert coerce_amount("1,250.50") == Decimal("1250.50")


class TestFindChain:

    def test_selects_by_band(self, chain_resolver, seeded_chains):
        assert chain_resolver.find_chain(OperationType.PURCHASE, 8000).chain_name == "purchase_standard"
        assert chain_resolver.find_chain(OperationType.PURCHASE, "25000").chain_name == "purchase_large"

    def test_inactive_chains_are_invisible(self, chain_resolver, create_chain):
        create_chain(OperationType.PURCHASE, is_active=False)
        assert chain_resolver.get_active_chains(OperationType.PURCHASE) == []
        assert chain_resolver.find_chain(OperationType.PURCHASE, 10) is None

    def test_active_chains_ordered_by_priority(self, chain_resolver, create_chain):
        create_chain(OperationType.SALE_ORDER, chain_name="sale_low", priority=1)
        create_chain(OperationType.SALE_ORDER, chain_name="sale_high", priority=7)
        names = [c.chain_name for c in chain_resolver.get_active_chains("sale_order")]
        assert names == ["sale_high", "sale_low"]

    def test_band_fallback_is_logged(self, chain_resolver, create_chain, captured_logs):
        create_chain(
            OperationType.PURCHASE, chain_name="tiny",
            min_amount=Decimal("0"), max_amount=Decimal("100"),
        )
        chain = chain_resolver.find_chain(OperationType.PURCHASE, 5000, "USD")

        assert chain.chain_name == "tiny"
        fallback = [r for r in captured_logs() if r["message"] == "chain_band_fallback_used"]
        assert len(fallback) == 1
        assert fallback[0]["level"] == "WARNING"

    def test_store_errors_propagate(self, chain_resolver):
        with patch.object(
            chain_resolver, "get_active_chains",
            side_effect=OperationalError("SELECT", {}, Exception("db down")),
        ):
            with pytest.raises(OperationalError):
                chain_resolver.find_chain(OperationType.PURCHASE, 10)

    def test_unknown_operation_type_raises(self, chain_resolver):
        with pytest.raises(ValueError):
            chain_resolver.find_chain("teleport", 10)


class TestRequiresApproval:

    def test_below_auto_approve_threshold(self, chain_resolver, seeded_chains):
        assert chain_resolver.requires_approval(OperationType.PURCHASE, 4999, "USD") is False

    def test_at_threshold_requires_approval(self, chain_resolver, seeded_chains):
        assert chain_resolver.requires_approval(OperationType.PURCHASE, 5000, "USD") is True

    def test_chain_without_threshold(self, chain_resolver, seeded_chains):
        assert chain_resolver.requires_approval(OperationType.USER_ROLE_CHANGE) is True

    def test_unparseable_amount_requires_approval(self, chain_resolver, seeded_chains):
        assert chain_resolver.requires_approval(OperationType.PURCHASE, "cheap") is True

    def test_same_user_flag(self, chain_resolver, create_chain):
        create_chain(OperationType.OPERATING_EXPENSE, auto_approve_same_user=True)
        assert chain_resolver.requires_approval(
            OperationType.OPERATING_EXPENSE, 99999, requested_by="worker-1",
        ) is False

    def test_missing_chain_fails_closed_and_is_audited(self, chain_resolver, auditor_service):
        assert chain_resolver.requires_approval(
            OperationType.SUPPLY_PURCHASE, 10, "USD", requested_by="worker-1",
        ) is True

        events = auditor_service.get_events_by_action(AuditAction.APPROVAL_CHAIN_MISSING)
        assert len(events) == 1
        assert events[0].entity_id == "supply_purchase"
        assert events[0].actor_id == "worker-1"
        assert events[0].is_critical

    def test_lookup_failure_fails_closed_and_is_audited(
        self, chain_resolver, auditor_service, captured_logs,
    ):
        with patch.object(
            chain_resolver, "resolve", side_effect=RuntimeError("connection reset"),
        ):
            assert chain_resolver.requires_approval(OperationType.PURCHASE, 10) is True

        events = auditor_service.get_events_by_action(AuditAction.APPROVAL_CHAIN_LOOKUP_FAILED)
        assert len(events) == 1
        assert events[0].actor_id == "system"
        assert "RuntimeError" in events[0].description
        assert events[0].payload["new_values"]["error"] == "connection reset"

        # The missing-chain action stays distinguishable from the lookup failure.
        assert auditor_service.get_events_by_action(AuditAction.APPROVAL_CHAIN_MISSING) == []
        assert any(
            r["message"] == "approval_chain_lookup_failed" and r["level"] == "CRITICAL"
            for r in captured_logs()
        )

    def test_unknown_operation_type_fails_closed(self, chain_resolver, auditor_service):
        assert chain_resolver.requires_approval("teleport", 10, requested_by="worker-1") is True

        events = auditor_service.get_events_by_action(AuditAction.APPROVAL_CHAIN_LOOKUP_FAILED)
        assert len(events) == 1
        assert events[0].entity_id == "teleport"
        assert "ValueError" in events[0].description

    @pytest.mark.parametrize("op, amount", [
        (OperationType.PURCHASE, "-250000"),
        (OperationType.CAPITAL_ENTRY, "-1000000"),
    ])
    def test_negative_amount_requires_approval(
        self, chain_resolver, seeded_chains, auditor_service, op, amount,
    ):
        assert chain_resolver.requires_approval(op, amount, "USD", "worker-1") is True

        events = auditor_service.get_events_by_action(AuditAction.APPROVAL_AMOUNT_OUT_OF_BAND)
        assert len(events) == 1
        assert events[0].entity_id == op.value
        assert events[0].is_critical
        assert "negative amount" in events[0].description

    def test_band_fallback_never_auto_approves(self, chain_resolver, create_chain, auditor_service):
        create_chain(
            OperationType.PURCHASE, chain_name="small_only",
            min_amount=Decimal("0"), max_amount=Decimal("100"),
            auto_approve_below=Decimal("1000000"),
        )
        assert chain_resolver.requires_approval(OperationType.PURCHASE, 5000, "USD") is True

        events = auditor_service.get_events_by_action(AuditAction.APPROVAL_AMOUNT_OUT_OF_BAND)
        assert len(events) == 1
        assert events[0].severity == "warning"
        assert events[0].payload["new_values"]["chain_name"] == "small_only"

    def test_in_band_amount_records_no_band_event(self, chain_resolver, seeded_chains, auditor_service):
        chain_resolver.requires_approval(OperationType.PURCHASE, 4999, "USD")
        assert auditor_service.get_events_by_action(AuditAction.APPROVAL_AMOUNT_OUT_OF_BAND) == []


    def test_resolver_accepts_string_types(self, session, security_log, seeded_chains):
        resolver = ApprovalChainResolver(session, security_log)
        assert resolver.requires_approval("sale_order", "9999.99", "USD") is False


class TestUserDirectory:

    def test_active_users_sorted_by_id(self, user_directory, create_user):
        create_user("fin-b", Role.FINANCE)
        create_user("fin-a", Role.FINANCE)
        create_user("fin-c", Role.FINANCE, is_active=False)
        assert user_directory.active_users_with_role(Role.FINANCE) == ("fin-a", "fin-b")

    def test_roles_of_inactive_user_are_empty(self, user_directory, create_user):
        create_user("gone", Role.ADMIN, is_active=False)
        assert user_directory.get_user_roles("gone") == ()

    def test_first_active_admin(self, user_directory, standard_users):
        assert user_directory.first_active_admin() == "admin-1"

    def test_no_admin(self, user_directory, create_user):
        create_user("worker-1", Role.WORKER)
        assert user_directory.first_active_admin() is None
