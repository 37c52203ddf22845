"""
Concurrent consumption of one approval.

Many workers race to consume the same approved request, each in its own
session and transaction.  Exactly one may win; every other worker must be
told the approval is gone, and the audit trail must show one consumption.

On SQLite the writers are serialized by BEGIN IMMEDIATE; on PostgreSQL
(DATABASE_URL) the conditional UPDATE is the only arbiter.
"""

from concurrent.futures import ThreadPoolExecutor
from threading import Barrier

import pytest

from approval_kernel.domain.approval import OperationContext, ValidationReason
from approval_kernel.domain.operations import OperationType
from approval_kernel.exceptions import ApprovalDeniedError
from approval_kernel.models.audit_event import AuditAction
from approval_services import ApprovalGate, ApprovalOrchestrator, GateStatus


pytestmark = pytest.mark.slow_locks

WORKERS = 8

SALE = {"totalAmount": 60000, "currency": "USD", "customerId": "CUST-7", "weight": 2000}


def run_in_parallel(fn, workers=WORKERS):
    barrier = Barrier(workers)

    def _worker(index):
        barrier.wait(timeout=10)
        return fn(index)

    with ThreadPoolExecutor(max_workers=workers) as pool:
        return list(pool.map(_worker, range(workers)))


class TestConsumptionRace:

    def test_exactly_one_guard_consumption_wins(
        self, committed_setup, committed_grant, default_config, deterministic_clock,
    ):
        granted = committed_grant(OperationType.SALE_ORDER, dict(SALE))

        def consume(index):
            s = committed_setup()
            try:
                guard = ApprovalOrchestrator(s, default_config, deterministic_clock).guard
                result = guard.consume_approval_request(granted.id, OperationContext(
                    operation_type=OperationType.SALE_ORDER,
                    executed_by="worker-1",
                    operation_data=dict(SALE),
                    operation_id=f"SO-{index}",
                ))
                s.commit()
                return result
            finally:
                s.close()

        results = run_in_parallel(consume)

        winners = [r for r in results if r.success]
        losers = [r for r in results if not r.success]
        assert len(winners) == 1
        assert len(losers) == WORKERS - 1
        assert {r.reason for r in losers} == {ValidationReason.RACE_CONDITION_DETECTED}

        s = committed_setup()
        try:
            orchestrator = ApprovalOrchestrator(s, default_config, deterministic_clock)
            stored = orchestrator.workflow.get_request(granted.id)
            assert stored.is_consumed
            assert stored.consumed_operation_id.startswith("SO-")
            assert len(orchestrator.auditor.get_events_by_action(AuditAction.APPROVAL_CONSUMED)) == 1
            assert len(orchestrator.auditor.get_events_by_action(AuditAction.APPROVAL_CONSUMPTION_FAILED)) == WORKERS - 1
            assert orchestrator.auditor.validate_chain() is True
        finally:
            s.rollback()
            s.close()

    def test_exactly_one_gated_operation_runs(
        self, committed_setup, committed_grant, default_config, deterministic_clock,
    ):
        granted = committed_grant(OperationType.SALE_ORDER, dict(SALE))
        gate = ApprovalGate(committed_setup, default_config, deterministic_clock)
        executed = []

        def attempt(index):
            try:
                return gate.authorize(
                    OperationType.SALE_ORDER, dict(SALE), "worker-1",
                    approval_id=granted.id,
                    operation_id=f"SO-{index}",
                    execute=lambda session: executed.append(index),
                )
            except ApprovalDeniedError as exc:
                return exc

        outcomes = run_in_parallel(attempt)

        authorized = [o for o in outcomes if not isinstance(o, ApprovalDeniedError)]
        denied = [o for o in outcomes if isinstance(o, ApprovalDeniedError)]
        assert [o.status for o in authorized] == [GateStatus.AUTHORIZED]
        assert len(executed) == 1
        assert len(denied) == WORKERS - 1
        assert {d.reason for d in denied} <= {
            ValidationReason.ALREADY_CONSUMED.value,
            ValidationReason.RACE_CONDITION_DETECTED.value,
        }
