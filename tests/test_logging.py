"""Tests for structured logging (approval_kernel/logging_config.py)."""

import json
import logging
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from approval_kernel.domain.approval import OperationContext
from approval_kernel.domain.operations import OperationType
from approval_kernel.exceptions import ApprovalDeniedError
from approval_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)

PURCHASE = {"total": 8000, "currency": "USD", "supplierId": "SUP-100", "weight": 400}


@pytest.fixture(autouse=True)
def _clean_logging():
    """Start each test with no approval_kernel handlers, then restore the suite setup."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG)


@pytest.fixture
def json_lines():
    """Configure logging into a buffer; returns a reader of parsed records."""
    stream = StringIO()
    configure_logging(handler=logging.StreamHandler(stream), level=logging.DEBUG)

    def _read() -> list[dict]:
        return [json.loads(line) for line in stream.getvalue().splitlines() if line]

    return _read


# ---------------------------------------------------------------------------
# StructuredFormatter
# ---------------------------------------------------------------------------


class TestStructuredFormatter:

    def test_base_fields(self, json_lines):
        get_logger("services.chain_resolver").info("chain_selected")

        [record] = json_lines()
        assert record["level"] == "INFO"
        assert record["message"] == "chain_selected"
        assert record["logger"] == "approval_kernel.services.chain_resolver"
        assert "ts" in record

    def test_domain_values_are_serialized(self, json_lines):
        approval_id = uuid4()
        get_logger("test").info(
            "approval_requirement_evaluated",
            extra={
                "approval_id": approval_id,
                "amount": Decimal("20000.01"),
                "operation": OperationType.PURCHASE,
                "roles": frozenset({"finance", "admin"}),
            },
        )

        [record] = json_lines()
        assert record["approval_id"] == str(approval_id)
        assert record["amount"] == "20000.01"
        assert record["operation"] == "purchase"
        assert record["roles"] == ["admin", "finance"]

    def test_denied_approval_fields_are_extracted(self, json_lines):
        try:
            raise ApprovalDeniedError("APR-7", "purchase", "amount_mismatch")
        except ApprovalDeniedError:
            get_logger("test").error("approval_denied", exc_info=True)

        [record] = json_lines()
        assert record["exc_type"] == "ApprovalDeniedError"
        assert record["exc_code"] == "APPROVAL_DENIED"
        assert record["exc_reason"] == "amount_mismatch"
        assert record["exc_operation_type"] == "purchase"
        assert "traceback" in record

    def test_plain_exception_has_no_code(self, json_lines):
        try:
            raise ValueError("bad amount")
        except ValueError:
            get_logger("test").error("parse_failed", exc_info=True)

        [record] = json_lines()
        assert record["exc_message"] == "bad amount"
        assert "exc_code" not in record

    def test_bound_context_wins_over_extra(self, json_lines):
        with LogContext.bind(actor_id="fin-1"):
            get_logger("test").info("approval_decided", extra={"actor_id": "someone-else"})

        [record] = json_lines()
        assert record["actor_id"] == "fin-1"

    def test_formatter_works_on_any_handler(self):
        stream = StringIO()
        handler = logging.StreamHandler(stream)
        handler.setFormatter(StructuredFormatter())
        logger = logging.getLogger("approval_kernel.standalone")
        logger.addHandler(handler)
        try:
            logger.warning("chain_band_fallback_used", extra={"chain_name": "purchase_standard"})
        finally:
            logger.removeHandler(handler)

        record = json.loads(stream.getvalue())
        assert record["chain_name"] == "purchase_standard"


# ---------------------------------------------------------------------------
# LogContext
# ---------------------------------------------------------------------------


class TestLogContext:

    def test_bind_sets_and_restores(self):
        with LogContext.bind(request_id="APR-1", operation_type="purchase"):
            assert LogContext.get_all() == {"request_id": "APR-1", "operation_type": "purchase"}
        assert LogContext.get_all() == {}

    def test_nested_bind_overrides_then_restores_outer(self):
        with LogContext.bind(actor_id="worker-1", operation_type="purchase"):
            with LogContext.bind(actor_id="fin-1"):
                assert LogContext.get_all() == {"actor_id": "fin-1", "operation_type": "purchase"}
            assert LogContext.get_all()["actor_id"] == "worker-1"

    def test_unknown_names_and_none_are_ignored(self):
        with LogContext.bind(operation_id=None, supplier="SUP-1"):
            assert LogContext.get_all() == {}

    def test_values_are_stringified(self):
        approval_id = uuid4()
        with LogContext.bind(request_id=approval_id):
            assert LogContext.get_all() == {"request_id": str(approval_id)}

    def test_clear(self):
        with LogContext.bind(actor_id="worker-1"):
            LogContext.clear()
            assert LogContext.get_all() == {}


# ---------------------------------------------------------------------------
# configure_logging / reset_logging
# ---------------------------------------------------------------------------


class TestConfigureLogging:

    def test_idempotent(self):
        first = logging.StreamHandler(StringIO())
        second = logging.StreamHandler(StringIO())
        configure_logging(handler=first)
        configure_logging(handler=second)

        handlers = logging.getLogger("approval_kernel").handlers
        assert first in handlers
        assert second not in handlers

    def test_default_level_drops_debug(self):
        stream = StringIO()
        configure_logging(handler=logging.StreamHandler(stream))
        logger = get_logger("test")
        logger.debug("chain_selected")
        logger.info("approval_consumed")

        messages = [json.loads(line)["message"] for line in stream.getvalue().splitlines()]
        assert messages == ["approval_consumed"]

    def test_reset_removes_handlers(self):
        configure_logging(handler=logging.StreamHandler(StringIO()))
        reset_logging()
        assert logging.getLogger("approval_kernel").handlers == []

    def test_get_logger_namespaces_under_kernel(self):
        assert get_logger("services.consumption_guard").name == "approval_kernel.services.consumption_guard"


# ---------------------------------------------------------------------------
# Context stamped by the services
# ---------------------------------------------------------------------------


class TestServiceContext:

    def test_consumption_log_carries_approval_context(
        self, json_lines, consumption_guard, standard_users, seeded_chains, grant_approval,
    ):
        approved = grant_approval(OperationType.PURCHASE, dict(PURCHASE))
        context = OperationContext(
            operation_type=OperationType.PURCHASE,
            executed_by="worker-1",
            operation_data=dict(PURCHASE),
            operation_id="PO-77",
        )
        assert consumption_guard.consume_approval_request(approved.id, context).success

        [consumed] = [r for r in json_lines() if r["message"] == "approval_consumed"]
        assert consumed["request_id"] == str(approved.id)
        assert consumed["actor_id"] == "worker-1"
        assert consumed["operation_type"] == "purchase"
        assert consumed["operation_id"] == "PO-77"
        assert consumed["request_number"] == approved.request_number
        assert LogContext.get_all() == {}
