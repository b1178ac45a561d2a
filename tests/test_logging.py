"""
Tests for ledger log output.

Covers the JSON line shape of ledger events, context binding across a
payment operation, engine trace records and handler installation.
"""

import json
import logging
from datetime import date
from decimal import Decimal
from io import StringIO

import pytest

from ledger_engines.tracer import compute_input_fingerprint
from ledger_kernel.domain.records import DocumentKind, DocumentStatus
from ledger_kernel.exceptions import AmountExceedsRemainingError
from ledger_kernel.logging_config import (
    CONTEXT_FIELDS,
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)

TODAY = date(2024, 3, 15)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Start each test unconfigured; restore the suite's handler afterwards."""
    reset_logging()
    yield
    reset_logging()
    configure_logging(level="DEBUG")


def _make_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    return handler, stream


def _lines(stream: StringIO) -> list[dict]:
    return [json.loads(line) for line in stream.getvalue().splitlines() if line]


def _events(records: list[dict], message: str) -> list[dict]:
    return [r for r in records if r["message"] == message]


# ---------------------------------------------------------------------------
# Line format
# ---------------------------------------------------------------------------


class TestStructuredFormatter:
    """One JSON object per ledger event."""

    def test_amounts_and_statuses_stay_exact(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)

        get_logger("engines.balance").info("document_resolved", extra={
            "document_id": "inv-1",
            "status": DocumentStatus.PARTIALLY_PAID,
            "remaining": Decimal("0.10"),
            "as_of": TODAY,
        })

        (record,) = _lines(stream)
        assert record["logger"] == "ledger.engines.balance"
        assert record["level"] == "INFO"
        assert record["status"] == "Partially Paid"
        assert record["remaining"] == "0.10"
        assert record["as_of"] == "2024-03-15"

    def test_rejected_allocation_exposes_error_fields(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)

        try:
            raise AmountExceedsRemainingError("inv-1", "deposit", Decimal("400"), Decimal("300"))
        except AmountExceedsRemainingError:
            get_logger("engines.allocation").error("split_allocation_rejected", exc_info=True)

        (record,) = _lines(stream)
        assert record["exc_code"] == "AMOUNT_EXCEEDS_REMAINING"
        assert record["exc_type"] == "AmountExceedsRemainingError"
        assert record["exc_document_id"] == "inv-1"
        assert record["exc_cap"] == "deposit"
        assert record["exc_requested"] == "400"
        assert record["exc_remaining"] == "300"
        assert "traceback" in record


# ---------------------------------------------------------------------------
# Context binding
# ---------------------------------------------------------------------------


class TestLogContext:
    """Operation identifiers bound around a block."""

    def test_nested_bind_restores_outer_fields(self):
        with LogContext.bind(correlation_id="op-1", document_id="inv-1"):
            with LogContext.bind(batch_id="batch-9", document_id=None):
                assert LogContext.get_all() == {
                    "correlation_id": "op-1",
                    "batch_id": "batch-9",
                    "document_id": "inv-1",
                }
            assert "batch_id" not in LogContext.get_all()
        assert LogContext.get_all() == {}

    def test_unknown_field_binds_nothing(self):
        with pytest.raises(TypeError):
            with LogContext.bind(correlation_id="op-1", invoice_number="INV-00001"):
                pass

        assert LogContext.get_all() == {}

    def test_set_rejects_unknown_field(self):
        with pytest.raises(TypeError):
            LogContext.set(tenant="t1")

    def test_fields_emitted_in_declared_order(self):
        LogContext.set(**{name: f"v-{name}" for name in reversed(CONTEXT_FIELDS)})

        assert tuple(LogContext.get_all()) == CONTEXT_FIELDS


# ---------------------------------------------------------------------------
# Events emitted by ledger operations
# ---------------------------------------------------------------------------


class TestOperationEvents:
    """Log lines produced by service calls."""

    def test_bulk_payment_commit_carries_batch(
        self, service, memory_store, make_invoice, captured_logs
    ):
        memory_store.create_invoice(make_invoice())

        plan = service.record_bulk_payment(["inv-1"], Decimal("250.00"), actor_id="clerk-7")

        records = captured_logs()
        (started,) = _events(records, "bulk_payment_started")
        (committed,) = _events(records, "bulk_payment_committed")
        assert committed["batch_id"] == plan.batch_id == "id-0001"
        assert committed["actor_id"] == "clerk-7"
        assert committed["command_count"] == 2
        assert committed["correlation_id"] == started["correlation_id"]
        assert "batch_id" not in started
        assert started["amount"] == "250.00"

    def test_engine_trace_fields(self, service, memory_store, make_invoice, captured_logs):
        memory_store.create_invoice(make_invoice())

        service.record_bulk_payment(["inv-1"], Decimal("250.00"))

        traces = [
            r for r in _events(captured_logs(), "LEDGER_ENGINE_TRACE")
            if r["engine_name"] == "allocation"
        ]
        assert len(traces) == 1
        trace = traces[0]
        assert trace["trace_type"] == "LEDGER_ENGINE_TRACE"
        assert trace["engine_version"] == "1.0"
        assert trace["function"] == "PaymentAllocator.plan_waterfall"
        assert len(trace["input_fingerprint"]) == 16
        int(trace["input_fingerprint"], 16)
        assert isinstance(trace["duration_ms"], (int, float))
        assert trace["logger"] == "ledger.engines.tracer"
        assert "correlation_id" in trace

    def test_same_inputs_same_fingerprint(
        self, service, memory_store, make_invoice, captured_logs
    ):
        memory_store.create_invoice(make_invoice())

        service.list_documents(DocumentKind.INVOICE)
        service.list_documents(DocumentKind.INVOICE)

        fingerprints = [
            r["input_fingerprint"]
            for r in _events(captured_logs(), "LEDGER_ENGINE_TRACE")
            if r["engine_name"] == "balance"
        ]
        assert len(fingerprints) == 2
        assert fingerprints[0] == fingerprints[1]
        assert fingerprints[0] == compute_input_fingerprint(("today",), {"today": TODAY})

    def test_rejected_split_logged_in_document_context(
        self, service, memory_store, make_invoice, captured_logs
    ):
        memory_store.create_invoice(make_invoice())

        with pytest.raises(AmountExceedsRemainingError):
            service.record_split_payment("inv-1", Decimal("1500.00"))

        (rejected,) = _events(captured_logs(), "split_allocation_rejected")
        assert rejected["document_id"] == "inv-1"
        assert rejected["level"] == "WARNING"
        assert "correlation_id" in rejected


# ---------------------------------------------------------------------------
# Handler installation
# ---------------------------------------------------------------------------


class TestConfigureLogging:
    """Handler installation on the ``ledger`` logger."""

    def test_idempotent(self):
        h1, _ = _make_handler()
        configure_logging(handler=h1)
        h2, _ = _make_handler()
        configure_logging(handler=h2)

        ledger_logger = logging.getLogger("ledger")
        assert h1 in ledger_logger.handlers
        assert h2 not in ledger_logger.handlers
        structured = [
            h for h in ledger_logger.handlers if isinstance(h.formatter, StructuredFormatter)
        ]
        assert structured == [h1]

    def test_level_by_name(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler, level="warning")

        get_logger("services.reconciliation").info("bulk_payment_started")
        get_logger("services.reconciliation").warning("bulk_payment_failed")

        assert [r["message"] for r in _lines(stream)] == ["bulk_payment_failed"]

    def test_reset_detaches_handler(self):
        handler, _ = _make_handler()
        configure_logging(handler=handler)

        reset_logging()

        assert handler not in logging.getLogger("ledger").handlers
