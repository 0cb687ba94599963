"""
Tests for logging context, metrics helpers, tracing and migration helpers.
"""

import pytest
import structlog
from prometheus_client import REGISTRY

from vidgro.db.migration_runner import sync_database_url
from vidgro.observability.logging import log_context
from vidgro.observability.metrics import LedgerMetrics, metrics, track_http_request
from vidgro.observability.tracing import trace_operation


def sample(name: str, labels: dict[str, str]) -> float:
    return REGISTRY.get_sample_value(name, labels) or 0.0


class TestLogContext:
    def test_binds_and_unbinds(self) -> None:
        with log_context(request_id="req-1"):
            assert structlog.contextvars.get_contextvars()["request_id"] == "req-1"
        assert "request_id" not in structlog.contextvars.get_contextvars()


class TestMetrics:
    def test_global_instance(self) -> None:
        assert isinstance(metrics, LedgerMetrics)

    def test_record_transaction_counts_outcomes(self) -> None:
        labels = {"transaction_type": "refund", "outcome": "success"}
        before = sample("vidgro_ledger_transactions_total", labels)

        metrics.record_transaction("refund", 80, "success")

        assert sample("vidgro_ledger_transactions_total", labels) == before + 1

    def test_track_http_request_records_status(self) -> None:
        labels = {"endpoint": "/test", "method": "GET", "status_code": "418"}
        before = sample("vidgro_http_requests_total", labels)

        with track_http_request("/test", "GET") as tracker:
            tracker.set_status_code(418)

        assert sample("vidgro_http_requests_total", labels) == before + 1


class TestTracing:
    def test_operation_yields_span(self) -> None:
        with trace_operation("unit_test", key="value") as span:
            span.set_attribute("extra", 1)

    def test_errors_propagate(self) -> None:
        with pytest.raises(RuntimeError):
            with trace_operation("unit_test"):
                raise RuntimeError("boom")


class TestMigrationRunner:
    def test_sync_url_swaps_driver(self) -> None:
        assert (
            sync_database_url("postgresql+asyncpg://u:p@db/vidgro")
            == "postgresql+psycopg2://u:p@db/vidgro"
        )
