"""
Metrics Collection with Prometheus.

Exposes ledger, promotion, queue and settlement metrics at /metrics.
"""

import time
from enum import Enum

from prometheus_client import Counter, Gauge, Histogram, Info

from vidgro.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    TRANSACTION_TYPE = "transaction_type"
    OUTCOME = "outcome"
    ERROR_TYPE = "error_type"


class LedgerMetrics:
    """
    Centralized metrics for the VidGro ledger service.

    Covers HTTP traffic, ledger mutations, promotion lifecycle,
    queue lookups, view settlement and errors.
    """

    def __init__(self) -> None:
        # ====================================================================
        # Service Info
        # ====================================================================
        self.service_info = Info("vidgro_service", "Service information")
        self.service_info.info(
            {"version": settings.api_version, "service_name": settings.service_name}
        )

        # ====================================================================
        # HTTP Metrics
        # ====================================================================
        self.http_requests_total = Counter(
            "vidgro_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )
        self.http_request_duration_seconds = Histogram(
            "vidgro_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )
        self.http_requests_in_progress = Gauge(
            "vidgro_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
        )

        # ====================================================================
        # Ledger Metrics
        # ====================================================================
        self.ledger_transactions_total = Counter(
            "vidgro_ledger_transactions_total",
            "Ledger transactions attempted",
            [MetricLabels.TRANSACTION_TYPE, MetricLabels.OUTCOME],
        )
        self.ledger_amount_coins = Histogram(
            "vidgro_ledger_amount_coins",
            "Absolute transaction amounts in coins",
            [MetricLabels.TRANSACTION_TYPE],
            buckets=(0, 5, 10, 25, 50, 100, 250, 500, 1000, 5000, 25000),
        )
        self.accounts_created_total = Counter(
            "vidgro_accounts_created_total",
            "Accounts created",
            ["referred"],
        )

        # ====================================================================
        # Promotion Metrics
        # ====================================================================
        self.promotions_created_total = Counter(
            "vidgro_promotions_created_total",
            "Promotions created",
            ["vip"],
        )
        self.promotions_cancelled_total = Counter(
            "vidgro_promotions_cancelled_total",
            "Promotions cancelled",
            ["within_hold"],
        )
        self.refunded_coins_total = Counter(
            "vidgro_refunded_coins_total",
            "Coins refunded on cancellation",
        )
        self.promotions_released_total = Counter(
            "vidgro_promotions_released_total",
            "Promotion rows materialised by the hold-release sweep",
            ["transition"],
        )

        # ====================================================================
        # Queue / Settlement Metrics
        # ====================================================================
        self.queue_lookups_total = Counter(
            "vidgro_queue_lookups_total",
            "Next-video lookups",
            ["hit"],
        )
        self.settlements_total = Counter(
            "vidgro_settlements_total",
            "View settlements by outcome (credited, insufficient_watch_time, or rejection)",
            [MetricLabels.OUTCOME],
        )
        self.settlement_duration_seconds = Histogram(
            "vidgro_settlement_duration_seconds",
            "View settlement duration in seconds",
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
        )

        # ====================================================================
        # Realtime Metrics
        # ====================================================================
        self.realtime_events_total = Counter(
            "vidgro_realtime_events_total",
            "Change notifications received from the database",
            ["table"],
        )
        self.realtime_resyncs_total = Counter(
            "vidgro_realtime_resyncs_total",
            "Subscribers told to resync",
            ["cause"],
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "vidgro_errors_total",
            "Total errors by type",
            [MetricLabels.ERROR_TYPE, MetricLabels.OPERATION],
        )

    # ========================================================================
    # Helper Methods
    # ========================================================================

    def record_http_request(
        self, endpoint: str, method: str, status_code: int, duration: float
    ) -> None:
        """Record HTTP request metrics."""
        self.http_requests_total.labels(
            endpoint=endpoint, method=method, status_code=status_code
        ).inc()
        self.http_request_duration_seconds.labels(endpoint=endpoint, method=method).observe(
            duration
        )

    def record_transaction(self, transaction_type: str, amount: int, outcome: str) -> None:
        """Record a ledger mutation attempt."""
        self.ledger_transactions_total.labels(
            transaction_type=transaction_type, outcome=outcome
        ).inc()
        if outcome == "success":
            self.ledger_amount_coins.labels(transaction_type=transaction_type).observe(
                abs(amount)
            )

    def record_settlement(self, outcome: str, duration: float) -> None:
        self.settlements_total.labels(outcome=outcome).inc()
        self.settlement_duration_seconds.observe(duration)

    def record_queue_lookup(self, hit: bool) -> None:
        self.queue_lookups_total.labels(hit=str(hit)).inc()

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = LedgerMetrics()


class track_http_request:
    """
    Context manager for tracking HTTP requests.

    Usage:
        with track_http_request("/v1/views", "POST") as tracker:
            response = await call_next(request)
            tracker.set_status_code(response.status_code)
    """

    def __init__(self, endpoint: str, method: str) -> None:
        self.endpoint = endpoint
        self.method = method
        self.status_code = 500
        self.start_time = 0.0

    def set_status_code(self, status_code: int) -> None:
        self.status_code = status_code

    def __enter__(self) -> "track_http_request":
        self.start_time = time.perf_counter()
        metrics.http_requests_in_progress.labels(
            endpoint=self.endpoint, method=self.method
        ).inc()
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        metrics.http_requests_in_progress.labels(
            endpoint=self.endpoint, method=self.method
        ).dec()
        metrics.record_http_request(
            self.endpoint, self.method, self.status_code, time.perf_counter() - self.start_time
        )
