"""
Observability module - Logging, Metrics, and Tracing.
"""

from vidgro.observability.logging import get_logger, log_context, setup_logging
from vidgro.observability.metrics import metrics
from vidgro.observability.tracing import setup_tracing, trace_operation

__all__ = [
    "get_logger",
    "log_context",
    "setup_logging",
    "metrics",
    "setup_tracing",
    "trace_operation",
]
