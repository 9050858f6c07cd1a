"""
Observability module - Logging, Metrics, and Tracing.
"""

from studycards.observability.logging import get_logger, log_context, setup_logging
from studycards.observability.metrics import metrics
from studycards.observability.tracing import setup_tracing, trace_operation

__all__ = [
    "get_logger",
    "log_context",
    "setup_logging",
    "metrics",
    "setup_tracing",
    "trace_operation",
]
