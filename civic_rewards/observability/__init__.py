"""
Observability module - Logging, Metrics, and Tracing.
"""

from civic_rewards.observability.logging import get_logger, log_context, setup_logging
from civic_rewards.observability.metrics import metrics
from civic_rewards.observability.tracing import setup_tracing, trace_operation

__all__ = [
    "get_logger",
    "log_context",
    "setup_logging",
    "metrics",
    "setup_tracing",
    "trace_operation",
]
