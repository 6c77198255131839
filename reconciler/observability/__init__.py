"""
Observability module - Logging and Metrics.
"""

from reconciler.observability.logging import get_logger, log_context, setup_logging
from reconciler.observability.metrics import metrics

__all__ = [
    "get_logger",
    "log_context",
    "setup_logging",
    "metrics",
]
