"""
Monitoring module exports.
"""

from echotest.monitoring.logger import (
    JSONFormatter,
    TestLogAdapter,
    get_logger,
    log_performance_metric,
    log_test_event,
    setup_logging,
)

__all__ = [
    "setup_logging",
    "get_logger",
    "log_test_event",
    "log_performance_metric",
    "JSONFormatter",
    "TestLogAdapter",
]
