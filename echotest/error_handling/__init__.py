"""
Error handling for echotest.

Provides the exception hierarchy that separates retryable provider faults,
process-fatal errors, test-logic failures and recoverable cache faults.
"""

from .exceptions import (
    NON_RETRYABLE_STATUS_CODES,
    CacheError,
    ConfigurationError,
    EchoTestError,
    GenerationError,
    InvalidResponseError,
    LockTimeoutError,
    MaxRetriesError,
    NonRetryableError,
    ProviderError,
    RateLimitError,
    TestLogicError,
    ToolExecutionError,
    UnknownToolError,
)

__all__ = [
    "NON_RETRYABLE_STATUS_CODES",
    "EchoTestError",
    "NonRetryableError",
    "ConfigurationError",
    "ProviderError",
    "RateLimitError",
    "MaxRetriesError",
    "TestLogicError",
    "GenerationError",
    "InvalidResponseError",
    "UnknownToolError",
    "ToolExecutionError",
    "CacheError",
    "LockTimeoutError",
]
