"""
Custom exception hierarchy for echotest error handling.

Errors are split by how callers react to them: retryable provider faults,
faults that abort the process, test-logic failures that become a failed
verdict, and cache faults that are recovered locally.
"""

from typing import Any, Dict, Optional
from datetime import datetime, timezone


class EchoTestError(Exception):
    """Base exception for all echotest errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
            "cause": str(self.cause) if self.cause else None,
        }


class NonRetryableError(EchoTestError):
    """Base class for errors that should not be retried."""


class ConfigurationError(NonRetryableError):
    """Raised when required configuration is missing or invalid."""


# Provider errors

NON_RETRYABLE_STATUS_CODES = frozenset({401, 403, 500})


class ProviderError(EchoTestError):
    """Error returned by the language-model provider."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.status_code = status_code
        self.details.update({"status_code": status_code})

    @property
    def retryable(self) -> bool:
        """Authentication, authorization and server faults are never retried."""
        return self.status_code not in NON_RETRYABLE_STATUS_CODES


class RateLimitError(ProviderError):
    """Provider asked us to slow down; handled by cooldown, not by retry."""

    def __init__(self, message: str = "Rate limited by provider", **kwargs: Any):
        kwargs.setdefault("status_code", 429)
        super().__init__(message, **kwargs)


class MaxRetriesError(NonRetryableError):
    """Raised when the conversation exhausted its retry budget."""

    def __init__(self, attempts: int, last_error: Optional[BaseException] = None):
        super().__init__(
            f"Max retries reached ({attempts})",
            details={"attempts": attempts},
            cause=last_error,
        )
        self.attempts = attempts


# Test logic errors: the run completed but did not produce a usable verdict.


class TestLogicError(NonRetryableError):
    """Base class for failures that become a failed verdict instead of aborting."""

    __test__ = False

    def __init__(self, kind: str, message: str, **kwargs: Any):
        super().__init__(message, error_code=kind, **kwargs)
        self.kind = kind


class GenerationError(TestLogicError):
    """Generation ended for a terminal, non-tool reason."""

    KINDS = frozenset(
        {
            "token-limit-exceeded",
            "unsafe-content-detected",
            "max-turns-exceeded",
            "unknown",
        }
    )

    def __init__(self, kind: str, message: str, **kwargs: Any):
        if kind not in self.KINDS:
            kind = "unknown"
        super().__init__(kind, message, **kwargs)


class InvalidResponseError(TestLogicError):
    """The final model message did not carry exactly one valid verdict."""

    def __init__(self, message: str, response: Optional[str] = None, **kwargs: Any):
        super().__init__("invalid-response", message, **kwargs)
        self.response = response
        self.details.update(
            {"response_preview": response[:200] if response else None}
        )


# Tool errors


class UnknownToolError(NonRetryableError):
    """The model asked for a tool that is not in the registry."""

    def __init__(self, tool_name: str):
        super().__init__(
            f"Unknown tool requested: {tool_name}",
            details={"tool_name": tool_name},
        )
        self.tool_name = tool_name


class ToolExecutionError(EchoTestError):
    """A known tool failed while executing."""

    def __init__(self, message: str, tool_name: str, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.tool_name = tool_name
        self.details.update({"tool_name": tool_name})


# Cache errors


class CacheError(EchoTestError):
    """Cache failure; normally logged and degraded to a miss or no-op."""

    KINDS = frozenset({"file-lock", "crud", "file-system"})

    def __init__(self, kind: str, message: str, **kwargs: Any):
        super().__init__(message, error_code=kind, **kwargs)
        self.kind = kind


class LockTimeoutError(CacheError):
    """Raised by the lock context manager when acquisition is exhausted."""

    def __init__(self, lock_path: str, attempts: int):
        super().__init__(
            "file-lock",
            f"Failed to acquire lock after {attempts} attempts",
            details={"lock_path": lock_path, "attempts": attempts},
        )
        self.lock_path = lock_path
        self.attempts = attempts
