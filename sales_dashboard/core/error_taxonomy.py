"""
Error Taxonomy for Dashboard Data Fetching

Provides systematic classification of failure modes with:
- Error categories aligned to the fetch pipeline (transport, upstream, coordination)
- Recoverability indicators (drives retry decisions)
- Suggested recovery actions
- Structured error context for debugging
"""

from enum import Enum, auto
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List
import asyncio
import logging
import traceback

import requests

logger = logging.getLogger(__name__)


class ErrorCategory(Enum):
    """Systematic classification of failure modes."""
    # Transport
    NETWORK_ERROR = auto()
    TIMEOUT = auto()

    # Upstream responses
    SERVER_ERROR = auto()
    SERVER_OVERLOADED = auto()
    CLIENT_ERROR = auto()
    AUTHENTICATION_FAILED = auto()
    SESSION_EXPIRED = auto()
    VALIDATION_FAILED = auto()
    DATA_FORMAT_ERROR = auto()

    # Coordination
    RETRY_EXHAUSTED = auto()
    ALL_CALLS_FAILED = auto()

    # System Errors
    CONFIGURATION_ERROR = auto()
    UNKNOWN_ERROR = auto()


class ErrorSeverity(Enum):
    """Severity levels for errors."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# Checked first: a message matching both sets is never retried
NON_RETRYABLE_PATTERNS = (
    "400", "401", "403", "404", "419", "422",
    "unauthorized",
    "forbidden",
    "session expired",
    "sesión ha expirado",
    "csrf",
)

RETRYABLE_PATTERNS = (
    "network",
    "timeout",
    "timed out",
    "connection",
    "500", "502", "503", "504",
    "overloaded",
    "sobrecargado",
    "took too long",
    "tardó demasiado",
    "execution time",
    "abort",
)

TRANSIENT_EXCEPTION_TYPES = (
    requests.ConnectionError,
    requests.Timeout,
    asyncio.TimeoutError,
    ConnectionError,
)


@dataclass
class RecoveryAction:
    """Suggested action to recover from an error."""
    action_type: str
    description: str
    parameters: Dict[str, Any] = field(default_factory=dict)

    @staticmethod
    def retry(delay_seconds: float = 1.0, max_attempts: int = 3) -> "RecoveryAction":
        return RecoveryAction(
            action_type="retry",
            description=f"Retry after {delay_seconds}s (max {max_attempts} attempts)",
            parameters={"delay": delay_seconds, "max_attempts": max_attempts}
        )

    @staticmethod
    def fallback(fallback_method: str) -> "RecoveryAction":
        return RecoveryAction(
            action_type="fallback",
            description=f"Use fallback: {fallback_method}",
            parameters={"method": fallback_method}
        )

    @staticmethod
    def reauthenticate() -> "RecoveryAction":
        return RecoveryAction(
            action_type="reauthenticate",
            description="Refresh the session and reload the dashboard",
        )

    @staticmethod
    def abort(reason: str) -> "RecoveryAction":
        return RecoveryAction(
            action_type="abort",
            description=f"Abort operation: {reason}",
            parameters={"reason": reason}
        )


@dataclass
class ClassifiedError:
    """A classified error with full context."""
    category: ErrorCategory
    severity: ErrorSeverity
    message: str
    recoverable: bool
    recovery_actions: List[RecoveryAction]

    original_exception: Optional[Exception] = None
    pipeline_phase: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)
    stack_trace: Optional[str] = None
    user_message: Optional[str] = None

    def __post_init__(self):
        if self.original_exception and not self.stack_trace:
            self.stack_trace = ''.join(traceback.format_exception(
                type(self.original_exception),
                self.original_exception,
                self.original_exception.__traceback__
            ))

        if not self.user_message:
            self.user_message = self._generate_user_message()

    def _generate_user_message(self) -> str:
        """Generate a user-friendly error message."""
        messages = {
            ErrorCategory.NETWORK_ERROR: "Unable to reach the sales service. Check your connection.",
            ErrorCategory.TIMEOUT: "The sales service took too long to respond. Please try again.",
            ErrorCategory.SERVER_ERROR: "The sales service is temporarily unavailable.",
            ErrorCategory.SERVER_OVERLOADED: "The sales service is overloaded. Please try again in a moment.",
            ErrorCategory.SESSION_EXPIRED: "Your session has expired. Please reload the dashboard.",
            ErrorCategory.AUTHENTICATION_FAILED: "Unable to authenticate with the sales service.",
            ErrorCategory.ALL_CALLS_FAILED: "No dashboard data could be loaded.",
        }
        return messages.get(self.category, f"An error occurred: {self.message}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category.name,
            "severity": self.severity.value,
            "message": self.message,
            "user_message": self.user_message,
            "recoverable": self.recoverable,
            "recovery_actions": [
                {"type": a.action_type, "description": a.description}
                for a in self.recovery_actions
            ],
            "pipeline_phase": self.pipeline_phase,
            "context": self.context,
        }


class DashboardError(Exception):
    """Base exception for dashboard data errors with classification."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN_ERROR,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        recoverable: bool = False,
        recovery_actions: List[RecoveryAction] = None,
        context: Dict[str, Any] = None,
    ):
        super().__init__(message)
        self.category = category
        self.severity = severity
        self.recoverable = recoverable
        self.recovery_actions = recovery_actions or []
        self.context = context or {}

    def classify(self) -> ClassifiedError:
        return ClassifiedError(
            category=self.category,
            severity=self.severity,
            message=str(self),
            recoverable=self.recoverable,
            recovery_actions=self.recovery_actions,
            original_exception=self,
            context=self.context,
        )


class UpstreamRequestError(DashboardError):
    """Raised when the request never produced an HTTP response."""

    def __init__(self, message: str, timeout: bool = False):
        super().__init__(
            message,
            category=ErrorCategory.TIMEOUT if timeout else ErrorCategory.NETWORK_ERROR,
            severity=ErrorSeverity.MEDIUM,
            recoverable=True,
            recovery_actions=[RecoveryAction.retry()],
        )
        self.timeout = timeout


class UpstreamHTTPError(DashboardError):
    """Raised for non-2xx responses. The message format is what the classifier matches on."""

    def __init__(self, status: int, message: str = None):
        server_side = status >= 500
        super().__init__(
            message or f"HTTP error! status: {status}",
            category=ErrorCategory.SERVER_ERROR if server_side else ErrorCategory.CLIENT_ERROR,
            severity=ErrorSeverity.MEDIUM if server_side else ErrorSeverity.HIGH,
            recoverable=server_side,
            context={"status": status},
        )
        self.status = status


class SessionExpiredError(DashboardError):
    """Raised when the upstream rejects the session (HTTP 419)."""

    def __init__(self, message: str = "Session expired"):
        super().__init__(
            message,
            category=ErrorCategory.SESSION_EXPIRED,
            severity=ErrorSeverity.HIGH,
            recoverable=False,
            recovery_actions=[RecoveryAction.reauthenticate()],
            context={"status": 419},
        )


class UpstreamResponseError(DashboardError):
    """Raised when the upstream answers with success=false."""

    def __init__(self, message: str):
        super().__init__(
            message,
            category=ErrorCategory.VALIDATION_FAILED,
            severity=ErrorSeverity.MEDIUM,
        )


class DataFormatError(DashboardError):
    """Raised when a response does not match the expected schema."""

    def __init__(self, message: str, context: Dict[str, Any] = None):
        super().__init__(
            message,
            category=ErrorCategory.DATA_FORMAT_ERROR,
            severity=ErrorSeverity.HIGH,
            context=context,
        )


class RetryExhaustedError(DashboardError):
    """Raised when every allowed attempt failed with a retryable error."""

    def __init__(self, label: str, attempts: int, total_delay: float, errors: List[Exception]):
        last = errors[-1] if errors else None
        super().__init__(
            f"{label} failed after {attempts} attempts. Last error: {last}",
            category=ErrorCategory.RETRY_EXHAUSTED,
            severity=ErrorSeverity.HIGH,
            recoverable=False,
            recovery_actions=[RecoveryAction.fallback("cached data")],
            context={
                "attempts": attempts,
                "total_delay": total_delay,
                "errors": [str(e) for e in errors],
            },
        )
        self.label = label
        self.attempts = attempts
        self.total_delay = total_delay
        self.errors = list(errors)

    @property
    def retry_history(self) -> Dict[str, Any]:
        return {
            "attempts": self.attempts,
            "total_delay": self.total_delay,
            "errors": [str(e) for e in self.errors],
        }


class AllCallsFailedError(DashboardError):
    """Raised when every sub-fetch of a coordination pass failed."""

    def __init__(self, failures: Dict[str, Exception]):
        summary = ", ".join(f"{label}: {exc}" for label, exc in failures.items())
        super().__init__(
            f"All API calls failed ({summary})",
            category=ErrorCategory.ALL_CALLS_FAILED,
            severity=ErrorSeverity.CRITICAL,
            recoverable=True,
            recovery_actions=[RecoveryAction.retry(delay_seconds=5.0, max_attempts=1)],
            context={"failed_calls": list(failures)},
        )
        self.failures = dict(failures)


def _matches(message: str, patterns) -> bool:
    return any(pattern in message for pattern in patterns)


def classify_error(
    exception: Exception,
    pipeline_phase: str = None,
    context: Dict[str, Any] = None,
) -> ClassifiedError:
    """
    Classify an exception into a structured error.

    The `recoverable` flag on the result is the retry decision: non-retryable
    message patterns win over retryable ones, and anything unrecognised fails
    fast since it is more likely a bug than a transient fault.
    """
    context = context or {}
    error_str = str(exception).lower()

    # No HTTP response was received, so digits in the message are host or port text
    if isinstance(exception, UpstreamRequestError):
        classified = exception.classify()
        classified.pipeline_phase = pipeline_phase
        classified.context.update(context)
        return classified

    # Client errors and auth problems are never retried, whatever the type says
    if _matches(error_str, NON_RETRYABLE_PATTERNS):
        if "session" in error_str or "sesión" in error_str or "419" in error_str or "csrf" in error_str:
            category = ErrorCategory.SESSION_EXPIRED
            actions = [RecoveryAction.reauthenticate()]
        elif "401" in error_str or "403" in error_str or "unauthorized" in error_str or "forbidden" in error_str:
            category = ErrorCategory.AUTHENTICATION_FAILED
            actions = []
        else:
            category = ErrorCategory.CLIENT_ERROR
            actions = []
        return ClassifiedError(
            category=category,
            severity=ErrorSeverity.HIGH,
            message=str(exception),
            recoverable=False,
            recovery_actions=actions,
            original_exception=exception,
            pipeline_phase=pipeline_phase,
            context=context,
        )

    if isinstance(exception, DashboardError) and not isinstance(exception, (UpstreamRequestError, UpstreamHTTPError)):
        classified = exception.classify()
        classified.pipeline_phase = pipeline_phase
        classified.context.update(context)
        return classified

    if isinstance(exception, TRANSIENT_EXCEPTION_TYPES) or _matches(error_str, RETRYABLE_PATTERNS):
        if "timeout" in error_str or "timed out" in error_str or isinstance(exception, (requests.Timeout, asyncio.TimeoutError)):
            category = ErrorCategory.TIMEOUT
        elif "overloaded" in error_str or "sobrecargado" in error_str:
            category = ErrorCategory.SERVER_OVERLOADED
        elif _matches(error_str, ("500", "502", "503", "504", "execution time", "took too long", "tardó demasiado")):
            category = ErrorCategory.SERVER_ERROR
        else:
            category = ErrorCategory.NETWORK_ERROR
        return ClassifiedError(
            category=category,
            severity=ErrorSeverity.MEDIUM,
            message=str(exception),
            recoverable=True,
            recovery_actions=[RecoveryAction.retry()],
            original_exception=exception,
            pipeline_phase=pipeline_phase,
            context=context,
        )

    # Default
    return ClassifiedError(
        category=ErrorCategory.UNKNOWN_ERROR,
        severity=ErrorSeverity.HIGH,
        message=str(exception),
        recoverable=False,
        recovery_actions=[],
        original_exception=exception,
        pipeline_phase=pipeline_phase,
        context=context,
    )


def is_retryable_error(exception: Exception) -> bool:
    """Default retry condition used by RetryManager."""
    classified = classify_error(exception)
    logger.debug(
        f"Error {'IS' if classified.recoverable else 'IS NOT'} retryable "
        f"({classified.category.name}): {exception}"
    )
    return classified.recoverable
