"""
Error Handling Utilities for swarmlock

Provides the exception hierarchy shared by every component and consistent
error reporting for the CLI entry points:
1. Typed exceptions for each failure class of an invocation
2. Error categorization and severity levels
3. Detailed error logging with context
4. A context manager for best-effort steps that must not abort the run

USAGE:
    from swarmlock.utils.error_handling import (
        handle_error,
        ErrorCategory,
        safe_execute,
        LockWriteFailure,
    )

    # Best-effort step
    with safe_execute("overlay network", ErrorCategory.ENGINE):
        engine.ensure_overlay_network(name)

    # Direct error handling
    try:
        coordinator.run()
    except SwarmLockError as e:
        handle_error(e, "leader run", ErrorCategory.COORDINATION)
"""

import logging
import sys
import threading
import traceback
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


# =============================================================================
# EXCEPTION HIERARCHY
# =============================================================================

class SwarmLockError(Exception):
    """Base exception for all swarmlock errors."""

    def __init__(self, message: str, reason: Optional[str] = None):
        super().__init__(message)
        self.reason = reason or message


class ConfigurationError(SwarmLockError):
    """Raised when required settings are missing or invalid."""
    pass


class IdentitySourceUnavailable(SwarmLockError):
    """Raised when the node's instance id or private address cannot be resolved."""
    pass


class LockReadFailure(SwarmLockError):
    """Raised when the lock record cannot be read from the store."""
    pass


class LockWriteFailure(SwarmLockError):
    """Raised when a conditional write fails for a reason other than the condition."""
    pass


class EngineError(SwarmLockError):
    """Raised when an orchestration engine command fails."""

    def __init__(self, message: str, reason: Optional[str] = None,
                 returncode: Optional[int] = None):
        super().__init__(message, reason)
        self.returncode = returncode


class ClusterJoinError(EngineError):
    """Raised when a single join attempt is rejected or fails."""
    pass


class NetworkCreationError(EngineError):
    """Raised when the overlay network could not be created."""
    pass


class JoinTimeout(SwarmLockError):
    """Raised when a bounded join loop exhausts its deadline."""

    def __init__(self, message: str, timeout: Optional[float] = None,
                 attempts: int = 0):
        super().__init__(message)
        self.timeout = timeout
        self.attempts = attempts


class DeploymentError(SwarmLockError):
    """Raised when a deployment hook step fails."""
    pass


# =============================================================================
# CATEGORIES AND SEVERITY
# =============================================================================

class ErrorCategory(Enum):
    """Categories of errors for proper handling and reporting."""
    CONFIG = "configuration"
    IDENTITY = "identity"
    LOCK_STORE = "lock_store"
    ENGINE = "engine"
    COORDINATION = "coordination"
    DEPLOYMENT = "deployment"
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    """Severity levels for errors."""
    # Operation can continue
    WARNING = "warning"

    # Invocation failed; the next scheduled run may recover
    ERROR = "error"

    # Invocation cannot start (bad configuration)
    FATAL = "fatal"


@dataclass
class ErrorContext:
    """Detailed context information for an error."""
    error: BaseException
    category: ErrorCategory
    severity: ErrorSeverity
    operation: str
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    thread_name: str = field(default_factory=lambda: threading.current_thread().name)
    stack_trace: str = ""
    additional_context: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.stack_trace:
            exc_type = sys.exc_info()[0]
            self.stack_trace = traceback.format_exc() if exc_type is not None else ""

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            'error_type': type(self.error).__name__,
            'error_message': str(self.error),
            'category': self.category.value,
            'severity': self.severity.value,
            'operation': self.operation,
            'timestamp': self.timestamp,
            'thread_name': self.thread_name,
            'additional_context': self.additional_context,
        }

    def format_log_message(self, include_trace: bool = False) -> str:
        """Format a detailed log message."""
        lines = [
            f"{self.severity.value.upper()} in {self.operation}: "
            f"{type(self.error).__name__}: {self.error}",
            f"  Category: {self.category.value}",
        ]

        if self.additional_context:
            lines.append("  Context:")
            for key, value in self.additional_context.items():
                lines.append(f"    {key}: {value}")

        if include_trace and self.stack_trace:
            lines.append("  Stack Trace:")
            for line in self.stack_trace.split('\n'):
                if line.strip():
                    lines.append(f"    {line}")

        return '\n'.join(lines)


def categorize_error(error: BaseException) -> ErrorCategory:
    """Map a swarmlock exception to its reporting category."""
    if isinstance(error, ConfigurationError):
        return ErrorCategory.CONFIG
    if isinstance(error, IdentitySourceUnavailable):
        return ErrorCategory.IDENTITY
    if isinstance(error, (LockReadFailure, LockWriteFailure)):
        return ErrorCategory.LOCK_STORE
    if isinstance(error, JoinTimeout):
        return ErrorCategory.COORDINATION
    if isinstance(error, EngineError):
        return ErrorCategory.ENGINE
    if isinstance(error, DeploymentError):
        return ErrorCategory.DEPLOYMENT
    return ErrorCategory.UNKNOWN


def determine_severity(error: BaseException, category: ErrorCategory) -> ErrorSeverity:
    """Determine the severity level for an error based on type and category."""
    if isinstance(error, NetworkCreationError):
        return ErrorSeverity.WARNING
    if category == ErrorCategory.CONFIG:
        return ErrorSeverity.FATAL
    return ErrorSeverity.ERROR


def handle_error(
    error: BaseException,
    operation: str,
    category: Optional[ErrorCategory] = None,
    severity: Optional[ErrorSeverity] = None,
    additional_context: Optional[Dict[str, Any]] = None,
    reraise: bool = False,
) -> ErrorContext:
    """
    Handle an error with structured logging.

    Args:
        error: The exception that occurred
        operation: Name of the operation that failed
        category: Category of the error (derived from the type if not provided)
        severity: Severity level (auto-determined if not provided)
        additional_context: Additional context information
        reraise: Whether to re-raise the exception after handling

    Returns:
        ErrorContext with full error details
    """
    if category is None:
        category = categorize_error(error)
    if severity is None:
        severity = determine_severity(error, category)

    context = ErrorContext(
        error=error,
        category=category,
        severity=severity,
        operation=operation,
        additional_context=additional_context or {},
    )

    log_level = {
        ErrorSeverity.WARNING: logging.WARNING,
        ErrorSeverity.ERROR: logging.ERROR,
        ErrorSeverity.FATAL: logging.CRITICAL,
    }[severity]

    # Stack traces only for errors we did not anticipate
    include_trace = not isinstance(error, SwarmLockError)
    logger.log(log_level, context.format_log_message(include_trace=include_trace),
               extra={'extra_data': {'category': category.value}})

    if reraise:
        raise error

    return context


@contextmanager
def safe_execute(
    operation: str,
    category: ErrorCategory = ErrorCategory.UNKNOWN,
    default_return: Any = None,
    severity: Optional[ErrorSeverity] = None,
    additional_context: Optional[Dict[str, Any]] = None,
):
    """
    Context manager for best-effort steps.

    Usage:
        with safe_execute("overlay network", ErrorCategory.ENGINE) as result:
            result.value = engine.ensure_overlay_network(name)

    Only SwarmLockError subclasses are absorbed; anything else propagates.
    """
    class Result:
        def __init__(self):
            self.value = default_return
            self.error: Optional[ErrorContext] = None
            self.success = True

    result = Result()

    try:
        yield result
    except SwarmLockError as e:
        result.success = False
        result.error = handle_error(
            e,
            operation,
            category=category,
            severity=severity,
            additional_context=additional_context,
        )
        result.value = default_return


__all__ = [
    'SwarmLockError',
    'ConfigurationError',
    'IdentitySourceUnavailable',
    'LockReadFailure',
    'LockWriteFailure',
    'EngineError',
    'ClusterJoinError',
    'NetworkCreationError',
    'JoinTimeout',
    'DeploymentError',
    'ErrorCategory',
    'ErrorSeverity',
    'ErrorContext',
    'categorize_error',
    'determine_severity',
    'handle_error',
    'safe_execute',
]
