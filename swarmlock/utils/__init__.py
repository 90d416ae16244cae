"""
Utility modules for swarmlock.

Provides the shared exception hierarchy and error reporting helpers.
"""

from .error_handling import (
    SwarmLockError,
    ConfigurationError,
    IdentitySourceUnavailable,
    LockReadFailure,
    LockWriteFailure,
    EngineError,
    ClusterJoinError,
    NetworkCreationError,
    JoinTimeout,
    DeploymentError,
    ErrorCategory,
    ErrorSeverity,
    ErrorContext,
    categorize_error,
    handle_error,
    safe_execute,
)

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
    'handle_error',
    'safe_execute',
]
