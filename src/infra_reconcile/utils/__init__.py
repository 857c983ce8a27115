"""Utility modules for logging, errors, retries and AWS client management."""

from infra_reconcile.utils.aws_client import AWSClientManager
from infra_reconcile.utils.retry import RetryStrategy
from infra_reconcile.utils.errors import (
    ErrorCategory,
    ErrorSeverity,
    ErrorContext,
    ReconcileError,
    ParseError,
    ReferenceError,
    CycleError,
    UnresolvedReferenceError,
    ReferenceResolutionError,
    ConflictError,
    PlanConflictError,
    ProviderError,
    TransientProviderError,
    FatalProviderError,
    StateError,
    StateLockError,
    StateNotFoundError,
    ConfigurationError,
    ErrorHandler,
    error_handler
)
from infra_reconcile.utils.logging import get_logger, setup_logging

__all__ = [
    # AWS Client
    'AWSClientManager',

    # Retry
    'RetryStrategy',

    # Errors
    'ErrorCategory',
    'ErrorSeverity',
    'ErrorContext',
    'ReconcileError',
    'ParseError',
    'ReferenceError',
    'CycleError',
    'UnresolvedReferenceError',
    'ReferenceResolutionError',
    'ConflictError',
    'PlanConflictError',
    'ProviderError',
    'TransientProviderError',
    'FatalProviderError',
    'StateError',
    'StateLockError',
    'StateNotFoundError',
    'ConfigurationError',
    'ErrorHandler',
    'error_handler',

    # Logging
    'get_logger',
    'setup_logging',
]
