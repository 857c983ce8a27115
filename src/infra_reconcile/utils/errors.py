"""Error taxonomy for reconciliation runs."""

from typing import Optional, Dict, Any, List
from enum import Enum
from dataclasses import dataclass, field
from botocore.exceptions import (
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    NoCredentialsError,
    PartialCredentialsError,
    ReadTimeoutError,
)
from infra_reconcile.utils.logging import get_logger

logger = get_logger(__name__)


class ErrorCategory(Enum):
    """Categories of errors that can occur during a run."""
    PARSE = "parse"
    REFERENCE = "reference"
    CONFLICT = "conflict"
    TRANSIENT = "transient"
    FATAL = "fatal"
    STATE = "state"
    CONFIGURATION = "configuration"
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    """Severity levels for errors."""
    CRITICAL = "critical"  # Run aborts before any external call
    ERROR = "error"  # Resource failed, run aborted after in-flight work
    WARNING = "warning"  # Retryable, may still succeed
    INFO = "info"


@dataclass
class ErrorContext:
    """Context information for an error."""
    resource_id: Optional[str] = None
    resource_type: Optional[str] = None
    operation: Optional[str] = None
    aws_service: Optional[str] = None
    aws_operation: Optional[str] = None
    request_id: Optional[str] = None
    additional_info: Dict[str, Any] = field(default_factory=dict)


class ReconcileError(Exception):
    """Base exception for reconciliation errors."""

    category = ErrorCategory.UNKNOWN
    severity = ErrorSeverity.ERROR

    def __init__(
        self,
        message: str,
        context: Optional[ErrorContext] = None,
        cause: Optional[BaseException] = None,
        suggestions: Optional[List[str]] = None,
        category: Optional[ErrorCategory] = None,
        severity: Optional[ErrorSeverity] = None
    ):
        """Initialize reconciliation error.

        Args:
            message: Human-readable error message
            context: Additional context about the error
            cause: Original exception that caused this error
            suggestions: List of suggested fixes
            category: Override of the class category
            severity: Override of the class severity
        """
        super().__init__(message)
        self.message = message
        self.context = context or ErrorContext()
        self.cause = cause
        self.suggestions = suggestions or []
        if category is not None:
            self.category = category
        if severity is not None:
            self.severity = severity

    def to_user_message(self) -> str:
        """Convert error to a multi-line message for display.

        Returns:
            Formatted error message
        """
        lines = [f"{self.severity.value.upper()}: {self.message}"]

        if self.context.resource_id:
            lines.append(f"   Resource: {self.context.resource_id}")
        if self.context.operation:
            lines.append(f"   Operation: {self.context.operation}")
        if self.cause:
            lines.append(f"   Cause: {self.cause}")

        if self.suggestions:
            lines.append("")
            lines.append("Suggested fixes:")
            for i, suggestion in enumerate(self.suggestions, 1):
                lines.append(f"   {i}. {suggestion}")

        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for logging/serialization.

        Returns:
            Dictionary representation of the error
        """
        return {
            'type': type(self).__name__,
            'message': self.message,
            'category': self.category.value,
            'severity': self.severity.value,
            'context': {
                'resource_id': self.context.resource_id,
                'resource_type': self.context.resource_type,
                'operation': self.context.operation,
                'aws_service': self.context.aws_service,
                'aws_operation': self.context.aws_operation,
                'request_id': self.context.request_id,
                'additional_info': self.context.additional_info
            },
            'cause': str(self.cause) if self.cause else None,
            'suggestions': self.suggestions
        }


class ParseError(ReconcileError):
    """Malformed template document."""
    category = ErrorCategory.PARSE
    severity = ErrorSeverity.CRITICAL


class ReferenceError(ReconcileError):
    """Unresolved or cyclic references between declarations."""
    category = ErrorCategory.REFERENCE
    severity = ErrorSeverity.CRITICAL


class CycleError(ReferenceError):
    """References form a cycle."""

    def __init__(self, cycle: List[str], **kwargs):
        self.cycle = cycle
        super().__init__(
            f"Circular reference detected: {' -> '.join(cycle)}",
            **kwargs
        )


class UnresolvedReferenceError(ReferenceError):
    """A reference points at a declaration that does not exist."""

    def __init__(self, source_id: str, target_id: str, **kwargs):
        self.source_id = source_id
        self.target_id = target_id
        kwargs.setdefault('context', ErrorContext(resource_id=source_id))
        super().__init__(
            f"Resource '{source_id}' references '{target_id}' which is not declared",
            **kwargs
        )


class ReferenceResolutionError(ReferenceError):
    """A reference could not be evaluated against applied state."""
    severity = ErrorSeverity.ERROR


class ConflictError(ReconcileError):
    """The plan cannot be computed unambiguously."""
    category = ErrorCategory.CONFLICT
    severity = ErrorSeverity.CRITICAL


class PlanConflictError(ConflictError):
    """Desired and applied identities match ambiguously."""


class ProviderError(ReconcileError):
    """Failure reported by a provider adapter."""


class TransientProviderError(ProviderError):
    """Retryable provider failure (timeouts, throttling)."""
    category = ErrorCategory.TRANSIENT
    severity = ErrorSeverity.WARNING


class FatalProviderError(ProviderError):
    """Non-retryable provider failure (invalid configuration, permission denied)."""
    category = ErrorCategory.FATAL
    severity = ErrorSeverity.ERROR


class StateError(ReconcileError):
    """Error related to state persistence."""
    category = ErrorCategory.STATE
    severity = ErrorSeverity.CRITICAL


class StateLockError(StateError):
    """State file is locked by another run."""


class StateNotFoundError(StateError):
    """State file does not exist."""


class ConfigurationError(ReconcileError):
    """Error in configuration file or settings."""
    category = ErrorCategory.CONFIGURATION
    severity = ErrorSeverity.CRITICAL


class ErrorHandler:
    """Classifies raw provider exceptions as transient or fatal."""

    # AWS error codes that are worth retrying
    TRANSIENT_ERROR_CODES = {
        'RequestTimeout',
        'RequestTimeoutException',
        'ServiceUnavailable',
        'ServiceUnavailableException',
        'Throttling',
        'ThrottlingException',
        'ThrottledException',
        'RequestThrottled',
        'RequestThrottledException',
        'TooManyRequestsException',
        'RequestLimitExceeded',
        'ProvisionedThroughputExceededException',
        'InternalError',
        'InternalFailure',
        'ServiceInternalError',
        'NetworkFailure',
        'ConcurrentModificationException',
    }

    # Fatal AWS error codes with user-facing suggestions
    AWS_ERROR_MAPPING = {
        'AccessDenied': [
            'Check IAM policies attached to your user/role',
            'Verify you have the required permissions for this operation',
        ],
        'AccessDeniedException': [
            'Check IAM policies attached to your user/role',
            'Verify you have the required permissions for this operation',
        ],
        'UnauthorizedOperation': [
            'Add the required IAM permission for this operation',
            'Verify you are operating in the correct AWS region',
        ],
        'InvalidClientTokenId': [
            'Check that your AWS credentials are correctly configured',
            'Verify credentials using: aws sts get-caller-identity',
        ],
        'ExpiredToken': [
            'Refresh your AWS session credentials',
        ],
        'ValidationException': [
            'Review the attribute values declared for this resource',
            'Check the resource type schema for required properties',
        ],
        'InvalidRequestException': [
            'Review the attribute values declared for this resource',
        ],
        'AlreadyExistsException': [
            'Use a different name for the resource',
            'Delete the existing resource if it is no longer needed',
        ],
        'ResourceNotFoundException': [
            'Check if the resource was deleted outside of this tool',
        ],
    }

    def __init__(self):
        """Initialize error handler."""
        self.logger = get_logger(__name__)

    def handle_exception(
        self,
        error: BaseException,
        context: Optional[ErrorContext] = None
    ) -> ReconcileError:
        """Convert an exception to a ReconcileError.

        Args:
            error: The exception to handle
            context: Additional context about where the error occurred

        Returns:
            TransientProviderError, FatalProviderError or the original
            ReconcileError
        """
        context = context or ErrorContext()

        if isinstance(error, ReconcileError):
            return error

        if isinstance(error, ClientError):
            return self._handle_aws_error(error, context)

        if isinstance(error, (NoCredentialsError, PartialCredentialsError)):
            return FatalProviderError(
                f"AWS credentials unavailable: {error}",
                context=context,
                cause=error,
                suggestions=[
                    'Configure AWS credentials using: aws configure',
                    'Specify a profile in the provider configuration',
                ]
            )

        if isinstance(error, (ConnectionError, TimeoutError, EndpointConnectionError,
                              ConnectTimeoutError, ReadTimeoutError)):
            return TransientProviderError(
                f"Network error: {error}",
                context=context,
                cause=error
            )

        return FatalProviderError(
            f"Unexpected provider error: {error}",
            context=context,
            cause=error,
            suggestions=['Check logs for more details']
        )

    def is_transient_code(self, error_code: Optional[str]) -> bool:
        """Check whether an AWS error code denotes a retryable failure."""
        return bool(error_code) and error_code in self.TRANSIENT_ERROR_CODES

    def _handle_aws_error(
        self,
        error: ClientError,
        context: ErrorContext
    ) -> ProviderError:
        """Handle AWS ClientError.

        Args:
            error: The ClientError
            context: Error context

        Returns:
            Classified provider error
        """
        error_code = error.response.get('Error', {}).get('Code', 'Unknown')
        error_message = error.response.get('Error', {}).get('Message', str(error))
        context.request_id = error.response.get('ResponseMetadata', {}).get('RequestId')
        context.aws_operation = context.aws_operation or error.operation_name

        if self.is_transient_code(error_code):
            return TransientProviderError(
                f"AWS Error ({error_code}): {error_message}",
                context=context,
                cause=error
            )

        return FatalProviderError(
            f"AWS Error ({error_code}): {error_message}",
            context=context,
            cause=error,
            suggestions=self.AWS_ERROR_MAPPING.get(error_code, [
                'Check AWS documentation for this error code',
                f'AWS Request ID: {context.request_id}',
            ])
        )

    def log_error(self, error: ReconcileError):
        """Log an error with appropriate level.

        Args:
            error: The error to log
        """
        log_message = error.to_user_message()

        if error.severity in (ErrorSeverity.CRITICAL, ErrorSeverity.ERROR):
            self.logger.error(log_message)
        elif error.severity == ErrorSeverity.WARNING:
            self.logger.warning(log_message)
        else:
            self.logger.info(log_message)

        self.logger.debug(f"Error details: {error.to_dict()}")


# Global error handler instance
error_handler = ErrorHandler()
