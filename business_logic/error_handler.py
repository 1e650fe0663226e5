"""
Error taxonomy and centralized error handling for the media plan pipeline.

Generation failures are raised as tagged exceptions so the retry policy and
the orchestrator can branch on the error kind instead of on message text.
"""

import logging
from typing import Dict, Any, Optional, List
from enum import Enum
from dataclasses import dataclass
from datetime import datetime, timedelta

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class ErrorSeverity(Enum):
    """Error severity levels."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorKind(Enum):
    """Tag carried by every pipeline exception."""
    SCHEMA_MISMATCH = "schema_mismatch"
    RATE_LIMITED = "rate_limited"
    FATAL = "fatal"
    WAVE = "wave"
    PIPELINE = "pipeline"


class ErrorCategory(Enum):
    """Error categories for user-facing classification."""
    API_ERROR = "api_error"
    DATA_ERROR = "data_error"
    VALIDATION_ERROR = "validation_error"
    SYSTEM_ERROR = "system_error"


class MediaPlanError(Exception):
    """Base class for all pipeline errors."""

    kind: ErrorKind = ErrorKind.PIPELINE
    code: str = "PIPELINE_ERROR"

    @property
    def retryable(self) -> bool:
        return self.kind in (ErrorKind.SCHEMA_MISMATCH, ErrorKind.RATE_LIMITED)


class GenerationError(MediaPlanError):
    """Failure of a single generative call."""

    def __init__(self, message: str, section: Optional[str] = None):
        super().__init__(message)
        self.section = section


class StructuralMismatchError(GenerationError):
    """Model output failed schema validation."""

    kind = ErrorKind.SCHEMA_MISMATCH
    code = "SCHEMA_MISMATCH"


class RateLimitError(GenerationError):
    """Provider rejected the call because of its rate limit."""

    kind = ErrorKind.RATE_LIMITED
    code = "RATE_LIMITED"

    def __init__(self, message: str, section: Optional[str] = None,
                 retry_after: Optional[float] = None):
        super().__init__(message, section)
        self.retry_after = retry_after


class FatalGenerationError(GenerationError):
    """Non-retryable provider or transport failure."""

    kind = ErrorKind.FATAL
    code = "GENERATION_FAILED"

    def __init__(self, message: str, section: Optional[str] = None,
                 cause: Optional[BaseException] = None):
        super().__init__(message, section)
        self.cause = cause


class GenerationCancelledError(FatalGenerationError):
    """The caller's cancellation event fired during a call."""

    code = "CANCELLED"


class WaveAggregateError(MediaPlanError):
    """One or more tasks in a wave failed after exhausting their retries."""

    kind = ErrorKind.WAVE
    code = "WAVE_FAILED"

    def __init__(self, failed_ids: List[str], first_error: BaseException, outcome: Any = None):
        self.failed_ids = list(failed_ids)
        self.first_error = first_error
        self.outcome = outcome
        super().__init__(
            f"Wave execution failed for section(s): {', '.join(self.failed_ids)}. "
            f"First error: {first_error}"
        )


class PipelineError(MediaPlanError):
    """Terminal failure of a generation run."""

    kind = ErrorKind.PIPELINE
    code = "PIPELINE_ERROR"

    def __init__(self, message: str, phase: Optional[str] = None,
                 cause: Optional[BaseException] = None):
        super().__init__(message)
        self.phase = phase
        self.cause = cause


@dataclass
class ErrorInfo:
    """Structured error information."""
    category: ErrorCategory
    severity: ErrorSeverity
    message: str
    user_message: str
    code: str = "UNKNOWN_ERROR"
    technical_details: Optional[str] = None
    suggested_action: Optional[str] = None
    retry_possible: bool = False
    timestamp: datetime = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.now()


class RetryConfig:
    """Retry bounds for generative calls."""

    def __init__(self, schema_max_retries: int = 2, rate_limit_max_retries: int = 3,
                 base_delay: float = 15.0, exponential_backoff: bool = False,
                 max_delay: float = 120.0):
        self.schema_max_retries = schema_max_retries
        self.rate_limit_max_retries = rate_limit_max_retries
        self.base_delay = base_delay
        self.exponential_backoff = exponential_backoff
        self.max_delay = max_delay

    def rate_limit_delay(self, attempt: int) -> float:
        """
        Delay before the given rate-limit retry.

        Args:
            attempt: 1-based count of rate-limit retries so far

        Returns:
            Seconds to wait
        """
        if self.exponential_backoff:
            delay = self.base_delay * (2 ** (attempt - 1))
        else:
            delay = self.base_delay * attempt
        return min(delay, self.max_delay)


class ErrorHandler:
    """
    Centralized error classification and user feedback.

    Turns pipeline exceptions into ErrorInfo records, keeps a short error
    history for statistics and builds the notification payload for callers.
    """

    def __init__(self):
        self.error_history: List[ErrorInfo] = []
        self.rate_limit_tracker: Dict[str, Any] = {}

    def classify_error(self, error: BaseException, context: str = "") -> ErrorInfo:
        """
        Classify an exception into structured error information.

        Args:
            error: The exception raised by the pipeline
            context: Phase or section where it happened

        Returns:
            ErrorInfo describing the failure
        """
        if isinstance(error, WaveAggregateError):
            inner = self.classify_error(error.first_error, context)
            return ErrorInfo(
                category=inner.category,
                severity=ErrorSeverity.ERROR,
                message=str(error),
                user_message=f"Generation failed for: {', '.join(error.failed_ids)}. {inner.user_message}",
                code=inner.code if inner.code != "UNKNOWN_ERROR" else error.code,
                technical_details=str(error.first_error),
                suggested_action=inner.suggested_action,
                retry_possible=inner.retry_possible
            )

        if isinstance(error, PipelineError) and error.cause is not None:
            return self.classify_error(error.cause, error.phase or context)

        if isinstance(error, RateLimitError):
            self._track_rate_limit()
            return ErrorInfo(
                category=ErrorCategory.API_ERROR,
                severity=ErrorSeverity.WARNING,
                message=f"Rate limit exceeded{self._where(context)}: {error}",
                user_message="The AI provider is rate limiting requests. Please wait a minute and try again.",
                code=error.code,
                suggested_action="Retry the generation in 1-2 minutes",
                retry_possible=True
            )

        if isinstance(error, StructuralMismatchError):
            return ErrorInfo(
                category=ErrorCategory.VALIDATION_ERROR,
                severity=ErrorSeverity.ERROR,
                message=f"Schema mismatch{self._where(context)}: {error}",
                user_message="The AI returned a response in an unexpected format.",
                code=error.code,
                suggested_action="Retry the generation",
                retry_possible=True
            )

        if isinstance(error, GenerationCancelledError):
            return ErrorInfo(
                category=ErrorCategory.SYSTEM_ERROR,
                severity=ErrorSeverity.INFO,
                message=f"Generation cancelled{self._where(context)}",
                user_message="Generation was cancelled.",
                code=error.code
            )

        if isinstance(error, FatalGenerationError):
            return ErrorInfo(
                category=ErrorCategory.API_ERROR,
                severity=ErrorSeverity.ERROR,
                message=f"Generation failed{self._where(context)}: {error}",
                user_message="The AI service could not complete the request.",
                code=error.code,
                technical_details=repr(error.cause) if error.cause else None,
                suggested_action="Check the API key and service status, then retry",
                retry_possible=True
            )

        if isinstance(error, MediaPlanError):
            return ErrorInfo(
                category=ErrorCategory.SYSTEM_ERROR,
                severity=ErrorSeverity.ERROR,
                message=f"Pipeline error{self._where(context)}: {error}",
                user_message=str(error),
                code=error.code
            )

        if isinstance(error, ValueError):
            return ErrorInfo(
                category=ErrorCategory.DATA_ERROR,
                severity=ErrorSeverity.ERROR,
                message=f"Invalid data{self._where(context)}: {error}",
                user_message=f"Invalid input data: {error}",
                code="INVALID_INPUT",
                suggested_action="Check the intake and research documents"
            )

        return ErrorInfo(
            category=ErrorCategory.SYSTEM_ERROR,
            severity=ErrorSeverity.CRITICAL,
            message=f"Unexpected error{self._where(context)}: {error}",
            user_message="An unexpected error occurred during generation.",
            code="UNKNOWN_ERROR",
            technical_details=repr(error)
        )

    @staticmethod
    def _where(context: str) -> str:
        return f" in {context}" if context else ""

    def _track_rate_limit(self):
        """Track rate limit occurrences."""
        now = datetime.now()
        self.rate_limit_tracker['last_rate_limit'] = now
        self.rate_limit_tracker['count'] = self.rate_limit_tracker.get('count', 0) + 1

    def create_user_notification(self, error_info: ErrorInfo) -> Dict[str, Any]:
        """
        Create a caller-facing error event from error information.

        Args:
            error_info: Structured error information

        Returns:
            Dictionary with the error event payload
        """
        notification = {
            'type': 'error',
            'message': error_info.user_message,
            'code': error_info.code,
            'timestamp': error_info.timestamp.isoformat(),
            'retry_possible': error_info.retry_possible
        }

        if error_info.suggested_action:
            notification['action'] = error_info.suggested_action

        if error_info.technical_details and error_info.severity == ErrorSeverity.CRITICAL:
            notification['technical_details'] = error_info.technical_details

        return notification

    def log_error(self, error_info: ErrorInfo, context: str = ""):
        """
        Log error information for monitoring and debugging.

        Args:
            error_info: Structured error information
            context: Additional context
        """
        self.error_history.append(error_info)

        # Keep only recent errors (last 100)
        if len(self.error_history) > 100:
            self.error_history = self.error_history[-100:]

        log_message = f"{context}: {error_info.message}" if context else error_info.message

        if error_info.severity == ErrorSeverity.CRITICAL:
            logger.critical(log_message)
        elif error_info.severity == ErrorSeverity.ERROR:
            logger.error(log_message)
        elif error_info.severity == ErrorSeverity.WARNING:
            logger.warning(log_message)
        else:
            logger.info(log_message)

    def get_error_statistics(self) -> Dict[str, Any]:
        """
        Get error statistics for monitoring.

        Returns:
            Dictionary with error statistics
        """
        if not self.error_history:
            return {'total_errors': 0}

        category_counts = {}
        code_counts = {}

        recent_errors = [
            err for err in self.error_history
            if err.timestamp > datetime.now() - timedelta(hours=24)
        ]

        for error in recent_errors:
            category_counts[error.category.value] = category_counts.get(error.category.value, 0) + 1
            code_counts[error.code] = code_counts.get(error.code, 0) + 1

        return {
            'total_errors': len(self.error_history),
            'recent_errors_24h': len(recent_errors),
            'category_breakdown': category_counts,
            'code_breakdown': code_counts,
            'rate_limit_info': self.rate_limit_tracker
        }


# Global error handler instance
error_handler = ErrorHandler()
