"""Error handling for survey segmentation.

Provides a custom exception hierarchy carrying category, severity and recovery
suggestions, plus an error handler that converts foreign exceptions, logs them
through the structured logging system and keeps error statistics.

Degenerate datasets (empty tables, single records, constant columns) are not
errors: the domain code answers them with empty or neutral results. The
exceptions here cover invalid parameters and genuine computation failures.
"""

import threading
import time
from collections import defaultdict, deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .logging_manager import get_logging_manager, get_logger

logger = get_logger(__name__)


class ErrorCategory(Enum):
    """Categories of errors for classification and handling."""
    CONFIGURATION = "configuration"
    DATA_VALIDATION = "data_validation"
    COMPUTATION = "computation"
    SYSTEM = "system"


class ErrorSeverity(Enum):
    """Error severity levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# ============================================================================
# Custom Exception Hierarchy
# ============================================================================

class SegmentationError(Exception):
    """Base exception for all survey segmentation errors.

    Provides structured error information with metadata, context, and recovery suggestions.
    """

    def __init__(self,
                 message: str,
                 category: ErrorCategory,
                 severity: ErrorSeverity = ErrorSeverity.MEDIUM,
                 error_code: Optional[str] = None,
                 component: Optional[str] = None,
                 metadata: Optional[Dict[str, Any]] = None,
                 cause: Optional[Exception] = None,
                 recovery_suggestions: Optional[List[str]] = None):
        super().__init__(message)
        self.message = message
        self.category = category
        self.severity = severity
        self.error_code = error_code or f"{category.value}_{int(time.time())}"
        self.component = component
        self.metadata = metadata or {}
        self.cause = cause
        self.recovery_suggestions = recovery_suggestions or []
        self.timestamp = time.time()

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for logging and serialization."""
        return {
            'error_code': self.error_code,
            'message': self.message,
            'category': self.category.value,
            'severity': self.severity.value,
            'component': self.component,
            'metadata': self.metadata,
            'cause': str(self.cause) if self.cause else None,
            'recovery_suggestions': self.recovery_suggestions,
            'timestamp': self.timestamp
        }

    def __str__(self) -> str:
        return f"[{self.category.value.upper()}] {self.message}"


class ConfigurationError(SegmentationError):
    """Invalid analysis parameters (cluster count, iteration limit, method names)."""

    def __init__(self, message: str, config_key: Optional[str] = None, **kwargs):
        metadata = kwargs.pop('metadata', None) or {}
        if config_key:
            metadata['config_key'] = config_key

        super().__init__(
            message=message,
            category=ErrorCategory.CONFIGURATION,
            metadata=metadata,
            recovery_suggestions=[
                "Check configuration file syntax",
                "Verify parameter values are within range",
                "Review default values",
            ],
            **kwargs
        )


class DataValidationError(SegmentationError):
    """Input data that cannot be interpreted as a survey table."""

    def __init__(self, message: str, field_name: Optional[str] = None, **kwargs):
        metadata = kwargs.pop('metadata', None) or {}
        if field_name:
            metadata['field_name'] = field_name

        super().__init__(
            message=message,
            category=ErrorCategory.DATA_VALIDATION,
            metadata=metadata,
            recovery_suggestions=[
                "Pass a list of mappings or a pandas DataFrame",
                "Check that feature keys match the record fields",
            ],
            **kwargs
        )


class ComputationError(SegmentationError):
    """Numerical failures inside an analysis stage."""

    def __init__(self, message: str, stage: Optional[str] = None, **kwargs):
        metadata = kwargs.pop('metadata', None) or {}
        if stage:
            metadata['stage'] = stage
        kwargs.setdefault('severity', ErrorSeverity.HIGH)

        super().__init__(
            message=message,
            category=ErrorCategory.COMPUTATION,
            metadata=metadata,
            recovery_suggestions=[
                "Inspect the input for non-finite values",
                "Retry with a different random seed",
            ],
            **kwargs
        )


# ============================================================================
# Error Logging and Main Error Handler
# ============================================================================

@dataclass
class ErrorMetrics:
    """Metrics for error monitoring and analysis."""
    total_errors: int = 0
    errors_by_category: Dict[str, int] = field(default_factory=lambda: defaultdict(int))
    errors_by_severity: Dict[str, int] = field(default_factory=lambda: defaultdict(int))
    errors_by_component: Dict[str, int] = field(default_factory=lambda: defaultdict(int))
    recent_errors: deque = field(default_factory=lambda: deque(maxlen=100))
    first_error_time: Optional[float] = None
    last_error_time: Optional[float] = None


class ErrorLogger:
    """Error logging with structured metadata and statistics."""

    def __init__(self):
        self.logger = get_logger("survey_segmentation.error_handler")
        self.metrics = ErrorMetrics()
        self.lock = threading.RLock()

    def log_error(self, error: SegmentationError, extra_context: Optional[Dict[str, Any]] = None):
        """Log an error with full context and metadata."""
        current_time = time.time()

        with self.lock:
            self.metrics.total_errors += 1
            self.metrics.errors_by_category[error.category.value] += 1
            self.metrics.errors_by_severity[error.severity.value] += 1
            if error.component:
                self.metrics.errors_by_component[error.component] += 1

            if self.metrics.first_error_time is None:
                self.metrics.first_error_time = current_time
            self.metrics.last_error_time = current_time

            self.metrics.recent_errors.append({
                'timestamp': current_time,
                'error_code': error.error_code,
                'category': error.category.value,
                'severity': error.severity.value,
                'message': error.message,
                'component': error.component,
            })

        log_context = {
            'error_code': error.error_code,
            'error_category': error.category.value,
            'error_severity': error.severity.value,
            'component': error.component,
            'error_metadata': error.metadata,
        }
        if extra_context:
            log_context.update(extra_context)

        if error.severity == ErrorSeverity.CRITICAL:
            self.logger.critical(error.message, **log_context)
        elif error.severity == ErrorSeverity.HIGH:
            self.logger.error(error.message, **log_context)
        elif error.severity == ErrorSeverity.MEDIUM:
            self.logger.warning(error.message, **log_context)
        else:
            self.logger.info(error.message, **log_context)

        if error.recovery_suggestions:
            self.logger.info(
                f"Recovery suggestions for {error.error_code}: {'; '.join(error.recovery_suggestions)}",
                error_code=error.error_code
            )

        get_logging_manager().metrics.record_error(
            type(error).__name__, error.component or "unknown"
        )

    def get_error_statistics(self) -> Dict[str, Any]:
        """Get error statistics."""
        with self.lock:
            return {
                'total_errors': self.metrics.total_errors,
                'errors_by_category': dict(self.metrics.errors_by_category),
                'errors_by_severity': dict(self.metrics.errors_by_severity),
                'errors_by_component': dict(self.metrics.errors_by_component),
                'first_error_time': self.metrics.first_error_time,
                'last_error_time': self.metrics.last_error_time,
                'recent_errors': list(self.metrics.recent_errors)[-10:]
            }


class ErrorHandler:
    """Main error handler that converts, logs and tracks errors."""

    def __init__(self):
        self.logger = ErrorLogger()

    def handle_error(self,
                     error: Exception,
                     context: Optional[Dict[str, Any]] = None) -> SegmentationError:
        """Main error handling entry point.

        Args:
            error: The exception that occurred
            context: Additional context (component, stage, n_records, ...)

        Returns:
            SegmentationError: the processed error, ready to be reported
        """
        context = context or {}

        if isinstance(error, SegmentationError):
            processed_error = error
            if processed_error.component is None:
                processed_error.component = context.get('component')
        else:
            processed_error = self._convert_to_segmentation_error(error, context)

        self.logger.log_error(processed_error, context)
        return processed_error

    def get_error_statistics(self) -> Dict[str, Any]:
        return self.logger.get_error_statistics()

    def _convert_to_segmentation_error(self, error: Exception, context: Dict[str, Any]) -> SegmentationError:
        """Convert a generic exception to a SegmentationError."""
        error_message = str(error)
        error_type = type(error).__name__
        metadata = {
            'original_error_type': error_type,
            'context': context
        }

        if isinstance(error, (TypeError, KeyError)):
            return DataValidationError(
                message=f"{error_type}: {error_message}",
                component=context.get('component'),
                metadata=metadata,
                cause=error,
            )
        if isinstance(error, ValueError) and any(
                keyword in error_message.lower() for keyword in ['config', 'setting', 'parameter']):
            return ConfigurationError(
                message=f"{error_type}: {error_message}",
                component=context.get('component'),
                metadata=metadata,
                cause=error,
            )
        if isinstance(error, (ArithmeticError, ValueError)):
            return ComputationError(
                message=f"{error_type}: {error_message}",
                stage=context.get('stage'),
                component=context.get('component'),
                metadata=metadata,
                cause=error,
            )
        return SegmentationError(
            message=f"{error_type}: {error_message}",
            category=ErrorCategory.SYSTEM,
            severity=ErrorSeverity.HIGH,
            component=context.get('component'),
            metadata=metadata,
            cause=error,
        )


_error_handler: Optional[ErrorHandler] = None


def get_error_handler() -> ErrorHandler:
    """Get or create global error handler instance."""
    global _error_handler
    if _error_handler is None:
        _error_handler = ErrorHandler()
    return _error_handler


def initialize_error_handler() -> ErrorHandler:
    """Initialize a new global error handler instance."""
    global _error_handler
    _error_handler = ErrorHandler()
    return _error_handler


def handle_error(error: Exception, context: Optional[Dict[str, Any]] = None) -> SegmentationError:
    """Handle an error using the global error handler."""
    return get_error_handler().handle_error(error, context)
