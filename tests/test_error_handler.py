"""Tests for the segmentation error handling system."""

from unittest.mock import Mock, patch

import pytest

from survey_segmentation.error_handler import (
    ComputationError,
    ConfigurationError,
    DataValidationError,
    ErrorCategory,
    ErrorHandler,
    ErrorLogger,
    ErrorSeverity,
    SegmentationError,
    get_error_handler,
    handle_error,
    initialize_error_handler,
)


class TestCustomExceptions:
    """Test custom exception hierarchy."""

    def test_segmentation_error_basic(self):
        """Test basic SegmentationError functionality."""
        error = SegmentationError(
            message="Test error",
            category=ErrorCategory.SYSTEM,
            severity=ErrorSeverity.LOW,
            component="session",
            metadata={'n_records': 12},
        )

        assert str(error) == "[SYSTEM] Test error"
        assert error.error_code.startswith("system_")
        assert error.component == "session"
        assert error.recovery_suggestions == []

        payload = error.to_dict()
        assert payload['category'] == 'system'
        assert payload['severity'] == 'low'
        assert payload['metadata'] == {'n_records': 12}
        assert payload['cause'] is None

    def test_configuration_error(self):
        error = ConfigurationError("n_clusters must be positive", config_key='n_clusters',
                                   component='clustering')

        assert isinstance(error, SegmentationError)
        assert error.category == ErrorCategory.CONFIGURATION
        assert error.severity == ErrorSeverity.MEDIUM
        assert error.metadata['config_key'] == 'n_clusters'
        assert error.recovery_suggestions

    def test_data_validation_error(self):
        error = DataValidationError("Records must be mappings", field_name='cgpa')

        assert error.category == ErrorCategory.DATA_VALIDATION
        assert error.metadata == {'field_name': 'cgpa'}

    def test_computation_error_defaults_to_high(self):
        error = ComputationError("Centroid update produced non-finite values", stage='clustering')

        assert error.category == ErrorCategory.COMPUTATION
        assert error.severity == ErrorSeverity.HIGH
        assert error.metadata['stage'] == 'clustering'

    def test_computation_error_severity_override(self):
        error = ComputationError("minor", severity=ErrorSeverity.LOW)
        assert error.severity == ErrorSeverity.LOW

    def test_cause_is_serialized(self):
        cause = ValueError("bad input")
        error = SegmentationError("wrapped", ErrorCategory.SYSTEM, cause=cause)
        assert error.to_dict()['cause'] == "bad input"


class TestErrorHandler:
    """Test conversion and tracking of errors."""

    def setup_method(self):
        self.handler = initialize_error_handler()

    def test_segmentation_error_passes_through(self):
        error = ConfigurationError("bad k")

        processed = self.handler.handle_error(error, {'component': 'session'})

        assert processed is error
        assert processed.component == 'session'

    def test_existing_component_is_kept(self):
        error = ComputationError("nan centroid", component='clustering')

        processed = self.handler.handle_error(error, {'component': 'session'})

        assert processed.component == 'clustering'

    @pytest.mark.parametrize("error,expected_type", [
        (KeyError('cgpa'), DataValidationError),
        (TypeError('unsupported operand'), DataValidationError),
        (ValueError('invalid parameter max_iter'), ConfigurationError),
        (ValueError('array contains NaN'), ComputationError),
        (ZeroDivisionError('division by zero'), ComputationError),
        (FloatingPointError('overflow'), ComputationError),
    ])
    def test_conversion(self, error, expected_type):
        processed = self.handler.handle_error(error, {'component': 'session', 'stage': 'clustering'})

        assert type(processed) is expected_type
        assert processed.cause is error
        assert processed.metadata['original_error_type'] == type(error).__name__
        assert processed.component == 'session'

    def test_computation_error_records_stage(self):
        processed = self.handler.handle_error(ZeroDivisionError('x'), {'stage': 'outlier_detection'})
        assert processed.metadata['stage'] == 'outlier_detection'

    def test_unknown_error_becomes_system_error(self):
        processed = self.handler.handle_error(RuntimeError('disk full'))

        assert type(processed) is SegmentationError
        assert processed.category == ErrorCategory.SYSTEM
        assert processed.severity == ErrorSeverity.HIGH
        assert processed.message == "RuntimeError: disk full"

    def test_error_statistics(self):
        self.handler.handle_error(ConfigurationError("a", component='clustering'))
        self.handler.handle_error(ConfigurationError("b", component='clustering'))
        self.handler.handle_error(ComputationError("c", component='outliers'))

        stats = self.handler.get_error_statistics()

        assert stats['total_errors'] == 3
        assert stats['errors_by_category'] == {'configuration': 2, 'computation': 1}
        assert stats['errors_by_component'] == {'clustering': 2, 'outliers': 1}
        assert stats['errors_by_severity']['high'] == 1
        assert len(stats['recent_errors']) == 3
        assert stats['first_error_time'] <= stats['last_error_time']


class TestErrorLogger:
    """Test structured error logging."""

    @pytest.mark.parametrize("severity,method", [
        (ErrorSeverity.CRITICAL, 'critical'),
        (ErrorSeverity.HIGH, 'error'),
        (ErrorSeverity.MEDIUM, 'warning'),
        (ErrorSeverity.LOW, 'info'),
    ])
    def test_severity_selects_log_level(self, severity, method):
        error_logger = ErrorLogger()
        error_logger.logger = Mock()
        error = SegmentationError("boom", ErrorCategory.SYSTEM, severity=severity)

        error_logger.log_error(error, {'stage': 'clustering'})

        log_call = getattr(error_logger.logger, method)
        log_call.assert_any_call("boom", error_code=error.error_code,
                                 error_category='system', error_severity=severity.value,
                                 component=None, error_metadata={}, stage='clustering')

    def test_records_prometheus_error(self):
        error_logger = ErrorLogger()
        with patch('survey_segmentation.error_handler.get_logging_manager') as mock_manager:
            error_logger.log_error(ComputationError("nan", component='clustering'))

        mock_manager.return_value.metrics.record_error.assert_called_once_with(
            'ComputationError', 'clustering'
        )


class TestGlobalErrorHandler:
    """Test global error handler functions."""

    def test_get_error_handler_singleton(self):
        assert get_error_handler() is get_error_handler()

    def test_initialize_replaces_handler(self):
        original = get_error_handler()
        replaced = initialize_error_handler()

        assert replaced is not original
        assert get_error_handler() is replaced
        assert isinstance(replaced, ErrorHandler)

    def test_handle_error_uses_global_handler(self):
        handler = initialize_error_handler()

        processed = handle_error(KeyError('age'), {'component': 'profiling'})

        assert isinstance(processed, DataValidationError)
        assert handler.get_error_statistics()['total_errors'] == 1
