"""Structured logging and monitoring for survey segmentation.

Provides JSON-based logging with analysis metrics using structlog and
prometheus_client.
"""

import sys
import uuid
import logging
import logging.handlers
import threading
from pathlib import Path
from typing import Any, Dict, Optional
from contextlib import contextmanager
from dataclasses import dataclass, field

import structlog
from prometheus_client import Counter, Histogram, Gauge, CollectorRegistry, REGISTRY
from prometheus_client import generate_latest

from .config_manager import LoggingConfig, LogLevel, get_config_manager

PACKAGE_LOGGER = "survey_segmentation"


@dataclass
class LogContext:
    """Context information for structured logging."""
    run_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    session_id: Optional[str] = None
    operation: Optional[str] = None
    component: Optional[str] = None
    n_records: Optional[int] = None
    start_time: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert context to dictionary for logging."""
        return {k: v for k, v in self.__dict__.items() if v is not None}


class MetricsCollector:
    """Prometheus metrics collector for segmentation runs."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        """Initialize metrics collector.

        Args:
            registry: Prometheus registry to use. Defaults to global registry.
        """
        self.registry = registry or REGISTRY

        self.clustering_runs = Counter(
            'segmentation_clustering_runs_total',
            'Total number of clustering runs',
            ['status'],
            registry=self.registry
        )

        self.clustering_iterations = Histogram(
            'segmentation_clustering_iterations',
            'Assignment passes needed per clustering run',
            buckets=[1, 2, 5, 10, 20, 50, 100, 250],
            registry=self.registry
        )

        self.stage_duration = Histogram(
            'segmentation_stage_duration_seconds',
            'Pipeline stage execution time in seconds',
            ['stage'],
            buckets=[0.001, 0.01, 0.1, 0.5, 1.0, 5.0, 30.0],
            registry=self.registry
        )

        self.outliers_flagged = Counter(
            'segmentation_outliers_flagged_total',
            'Total number of records flagged as outliers',
            ['method'],
            registry=self.registry
        )

        self.records_processed = Gauge(
            'segmentation_records_processed',
            'Number of records in the most recent run',
            registry=self.registry
        )

        self.error_counter = Counter(
            'segmentation_errors_total',
            'Total number of errors',
            ['error_type', 'component'],
            registry=self.registry
        )

    def record_clustering(self, n_iter: int, converged: bool):
        """Record clustering run metrics."""
        status = "converged" if converged else "max_iter"
        self.clustering_runs.labels(status=status).inc()
        self.clustering_iterations.observe(n_iter)

    def record_stage(self, stage: str, duration: float):
        """Record pipeline stage duration."""
        self.stage_duration.labels(stage=stage).observe(duration)

    def record_outliers(self, method: str, count: int):
        """Record flagged outlier counts."""
        if count > 0:
            self.outliers_flagged.labels(method=method).inc(count)

    def record_error(self, error_type: str, component: str):
        """Record error metrics."""
        self.error_counter.labels(
            error_type=error_type,
            component=component
        ).inc()

    def update_records_processed(self, count: int):
        self.records_processed.set(count)

    def get_metrics(self) -> bytes:
        """Get metrics in Prometheus exposition format."""
        return generate_latest(self.registry)


class LoggingManager:
    """Centralized structured logging manager."""

    _instance: Optional['LoggingManager'] = None
    _lock = threading.Lock()

    def __new__(cls, *args, **kwargs):
        """Singleton implementation."""
        with cls._lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
            return cls._instance

    def __init__(self, config: Optional[LoggingConfig] = None):
        """Initialize logging manager.

        Args:
            config: Logging configuration. Read from the global config manager if None.
        """
        # Prevent re-initialization in singleton
        if hasattr(self, '_initialized'):
            return

        self.config = config or get_config_manager().get_logging_config()
        self.metrics = MetricsCollector()
        self._context = threading.local()
        self._initialized = True

        self._configure_structlog()
        self._configure_stdlib_logging()

        self.logger = structlog.get_logger(PACKAGE_LOGGER)
        self.logger.debug("Structured logging system initialized",
                          level=self.config.level.value)

    def _configure_structlog(self):
        """Configure structlog with processors and renderers."""
        processors = [
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            self._add_context,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
        ]

        if self.config.level != LogLevel.DEBUG:
            processors.append(structlog.processors.format_exc_info)
            processors.append(structlog.processors.JSONRenderer())
        else:
            processors.append(structlog.dev.ConsoleRenderer(colors=True))

        structlog.configure(
            processors=processors,
            wrapper_class=structlog.stdlib.BoundLogger,
            logger_factory=structlog.stdlib.LoggerFactory(),
            context_class=dict,
            cache_logger_on_first_use=True,
        )

    def _configure_stdlib_logging(self):
        """Configure the package logger; the host application's root logger is left alone."""
        package_logger = logging.getLogger(PACKAGE_LOGGER)
        for handler in list(package_logger.handlers):
            package_logger.removeHandler(handler)
            handler.close()

        level_map = {
            LogLevel.DEBUG: logging.DEBUG,
            LogLevel.INFO: logging.INFO,
            LogLevel.WARNING: logging.WARNING,
            LogLevel.ERROR: logging.ERROR,
            LogLevel.CRITICAL: logging.CRITICAL
        }
        package_logger.setLevel(level_map[self.config.level])

        if self.config.console_output:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(level_map[self.config.level])
            if self.config.level == LogLevel.DEBUG:
                formatter = logging.Formatter(
                    '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
                )
            else:
                formatter = logging.Formatter('%(message)s')
            console_handler.setFormatter(formatter)
            package_logger.addHandler(console_handler)

        if self.config.file_path:
            file_path = Path(self.config.file_path)
            file_path.parent.mkdir(parents=True, exist_ok=True)

            file_handler = logging.handlers.RotatingFileHandler(
                file_path,
                maxBytes=self.config.max_file_size,
                backupCount=self.config.backup_count
            )
            file_handler.setLevel(level_map[self.config.level])
            file_handler.setFormatter(logging.Formatter('%(message)s'))
            package_logger.addHandler(file_handler)

        # Records reach the host's handlers only when the package writes nowhere itself
        package_logger.propagate = not package_logger.handlers

    def _add_context(self, logger, method_name, event_dict):
        """Add bound run context to log entries."""
        context = getattr(self._context, 'context', None)
        if context:
            for key, value in context.to_dict().items():
                event_dict.setdefault(key, value)
        return event_dict

    @contextmanager
    def context(self, **kwargs):
        """Context manager for structured logging context.

        Example:
            with logging_manager.context(operation="clustering", n_records=120):
                logger.info("Assigning clusters")
        """
        old_context = getattr(self._context, 'context', None)

        if old_context:
            new_context = LogContext(**{**old_context.__dict__, **kwargs})
        else:
            new_context = LogContext(**kwargs)

        self._context.context = new_context

        try:
            yield new_context
        finally:
            self._context.context = old_context

    def clear_context(self):
        """Clear current thread context."""
        self._context.context = None

    def log_stage_complete(self, stage: str, duration: float, **details):
        """Log completion of a pipeline stage and record its duration."""
        self.logger.info(
            f"Stage {stage} completed",
            stage=stage,
            duration=round(duration, 6),
            **details
        )
        self.metrics.record_stage(stage, duration)

    def log_clustering(self, n_records: int, n_clusters: int,
                       n_iter: int, converged: bool):
        """Log a finished clustering run."""
        self.logger.info(
            "Clustering finished",
            n_records=n_records,
            n_clusters=n_clusters,
            n_iter=n_iter,
            converged=converged
        )
        self.metrics.record_clustering(n_iter, converged)

    def log_outliers(self, method: str, n_scored: int, n_flagged: int, **context):
        """Log an outlier detection pass."""
        self.logger.info(
            "Outlier detection finished",
            method=method,
            n_scored=n_scored,
            n_flagged=n_flagged,
            **context
        )
        self.metrics.record_outliers(method, n_flagged)

    def log_error(self, error: Exception, component: str, **context):
        """Log error with structured information.

        Args:
            error: Exception instance
            component: Component where error occurred
            **context: Additional context
        """
        error_type = type(error).__name__

        with self.context(operation="error"):
            self.logger.error(
                f"Error in {component}: {str(error)}",
                error_type=error_type,
                component=component,
                exc_info=error,
                **context
            )

        self.metrics.record_error(error_type, component)

    def get_metrics(self) -> bytes:
        """Get Prometheus metrics."""
        return self.metrics.get_metrics()

    def get_logger(self, name: Optional[str] = None):
        """Get structured logger instance.

        Args:
            name: Logger name. Uses caller's module name if None.
        """
        return structlog.get_logger(name)


_logging_manager: Optional[LoggingManager] = None


def get_logging_manager(config: Optional[LoggingConfig] = None) -> LoggingManager:
    """Get global logging manager instance.

    Args:
        config: Logging configuration for initialization
    """
    global _logging_manager

    if _logging_manager is None:
        _logging_manager = LoggingManager(config)

    return _logging_manager


def get_logger(name: Optional[str] = None):
    """Get structured logger instance."""
    return get_logging_manager().get_logger(name)
