"""
Base types for the segmentation pipeline.

An analysis run moves through a fixed sequence of stages (feature extraction,
standardization, clustering, projection, outlier detection, correlation,
profiling). The types here describe the run state and the standardized result
handed back to the caller.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class PipelineState(Enum):
    """Pipeline execution states."""
    INITIALIZED = "initialized"
    EXECUTING = "executing"
    COMPLETED = "completed"
    ERROR = "error"


class PipelineStage(Enum):
    """Stages of a segmentation run, in execution order."""
    FEATURE_EXTRACTION = "feature_extraction"
    STANDARDIZATION = "standardization"
    CLUSTERING = "clustering"
    PROJECTION = "projection"
    OUTLIER_DETECTION = "outlier_detection"
    CORRELATION = "correlation"
    PROFILING = "profiling"
    ANNOTATION = "annotation"


@dataclass
class PipelineResult:
    """Standardized pipeline execution result."""

    # Core result data
    success: bool
    data: Optional[Any]
    metadata: Dict[str, Any]

    # Execution information
    execution_time_seconds: float
    pipeline_stage: str
    stage_timings: Dict[str, float] = field(default_factory=dict)

    # Error information (if success=False)
    error: Optional[Dict[str, Any]] = None
    partial_results: Optional[Any] = None
    recovery_options: List[str] = field(default_factory=list)

