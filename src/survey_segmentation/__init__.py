"""Survey segmentation: clustering, outlier and correlation analysis of student mental-health surveys."""

__version__ = "1.0.0"

from .config_manager import (
    CLUSTERING_FEATURES,
    FEATURE_LABELS,
    SegmentationConfig,
    get_config_manager,
)
from .pipeline import AnalysisSession, PipelineResult

__all__ = [
    'CLUSTERING_FEATURES',
    'FEATURE_LABELS',
    'SegmentationConfig',
    'get_config_manager',
    'AnalysisSession',
    'PipelineResult',
]
