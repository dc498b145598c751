"""
Segmentation pipeline: run state, standardized results and the analysis session.
"""

from .base import (
    PipelineResult,
    PipelineStage,
    PipelineState,
)

from .session import (
    AnalysisSession,
    SegmentationRun,
)

__all__ = [
    'PipelineResult',
    'PipelineStage',
    'PipelineState',
    'AnalysisSession',
    'SegmentationRun',
]
