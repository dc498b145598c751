"""
Analysis session - owns one survey dataset, its configuration and its latest results.

A session threads the dataset and configuration explicitly through every
stage instead of sharing module-level state. ``run()`` recomputes everything
and, only once every stage has succeeded, writes ``cluster_id`` and
``outlier_score`` onto each record in a single pass. Values from a previous
run are replaced, never merged. A failed run leaves the records untouched.
"""

import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, List, MutableMapping, Optional

import numpy as np
from sklearn.utils import check_random_state

from ..config_manager import SegmentationConfig, get_config_manager
from ..domains.clustering import ClusteringResult, KMeansClusterer, group_by_cluster, silhouette_or_none
from ..domains.correlation import CorrelationEngine, CorrelationMatrix, top_correlations
from ..domains.feature_engineering import FeatureExtractor, RecordsLike, Standardizer, as_record_list
from ..domains.outlier_detection import OutlierDetectionResult, OutlierDetector, OutlierReport
from ..domains.projection import Projector
from ..domains.risk_profiling import ClusterProfile, identify_risks, profile_clusters
from ..error_handler import ConfigurationError, get_error_handler
from ..logging_manager import get_logger, get_logging_manager
from .base import PipelineResult, PipelineStage, PipelineState

logger = get_logger(__name__)


@dataclass
class SegmentationRun:
    """Everything one successful run produced."""
    clustering: ClusteringResult
    projection: List[Dict[str, Any]]
    outlier_results: Dict[int, OutlierDetectionResult]
    outlier_reports: Dict[int, List[OutlierReport]]
    correlation: CorrelationMatrix
    cluster_profiles: List[ClusterProfile]
    outlier_scores: List[Optional[float]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'clustering': self.clustering.to_dict(),
            'projection': self.projection,
            'outliers': {
                str(cluster_id): [report.to_dict() for report in reports]
                for cluster_id, reports in self.outlier_reports.items()
            },
            'outlier_scores': self.outlier_scores,
            'correlation': self.correlation.to_dict(),
            'cluster_profiles': [profile.to_dict() for profile in self.cluster_profiles],
        }


class AnalysisSession:
    """Runs the segmentation pipeline over one dataset with one configuration."""

    def __init__(self,
                 records: Optional[RecordsLike] = None,
                 config: Optional[SegmentationConfig] = None):
        """
        Args:
            records: Student records (list of dicts or DataFrame rows); dicts are annotated in place
            config: Session configuration; read from the global config manager when omitted
        """
        if config is None:
            try:
                config = get_config_manager().get_segmentation_config()
            except (TypeError, ValueError) as e:
                raise ConfigurationError(f"Invalid segmentation configuration: {e}",
                                         component='session', cause=e) from e
        self.config = config
        self.session_id = str(uuid.uuid4())
        self._records: List[MutableMapping[str, Any]] = as_record_list(records)
        self._state = PipelineState.INITIALIZED
        self._run: Optional[SegmentationRun] = None
        self._last_result: Optional[PipelineResult] = None
        self._current_stage: Optional[PipelineStage] = None
        self._stage_timings: Dict[str, float] = {}

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def records(self) -> List[MutableMapping[str, Any]]:
        return self._records

    @property
    def last_result(self) -> Optional[PipelineResult]:
        return self._last_result

    @property
    def clusters(self) -> List[List[MutableMapping[str, Any]]]:
        return self._run.clustering.clusters if self._run else []

    @property
    def clustering(self) -> Optional[ClusteringResult]:
        return self._run.clustering if self._run else None

    @property
    def projection(self) -> List[Dict[str, Any]]:
        return self._run.projection if self._run else []

    @property
    def outlier_reports(self) -> Dict[int, List[OutlierReport]]:
        return self._run.outlier_reports if self._run else {}

    @property
    def correlation(self) -> Optional[CorrelationMatrix]:
        return self._run.correlation if self._run else None

    @property
    def cluster_profiles(self) -> List[ClusterProfile]:
        return self._run.cluster_profiles if self._run else []

    def replace_records(self, records: Optional[RecordsLike]) -> None:
        """Swap in a new (filtered or reloaded) dataset and drop all results."""
        self._records = as_record_list(records)
        self._run = None
        self._last_result = None
        self._state = PipelineState.INITIALIZED
        logger.info("Session dataset replaced", session_id=self.session_id, n_records=len(self._records))

    @contextmanager
    def _stage(self, stage: PipelineStage):
        self._current_stage = stage
        start = time.time()
        yield
        duration = time.time() - start
        self._stage_timings[stage.value] = duration
        get_logging_manager().log_stage_complete(stage.value, duration)

    def run(self) -> PipelineResult:
        """Execute the full pipeline and annotate the records."""
        self._state = PipelineState.EXECUTING
        self._stage_timings = {}
        self._current_stage = None
        start_time = time.time()
        logging_manager = get_logging_manager()
        logging_manager.metrics.update_records_processed(len(self._records))

        with logging_manager.context(session_id=self.session_id, operation="segmentation",
                                     n_records=len(self._records)):
            try:
                run = self._execute()
            except Exception as e:
                return self._fail(e, start_time)

            self._run = run
            self._state = PipelineState.COMPLETED
            execution_time = time.time() - start_time
            self._last_result = PipelineResult(
                success=True,
                data=run,
                metadata=self.summary(),
                execution_time_seconds=execution_time,
                pipeline_stage=PipelineStage.ANNOTATION.value,
                stage_timings=dict(self._stage_timings),
            )
            logger.info("Segmentation run completed", execution_time=round(execution_time, 6))
            return self._last_result

    def _execute(self) -> SegmentationRun:
        clustering_cfg = self.config.clustering
        outlier_cfg = self.config.outliers
        projection_cfg = self.config.projection
        records = self._records
        n_records = len(records)
        k = clustering_cfg.n_clusters
        # A fresh RandomState per run makes seeded runs repeatable
        rng = check_random_state(clustering_cfg.random_state)

        with self._stage(PipelineStage.FEATURE_EXTRACTION):
            extractor = FeatureExtractor(clustering_cfg.feature_keys)
            X = extractor.transform(records)
            keys = extractor.keys

        with self._stage(PipelineStage.STANDARDIZATION):
            standardizer = Standardizer()
            X_std = standardizer.fit_transform(X)

        with self._stage(PipelineStage.CLUSTERING):
            clusterer = KMeansClusterer(
                n_clusters=k,
                max_iter=clustering_cfg.max_iterations,
                random_state=rng,
            ).fit(X_std)
            labels = clusterer.labels_
            clusters = group_by_cluster(records, labels, k) if n_records else []
            clustering = ClusteringResult(
                n_clusters=k,
                effective_n_clusters=clusterer.effective_n_clusters_,
                labels=labels,
                cluster_centers=clusterer.cluster_centers_,
                clusters=clusters,
                cluster_sizes=[len(c) for c in clusters],
                n_iter=clusterer.n_iter_,
                converged=clusterer.converged_,
                inertia=clusterer.inertia_,
                feature_keys=keys,
                standardization=standardizer.get_params_for_features(),
                silhouette_avg=silhouette_or_none(
                    X_std, labels, random_state=clustering_cfg.random_state
                ) if n_records else None,
                fit_time=clusterer.fit_time_,
            )

        with self._stage(PipelineStage.PROJECTION):
            projector = Projector(
                method=projection_cfg.method.value,
                jitter=projection_cfg.jitter,
                random_state=rng,
            )
            projection = projector.project_records(
                records, X_std if projection_cfg.standardized else X, labels
            )

        with self._stage(PipelineStage.OUTLIER_DETECTION):
            detector = OutlierDetector(
                min_records=outlier_cfg.min_records,
                top_n=outlier_cfg.top_n,
                n_trees=outlier_cfg.n_trees,
                subsample_size=outlier_cfg.subsample_size,
                random_state=rng,
            )
            outlier_scores: List[Optional[float]] = [None] * n_records
            outlier_results: Dict[int, OutlierDetectionResult] = {}
            outlier_reports: Dict[int, List[OutlierReport]] = {}
            for cluster_id in range(len(clusters)):
                member_index = np.flatnonzero(labels == cluster_id)
                members = [records[i] for i in member_index]
                result = detector.score(members, keys, outlier_cfg.method.value)
                outlier_results[cluster_id] = result
                outlier_reports[cluster_id] = detector.build_reports(members, result)
                if not result.insufficient_data:
                    for local, global_index in enumerate(member_index):
                        outlier_scores[global_index] = float(result.scores[local])

        with self._stage(PipelineStage.CORRELATION):
            correlation = CorrelationEngine().compute_matrix(X, keys)

        with self._stage(PipelineStage.PROFILING):
            profiles = profile_clusters(clusters)

        with self._stage(PipelineStage.ANNOTATION):
            for record, label, score in zip(records, labels, outlier_scores):
                record['cluster_id'] = int(label)
                record['outlier_score'] = score

        return SegmentationRun(
            clustering=clustering,
            projection=projection,
            outlier_results=outlier_results,
            outlier_reports=outlier_reports,
            correlation=correlation,
            cluster_profiles=profiles,
            outlier_scores=outlier_scores,
        )

    def _fail(self, error: Exception, start_time: float) -> PipelineResult:
        self._state = PipelineState.ERROR
        stage = self._current_stage.value if self._current_stage else "initialization"
        execution_time = time.time() - start_time

        processed = get_error_handler().handle_error(error, {
            'component': 'session',
            'stage': stage,
            'session_id': self.session_id,
            'n_records': len(self._records),
        })

        self._last_result = PipelineResult(
            success=False,
            data=None,
            metadata={'error': True, 'failed_stage': stage},
            execution_time_seconds=execution_time,
            pipeline_stage=stage,
            stage_timings=dict(self._stage_timings),
            error=processed.to_dict(),
            partial_results={'completed_stages': list(self._stage_timings)},
            recovery_options=list(processed.recovery_suggestions),
        )
        return self._last_result

    def summary(self) -> Dict[str, Any]:
        """Compact description of the latest run for dashboards and logs."""
        if self._run is None:
            return {
                'session_id': self.session_id,
                'state': self._state.value,
                'n_records': len(self._records),
            }

        clustering = self._run.clustering
        n_flagged = sum(len(reports) for reports in self._run.outlier_reports.values())
        return {
            'session_id': self.session_id,
            'state': self._state.value,
            'n_records': len(self._records),
            'n_clusters': clustering.n_clusters,
            'effective_n_clusters': clustering.effective_n_clusters,
            'cluster_sizes': clustering.cluster_sizes,
            'n_iter': clustering.n_iter,
            'converged': clustering.converged,
            'silhouette_avg': clustering.silhouette_avg,
            'outlier_method': self.config.outliers.method.value,
            'n_outliers_reported': n_flagged,
            'top_correlations': [pair.to_dict() for pair in top_correlations(self._run.correlation)],
            'risks': identify_risks(self._records),
        }
