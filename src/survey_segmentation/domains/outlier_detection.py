"""
Outlier Detection Domain - flags atypical students within a cluster or dataset.

Three interchangeable scoring strategies share one contract: score every
record, flag those above a method-specific threshold, and report at most
``top_n`` flagged records by descending score. Inputs with fewer than
``min_records`` records produce an empty result.

Strategies:
- mahalanobis: distance to the feature means using a diagonal-only
  pseudo-inverse of the sample covariance (cross-feature covariance is
  dropped); flagged above mean + 3 * std of all distances
- isolation: variance-based proxy for an isolation forest; 100 random
  subsamples of up to 256 records each add the record's across-feature
  variance, scores are normalized by their maximum and flagged above 0.7.
  No trees are built.
- zscore: largest absolute per-feature z-score, flagged above 3

Every reason string names the single most deviant feature with its magnitude.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

import numpy as np
from sklearn.utils import check_random_state

from ..config_manager import OutlierMethod
from ..logging_manager import get_logger, get_logging_manager
from .feature_engineering import FeatureExtractor, RecordsLike, Standardizer, as_record_list

logger = get_logger(__name__)

ZSCORE_THRESHOLD = 3.0
ISOLATION_THRESHOLD = 0.7
MAHALANOBIS_STD_MULTIPLIER = 3.0


@dataclass
class OutlierReport:
    """One flagged record."""
    record: Mapping[str, Any]
    index: int
    feature_vector: np.ndarray
    outlier_score: float
    is_outlier: bool
    reason: str
    method: str

    def to_dict(self) -> Dict[str, Any]:
        """Convert report to dictionary for JSON serialization."""
        record_id = self.record.get('id')
        return {
            'id': record_id if record_id is not None else self.index,
            'index': self.index,
            'cluster_id': self.record.get('cluster_id'),
            'outlier_score': self.outlier_score,
            'is_outlier': self.is_outlier,
            'reason': self.reason,
            'method': self.method,
            'feature_vector': self.feature_vector.tolist(),
        }


@dataclass
class OutlierDetectionResult:
    """Scores for every record of one detection call."""
    method: str
    feature_keys: List[str]
    n_records: int
    scores: np.ndarray
    is_outlier: np.ndarray
    reasons: List[str]
    threshold: Optional[float]
    feature_vectors: np.ndarray
    insufficient_data: bool = False
    fit_time: float = 0.0
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def n_outliers(self) -> int:
        return int(self.is_outlier.sum())

    def to_dict(self) -> Dict[str, Any]:
        """Convert result to dictionary for JSON serialization."""
        return {
            'method': self.method,
            'feature_keys': self.feature_keys,
            'n_records': self.n_records,
            'n_outliers': self.n_outliers,
            'scores': self.scores.tolist(),
            'is_outlier': self.is_outlier.tolist(),
            'reasons': self.reasons,
            'threshold': self.threshold,
            'insufficient_data': self.insufficient_data,
            'fit_time': self.fit_time,
            'details': self.details,
        }


def _most_deviant(deviations: np.ndarray) -> int:
    """Index of the largest deviation, first occurrence on ties."""
    return int(np.argmax(deviations))


class OutlierDetector:
    """Scores survey records for atypicality with a selectable strategy."""

    def __init__(self,
                 min_records: int = 10,
                 top_n: int = 10,
                 n_trees: int = 100,
                 subsample_size: int = 256,
                 random_state=None):
        self.min_records = min_records
        self.top_n = top_n
        self.n_trees = n_trees
        self.subsample_size = subsample_size
        self.random_state = random_state

    def _resolve_method(self, method) -> OutlierMethod:
        try:
            return OutlierMethod(method)
        except ValueError:
            logger.warning(f"Unknown outlier method '{method}', falling back to mahalanobis")
            return OutlierMethod.MAHALANOBIS

    def score(self,
              records: RecordsLike,
              features: Optional[Sequence[str]] = None,
              method: str = 'mahalanobis') -> OutlierDetectionResult:
        """Score every record; flags and reasons are filled for all of them."""
        resolved = self._resolve_method(method)
        start_time = time.time()

        record_list = as_record_list(records)
        extractor = FeatureExtractor(features)
        X = extractor.transform(record_list)
        n_records = len(record_list)

        if n_records < self.min_records:
            logger.debug(f"Skipping outlier detection: {n_records} record(s) < minimum {self.min_records}")
            return OutlierDetectionResult(
                method=resolved.value,
                feature_keys=extractor.keys,
                n_records=n_records,
                scores=np.zeros(0),
                is_outlier=np.zeros(0, dtype=bool),
                reasons=[],
                threshold=None,
                feature_vectors=X,
                insufficient_data=True,
            )

        if resolved == OutlierMethod.ISOLATION:
            scores, threshold, reasons, details = self._isolation(X, extractor.keys)
        elif resolved == OutlierMethod.ZSCORE:
            scores, threshold, reasons, details = self._zscore(X, extractor.keys)
        else:
            scores, threshold, reasons, details = self._mahalanobis(X, extractor.keys)

        result = OutlierDetectionResult(
            method=resolved.value,
            feature_keys=extractor.keys,
            n_records=n_records,
            scores=scores,
            is_outlier=scores > threshold,
            reasons=reasons,
            threshold=float(threshold),
            feature_vectors=X,
            fit_time=time.time() - start_time,
            details=details,
        )
        get_logging_manager().log_outliers(resolved.value, n_records, result.n_outliers)
        return result

    def detect(self,
               records: RecordsLike,
               features: Optional[Sequence[str]] = None,
               method: str = 'mahalanobis') -> List[OutlierReport]:
        """
        Return the flagged records, highest score first.

        Parameters:
        -----------
        records : list of mappings or DataFrame
            Records of one cluster or of the whole dataset
        features : sequence of str, optional
            Feature keys to score on (defaults to the seven clustering dimensions)
        method : str
            'mahalanobis' (default), 'isolation' or 'zscore'; anything else
            falls back to 'mahalanobis'

        Returns:
        --------
        list of OutlierReport
            At most ``top_n`` reports; empty below ``min_records`` records
        """
        record_list = as_record_list(records)
        result = self.score(record_list, features, method)
        return self.build_reports(record_list, result)

    def build_reports(self, records: Sequence[Mapping[str, Any]],
                      result: OutlierDetectionResult) -> List[OutlierReport]:
        """Turn a scoring result into the sorted, truncated list of flagged reports."""
        if result.insufficient_data:
            return []
        reports = [
            OutlierReport(
                record=records[i],
                index=int(i),
                feature_vector=result.feature_vectors[i],
                outlier_score=float(result.scores[i]),
                is_outlier=True,
                reason=result.reasons[i],
                method=result.method,
            )
            for i in np.flatnonzero(result.is_outlier)
        ]
        # sorted() is stable: equal scores keep input order
        reports = sorted(reports, key=lambda r: -r.outlier_score)
        return reports[:self.top_n]

    def _mahalanobis(self, X: np.ndarray, keys: List[str]):
        means = X.mean(axis=0)
        if X.shape[0] > 1:
            variances = np.diag(np.atleast_2d(np.cov(X, rowvar=False, ddof=1))).copy()
        else:
            variances = np.zeros(X.shape[1])
        constant = np.ptp(X, axis=0) == 0
        means[constant] = X[0, constant]
        variances[constant] = 0.0
        # Diagonal-only pseudo-inverse: zero variance maps to zero weight
        inv_diag = np.divide(1.0, variances, out=np.zeros_like(variances), where=variances > 0)

        diff = X - means
        distances = np.sqrt((diff ** 2 * inv_diag).sum(axis=1))

        mean_dist = distances.mean()
        std_dist = distances.std(ddof=1) if len(distances) > 1 else 0.0
        threshold = mean_dist + MAHALANOBIS_STD_MULTIPLIER * std_dist

        deviations = np.abs(diff)
        reasons = []
        for row in deviations:
            j = _most_deviant(row)
            reasons.append(f"Large deviation on {keys[j]} (deviation: {row[j]:.2f})")

        details = {
            'mean_distance': float(mean_dist),
            'std_distance': float(std_dist),
            'inverse_variances': inv_diag.tolist(),
        }
        return distances, threshold, reasons, details

    def _isolation(self, X: np.ndarray, keys: List[str]):
        rng = check_random_state(self.random_state)
        n_records, n_features = X.shape
        subsample = min(self.subsample_size, n_records)

        if n_features > 1:
            row_variance = X.var(axis=1, ddof=1)
        else:
            row_variance = np.zeros(n_records)

        accumulated = np.zeros(n_records)
        for _ in range(self.n_trees):
            sample = rng.permutation(n_records)[:subsample]
            accumulated[sample] += row_variance[sample]

        max_score = accumulated.max()
        scores = accumulated / (max_score if max_score > 0 else 1.0)

        deviations = np.abs(X - X.mean(axis=0))
        reasons = []
        for score, row in zip(scores, deviations):
            j = _most_deviant(row)
            reasons.append(
                f"High isolation score: {score * 100:.1f}% "
                f"(most deviant: {keys[j]}, deviation: {row[j]:.2f})"
            )

        details = {'n_trees': self.n_trees, 'subsample_size': subsample}
        return scores, ISOLATION_THRESHOLD, reasons, details

    def _zscore(self, X: np.ndarray, keys: List[str]):
        scaler = Standardizer(ddof=1).fit(X)
        z = np.abs((X - scaler.mean_) / scaler.scale_)
        combined = z.max(axis=1)

        reasons = []
        for row in z:
            j = _most_deviant(row)
            reasons.append(f"Extreme z-score on {keys[j]} (z = {row[j]:.2f})")

        details = {
            'feature_means': scaler.mean_.tolist(),
            'feature_stds': scaler.scale_.tolist(),
        }
        return combined, ZSCORE_THRESHOLD, reasons, details


def detect_outliers(records: RecordsLike,
                    features: Optional[Sequence[str]] = None,
                    method: str = 'mahalanobis',
                    top_n: int = 10,
                    min_records: int = 10,
                    random_state=None) -> List[OutlierReport]:
    """Detect outliers in one record set with a throwaway detector."""
    logger.info(f"Performing outlier detection with {method}")
    detector = OutlierDetector(min_records=min_records, top_n=top_n, random_state=random_state)
    reports = detector.detect(records, features, method)
    logger.info(f"Outlier detection completed: {len(reports)} record(s) reported")
    return reports


def detect_cluster_outliers(clusters: Sequence[Sequence[Mapping[str, Any]]],
                            features: Optional[Sequence[str]] = None,
                            method: str = 'mahalanobis',
                            detector: Optional[OutlierDetector] = None) -> Dict[int, List[OutlierReport]]:
    """Run detection separately inside each cluster, keyed by cluster index."""
    detector = detector or OutlierDetector()
    return {
        cluster_id: detector.detect(members, features, method)
        for cluster_id, members in enumerate(clusters)
    }
