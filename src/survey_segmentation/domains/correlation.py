"""
Correlation Domain - pairwise Pearson matrices over survey features.

Correlation between two features is cov(x, y) / sqrt(var(x) * var(y)) and is
defined as 0 when either variance is 0. Matrices are exactly symmetric, carry
1 on the diagonal and stay within [-1, 1].
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from ..config_manager import CLUSTERING_FEATURES, FEATURE_LABELS
from ..logging_manager import get_logger
from .feature_engineering import FeatureExtractor, RecordsLike, as_record_list

logger = get_logger(__name__)

# Variables summarized on the dashboard insight panel
INSIGHT_FEATURES: List[str] = [
    'academic_pressure',
    'sleep_duration',
    'financial_stress',
    'study_satisfaction',
    'cgpa',
    'depression',
]


@dataclass
class CorrelationMatrix:
    """Square Pearson matrix with its ordered feature keys and display labels."""
    keys: List[str]
    labels: List[str]
    values: np.ndarray
    n_records: int = 0

    def _position(self, name: str) -> int:
        if name in self.keys:
            return self.keys.index(name)
        if name in self.labels:
            return self.labels.index(name)
        raise KeyError(f"Unknown feature '{name}'")

    def get(self, a: str, b: str) -> float:
        """Coefficient for a feature pair, addressed by key or display label."""
        return float(self.values[self._position(a), self._position(b)])

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(self.values, index=self.keys, columns=self.keys)

    def to_dict(self) -> Dict[str, Any]:
        """Convert matrix to dictionary for JSON serialization."""
        return {
            'keys': self.keys,
            'labels': self.labels,
            'values': self.values.tolist(),
            'n_records': self.n_records,
        }


@dataclass
class CorrelationPair:
    """One off-diagonal entry with its qualitative reading."""
    var1: str
    var2: str
    correlation: float
    strength: str
    direction: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'var1': self.var1,
            'var2': self.var2,
            'correlation': self.correlation,
            'strength': self.strength,
            'direction': self.direction,
        }


def feature_label(key: str) -> str:
    return FEATURE_LABELS.get(key, key)


def pearson_correlation(x: Sequence[float], y: Sequence[float]) -> float:
    """Pearson coefficient of two equal-length sequences; 0 when either is constant."""
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    if x.shape != y.shape:
        raise ValueError(f"Sequences differ in length: {x.shape[0]} != {y.shape[0]}")
    if x.size == 0:
        return 0.0
    dx = x - x.mean()
    dy = y - y.mean()
    den_x = float((dx * dx).sum())
    den_y = float((dy * dy).sum())
    if den_x == 0 or den_y == 0 or np.ptp(x) == 0 or np.ptp(y) == 0:
        return 0.0
    r = float((dx * dy).sum()) / np.sqrt(den_x * den_y)
    return float(np.clip(r, -1.0, 1.0))


def correlation_strength(r: float) -> str:
    magnitude = abs(r)
    if magnitude > 0.7:
        return 'strong'
    if magnitude > 0.4:
        return 'moderate'
    return 'weak'


def correlation_direction(r: float) -> str:
    return 'positive' if r > 0 else 'negative'


class CorrelationEngine:
    """Computes Pearson correlation matrices over record features."""

    def compute(self,
                records: RecordsLike,
                feature_keys: Optional[Sequence[str]] = None) -> CorrelationMatrix:
        """
        Pairwise Pearson correlation of the given features across records.

        Parameters:
        -----------
        records : list of mappings or DataFrame
            Records to correlate over; missing values count as 0
        feature_keys : sequence of str, optional
            Features in matrix order (defaults to the seven clustering dimensions)

        Returns:
        --------
        CorrelationMatrix
            Symmetric matrix with unit diagonal and entries in [-1, 1]
        """
        record_list = as_record_list(records)
        extractor = FeatureExtractor(feature_keys)
        X = extractor.transform(record_list)
        return self.compute_matrix(X, extractor.keys)

    def compute_matrix(self, X: np.ndarray, keys: Sequence[str]) -> CorrelationMatrix:
        keys = list(keys)
        n_records, n_features = X.shape

        if n_records == 0:
            values = np.eye(n_features)
        else:
            means = X.mean(axis=0)
            constant = np.ptp(X, axis=0) == 0
            means[constant] = X[0, constant]
            centered = X - means

            cov = centered.T @ centered
            var = np.diag(cov).copy()
            var[constant] = 0.0
            denom = np.sqrt(np.outer(var, var))
            values = np.divide(cov, denom, out=np.zeros_like(cov), where=denom > 0)
            values = (values + values.T) / 2.0
            np.fill_diagonal(values, 1.0)
            values = np.clip(values, -1.0, 1.0)

        logger.debug(f"Computed {n_features}x{n_features} correlation matrix over {n_records} records")
        return CorrelationMatrix(
            keys=keys,
            labels=[feature_label(k) for k in keys],
            values=values,
            n_records=n_records,
        )


def compute_correlations(records: RecordsLike,
                         feature_keys: Optional[Sequence[str]] = None) -> CorrelationMatrix:
    """Correlation matrix over the given (or the seven clustering) features."""
    return CorrelationEngine().compute(records, feature_keys or CLUSTERING_FEATURES)


def top_correlations(matrix: CorrelationMatrix, n: int = 3) -> List[CorrelationPair]:
    """The n strongest distinct feature pairs by absolute coefficient."""
    pairs = []
    size = len(matrix.keys)
    for i in range(size):
        for j in range(i + 1, size):
            r = float(matrix.values[i, j])
            pairs.append(CorrelationPair(
                var1=matrix.labels[i],
                var2=matrix.labels[j],
                correlation=r,
                strength=correlation_strength(r),
                direction=correlation_direction(r),
            ))
    pairs.sort(key=lambda p: -abs(p.correlation))
    return pairs[:n]
