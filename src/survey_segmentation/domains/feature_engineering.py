"""
Feature Engineering Domain - survey record extraction and z-score standardization.

Turns flat student survey records into fixed-order numeric feature matrices and
standardizes them column by column, exposing the fitted per-feature parameters
so later stages can place new vectors in the same space.

Key Features:
- Tolerant extraction (missing, null, NaN and non-numeric values become 0)
- Records given as a list of mappings or a pandas DataFrame
- Standardization with degenerate-variance fallback
- Full sklearn transformer compatibility
"""

import math
import numbers
import time
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from sklearn.base import BaseEstimator, TransformerMixin
from sklearn.utils.validation import check_array, check_is_fitted

from ..config_manager import CLUSTERING_FEATURES
from ..logging_manager import get_logger

logger = get_logger(__name__)

RecordsLike = Union[Sequence[Mapping[str, Any]], pd.DataFrame]


def as_record_list(records: Optional[RecordsLike]) -> List[Mapping[str, Any]]:
    """Normalize the accepted record containers to a list of mappings."""
    if records is None:
        return []
    if isinstance(records, pd.DataFrame):
        return records.to_dict(orient='records')
    return list(records)


def coerce_feature_value(value: Any) -> float:
    """Map a raw survey field to a float, defaulting anything unusable to 0."""
    if value is None:
        return 0.0
    if isinstance(value, (bool, np.bool_)):
        return 1.0 if value else 0.0
    if isinstance(value, numbers.Number):
        try:
            result = float(value)
        except (TypeError, ValueError):
            return 0.0
    elif isinstance(value, str):
        try:
            result = float(value.strip())
        except ValueError:
            return 0.0
    else:
        return 0.0
    return result if math.isfinite(result) else 0.0


def as_matrix(X, n_features: Optional[int] = None) -> np.ndarray:
    """Validate a feature matrix, allowing zero rows."""
    if isinstance(X, np.ndarray) and X.ndim == 2 and X.shape[0] == 0:
        return X.astype(float)
    if hasattr(X, '__len__') and len(X) == 0:
        return np.zeros((0, n_features or 0), dtype=float)
    return check_array(X, dtype=np.float64)


@dataclass
class StandardizationResult:
    """Per-feature standardization parameters."""
    feature_keys: List[str]
    means: List[float]
    stds: List[float]
    n_samples: int
    ddof: int

    def to_dict(self) -> Dict[str, Any]:
        """Convert result to dictionary for JSON serialization."""
        return {
            'feature_keys': self.feature_keys,
            'parameters': {
                key: {'mean': mean, 'std': std}
                for key, mean, std in zip(self.feature_keys, self.means, self.stds)
            },
            'n_samples': self.n_samples,
            'ddof': self.ddof,
        }


class FeatureExtractor(BaseEstimator, TransformerMixin):
    """Projects survey records onto a fixed, ordered numeric feature vector."""

    def __init__(self, feature_keys: Optional[Sequence[str]] = None):
        """
        Initialize feature extractor.

        Parameters:
        -----------
        feature_keys : sequence of str, optional
            Ordered record fields to extract (defaults to the seven clustering dimensions)
        """
        self.feature_keys = feature_keys

    @property
    def keys(self) -> List[str]:
        if self.feature_keys is None:
            return list(CLUSTERING_FEATURES)
        return list(self.feature_keys)

    def fit(self, X=None, y=None):
        """Stateless; kept for pipeline compatibility."""
        self.n_features_out_ = len(self.keys)
        return self

    def extract(self, record: Mapping[str, Any]) -> np.ndarray:
        """Extract a single feature vector from one record."""
        if record is None:
            return np.zeros(len(self.keys), dtype=float)
        return np.array([coerce_feature_value(record.get(key)) for key in self.keys], dtype=float)

    def transform(self, X: RecordsLike) -> np.ndarray:
        """Extract the N x M feature matrix for a collection of records."""
        records = as_record_list(X)
        if not records:
            return np.zeros((0, len(self.keys)), dtype=float)
        return np.vstack([self.extract(record) for record in records])

    def get_feature_names_out(self, input_features=None):
        return np.asarray(self.keys, dtype=object)


class Standardizer(BaseEstimator, TransformerMixin):
    """Column-wise z-score standardization with a unit-scale fallback.

    A column whose standard deviation is zero (or a matrix with fewer than two
    rows) is divided by 1 instead, so constant features come out as exact zeros
    rather than NaN or infinity.
    """

    def __init__(self, ddof: int = 1):
        """
        Parameters:
        -----------
        ddof : int
            Delta degrees of freedom for the standard deviation (1 = sample std)
        """
        self.ddof = ddof

    def fit(self, X, y=None):
        """Compute per-column means and scales."""
        start_time = time.time()
        X = as_matrix(X)
        n_samples, n_features = X.shape

        if n_samples == 0:
            self.mean_ = np.zeros(n_features)
            self.scale_ = np.ones(n_features)
        else:
            self.mean_ = X.mean(axis=0)
            if n_samples > self.ddof:
                std = X.std(axis=0, ddof=self.ddof)
            else:
                std = np.zeros(n_features)
            constant = np.ptp(X, axis=0) == 0
            # Pin constant columns to their value so they standardize to exact zeros
            self.mean_[constant] = X[0, constant]
            std[constant] = 0.0
            self.scale_ = np.where(std > 0, std, 1.0)
            if constant.any():
                logger.debug(f"Standardizer: {int(constant.sum())} constant column(s) left unscaled")

        self.n_features_in_ = n_features
        self.n_samples_seen_ = n_samples
        self.fit_time_ = time.time() - start_time
        return self

    def transform(self, X) -> np.ndarray:
        """Apply (x - mean) / std to every column."""
        check_is_fitted(self, 'mean_')
        X = as_matrix(X, self.n_features_in_)
        if X.shape[0] == 0:
            return np.zeros((0, self.n_features_in_))
        if X.shape[1] != self.n_features_in_:
            raise ValueError(
                f"X has {X.shape[1]} features, but Standardizer was fitted with {self.n_features_in_}"
            )
        return (X - self.mean_) / self.scale_

    def inverse_transform(self, X) -> np.ndarray:
        """Map standardized vectors back to the original feature space."""
        check_is_fitted(self, 'mean_')
        X = as_matrix(X, self.n_features_in_)
        if X.shape[0] == 0:
            return np.zeros((0, self.n_features_in_))
        return X * self.scale_ + self.mean_

    def get_params_for_features(self) -> List[Tuple[float, float]]:
        """Return the fitted (mean, std) pair for each feature column."""
        check_is_fitted(self, 'mean_')
        return [(float(m), float(s)) for m, s in zip(self.mean_, self.scale_)]

    def get_standardization_result(self, feature_keys: Optional[Iterable[str]] = None) -> StandardizationResult:
        check_is_fitted(self, 'mean_')
        keys = list(feature_keys) if feature_keys is not None else [
            f"feature_{i}" for i in range(self.n_features_in_)
        ]
        return StandardizationResult(
            feature_keys=keys,
            means=[float(m) for m in self.mean_],
            stds=[float(s) for s in self.scale_],
            n_samples=self.n_samples_seen_,
            ddof=self.ddof,
        )


def extract_features(records: RecordsLike,
                     feature_keys: Optional[Sequence[str]] = None) -> np.ndarray:
    """Extract the feature matrix for records using the given (or default) keys."""
    return FeatureExtractor(feature_keys).transform(records)


def standardize_features(X) -> Tuple[np.ndarray, Standardizer]:
    """Fit a Standardizer on X and return the standardized matrix with the fitted scaler."""
    standardizer = Standardizer()
    X_std = standardizer.fit_transform(X)
    return X_std, standardizer
