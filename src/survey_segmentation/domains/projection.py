"""
Projection Domain - cheap 2D embeddings of survey vectors for scatter plots.

Coordinates are for display only and never feed back into cluster assignment.

Methods:
- trigonometric: x = sum(v_i * cos(i*pi/M)), y = sum(v_i * sin(i*pi/M))
- weighted: fixed linear combinations of the first six features
- pca: principal component analysis through scikit-learn

The first two are linear heuristics, not eigendecompositions. ``pca`` is the
real algorithm and gives different coordinates.
"""

import time
from typing import Any, Dict, List, Mapping, Optional, Sequence

import numpy as np
from sklearn.base import BaseEstimator, TransformerMixin
from sklearn.decomposition import PCA
from sklearn.utils import check_random_state
from sklearn.utils.validation import check_is_fitted

from ..config_manager import ProjectionMethod
from ..error_handler import ConfigurationError
from ..logging_manager import get_logger
from .feature_engineering import as_matrix

logger = get_logger(__name__)

WEIGHTED_X = (0.3, 0.2, 0.1, 0.0, 0.0, 0.0)
WEIGHTED_Y = (0.0, 0.0, 0.0, 0.2, 0.1, 0.3)


def trigonometric_weights(n_features: int) -> np.ndarray:
    """Per-position (cos, sin) weights, shape (n_features, 2)."""
    angles = np.arange(n_features) * np.pi / max(n_features, 1)
    return np.column_stack([np.cos(angles), np.sin(angles)])


def weighted_weights(n_features: int) -> np.ndarray:
    """Fixed display weights; positions beyond the sixth contribute nothing."""
    weights = np.zeros((n_features, 2))
    span = min(n_features, len(WEIGHTED_X))
    weights[:span, 0] = WEIGHTED_X[:span]
    weights[:span, 1] = WEIGHTED_Y[:span]
    return weights


class Projector(BaseEstimator, TransformerMixin):
    """Maps feature vectors to 2D display coordinates."""

    def __init__(self,
                 method: str = 'trigonometric',
                 jitter: float = 0.0,
                 random_state=None):
        """
        Initialize projector.

        Parameters:
        -----------
        method : str
            'trigonometric', 'weighted' or 'pca'
        jitter : float
            Width of the uniform noise added per axis for visual declumping
        random_state : None, int or RandomState
            Source of randomness for jitter
        """
        self.method = method
        self.jitter = jitter
        self.random_state = random_state

    def _resolve_method(self) -> ProjectionMethod:
        try:
            return ProjectionMethod(self.method)
        except ValueError:
            valid = [m.value for m in ProjectionMethod]
            raise ConfigurationError(
                f"Unknown projection method '{self.method}'. Valid methods: {valid}",
                config_key='projection.method', component='projection'
            )

    def fit(self, X, y=None):
        method = self._resolve_method()
        if self.jitter < 0:
            raise ConfigurationError(f"jitter must be non-negative, got {self.jitter}",
                                     config_key='projection.jitter', component='projection')
        start_time = time.time()

        X = as_matrix(X)
        n_samples, n_features = X.shape
        self.n_features_in_ = n_features
        self.method_ = method
        self.pca_ = None

        if method == ProjectionMethod.TRIGONOMETRIC:
            self.components_ = trigonometric_weights(n_features)
        elif method == ProjectionMethod.WEIGHTED:
            self.components_ = weighted_weights(n_features)
        else:
            n_components = min(2, n_samples, n_features)
            if n_samples < 2 or n_components == 0:
                self.components_ = np.zeros((n_features, 2))
            else:
                self.pca_ = PCA(n_components=n_components)
                self.pca_.fit(X)
                self.components_ = np.zeros((n_features, 2))
                self.components_[:, :n_components] = self.pca_.components_.T

        self.fit_time_ = time.time() - start_time
        return self

    def transform(self, X) -> np.ndarray:
        """Project rows to (x, y), shape (n_samples, 2)."""
        check_is_fitted(self, 'components_')
        X = as_matrix(X, self.n_features_in_)
        if X.shape[0] == 0:
            return np.zeros((0, 2))

        if self.pca_ is not None:
            coords = (X - self.pca_.mean_) @ self.components_
        else:
            coords = X @ self.components_

        if self.jitter > 0:
            rng = check_random_state(self.random_state)
            coords = coords + (rng.uniform(size=coords.shape) - 0.5) * self.jitter
        return coords

    def project_records(self,
                        records: Sequence[Mapping[str, Any]],
                        X,
                        labels: Optional[Sequence[int]] = None) -> List[Dict[str, Any]]:
        """
        Build display points keyed by record id.

        Parameters:
        -----------
        records : sequence of mappings
            Records aligned with the rows of X
        X : array-like
            Feature matrix to project
        labels : sequence of int, optional
            Cluster labels; falls back to each record's ``cluster_id``

        Returns:
        --------
        list of dict
            One ``{"id", "x", "y", "cluster_id"}`` point per record
        """
        coords = self.fit_transform(X)
        points = []
        for i, record in enumerate(records):
            record_id = record.get('id')
            if labels is not None:
                cluster_id = int(labels[i])
            else:
                cluster_id = record.get('cluster_id')
            points.append({
                'id': record_id if record_id is not None else i,
                'x': float(coords[i, 0]),
                'y': float(coords[i, 1]),
                'cluster_id': cluster_id,
            })
        logger.debug(f"Projected {len(points)} records with method={self.method_.value}")
        return points


def project_2d(X, method: str = 'trigonometric', jitter: float = 0.0, random_state=None) -> np.ndarray:
    """Project a feature matrix to 2D display coordinates."""
    return Projector(method=method, jitter=jitter, random_state=random_state).fit_transform(X)
