"""
Clustering Domain - K-means segmentation of standardized survey vectors.

Implements Lloyd-style K-means with a fixed, reproducible policy:

- Seeding samples k distinct record indices uniformly without replacement
  from an injectable random state.
- Every assignment pass sends each vector to its nearest centroid by
  Euclidean distance; ties go to the lowest centroid index.
- After each pass every centroid moves to the mean of its members; a centroid
  with no members keeps its previous position.
- Iteration stops when no assignment changes or max_iter passes have run.

When the data holds fewer distinct vectors than k, the effective cluster count
is capped at the number of distinct vectors and one centroid is seeded on each
of them. Labels stay within 0..k-1 and the remaining clusters are empty.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, MutableMapping, Optional, Sequence

import numpy as np
from scipy.spatial.distance import cdist
from sklearn.base import BaseEstimator, ClusterMixin
from sklearn.metrics import silhouette_score
from sklearn.utils import check_random_state
from sklearn.utils.validation import check_is_fitted

from ..error_handler import ComputationError, ConfigurationError
from ..logging_manager import get_logger, get_logging_manager
from .feature_engineering import (
    FeatureExtractor, RecordsLike, Standardizer, as_matrix, as_record_list
)

logger = get_logger(__name__)

# Row cap for the quadratic silhouette computation
SILHOUETTE_SAMPLE_SIZE = 2000


@dataclass
class ClusteringResult:
    """K-means segmentation results for one run."""
    n_clusters: int
    effective_n_clusters: int
    labels: np.ndarray
    cluster_centers: np.ndarray
    clusters: List[List[MutableMapping[str, Any]]]
    cluster_sizes: List[int]
    n_iter: int
    converged: bool
    inertia: float
    feature_keys: List[str]
    standardization: List[Any] = field(default_factory=list)
    silhouette_avg: Optional[float] = None
    fit_time: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert result to dictionary for JSON serialization."""
        return {
            'n_clusters': self.n_clusters,
            'effective_n_clusters': self.effective_n_clusters,
            'labels': self.labels.tolist(),
            'cluster_centers': self.cluster_centers.tolist(),
            'cluster_sizes': self.cluster_sizes,
            'cluster_members': [
                [int(i) for i in np.flatnonzero(self.labels == c)]
                for c in range(len(self.clusters))
            ],
            'n_iter': self.n_iter,
            'converged': self.converged,
            'inertia': self.inertia,
            'feature_keys': self.feature_keys,
            'standardization': [
                {'feature': key, 'mean': mean, 'std': std}
                for key, (mean, std) in zip(self.feature_keys, self.standardization)
            ],
            'silhouette_avg': self.silhouette_avg,
            'fit_time': self.fit_time,
        }


def euclidean_distances_to(X: np.ndarray, centers: np.ndarray) -> np.ndarray:
    """Distance from every row of X to every center, shape (n_samples, n_centers)."""
    return cdist(X, centers, metric="euclidean")


class KMeansClusterer(BaseEstimator, ClusterMixin):
    """K-means with reproducible seeding, first-minimum tie-breaking and sticky empty centroids."""

    def __init__(self,
                 n_clusters: int = 5,
                 max_iter: int = 100,
                 random_state=None):
        """
        Initialize K-means clusterer.

        Parameters:
        -----------
        n_clusters : int
            Number of clusters k
        max_iter : int
            Upper bound on assignment passes
        random_state : None, int or numpy RandomState
            Source of randomness for centroid seeding
        """
        self.n_clusters = n_clusters
        self.max_iter = max_iter
        self.random_state = random_state

    def _check_parameters(self):
        if not isinstance(self.n_clusters, (int, np.integer)) or self.n_clusters < 1:
            raise ConfigurationError(
                f"n_clusters must be a positive integer, got {self.n_clusters!r}",
                config_key='n_clusters', component='clustering'
            )
        if not isinstance(self.max_iter, (int, np.integer)) or self.max_iter < 1:
            raise ConfigurationError(
                f"max_iter must be a positive integer, got {self.max_iter!r}",
                config_key='max_iterations', component='clustering'
            )

    def fit(self, X, y=None):
        """Partition the rows of X into n_clusters groups."""
        self._check_parameters()
        logger.info(f"Fitting K-means with k={self.n_clusters}, max_iter={self.max_iter}")
        start_time = time.time()

        X = as_matrix(X)
        n_samples, n_features = X.shape
        self.n_features_in_ = n_features

        if n_samples == 0:
            self.labels_ = np.zeros(0, dtype=int)
            self.cluster_centers_ = np.zeros((0, n_features))
            self.effective_n_clusters_ = 0
            self.n_iter_ = 0
            self.converged_ = True
            self.inertia_ = 0.0
            self.fit_time_ = time.time() - start_time
            logger.info("K-means called on empty data; nothing to cluster")
            return self

        rng = check_random_state(self.random_state)
        centers = self._init_centroids(X, rng)

        labels = np.zeros(n_samples, dtype=int)
        changed = True
        n_iter = 0
        while changed and n_iter < self.max_iter:
            new_labels = np.argmin(euclidean_distances_to(X, centers), axis=1)
            changed = bool(np.any(new_labels != labels))
            labels = new_labels
            centers = self._update_centroids(X, labels, centers)
            n_iter += 1

        if not np.all(np.isfinite(centers)):
            raise ComputationError("Centroid update produced non-finite values", stage='clustering')

        self.labels_ = labels
        self.cluster_centers_ = centers
        self.effective_n_clusters_ = centers.shape[0]
        self.n_iter_ = n_iter
        self.converged_ = not changed
        self.inertia_ = float(((X - centers[labels]) ** 2).sum())
        self.fit_time_ = time.time() - start_time

        if self.converged_:
            logger.info(f"K-means converged after {n_iter} iteration(s) in {self.fit_time_:.3f} seconds")
        else:
            logger.warning(f"K-means stopped at max_iter={self.max_iter} without converging")
        get_logging_manager().log_clustering(n_samples, self.effective_n_clusters_, n_iter, self.converged_)
        return self

    def _init_centroids(self, X: np.ndarray, rng: np.random.RandomState) -> np.ndarray:
        """Seed centroids on k distinct records, or on every distinct vector when there are fewer than k."""
        n_samples = X.shape[0]
        _, first_index = np.unique(X, axis=0, return_index=True)
        n_distinct = len(first_index)

        if n_distinct < self.n_clusters:
            logger.warning(
                f"Only {n_distinct} distinct vector(s) for k={self.n_clusters}; "
                f"capping effective cluster count at {n_distinct}"
            )
            return X[np.sort(first_index)].copy()

        seeds = rng.choice(n_samples, size=self.n_clusters, replace=False)
        return X[seeds].copy()

    @staticmethod
    def _update_centroids(X: np.ndarray, labels: np.ndarray, centers: np.ndarray) -> np.ndarray:
        new_centers = centers.copy()
        for c in range(centers.shape[0]):
            members = X[labels == c]
            if len(members):
                new_centers[c] = members.mean(axis=0)
        return new_centers

    def predict(self, X) -> np.ndarray:
        """Assign new rows to the nearest fitted centroid."""
        check_is_fitted(self, 'cluster_centers_')
        X = as_matrix(X, self.n_features_in_)
        if X.shape[0] == 0:
            return np.zeros(0, dtype=int)
        if self.cluster_centers_.shape[0] == 0:
            raise ComputationError("Clusterer was fitted on empty data and has no centroids",
                                   stage='clustering')
        return np.argmin(euclidean_distances_to(X, self.cluster_centers_), axis=1)

    def transform(self, X) -> np.ndarray:
        """Distances from each row to every centroid."""
        check_is_fitted(self, 'cluster_centers_')
        X = as_matrix(X, self.n_features_in_)
        return euclidean_distances_to(X, self.cluster_centers_)


def group_by_cluster(records: Sequence[Any], labels: np.ndarray, n_clusters: int) -> List[List[Any]]:
    """Split records into n_clusters lists, preserving input order within each."""
    groups: List[List[Any]] = [[] for _ in range(n_clusters)]
    for record, label in zip(records, labels):
        groups[int(label)].append(record)
    return groups


def silhouette_or_none(X: np.ndarray,
                       labels: np.ndarray,
                       sample_size: Optional[int] = SILHOUETTE_SAMPLE_SIZE,
                       random_state=None) -> Optional[float]:
    """Silhouette coefficient, or None when it is undefined for this labelling.

    Inputs with more than ``sample_size`` rows are scored on a random sample of
    that many rows drawn from ``random_state``; pass None to score every row.
    """
    n_labels = len(np.unique(labels))
    if n_labels < 2 or n_labels > len(labels) - 1:
        return None
    try:
        if sample_size is not None and len(labels) > sample_size:
            return float(silhouette_score(X, labels, sample_size=sample_size,
                                          random_state=random_state))
        return float(silhouette_score(X, labels))
    except ValueError as e:
        logger.warning(f"Failed to calculate silhouette score: {e}")
        return None


def perform_clustering(records: RecordsLike,
                       feature_keys: Optional[Sequence[str]] = None,
                       n_clusters: int = 5,
                       max_iterations: int = 100,
                       random_state=None) -> ClusteringResult:
    """
    Segment survey records with standardized K-means.

    Every record mapping receives a ``cluster_id`` field. DataFrame input is
    clustered on a copy of its rows, so write-back only reaches the returned
    cluster lists.

    Parameters:
    -----------
    records : list of mappings or DataFrame
        Student survey records
    feature_keys : sequence of str, optional
        Features to cluster on (defaults to the seven clustering dimensions)
    n_clusters : int
        Number of clusters k
    max_iterations : int
        Upper bound on assignment passes
    random_state : None, int or RandomState
        Seed for reproducible centroid initialization

    Returns:
    --------
    ClusteringResult
        Labels, k ordered cluster lists, centroids and convergence information
    """
    logger.info(f"Performing clustering analysis with k={n_clusters}")

    try:
        record_list = as_record_list(records)
        extractor = FeatureExtractor(feature_keys)
        X = extractor.transform(record_list)

        if len(record_list) == 0:
            clusterer = KMeansClusterer(n_clusters, max_iterations, random_state).fit(X)
            return ClusteringResult(
                n_clusters=n_clusters,
                effective_n_clusters=0,
                labels=clusterer.labels_,
                cluster_centers=clusterer.cluster_centers_,
                clusters=[],
                cluster_sizes=[],
                n_iter=0,
                converged=True,
                inertia=0.0,
                feature_keys=extractor.keys,
            )

        standardizer = Standardizer()
        X_std = standardizer.fit_transform(X)

        clusterer = KMeansClusterer(
            n_clusters=n_clusters,
            max_iter=max_iterations,
            random_state=random_state
        )
        clusterer.fit(X_std)

        for record, label in zip(record_list, clusterer.labels_):
            record['cluster_id'] = int(label)

        clusters = group_by_cluster(record_list, clusterer.labels_, n_clusters)

        result = ClusteringResult(
            n_clusters=n_clusters,
            effective_n_clusters=clusterer.effective_n_clusters_,
            labels=clusterer.labels_,
            cluster_centers=clusterer.cluster_centers_,
            clusters=clusters,
            cluster_sizes=[len(c) for c in clusters],
            n_iter=clusterer.n_iter_,
            converged=clusterer.converged_,
            inertia=clusterer.inertia_,
            feature_keys=extractor.keys,
            standardization=standardizer.get_params_for_features(),
            silhouette_avg=silhouette_or_none(X_std, clusterer.labels_, random_state=random_state),
            fit_time=clusterer.fit_time_,
        )

        logger.info(f"Clustering completed with sizes {result.cluster_sizes}")
        return result

    except Exception as e:
        logger.error(f"Clustering analysis failed: {e}")
        raise
