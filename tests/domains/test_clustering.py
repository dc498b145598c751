"""
Tests for Clustering Domain - reproducible K-means segmentation.

Tests validate:
- Partition of the records into exactly k ordered clusters
- Identical assignments for identical seeds
- Iteration bound and convergence reporting
- Recovery of well separated groups
- Fallback when fewer distinct vectors than clusters exist
- Parameter validation
"""

import copy
from unittest.mock import patch

import numpy as np
import pandas as pd
import pytest

from survey_segmentation.domains.clustering import (
    ClusteringResult,
    KMeansClusterer,
    group_by_cluster,
    perform_clustering,
    silhouette_or_none,
)
from survey_segmentation.error_handler import ConfigurationError


class TestKMeansClusterer:
    """Test the K-means estimator on raw matrices."""

    def test_recovers_two_separated_groups(self, two_blob_matrix):
        clusterer = KMeansClusterer(n_clusters=2, random_state=0).fit(two_blob_matrix)
        labels = clusterer.labels_

        assert len(set(labels[:50])) == 1
        assert len(set(labels[50:])) == 1
        assert labels[0] != labels[50]
        assert clusterer.converged_
        assert clusterer.n_iter_ <= 10

    def test_labels_within_range(self):
        rng = np.random.RandomState(1)
        X = rng.normal(size=(80, 4))

        clusterer = KMeansClusterer(n_clusters=6, random_state=1).fit(X)

        assert clusterer.labels_.shape == (80,)
        assert clusterer.labels_.min() >= 0
        assert clusterer.labels_.max() < 6
        assert clusterer.cluster_centers_.shape == (6, 4)

    def test_same_seed_same_labels(self):
        X = np.random.RandomState(2).normal(size=(100, 7))

        first = KMeansClusterer(n_clusters=5, random_state=11).fit(X)
        second = KMeansClusterer(n_clusters=5, random_state=11).fit(X)

        np.testing.assert_array_equal(first.labels_, second.labels_)
        np.testing.assert_array_equal(first.cluster_centers_, second.cluster_centers_)

    @pytest.mark.parametrize("max_iter", [1, 2, 3])
    def test_iteration_bound(self, max_iter):
        X = np.random.RandomState(4).normal(size=(200, 7))

        clusterer = KMeansClusterer(n_clusters=8, max_iter=max_iter, random_state=4).fit(X)

        assert 1 <= clusterer.n_iter_ <= max_iter

    def test_fewer_distinct_vectors_than_clusters(self):
        X = np.array([[1.0, 1.0], [1.0, 1.0], [1.0, 1.0]])

        clusterer = KMeansClusterer(n_clusters=5, random_state=0).fit(X)

        assert clusterer.effective_n_clusters_ == 1
        np.testing.assert_array_equal(clusterer.labels_, [0, 0, 0])
        np.testing.assert_array_equal(clusterer.cluster_centers_, [[1.0, 1.0]])
        assert clusterer.converged_

    def test_distinct_vectors_seeded_in_first_occurrence_order(self):
        X = np.array([[5.0], [0.0], [5.0], [0.0]])

        clusterer = KMeansClusterer(n_clusters=3).fit(X)

        np.testing.assert_array_equal(clusterer.cluster_centers_, [[5.0], [0.0]])
        np.testing.assert_array_equal(clusterer.labels_, [0, 1, 0, 1])

    def test_ties_go_to_lowest_centroid(self):
        clusterer = KMeansClusterer(n_clusters=4).fit(np.array([[0.0], [2.0], [0.0]]))

        assert clusterer.predict([[1.0]])[0] == 0

    def test_empty_centroid_keeps_position(self):
        X = np.array([[0.0, 0.0], [1.0, 1.0]])
        centers = np.array([[0.0, 0.0], [9.0, 9.0]])

        updated = KMeansClusterer._update_centroids(X, np.array([0, 0]), centers)

        np.testing.assert_array_equal(updated[0], [0.5, 0.5])
        np.testing.assert_array_equal(updated[1], [9.0, 9.0])

    def test_empty_input(self):
        clusterer = KMeansClusterer(n_clusters=3).fit(np.zeros((0, 7)))

        assert clusterer.labels_.shape == (0,)
        assert clusterer.effective_n_clusters_ == 0
        assert clusterer.n_iter_ == 0

    def test_transform_distances(self, two_blob_matrix):
        clusterer = KMeansClusterer(n_clusters=2, random_state=0).fit(two_blob_matrix)
        distances = clusterer.transform(two_blob_matrix[:3])

        assert distances.shape == (3, 2)
        np.testing.assert_array_equal(np.argmin(distances, axis=1), clusterer.labels_[:3])

    @pytest.mark.parametrize("n_clusters", [0, -2, 2.5, None])
    def test_invalid_cluster_count(self, n_clusters):
        with pytest.raises(ConfigurationError, match="n_clusters"):
            KMeansClusterer(n_clusters=n_clusters).fit(np.ones((5, 2)))

    def test_invalid_max_iter(self):
        with pytest.raises(ConfigurationError, match="max_iter"):
            KMeansClusterer(n_clusters=2, max_iter=0).fit(np.ones((5, 2)))


class TestPerformClustering:
    """Test the record-level clustering entry point."""

    def test_partition_of_records(self, survey_records):
        result = perform_clustering(survey_records, n_clusters=5, random_state=42)

        assert isinstance(result, ClusteringResult)
        assert len(result.clusters) == 5
        assert sum(result.cluster_sizes) == len(survey_records)

        members = [id(record) for cluster in result.clusters for record in cluster]
        assert sorted(members) == sorted(id(record) for record in survey_records)

        for cluster_index, cluster in enumerate(result.clusters):
            for record in cluster:
                assert record['cluster_id'] == cluster_index

    def test_input_order_preserved_within_clusters(self, survey_records):
        result = perform_clustering(survey_records, n_clusters=3, random_state=0)
        position = {id(record): i for i, record in enumerate(survey_records)}

        for cluster in result.clusters:
            indices = [position[id(record)] for record in cluster]
            assert indices == sorted(indices)

    def test_seeded_runs_are_identical(self, survey_records):
        first = perform_clustering(copy.deepcopy(survey_records), n_clusters=4, random_state=7)
        second = perform_clustering(copy.deepcopy(survey_records), n_clusters=4, random_state=7)

        np.testing.assert_array_equal(first.labels, second.labels)
        assert first.n_iter == second.n_iter

    def test_convergence_and_silhouette(self, survey_records):
        result = perform_clustering(survey_records, n_clusters=3, random_state=42)

        assert result.converged
        assert result.n_iter <= 100
        assert -1.0 <= result.silhouette_avg <= 1.0

    def test_empty_records(self):
        result = perform_clustering([], n_clusters=5)

        assert result.clusters == []
        assert result.cluster_sizes == []
        assert result.labels.shape == (0,)

    def test_identical_records_capped_clusters(self):
        records = [{'academic_pressure': 3, 'cgpa': 7.0} for _ in range(4)]

        result = perform_clustering(records, n_clusters=5, random_state=0)

        assert result.effective_n_clusters == 1
        assert result.cluster_sizes == [4, 0, 0, 0, 0]
        assert all(record['cluster_id'] == 0 for record in records)

    def test_dataframe_input(self, survey_records):
        frame = pd.DataFrame(survey_records)

        result = perform_clustering(frame, n_clusters=3, random_state=42)

        assert sum(result.cluster_sizes) == len(frame)
        assert 'cluster_id' not in frame.columns

    def test_invalid_k_raises(self, survey_records):
        with pytest.raises(ConfigurationError):
            perform_clustering(survey_records, n_clusters=0)

    def test_to_dict(self, survey_records):
        result = perform_clustering(survey_records, n_clusters=3, random_state=42)
        payload = result.to_dict()

        assert len(payload['labels']) == len(survey_records)
        assert len(payload['cluster_members']) == 3
        assert sum(len(m) for m in payload['cluster_members']) == len(survey_records)
        assert [p['feature'] for p in payload['standardization']] == result.feature_keys


class TestHelpers:
    """Test clustering helper functions."""

    def test_group_by_cluster_keeps_empty_groups(self):
        groups = group_by_cluster(['a', 'b', 'c'], np.array([2, 0, 2]), 4)
        assert groups == [['b'], [], ['a', 'c'], []]

    def test_silhouette_undefined_for_single_label(self):
        X = np.random.RandomState(0).normal(size=(10, 2))
        assert silhouette_or_none(X, np.zeros(10, dtype=int)) is None

    def test_silhouette_samples_large_inputs(self, two_blob_matrix):
        labels = np.repeat([0, 1], 50)

        with patch('survey_segmentation.domains.clustering.silhouette_score', return_value=0.5) as score:
            assert silhouette_or_none(two_blob_matrix, labels, sample_size=20, random_state=7) == 0.5

        assert score.call_args.kwargs == {'sample_size': 20, 'random_state': 7}

    def test_silhouette_scores_every_row_below_cap(self, two_blob_matrix):
        labels = np.repeat([0, 1], 50)

        with patch('survey_segmentation.domains.clustering.silhouette_score', return_value=0.5) as score:
            silhouette_or_none(two_blob_matrix, labels)

        assert score.call_args.kwargs == {}

    def test_sampled_silhouette_separates_blobs(self, two_blob_matrix):
        labels = np.repeat([0, 1], 50)

        value = silhouette_or_none(two_blob_matrix, labels, sample_size=40, random_state=0)

        assert value > 0.9
        assert value == silhouette_or_none(two_blob_matrix, labels, sample_size=40, random_state=0)
