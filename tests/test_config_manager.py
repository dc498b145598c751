"""Tests for configuration management system."""

import os
import tempfile
from unittest.mock import patch

import pytest

from survey_segmentation.config_manager import (
    CLUSTERING_FEATURES,
    ClusteringConfig,
    ConfigManager,
    LoggingConfig,
    LogLevel,
    OutlierConfig,
    OutlierMethod,
    ProjectionConfig,
    ProjectionMethod,
    SegmentationConfig,
    get_config_manager,
    initialize_config,
)


def _write_yaml(content):
    with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
        f.write(content)
        return f.name


class TestConfigDataclasses:
    """Test dataclass validation."""

    def test_clustering_defaults(self):
        config = ClusteringConfig()
        assert config.n_clusters == 5
        assert config.max_iterations == 100
        assert config.random_state is None
        assert config.feature_keys == CLUSTERING_FEATURES

    def test_invalid_cluster_count(self):
        with pytest.raises(ValueError, match="n_clusters must be positive"):
            ClusteringConfig(n_clusters=0)

    def test_invalid_max_iterations(self):
        with pytest.raises(ValueError, match="max_iterations must be positive"):
            ClusteringConfig(max_iterations=-1)

    def test_empty_feature_keys(self):
        with pytest.raises(ValueError, match="feature_keys"):
            ClusteringConfig(feature_keys=[])

    def test_outlier_method_from_string(self):
        config = OutlierConfig(method='isolation')
        assert config.method == OutlierMethod.ISOLATION
        assert config.min_records == 10
        assert config.top_n == 10

    def test_invalid_outlier_values(self):
        with pytest.raises(ValueError):
            OutlierConfig(method='lof')
        with pytest.raises(ValueError, match="top_n must be positive"):
            OutlierConfig(top_n=0)
        with pytest.raises(ValueError, match="min_records"):
            OutlierConfig(min_records=0)

    def test_projection_validation(self):
        assert ProjectionConfig(method='pca').method == ProjectionMethod.PCA
        with pytest.raises(ValueError, match="jitter must be non-negative"):
            ProjectionConfig(jitter=-0.5)

    def test_logging_validation(self):
        with pytest.raises(ValueError, match="max_file_size must be positive"):
            LoggingConfig(max_file_size=0)
        with pytest.raises(ValueError, match="backup_count must be non-negative"):
            LoggingConfig(backup_count=-1)

    def test_segmentation_config_defaults(self):
        config = SegmentationConfig()
        assert config.clustering.n_clusters == 5
        assert config.outliers.method == OutlierMethod.MAHALANOBIS
        assert config.projection.method == ProjectionMethod.TRIGONOMETRIC


class TestConfigManager:
    """Test ConfigManager functionality."""

    def test_default_configuration(self):
        """Test default configuration values."""
        config_manager = ConfigManager()

        config = config_manager.get_segmentation_config()
        assert config.clustering.n_clusters == 5
        assert config.clustering.max_iterations == 100
        assert config.outliers.method == OutlierMethod.MAHALANOBIS
        assert config.outliers.top_n == 10
        assert config.projection.jitter == 0.0

        logging_config = config_manager.get_logging_config()
        assert logging_config.level == LogLevel.INFO
        assert logging_config.console_output is True
        assert config_manager.loaded_files == []

    def test_environment_variable_loading(self):
        """Test loading configuration from environment variables."""
        env = {
            'SEGMENTATION_NUM_CLUSTERS': '3',
            'SEGMENTATION_MAX_ITERATIONS': '25',
            'SEGMENTATION_RANDOM_SEED': '42',
            'SEGMENTATION_OUTLIER_METHOD': 'ZSCORE',
            'SEGMENTATION_OUTLIER_TOP_N': '4',
            'SEGMENTATION_OUTLIER_MIN_RECORDS': '20',
            'SEGMENTATION_FEATURE_KEYS': 'academic_pressure, cgpa',
            'SEGMENTATION_PROJECTION_METHOD': 'weighted',
            'SEGMENTATION_PROJECTION_JITTER': '0.25',
            'SEGMENTATION_LOG_LEVEL': 'debug',
            'SEGMENTATION_LOG_FILE': '/tmp/segmentation.log',
        }
        with patch.dict(os.environ, env):
            config_manager = ConfigManager()

        clustering = config_manager.get_clustering_config()
        assert clustering.n_clusters == 3
        assert clustering.max_iterations == 25
        assert clustering.random_state == 42
        assert clustering.feature_keys == ['academic_pressure', 'cgpa']

        outliers = config_manager.get_outlier_config()
        assert outliers.method == OutlierMethod.ZSCORE
        assert outliers.top_n == 4
        assert outliers.min_records == 20

        projection = config_manager.get_projection_config()
        assert projection.method == ProjectionMethod.WEIGHTED
        assert projection.jitter == 0.25

        logging_config = config_manager.get_logging_config()
        assert logging_config.level == LogLevel.DEBUG
        assert logging_config.file_path == '/tmp/segmentation.log'

    def test_invalid_integer_is_ignored(self, capsys):
        with patch.dict(os.environ, {'SEGMENTATION_NUM_CLUSTERS': 'many'}):
            config_manager = ConfigManager()

        assert config_manager.get_clustering_config().n_clusters == 5
        assert "Invalid integer value for SEGMENTATION_NUM_CLUSTERS" in capsys.readouterr().out

    def test_invalid_method_falls_back_to_default(self, capsys):
        with patch.dict(os.environ, {'SEGMENTATION_OUTLIER_METHOD': 'lof',
                                     'SEGMENTATION_PROJECTION_METHOD': 'umap'}):
            config_manager = ConfigManager()

        assert config_manager.get_outlier_config().method == OutlierMethod.MAHALANOBIS
        assert config_manager.get_projection_config().method == ProjectionMethod.TRIGONOMETRIC
        assert "Configuration validation errors" in capsys.readouterr().out

    def test_invalid_yaml_method_falls_back_to_default(self, tmp_path, capsys):
        (tmp_path / 'segmentation.yaml').write_text("outliers:\n  method: lof\nprojection:\n  method: umap\n")

        config_manager = ConfigManager()

        assert config_manager.get_outlier_config().method == OutlierMethod.MAHALANOBIS
        assert config_manager.get_projection_config().method == ProjectionMethod.TRIGONOMETRIC
        assert "Configuration validation errors" in capsys.readouterr().out

    def test_yaml_configuration_loading(self):
        """Test loading configuration from a YAML file."""
        config_file = _write_yaml("""
clustering:
  n_clusters: 4
  random_state: 7
outliers:
  method: isolation
  top_n: 5
  n_trees: 50
projection:
  method: pca
logging:
  level: warning
""")
        try:
            config_manager = ConfigManager(config_file=config_file)

            config = config_manager.get_segmentation_config()
            assert config.clustering.n_clusters == 4
            assert config.clustering.random_state == 7
            assert config.clustering.max_iterations == 100
            assert config.outliers.method == OutlierMethod.ISOLATION
            assert config.outliers.top_n == 5
            assert config.outliers.n_trees == 50
            assert config.projection.method == ProjectionMethod.PCA
            assert config_manager.get_logging_config().level == LogLevel.WARNING
            assert config_manager.loaded_files == [config_file]
        finally:
            os.unlink(config_file)

    def test_environment_variable_substitution(self):
        """Test ${VAR} and ${VAR:default} substitution in YAML files."""
        config_file = _write_yaml("""
clustering:
  n_clusters: ${SEGMENTS}
logging:
  file_path: ${LOG_PATH:/tmp/default.log}
""")
        try:
            with patch.dict(os.environ, {'SEGMENTS': '6'}):
                config_manager = ConfigManager(config_file=config_file)

            assert config_manager.get_clustering_config().n_clusters == 6
            assert config_manager.get_logging_config().file_path == '/tmp/default.log'
        finally:
            os.unlink(config_file)

    def test_configuration_precedence(self):
        """Test configuration precedence: env vars > YAML > defaults."""
        config_file = _write_yaml("""
clustering:
  n_clusters: 4
  max_iterations: 50
""")
        try:
            with patch.dict(os.environ, {'SEGMENTATION_NUM_CLUSTERS': '8'}):
                config_manager = ConfigManager(config_file=config_file)

            clustering = config_manager.get_clustering_config()
            assert clustering.n_clusters == 8
            assert clustering.max_iterations == 50
            assert config_manager.get_outlier_config().top_n == 10
        finally:
            os.unlink(config_file)

    def test_config_file_discovery(self, tmp_path):
        """Test discovery of segmentation.yaml in the working directory."""
        (tmp_path / 'segmentation.yaml').write_text("clustering:\n  n_clusters: 2\n")

        config_manager = ConfigManager()

        assert config_manager.get_clustering_config().n_clusters == 2
        assert len(config_manager.loaded_files) == 1
        assert config_manager.loaded_files[0].endswith('segmentation.yaml')

    def test_non_mapping_yaml_is_ignored(self, capsys):
        config_file = _write_yaml("- just\n- a list\n")
        try:
            config_manager = ConfigManager(config_file=config_file)

            assert config_manager.get_clustering_config().n_clusters == 5
            assert config_manager.loaded_files == []
            assert "does not contain a mapping" in capsys.readouterr().out
        finally:
            os.unlink(config_file)

    def test_reload_config(self, tmp_path):
        config_path = tmp_path / 'segmentation.yaml'
        config_path.write_text("clustering:\n  n_clusters: 2\n")
        config_manager = ConfigManager(config_file=str(config_path))

        config_path.write_text("clustering:\n  n_clusters: 9\n")
        config_manager.reload_config()

        assert config_manager.get_clustering_config().n_clusters == 9


class TestGlobalConfigManager:
    """Test global configuration manager functions."""

    def test_get_config_manager_singleton(self):
        first = get_config_manager()
        second = get_config_manager()
        assert first is second

    def test_initialize_config_override(self, tmp_path):
        config_path = tmp_path / 'custom.yaml'
        config_path.write_text("outliers:\n  method: zscore\n")

        original = get_config_manager()
        replaced = initialize_config(str(config_path))

        assert replaced is not original
        assert get_config_manager() is replaced
        assert replaced.get_outlier_config().method == OutlierMethod.ZSCORE
