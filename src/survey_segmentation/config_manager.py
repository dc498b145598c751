"""Configuration management for survey segmentation.

Supports both environment variables (simple setups) and YAML files (shared
analysis profiles) with validation and environment variable substitution.
Precedence, lowest to highest: built-in defaults, YAML file, environment.
"""

import os
import re
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError


CLUSTERING_FEATURES: List[str] = [
    'academic_pressure',
    'study_satisfaction',
    'sleep_duration',
    'financial_stress',
    'dietary_habits',
    'work_study_hours',
    'cgpa',
]

FEATURE_LABELS: Dict[str, str] = {
    'academic_pressure': 'Academic Pressure',
    'study_satisfaction': 'Study Satisfaction',
    'sleep_duration': 'Sleep Duration',
    'financial_stress': 'Financial Stress',
    'dietary_habits': 'Dietary Habits',
    'work_study_hours': 'Work/Study Hours',
    'cgpa': 'CGPA',
    'depression': 'Depression',
}


class LogLevel(str, Enum):
    """Supported logging levels."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class OutlierMethod(str, Enum):
    """Interchangeable outlier detection strategies."""
    MAHALANOBIS = "mahalanobis"
    ISOLATION = "isolation"
    ZSCORE = "zscore"


class ProjectionMethod(str, Enum):
    """Supported 2D projection methods."""
    TRIGONOMETRIC = "trigonometric"
    WEIGHTED = "weighted"
    PCA = "pca"


@dataclass
class LoggingConfig:
    """Structured logging configuration."""
    level: LogLevel = LogLevel.INFO
    file_path: Optional[str] = None
    max_file_size: int = 10 * 1024 * 1024  # 10MB
    backup_count: int = 5
    console_output: bool = True
    enable_metrics: bool = True

    def __post_init__(self):
        """Validate logging configuration."""
        if self.max_file_size <= 0:
            raise ValueError(f"max_file_size must be positive, got {self.max_file_size}")
        if self.backup_count < 0:
            raise ValueError(f"backup_count must be non-negative, got {self.backup_count}")


@dataclass
class ClusteringConfig:
    """K-means clustering configuration."""
    n_clusters: int = 5
    max_iterations: int = 100
    random_state: Optional[int] = None
    feature_keys: List[str] = field(default_factory=lambda: list(CLUSTERING_FEATURES))

    def __post_init__(self):
        """Validate clustering configuration."""
        if self.n_clusters <= 0:
            raise ValueError(f"n_clusters must be positive, got {self.n_clusters}")
        if self.max_iterations <= 0:
            raise ValueError(f"max_iterations must be positive, got {self.max_iterations}")
        if not self.feature_keys:
            raise ValueError("feature_keys must not be empty")


@dataclass
class OutlierConfig:
    """Outlier detection configuration."""
    method: OutlierMethod = OutlierMethod.MAHALANOBIS
    min_records: int = 10
    top_n: int = 10
    n_trees: int = 100
    subsample_size: int = 256

    def __post_init__(self):
        """Validate outlier configuration."""
        self.method = OutlierMethod(self.method)
        if self.min_records < 1:
            raise ValueError(f"min_records must be at least 1, got {self.min_records}")
        if self.top_n <= 0:
            raise ValueError(f"top_n must be positive, got {self.top_n}")
        if self.n_trees <= 0:
            raise ValueError(f"n_trees must be positive, got {self.n_trees}")
        if self.subsample_size <= 0:
            raise ValueError(f"subsample_size must be positive, got {self.subsample_size}")


@dataclass
class ProjectionConfig:
    """2D projection configuration."""
    method: ProjectionMethod = ProjectionMethod.TRIGONOMETRIC
    jitter: float = 0.0
    standardized: bool = True

    def __post_init__(self):
        """Validate projection configuration."""
        self.method = ProjectionMethod(self.method)
        if self.jitter < 0:
            raise ValueError(f"jitter must be non-negative, got {self.jitter}")


@dataclass
class SegmentationConfig:
    """Complete configuration for one analysis session."""
    clustering: ClusteringConfig = field(default_factory=ClusteringConfig)
    outliers: OutlierConfig = field(default_factory=OutlierConfig)
    projection: ProjectionConfig = field(default_factory=ProjectionConfig)


class SegmentationSettings(BaseModel):
    """Root configuration model with validation."""

    model_config = ConfigDict(extra="allow")

    clustering: Dict[str, Any] = Field(default_factory=dict)
    outliers: Dict[str, Any] = Field(default_factory=dict)
    projection: Dict[str, Any] = Field(default_factory=dict)
    logging: Dict[str, Any] = Field(default_factory=dict)

    @field_validator('outliers')
    @classmethod
    def validate_outliers(cls, v):
        """Validate the outlier method name."""
        method = v.get('method')
        if method is not None:
            try:
                OutlierMethod(method)
            except ValueError:
                valid = [m.value for m in OutlierMethod]
                raise ValueError(f"Invalid outlier method '{method}'. Valid methods: {valid}")
        return v

    @field_validator('projection')
    @classmethod
    def validate_projection(cls, v):
        """Validate the projection method name."""
        method = v.get('method')
        if method is not None:
            try:
                ProjectionMethod(method)
            except ValueError:
                valid = [m.value for m in ProjectionMethod]
                raise ValueError(f"Invalid projection method '{method}'. Valid methods: {valid}")
        return v


class ConfigManager:
    """Centralized configuration manager supporting environment variables and YAML files."""

    DEFAULT_CONFIG_FILES = [
        "./segmentation.yaml",
        "~/.segmentation.yaml",
    ]

    def __init__(self, config_file: Optional[str] = None):
        """Initialize configuration manager.

        Args:
            config_file: Specific config file to load. If None, searches default locations.
        """
        self._config_file = config_file
        self._config_data: Dict[str, Any] = {}
        self._loaded_files: List[str] = []
        self._lock = threading.Lock()

        load_dotenv()
        self.reload_config()

    def reload_config(self) -> None:
        """Reload configuration from all sources with proper precedence."""
        with self._lock:
            self._config_data = {}
            self._loaded_files = []

            self._apply_defaults()

            yaml_data = self._load_yaml_config()
            if yaml_data:
                self._merge_config(yaml_data)

            env_data = self._load_env_config()
            if env_data:
                self._merge_config(env_data)

            self._validate_config()

    @property
    def loaded_files(self) -> List[str]:
        return list(self._loaded_files)

    def get_clustering_config(self) -> ClusteringConfig:
        """Get clustering configuration."""
        data = self._config_data.get('clustering', {})
        return ClusteringConfig(
            n_clusters=int(data.get('n_clusters', 5)),
            max_iterations=int(data.get('max_iterations', 100)),
            random_state=data.get('random_state'),
            feature_keys=list(data.get('feature_keys') or CLUSTERING_FEATURES),
        )

    def get_outlier_config(self) -> OutlierConfig:
        """Get outlier detection configuration."""
        data = self._config_data.get('outliers', {})
        return OutlierConfig(
            method=OutlierMethod(data.get('method', OutlierMethod.MAHALANOBIS.value)),
            min_records=int(data.get('min_records', 10)),
            top_n=int(data.get('top_n', 10)),
            n_trees=int(data.get('n_trees', 100)),
            subsample_size=int(data.get('subsample_size', 256)),
        )

    def get_projection_config(self) -> ProjectionConfig:
        """Get projection configuration."""
        data = self._config_data.get('projection', {})
        return ProjectionConfig(
            method=ProjectionMethod(data.get('method', ProjectionMethod.TRIGONOMETRIC.value)),
            jitter=float(data.get('jitter', 0.0)),
            standardized=bool(data.get('standardized', True)),
        )

    def get_logging_config(self) -> LoggingConfig:
        """Get logging configuration."""
        data = self._config_data.get('logging', {})
        return LoggingConfig(
            level=LogLevel(data.get('level', LogLevel.INFO.value)),
            file_path=data.get('file_path'),
            max_file_size=data.get('max_file_size', 10 * 1024 * 1024),
            backup_count=data.get('backup_count', 5),
            console_output=data.get('console_output', True),
            enable_metrics=data.get('enable_metrics', True),
        )

    def get_segmentation_config(self) -> SegmentationConfig:
        """Get the complete session configuration."""
        return SegmentationConfig(
            clustering=self.get_clustering_config(),
            outliers=self.get_outlier_config(),
            projection=self.get_projection_config(),
        )

    def _apply_defaults(self) -> None:
        """Apply default configuration values."""
        self._config_data = {
            'clustering': {
                'n_clusters': 5,
                'max_iterations': 100,
                'random_state': None,
                'feature_keys': list(CLUSTERING_FEATURES),
            },
            'outliers': {
                'method': OutlierMethod.MAHALANOBIS.value,
                'min_records': 10,
                'top_n': 10,
            },
            'projection': {
                'method': ProjectionMethod.TRIGONOMETRIC.value,
                'jitter': 0.0,
            },
            'logging': {
                'level': LogLevel.INFO.value,
                'console_output': True,
            },
        }

    def _load_yaml_config(self) -> Optional[Dict[str, Any]]:
        """Load configuration from the first YAML file found."""
        config_files = [self._config_file] if self._config_file else self.DEFAULT_CONFIG_FILES

        for file_path in config_files:
            if not file_path:
                continue

            expanded_path = Path(file_path).expanduser()
            if not expanded_path.exists():
                continue

            try:
                content = expanded_path.read_text()
                content = self._substitute_env_vars(content)
                yaml_data = yaml.safe_load(content) or {}
            except (OSError, yaml.YAMLError) as e:
                print(f"Warning: Could not load config file {file_path}: {e}")
                continue

            if not isinstance(yaml_data, dict):
                print(f"Warning: Config file {file_path} does not contain a mapping")
                continue

            self._loaded_files.append(str(expanded_path))
            return yaml_data

        return None

    def _load_env_config(self) -> Dict[str, Any]:
        """Load configuration from SEGMENTATION_* environment variables."""
        env_config: Dict[str, Any] = {
            'clustering': {},
            'outliers': {},
            'projection': {},
            'logging': {},
        }

        int_vars = {
            'SEGMENTATION_NUM_CLUSTERS': ('clustering', 'n_clusters'),
            'SEGMENTATION_MAX_ITERATIONS': ('clustering', 'max_iterations'),
            'SEGMENTATION_RANDOM_SEED': ('clustering', 'random_state'),
            'SEGMENTATION_OUTLIER_TOP_N': ('outliers', 'top_n'),
            'SEGMENTATION_OUTLIER_MIN_RECORDS': ('outliers', 'min_records'),
        }
        for env_var, (section, key) in int_vars.items():
            value = os.getenv(env_var)
            if value:
                try:
                    env_config[section][key] = int(value)
                except ValueError:
                    print(f"Warning: Invalid integer value for {env_var}: {value}")

        feature_keys = os.getenv('SEGMENTATION_FEATURE_KEYS')
        if feature_keys:
            keys = [k.strip() for k in feature_keys.split(',') if k.strip()]
            if keys:
                env_config['clustering']['feature_keys'] = keys

        outlier_method = os.getenv('SEGMENTATION_OUTLIER_METHOD')
        if outlier_method:
            env_config['outliers']['method'] = outlier_method.lower()

        projection_method = os.getenv('SEGMENTATION_PROJECTION_METHOD')
        if projection_method:
            env_config['projection']['method'] = projection_method.lower()

        jitter = os.getenv('SEGMENTATION_PROJECTION_JITTER')
        if jitter:
            try:
                env_config['projection']['jitter'] = float(jitter)
            except ValueError:
                print(f"Warning: Invalid float value for SEGMENTATION_PROJECTION_JITTER: {jitter}")

        log_level = os.getenv('SEGMENTATION_LOG_LEVEL')
        if log_level:
            env_config['logging']['level'] = log_level.lower()

        log_file = os.getenv('SEGMENTATION_LOG_FILE')
        if log_file:
            env_config['logging']['file_path'] = log_file

        return env_config

    def _substitute_env_vars(self, content: str) -> str:
        """Substitute environment variables in YAML content using ${VAR} syntax."""
        pattern = re.compile(r'\$\{([^}]+)\}')

        def replace_var(match):
            var_name = match.group(1)
            # ${VAR:default_value}
            if ':' in var_name:
                var_name, default = var_name.split(':', 1)
                return os.getenv(var_name, default)
            return os.getenv(var_name, match.group(0))

        return pattern.sub(replace_var, content)

    def _merge_config(self, new_config: Dict[str, Any]) -> None:
        """Deep merge new configuration into existing configuration."""
        def deep_merge(target, source):
            for key, value in source.items():
                if key in target and isinstance(target[key], dict) and isinstance(value, dict):
                    deep_merge(target[key], value)
                else:
                    target[key] = value

        deep_merge(self._config_data, new_config)

    def _validate_config(self) -> None:
        """Validate the final merged configuration."""
        try:
            SegmentationSettings(**self._config_data)
        except PydanticValidationError as e:
            print(f"Configuration validation errors: {e}")
            # Fall back to defaults for the invalid sections only
            for section in ('outliers', 'projection'):
                method = self._config_data.get(section, {}).get('method')
                valid = OutlierMethod if section == 'outliers' else ProjectionMethod
                if method is not None and method not in [m.value for m in valid]:
                    self._config_data[section]['method'] = list(valid)[0].value


_config_manager: Optional[ConfigManager] = None


def get_config_manager() -> ConfigManager:
    """Get or create global configuration manager instance."""
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager()
    return _config_manager


def initialize_config(config_file: Optional[str] = None) -> ConfigManager:
    """Initialize global configuration manager with specific settings."""
    global _config_manager
    _config_manager = ConfigManager(config_file=config_file)
    return _config_manager
