"""
Analysis domains for survey segmentation.

Each domain wraps one analytical capability behind sklearn-compatible
estimators plus high-level convenience functions returning result
dataclasses.

Available domains:
- feature_engineering: record-to-vector extraction and z-score standardization
- clustering: reproducible K-means segmentation
- projection: 2D display embeddings
- outlier_detection: Mahalanobis, isolation-proxy and z-score outlier scoring
- correlation: Pearson correlation matrices
- risk_profiling: student risk scores, cluster profiles and interventions
"""

from .feature_engineering import (
    FeatureExtractor,
    Standardizer,
    StandardizationResult,
    extract_features,
    standardize_features,
)

from .clustering import (
    KMeansClusterer,
    ClusteringResult,
    perform_clustering,
)

from .projection import (
    Projector,
    project_2d,
)

from .outlier_detection import (
    OutlierDetector,
    OutlierReport,
    OutlierDetectionResult,
    detect_outliers,
    detect_cluster_outliers,
)

from .correlation import (
    CorrelationEngine,
    CorrelationMatrix,
    CorrelationPair,
    compute_correlations,
    pearson_correlation,
    correlation_strength,
    top_correlations,
)

from .risk_profiling import (
    ClusterProfile,
    RiskFactor,
    Recommendation,
    DatasetAnomaly,
    student_risk_score,
    risk_level,
    profile_clusters,
    feature_means,
    compare_to_global,
    risk_factors,
    recommend_interventions,
    identify_risks,
    detect_dataset_anomalies,
    representative_students,
)

__all__ = [
    # Feature engineering
    'FeatureExtractor',
    'Standardizer',
    'StandardizationResult',
    'extract_features',
    'standardize_features',

    # Clustering
    'KMeansClusterer',
    'ClusteringResult',
    'perform_clustering',

    # Projection
    'Projector',
    'project_2d',

    # Outlier detection
    'OutlierDetector',
    'OutlierReport',
    'OutlierDetectionResult',
    'detect_outliers',
    'detect_cluster_outliers',

    # Correlation
    'CorrelationEngine',
    'CorrelationMatrix',
    'CorrelationPair',
    'compute_correlations',
    'pearson_correlation',
    'correlation_strength',
    'top_correlations',

    # Risk profiling
    'ClusterProfile',
    'RiskFactor',
    'Recommendation',
    'DatasetAnomaly',
    'student_risk_score',
    'risk_level',
    'profile_clusters',
    'feature_means',
    'compare_to_global',
    'risk_factors',
    'recommend_interventions',
    'identify_risks',
    'detect_dataset_anomalies',
    'representative_students',
]
