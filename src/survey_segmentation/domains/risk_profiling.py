"""
Risk Profiling Domain - per-student and per-cluster mental-health risk summaries.

Builds the quantities the segmentation views show next to the clusters:
individual risk scores, cluster profiles, risk factors correlated with the
depression flag, rule-based intervention suggestions, dataset-level risk flags
and a handful of representative students per cluster.
"""

import math
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence

import numpy as np
import pandas as pd
from sklearn.utils import check_random_state

from ..config_manager import CLUSTERING_FEATURES
from ..logging_manager import get_logger
from .correlation import correlation_direction, feature_label, pearson_correlation
from .feature_engineering import RecordsLike, as_record_list, coerce_feature_value

logger = get_logger(__name__)

TRUTHY_STRINGS = {'true', 'yes', '1', 'y', 'oui'}

RISK_WEIGHTS = {
    'depression': 30,
    'has_suicidal_thoughts': 25,
    'academic_pressure': 15,
    'sleep_duration': 15,
    'financial_stress': 10,
    'family_history': 5,
}


def is_flag_set(value: Any) -> bool:
    """Interpret a binary survey answer stored as bool, number or text."""
    if value is None:
        return False
    if isinstance(value, (bool, np.bool_)):
        return bool(value)
    if isinstance(value, str):
        return value.strip().lower() in TRUTHY_STRINGS
    try:
        return float(value) == 1.0
    except (TypeError, ValueError):
        return False


def safe_mean(records: Sequence[Mapping[str, Any]], key: str) -> float:
    """Mean of a field over records, ignoring missing values; 0 when nothing is present."""
    if not records:
        return 0.0
    values = pd.to_numeric(pd.Series([r.get(key) for r in records], dtype=object), errors='coerce')
    mean = values.mean()
    return 0.0 if pd.isna(mean) else float(mean)


def flag_rate(records: Sequence[Mapping[str, Any]], key: str) -> float:
    """Share of records (0-1) whose binary field is set."""
    if not records:
        return 0.0
    return sum(1 for r in records if is_flag_set(r.get(key))) / len(records)


def student_risk_score(record: Optional[Mapping[str, Any]]) -> int:
    """Weighted 0-100 risk score for one student."""
    if not record:
        return 0

    sleep = record.get('sleep_duration')
    if sleep is None:
        sleep_factor = 0.0
    else:
        sleep_value = coerce_feature_value(sleep)
        sleep_factor = 1.0 if sleep_value <= 2 else 0.5 if sleep_value <= 3 else 0.0

    score = (
        RISK_WEIGHTS['depression'] * is_flag_set(record.get('depression'))
        + RISK_WEIGHTS['has_suicidal_thoughts'] * is_flag_set(record.get('has_suicidal_thoughts'))
        + RISK_WEIGHTS['academic_pressure'] * coerce_feature_value(record.get('academic_pressure')) / 5
        + RISK_WEIGHTS['sleep_duration'] * sleep_factor
        + RISK_WEIGHTS['financial_stress'] * coerce_feature_value(record.get('financial_stress')) / 5
        + RISK_WEIGHTS['family_history'] * is_flag_set(record.get('family_history'))
    )
    # Round half up
    return min(100, int(math.floor(score + 0.5)))


def risk_level(score: float) -> str:
    if score >= 60:
        return 'high'
    if score >= 30:
        return 'medium'
    return 'low'


@dataclass
class ClusterProfile:
    """Summary statistics of one cluster."""
    cluster_id: int
    size: int
    depression_rate: float
    suicidal_rate: float
    avg_age: float
    avg_cgpa: float
    avg_sleep: float
    avg_academic_pressure: float
    avg_financial_stress: float
    risk_level: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'cluster_id': self.cluster_id,
            'size': self.size,
            'depression_rate': self.depression_rate,
            'suicidal_rate': self.suicidal_rate,
            'avg_age': self.avg_age,
            'avg_cgpa': self.avg_cgpa,
            'avg_sleep': self.avg_sleep,
            'avg_academic_pressure': self.avg_academic_pressure,
            'avg_financial_stress': self.avg_financial_stress,
            'risk_level': self.risk_level,
        }


def profile_cluster(cluster_id: int, members: Sequence[Mapping[str, Any]]) -> ClusterProfile:
    """Profile one cluster; rates are percentages."""
    depression_rate = flag_rate(members, 'depression') * 100
    if depression_rate > 40:
        level = 'high'
    elif depression_rate > 20:
        level = 'medium'
    else:
        level = 'low'

    return ClusterProfile(
        cluster_id=cluster_id,
        size=len(members),
        depression_rate=depression_rate,
        suicidal_rate=flag_rate(members, 'has_suicidal_thoughts') * 100,
        avg_age=safe_mean(members, 'age'),
        avg_cgpa=safe_mean(members, 'cgpa'),
        avg_sleep=safe_mean(members, 'sleep_duration'),
        avg_academic_pressure=safe_mean(members, 'academic_pressure'),
        avg_financial_stress=safe_mean(members, 'financial_stress'),
        risk_level=level,
    )


def profile_clusters(clusters: Sequence[Sequence[Mapping[str, Any]]]) -> List[ClusterProfile]:
    """Profile every cluster in order; empty clusters get zeroed, low-risk profiles."""
    return [profile_cluster(i, members) for i, members in enumerate(clusters)]


def feature_means(records: RecordsLike, keys: Optional[Sequence[str]] = None) -> Dict[str, float]:
    record_list = as_record_list(records)
    return {key: safe_mean(record_list, key) for key in (keys or CLUSTERING_FEATURES)}


def compare_to_global(cluster: RecordsLike,
                      records: RecordsLike,
                      keys: Optional[Sequence[str]] = None) -> Dict[str, Dict[str, float]]:
    """Per-feature cluster mean next to the dataset mean."""
    keys = list(keys or CLUSTERING_FEATURES)
    cluster_means = feature_means(cluster, keys)
    global_means = feature_means(records, keys)
    return {
        key: {
            'cluster': cluster_means[key],
            'global': global_means[key],
            'difference': cluster_means[key] - global_means[key],
        }
        for key in keys
    }


@dataclass
class RiskFactor:
    """Strength of association between one feature and the target flag."""
    feature: str
    label: str
    correlation: float
    direction: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'feature': self.feature,
            'label': self.label,
            'correlation': self.correlation,
            'direction': self.direction,
        }


def risk_factors(records: RecordsLike,
                 keys: Optional[Sequence[str]] = None,
                 target: str = 'depression') -> List[RiskFactor]:
    """Rank features by absolute Pearson correlation with the target, strongest first."""
    record_list = as_record_list(records)
    target_values = [coerce_feature_value(r.get(target)) for r in record_list]

    factors = []
    for key in (keys or CLUSTERING_FEATURES):
        r = pearson_correlation([coerce_feature_value(rec.get(key)) for rec in record_list],
                                target_values)
        factors.append(RiskFactor(
            feature=key,
            label=feature_label(key),
            correlation=abs(r),
            direction=correlation_direction(r),
        ))
    factors.sort(key=lambda f: -f.correlation)
    return factors


@dataclass
class Recommendation:
    """A suggested intervention for a cluster."""
    title: str
    description: str
    priority: str
    impact: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'title': self.title,
            'description': self.description,
            'priority': self.priority,
            'impact': self.impact,
        }


def recommend_interventions(cluster: RecordsLike) -> List[Recommendation]:
    """Rule-based interventions for a cluster; peer support is always suggested."""
    members = as_record_list(cluster)
    recommendations = []

    if members:
        if flag_rate(members, 'depression') > 0.4:
            recommendations.append(Recommendation(
                title='Immediate psychological support',
                description='Schedule counselling sessions with the university health service.',
                priority='high',
                impact='high',
            ))
        if safe_mean(members, 'sleep_duration') < 2.5:
            recommendations.append(Recommendation(
                title='Sleep management workshops',
                description='Four-week programme on sleep hygiene and relaxation techniques.',
                priority='medium',
                impact='medium-high',
            ))
        if safe_mean(members, 'academic_pressure') > 3.5:
            recommendations.append(Recommendation(
                title='Academic mentoring',
                description='Peer mentoring for managing academic stress.',
                priority='medium',
                impact='medium',
            ))
        if safe_mean(members, 'financial_stress') > 3:
            recommendations.append(Recommendation(
                title='Financial aid and scholarships',
                description='Identify students eligible for existing aid and simplify the application process.',
                priority='high',
                impact='high',
            ))

    recommendations.append(Recommendation(
        title='Peer support group',
        description='A safe space for sharing experiences and mutual help.',
        priority='low',
        impact='medium',
    ))
    return recommendations


def identify_risks(records: RecordsLike) -> List[str]:
    """Dataset-level risk flags from averaged indicators."""
    record_list = as_record_list(records)
    if not record_list:
        return []

    risks = []
    if safe_mean(record_list, 'sleep_duration') < 2.5:
        risks.append('Insufficient sleep detected')
    if safe_mean(record_list, 'academic_pressure') > 3.5:
        risks.append('High academic pressure')
    if safe_mean(record_list, 'financial_stress') > 3.5:
        risks.append('Significant financial stress')
    if flag_rate(record_list, 'depression') > 0.3:
        risks.append('Concerning depression rate')
    return risks


@dataclass
class DatasetAnomaly:
    type: str
    description: str
    count: int

    def to_dict(self) -> Dict[str, Any]:
        return {'type': self.type, 'description': self.description, 'count': self.count}


def detect_dataset_anomalies(records: RecordsLike) -> List[DatasetAnomaly]:
    """Extreme CGPA values (beyond two standard deviations) and combined high-risk students."""
    record_list = as_record_list(records)
    anomalies = []

    cgpa = pd.to_numeric(pd.Series([r.get('cgpa') for r in record_list], dtype=object), errors='coerce')
    present = cgpa.dropna()
    if len(present) > 1:
        mean = present.mean()
        std = present.std(ddof=1)
        low = int((cgpa < mean - 2 * std).sum())
        high = int((cgpa > mean + 2 * std).sum())
        if low:
            anomalies.append(DatasetAnomaly('Low CGPA', f"{low} student(s) with very low CGPA", low))
        if high:
            anomalies.append(DatasetAnomaly('High CGPA', f"{high} student(s) with very high CGPA", high))

    high_risk = [
        r for r in record_list
        if is_flag_set(r.get('depression'))
        and r.get('sleep_duration') is not None and coerce_feature_value(r.get('sleep_duration')) < 2
        and coerce_feature_value(r.get('academic_pressure')) > 4
    ]
    if high_risk:
        anomalies.append(DatasetAnomaly(
            'Combined high risk',
            f"{len(high_risk)} student(s) at combined high risk",
            len(high_risk),
        ))
    return anomalies


def representative_students(records: RecordsLike,
                            per_cluster: int = 2,
                            limit: int = 12,
                            random_state=None) -> List[Mapping[str, Any]]:
    """
    Pick a few students per cluster for display.

    Each cluster contributes its first depressed and first non-depressed
    student; clusters short of ``per_cluster`` picks are topped up at random.
    Records without a ``cluster_id`` are ignored.
    """
    rng = check_random_state(random_state)
    by_cluster: Dict[int, List[Mapping[str, Any]]] = {}
    for record in as_record_list(records):
        cluster_id = record.get('cluster_id')
        if cluster_id is None:
            continue
        by_cluster.setdefault(int(cluster_id), []).append(record)

    selected: List[Mapping[str, Any]] = []
    for cluster_id in sorted(by_cluster):
        members = by_cluster[cluster_id]
        picks = []
        depressed = next((m for m in members if is_flag_set(m.get('depression'))), None)
        healthy = next((m for m in members if not is_flag_set(m.get('depression'))), None)
        for candidate in (depressed, healthy):
            if candidate is not None and len(picks) < per_cluster:
                picks.append(candidate)

        if len(picks) < per_cluster:
            for i in rng.permutation(len(members)):
                if len(picks) >= per_cluster:
                    break
                if not any(members[i] is p for p in picks):
                    picks.append(members[i])
        selected.extend(picks)

    return selected[:limit]
