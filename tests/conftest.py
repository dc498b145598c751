"""
Shared fixtures for survey segmentation tests.

Provides synthetic student survey records and isolates every test from
configuration files and SEGMENTATION_* variables of the host environment.
"""

import os
from typing import Any, Dict, List

import numpy as np
import pytest

from survey_segmentation import config_manager
from survey_segmentation.config_manager import CLUSTERING_FEATURES


# =============================================================================
# Synthetic Data Creation Utilities
# =============================================================================

def make_records(X: np.ndarray, keys=None, **extra_fields) -> List[Dict[str, Any]]:
    """Build one record dict per row of X, with sequential ids."""
    keys = list(keys or CLUSTERING_FEATURES)
    records = []
    for i, row in enumerate(X):
        record = {'id': i + 1}
        record.update({key: float(value) for key, value in zip(keys, row)})
        for field_name, values in extra_fields.items():
            record[field_name] = values[i]
        records.append(record)
    return records


def create_survey_records(n_per_group: int = 40, random_state: int = 42) -> List[Dict[str, Any]]:
    """Three loosely separated student profiles on realistic survey scales."""
    rng = np.random.RandomState(random_state)
    profiles = [
        # pressure, satisfaction, sleep, finance, diet, hours, cgpa
        [4.5, 1.5, 1.5, 4.2, 1.5, 10.0, 6.0],
        [2.0, 4.0, 3.5, 2.0, 2.5, 5.0, 8.5],
        [3.0, 3.0, 2.5, 3.0, 2.0, 7.5, 7.2],
    ]
    records = []
    for group, center in enumerate(profiles):
        for _ in range(n_per_group):
            values = np.asarray(center) + rng.normal(0, 0.3, size=len(center))
            record = {key: round(float(v), 2) for key, v in zip(CLUSTERING_FEATURES, values)}
            record['id'] = len(records) + 1
            record['age'] = int(rng.randint(18, 30))
            record['depression'] = int(rng.rand() < (0.7 if group == 0 else 0.15))
            record['has_suicidal_thoughts'] = bool(rng.rand() < (0.5 if group == 0 else 0.1))
            record['family_history'] = bool(rng.rand() < 0.3)
            record['city'] = ['Delhi', 'Mumbai', 'Pune'][group]
            record['gender'] = 'Female' if rng.rand() < 0.5 else 'Male'
            records.append(record)
    return records


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture(autouse=True)
def isolated_environment(tmp_path, monkeypatch):
    """Keep host config files and SEGMENTATION_* variables out of every test."""
    for key in list(os.environ):
        if key.startswith('SEGMENTATION_'):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv('HOME', str(tmp_path))
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(config_manager, '_config_manager', None)
    yield


@pytest.fixture
def survey_records():
    """120 synthetic survey records in three profiles."""
    return create_survey_records()


@pytest.fixture
def two_blob_matrix():
    """Two tight, well-separated groups of 50 seven-dimensional vectors."""
    rng = np.random.RandomState(3)
    first = rng.normal(0.0, 0.01, size=(50, 7))
    second = rng.normal(10.0, 0.01, size=(50, 7))
    return np.vstack([first, second])


@pytest.fixture
def record_factory():
    """Callable building records from a feature matrix (see make_records)."""
    return make_records
