"""
Pytest configuration and shared fixtures for the selectivity pipeline tests.

This conftest.py adds the project root to sys.path so that imports of
`selectivity.*` modules work from within the tests/ directory, and builds a
small synthetic set of raw institutional sources.
"""

import sys
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

# Add project root to sys.path so `from selectivity.xxx import ...` works
ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from selectivity.config import SOURCE_SCHEMAS  # noqa: E402
from selectivity.data_ingestion import (  # noqa: E402
    InstitutionDataLoader, filter_institutions, join_records,
)
from selectivity.feature_engineering import engineer_features  # noqa: E402
from selectivity.preprocessing import build_feature_matrix  # noqa: E402


@pytest.fixture
def root_dir():
    """Return the project root directory as a Path object."""
    return ROOT


def _raw_sources():
    """
    Twelve institutions: four selective, four accessible, two with gaps,
    one for-profit and one two-year.

    - 108 has admissions data but no ACT score (imputed, stays in the matrix)
    - 109 has no admissions row at all (no admit rate, dropped from the matrix)
    - 110 is for-profit, 111 is two-year (both removed by the retention filter)
    """
    ids = [str(i) for i in range(100, 112)]
    directory = pd.DataFrame({
        "UNITID": ids,
        "INSTNM": [f"School {i}" for i in ids],
        "ADDR": [f"{i} College Ave" for i in ids],
        "CITY": ["Springfield"] * 12,
        "STABBR": ["MA", "CT", "NY", "PA", "OH", "MI", "IN", "IL", "WI", "MN", "CA", "TX"],
        "OBEREG": [1, 1, 2, 2, 3, 3, 3, 3, 3, 4, 8, 6],
        "ICLEVEL": [1] * 11 + [2],
        "CONTROL": [2, 2, 2, 2, 1, 1, 1, 1, 1, 1, 3, 1],
        "DEGGRANT": [1] * 12,
    })
    admissions = pd.DataFrame({
        "UNITID": ["100", "101", "102", "103", "104", "105", "106", "107", "108", "110", "111"],
        "ACTCM75": [34, 35, 33, 34, 21, 22, 20, 23, np.nan, 25, 19],
        "APPLCN": [40000, 50000, 30000, 35000, 8000, 9000, 7000, 10000, 12000, 3000, 2000],
        "ADMSSN": [2400, 2500, 3000, 2800, 6400, 7000, 5950, 7500, 9000, 2700, 2000],
    })
    enrollment = pd.DataFrame({
        "UNITID": ids,
        "EFUG": [6000, 7000, 5000, 6500, 20000, 22000, 18000, 24000, 15000, 9000, 4000, 3000],
        "EFUGFT": [5900, 6900, 4900, 6400, 17000, 19000, 15000, 20000, 12000, 8000, 2000, 1500],
        "EFUGPT": [100, 100, 100, 100, 3000, 3000, 3000, 4000, 3000, 1000, 2000, 1500],
        "EFDEEXC": [0, 10, 0, 20, 1500, 2000, 1800, 2500, 1000, 600, 3500, 300],
        "EFRES01": [1200, 1500, 1000, 1400, 17000, 18500, 16000, 20000, 12000, 7000, 3000, 2800],
        "EFRES02": [4200, 4800, 3500, 4500, 2500, 3000, 1600, 3500, 2500, 1800, 900, 150],
        "EFRES03": [600, 700, 500, 600, 500, 500, 400, 500, 500, 200, 100, 50],
        "RET_PCF": [97, 98, 96, 97, 82, 84, 80, 85, 78, 75, 60, 55],
    })
    tuition = pd.DataFrame({
        "UNITID": ids,
        "TUITION2": [58000, 60000, 56000, 59000, 9000, 9500, 8500, 10000, 9200, 9800, 22000, 3000],
        "TUITION3": [58000, 60000, 56000, 59000, 27000, 28000, 25000, 30000, 26000, 24000, 22000, 7000],
    })
    return {
        "directory": directory,
        "admissions": admissions,
        "enrollment": enrollment,
        "tuition": tuition,
    }


@pytest.fixture
def raw_sources():
    """Raw source tables keyed by schema name (IPEDS column names)."""
    return _raw_sources()


@pytest.fixture
def source_dir(tmp_path, raw_sources):
    """The raw sources written as CSV files under the configured file names."""
    data_dir = tmp_path / "data"
    data_dir.mkdir()
    for name, df in raw_sources.items():
        df.to_csv(data_dir / SOURCE_SCHEMAS[name].filename, index=False)
    return data_dir


@pytest.fixture
def joined(raw_sources):
    """Joined (unfiltered) institution table."""
    loader = InstitutionDataLoader()
    frames = loader.load_all(sources=raw_sources)
    return join_records(frames)


@pytest.fixture
def institutions(joined):
    """Filtered, engineered institution table (10 rows)."""
    return engineer_features(filter_institutions(joined))


@pytest.fixture
def feature_matrix(institutions):
    """Standardized default feature matrix (9 rows; 109 is excluded)."""
    return build_feature_matrix(institutions)


@pytest.fixture
def two_clouds():
    """
    Eight institutions in two obviously separated groups in a 2-feature space:
    a-d near (0, 0), e-h near (10, 10).
    """
    return pd.DataFrame({
        "unitid": list("abcdefgh"),
        "x": [0.0, 0.1, 0.2, -0.1, 10.0, 10.1, 9.8, 10.2],
        "y": [0.0, 0.2, -0.1, 0.1, 10.0, 9.9, 10.2, 10.1],
    })


@pytest.fixture
def two_cloud_matrix(two_clouds):
    return build_feature_matrix(two_clouds, features=["x", "y"])
