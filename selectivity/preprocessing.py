# preprocessing.py
"""
Matrix builder: feature selection, complete-case filtering, standardization
and collinearity checks. Also reads and writes the flat CSV artifacts shared
with the interactive session.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Tuple

import numpy as np
import pandas as pd
from statsmodels.stats.outliers_influence import variance_inflation_factor

from .config import EXPLANATORY_FIELDS, ID_COLUMN, SELECTIVITY_FEATURES, VIF_THRESHOLD
from .errors import ConfigurationError, DataQualityError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class FeatureMatrix:
    """
    Standardized selectivity features, one row per institution.

    ``data`` is indexed by institution identifier. ``excluded_ids`` lists the
    institutions dropped for missing features; it is empty when the matrix
    was read back from CSV.
    """
    data: pd.DataFrame
    excluded_ids: Tuple[str, ...] = ()

    @property
    def features(self):
        return list(self.data.columns)

    @property
    def ids(self):
        return self.data.index

    @property
    def values(self):
        return self.data.to_numpy(dtype=float)

    @property
    def n_rows(self):
        return len(self.data)


def as_frame(data):
    """DataFrame view of a FeatureMatrix, DataFrame or array."""
    if isinstance(data, FeatureMatrix):
        return data.data
    if isinstance(data, pd.DataFrame):
        return data
    return pd.DataFrame(np.asarray(data, dtype=float))


def select_features(df, features, id_col=ID_COLUMN):
    """
    Take the selectivity columns, indexed by identifier.
    Explanatory columns are left behind in ``df``.
    """
    if id_col not in df.columns:
        raise ConfigurationError(f"Table has no '{id_col}' column", column=id_col)
    missing = [f for f in features if f not in df.columns]
    if missing:
        raise ConfigurationError(f"Configured features not in table: {missing}",
                                 column=missing[0])
    non_numeric = [f for f in features if not pd.api.types.is_numeric_dtype(df[f])]
    if non_numeric:
        raise ConfigurationError(f"Features must be numeric: {non_numeric}",
                                 column=non_numeric[0])

    selected = df.set_index(id_col)[list(features)].astype(float)
    if selected.index.has_duplicates:
        raise DataQualityError("Duplicate identifiers in feature table", column=id_col)
    return selected


def drop_incomplete(df):
    """Drop rows with any missing feature. Returns (complete rows, dropped ids)."""
    complete = df.notna().all(axis=1)
    dropped = tuple(str(i) for i in df.index[~complete])
    if dropped:
        per_col = df.isna().sum()
        logger.info(f"Dropping {len(dropped)} incomplete rows "
                    f"(missing by feature: {per_col[per_col > 0].to_dict()})")
    return df[complete], dropped


def standardize_features(df):
    """
    Z-score standardisation (mean=0, sample std=1).
    Returns the standardised DataFrame, the column means and the column stds.
    """
    means = df.mean()
    stds = df.std(ddof=1)
    for col in df.columns:
        s = stds[col]
        if not np.isfinite(s) or s <= 1e-12 * max(1.0, abs(means[col])):
            raise DataQualityError(
                f"Feature '{col}' has zero variance over {len(df)} rows; "
                f"it cannot be standardized",
                column=col,
            )
    return (df - means) / stds, means, stds


def calculate_vif(df):
    """
    Variance Inflation Factor for each feature.
    VIF > 10 → severe multicollinearity.
    """
    cols = list(df.columns)
    X = df.values.astype(float)
    with np.errstate(divide="ignore", invalid="ignore"):
        vif = [variance_inflation_factor(X, i) for i in range(len(cols))]
    vif_data = pd.DataFrame({"Feature": cols, "VIF": vif})
    return vif_data.sort_values("VIF", ascending=False).reset_index(drop=True)


def build_feature_matrix(df, features=None, id_col=ID_COLUMN, vif_threshold=VIF_THRESHOLD):
    """
    Build the standardized feature matrix.

    Parameters
    ----------
    df : DataFrame
        Joined and engineered institution table.
    features : list[str], optional
        Selectivity features; defaults to ``SELECTIVITY_FEATURES``.
    vif_threshold : float
        Features above this VIF are reported (never dropped).

    Returns
    -------
    FeatureMatrix
    """
    if features is None:
        features = SELECTIVITY_FEATURES
    features = list(features)
    if not features:
        raise ConfigurationError("No selectivity features configured")

    # 1. Selection
    selected = select_features(df, features, id_col=id_col)

    # 2. Complete cases only
    complete, dropped = drop_incomplete(selected)
    if complete.empty:
        raise DataQualityError(
            f"No institution has all of {features}; nothing to cluster"
        )

    # 3. Standardise
    X_std, means, stds = standardize_features(complete)
    logger.debug("Standardization (mean, std):\n"
                 + pd.DataFrame({"mean": means, "std": stds}).to_string())

    # 4. Collinearity report
    if len(features) > 1 and len(X_std) > len(features):
        vif = calculate_vif(X_std)
        logger.info("VIF by feature:\n" + vif.to_string(index=False))
        high = vif.loc[vif["VIF"] > vif_threshold, "Feature"].tolist()
        if high:
            logger.warning(f"Features above VIF {vif_threshold}: {high}")

    logger.info(f"Feature matrix: {X_std.shape[0]} institutions x {X_std.shape[1]} features "
                f"({len(dropped)} excluded)")
    return FeatureMatrix(data=X_std, excluded_ids=dropped)


# ── Flat-file artifacts ──────────────────────────────────────────────────────

def export_feature_matrix(matrix, path):
    """Write the standardized matrix as CSV with the identifier first."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    matrix.data.rename_axis(ID_COLUMN).reset_index().to_csv(path, index=False)
    return path


def load_feature_matrix(path):
    """Read a matrix written by ``export_feature_matrix``."""
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Feature matrix not found: {path}")
    df = pd.read_csv(path, dtype={ID_COLUMN: str})
    if ID_COLUMN not in df.columns:
        raise ConfigurationError(f"{path.name} has no '{ID_COLUMN}' column", column=ID_COLUMN)
    data = df.set_index(ID_COLUMN).astype(float)
    if data.isna().any().any():
        col = data.columns[data.isna().any()][0]
        raise DataQualityError(f"{path.name} contains missing values", column=col)
    return FeatureMatrix(data=data)


def readable_fields(features=None):
    """Columns of the readable table: explanatory fields, then every clustered feature."""
    fields = EXPLANATORY_FIELDS + SELECTIVITY_FEATURES + list(features or [])
    return list(dict.fromkeys(f for f in fields if f != ID_COLUMN))


def export_readable_table(df, path, fields=None):
    """
    Write the human-readable institution table, identifier first.

    ``fields`` defaults to ``readable_fields()``; fields absent from ``df``
    are skipped.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    if fields is None:
        fields = readable_fields()
    cols = [ID_COLUMN] + [c for c in fields if c in df.columns and c != ID_COLUMN]
    df[cols].to_csv(path, index=False)
    return path


def load_readable_table(path):
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Institution table not found: {path}")
    df = pd.read_csv(path, dtype={ID_COLUMN: str})
    if ID_COLUMN not in df.columns:
        raise ConfigurationError(f"{path.name} has no '{ID_COLUMN}' column", column=ID_COLUMN)
    return df
