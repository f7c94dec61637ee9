# reporting.py
"""
Cluster summaries and descriptive names for the report and dashboard.
"""

import pandas as pd

from .config import SELECTIVITY_FEATURES


def summarize_clusters(results, features=None):
    """
    Mean of each selectivity field and size per cluster.

    Institutions without a cluster are left out.
    """
    if features is None:
        features = SELECTIVITY_FEATURES
    features = [f for f in features if f in results.columns]
    clustered = results[results["cluster"].notna()]
    profiles = clustered.groupby("cluster")[features].mean()
    profiles.insert(0, "size", clustered.groupby("cluster").size())
    return profiles.sort_index()


def name_clusters(results, names=None):
    """
    Add a ``cluster_name`` column from a {label: name} lookup.

    Names are written by a person reading ``summarize_clusters`` for a
    particular run; they are not carried over to other runs. Labels without
    an entry (all of them when ``names`` is None) become "Cluster <n>".
    """
    names = names or {}
    out = results.copy()
    out["cluster_name"] = [
        names.get(int(c), f"Cluster {int(c)}") if pd.notna(c) else None
        for c in out["cluster"]
    ]
    return out
