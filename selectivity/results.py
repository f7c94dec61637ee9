# results.py
"""
Re-attach cluster labels and projection coordinates to the readable
institution table.
"""

import logging

import pandas as pd

from .config import ID_COLUMN
from .errors import ConfigurationError

logger = logging.getLogger(__name__)


def compose_results(readable, assignment, projection=None, id_col=ID_COLUMN):
    """
    Left-join cluster labels (and optionally PCA coordinates) onto ``readable``.

    Institutions that never reached the feature matrix keep their row with a
    null cluster and null coordinates. ``readable`` itself is not modified.

    Parameters
    ----------
    readable : DataFrame
        Human-readable institution table with an identifier column.
    assignment : Series
        Cluster label per identifier (``ClusterModel.assignment``).
    projection : Projection or DataFrame, optional
        PCA coordinates per identifier.

    Returns
    -------
    DataFrame with the readable columns plus ``cluster`` (nullable Int64)
    and ``PC1``/``PC2``.
    """
    if id_col not in readable.columns:
        raise ConfigurationError(f"Readable table has no '{id_col}' column", column=id_col)

    out = readable.copy()
    out = out.drop(columns=[c for c in ("cluster", "PC1", "PC2") if c in out.columns])

    labels = assignment.rename("cluster").astype("Int64")
    out["cluster"] = out[id_col].map(labels).astype("Int64")

    if projection is not None:
        coords = getattr(projection, "coordinates", projection)
        for axis in coords.columns:
            out[axis] = out[id_col].map(coords[axis]).astype(float)

    n_unmatched = int(out["cluster"].isna().sum())
    if n_unmatched:
        logger.info(f"{n_unmatched} of {len(out)} institutions have no cluster "
                    f"(incomplete features)")
    unknown = assignment.index.difference(out[id_col])
    if len(unknown):
        logger.warning(f"{len(unknown)} clustered identifiers are not in the readable table")
    return out
