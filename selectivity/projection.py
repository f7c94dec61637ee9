# projection.py
"""
Two-dimensional principal-component projection of the standardized matrix.
"""

import logging
from dataclasses import dataclass
from typing import Tuple

import numpy as np
import pandas as pd
from sklearn.decomposition import PCA

from .preprocessing import as_frame

logger = logging.getLogger(__name__)

AXES = ["PC1", "PC2"]


@dataclass(frozen=True, eq=False)
class Projection:
    """PCA coordinates per institution; independent of any clustering."""
    coordinates: pd.DataFrame                 # index identifier, columns PC1, PC2
    explained_variance_ratio: Tuple[float, float]
    loadings: pd.DataFrame                    # index feature, columns PC1, PC2

    @property
    def total_explained(self):
        return float(sum(self.explained_variance_ratio))


def project_pca(data):
    """
    Project the rows of ``data`` onto the first two principal axes.

    Uses the full SVD solver, so the result is deterministic for a given
    matrix. With fewer than two usable components the missing axis is zero.
    """
    frame = as_frame(data)
    X = frame.to_numpy(dtype=float)
    n_components = min(2, X.shape[0], X.shape[1])

    pca = PCA(n_components=n_components, svd_solver="full")
    scores = pca.fit_transform(X)
    components = pca.components_.T
    ratio = list(pca.explained_variance_ratio_)

    if n_components < 2:
        pad = 2 - n_components
        scores = np.hstack([scores, np.zeros((X.shape[0], pad))])
        components = np.hstack([components, np.zeros((X.shape[1], pad))])
        ratio += [0.0] * pad

    coordinates = pd.DataFrame(scores, index=frame.index, columns=AXES)
    loadings = pd.DataFrame(components, index=frame.columns, columns=AXES)
    logger.info(f"PCA: PC1 {ratio[0]:.1%}, PC2 {ratio[1]:.1%} of variance")
    return Projection(coordinates, (float(ratio[0]), float(ratio[1])), loadings)
