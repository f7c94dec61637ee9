# session.py
"""
Interactive session: recompute the clustering whenever the user picks a new
cluster count, and publish the view payloads atomically.

The inputs (feature matrix, readable table, PCA projection) are built once
and never change. Only the published ``ViewState`` is replaced.
"""

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Union

import pandas as pd

from .clustering import ClusterModel, fit_kmeans, validate_k
from .config import (
    DEFAULT_K,
    FEATURE_MATRIX_FILE,
    ID_COLUMN,
    N_INIT,
    RANDOM_SEED,
    READABLE_TABLE_FILE,
    RESULTS_DIR,
    UI_K_BOUNDS,
)
from .errors import InvalidParameter
from .preprocessing import FeatureMatrix, load_feature_matrix, load_readable_table
from .projection import Projection, project_pca
from .results import compose_results

logger = logging.getLogger(__name__)

SCATTER_COLUMNS = ["school", "act_score", "blended_tuition", "ug_enroll"]


@dataclass(frozen=True, eq=False)
class LoadedInputs:
    """Session-scoped inputs, loaded once."""
    matrix: FeatureMatrix
    readable: pd.DataFrame
    projection: Projection

    @classmethod
    def build(cls, matrix, readable):
        return cls(matrix=matrix, readable=readable.copy(), projection=project_pca(matrix))

    @classmethod
    def from_files(cls, results_dir: Union[str, Path] = RESULTS_DIR):
        """Load the CSV artifacts written by the batch pipeline."""
        results_dir = Path(results_dir)
        matrix = load_feature_matrix(results_dir / FEATURE_MATRIX_FILE)
        readable = load_readable_table(results_dir / READABLE_TABLE_FILE)
        return cls.build(matrix, readable)


@dataclass(frozen=True, eq=False)
class ViewState:
    """Everything the views show for one k."""
    k: int
    model: ClusterModel
    results: pd.DataFrame
    pca_plot: pd.DataFrame
    scatter_plot: pd.DataFrame
    generation: int


def build_payloads(inputs, model):
    """Composed table plus the two plot payloads for ``model``."""
    results = compose_results(inputs.readable, model.assignment, inputs.projection)
    clustered = results[results["cluster"].notna()]

    label_cols = [c for c in (ID_COLUMN, "school") if c in clustered.columns]
    pca_plot = clustered[label_cols + ["PC1", "PC2", "cluster"]].reset_index(drop=True)

    scatter_cols = [ID_COLUMN] + [c for c in SCATTER_COLUMNS if c in clustered.columns]
    scatter_plot = clustered[scatter_cols + ["cluster"]].reset_index(drop=True)
    return results, pca_plot, scatter_plot


class InteractiveSession:
    """
    Holds the loaded inputs and the currently published view.

    ``set_k`` may be called from several threads (one per UI event). Each
    call takes a generation number; a result that is no longer the newest
    request when it finishes is dropped instead of published.
    """

    def __init__(self, inputs: LoadedInputs, k: int = DEFAULT_K,
                 random_state: Optional[int] = RANDOM_SEED, n_init: int = N_INIT,
                 ui_bounds=UI_K_BOUNDS,
                 cluster_fn: Callable[..., ClusterModel] = fit_kmeans):
        self.inputs = inputs
        self.random_state = random_state
        self.n_init = n_init
        self.ui_bounds = ui_bounds
        self._cluster_fn = cluster_fn
        self._lock = threading.Lock()
        self._generation = 0
        self._view: Optional[ViewState] = None
        self.set_k(self.clamp_k(k))

    @property
    def n_rows(self):
        return self.inputs.matrix.n_rows

    @property
    def view(self) -> Optional[ViewState]:
        with self._lock:
            return self._view

    @property
    def k(self):
        view = self.view
        return view.k if view is not None else None

    def clamp_k(self, k):
        """Clamp raw UI input into [ui_min, min(ui_max, rows)]."""
        lo, hi = self.ui_bounds
        hi = min(hi, self.n_rows)
        return int(max(lo, min(int(k), hi)))

    def view_for(self, k) -> Optional[ViewState]:
        """
        The view for UI input ``k`` (clamped), recomputed only when it differs
        from the published one. Render from this return value: it is the view
        this call published, or the newest one if this call was superseded.
        """
        k = self.clamp_k(k)
        current = self.view
        if current is not None and current.k == k:
            return current
        published = self.set_k(k)
        return published if published is not None else self.view

    def set_k(self, k) -> Optional[ViewState]:
        """
        Recompute and publish the view for ``k``.

        Raises InvalidParameter (leaving the current view in place) when k is
        outside [1, rows]. Returns the published view, or None when a newer
        request superseded this one while it was computing.
        """
        k = validate_k(k, self.n_rows)

        with self._lock:
            self._generation += 1
            generation = self._generation

        model = self._cluster_fn(self.inputs.matrix, k, n_init=self.n_init,
                                 random_state=self.random_state)
        if model.k != k:
            raise InvalidParameter(f"Clustering returned k={model.k} for requested k={k}")
        results, pca_plot, scatter_plot = build_payloads(self.inputs, model)
        view = ViewState(k=k, model=model, results=results, pca_plot=pca_plot,
                         scatter_plot=scatter_plot, generation=generation)

        with self._lock:
            if generation != self._generation:
                logger.info(f"Discarding k={k} (request {generation}); "
                            f"request {self._generation} is newer")
                return None
            self._view = view
        logger.info(f"Published k={k} (request {generation}, inertia={model.inertia:.2f})")
        return view
