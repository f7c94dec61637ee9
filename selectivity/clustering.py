# clustering.py
"""
K-means clustering and advisory k-selection heuristics.

``fit_kmeans`` is the cluster engine: Lloyd iterations with k-means++
restarts and explicit empty-cluster reseeding. ``ClusterAnalyzer`` sweeps a
range of k and reports inertia, silhouette and gap statistic curves without
choosing k itself.
"""

import logging
import numbers
import warnings
from dataclasses import dataclass
from typing import Optional

import numpy as np
import pandas as pd
from scipy.spatial.distance import cdist
from sklearn.cluster import kmeans_plusplus
from sklearn.metrics import adjusted_rand_score, silhouette_score

from .config import K_RANGE, MAX_ITER, N_GAP_REFS, N_INIT, N_STABILITY_RUNS, RANDOM_SEED
from .errors import ComputationWarning, InvalidParameter
from .preprocessing import as_frame

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class ClusterModel:
    """Fitted result of one k-means run. Replaced, never updated, when k changes."""
    k: int
    centers: pd.DataFrame        # index 1..k, feature columns
    sizes: pd.Series             # index 1..k
    inertia: float
    n_iter: int
    converged: bool
    assignment: pd.Series        # identifier → label in 1..k
    random_state: Optional[int] = None


def validate_k(k, n_rows):
    """Raise InvalidParameter unless 1 <= k <= n_rows."""
    if isinstance(k, bool) or not isinstance(k, numbers.Integral):
        raise InvalidParameter(f"Cluster count must be an integer, got {k!r}")
    if k < 1 or k > n_rows:
        raise InvalidParameter(f"Cluster count must be in [1, {n_rows}], got {k}")
    return int(k)


# ── Lloyd iterations ──────────────────────────────────────────────────────────

def _reseed_empty(X, labels, sq_dist, k):
    """
    Give every empty cluster one point: the point farthest from its current
    center, taken from a cluster that keeps at least one member.
    """
    counts = np.bincount(labels, minlength=k)
    empty = np.flatnonzero(counts == 0)
    if empty.size == 0:
        return labels

    labels = labels.copy()
    own = sq_dist[np.arange(len(X)), labels].copy()
    for j in empty:
        movable = counts[labels] > 1
        candidates = np.where(movable, own, -np.inf)
        p = int(np.argmax(candidates))
        counts[labels[p]] -= 1
        labels[p] = j
        counts[j] = 1
        own[p] = 0.0
        msg = f"Cluster {j + 1} of {k} became empty; reseeded with row {p}"
        logger.warning(msg)
        warnings.warn(msg, ComputationWarning, stacklevel=3)
    return labels


def _lloyd(X, centers, max_iter):
    """Run Lloyd iterations from ``centers``. Returns labels, centers, inertia, n_iter, converged."""
    k = len(centers)
    labels_prev = None
    converged = False
    n_iter = 0
    labels = None

    for n_iter in range(1, max_iter + 1):
        sq_dist = cdist(X, centers, metric="sqeuclidean")
        # argmin returns the first minimum, so ties go to the lowest center index
        labels = sq_dist.argmin(axis=1)
        labels = _reseed_empty(X, labels, sq_dist, k)

        if labels_prev is not None and np.array_equal(labels, labels_prev):
            converged = True
            break
        centers = np.vstack([X[labels == j].mean(axis=0) for j in range(k)])
        labels_prev = labels

    inertia = float(((X - centers[labels]) ** 2).sum())
    return labels, centers, inertia, n_iter, converged


def fit_kmeans(data, k, n_init=N_INIT, max_iter=MAX_ITER, random_state=None, init=None):
    """
    Partition the rows of ``data`` into exactly k clusters.

    Parameters
    ----------
    data : FeatureMatrix or DataFrame
        Standardized features; the index carries institution identifiers.
    k : int
        Number of clusters, 1 <= k <= rows.
    n_init : int
        Number of k-means++ restarts; the lowest-inertia run is kept.
    max_iter : int
        Iteration cap per restart.
    random_state : int, optional
        Seed. The same seed, k and data give the same assignment.
    init : array-like (k, n_features), optional
        Extra starting centers, tried in addition to the restarts.

    Returns
    -------
    ClusterModel
    """
    frame = as_frame(data)
    X = frame.to_numpy(dtype=float)
    k = validate_k(k, len(X))
    if n_init < 1 and init is None:
        raise InvalidParameter(f"n_init must be >= 1, got {n_init}")
    if max_iter < 1:
        raise InvalidParameter(f"max_iter must be >= 1, got {max_iter}")

    rng = np.random.default_rng(random_state)
    starts = []
    if init is not None:
        init = np.asarray(init, dtype=float)
        if init.shape != (k, X.shape[1]):
            raise InvalidParameter(f"init must have shape {(k, X.shape[1])}, got {init.shape}")
        starts.append(init)
    for _ in range(n_init):
        seed = int(rng.integers(np.iinfo(np.int32).max))
        centers, _ = kmeans_plusplus(X, n_clusters=k, random_state=seed)
        starts.append(centers)

    best = None
    for centers in starts:
        run = _lloyd(X, centers, max_iter)
        if best is None or run[2] < best[2]:
            best = run

    labels, centers, inertia, n_iter, converged = best
    if not converged:
        logger.info(f"k={k}: best run stopped at max_iter={max_iter} before converging")

    cluster_ids = np.arange(1, k + 1)
    assignment = pd.Series(labels + 1, index=frame.index, name="cluster")
    return ClusterModel(
        k=k,
        centers=pd.DataFrame(centers, index=pd.Index(cluster_ids, name="cluster"),
                             columns=frame.columns),
        sizes=pd.Series(np.bincount(labels, minlength=k), index=cluster_ids, name="size"),
        inertia=inertia,
        n_iter=n_iter,
        converged=converged,
        assignment=assignment,
        random_state=random_state,
    )


# ── k selection heuristics ───────────────────────────────────────────────────

class ClusterAnalyzer:
    """Advisory k-selection curves for a standardized matrix."""

    def __init__(self, data, name="institutions", n_init=N_INIT, max_iter=MAX_ITER,
                 random_state=RANDOM_SEED, ref_n_init=5):
        """
        Parameters
        ----------
        data : FeatureMatrix or DataFrame
            Standardised feature matrix (rows=institutions, columns=features).
        name : str
            Label used in log messages.
        ref_n_init : int
            Restarts per k on each gap-statistic reference draw.
        """
        self.data = as_frame(data)
        self.name = name
        self.n_init = n_init
        self.ref_n_init = ref_n_init
        self.max_iter = max_iter
        self.random_state = random_state
        self.models = {}
        self.results = {}

    def _fit_sweep(self, frame, k_values, random_state, n_init=None):
        """Fit each k, warm-starting from the previous centers plus the farthest point."""
        if n_init is None:
            n_init = self.n_init
        X = frame.to_numpy(dtype=float)
        models = {}
        prev = None
        for k in k_values:
            init = None
            if prev is not None and prev.k == k - 1:
                centers = prev.centers.to_numpy()
                far = cdist(X, centers, metric="sqeuclidean").min(axis=1).argmax()
                init = np.vstack([centers, X[far]])
            models[k] = fit_kmeans(frame, k, n_init=n_init, max_iter=self.max_iter,
                                   random_state=random_state, init=init)
            prev = models[k]
        return models

    def find_optimal_k(self, k_range=None, n_refs=N_GAP_REFS):
        """
        Compute inertia, silhouette and gap statistic for each candidate k.

        k values above the row count are skipped. Silhouette is NaN for k=1
        and k=n, where it is undefined.

        Returns
        -------
        DataFrame with columns k, inertia, silhouette, gap, gap_std.
        """
        if k_range is None:
            k_range = K_RANGE
        n = len(self.data)
        k_values = sorted({int(k) for k in k_range})
        skipped = [k for k in k_values if k < 1 or k > n]
        if skipped:
            logger.warning(f"[{self.name}] skipping k outside [1, {n}]: {skipped}")
        k_values = [k for k in k_values if 1 <= k <= n]
        if not k_values:
            raise InvalidParameter(f"No candidate k in [1, {n}]")

        X = self.data.to_numpy(dtype=float)
        self.models = self._fit_sweep(self.data, k_values, self.random_state)

        inertia = [self.models[k].inertia for k in k_values]
        silhouette = [self._silhouette(X, self.models[k]) for k in k_values]
        gap, gap_std = self.gap_statistic(k_values, n_refs=n_refs)

        table = pd.DataFrame({
            "k": k_values,
            "inertia": inertia,
            "silhouette": silhouette,
            "gap": gap,
            "gap_std": gap_std,
        })
        for row in table.itertuples(index=False):
            logger.info(f"  [{self.name}] k={row.k:2d}  inertia={row.inertia:10.2f}  "
                        f"silhouette={row.silhouette:.3f}  gap={row.gap:.3f}")
        self.results["k_selection"] = table
        return table

    @staticmethod
    def _silhouette(X, model):
        n_labels = model.assignment.nunique()
        if n_labels < 2 or n_labels > len(X) - 1:
            return float("nan")
        return float(silhouette_score(X, model.assignment.to_numpy()))

    def gap_statistic(self, k_values, n_refs=N_GAP_REFS):
        """
        Gap statistic against uniform draws over the data's bounding box.

        gap(k) = mean(log W_ref) - log W; gap_std = std(log W_ref) * sqrt(1 + 1/n_refs).
        """
        X = self.data.to_numpy(dtype=float)
        lo, hi = X.min(axis=0), X.max(axis=0)
        flat = np.flatnonzero(hi <= lo)
        if flat.size:
            msg = (f"[{self.name}] reference box is flat in "
                   f"{[self.data.columns[i] for i in flat]}; reference draws are degenerate there")
            logger.warning(msg)
            warnings.warn(msg, ComputationWarning, stacklevel=2)

        rng = np.random.default_rng(self.random_state)
        ref_seeds = [int(rng.integers(np.iinfo(np.int32).max)) for _ in range(n_refs)]
        refs = [np.random.default_rng(s).uniform(lo, hi, size=X.shape) for s in ref_seeds]

        if all(k in self.models for k in k_values):
            observed = self.models
        else:
            observed = self._fit_sweep(self.data, k_values, self.random_state)
        ref_models = [self._fit_sweep(pd.DataFrame(R), k_values, seed, n_init=self.ref_n_init)
                      for R, seed in zip(refs, ref_seeds)]

        gaps, stds = [], []
        for k in k_values:
            w = observed[k].inertia
            ref_logs = []
            for models in ref_models:
                w_ref = models[k].inertia
                if w_ref > 0:
                    ref_logs.append(np.log(w_ref))
            if w <= 0 or not ref_logs:
                msg = f"[{self.name}] gap statistic undefined at k={k} (zero dispersion)"
                logger.warning(msg)
                warnings.warn(msg, ComputationWarning, stacklevel=2)
                gaps.append(float("nan"))
                stds.append(float("nan"))
                continue
            if len(ref_logs) < n_refs:
                msg = (f"[{self.name}] k={k}: {n_refs - len(ref_logs)} reference draws "
                       f"had zero dispersion and were skipped")
                logger.warning(msg)
                warnings.warn(msg, ComputationWarning, stacklevel=2)
            ref_logs = np.asarray(ref_logs)
            gaps.append(float(ref_logs.mean() - np.log(w)))
            stds.append(float(ref_logs.std() * np.sqrt(1 + 1 / len(ref_logs))))

        self.results["gap"] = gaps
        self.results["gap_std"] = stds
        return gaps, stds

    # ── Stability validation ──────────────────────────────────────────────

    def validate_stability(self, k, n_runs=None):
        """
        Run K-means with different random seeds and measure pairwise ARI.
        """
        if n_runs is None:
            n_runs = N_STABILITY_RUNS

        all_labels = [
            fit_kmeans(self.data, k, n_init=1, max_iter=self.max_iter,
                       random_state=i).assignment.to_numpy()
            for i in range(n_runs)
        ]

        ari_scores = []
        for i in range(n_runs):
            for j in range(i + 1, n_runs):
                ari_scores.append(adjusted_rand_score(all_labels[i], all_labels[j]))

        mean_ari = float(np.mean(ari_scores)) if ari_scores else 1.0
        std_ari = float(np.std(ari_scores)) if ari_scores else 0.0
        logger.info(f"[{self.name}] stability at k={k} ({n_runs} runs): "
                    f"ARI = {mean_ari:.3f} ± {std_ari:.3f}")

        self.results["stability_ari_mean"] = mean_ari
        self.results["stability_ari_std"] = std_ari
        return mean_ari
