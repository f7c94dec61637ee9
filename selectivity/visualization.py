# visualization.py
"""
Static report figures: k-selection curves, PCA cluster map, selectivity
scatter and cluster profile heatmap.
"""

import logging
from pathlib import Path

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns

from .config import FIGURE_DPI, FIGURE_FORMAT, FIGURES_DIR, FIGSIZE_STANDARD, FIGSIZE_WIDE

logger = logging.getLogger(__name__)


def _save(fig, stem, figures_dir=FIGURES_DIR):
    """Save figure in all configured formats."""
    figures_dir = Path(figures_dir)
    figures_dir.mkdir(parents=True, exist_ok=True)
    paths = []
    for fmt in FIGURE_FORMAT:
        path = figures_dir / f"{stem}.{fmt}"
        fig.savefig(path, dpi=FIGURE_DPI, bbox_inches="tight")
        paths.append(path)
    plt.close(fig)
    logger.info(f"Saved {stem}")
    return paths


def _cluster_label(cl, sizes, cluster_names):
    n = sizes.get(cl, 0)
    if cluster_names and cl in cluster_names:
        return f"{cluster_names[cl]} (n={n})"
    return f"Cluster {cl} (n={n})"


# ── Elbow / silhouette / gap sweep ────────────────────────────────────────────

def plot_k_selection(table, name="institutions", figures_dir=FIGURES_DIR):
    """Inertia, silhouette and gap statistic against k, side by side."""
    fig, (ax1, ax2, ax3) = plt.subplots(1, 3, figsize=FIGSIZE_WIDE)

    ax1.plot(table["k"], table["inertia"], "o-", color="#2c7bb6")
    ax1.set_xlabel("Number of clusters (k)")
    ax1.set_ylabel("Within-cluster sum of squares")
    ax1.set_title(f"Elbow method — {name}")
    ax1.grid(True, alpha=0.3)

    ax2.plot(table["k"], table["silhouette"], "o-", color="#d7191c")
    ax2.set_xlabel("Number of clusters (k)")
    ax2.set_ylabel("Mean silhouette score")
    ax2.set_title(f"Silhouette analysis — {name}")
    ax2.grid(True, alpha=0.3)

    ax3.errorbar(table["k"], table["gap"], yerr=table["gap_std"], fmt="o-",
                 color="#1a9641", capsize=3)
    ax3.set_xlabel("Number of clusters (k)")
    ax3.set_ylabel("Gap statistic")
    ax3.set_title(f"Gap statistic — {name}")
    ax3.grid(True, alpha=0.3)

    fig.tight_layout()
    return _save(fig, f"k_selection_{name}", figures_dir)


# ── PCA cluster map ──────────────────────────────────────────────────────────

def plot_pca_clusters(pca_plot, explained=None, cluster_names=None,
                      name="institutions", figures_dir=FIGURES_DIR):
    """
    Institutions on the first two principal axes, coloured by cluster.

    Parameters
    ----------
    pca_plot : DataFrame
        Columns PC1, PC2, cluster (``ViewState.pca_plot``).
    explained : tuple(float, float), optional
        Variance ratio of each axis, shown in the axis labels.
    cluster_names : dict, optional
        {cluster_id: "descriptive name"} for legend labels.
    """
    fig, ax = plt.subplots(figsize=FIGSIZE_STANDARD)
    labels = pca_plot["cluster"].astype(int).to_numpy()
    unique_labels = np.unique(labels)
    sizes = pca_plot["cluster"].astype(int).value_counts().to_dict()
    cmap = plt.get_cmap("tab10", max(len(unique_labels), 1))

    for i, cl in enumerate(unique_labels):
        mask = labels == cl
        pts = pca_plot.loc[mask, ["PC1", "PC2"]].to_numpy()
        ax.scatter(pts[:, 0], pts[:, 1], c=[cmap(i)],
                   label=_cluster_label(cl, sizes, cluster_names),
                   alpha=0.7, edgecolors="k", linewidth=0.4, s=40)
        cx, cy = pts.mean(axis=0)
        ax.scatter(cx, cy, c=[cmap(i)], marker="X", s=200, edgecolors="k", linewidth=1.5)

    if explained is not None:
        ax.set_xlabel(f"PC1 ({explained[0]:.1%} variance)")
        ax.set_ylabel(f"PC2 ({explained[1]:.1%} variance)")
    else:
        ax.set_xlabel("PC1")
        ax.set_ylabel("PC2")
    ax.set_title(f"Clustering results — {name} (k={len(unique_labels)})")
    ax.legend(fontsize=8, loc="best")
    ax.grid(True, alpha=0.3)

    fig.tight_layout()
    return _save(fig, f"pca_clusters_{name}", figures_dir)


# ── Selectivity scatter ──────────────────────────────────────────────────────

def plot_selectivity_scatter(scatter_plot, cluster_names=None, name="institutions",
                             figures_dir=FIGURES_DIR):
    """ACT score against blended tuition, sized by undergraduate enrollment."""
    fig, ax = plt.subplots(figsize=FIGSIZE_STANDARD)
    df = scatter_plot.copy()
    df["cluster"] = df["cluster"].astype(int)
    sizes = df["cluster"].value_counts().to_dict()
    df["group"] = [_cluster_label(c, sizes, cluster_names) for c in df["cluster"]]

    sns.scatterplot(
        data=df, x="act_score", y="blended_tuition", hue="group",
        size="ug_enroll", sizes=(15, 300), alpha=0.7, palette="tab10", ax=ax,
    )
    ax.set_xlabel("ACT score (composite, 75th percentile)")
    ax.set_ylabel("Blended tuition")
    ax.set_title("Selectivity metrics by cluster")
    ax.legend(fontsize=7, loc="best")
    ax.grid(True, alpha=0.3)

    fig.tight_layout()
    return _save(fig, f"selectivity_scatter_{name}", figures_dir)


# ── Cluster profile heatmap ──────────────────────────────────────────────────

def plot_cluster_profiles(profiles, name="institutions", figures_dir=FIGURES_DIR):
    """
    Heatmap of cluster means, z-scored across clusters.

    Parameters
    ----------
    profiles : DataFrame
        Rows = clusters, columns = features (``summarize_clusters`` output).
    """
    profiles = profiles.drop(columns=["size"], errors="ignore")
    profiles = profiles.replace([np.inf, -np.inf], np.nan).fillna(0)
    keep = profiles.std() > 0
    profiles_clean = profiles.loc[:, keep]
    if profiles_clean.empty or len(profiles_clean) < 2:
        logger.info(f"Skipping cluster_profiles_{name}: nothing varies across clusters")
        return []
    df_std = (profiles_clean - profiles_clean.mean()) / profiles_clean.std(ddof=0)

    fig, ax = plt.subplots(figsize=(max(8, len(profiles.columns) * 1.2), 6))
    sns.heatmap(
        df_std, annot=profiles_clean.round(2), fmt="", cmap="RdYlBu_r",
        linewidths=0.5, ax=ax, cbar_kws={"label": "z-score across clusters"},
    )
    ax.set_title(f"Cluster profiles — {name}")
    ax.set_ylabel("Cluster")

    fig.tight_layout()
    return _save(fig, f"cluster_profiles_{name}", figures_dir)
