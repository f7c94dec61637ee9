"""
Batch pipeline: raw sources → feature matrix → k-selection curves → clusters
→ composed table, CSV artifacts and figures.

Usage:
    python run_pipeline.py                     # defaults from config.py
    python run_pipeline.py --k 4 --seed 7      # another k and seed
    python run_pipeline.py --no-figures        # CSV outputs only
"""

import argparse
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import pandas as pd

from .clustering import ClusterAnalyzer, ClusterModel, fit_kmeans, validate_k
from .config import (
    CLUSTERS_FILE,
    DATA_DIR,
    DEFAULT_K,
    FEATURE_MATRIX_FILE,
    FIGURES_DIR,
    K_RANGE,
    K_SELECTION_FILE,
    N_GAP_REFS,
    N_INIT,
    N_STABILITY_RUNS,
    OUTPUTS_DIR,
    PROFILES_FILE,
    RANDOM_SEED,
    READABLE_TABLE_FILE,
    RESULTS_DIR,
    SELECTIVITY_FEATURES,
    ensure_output_dirs,
)
from .data_ingestion import InstitutionDataLoader, filter_institutions, join_records
from .errors import SelectivityError
from .feature_engineering import engineer_features
from .preprocessing import (
    FeatureMatrix, build_feature_matrix, export_feature_matrix, export_readable_table,
    readable_fields,
)
from .projection import Projection, project_pca
from .reporting import name_clusters, summarize_clusters
from .results import compose_results
from .session import LoadedInputs, build_payloads
from .visualization import (
    plot_cluster_profiles, plot_k_selection, plot_pca_clusters, plot_selectivity_scatter,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class PipelineResult:
    """Everything one batch run produced."""
    institutions: pd.DataFrame
    matrix: FeatureMatrix
    k_selection: Optional[pd.DataFrame]
    model: ClusterModel
    projection: Projection
    results: pd.DataFrame
    profiles: pd.DataFrame
    stability: Optional[float] = None
    cluster_names: Optional[dict] = None


def _banner(text):
    print(f"\n▸ {text}")


def run_pipeline(data_dir=DATA_DIR, sources=None, k=DEFAULT_K, features=None,
                 k_range=K_RANGE, random_state=RANDOM_SEED, n_init=N_INIT,
                 n_gap_refs=N_GAP_REFS, n_stability_runs=N_STABILITY_RUNS,
                 impute_admit_rate=False, cluster_names=None,
                 results_dir=RESULTS_DIR, figures_dir=FIGURES_DIR,
                 make_figures=True, export=True):
    """
    Run every batch step and return a ``PipelineResult``.

    Nothing is written until clustering has finished, so a configuration or
    data-quality failure leaves no partial artifacts behind.

    ``cluster_names`` maps labels to descriptive names. Names are only
    meaningful for the run they were read off, so none are applied unless
    given; labels are then written as "Cluster n".
    """
    if features is None:
        features = SELECTIVITY_FEATURES

    # ── Step 1: Load and join ─────────────────────────────────────────────
    _banner("Step 1: Loading institutional sources...")
    loader = InstitutionDataLoader()
    frames = loader.load_all(data_dir, sources)
    joined = join_records(frames, primary=loader.primary)
    institutions = filter_institutions(joined)
    print(f"  {len(joined):,} institutions joined, {len(institutions):,} retained")

    # ── Step 2: Feature engineering ───────────────────────────────────────
    _banner("Step 2: Feature engineering...")
    institutions = engineer_features(institutions, impute_admit_rate=impute_admit_rate)

    # ── Step 3: Feature matrix ────────────────────────────────────────────
    _banner("Step 3: Building standardized feature matrix...")
    matrix = build_feature_matrix(institutions, features=features)
    print(f"  Matrix: {matrix.n_rows} institutions x {len(matrix.features)} features "
          f"({len(matrix.excluded_ids)} excluded for missing values)")
    k = validate_k(k, matrix.n_rows)

    # ── Step 4: k-selection curves ────────────────────────────────────────
    analyzer = ClusterAnalyzer(matrix, n_init=n_init, random_state=random_state)
    k_selection = None
    if k_range:
        _banner("Step 4: k-selection heuristics (advisory)...")
        k_selection = analyzer.find_optimal_k(k_range, n_refs=n_gap_refs)
        print(k_selection.round(3).to_string(index=False))

    # ── Step 5: Clustering ────────────────────────────────────────────────
    _banner(f"Step 5: K-means with k={k}...")
    model = fit_kmeans(matrix, k, n_init=n_init, random_state=random_state)
    print(f"  inertia={model.inertia:.2f}  sizes={model.sizes.to_dict()}")

    stability = None
    if n_stability_runs:
        stability = analyzer.validate_stability(k, n_runs=n_stability_runs)
        print(f"  stability (mean pairwise ARI over {n_stability_runs} seeds): {stability:.3f}")

    # ── Step 6: Projection and composition ────────────────────────────────
    _banner("Step 6: PCA projection and result composition...")
    projection = project_pca(matrix)
    results = compose_results(institutions, model.assignment, projection)
    profiles = summarize_clusters(results, features)
    print(profiles.round(2).to_string())

    result = PipelineResult(institutions, matrix, k_selection, model, projection,
                            results, profiles, stability, cluster_names)

    if export:
        _banner("Step 7: Exporting results...")
        export_results(result, results_dir)
        print(f"  Results → {results_dir}")

    if make_figures:
        _banner("Step 8: Figures...")
        make_report_figures(result, figures_dir)
        print(f"  Figures → {figures_dir}")

    return result


def export_results(result, results_dir=RESULTS_DIR):
    """Write the CSV artifacts of a pipeline run."""
    results_dir = Path(results_dir)
    ensure_output_dirs(results_dir=results_dir)
    export_feature_matrix(result.matrix, results_dir / FEATURE_MATRIX_FILE)
    export_readable_table(result.institutions, results_dir / READABLE_TABLE_FILE,
                          fields=readable_fields(result.matrix.features))
    named = name_clusters(result.results, result.cluster_names)
    named.to_csv(results_dir / CLUSTERS_FILE, index=False)
    result.profiles.to_csv(results_dir / PROFILES_FILE)
    if result.k_selection is not None:
        result.k_selection.to_csv(results_dir / K_SELECTION_FILE, index=False)


def make_report_figures(result, figures_dir=FIGURES_DIR):
    names = result.cluster_names
    inputs = LoadedInputs(result.matrix, result.institutions, result.projection)
    _, pca_plot, scatter_plot = build_payloads(inputs, result.model)

    if result.k_selection is not None:
        plot_k_selection(result.k_selection, figures_dir=figures_dir)
    plot_pca_clusters(pca_plot, result.projection.explained_variance_ratio,
                      cluster_names=names, figures_dir=figures_dir)
    if {"act_score", "blended_tuition", "ug_enroll"} <= set(scatter_plot.columns):
        plot_selectivity_scatter(scatter_plot, cluster_names=names, figures_dir=figures_dir)
    plot_cluster_profiles(result.profiles, figures_dir=figures_dir)


def _names_lookup(names):
    if not names:
        return None
    return {i: name for i, name in enumerate(names, start=1)}


def build_parser():
    parser = argparse.ArgumentParser(
        description="Cluster institutions into selectivity tiers."
    )
    parser.add_argument("--data-dir", type=Path, default=DATA_DIR,
                        help="Directory holding the raw source CSVs.")
    parser.add_argument("--output-dir", type=Path, default=OUTPUTS_DIR,
                        help="Root for data/ and figures/ outputs.")
    parser.add_argument("--k", type=int, default=DEFAULT_K,
                        help=f"Number of clusters (default: {DEFAULT_K}).")
    parser.add_argument("--k-min", type=int, default=min(K_RANGE),
                        help="Smallest k for the selection curves.")
    parser.add_argument("--k-max", type=int, default=max(K_RANGE),
                        help="Largest k for the selection curves (0 to skip).")
    parser.add_argument("--seed", type=int, default=RANDOM_SEED,
                        help="Random seed for k-means and gap references.")
    parser.add_argument("--n-init", type=int, default=N_INIT,
                        help="k-means restarts.")
    parser.add_argument("--gap-refs", type=int, default=N_GAP_REFS,
                        help="Reference draws for the gap statistic.")
    parser.add_argument("--features", nargs="+", default=None,
                        help="Selectivity features to cluster on.")
    parser.add_argument("--stability-runs", type=int, default=N_STABILITY_RUNS,
                        help="Seeds for the stability check (0 to skip).")
    parser.add_argument("--cluster-names", nargs="+", default=None, metavar="NAME",
                        help="Descriptive names for clusters 1..n, read off a "
                             "previous run's cluster_profiles.csv.")
    parser.add_argument("--impute-admit-rate", action="store_true",
                        help="Mean-impute missing admit rates.")
    parser.add_argument("--no-figures", action="store_true",
                        help="Skip figure generation.")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Debug logging.")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    print("=" * 80)
    print("SELECTIVITY TIERS — K-MEANS CLUSTERING OF INSTITUTIONS")
    print("=" * 80)

    k_range = range(args.k_min, args.k_max + 1) if args.k_max > 0 else None
    try:
        run_pipeline(
            data_dir=args.data_dir,
            k=args.k,
            features=args.features,
            k_range=k_range,
            random_state=args.seed,
            n_init=args.n_init,
            n_gap_refs=args.gap_refs,
            n_stability_runs=args.stability_runs,
            cluster_names=_names_lookup(args.cluster_names),
            impute_admit_rate=args.impute_admit_rate,
            results_dir=args.output_dir / "data",
            figures_dir=args.output_dir / "figures",
            make_figures=not args.no_figures,
        )
    except SelectivityError as e:
        logger.error(f"{type(e).__name__}: {e}")
        return 1

    print("\n" + "=" * 80)
    print("ANALYSIS COMPLETE")
    print("=" * 80)
    return 0


if __name__ == "__main__":
    sys.exit(main())
