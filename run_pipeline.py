#!/usr/bin/env python3
"""
Selectivity Tiers — Batch Pipeline
==================================

Runs the complete analysis from raw institutional sources to the CSV
artifacts and report figures. Execute from the repository root:

    python run_pipeline.py                   # k=3, default seed
    python run_pipeline.py --k 5             # five tiers
    python run_pipeline.py --k-max 0         # skip the k-selection curves
    python run_pipeline.py --no-figures      # CSV outputs only

Outputs (under outputs/data unless --output-dir is given):
    feature_matrix.csv        standardized matrix, read by the dashboard
    institutions.csv          readable institution table, read by the dashboard
    institution_clusters.csv  cluster label + PCA coordinates per institution
    k_selection.csv           inertia / silhouette / gap per k
    cluster_profiles.csv      mean selectivity features per cluster

Then start the dashboard with:

    streamlit run dashboard/app.py
"""

import sys

from selectivity.pipeline import main

if __name__ == "__main__":
    sys.exit(main())
