"""
Selectivity Tiers
=================

Unsupervised clustering of four-year, not-for-profit institutions into
selectivity tiers from standardized admissions, enrollment and tuition
statistics.

Main Components:
- data_ingestion: Load, validate and join the raw institutional sources
- feature_engineering: Admit rate, enrollment shares, blended tuition, imputation
- preprocessing: Standardized feature matrix and its CSV artifacts
- clustering: K-means engine and k-selection heuristics (elbow, silhouette, gap)
- projection: 2-D PCA projection for plotting
- results / reporting: Re-attach clusters to the readable table, summaries
- session: Interactive recomputation when the cluster count changes

Example Usage:
    from selectivity.pipeline import run_pipeline

    result = run_pipeline(data_dir='data', k=3, random_state=42)
    result.results.to_csv('outputs/institution_clusters.csv', index=False)

    from selectivity.session import InteractiveSession, LoadedInputs

    session = InteractiveSession(LoadedInputs.from_files('outputs/data'))
    view = session.set_k(5)
"""

__version__ = '1.0.0'

from .errors import (
    SelectivityError,
    ConfigurationError,
    DataQualityError,
    InvalidParameter,
    ComputationWarning,
)

from .data_ingestion import (
    InstitutionDataLoader,
    join_records,
    filter_institutions,
    load_all_data,
)

from .feature_engineering import (
    engineer_features,
    compute_blended_tuition,
    impute_mean,
)

from .preprocessing import (
    FeatureMatrix,
    build_feature_matrix,
    standardize_features,
    export_feature_matrix,
    load_feature_matrix,
    export_readable_table,
    load_readable_table,
    readable_fields,
)

from .clustering import (
    ClusterModel,
    ClusterAnalyzer,
    fit_kmeans,
)

from .projection import Projection, project_pca
from .results import compose_results
from .reporting import summarize_clusters, name_clusters

from .session import (
    LoadedInputs,
    ViewState,
    InteractiveSession,
)

__all__ = [
    # Errors
    'SelectivityError',
    'ConfigurationError',
    'DataQualityError',
    'InvalidParameter',
    'ComputationWarning',

    # Data loading
    'InstitutionDataLoader',
    'join_records',
    'filter_institutions',
    'load_all_data',

    # Features
    'engineer_features',
    'compute_blended_tuition',
    'impute_mean',
    'FeatureMatrix',
    'build_feature_matrix',
    'standardize_features',
    'export_feature_matrix',
    'load_feature_matrix',
    'export_readable_table',
    'load_readable_table',
    'readable_fields',

    # Clustering
    'ClusterModel',
    'ClusterAnalyzer',
    'fit_kmeans',
    'Projection',
    'project_pca',
    'compose_results',
    'summarize_clusters',
    'name_clusters',

    # Interactive
    'LoadedInputs',
    'ViewState',
    'InteractiveSession',
]
