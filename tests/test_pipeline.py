"""
Regression tests for the batch pipeline: loading, joining, feature
engineering, the feature matrix and an end-to-end run on temporary files.

Dev dependencies: pytest
    pip install pytest
    Run: pytest tests/ -v
"""

import numpy as np
import pandas as pd
import pytest

from selectivity.config import (
    CLUSTERS_FILE,
    FEATURE_MATRIX_FILE,
    K_SELECTION_FILE,
    PROFILES_FILE,
    READABLE_TABLE_FILE,
    SELECTIVITY_FEATURES,
)
from selectivity.data_ingestion import (
    InstitutionDataLoader,
    filter_institutions,
    join_records,
    load_all_data,
)
from selectivity.errors import ConfigurationError, DataQualityError, InvalidParameter
from selectivity.feature_engineering import (
    compute_blended_tuition,
    engineer_features,
    impute_mean,
)
from selectivity.pipeline import main, run_pipeline
from selectivity.preprocessing import (
    build_feature_matrix,
    export_feature_matrix,
    export_readable_table,
    load_feature_matrix,
    load_readable_table,
    readable_fields,
    standardize_features,
)


# ===================================================================
# test_data_loading
# ===================================================================

class TestDataLoading:
    """Raw sources load, are typed by their schema, and fail loudly when broken."""

    def test_load_from_dataframe_renames_columns(self, raw_sources):
        loader = InstitutionDataLoader()
        df = loader.load("directory", raw_sources["directory"])
        assert list(df.columns) == [
            "unitid", "school", "address", "city", "state",
            "region", "level", "control", "degree_granting",
        ]
        assert df["unitid"].tolist()[:2] == ["100", "101"]
        assert loader.validation_results["directory"].is_valid

    def test_load_from_csv(self, source_dir):
        loader = InstitutionDataLoader()
        frames = loader.load_all(source_dir)
        assert set(frames) == {"directory", "admissions", "enrollment", "tuition"}
        assert len(frames["directory"]) == 12
        # Identifiers are kept as strings, numbers are typed
        assert frames["admissions"]["unitid"].map(type).eq(str).all()
        assert frames["admissions"]["act_score"].dtype == float

    def test_missing_file_is_configuration_error(self, tmp_path):
        loader = InstitutionDataLoader()
        with pytest.raises(ConfigurationError) as exc:
            loader.load("tuition", tmp_path / "nope.csv")
        assert exc.value.source == "tuition"

    def test_missing_column_names_source_and_column(self, raw_sources):
        broken = raw_sources["tuition"].drop(columns=["TUITION3"])
        loader = InstitutionDataLoader()
        with pytest.raises(ConfigurationError) as exc:
            loader.load("tuition", broken)
        assert exc.value.source == "tuition"
        assert exc.value.column == "TUITION3"

    def test_primary_without_identifier_is_fatal(self, raw_sources):
        broken = raw_sources["directory"].drop(columns=["UNITID"])
        loader = InstitutionDataLoader()
        with pytest.raises(ConfigurationError, match="identifier"):
            loader.load("directory", broken)

    def test_duplicate_identifiers_rejected(self, raw_sources):
        adm = raw_sources["admissions"]
        duplicated = pd.concat([adm, adm.iloc[[0]]], ignore_index=True)
        with pytest.raises(DataQualityError) as exc:
            InstitutionDataLoader().load("admissions", duplicated)
        assert exc.value.source == "admissions"

    def test_non_numeric_values_become_null(self, raw_sources):
        adm = raw_sources["admissions"].astype({"ACTCM75": object})
        adm.loc[0, "ACTCM75"] = "PrivacySuppressed"
        loader = InstitutionDataLoader()
        df = loader.load("admissions", adm)
        assert pd.isna(df.loc[df["unitid"] == "100", "act_score"]).all()
        assert loader.validation_results["admissions"].warnings

    def test_non_integral_identifiers_rejected(self, raw_sources):
        tuition = raw_sources["tuition"].assign(
            UNITID=[100.5] + [float(i) for i in range(101, 112)])
        with pytest.raises(DataQualityError) as exc:
            InstitutionDataLoader().load("tuition", tuition)
        assert exc.value.source == "tuition"

    def test_integral_float_identifiers_accepted(self, raw_sources):
        tuition = raw_sources["tuition"].assign(
            UNITID=[float(i) for i in range(100, 112)])
        df = InstitutionDataLoader().load("tuition", tuition)
        assert df["unitid"].tolist()[:2] == ["100", "101"]

    def test_rows_without_identifier_dropped(self, raw_sources):
        tuition = raw_sources["tuition"].copy()
        tuition.loc[0, "UNITID"] = None
        df = InstitutionDataLoader().load("tuition", tuition)
        assert len(df) == 11
        assert df["unitid"].notna().all()


# ===================================================================
# test_join_and_filter
# ===================================================================

class TestJoinAndFilter:
    """Left join from the directory table, then the retention filter."""

    def test_one_row_per_institution(self, joined):
        assert len(joined) == 12
        assert joined["unitid"].is_unique

    def test_absent_secondary_rows_are_null(self, joined):
        row = joined.set_index("unitid").loc["109"]
        assert pd.isna(row["act_score"])
        assert pd.isna(row["applicants"])
        # Other sources still matched
        assert row["ug_enroll"] == 9000

    def test_missing_primary_is_configuration_error(self, raw_sources):
        frames = InstitutionDataLoader().load_all(sources=raw_sources)
        frames.pop("directory")
        with pytest.raises(ConfigurationError):
            join_records(frames)

    def test_filter_keeps_four_year_nonprofit(self, joined):
        kept = filter_institutions(joined)
        assert len(kept) == 10
        assert "110" not in set(kept["unitid"])   # for-profit
        assert "111" not in set(kept["unitid"])   # two-year
        assert set(kept["control"].astype(int)) <= {1, 2}

    def test_load_all_data(self, source_dir):
        df = load_all_data(source_dir)
        assert len(df) == 10


# ===================================================================
# test_feature_engineering
# ===================================================================

class TestFeatureEngineering:
    """Derived fields and imputation."""

    def test_blended_tuition_is_enrollment_weighted(self, institutions):
        row = institutions.set_index("unitid").loc["104"]
        expected = (17000 * 9000 + 2500 * 27000) / (17000 + 2500)
        assert row["blended_tuition"] == pytest.approx(expected)

    def test_blended_tuition_undefined_without_enrollment(self):
        df = pd.DataFrame({
            "in_state_enroll": [0.0, np.nan, 100.0],
            "out_state_enroll": [0.0, 50.0, 0.0],
            "in_state_tuition": [10000.0, 10000.0, 12000.0],
            "out_state_tuition": [20000.0, 20000.0, np.nan],
        })
        blended = compute_blended_tuition(df)
        assert np.isnan(blended[0])
        assert np.isnan(blended[1])
        # Zero out-of-state weight: the missing out-of-state tuition does not matter
        assert blended[2] == pytest.approx(12000.0)

    def test_mean_imputation_of_test_score(self):
        df = pd.DataFrame({"act_score": [20.0, 24.0, np.nan, 28.0, 32.0]})
        out, n_filled = impute_mean(df, "act_score")
        assert n_filled == 1
        assert out.loc[2, "act_score"] == pytest.approx(26.0)
        # Input untouched
        assert np.isnan(df.loc[2, "act_score"])

    def test_act_score_imputed_from_observed_mean(self, institutions):
        act = institutions.set_index("unitid")["act_score"]
        observed = [34, 35, 33, 34, 21, 22, 20, 23]
        assert act["108"] == pytest.approx(np.mean(observed))
        assert act["109"] == pytest.approx(np.mean(observed))
        assert act.notna().all()

    def test_admit_rate_not_imputed_by_default(self, institutions):
        rates = institutions.set_index("unitid")["admit_rate"]
        assert rates["100"] == pytest.approx(2400 / 40000)
        assert np.isnan(rates["109"])

    def test_admit_rate_imputation_opt_in(self, joined):
        out = engineer_features(filter_institutions(joined), impute_admit_rate=True)
        assert out["admit_rate"].notna().all()

    def test_residence_shares_sum_to_one(self, institutions):
        total = (institutions["in_state_share"] + institutions["out_state_share"]
                 + institutions["foreign_share"])
        np.testing.assert_allclose(total.to_numpy(), 1.0)


# ===================================================================
# test_feature_matrix
# ===================================================================

class TestFeatureMatrix:
    """Standardized matrix invariants."""

    def test_columns_are_selectivity_features(self, feature_matrix):
        assert feature_matrix.features == SELECTIVITY_FEATURES
        assert "school" not in feature_matrix.data.columns

    def test_incomplete_rows_excluded(self, feature_matrix):
        assert feature_matrix.n_rows == 9
        assert feature_matrix.excluded_ids == ("109",)
        assert "109" not in feature_matrix.ids
        assert not feature_matrix.data.isna().any().any()

    def test_standardized_mean_zero_std_one(self, feature_matrix):
        data = feature_matrix.data
        np.testing.assert_allclose(data.mean().to_numpy(), 0.0, atol=1e-12)
        np.testing.assert_allclose(data.std(ddof=1).to_numpy(), 1.0, rtol=1e-12)

    def test_rebuild_is_bit_identical(self, institutions):
        first = build_feature_matrix(institutions)
        second = build_feature_matrix(institutions)
        pd.testing.assert_frame_equal(first.data, second.data, check_exact=True)

    def test_constant_column_names_offender(self, institutions):
        constant = institutions.assign(online_share=0.0)
        with pytest.raises(DataQualityError) as exc:
            build_feature_matrix(constant, features=SELECTIVITY_FEATURES + ["online_share"])
        assert exc.value.column == "online_share"
        assert "online_share" in str(exc.value)

    def test_standardize_rejects_single_row(self):
        with pytest.raises(DataQualityError):
            standardize_features(pd.DataFrame({"a": [1.0]}))

    def test_unknown_feature_is_configuration_error(self, institutions):
        with pytest.raises(ConfigurationError) as exc:
            build_feature_matrix(institutions, features=["act_score", "sat_score"])
        assert exc.value.column == "sat_score"

    def test_non_numeric_feature_rejected(self, institutions):
        with pytest.raises(ConfigurationError):
            build_feature_matrix(institutions, features=["act_score", "school"])

    def test_no_complete_rows(self, institutions):
        empty = institutions.assign(admit_rate=np.nan)
        with pytest.raises(DataQualityError):
            build_feature_matrix(empty)

    def test_csv_artifacts_round_trip(self, tmp_path, feature_matrix, institutions):
        export_feature_matrix(feature_matrix, tmp_path / "m.csv")
        export_readable_table(institutions, tmp_path / "r.csv")

        matrix = load_feature_matrix(tmp_path / "m.csv")
        readable = load_readable_table(tmp_path / "r.csv")

        pd.testing.assert_frame_equal(matrix.data, feature_matrix.data, check_names=False)
        assert readable.columns[0] == "unitid"
        assert readable["unitid"].tolist() == institutions["unitid"].tolist()

    def test_loading_matrix_with_nulls_fails(self, tmp_path):
        pd.DataFrame({"unitid": ["1", "2"], "a": [0.5, None]}).to_csv(
            tmp_path / "m.csv", index=False)
        with pytest.raises(DataQualityError):
            load_feature_matrix(tmp_path / "m.csv")


# ===================================================================
# test_end_to_end
# ===================================================================

class TestEndToEnd:
    """Full batch run on the synthetic CSV sources."""

    @pytest.fixture
    def pipeline_output(self, source_dir, tmp_path):
        results_dir = tmp_path / "out" / "data"
        result = run_pipeline(
            data_dir=source_dir, k=2, k_range=range(1, 5), random_state=42,
            n_init=5, n_gap_refs=3, n_stability_runs=5, results_dir=results_dir,
            figures_dir=tmp_path / "out" / "figures", make_figures=False,
        )
        return result, results_dir

    def test_every_institution_kept(self, pipeline_output):
        result, _ = pipeline_output
        assert len(result.results) == 10
        clusters = result.results.set_index("unitid")["cluster"]
        assert pd.isna(clusters["109"])
        assert clusters.drop("109").between(1, 2).all()

    def test_selective_and_accessible_separate(self, pipeline_output):
        result, _ = pipeline_output
        clusters = result.results.set_index("unitid")["cluster"]
        selective = set(clusters[["100", "101", "102", "103"]])
        accessible = set(clusters[["104", "105", "106", "107"]])
        assert len(selective) == 1
        assert len(accessible) == 1
        assert selective != accessible

    def test_artifacts_written(self, pipeline_output):
        _, results_dir = pipeline_output
        for name in (FEATURE_MATRIX_FILE, READABLE_TABLE_FILE, CLUSTERS_FILE,
                     K_SELECTION_FILE, PROFILES_FILE):
            path = results_dir / name
            assert path.exists(), f"Missing: {path}"
            assert len(pd.read_csv(path)) > 0, f"{name} is empty"

    def test_default_export_has_no_descriptive_names(self, pipeline_output):
        _, results_dir = pipeline_output
        clusters = pd.read_csv(results_dir / CLUSTERS_FILE, dtype={"unitid": str})
        clustered = clusters.dropna(subset=["cluster"])
        expected = ["Cluster " + str(int(c)) for c in clustered["cluster"]]
        assert clustered["cluster_name"].tolist() == expected

    def test_names_applied_only_when_given(self, source_dir, tmp_path):
        result = run_pipeline(data_dir=source_dir, k=3, k_range=None, n_init=3,
                              n_stability_runs=0, results_dir=tmp_path,
                              make_figures=False,
                              cluster_names={1: "First", 2: "Second", 3: "Third"})
        clusters = pd.read_csv(tmp_path / CLUSTERS_FILE, dtype={"unitid": str})
        names = clusters.dropna(subset=["cluster"]).set_index("unitid")["cluster_name"]
        labels = result.model.assignment
        lookup = {1: "First", 2: "Second", 3: "Third"}
        assert all(names[i] == lookup[labels[i]] for i in labels.index)

    def test_stability_reported(self, pipeline_output):
        result, _ = pipeline_output
        assert -1.0 <= result.stability <= 1.0

    def test_stability_can_be_skipped(self, source_dir, tmp_path):
        result = run_pipeline(data_dir=source_dir, k=2, k_range=None, n_init=2,
                              n_stability_runs=0, export=False, make_figures=False)
        assert result.stability is None

    def test_readable_table_limited_to_known_fields(self, pipeline_output):
        _, results_dir = pipeline_output
        readable = load_readable_table(results_dir / READABLE_TABLE_FILE)
        assert readable.columns[0] == "unitid"
        assert set(readable.columns[1:]) <= set(readable_fields())
        assert {"school", "act_score", "blended_tuition", "ug_enroll"} <= set(readable.columns)
        # Raw filter codes are not part of the readable table
        assert "level" not in readable.columns

    def test_profiles_cover_each_cluster(self, pipeline_output):
        result, _ = pipeline_output
        assert result.profiles["size"].sum() == 9
        assert list(result.profiles.index) == [1, 2]

    def test_invalid_k_fails_before_writing(self, source_dir, tmp_path):
        results_dir = tmp_path / "never"
        with pytest.raises(InvalidParameter):
            run_pipeline(data_dir=source_dir, k=50, k_range=None,
                         results_dir=results_dir, make_figures=False)
        assert not results_dir.exists()

    def test_figures_written(self, source_dir, tmp_path):
        figures_dir = tmp_path / "figures"
        run_pipeline(data_dir=source_dir, k=3, k_range=range(1, 4), n_init=3,
                     n_gap_refs=2, export=False, figures_dir=figures_dir)
        produced = {p.stem for p in figures_dir.glob("*.png")}
        assert {"k_selection_institutions", "pca_clusters_institutions",
                "selectivity_scatter_institutions",
                "cluster_profiles_institutions"} <= produced


class TestCommandLine:
    """run_pipeline.py / selectivity-tiers entry point."""

    def test_main_succeeds(self, source_dir, tmp_path):
        code = main(["--data-dir", str(source_dir), "--output-dir", str(tmp_path / "out"),
                     "--k", "2", "--k-max", "3", "--gap-refs", "2", "--n-init", "3",
                     "--no-figures"])
        assert code == 0
        assert (tmp_path / "out" / "data" / CLUSTERS_FILE).exists()

    def test_main_applies_cluster_names(self, source_dir, tmp_path):
        code = main(["--data-dir", str(source_dir), "--output-dir", str(tmp_path / "out"),
                     "--k", "2", "--k-max", "0", "--n-init", "3", "--stability-runs", "0",
                     "--cluster-names", "Selective", "Accessible", "--no-figures"])
        assert code == 0
        clusters = pd.read_csv(tmp_path / "out" / "data" / CLUSTERS_FILE)
        assert set(clusters["cluster_name"].dropna()) == {"Selective", "Accessible"}

    def test_main_reports_bad_k(self, source_dir, tmp_path):
        code = main(["--data-dir", str(source_dir), "--output-dir", str(tmp_path / "out"),
                     "--k", "0", "--k-max", "0", "--no-figures"])
        assert code == 1

    def test_main_reports_missing_sources(self, tmp_path):
        code = main(["--data-dir", str(tmp_path / "empty"), "--output-dir",
                     str(tmp_path / "out"), "--no-figures"])
        assert code == 1
