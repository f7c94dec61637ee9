# feature_engineering.py
"""
Feature engineering for selectivity clustering.
Derives rates, enrollment shares and blended tuition from the joined
institution table, then fills the few gaps the clustering cannot tolerate.
"""

import logging

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════════
# Ratio helpers
# ═══════════════════════════════════════════════════════════════════════════════

def safe_ratio(numerator, denominator):
    """numerator / denominator, NaN where the denominator is zero or missing."""
    num = pd.to_numeric(numerator, errors="coerce").astype(float)
    den = pd.to_numeric(denominator, errors="coerce").astype(float)
    den = den.where(den != 0)
    return num / den


def compute_blended_tuition(df):
    """
    Enrollment-weighted average of in-state and out-of-state tuition.

    Weights are each group's share of (in-state + out-of-state) enrollment.
    A group with zero weight contributes nothing, even if its tuition is
    missing. Rows with no usable denominator get NaN.
    """
    total = df["in_state_enroll"] + df["out_state_enroll"]
    w_in = safe_ratio(df["in_state_enroll"], total)
    w_out = safe_ratio(df["out_state_enroll"], total)

    in_part = np.where(w_in == 0, 0.0, w_in * df["in_state_tuition"])
    out_part = np.where(w_out == 0, 0.0, w_out * df["out_state_tuition"])
    blended = pd.Series(in_part + out_part, index=df.index, dtype=float)

    # Undefined shares mean undefined tuition
    blended[w_in.isna() | w_out.isna()] = np.nan
    return blended


def compute_residence_shares(df):
    """In-state, out-of-state and foreign shares of the residence total."""
    residence = df["in_state_enroll"] + df["out_state_enroll"] + df["foreign_enroll"]
    return pd.DataFrame({
        "in_state_share": safe_ratio(df["in_state_enroll"], residence),
        "out_state_share": safe_ratio(df["out_state_enroll"], residence),
        "foreign_share": safe_ratio(df["foreign_enroll"], residence),
    }, index=df.index)


# ═══════════════════════════════════════════════════════════════════════════════
# Imputation
# ═══════════════════════════════════════════════════════════════════════════════

def impute_mean(df, column):
    """
    Fill missing values of ``column`` with the mean of the observed values.

    Plain mean imputation. It ignores any relationship with other columns.
    Returns a new DataFrame and the number of values filled.
    """
    df_out = df.copy()
    missing = df_out[column].isna()
    n_missing = int(missing.sum())
    if n_missing == 0:
        return df_out, 0

    observed = df_out.loc[~missing, column]
    if observed.empty:
        logger.warning(f"Cannot impute '{column}': no observed values")
        return df_out, 0

    fill = observed.mean()
    df_out.loc[missing, column] = fill
    logger.info(f"Imputed {n_missing} missing '{column}' values with mean {fill:.3f}")
    return df_out, n_missing


# ═══════════════════════════════════════════════════════════════════════════════
# Main entry point
# ═══════════════════════════════════════════════════════════════════════════════

def engineer_features(df, impute_admit_rate=False):
    """
    Add derived fields to the joined institution table.

    Parameters
    ----------
    df : DataFrame
        Joined, filtered institution records (domain column names).
    impute_admit_rate : bool
        Also mean-impute ``admit_rate``. Off by default: only the test score
        is imputed.

    Returns
    -------
    DataFrame with admit_rate, residence shares, online_share,
    full_time_share and blended_tuition added, act_score imputed.
    """
    out = df.copy()

    out["admit_rate"] = safe_ratio(out["admissions"], out["applicants"])
    for col, values in compute_residence_shares(out).items():
        out[col] = values
    out["online_share"] = safe_ratio(out["online_enroll"], out["ug_enroll"])
    out["full_time_share"] = safe_ratio(out["ug_full_time"], out["ug_enroll"])
    out["blended_tuition"] = compute_blended_tuition(out)

    n_undefined = int(out["blended_tuition"].isna().sum())
    if n_undefined:
        logger.info(f"blended_tuition undefined for {n_undefined} institutions")

    out, _ = impute_mean(out, "act_score")
    if impute_admit_rate:
        out, _ = impute_mean(out, "admit_rate")

    return out
