# config.py - Configuration for the selectivity clustering pipeline
# Edit paths and parameters as needed

from pathlib import Path
from dataclasses import dataclass
from typing import Dict, Tuple
import os

# ── Paths ──────────────────────────────────────────────────────────────────────
BASE_DIR = Path(__file__).resolve().parent.parent
DATA_DIR = BASE_DIR / "data"
OUTPUTS_DIR = BASE_DIR / "outputs"

RESULTS_DIR = OUTPUTS_DIR / "data"
FIGURES_DIR = OUTPUTS_DIR / "figures"

# Exported artifacts shared by the batch pipeline and the dashboard
FEATURE_MATRIX_FILE = "feature_matrix.csv"
READABLE_TABLE_FILE = "institutions.csv"
CLUSTERS_FILE = "institution_clusters.csv"
K_SELECTION_FILE = "k_selection.csv"
PROFILES_FILE = "cluster_profiles.csv"

# ── Source schemas ─────────────────────────────────────────────────────────────
# Raw IPEDS-style survey extracts. Each source maps raw column → (domain name, kind).
# Kinds: "id" (join key, kept as string), "text", "code" (integer category),
# "number" (float).

ID_COLUMN = "unitid"
RAW_ID_COLUMN = "UNITID"


@dataclass(frozen=True)
class SourceSchema:
    """Typed column subset taken from one raw source."""
    name: str
    filename: str
    columns: Dict[str, Tuple[str, str]]

    @property
    def required_columns(self):
        return list(self.columns)

    @property
    def rename_map(self):
        return {raw: domain for raw, (domain, _) in self.columns.items()}

    def kinds(self):
        """{domain name: kind} for every column of the source."""
        return {domain: kind for domain, kind in self.columns.values()}


SOURCE_SCHEMAS = {
    "directory": SourceSchema(
        name="directory",
        filename="hd.csv",
        columns={
            RAW_ID_COLUMN: (ID_COLUMN, "id"),
            "INSTNM": ("school", "text"),
            "ADDR": ("address", "text"),
            "CITY": ("city", "text"),
            "STABBR": ("state", "text"),
            "OBEREG": ("region", "code"),
            "ICLEVEL": ("level", "code"),
            "CONTROL": ("control", "code"),
            "DEGGRANT": ("degree_granting", "code"),
        },
    ),
    "admissions": SourceSchema(
        name="admissions",
        filename="adm.csv",
        columns={
            RAW_ID_COLUMN: (ID_COLUMN, "id"),
            "ACTCM75": ("act_score", "number"),
            "APPLCN": ("applicants", "number"),
            "ADMSSN": ("admissions", "number"),
        },
    ),
    "enrollment": SourceSchema(
        name="enrollment",
        filename="ef.csv",
        columns={
            RAW_ID_COLUMN: (ID_COLUMN, "id"),
            "EFUG": ("ug_enroll", "number"),
            "EFUGFT": ("ug_full_time", "number"),
            "EFUGPT": ("ug_part_time", "number"),
            "EFDEEXC": ("online_enroll", "number"),
            "EFRES01": ("in_state_enroll", "number"),
            "EFRES02": ("out_state_enroll", "number"),
            "EFRES03": ("foreign_enroll", "number"),
            "RET_PCF": ("retention_rate", "number"),
        },
    ),
    "tuition": SourceSchema(
        name="tuition",
        filename="ic_ay.csv",
        columns={
            RAW_ID_COLUMN: (ID_COLUMN, "id"),
            "TUITION2": ("in_state_tuition", "number"),
            "TUITION3": ("out_state_tuition", "number"),
        },
    ),
}

PRIMARY_SOURCE = "directory"

# ── Retention filter codes ─────────────────────────────────────────────────────
FOUR_YEAR_LEVEL = 1              # ICLEVEL: four or more years
DEGREE_GRANTING = 1              # DEGGRANT: degree-granting
NONPROFIT_CONTROL = (1, 2)       # CONTROL: public, private not-for-profit (3 = for-profit)

# ── Features ───────────────────────────────────────────────────────────────────
SELECTIVITY_FEATURES = [
    "act_score",
    "admit_rate",
    "blended_tuition",
    "ug_enroll",
    "in_state_share",
]

# Kept in the readable table for interpretation, never clustered on
EXPLANATORY_FIELDS = [
    "school", "address", "city", "state", "region", "control",
    "ug_full_time", "ug_part_time", "online_share", "full_time_share",
    "out_state_share", "foreign_share", "retention_rate",
    "in_state_tuition", "out_state_tuition",
]

# ── Clustering parameters ──────────────────────────────────────────────────────
RANDOM_SEED = 42
K_RANGE = range(1, 11)          # Candidate k for the selector
N_INIT = 25                     # k-means restarts
MAX_ITER = 100
N_GAP_REFS = 20                 # Uniform reference draws for the gap statistic
N_STABILITY_RUNS = 20
VIF_THRESHOLD = 10.0

DEFAULT_K = 3
UI_K_BOUNDS = (1, 10)

# ── Visualization parameters ──────────────────────────────────────────────────
FIGURE_DPI = 300
FIGURE_FORMAT = ["png"]
FIGSIZE_STANDARD = (10, 8)
FIGSIZE_WIDE = (16, 6)


def ensure_output_dirs(results_dir=RESULTS_DIR, figures_dir=FIGURES_DIR):
    """Create output directories if needed."""
    os.makedirs(results_dir, exist_ok=True)
    os.makedirs(figures_dir, exist_ok=True)
