"""
Data Ingestion for Institutional Records
========================================

Loads the raw institutional survey extracts (directory, admissions,
enrollment, tuition), validates each against its typed schema, renames the
selected columns to domain names and joins everything into one table keyed by
the institution identifier.

All functions log what they keep and drop so a run can be audited.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Union

import pandas as pd

from .config import (
    DATA_DIR,
    DEGREE_GRANTING,
    FOUR_YEAR_LEVEL,
    ID_COLUMN,
    NONPROFIT_CONTROL,
    PRIMARY_SOURCE,
    SOURCE_SCHEMAS,
    SourceSchema,
)
from .errors import ConfigurationError, DataQualityError

logger = logging.getLogger(__name__)

SourceInput = Union[str, Path, pd.DataFrame]


@dataclass
class DataValidationResult:
    """Container for validation results"""
    source: str
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    metadata: Dict = field(default_factory=dict)

    def log_results(self):
        """Log validation results"""
        if self.errors:
            logger.error(f"[{self.source}] validation failed with {len(self.errors)} errors:")
            for error in self.errors:
                logger.error(f"  - {error}")
        if self.warnings:
            logger.warning(f"[{self.source}] validation completed with {len(self.warnings)} warnings:")
            for warning in self.warnings:
                logger.warning(f"  - {warning}")
        if self.is_valid:
            logger.info(f"[{self.source}] validation passed")


def _as_identifier(series: pd.Series, source: Optional[str] = None) -> pd.Series:
    """Normalise identifiers to stripped strings (None when missing)."""
    if pd.api.types.is_float_dtype(series):
        present = series.dropna()
        fractional = present[(present != present.round()) | (present.abs() == float("inf"))]
        if len(fractional):
            raise DataQualityError(
                f"Source '{source}' has non-integral identifiers: {fractional.tolist()[:5]}",
                column=series.name, source=source,
            )
        series = series.astype("Int64")

    def _clean(value):
        if pd.isna(value):
            return None
        text = str(value).strip()
        return text or None

    return series.map(_clean).astype(object)


class InstitutionDataLoader:
    """
    Loads and validates the raw institutional sources.

    Each source is described by a ``SourceSchema``: the raw columns to take,
    the domain names they are renamed to, and the kind of value each holds.
    Sources can be read from CSV files or passed in as DataFrames.
    """

    def __init__(self, schemas: Optional[Mapping[str, SourceSchema]] = None,
                 primary: str = PRIMARY_SOURCE):
        self.schemas = dict(schemas or SOURCE_SCHEMAS)
        if primary not in self.schemas:
            raise ConfigurationError(
                f"Primary source '{primary}' has no schema", source=primary
            )
        self.primary = primary
        self.frames: Dict[str, pd.DataFrame] = {}
        self.validation_results: Dict[str, DataValidationResult] = {}

    def load(self, name: str, source: SourceInput) -> pd.DataFrame:
        """
        Load one source and return it with domain column names.

        Parameters
        ----------
        name : str
            Schema name (e.g. 'directory').
        source : str, Path or DataFrame
            CSV path or an already-loaded raw table.

        Returns
        -------
        pd.DataFrame
            Typed table with one row per identifier.

        Raises
        ------
        ConfigurationError
            Unknown source, missing file or missing required column.
        DataQualityError
            Duplicate or non-integral identifiers within the source.
        """
        if name not in self.schemas:
            raise ConfigurationError(f"No schema configured for source '{name}'", source=name)
        schema = self.schemas[name]

        if isinstance(source, pd.DataFrame):
            raw = source.copy()
            logger.info(f"Loading {name} from in-memory table ({len(raw)} rows)")
        else:
            raw = self._read_csv(schema, Path(source))

        result = self._validate(schema, raw)
        self.validation_results[name] = result
        result.log_results()

        missing = result.metadata.get("missing_columns", [])
        if missing:
            column = missing[0] if len(missing) == 1 else None
            raw_id = _id_raw(schema)
            if name == self.primary and raw_id in missing:
                raise ConfigurationError(
                    f"Primary source '{name}' lacks the identifier column "
                    f"'{raw_id}'; cannot join",
                    source=name, column=raw_id,
                )
            raise ConfigurationError(
                f"Source '{name}' is missing required columns: {missing}",
                source=name, column=column,
            )

        df = self._standardize(schema, raw)

        duplicated = df[ID_COLUMN].duplicated(keep=False)
        if duplicated.any():
            dupes = sorted(df.loc[duplicated, ID_COLUMN].unique())
            raise DataQualityError(
                f"Source '{name}' has {len(dupes)} duplicated identifiers: {dupes[:5]}",
                column=ID_COLUMN, source=name,
            )

        self.frames[name] = df
        logger.info(f"Loaded {len(df)} {name} records")
        return df

    def load_all(self, data_dir: Union[str, Path] = DATA_DIR,
                 sources: Optional[Mapping[str, SourceInput]] = None) -> Dict[str, pd.DataFrame]:
        """
        Load every configured source.

        ``sources`` overrides individual entries; anything not given is read
        from ``data_dir / schema.filename``.
        """
        sources = dict(sources or {})
        data_dir = Path(data_dir)
        for name, schema in self.schemas.items():
            self.load(name, sources.get(name, data_dir / schema.filename))
        return dict(self.frames)

    def _read_csv(self, schema: SourceSchema, filepath: Path) -> pd.DataFrame:
        if not filepath.exists():
            raise ConfigurationError(
                f"Source file for '{schema.name}' not found: {filepath}",
                source=schema.name,
            )
        logger.info(f"Loading {schema.name} data from: {filepath}")
        # Everything is read as text; the schema decides the types
        return pd.read_csv(filepath, dtype=str, keep_default_na=True, low_memory=False)

    def _validate(self, schema: SourceSchema, df: pd.DataFrame) -> DataValidationResult:
        """Check required columns and flag values that will not coerce."""
        errors = []
        warnings = []
        metadata = {"total_records": len(df)}

        missing = [c for c in schema.required_columns if c not in df.columns]
        if missing:
            errors.append(f"Missing required columns: {missing}")
            metadata["missing_columns"] = missing
            return DataValidationResult(schema.name, False, errors, warnings, metadata)

        raw_id = _id_raw(schema)
        null_ids = int(_as_identifier(df[raw_id], schema.name).isna().sum())
        if null_ids:
            warnings.append(f"{null_ids} rows with no identifier will be dropped")
        metadata["null_identifiers"] = null_ids

        for raw, (domain, kind) in schema.columns.items():
            if kind not in ("number", "code"):
                continue
            present = df[raw].notna()
            coerced = pd.to_numeric(df[raw], errors="coerce")
            bad = int((present & coerced.isna()).sum())
            if bad:
                warnings.append(f"{bad} non-numeric values in '{raw}' ({domain}) set to null")

        return DataValidationResult(schema.name, True, errors, warnings, metadata)

    def _standardize(self, schema: SourceSchema, df: pd.DataFrame) -> pd.DataFrame:
        """Select, rename and type the schema columns."""
        out = df[schema.required_columns].rename(columns=schema.rename_map).copy()

        for domain, kind in schema.kinds().items():
            if kind == "id":
                out[domain] = _as_identifier(out[domain], schema.name)
            elif kind == "number":
                out[domain] = pd.to_numeric(out[domain], errors="coerce").astype(float)
            elif kind == "code":
                out[domain] = pd.to_numeric(out[domain], errors="coerce").round().astype("Int64")
            else:
                out[domain] = out[domain].astype(object).where(out[domain].notna(), None)

        out = out[out[ID_COLUMN].notna()].reset_index(drop=True)
        return out


def _id_raw(schema: SourceSchema) -> str:
    for raw, (_, kind) in schema.columns.items():
        if kind == "id":
            return raw
    raise ConfigurationError(f"Schema '{schema.name}' declares no identifier column",
                             source=schema.name)


def join_records(frames: Mapping[str, pd.DataFrame],
                 primary: str = PRIMARY_SOURCE) -> pd.DataFrame:
    """
    Left-join all sources onto the primary table by identifier.

    Institutions absent from a secondary source keep null values for that
    source's columns.
    """
    if primary not in frames:
        raise ConfigurationError(f"Primary source '{primary}' was not loaded", source=primary)

    joined = frames[primary]
    if ID_COLUMN not in joined.columns:
        raise ConfigurationError(
            f"Primary source '{primary}' has no '{ID_COLUMN}' column",
            source=primary, column=ID_COLUMN,
        )
    joined = joined.copy()

    for name, frame in frames.items():
        if name == primary:
            continue
        if ID_COLUMN not in frame.columns:
            raise ConfigurationError(
                f"Source '{name}' has no '{ID_COLUMN}' column",
                source=name, column=ID_COLUMN,
            )
        overlap = (set(frame.columns) & set(joined.columns)) - {ID_COLUMN}
        if overlap:
            raise ConfigurationError(
                f"Source '{name}' repeats columns already joined: {sorted(overlap)}",
                source=name,
            )
        before = len(joined)
        joined = joined.merge(frame, on=ID_COLUMN, how="left", validate="one_to_one")
        matched = joined[ID_COLUMN].isin(frame[ID_COLUMN]).sum()
        logger.info(f"Joined {name}: {matched}/{before} institutions matched")

    return joined


def filter_institutions(df: pd.DataFrame) -> pd.DataFrame:
    """Keep four-year, degree-granting, not-for-profit institutions."""
    for col in ("level", "degree_granting", "control"):
        if col not in df.columns:
            raise ConfigurationError(f"Cannot filter institutions: missing '{col}'", column=col)

    mask = (
        (df["level"] == FOUR_YEAR_LEVEL)
        & (df["degree_granting"] == DEGREE_GRANTING)
        & df["control"].isin(NONPROFIT_CONTROL)
    ).fillna(False).astype(bool)

    kept = df[mask].reset_index(drop=True)
    logger.info(f"Retention filter kept {len(kept)} of {len(df)} institutions "
                f"(four-year, degree-granting, not-for-profit)")
    return kept


def load_all_data(data_dir: Union[str, Path] = DATA_DIR,
                  sources: Optional[Mapping[str, SourceInput]] = None) -> pd.DataFrame:
    """
    Convenience function: load, join and filter every configured source.

    Returns
    -------
    pd.DataFrame
        One row per retained institution, keyed by ``unitid``.
    """
    loader = InstitutionDataLoader()
    frames = loader.load_all(data_dir, sources)
    return filter_institutions(join_records(frames, primary=loader.primary))
