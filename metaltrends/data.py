from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

import numpy as np
import pandas as pd
from pandas.api.types import is_bool_dtype, is_datetime64_any_dtype

from metaltrends.config import (
    DATE_COLUMN,
    DATE_COLUMN_ALIASES,
    HEADER_SKIP_ROWS,
    LATITUDE_COLUMN,
    LONGITUDE_COLUMN,
    METAL_CODE_LENGTH,
    METAL_SUFFIX,
    STATION_COLUMN,
    default_data_path,
)

logger = logging.getLogger(__name__)

MEASUREMENT_COLUMNS = [
    STATION_COLUMN,
    LONGITUDE_COLUMN,
    LATITUDE_COLUMN,
    DATE_COLUMN,
    "Year",
    "Metal",
    "Concentration",
]

YEAR_PATTERN = r"(?<!\d)(\d{4})(?!\d)"


class LoadError(Exception):
    """The source spreadsheet is missing, unreadable or lacks required columns."""


def drop_duplicate_columns(df: pd.DataFrame) -> pd.DataFrame:
    return df.loc[:, ~df.columns.duplicated()]


def numericize(df: pd.DataFrame, cols: Iterable[str]) -> pd.DataFrame:
    for col in cols:
        if col in df.columns:
            df[col] = pd.to_numeric(df[col], errors="coerce")
    return df


def coerce_str_safe(df: pd.DataFrame, cols: Iterable[str]) -> pd.DataFrame:
    for col in cols:
        if col in df.columns:
            series = df[col].astype("string").str.strip()
            series = series.replace({"nan": pd.NA, "None": pd.NA, "": pd.NA})
            df[col] = series
    return df


def coerce_boolean_columns(df: pd.DataFrame) -> pd.DataFrame:
    """Turn boolean-inferred columns back into numbers.

    Spreadsheet readers sometimes type a column as boolean when it is blank or
    holds only 0/1 flags; downstream code expects numeric columns.
    """
    for col in df.columns:
        series = df[col]
        if is_bool_dtype(series):
            df[col] = series.astype(float)
        elif series.dtype == object:
            present = series.dropna()
            if not present.empty and present.map(lambda v: isinstance(v, bool)).all():
                df[col] = series.map(lambda v: float(v) if isinstance(v, bool) else None).astype(float)
    return df


def metal_columns(columns: Iterable[object]) -> List[str]:
    out: List[str] = []
    for c in columns:
        name = str(c)
        if name.endswith(METAL_SUFFIX) and len(name) > len(METAL_SUFFIX):
            out.append(name)
    return out


def find_date_column(columns: Iterable[object]) -> Optional[str]:
    names = [str(c) for c in columns]
    for alias in DATE_COLUMN_ALIASES:
        if alias in names:
            return alias
    lowered = {n.lower().replace(" ", "").replace("_", ""): n for n in names}
    return lowered.get(DATE_COLUMN.lower())


# ---------------- Loader ----------------
def read_source(path: Union[str, Path]) -> pd.DataFrame:
    """Read the raw wide sheet, validate it and coerce column types."""
    path = Path(path)
    if not path.is_file():
        raise LoadError(f"Source file not found: {path}")
    try:
        if path.suffix.lower() == ".csv":
            df = pd.read_csv(path, skiprows=HEADER_SKIP_ROWS)
        else:
            df = pd.read_excel(path, skiprows=HEADER_SKIP_ROWS, engine="openpyxl")
    except Exception as exc:
        raise LoadError(f"Could not read {path.name}: {exc}") from exc

    df.columns = [str(c).strip() for c in df.columns]
    df = drop_duplicate_columns(df)

    date_col = find_date_column(df.columns)
    if date_col is not None and date_col != DATE_COLUMN:
        df = df.rename(columns={date_col: DATE_COLUMN})

    missing = [c for c in (STATION_COLUMN, LONGITUDE_COLUMN, LATITUDE_COLUMN, DATE_COLUMN) if c not in df.columns]
    if missing:
        raise LoadError(f"{path.name} is missing required columns: {', '.join(missing)}")
    if not metal_columns(df.columns):
        raise LoadError(f"{path.name} has no metal columns ending in '{METAL_SUFFIX}'")

    df = coerce_boolean_columns(df)
    df = coerce_str_safe(df, [STATION_COLUMN])
    df = numericize(df, [LONGITUDE_COLUMN, LATITUDE_COLUMN])
    return df


def sample_year(values: pd.Series) -> pd.Series:
    """Four-digit calendar year of each sample date, ``<NA>`` when none can be read.

    Whole numbers between 1000 and 9999 are taken as the year itself. Other
    values are parsed as dates with per-element format inference; text that
    still does not parse falls back to its first standalone four-digit group.
    """
    if is_datetime64_any_dtype(values):
        return values.dt.year.astype("Int64")

    years = pd.Series(pd.NA, index=values.index, dtype="Int64")
    is_number = values.map(
        lambda v: isinstance(v, (int, float, np.number)) and not isinstance(v, (bool, np.bool_))
    ).to_numpy(dtype=bool)
    numbers = pd.to_numeric(values.where(is_number), errors="coerce")
    plain = ((numbers % 1 == 0) & numbers.between(1000, 9999)).to_numpy(dtype=bool)
    years[plain] = numbers[plain].astype("int64").to_numpy()

    text = ~is_number & values.notna().to_numpy(dtype=bool)
    if text.any():
        subset = values[text].reset_index(drop=True)
        found = pd.to_datetime(subset, errors="coerce", format="mixed").dt.year.astype("Int64")
        digits = subset.astype(str).str.extract(YEAR_PATTERN, expand=False)
        found = found.fillna(pd.to_numeric(digits, errors="coerce").astype("Int64"))
        years[text] = found.array
    return years


# ---------------- Reshaper ----------------
def reshape_long(raw: pd.DataFrame) -> pd.DataFrame:
    """Unpivot the per-metal columns into one Measurement row per value."""
    metals = metal_columns(raw.columns)
    df = raw.copy()
    df["Year"] = sample_year(df[DATE_COLUMN])
    id_vars = [c for c in df.columns if c not in metals]
    if df.empty or not metals:
        return pd.DataFrame(columns=MEASUREMENT_COLUMNS)

    long = df.melt(id_vars=id_vars, value_vars=metals, var_name="metal_column", value_name="Concentration")
    long["Metal"] = long["metal_column"].astype(str).str[:METAL_CODE_LENGTH]
    long["Concentration"] = pd.to_numeric(long["Concentration"], errors="coerce")
    long = long.dropna(subset=["Concentration"]).drop(columns=["metal_column"])

    extra = [c for c in long.columns if c not in MEASUREMENT_COLUMNS]
    return long[MEASUREMENT_COLUMNS + extra].reset_index(drop=True)


def missing_by_metal(raw: pd.DataFrame) -> Dict[str, int]:
    out: Dict[str, int] = {}
    for col in metal_columns(raw.columns):
        code = col[:METAL_CODE_LENGTH]
        out[code] = out.get(code, 0) + int(pd.to_numeric(raw[col], errors="coerce").isna().sum())
    return out


@lru_cache(maxsize=4)
def _load_dashboard_data_cached(source: str, mtime: float) -> Dict[str, object]:
    raw = read_source(source)
    measurements = reshape_long(raw)
    dropped = missing_by_metal(raw)
    metals = metal_columns(raw.columns)
    missing_year = int(sample_year(raw[DATE_COLUMN]).isna().sum())
    if missing_year:
        logger.warning("%s: %d sheet rows have no readable sample year", Path(source).name, missing_year)
    logger.info(
        "Loaded %s: %d sheet rows x %d metal columns -> %d measurements (%d missing values dropped)",
        Path(source).name,
        len(raw),
        len(metals),
        len(measurements),
        sum(dropped.values()),
    )
    years = sorted(int(y) for y in measurements["Year"].dropna().unique())
    return {
        "source": source,
        "measurements": measurements,
        "metals": sorted(measurements["Metal"].dropna().unique().tolist()),
        "stations": sorted(str(s) for s in measurements[STATION_COLUMN].dropna().unique()),
        "years": years,
        "raw_rows": int(len(raw)),
        "metal_columns": metals,
        "dq_dropped_rows": int(sum(dropped.values())),
        "dq_dropped_by_metal": dropped,
        "dq_missing_year": missing_year,
    }


def load_dashboard_data(path: Optional[Union[str, Path]] = None) -> Dict[str, object]:
    """Load the long Measurement table once per source file version."""
    source = Path(path) if path is not None else default_data_path()
    if not source.is_file():
        raise LoadError(f"Source file not found: {source}")
    return _load_dashboard_data_cached(str(source.resolve()), source.stat().st_mtime)
