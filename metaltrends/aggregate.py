from __future__ import annotations

from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from metaltrends.config import STATION_COLUMN

YearRange = Tuple[Optional[int], Optional[int]]


def select(
    table: pd.DataFrame,
    *,
    metal: Optional[str] = None,
    stations: Optional[Iterable[str]] = None,
    year_range: Optional[YearRange] = None,
    positive_only: bool = False,
) -> pd.DataFrame:
    """Return the rows matching every given criterion.

    ``None`` criteria are not applied. ``year_range`` is inclusive and either
    bound may be ``None``. An empty ``stations`` collection selects nothing.
    """
    if table.empty:
        return table.copy()
    mask = pd.Series(True, index=table.index)
    if metal is not None:
        mask &= table["Metal"] == metal
    if stations is not None:
        mask &= table[STATION_COLUMN].astype(str).isin(set(str(s) for s in stations))
    if year_range is not None:
        lo, hi = year_range
        year = table["Year"]
        if lo is not None:
            mask &= (year >= lo).fillna(False).astype(bool)
        if hi is not None:
            mask &= (year <= hi).fillna(False).astype(bool)
    if positive_only:
        mask &= table["Concentration"] > 0
    return table[mask].copy()


def log_concentration(values: pd.Series) -> pd.Series:
    """Natural log with non-positive values masked to NaN."""
    numeric = pd.to_numeric(values, errors="coerce").astype(float)
    return np.log(numeric.where(numeric > 0))


def aggregate(subset: pd.DataFrame, keys: Sequence[str], *, first: Sequence[str] = ()) -> pd.DataFrame:
    """Mean log concentration and valid sample count per group of ``keys``."""
    keys = list(keys)
    columns: List[str] = keys + list(first) + ["mean_log_conc", "n_samples"]
    if subset.empty:
        return pd.DataFrame(columns=columns)

    df = subset.assign(log_conc=log_concentration(subset["Concentration"]))
    spec = {"mean_log_conc": ("log_conc", "mean"), "n_samples": ("log_conc", "count")}
    for col in first:
        spec[col] = (col, "first")
    out = df.groupby(keys, sort=True).agg(**spec).reset_index()
    out = out.dropna(subset=["mean_log_conc"])
    out["n_samples"] = out["n_samples"].astype(int)
    return out[columns].reset_index(drop=True)
