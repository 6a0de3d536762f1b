from __future__ import annotations

from dataclasses import asdict
from typing import Any, Dict

import pandas as pd

from metaltrends.charts import facet_histogram, to_vega_spec
from metaltrends.data import MEASUREMENT_COLUMNS
from metaltrends.filters import SerialPolicy
from metaltrends.trends import fit_group_trends

SIGNIFICANCE = 0.05
SUMMARY_COLUMNS = ["Metal", "groups", "tested", "share_significant"]


def summarize_pvalues(fits: pd.DataFrame) -> pd.DataFrame:
    if fits.empty:
        return pd.DataFrame(columns=SUMMARY_COLUMNS)
    out = (
        fits.groupby("Metal")
        .agg(
            groups=("dw_pvalue", "size"),
            tested=("dw_pvalue", "count"),
            share_significant=("dw_pvalue", lambda s: float((s.dropna() < SIGNIFICANCE).mean()) if s.notna().any() else None),
        )
        .reset_index()
    )
    return out[SUMMARY_COLUMNS]


def compute_serial_dependence(policy: SerialPolicy, data_ctx: Dict[str, Any]) -> Dict[str, Any]:
    table: pd.DataFrame = data_ctx.get("measurements", pd.DataFrame(columns=MEASUREMENT_COLUMNS))
    fits = fit_group_trends(
        table,
        year_range=(policy.after_year + 1, None),
        min_points=policy.min_points,
        serial_test=True,
        alternative=policy.alternative,
    )
    fits = fits.sort_values(["Metal", "dw_pvalue"]).reset_index(drop=True)

    chart = facet_histogram(
        fits.dropna(subset=["dw_pvalue"]),
        field="dw_pvalue",
        title="Durbin-Watson p-value",
        extent=(0.0, 1.0),
        step=policy.bin_width,
    )
    return {
        "policy": asdict(policy),
        "fits": fits,
        "summary": summarize_pvalues(fits),
        "charts": {"pvalue_histogram": to_vega_spec(chart)},
    }
