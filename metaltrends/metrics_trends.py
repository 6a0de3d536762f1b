from __future__ import annotations

from dataclasses import asdict
from typing import Any, Dict

import pandas as pd

from metaltrends.charts import facet_histogram, to_vega_spec
from metaltrends.data import MEASUREMENT_COLUMNS
from metaltrends.filters import TrendPolicy
from metaltrends.trends import fit_group_trends

SUMMARY_COLUMNS = ["Metal", "groups", "median_pct_change", "share_decreasing"]


def summarize_by_metal(fits: pd.DataFrame) -> pd.DataFrame:
    if fits.empty:
        return pd.DataFrame(columns=SUMMARY_COLUMNS)
    out = (
        fits.groupby("Metal")
        .agg(
            groups=("pct_change", "size"),
            median_pct_change=("pct_change", "median"),
            share_decreasing=("pct_change", lambda s: float((s < 0).mean())),
        )
        .reset_index()
    )
    return out[SUMMARY_COLUMNS]


def compute_trend_summary(policy: TrendPolicy, data_ctx: Dict[str, Any]) -> Dict[str, Any]:
    table: pd.DataFrame = data_ctx.get("measurements", pd.DataFrame(columns=MEASUREMENT_COLUMNS))
    fits = fit_group_trends(table, year_range=(policy.after_year + 1, None), min_points=policy.min_points)
    fits = fits.drop(columns=["dw_stat", "dw_pvalue"]).sort_values(["Metal", "pct_change"]).reset_index(drop=True)

    chart = facet_histogram(
        fits,
        field="pct_change",
        title="Yearly change (%)",
        extent=policy.clip,
        step=policy.bin_step,
        rule_at=0.0,
    )
    return {
        "policy": asdict(policy),
        "fits": fits,
        "summary": summarize_by_metal(fits),
        "charts": {"pct_change_histogram": to_vega_spec(chart)},
    }
