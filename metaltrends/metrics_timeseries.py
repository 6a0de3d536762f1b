from __future__ import annotations

from dataclasses import asdict
from typing import Any, Dict, List

import altair as alt
import numpy as np
import pandas as pd

from metaltrends.aggregate import log_concentration, select
from metaltrends.charts import chart_frame, to_vega_spec
from metaltrends.config import DATE_COLUMN, STATION_COLUMN
from metaltrends.data import MEASUREMENT_COLUMNS
from metaltrends.filters import TimeSeriesParams
from metaltrends.trends import BAND_COLUMNS, linear_band, loess_band

POINT_COLUMNS = [STATION_COLUMN, DATE_COLUMN, "Year", "Concentration", "log_conc"]
FIT_COLUMNS = [STATION_COLUMN] + BAND_COLUMNS
GRID_POINTS = 50


def station_fit(points: pd.DataFrame, *, method: str) -> pd.DataFrame:
    x = points["Year"].astype(float).to_numpy()
    y = points["log_conc"].astype(float).to_numpy()
    if x.size == 0 or x.min() == x.max():
        return pd.DataFrame(columns=BAND_COLUMNS)
    grid = np.linspace(x.min(), x.max(), GRID_POINTS)
    if method == "Smooth":
        return loess_band(x, y, grid)
    return linear_band(x, y, grid)


def compute_time_series(params: TimeSeriesParams, data_ctx: Dict[str, Any]) -> Dict[str, Any]:
    table: pd.DataFrame = data_ctx.get("measurements", pd.DataFrame(columns=MEASUREMENT_COLUMNS))
    subset = select(
        table,
        metal=params.metal,
        stations=params.stations,
        year_range=params.year_range,
        positive_only=True,
    )
    subset = subset.dropna(subset=["Year"])
    points = subset.assign(log_conc=log_concentration(subset["Concentration"]))[POINT_COLUMNS]
    points = points.sort_values([STATION_COLUMN, DATE_COLUMN]).reset_index(drop=True)

    fits: List[pd.DataFrame] = []
    for station, grp in points.groupby(STATION_COLUMN, sort=True):
        band = station_fit(grp, method=params.trend_method).dropna(subset=["fit"])
        if not band.empty:
            fits.append(band.assign(**{STATION_COLUMN: station})[FIT_COLUMNS])
    fit = pd.concat(fits, ignore_index=True) if fits else pd.DataFrame(columns=FIT_COLUMNS)

    title = f"{params.metal or ''} (dry weight)".strip()
    scatter = (
        alt.Chart(chart_frame(points, POINT_COLUMNS))
        .mark_circle(size=45, opacity=0.7)
        .encode(
            x=alt.X("Year:Q", title="Year", axis=alt.Axis(format="d", grid=False)),
            y=alt.Y("log_conc:Q", title=f"log concentration, {title}", axis=alt.Axis(gridDash=[4, 4])),
            color=alt.Color(f"{STATION_COLUMN}:N", title="Station"),
            tooltip=[
                alt.Tooltip(f"{STATION_COLUMN}:N", title="Station"),
                alt.Tooltip(f"{DATE_COLUMN}:T", title="Sampled"),
                alt.Tooltip("Concentration:Q", format=",.3f"),
                alt.Tooltip("log_conc:Q", title="log", format=".3f"),
            ],
        )
    )
    layers: List[alt.Chart] = []
    fit_frame = chart_frame(fit, FIT_COLUMNS)
    if params.show_interval:
        layers.append(
            alt.Chart(fit_frame)
            .mark_area(opacity=0.18)
            .encode(x="x:Q", y="lower:Q", y2="upper:Q", color=alt.Color(f"{STATION_COLUMN}:N", legend=None))
        )
    layers.append(scatter)
    layers.append(
        alt.Chart(fit_frame)
        .mark_line(strokeWidth=2)
        .encode(x="x:Q", y="fit:Q", color=alt.Color(f"{STATION_COLUMN}:N", legend=None))
    )
    chart = alt.layer(*layers).properties(height=360)

    return {
        "params": asdict(params),
        "points": points,
        "fit": fit,
        "charts": {"time_series": to_vega_spec(chart)},
    }
