from __future__ import annotations

from dataclasses import asdict
from typing import Any, Dict, List

import altair as alt
import pandas as pd

from metaltrends.aggregate import aggregate, select
from metaltrends.charts import chart_frame, to_vega_spec
from metaltrends.config import LATITUDE_COLUMN, LONGITUDE_COLUMN, STATION_COLUMN
from metaltrends.data import MEASUREMENT_COLUMNS
from metaltrends.filters import MapParams

SNAPSHOT_COLUMNS = [STATION_COLUMN, LONGITUDE_COLUMN, LATITUDE_COLUMN, "mean_log_conc", "n_samples", "rank"]


def station_snapshot(table: pd.DataFrame, *, metal, year) -> pd.DataFrame:
    """Mean log concentration per station for one metal and one year."""
    if year is None:
        return pd.DataFrame(columns=SNAPSHOT_COLUMNS)
    subset = select(table, metal=metal, year_range=(year, year), positive_only=True)
    snap = aggregate(subset, [STATION_COLUMN], first=[LONGITUDE_COLUMN, LATITUDE_COLUMN])
    if snap.empty:
        return pd.DataFrame(columns=SNAPSHOT_COLUMNS)
    snap = snap.sort_values(["mean_log_conc", STATION_COLUMN], ascending=[False, True]).reset_index(drop=True)
    snap.insert(len(snap.columns), "rank", range(1, len(snap) + 1))
    return snap[SNAPSHOT_COLUMNS]


def bar_station_order(snap: pd.DataFrame, bar_order: str) -> List[str]:
    if bar_order == "latitude":
        ordered = snap.sort_values([LATITUDE_COLUMN, STATION_COLUMN], ascending=[False, True], na_position="last")
    else:
        ordered = snap.sort_values("rank")
    return [str(s) for s in ordered[STATION_COLUMN].tolist()]


def compute_map(params: MapParams, data_ctx: Dict[str, Any]) -> Dict[str, Any]:
    table: pd.DataFrame = data_ctx.get("measurements", pd.DataFrame(columns=MEASUREMENT_COLUMNS))
    snap = station_snapshot(table, metal=params.metal, year=params.year)
    frame = chart_frame(snap, SNAPSHOT_COLUMNS)
    mappable = frame.dropna(subset=[LONGITUDE_COLUMN, LATITUDE_COLUMN])

    tooltip = [
        alt.Tooltip(f"{STATION_COLUMN}:N", title="Station"),
        alt.Tooltip("mean_log_conc:Q", title="Mean log conc.", format=".3f"),
        alt.Tooltip("n_samples:Q", title="Samples"),
        alt.Tooltip("rank:Q", title="Rank"),
    ]
    geo = (
        alt.Chart(mappable)
        .mark_circle(opacity=0.85, stroke="#111827", strokeWidth=0.5)
        .encode(
            longitude=f"{LONGITUDE_COLUMN}:Q",
            latitude=f"{LATITUDE_COLUMN}:Q",
            color=alt.Color("mean_log_conc:Q", title="Mean log conc.", scale=alt.Scale(scheme="viridis")),
            size=alt.Size("mean_log_conc:Q", scale=alt.Scale(zero=False, range=[40, 400]), legend=None),
            tooltip=tooltip,
        )
        .project(type="mercator")
        .properties(height=420)
    )
    bars = (
        alt.Chart(frame)
        .mark_bar()
        .encode(
            x=alt.X("mean_log_conc:Q", title="Mean log concentration"),
            y=alt.Y(f"{STATION_COLUMN}:N", title="Station", sort=bar_station_order(snap, params.bar_order)),
            color=alt.Color("mean_log_conc:Q", scale=alt.Scale(scheme="viridis"), legend=None),
            tooltip=tooltip,
        )
        .properties(height=alt.Step(18))
    )
    return {
        "params": asdict(params),
        "stations": snap,
        "charts": {"station_map": to_vega_spec(geo), "station_ranking": to_vega_spec(bars)},
    }
