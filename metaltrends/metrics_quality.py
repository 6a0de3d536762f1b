from __future__ import annotations

from typing import Any, Dict

import altair as alt
import pandas as pd

from metaltrends.charts import chart_frame, to_vega_spec
from metaltrends.config import LATITUDE_COLUMN, LONGITUDE_COLUMN, STATION_COLUMN
from metaltrends.data import MEASUREMENT_COLUMNS

METAL_COLUMNS = ["Metal", "measurements", "non_positive", "dropped_missing", "stations", "first_year", "last_year"]


def compute_data_quality(data_ctx: Dict[str, Any]) -> Dict[str, Any]:
    table: pd.DataFrame = data_ctx.get("measurements", pd.DataFrame(columns=MEASUREMENT_COLUMNS))
    dropped: Dict[str, int] = dict(data_ctx.get("dq_dropped_by_metal") or {})
    payload: Dict[str, Any] = {
        "source": data_ctx.get("source"),
        "row_counts": {
            "sheet_rows": int(data_ctx.get("raw_rows", 0) or 0),
            "metal_columns": len(data_ctx.get("metal_columns") or []),
            "measurements": int(len(table)),
            "dropped_missing": int(data_ctx.get("dq_dropped_rows", 0) or 0),
            "missing_year": int(data_ctx.get("dq_missing_year", 0) or 0),
            "non_positive": int((table["Concentration"] <= 0).sum()) if not table.empty else 0,
        },
        "metals": pd.DataFrame(columns=METAL_COLUMNS),
        "stations_missing_coordinates": [],
        "charts": {},
    }
    if table.empty:
        return payload

    per_metal = (
        table.groupby("Metal")
        .agg(
            measurements=("Concentration", "size"),
            non_positive=("Concentration", lambda s: int((s <= 0).sum())),
            stations=(STATION_COLUMN, "nunique"),
            first_year=("Year", "min"),
            last_year=("Year", "max"),
        )
        .reset_index()
    )
    per_metal["dropped_missing"] = per_metal["Metal"].map(lambda m: int(dropped.get(m, 0)))
    payload["metals"] = per_metal[METAL_COLUMNS]

    no_coords = table[table[LONGITUDE_COLUMN].isna() | table[LATITUDE_COLUMN].isna()]
    payload["stations_missing_coordinates"] = sorted(str(s) for s in no_coords[STATION_COLUMN].dropna().unique())

    coverage = table.dropna(subset=["Year"]).groupby(["Metal", "Year"]).size().reset_index(name="measurements")
    heat = (
        alt.Chart(chart_frame(coverage, ["Metal", "Year", "measurements"]))
        .mark_rect()
        .encode(
            x=alt.X("Year:O", title="Year"),
            y=alt.Y("Metal:N", title="Metal"),
            color=alt.Color("measurements:Q", title="Measurements", scale=alt.Scale(scheme="blues")),
            tooltip=["Metal", "Year", "measurements"],
        )
    )
    payload["charts"]["year_coverage"] = to_vega_spec(heat)
    return payload
