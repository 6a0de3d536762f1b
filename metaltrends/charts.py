from __future__ import annotations

from typing import Any, Dict, Sequence

import altair as alt
import pandas as pd

alt.data_transformers.disable_max_rows()


def to_vega_spec(chart: alt.TopLevelMixin) -> Dict[str, Any]:
    """Convert an Altair chart into a Vega-Lite spec dict (JSON-serializable)."""
    return chart.to_dict()


def chart_frame(df: pd.DataFrame, columns: Sequence[str]) -> pd.DataFrame:
    """Frame with just ``columns`` and no pandas extension dtypes, ready for Altair."""
    if df.empty:
        return pd.DataFrame(columns=list(columns))
    out = df[list(columns)].copy()
    for col in out.columns:
        if pd.api.types.is_datetime64_any_dtype(out[col]):
            continue
        if isinstance(out[col].dtype, pd.api.extensions.ExtensionDtype):
            out[col] = out[col].astype(object).where(out[col].notna(), None)
    return out


def facet_histogram(
    df: pd.DataFrame,
    *,
    field: str,
    title: str,
    extent: Sequence[float],
    step: float,
    rule_at: float | None = None,
    columns: int = 3,
) -> alt.FacetChart:
    """Histogram of ``field`` faceted by Metal, x clipped to ``extent``."""
    lo, hi = float(extent[0]), float(extent[1])
    base = alt.Chart().transform_filter(
        (alt.datum[field] >= lo) & (alt.datum[field] <= hi)
    )
    bars = base.mark_bar(clip=True).encode(
        x=alt.X(f"{field}:Q", bin=alt.Bin(extent=[lo, hi], step=step), title=title, scale=alt.Scale(domain=[lo, hi])),
        y=alt.Y("count():Q", title="Groups"),
        tooltip=[alt.Tooltip("count():Q", title="Groups")],
    )
    layers = [bars]
    if rule_at is not None:
        layers.append(alt.Chart().mark_rule(color="#dc2626", strokeDash=[4, 4]).encode(x=alt.datum(rule_at)))
    return (
        alt.layer(*layers, data=chart_frame(df, ["Metal", field]))
        .properties(width=220, height=160)
        .facet(facet=alt.Facet("Metal:N", title="Metal"), columns=columns)
    )
