import logging
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

import pandas as pd
import streamlit as st

from metaltrends.config import BAR_ORDERS, TREND_METHODS, default_data_path
from metaltrends.data import LoadError, load_dashboard_data
from metaltrends.metrics_quality import compute_data_quality
from metaltrends.views import ViewController, build_controllers

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


# ---------- UI / layout helpers ----------
def inject_base_styles():
    if st.session_state.get("_base_css_injected"):
        return
    st.markdown(
        """
        <style>
        .app-top-bar {padding: 6px 0 4px;border-bottom: 1px solid #e5e7eb;margin-bottom: 10px;}
        .app-top-bar .breadcrumb {color: #6b7280;font-size: 0.9rem;margin-bottom: 2px;}
        .app-top-bar .page-title {font-size: 1.4rem;font-weight: 700;color: #111827;}
        .card {border: 1px solid #e5e7eb;border-radius: 12px;padding: 16px;background: #ffffff;
               box-shadow: 0 1px 2px rgba(0,0,0,0.04); margin-bottom: 12px;}
        .card-title {font-weight: 600;font-size: 1.0rem;color: #111827;margin-bottom: 8px;}
        .chip-row {display: flex;flex-wrap: wrap;gap: 6px;margin-top: 6px;}
        .chip {background: #f3f4f6;border: 1px solid #e5e7eb;border-radius: 14px;padding: 4px 10px;font-size: 0.85rem;color: #374151;}
        </style>
        """,
        unsafe_allow_html=True,
    )
    st.session_state["_base_css_injected"] = True


@contextmanager
def card(title: str):
    container = st.container()
    container.markdown(f"<div class='card'><div class='card-title'>{title}</div>", unsafe_allow_html=True)
    body = container.container()
    with body:
        yield body
    container.markdown("</div>", unsafe_allow_html=True)


def format_chips(chips: List[str]) -> str:
    return "".join([f"<span class='chip'>{txt}</span>" for txt in chips])


def render_page_header(title: str, chips: List[str], export_df: Optional[pd.DataFrame] = None, export_name: str = "export.csv"):
    inject_base_styles()
    c1, c2 = st.columns([8, 2])
    with c1:
        st.markdown(
            f"<div class='app-top-bar'><div class='breadcrumb'>Biota metals / {title}</div><div class='page-title'>{title}</div></div>",
            unsafe_allow_html=True,
        )
    with c2:
        if export_df is not None and not export_df.empty:
            st.download_button(
                "Export CSV",
                data=export_df.to_csv(index=False).encode("utf-8"),
                file_name=export_name,
                mime="text/csv",
            )
    if chips:
        st.markdown(f"<div class='chip-row'>{format_chips(chips)}</div>", unsafe_allow_html=True)


def render_spec(spec: Dict[str, Any]):
    st.vega_lite_chart(spec=spec, use_container_width=True)


# ---------- Data + controllers ----------
st.set_page_config(page_title="Biota Metal Trends", layout="wide")
inject_base_styles()
st.title("Heavy Metals in Biota: Exploratory Dashboard")
st.caption("Concentrations on a dry-weight basis; all statistics use natural-log concentrations above zero.")

try:
    data_ctx = load_dashboard_data()
except LoadError as exc:
    logger.exception("Loading measurements failed")
    st.error(f"Could not load measurements: {exc}. Place the spreadsheet at {default_data_path()}.")
    st.stop()

if st.session_state.get("_controllers_ctx") is not data_ctx:
    st.session_state["_controllers"] = build_controllers(data_ctx)
    st.session_state["_controllers_ctx"] = data_ctx
controllers: Dict[str, ViewController] = st.session_state["_controllers"]

metals: List[str] = data_ctx["metals"]
stations: List[str] = data_ctx["stations"]
years: List[int] = data_ctx["years"]


def run_view(controller: ViewController, render, **changes):
    unsubscribe = controller.subscribe(render)
    try:
        if changes:
            controller.update(**changes)
        else:
            controller.refresh()
    finally:
        unsubscribe()


# ----- Sidebar: navigation -----
with st.sidebar:
    st.markdown("### Navigate")
    nav_choice = st.radio(
        "Navigate",
        ["Time series", "Trend summary", "Serial dependence", "Map", "Data quality"],
        index=0,
        label_visibility="collapsed",
    )
    st.markdown("---")
    st.caption(f"{len(data_ctx['measurements']):,} measurements · {len(stations)} stations · {len(metals)} metals")


# ----- Page renderers -----
def render_time_series_page():
    ctl = controllers["time_series"]
    current = ctl.params
    with card("Controls"):
        c1, c2 = st.columns([1, 3])
        with c1:
            metal = st.selectbox("Metal", metals, index=metals.index(current.metal) if current.metal in metals else 0)
        with c2:
            selected = st.multiselect("Stations", stations, default=list(current.stations))
        if len(years) > 1:
            lo, hi = current.year_range or (min(years), max(years))
            year_range = st.slider("Years", min_value=min(years), max_value=max(years), value=(lo, hi), step=1)
        else:
            year_range = (years[0], years[0]) if years else None
        c3, c4 = st.columns(2)
        with c3:
            method = st.radio("Trend", TREND_METHODS, index=TREND_METHODS.index(current.trend_method), horizontal=True)
        with c4:
            show_interval = st.checkbox("Show 95% interval", value=current.show_interval)

    def render(payload):
        p = payload["params"]
        chips = [f"Metal: {p['metal']}", f"Stations: {len(p['stations'])}", f"Trend: {p['trend_method']}"]
        if p["year_range"]:
            chips.append(f"Years: {p['year_range'][0]}–{p['year_range'][1]}")
        render_page_header("Time series", chips, export_df=payload["points"], export_name="time_series.csv")
        with card("Log concentration by year"):
            if payload["points"].empty:
                st.info("No positive measurements for the selected metal, stations and years.")
            render_spec(payload["charts"]["time_series"])

    run_view(
        ctl,
        render,
        metal=metal,
        stations=tuple(selected),
        year_range=tuple(year_range) if year_range else None,
        trend_method=method,
        show_interval=show_interval,
    )


def render_trend_summary_page():
    def render(payload):
        policy = payload["policy"]
        chips = [
            f"Years > {policy['after_year']}",
            f"≥ {policy['min_points']} years per station",
            f"x clipped to {policy['clip'][0]:.0f}..{policy['clip'][1]:.0f}%",
        ]
        render_page_header("Trend summary", chips, export_df=payload["fits"], export_name="trend_summary.csv")
        with card("Percent yearly change by metal"):
            if payload["fits"].empty:
                st.info("No station/metal group has enough years for a trend.")
            render_spec(payload["charts"]["pct_change_histogram"])
        left, right = st.columns([1, 2])
        with left:
            with card("Summary"):
                st.dataframe(payload["summary"], hide_index=True, use_container_width=True)
        with right:
            with card("Station trends"):
                st.dataframe(payload["fits"], hide_index=True, use_container_width=True)

    run_view(controllers["trend_summary"], render)


def render_serial_dependence_page():
    def render(payload):
        policy = payload["policy"]
        chips = [
            f"Years > {policy['after_year']}",
            f"≥ {policy['min_points']} years per station",
            f"Alternative: {policy['alternative']}",
        ]
        render_page_header("Serial dependence", chips, export_df=payload["fits"], export_name="serial_dependence.csv")
        with card("Durbin-Watson p-values of trend residuals"):
            if payload["fits"].empty:
                st.info("No station/metal group has enough years for a trend.")
            render_spec(payload["charts"]["pvalue_histogram"])
        with card("Summary"):
            st.dataframe(payload["summary"], hide_index=True, use_container_width=True)
        st.caption("Small p-values suggest adjacent-year residuals are correlated, i.e. the linear trend misses temporal structure.")

    run_view(controllers["serial_dependence"], render)


def render_map_page():
    ctl = controllers["map"]
    current = ctl.params
    with card("Controls"):
        c1, c2, c3 = st.columns(3)
        with c1:
            metal = st.selectbox("Metal", metals, index=metals.index(current.metal) if current.metal in metals else 0, key="map_metal")
        with c2:
            year = st.selectbox("Year", years[::-1], index=years[::-1].index(current.year) if current.year in years else 0)
        with c3:
            bar_order = st.radio("Order bars by", BAR_ORDERS, index=BAR_ORDERS.index(current.bar_order), horizontal=True)

    def render(payload):
        p = payload["params"]
        render_page_header(
            "Map",
            [f"Metal: {p['metal']}", f"Year: {p['year']}"],
            export_df=payload["stations"],
            export_name="station_snapshot.csv",
        )
        if payload["stations"].empty:
            st.info("No positive measurements for the selected metal and year.")
        left, right = st.columns([3, 2])
        with left:
            with card("Mean log concentration by station"):
                render_spec(payload["charts"]["station_map"])
        with right:
            with card("Station ranking"):
                render_spec(payload["charts"]["station_ranking"])

    run_view(ctl, render, metal=metal, year=year, bar_order=bar_order)


def render_data_quality_page():
    payload = compute_data_quality(data_ctx)
    render_page_header("Data quality", [f"Source: {payload['source']}"], export_df=payload["metals"], export_name="data_quality.csv")
    counts = payload["row_counts"]
    cols = st.columns(6)
    cols[0].metric("Sheet rows", f"{counts['sheet_rows']:,}")
    cols[1].metric("Metal columns", counts["metal_columns"])
    cols[2].metric("Measurements", f"{counts['measurements']:,}")
    cols[3].metric("Dropped (missing)", f"{counts['dropped_missing']:,}")
    cols[4].metric("Non-positive", f"{counts['non_positive']:,}", help="Kept in the table; excluded wherever a log is taken.")
    cols[5].metric("No sample year", f"{counts['missing_year']:,}", help="Sheet rows whose SampleDate holds no readable year; absent from every view.")
    with card("Per metal"):
        st.dataframe(payload["metals"], hide_index=True, use_container_width=True)
    if "year_coverage" in payload["charts"]:
        with card("Measurements per year"):
            render_spec(payload["charts"]["year_coverage"])
    if payload["stations_missing_coordinates"]:
        st.warning("Stations without coordinates: " + ", ".join(payload["stations_missing_coordinates"]))


if nav_choice == "Time series":
    render_time_series_page()
elif nav_choice == "Trend summary":
    render_trend_summary_page()
elif nav_choice == "Serial dependence":
    render_serial_dependence_page()
elif nav_choice == "Map":
    render_map_page()
else:
    render_data_quality_page()
