from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from metaltrends.config import (
    BAR_ORDERS,
    DEFAULT_STATION,
    DEFAULT_YEAR_SPAN,
    MIN_TREND_POINTS,
    PVALUE_BIN_WIDTH,
    SERIAL_AFTER_YEAR,
    TREND_AFTER_YEAR,
    TREND_CLIP,
    TREND_METHODS,
)


@dataclass(frozen=True)
class TimeSeriesParams:
    metal: Optional[str] = None
    stations: Tuple[str, ...] = ()
    year_range: Optional[Tuple[int, int]] = None
    trend_method: str = "Log-linear"
    show_interval: bool = False


@dataclass(frozen=True)
class MapParams:
    metal: Optional[str] = None
    year: Optional[int] = None
    bar_order: str = "concentration"


@dataclass(frozen=True)
class TrendPolicy:
    after_year: int = TREND_AFTER_YEAR
    min_points: int = MIN_TREND_POINTS
    clip: Tuple[float, float] = TREND_CLIP
    bin_step: float = 2.5


@dataclass(frozen=True)
class SerialPolicy:
    after_year: int = SERIAL_AFTER_YEAR
    min_points: int = MIN_TREND_POINTS
    bin_width: float = PVALUE_BIN_WIDTH
    alternative: str = "greater"


def _as_int(value: object) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None


def _as_str_tuple(values: Optional[Iterable[object]]) -> Tuple[str, ...]:
    if not values:
        return ()
    if isinstance(values, str):
        values = [values]
    out: List[str] = []
    for v in values:
        if v is None:
            continue
        s = str(v)
        if s not in out:
            out.append(s)
    return tuple(out)


def _pick(value: Optional[str], options: Sequence[str], default: Optional[str]) -> Optional[str]:
    if value is not None and str(value) in options:
        return str(value)
    return default


def default_station(stations: Sequence[str]) -> Tuple[str, ...]:
    if DEFAULT_STATION is not None and DEFAULT_STATION in stations:
        return (DEFAULT_STATION,)
    return (stations[0],) if stations else ()


def default_year_range(years: Sequence[int]) -> Optional[Tuple[int, int]]:
    if not years:
        return None
    hi = max(years)
    lo = max(min(years), hi - DEFAULT_YEAR_SPAN + 1)
    return lo, hi


def normalize_time_series_params(raw: Dict[str, Any], *, data_ctx: Dict[str, Any]) -> TimeSeriesParams:
    metals: List[str] = list(data_ctx.get("metals") or [])
    stations: List[str] = list(data_ctx.get("stations") or [])
    years: List[int] = list(data_ctx.get("years") or [])

    metal = _pick(raw.get("metal"), metals, metals[0] if metals else None)

    if "stations" in raw:
        selected = tuple(s for s in _as_str_tuple(raw.get("stations")) if s in stations)
    else:
        selected = default_station(stations)

    year_range = default_year_range(years)
    requested = raw.get("year_range")
    if requested is not None and years:
        try:
            lo, hi = (_as_int(v) for v in requested)
        except (TypeError, ValueError):
            lo, hi = None, None
        if lo is not None and hi is not None:
            lo, hi = sorted((lo, hi))
            year_range = (max(lo, min(years)), min(hi, max(years)))

    trend_method = _pick(raw.get("trend_method"), TREND_METHODS, TREND_METHODS[0])
    show_interval = bool(raw.get("show_interval", False))
    return TimeSeriesParams(
        metal=metal,
        stations=selected,
        year_range=year_range,
        trend_method=trend_method or TREND_METHODS[0],
        show_interval=show_interval,
    )


def normalize_map_params(raw: Dict[str, Any], *, data_ctx: Dict[str, Any]) -> MapParams:
    metals: List[str] = list(data_ctx.get("metals") or [])
    years: List[int] = list(data_ctx.get("years") or [])

    metal = _pick(raw.get("metal"), metals, metals[0] if metals else None)
    year = _as_int(raw.get("year"))
    if year is None or not years or not (min(years) <= year <= max(years)):
        year = max(years) if years else None
    bar_order = _pick(raw.get("bar_order"), BAR_ORDERS, BAR_ORDERS[0])
    return MapParams(metal=metal, year=year, bar_order=bar_order or BAR_ORDERS[0])
