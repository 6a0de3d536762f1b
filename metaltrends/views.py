"""Parameter store -> pure recompute -> render subscribers.

Each dashboard view owns one :class:`ViewController`. Controllers share only
the read-only data context; params and the last payload are private.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar

from metaltrends.filters import (
    MapParams,
    SerialPolicy,
    TimeSeriesParams,
    TrendPolicy,
    normalize_map_params,
    normalize_time_series_params,
)
from metaltrends.metrics_map import compute_map
from metaltrends.metrics_serial import compute_serial_dependence
from metaltrends.metrics_timeseries import compute_time_series
from metaltrends.metrics_trends import compute_trend_summary

logger = logging.getLogger(__name__)

P = TypeVar("P")
Payload = Dict[str, Any]
Compute = Callable[[P, Dict[str, Any]], Payload]
Render = Callable[[Payload], None]
Normalize = Callable[[P, Dict[str, Any]], P]

IDLE = "idle"
RECOMPUTING = "recomputing"


class ViewController(Generic[P]):
    def __init__(
        self,
        name: str,
        compute: Compute,
        data_ctx: Dict[str, Any],
        params: P,
        *,
        normalize: Optional[Normalize] = None,
    ) -> None:
        self.name = name
        self.data_ctx = data_ctx
        self._compute = compute
        self._normalize = normalize
        self._params: P = self._normalized(params)
        self._payload: Optional[Payload] = None
        self._subscribers: List[Render] = []
        self._pending: List[P] = []
        self.state = IDLE

    @property
    def params(self) -> P:
        return self._params

    @property
    def payload(self) -> Optional[Payload]:
        return self._payload

    def _normalized(self, params: P) -> P:
        return self._normalize(params, self.data_ctx) if self._normalize else params

    def subscribe(self, render: Render) -> Callable[[], None]:
        self._subscribers.append(render)

        def unsubscribe() -> None:
            if render in self._subscribers:
                self._subscribers.remove(render)

        return unsubscribe

    def update(self, **changes: Any) -> Optional[Payload]:
        params = replace(self._params, **changes) if changes else self._params
        return self.update_params(params)

    def update_params(self, params: P) -> Optional[Payload]:
        """Store ``params``, recompute if they changed and notify subscribers.

        Calls made from inside a render callback are queued; once the current
        round finishes only the most recent of them is applied.
        """
        self._pending.append(params)
        if self.state != IDLE:
            return self._payload
        while self._pending:
            params = self._normalized(self._pending[-1])
            self._pending.clear()
            if self._payload is None or params != self._params:
                self.state = RECOMPUTING
                try:
                    payload = self._compute(params, self.data_ctx)
                finally:
                    self.state = IDLE
                self._params, self._payload = params, payload
                logger.debug("%s recomputed with %s", self.name, params)
            self._notify()
        return self._payload

    def refresh(self) -> Optional[Payload]:
        return self.update_params(self._params)

    def _notify(self) -> None:
        payload = self._payload
        if payload is None:
            return
        self.state = RECOMPUTING
        try:
            for render in list(self._subscribers):
                render(payload)
        finally:
            self.state = IDLE


def _normalize_time_series(params: TimeSeriesParams, data_ctx: Dict[str, Any]) -> TimeSeriesParams:
    raw = {
        "metal": params.metal,
        "year_range": params.year_range,
        "trend_method": params.trend_method,
        "show_interval": params.show_interval,
    }
    if params.stations:
        raw["stations"] = params.stations
    return normalize_time_series_params(raw, data_ctx=data_ctx)


def _normalize_map(params: MapParams, data_ctx: Dict[str, Any]) -> MapParams:
    return normalize_map_params(
        {"metal": params.metal, "year": params.year, "bar_order": params.bar_order}, data_ctx=data_ctx
    )


def build_controllers(data_ctx: Dict[str, Any]) -> Dict[str, ViewController]:
    """One controller per dashboard view, all sharing ``data_ctx``."""
    return {
        "time_series": ViewController(
            "time_series", compute_time_series, data_ctx, TimeSeriesParams(), normalize=_normalize_time_series
        ),
        "trend_summary": ViewController("trend_summary", compute_trend_summary, data_ctx, TrendPolicy()),
        "serial_dependence": ViewController("serial_dependence", compute_serial_dependence, data_ctx, SerialPolicy()),
        "map": ViewController("map", compute_map, data_ctx, MapParams(), normalize=_normalize_map),
    }
