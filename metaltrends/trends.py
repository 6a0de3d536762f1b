"""Trend estimation over yearly mean log concentrations.

Slopes come from ordinary least squares of ``mean_log_conc ~ Year`` and are
reported as percent yearly change ``(exp(slope) - 1) * 100``. Residual serial
correlation is checked with the Durbin-Watson statistic; its p-value is the
exact null probability for the regression design, evaluated with Imhof's
inversion formula.
"""

from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import statsmodels.api as sm
from scipy import integrate
from statsmodels.stats.stattools import durbin_watson

from metaltrends.aggregate import aggregate, select
from metaltrends.config import CONFIDENCE_ALPHA, LOESS_DEGREE, LOESS_FRAC, MIN_TREND_POINTS, STATION_COLUMN

logger = logging.getLogger(__name__)

TREND_COLUMNS = [STATION_COLUMN, "Metal", "n_years", "slope", "intercept", "pct_change", "dw_stat", "dw_pvalue"]
BAND_COLUMNS = ["x", "fit", "lower", "upper"]


@dataclass(frozen=True)
class TrendFit:
    n_years: int
    slope: float
    intercept: float
    pct_change: float
    dw_stat: Optional[float] = None
    dw_pvalue: Optional[float] = None


def percent_change(slope: float) -> float:
    """Yearly percent change implied by a slope in natural-log space."""
    return (math.exp(slope) - 1.0) * 100.0


def _dw_matrix(n: int) -> np.ndarray:
    a = 2.0 * np.eye(n) - np.eye(n, k=1) - np.eye(n, k=-1)
    a[0, 0] = a[-1, -1] = 1.0
    return a


def _imhof_prob_below_zero(lam: np.ndarray) -> float:
    """P(sum(lam_j * chi2_1) < 0) by Imhof (1961)."""
    if lam.size == 0:
        return 0.5
    if (lam >= 0).all():
        return 0.0
    if (lam <= 0).all():
        return 1.0

    def integrand(u: float) -> float:
        if u == 0.0:
            return 0.5 * float(lam.sum())
        theta = 0.5 * np.arctan(lam * u).sum()
        rho = math.exp(0.25 * np.log1p((lam * u) ** 2).sum())
        return math.sin(theta) / (u * rho)

    value, _ = integrate.quad(integrand, 0.0, np.inf, limit=200)
    return 0.5 - value / math.pi


def durbin_watson_pvalue(dw: float, exog: np.ndarray, alternative: str = "greater") -> float:
    """Exact p-value of a Durbin-Watson statistic for the design ``exog``.

    ``"greater"`` tests for positive first-order autocorrelation (small DW),
    ``"less"`` for negative, ``"two-sided"`` for either.
    """
    exog = np.asarray(exog, dtype=float)
    n = exog.shape[0]
    m = np.eye(n) - exog @ np.linalg.pinv(exog)
    q = m @ (_dw_matrix(n) - dw * np.eye(n)) @ m
    lam = np.linalg.eigvalsh((q + q.T) / 2.0)
    lam = lam[np.abs(lam) > 1e-10]
    below = min(1.0, max(0.0, _imhof_prob_below_zero(lam)))
    if alternative == "greater":
        return below
    if alternative == "less":
        return 1.0 - below
    if alternative == "two-sided":
        return min(1.0, 2.0 * min(below, 1.0 - below))
    raise ValueError(f"Unknown alternative: {alternative}")


def durbin_watson_test(
    resid: Sequence[float], exog: np.ndarray, alternative: str = "greater"
) -> Tuple[Optional[float], Optional[float]]:
    resid = np.asarray(resid, dtype=float)
    # A perfect fit leaves no residual variance to test.
    if not np.any(np.abs(resid) > 1e-12):
        return None, None
    stat = float(durbin_watson(resid))
    return stat, durbin_watson_pvalue(stat, exog, alternative=alternative)


def fit_trend(
    points: pd.DataFrame,
    *,
    min_points: int = MIN_TREND_POINTS,
    serial_test: bool = False,
    alternative: str = "greater",
) -> Optional[TrendFit]:
    """Fit ``mean_log_conc ~ Year`` for one group; ``None`` when the group is skipped."""
    pts = points.dropna(subset=["Year", "mean_log_conc"]).sort_values("Year")
    if len(pts) < min_points:
        return None
    x = pts["Year"].astype(float).to_numpy()
    y = pts["mean_log_conc"].astype(float).to_numpy()
    if np.unique(x).size < 2:
        return None

    exog = sm.add_constant(x, has_constant="add")
    res = sm.OLS(y, exog).fit()
    intercept, slope = float(res.params[0]), float(res.params[1])
    if not np.isfinite(slope):
        return None

    dw_stat = dw_pvalue = None
    if serial_test:
        dw_stat, dw_pvalue = durbin_watson_test(res.resid, exog, alternative=alternative)
    return TrendFit(
        n_years=int(len(pts)),
        slope=slope,
        intercept=intercept,
        pct_change=percent_change(slope),
        dw_stat=dw_stat,
        dw_pvalue=dw_pvalue,
    )


def yearly_means(table: pd.DataFrame, *, year_range=None) -> pd.DataFrame:
    subset = select(table, year_range=year_range, positive_only=True)
    return aggregate(subset, [STATION_COLUMN, "Metal", "Year"])


def fit_group_trends(
    table: pd.DataFrame,
    *,
    year_range=None,
    min_points: int = MIN_TREND_POINTS,
    serial_test: bool = False,
    alternative: str = "greater",
) -> pd.DataFrame:
    """One Trend fit row per (Station, Metal) group with enough yearly means."""
    means = yearly_means(table, year_range=year_range)
    rows: List[dict] = []
    skipped = 0
    for (station, metal), points in means.groupby([STATION_COLUMN, "Metal"], sort=True):
        fit = fit_trend(points, min_points=min_points, serial_test=serial_test, alternative=alternative)
        if fit is None:
            skipped += 1
            continue
        rows.append({STATION_COLUMN: station, "Metal": metal, **asdict(fit)})
    if skipped:
        logger.debug("Skipped %d station/metal groups with fewer than %d usable years", skipped, min_points)
    if not rows:
        return pd.DataFrame(columns=TREND_COLUMNS)
    out = pd.DataFrame(rows)[TREND_COLUMNS]
    out[["dw_stat", "dw_pvalue"]] = out[["dw_stat", "dw_pvalue"]].astype(float)
    return out


def _empty_band(grid: np.ndarray) -> pd.DataFrame:
    nan = np.full(grid.shape, np.nan)
    return pd.DataFrame({"x": grid, "fit": nan, "lower": nan, "upper": nan})


def linear_band(x: Sequence[float], y: Sequence[float], grid: Sequence[float], *, alpha: float = CONFIDENCE_ALPHA) -> pd.DataFrame:
    """OLS line with the confidence band of the mean at ``grid``."""
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    grid = np.asarray(grid, dtype=float)
    if x.size < 3 or np.unique(x).size < 2:
        return _empty_band(grid)
    res = sm.OLS(y, sm.add_constant(x, has_constant="add")).fit()
    pred = res.get_prediction(sm.add_constant(grid, has_constant="add")).summary_frame(alpha=alpha)
    return pd.DataFrame(
        {
            "x": grid,
            "fit": pred["mean"].to_numpy(),
            "lower": pred["mean_ci_lower"].to_numpy(),
            "upper": pred["mean_ci_upper"].to_numpy(),
        }
    )


def loess_band(
    x: Sequence[float],
    y: Sequence[float],
    grid: Sequence[float],
    *,
    frac: float = LOESS_FRAC,
    degree: int = LOESS_DEGREE,
    alpha: float = CONFIDENCE_ALPHA,
) -> pd.DataFrame:
    """Local polynomial regression with tricube weights.

    Each grid point gets a weighted fit over its ``ceil(frac * n)`` nearest
    observations (rounded up, so small samples keep at least one extra
    neighbour compared with the ``floor`` used by R's ``loess``). Grid points
    without enough local support stay NaN.

    The band is pointwise: it is the confidence interval of each local WLS
    fit's intercept, with the residual scale estimated from that
    neighbourhood only. It is not the global LOESS standard error, which
    pools one residual scale over the whole curve, so it widens where the
    local scatter is large.
    """
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    grid = np.asarray(grid, dtype=float)
    out = _empty_band(grid)
    n = x.size
    if n < degree + 2:
        return out

    k = min(n, max(int(math.ceil(frac * n)), degree + 2))
    row = np.eye(1, degree + 1)
    for i, x0 in enumerate(grid):
        dist = np.abs(x - x0)
        idx = np.argsort(dist, kind="mergesort")[:k]
        radius = dist[idx].max()
        if radius <= 0:
            continue
        w = (1.0 - (dist[idx] / radius) ** 3) ** 3
        keep = w > 0
        if keep.sum() < degree + 2:
            continue
        xs = x[idx][keep] - x0
        if np.unique(xs).size < degree + 1:
            continue
        design = np.vander(xs, degree + 1, increasing=True)
        res = sm.WLS(y[idx][keep], design, weights=w[keep]).fit()
        pred = res.get_prediction(row).summary_frame(alpha=alpha)
        out.loc[i, "fit"] = float(pred["mean"].iloc[0])
        out.loc[i, "lower"] = float(pred["mean_ci_lower"].iloc[0])
        out.loc[i, "upper"] = float(pred["mean_ci_upper"].iloc[0])
    return out
