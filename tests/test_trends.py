from __future__ import annotations

import math

import numpy as np
import pandas as pd
import pytest
import statsmodels.api as sm

from conftest import long_table
from metaltrends.trends import (
    TREND_COLUMNS,
    durbin_watson_pvalue,
    durbin_watson_test,
    fit_group_trends,
    fit_trend,
    linear_band,
    loess_band,
    percent_change,
)


def _points(years, values):
    return pd.DataFrame({"Year": years, "mean_log_conc": values})


def test_percent_change_transform():
    assert percent_change(0.01) == pytest.approx((math.exp(0.01) - 1) * 100)
    assert percent_change(0.01) == pytest.approx(1.00501670841679)
    assert percent_change(0.0) == 0.0
    assert percent_change(-0.05) < 0


def test_fit_trend_recovers_log_linear_growth():
    years = list(range(2006, 2016))
    values = [math.log(100) + 0.01 * (y - 2006) for y in years]
    fit = fit_trend(_points(years, values))
    assert fit is not None
    assert fit.slope == pytest.approx(0.01, abs=1e-10)
    assert fit.pct_change == pytest.approx((math.exp(0.01) - 1) * 100, rel=1e-8)
    assert fit.n_years == 10


def test_fit_trend_point_threshold():
    years = list(range(2010, 2016))
    values = [0.1 * i for i in range(6)]
    assert fit_trend(_points(years[:5], values[:5])) is None
    assert fit_trend(_points(years, values)) is not None


def test_fit_trend_degenerate_years():
    assert fit_trend(_points([2010] * 8, [0.1, 0.2, 0.3, 0.1, 0.2, 0.3, 0.1, 0.2])) is None


def test_fit_trend_orders_by_year():
    years = [2015, 2010, 2012, 2011, 2014, 2013]
    values = [0.02 * (y - 2010) for y in years]
    fit = fit_trend(_points(years, values))
    assert fit.slope == pytest.approx(0.02)


def test_fit_group_trends_inclusion_threshold():
    points = [("Five", "Cd", y, 1.0 + 0.1 * (y - 2006)) for y in range(2006, 2011)]
    points += [("Six", "Cd", y, 1.0 + 0.1 * (y - 2006)) for y in range(2006, 2012)]
    fits = fit_group_trends(long_table(points))
    assert fits["Station"].tolist() == ["Six"]
    assert fits.loc[0, "n_years"] == 6


def test_fit_group_trends_counts_years_not_samples():
    # Many samples in only five years still means five points.
    points = [("A", "Hg", y, 1.0 + 0.01 * k) for y in range(2006, 2011) for k in range(4)]
    assert fit_group_trends(long_table(points)).empty


def test_fit_group_trends_excludes_non_positive_and_respects_years():
    points = [("A", "Cd", y, 2.0 * math.exp(0.05 * (y - 2000))) for y in range(2000, 2012)]
    points += [("A", "Cd", 2011, 0.0), ("A", "Cd", 2010, -3.0)]
    fits = fit_group_trends(long_table(points), year_range=(2006, None))
    assert len(fits) == 1
    assert fits.loc[0, "n_years"] == 6
    assert fits.loc[0, "slope"] == pytest.approx(0.05)


def test_fit_group_trends_empty_has_columns():
    fits = fit_group_trends(long_table([("A", "Cd", 2006, 1.0)]))
    assert fits.empty
    assert list(fits.columns) == TREND_COLUMNS


def test_durbin_watson_detects_positive_autocorrelation():
    t = np.arange(20, dtype=float)
    resid = np.sin(2 * np.pi * t / 20)
    exog = sm.add_constant(t + 2000)
    stat, p = durbin_watson_test(resid, exog)
    assert stat < 1.0
    assert p < 0.05


def test_durbin_watson_alternating_residuals():
    t = np.arange(20, dtype=float)
    resid = np.where(t % 2 == 0, 1.0, -1.0)
    exog = sm.add_constant(t + 2000)
    stat, p_greater = durbin_watson_test(resid, exog, alternative="greater")
    _, p_less = durbin_watson_test(resid, exog, alternative="less")
    assert stat > 3.0
    assert p_greater > 0.95
    assert p_less < 0.05
    assert p_greater + p_less == pytest.approx(1.0)


def test_durbin_watson_pvalue_is_monotone_in_statistic():
    exog = sm.add_constant(np.arange(2000, 2012, dtype=float))
    ps = [durbin_watson_pvalue(d, exog) for d in (0.5, 1.5, 2.0, 2.5, 3.5)]
    assert all(0.0 <= p <= 1.0 for p in ps)
    assert ps == sorted(ps)
    two_sided = durbin_watson_pvalue(2.0, exog, alternative="two-sided")
    assert 0.0 <= two_sided <= 1.0


def test_durbin_watson_unknown_alternative():
    exog = sm.add_constant(np.arange(10, dtype=float))
    with pytest.raises(ValueError):
        durbin_watson_pvalue(2.0, exog, alternative="sideways")


def test_durbin_watson_perfect_fit_is_not_tested():
    exog = sm.add_constant(np.arange(8, dtype=float))
    assert durbin_watson_test(np.zeros(8), exog) == (None, None)


def test_fit_trend_with_serial_test(rng):
    years = np.arange(1970, 2000)
    values = 0.01 * (years - 1970) + rng.normal(0, 0.1, size=years.size)
    fit = fit_trend(_points(years, values), serial_test=True)
    assert fit.dw_stat is not None and 0 < fit.dw_stat < 4
    assert 0.0 <= fit.dw_pvalue <= 1.0


def test_linear_band_contains_fit(rng):
    x = np.arange(2000, 2015, dtype=float)
    y = 0.03 * (x - 2000) + rng.normal(0, 0.05, size=x.size)
    grid = np.linspace(2000, 2014, 7)
    band = linear_band(x, y, grid)
    assert list(band.columns) == ["x", "fit", "lower", "upper"]
    assert (band["lower"] <= band["fit"]).all() and (band["fit"] <= band["upper"]).all()
    # wider at the ends than in the middle
    widths = band["upper"] - band["lower"]
    assert widths.iloc[0] > widths.iloc[3]


def test_linear_band_needs_spread():
    band = linear_band([2000.0, 2000.0, 2000.0], [1.0, 2.0, 3.0], [2000.0])
    assert band["fit"].isna().all()


def test_loess_band_reproduces_quadratic():
    x = np.arange(2000, 2020, dtype=float)
    y = 0.01 * (x - 2010) ** 2
    grid = np.array([2005.0, 2010.0, 2015.0])
    band = loess_band(x, y, grid)
    assert band["fit"].to_numpy() == pytest.approx(0.01 * (grid - 2010) ** 2, abs=1e-8)


def test_loess_band_interval_brackets_fit(rng):
    x = np.repeat(np.arange(1990, 2010, dtype=float), 2)
    y = np.sin((x - 1990) / 4) + rng.normal(0, 0.1, size=x.size)
    band = loess_band(x, y, np.linspace(1990, 2009, 15)).dropna()
    assert not band.empty
    assert (band["lower"] <= band["fit"] + 1e-12).all()
    assert (band["fit"] <= band["upper"] + 1e-12).all()


def test_loess_band_too_few_points():
    band = loess_band([2000.0, 2001.0, 2002.0], [1.0, 2.0, 1.5], [2001.0])
    assert band["fit"].isna().all()
