from __future__ import annotations

import math

import pytest

from conftest import long_table
from metaltrends.aggregate import aggregate, log_concentration, select


@pytest.fixture
def table():
    return long_table(
        [
            ("A", "Cd", 2004, 1.0),
            ("A", "Cd", 2005, 2.0),
            ("A", "Cd", 2006, 0.0),
            ("A", "Hg", 2006, 0.5),
            ("B", "Cd", 2006, -1.0),
            ("B", "Cd", 2007, 3.0),
            ("C", "Hg", 2010, 4.0),
        ]
    )


def test_select_conjunction(table):
    out = select(table, metal="Cd", stations={"A", "B"}, year_range=(2005, 2006))
    assert sorted(zip(out["Station"], out["Year"])) == [("A", 2005), ("A", 2006), ("B", 2006)]


def test_select_year_range_is_inclusive_and_open_ended(table):
    assert set(select(table, year_range=(2006, None))["Year"]) == {2006, 2007, 2010}
    assert set(select(table, year_range=(None, 2005))["Year"]) == {2004, 2005}
    assert len(select(table, year_range=(2010, 2010))) == 1


def test_select_positive_only(table):
    out = select(table, metal="Cd", positive_only=True)
    assert (out["Concentration"] > 0).all()
    assert len(out) == 3


def test_select_empty_station_set_selects_nothing(table):
    assert select(table, stations=[]).empty


def test_select_without_criteria_returns_everything(table):
    assert len(select(table)) == len(table)


def test_log_concentration_masks_non_positive(table):
    logs = log_concentration(table["Concentration"])
    assert logs.isna().sum() == 2
    assert logs.iloc[1] == pytest.approx(math.log(2.0))


def test_aggregate_ignores_non_positive_values():
    table = long_table(
        [
            ("A", "Cd", 2006, math.e),
            ("A", "Cd", 2006, 0.0),
            ("A", "Cd", 2006, -5.0),
            ("A", "Cd", 2006, math.e ** 3),
        ]
    )
    out = aggregate(table, ["Station", "Metal", "Year"])
    assert len(out) == 1
    assert out.loc[0, "mean_log_conc"] == pytest.approx(2.0)
    assert out.loc[0, "n_samples"] == 2


def test_aggregate_drops_groups_without_valid_values(table):
    out = aggregate(table, ["Station", "Year"])
    keys = set(zip(out["Station"], out["Year"]))
    # A/2006 keeps its Hg sample; B/2006 only has a negative reading
    assert ("A", 2006) in keys
    assert ("B", 2006) not in keys
    assert not out["mean_log_conc"].isna().any()


def test_aggregate_carries_first_columns(table):
    out = aggregate(table, ["Station"], first=["Longitude", "Latitude"])
    assert list(out.columns) == ["Station", "Longitude", "Latitude", "mean_log_conc", "n_samples"]
    assert (out["Latitude"] == 60.0).all()


def test_aggregate_empty_subset(table):
    out = aggregate(select(table, metal="Zn"), ["Station"])
    assert out.empty
    assert "mean_log_conc" in out.columns
