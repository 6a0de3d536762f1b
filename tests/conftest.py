from __future__ import annotations

import math
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from metaltrends.data import load_dashboard_data

YEARS = list(range(2006, 2016))
STATIONS = {"StationA": (10.5, 59.9), "StationB": (5.3, 60.4)}
BASE = {("StationA", "Cd"): 0.2, ("StationA", "Hg"): 0.05, ("StationB", "Cd"): 0.4, ("StationB", "Hg"): 0.08}
RATE = {"Cd": -0.03, "Hg": 0.02}


def concentration(station: str, metal: str, year: int) -> float:
    wobble = 0.04 * math.sin(1.7 * year + (1 if station == "StationA" else 2))
    return BASE[(station, metal)] * math.exp(RATE[metal] * (year - YEARS[0]) + wobble)


def write_workbook(path: Path, frame: pd.DataFrame, banner: str = "Heavy metals in biota, dry weight basis") -> Path:
    with pd.ExcelWriter(path, engine="openpyxl") as writer:
        pd.DataFrame([[banner]]).to_excel(writer, sheet_name="Data", header=False, index=False)
        frame.to_excel(writer, sheet_name="Data", startrow=1, index=False)
    return path


@pytest.fixture
def wide_frame() -> pd.DataFrame:
    """2 stations x 10 years, one sample per year, Cd and Hg columns."""
    rows = []
    for station, (lon, lat) in STATIONS.items():
        for year in YEARS:
            rows.append(
                {
                    "Station": station,
                    "Longitude": lon,
                    "Latitude": lat,
                    "SampleDate": pd.Timestamp(year=year, month=9, day=15),
                    "Species": "Mytilus edulis",
                    "CdDW": concentration(station, "Cd", year),
                    "HgDW": concentration(station, "Hg", year),
                }
            )
    return pd.DataFrame(rows)


@pytest.fixture
def workbook(tmp_path: Path, wide_frame: pd.DataFrame) -> Path:
    return write_workbook(tmp_path / "biota_metals.xlsx", wide_frame)


@pytest.fixture
def data_ctx(workbook: Path) -> dict:
    return load_dashboard_data(workbook)


def long_table(points) -> pd.DataFrame:
    """Measurement table from (station, metal, year, concentration) tuples."""
    rows = [
        {
            "Station": s,
            "Longitude": 10.0,
            "Latitude": 60.0,
            "SampleDate": pd.Timestamp(year=y, month=6, day=1),
            "Year": y,
            "Metal": m,
            "Concentration": c,
        }
        for s, m, y, c in points
    ]
    df = pd.DataFrame(rows)
    df["Year"] = df["Year"].astype("Int64")
    return df


@pytest.fixture
def rng() -> np.random.Generator:
    return np.random.default_rng(20240611)
