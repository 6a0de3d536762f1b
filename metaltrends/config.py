from __future__ import annotations

from pathlib import Path
from typing import Optional, Tuple


DATA_DIR = Path(__file__).resolve().parents[1]
DATA_FILE_NAME = "biota_metals.xlsx"

# Source sheet layout: one banner row above the real header.
HEADER_SKIP_ROWS = 1
METAL_SUFFIX = "DW"
METAL_CODE_LENGTH = 2

STATION_COLUMN = "Station"
LONGITUDE_COLUMN = "Longitude"
LATITUDE_COLUMN = "Latitude"
DATE_COLUMN = "SampleDate"
DATE_COLUMN_ALIASES: Tuple[str, ...] = ("SampleDate", "Sample Date", "Sample_Date", "Date", "DATE")

DEFAULT_STATION: Optional[str] = None
DEFAULT_YEAR_SPAN = 10

TREND_METHODS: Tuple[str, ...] = ("Log-linear", "Smooth")
BAR_ORDERS: Tuple[str, ...] = ("concentration", "latitude")

MIN_TREND_POINTS = 6
TREND_AFTER_YEAR = 2005
TREND_CLIP: Tuple[float, float] = (-30.0, 30.0)
SERIAL_AFTER_YEAR = 1965
PVALUE_BIN_WIDTH = 0.05

LOESS_FRAC = 0.75
LOESS_DEGREE = 2
CONFIDENCE_ALPHA = 0.05


def default_data_path() -> Path:
    return DATA_DIR / DATA_FILE_NAME
