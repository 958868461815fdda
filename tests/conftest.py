from pathlib import Path

import numpy as np
import pandas as pd
import pytest

import config
from config import CONFIG_ENV_VAR
from retail_forecaster_src import config_utils

NAICS_HEADER = "North American Industry Classification System (NAICS)"


@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch: pytest.MonkeyPatch):
    """Every test starts without a loaded configuration or override file."""
    monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
    monkeypatch.setattr(config_utils, "config_manager", None)
    config.reset_config()
    yield
    config.reset_config()


def make_seasonal_sales(n_months: int = 96, start: str = "2012-01-01", seed: int = 7) -> pd.Series:
    """Trend x multiplicative monthly seasonality with a December peak, plus noise."""
    rng = np.random.default_rng(seed)
    idx = pd.date_range(start, periods=n_months, freq="MS")
    t = np.arange(n_months)
    seasonal = 1.0 + 0.12 * np.sin(2 * np.pi * (t % 12) / 12.0) + 0.25 * (idx.month == 12)
    values = (40000.0 + 120.0 * t) * seasonal + rng.normal(0.0, 300.0, n_months)
    return pd.Series(values, index=idx, name="sales")


@pytest.fixture
def monthly_sales() -> pd.Series:
    return make_seasonal_sales()


def write_statcan_csv(path: Path, n_months: int = 96, start: str = "2012-01-01") -> pd.Series:
    """
    Write a small Statistics Canada style table and return the Canada / total /
    unadjusted series it contains.
    """
    canada = make_seasonal_sales(n_months, start)
    rows = []
    for geo, geo_scale in (("Canada", 1.0), ("Ontario", 0.38)):
        for naics, cat_scale in (("Retail trade [44-45]", 1.0), ("Food and beverage retailers [445]", 0.2)):
            for adj in ("Unadjusted", "Seasonally adjusted"):
                for date, value in canada.items():
                    v = value * geo_scale * cat_scale
                    if adj == "Seasonally adjusted":
                        v = v / (1.0 + 0.25 * (date.month == 12))
                    rows.append({
                        "REF_DATE": date.strftime("%Y-%m"),
                        "GEO": geo,
                        "DGUID": "2016A000011124",
                        NAICS_HEADER: naics,
                        "Adjustments": adj,
                        "UOM": "Dollars",
                        "SCALAR_FACTOR": "thousands",
                        "VALUE": round(v, 1),
                    })
    pd.DataFrame(rows).to_csv(path, index=False)
    return canada.round(1)


@pytest.fixture
def statcan_csv(tmp_path: Path) -> Path:
    path = tmp_path / "retail_sales_canada.csv"
    write_statcan_csv(path)
    return path


@pytest.fixture
def tidy_csv(tmp_path: Path, monthly_sales: pd.Series) -> Path:
    path = tmp_path / "sales.csv"
    pd.DataFrame({"date": monthly_sales.index.strftime("%Y-%m-%d"),
                  "sales": monthly_sales.values}).to_csv(path, index=False)
    return path


@pytest.fixture
def statcan_writer():
    return write_statcan_csv
