# retail_forecaster_src/data_utils.py

import pandas as pd
from pathlib import Path
from typing import Dict, Optional, Tuple, Union
import logging

from helpers.temporal import ensure_monthly_frequency, monthly_to_annual_total, to_month_start_index

logger = logging.getLogger(__name__)

NAICS_PREFIX = "North American Industry Classification System"
STATCAN_TABLE_URL = "https://www150.statcan.gc.ca/t1/tbl1/en/tv.action?pid=2010000801"

# Accepted median gap between consecutive dates
MONTHLY_GAP_DAYS = (20, 45)

SCALAR_FACTORS: Dict[str, float] = {
    "units": 1.0,
    "tens": 1e1,
    "hundreds": 1e2,
    "thousands": 1e3,
    "millions": 1e6,
    "billions": 1e9,
}


def _naics_column(df: pd.DataFrame) -> Optional[str]:
    for col in df.columns:
        if str(col).startswith(NAICS_PREFIX):
            return col
    return None


def detect_csv_layout(df: pd.DataFrame) -> str:
    """
    Identify the layout of a retail sales CSV.

    Parameters
    ----------
    df : pd.DataFrame
        Raw table as read from disk.

    Returns
    -------
    str
        'statcan' for a Statistics Canada table download (REF_DATE, GEO, VALUE, ...)
        or 'tidy' for a two-column 'date'/'sales' file.

    Raises
    ------
    SystemExit
        If neither layout is recognised.
    """
    cols = set(df.columns)
    if {"REF_DATE", "GEO", "VALUE"}.issubset(cols):
        return "statcan"
    if {"date", "sales"}.issubset(cols):
        return "tidy"
    raise SystemExit(
        "Unrecognised CSV layout: expected Statistics Canada columns "
        "(REF_DATE, GEO, VALUE, ...) or 'date' and 'sales' columns; "
        f"found {sorted(map(str, cols))}"
    )


def load_retail_table(data_path: Path) -> pd.DataFrame:
    """
    Read the raw retail sales CSV from disk.

    Parameters
    ----------
    data_path : Path
        CSV path. Statistics Canada downloads ship with a UTF-8 BOM, which is stripped.

    Returns
    -------
    pd.DataFrame
        Unmodified table.

    Raises
    ------
    SystemExit
        If the file does not exist.
    """
    if not data_path.is_file():
        raise SystemExit(
            f"Retail sales CSV not found: {data_path}. Download Statistics Canada table "
            f"20-10-0008-01 from {STATCAN_TABLE_URL}, save the CSV at that path or pass --data."
        )
    logger.info("Loading retail sales table from: %s", data_path)
    return pd.read_csv(data_path, encoding="utf-8-sig", low_memory=False)


def filter_statcan_table(df: pd.DataFrame,
                         geo: Optional[str] = "Canada",
                         naics: Optional[str] = "Retail trade [44-45]",
                         adjustment: Optional[str] = "Unadjusted") -> pd.DataFrame:
    """
    Select the rows of a Statistics Canada table matching the requested dimensions.

    A ``None`` argument leaves that dimension unfiltered. Matching is exact after
    stripping whitespace.

    Raises
    ------
    SystemExit
        If the filter leaves no rows; the message lists the values available.
    """
    out = df
    naics_col = _naics_column(df)
    filters = [("GEO", geo), (naics_col, naics), ("Adjustments", adjustment)]

    for col, wanted in filters:
        if wanted is None:
            continue
        if col is None or col not in out.columns:
            logger.warning("Column for filter value '%s' not present; skipping that filter.", wanted)
            continue
        mask = out[col].astype(str).str.strip() == str(wanted).strip()
        if not mask.any():
            available = sorted(out[col].dropna().astype(str).unique().tolist())
            raise SystemExit(f"No rows with {col} == '{wanted}'. Available: {available[:20]}")
        out = out[mask]

    return out.copy()


def apply_scalar_factor(values: pd.Series, factor_label: Optional[str]) -> pd.Series:
    """
    Scale values by a Statistics Canada SCALAR_FACTOR label such as 'thousands'.

    Unknown labels are treated as units and logged.
    """
    label = str(factor_label or "units").strip().lower()
    factor = SCALAR_FACTORS.get(label)
    if factor is None:
        logger.warning("Unknown scalar factor '%s'; treating values as units.", factor_label)
        factor = 1.0
    return values * factor


def pivot_categories(df: pd.DataFrame,
                     geo: Optional[str] = "Canada",
                     adjustment: Optional[str] = "Unadjusted") -> pd.DataFrame:
    """
    Reshape a long Statistics Canada table into a wide month x NAICS-category frame.

    Parameters
    ----------
    df : pd.DataFrame
        Raw Statistics Canada table.
    geo, adjustment : Optional[str]
        Dimensions held fixed while every NAICS category becomes a column.

    Returns
    -------
    pd.DataFrame
        Index: month-start DatetimeIndex; columns: NAICS category labels.
        Empty when the table has no NAICS column.
    """
    naics_col = _naics_column(df)
    if naics_col is None:
        logger.warning("No NAICS column found; category panel unavailable.")
        return pd.DataFrame()

    sub = filter_statcan_table(df, geo=geo, naics=None, adjustment=adjustment)
    sub = sub.assign(
        month=to_month_start_index(sub["REF_DATE"]),
        VALUE=pd.to_numeric(sub["VALUE"], errors="coerce"),
    )
    wide = sub.pivot_table(index="month", columns=naics_col, values="VALUE", aggfunc="last")
    wide.index.name = "date"
    wide.columns.name = None
    return wide.sort_index()


def check_monthly_spacing(dates: pd.DatetimeIndex) -> None:
    """
    Exit unless the distinct dates are spaced roughly one month apart.

    The median gap must lie within MONTHLY_GAP_DAYS, which tolerates gaps,
    month-end labels and the odd repeated month but rejects daily, weekly,
    quarterly or annual data.
    """
    unique = dates.dropna().unique().sort_values()
    if len(unique) < 2:
        return
    median_gap = float(pd.Series(unique).diff().dt.days.median())
    low, high = MONTHLY_GAP_DAYS
    if not low <= median_gap <= high:
        inferred = pd.infer_freq(unique) if len(unique) >= 3 else None
        raise SystemExit(
            f"Dates are not monthly: median spacing is {median_gap:.0f} day(s)"
            f" (inferred frequency: {inferred or 'irregular'})."
        )


def load_retail_sales_series(data_path: Path,
                             geo: Optional[str] = "Canada",
                             naics: Optional[str] = "Retail trade [44-45]",
                             adjustment: Optional[str] = "Unadjusted",
                             scale: bool = False) -> pd.Series:
    """
    Load a monthly retail sales series from either supported CSV layout.

    Parameters
    ----------
    data_path : Path
        Statistics Canada table download or tidy 'date'/'sales' CSV.
    geo, naics, adjustment : Optional[str]
        Statistics Canada dimensions to select. Ignored for tidy CSVs.
    scale : bool, default=False
        Multiply by SCALAR_FACTOR (e.g. thousands of dollars to dollars).

    Returns
    -------
    pd.Series
        Float series named 'sales' with a month-start DatetimeIndex (freq='MS').
        Interior gaps are linearly interpolated; leading/trailing NaNs are dropped.

    Raises
    ------
    SystemExit
        If the file is missing, the layout is unknown, the dates are not monthly,
        or no valid rows remain.
    """
    raw = load_retail_table(data_path)
    layout = detect_csv_layout(raw)

    if layout == "statcan":
        rows = filter_statcan_table(raw, geo=geo, naics=naics, adjustment=adjustment)
        values = pd.to_numeric(rows["VALUE"], errors="coerce")
        if scale and "SCALAR_FACTOR" in rows.columns:
            labels = rows["SCALAR_FACTOR"].dropna().unique()
            values = apply_scalar_factor(values, labels[0] if len(labels) else None)
        dates = rows["REF_DATE"]
    else:
        values = pd.to_numeric(raw["sales"], errors="coerce")
        dates = raw["date"]

    parsed = pd.to_datetime(dates.astype(str), errors="coerce")
    frame = pd.DataFrame({"date": parsed.values, "sales": values.values}).dropna(subset=["date"])
    if frame["sales"].notna().sum() == 0:
        raise SystemExit("No valid sales values found in CSV after parsing.")

    check_monthly_spacing(pd.DatetimeIndex(frame["date"]))
    series = pd.Series(frame["sales"].values, index=pd.DatetimeIndex(frame["date"]), name="sales")
    n_dupes = int(to_month_start_index(series.index).duplicated().sum())
    if n_dupes:
        logger.warning("Dropped %d duplicate month(s); keeping the last observation.", n_dupes)

    series, inserted = ensure_monthly_frequency(series.astype(float))
    series = series.loc[series.first_valid_index():series.last_valid_index()]
    n_missing = int(series.isna().sum())
    if n_missing:
        logger.warning("Interpolating %d missing month(s) (%d inserted to complete the calendar).",
                       n_missing, inserted)
        series = series.interpolate(method="linear")

    series = series.asfreq("MS")
    series.name = "sales"
    logger.info("Loaded %d monthly observations from %s to %s",
                len(series), series.index[0].strftime("%Y-%m"), series.index[-1].strftime("%Y-%m"))
    return series


def train_test_split_series(series: pd.Series, test_len: int) -> Tuple[pd.Series, pd.Series]:
    """
    Split a series into a training set and a final hold-out of ``test_len`` points.

    Raises
    ------
    ValueError
        If test_len is not in the open interval (0, len(series)).
    """
    if not 0 < test_len < len(series):
        raise ValueError(f"test_len must satisfy 0 < test_len < {len(series)}, got {test_len}")
    return series.iloc[:-test_len], series.iloc[-test_len:]


def describe_series(series: pd.Series) -> Dict[str, Union[int, float, str]]:
    """
    Summary statistics for the report header.

    Returns
    -------
    Dict[str, Union[int, float, str]]
        n, start, end, min, max, mean, std and CAGR (compound annual growth of
        complete calendar-year totals, in percent; NaN with fewer than two full years).
    """
    s = series.dropna()
    annual = monthly_to_annual_total(s)
    if len(annual) >= 2 and annual.iloc[0] > 0:
        years = len(annual) - 1
        cagr = float(((annual.iloc[-1] / annual.iloc[0]) ** (1.0 / years) - 1.0) * 100.0)
    else:
        cagr = float("nan")

    return {
        "n": int(len(s)),
        "start": s.index[0].strftime("%Y-%m") if len(s) else "",
        "end": s.index[-1].strftime("%Y-%m") if len(s) else "",
        "min": float(s.min()) if len(s) else float("nan"),
        "max": float(s.max()) if len(s) else float("nan"),
        "mean": float(s.mean()) if len(s) else float("nan"),
        "std": float(s.std()) if len(s) > 1 else float("nan"),
        "CAGR": cagr,
    }
