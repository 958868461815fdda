# -*- coding: utf-8 -*-
"""
Temporal utilities for monthly index handling and aggregation.

Functions
---------
- to_month_start_index(index): Normalize month labels to month-start timestamps.
- ensure_monthly_frequency(series): Reindex to a complete month-start range.
- future_index(index, h): The h timestamps following the end of an index.
- monthly_to_annual_total(series): Calendar-year totals over complete years only.
"""

from __future__ import annotations

from typing import Tuple

import pandas as pd


def to_month_start_index(index) -> pd.DatetimeIndex:
    """
    Convert month labels to a month-start DatetimeIndex.

    Accepts 'YYYY-MM' strings, full dates, a PeriodIndex, or timestamps anywhere
    inside the month (e.g. month end). Every label maps to the first day of its month.
    """
    if isinstance(index, pd.PeriodIndex):
        return index.asfreq("M").to_timestamp(how="start")
    idx = pd.DatetimeIndex(pd.to_datetime(index))
    return idx.to_period("M").to_timestamp(how="start")


def ensure_monthly_frequency(series: pd.Series) -> Tuple[pd.Series, int]:
    """
    Reindex a monthly series onto a complete month-start range.

    Parameters
    ----------
    series : pd.Series
        Series with a DatetimeIndex or PeriodIndex at (roughly) monthly spacing.

    Returns
    -------
    Tuple[pd.Series, int]
        (reindexed series with freq='MS', number of months inserted as NaN)
    """
    if not isinstance(series, pd.Series):
        raise TypeError("series must be a pandas Series")
    if series.empty:
        return series, 0

    s = series.copy()
    s.index = to_month_start_index(s.index)
    s = s[~s.index.duplicated(keep="last")].sort_index()

    full = pd.date_range(s.index.min(), s.index.max(), freq="MS")
    inserted = len(full) - len(s)
    return s.reindex(full), inserted


def future_index(index: pd.DatetimeIndex, h: int) -> pd.DatetimeIndex:
    """
    Build the h timestamps immediately after the last entry of ``index``.

    Uses ``index.freq`` when set, otherwise the inferred frequency, and falls
    back to month start for short indexes that pandas cannot infer.
    """
    if h <= 0:
        raise ValueError("h must be positive")
    if not isinstance(index, pd.DatetimeIndex) or len(index) == 0:
        raise TypeError("future_index expects a non-empty DatetimeIndex")

    freq = index.freq
    if freq is None:
        inferred = pd.infer_freq(index) if len(index) >= 3 else None
        freq = pd.tseries.frequencies.to_offset(inferred or "MS")
    return pd.date_range(start=index[-1] + freq, periods=h, freq=freq)


def monthly_to_annual_total(series: pd.Series) -> pd.Series:
    """
    Aggregate a monthly series to calendar-year totals.

    Only years with all twelve months observed are kept so that partial first
    and last years do not distort annual growth figures.
    """
    s = series.dropna()
    if s.empty:
        return pd.Series(dtype=float, name=series.name)
    years = s.index.year
    totals = s.groupby(years).sum()
    counts = s.groupby(years).count()
    out = totals[counts == 12].astype(float)
    out.index.name = "year"
    out.name = series.name
    return out
