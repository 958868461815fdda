# retail_forecaster_src/plotting_utils.py

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
from pathlib import Path
from typing import Dict, Optional
import logging

from statsmodels.graphics.tsaplots import plot_acf, plot_pacf
from statsmodels.tsa.seasonal import STL

from .config_utils import get_config_value
from .file_utils import ensure_dir

logger = logging.getLogger(__name__)

MONTH_LABELS = ["Jan", "Feb", "Mar", "Apr", "May", "Jun",
                "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]


def _dpi() -> int:
    return int(get_config_value("output.dpi", 150))


def _save(fig, out_path: Path) -> None:
    ensure_dir(out_path.parent)
    fig.tight_layout()
    fig.savefig(out_path, dpi=_dpi())
    plt.close(fig)
    logger.debug("Saved figure: %s", out_path)


def plot_sales_series(series: pd.Series, out_path: Path,
                      title: str = "Retail trade sales", ylabel: str = "Sales") -> None:
    """
    Render and save the monthly sales time plot.

    Parameters
    ----------
    series : pd.Series
        Monthly sales with a DatetimeIndex
    out_path : Path
        File path to save the rendered PNG (parents are created if missing)
    title : str
        Plot title
    ylabel : str
        Y-axis label
    """
    fig, ax = plt.subplots(figsize=(10, 4))
    ax.plot(series.index, series.values, color="black", linewidth=1)
    ax.set_xlabel("Date")
    ax.set_ylabel(ylabel)
    ax.set_title(title)
    fig.autofmt_xdate()
    _save(fig, out_path)


def plot_category_panel(wide_df: pd.DataFrame, out_path: Path, max_panels: int = 6) -> None:
    """
    Render a grid of small multiples, one per NAICS category column.

    Only the first ``max_panels`` columns are drawn; the grid is two columns wide.
    """
    cols = list(wide_df.columns)[:max_panels]
    if not cols:
        logger.warning("Category panel skipped: no columns to plot")
        return

    nrows = int(np.ceil(len(cols) / 2))
    fig, axes = plt.subplots(nrows=nrows, ncols=2, figsize=(11, 2.2 * nrows), squeeze=False)
    for ax, col in zip(axes.flatten(), cols):
        ax.plot(wide_df.index, wide_df[col], color="black", linewidth=1)
        ax.set_title(str(col), fontsize=8)
        ax.tick_params(labelsize=6)
        ax.spines["top"].set_alpha(0)
    for ax in axes.flatten()[len(cols):]:
        ax.set_visible(False)
    fig.autofmt_xdate()
    _save(fig, out_path)


def plot_seasonal(series: pd.Series, out_path: Path, title: str = "Seasonal plot") -> None:
    """
    Seasonal plot: one line per calendar year across the twelve months.
    """
    s = series.dropna()
    frame = pd.DataFrame({"year": s.index.year, "month": s.index.month, "value": s.values})
    piv = frame.pivot_table(index="month", columns="year", values="value", aggfunc="last")

    fig, ax = plt.subplots(figsize=(9, 5))
    cmap = plt.get_cmap("viridis")
    years = list(piv.columns)
    for i, year in enumerate(years):
        color = cmap(i / max(1, len(years) - 1))
        ax.plot(piv.index, piv[year], color=color, linewidth=1)
        last = piv[year].dropna()
        if not last.empty:
            ax.text(last.index[-1] + 0.1, last.iloc[-1], str(year), fontsize=6, color=color)
    ax.set_xticks(range(1, 13))
    ax.set_xticklabels(MONTH_LABELS)
    ax.set_ylabel("Sales")
    ax.set_title(title)
    _save(fig, out_path)


def plot_decomposition(series: pd.Series, m: int, out_path: Path) -> None:
    """
    Plot the robust STL decomposition (observed, trend, seasonal, remainder).
    """
    s = series.dropna()
    if len(s) < 2 * m + 1:
        logger.warning("STL decomposition skipped: need at least %d observations", 2 * m + 1)
        return
    res = STL(s, period=m, robust=True).fit()

    fig, axes = plt.subplots(4, 1, figsize=(10, 8), sharex=True)
    parts = [("Observed", res.observed), ("Trend", res.trend),
             ("Seasonal", res.seasonal), ("Remainder", res.resid)]
    for ax, (label, values) in zip(axes, parts):
        ax.plot(s.index, np.asarray(values), color="black", linewidth=1)
        ax.set_ylabel(label)
    axes[-1].axhline(0.0, color="gray", linewidth=0.8)
    axes[0].set_title("STL decomposition")
    _save(fig, out_path)


def plot_acf_pacf(series: pd.Series, out_path: Path, lags: int = 36, title: str = "") -> None:
    """
    Stacked ACF and PACF panels for order identification.
    """
    s = series.dropna()
    lags = int(min(lags, len(s) // 2 - 1))
    if lags < 1:
        logger.warning("ACF/PACF skipped for '%s': series too short", title)
        return

    fig, axes = plt.subplots(2, 1, figsize=(8, 6))
    plot_acf(s, ax=axes[0], lags=lags, zero=False)
    axes[0].set_title(f"ACF {title}".strip())
    plot_pacf(s, ax=axes[1], lags=lags, zero=False, method="ywm")
    axes[1].set_title(f"PACF {title}".strip())
    _save(fig, out_path)


def plot_forecasts(history: pd.Series,
                   test: Optional[pd.Series],
                   forecasts: Dict[str, object],
                   out_path: Path,
                   level: int = 95,
                   history_tail: int = 60,
                   best: Optional[str] = None) -> None:
    """
    Plot recent history, hold-out actuals and each model's mean forecast.

    Parameters
    ----------
    history : pd.Series
        Training series; only the last ``history_tail`` points are drawn
    test : Optional[pd.Series]
        Hold-out actuals (None for a pure forecast)
    forecasts : Dict[str, ForecastResult]
        Model name mapped to its forecast
    out_path : Path
        Output file path for the plot
    level : int, default=95
        Interval band drawn for the best model
    history_tail : int, default=60
        Number of trailing history points to show
    best : Optional[str]
        Model whose interval band is drawn; defaults to the first model
    """
    if not forecasts:
        logger.warning("Forecast plot skipped: no forecasts")
        return

    fig, ax = plt.subplots(figsize=(10, 5))
    tail = history.iloc[-history_tail:]
    ax.plot(tail.index, tail.values, color="black", linewidth=1.2, label="history")
    if test is not None:
        ax.plot(test.index, test.values, color="black", linestyle=":", linewidth=1.5, label="actual")

    best = best if best in forecasts else next(iter(forecasts))
    colors = ["tab:red", "tab:blue", "tab:green", "tab:orange", "tab:purple", "tab:brown"]
    for i, (name, fc) in enumerate(forecasts.items()):
        color = colors[i % len(colors)]
        ax.plot(fc.mean.index, fc.mean.values, color=color, linestyle="--", label=name)
        if name == best and level in fc.lower:
            ax.fill_between(fc.mean.index, fc.lower[level].values, fc.upper[level].values,
                            color=color, alpha=0.15, label=f"{name} {level}% PI")

    ax.set_ylabel("Sales")
    ax.set_title("Hold-out forecasts")
    ax.legend(fontsize=8)
    fig.autofmt_xdate()
    _save(fig, out_path)


def plot_cv_horizon_errors(horizon_tables: Dict[str, pd.DataFrame],
                           metric: str,
                           out_path: Path) -> None:
    """
    One line per model showing a cross-validated metric against forecast horizon.
    """
    usable = {k: v for k, v in horizon_tables.items() if metric in v.columns}
    if not usable:
        logger.warning("CV horizon plot skipped: no tables with metric %s", metric)
        return

    fig, ax = plt.subplots(figsize=(8, 4.5))
    for name, table in usable.items():
        ax.plot(table.index, table[metric].values, marker="o", markersize=3, label=name)
    ax.set_xlabel("Forecast horizon (months)")
    ax.set_ylabel(metric)
    ax.set_title(f"Rolling-origin {metric} by horizon")
    ax.legend(fontsize=8)
    _save(fig, out_path)


def plot_metric_comparison(table: pd.DataFrame,
                           metric: str,
                           out_path: Path,
                           title: Optional[str] = None,
                           ylabel: Optional[str] = None) -> None:
    """
    Bar chart of one metric per model (rows of an accuracy or comparison table).
    """
    if table.empty or metric not in table.columns:
        logger.warning("Cannot create metric comparison: missing data or metric column")
        return

    values = pd.to_numeric(table[metric], errors="coerce")
    labels = [str(i) for i in table.index]
    x = np.arange(len(labels))

    fig, ax = plt.subplots(figsize=(max(6, len(labels) * 1.2), 4))
    ax.bar(x, values.values, width=0.6, color="tab:blue", alpha=0.8)
    ax.set_xticks(x)
    ax.set_xticklabels(labels, rotation=45, ha="right")
    ax.set_ylabel(ylabel or metric)
    ax.set_title(title or f"{metric} by model")

    ymax = np.nanmax(values.values) if values.notna().any() else np.nan
    if np.isfinite(ymax) and ymax > 0:
        ax.set_ylim(0, ymax * 1.2)
    for i, v in enumerate(values.values):
        if np.isfinite(v):
            ax.text(i, v, f"{v:.2f}", ha="center", va="bottom", fontsize=8)
    _save(fig, out_path)
