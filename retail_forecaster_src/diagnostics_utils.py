# retail_forecaster_src/diagnostics_utils.py

import numpy as np
import pandas as pd
import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
from pathlib import Path
from typing import Optional, Union
import logging

from scipy.stats import norm
from statsmodels.graphics.tsaplots import plot_acf
from statsmodels.stats.diagnostic import acorr_ljungbox

from diagnostics import ResidualDiagnostics, diagnostics_frame
from .config_utils import get_config_value
from .file_utils import ensure_dir

logger = logging.getLogger(__name__)


def save_residual_diagnostics(residuals: Union[pd.Series, np.ndarray],
                              out_dir: Path,
                              fname_prefix: str = "Residuals",
                              season_length: int = 12,
                              model_df: int = 0) -> pd.DataFrame:
    """
    Save residual checks for a fitted model and return the test summary.

    Parameters
    ----------
    residuals : Union[pd.Series, np.ndarray]
        In-sample residuals from a fitted model
    out_dir : Path
        Output directory where diagnostic artifacts will be written
    fname_prefix : str, default="Residuals"
        Prefix for output filenames to distinguish different models
    season_length : int, default=12
        Seasonal period, used for the Ljung-Box lag choice
    model_df : int, default=0
        Number of estimated parameters, subtracted from Ljung-Box degrees of freedom

    Returns
    -------
    pd.DataFrame
        Summary of Ljung-Box, Jarque-Bera and ARCH-LM tests (empty if no residuals)

    Notes
    -----
    Creates the following files:
    - {prefix}_check.png: time plot, ACF and histogram with a normal density
    - {prefix}_LjungBox.csv: Ljung-Box statistics for lags 1..L
    - {prefix}_tests.csv: the test summary returned by this function
    """
    ensure_dir(out_dir)
    resid = pd.Series(residuals).dropna()

    if resid.empty:
        logger.warning("Residual diagnostics skipped for %s: empty residual series.", fname_prefix)
        return diagnostics_frame([])

    alpha = float(get_config_value("diagnostics.alpha", 0.05))
    checker = ResidualDiagnostics(significance_level=alpha, season_length=season_length)

    _save_residual_check_plot(resid, out_dir, fname_prefix, season_length)
    _save_ljungbox_table(resid, out_dir, fname_prefix, checker.ljung_box_lags(len(resid), model_df))

    summary = diagnostics_frame(checker.run_all(resid, model_df=model_df))
    summary.to_csv(out_dir / f"{fname_prefix}_tests.csv", index=False)
    for _, row in summary.iterrows():
        logger.info("%s %s: stat=%.3f p=%.4f (%s)", fname_prefix, row["test"],
                    row["statistic"], row["p_value"], row["interpretation"])
    return summary


def _save_residual_check_plot(resid: pd.Series, out_dir: Path, fname_prefix: str,
                              season_length: int) -> None:
    """
    Time plot on top, ACF and histogram with fitted normal density below.
    """
    dpi = int(get_config_value("output.dpi", 150))
    lags = int(min(max(2 * season_length, 10), len(resid) - 1))

    fig = plt.figure(figsize=(10, 7))
    ax_ts = fig.add_subplot(2, 1, 1)
    ax_acf = fig.add_subplot(2, 2, 3)
    ax_hist = fig.add_subplot(2, 2, 4)

    ax_ts.plot(resid.index, resid.values, color="tab:blue", linewidth=1)
    ax_ts.axhline(0.0, color="gray", linewidth=0.8)
    ax_ts.set_title(f"{fname_prefix} residuals")

    plot_acf(resid, ax=ax_acf, lags=lags, zero=False)
    ax_acf.set_title("Residual ACF")

    ax_hist.hist(resid.values, bins=25, density=True, color="tab:gray", alpha=0.7)
    sd = float(np.std(resid.values, ddof=1))
    if np.isfinite(sd) and sd > 0:
        grid = np.linspace(resid.min(), resid.max(), 200)
        ax_hist.plot(grid, norm.pdf(grid, loc=float(resid.mean()), scale=sd), color="tab:orange")
    ax_hist.set_title("Histogram")

    fig.tight_layout()
    fig.savefig(out_dir / f"{fname_prefix}_check.png", dpi=dpi)
    plt.close(fig)
    logger.debug("Residual check plot saved for %s", fname_prefix)


def _save_ljungbox_table(resid: pd.Series, out_dir: Path, fname_prefix: str, max_lag: int) -> None:
    max_lag = int(min(max_lag, max(1, len(resid) - 1)))
    df_lb = acorr_ljungbox(resid, lags=np.arange(1, max_lag + 1), return_df=True)
    df_lb.index.name = "lag"
    df_lb.to_csv(out_dir / f"{fname_prefix}_LjungBox.csv", index=True)


def save_stationarity_artifacts(report_df: pd.DataFrame, out_dir: Path,
                                fname: str = "stationarity_report.csv") -> Optional[Path]:
    """
    Write the ADF/KPSS stationarity report to CSV.
    """
    ensure_dir(out_dir)
    path = out_dir / fname
    report_df.to_csv(path, index=False)
    logger.info("Stationarity report saved to %s", path)
    return path
