"""Metrics aggregation for rolling-origin cross-validation results.

This module turns tsCV error matrices into per-horizon and pooled accuracy
tables and compares models against a benchmark.

Features:
- Per-horizon RMSE, MAE, MAPE and MASE (scaled per origin)
- Pooled metrics over all horizons
- Model ranking by MASE with a Diebold-Mariano test against the benchmark
- P-value combination across origins (Fisher's, Stouffer's and Tippett's methods)
"""

import logging
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from scipy.stats import chi2, norm

from retail_forecaster_src.metrics_utils import diebold_mariano
from .rolling_origin import CrossValidationResult

logger = logging.getLogger(__name__)

POOLED_COLUMNS = ["RMSE", "MAE", "MAPE", "MASE", "n"]


class PValueCombination(Enum):
    """Methods for combining p-values across origins."""
    FISHER = "fisher"        # Fisher's method (-2 * sum(ln(p)))
    STOUFFER = "stouffer"    # Stouffer's Z-score method
    TIPPETT = "tippett"      # Minimum p-value method


def _accuracy(errors: np.ndarray, actuals: np.ndarray, scales: np.ndarray) -> Dict[str, float]:
    """RMSE, MAE, MAPE and MASE over the finite entries of aligned arrays."""
    e = np.asarray(errors, dtype=float)
    a = np.asarray(actuals, dtype=float)
    s = np.asarray(scales, dtype=float)
    ok = np.isfinite(e)
    n = int(ok.sum())
    if n == 0:
        return {"RMSE": np.nan, "MAE": np.nan, "MAPE": np.nan, "MASE": np.nan, "n": 0}

    abs_e = np.abs(e[ok])
    pct_ok = ok & np.isfinite(a) & (a != 0.0)
    scale_ok = ok & np.isfinite(s) & (s > 0.0)
    return {
        "RMSE": float(np.sqrt(np.mean(e[ok] ** 2))),
        "MAE": float(np.mean(abs_e)),
        "MAPE": float(np.mean(np.abs(e[pct_ok] / a[pct_ok])) * 100.0) if pct_ok.any() else np.nan,
        "MASE": float(np.mean(np.abs(e[scale_ok]) / s[scale_ok])) if scale_ok.any() else np.nan,
        "n": n,
    }


def horizon_accuracy(cv: CrossValidationResult) -> pd.DataFrame:
    """Accuracy of a cross-validated model at each forecast horizon.

    Parameters
    ----------
    cv : CrossValidationResult
        Output of RollingOriginValidator.validate

    Returns
    -------
    pd.DataFrame
        Index 'horizon' (1..H); columns RMSE, MAE, MAPE, MASE, n
    """
    scales = cv.scales.to_numpy(dtype=float)
    rows = []
    for k, col in enumerate(cv.errors.columns, start=1):
        row = _accuracy(cv.errors[col].to_numpy(), cv.actuals[col].to_numpy(), scales)
        row["horizon"] = k
        rows.append(row)
    return pd.DataFrame(rows, columns=["horizon"] + POOLED_COLUMNS).set_index("horizon")


def summarize_cv(cv: CrossValidationResult) -> Dict[str, float]:
    """Accuracy pooled over every origin and horizon, plus the fit success rate."""
    h = cv.horizon
    scales = np.repeat(cv.scales.to_numpy(dtype=float), h)
    out = _accuracy(cv.errors.to_numpy().ravel(), cv.actuals.to_numpy().ravel(), scales)
    out["origins"] = cv.n_origins
    out["success_rate"] = cv.success_rate
    return out


def combine_pvalues(p_values: Sequence[float],
                    method: Union[str, PValueCombination] = PValueCombination.FISHER) -> Tuple[float, float]:
    """Combine p-values from multiple tests.

    Parameters
    ----------
    p_values : sequence of float
        P-values to combine; NaN and out-of-range values are ignored
    method : str or PValueCombination
        'fisher', 'stouffer' or 'tippett'

    Returns
    -------
    tuple
        (combined_statistic, combined_p_value)

    Raises
    ------
    ValueError
        If no valid p-values remain or the method is unknown
    """
    method = PValueCombination(method)
    valid = [float(p) for p in p_values if p is not None and np.isfinite(p) and 0.0 <= p <= 1.0]
    if not valid:
        raise ValueError("No valid p-values found")

    n = len(valid)
    if method == PValueCombination.FISHER:
        # -2 * sum(ln p) ~ chi2(2k)
        stat = -2.0 * float(np.sum(np.log(np.maximum(valid, 1e-16))))
        return stat, float(chi2.sf(stat, 2 * n))

    if method == PValueCombination.STOUFFER:
        z = norm.isf(np.clip(valid, 1e-16, 1.0 - 1e-16))
        stat = float(np.sum(z) / np.sqrt(n))
        return stat, float(norm.sf(stat))

    min_p = min(valid)
    return float(min_p), float(1.0 - (1.0 - min_p) ** n)


def _dm_on_common_origins(cv: CrossValidationResult, bench: CrossValidationResult,
                          col: str) -> Tuple[float, float]:
    common = cv.forecasts.index.intersection(bench.forecasts.index)
    return diebold_mariano(cv.actuals.loc[common, col].to_numpy(),
                           cv.forecasts.loc[common, col].to_numpy(),
                           bench.forecasts.loc[common, col].to_numpy(),
                           h=1)


def _per_origin_dm_pvalues(cv: CrossValidationResult, bench: CrossValidationResult) -> List[float]:
    """DM p-values of each origin's horizon path against the benchmark's."""
    common = cv.forecasts.index.intersection(bench.forecasts.index)
    pvals = []
    for origin in common:
        _, p = diebold_mariano(cv.actuals.loc[origin].to_numpy(),
                               cv.forecasts.loc[origin].to_numpy(),
                               bench.forecasts.loc[origin].to_numpy(),
                               h=1)
        if np.isfinite(p):
            pvals.append(p)
    return pvals


def compare_models(cv_results: Dict[str, CrossValidationResult],
                   benchmark: Optional[str] = "snaive",
                   combine_method: str = "fisher") -> pd.DataFrame:
    """Rank cross-validated models by pooled MASE.

    Parameters
    ----------
    cv_results : Dict[str, CrossValidationResult]
        Model label mapped to its cross-validation result
    benchmark : Optional[str], default='snaive'
        Reference model for the Diebold-Mariano tests (skipped when absent)
    combine_method : str, default='fisher'
        How per-origin DM p-values are combined

    Returns
    -------
    pd.DataFrame
        Index 'model'; pooled RMSE, MAE, MAPE, MASE, n, origins, success_rate,
        rank (1 = lowest MASE), DM_t and DM_p for the h=1 squared errors
        versus the benchmark, and DM_p_combined over per-origin tests.
    """
    bench = cv_results.get(benchmark) if benchmark else None
    if benchmark and bench is None:
        logger.warning("Benchmark '%s' not among cross-validated models; DM tests skipped", benchmark)

    rows = []
    for name, cv in cv_results.items():
        row = {"model": name}
        row.update(summarize_cv(cv))
        row["DM_t"], row["DM_p"], row["DM_p_combined"] = np.nan, np.nan, np.nan
        if bench is not None and name != benchmark:
            row["DM_t"], row["DM_p"] = _dm_on_common_origins(cv, bench, cv.errors.columns[0])
            try:
                _, row["DM_p_combined"] = combine_pvalues(_per_origin_dm_pvalues(cv, bench),
                                                          combine_method)
            except ValueError as e:
                logger.debug("Combined DM p-value unavailable for %s: %s", name, e)
        rows.append(row)

    cols = ["model"] + POOLED_COLUMNS + ["origins", "success_rate", "DM_t", "DM_p", "DM_p_combined"]
    table = pd.DataFrame(rows, columns=cols).set_index("model")
    table.insert(len(POOLED_COLUMNS) + 2, "rank",
                 table["MASE"].rank(method="min", na_option="bottom").astype(int))
    return table.sort_values("rank")
