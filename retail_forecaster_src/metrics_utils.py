# retail_forecaster_src/metrics_utils.py

import math
import numpy as np
import pandas as pd
from typing import Dict, Mapping, Optional, Tuple, Union
import logging

from scipy.stats import norm

logger = logging.getLogger(__name__)

ArrayLike = Union[list, np.ndarray, pd.Series]

ACCURACY_COLUMNS = ["ME", "RMSE", "MAE", "MPE", "MAPE", "sMAPE", "MASE", "ACF1", "TheilU2"]


def to_1d_array(x: ArrayLike) -> np.ndarray:
    """
    Convert input to a float 1D numpy array without dropping any positions.
    """
    return np.asarray(x, dtype=float).ravel()


def paired(y_true: ArrayLike, y_hat: ArrayLike) -> Tuple[np.ndarray, np.ndarray]:
    """
    Align actuals and forecasts, keeping only positions where both are finite.

    Inputs of unequal length are truncated to the shorter one first. Dropping
    pairs rather than each array separately keeps errors matched to their dates.
    """
    yt = to_1d_array(y_true)
    yh = to_1d_array(y_hat)
    n = min(len(yt), len(yh))
    yt, yh = yt[:n], yh[:n]
    mask = np.isfinite(yt) & np.isfinite(yh)
    return yt[mask], yh[mask]


def me(y_true: ArrayLike, y_hat: ArrayLike) -> float:
    """Mean error (actual minus forecast); positive values mean under-forecasting."""
    yt, yh = paired(y_true, y_hat)
    if yt.size == 0:
        return float("nan")
    return float(np.mean(yt - yh))


def mae(y_true: ArrayLike, y_hat: ArrayLike) -> float:
    """
    Calculate Mean Absolute Error.
    """
    yt, yh = paired(y_true, y_hat)
    if yt.size == 0:
        return float("nan")
    return float(np.mean(np.abs(yt - yh)))


def rmse(y_true: ArrayLike, y_hat: ArrayLike) -> float:
    """
    Calculate Root Mean Square Error.

    RMSE penalizes large errors more heavily than MAE, making it useful when
    large misses (e.g. a holiday-season shortfall) are particularly costly.
    """
    yt, yh = paired(y_true, y_hat)
    if yt.size == 0:
        return float("nan")
    return float(np.sqrt(np.mean((yt - yh) ** 2)))


def mpe(y_true: ArrayLike, y_hat: ArrayLike) -> float:
    """Mean Percentage Error in percent; zero actuals are excluded."""
    yt, yh = paired(y_true, y_hat)
    nz = yt != 0.0
    if not nz.any():
        return float("nan")
    return float(np.mean((yt[nz] - yh[nz]) / yt[nz]) * 100.0)


def mape(y_true: ArrayLike, y_hat: ArrayLike) -> float:
    """
    Calculate Mean Absolute Percentage Error.

    Parameters
    ----------
    y_true : ArrayLike
        True values
    y_hat : ArrayLike
        Predicted values

    Returns
    -------
    float
        MAPE as percentage (0-100+), or NaN if no non-zero actuals remain

    Notes
    -----
    Retail sales are strictly positive, so no epsilon stabilisation is applied;
    any zero actuals are excluded rather than inflating the average.
    """
    yt, yh = paired(y_true, y_hat)
    nz = yt != 0.0
    if not nz.any():
        return float("nan")
    return float(np.mean(np.abs((yt[nz] - yh[nz]) / yt[nz])) * 100.0)


def smape(y_true: ArrayLike, y_hat: ArrayLike, eps: float = 1e-12) -> float:
    """
    Calculate Symmetric Mean Absolute Percentage Error.

    Returns
    -------
    float
        sMAPE as percentage (0-200), or NaN if no valid data
    """
    yt, yh = paired(y_true, y_hat)
    if yt.size == 0:
        return float("nan")
    denom = np.maximum(np.abs(yt) + np.abs(yh), eps)
    return float(np.mean(2.0 * np.abs(yh - yt) / denom) * 100.0)


def seasonal_naive_scale(y_train: ArrayLike, m: int = 12) -> float:
    """
    In-sample MAE of the seasonal naive method, the MASE denominator.

    Returns NaN when the training set has no more than m points or the scale is zero.
    """
    tr = to_1d_array(y_train)
    tr = tr[np.isfinite(tr)]
    if len(tr) <= m:
        return float("nan")
    scale = float(np.mean(np.abs(tr[m:] - tr[:-m])))
    if not np.isfinite(scale) or scale <= 0.0:
        return float("nan")
    return scale


def mase(y_true: ArrayLike, y_hat: ArrayLike, y_train: ArrayLike, m: int = 12) -> float:
    """
    Calculate Mean Absolute Scaled Error.

    MASE scales the out-of-sample MAE by the in-sample MAE of a seasonal naive
    forecast, so it is comparable across series and units.

    Parameters
    ----------
    y_true : ArrayLike
        True values
    y_hat : ArrayLike
        Predicted values
    y_train : ArrayLike
        Training data for scaling reference
    m : int, default=12
        Seasonal period for the naive scaling forecast (12 for monthly data)

    Returns
    -------
    float
        MASE value, or NaN if computation is not possible

    Notes
    -----
    Values < 1 indicate the forecast beats the in-sample seasonal naive forecast.
    """
    scale = seasonal_naive_scale(y_train, m)
    err = mae(y_true, y_hat)
    if not np.isfinite(scale) or not np.isfinite(err):
        return float("nan")
    return float(err / scale)


def acf1(errors: ArrayLike) -> float:
    """Lag-1 autocorrelation of a forecast error sequence."""
    e = to_1d_array(errors)
    e = e[np.isfinite(e)]
    if e.size < 3:
        return float("nan")
    d = e - e.mean()
    denom = float(np.sum(d * d))
    if denom == 0.0:
        return float("nan")
    return float(np.sum(d[1:] * d[:-1]) / denom)


def theil_u2(y_true: ArrayLike, y_hat: ArrayLike, y_hat_naive: ArrayLike) -> float:
    """
    Calculate Theil's U2 statistic (relative forecast accuracy).

    U2 compares forecast accuracy against a benchmark forecast. Values < 1 indicate
    the forecast is better than the benchmark.
    """
    yt = to_1d_array(y_true)
    yh = to_1d_array(y_hat)
    yn = to_1d_array(y_hat_naive)
    n = min(len(yt), len(yh), len(yn))
    yt, yh, yn = yt[:n], yh[:n], yn[:n]
    mask = np.isfinite(yt) & np.isfinite(yh) & np.isfinite(yn)
    if not mask.any():
        return float("nan")

    rmse_f = math.sqrt(float(np.mean((yh[mask] - yt[mask]) ** 2)))
    rmse_n = math.sqrt(float(np.mean((yn[mask] - yt[mask]) ** 2)))
    if rmse_n == 0.0:
        return float("nan")
    return float(rmse_f / rmse_n)


def dm_newey_west_var(d: np.ndarray, h: int) -> float:
    """
    Calculate Newey-West variance estimator for Diebold-Mariano test.

    Parameters
    ----------
    d : np.ndarray
        Array of loss differentials
    h : int
        Forecast horizon; autocovariances up to lag h-1 are included

    Returns
    -------
    float
        Variance estimate of the mean differential, or NaN if computation fails
    """
    n = len(d)
    if n < 3:
        return float("nan")

    e = d - float(np.mean(d))
    L = max(0, int(h) - 1)

    s_hat = float(np.mean(e * e))
    for k in range(1, L + 1):
        cov = float(np.mean(e[k:] * e[:-k]))
        w = 1.0 - (k / (L + 1.0))
        s_hat += 2.0 * w * cov

    var_dbar = s_hat / n
    return float(var_dbar) if var_dbar > 0.0 else float("nan")


def diebold_mariano(y_true: ArrayLike,
                    y_hat1: ArrayLike,
                    y_hat2: ArrayLike,
                    h: int = 1,
                    power: int = 2) -> Tuple[float, float]:
    """
    Perform the Diebold-Mariano test for predictive accuracy.

    Parameters
    ----------
    y_true : ArrayLike
        True values
    y_hat1 : ArrayLike
        Predictions from first method
    y_hat2 : ArrayLike
        Predictions from second method
    h : int, default=1
        Forecast horizon for variance adjustment
    power : int, default=2
        Power for loss function (1=absolute, 2=squared)

    Returns
    -------
    Tuple[float, float]
        (test_statistic, p_value), both NaN if test cannot be performed

    Notes
    -----
    Null hypothesis: both methods have equal predictive accuracy. A negative
    statistic means method 1 has the smaller loss.
    """
    yt = to_1d_array(y_true)
    y1 = to_1d_array(y_hat1)
    y2 = to_1d_array(y_hat2)
    n = min(len(yt), len(y1), len(y2))
    yt, y1, y2 = yt[:n], y1[:n], y2[:n]
    mask = np.isfinite(yt) & np.isfinite(y1) & np.isfinite(y2)
    if mask.sum() < 3:
        return float("nan"), float("nan")

    e1 = y1[mask] - yt[mask]
    e2 = y2[mask] - yt[mask]
    if power == 1:
        d = np.abs(e1) - np.abs(e2)
    else:
        d = e1 ** 2 - e2 ** 2

    var_dbar = dm_newey_west_var(d, h=h)
    if not np.isfinite(var_dbar) or var_dbar <= 0.0:
        return float("nan"), float("nan")

    dm_t = float(np.mean(d)) / math.sqrt(var_dbar)
    p = 2.0 * float(norm.sf(abs(dm_t)))
    return float(dm_t), float(min(max(p, 0.0), 1.0))


def compute_accuracy(y_true: ArrayLike,
                     y_hat: ArrayLike,
                     y_train: ArrayLike,
                     m: int = 12,
                     y_hat_naive: Optional[ArrayLike] = None) -> Dict[str, float]:
    """
    Compute the standard set of hold-out accuracy measures for one forecast.

    Parameters
    ----------
    y_true : ArrayLike
        Hold-out actuals
    y_hat : ArrayLike
        Forecast for the hold-out period
    y_train : ArrayLike
        Training data, used for MASE scaling
    m : int, default=12
        Seasonal period for MASE
    y_hat_naive : Optional[ArrayLike]
        Benchmark forecast for Theil's U2 (NaN when omitted)

    Returns
    -------
    Dict[str, float]
        ME, RMSE, MAE, MPE, MAPE, sMAPE, MASE, ACF1, TheilU2
    """
    yt = to_1d_array(y_true)
    yh = to_1d_array(y_hat)
    n = min(len(yt), len(yh))
    errors = yt[:n] - yh[:n]

    return {
        "ME": me(yt, yh),
        "RMSE": rmse(yt, yh),
        "MAE": mae(yt, yh),
        "MPE": mpe(yt, yh),
        "MAPE": mape(yt, yh),
        "sMAPE": smape(yt, yh),
        "MASE": mase(yt, yh, y_train, m=m),
        "ACF1": acf1(errors),
        "TheilU2": theil_u2(yt, yh, y_hat_naive) if y_hat_naive is not None else float("nan"),
    }


def accuracy_table(forecasts: Mapping[str, object],
                   y_test: pd.Series,
                   y_train: pd.Series,
                   m: int = 12,
                   benchmark: Optional[str] = "snaive") -> pd.DataFrame:
    """
    Build a model-by-metric accuracy table for hold-out forecasts.

    Parameters
    ----------
    forecasts : Mapping[str, ForecastResult]
        Model name mapped to its hold-out forecast (objects with .mean and .spec)
    y_test : pd.Series
        Hold-out actuals
    y_train : pd.Series
        Training data for MASE scaling
    m : int, default=12
        Seasonal period
    benchmark : Optional[str], default='snaive'
        Model used as the Theil U2 and Diebold-Mariano reference when present

    Returns
    -------
    pd.DataFrame
        Index: model name; columns: spec, accuracy measures, DM_t, DM_p.
        Sorted ascending by MASE.
    """
    bench = forecasts.get(benchmark) if benchmark else None
    bench_mean = bench.mean.values if bench is not None else None

    rows = []
    for name, fc in forecasts.items():
        row = {"model": name, "spec": getattr(fc, "spec", name)}
        row.update(compute_accuracy(y_test.values, fc.mean.values, y_train.values, m=m,
                                    y_hat_naive=bench_mean))
        if bench_mean is not None and name != benchmark:
            row["DM_t"], row["DM_p"] = diebold_mariano(y_test.values, fc.mean.values, bench_mean)
        else:
            row["DM_t"], row["DM_p"] = float("nan"), float("nan")
        rows.append(row)

    table = pd.DataFrame(rows, columns=["model", "spec"] + ACCURACY_COLUMNS + ["DM_t", "DM_p"])
    if table.empty:
        return table.set_index("model")
    return table.set_index("model").sort_values("MASE", na_position="last")
