"""Unit-root and stationarity diagnostics for monthly retail sales.

This module wraps the statsmodels ADF and KPSS tests and adds the order
selection heuristics used before ARIMA modelling:

Features:
- ADF test (null: unit root) and KPSS test (null: stationarity)
- STL-based seasonal strength
- ndiffs: number of first differences required (repeated KPSS)
- nsdiffs: number of seasonal differences required (seasonal strength rule)
- Stationarity report over level, log and differenced variants
"""

import logging
import warnings
from dataclasses import dataclass, field
from typing import Dict, List, Union

import numpy as np
import pandas as pd
from statsmodels.tools.sm_exceptions import InterpolationWarning
from statsmodels.tsa.seasonal import STL
from statsmodels.tsa.stattools import adfuller, kpss

logger = logging.getLogger(__name__)

KPSS_PVALUE_BOUNDS = (0.01, 0.10)


@dataclass
class StationarityResult:
    """Outcome of a single stationarity test."""

    test: str
    statistic: float
    p_value: float
    lags: int
    n_obs: int
    alpha: float = 0.05
    variant: str = "level"
    critical_values: Dict[str, float] = field(default_factory=dict)

    @property
    def is_stationary(self) -> bool:
        """ADF rejects a unit root when p < alpha; KPSS keeps stationarity when p >= alpha."""
        if not np.isfinite(self.p_value):
            return False
        if self.test == "ADF":
            return self.p_value < self.alpha
        return self.p_value >= self.alpha

    @property
    def interpretation(self) -> str:
        verdict = "stationary" if self.is_stationary else "non-stationary"
        return f"{self.test} on {self.variant}: {verdict} (p={self.p_value:.4f})"


def _clean(series: Union[pd.Series, np.ndarray]) -> pd.Series:
    return pd.Series(series).dropna().astype(float)


def adf_test(series: Union[pd.Series, np.ndarray],
             alpha: float = 0.05,
             variant: str = "level") -> StationarityResult:
    """
    Augmented Dickey-Fuller test with AIC lag selection.

    Null hypothesis: the series has a unit root (non-stationary).
    """
    s = _clean(series)
    stat, pval, lags, nobs, crit, _ = adfuller(s, autolag="AIC")
    return StationarityResult(
        test="ADF",
        statistic=float(stat),
        p_value=float(pval),
        lags=int(lags),
        n_obs=int(nobs),
        alpha=alpha,
        variant=variant,
        critical_values={k: float(v) for k, v in crit.items()},
    )


def kpss_test(series: Union[pd.Series, np.ndarray],
              alpha: float = 0.05,
              regression: str = "c",
              variant: str = "level") -> StationarityResult:
    """
    KPSS test with automatic bandwidth.

    Null hypothesis: the series is (level- or trend-) stationary. statsmodels
    interpolates p-values from a table bounded at 0.01 and 0.10; values outside
    the table are clipped to those bounds.
    """
    s = _clean(series)
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", InterpolationWarning)
        stat, pval, lags, crit = kpss(s, regression=regression, nlags="auto")
    lo, hi = KPSS_PVALUE_BOUNDS
    return StationarityResult(
        test="KPSS",
        statistic=float(stat),
        p_value=float(min(max(pval, lo), hi)),
        lags=int(lags),
        n_obs=int(len(s)),
        alpha=alpha,
        variant=variant,
        critical_values={k: float(v) for k, v in crit.items()},
    )


def seasonal_strength(series: Union[pd.Series, np.ndarray], m: int = 12) -> float:
    """
    Strength of seasonality from a robust STL decomposition.

    Fs = max(0, 1 - Var(remainder) / Var(seasonal + remainder)); values above
    0.64 indicate seasonality strong enough to warrant a seasonal difference.
    """
    s = _clean(series)
    if len(s) < 2 * m + 1:
        return float("nan")
    res = STL(s.to_numpy(), period=m, robust=True).fit()
    denom = float(np.var(res.seasonal + res.resid))
    if denom <= 0.0:
        return 0.0
    return float(max(0.0, 1.0 - np.var(res.resid) / denom))


def ndiffs(series: Union[pd.Series, np.ndarray], alpha: float = 0.05, max_d: int = 2) -> int:
    """
    Number of first differences needed for KPSS stationarity.

    The series is differenced until the KPSS test no longer rejects stationarity
    at level ``alpha`` or ``max_d`` is reached.
    """
    s = _clean(series)
    d = 0
    while d < max_d and len(s) > 10:
        if kpss_test(s, alpha=alpha).is_stationary:
            break
        s = s.diff().dropna()
        d += 1
    return d


def nsdiffs(series: Union[pd.Series, np.ndarray],
            m: int = 12,
            threshold: float = 0.64,
            max_D: int = 1) -> int:
    """
    Number of seasonal differences needed, by the seasonal strength rule.
    """
    s = _clean(series)
    D = 0
    while D < max_D:
        fs = seasonal_strength(s, m)
        if not np.isfinite(fs) or fs <= threshold:
            break
        s = s.diff(m).dropna()
        D += 1
    return D


def _variants(series: pd.Series, m: int) -> Dict[str, pd.Series]:
    s = _clean(series)
    out = {"level": s}
    if (s > 0).all():
        out["log"] = np.log(s)
    out["diff"] = s.diff().dropna()
    out["seasonal_diff"] = s.diff(m).dropna()
    out["seasonal_diff+diff"] = s.diff(m).diff().dropna()
    return out


def stationarity_report(series: Union[pd.Series, np.ndarray],
                        m: int = 12,
                        alpha: float = 0.05) -> pd.DataFrame:
    """
    Run ADF and KPSS on the level, log and differenced versions of a series.

    Parameters
    ----------
    series : Union[pd.Series, np.ndarray]
        Monthly series on its original scale
    m : int, default=12
        Seasonal period
    alpha : float, default=0.05
        Significance level for both tests

    Returns
    -------
    pd.DataFrame
        One row per variant with ADF/KPSS statistics and p-values and a
        'verdict' column: 'stationary' when both tests agree on stationarity,
        'non-stationary' when both agree on a unit root, else 'inconclusive'.
    """
    rows: List[Dict[str, object]] = []
    min_len = 2 * m + 2

    for name, s in _variants(pd.Series(series), m).items():
        if len(s) < min_len:
            logger.warning("Skipping stationarity tests on '%s': only %d observations", name, len(s))
            continue
        adf = adf_test(s, alpha=alpha, variant=name)
        kp = kpss_test(s, alpha=alpha, variant=name)
        if adf.is_stationary and kp.is_stationary:
            verdict = "stationary"
        elif not adf.is_stationary and not kp.is_stationary:
            verdict = "non-stationary"
        else:
            verdict = "inconclusive"
        rows.append({
            "variant": name,
            "n": len(s),
            "ADF_stat": adf.statistic,
            "ADF_p": adf.p_value,
            "ADF_lags": adf.lags,
            "KPSS_stat": kp.statistic,
            "KPSS_p": kp.p_value,
            "KPSS_lags": kp.lags,
            "verdict": verdict,
        })

    return pd.DataFrame(rows, columns=[
        "variant", "n", "ADF_stat", "ADF_p", "ADF_lags",
        "KPSS_stat", "KPSS_p", "KPSS_lags", "verdict",
    ])


def suggest_differencing(series: Union[pd.Series, np.ndarray],
                         m: int = 12,
                         alpha: float = 0.05,
                         threshold: float = 0.64) -> Dict[str, int]:
    """
    Suggest (d, D) for a seasonal ARIMA: seasonal differences first, then ndiffs.
    """
    s = _clean(series)
    D = nsdiffs(s, m=m, threshold=threshold)
    s_d = s.diff(m).dropna() if D else s
    d = ndiffs(s_d, alpha=alpha)
    logger.info("Suggested differencing: d=%d, D=%d", d, D)
    return {"d": d, "D": D}
