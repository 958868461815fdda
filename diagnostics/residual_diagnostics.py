"""Residual diagnostics for fitted forecasting models.

This module runs the portmanteau and distribution checks that decide whether a
model has captured the structure of the series.

Features:
- Ljung-Box test for serial correlation, with seasonal lag selection and
  degrees of freedom adjusted for the number of estimated parameters
- Jarque-Bera test for normality (prediction intervals assume it)
- ARCH-LM test for heteroskedasticity
- Tabular summary for reports
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

import numpy as np
import pandas as pd
from statsmodels.stats.diagnostic import acorr_ljungbox, het_arch
from statsmodels.stats.stattools import jarque_bera

logger = logging.getLogger(__name__)


class DiagnosticTest(Enum):
    """Types of residual diagnostic tests."""
    LJUNG_BOX = "ljung_box"
    JARQUE_BERA = "jarque_bera"
    ARCH_LM = "arch_lm"


@dataclass
class DiagnosticResult:
    """Results from a single diagnostic test."""

    test_name: str
    test_type: DiagnosticTest
    test_statistic: float
    p_value: float
    significance_level: float = 0.05
    degrees_of_freedom: Optional[int] = None
    lags: Optional[int] = None
    additional_stats: Dict[str, float] = field(default_factory=dict)

    @property
    def is_significant(self) -> bool:
        """Check if test rejects null hypothesis."""
        return bool(np.isfinite(self.p_value) and self.p_value < self.significance_level)

    @property
    def interpretation(self) -> str:
        """Get interpretation of test result."""
        if self.test_type == DiagnosticTest.LJUNG_BOX:
            if self.is_significant:
                return "Serial correlation detected in residuals"
            return "No significant serial correlation in residuals"
        if self.test_type == DiagnosticTest.JARQUE_BERA:
            if self.is_significant:
                return "Residuals not normally distributed"
            return "Residuals appear normally distributed"
        if self.is_significant:
            return "ARCH effects detected in residuals"
        return "No ARCH effects detected in residuals"


class ResidualDiagnostics:
    """Residual diagnostic testing for a seasonal forecasting model."""

    def __init__(self, significance_level: float = 0.05, season_length: int = 12):
        """Initialize residual diagnostics.

        Parameters
        ----------
        significance_level : float, default 0.05
            Significance level for all tests
        season_length : int, default 12
            Seasonal period; drives the Ljung-Box lag choice
        """
        self.significance_level = significance_level
        self.season_length = season_length

    def ljung_box_lags(self, n_obs: int, model_df: int = 0) -> int:
        """Lag for the Ljung-Box test: min(2m, n/5) if seasonal, min(10, n/5) otherwise."""
        base = 2 * self.season_length if self.season_length > 1 else 10
        lags = min(base, max(1, n_obs // 5))
        return max(lags, model_df + 1)

    def ljung_box(self, residuals: pd.Series, model_df: int = 0) -> DiagnosticResult:
        """Ljung-Box test for serial correlation in residuals.

        Parameters
        ----------
        residuals : pd.Series
            Model residuals
        model_df : int, default 0
            Number of estimated model parameters, subtracted from the
            chi-squared degrees of freedom

        Returns
        -------
        DiagnosticResult
            Ljung-Box test results at the selected lag
        """
        resid = pd.Series(residuals).dropna()
        lags = self.ljung_box_lags(len(resid), model_df)
        logger.debug("Running Ljung-Box test with %d lags (model_df=%d)", lags, model_df)

        lb = acorr_ljungbox(resid, lags=[lags], model_df=model_df, return_df=True)
        return DiagnosticResult(
            test_name="Ljung-Box",
            test_type=DiagnosticTest.LJUNG_BOX,
            test_statistic=float(lb["lb_stat"].iloc[-1]),
            p_value=float(lb["lb_pvalue"].iloc[-1]),
            significance_level=self.significance_level,
            degrees_of_freedom=max(lags - model_df, 1),
            lags=lags,
        )

    def jarque_bera(self, residuals: pd.Series) -> DiagnosticResult:
        """Jarque-Bera test for normality of residuals."""
        resid = pd.Series(residuals).dropna()
        jb_stat, jb_p, skew, kurt = jarque_bera(resid)
        return DiagnosticResult(
            test_name="Jarque-Bera",
            test_type=DiagnosticTest.JARQUE_BERA,
            test_statistic=float(jb_stat),
            p_value=float(jb_p),
            significance_level=self.significance_level,
            degrees_of_freedom=2,
            additional_stats={"skewness": float(skew), "kurtosis": float(kurt)},
        )

    def arch_lm(self, residuals: pd.Series, lags: Optional[int] = None) -> DiagnosticResult:
        """Engle's ARCH-LM test for conditional heteroskedasticity."""
        resid = pd.Series(residuals).dropna()
        if lags is None:
            lags = min(self.season_length, max(1, len(resid) // 10))
        lm_stat, lm_p, _, _ = het_arch(resid, nlags=lags)
        return DiagnosticResult(
            test_name="ARCH-LM",
            test_type=DiagnosticTest.ARCH_LM,
            test_statistic=float(lm_stat),
            p_value=float(lm_p),
            significance_level=self.significance_level,
            degrees_of_freedom=lags,
            lags=lags,
        )

    def run_all(self, residuals: pd.Series, model_df: int = 0) -> List[DiagnosticResult]:
        """Run every diagnostic test; tests that cannot run on the data are logged and skipped."""
        resid = pd.Series(residuals).dropna()
        if len(resid) < 8:
            logger.warning("Residual diagnostics skipped: only %d residuals", len(resid))
            return []

        results: List[DiagnosticResult] = []
        for name, run in (
            ("Ljung-Box", lambda: self.ljung_box(resid, model_df=model_df)),
            ("Jarque-Bera", lambda: self.jarque_bera(resid)),
            ("ARCH-LM", lambda: self.arch_lm(resid)),
        ):
            try:
                results.append(run())
            except (ValueError, np.linalg.LinAlgError) as e:
                logger.warning("%s test failed: %s", name, e)
        return results


def diagnostics_frame(results: List[DiagnosticResult]) -> pd.DataFrame:
    """Flatten diagnostic results into a report table."""
    rows = [{
        "test": r.test_name,
        "statistic": r.test_statistic,
        "p_value": r.p_value,
        "df": r.degrees_of_freedom,
        "lags": r.lags,
        "significant": r.is_significant,
        "interpretation": r.interpretation,
    } for r in results]
    return pd.DataFrame(rows, columns=["test", "statistic", "p_value", "df", "lags",
                                       "significant", "interpretation"])
