#!/usr/bin/env python3
"""Tests for stationarity and residual diagnostics."""

import numpy as np
import pandas as pd
import pytest

from diagnostics import (
    DiagnosticTest,
    ResidualDiagnostics,
    adf_test,
    diagnostics_frame,
    kpss_test,
    ndiffs,
    nsdiffs,
    seasonal_strength,
    stationarity_report,
    suggest_differencing,
)
from retail_forecaster_src.diagnostics_utils import save_residual_diagnostics, save_stationarity_artifacts


def create_random_walk(n=300, seed=11):
    rng = np.random.default_rng(seed)
    idx = pd.date_range("2000-01-01", periods=n, freq="MS")
    return pd.Series(np.cumsum(rng.normal(0.0, 1.0, n)), index=idx)


def create_ar1_residuals(n=200, phi=0.9, seed=5):
    rng = np.random.default_rng(seed)
    e = rng.normal(0.0, 1.0, n)
    out = np.zeros(n)
    for t in range(1, n):
        out[t] = phi * out[t - 1] + e[t]
    return pd.Series(out, index=pd.date_range("2005-01-01", periods=n, freq="MS"))


def test_adf_rejects_unit_root_for_white_noise():
    rng = np.random.default_rng(1)
    res = adf_test(rng.normal(size=200))
    assert res.test == "ADF"
    assert res.is_stationary
    assert set(res.critical_values) == {"1%", "5%", "10%"}


def test_kpss_flags_random_walk():
    res = kpss_test(create_random_walk(), variant="level")
    assert res.test == "KPSS"
    assert not res.is_stationary
    assert 0.01 <= res.p_value <= 0.10
    assert "non-stationary" in res.interpretation


def test_ndiffs_random_walk_needs_differencing():
    assert ndiffs(create_random_walk()) >= 1


def test_seasonal_strength(monthly_sales):
    assert seasonal_strength(monthly_sales, m=12) > 0.9
    rng = np.random.default_rng(2)
    assert seasonal_strength(rng.normal(size=120), m=12) < 0.64
    assert np.isnan(seasonal_strength(monthly_sales.iloc[:20], m=12))


def test_nsdiffs_and_suggestion(monthly_sales):
    assert nsdiffs(monthly_sales, m=12) == 1
    suggestion = suggest_differencing(monthly_sales, m=12)
    assert set(suggestion) == {"d", "D"}
    assert suggestion["D"] == 1
    assert 0 <= suggestion["d"] <= 2


def test_stationarity_report_variants(monthly_sales):
    report = stationarity_report(monthly_sales, m=12)
    assert list(report["variant"]) == ["level", "log", "diff", "seasonal_diff", "seasonal_diff+diff"]
    assert set(report["verdict"]) <= {"stationary", "non-stationary", "inconclusive"}
    assert (report["KPSS_p"].between(0.01, 0.10)).all()


def test_stationarity_report_skips_short_series():
    report = stationarity_report(pd.Series(np.arange(1.0, 21.0)), m=12)
    assert report.empty
    assert "verdict" in report.columns


def test_ljung_box_lags():
    checker = ResidualDiagnostics(season_length=12)
    assert checker.ljung_box_lags(120) == 24
    assert checker.ljung_box_lags(50) == 10
    assert checker.ljung_box_lags(50, model_df=12) == 13
    assert ResidualDiagnostics(season_length=1).ljung_box_lags(200) == 10


def test_ljung_box_detects_autocorrelation():
    checker = ResidualDiagnostics(season_length=12)
    res = checker.ljung_box(create_ar1_residuals(), model_df=2)
    assert res.test_type == DiagnosticTest.LJUNG_BOX
    assert res.lags == 24
    assert res.degrees_of_freedom == 22
    assert res.is_significant
    assert res.interpretation.startswith("Serial correlation")


def test_run_all_and_frame():
    checker = ResidualDiagnostics()
    results = checker.run_all(create_ar1_residuals())
    assert [r.test_name for r in results] == ["Ljung-Box", "Jarque-Bera", "ARCH-LM"]

    frame = diagnostics_frame(results)
    assert list(frame.columns) == ["test", "statistic", "p_value", "df", "lags",
                                   "significant", "interpretation"]
    assert len(frame) == 3

    assert checker.run_all(pd.Series([0.1, -0.2, 0.3])) == []


def test_save_residual_diagnostics_writes_artifacts(tmp_path):
    summary = save_residual_diagnostics(create_ar1_residuals(), tmp_path, fname_prefix="ARIMA",
                                        season_length=12, model_df=3)
    assert (tmp_path / "ARIMA_check.png").exists()
    assert (tmp_path / "ARIMA_tests.csv").exists()
    lb = pd.read_csv(tmp_path / "ARIMA_LjungBox.csv", index_col="lag")
    assert list(lb.index) == list(range(1, 25))
    assert list(summary["test"]) == ["Ljung-Box", "Jarque-Bera", "ARCH-LM"]


def test_save_residual_diagnostics_empty(tmp_path):
    summary = save_residual_diagnostics(pd.Series([np.nan, np.nan]), tmp_path / "empty")
    assert summary.empty
    assert not (tmp_path / "empty" / "Residuals_check.png").exists()


def test_save_stationarity_artifacts(tmp_path, monthly_sales):
    path = save_stationarity_artifacts(stationarity_report(monthly_sales), tmp_path)
    assert path == tmp_path / "stationarity_report.csv"
    assert len(pd.read_csv(path)) == 5


@pytest.mark.parametrize("n_obs,expected", [(30, 6), (200, 24)])
def test_ljung_box_lag_scaling(n_obs, expected):
    assert ResidualDiagnostics(season_length=12).ljung_box_lags(n_obs) == expected
