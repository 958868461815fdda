"""Tests for rolling-origin cross-validation and its aggregation."""

import numpy as np
import pandas as pd
import pytest

from backtesting import (
    BacktestConfig,
    PValueCombination,
    RollingOriginValidator,
    combine_pvalues,
    compare_models,
    horizon_accuracy,
    run_rolling_origin_backtest,
    summarize_cv,
    tscv_errors,
)
from config import ConfigurationManager
from retail_forecaster_src.forecasting_utils import make_model_factory


def linear_series(n=60):
    idx = pd.date_range("2015-01-01", periods=n, freq="MS")
    return pd.Series(np.arange(n, dtype=float) + 100.0, index=idx, name="sales")


def naive_fn(train, h):
    return np.repeat(train.iloc[-1], h)


def test_forecasts_use_only_past_observations():
    y = linear_series()
    seen = []

    def recording_fn(train, h):
        seen.append((train.index[-1], len(train)))
        return naive_fn(train, h)

    cv = RollingOriginValidator(BacktestConfig(window_size=36, forecast_horizon=6)).run(y, recording_fn)

    assert len(seen) == cv.n_origins == 24
    for (last_train, size), origin in zip(seen, cv.errors.index):
        assert last_train == origin
        assert size == 36
        pos = y.index.get_loc(origin)
        if pos + 1 < len(y):
            assert cv.actuals.loc[origin, "h1"] == y.iloc[pos + 1]
    # errors are actual minus forecast: h months ahead on a unit-slope line
    finite = cv.errors.iloc[0]
    assert finite.tolist() == [1.0, 2.0, 3.0, 4.0, 5.0, 6.0]


def test_rolling_window_has_fixed_length():
    cv = RollingOriginValidator(BacktestConfig(window_size=36, forecast_horizon=3)).run(linear_series(),
                                                                                       naive_fn)
    assert {f.train_size for f in cv.folds} == {36}
    assert cv.errors.index.name == "origin"
    assert list(cv.errors.columns) == ["h1", "h2", "h3"]


def test_expanding_window_grows():
    config = BacktestConfig(window_type="expanding", forecast_horizon=3, step_size=5)
    cv = RollingOriginValidator(config).run(linear_series(), naive_fn)
    sizes = [f.train_size for f in cv.folds]
    assert sizes[0] == 26
    assert sizes == sorted(sizes)
    assert all(b - a == 5 for a, b in zip(sizes, sizes[1:]))


def test_tail_is_nan_past_data_end():
    errors = tscv_errors(linear_series(), naive_fn, h=6, window=36)
    assert errors.shape == (24, 6)
    last = errors.iloc[-1]
    assert last["h1"] == 1.0
    assert last[["h2", "h3", "h4", "h5", "h6"]].isna().all()
    assert errors.iloc[-3][["h1", "h2", "h3"]].notna().all()
    assert errors.iloc[-3][["h4", "h5", "h6"]].isna().all()


def test_failed_fit_gives_nan_row():
    calls = {"n": 0}

    def flaky_fn(train, h):
        calls["n"] += 1
        if calls["n"] == 2:
            raise RuntimeError("did not converge")
        return naive_fn(train, h)

    cv = RollingOriginValidator(BacktestConfig(window_size=48, forecast_horizon=2)).run(linear_series(),
                                                                                       flaky_fn)
    assert cv.errors.iloc[1].isna().all()
    assert cv.folds[1].failed
    assert cv.failed_origins == [cv.errors.index[1]]
    assert cv.success_rate == pytest.approx(11 / 12)


def test_wrong_forecast_length_counts_as_failure():
    cv = RollingOriginValidator(BacktestConfig(window_size=50, forecast_horizon=3)).run(
        linear_series(), lambda train, h: np.zeros(h - 1))
    assert cv.success_rate == 0.0
    assert cv.errors.isna().all().all()


def test_max_origins_keeps_latest():
    validator = RollingOriginValidator(BacktestConfig(window_size=36, max_origins=4))
    assert validator.origins(60) == [56, 57, 58, 59]


def test_run_validates_input():
    validator = RollingOriginValidator(BacktestConfig(window_size=36))
    with pytest.raises(ValueError):
        validator.run(pd.Series(dtype=float), naive_fn)
    gappy = linear_series()
    gappy.iloc[10] = np.nan
    with pytest.raises(ValueError):
        validator.run(gappy, naive_fn)
    with pytest.raises(ValueError):
        validator.run(linear_series(30), naive_fn)


def test_per_origin_scale_and_horizon_accuracy():
    cv = RollingOriginValidator(BacktestConfig(window_size=36, forecast_horizon=4)).run(linear_series(),
                                                                                       naive_fn)
    assert np.allclose(cv.scales, 12.0)

    table = horizon_accuracy(cv)
    assert list(table.index) == [1, 2, 3, 4]
    assert table.loc[2, "MAE"] == pytest.approx(2.0)
    assert table.loc[3, "RMSE"] == pytest.approx(3.0)
    assert table.loc[4, "MASE"] == pytest.approx(4.0 / 12.0)
    assert list(table["n"]) == [24, 23, 22, 21]

    summary = summarize_cv(cv)
    assert summary["n"] == 90
    assert summary["origins"] == 24
    assert summary["success_rate"] == 1.0


def test_validate_with_model_factory(monthly_sales):
    config = BacktestConfig(window_size=48, forecast_horizon=6, step_size=12)
    cv = RollingOriginValidator(config).validate(monthly_sales, make_model_factory("snaive"), "snaive")
    assert cv.model == "snaive"
    assert cv.n_origins == 4
    # seasonal naive forecast for h <= 12 is the value 12 months before the target
    origin_pos = monthly_sales.index.get_loc(cv.forecasts.index[0])
    expected = monthly_sales.iloc[origin_pos - 11:origin_pos - 5].to_numpy()
    np.testing.assert_allclose(cv.forecasts.iloc[0].to_numpy(), expected)


def test_compare_models_ranks_seasonal_naive_first(monthly_sales):
    config = BacktestConfig(window_size=36, forecast_horizon=6, step_size=6)
    results = run_rolling_origin_backtest(
        monthly_sales,
        {"naive": make_model_factory("naive"), "snaive": make_model_factory("snaive")},
        config,
    )
    table = compare_models(results, benchmark="snaive")

    assert list(table.index) == ["snaive", "naive"]
    assert list(table["rank"]) == [1, 2]
    assert table.loc["naive", "MASE"] > table.loc["snaive", "MASE"]
    assert np.isnan(table.loc["snaive", "DM_t"])
    assert table.loc["naive", "DM_t"] > 0
    assert 0.0 <= table.loc["naive", "DM_p_combined"] <= 1.0


def test_compare_models_without_benchmark():
    y = linear_series()
    config = BacktestConfig(window_size=36, forecast_horizon=3)
    validator = RollingOriginValidator(config)
    results = {"naive": validator.run(y, naive_fn, "naive")}
    table = compare_models(results, benchmark="snaive")
    assert table["DM_t"].isna().all()


def test_combine_pvalues():
    stat, p = combine_pvalues([0.05], "fisher")
    assert stat == pytest.approx(-2.0 * np.log(0.05))
    assert p == pytest.approx(0.05)

    _, p = combine_pvalues([0.2], PValueCombination.STOUFFER)
    assert p == pytest.approx(0.2)

    stat, p = combine_pvalues([0.01, 0.5, np.nan], "tippett")
    assert stat == pytest.approx(0.01)
    assert p == pytest.approx(1.0 - 0.99 ** 2)

    with pytest.raises(ValueError):
        combine_pvalues([np.nan, 1.5])
    with pytest.raises(ValueError):
        combine_pvalues([0.1], "bonferroni")


def test_backtest_config_validation_and_config_manager():
    with pytest.raises(ValueError):
        BacktestConfig(window_type="sliding")
    with pytest.raises(ValueError):
        BacktestConfig(forecast_horizon=0)
    with pytest.raises(ValueError):
        BacktestConfig(max_origins=0)

    config = BacktestConfig.from_config_manager(ConfigurationManager())
    assert config.window_size == 120
    assert config.forecast_horizon == 12
    assert config.min_train_size == 26

    config = BacktestConfig.from_config_manager(ConfigurationManager(), window_size=48, step_size=None)
    assert config.window_size == 48
    assert config.step_size == 1

    assert BacktestConfig.from_config_manager(None).window_type == "rolling"
