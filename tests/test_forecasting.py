import numpy as np
import pandas as pd
import pytest

from retail_forecaster_src.forecasting_utils import (
    MODEL_REGISTRY,
    ArimaModel,
    ForecastResult,
    HoltWintersModel,
    NaiveModel,
    SeasonalNaiveModel,
    create_model,
    forecast_holdout,
    hash_forecast,
    make_model_factory,
    optimize_sarimax,
)


def assert_intervals_ordered(fc: ForecastResult):
    for lvl in fc.lower:
        assert (fc.lower[lvl] <= fc.mean + 1e-9).all()
        assert (fc.mean <= fc.upper[lvl] + 1e-9).all()
    if 80 in fc.lower and 95 in fc.lower:
        assert (fc.lower[95] <= fc.lower[80] + 1e-9).all()
        assert (fc.upper[80] <= fc.upper[95] + 1e-9).all()


def test_snaive_repeats_last_season(monthly_sales):
    model = SeasonalNaiveModel(season_length=12).fit(monthly_sales)
    fc = model.forecast(18, levels=(80, 95))

    last_season = monthly_sales.iloc[-12:].to_numpy()
    np.testing.assert_allclose(fc.mean.to_numpy()[:12], last_season)
    np.testing.assert_allclose(fc.mean.to_numpy()[12:], last_season[:6])
    assert fc.mean.index[0] == monthly_sales.index[-1] + pd.offsets.MonthBegin(1)
    assert fc.spec == "SNaive[12]"
    assert_intervals_ordered(fc)

    # Interval width steps up once the forecast enters the second season
    width = (fc.upper[95] - fc.lower[95]).to_numpy()
    np.testing.assert_allclose(width[:12], width[0])
    np.testing.assert_allclose(width[12], width[0] * np.sqrt(2.0))


def test_naive_interval_grows_with_sqrt_horizon(monthly_sales):
    fc = NaiveModel().fit(monthly_sales).forecast(4, levels=(95,))
    assert (fc.mean == monthly_sales.iloc[-1]).all()
    width = (fc.upper[95] - fc.lower[95]).to_numpy()
    assert width[3] == pytest.approx(2.0 * width[0])


def test_naive_residuals_and_fitted(monthly_sales):
    model = SeasonalNaiveModel().fit(monthly_sales)
    assert len(model.residuals) == len(monthly_sales) - 12
    np.testing.assert_allclose(model.residuals.to_numpy(),
                               (monthly_sales - monthly_sales.shift(12)).dropna().to_numpy())


def test_snaive_needs_more_than_one_season():
    s = pd.Series(np.arange(1.0, 13.0), index=pd.date_range("2020-01-01", periods=12, freq="MS"))
    with pytest.raises(ValueError):
        SeasonalNaiveModel().fit(s)


def test_log_transform_back_transforms(monthly_sales):
    fc = SeasonalNaiveModel(transform="log").fit(monthly_sales).forecast(12)
    np.testing.assert_allclose(fc.mean.to_numpy(), monthly_sales.iloc[-12:].to_numpy())
    assert (fc.lower[95] > 0).all()
    assert_intervals_ordered(fc)


def test_fit_and_forecast_validation(monthly_sales):
    with pytest.raises(RuntimeError):
        NaiveModel().forecast(3)
    with pytest.raises(ValueError):
        NaiveModel().fit(monthly_sales).forecast(0)
    gappy = monthly_sales.copy()
    gappy.iloc[5] = np.nan
    with pytest.raises(ValueError):
        NaiveModel().fit(gappy)
    with pytest.raises(TypeError):
        NaiveModel().fit(pd.Series(monthly_sales.to_numpy()))


def test_arima_forecast(monthly_sales):
    model = ArimaModel(order=(0, 1, 1), seasonal_order=(0, 1, 1)).fit(monthly_sales)
    fc = model.forecast(12, levels=(80, 95))

    assert model.spec == "ARIMA(0,1,1)(0,1,1)[12]"
    assert fc.horizon == 12
    assert np.isfinite(fc.mean).all()
    assert_intervals_ordered(fc)
    assert len(model.residuals) == len(monthly_sales) - 13
    assert model.n_params == 2


def test_arima_rejects_bad_orders():
    with pytest.raises(ValueError):
        ArimaModel(order=(1, 1))
    with pytest.raises(ValueError):
        ArimaModel(seasonal_order=(0, 1))


def test_holt_winters_simulated_intervals(monthly_sales):
    model = HoltWintersModel(repetitions=200).fit(monthly_sales)
    fc = model.forecast(6, levels=(80, 95))
    assert model.spec == "HoltWinters(A,M)[12]"
    assert np.isfinite(fc.mean).all()
    assert_intervals_ordered(fc)

    assert HoltWintersModel(transform="log").seasonal == "add"


def test_auto_arima_and_ets(monthly_sales):
    train = monthly_sales.iloc[:72]
    auto = create_model("auto_arima").fit(train)
    fc = auto.forecast(6, levels=(95,))
    assert auto.spec.startswith("ARIMA")
    assert fc.mean.index.equals(monthly_sales.index[72:78])
    assert_intervals_ordered(fc)

    ets = create_model("ets").fit(train)
    fc = ets.forecast(6, levels=(80, 95))
    assert ets.spec.startswith("ETS(")
    assert ets.n_params >= 1
    assert_intervals_ordered(fc)


def test_forecast_result_frame(monthly_sales):
    fc = NaiveModel().fit(monthly_sales).forecast(3, levels=(80, 95))
    assert list(fc.to_frame().columns) == ["mean", "lo-80", "hi-80", "lo-95", "hi-95"]
    assert NaiveModel().fit(monthly_sales).forecast(3, levels=()).to_frame().shape == (3, 1)


def test_registry_and_factory():
    assert set(MODEL_REGISTRY) == {"arima", "auto_arima", "ets", "holt_winters", "naive", "snaive"}
    with pytest.raises(ValueError):
        create_model("prophet")

    model = create_model("arima", order=(2, 1, 0))
    assert model.spec == "ARIMA(2,1,0)(0,1,1)[12]"

    factory = make_model_factory("snaive", season_length=4)
    a, b = factory(), factory()
    assert a is not b
    assert a.spec == "SNaive[4]"


class _BrokenModel(NaiveModel):
    name = "broken"

    def _fit(self, z):
        raise ValueError("cannot fit")


def test_forecast_holdout_skips_failures(monthly_sales):
    out = forecast_holdout({"snaive": SeasonalNaiveModel(), "broken": _BrokenModel()},
                           monthly_sales.iloc[:-12], 12)
    assert list(out) == ["snaive"]
    assert out["snaive"].model == "snaive"
    assert out["snaive"].mean.index.equals(monthly_sales.index[-12:])


def test_optimize_sarimax_ranks_by_aic(monthly_sales):
    grid = optimize_sarimax(np.log(monthly_sales), [(0, 0, 0, 0), (0, 1, 0, 1)], d=1, D=1, s=12)
    assert list(grid.columns) == ["(p,q,P,Q)", "AIC", "BIC", "HQIC"]
    assert len(grid) == 2
    assert grid["AIC"].is_monotonic_increasing


def test_hash_forecast():
    a = hash_forecast([1.0, 2.0, 3.0])
    assert len(a) == 16
    assert a == hash_forecast(np.array([1.0, 2.0, 3.0]))
    assert a != hash_forecast([1.0, 2.0, 3.5])


def test_boxcox_negative_lambda_keeps_intervals_finite():
    rng = np.random.default_rng(3)
    w = np.clip(rng.normal(0.0, 0.35, 120), -0.9, 0.9)
    # reciprocal-normal data, so the estimated lambda is close to -1
    y = pd.Series(1.0 / (1.0 - w), index=pd.date_range("2010-01-01", periods=120, freq="MS"))

    model = NaiveModel(transform="boxcox").fit(y)
    fc = model.forecast(24, levels=(80, 95))

    assert model.transform_params["lambda"] < 0
    for lvl in (80, 95):
        assert np.isfinite(fc.lower[lvl]).all()
        assert np.isfinite(fc.upper[lvl]).all()
    assert_intervals_ordered(fc)
