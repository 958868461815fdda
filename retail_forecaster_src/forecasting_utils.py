# retail_forecaster_src/forecasting_utils.py

import hashlib
import numpy as np
import pandas as pd
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Type, Union
from tqdm.auto import tqdm
import logging

from scipy.stats import norm
from statsforecast.arima import arima_string
from statsforecast.models import AutoARIMA, AutoETS
from statsmodels.tsa.holtwinters import ExponentialSmoothing
from statsmodels.tsa.statespace.sarimax import SARIMAX

from helpers.temporal import future_index
from .config_utils import get_config_value
from .transform_utils import apply_target_transform, inverse_target_transform

logger = logging.getLogger(__name__)

IntervalBounds = Dict[int, Tuple[np.ndarray, np.ndarray]]


@dataclass
class ForecastResult:
    """Point forecast and prediction intervals on the original sales scale."""

    model: str
    spec: str
    mean: pd.Series
    lower: Dict[int, pd.Series] = field(default_factory=dict)
    upper: Dict[int, pd.Series] = field(default_factory=dict)

    @property
    def horizon(self) -> int:
        return len(self.mean)

    def to_frame(self) -> pd.DataFrame:
        """Flatten to columns mean, lo-80, hi-80, lo-95, hi-95, ..."""
        out = pd.DataFrame({"mean": self.mean})
        for lvl in sorted(self.lower):
            out[f"lo-{lvl}"] = self.lower[lvl]
            out[f"hi-{lvl}"] = self.upper[lvl]
        return out


class ForecastModel:
    """
    Base class for univariate monthly forecasting models.

    Subclasses implement ``_fit`` and ``_forecast`` on the transformed scale.
    The base class applies the target transform before fitting and maps the
    mean and interval bounds back to the sales scale after forecasting.
    """

    name = "base"

    def __init__(self, season_length: int = 12, transform: str = "level",
                 boxcox_lambda: Optional[float] = None):
        self.season_length = int(season_length)
        self.transform = transform
        self.boxcox_lambda = boxcox_lambda
        self.transform_params: Dict[str, float] = {}
        self._y: Optional[pd.Series] = None
        self._fitted = False

    # -- public API -----------------------------------------------------------

    def fit(self, y: pd.Series) -> "ForecastModel":
        y = pd.Series(y).astype(float)
        if y.isna().any():
            raise ValueError(f"{self.name}: training series contains missing values")
        if not isinstance(y.index, pd.DatetimeIndex):
            raise TypeError(f"{self.name}: training series needs a DatetimeIndex")

        z, self.transform_params = apply_target_transform(y, self.transform, self.boxcox_lambda)
        self._y = z
        self._fit(z)
        self._fitted = True
        return self

    def forecast(self, h: int, levels: Sequence[int] = (80, 95)) -> ForecastResult:
        if not self._fitted:
            raise RuntimeError(f"{self.name}: call fit() before forecast()")
        if h <= 0:
            raise ValueError("Forecast horizon h must be positive")

        levels = sorted(int(lvl) for lvl in levels)
        mean, bounds = self._forecast(h, levels)
        idx = future_index(self._y.index, h)

        def back(values: np.ndarray) -> pd.Series:
            orig = inverse_target_transform(np.asarray(values, dtype=float),
                                            self.transform, self.transform_params)
            return pd.Series(np.asarray(orig, dtype=float), index=idx)

        result = ForecastResult(model=self.name, spec=self.spec, mean=back(mean).rename("mean"))
        for lvl in levels:
            lo, hi = bounds[lvl]
            # Quantile-based intervals are not guaranteed to contain the mean
            result.lower[lvl] = back(np.minimum(lo, mean))
            result.upper[lvl] = back(np.maximum(hi, mean))
        return result

    @property
    def fitted_values(self) -> pd.Series:
        """In-sample one-step fitted values on the transformed scale."""
        raise NotImplementedError

    @property
    def residuals(self) -> pd.Series:
        """In-sample residuals on the transformed scale."""
        return (self._y - self.fitted_values).dropna()

    @property
    def n_params(self) -> int:
        return 0

    @property
    def spec(self) -> str:
        return self.name

    # -- subclass hooks --------------------------------------------------------

    def _fit(self, z: pd.Series) -> None:
        raise NotImplementedError

    def _forecast(self, h: int, levels: List[int]) -> Tuple[np.ndarray, IntervalBounds]:
        raise NotImplementedError


class ArimaModel(ForecastModel):
    """Manual seasonal ARIMA via statsmodels SARIMAX."""

    name = "arima"

    def __init__(self, order: Sequence[int] = (1, 1, 1),
                 seasonal_order: Sequence[int] = (0, 1, 1),
                 season_length: int = 12, transform: str = "level",
                 boxcox_lambda: Optional[float] = None):
        super().__init__(season_length, transform, boxcox_lambda)
        self.order = tuple(int(v) for v in order)
        if len(self.order) != 3:
            raise ValueError(f"order must be (p, d, q), got {order}")
        seasonal = tuple(int(v) for v in seasonal_order)
        if len(seasonal) == 3:
            seasonal = seasonal + (self.season_length,)
        if len(seasonal) != 4:
            raise ValueError(f"seasonal_order must be (P, D, Q) or (P, D, Q, m), got {seasonal_order}")
        self.seasonal_order = seasonal
        self._res = None

    def _fit(self, z: pd.Series) -> None:
        model = SARIMAX(
            z,
            order=self.order,
            seasonal_order=self.seasonal_order,
            simple_differencing=False,
        )
        self._res = model.fit(disp=False)

    def _forecast(self, h: int, levels: List[int]) -> Tuple[np.ndarray, IntervalBounds]:
        fc = self._res.get_forecast(steps=h)
        mean = np.asarray(fc.predicted_mean, dtype=float)
        bounds: IntervalBounds = {}
        for lvl in levels:
            ci = fc.conf_int(alpha=1.0 - lvl / 100.0)
            bounds[lvl] = (ci.iloc[:, 0].to_numpy(dtype=float), ci.iloc[:, 1].to_numpy(dtype=float))
        return mean, bounds

    @property
    def fitted_values(self) -> pd.Series:
        return pd.Series(np.asarray(self._res.fittedvalues, dtype=float), index=self._y.index)

    @property
    def residuals(self) -> pd.Series:
        # The first d + D*m residuals come from the diffuse initialisation
        burn = self.order[1] + self.seasonal_order[1] * self.seasonal_order[3]
        resid = pd.Series(np.asarray(self._res.resid, dtype=float), index=self._y.index)
        return resid.iloc[burn:].dropna()

    @property
    def n_params(self) -> int:
        # Excludes the innovation variance
        return int(len(self._res.params)) - 1 if self._res is not None else 0

    @property
    def spec(self) -> str:
        p, d, q = self.order
        P, D, Q, m = self.seasonal_order
        return f"ARIMA({p},{d},{q})({P},{D},{Q})[{m}]"


class _StatsForecastModel(ForecastModel):
    """Shared fit/predict plumbing for statsforecast models."""

    def __init__(self, season_length: int = 12, transform: str = "level",
                 boxcox_lambda: Optional[float] = None):
        super().__init__(season_length, transform, boxcox_lambda)
        self._model = None

    def _build(self):
        raise NotImplementedError

    def _fit(self, z: pd.Series) -> None:
        self._model = self._build()
        self._model.fit(y=z.to_numpy(dtype=float))

    def _forecast(self, h: int, levels: List[int]) -> Tuple[np.ndarray, IntervalBounds]:
        if levels:
            out = self._model.predict(h=h, level=list(levels))
        else:
            out = self._model.predict(h=h)
        mean = np.asarray(out["mean"], dtype=float)
        bounds = {lvl: (np.asarray(out[f"lo-{lvl}"], dtype=float),
                        np.asarray(out[f"hi-{lvl}"], dtype=float)) for lvl in levels}
        return mean, bounds

    @property
    def fitted_values(self) -> pd.Series:
        fitted = self._model.predict_in_sample()["fitted"]
        return pd.Series(np.asarray(fitted, dtype=float), index=self._y.index)


class AutoArimaModel(_StatsForecastModel):
    """Automatic seasonal ARIMA order selection (Hyndman-Khandakar) via statsforecast."""

    name = "auto_arima"

    def __init__(self, season_length: int = 12, transform: str = "level",
                 boxcox_lambda: Optional[float] = None, stepwise: bool = True,
                 max_p: int = 5, max_q: int = 5, max_P: int = 2, max_Q: int = 2):
        super().__init__(season_length, transform, boxcox_lambda)
        self.search = {"stepwise": bool(stepwise), "max_p": int(max_p), "max_q": int(max_q),
                       "max_P": int(max_P), "max_Q": int(max_Q)}

    def _build(self):
        return AutoARIMA(season_length=self.season_length, **self.search)

    @property
    def n_params(self) -> int:
        if self._model is None:
            return 0
        return len(self._model.model_.get("coef", {}))

    @property
    def spec(self) -> str:
        if self._model is None:
            return self.name
        return arima_string(self._model.model_)


class EtsModel(_StatsForecastModel):
    """Automatic exponential smoothing state space model via statsforecast AutoETS."""

    name = "ets"

    def __init__(self, season_length: int = 12, transform: str = "level",
                 boxcox_lambda: Optional[float] = None, model: str = "ZZZ",
                 damped: Optional[bool] = None):
        super().__init__(season_length, transform, boxcox_lambda)
        self.model_code = model
        self.damped = damped

    def _build(self):
        return AutoETS(season_length=self.season_length, model=self.model_code, damped=self.damped)

    @property
    def n_params(self) -> int:
        if self._model is None:
            return 0
        # ETS(E,T,S): alpha, plus beta/phi/gamma where the selected form has them
        parts = self.spec[self.spec.find("(") + 1:-1].split(",")
        if len(parts) != 3:
            return 1
        _, trend, season = parts
        return 1 + (trend[:1] != "N") + trend.endswith("d") + (season != "N")

    @property
    def spec(self) -> str:
        if self._model is None:
            return self.name
        return str(self._model.model_.get("method", self.name))


class HoltWintersModel(ForecastModel):
    """Holt-Winters seasonal exponential smoothing via statsmodels."""

    name = "holt_winters"

    def __init__(self, season_length: int = 12, transform: str = "level",
                 boxcox_lambda: Optional[float] = None, trend: Optional[str] = "add",
                 seasonal: Optional[str] = "mul", damped_trend: bool = False,
                 repetitions: int = 1000, random_state: Optional[int] = 2024):
        super().__init__(season_length, transform, boxcox_lambda)
        if transform != "level" and seasonal == "mul":
            # Seasonality is already additive on the log/Box-Cox scale
            seasonal = "add"
        self.trend = trend
        self.seasonal = seasonal
        self.damped_trend = bool(damped_trend) if trend else False
        self.repetitions = int(repetitions)
        self.random_state = random_state
        self._res = None

    def _fit(self, z: pd.Series) -> None:
        model = ExponentialSmoothing(
            z,
            trend=self.trend,
            seasonal=self.seasonal,
            seasonal_periods=self.season_length,
            damped_trend=self.damped_trend,
            initialization_method="estimated",
        )
        self._res = model.fit()

    def _forecast(self, h: int, levels: List[int]) -> Tuple[np.ndarray, IntervalBounds]:
        mean = np.asarray(self._res.forecast(h), dtype=float)
        bounds: IntervalBounds = {}
        if not levels:
            return mean, bounds

        sims = self._res.simulate(
            nsimulations=h,
            repetitions=self.repetitions,
            error="add",
            anchor="end",
            random_state=self.random_state,
        )
        paths = np.asarray(sims, dtype=float).reshape(h, -1)
        for lvl in levels:
            tail = (100.0 - lvl) / 2.0
            lo = np.nanpercentile(paths, tail, axis=1)
            hi = np.nanpercentile(paths, 100.0 - tail, axis=1)
            bounds[lvl] = (lo, hi)
        return mean, bounds

    @property
    def fitted_values(self) -> pd.Series:
        return pd.Series(np.asarray(self._res.fittedvalues, dtype=float), index=self._y.index)

    @property
    def n_params(self) -> int:
        return 1 + bool(self.trend) + bool(self.seasonal) + bool(self.damped_trend)

    @property
    def spec(self) -> str:
        trend = {None: "N", "add": "A", "mul": "M"}.get(self.trend, str(self.trend))
        if self.damped_trend:
            trend += "d"
        seasonal = {None: "N", "add": "A", "mul": "M"}.get(self.seasonal, str(self.seasonal))
        return f"HoltWinters({trend},{seasonal})[{self.season_length}]"


class NaiveModel(ForecastModel):
    """Random walk forecast: every horizon repeats the last observation."""

    name = "naive"

    def _lag(self) -> int:
        return 1

    def _fit(self, z: pd.Series) -> None:
        lag = self._lag()
        if len(z) <= lag:
            raise ValueError(f"{self.name} needs more than {lag} observations, got {len(z)}")
        resid = (z - z.shift(lag)).dropna()
        self._sigma = float(np.sqrt(np.mean(resid.to_numpy() ** 2)))

    def _steps_se(self, h: int) -> np.ndarray:
        return self._sigma * np.sqrt(np.arange(1, h + 1, dtype=float))

    def _point(self, h: int) -> np.ndarray:
        return np.repeat(float(self._y.iloc[-1]), h)

    def _forecast(self, h: int, levels: List[int]) -> Tuple[np.ndarray, IntervalBounds]:
        mean = self._point(h)
        se = self._steps_se(h)
        bounds: IntervalBounds = {}
        for lvl in levels:
            q = float(norm.ppf(0.5 + lvl / 200.0))
            bounds[lvl] = (mean - q * se, mean + q * se)
        return mean, bounds

    @property
    def fitted_values(self) -> pd.Series:
        return self._y.shift(self._lag())

    @property
    def spec(self) -> str:
        return "Naive"


class SeasonalNaiveModel(NaiveModel):
    """Seasonal random walk: each month repeats its value from the last observed season."""

    name = "snaive"

    def _lag(self) -> int:
        return self.season_length

    def _steps_se(self, h: int) -> np.ndarray:
        k = np.arange(1, h + 1)
        return self._sigma * np.sqrt(np.floor((k - 1) / self.season_length) + 1.0)

    def _point(self, h: int) -> np.ndarray:
        m = self.season_length
        last_season = self._y.to_numpy(dtype=float)[-m:]
        return np.array([last_season[(k - 1) % m] for k in range(1, h + 1)], dtype=float)

    @property
    def spec(self) -> str:
        return f"SNaive[{self.season_length}]"


MODEL_REGISTRY: Dict[str, Type[ForecastModel]] = {
    "arima": ArimaModel,
    "auto_arima": AutoArimaModel,
    "ets": EtsModel,
    "holt_winters": HoltWintersModel,
    "naive": NaiveModel,
    "snaive": SeasonalNaiveModel,
}

# Keyword arguments each model accepts from the model.<name> config section
_CONFIG_PARAMS = {
    "arima": ("order", "seasonal_order"),
    "auto_arima": ("stepwise", "max_p", "max_q", "max_P", "max_Q"),
    "ets": ("model", "damped"),
    "holt_winters": ("trend", "seasonal", "damped_trend", "repetitions", "random_state"),
    "naive": (),
    "snaive": (),
}


def create_model(name: str, season_length: int = 12, transform: str = "level", **params) -> ForecastModel:
    """
    Build a forecasting model from the registry.

    Parameters not passed explicitly are taken from the ``model.<name>``
    configuration section when a configuration is loaded.

    Raises
    ------
    ValueError
        If ``name`` is not a registered model.
    """
    if name not in MODEL_REGISTRY:
        raise ValueError(f"Unknown model '{name}'. Available: {sorted(MODEL_REGISTRY)}")

    kwargs = {}
    for key in _CONFIG_PARAMS[name]:
        value = get_config_value(f"model.{name}.{key}", None)
        if value is not None:
            kwargs[key] = value
    kwargs.update({k: v for k, v in params.items() if v is not None})
    if transform == "boxcox" and "boxcox_lambda" not in kwargs:
        kwargs["boxcox_lambda"] = get_config_value("model.transform.boxcox_lambda", None)

    return MODEL_REGISTRY[name](season_length=season_length, transform=transform, **kwargs)


def make_model_factory(name: str, season_length: int = 12, transform: str = "level",
                       **params) -> Callable[[], ForecastModel]:
    """Zero-argument factory producing a fresh, unfitted model (one per backtest origin)."""
    def factory() -> ForecastModel:
        return create_model(name, season_length=season_length, transform=transform, **params)
    return factory


def optimize_sarimax(endog: Union[pd.Series, list],
                     order_list: Iterable[Tuple[int, int, int, int]],
                     d: int,
                     D: int,
                     s: int) -> pd.DataFrame:
    """
    Grid-search seasonal ARIMA orders and rank by AIC.

    Parameters
    ----------
    endog : Union[pd.Series, list]
        Target series (already on the modelling scale)
    order_list : Iterable[Tuple[int, int, int, int]]
        Candidate (p, q, P, Q) tuples. Differencing orders d, D and period s are fixed
    d : int
        Non-seasonal differencing order
    D : int
        Seasonal differencing order
    s : int
        Seasonal period (12 for monthly data)

    Returns
    -------
    pd.DataFrame
        Columns ['(p,q,P,Q)', 'AIC', 'BIC', 'HQIC'] sorted ascending by AIC

    Notes
    -----
    Candidates that fail to fit are logged at DEBUG and skipped.
    """
    order_list = list(order_list)
    results: List[List[object]] = []

    for order in tqdm(order_list, desc="Grid search SARIMAX"):
        try:
            res = SARIMAX(
                endog,
                order=(order[0], d, order[1]),
                seasonal_order=(order[2], D, order[3], s),
                simple_differencing=False,
            ).fit(disp=False)
        except (ValueError, np.linalg.LinAlgError) as e:
            logger.debug("SARIMAX %s failed: %s", order, e)
            continue

        results.append([tuple(order), float(res.aic), float(res.bic), float(res.hqic)])

    result_df = pd.DataFrame(results, columns=["(p,q,P,Q)", "AIC", "BIC", "HQIC"])
    result_df = result_df.sort_values(by="AIC", ascending=True).reset_index(drop=True)
    logger.info("Grid search evaluated %d of %d candidate orders", len(result_df), len(order_list))
    return result_df


def forecast_holdout(models: Dict[str, ForecastModel],
                     train: pd.Series,
                     h: int,
                     levels: Sequence[int] = (80, 95)) -> Dict[str, ForecastResult]:
    """
    Fit every model on the training series and forecast h months ahead.

    A model that fails to fit or forecast is logged and left out of the result.
    """
    out: Dict[str, ForecastResult] = {}
    for label, model in models.items():
        try:
            model.fit(train)
            fc = model.forecast(h, levels)
        except Exception as e:
            logger.error("Model '%s' failed on the hold-out split: %s", label, e)
            continue
        fc.model = label
        out[label] = fc
        logger.info("Fitted %s: %s", label, fc.spec)
    return out


def hash_forecast(seq: Union[List[float], np.ndarray, pd.Series]) -> str:
    """
    Generate a hash fingerprint for a forecast sequence.

    Returns
    -------
    str
        16-character SHA-1 hash of the float64 values; identical forecasts
        from repeated runs share the same fingerprint.
    """
    arr = np.ascontiguousarray(np.asarray(seq, dtype=np.float64))
    return hashlib.sha1(arr.tobytes()).hexdigest()[:16]
