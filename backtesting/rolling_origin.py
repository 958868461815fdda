"""Rolling-origin cross-validation for monthly forecasting models.

This module produces the time series cross-validation (tsCV) error matrix:
one row per forecast origin, one column per horizon. Every forecast uses only
observations strictly before its first target month.

Features:
- Fixed-size sliding window ("rolling") or expanding training window
- Multi-step forecasts per origin with NaN padding past the end of the data
- Per-origin MASE scale from the seasonal naive MAE of that training window
- Failed fits recorded as NaN rows instead of aborting the run
- Integration with the configuration system
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

import numpy as np
import pandas as pd
from tqdm.auto import tqdm

from retail_forecaster_src.metrics_utils import seasonal_naive_scale

logger = logging.getLogger(__name__)

WINDOW_TYPES = ("rolling", "expanding")

ForecastFn = Callable[[pd.Series, int], np.ndarray]


@dataclass
class BacktestConfig:
    """Configuration for rolling-origin backtesting."""

    window_type: str = "rolling"          # "rolling" (fixed size) or "expanding"
    window_size: int = 120                # Training length for rolling windows
    forecast_horizon: int = 12            # Steps ahead to forecast per origin
    step_size: int = 1                    # Steps between origins
    season_length: int = 12
    min_train_size: Optional[int] = None  # First origin for expanding windows (default 2m + 2)
    max_origins: Optional[int] = None     # Keep only the last K origins
    levels: List[int] = field(default_factory=list)
    significance_level: float = 0.05

    def __post_init__(self):
        if self.window_type not in WINDOW_TYPES:
            raise ValueError(f"window_type must be one of {WINDOW_TYPES}, got '{self.window_type}'")
        if self.forecast_horizon <= 0:
            raise ValueError("forecast_horizon must be positive")
        if self.step_size <= 0:
            raise ValueError("step_size must be positive")
        if self.window_size <= 0:
            raise ValueError("window_size must be positive")
        if self.min_train_size is None:
            self.min_train_size = 2 * self.season_length + 2
        if self.max_origins is not None and self.max_origins <= 0:
            raise ValueError("max_origins must be positive when set")

    @classmethod
    def from_config_manager(cls, config_manager=None, **overrides) -> "BacktestConfig":
        """Create BacktestConfig from configuration manager.

        Parameters
        ----------
        config_manager : ConfigurationManager, optional
            Configuration manager instance; defaults are used when None
        **overrides
            Field values that take precedence over the configuration (None is ignored)

        Returns
        -------
        BacktestConfig
            Configured backtest configuration
        """
        values: Dict[str, object] = {}

        if config_manager is not None:
            base = config_manager.get_backtesting_config() or {}
            rolling = base.get("rolling_origin", {}) or {}
            for key in ("window_type", "window_size", "forecast_horizon", "step_size",
                        "min_train_size", "max_origins"):
                if rolling.get(key) is not None:
                    values[key] = rolling[key]
            if base.get("significance_level") is not None:
                values["significance_level"] = base["significance_level"]
            season = config_manager.get("data.season_length", None)
            if season is not None:
                values["season_length"] = season
            logger.debug("Loaded backtest configuration from config manager")

        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


@dataclass
class FoldResult:
    """Forecasts and errors from a single forecast origin."""

    origin: pd.Timestamp                  # Last training observation
    train_start: pd.Timestamp
    train_end: pd.Timestamp
    train_size: int
    forecasts: np.ndarray
    actuals: np.ndarray
    errors: np.ndarray                    # actual - forecast, NaN past the data end
    scale: float = float("nan")
    fit_time: Optional[float] = None
    error: Optional[str] = None           # Failure message when the fit failed

    @property
    def failed(self) -> bool:
        return self.error is not None


@dataclass
class CrossValidationResult:
    """The tsCV matrices for one model."""

    model: str
    config: BacktestConfig
    folds: List[FoldResult]
    errors: pd.DataFrame
    forecasts: pd.DataFrame
    actuals: pd.DataFrame
    scales: pd.Series
    failed_origins: List[pd.Timestamp] = field(default_factory=list)
    execution_time: Optional[float] = None

    @property
    def n_origins(self) -> int:
        return len(self.folds)

    @property
    def horizon(self) -> int:
        return self.errors.shape[1]

    @property
    def success_rate(self) -> float:
        """Proportion of origins whose model fit succeeded."""
        if not self.folds:
            return 0.0
        return 1.0 - len(self.failed_origins) / len(self.folds)


def horizon_columns(h: int) -> List[str]:
    return [f"h{k}" for k in range(1, h + 1)]


class RollingOriginValidator:
    """Rolling-origin cross-validator for univariate forecasting models."""

    def __init__(self, config: Optional[BacktestConfig] = None):
        """Initialize the validator.

        Parameters
        ----------
        config : BacktestConfig, optional
            Backtesting configuration. If None, uses the loaded configuration
            (or defaults when none is loaded).
        """
        if config is None:
            from retail_forecaster_src import config_utils
            config = BacktestConfig.from_config_manager(config_utils.config_manager)
        self.config = config

    def origins(self, n_obs: int) -> List[int]:
        """Positions t such that training ends at t-1 and the first target is y[t]."""
        cfg = self.config
        first = cfg.window_size if cfg.window_type == "rolling" else cfg.min_train_size
        positions = list(range(first, n_obs, cfg.step_size))
        if cfg.max_origins is not None:
            positions = positions[-cfg.max_origins:]
        return positions

    def validate(self,
                 series: pd.Series,
                 model_factory: Callable[[], object],
                 name: str = "model") -> CrossValidationResult:
        """Run rolling-origin cross-validation for one model.

        Parameters
        ----------
        series : pd.Series
            Monthly target series on its original scale
        model_factory : callable
            Zero-argument callable returning a fresh unfitted model with
            ``fit(train)`` and ``forecast(h, levels)`` methods
        name : str
            Model label for logging and results

        Returns
        -------
        CrossValidationResult
            Error, forecast and actual matrices plus per-origin scales
        """
        levels = list(self.config.levels)

        def forecast_fn(train: pd.Series, h: int) -> np.ndarray:
            model = model_factory()
            model.fit(train)
            return model.forecast(h, levels).mean.to_numpy(dtype=float)

        return self.run(series, forecast_fn, name)

    def run(self, series: pd.Series, forecast_fn: ForecastFn, name: str = "model") -> CrossValidationResult:
        """Run cross-validation with a plain ``forecast_fn(train, h) -> array`` callable."""
        cfg = self.config
        y = pd.Series(series).astype(float)
        if y.empty:
            raise ValueError("Series cannot be empty")
        if y.isna().any():
            raise ValueError("Series contains missing values; interpolate before backtesting")

        n = len(y)
        h = cfg.forecast_horizon
        positions = self.origins(n)
        if not positions:
            first = cfg.window_size if cfg.window_type == "rolling" else cfg.min_train_size
            raise ValueError(f"Series too short for backtesting: {n} observations, "
                             f"first origin needs {first + 1}")

        logger.info("Rolling-origin CV for %s: %d origins, %s window, horizon %d",
                    name, len(positions), cfg.window_type, h)

        values = y.to_numpy()
        start_time = time.time()
        folds: List[FoldResult] = []
        failed: List[pd.Timestamp] = []

        for t in tqdm(positions, desc=f"CV {name}", leave=False):
            start = t - cfg.window_size if cfg.window_type == "rolling" else 0
            train = y.iloc[start:t]

            actuals = np.full(h, np.nan)
            avail = values[t:t + h]
            actuals[:len(avail)] = avail

            fit_start = time.time()
            err_msg = None
            try:
                fc = np.asarray(forecast_fn(train, h), dtype=float).ravel()
                if fc.shape[0] != h:
                    raise ValueError(f"expected {h} forecasts, got {fc.shape[0]}")
            except Exception as e:
                logger.warning("%s failed at origin %s: %s", name, train.index[-1], e)
                fc = np.full(h, np.nan)
                err_msg = str(e)
                failed.append(train.index[-1])

            folds.append(FoldResult(
                origin=train.index[-1],
                train_start=train.index[0],
                train_end=train.index[-1],
                train_size=len(train),
                forecasts=fc,
                actuals=actuals,
                errors=actuals - fc,
                scale=seasonal_naive_scale(train.to_numpy(), cfg.season_length),
                fit_time=time.time() - fit_start,
                error=err_msg,
            ))

        result = self._assemble(name, folds, failed, h)
        result.execution_time = time.time() - start_time
        logger.info("CV for %s completed: %d/%d origins successful (%.1f%%)",
                    name, len(folds) - len(failed), len(folds), result.success_rate * 100)
        return result

    def _assemble(self, name: str, folds: List[FoldResult], failed: List[pd.Timestamp],
                  h: int) -> CrossValidationResult:
        index = pd.DatetimeIndex([f.origin for f in folds], name="origin")
        cols = horizon_columns(h)

        def matrix(attr: str) -> pd.DataFrame:
            return pd.DataFrame(np.vstack([getattr(f, attr) for f in folds]), index=index, columns=cols)

        return CrossValidationResult(
            model=name,
            config=self.config,
            folds=folds,
            errors=matrix("errors"),
            forecasts=matrix("forecasts"),
            actuals=matrix("actuals"),
            scales=pd.Series([f.scale for f in folds], index=index, name="scale"),
            failed_origins=failed,
        )


def tscv_errors(series: pd.Series,
                forecast_fn: ForecastFn,
                h: int,
                window: Optional[int] = None,
                initial: Optional[int] = None,
                step: int = 1,
                season_length: int = 12) -> pd.DataFrame:
    """
    Forecast error matrix from rolling-origin evaluation.

    Parameters
    ----------
    series : pd.Series
        Monthly target series
    forecast_fn : callable
        ``forecast_fn(train, h)`` returning h point forecasts
    h : int
        Forecast horizon
    window : Optional[int]
        Fixed training window length; None uses an expanding window
    initial : Optional[int]
        First training length for the expanding window (default 2m + 2)
    step : int, default=1
        Spacing between origins

    Returns
    -------
    pd.DataFrame
        Rows indexed by origin (last training date), columns h1..hH holding
        actual minus forecast; NaN where the target lies past the data end
        or the fit failed.
    """
    config = BacktestConfig(
        window_type="rolling" if window is not None else "expanding",
        window_size=window if window is not None else 1,
        forecast_horizon=h,
        step_size=step,
        season_length=season_length,
        min_train_size=initial,
    )
    return RollingOriginValidator(config).run(series, forecast_fn, "tsCV").errors


def run_rolling_origin_backtest(series: pd.Series,
                                models: Dict[str, Callable[[], object]],
                                config: Optional[BacktestConfig] = None) -> Dict[str, CrossValidationResult]:
    """Cross-validate several models on the same origins.

    Parameters
    ----------
    series : pd.Series
        Monthly target series
    models : Dict[str, callable]
        Model label mapped to a zero-argument factory
    config : BacktestConfig, optional
        Backtesting configuration

    Returns
    -------
    Dict[str, CrossValidationResult]
        One result per model label
    """
    validator = RollingOriginValidator(config)
    return {name: validator.validate(series, factory, name) for name, factory in models.items()}
