# retail_forecaster_src/transform_utils.py

import pandas as pd
import numpy as np
from typing import Dict, Optional, Tuple, Union
import logging

from scipy import stats
from scipy.special import inv_boxcox

logger = logging.getLogger(__name__)

VALID_TRANSFORMS = ("level", "log", "boxcox")


def apply_target_transform(series: pd.Series,
                           transform: str,
                           boxcox_lambda: Optional[float] = None) -> Tuple[pd.Series, Dict[str, float]]:
    """
    Apply a variance-stabilising transformation to the target series.

    Retail sales grow with seasonal swings proportional to their level, so a log
    or Box-Cox transform often makes seasonality additive:
    - level: identity transformation
    - log: natural logarithm
    - boxcox: Box-Cox with lambda estimated by maximum likelihood unless provided

    Parameters
    ----------
    series : pd.Series
        Input time series to transform
    transform : str
        One of 'level', 'log', 'boxcox'
    boxcox_lambda : Optional[float]
        Fixed Box-Cox lambda. When None, the configured lambda is used if set,
        otherwise lambda is estimated from the data.

    Returns
    -------
    Tuple[pd.Series, Dict[str, float]]
        (transformed_series, params) where params holds 'lambda' for boxcox

    Raises
    ------
    ValueError
        If the transform is unknown or log/boxcox is requested on non-positive data.
    """
    if transform not in VALID_TRANSFORMS:
        raise ValueError(f"Unknown transform '{transform}'. Expected one of {VALID_TRANSFORMS}")

    if transform == "level":
        return series.copy(), {}

    values = series.dropna()
    if (values <= 0).any():
        raise ValueError(f"{transform} transformation requires strictly positive values")

    if transform == "log":
        return np.log(series), {}

    if boxcox_lambda is None:
        from .config_utils import get_config_value
        boxcox_lambda = get_config_value("model.transform.boxcox_lambda", None)

    if boxcox_lambda is None:
        _, lmbda = stats.boxcox(values.to_numpy(dtype=float))
        lmbda = float(lmbda)
        logger.info("Estimated Box-Cox lambda=%.4f", lmbda)
    else:
        lmbda = float(boxcox_lambda)

    transformed = pd.Series(stats.boxcox(series.to_numpy(dtype=float), lmbda=lmbda),
                            index=series.index, name=series.name)
    return transformed, {"lambda": lmbda}


def inverse_target_transform(values: Union[pd.Series, np.ndarray],
                             transform: str,
                             params: Optional[Dict[str, float]] = None) -> Union[pd.Series, np.ndarray]:
    """
    Map values from the transformed scale back to the original sales scale.

    Parameters
    ----------
    values : Union[pd.Series, np.ndarray]
        Values on the transformed scale (forecast means or interval bounds)
    transform : str
        Transformation that produced them
    params : Optional[Dict[str, float]]
        Parameters returned by apply_target_transform

    Returns
    -------
    Union[pd.Series, np.ndarray]
        Values on the original scale, same container type as the input
    """
    if transform == "level":
        return values
    if transform == "log":
        return np.exp(values)
    if transform == "boxcox":
        lmbda = (params or {}).get("lambda")
        if lmbda is None:
            raise ValueError("boxcox inverse requires the 'lambda' parameter")
        z = np.asarray(values, dtype=float)
        if lmbda < 0:
            # inverse is undefined at or above -1/lambda
            z = np.minimum(z, np.nextafter(-1.0 / lmbda, -np.inf))
        with np.errstate(over="ignore"):
            out = inv_boxcox(z, lmbda)
        if isinstance(values, pd.Series):
            return pd.Series(out, index=values.index, name=values.name)
        return out
    raise ValueError(f"Unknown transform '{transform}'")


def difference(series: pd.Series, d: int = 0, D: int = 0, m: int = 12) -> pd.Series:
    """
    Apply D seasonal differences of lag m followed by d first differences.

    NaNs introduced by differencing are dropped.
    """
    out = pd.Series(series).copy()
    for _ in range(int(D)):
        out = out.diff(m)
    for _ in range(int(d)):
        out = out.diff()
    return out.dropna()


def get_transform_description(transform: str) -> str:
    """
    Get a human-readable description of a transformation.
    """
    descriptions = {
        "level": "Original series (no transformation)",
        "log": "Natural logarithm",
        "boxcox": "Box-Cox power transformation",
    }
    return descriptions.get(transform, f"Unknown transformation: {transform}")
