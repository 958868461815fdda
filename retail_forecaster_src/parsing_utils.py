# retail_forecaster_src/parsing_utils.py

import argparse
from typing import Optional, List, Tuple
import logging

logger = logging.getLogger(__name__)


def parse_range_arg(s: Optional[str], default: str = "0-2", config_key: Optional[str] = None,
                    args: Optional[argparse.Namespace] = None) -> List[int]:
    """
    Parse a CLI range argument like '0-2' or '0,1,2' into a list of integers.

    The CLI string wins when given; otherwise a list at ``config_key`` in the
    configuration is used; otherwise ``default`` is parsed.

    Examples
    --------
    >>> parse_range_arg("0-3")
    [0, 1, 2, 3]
    >>> parse_range_arg("0,2,4")
    [0, 2, 4]
    """
    from .config_utils import get_config_value

    if s is None and config_key:
        range_value = get_config_value(config_key, None, args, None)
        if isinstance(range_value, list) and range_value:
            return sorted(set(int(x) for x in range_value))
        if range_value is not None:
            s = str(range_value)

    txt = (s or default).strip()

    try:
        if "-" in txt and "," not in txt:
            a, b = txt.split("-", 1)
            out = list(range(int(a.strip()), int(b.strip()) + 1))
        else:
            out = [int(x.strip()) for x in txt.split(",") if x.strip() != ""]
    except ValueError:
        raise ValueError(f"Invalid range '{txt}'. Use 'lo-hi' or a comma-separated list") from None

    if not out or min(out) < 0:
        raise ValueError(f"Invalid range '{txt}': expected non-negative integers")
    return sorted(set(out))


def parse_intervals_arg(s: Optional[str], default: str = "80,95") -> List[int]:
    """
    Parse a CLI intervals argument like '80,95' into sorted unique integer coverage levels.

    Values outside 1..99 are dropped; if nothing valid remains the result is [80, 95].

    Examples
    --------
    >>> parse_intervals_arg("80,95")
    [80, 95]
    >>> parse_intervals_arg("90")
    [90]
    """
    txt = (s or default).strip()
    try:
        vals = sorted({int(x.strip()) for x in txt.split(",") if x.strip() != ""})
    except ValueError:
        logger.warning("Could not parse intervals '%s'; using 80,95", txt)
        return [80, 95]
    vals = [v for v in vals if 1 <= v < 100]
    return vals or [80, 95]


def parse_models_arg(s: Optional[str], available: List[str]) -> List[str]:
    """
    Parse a comma-separated model list, keeping the given order and dropping duplicates.

    Raises
    ------
    ValueError
        If a name is not among ``available``.

    Examples
    --------
    >>> parse_models_arg("ets, snaive", ["ets", "snaive", "arima"])
    ['ets', 'snaive']
    """
    names: List[str] = []
    for name in (s or "").split(","):
        name = name.strip().lower()
        if name and name not in names:
            names.append(name)
    unknown = [n for n in names if n not in available]
    if unknown:
        raise ValueError(f"Unknown model(s) {unknown}. Must be among: {sorted(available)}")
    if not names:
        raise ValueError("At least one model must be selected")
    return names


def parse_order_arg(s: Optional[str], length: int = 3) -> Optional[Tuple[int, ...]]:
    """
    Parse an ARIMA order string like '1,1,1' or '(0,1,1)' into a tuple of ints.

    Returns None when ``s`` is None so callers can fall back to configuration.
    """
    if s is None:
        return None
    txt = s.strip().strip("()[]")
    try:
        vals = tuple(int(x.strip()) for x in txt.split(",") if x.strip() != "")
    except ValueError:
        raise ValueError(f"Invalid order '{s}': expected {length} comma-separated integers") from None
    if len(vals) != length or min(vals) < 0:
        raise ValueError(f"Invalid order '{s}': expected {length} non-negative integers")
    return vals


def validate_target_transform(transform: str) -> str:
    """
    Validate and normalize a target transformation name.

    Raises
    ------
    ValueError
        If the transformation type is not supported

    Examples
    --------
    >>> validate_target_transform("log")
    'log'
    """
    valid_transforms = ["level", "log", "boxcox"]
    transform = (transform or "").strip().lower()
    if transform not in valid_transforms:
        raise ValueError(f"Invalid target transform '{transform}'. Must be one of: {valid_transforms}")
    return transform


def validate_log_level(log_level: str) -> str:
    """
    Validate and normalize a logging level name.

    Raises
    ------
    ValueError
        If the logging level is not supported
    """
    valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    level_upper = log_level.upper()
    if level_upper not in valid_levels:
        raise ValueError(f"Invalid log level '{log_level}'. Must be one of: {valid_levels}")
    return level_upper
