"""YAML-backed configuration manager for the retail sales forecaster.

The packaged ``settings.yaml`` supplies defaults. A second YAML file, named by
the ``RETAIL_FORECASTER_CONFIG`` environment variable or passed explicitly,
is deep-merged on top of it.
"""

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent / "settings.yaml"
CONFIG_ENV_VAR = "RETAIL_FORECASTER_CONFIG"

KNOWN_MODELS = {"arima", "auto_arima", "ets", "holt_winters", "naive", "snaive"}
KNOWN_TRANSFORMS = {"level", "log", "boxcox"}
KNOWN_WINDOW_TYPES = {"rolling", "expanding"}


class ConfigurationError(Exception):
    """Raised when a configuration file cannot be loaded."""


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Malformed YAML in {path}: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Cannot read configuration file {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration root in {path} must be a mapping")
    return data


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


class ConfigurationManager:
    """Loads, merges and serves project settings by dot-separated key path."""

    def __init__(self, path: Optional[Union[str, Path]] = None,
                 defaults_path: Path = DEFAULT_CONFIG_PATH):
        self.loaded_files: List[Path] = []
        self._config = _read_yaml(defaults_path)
        self.loaded_files.append(defaults_path)

        override = path if path is not None else os.environ.get(CONFIG_ENV_VAR)
        if override:
            override_path = Path(override)
            self._config = _deep_merge(self._config, _read_yaml(override_path))
            self.loaded_files.append(override_path)
            logger.info("Loaded configuration override from %s", override_path)

    def get(self, key_path: str, default: Any = None) -> Any:
        """Return the value at ``key_path`` (e.g. ``"model.arima.order"``) or ``default``."""
        node: Any = self._config
        for part in key_path.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return copy.deepcopy(node)

    def get_data_config(self) -> Dict[str, Any]:
        return self.get("data", {})

    def get_model_config(self, name: Optional[str] = None) -> Dict[str, Any]:
        if name is None:
            return self.get("model", {})
        return self.get(f"model.{name}", {}) or {}

    def get_backtesting_config(self) -> Dict[str, Any]:
        return self.get("backtesting", {})

    def get_evaluation_config(self) -> Dict[str, Any]:
        return self.get("evaluation", {})

    def get_configuration_summary(self) -> Dict[str, Any]:
        return {
            "loaded_configs": [str(p) for p in self.loaded_files],
            "sections": sorted(self._config.keys()),
        }

    def validate_configuration(self) -> Dict[str, List[str]]:
        """
        Check settings for values the pipeline cannot run with.

        Returns
        -------
        Dict[str, List[str]]
            Section name mapped to a list of problems. Empty when valid.
        """
        errors: Dict[str, List[str]] = {}

        def add(section: str, msg: str) -> None:
            errors.setdefault(section, []).append(msg)

        m = self.get("data.season_length", 12)
        if not isinstance(m, int) or m < 1:
            add("data", f"season_length must be a positive integer, got {m!r}")
            m = 12

        transform = self.get("model.transform.name", "level")
        if transform not in KNOWN_TRANSFORMS:
            add("model", f"unknown transform '{transform}'")

        models = self.get("model.models", []) or []
        unknown = sorted(set(models) - KNOWN_MODELS)
        if unknown:
            add("model", f"unknown models: {unknown}")

        levels = self.get("evaluation.intervals", []) or []
        if not isinstance(levels, (list, tuple)):
            levels = [levels]
        bad_levels = []
        for lvl in levels:
            try:
                ok = 0 < float(lvl) < 100
            except (TypeError, ValueError):
                ok = False
            if not ok:
                bad_levels.append(lvl)
        if bad_levels:
            add("evaluation", f"coverage levels must lie in (0, 100): {bad_levels}")

        test_len = self.get("evaluation.test_len", 24)
        if not isinstance(test_len, int) or test_len <= 0:
            add("evaluation", f"test_len must be a positive integer, got {test_len!r}")

        ro = self.get("backtesting.rolling_origin", {}) or {}
        horizon = ro.get("forecast_horizon", 12)
        if not isinstance(horizon, int) or horizon <= 0:
            add("backtesting", f"forecast_horizon must be a positive integer, got {horizon!r}")
        window_type = ro.get("window_type", "rolling")
        if window_type not in KNOWN_WINDOW_TYPES:
            add("backtesting", f"unknown window_type '{window_type}'")
        window = ro.get("window_size", 120)
        if not isinstance(window, int) or window < 2 * m:
            add("backtesting", f"window_size must be at least two seasons ({2 * m}), got {window!r}")
        step = ro.get("step_size", 1)
        if not isinstance(step, int) or step <= 0:
            add("backtesting", f"step_size must be a positive integer, got {step!r}")

        return errors


_config_instance: Optional[ConfigurationManager] = None


def get_config() -> ConfigurationManager:
    """Return the process-wide configuration manager, loading it on first use."""
    global _config_instance
    if _config_instance is None:
        _config_instance = ConfigurationManager()
    return _config_instance


def reset_config() -> None:
    global _config_instance
    _config_instance = None
