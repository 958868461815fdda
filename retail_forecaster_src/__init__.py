# retail_forecaster_src/__init__.py

"""
Retail Forecaster - Seasonal Forecasting of Monthly Retail Trade Sales

This package loads Statistics Canada retail trade tables, explores their trend
and seasonality, and compares seasonal ARIMA, ETS and Holt-Winters forecasts
against naive benchmarks on a hold-out span and by rolling-origin
cross-validation.

Key Components
--------------
- config_utils: Configuration management and CLI override support
- data_utils: CSV loading, filtering, pivoting and train/test splits
- parsing_utils: Command-line argument parsing and validation
- transform_utils: Target transformations (level, log, boxcox) and differencing
- metrics_utils: Forecast accuracy measures and the Diebold-Mariano test
- plotting_utils: Exploratory, forecast and evaluation figures
- diagnostics_utils: Residual check artifacts
- forecasting_utils: Model registry (ARIMA, auto ARIMA, ETS, Holt-Winters, naive)
- file_utils: Metrics CSV, Markdown report and path utilities
- main: Main entry point and workflow orchestration

Usage
-----
    # Command-line usage
    python -m retail_forecaster_src.main --data data/retail_sales_canada.csv

    # Programmatic usage
    from retail_forecaster_src import create_model, accuracy_table
"""

__version__ = "1.0.0"

from .config_utils import initialize_config, get_config_value
from .data_utils import load_retail_sales_series, train_test_split_series
from .forecasting_utils import create_model, forecast_holdout, optimize_sarimax, ForecastResult
from .metrics_utils import compute_accuracy, accuracy_table

__all__ = [
    "initialize_config",
    "get_config_value",
    "load_retail_sales_series",
    "train_test_split_series",
    "create_model",
    "forecast_holdout",
    "optimize_sarimax",
    "ForecastResult",
    "compute_accuracy",
    "accuracy_table",
    "__version__",
]
