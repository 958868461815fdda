"""Rolling-origin cross-validation for the retail sales forecaster.

This package provides:
- The tsCV error matrix from fixed-window or expanding-window origins
- Strict out-of-sample multi-step forecast evaluation
- Per-horizon and pooled accuracy, with per-origin MASE scaling
- Model comparison against a benchmark (Diebold-Mariano)
"""

from .rolling_origin import (
    RollingOriginValidator,
    CrossValidationResult,
    FoldResult,
    BacktestConfig,
    tscv_errors,
    run_rolling_origin_backtest
)

from .metrics_aggregation import (
    PValueCombination,
    horizon_accuracy,
    summarize_cv,
    compare_models,
    combine_pvalues
)

__all__ = [
    # Core backtesting
    'RollingOriginValidator',
    'CrossValidationResult',
    'FoldResult',
    'BacktestConfig',
    'tscv_errors',
    'run_rolling_origin_backtest',

    # Metrics aggregation
    'PValueCombination',
    'horizon_accuracy',
    'summarize_cv',
    'compare_models',
    'combine_pvalues'
]
