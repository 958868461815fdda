# retail_forecaster_src/main.py

"""
Seasonal forecasting of monthly Canadian retail trade sales.

This is the main entry point of the retail forecaster. It runs the whole
analysis top to bottom in one invocation.

Purpose
-------
- Load a Statistics Canada retail trade table (or a tidy date/sales CSV)
- Visualize the series: time plot, seasonal plot, STL decomposition, ACF/PACF
- Run stationarity checks (ADF and KPSS on level, log and differenced series)
  and suggest differencing orders
- Fit a manual seasonal ARIMA, an automatic ARIMA, ETS and Holt-Winters models
  plus naive benchmarks on a training span; evaluate them on a hold-out year(s)
- Rolling-origin cross-validation with a fixed-size sliding window; report
  MAPE and MASE by horizon and rank the models against seasonal naive

Data Sources & Attribution
---------------------------
Statistics Canada. Table 20-10-0008-01 Retail trade sales by province and
territory. Contains information licensed under the Open Government Licence - Canada.

Data Setup
----------
The table is not bundled. Download the full-table CSV from
https://www150.statcan.gc.ca/t1/tbl1/en/tv.action?pid=2010000801
("Download options" > "Download entire table"), unzip it and save the data
file (20100008.csv) as data/retail_sales_canada.csv under the working
directory. Alternatively point --data (or data.path in the YAML) at any CSV,
including a tidy file with 'date' and 'sales' columns.

Configuration-Driven Workflow
-----------------------------
Model parameters, data selection and evaluation settings are managed via the
YAML configuration in config/settings.yaml. CLI arguments override
configuration values where applicable.
"""

import argparse
import logging
import sys
import warnings
from datetime import datetime, timezone
from itertools import product
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

import pandas as pd

from backtesting import (
    BacktestConfig, RollingOriginValidator, compare_models, horizon_accuracy
)
from diagnostics import stationarity_report, suggest_differencing
from . import config_utils
from .config_utils import initialize_config, get_config_value
from .data_utils import (
    load_retail_table, detect_csv_layout, pivot_categories, load_retail_sales_series,
    train_test_split_series, describe_series
)
from .parsing_utils import (
    parse_range_arg, parse_intervals_arg, parse_models_arg, parse_order_arg,
    validate_target_transform, validate_log_level
)
from .transform_utils import apply_target_transform, difference, get_transform_description
from .metrics_utils import accuracy_table, ACCURACY_COLUMNS
from .plotting_utils import (
    plot_sales_series, plot_category_panel, plot_seasonal, plot_decomposition, plot_acf_pacf,
    plot_forecasts, plot_cv_horizon_errors, plot_metric_comparison
)
from .diagnostics_utils import save_residual_diagnostics, save_stationarity_artifacts
from .forecasting_utils import (
    MODEL_REGISTRY, ForecastModel, ForecastResult, create_model, make_model_factory,
    optimize_sarimax, forecast_holdout, hash_forecast
)
from .file_utils import (
    ensure_dir, resolve_path, append_metrics_csv_row, append_report_section,
    md_table_from_df, save_table
)

logger = logging.getLogger(__name__)


def run_exploration(series: pd.Series,
                    panel: Optional[pd.DataFrame],
                    figures_dir: Path,
                    m: int = 12) -> Tuple[pd.DataFrame, Dict[str, int]]:
    """
    Save exploratory figures and run the stationarity checks.

    Parameters
    ----------
    series : pd.Series
        Monthly sales on the original scale
    panel : Optional[pd.DataFrame]
        Wide month x NAICS category frame (None or empty to skip the panel)
    figures_dir : Path
        Output directory for figures and tables
    m : int, default=12
        Seasonal period

    Returns
    -------
    Tuple[pd.DataFrame, Dict[str, int]]
        (stationarity report, suggested {'d': ..., 'D': ...})
    """
    ensure_dir(figures_dir)
    plot_sales_series(series, figures_dir / "Sales.png", title="Retail trade sales (monthly)")
    plot_seasonal(series, figures_dir / "Sales_seasonal.png")
    plot_decomposition(series, m, figures_dir / "Sales_STL.png")
    plot_acf_pacf(series, figures_dir / "Sales_ACF_PACF.png", lags=3 * m, title="(level)")
    plot_acf_pacf(difference(series, d=1, D=1, m=m), figures_dir / "Sales_ACF_PACF_diff.png",
                  lags=3 * m, title="(seasonal + first difference)")
    if panel is not None and not panel.empty:
        plot_category_panel(panel, figures_dir / "Category_panel.png")

    alpha = float(get_config_value("diagnostics.alpha", 0.05))
    threshold = float(get_config_value("diagnostics.seasonal_strength_threshold", 0.64))
    report = stationarity_report(series, m=m, alpha=alpha)
    save_stationarity_artifacts(report, figures_dir)
    logger.info("Stationarity report:\n%s", report.to_string(index=False))

    suggested = suggest_differencing(series, m=m, alpha=alpha, threshold=threshold)
    return report, suggested


def run_holdout_evaluation(series: pd.Series,
                           models: Dict[str, ForecastModel],
                           test_len: int,
                           levels: List[int],
                           figures_dir: Path,
                           m: int = 12) -> Tuple[pd.DataFrame, Dict[str, ForecastResult]]:
    """
    Fit every model on the training span and score it on the final ``test_len`` months.

    Returns
    -------
    Tuple[pd.DataFrame, Dict[str, ForecastResult]]
        (accuracy table sorted by MASE, forecasts by model)
    """
    train, test = train_test_split_series(series, test_len)
    logger.info("Hold-out split: train %s..%s (%d), test %s..%s (%d)",
                train.index[0].strftime("%Y-%m"), train.index[-1].strftime("%Y-%m"), len(train),
                test.index[0].strftime("%Y-%m"), test.index[-1].strftime("%Y-%m"), len(test))

    forecasts = forecast_holdout(models, train, test_len, levels)
    if not forecasts:
        raise SystemExit("Every model failed to fit on the training span.")

    benchmark = get_config_value("evaluation.benchmark", "snaive")
    acc = accuracy_table(forecasts, test, train, m=m, benchmark=benchmark)
    save_table(acc, figures_dir / "holdout_accuracy.csv")
    logger.info("Hold-out accuracy:\n%s", acc.to_string())

    for name in forecasts:
        model = models[name]
        try:
            save_residual_diagnostics(model.residuals, figures_dir / "residuals", fname_prefix=name,
                                      season_length=m, model_df=model.n_params)
        except Exception as e:
            logger.error("Residual diagnostics failed for %s: %s", name, e)

    best = acc.index[0] if not acc.empty else None
    plot_forecasts(train, test, forecasts, figures_dir / "Holdout_forecasts.png",
                   level=max(levels) if levels else 95, best=best)
    plot_metric_comparison(acc, "MASE", figures_dir / "Holdout_MASE.png", title="Hold-out MASE")
    plot_metric_comparison(acc, "MAPE", figures_dir / "Holdout_MAPE.png", title="Hold-out MAPE (%)",
                           ylabel="MAPE (%)")
    return acc, forecasts


def run_cross_validation(series: pd.Series,
                         models: Dict[str, Callable[[], ForecastModel]],
                         backtest_config: BacktestConfig,
                         figures_dir: Path) -> Tuple[pd.DataFrame, Dict[str, pd.DataFrame], Dict[str, object]]:
    """
    Rolling-origin cross-validation of every model on identical origins.

    Returns
    -------
    Tuple[pd.DataFrame, Dict[str, pd.DataFrame], Dict[str, CrossValidationResult]]
        (model comparison ranked by MASE, per-horizon tables by model, raw CV results)
    """
    validator = RollingOriginValidator(backtest_config)
    cv_results = {name: validator.validate(series, factory, name) for name, factory in models.items()}

    cv_dir = figures_dir / "cv"
    horizon_tables: Dict[str, pd.DataFrame] = {}
    for name, cv in cv_results.items():
        horizon_tables[name] = horizon_accuracy(cv)
        save_table(horizon_tables[name], cv_dir / f"{name}_by_horizon.csv")
        save_table(cv.errors, cv_dir / f"{name}_errors.csv")

    benchmark = get_config_value("evaluation.benchmark", "snaive")
    comparison = compare_models(cv_results, benchmark=benchmark)
    save_table(comparison, cv_dir / "cv_comparison.csv")
    logger.info("Cross-validation comparison:\n%s", comparison.to_string())

    plot_cv_horizon_errors(horizon_tables, "MASE", figures_dir / "CV_MASE_by_horizon.png")
    plot_cv_horizon_errors(horizon_tables, "MAPE", figures_dir / "CV_MAPE_by_horizon.png")
    plot_metric_comparison(comparison, "MASE", figures_dir / "CV_MASE.png", title="Cross-validated MASE")
    return comparison, horizon_tables, cv_results


def resolve_model_params(names: List[str],
                         train: pd.Series,
                         m: int,
                         transform: str,
                         args: argparse.Namespace,
                         figures_dir: Path) -> Dict[str, Dict[str, object]]:
    """
    Per-model constructor arguments, including the manual ARIMA order.

    The ARIMA order comes from --arima-order/--seasonal-order, then the
    configuration; with --grid-search the (p, q, P, Q) part is chosen by AIC
    on the transformed training span while d and D stay fixed.
    """
    params: Dict[str, Dict[str, object]] = {name: {} for name in names}
    if "arima" not in names:
        return params

    order = parse_order_arg(getattr(args, "arima_order", None)) \
        or tuple(get_config_value("model.arima.order", [1, 1, 1]))
    seasonal = parse_order_arg(getattr(args, "seasonal_order", None)) \
        or tuple(get_config_value("model.arima.seasonal_order", [0, 1, 1]))

    if getattr(args, "grid_search", False):
        pL = parse_range_arg(getattr(args, "p_range", None), config_key="model.search_space.p_range")
        qL = parse_range_arg(getattr(args, "q_range", None), config_key="model.search_space.q_range")
        PL = parse_range_arg(getattr(args, "P_range", None), default="0-1",
                             config_key="model.search_space.P_range")
        QL = parse_range_arg(getattr(args, "Q_range", None), default="0-1",
                             config_key="model.search_space.Q_range")

        z, _ = apply_target_transform(train, transform)
        grid = optimize_sarimax(z, list(product(pL, qL, PL, QL)), order[1], seasonal[1], m)
        if grid.empty:
            logger.error("Grid search failed: keeping ARIMA order %s%s", order, seasonal)
        else:
            save_table(grid, figures_dir / "arima_grid.csv", index=False)
            logger.info("Top 5 ARIMA orders by AIC:\n%s", grid.head().to_string())
            p, q, P, Q = grid.iloc[0]["(p,q,P,Q)"]
            order = (p, order[1], q)
            seasonal = (P, seasonal[1], Q)

    logger.info("Manual ARIMA order: %s%s[%d]", order, seasonal, m)
    params["arima"] = {"order": order, "seasonal_order": seasonal}
    return params


def _metrics_row(mode: str, args_meta: Dict[str, str], name: str, spec: str,
                 metrics: Dict[str, object], n_eval: int, fingerprint: str) -> Dict[str, object]:
    row: Dict[str, object] = {
        "timestamp": datetime.now(timezone.utc).isoformat(timespec="seconds"),
        "mode": mode,
        "model": name,
        "spec": spec,
        "n_eval": n_eval,
        "hash": fingerprint,
    }
    row.update(args_meta)
    row.update(metrics)
    return row


def run_analysis(args: argparse.Namespace) -> Dict[str, object]:
    """
    Run the whole analysis: load, explore, hold-out evaluation, cross-validation, report.

    Parameters
    ----------
    args : argparse.Namespace
        Parsed CLI arguments (attributes that are missing fall back to configuration)

    Returns
    -------
    Dict[str, object]
        'series', 'summary', 'stationarity', 'suggested', 'accuracy',
        'forecasts', 'cv_comparison' and 'cv_horizon' entries
    """
    base_dir = Path(__file__).resolve().parent.parent

    data_path = resolve_path(get_config_value("data.path", "data/retail_sales_canada.csv", args, "data"), base_dir)
    figures_dir = resolve_path(get_config_value("output.figures_dir", "figures", args, "figures_dir"), base_dir)
    metrics_csv = resolve_path(get_config_value("output.metrics_csv", str(figures_dir / "metrics.csv"),
                                                args, "metrics_csv"), base_dir)
    report_md = resolve_path(get_config_value("output.report_md", str(figures_dir / "report.md"),
                                              args, "report_md"), base_dir)
    ensure_dir(figures_dir)

    geo = get_config_value("data.geo", "Canada", args, "geo")
    naics = get_config_value("data.naics", "Retail trade [44-45]", args, "naics")
    adjustment = get_config_value("data.adjustment", "Unadjusted", args, "adjustment")
    scale = bool(get_config_value("data.apply_scalar_factor", False))
    m = int(get_config_value("data.season_length", 12))

    transform = validate_target_transform(get_config_value("model.transform.name", "level", args, "transform"))
    models_arg = getattr(args, "models", None)
    if models_arg is None:
        models_arg = ",".join(get_config_value("model.models", ["arima", "auto_arima", "ets",
                                                               "holt_winters", "snaive"]))
    names = parse_models_arg(models_arg, list(MODEL_REGISTRY))
    test_len = int(get_config_value("evaluation.test_len", 24, args, "test_len"))
    levels_arg = getattr(args, "intervals", None)
    if levels_arg is None:
        levels_arg = ",".join(str(v) for v in get_config_value("evaluation.intervals", [80, 95]))
    levels = parse_intervals_arg(levels_arg)

    # 1) Data
    series = load_retail_sales_series(data_path, geo=geo, naics=naics, adjustment=adjustment, scale=scale)
    if len(series) <= test_len + 2 * m:
        raise SystemExit(f"Series too short ({len(series)} months) for a {test_len}-month hold-out "
                         f"with seasonal period {m}.")
    raw = load_retail_table(data_path)
    panel = pivot_categories(raw, geo=geo, adjustment=adjustment) if detect_csv_layout(raw) == "statcan" else None

    summary = describe_series(series)
    logger.info("Series summary: %s", summary)
    append_report_section(report_md, "Series summary",
                          md_table_from_df(pd.DataFrame([summary]), index=False)
                          + f"\n\nSelection: GEO='{geo}', NAICS='{naics}', Adjustments='{adjustment}'. "
                          f"Transform: {get_transform_description(transform)}.")

    # 2) Exploration and stationarity
    report, suggested = run_exploration(series, panel, figures_dir, m)
    append_report_section(report_md, "Stationarity",
                          md_table_from_df(report, index=False)
                          + f"\n\nSuggested differencing: d={suggested['d']}, D={suggested['D']}.")

    # 3) Hold-out evaluation
    train, _ = train_test_split_series(series, test_len)
    params = resolve_model_params(names, train, m, transform, args, figures_dir)
    models = {name: create_model(name, season_length=m, transform=transform, **params[name]) for name in names}
    accuracy, forecasts = run_holdout_evaluation(series, models, test_len, levels, figures_dir, m)

    meta = {"geo": geo, "naics": naics, "transform": transform}
    for name, row in accuracy.iterrows():
        metrics = {k: row[k] for k in ACCURACY_COLUMNS + ["DM_t", "DM_p"]}
        append_metrics_csv_row(metrics_csv, _metrics_row("holdout", meta, name, row["spec"], metrics,
                                                         test_len, hash_forecast(forecasts[name].mean)))
    append_report_section(report_md, "Hold-out accuracy",
                          md_table_from_df(accuracy, columns=["spec"] + ACCURACY_COLUMNS)
                          + f"\n\nTest span: last {test_len} months; sorted by MASE.")

    # 4) Rolling-origin cross-validation
    comparison, horizon_tables = pd.DataFrame(), {}
    if getattr(args, "no_cv", False):
        logger.info("Cross-validation disabled (--no-cv)")
    else:
        backtest_config = BacktestConfig.from_config_manager(
            config_utils.config_manager,
            window_type=getattr(args, "window_type", None),
            window_size=getattr(args, "cv_window", None),
            forecast_horizon=getattr(args, "cv_horizon", None),
            step_size=getattr(args, "cv_step", None),
            max_origins=getattr(args, "cv_max_origins", None),
            season_length=m,
        )
        factories = {name: make_model_factory(name, season_length=m, transform=transform, **params[name])
                     for name in names}
        try:
            comparison, horizon_tables, cv_results = run_cross_validation(series, factories,
                                                                          backtest_config, figures_dir)
        except ValueError as e:
            logger.error("Cross-validation skipped: %s", e)
        else:
            for name, row in comparison.iterrows():
                metrics = {k: row[k] for k in ["RMSE", "MAE", "MAPE", "MASE", "DM_t", "DM_p"]}
                append_metrics_csv_row(metrics_csv, _metrics_row(
                    "cv", meta, name, models[name].spec, metrics, int(row["n"]),
                    hash_forecast(cv_results[name].forecasts.to_numpy().ravel())))
            append_report_section(report_md, "Rolling-origin cross-validation",
                                  md_table_from_df(comparison)
                                  + f"\n\n{backtest_config.window_type} window of "
                                  f"{backtest_config.window_size} months, horizon "
                                  f"{backtest_config.forecast_horizon}, step {backtest_config.step_size}.")

    logger.info("Analysis complete. Figures in %s; report at %s", figures_dir, report_md)
    return {
        "series": series,
        "summary": summary,
        "stationarity": report,
        "suggested": suggested,
        "accuracy": accuracy,
        "forecasts": forecasts,
        "cv_comparison": comparison,
        "cv_horizon": horizon_tables,
    }


def setup_cli_parser() -> argparse.ArgumentParser:
    """
    Set up the command-line argument parser.

    Options left at None resolve from the configuration file.

    Returns
    -------
    argparse.ArgumentParser
        Configured argument parser
    """
    parser = argparse.ArgumentParser(
        description="Seasonal forecasting of monthly Canadian retail trade sales."
    )

    # Data and output arguments
    parser.add_argument(
        "--data", type=str, default=None,
        help="Path to a Statistics Canada table CSV or a tidy CSV with 'date' and 'sales' columns."
    )
    parser.add_argument(
        "--figures-dir", type=str, default=None,
        help="Directory to write figure files and tables."
    )
    parser.add_argument(
        "--metrics-csv", type=str, default=None,
        help="Append evaluation metrics rows to this CSV (resolved relative to the project root if not absolute)."
    )
    parser.add_argument(
        "--report-md", type=str, default=None,
        help="Append timestamped report sections to this Markdown file."
    )
    parser.add_argument(
        "--log-level", type=str, default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging verbosity level."
    )

    # Series selection
    parser.add_argument("--geo", type=str, default=None, help="GEO value, e.g. 'Canada' or 'Ontario'.")
    parser.add_argument("--naics", type=str, default=None,
                        help="NAICS category label, e.g. 'Retail trade [44-45]'.")
    parser.add_argument("--adjustment", type=str, default=None,
                        help="Adjustments value: 'Unadjusted' or 'Seasonally adjusted'.")

    # Models, transform and intervals
    parser.add_argument(
        "--transform", choices=["level", "log", "boxcox"], default=None,
        help="Transform target series before modeling; forecasts are back-transformed."
    )
    parser.add_argument(
        "--models", type=str, default=None,
        help=f"Comma-separated models to fit. Available: {','.join(MODEL_REGISTRY)}."
    )
    parser.add_argument(
        "--test-len", type=int, default=None,
        help="Number of final months held out for accuracy evaluation."
    )
    parser.add_argument(
        "--intervals", type=str, default=None,
        help="Comma-separated predictive interval coverages (e.g., '80,95')."
    )

    # Manual ARIMA and grid search
    parser.add_argument("--arima-order", type=str, default=None, help="Manual ARIMA (p,d,q), e.g. '1,1,1'.")
    parser.add_argument("--seasonal-order", type=str, default=None,
                        help="Manual seasonal (P,D,Q), e.g. '0,1,1'.")
    parser.add_argument(
        "--grid-search", action="store_true", default=False,
        help="Choose the manual ARIMA (p,q,P,Q) by AIC over the ranges below."
    )
    parser.add_argument(
        "--p-range", type=str, default=None,
        help="Range or list for AR order p (e.g., '0-2' or '0,1,2'). Uses config default if not specified."
    )
    parser.add_argument(
        "--q-range", type=str, default=None,
        help="Range or list for MA order q. Uses config default if not specified."
    )
    parser.add_argument(
        "--P-range", type=str, default=None,
        help="Range or list for seasonal AR order P. Uses config default if not specified."
    )
    parser.add_argument(
        "--Q-range", type=str, default=None,
        help="Range or list for seasonal MA order Q. Uses config default if not specified."
    )

    # Rolling-origin cross-validation controls
    parser.add_argument("--cv-horizon", type=int, default=None, help="Forecast horizon per origin.")
    parser.add_argument("--cv-window", type=int, default=None, help="Training window length (rolling).")
    parser.add_argument("--cv-step", type=int, default=None, help="Months between origins.")
    parser.add_argument("--cv-max-origins", type=int, default=None,
                        help="Evaluate only the last N origins.")
    parser.add_argument("--window-type", choices=["rolling", "expanding"], default=None,
                        help="Fixed-size sliding window or expanding window.")
    parser.add_argument("--no-cv", action="store_true", default=False,
                        help="Skip rolling-origin cross-validation.")

    return parser


def setup_logging(log_level: str) -> None:
    """
    Configure logging with specified level and warning filters.

    Parameters
    ----------
    log_level : str
        Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    level = validate_log_level(log_level)
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
        datefmt="%H:%M:%S",
    )

    if level == "DEBUG":
        warnings.resetwarnings()
        warnings.filterwarnings("default")
    else:
        from statsmodels.tools.sm_exceptions import ConvergenceWarning, InterpolationWarning
        warnings.filterwarnings("ignore", category=ConvergenceWarning)
        warnings.filterwarnings("ignore", category=InterpolationWarning)
        warnings.filterwarnings("ignore", category=FutureWarning)
        warnings.filterwarnings("ignore", category=UserWarning, module="statsmodels")


def main(argv: Optional[List[str]] = None) -> None:
    """
    Main entry point for the retail forecasting application.

    Initializes configuration, parses CLI arguments, configures logging and
    runs the analysis.
    """
    initialize_config()

    parser = setup_cli_parser()
    args = parser.parse_args(argv)

    setup_logging(args.log_level)
    try:
        run_analysis(args)
    except ValueError as e:
        logger.error("%s", e)
        sys.exit(2)


if __name__ == "__main__":
    main()
