"""End-to-end runs of the analysis on small synthetic tables."""

from types import SimpleNamespace

import pandas as pd
import pytest

from retail_forecaster_src.main import main, run_analysis, setup_cli_parser
from retail_forecaster_src.file_utils import METRICS_HEADER


def make_args(tmp_path, data, **overrides):
    values = dict(
        data=str(data),
        figures_dir=str(tmp_path / "figures"),
        metrics_csv=str(tmp_path / "figures" / "metrics.csv"),
        report_md=str(tmp_path / "figures" / "report.md"),
        geo="Canada",
        naics="Retail trade [44-45]",
        adjustment="Unadjusted",
        transform="level",
        models="naive,snaive",
        test_len=12,
        intervals="80,95",
        arima_order=None,
        seasonal_order=None,
        grid_search=False,
        p_range=None,
        q_range=None,
        P_range=None,
        Q_range=None,
        cv_horizon=6,
        cv_window=36,
        cv_step=6,
        cv_max_origins=3,
        window_type="rolling",
        no_cv=False,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def test_full_analysis_on_statcan_table(tmp_path, statcan_csv):
    args = make_args(tmp_path, statcan_csv)
    out = run_analysis(args)
    figures = tmp_path / "figures"

    assert len(out["series"]) == 96
    assert out["suggested"]["D"] == 1
    assert list(out["accuracy"].index)[0] == "snaive"
    assert set(out["forecasts"]) == {"naive", "snaive"}
    assert list(out["cv_comparison"].index) == ["snaive", "naive"]
    assert list(out["cv_horizon"]["snaive"].index) == [1, 2, 3, 4, 5, 6]

    for name in ("Sales.png", "Sales_seasonal.png", "Sales_STL.png", "Sales_ACF_PACF.png",
                 "Sales_ACF_PACF_diff.png", "Category_panel.png", "stationarity_report.csv",
                 "holdout_accuracy.csv", "Holdout_forecasts.png", "Holdout_MASE.png",
                 "CV_MASE_by_horizon.png", "cv/cv_comparison.csv", "cv/snaive_errors.csv",
                 "residuals/snaive_tests.csv"):
        assert (figures / name).exists(), name

    metrics = pd.read_csv(figures / "metrics.csv", dtype={"hash": str})
    assert list(metrics.columns) == METRICS_HEADER
    assert sorted(metrics["mode"]) == ["cv", "cv", "holdout", "holdout"]
    assert set(metrics["model"]) == {"naive", "snaive"}
    assert metrics["hash"].str.len().eq(16).all()

    report = (figures / "report.md").read_text(encoding="utf-8")
    for section in ("## Series summary", "## Stationarity", "## Hold-out accuracy",
                    "## Rolling-origin cross-validation"):
        assert section in report

    errors = pd.read_csv(figures / "cv" / "snaive_errors.csv", index_col=0)
    assert errors.shape == (3, 6)


def test_analysis_without_cv_and_log_transform(tmp_path, tidy_csv):
    args = make_args(tmp_path, tidy_csv, no_cv=True, transform="log", models="snaive")
    out = run_analysis(args)

    assert out["cv_comparison"].empty
    assert out["cv_horizon"] == {}
    metrics = pd.read_csv(tmp_path / "figures" / "metrics.csv")
    assert list(metrics["mode"]) == ["holdout"]
    assert list(metrics["transform"]) == ["log"]
    assert not (tmp_path / "figures" / "Category_panel.png").exists()


def test_grid_search_selects_arima_order(tmp_path, tidy_csv):
    args = make_args(tmp_path, tidy_csv, no_cv=True, models="arima,snaive", grid_search=True,
                     transform="log", p_range="0", q_range="0-1", P_range="0", Q_range="1")
    out = run_analysis(args)

    grid = pd.read_csv(tmp_path / "figures" / "arima_grid.csv")
    assert len(grid) == 2
    assert out["accuracy"].loc["arima", "spec"].startswith("ARIMA(0,1,")
    assert out["accuracy"].loc["arima", "spec"].endswith("(0,1,1)[12]")


def test_short_series_exits(tmp_path, monthly_sales):
    path = tmp_path / "short.csv"
    short = monthly_sales.iloc[:30]
    pd.DataFrame({"date": short.index.strftime("%Y-%m-%d"), "sales": short.values}).to_csv(path, index=False)
    with pytest.raises(SystemExit):
        run_analysis(make_args(tmp_path, path))


def test_cli_parser_defaults():
    args = setup_cli_parser().parse_args([])
    assert args.models is None
    assert args.test_len is None
    assert args.log_level == "INFO"
    assert args.no_cv is False and args.grid_search is False

    args = setup_cli_parser().parse_args(["--P-range", "0-1", "--window-type", "expanding"])
    assert args.P_range == "0-1"
    assert args.window_type == "expanding"


def test_main_runs_from_argv(tmp_path, tidy_csv):
    figures = tmp_path / "out"
    main(["--data", str(tidy_csv), "--figures-dir", str(figures),
          "--metrics-csv", str(figures / "metrics.csv"), "--report-md", str(figures / "report.md"),
          "--models", "naive,snaive", "--test-len", "12", "--no-cv", "--log-level", "WARNING"])
    assert (figures / "holdout_accuracy.csv").exists()
    assert (figures / "report.md").exists()


def test_main_exits_on_invalid_model(tmp_path, tidy_csv):
    with pytest.raises(SystemExit) as exc:
        main(["--data", str(tidy_csv), "--figures-dir", str(tmp_path / "out"),
              "--models", "prophet", "--no-cv", "--log-level", "WARNING"])
    assert exc.value.code == 2


def test_cross_validation_with_fitted_models(tmp_path, tidy_csv):
    args = make_args(tmp_path, tidy_csv, models="ets,holt_winters,snaive", cv_max_origins=2)
    out = run_analysis(args)
    cv_dir = tmp_path / "figures" / "cv"

    assert set(out["cv_comparison"].index) == {"ets", "holt_winters", "snaive"}
    for name in ("ets", "holt_winters", "snaive"):
        assert list(out["cv_horizon"][name].index) == [1, 2, 3, 4, 5, 6]
        errors = pd.read_csv(cv_dir / f"{name}_errors.csv", index_col=0)
        assert errors.shape == (2, 6)
        assert errors.notna().all().all(), name

    metrics = pd.read_csv(tmp_path / "figures" / "metrics.csv", dtype={"hash": str})
    assert sorted(metrics.loc[metrics["mode"] == "cv", "model"]) == ["ets", "holt_winters", "snaive"]
