import csv

import numpy as np
import pandas as pd

from retail_forecaster_src.file_utils import (
    METRICS_HEADER,
    append_metrics_csv_row,
    append_report_section,
    md_table_from_df,
    resolve_path,
    save_table,
)


def test_metrics_csv_header_written_once(tmp_path):
    path = tmp_path / "out" / "metrics.csv"
    append_metrics_csv_row(path, {"mode": "holdout", "model": "ets", "MASE": 0.8, "extra": "ignored"})
    append_metrics_csv_row(path, {"mode": "cv", "model": "snaive", "MASE": 1.0})

    with path.open(newline="", encoding="utf-8") as f:
        rows = list(csv.reader(f))
    assert rows[0] == METRICS_HEADER
    assert len(rows) == 3
    df = pd.read_csv(path)
    assert list(df["mode"]) == ["holdout", "cv"]
    assert "extra" not in df.columns


def test_metrics_csv_none_path_is_noop(tmp_path):
    append_metrics_csv_row(None, {"model": "ets"})
    assert list(tmp_path.iterdir()) == []


def test_report_sections_append(tmp_path):
    report = tmp_path / "report.md"
    append_report_section(report, "Series summary", "first body")
    append_report_section(report, "Stationarity", "second body\n")
    text = report.read_text(encoding="utf-8")
    assert text.index("## Series summary") < text.index("## Stationarity")
    assert text.count("_timestamp: ") == 2
    assert "second body" in text


def test_md_table_from_df():
    df = pd.DataFrame({"MASE": [0.81234, np.nan], "spec": ["ETS(M,A,M)", "SNaive[12]"]},
                      index=pd.Index(["ets", "snaive"], name="model"))
    table = md_table_from_df(df, columns=["spec", "MASE", "missing"])
    lines = table.splitlines()
    assert lines[0] == "| model | spec | MASE |"
    assert lines[2] == "| ets | ETS(M,A,M) | 0.812 |"
    assert lines[3].endswith("| NaN |")
    assert md_table_from_df(df, max_rows=1, index=False).count("\n") == 2
    assert md_table_from_df(pd.DataFrame(), index=False) == ""


def test_save_table_creates_parent(tmp_path):
    df = pd.DataFrame({"a": [1, 2]})
    path = save_table(df, tmp_path / "nested" / "t.csv", index=False)
    assert path == tmp_path / "nested" / "t.csv"
    pd.testing.assert_frame_equal(pd.read_csv(path), df)


def test_resolve_path(tmp_path):
    assert resolve_path("data/x.csv", tmp_path) == tmp_path / "data" / "x.csv"
    assert resolve_path(str(tmp_path / "abs.csv"), tmp_path / "other") == tmp_path / "abs.csv"
