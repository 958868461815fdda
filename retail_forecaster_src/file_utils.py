# retail_forecaster_src/file_utils.py

import csv
import pandas as pd
import numpy as np
from pathlib import Path
from typing import List, Optional, Dict, Any
from datetime import datetime, timezone
import logging

logger = logging.getLogger(__name__)

METRICS_HEADER = [
    "timestamp", "mode", "geo", "naics", "transform", "model", "spec",
    "ME", "RMSE", "MAE", "MPE", "MAPE", "sMAPE", "MASE", "ACF1", "TheilU2",
    "DM_t", "DM_p", "n_eval", "hash",
]


def ensure_dir(path: Path) -> None:
    """
    Create directory if it doesn't exist, including all parent directories.
    """
    path.mkdir(parents=True, exist_ok=True)


def resolve_path(path_str: str, base_dir: Path) -> Path:
    """
    Resolve a path string relative to a base directory if not absolute.

    Examples
    --------
    >>> resolve_path("data/file.csv", Path("/project"))
    PosixPath('/project/data/file.csv')
    """
    path = Path(path_str)
    return path if path.is_absolute() else (base_dir / path)


def append_metrics_csv_row(csv_path: Optional[Path],
                           row: Dict[str, Any],
                           header: List[str] = METRICS_HEADER) -> None:
    """
    Append a single metrics row to CSV, creating header on first write.

    Parameters
    ----------
    csv_path : Optional[Path]
        Path to metrics CSV file (None to skip writing)
    row : Dict[str, Any]
        Metric values keyed by column name; keys outside ``header`` are ignored
    header : List[str]
        Column names for the CSV

    Notes
    -----
    Write failures are logged, never raised, so a read-only output location
    does not abort an otherwise finished analysis.
    """
    if csv_path is None:
        return

    try:
        csv_path.parent.mkdir(parents=True, exist_ok=True)
        exists = csv_path.exists() and csv_path.stat().st_size > 0

        with csv_path.open("a", newline="", encoding="utf-8") as f:
            writer = csv.DictWriter(f, fieldnames=header, extrasaction="ignore")
            if not exists:
                writer.writeheader()
            writer.writerow(row)

    except OSError as e:
        logger.error("Failed to append metrics to %s: %s", csv_path, e)


def append_report_section(report_path: Optional[Path], title: str, body: str) -> None:
    """
    Append a timestamped level-2 section to the Markdown report.
    """
    if report_path is None:
        return
    try:
        ensure_dir(report_path.parent)
        ts = datetime.now(timezone.utc).isoformat(timespec="seconds")
        with report_path.open("a", encoding="utf-8") as f:
            f.write(f"\n\n## {title}  \n")
            f.write(f"_timestamp: {ts}_\n\n")
            f.write(body.strip() + "\n")
    except OSError as e:
        logger.error("Failed to append to report %s: %s", report_path, e)


def _fmt_cell(value: Any, float_digits: int) -> str:
    if isinstance(value, (float, np.floating)):
        if not np.isfinite(value):
            return "NaN"
        return f"{value:.{float_digits}f}"
    return str(value)


def md_table_from_df(df: pd.DataFrame,
                     max_rows: int = 20,
                     columns: Optional[List[str]] = None,
                     index: bool = True,
                     float_digits: int = 3) -> str:
    """
    Convert a DataFrame to markdown table format.

    Parameters
    ----------
    df : pd.DataFrame
        DataFrame to convert
    max_rows : int, default=20
        Maximum number of rows to include
    columns : Optional[List[str]]
        Specific columns to include (None for all); unknown names are ignored
    index : bool, default=True
        Include the index as the first column
    float_digits : int, default=3
        Decimal places for float cells

    Returns
    -------
    str
        Markdown table string, empty if the frame has no columns
    """
    if columns is not None:
        keep = [c for c in columns if c in df.columns]
        if keep:
            df = df.loc[:, keep]

    df_disp = df.head(max_rows)
    if index:
        df_disp = df_disp.reset_index()
    cols = list(df_disp.columns)
    if not cols:
        return ""

    header = "| " + " | ".join(str(c) for c in cols) + " |"
    separator = "| " + " | ".join("---" for _ in cols) + " |"
    rows = []
    for _, row in df_disp.iterrows():
        vals = [_fmt_cell(row[c], float_digits) for c in cols]
        rows.append("| " + " | ".join(vals) + " |")

    return "\n".join([header, separator] + rows)


def save_table(df: pd.DataFrame, out_path: Path, index: bool = True) -> Optional[Path]:
    """Write a result table to CSV; failures are logged and None is returned."""
    try:
        ensure_dir(out_path.parent)
        df.to_csv(out_path, index=index)
        logger.debug("Saved table: %s", out_path)
        return out_path
    except OSError as e:
        logger.error("Failed to save table %s: %s", out_path, e)
        return None
