"""
Row readers for the command line.

The engine consumes already-materialized rows; this module is the CLI's
adapter from spreadsheet/CSV files to `Row` objects.
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional, Union

import pandas as pd

from .models import Row


class RowReadError(Exception):
    """Raised when an input file cannot be read into rows."""


def _frame_to_rows(df: pd.DataFrame) -> List[Row]:
    df = df.fillna("")
    df.columns = [str(c).strip() for c in df.columns]
    # pandas names blank headers "Unnamed: N"
    keep = [c for c in df.columns if c and not c.startswith("Unnamed:")]
    records = df[keep].to_dict(orient="records")
    return [
        Row({k: ("" if v is None else str(v).strip()) for k, v in rec.items()}, index=i)
        for i, rec in enumerate(records)
    ]


def read_rows_xlsx(path: Union[str, Path], sheet: Optional[str] = None) -> List[Row]:
    try:
        df = pd.read_excel(
            path,
            sheet_name=sheet if sheet else 0,
            dtype=str,
            engine="openpyxl",
        )
    except (OSError, ValueError, KeyError) as exc:
        raise RowReadError(f"Cannot read workbook {path}: {exc}") from exc
    return _frame_to_rows(df)


def read_rows_csv(path: Union[str, Path], delimiter: str = ";") -> List[Row]:
    try:
        df = pd.read_csv(
            path,
            sep=delimiter or ";",
            dtype=str,
            keep_default_na=False,
            encoding="utf-8-sig",
        )
    except pd.errors.EmptyDataError:
        return []
    except (OSError, ValueError, pd.errors.ParserError) as exc:
        raise RowReadError(f"Cannot read CSV {path}: {exc}") from exc
    return _frame_to_rows(df)


def read_rows(path: Union[str, Path], *, delimiter: str = ";", sheet: Optional[str] = None) -> List[Row]:
    """Auto-detect reader by file extension."""
    p = Path(path)
    if not str(path) or not p.is_file():
        raise RowReadError(f"Rows file not found: {path}")
    if p.suffix.lower() in (".xlsx", ".xlsm"):
        return read_rows_xlsx(p, sheet)
    return read_rows_csv(p, delimiter)
