from __future__ import annotations

import io
import math
import re
import zipfile
from datetime import date, datetime
from pathlib import Path
from typing import Any

import pandas as pd
import xlrd
from xlrd.compdoc import CompDocError

from ..models.row_data import Grid

"""Tokenizer: uploaded file -> rectangular grid of string cells.

Two source encodings, chosen by file extension only (no content sniffing):

- delimited text (.csv): the delimiter is guessed from the first line. This
  is a heuristic: tab wins if it occurs more often than comma, then
  semicolon, otherwise comma (ties and single-column files -> comma). Quoted
  fields are NOT parsed as CSV; only one leading and one trailing double
  quote are stripped, so a delimiter inside quotes still splits the cell.
- workbook (.xlsx / .xls): first sheet only, read through pandas without
  header inference or NA conversion.

The caller always gets a chance to confirm the header row afterwards, so a
wrong guess here is recoverable.
"""

__all__ = [
    "EmptyFileError",
    "UnsupportedFileError",
    "DELIMITED_EXTENSIONS",
    "WORKBOOK_EXTENSIONS",
    "sniff_delimiter",
    "split_delimited",
    "read_workbook",
    "read_table",
    "read_table_file",
]

DELIMITED_EXTENSIONS = {".csv"}
WORKBOOK_EXTENSIONS = {".xlsx", ".xls"}

_LINE_SPLIT = re.compile(r"\r?\n")
_WRAPPING_QUOTE = re.compile(r'^"|"$')


class EmptyFileError(Exception):
    """Raised when the file has no header row plus at least one data row."""


class UnsupportedFileError(Exception):
    """Raised when the file extension is not .csv / .xlsx / .xls, or a workbook is corrupt."""


def sniff_delimiter(first_line: str) -> str:
    """Guess the delimiter from the first line (heuristic, see module doc)."""
    commas = first_line.count(",")
    if first_line.count("\t") > commas:
        return "\t"
    if first_line.count(";") > commas:
        return ";"
    return ","


def _clean_cell(cell: str) -> str:
    # trim してから先頭/末尾の " を 1 つずつ除去 (エスケープ解除はしない)
    return _WRAPPING_QUOTE.sub("", cell.strip())


def split_delimited(text: str) -> Grid:
    """Split delimited text into a grid (blank lines discarded)."""
    if not text.strip():
        raise EmptyFileError("file is empty")
    delimiter = sniff_delimiter(text.split("\n")[0])
    lines = [line for line in _LINE_SPLIT.split(text) if line.strip() != ""]
    rows = tuple(tuple(_clean_cell(c) for c in line.split(delimiter)) for line in lines)
    if len(rows) < 2:
        raise EmptyFileError(f"file has {len(rows)} row(s); need a header row and at least one data row")
    return rows


def _cell_to_str(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float):
        if math.isnan(value):
            return ""
        if value.is_integer():
            return str(int(value))
        return str(value)
    if isinstance(value, (datetime, date)):
        if isinstance(value, datetime) and value.time() == datetime.min.time():
            return value.date().isoformat()
        return value.isoformat()
    if pd.isna(value):
        return ""
    return str(value)


def read_workbook(data: bytes, file_name: str = "") -> Grid:
    """Read the first sheet of a workbook into a grid.

    dtype=object keeps cell values as read by the engine (openpyxl / xlrd);
    keep_default_na=False stops strings such as "NA" from turning into NaN.
    """
    try:
        df = pd.read_excel(
            io.BytesIO(data),
            sheet_name=0,
            header=None,
            dtype=object,
            keep_default_na=False,
            na_values=[],
        )
    except ValueError as e:
        # openpyxl は空ブックや形式不明のファイルで ValueError を出す
        raise EmptyFileError(f"cannot read workbook {file_name!r}: {e}") from e
    except (zipfile.BadZipFile, xlrd.XLRDError, CompDocError, OSError) as e:
        # 壊れた / 途中で切れた .xlsx (zip) と .xls (BIFF)
        raise UnsupportedFileError(f"corrupt or unreadable workbook {file_name!r}: {e}") from e
    rows = tuple(tuple(_cell_to_str(v) for v in raw) for raw in df.itertuples(index=False, name=None))
    if len(rows) < 2:
        raise EmptyFileError(f"workbook {file_name!r} has {len(rows)} row(s); need a header row and data")
    return rows


def read_table(data: bytes, file_name: str) -> Grid:
    """Tokenize raw file bytes, choosing the reader by extension."""
    suffix = Path(file_name).suffix.lower()
    if suffix in DELIMITED_EXTENSIONS:
        return split_delimited(data.decode("utf-8-sig", errors="replace"))
    if suffix in WORKBOOK_EXTENSIONS:
        return read_workbook(data, file_name)
    raise UnsupportedFileError(
        f"unsupported file type {suffix or '(none)'!r} for {file_name!r}; expected .xlsx, .xls or .csv"
    )


def read_table_file(path: Path) -> Grid:
    if not path.exists():
        raise FileNotFoundError(f"file not found: {path}")
    return read_table(path.read_bytes(), path.name)
