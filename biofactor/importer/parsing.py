"""
Reading uploaded CSV / Excel files into header → text rows.
"""

import io
import os
from typing import Dict, List, Optional

import pandas as pd
from pandas.errors import EmptyDataError

from biofactor.config import IMPORT_EXTENSIONS
from biofactor.errors import EmptyFileError, ImportFileError, UnsupportedFormatError

RawRow = Dict[str, Optional[str]]

EXCEL_ENGINES = {"xlsx": "openpyxl", "xls": "xlrd"}


def file_extension(filename: str) -> str:
    return os.path.splitext(filename or "")[1].lstrip(".").lower()


def _read_frame(ext: str, content: bytes) -> pd.DataFrame:
    buf = io.BytesIO(content)
    if ext == "csv":
        # keep_default_na=False: an empty cell stays "", a missing trailing cell is NaN.
        # index_col=False: cells beyond the header (trailing commas) are ignored.
        return pd.read_csv(
            buf, dtype=str, keep_default_na=False, skip_blank_lines=True,
            encoding="utf-8-sig", index_col=False,
        )
    return pd.read_excel(buf, sheet_name=0, dtype=str, engine=EXCEL_ENGINES[ext])


def _clean(value) -> Optional[str]:
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return None
    return str(value).strip()


def frame_to_rows(df: pd.DataFrame) -> List[RawRow]:
    """Trim headers and values; drop rows with no content at all."""
    headers = [str(c).strip() for c in df.columns]
    rows = []
    for values in df.itertuples(index=False, name=None):
        row = {h: _clean(v) for h, v in zip(headers, values)}
        if any(v for v in row.values()):
            rows.append(row)
    return rows


def parse_file(filename: str, content: bytes) -> List[RawRow]:
    """Parse an uploaded file into ordered rows keyed by header.

    Raises UnsupportedFormatError for anything but csv/xlsx/xls, and
    EmptyFileError unless there is a header plus at least one data row.
    """
    ext = file_extension(filename)
    if ext not in IMPORT_EXTENSIONS:
        raise UnsupportedFormatError("Only CSV or Excel files are supported")

    try:
        df = _read_frame(ext, content)
    except EmptyDataError:
        raise EmptyFileError("File must contain a header row and at least one data row") from None
    except Exception as e:
        raise ImportFileError(f"Could not read {filename}: {e}") from e

    rows = frame_to_rows(df)
    if not rows:
        raise EmptyFileError("File must contain a header row and at least one data row")
    return rows
