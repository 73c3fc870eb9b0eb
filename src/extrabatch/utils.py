"""
Utility functions for extrabatch.

Provides A1 coordinate conversion, grid range arithmetic and checksums.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any


def column_index_to_letter(index: int) -> str:
    """Convert a zero-based column index to A1 notation letter(s).

    Examples:
        0 -> A, 1 -> B, 25 -> Z, 26 -> AA, 27 -> AB, 702 -> AAA
    """
    result = ""
    while True:
        result = chr(ord("A") + (index % 26)) + result
        index = index // 26 - 1
        if index < 0:
            break
    return result


def cell_to_a1(row_index: int, col_index: int) -> str:
    """Convert zero-based row and column indices to A1 notation.

    Examples:
        (0, 0) -> A1, (0, 1) -> B1, (9, 2) -> C10
    """
    return f"{column_index_to_letter(col_index)}{row_index + 1}"


def range_to_a1(
    start_row: int | None,
    end_row: int | None,
    start_col: int | None,
    end_col: int | None,
) -> str | None:
    """Convert zero-based, end-exclusive range indices to A1 notation.

    Returns None when the bounds do not describe an explicit range.

    Examples:
        (0, 10, 0, 5) -> A1:E10
        (None, None, 0, 1) -> A:A (full column)
        (0, 1, None, None) -> 1:1 (full row)
    """
    if start_row is not None and end_row is not None:
        if start_col is not None and end_col is not None:
            start_a1 = cell_to_a1(start_row, start_col)
            if end_row - start_row == 1 and end_col - start_col == 1:
                return start_a1
            return f"{start_a1}:{cell_to_a1(end_row - 1, end_col - 1)}"
        # Full row(s)
        if start_col is None and end_col is None:
            return f"{start_row + 1}:{end_row}"
        return None

    # Full column(s)
    if (
        start_row is None
        and end_row is None
        and start_col is not None
        and end_col is not None
    ):
        return (
            f"{column_index_to_letter(start_col)}:{column_index_to_letter(end_col - 1)}"
        )

    return None


def grid_range_to_ref(grid_range: dict[str, Any] | None) -> str | None:
    """Build a sheet-qualified reference like ``0!A1:C10`` for a GridRange.

    Returns None for missing or unbounded ranges.
    """
    if not grid_range:
        return None
    a1 = range_to_a1(
        grid_range.get("startRowIndex"),
        grid_range.get("endRowIndex"),
        grid_range.get("startColumnIndex"),
        grid_range.get("endColumnIndex"),
    )
    if a1 is None:
        return None
    return f"{grid_range.get('sheetId', 0)}!{a1}"


def dimension_range_to_ref(dimension_range: dict[str, Any] | None) -> str | None:
    """Build a reference like ``0!2:5`` or ``0!B:D`` for a DimensionRange."""
    if not dimension_range:
        return None
    start = dimension_range.get("startIndex")
    end = dimension_range.get("endIndex")
    if start is None or end is None:
        return None
    if dimension_range.get("dimension") == "COLUMNS":
        a1 = range_to_a1(None, None, start, end)
    else:
        a1 = range_to_a1(start, end, None, None)
    return f"{dimension_range.get('sheetId', 0)}!{a1}"


def escape_sheet_title(title: str) -> str:
    """Quote a sheet title for use in an A1 range.

    Titles are always wrapped in single quotes, with embedded quotes doubled.
    """
    escaped = title.replace("'", "''")
    return f"'{escaped}'"


def grid_area(
    grid_range: dict[str, Any],
    default_rows: int = 1,
    default_columns: int = 1,
) -> int:
    """Number of cells covered by a GridRange.

    Missing end indices fall back to ``start + default``.
    """
    start_row = grid_range.get("startRowIndex") or 0
    start_col = grid_range.get("startColumnIndex") or 0
    end_row = grid_range.get("endRowIndex")
    end_col = grid_range.get("endColumnIndex")
    if end_row is None:
        end_row = start_row + default_rows
    if end_col is None:
        end_col = start_col + default_columns
    return max(end_row - start_row, 0) * max(end_col - start_col, 0)


def is_bounded(grid_range: dict[str, Any]) -> bool:
    """Check that every index of a GridRange is present."""
    return all(
        grid_range.get(key) is not None
        for key in (
            "startRowIndex",
            "endRowIndex",
            "startColumnIndex",
            "endColumnIndex",
        )
    )


def checksum(value: Any) -> str:
    """MD5 hex digest of the canonical JSON encoding of ``value``."""
    encoded = json.dumps(value, separators=(",", ":"), default=str)
    return hashlib.md5(encoded.encode("utf-8")).hexdigest()
