from __future__ import annotations

from ..models.row_data import Grid

"""Header row detection and label extraction.

The suggested index is only a default; any row of the grid may be confirmed
as the header row.
"""

__all__ = [
    "HeaderRowError",
    "HEADER_PREVIEW_ROWS",
    "suggest_header_row",
    "header_labels",
    "header_candidates",
    "cell_at",
]

# 選択候補として表示する行数 (表示上の制限のみ)
HEADER_PREVIEW_ROWS = 20


class HeaderRowError(Exception):
    """Raised when a header row index is outside the grid."""


def cell_at(row: tuple[str, ...], index: int) -> str:
    """Cell lookup that treats missing trailing cells as empty."""
    return row[index] if index < len(row) else ""


def suggest_header_row(grid: Grid, min_non_blank: int) -> int:
    """Index of the first row with at least ``min_non_blank`` non-blank cells (else 0)."""
    for idx, row in enumerate(grid):
        if sum(1 for c in row if c.strip() != "") >= min_non_blank:
            return idx
    return 0


def header_labels(grid: Grid, index: int) -> tuple[str, ...]:
    """Labels of the confirmed header row.

    Blank cells get ``column_<n>`` (1-based position) so they stay unique and
    selectable.
    """
    if index < 0 or index >= len(grid):
        raise HeaderRowError(f"header row {index} is outside the file ({len(grid)} rows)")
    return tuple(c.strip() or f"column_{i + 1}" for i, c in enumerate(grid[index]))


def header_candidates(grid: Grid, limit: int = HEADER_PREVIEW_ROWS) -> list[tuple[int, tuple[str, ...]]]:
    return list(enumerate(grid[:limit]))
