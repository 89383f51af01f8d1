from __future__ import annotations

import math
import re
from collections.abc import Sequence

from ..models.field_spec import ColumnMapping, DerivedField, FieldSpec
from ..models.row_data import Grid, ProjectedRow
from ..tabular.header import cell_at, header_labels

"""Row projection: header-relative raw rows -> ProjectedRow sequence.

Pure function of (grid, header row, mapping); projecting twice yields equal
results. Source order is preserved. Malformed numbers in derived-field
inputs count as zero so a partly dirty file can still be previewed.
"""

__all__ = [
    "parse_number",
    "column_index",
    "project_rows",
]

# 先頭の数値部分のみ採用 ("12 pcs" -> 12)
_LEADING_NUMBER = re.compile(r"^\s*[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?")


def parse_number(text: str) -> float:
    match = _LEADING_NUMBER.match(text or "")
    if match is None:
        return 0.0
    value = float(match.group(0))
    # "1e999" など溢れる値は inf になるので 0 扱い
    return value if math.isfinite(value) else 0.0


def column_index(headers: Sequence[str]) -> dict[str, int]:
    # 重複ラベルは最初の列を採用
    index: dict[str, int] = {}
    for i, label in enumerate(headers):
        index.setdefault(label, i)
    return index


def _derive(values: dict[str, str], derived: Sequence[DerivedField]) -> dict[str, float]:
    out: dict[str, float] = {}
    for spec in derived:
        product = 1.0
        for key in spec.product_of:
            product *= parse_number(values.get(key, ""))
        out[spec.key] = round(product, spec.ndigits) if math.isfinite(product) else 0.0
    return out


def _derive_text(numbers: dict[str, float], derived: Sequence[DerivedField]) -> dict[str, str]:
    # 送信用は固定小数点の文字列 (20 -> "20.00")
    return {spec.key: f"{numbers[spec.key]:.{spec.ndigits}f}" for spec in derived}


def project_rows(
    grid: Grid,
    header_index: int,
    mapping: ColumnMapping,
    fields: Sequence[FieldSpec],
    derived: Sequence[DerivedField] = (),
) -> tuple[ProjectedRow, ...]:
    headers = header_labels(grid, header_index)
    positions = column_index(headers)
    bound: dict[str, int | None] = {}
    for spec in fields:
        label = mapping.label_for(spec.key)
        bound[spec.key] = positions.get(label) if label is not None else None
    mapped_columns = [pos for pos in bound.values() if pos is not None]

    rows: list[ProjectedRow] = []
    for offset, raw in enumerate(grid[header_index + 1:]):
        if all(cell_at(raw, pos).strip() == "" for pos in mapped_columns):
            continue
        values = {key: (cell_at(raw, pos) if pos is not None else "") for key, pos in bound.items()}
        numbers = _derive(values, derived)
        rows.append(
            ProjectedRow(
                row_number=header_index + offset + 2,
                values=values,
                derived=numbers,
                derived_text=_derive_text(numbers, derived),
            )
        )
    return tuple(rows)
