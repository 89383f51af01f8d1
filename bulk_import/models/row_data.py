from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

"""ProjectedRow model.

ProjectedRow represents a single data row after header-relative projection
onto the pipeline's logical fields. Values are the raw cell strings; derived
fields (e.g. ``total``) are kept apart so the original text stays untouched;
``derived_text`` holds them rounded to their digits as strings for sending.
"""

__all__ = [
    "Grid",
    "ProjectedRow",
]

# 行 × 列の文字列セル。Tokenizer 生成後は不変。
Grid = tuple[tuple[str, ...], ...]


@dataclass(frozen=True)
class ProjectedRow:
    """Logical representation of one non-blank data row.

    row_number is the 1-based position of the row in the source grid, so
    operators can find it in the original file.
    """
    row_number: int
    values: Mapping[str, str]
    derived: Mapping[str, float] = field(default_factory=dict)
    derived_text: Mapping[str, str] = field(default_factory=dict)

    def get(self, key: str, default: str = "") -> str:
        return self.values.get(key, default)

    def as_dict(self) -> dict[str, Any]:
        merged: dict[str, Any] = dict(self.values)
        merged.update(self.derived)
        return merged

    def wire_dict(self) -> dict[str, Any]:
        """Values plus derived fields as fixed-point strings, as the services expect them."""
        merged: dict[str, Any] = dict(self.values)
        for key, number in self.derived.items():
            merged[key] = self.derived_text.get(key, f"{number:.2f}")
        return merged
