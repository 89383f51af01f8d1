from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .row_data import ProjectedRow

"""Reconciliation result models.

A ReconciliationResult is the three-way partition of distinct identifiers
returned by the Catalog Matcher. It carries the fingerprint of the
(grid, header row, mapping) snapshot it was computed from; the controller
refuses to execute against a result whose fingerprint no longer matches.
"""

__all__ = [
    "MatchResponse",
    "RowStatus",
    "ReconciliationResult",
    "EligibleRow",
]


@dataclass(frozen=True)
class MatchResponse:
    """Parsed Catalog Matcher response.

    matched / already_inactive entries are the matcher's dicts (always with a
    ``code`` key, plus target fields such as ``product_id``).
    """
    matched: list[dict[str, Any]]
    unmatched: list[str]
    already_inactive: list[dict[str, Any]] = field(default_factory=list)


class RowStatus(Enum):
    MATCHED = "matched"
    UNMATCHED = "unmatched"
    ALREADY_DONE = "already_done"
    BLANK = "blank"  # 識別子セルが空


@dataclass(frozen=True)
class ReconciliationResult:
    matched: tuple[str, ...]
    unmatched: tuple[str, ...]
    already_done: tuple[str, ...]
    targets: Mapping[str, Mapping[str, Any]]  # code -> matcher payload (product_id 等)
    fingerprint: str

    def status_of(self, code: str) -> RowStatus:
        if not code.strip():
            return RowStatus.BLANK
        if code in self.matched:
            return RowStatus.MATCHED
        if code in self.already_done:
            return RowStatus.ALREADY_DONE
        return RowStatus.UNMATCHED

    @property
    def has_unmatched(self) -> bool:
        return bool(self.unmatched)


@dataclass(frozen=True)
class EligibleRow:
    """A projected row cleared for execution, with its matcher target payload."""
    row: ProjectedRow
    identifier: str
    target: Mapping[str, Any]

    def payload(self) -> dict[str, Any]:
        return self.row.wire_dict()
