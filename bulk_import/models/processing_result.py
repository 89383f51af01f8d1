from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

"""Batch outcome and run report models.

BatchOutcome keeps only the final attempt of a batch (first attempt, or the
retry). RunReport aggregates a whole execution for operator review: counts,
per-batch outcomes, the unresolved errors and the identifiers that need
follow-up.
"""

__all__ = [
    "BatchStatus",
    "BatchOutcome",
    "RunReport",
]


class BatchStatus(Enum):
    """Final status of one batch.

    - APPLIED: first attempt succeeded
    - APPLIED_AFTER_RETRY: first attempt failed, retry succeeded
    - FAILED: both attempts failed (not re-queued; a human decides)
    - SKIPPED: never attempted because the run was cancelled
    """
    APPLIED = "applied"
    APPLIED_AFTER_RETRY = "applied_after_retry"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def succeeded(self) -> bool:
        return self in (BatchStatus.APPLIED, BatchStatus.APPLIED_AFTER_RETRY)


@dataclass(frozen=True)
class BatchOutcome:
    batch_index: int  # 1 始まり
    row_count: int
    first_row: int  # 元ファイルの行番号 (ProjectedRow.row_number)
    last_row: int
    status: BatchStatus
    attempts: int
    identifiers: tuple[str, ...] = ()
    result: dict[str, Any] | None = None
    error: str | None = None
    elapsed_seconds: float = 0.0

    @property
    def success(self) -> bool:
        return self.status.succeeded


@dataclass(frozen=True)
class RunReport:
    """Aggregate of one pipeline execution."""
    pipeline: str
    file_name: str
    eligible_rows: int
    matched: int
    unmatched: int
    already_done: int
    blank_identifiers: int
    total_value: float
    batches: list[BatchOutcome]
    errors: list[str]
    unmatched_identifiers: tuple[str, ...] = ()
    cancelled: bool = False
    start_time: datetime | None = None
    end_time: datetime | None = None

    @property
    def successful_batches(self) -> list[BatchOutcome]:
        return [b for b in self.batches if b.status.succeeded]

    @property
    def retried_batches(self) -> list[BatchOutcome]:
        return [b for b in self.batches if b.status is BatchStatus.APPLIED_AFTER_RETRY]

    @property
    def failed_batches(self) -> list[BatchOutcome]:
        return [b for b in self.batches if b.status is BatchStatus.FAILED]

    @property
    def skipped_batches(self) -> list[BatchOutcome]:
        return [b for b in self.batches if b.status is BatchStatus.SKIPPED]

    @property
    def applied_rows(self) -> int:
        return sum(b.row_count for b in self.successful_batches)

    @property
    def elapsed_seconds(self) -> float:
        if self.start_time is None or self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    def follow_up_identifiers(self) -> list[str]:
        """Flat list of identifiers an operator must look at.

        Unmatched codes first, then codes of failed / skipped batches, then
        codes the Execution Service itself reported as unmatched.
        """
        seen: dict[str, None] = {}
        for code in self.unmatched_identifiers:
            seen.setdefault(code, None)
        for b in self.batches:
            if not b.status.succeeded:
                for code in b.identifiers:
                    seen.setdefault(code, None)
        for b in self.successful_batches:
            for item in (b.result or {}).get("unmatched_items") or []:
                code = str(item.get("product_code", "")) if isinstance(item, dict) else str(item)
                if code:
                    seen.setdefault(code, None)
        return list(seen)
