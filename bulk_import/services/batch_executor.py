from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from ..models.config_models import DEFAULT_BATCH_SIZE
from ..models.processing_result import BatchOutcome, BatchStatus, RunReport
from ..models.reconciliation import EligibleRow, ReconciliationResult
from ..remote.execution_service import ExecutionService
from .progress import BatchProgress
from .retry import RetryExhaustedError, run_with_retries

"""Batched execution with bounded retry.

Rows are cut into fixed-size batches and sent to the Execution Service one
batch at a time, in source order. Batch i+1 starts only after batch i has
finished (success or exhausted retry); created entities (invoice numbers)
therefore follow file order and the service sees at most one batch in
flight.

Each batch gets one retry with the identical payload. A batch that fails
twice is recorded as FAILED and the run moves on; it is never re-queued.
No idempotency key is attached, so a retry after a lost response may apply
the batch twice if the service does not deduplicate.
"""

__all__ = [
    "Batch",
    "BatchExecutionError",
    "BatchExecutor",
    "chunk_rows",
    "build_report",
]

logger = logging.getLogger(__name__)


class BatchExecutionError(Exception):
    """One batch failed on every attempt. Recorded in the outcome, not raised out of the run."""

    def __init__(self, batch_index: int, attempts: int, message: str) -> None:
        self.batch_index = batch_index
        self.attempts = attempts
        super().__init__(f"batch {batch_index} failed after {attempts} attempt(s): {message}")


@dataclass(frozen=True)
class Batch:
    index: int  # 1 始まり
    rows: tuple[EligibleRow, ...]

    @property
    def identifiers(self) -> tuple[str, ...]:
        return tuple(dict.fromkeys(r.identifier for r in self.rows))

    @property
    def first_row(self) -> int:
        return self.rows[0].row.row_number if self.rows else 0

    @property
    def last_row(self) -> int:
        return self.rows[-1].row.row_number if self.rows else 0


def chunk_rows(rows: Sequence[EligibleRow], batch_size: int) -> list[Batch]:
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {batch_size}")
    return [
        Batch(index=n + 1, rows=tuple(rows[start:start + batch_size]))
        for n, start in enumerate(range(0, len(rows), batch_size))
    ]


class BatchExecutor:
    def __init__(
        self,
        batch_size: int = DEFAULT_BATCH_SIZE,
        *,
        max_retries: int = 1,
        backoff_seconds: float = 0.0,
    ) -> None:
        self.batch_size = batch_size
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds

    def run(
        self,
        rows: Sequence[EligibleRow],
        execute: ExecutionService,
        *,
        on_outcome: Callable[[BatchOutcome], None] | None = None,
        should_stop: Callable[[], bool] | None = None,
    ) -> list[BatchOutcome]:
        """Run every batch in order; ``should_stop`` is only checked between batches."""
        batches = chunk_rows(rows, self.batch_size)
        outcomes: list[BatchOutcome] = []
        logger.info("executing rows=%d batches=%d batch_size=%d", len(rows), len(batches), self.batch_size)

        with BatchProgress(len(rows), len(batches)) as progress:
            for batch in batches:
                if should_stop is not None and should_stop():
                    outcome = self._skipped(batch)
                    progress.advance(len(batch.rows), "skipped")
                else:
                    progress.begin(batch.index)
                    outcome = self._execute_batch(batch, execute)
                    progress.advance(len(batch.rows), "applied" if outcome.success else "failed")
                outcomes.append(outcome)
                if on_outcome is not None:
                    on_outcome(outcome)
        return outcomes

    def _execute_batch(self, batch: Batch, execute: ExecutionService) -> BatchOutcome:
        def on_failure(attempt: int, exc: Exception) -> None:
            if attempt <= self.max_retries:
                logger.warning(
                    "batch %d attempt %d failed: %s; retrying (no idempotency key, "
                    "a committed-but-unacknowledged batch may be applied twice)",
                    batch.index,
                    attempt,
                    exc,
                )

        start = time.time()
        try:
            result, attempts = run_with_retries(
                lambda: execute(batch.rows),
                max_retries=self.max_retries,
                backoff_seconds=self.backoff_seconds,
                on_attempt_failure=on_failure,
            )
        except RetryExhaustedError as e:
            error = BatchExecutionError(batch.index, e.attempts, str(e))
            logger.error("%s", error)
            return self._outcome(batch, BatchStatus.FAILED, e.attempts, None, str(error), time.time() - start)

        status = BatchStatus.APPLIED if attempts == 1 else BatchStatus.APPLIED_AFTER_RETRY
        logger.debug("batch %d %s rows=%d attempts=%d", batch.index, status.value, len(batch.rows), attempts)
        return self._outcome(batch, status, attempts, result, None, time.time() - start)

    def _skipped(self, batch: Batch) -> BatchOutcome:
        return self._outcome(batch, BatchStatus.SKIPPED, 0, None, "run cancelled before this batch", 0.0)

    @staticmethod
    def _outcome(
        batch: Batch,
        status: BatchStatus,
        attempts: int,
        result: dict[str, Any] | None,
        error: str | None,
        elapsed: float,
    ) -> BatchOutcome:
        return BatchOutcome(
            batch_index=batch.index,
            row_count=len(batch.rows),
            first_row=batch.first_row,
            last_row=batch.last_row,
            status=status,
            attempts=attempts,
            identifiers=batch.identifiers,
            result=result,
            error=error,
            elapsed_seconds=elapsed,
        )


def _numeric(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def build_report(
    *,
    pipeline: str,
    file_name: str,
    eligible: Sequence[EligibleRow],
    reconciliation: ReconciliationResult,
    blank_identifiers: int,
    outcomes: Sequence[BatchOutcome],
    value_key: str | None,
    cancelled: bool = False,
    start_time: datetime | None = None,
    end_time: datetime | None = None,
) -> RunReport:
    total_value = 0.0
    if value_key:
        total_value = sum(_numeric((o.result or {}).get(value_key)) for o in outcomes if o.success)
    return RunReport(
        pipeline=pipeline,
        file_name=file_name,
        eligible_rows=len(eligible),
        matched=len(reconciliation.matched),
        unmatched=len(reconciliation.unmatched),
        already_done=len(reconciliation.already_done),
        blank_identifiers=blank_identifiers,
        total_value=round(total_value, 2),
        batches=list(outcomes),
        errors=[o.error for o in outcomes if o.status is BatchStatus.FAILED and o.error],
        unmatched_identifiers=reconciliation.unmatched,
        cancelled=cancelled,
        start_time=start_time,
        end_time=end_time or datetime.now(UTC),
    )
