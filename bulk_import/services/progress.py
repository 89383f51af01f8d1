from __future__ import annotations

import sys
from typing import Any

from tqdm import tqdm
from tqdm.std import tqdm as TqdmType

"""Row-weighted progress bar for batch execution (tqdm, TTY only).

The bar counts rows, not batches, so a short final batch advances it by
less than a full one. Skipped batches advance it too; the postfix keeps
the applied / failed / skipped batch tallies. Without a TTY nothing is
drawn and only the log lines remain.
"""

__all__ = [
    "BatchProgress",
    "is_tty_enabled",
]


def is_tty_enabled() -> bool:
    return sys.stdout.isatty()


class BatchProgress:
    def __init__(self, total_rows: int, total_batches: int, *, label: str = "rows") -> None:
        self.total_rows = total_rows
        self.total_batches = total_batches
        self.label = label
        self.done_rows = 0
        self.tally = {"applied": 0, "failed": 0, "skipped": 0}

        self.bar: TqdmType[Any] | None = None
        if total_rows and is_tty_enabled():
            self.bar = tqdm(total=total_rows, desc=label, unit="row", leave=True, ncols=80, ascii=True)

    def begin(self, batch_index: int) -> None:
        if self.bar is not None:
            self.bar.set_description(f"{self.label} [{batch_index}/{self.total_batches}]")

    def advance(self, row_count: int, status: str) -> None:
        """Count one finished batch; ``status`` is applied, failed or skipped."""
        self.done_rows += row_count
        self.tally[status] += 1
        if self.bar is not None:
            self.bar.update(row_count)
            self.bar.set_postfix(self.tally)

    def close(self) -> None:
        if self.bar is not None:
            self.bar.close()
            self.bar = None

    def __enter__(self) -> BatchProgress:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
