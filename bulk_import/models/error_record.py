from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import UTC, datetime

"""ErrorRecord model for the operator follow-up log.

Each record is one JSON line. ``batch`` is -1 for records that do not belong
to a batch (unmatched identifiers found during reconciliation, aborted runs).
"""

__all__ = [
    "ErrorRecord",
]


@dataclass(frozen=True)
class ErrorRecord:
    """Structured error record for JSON Lines logging.

    Attributes:
        timestamp: ISO8601 UTC timestamp with 'Z' suffix
        file: uploaded file name
        pipeline: pipeline name (opening_stock, bulk_deactivate, ...)
        batch: 1-based batch index, -1 when not batch related
        identifier: product identifier concerned ("" when unknown)
        error_type: classification in UPPER_SNAKE_CASE
        message: remote error message or description
    """
    timestamp: str
    file: str
    pipeline: str
    batch: int
    identifier: str
    error_type: str
    message: str

    @staticmethod
    def create(
        file: str,
        pipeline: str,
        error_type: str,
        message: str,
        batch: int = -1,
        identifier: str = "",
    ) -> ErrorRecord:
        ts = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        return ErrorRecord(
            timestamp=ts,
            file=file,
            pipeline=pipeline,
            batch=batch,
            identifier=identifier,
            error_type=error_type,
            message=message,
        )

    def to_json_line(self) -> str:
        return json.dumps(asdict(self), ensure_ascii=False)
