from __future__ import annotations

import logging
import threading
from datetime import UTC, datetime
from pathlib import Path

from ..logging.error_log import ErrorLogBuffer
from ..models.config_models import PipelineConfig
from ..models.error_record import ErrorRecord
from ..models.field_spec import UNSET
from ..models.processing_result import BatchOutcome, BatchStatus, RunReport
from ..models.reconciliation import RowStatus
from ..models.row_data import ProjectedRow
from ..remote.catalog_matcher import CatalogMatcher
from ..remote.execution_service import ExecutionService
from ..tabular.reader import read_table, read_table_file
from .batch_executor import BatchExecutor, build_report, chunk_rows
from .reconciler import ExecutionBlockedError, ReconciliationCallError, annotate, eligible_rows, reconcile
from .state_machine import (
    Action,
    Back,
    BatchRecorded,
    ExecutingState,
    ExecutionAborted,
    ExecutionFinished,
    ExecutionStarted,
    FileLoaded,
    HeaderConfirmed,
    MappingChanged,
    MappingConfirmed,
    MappingState,
    PickHeaderState,
    PipelineState,
    PipelineStateError,
    PreviewState,
    ReconciliationCompleted,
    ResultState,
    StartOver,
    Step,
    UploadState,
    ValidationState,
    reduce,
)

"""Pipeline controller.

Owns the mutable state of exactly one run and performs the effects the pure
reducer cannot: tokenizing the upload, calling the Catalog Matcher and
driving the Batch Executor. Several controllers may run side by side; they
share nothing.
"""

__all__ = [
    "RunAbortedError",
    "PipelineController",
]

logger = logging.getLogger(__name__)


class RunAbortedError(Exception):
    """An exception escaped the batch loop; the controller is back in Preview."""


class PipelineController:
    def __init__(
        self,
        config: PipelineConfig,
        matcher: CatalogMatcher,
        executor: ExecutionService,
        *,
        batch_executor: BatchExecutor | None = None,
        error_log: ErrorLogBuffer | None = None,
    ) -> None:
        self.config = config
        self.matcher = matcher
        self.executor = executor
        self.batch_executor = batch_executor or BatchExecutor(config.batch_size)
        self.error_log = error_log
        self.state: PipelineState = UploadState()
        self._cancel = threading.Event()

    @property
    def step(self) -> Step:
        return self.state.step

    def dispatch(self, action: Action) -> PipelineState:
        self.state = reduce(self.config, self.state, action)
        return self.state

    # -- upload / header / mapping ------------------------------------------

    def upload(self, data: bytes, file_name: str) -> PickHeaderState:
        """Tokenize an uploaded file. EmptyFileError / UnsupportedFileError leave the state untouched."""
        if not isinstance(self.state, UploadState):
            raise PipelineStateError(f"upload is not allowed in step {self.step.value!r}; go back to upload first")
        grid = read_table(data, file_name)
        state = self.dispatch(FileLoaded(file_name=file_name, grid=grid))
        logger.info("loaded %s rows=%d suggested_header=%d", file_name, len(grid), state.suggested_index)
        return state

    def upload_file(self, path: Path) -> PickHeaderState:
        if not isinstance(self.state, UploadState):
            raise PipelineStateError(f"upload is not allowed in step {self.step.value!r}; go back to upload first")
        grid = read_table_file(path)
        state = self.dispatch(FileLoaded(file_name=path.name, grid=grid))
        logger.info("loaded %s rows=%d suggested_header=%d", path.name, len(grid), state.suggested_index)
        return state

    def confirm_header(self, index: int | None = None) -> MappingState:
        state = self.dispatch(HeaderConfirmed(index))
        logger.debug("header row=%d labels=%s mapping=%s", state.header_index, state.headers, state.mapping.to_plain_dict())
        return state

    def map_field(self, key: str, label: str) -> MappingState:
        return self.dispatch(MappingChanged(key, label))

    def unset_field(self, key: str) -> MappingState:
        return self.dispatch(MappingChanged(key, UNSET))

    def confirm_mapping(self) -> ValidationState | PreviewState:
        state = self.dispatch(MappingConfirmed())
        logger.info("projected rows=%d", len(state.rows))
        return state

    # -- validation ---------------------------------------------------------

    def validate(self) -> PreviewState:
        state = self.state
        if not isinstance(state, (ValidationState, PreviewState)):
            raise PipelineStateError(f"validate is not allowed in step {self.step.value!r}")
        try:
            result = reconcile(state.rows, self.config.identifier_field, self.matcher, state.fingerprint)
        except ReconciliationCallError as e:
            logger.error("validation failed: %s", e)
            self._record(state.file_name, "RECONCILIATION_FAILED", str(e))
            raise
        for code in result.unmatched:
            self._record(state.file_name, "UNMATCHED_IDENTIFIER", "identifier not found in catalog", identifier=code)
        if result.unmatched:
            logger.warning("%d identifier(s) not found in catalog", len(result.unmatched))
        if result.already_done:
            logger.info("%d identifier(s) already in target state", len(result.already_done))
        return self.dispatch(ReconciliationCompleted(result))

    def preview_rows(self) -> list[tuple[ProjectedRow, RowStatus | None]]:
        state = self.state
        if not isinstance(state, (ValidationState, PreviewState)):
            raise PipelineStateError(f"no preview in step {self.step.value!r}")
        reconciliation = getattr(state, "reconciliation", None)
        if reconciliation is None or not state.validated:
            return [(row, None) for row in state.rows]
        return annotate(state.rows, self.config.identifier_field, reconciliation)

    # -- execution ----------------------------------------------------------

    def execute(self) -> RunReport:
        """Run every eligible row through the Execution Service.

        Fails closed before any remote call when the step is wrong, the
        reconciliation is missing or stale, or the full-match gate fails.
        """
        state = self.state
        if not isinstance(state, PreviewState):
            raise PipelineStateError(f"execute is not allowed in step {self.step.value!r}")
        if state.reconciliation is None or not state.validated:
            raise ExecutionBlockedError("identifiers must be validated against the current mapping before execution")

        key = self.config.identifier_field
        eligible = eligible_rows(state.rows, key, state.reconciliation, dedupe=self.config.dedupe_identifiers)
        blank = sum(1 for row in state.rows if not row.get(key).strip())
        total_batches = len(chunk_rows(eligible, self.batch_executor.batch_size))
        self.dispatch(ExecutionStarted(total_batches=total_batches))
        self._cancel.clear()
        start_time = datetime.now(UTC)

        try:
            outcomes = self.batch_executor.run(
                eligible,
                self.executor,
                on_outcome=self._on_outcome,
                should_stop=self._cancel.is_set,
            )
        except Exception as e:
            logger.exception("execution aborted outside the batch loop")
            self.dispatch(ExecutionAborted(str(e)))
            self._record(state.file_name, "RUN_ABORTED", str(e))
            raise RunAbortedError(f"execution aborted: {e}") from e

        report = build_report(
            pipeline=self.config.name,
            file_name=state.file_name,
            eligible=eligible,
            reconciliation=state.reconciliation,
            blank_identifiers=blank,
            outcomes=outcomes,
            value_key=self.config.value_key,
            cancelled=self._cancel.is_set(),
            start_time=start_time,
        )
        self.dispatch(ExecutionFinished(report))
        return report

    def cancel(self) -> None:
        """Stop after the in-flight batch; its outcome is still recorded."""
        if isinstance(self.state, ExecutingState):
            logger.warning("cancel requested; finishing current batch")
        self._cancel.set()

    def _on_outcome(self, outcome: BatchOutcome) -> None:
        self.dispatch(BatchRecorded(outcome))
        if outcome.status is BatchStatus.FAILED or outcome.status is BatchStatus.SKIPPED:
            error_type = "BATCH_FAILED" if outcome.status is BatchStatus.FAILED else "BATCH_SKIPPED"
            file_name = self.state.preview.file_name if isinstance(self.state, ExecutingState) else ""
            for code in outcome.identifiers:
                self._record(file_name, error_type, outcome.error or "", batch=outcome.batch_index, identifier=code)

    # -- navigation ---------------------------------------------------------

    def back(self, target: Step) -> PipelineState:
        return self.dispatch(Back(target))

    def start_over(self) -> UploadState:
        self._cancel.clear()
        return self.dispatch(StartOver())

    @property
    def report(self) -> RunReport | None:
        return self.state.report if isinstance(self.state, ResultState) else None

    def _record(self, file_name: str, error_type: str, message: str, batch: int = -1, identifier: str = "") -> None:
        if self.error_log is None:
            return
        self.error_log.append(
            ErrorRecord.create(
                file=file_name,
                pipeline=self.config.name,
                error_type=error_type,
                message=message,
                batch=batch,
                identifier=identifier,
            )
        )
