from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import ClassVar, Union

from ..models.config_models import PipelineConfig
from ..models.field_spec import ColumnMapping, Unset
from ..models.processing_result import BatchOutcome, RunReport
from ..models.reconciliation import ReconciliationResult
from ..models.row_data import Grid, ProjectedRow
from ..tabular.header import header_labels, suggest_header_row
from .projector import project_rows
from .reconciler import ExecutionBlockedError, check_executable, snapshot_fingerprint
from .schema_mapper import auto_map, override, require_complete

"""Pipeline state machine.

State is a tagged union of frozen dataclasses; ``reduce`` is a pure function
(config, state, action) -> new state and raises PipelineStateError for
transitions the current step does not allow. Remote calls live in the
controller, which feeds their results back in as actions.

    Upload -> PickHeader -> Mapping -> [Validation] -> Preview -> Executing -> Result

Back actions may return to Upload, PickHeader or Mapping. Re-entering
Mapping drops the reconciliation, so a mapping change always forces a new
validation before execution. An aborted execution returns to Preview.
"""

__all__ = [
    "Step",
    "PipelineStateError",
    "UploadState",
    "PickHeaderState",
    "MappingState",
    "ValidationState",
    "PreviewState",
    "ExecutingState",
    "ResultState",
    "PipelineState",
    "FileLoaded",
    "HeaderConfirmed",
    "MappingChanged",
    "MappingConfirmed",
    "ReconciliationCompleted",
    "ExecutionStarted",
    "BatchRecorded",
    "ExecutionFinished",
    "ExecutionAborted",
    "Back",
    "StartOver",
    "Action",
    "reduce",
]


class Step(Enum):
    UPLOAD = "upload"
    PICK_HEADER = "pick_header"
    MAPPING = "mapping"
    VALIDATION = "validation"
    PREVIEW = "preview"
    EXECUTING = "executing"
    RESULT = "result"


_ORDER = list(Step)


class PipelineStateError(Exception):
    """Raised when an action is not allowed in the current step."""


# ---------------------------------------------------------------------------
# States
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class UploadState:
    step: ClassVar[Step] = Step.UPLOAD


@dataclass(frozen=True)
class PickHeaderState:
    step: ClassVar[Step] = Step.PICK_HEADER
    file_name: str
    grid: Grid
    suggested_index: int


@dataclass(frozen=True)
class MappingState:
    step: ClassVar[Step] = Step.MAPPING
    file_name: str
    grid: Grid
    header_index: int
    headers: tuple[str, ...]
    mapping: ColumnMapping


@dataclass(frozen=True)
class ValidationState:
    step: ClassVar[Step] = Step.VALIDATION
    file_name: str
    grid: Grid
    header_index: int
    headers: tuple[str, ...]
    mapping: ColumnMapping
    rows: tuple[ProjectedRow, ...]

    @property
    def fingerprint(self) -> str:
        return snapshot_fingerprint(self.grid, self.header_index, self.mapping)


@dataclass(frozen=True)
class PreviewState:
    step: ClassVar[Step] = Step.PREVIEW
    file_name: str
    grid: Grid
    header_index: int
    headers: tuple[str, ...]
    mapping: ColumnMapping
    rows: tuple[ProjectedRow, ...]
    reconciliation: ReconciliationResult | None = None
    last_error: str | None = None  # 直前の実行中断理由

    @property
    def fingerprint(self) -> str:
        return snapshot_fingerprint(self.grid, self.header_index, self.mapping)

    @property
    def validated(self) -> bool:
        return self.reconciliation is not None and self.reconciliation.fingerprint == self.fingerprint


@dataclass(frozen=True)
class ExecutingState:
    step: ClassVar[Step] = Step.EXECUTING
    preview: PreviewState
    total_batches: int
    outcomes: tuple[BatchOutcome, ...] = ()


@dataclass(frozen=True)
class ResultState:
    step: ClassVar[Step] = Step.RESULT
    report: RunReport


PipelineState = Union[
    UploadState, PickHeaderState, MappingState, ValidationState, PreviewState, ExecutingState, ResultState
]


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FileLoaded:
    file_name: str
    grid: Grid


@dataclass(frozen=True)
class HeaderConfirmed:
    index: int | None = None  # None -> 推定行をそのまま採用


@dataclass(frozen=True)
class MappingChanged:
    key: str
    label: str | Unset


@dataclass(frozen=True)
class MappingConfirmed:
    pass


@dataclass(frozen=True)
class ReconciliationCompleted:
    result: ReconciliationResult


@dataclass(frozen=True)
class ExecutionStarted:
    total_batches: int


@dataclass(frozen=True)
class BatchRecorded:
    outcome: BatchOutcome


@dataclass(frozen=True)
class ExecutionFinished:
    report: RunReport


@dataclass(frozen=True)
class ExecutionAborted:
    error: str


@dataclass(frozen=True)
class Back:
    target: Step


@dataclass(frozen=True)
class StartOver:
    pass


Action = Union[
    FileLoaded,
    HeaderConfirmed,
    MappingChanged,
    MappingConfirmed,
    ReconciliationCompleted,
    ExecutionStarted,
    BatchRecorded,
    ExecutionFinished,
    ExecutionAborted,
    Back,
    StartOver,
]


def _reject(state: PipelineState, action: Action) -> PipelineStateError:
    return PipelineStateError(f"{type(action).__name__} is not allowed in step {state.step.value!r}")


def _back(state: PipelineState, target: Step) -> PipelineState:
    if isinstance(state, (UploadState, ExecutingState, ResultState)):
        raise PipelineStateError(f"cannot go back from step {state.step.value!r}")
    if target not in (Step.UPLOAD, Step.PICK_HEADER, Step.MAPPING):
        raise PipelineStateError(f"cannot go back to step {target.value!r}")
    if _ORDER.index(target) > _ORDER.index(state.step):
        raise PipelineStateError(f"{target.value!r} is not behind {state.step.value!r}")

    if target is Step.UPLOAD:
        return UploadState()
    if target is Step.PICK_HEADER:
        if isinstance(state, PickHeaderState):
            return state
        return PickHeaderState(file_name=state.file_name, grid=state.grid, suggested_index=state.header_index)
    if isinstance(state, MappingState):
        return state
    # Mapping へ戻る: 照合結果は破棄 (再検証必須)
    return MappingState(
        file_name=state.file_name,
        grid=state.grid,
        header_index=state.header_index,
        headers=state.headers,
        mapping=state.mapping,
    )


def reduce(config: PipelineConfig, state: PipelineState, action: Action) -> PipelineState:
    if isinstance(action, StartOver):
        if isinstance(state, ExecutingState):
            raise PipelineStateError("cannot start over while a batch is executing; cancel first")
        return UploadState()

    if isinstance(action, Back):
        return _back(state, action.target)

    if isinstance(action, FileLoaded):
        if not isinstance(state, UploadState):
            raise _reject(state, action)
        return PickHeaderState(
            file_name=action.file_name,
            grid=action.grid,
            suggested_index=suggest_header_row(action.grid, config.min_header_cells),
        )

    if isinstance(action, HeaderConfirmed):
        if not isinstance(state, PickHeaderState):
            raise _reject(state, action)
        index = state.suggested_index if action.index is None else action.index
        headers = header_labels(state.grid, index)
        return MappingState(
            file_name=state.file_name,
            grid=state.grid,
            header_index=index,
            headers=headers,
            mapping=auto_map(headers, config.fields),
        )

    if isinstance(action, MappingChanged):
        if not isinstance(state, MappingState):
            raise _reject(state, action)
        mapping = override(state.mapping, action.key, action.label, state.headers, config.fields)
        return replace(state, mapping=mapping)

    if isinstance(action, MappingConfirmed):
        if not isinstance(state, MappingState):
            raise _reject(state, action)
        require_complete(state.mapping, config.fields)
        rows = project_rows(state.grid, state.header_index, state.mapping, config.fields, config.derived_fields)
        if config.validation_step:
            return ValidationState(
                file_name=state.file_name,
                grid=state.grid,
                header_index=state.header_index,
                headers=state.headers,
                mapping=state.mapping,
                rows=rows,
            )
        return PreviewState(
            file_name=state.file_name,
            grid=state.grid,
            header_index=state.header_index,
            headers=state.headers,
            mapping=state.mapping,
            rows=rows,
        )

    if isinstance(action, ReconciliationCompleted):
        if not isinstance(state, (ValidationState, PreviewState)):
            raise _reject(state, action)
        if action.result.fingerprint != state.fingerprint:
            raise PipelineStateError("reconciliation was computed for a different file or mapping")
        return PreviewState(
            file_name=state.file_name,
            grid=state.grid,
            header_index=state.header_index,
            headers=state.headers,
            mapping=state.mapping,
            rows=state.rows,
            reconciliation=action.result,
        )

    if isinstance(action, ExecutionStarted):
        if not isinstance(state, PreviewState):
            raise _reject(state, action)
        if not state.validated or state.reconciliation is None:
            raise ExecutionBlockedError("identifiers must be validated against the current mapping before execution")
        check_executable(state.reconciliation, config.require_full_match)
        return ExecutingState(preview=replace(state, last_error=None), total_batches=action.total_batches)

    if isinstance(action, BatchRecorded):
        if not isinstance(state, ExecutingState):
            raise _reject(state, action)
        return replace(state, outcomes=state.outcomes + (action.outcome,))

    if isinstance(action, ExecutionFinished):
        if not isinstance(state, ExecutingState):
            raise _reject(state, action)
        return ResultState(report=action.report)

    if isinstance(action, ExecutionAborted):
        if not isinstance(state, ExecutingState):
            raise _reject(state, action)
        return replace(state.preview, last_error=action.error)

    raise PipelineStateError(f"unknown action {action!r}")  # pragma: no cover
