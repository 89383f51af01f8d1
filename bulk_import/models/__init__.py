"""Domain models for the bulk import pipeline."""

from .config_models import ApiConfig, EndpointConfig, ImportConfig, PipelineConfig
from .error_record import ErrorRecord
from .field_spec import UNSET, ColumnMapping, DerivedField, FieldSpec, Unset
from .processing_result import BatchOutcome, BatchStatus, RunReport
from .reconciliation import EligibleRow, MatchResponse, ReconciliationResult, RowStatus
from .row_data import Grid, ProjectedRow

__all__ = [
    # Configuration models
    "ApiConfig",
    "EndpointConfig",
    "ImportConfig",
    "PipelineConfig",
    # Schema models
    "FieldSpec",
    "DerivedField",
    "ColumnMapping",
    "Unset",
    "UNSET",
    # Processing models
    "Grid",
    "ProjectedRow",
    "MatchResponse",
    "ReconciliationResult",
    "RowStatus",
    "EligibleRow",
    "BatchOutcome",
    "BatchStatus",
    "RunReport",
    "ErrorRecord",
]
