from __future__ import annotations

from datetime import UTC, datetime

import pytest

from bulk_import.models.config_models import PipelineConfig
from bulk_import.models.field_spec import FieldSpec
from bulk_import.models.processing_result import BatchOutcome, BatchStatus, RunReport
from bulk_import.models.reconciliation import ReconciliationResult, RowStatus
from bulk_import.models.row_data import ProjectedRow


def test_batch_status_succeeded():
    assert BatchStatus.APPLIED.succeeded
    assert BatchStatus.APPLIED_AFTER_RETRY.succeeded
    assert not BatchStatus.FAILED.succeeded
    assert not BatchStatus.SKIPPED.succeeded


def test_run_report_aggregates():
    batches = [
        BatchOutcome(1, 2, 2, 3, BatchStatus.APPLIED, 1, ("A", "B"), {"unmatched_items": [{"product_code": "B"}]}),
        BatchOutcome(2, 1, 4, 4, BatchStatus.SKIPPED, 0, ("C",)),
        BatchOutcome(3, 1, 5, 5, BatchStatus.FAILED, 2, ("A",), None, "boom"),
    ]
    report = RunReport(
        pipeline="p",
        file_name="f.csv",
        eligible_rows=4,
        matched=3,
        unmatched=1,
        already_done=0,
        blank_identifiers=0,
        total_value=0.0,
        batches=batches,
        errors=["boom"],
        unmatched_identifiers=("X",),
        start_time=datetime(2024, 1, 1, tzinfo=UTC),
        end_time=datetime(2024, 1, 1, 0, 0, 1, 500000, tzinfo=UTC),
    )
    assert report.applied_rows == 2
    assert len(report.skipped_batches) == 1
    assert report.elapsed_seconds == 1.5
    # 重複なし・順序固定
    assert report.follow_up_identifiers() == ["X", "C", "A", "B"]


def test_reconciliation_status_of():
    result = ReconciliationResult(("A",), ("B",), ("C",), {"A": {"product_id": 1}}, "fp")
    assert result.status_of("A") is RowStatus.MATCHED
    assert result.status_of("B") is RowStatus.UNMATCHED
    assert result.status_of("C") is RowStatus.ALREADY_DONE
    assert result.status_of(" ") is RowStatus.BLANK
    assert result.status_of("never-seen") is RowStatus.UNMATCHED
    assert result.has_unmatched


def test_projected_row_as_dict_merges_derived():
    row = ProjectedRow(row_number=2, values={"quantity": "2"}, derived={"total": 4.0})
    assert row.as_dict() == {"quantity": "2", "total": 4.0}
    assert row.get("missing") == ""


def test_pipeline_config_field_lookup():
    cfg = PipelineConfig(name="p", fields=(FieldSpec.create("code", "Code", aliases=[" Barcode ", ""]),), identifier_field="code")
    assert cfg.field_spec("code").aliases == frozenset({"barcode"})
    assert cfg.field_keys == ["code"]
    with pytest.raises(KeyError):
        cfg.field_spec("nope")


def test_projected_row_wire_dict_formats_derived_fields():
    row = ProjectedRow(row_number=2, values={"quantity": "2"}, derived={"total": 4.0}, derived_text={"total": "4.000"})
    assert row.wire_dict() == {"quantity": "2", "total": "4.000"}
    # derived_text が無ければ 2 桁
    assert ProjectedRow(row_number=2, values={}, derived={"total": 4.5}).wire_dict() == {"total": "4.50"}
