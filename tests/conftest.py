# Shared pytest fixtures
from __future__ import annotations

import tempfile
from collections.abc import Sequence
from pathlib import Path

import pytest

from bulk_import.logging.init import reset_logging
from bulk_import.models.config_models import EndpointConfig, PipelineConfig
from bulk_import.models.field_spec import DerivedField, FieldSpec
from bulk_import.models.reconciliation import EligibleRow, MatchResponse


class FakeMatcher:
    """Catalog Matcher double: every code in ``known`` matches, ``inactive`` are already done."""

    def __init__(self, known: Sequence[str] = (), inactive: Sequence[str] = (), error: Exception | None = None):
        self.known = list(known)
        self.inactive = list(inactive)
        self.error = error
        self.calls: list[list[str]] = []

    def __call__(self, codes: Sequence[str]) -> MatchResponse:
        self.calls.append(list(codes))
        if self.error is not None:
            raise self.error
        matched = [
            {"code": c, "product_id": 1000 + i, "product_name": f"Product {c}"}
            for i, c in enumerate(codes)
            if c in self.known and c not in self.inactive
        ]
        already = [{"code": c, "product_id": 2000 + i} for i, c in enumerate(codes) if c in self.inactive]
        unmatched = [c for c in codes if c not in self.known and c not in self.inactive]
        return MatchResponse(matched=matched, unmatched=unmatched, already_inactive=already)


class FakeExecutor:
    """Execution Service double. ``fail_on`` maps a 1-based call number to the exception to raise."""

    def __init__(self, fail_on: dict[int, Exception] | None = None):
        self.fail_on = dict(fail_on or {})
        self.calls: list[list[EligibleRow]] = []

    def __call__(self, rows: Sequence[EligibleRow]) -> dict:
        self.calls.append(list(rows))
        error = self.fail_on.get(len(self.calls))
        if error is not None:
            raise error
        total = sum(float(r.row.derived.get("total", 0.0)) for r in rows)
        return {
            "invoice_id": len(self.calls),
            "matched": len(rows),
            "unmatched": 0,
            "unmatched_items": [],
            "total": round(total, 2),
        }


@pytest.fixture()
def temp_workdir(monkeypatch) -> Path:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "data").mkdir()
        (p / "logs").mkdir()
        monkeypatch.chdir(p)
        yield p


@pytest.fixture(autouse=True)
def _clean_logging():
    reset_logging()
    yield
    reset_logging()


@pytest.fixture()
def stock_fields() -> tuple[FieldSpec, ...]:
    return (
        FieldSpec.create("product_code", "Code", required=True, aliases=["product_code", "barcode", "code", "الكود"]),
        FieldSpec.create("product_name", "Name", aliases=["product_name", "name"]),
        FieldSpec.create("quantity", "Quantity", required=True, aliases=["quantity", "qty"]),
        FieldSpec.create("price", "Price", required=True, aliases=["price"]),
    )


@pytest.fixture()
def stock_pipeline(stock_fields) -> PipelineConfig:
    return PipelineConfig(
        name="opening_stock",
        fields=stock_fields,
        identifier_field="product_code",
        min_header_cells=3,
        require_full_match=True,
        batch_size=100,
        derived_fields=(DerivedField("total", ("quantity", "price")),),
        value_key="total",
        matcher=EndpointConfig(path="/admin/opening-stock/validate"),
        executor=EndpointConfig(path="/admin/opening-stock", payload="items", timeout_seconds=120),
    )


@pytest.fixture()
def deactivate_pipeline() -> PipelineConfig:
    return PipelineConfig(
        name="bulk_deactivate",
        fields=(
            FieldSpec.create("product_code", "Code", required=True, aliases=["product_code", "barcode", "code"]),
            FieldSpec.create("product_name", "Name", aliases=["name"]),
        ),
        identifier_field="product_code",
        min_header_cells=1,
        validation_step=True,
        dedupe_identifiers=True,
        matcher=EndpointConfig(path="/admin/products/bulk-deactivate/validate"),
        executor=EndpointConfig(path="/admin/products/bulk-deactivate/execute", payload="product_ids"),
    )


@pytest.fixture()
def sample_config_yaml() -> str:
    return """api:
  base_url: http://api.test/api
  token: secret-token
  timeout_seconds: 15
pipelines:
  opening_stock:
    min_header_cells: 3
    require_full_match: true
    identifier_field: product_code
    value_key: total
    fields:
      - {key: product_code, label: Code, required: true, aliases: [code, barcode]}
      - {key: quantity, label: Quantity, required: true, aliases: [qty, quantity]}
      - {key: price, label: Price, required: true, aliases: [price]}
    derived_fields:
      - {key: total, product_of: [quantity, price]}
    matcher: {path: /admin/opening-stock/validate}
    executor: {path: /admin/opening-stock, payload: items, context: {branch_id: 1}}
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "pipelines.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


@pytest.fixture()
def stock_csv(temp_workdir: Path) -> Path:
    f = temp_workdir / "data" / "stock.csv"
    f.write_text("code,qty,price\nA1,2,10\nA2,3,5\n,,\n", encoding="utf-8")
    return f


@pytest.fixture()
def fake_matcher_cls():
    return FakeMatcher


@pytest.fixture()
def fake_executor_cls():
    return FakeExecutor
