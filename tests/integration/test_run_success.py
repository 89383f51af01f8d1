from __future__ import annotations

import json
from datetime import date
from pathlib import Path

import pytest
import requests

from bulk_import.config.loader import ENV_API_TOKEN, ENV_API_URL, ENV_CONFIG, build_clients, load_default_config
from bulk_import.remote.client import ApiClient
from bulk_import.services.controller import PipelineController
from bulk_import.services.state_machine import Step

"""End-to-end runs through the HTTP adapters with an in-memory backend."""


class FakeBackend:
    """Stands in for requests.Session; routes POSTs to handlers by path suffix."""

    def __init__(self, catalog: dict[str, int], inactive: set[str] | None = None):
        self.headers: dict[str, str] = {}
        self.catalog = catalog
        self.inactive = inactive or set()
        self.posts: list[tuple[str, dict, float]] = []
        self.fail_statuses: list[int] = []

    def post(self, url: str, json: dict, timeout: float) -> requests.Response:  # noqa: A002
        self.posts.append((url, json, timeout))
        if self.fail_statuses:
            return _response(url, self.fail_statuses.pop(0), {"detail": "temporarily unavailable"})
        if url.endswith("/validate"):
            return _response(url, 200, self._validate(json["codes"]))
        if url.endswith("/admin/opening-stock"):
            total = round(sum(float(i["total"]) for i in json["items"]), 2)
            return _response(
                url,
                200,
                {"invoice_id": len(self.posts), "matched": len(json["items"]), "unmatched": 0, "unmatched_items": [], "total": total},
            )
        if url.endswith("/bulk-deactivate/execute"):
            self.inactive.update(c for c, pid in self.catalog.items() if pid in json["product_ids"])
            return _response(url, 200, {"deactivated": len(json["product_ids"])})
        return _response(url, 404, {"detail": "not found"})

    def _validate(self, codes: list[str]) -> dict:
        return {
            "matched": [
                {"code": c, "product_id": self.catalog[c], "product_name": f"Product {c}"}
                for c in codes
                if c in self.catalog and c not in self.inactive
            ],
            "unmatched": [c for c in codes if c not in self.catalog],
            "alreadyInactive": [{"code": c, "product_id": self.catalog[c]} for c in codes if c in self.inactive],
        }

    def close(self) -> None:
        pass


def _response(url: str, status: int, body: dict) -> requests.Response:
    resp = requests.Response()
    resp.status_code = status
    resp.url = url
    resp.reason = "OK" if status < 400 else "Error"
    resp.encoding = "utf-8"
    resp._content = json.dumps(body).encode("utf-8")
    return resp


@pytest.fixture(autouse=True)
def _api_env(monkeypatch):
    monkeypatch.setenv(ENV_API_URL, "http://backend.test/api")
    monkeypatch.setenv(ENV_API_TOKEN, "token-123")
    monkeypatch.delenv(ENV_CONFIG, raising=False)


def _controller(pipeline_name: str, backend: FakeBackend, context=None) -> PipelineController:
    cfg = load_default_config()
    pipeline = cfg.pipelines[pipeline_name]
    client = ApiClient(cfg.api, session=backend)
    matcher, executor = build_clients(cfg, pipeline, context, client=client)
    return PipelineController(pipeline, matcher, executor)


def test_opening_stock_end_to_end(temp_workdir: Path):
    backend = FakeBackend(catalog={"A1": 11, "A2": 12})
    controller = _controller("opening_stock", backend, {"branch_id": 3, "invoice_date": "2024-01-31"})

    pick = controller.upload(b"code,qty,price\nA1,2,10\nA2,3,5\n,,", "stock.csv")
    assert len(pick.grid) == 4
    mapping = controller.confirm_header()
    assert mapping.mapping.to_plain_dict() == {"product_code": "code", "quantity": "qty", "price": "price"}
    preview = controller.confirm_mapping()
    assert [(r.get("product_code"), r.get("quantity"), r.get("price"), r.derived["total"]) for r in preview.rows] == [
        ("A1", "2", "10", 20.0),
        ("A2", "3", "5", 15.0),
    ]
    validated = controller.validate()
    assert validated.reconciliation.matched == ("A1", "A2")

    report = controller.execute()
    assert controller.step is Step.RESULT
    assert report.matched == 2
    assert len(report.batches) == 1
    assert report.batches[0].row_count == 2
    assert report.errors == []
    assert report.total_value == 35.0

    validate_call, execute_call = backend.posts
    assert validate_call[0] == "http://backend.test/api/admin/opening-stock/validate"
    assert validate_call[1] == {"codes": ["A1", "A2"]}
    assert validate_call[2] == 15
    assert execute_call[0] == "http://backend.test/api/admin/opening-stock"
    assert execute_call[1]["branch_id"] == 3
    assert execute_call[1]["invoice_date"] == "2024-01-31"
    assert [i["total"] for i in execute_call[1]["items"]] == ["20.00", "15.00"]
    assert execute_call[2] == 120
    assert backend.headers["Authorization"] == "Bearer token-123"


def test_opening_stock_arabic_headers(temp_workdir: Path):
    backend = FakeBackend(catalog={"P-1": 1})
    controller = _controller("opening_stock", backend)
    controller.upload("تقرير,,\nالكود,الكمية,السعر\nP-1,4,2.5\n".encode("utf-8"), "stock.csv")
    state = controller.confirm_header()
    assert state.header_index == 1
    assert state.mapping.to_plain_dict() == {"product_code": "الكود", "quantity": "الكمية", "price": "السعر"}
    controller.confirm_mapping()
    controller.validate()
    report = controller.execute()
    assert report.total_value == 10.0


def test_retry_after_http_error(temp_workdir: Path):
    backend = FakeBackend(catalog={"A1": 11})
    controller = _controller("opening_stock", backend)
    controller.upload(b"code,qty,price\nA1,1,1\n", "stock.csv")
    controller.confirm_header()
    controller.confirm_mapping()
    controller.validate()
    backend.fail_statuses = [503]
    report = controller.execute()
    assert report.batches[0].status.value == "applied_after_retry"
    assert backend.posts[-1][1] == backend.posts[-2][1]


def test_bulk_deactivate_end_to_end(temp_workdir: Path):
    backend = FakeBackend(catalog={"B1": 1, "B2": 2, "B3": 3}, inactive={"B3"})
    controller = _controller("bulk_deactivate", backend)
    controller.upload(b"barcode;name\nB1;one\nB2;two\nB1;dup\nB3;three\nB9;ghost\n", "deactivate.csv")
    controller.confirm_header()
    assert controller.confirm_mapping().step is Step.VALIDATION
    preview = controller.validate()
    assert preview.reconciliation.unmatched == ("B9",)
    assert preview.reconciliation.already_done == ("B3",)
    report = controller.execute()
    assert backend.posts[-1][1] == {"product_ids": [1, 2]}
    assert report.eligible_rows == 2
    assert report.follow_up_identifiers() == ["B9"]

    # 再アップロードすると実行済みコードは already_done になる
    controller.start_over()
    controller.upload(b"barcode\nB1\nB2\n", "again.csv")
    controller.confirm_header()
    controller.confirm_mapping()
    again = controller.validate()
    assert again.reconciliation.already_done == ("B1", "B2")
    assert again.reconciliation.matched == ()


def test_opening_stock_default_context_is_sent(temp_workdir: Path):
    backend = FakeBackend(catalog={"A1": 11})
    controller = _controller("opening_stock", backend)
    controller.upload(b"code,qty,price\nA1,2,10\n", "stock.csv")
    controller.confirm_header()
    controller.confirm_mapping()
    controller.validate()
    controller.execute()
    body = backend.posts[-1][1]
    assert body["branch_id"] == 1
    assert body["invoice_date"] == date.today().isoformat()
    assert body["items"][0]["total"] == "20.00"
