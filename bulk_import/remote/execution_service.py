from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Any

from ..models.config_models import DEFAULT_EXECUTION_TIMEOUT
from ..models.reconciliation import EligibleRow
from .client import ApiClient, ApiError

"""Execution Service adapter.

Performs the authoritative write for one batch. Two payload shapes:

- ``items``:       {"items": [row, ...], **context}   (opening stock; context
                   carries branch_id / invoice_date)
- ``product_ids``: {"product_ids": [id, ...], **context}  (deactivation; ids
                   come from the matcher's target payload)

No idempotency key is sent. A batch that committed server-side but timed
out on the response will be applied twice when retried, unless the service
itself deduplicates.
"""

__all__ = [
    "ExecutionService",
    "PAYLOAD_BUILDERS",
    "build_items_payload",
    "build_product_ids_payload",
    "HttpExecutionService",
]

ExecutionService = Callable[[Sequence[EligibleRow]], dict[str, Any]]


def build_items_payload(rows: Sequence[EligibleRow]) -> dict[str, Any]:
    return {"items": [r.payload() for r in rows]}


def build_product_ids_payload(rows: Sequence[EligibleRow]) -> dict[str, Any]:
    ids: list[Any] = []
    for r in rows:
        product_id = r.target.get("product_id")
        if product_id is None:
            raise ApiError(f"matcher returned no product_id for code {r.identifier!r}")
        if product_id not in ids:
            ids.append(product_id)
    return {"product_ids": ids}


PAYLOAD_BUILDERS: dict[str, Callable[[Sequence[EligibleRow]], dict[str, Any]]] = {
    "items": build_items_payload,
    "product_ids": build_product_ids_payload,
}


class HttpExecutionService:
    def __init__(
        self,
        client: ApiClient,
        path: str,
        payload: str = "items",
        context: dict[str, Any] | None = None,
        timeout: float = DEFAULT_EXECUTION_TIMEOUT,
    ) -> None:
        if payload not in PAYLOAD_BUILDERS:
            raise ValueError(f"unknown payload mode {payload!r}; expected one of {sorted(PAYLOAD_BUILDERS)}")
        self.client = client
        self.path = path
        self.build_payload = PAYLOAD_BUILDERS[payload]
        self.context = dict(context or {})
        self.timeout = timeout

    def __call__(self, rows: Sequence[EligibleRow]) -> dict[str, Any]:
        body = self.build_payload(rows)
        body.update(self.context)
        data = self.client.post_json(self.path, body, timeout=self.timeout)
        if not isinstance(data, dict):
            raise ApiError(f"execution response must be an object, got {type(data).__name__}")
        return data
