from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .field_spec import DerivedField, FieldSpec

"""Config dataclasses for the bulk import pipeline.

PipelineConfig is the one value that distinguishes the opening-stock import
from bulk deactivation; both run through the same controller. These are
separate from the YAML loader in bulk_import/config/loader.py.
"""

DEFAULT_BATCH_SIZE = 100
DEFAULT_EXECUTION_TIMEOUT = 120.0  # 秒 (バッチ書き込みは長時間になりうる)
DEFAULT_API_TIMEOUT = 15.0


@dataclass(frozen=True)
class ApiConfig:
    """Remote API connection settings.

    Environment variables (BULK_IMPORT_API_URL / BULK_IMPORT_API_TOKEN) take
    precedence over these values.
    """
    base_url: str
    token: str | None = None
    timeout_seconds: float = DEFAULT_API_TIMEOUT


@dataclass(frozen=True)
class EndpointConfig:
    path: str
    payload: str = "items"  # items | product_ids (matcher では未使用)
    context: dict[str, Any] = field(default_factory=dict)  # branch_id, invoice_date 等
    timeout_seconds: float | None = None


@dataclass(frozen=True)
class PipelineConfig:
    """Everything that parametrises one pipeline instance."""
    name: str
    fields: tuple[FieldSpec, ...]
    identifier_field: str
    min_header_cells: int = 1
    require_full_match: bool = False
    validation_step: bool = False
    batch_size: int = DEFAULT_BATCH_SIZE
    derived_fields: tuple[DerivedField, ...] = ()
    dedupe_identifiers: bool = False
    value_key: str | None = None  # 実行結果から合計金額を集計するキー
    matcher: EndpointConfig | None = None
    executor: EndpointConfig | None = None

    def field_spec(self, key: str) -> FieldSpec:
        for f in self.fields:
            if f.key == key:
                return f
        raise KeyError(key)

    @property
    def field_keys(self) -> list[str]:
        return [f.key for f in self.fields]


@dataclass(frozen=True)
class ImportConfig:
    """Root configuration object."""
    api: ApiConfig
    pipelines: dict[str, PipelineConfig]
