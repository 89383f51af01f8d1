from __future__ import annotations

import json
import logging
import os
from datetime import date
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

from ..models.config_models import (
    DEFAULT_API_TIMEOUT,
    DEFAULT_BATCH_SIZE,
    DEFAULT_EXECUTION_TIMEOUT,
    ApiConfig,
    EndpointConfig,
    ImportConfig,
    PipelineConfig,
)
from ..models.field_spec import DerivedField, FieldSpec
from ..remote.catalog_matcher import HttpCatalogMatcher
from ..remote.client import ApiClient
from ..remote.execution_service import HttpExecutionService

"""YAML config loader.

Responsibilities:
- Load a pipelines YAML file (or the packaged default_pipelines.yml)
- Validate it against config_schema.json (shipped next to this module)
- Cross-check references the schema cannot express (identifier_field,
  derived field inputs must be declared fields)
- Apply environment overrides for the API connection
- Build the HTTP matcher / executor pair for one pipeline; a context value
  of "today" becomes the current date (YYYY-MM-DD) at that point
"""

__all__ = [
    "ConfigError",
    "SCHEMA_PATH",
    "DEFAULT_CONFIG_PATH",
    "ENV_API_URL",
    "ENV_API_TOKEN",
    "ENV_CONFIG",
    "load_config",
    "load_default_config",
    "resolve_config_path",
    "build_clients",
]

logger = logging.getLogger(__name__)

_CONFIG_DIR = Path(__file__).parent
SCHEMA_PATH = _CONFIG_DIR / "config_schema.json"
DEFAULT_CONFIG_PATH = _CONFIG_DIR / "default_pipelines.yml"

ENV_API_URL = "BULK_IMPORT_API_URL"
ENV_API_TOKEN = "BULK_IMPORT_API_TOKEN"
ENV_CONFIG = "BULK_IMPORT_CONFIG"

TODAY = "today"


class ConfigError(Exception):
    pass


def _validate_config_schema(data: Any) -> None:
    """Validate config data against the JSON schema.

    Raises:
        ConfigError: the schema file is missing or not valid JSON, or the
            config data fails validation (missing keys, wrong types, unknown
            keys).
    """
    if not SCHEMA_PATH.exists():
        raise ConfigError(f"config schema not found: {SCHEMA_PATH}")

    try:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    except ValidationError as e:
        where = "/".join(str(p) for p in e.absolute_path)
        prefix = f"{where}: " if where else ""
        raise ConfigError(f"config validation failed: {prefix}{e.message}") from e


def _endpoint(raw: dict[str, Any] | None, default_timeout: float | None) -> EndpointConfig | None:
    if raw is None:
        return None
    return EndpointConfig(
        path=raw["path"],
        payload=raw.get("payload", "items"),
        context=dict(raw.get("context") or {}),
        timeout_seconds=raw.get("timeout_seconds", default_timeout),
    )


def _pipeline(name: str, raw: dict[str, Any]) -> PipelineConfig:
    fields = tuple(
        FieldSpec.create(
            key=f["key"],
            label=f["label"],
            required=f.get("required", False),
            aliases=f.get("aliases", ()),
        )
        for f in raw["fields"]
    )
    keys = [f.key for f in fields]
    if len(set(keys)) != len(keys):
        raise ConfigError(f"pipeline {name}: duplicate field keys in {keys}")
    if raw["identifier_field"] not in keys:
        raise ConfigError(f"pipeline {name}: identifier_field {raw['identifier_field']!r} is not a declared field")

    derived = tuple(
        DerivedField(key=d["key"], product_of=tuple(d["product_of"]), ndigits=d.get("ndigits", 2))
        for d in raw.get("derived_fields", ())
    )
    for d in derived:
        unknown = [k for k in d.product_of if k not in keys]
        if unknown:
            raise ConfigError(f"pipeline {name}: derived field {d.key!r} references unknown fields {unknown}")
        if d.key in keys:
            raise ConfigError(f"pipeline {name}: derived field {d.key!r} shadows a declared field")

    return PipelineConfig(
        name=name,
        fields=fields,
        identifier_field=raw["identifier_field"],
        min_header_cells=raw.get("min_header_cells", 1),
        require_full_match=raw.get("require_full_match", False),
        validation_step=raw.get("validation_step", False),
        batch_size=raw.get("batch_size", DEFAULT_BATCH_SIZE),
        derived_fields=derived,
        dedupe_identifiers=raw.get("dedupe_identifiers", False),
        value_key=raw.get("value_key"),
        matcher=_endpoint(raw.get("matcher"), None),
        executor=_endpoint(raw.get("executor"), DEFAULT_EXECUTION_TIMEOUT),
    )


def _api(raw: dict[str, Any]) -> ApiConfig:
    # 環境変数 (.env 読み込み後) を YAML より優先
    base_url = os.getenv(ENV_API_URL) or raw.get("base_url")
    if not base_url:
        raise ConfigError(f"api.base_url is not set (config or {ENV_API_URL})")
    return ApiConfig(
        base_url=base_url,
        token=os.getenv(ENV_API_TOKEN) or raw.get("token"),
        timeout_seconds=raw.get("timeout_seconds", DEFAULT_API_TIMEOUT),
    )


def load_config(path: Path) -> ImportConfig:
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e

    _validate_config_schema(data)

    pipelines = {name: _pipeline(name, raw) for name, raw in data["pipelines"].items()}
    config = ImportConfig(api=_api(data.get("api") or {}), pipelines=pipelines)
    logger.debug("loaded config %s pipelines=%s", path, sorted(pipelines))
    return config


def load_default_config() -> ImportConfig:
    return load_config(DEFAULT_CONFIG_PATH)


def resolve_config_path(explicit: Path | None = None) -> Path:
    """--config, then BULK_IMPORT_CONFIG, then the packaged defaults."""
    if explicit is not None:
        return explicit
    env_path = os.getenv(ENV_CONFIG)
    if env_path:
        return Path(env_path)
    return DEFAULT_CONFIG_PATH


def _resolve_context(context: dict[str, Any]) -> dict[str, Any]:
    today = date.today().isoformat()
    return {k: (today if v == TODAY else v) for k, v in context.items()}


def build_clients(
    config: ImportConfig,
    pipeline: PipelineConfig,
    context: dict[str, Any] | None = None,
    client: ApiClient | None = None,
) -> tuple[HttpCatalogMatcher, HttpExecutionService]:
    """HTTP matcher and executor for ``pipeline``; ``context`` is merged over the configured one."""
    if pipeline.matcher is None or pipeline.executor is None:
        raise ConfigError(f"pipeline {pipeline.name}: matcher and executor endpoints are required")
    client = client or ApiClient(config.api)
    executor_context = _resolve_context({**pipeline.executor.context, **(context or {})})
    matcher = HttpCatalogMatcher(client, pipeline.matcher.path)
    executor = HttpExecutionService(
        client,
        pipeline.executor.path,
        payload=pipeline.executor.payload,
        context=executor_context,
        timeout=pipeline.executor.timeout_seconds or DEFAULT_EXECUTION_TIMEOUT,
    )
    return matcher, executor
