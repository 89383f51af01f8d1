from __future__ import annotations

import logging
from typing import Any

import requests

from ..models.config_models import ApiConfig

"""Thin JSON-over-HTTP client for the catalog backend.

Bearer token auth, JSON bodies, a default timeout per call. Every transport
or HTTP failure is raised as ApiError with the server's message preserved
for operator diagnosis.
"""

__all__ = [
    "ApiError",
    "ApiClient",
]

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """Remote call failure (HTTP status, timeout, connection, bad JSON)."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ApiClient:
    def __init__(self, config: ApiConfig, session: requests.Session | None = None) -> None:
        self.base_url = config.base_url.rstrip("/")
        self.timeout = config.timeout_seconds
        self.session = session or requests.Session()
        self.session.headers.update({"Content-Type": "application/json"})
        if config.token:
            self.session.headers["Authorization"] = f"Bearer {config.token}"

    def url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def post_json(self, path: str, payload: dict[str, Any], timeout: float | None = None) -> Any:
        url = self.url(path)
        logger.debug("POST %s keys=%s", url, sorted(payload))
        try:
            response = self.session.post(url, json=payload, timeout=timeout or self.timeout)
            response.raise_for_status()
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            body = e.response.text if e.response is not None else ""
            raise ApiError(f"POST {path} failed with HTTP {status}: {body}".rstrip(": "), status) from e
        except requests.exceptions.Timeout as e:
            raise ApiError(f"POST {path} timed out after {timeout or self.timeout}s") from e
        except requests.exceptions.RequestException as e:
            raise ApiError(f"POST {path} failed: {e}") from e
        try:
            return response.json()
        except ValueError as e:
            raise ApiError(f"POST {path} returned invalid JSON: {e}", response.status_code) from e

    def close(self) -> None:
        self.session.close()

    def __enter__(self) -> ApiClient:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
