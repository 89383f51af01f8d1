from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Any

from ..models.reconciliation import MatchResponse
from .client import ApiClient, ApiError

"""Catalog Matcher adapter.

Request:  {"codes": [...]}  (deduplicated, original order)
Response: {"matched": [{"code": ..., ...}], "unmatched": [code, ...],
           "alreadyInactive": [{"code": ..., ...}]}   (alreadyInactive optional)

The matcher is read-only; calling it twice is harmless.
"""

__all__ = [
    "CatalogMatcher",
    "parse_match_response",
    "HttpCatalogMatcher",
]

CatalogMatcher = Callable[[Sequence[str]], MatchResponse]


def _entries(raw: Any, name: str) -> list[dict[str, Any]]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ApiError(f"matcher response field {name!r} must be a list")
    entries: list[dict[str, Any]] = []
    for item in raw:
        if isinstance(item, dict) and "code" in item:
            entries.append({**item, "code": str(item["code"])})
        elif isinstance(item, (str, int)):
            entries.append({"code": str(item)})
        else:
            raise ApiError(f"matcher response field {name!r} has an entry without code: {item!r}")
    return entries


def parse_match_response(data: Any) -> MatchResponse:
    if not isinstance(data, dict):
        raise ApiError(f"matcher response must be an object, got {type(data).__name__}")
    unmatched = [e["code"] for e in _entries(data.get("unmatched"), "unmatched")]
    return MatchResponse(
        matched=_entries(data.get("matched"), "matched"),
        unmatched=unmatched,
        already_inactive=_entries(data.get("alreadyInactive"), "alreadyInactive"),
    )


class HttpCatalogMatcher:
    def __init__(self, client: ApiClient, path: str) -> None:
        self.client = client
        self.path = path

    def __call__(self, codes: Sequence[str]) -> MatchResponse:
        data = self.client.post_json(self.path, {"codes": list(codes)})
        return parse_match_response(data)
