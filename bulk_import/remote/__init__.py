"""Adapters for the remote Catalog Matcher and Execution Service."""

from .catalog_matcher import CatalogMatcher, HttpCatalogMatcher
from .client import ApiClient, ApiError
from .execution_service import ExecutionService, HttpExecutionService

__all__ = [
    "ApiClient",
    "ApiError",
    "CatalogMatcher",
    "ExecutionService",
    "HttpCatalogMatcher",
    "HttpExecutionService",
]
