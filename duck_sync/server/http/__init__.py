"""HTTP helpers for cache administration and routed queries."""

from .app import create_admin_app, create_admin_router
from .models import (
    CacheRequest,
    CacheResponse,
    QueryRequest,
    QueryResponse,
    RefreshResponse,
    SourceRequest,
    SourceResponse,
)

__all__ = [
    "CacheRequest",
    "CacheResponse",
    "QueryRequest",
    "QueryResponse",
    "RefreshResponse",
    "SourceRequest",
    "SourceResponse",
    "create_admin_app",
    "create_admin_router",
]
