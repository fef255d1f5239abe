"""Pydantic request and response models for the admin HTTP API."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from ...metadata.records import CacheDefinition, CacheState, Source
from ..refresh import RefreshStatus
from ..routing import RoutedQuery, RoutedResult


class SourceRequest(BaseModel):
    """Payload registering a warehouse source."""

    name: str = Field(..., min_length=1)
    driver: str = "snowflake"
    credential: str = Field(..., min_length=1, description="Name of the host secret.")
    passthrough_enabled: bool = False


class SourceResponse(BaseModel):
    name: str
    driver: str
    credential: str
    passthrough_enabled: bool
    created_at: datetime | None = None

    @classmethod
    def from_source(cls, source: Source) -> "SourceResponse":
        return cls(
            name=source.name,
            driver=source.driver.value,
            credential=source.credential,
            passthrough_enabled=source.passthrough_enabled,
            created_at=source.created_at,
        )


class CacheRequest(BaseModel):
    """Payload defining (or redefining) a cache."""

    name: str = Field(..., min_length=1)
    source: str = Field(..., min_length=1)
    query: str = Field(..., min_length=1)
    monitor_tables: list[str] = Field(..., min_length=1)
    ttl_seconds: int | None = Field(None, gt=0)


class CacheStateResponse(BaseModel):
    last_refresh: datetime | None
    expires_at: datetime | None
    fingerprint: str | None
    refresh_count: int
    last_row_count: int | None
    last_duration_ms: float | None

    @classmethod
    def from_state(cls, state: CacheState) -> "CacheStateResponse":
        return cls(
            last_refresh=state.last_refresh,
            expires_at=state.expires_at,
            fingerprint=state.fingerprint,
            refresh_count=state.refresh_count,
            last_row_count=state.last_row_count,
            last_duration_ms=state.last_duration_ms,
        )


class CacheResponse(BaseModel):
    name: str
    source: str
    query: str
    monitor_tables: list[str]
    ttl_seconds: int | None
    table: str
    created_at: datetime | None = None
    state: CacheStateResponse | None = None

    @classmethod
    def from_cache(
        cls, cache: CacheDefinition, *, table: str, state: CacheState | None = None
    ) -> "CacheResponse":
        return cls(
            name=cache.name,
            source=cache.source_name,
            query=cache.query,
            monitor_tables=list(cache.monitor_tables),
            ttl_seconds=cache.ttl_seconds,
            table=table,
            created_at=cache.created_at,
            state=None if state is None else CacheStateResponse.from_state(state),
        )


class RefreshResponse(BaseModel):
    result: str
    message: str
    rows_refreshed: int | None = None
    duration_ms: float | None = None

    @classmethod
    def from_status(cls, status: RefreshStatus) -> "RefreshResponse":
        return cls(
            result=status.outcome.value,
            message=status.message,
            rows_refreshed=status.rows_refreshed,
            duration_ms=status.duration_ms,
        )


class QueryRequest(BaseModel):
    sql: str = Field(..., min_length=1)
    source: str = Field(..., min_length=1)
    dry_run: bool = Field(False, description="Return the routing decision without rows.")


class ColumnResponse(BaseModel):
    name: str
    type: str


class QueryResponse(BaseModel):
    """Routing decision and, unless a dry run, the result rows."""

    strategy: str
    reason: str
    query: str
    tables: list[str]
    columns: list[ColumnResponse]
    row_count: int | None = None
    rows: list[dict[str, Any]] | None = None

    @classmethod
    def from_routed(
        cls, routed: RoutedQuery, *, result: RoutedResult | None = None
    ) -> "QueryResponse":
        return cls(
            strategy=routed.strategy.value,
            reason=routed.reason,
            query=routed.query,
            tables=list(routed.tables),
            columns=[
                ColumnResponse(name=column.name, type=column.type)
                for column in routed.columns
            ],
            row_count=None if result is None else result.row_count,
            rows=None if result is None else result.to_pylist(),
        )


class StatusResponse(BaseModel):
    status: str
    detail: str | None = None


__all__ = [
    "CacheRequest",
    "CacheResponse",
    "CacheStateResponse",
    "ColumnResponse",
    "QueryRequest",
    "QueryResponse",
    "RefreshResponse",
    "SourceRequest",
    "SourceResponse",
    "StatusResponse",
]
