"""HTTP application exposing cache administration and routed queries."""

from __future__ import annotations

import contextlib
from typing import Iterator

import duckdb
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool

from ...engine import DuckSync
from ...errors import (
    DuckSyncError,
    NotFoundError,
    NotInitializedError,
    PassthroughDisabledError,
    QueryParseError,
    RefreshFailedError,
    RemoteQueryError,
    SourceInUseError,
    StorageError,
)
from .models import (
    CacheRequest,
    CacheResponse,
    QueryRequest,
    QueryResponse,
    RefreshResponse,
    SourceRequest,
    SourceResponse,
    StatusResponse,
)

_STATUS_CODES: tuple[tuple[type[Exception], int], ...] = (
    (NotFoundError, 404),
    (NotInitializedError, 409),
    (SourceInUseError, 409),
    (PassthroughDisabledError, 403),
    (QueryParseError, 400),
    (RemoteQueryError, 502),
    (StorageError, 502),
    (RefreshFailedError, 502),
    (DuckSyncError, 500),
    (ValueError, 422),
    (duckdb.Error, 400),
)


@contextlib.contextmanager
def _translate_errors() -> Iterator[None]:
    try:
        yield
    except HTTPException:
        raise
    except Exception as exc:
        for error_type, status_code in _STATUS_CODES:
            if isinstance(exc, error_type):
                raise HTTPException(status_code=status_code, detail=str(exc)) from exc
        raise


def create_admin_app(engine: DuckSync) -> FastAPI:
    """Create a FastAPI app serving ``engine``."""

    app = FastAPI()
    app.state.engine = engine
    app.include_router(create_admin_router())
    return app


def _get_engine(request: Request) -> DuckSync:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise RuntimeError("Cache engine is not configured")
    return engine


def _cache_response(engine: DuckSync, name: str) -> CacheResponse:
    cache = engine.get_cache(name)
    return CacheResponse.from_cache(
        cache,
        table=str(engine.physical_table(cache.name)),
        state=engine.get_state(cache.name),
    )


def create_admin_router() -> APIRouter:
    """Build the router for sources, caches, refreshes and queries."""

    router = APIRouter()

    @router.post(
        "/sources",
        name="source-create",
        response_model=SourceResponse,
        status_code=201,
        summary="Register or replace a warehouse source",
    )
    def create_source(
        payload: SourceRequest, engine: DuckSync = Depends(_get_engine)
    ) -> SourceResponse:
        with _translate_errors():
            source = engine.add_source(
                payload.name,
                payload.driver,
                payload.credential,
                passthrough_enabled=payload.passthrough_enabled,
            )
        return SourceResponse.from_source(source)

    @router.get("/sources", name="source-list", response_model=list[SourceResponse])
    def list_sources(engine: DuckSync = Depends(_get_engine)) -> list[SourceResponse]:
        with _translate_errors():
            return [SourceResponse.from_source(source) for source in engine.list_sources()]

    @router.delete("/sources/{name}", name="source-delete", response_model=StatusResponse)
    def delete_source(name: str, engine: DuckSync = Depends(_get_engine)) -> StatusResponse:
        with _translate_errors():
            engine.delete_source(name)
        return StatusResponse(status="deleted", detail=f"Source '{name}' deleted")

    @router.post(
        "/caches",
        name="cache-create",
        response_model=CacheResponse,
        status_code=201,
        summary="Define or redefine a cache",
    )
    def create_cache(
        payload: CacheRequest, engine: DuckSync = Depends(_get_engine)
    ) -> CacheResponse:
        with _translate_errors():
            cache = engine.create_cache(
                payload.name,
                payload.source,
                payload.query,
                payload.monitor_tables,
                ttl_seconds=payload.ttl_seconds,
            )
            return _cache_response(engine, cache.name)

    @router.get("/caches", name="cache-list", response_model=list[CacheResponse])
    def list_caches(
        source: str | None = Query(None), engine: DuckSync = Depends(_get_engine)
    ) -> list[CacheResponse]:
        with _translate_errors():
            return [
                _cache_response(engine, cache.name)
                for cache in engine.list_caches(source_name=source)
            ]

    @router.get("/caches/{name}", name="cache-read", response_model=CacheResponse)
    def read_cache(name: str, engine: DuckSync = Depends(_get_engine)) -> CacheResponse:
        with _translate_errors():
            return _cache_response(engine, name)

    @router.delete("/caches/{name}", name="cache-delete", response_model=StatusResponse)
    def delete_cache(name: str, engine: DuckSync = Depends(_get_engine)) -> StatusResponse:
        with _translate_errors():
            engine.delete_cache(name)
        return StatusResponse(status="deleted", detail=f"Cache '{name}' deleted")

    @router.post(
        "/caches/{name}/refresh",
        name="cache-refresh",
        response_model=RefreshResponse,
        summary="Refresh a cache if stale, or unconditionally with force",
    )
    async def refresh_cache(
        name: str,
        force: bool = Query(False),
        engine: DuckSync = Depends(_get_engine),
    ) -> RefreshResponse:
        with _translate_errors():
            status = await run_in_threadpool(engine.refresh, name, force=force)
        return RefreshResponse.from_status(status)

    @router.post(
        "/query",
        name="query-execute",
        response_model=QueryResponse,
        summary="Route a query to its caches or to the source and run it",
    )
    async def execute_query(
        payload: QueryRequest, engine: DuckSync = Depends(_get_engine)
    ) -> QueryResponse:
        with _translate_errors():
            if payload.dry_run:
                routed = await run_in_threadpool(engine.route, payload.sql, payload.source)
                return QueryResponse.from_routed(routed)
            result = await run_in_threadpool(engine.query, payload.sql, payload.source)
        return QueryResponse.from_routed(result.routed, result=result)

    return router


__all__ = ["create_admin_app", "create_admin_router"]
