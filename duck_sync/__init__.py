"""Transparent warehouse caching for DuckDB."""

from .engine import DuckSync, EngineSettings, EngineState
from .errors import (
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
from .metadata import CacheDefinition, CacheState, DriverKind, Source
from .server import ExecutionStrategy, RefreshOutcome, RefreshStatus, RoutedQuery

__all__ = [
    "CacheDefinition",
    "CacheState",
    "DriverKind",
    "DuckSync",
    "DuckSyncError",
    "EngineSettings",
    "EngineState",
    "ExecutionStrategy",
    "NotFoundError",
    "NotInitializedError",
    "PassthroughDisabledError",
    "QueryParseError",
    "RefreshFailedError",
    "RefreshOutcome",
    "RefreshStatus",
    "RemoteQueryError",
    "RoutedQuery",
    "SourceInUseError",
    "StorageError",
]
