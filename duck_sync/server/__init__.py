"""Server components for DuckDB-hosted warehouse caches."""

from .freshness import StalenessOracle, StalenessVerdict, fingerprint, is_valid
from .refresh import RefreshOrchestrator, RefreshOutcome, RefreshStatus
from .routing import (
    ExecutionStrategy,
    QueryRouter,
    ReplacementScan,
    RoutedQuery,
    RoutedResult,
)
from .storage import StorageManager
from .warehouse import ResultColumn, SnowflakeConnector, WarehouseConnector

__all__ = [
    "ExecutionStrategy",
    "QueryRouter",
    "RefreshOrchestrator",
    "RefreshOutcome",
    "RefreshStatus",
    "ReplacementScan",
    "ResultColumn",
    "RoutedQuery",
    "RoutedResult",
    "SnowflakeConnector",
    "StalenessOracle",
    "StalenessVerdict",
    "StorageManager",
    "WarehouseConnector",
    "fingerprint",
    "is_valid",
]
